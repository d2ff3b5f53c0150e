"""Collection stores supplying calendar sources by GUID."""
import logging
from typing import Dict, Optional

import boto3
from botocore.exceptions import ClientError

from processor.models import CalendarCollection, CalendarSource

logger = logging.getLogger(__name__)


class DynamoDBCollectionStore:
    """Collection store backed by a DynamoDB table keyed on guid."""

    def __init__(self, table_name: str, region_name: Optional[str] = None):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
            region_name: AWS region, taken from the environment when omitted
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBCollectionStore for table: {table_name}")

    def get_collection(self, guid: str) -> Optional[CalendarCollection]:
        """
        Load a collection by GUID.

        Args:
            guid: Collection GUID

        Returns:
            CalendarCollection or None if no such collection exists
        """
        try:
            response = self.table.get_item(Key={'guid': guid})
        except ClientError as e:
            logger.error(f"Error reading collection {guid}: {e}")
            raise

        item = response.get('Item')
        if not item:
            logger.info(f"Collection not found: {guid}")
            return None

        return self._item_to_collection(item)

    def save_collection(self, collection: CalendarCollection) -> None:
        """
        Create or replace a collection.

        Args:
            collection: Collection to store
        """
        try:
            self.table.put_item(Item=self._collection_to_item(collection))
        except ClientError as e:
            logger.error(f"Error writing collection {collection.guid}: {e}")
            raise

        logger.info(
            f"Saved collection {collection.guid} with "
            f"{len(collection.calendars)} calendars"
        )

    def delete_collection(self, guid: str) -> bool:
        """
        Delete a collection.

        Args:
            guid: Collection GUID

        Returns:
            True if a collection was deleted, False if it did not exist
        """
        try:
            response = self.table.delete_item(
                Key={'guid': guid},
                ReturnValues='ALL_OLD'
            )
        except ClientError as e:
            logger.error(f"Error deleting collection {guid}: {e}")
            raise

        return 'Attributes' in response

    def _item_to_collection(self, item: dict) -> CalendarCollection:
        """
        Convert a DynamoDB item to a CalendarCollection.

        DynamoDB returns numbers as Decimal, so ids are coerced back to int.
        """
        calendars = []
        for calendar in item.get('calendars', []):
            try:
                calendars.append(CalendarSource.from_dict(calendar))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(
                    f"Skipping malformed calendar in collection "
                    f"{item.get('guid')}: {e}"
                )

        return CalendarCollection(
            guid=item['guid'],
            name=item['name'],
            calendars=calendars,
            description=item.get('description'),
            created_at=item.get('createdAt', ''),
            updated_at=item.get('updatedAt')
        )

    def _collection_to_item(self, collection: CalendarCollection) -> dict:
        return collection.to_dict()


class InMemoryCollectionStore:
    """Collection store holding collections in a dict owned by the caller."""

    def __init__(self, collections: Optional[Dict[str, CalendarCollection]] = None):
        self.collections = collections if collections is not None else {}

    def get_collection(self, guid: str) -> Optional[CalendarCollection]:
        return self.collections.get(guid)

    def save_collection(self, collection: CalendarCollection) -> None:
        self.collections[collection.guid] = collection

    def delete_collection(self, guid: str) -> bool:
        return self.collections.pop(guid, None) is not None
