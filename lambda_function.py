"""AWS Lambda handler serving combined calendar feeds for collections."""
import json
import logging
import os
import re
import time
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from fetcher.event_fetcher import StructuredEventFetcher
from fetcher.feed_fetcher import FeedFetcher
from processor.ical_combiner import (
    DEFAULT_TIMEOUT_MS,
    MAX_TIMEOUT_MS,
    MIN_TIMEOUT_MS,
    FeedCombiner,
    validate_timeout,
)
from processor.models import CalendarCollection, CombineResult
from storage.collection_store import DynamoDBCollectionStore

GUID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$',
    re.IGNORECASE
)
CACHE_CONTROL = 'public, max-age=300'
ICAL_CONTENT_TYPE = 'text/calendar; charset=utf-8'
DEFAULT_EVENTS_LIMIT = 100

_RESERVED_LOG_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {
    'message', 'asctime'
}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any extra fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_LOG_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _json_response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': 'application/json'},
        'body': json.dumps(body)
    }


def _safe_filename(name: str) -> str:
    return re.sub(r'[^a-zA-Z0-9-_]', '-', name) or 'calendar'


def _parse_int_param(value: Optional[str], default: int, name: str) -> int:
    if value is None or value == '':
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer") from None


def _calendar_response(
    collection: CalendarCollection,
    result: CombineResult
) -> Dict[str, Any]:
    """
    Map a CombineResult onto an HTTP response.

    200 when every source succeeded, 206 when the document was built from
    only some sources, 503 when nothing could be fetched.
    """
    if not result.success:
        return _json_response(503, {
            'error': 'Failed to fetch calendar data',
            'details': list(result.errors),
            'warnings': list(result.warnings)
        })

    headers = {
        'Content-Type': ICAL_CONTENT_TYPE,
        'Content-Disposition': (
            f'attachment; filename="{_safe_filename(collection.name)}.ics"'
        ),
        'X-Calendar-Events-Count': str(result.events_count),
        'X-Calendar-Sources-Processed': str(result.calendars_processed),
        'X-Calendar-Sources-Total': str(len(collection.enabled_calendars())),
        'Cache-Control': CACHE_CONTROL
    }

    if result.errors:
        headers['X-Calendar-Errors'] = json.dumps(list(result.errors))
    if result.warnings:
        headers['X-Calendar-Warnings'] = json.dumps(list(result.warnings))

    return {
        'statusCode': 206 if result.is_partial else 200,
        'headers': headers,
        'body': result.ical_content
    }


def _head_response(collection: CalendarCollection) -> Dict[str, Any]:
    return {
        'statusCode': 200,
        'headers': {
            'Content-Type': ICAL_CONTENT_TYPE,
            'X-Collection-Name': collection.name,
            'X-Collection-Description': collection.description or '',
            'X-Calendar-Sources-Count': str(len(collection.enabled_calendars())),
            'X-Collection-Created': collection.created_at,
            'X-Collection-Updated': collection.updated_at or collection.created_at,
            'Cache-Control': CACHE_CONTROL
        },
        'body': ''
    }


def _events_response(
    collection: CalendarCollection,
    fetcher: FeedFetcher,
    timeout_ms: int,
    limit: int,
    offset: int
) -> Dict[str, Any]:
    """Serve the collection as structured JSON events."""
    enabled = collection.enabled_calendars()
    results = StructuredEventFetcher(fetcher=fetcher).fetch_multiple(
        enabled, timeout_ms
    )

    events = []
    errors = []
    warnings = []
    for source, result in zip(enabled, results):
        if result.success:
            events.extend(result.events)
            warnings.extend(
                f"{source.name}: {warning}" for warning in result.warnings
            )
        else:
            errors.extend(
                f'Failed to fetch calendar "{source.name}": {error}'
                for error in result.errors
            )

    succeeded = sum(1 for result in results if result.success)
    if succeeded == 0:
        return _json_response(503, {
            'error': 'Failed to fetch calendar data',
            'details': errors,
            'warnings': warnings
        })

    body = {
        'events': [event.to_dict() for event in events[offset:offset + limit]],
        'pagination': {
            'limit': limit,
            'offset': offset,
            'total': len(events)
        },
        'errors': errors,
        'warnings': warnings,
        'timestamp': datetime.now(timezone.utc).isoformat()
    }
    return _json_response(206 if errors else 200, body)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler for /api/calendar/{guid}.

    Args:
        event: API Gateway proxy event
        context: Lambda context object

    Returns:
        API Gateway proxy response
    """
    # Read configuration from environment variables
    table_name = os.environ.get('TABLE_NAME', 'calendar-collections')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    region_name = os.environ.get('AWS_REGION')
    default_timeout_ms = int(
        os.environ.get('DEFAULT_TIMEOUT_MS', str(DEFAULT_TIMEOUT_MS))
    )
    fetch_retries = int(os.environ.get('FETCH_RETRIES', '0'))

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    method = (event.get('httpMethod') or 'GET').upper()
    guid = (event.get('pathParameters') or {}).get('guid')
    params = event.get('queryStringParameters') or {}

    logger.info(
        "Calendar request started",
        extra={'method': method, 'guid': guid, 'table_name': table_name}
    )

    if method not in ('GET', 'HEAD'):
        return _json_response(405, {'error': f"Method {method} not allowed"})

    if not guid:
        return _json_response(400, {'error': 'GUID is required'})

    if not GUID_PATTERN.match(guid):
        return _json_response(400, {'error': 'Invalid GUID format'})

    try:
        timeout_ms = _parse_int_param(
            params.get('timeout'), default_timeout_ms, 'Timeout'
        )
        validate_timeout(timeout_ms)
    except ValueError:
        return _json_response(400, {
            'error': (
                f"Timeout must be between {MIN_TIMEOUT_MS}ms and "
                f"{MAX_TIMEOUT_MS}ms"
            )
        })

    try:
        store = DynamoDBCollectionStore(table_name=table_name, region_name=region_name)
        collection = store.get_collection(guid)

        if collection is None:
            return _json_response(404, {'error': 'Calendar collection not found'})

        if not collection.enabled_calendars():
            return _json_response(404, {'error': 'No enabled calendars in collection'})

        if method == 'HEAD':
            return _head_response(collection)

        fetcher = FeedFetcher(max_retries=fetch_retries)

        if params.get('format') == 'json':
            try:
                limit = _parse_int_param(
                    params.get('limit'), DEFAULT_EVENTS_LIMIT, 'limit'
                )
                offset = _parse_int_param(params.get('offset'), 0, 'offset')
            except ValueError as e:
                return _json_response(400, {'error': str(e)})
            if limit < 0 or offset < 0:
                return _json_response(
                    400, {'error': 'limit and offset must not be negative'}
                )
            return _events_response(collection, fetcher, timeout_ms, limit, offset)

        result = FeedCombiner(fetcher=fetcher).combine(
            collection.calendars, timeout_ms
        )

        duration = time.time() - start_time
        logger.info(
            "Calendar request completed",
            extra={
                'duration_seconds': round(duration, 2),
                'success': result.success,
                'events_count': result.events_count,
                'calendars_processed': result.calendars_processed,
                'errors': list(result.errors),
                'warnings': list(result.warnings)
            }
        )

        return _calendar_response(collection, result)

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Calendar request failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return _json_response(500, {
            'error': 'Internal server error',
            'message': (
                'An unexpected error occurred while processing '
                'the calendar request'
            )
        })
