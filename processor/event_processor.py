"""Event processor for converting VEVENT components into CalendarEvents."""
import logging
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from icalendar.cal import Component

from processor.models import CalendarEvent

logger = logging.getLogger(__name__)


class EventProcessor:
    """Processor for validating and converting parsed iCal events."""

    DEFAULT_STATUS = 'confirmed'
    KNOWN_STATUSES = ('confirmed', 'tentative', 'cancelled')

    def process_events(
        self,
        components: Iterable[Component],
        calendar_id: int
    ) -> Tuple[List[CalendarEvent], int]:
        """
        Convert VEVENT components into CalendarEvent objects.

        Args:
            components: VEVENT components parsed by icalendar
            calendar_id: ID of the source calendar

        Returns:
            Tuple of (converted events, number of skipped events)
        """
        events = []
        skipped = 0

        for component in components:
            try:
                event = self._process_single_event(component, calendar_id)
            except (ValueError, TypeError, KeyError) as e:
                logger.warning(
                    f"Failed to convert event '{component.get('uid')}': {e}"
                )
                event = None

            if event:
                events.append(event)
            else:
                skipped += 1

        logger.info(
            f"Converted {len(events)} events, skipped {skipped}",
            extra={'calendar_id': calendar_id}
        )
        return events, skipped

    def _process_single_event(
        self,
        component: Component,
        calendar_id: int
    ) -> Optional[CalendarEvent]:
        """
        Convert a single VEVENT.

        Args:
            component: VEVENT component
            calendar_id: ID of the source calendar

        Returns:
            CalendarEvent object or None if required fields are missing
        """
        if not self._validate_required_fields(component):
            return None

        uid = str(component.get('uid')).strip()
        start = component.decoded('dtstart')
        end = component.decoded('dtend') if component.get('dtend') else start

        rrule = component.get('rrule')
        if isinstance(rrule, list):
            rrule = rrule[0] if rrule else None

        return CalendarEvent(
            id=uid,
            title=str(component.get('summary')).strip(),
            start=self._format_datetime(start),
            end=self._format_datetime(end),
            is_all_day=not isinstance(start, datetime),
            is_recurring=rrule is not None,
            status=self._normalize_status(component.get('status')),
            calendar_id=calendar_id,
            source_id=uid,
            description=self._text(component.get('description')),
            location=self._text(component.get('location')),
            organizer=self._parse_organizer(component.get('organizer')),
            attendees=self._parse_attendees(component.get('attendee')) or None,
            recurrence_rule=rrule.to_ical().decode('utf-8') if rrule else None,
            categories=self._parse_categories(component.get('categories')) or None,
            url=self._text(component.get('url'))
        )

    def _validate_required_fields(self, component: Component) -> bool:
        """
        Check that UID, SUMMARY and DTSTART are present and non-empty.

        Args:
            component: VEVENT component

        Returns:
            True if valid, False otherwise
        """
        uid = component.get('uid')
        if not uid or not str(uid).strip():
            logger.warning("Event missing required field: uid")
            return False

        summary = component.get('summary')
        if not summary or not str(summary).strip():
            logger.warning(f"Event '{uid}' missing required field: summary")
            return False

        if component.get('dtstart') is None:
            logger.warning(f"Event '{uid}' missing required field: dtstart")
            return False

        return True

    def _format_datetime(self, value) -> str:
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        raise ValueError(f"Unsupported date value: {value!r}")

    def _normalize_status(self, status) -> str:
        if status is None:
            return self.DEFAULT_STATUS
        normalized = str(status).strip().lower()
        if normalized in self.KNOWN_STATUSES:
            return normalized
        return self.DEFAULT_STATUS

    def _parse_organizer(self, organizer) -> Optional[Dict[str, str]]:
        if isinstance(organizer, list):
            organizer = organizer[0] if organizer else None
        if organizer is None:
            return None
        return self._parse_address(organizer)

    def _parse_attendees(self, attendees) -> List[Dict[str, str]]:
        if attendees is None:
            return []
        if not isinstance(attendees, list):
            attendees = [attendees]
        return [self._parse_address(attendee) for attendee in attendees]

    def _parse_address(self, address) -> Dict[str, str]:
        """Turn a CAL-ADDRESS into {'email': ..., 'name': ...}."""
        value = str(address).strip()
        if value.lower().startswith('mailto:'):
            value = value[len('mailto:'):]

        parsed = {'email': value}
        params = getattr(address, 'params', None) or {}
        name = params.get('CN')
        if name:
            parsed['name'] = str(name)
        return parsed

    def _parse_categories(self, categories) -> List[str]:
        """Flatten CATEGORIES, which may repeat and hold several values."""
        if categories is None:
            return []
        if not isinstance(categories, list):
            categories = [categories]

        flattened = []
        for category in categories:
            values = getattr(category, 'cats', None)
            if values is None:
                values = [category]
            flattened.extend(str(value) for value in values if str(value).strip())
        return flattened

    @staticmethod
    def _text(value) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None
