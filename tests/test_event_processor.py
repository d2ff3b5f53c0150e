"""Unit tests for EventProcessor."""
import pytest
from icalendar import Calendar

from processor.event_processor import EventProcessor
from ical_samples import make_calendar, make_event


def _vevents(*blocks):
    return Calendar.from_ical(make_calendar(*blocks)).walk('VEVENT')


class TestEventProcessor:
    """Test cases for EventProcessor class."""

    def test_process_events_valid_event(self):
        """Test converting a fully populated event."""
        processor = EventProcessor()
        components = _vevents(make_event('e1', summary='Planning', extra_lines=[
            'DESCRIPTION:Quarterly planning',
            'LOCATION:Room 4',
            'STATUS:TENTATIVE',
            'URL:https://example.com/e1',
            'ORGANIZER;CN=Jane Doe:mailto:jane@example.com',
            'ATTENDEE;CN=Bob:mailto:bob@example.com',
            'ATTENDEE:mailto:carol@example.com',
            'CATEGORIES:Work,Meeting',
            'RRULE:FREQ=WEEKLY;BYDAY=MO',
        ]))

        events, skipped = processor.process_events(components, calendar_id=3)

        assert skipped == 0
        assert len(events) == 1
        event = events[0]

        assert event.id == 'e1'
        assert event.source_id == 'e1'
        assert event.calendar_id == 3
        assert event.title == 'Planning'
        assert event.start == '2024-01-15T10:00:00+00:00'
        assert event.end == '2024-01-15T11:00:00+00:00'
        assert event.is_all_day is False
        assert event.is_recurring is True
        assert event.recurrence_rule == 'FREQ=WEEKLY;BYDAY=MO'
        assert event.status == 'tentative'
        assert event.description == 'Quarterly planning'
        assert event.location == 'Room 4'
        assert event.url == 'https://example.com/e1'
        assert event.organizer == {'email': 'jane@example.com', 'name': 'Jane Doe'}
        assert event.attendees == [
            {'email': 'bob@example.com', 'name': 'Bob'},
            {'email': 'carol@example.com'},
        ]
        assert event.categories == ['Work', 'Meeting']

    def test_process_events_minimal_event_omits_optional_fields(self):
        """Test that absent optional fields are left out of the JSON shape."""
        processor = EventProcessor()

        events, _ = processor.process_events(_vevents(make_event('e1')), calendar_id=1)

        data = events[0].to_dict()
        assert data['status'] == 'confirmed'
        assert data['isRecurring'] is False
        for key in ('description', 'location', 'organizer', 'attendees',
                    'recurrenceRule', 'categories', 'url'):
            assert key not in data

    def test_process_events_all_day(self):
        """Test that date-only DTSTART marks an all-day event."""
        processor = EventProcessor()
        block = '\r\n'.join([
            'BEGIN:VEVENT',
            'UID:holiday',
            'SUMMARY:Holiday',
            'DTSTART;VALUE=DATE:20240120',
            'END:VEVENT',
        ])

        events, _ = processor.process_events(_vevents(block), calendar_id=1)

        assert events[0].is_all_day is True
        assert events[0].start == '2024-01-20'
        assert events[0].end == '2024-01-20'

    @pytest.mark.parametrize('missing', ['UID', 'SUMMARY', 'DTSTART'])
    def test_process_events_missing_required_fields(self, missing):
        """Test that events lacking UID, SUMMARY or DTSTART are skipped."""
        processor = EventProcessor()
        lines = [
            'BEGIN:VEVENT',
            'UID:e1',
            'SUMMARY:Title',
            'DTSTART:20240115T100000Z',
            'END:VEVENT',
        ]
        block = '\r\n'.join(line for line in lines if not line.startswith(missing))

        events, skipped = processor.process_events(
            _vevents(block, make_event('ok')), calendar_id=1
        )

        assert [event.id for event in events] == ['ok']
        assert skipped == 1

    def test_unknown_status_defaults_to_confirmed(self):
        """Test that unexpected STATUS values fall back to confirmed."""
        processor = EventProcessor()

        events, _ = processor.process_events(
            _vevents(make_event('e1', extra_lines=['STATUS:X-CUSTOM'])),
            calendar_id=1
        )

        assert events[0].status == 'confirmed'

    def test_cancelled_status(self):
        """Test that STATUS values are lower-cased."""
        processor = EventProcessor()

        events, _ = processor.process_events(
            _vevents(make_event('e1', extra_lines=['STATUS:CANCELLED'])),
            calendar_id=1
        )

        assert events[0].status == 'cancelled'

    def test_repeated_categories_flattened(self):
        """Test that several CATEGORIES lines are merged into one list."""
        processor = EventProcessor()

        events, _ = processor.process_events(
            _vevents(make_event('e1', extra_lines=[
                'CATEGORIES:Work',
                'CATEGORIES:Travel,Client',
            ])),
            calendar_id=1
        )

        assert events[0].categories == ['Work', 'Travel', 'Client']

    def test_repeated_organizer_uses_first(self):
        """Test that only the first of several ORGANIZER lines is kept."""
        processor = EventProcessor()

        events, _ = processor.process_events(
            _vevents(make_event('e1', extra_lines=[
                'ORGANIZER;CN=Jane Doe:mailto:jane@example.com',
                'ORGANIZER:mailto:backup@example.com',
            ])),
            calendar_id=1
        )

        assert events[0].organizer == {'email': 'jane@example.com', 'name': 'Jane Doe'}

    def test_repeated_rrule_uses_first(self):
        """Test that only the first of several RRULE lines is serialized."""
        processor = EventProcessor()

        events, _ = processor.process_events(
            _vevents(make_event('e1', extra_lines=[
                'RRULE:FREQ=WEEKLY;BYDAY=MO',
                'RRULE:FREQ=MONTHLY;BYMONTHDAY=1',
            ])),
            calendar_id=1
        )

        assert events[0].is_recurring is True
        assert events[0].recurrence_rule == 'FREQ=WEEKLY;BYDAY=MO'
