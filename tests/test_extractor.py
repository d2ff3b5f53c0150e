"""Unit tests for the component extractor."""
from processor.extractor import extract_components, extract_identity_key
from processor.models import ComponentKind
from ical_samples import NEW_YORK_TIMEZONE, make_calendar, make_event


class TestExtractEvents:
    """Test cases for VEVENT extraction."""

    def test_extracts_events_in_document_order(self):
        """Test that each VEVENT block is returned with its UID."""
        raw = make_calendar(make_event('e1'), make_event('e2'))

        events = extract_components(raw, ComponentKind.EVENT)

        assert [event.identity_key for event in events] == ['e1', 'e2']
        assert all(event.kind is ComponentKind.EVENT for event in events)

    def test_block_kept_verbatim(self):
        """Test that the block text is preserved including markers."""
        event = make_event('e1', extra_lines=['LOCATION:Room 4'])
        raw = make_calendar(event)

        events = extract_components(raw, ComponentKind.EVENT)

        assert events[0].content == event

    def test_lf_line_endings_rejoined_with_crlf(self):
        """Test that LF-only input produces CRLF-joined blocks."""
        raw = make_calendar(make_event('e1'), line_ending='\n')

        events = extract_components(raw, ComponentKind.EVENT)

        assert len(events) == 1
        assert events[0].content == make_event('e1')

    def test_nested_alarm_stays_inside_event(self):
        """Test that VALARM sub-blocks are part of the event."""
        event = make_event('e1', extra_lines=[
            'BEGIN:VALARM',
            'ACTION:DISPLAY',
            'TRIGGER:-PT15M',
            'END:VALARM',
        ])

        events = extract_components(make_calendar(event), ComponentKind.EVENT)

        assert len(events) == 1
        assert 'BEGIN:VALARM' in events[0].content

    def test_unterminated_event_dropped(self):
        """Test that an event still open at end of input is not emitted."""
        raw = '\r\n'.join([
            'BEGIN:VCALENDAR',
            make_event('e1'),
            'BEGIN:VEVENT',
            'UID:broken',
            'SUMMARY:Never closed',
        ])

        events = extract_components(raw, ComponentKind.EVENT)

        assert [event.identity_key for event in events] == ['e1']

    def test_event_without_uid(self):
        """Test that an event with no UID has no identity key."""
        events = extract_components(
            make_calendar(make_event(None)), ComponentKind.EVENT
        )

        assert len(events) == 1
        assert events[0].identity_key is None

    def test_markers_with_surrounding_whitespace(self):
        """Test that BEGIN/END markers are matched after trimming."""
        raw = 'BEGIN:VEVENT  \r\nUID:e1\r\n  END:VEVENT\r\n'

        events = extract_components(raw, ComponentKind.EVENT)

        assert len(events) == 1
        assert events[0].identity_key == 'e1'

    def test_no_events(self):
        """Test that a calendar without events yields nothing."""
        assert extract_components(make_calendar(), ComponentKind.EVENT) == []
        assert extract_components('', ComponentKind.EVENT) == []


class TestExtractTimezones:
    """Test cases for VTIMEZONE extraction."""

    def test_timezone_with_sub_blocks(self):
        """Test that STANDARD/DAYLIGHT sub-blocks stay in one timezone."""
        raw = make_calendar(NEW_YORK_TIMEZONE, make_event('e1'))

        timezones = extract_components(raw, ComponentKind.TIMEZONE)

        assert len(timezones) == 1
        assert timezones[0].identity_key == 'America/New_York'
        assert timezones[0].content == NEW_YORK_TIMEZONE

    def test_nested_timezone_closes_at_outer_end(self):
        """Test that a nested VTIMEZONE only closes with the outer END."""
        raw = '\r\n'.join([
            'BEGIN:VTIMEZONE',
            'TZID:Outer/Zone',
            'BEGIN:VTIMEZONE',
            'TZID:Inner/Zone',
            'END:VTIMEZONE',
            'X-AFTER-INNER:1',
            'END:VTIMEZONE',
        ])

        timezones = extract_components(raw, ComponentKind.TIMEZONE)

        assert len(timezones) == 1
        assert timezones[0].identity_key == 'Outer/Zone'
        assert timezones[0].content.endswith('X-AFTER-INNER:1\r\nEND:VTIMEZONE')

    def test_unterminated_timezone_dropped(self):
        """Test that an open timezone at end of input is not emitted."""
        raw = 'BEGIN:VTIMEZONE\r\nTZID:Europe/Paris\r\nBEGIN:STANDARD\r\n'

        assert extract_components(raw, ComponentKind.TIMEZONE) == []

    def test_events_ignored_when_extracting_timezones(self):
        """Test that only the requested kind is returned."""
        raw = make_calendar(make_event('e1'))

        assert extract_components(raw, ComponentKind.TIMEZONE) == []


class TestExtractIdentityKey:
    """Test cases for extract_identity_key."""

    def test_uid_for_events(self):
        """Test that the UID line provides the event key."""
        assert extract_identity_key(make_event('abc123'), ComponentKind.EVENT) == 'abc123'

    def test_tzid_for_timezones(self):
        """Test that the TZID line provides the timezone key."""
        assert (
            extract_identity_key(NEW_YORK_TIMEZONE, ComponentKind.TIMEZONE)
            == 'America/New_York'
        )

    def test_folded_key_uses_first_line_only(self):
        """Test that continuation lines of a folded UID are not unfolded."""
        content = 'BEGIN:VEVENT\r\nUID:very-long-ident\r\n ifier@example.com\r\nEND:VEVENT'

        assert extract_identity_key(content, ComponentKind.EVENT) == 'very-long-ident'

    def test_parameterized_uid_not_matched(self):
        """Test that only lines starting with the exact property prefix match."""
        content = 'BEGIN:VEVENT\r\nUID;X-PARAM=1:abc\r\nEND:VEVENT'

        assert extract_identity_key(content, ComponentKind.EVENT) is None

    def test_empty_key_treated_as_missing(self):
        """Test that a blank UID value counts as no key."""
        content = 'BEGIN:VEVENT\r\nUID:   \r\nEND:VEVENT'

        assert extract_identity_key(content, ComponentKind.EVENT) is None
