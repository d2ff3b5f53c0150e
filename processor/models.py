"""Data models for calendar aggregation."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class CalendarSource:
    """Remote calendar feed configured in a collection."""
    id: int
    url: str
    name: str
    color: str = '#3b82f6'
    enabled: bool = True
    created_at: str = ''
    sync_status: str = 'idle'
    last_sync_at: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CalendarSource':
        """Build a source from its camelCase wire representation."""
        return cls(
            id=int(data['id']),
            url=data['url'],
            name=data['name'],
            color=data.get('color', '#3b82f6'),
            enabled=bool(data.get('enabled', True)),
            created_at=data.get('createdAt', ''),
            sync_status=data.get('syncStatus', 'idle'),
            last_sync_at=data.get('lastSyncAt'),
            error_message=data.get('errorMessage')
        )

    def to_dict(self) -> Dict[str, Any]:
        item = {
            'id': self.id,
            'url': self.url,
            'name': self.name,
            'color': self.color,
            'enabled': self.enabled,
            'createdAt': self.created_at,
            'syncStatus': self.sync_status
        }

        if self.last_sync_at:
            item['lastSyncAt'] = self.last_sync_at
        if self.error_message:
            item['errorMessage'] = self.error_message

        return item


@dataclass
class CalendarCollection:
    """Named group of calendar sources addressed by a GUID."""
    guid: str
    name: str
    calendars: List[CalendarSource]
    description: Optional[str] = None
    created_at: str = ''
    updated_at: Optional[str] = None

    def enabled_calendars(self) -> List[CalendarSource]:
        return [calendar for calendar in self.calendars if calendar.enabled]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CalendarCollection':
        return cls(
            guid=data['guid'],
            name=data['name'],
            calendars=[
                CalendarSource.from_dict(calendar)
                for calendar in data.get('calendars', [])
            ],
            description=data.get('description'),
            created_at=data.get('createdAt', ''),
            updated_at=data.get('updatedAt')
        )

    def to_dict(self) -> Dict[str, Any]:
        item = {
            'guid': self.guid,
            'name': self.name,
            'calendars': [calendar.to_dict() for calendar in self.calendars],
            'createdAt': self.created_at
        }

        if self.description:
            item['description'] = self.description
        if self.updated_at:
            item['updatedAt'] = self.updated_at

        return item


@dataclass
class FetchOutcome:
    """Result of fetching one source's raw feed."""
    source_id: int
    success: bool
    raw_content: Optional[str] = None
    error: Optional[str] = None


class ComponentKind(str, Enum):
    """iCal component types the extractor slices out."""
    EVENT = 'VEVENT'
    TIMEZONE = 'VTIMEZONE'

    @property
    def key_property(self) -> str:
        return 'UID' if self is ComponentKind.EVENT else 'TZID'


@dataclass(frozen=True)
class ExtractedComponent:
    """Verbatim BEGIN/END block taken from a feed."""
    kind: ComponentKind
    content: str
    identity_key: Optional[str]


@dataclass(frozen=True)
class CombineResult:
    """Outcome of combining several feeds into one document."""
    success: bool
    ical_content: str
    events_count: int
    calendars_processed: int
    errors: tuple = ()
    warnings: tuple = ()

    @property
    def is_partial(self) -> bool:
        """True when the document was built but some sources failed."""
        return self.success and len(self.errors) > 0


@dataclass
class CalendarEvent:
    """Event converted from a VEVENT for JSON consumers."""
    id: str
    title: str
    start: str
    end: str
    is_all_day: bool
    is_recurring: bool
    status: str
    calendar_id: int
    source_id: str
    description: Optional[str] = None
    location: Optional[str] = None
    organizer: Optional[Dict[str, str]] = None
    attendees: Optional[List[Dict[str, str]]] = None
    recurrence_rule: Optional[str] = None
    categories: Optional[List[str]] = None
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to the camelCase JSON shape.

        Optional fields are left out entirely when absent.
        """
        item = {
            'id': self.id,
            'title': self.title,
            'start': self.start,
            'end': self.end,
            'isAllDay': self.is_all_day,
            'isRecurring': self.is_recurring,
            'status': self.status,
            'calendarId': self.calendar_id,
            'sourceId': self.source_id
        }

        optional_fields = {
            'description': self.description,
            'location': self.location,
            'organizer': self.organizer,
            'attendees': self.attendees,
            'recurrenceRule': self.recurrence_rule,
            'categories': self.categories,
            'url': self.url
        }
        for key, value in optional_fields.items():
            if value:
                item[key] = value

        return item


@dataclass
class EventFetchResult:
    """Structured fetch result for a single source."""
    success: bool
    calendar_id: int
    events: List[CalendarEvent] = field(default_factory=list)
    events_count: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    fetched_at: str = ''
    response_time: int = 0


@dataclass
class ConnectionCheckResult:
    """Diagnostics from probing a calendar URL."""
    is_valid: bool
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    has_calendar_data: bool = False
    event_count: int = 0
    response_time: int = 0
