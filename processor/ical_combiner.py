"""Combines several remote iCal feeds into one document."""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from fetcher.feed_fetcher import FeedFetcher
from processor.deduplicator import dedupe
from processor.extractor import CRLF, extract_components
from processor.models import (
    CalendarSource,
    CombineResult,
    ComponentKind,
    ExtractedComponent,
    FetchOutcome,
)

logger = logging.getLogger(__name__)

MIN_TIMEOUT_MS = 1000
MAX_TIMEOUT_MS = 30000
DEFAULT_TIMEOUT_MS = 15000

CALENDAR_HEADER = (
    'BEGIN:VCALENDAR',
    'VERSION:2.0',
    'PRODID:-//Calendar Aggregator//EN',
    'CALSCALE:GREGORIAN',
    'METHOD:PUBLISH',
)
CALENDAR_FOOTER = 'END:VCALENDAR'


@dataclass
class SourceResult:
    """Fetch outcome of one source plus the components taken from it."""
    outcome: FetchOutcome
    events: List[ExtractedComponent] = field(default_factory=list)
    timezones: List[ExtractedComponent] = field(default_factory=list)


def validate_timeout(timeout_ms: int) -> None:
    """
    Reject timeouts outside the supported range.

    Raises:
        ValueError: If timeout_ms is not an int within bounds
    """
    if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int):
        raise ValueError(f"Timeout must be an integer, got {timeout_ms!r}")

    if not MIN_TIMEOUT_MS <= timeout_ms <= MAX_TIMEOUT_MS:
        raise ValueError(
            f"Timeout must be between {MIN_TIMEOUT_MS}ms and "
            f"{MAX_TIMEOUT_MS}ms, got {timeout_ms}ms"
        )


def serialize_calendar(
    timezones: Sequence[ExtractedComponent],
    events: Sequence[ExtractedComponent]
) -> str:
    """
    Build an iCal document from extracted blocks.

    Timezones are written before events so every TZID an event references
    is already defined.
    """
    parts = list(CALENDAR_HEADER)
    parts.extend(component.content for component in timezones)
    parts.extend(component.content for component in events)
    parts.append(CALENDAR_FOOTER)
    return CRLF.join(parts)


class FeedCombiner:
    """Fetches enabled sources concurrently and merges their components."""

    # Slack on top of the per-source timeout before the join gives up
    JOIN_GRACE_SECONDS = 0.25

    def __init__(self, fetcher: Optional[FeedFetcher] = None):
        """
        Initialize the combiner.

        Args:
            fetcher: FeedFetcher used for every source (default: no retries)
        """
        self.fetcher = fetcher or FeedFetcher()

    def combine(
        self,
        sources: Sequence[CalendarSource],
        timeout_ms: int = DEFAULT_TIMEOUT_MS
    ) -> CombineResult:
        """
        Combine the enabled sources into one iCal document.

        Per-source failures are reported in the result and never raised.

        Args:
            sources: Calendar sources in priority order
            timeout_ms: Deadline applied independently to each source

        Returns:
            CombineResult with the document and diagnostics

        Raises:
            ValueError: If timeout_ms is out of range
        """
        validate_timeout(timeout_ms)

        if not sources:
            return self._failure(['No calendars provided'], [])

        enabled_sources = [source for source in sources if source.enabled]
        if not enabled_sources:
            return self._failure(['No enabled calendars found'], [])

        logger.info(
            f"Combining {len(enabled_sources)} enabled calendars",
            extra={'timeout_ms': timeout_ms}
        )

        results = self._fetch_all(enabled_sources, timeout_ms)

        errors = []
        warnings = []
        all_events = []
        all_timezones = []
        calendars_processed = 0

        for source, result in zip(enabled_sources, results):
            name = source.name or 'Unknown'

            if not result.outcome.success:
                reason = result.outcome.error or 'Unknown error'
                errors.append(f'Failed to fetch calendar "{name}": {reason}')
                continue

            calendars_processed += 1
            all_events.extend(result.events)
            all_timezones.extend(result.timezones)

            if not result.events:
                warnings.append(f"No events found in calendar: {name}")

        if calendars_processed == 0:
            errors.append('No calendars could be fetched successfully')
            return self._failure(errors, warnings)

        unique_events = dedupe(all_events)
        unique_timezones = dedupe(all_timezones)

        duplicate_count = len(all_events) - len(unique_events)
        if duplicate_count > 0:
            warnings.append(f"Removed {duplicate_count} duplicate events")

        logger.info(
            f"Combined {len(unique_events)} events from "
            f"{calendars_processed}/{len(enabled_sources)} calendars",
            extra={
                'events_count': len(unique_events),
                'timezones_count': len(unique_timezones),
                'duplicates_removed': duplicate_count,
                'errors': len(errors)
            }
        )

        return CombineResult(
            success=True,
            ical_content=serialize_calendar(unique_timezones, unique_events),
            events_count=len(unique_events),
            calendars_processed=calendars_processed,
            errors=tuple(errors),
            warnings=tuple(warnings)
        )

    def _fetch_all(
        self,
        sources: List[CalendarSource],
        timeout_ms: int
    ) -> List[SourceResult]:
        """
        Run one task per source and wait for all of them to settle.

        Every task starts immediately, so a single deadline measured from
        submission bounds each source by its own timeout. Results are
        positioned to match the input order.
        """
        executor = ThreadPoolExecutor(
            max_workers=len(sources),
            thread_name_prefix='feed-fetch'
        )
        results = []

        try:
            futures = [
                executor.submit(self._process_source, source, timeout_ms)
                for source in sources
            ]
            deadline = (
                time.monotonic() + timeout_ms / 1000.0 + self.JOIN_GRACE_SECONDS
            )

            for source, future in zip(sources, futures):
                remaining = max(0.0, deadline - time.monotonic())
                try:
                    results.append(future.result(timeout=remaining))
                except FutureTimeoutError:
                    future.cancel()
                    logger.warning(
                        f"Calendar '{source.name}' did not finish within "
                        f"{timeout_ms}ms"
                    )
                    results.append(
                        self._failed_source(
                            source, f"Request timeout after {timeout_ms}ms"
                        )
                    )
                except Exception as e:
                    logger.error(
                        f"Unexpected error fetching calendar '{source.name}': {e}",
                        extra={'error_type': type(e).__name__},
                        exc_info=True
                    )
                    results.append(
                        self._failed_source(source, f"Unexpected error: {e}")
                    )
        finally:
            # Hung fetches are abandoned, not awaited
            executor.shutdown(wait=False, cancel_futures=True)

        return results

    def _process_source(self, source: CalendarSource, timeout_ms: int) -> SourceResult:
        outcome = self.fetcher.fetch(source.url, timeout_ms, source_id=source.id)
        if not outcome.success:
            return SourceResult(outcome=outcome)

        events = extract_components(outcome.raw_content, ComponentKind.EVENT)
        timezones = extract_components(outcome.raw_content, ComponentKind.TIMEZONE)
        logger.info(
            f"Extracted {len(events)} events and {len(timezones)} timezones "
            f"from calendar '{source.name}'"
        )
        return SourceResult(outcome=outcome, events=events, timezones=timezones)

    @staticmethod
    def _failed_source(source: CalendarSource, error: str) -> SourceResult:
        return SourceResult(
            outcome=FetchOutcome(source_id=source.id, success=False, error=error)
        )

    @staticmethod
    def _failure(errors: List[str], warnings: List[str]) -> CombineResult:
        logger.warning(f"Combine failed: {'; '.join(errors)}")
        return CombineResult(
            success=False,
            ical_content='',
            events_count=0,
            calendars_processed=0,
            errors=tuple(errors),
            warnings=tuple(warnings)
        )


def combine_ical_feeds(
    sources: Sequence[CalendarSource],
    timeout_ms: int = DEFAULT_TIMEOUT_MS
) -> CombineResult:
    """Combine sources with a default FeedCombiner."""
    return FeedCombiner().combine(sources, timeout_ms)
