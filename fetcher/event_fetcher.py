"""Fetches calendar sources into structured events."""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from icalendar import Calendar

from fetcher.feed_fetcher import FeedFetcher
from processor.event_processor import EventProcessor
from processor.models import CalendarSource, EventFetchResult

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StructuredEventFetcher:
    """Fetches sources and converts their VEVENTs into CalendarEvents."""

    JOIN_GRACE_SECONDS = 0.25

    def __init__(
        self,
        fetcher: Optional[FeedFetcher] = None,
        processor: Optional[EventProcessor] = None
    ):
        self.fetcher = fetcher or FeedFetcher()
        self.processor = processor or EventProcessor()

    def fetch_events(
        self,
        source: CalendarSource,
        timeout_ms: int = 10000
    ) -> EventFetchResult:
        """
        Fetch and parse the events of a single source.

        Args:
            source: Calendar source to fetch
            timeout_ms: Request deadline in milliseconds

        Returns:
            EventFetchResult; failures are reported in errors, never raised
        """
        started = time.monotonic()
        result = EventFetchResult(
            success=False,
            calendar_id=source.id,
            fetched_at=_utc_now()
        )

        outcome = self.fetcher.fetch(source.url, timeout_ms, source_id=source.id)
        result.response_time = int((time.monotonic() - started) * 1000)

        if not outcome.success:
            result.errors.append(outcome.error or 'Unknown error')
            return result

        try:
            calendar = Calendar.from_ical(outcome.raw_content)
        except ValueError as e:
            logger.warning(f"Failed to parse calendar '{source.name}': {e}")
            result.errors.append(f"Failed to parse calendar data: {e}")
            return result

        events, skipped = self.processor.process_events(
            calendar.walk('VEVENT'),
            source.id
        )

        if skipped > 0:
            result.warnings.append(
                f"Skipped {skipped} events due to missing required fields"
            )

        result.events = events
        result.events_count = len(events)
        result.success = True

        logger.info(
            f"Fetched {len(events)} events from calendar '{source.name}'",
            extra={'response_time_ms': result.response_time}
        )
        return result

    def fetch_multiple(
        self,
        sources: Sequence[CalendarSource],
        timeout_ms: int = 10000
    ) -> List[EventFetchResult]:
        """
        Fetch every enabled source concurrently.

        Each source is waited on no longer than timeout_ms plus a short
        grace period; a source still running after that is reported as a
        timeout and its thread is abandoned.

        Args:
            sources: Calendar sources; disabled ones are ignored
            timeout_ms: Deadline applied to each source

        Returns:
            One result per enabled source, in input order
        """
        enabled_sources = [source for source in sources if source.enabled]
        if not enabled_sources:
            return []

        executor = ThreadPoolExecutor(
            max_workers=len(enabled_sources),
            thread_name_prefix='event-fetch'
        )
        results = []

        try:
            futures = [
                executor.submit(self.fetch_events, source, timeout_ms)
                for source in enabled_sources
            ]
            deadline = (
                time.monotonic() + timeout_ms / 1000.0 + self.JOIN_GRACE_SECONDS
            )

            for source, future in zip(enabled_sources, futures):
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
                        self._failed_result(
                            source, f"Request timeout after {timeout_ms}ms"
                        )
                    )
                except Exception as e:
                    logger.error(
                        f"Unexpected error fetching events for '{source.name}': {e}",
                        extra={'error_type': type(e).__name__},
                        exc_info=True
                    )
                    results.append(
                        self._failed_result(source, f"Unexpected error: {e}")
                    )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return results

    @staticmethod
    def _failed_result(source: CalendarSource, error: str) -> EventFetchResult:
        return EventFetchResult(
            success=False,
            calendar_id=source.id,
            errors=[error],
            fetched_at=_utc_now()
        )
