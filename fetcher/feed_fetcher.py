"""HTTP fetcher for remote iCal feeds."""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional

import requests
from icalendar import Calendar

from fetcher.urls import is_valid_url, normalize_calendar_url
from processor.models import ConnectionCheckResult, FetchOutcome

logger = logging.getLogger(__name__)

DNS_FAILURE_MARKERS = (
    'NameResolutionError',
    'Name or service not known',
    'nodename nor servname',
    'getaddrinfo failed',
    'Temporary failure in name resolution',
    'No address associated with hostname',
)


class DeadlineExceeded(requests.Timeout):
    """Raised when a download runs past its overall deadline."""


class FeedFetcher:
    """Fetches raw iCal text from calendar sources."""

    USER_AGENT = 'Calendar-Aggregator/1.0'
    ACCEPT = 'text/calendar, text/plain, */*'
    CALENDAR_MARKER = 'BEGIN:VCALENDAR'
    CHUNK_SIZE = 8192

    def __init__(
        self,
        max_retries: int = 0,
        retry_base_delay: float = 1.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the feed fetcher.

        Args:
            max_retries: Extra attempts after a transport failure (default: 0)
            retry_base_delay: First backoff delay in seconds, doubled per retry
            session: Optional requests session; module-level requests is used otherwise
        """
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.session = session

    def fetch(self, url: str, timeout_ms: int, source_id: int = 0) -> FetchOutcome:
        """
        Fetch the raw iCal content of one source.

        The whole call (connect, response and body read, any retries) is
        bounded by timeout_ms.

        Args:
            url: Source URL, webcal:// accepted
            timeout_ms: Hard deadline in milliseconds
            source_id: Identifier copied into the outcome

        Returns:
            FetchOutcome with raw_content on success or a readable error
        """
        normalized_url = normalize_calendar_url(url)
        if not is_valid_url(normalized_url):
            logger.warning(f"Rejected invalid calendar URL: {url}")
            return FetchOutcome(
                source_id=source_id,
                success=False,
                error=f"Invalid calendar URL: {url}"
            )

        deadline = time.monotonic() + timeout_ms / 1000.0
        attempts = self.max_retries + 1
        error = 'Unknown error occurred while fetching calendar'

        for attempt in range(attempts):
            retryable = True
            try:
                logger.info(
                    f"Fetching calendar feed {normalized_url} "
                    f"(attempt {attempt + 1}/{attempts})"
                )
                content = self._download(normalized_url, deadline)
            except requests.Timeout:
                error = f"Request timeout after {timeout_ms}ms"
            except requests.HTTPError as e:
                error = self._describe_http_error(e)
                # Client errors will not fix themselves on retry
                retryable = e.response is None or e.response.status_code >= 500
            except requests.ConnectionError as e:
                error = self._describe_connection_error(e)
            except requests.RequestException as e:
                error = f"Network error: {e}"
            else:
                if self.CALENDAR_MARKER not in content:
                    logger.warning(
                        f"Feed {normalized_url} returned no calendar data"
                    )
                    return FetchOutcome(
                        source_id=source_id,
                        success=False,
                        error='Response does not contain valid calendar data'
                    )
                return FetchOutcome(
                    source_id=source_id,
                    success=True,
                    raw_content=content
                )

            if not retryable or attempt == attempts - 1:
                break

            delay = self.retry_base_delay * (2 ** attempt)
            if time.monotonic() + delay >= deadline:
                break

            logger.warning(
                f"Fetch failed (attempt {attempt + 1}/{attempts}): {error}. "
                f"Retrying in {delay} seconds..."
            )
            time.sleep(delay)

        logger.error(f"Failed to fetch calendar feed {normalized_url}: {error}")
        return FetchOutcome(source_id=source_id, success=False, error=error)

    def check_connection(
        self,
        url: str,
        timeout_ms: int = 10000
    ) -> ConnectionCheckResult:
        """
        Probe a calendar URL and report whether it serves usable iCal data.

        Args:
            url: Calendar URL to probe
            timeout_ms: Request timeout in milliseconds

        Returns:
            ConnectionCheckResult describing the response
        """
        started = time.monotonic()

        if not is_valid_url(normalize_calendar_url(url)):
            return ConnectionCheckResult(is_valid=False, error='Invalid URL format')

        try:
            response = self._get(
                normalize_calendar_url(url),
                timeout=timeout_ms / 1000.0,
                stream=False
            )
        except requests.Timeout:
            return ConnectionCheckResult(
                is_valid=False,
                error=f"Connection timeout after {timeout_ms}ms",
                response_time=self._elapsed_ms(started)
            )
        except requests.ConnectionError:
            return ConnectionCheckResult(
                is_valid=False,
                error='Unable to connect to server',
                response_time=self._elapsed_ms(started)
            )
        except requests.RequestException as e:
            return ConnectionCheckResult(
                is_valid=False,
                error=f"Network error: {e}",
                response_time=self._elapsed_ms(started)
            )

        response_time = self._elapsed_ms(started)
        content_type = response.headers.get('Content-Type', '')
        status = response.status_code

        if status >= 500:
            return ConnectionCheckResult(
                is_valid=False,
                error=(
                    f"Server error ({status}): "
                    f"Calendar server is temporarily unavailable"
                ),
                status_code=status,
                content_type=content_type,
                response_time=response_time
            )

        if status >= 400:
            return ConnectionCheckResult(
                is_valid=False,
                error=f"Access denied ({status}): {response.reason}",
                status_code=status,
                content_type=content_type,
                response_time=response_time
            )

        body = self._decode(response.content, content_type)
        if 'text/calendar' not in content_type and self.CALENDAR_MARKER not in body:
            return ConnectionCheckResult(
                is_valid=False,
                error='Response does not appear to contain calendar data',
                warnings=[
                    'Content-Type is not text/calendar',
                    'No VCALENDAR data found'
                ],
                status_code=status,
                content_type=content_type,
                response_time=response_time
            )

        try:
            calendar = Calendar.from_ical(body)
            event_count = len(calendar.walk('VEVENT'))
        except ValueError as e:
            logger.warning(f"Failed to parse calendar data from {url}: {e}")
            return ConnectionCheckResult(
                is_valid=False,
                error='Failed to parse calendar data',
                status_code=status,
                content_type=content_type,
                has_calendar_data=True,
                response_time=response_time
            )

        return ConnectionCheckResult(
            is_valid=True,
            status_code=status,
            content_type=content_type,
            has_calendar_data=True,
            event_count=event_count,
            response_time=response_time
        )

    def _download(self, url: str, deadline: float) -> str:
        """
        Download a feed body, giving up once the deadline passes.

        The request runs on a worker thread so that a server trickling its
        body cannot hold the caller past the deadline. A worker still
        reading at the deadline is abandoned and stops once its current read
        returns.

        Args:
            url: Normalized feed URL
            deadline: time.monotonic() value after which the fetch fails

        Returns:
            Decoded response body

        Raises:
            requests.RequestException: On transport failure, HTTP error
                status, or when the deadline passes
        """
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise DeadlineExceeded('Deadline passed before request started')

        executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix='feed-download'
        )
        try:
            future = executor.submit(self._read_body, url, deadline)
            try:
                return future.result(timeout=remaining)
            except FutureTimeoutError:
                raise DeadlineExceeded(
                    'Deadline passed while reading body'
                ) from None
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _read_body(self, url: str, deadline: float) -> str:
        remaining = max(deadline - time.monotonic(), 0.001)

        with self._get(url, timeout=remaining, stream=True) as response:
            response.raise_for_status()

            chunks = []
            for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise DeadlineExceeded('Deadline passed while reading body')
                chunks.append(chunk)

            return self._decode(
                b''.join(chunks),
                response.headers.get('Content-Type', '')
            )

    def _get(self, url: str, timeout: float, stream: bool) -> requests.Response:
        http = self.session or requests
        return http.get(
            url,
            headers={
                'User-Agent': self.USER_AGENT,
                'Accept': self.ACCEPT
            },
            timeout=timeout,
            stream=stream
        )

    def _decode(self, body: bytes, content_type: str) -> str:
        """Decode a body as UTF-8 unless the server names another charset."""
        encoding = 'utf-8'
        for param in content_type.split(';')[1:]:
            name, _, value = param.strip().partition('=')
            if name.lower() == 'charset' and value:
                encoding = value.strip('"\'')

        try:
            return body.decode(encoding, errors='replace')
        except LookupError:
            return body.decode('utf-8', errors='replace')

    def _describe_http_error(self, error: requests.HTTPError) -> str:
        response = error.response
        if response is None:
            return f"Network error: {error}"
        return f"HTTP {response.status_code}: {response.reason}"

    def _describe_connection_error(self, error: requests.ConnectionError) -> str:
        text = str(error)
        if any(marker in text for marker in DNS_FAILURE_MARKERS):
            return 'Calendar server not found'
        if 'Connection refused' in text or 'ConnectionRefusedError' in text:
            return 'Connection refused by calendar server'
        return f"Unable to connect to calendar server: {error}"

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
