"""URL helpers for calendar sources."""
import re
from urllib.parse import urlparse

WEBCAL_PREFIX = re.compile(r'^webcal://', re.IGNORECASE)


def normalize_calendar_url(url: str) -> str:
    """
    Convert a webcal:// URL into its https:// equivalent.

    Args:
        url: Calendar URL as entered by the user

    Returns:
        URL with the webcal scheme replaced, or the input unchanged
    """
    return WEBCAL_PREFIX.sub('https://', url, count=1)


def is_valid_url(url: str) -> bool:
    """
    Check that a URL is well formed and uses http or https.

    Args:
        url: URL to validate

    Returns:
        True if valid, False otherwise
    """
    if not isinstance(url, str) or not url.strip():
        return False

    try:
        parsed = urlparse(url.strip())
        hostname = parsed.hostname
    except ValueError:
        return False

    return parsed.scheme in ('http', 'https') and bool(hostname)
