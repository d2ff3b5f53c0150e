"""Slices VEVENT and VTIMEZONE blocks out of raw iCal text."""
import re
from typing import List, Optional

from processor.models import ComponentKind, ExtractedComponent

LINE_BREAK = re.compile(r'\r?\n')
CRLF = '\r\n'


def extract_components(raw_text: str, kind: ComponentKind) -> List[ExtractedComponent]:
    """
    Extract complete components of one kind from iCal text.

    Blocks are kept verbatim, re-joined with CRLF. Only the outermost
    BEGIN/END pair of the requested kind is tracked; nested blocks of the
    same timezone kind stay inside their parent. A block still open at the end of
    the input is dropped.

    Args:
        raw_text: Raw iCal document
        kind: Component kind to extract

    Returns:
        List of ExtractedComponent objects in document order
    """
    begin_marker = f"BEGIN:{kind.value}"
    end_marker = f"END:{kind.value}"

    components = []
    current: List[str] = []
    depth = 0

    for line in LINE_BREAK.split(raw_text):
        marker = line.strip()

        if marker == begin_marker:
            # An event cannot contain another; a repeated BEGIN restarts it
            depth = 1 if kind is ComponentKind.EVENT else depth + 1
            if depth == 1:
                current = [line]
            else:
                current.append(line)
        elif marker == end_marker and depth > 0:
            depth -= 1
            current.append(line)
            if depth == 0:
                content = CRLF.join(current)
                components.append(
                    ExtractedComponent(
                        kind=kind,
                        content=content,
                        identity_key=extract_identity_key(content, kind)
                    )
                )
                current = []
        elif depth > 0:
            current.append(line)

    return components


def extract_identity_key(content: str, kind: ComponentKind) -> Optional[str]:
    """
    Find the UID (events) or TZID (timezones) of a component.

    Only the first physical line is read, so a key folded across
    continuation lines is truncated to its first segment.

    Args:
        content: Component text
        kind: Component kind, selects the key property

    Returns:
        Key value, or None if the component has no usable key
    """
    prefix = f"{kind.key_property}:"

    for line in LINE_BREAK.split(content):
        if line.startswith(prefix):
            key = line[len(prefix):].strip()
            return key or None

    return None
