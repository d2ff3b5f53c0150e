"""Removes components that repeat an identity key."""
import logging
from typing import Iterable, List

from processor.models import ExtractedComponent

logger = logging.getLogger(__name__)


def dedupe(components: Iterable[ExtractedComponent]) -> List[ExtractedComponent]:
    """
    Drop components whose identity key was already seen.

    The first occurrence wins and input order is preserved. Components
    without a key are always kept.

    Args:
        components: Components of a single kind, in priority order

    Returns:
        List of unique components
    """
    seen_keys = set()
    unique = []

    for component in components:
        key = component.identity_key
        if key is None:
            unique.append(component)
            continue

        if key in seen_keys:
            logger.debug(f"Dropping duplicate {component.kind.value} with key {key}")
            continue

        seen_keys.add(key)
        unique.append(component)

    return unique
