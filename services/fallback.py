"""
Fallback decision table for failed submissions.

    primary result                    enabled  is fallback  candidate  decision
    success                           *        *            *          NONE
    InvalidSpec                       *        *            *          NONE
    accepted, response unreadable     *        *            *          NONE
    Unavailable/Rejected/unexpected   no       *            *          NONE
    Unavailable/Rejected/unexpected   yes      yes          *          NONE
    Unavailable/Rejected/unexpected   yes      no           no         NONE
    Unavailable/Rejected/unexpected   yes      no           yes        RETRY_ON_SECONDARY

An order is retried on another provider at most once: the replacement
order carries fallback_of, and a fallback order never falls back again.

"Accepted, response unreadable" is a ParseError from create_order: the
vendor answered 2xx, so it holds the order and a second provider must
not be asked.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from core.exceptions import InvalidSpec, ParseError


class FallbackDecision(Enum):
    NONE = "none"
    RETRY_ON_SECONDARY = "retry_on_secondary"


def accepted_by_vendor(error: Optional[BaseException]) -> bool:
    """The vendor answered 2xx but the order id could not be read."""
    return isinstance(error, ParseError)


def decide_fallback(
    error: Optional[BaseException],
    fallback_enabled: bool,
    is_fallback_order: bool,
    has_candidate: bool
) -> FallbackDecision:
    """
    Args:
        error: Exception from the primary submission, None on success
        fallback_enabled: Operator switch
        is_fallback_order: The failed order already replaced another one
        has_candidate: Another adapter supports the spec

    Returns:
        FallbackDecision
    """
    if error is None or isinstance(error, InvalidSpec) or accepted_by_vendor(error):
        return FallbackDecision.NONE
    if not fallback_enabled or is_fallback_order or not has_candidate:
        return FallbackDecision.NONE
    return FallbackDecision.RETRY_ON_SECONDARY
