"""
Lead Matcher -- Radius & Prompt State
=====================================

Derives, for one service request, which search radius is active right
now, which expansion prompts the requester should see, and whether
matching is finished. The whole state is recomputed from the request
record on every observation; nothing is carried between calls, so missed
writes and concurrent observers need no coordination.

PHASES (elapsed minutes since the request was created):

  Phase 1  [0, 3)   3 km.  From minute 2, a request with 7+ quotes and no
                    8 km approval shows the 8 km prompt early.
  Phase 2  [3, 5)   8 km, unless 7+ quotes without 8 km approval, which
                    holds at 3 km with the 8 km prompt. At 8 km with 7+
                    quotes and no 15 km approval the 15 km prompt shows.
  Phase 3  [5, ...) 15 km, unless 15+ quotes without 15 km approval,
                    which holds at 8 km with the 15 km prompt. Matching is
                    finished. After minute 7 with fewer than 10 quotes the
                    modify warning shows until dismissed.

A stopped request keeps its stored radius and is finished. Otherwise the
stored radius is not consulted: a hold can pull a request that already
expanded back to the last approved tier.

Key functions:
  - get_matching_state  -- the calculator, pure given ``now``
  - is_request_stale    -- no quotes long after creation
  - phase_label         -- "Phase 1/2/3" for a radius
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TIER_1_RADIUS_KM: int = 3
TIER_2_RADIUS_KM: int = 8
TIER_3_RADIUS_KM: int = 15

RADIUS_TIERS_KM: tuple[int, ...] = (
    TIER_1_RADIUS_KM,
    TIER_2_RADIUS_KM,
    TIER_3_RADIUS_KM,
)

# Phase boundaries in minutes
TIER_2_EARLY_PROMPT_MIN: float = 2.0
PHASE_2_START_MIN: float = 3.0
PHASE_3_START_MIN: float = 5.0
MODIFY_WARNING_AFTER_MIN: float = 7.0

# Quote thresholds
TIER_2_APPROVAL_QUOTES: int = 7
TIER_3_EARLY_PROMPT_QUOTES: int = 7
TIER_3_APPROVAL_QUOTES: int = 15
LOW_QUOTE_THRESHOLD: int = 10

DEFAULT_STALE_AFTER_MIN: float = 60.0

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MatchingState:
    """What the requester's view should show for a request right now."""

    current_radius_km: int
    show_expansion_prompt_tier2: bool = False
    show_expansion_prompt_tier3: bool = False
    show_modify_warning: bool = False
    is_matching_finished: bool = False

    @property
    def phase(self) -> int:
        return RADIUS_TIERS_KM.index(self.current_radius_km) + 1


# ---------------------------------------------------------------------------
# Input coercion
# ---------------------------------------------------------------------------
# The calculator runs on every render and polling tick, so malformed
# fields fall back to safe defaults instead of raising.

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    return False


def _coerce_quotes(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return 0
    try:
        count = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(count, 0)


def _coerce_created_at(value: Any) -> datetime:
    try:
        if isinstance(value, datetime):
            return _as_utc(value)
        if isinstance(value, str):
            return _as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except (ValueError, OverflowError):
        # Unparseable, or out of range once shifted to UTC
        return _EPOCH
    return _EPOCH


def coerce_radius(value: Any) -> int:
    """Snap a stored radius to a tier.

    Values between tiers snap down; anything missing, unparseable or below
    the first tier becomes Tier 1.
    """
    if isinstance(value, bool) or value is None:
        return TIER_1_RADIUS_KM
    try:
        radius = float(value)
    except (TypeError, ValueError):
        return TIER_1_RADIUS_KM
    if radius != radius:  # NaN
        return TIER_1_RADIUS_KM
    snapped = TIER_1_RADIUS_KM
    for tier in RADIUS_TIERS_KM:
        if radius >= tier:
            snapped = tier
    return snapped


def elapsed_minutes(created_at: Any, now: datetime) -> float:
    """Minutes between ``created_at`` and ``now``; negative for clock skew."""
    return (_as_utc(now) - _coerce_created_at(created_at)).total_seconds() / 60.0


def phase_label(radius_km: Any) -> str:
    radius = coerce_radius(radius_km)
    return f"Phase {RADIUS_TIERS_KM.index(radius) + 1}"


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------

def get_matching_state(request: Any, now: Optional[datetime] = None) -> MatchingState:
    """Compute the matching state of a service request at ``now``.

    ``request`` may be a ``ServiceRequest`` row or any object exposing
    ``created_at``, ``quotes_count``, ``search_radius_km``,
    ``expansion_approved_tier2``, ``expansion_approved_tier3``,
    ``matching_stopped`` and ``low_quote_warning_dismissed``. Missing
    attributes count as unset.

    Request status is not consulted; callers freeze closed requests by not
    persisting the result (see ``radiusSync``).
    """
    now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    stored_radius = coerce_radius(getattr(request, "search_radius_km", None))

    # 1. Explicit stop -- radius frozen, nothing more to prompt
    if _coerce_bool(getattr(request, "matching_stopped", False)):
        return MatchingState(
            current_radius_km=stored_radius,
            is_matching_finished=True,
        )

    elapsed = elapsed_minutes(getattr(request, "created_at", None), now)
    quotes = _coerce_quotes(getattr(request, "quotes_count", 0))
    tier2_approved = _coerce_bool(getattr(request, "expansion_approved_tier2", False))
    tier3_approved = _coerce_bool(getattr(request, "expansion_approved_tier3", False))
    warning_dismissed = _coerce_bool(
        getattr(request, "low_quote_warning_dismissed", False)
    )

    # 2. Phase 1 -- immediate local
    if elapsed < PHASE_2_START_MIN:
        return MatchingState(
            current_radius_km=TIER_1_RADIUS_KM,
            show_expansion_prompt_tier2=(
                elapsed >= TIER_2_EARLY_PROMPT_MIN
                and quotes >= TIER_2_APPROVAL_QUOTES
                and not tier2_approved
            ),
        )

    # 3. Phase 2 -- extended local, held at Tier 1 until 8 km is approved
    if elapsed < PHASE_3_START_MIN:
        if quotes >= TIER_2_APPROVAL_QUOTES and not tier2_approved:
            return MatchingState(
                current_radius_km=TIER_1_RADIUS_KM,
                show_expansion_prompt_tier2=True,
            )
        return MatchingState(
            current_radius_km=TIER_2_RADIUS_KM,
            show_expansion_prompt_tier3=(
                quotes >= TIER_3_EARLY_PROMPT_QUOTES and not tier3_approved
            ),
        )

    # 4. Phase 3 -- final expansion, held at Tier 2 until 15 km is approved
    held = quotes >= TIER_3_APPROVAL_QUOTES and not tier3_approved
    return MatchingState(
        current_radius_km=TIER_2_RADIUS_KM if held else TIER_3_RADIUS_KM,
        show_expansion_prompt_tier3=held,
        show_modify_warning=(
            elapsed > MODIFY_WARNING_AFTER_MIN
            and quotes < LOW_QUOTE_THRESHOLD
            and not warning_dismissed
        ),
        is_matching_finished=True,
    )


def is_request_stale(
    request: Any,
    now: Optional[datetime] = None,
    after_minutes: float = DEFAULT_STALE_AFTER_MIN,
) -> bool:
    """True when a request has drawn no quotes for ``after_minutes``.

    Only the quote count and age are checked; callers restrict this to
    live, non-stopped requests.
    """
    now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    if _coerce_quotes(getattr(request, "quotes_count", 0)) > 0:
        return False
    return elapsed_minutes(getattr(request, "created_at", None), now) > after_minutes
