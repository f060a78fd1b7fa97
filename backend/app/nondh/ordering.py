"""Ordering Service: the canonical total order over a parcel's amendments.

Order is by the amendment's *primary* identifier class
(survey_no > block_no > re_survey_no), then by the leading integer of its
number.  Every other component consumes this order; it is computed once per
recomputation and never re-derived ad hoc.

Also home to the date-ordering constraint: dates must strictly increase
along the canonical order.
"""

import logging
import re
from datetime import date
from typing import Iterable, Optional

from app.config import TRACE_ENABLED
from app.nondh.issues import FORMAT_ERROR, ORDERING_VIOLATION, Issue, make_issue
from app.nondh.models import (
    IDENTIFIER_PRIORITY,
    SURVEY_NO,
    Amendment,
    AmendmentDetail,
)
from app.nondh.utils import format_date, is_valid_number, leading_int, shift_days

logger = logging.getLogger(__name__)


def _trace(msg: str):
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


# ═══════════════════════════════════════════════════
# 1. CANONICAL ORDER
# ═══════════════════════════════════════════════════

def primary_class(amendment: Amendment) -> str:
    """Highest-priority identifier class among the amendment's affected identifiers."""
    kinds = {s.kind for s in amendment.affected}
    for kind in IDENTIFIER_PRIORITY:
        if kind in kinds:
            return kind
    return SURVEY_NO


def _number_components(number: str) -> tuple[int, ...]:
    return tuple(int(p) for p in re.findall(r'\d+', number or ""))


def sort_key(amendment: Amendment) -> tuple:
    """(class priority, leading integer, full numeric components).

    The trailing components only separate composite tokens that share a
    leading integer (``10`` vs ``10-35``) so the result does not depend on
    input order for those; exact duplicates fall back to insertion order.
    """
    return (
        IDENTIFIER_PRIORITY.index(primary_class(amendment)),
        leading_int(amendment.number),
        _number_components(amendment.number),
    )


def canonical_order(amendments: Iterable[Amendment]) -> list[Amendment]:
    """Return amendments in canonical order (stable: ties keep insertion order)."""
    ordered = sorted(amendments, key=sort_key)
    _trace(f"ORDER {[f'{a.number}({primary_class(a)})' for a in ordered]}")
    return ordered


def position_index(order: list[Amendment]) -> dict[str, int]:
    """Map amendment id → canonical position."""
    return {a.id: i for i, a in enumerate(order)}


def prefix_before(order: list[Amendment], amendment_id: str) -> list[Amendment]:
    """Amendments strictly before ``amendment_id`` in canonical order."""
    for i, a in enumerate(order):
        if a.id == amendment_id:
            return order[:i]
    raise KeyError(f"Amendment {amendment_id} not found")


# ═══════════════════════════════════════════════════
# 2. NUMBER FORMAT & UNIQUENESS
# ═══════════════════════════════════════════════════

def check_number_format(number: str, amendment_id: str | None = None) -> Optional[Issue]:
    """FORMAT_ERROR unless ``number`` matches ``^\\d+([-/]\\d+)*$``."""
    if is_valid_number(number):
        return None
    return make_issue(
        FORMAT_ERROR,
        f"Amendment number '{number}' is not a number or a hyphen/slash composite "
        f"such as 12, 10-35 or 30/45.",
        evidence=f"number={number!r}",
        amendment_id=amendment_id,
    )


def check_unique_numbers(amendments: Iterable[Amendment]) -> list[Issue]:
    """ORDERING_VIOLATION for amendments sharing a class and parsed number."""
    issues = []
    seen: dict[tuple[str, int], Amendment] = {}
    for a in amendments:
        key = (primary_class(a), leading_int(a.number))
        first = seen.get(key)
        if first is None:
            seen[key] = a
            continue
        issues.append(make_issue(
            ORDERING_VIOLATION,
            f"Amendments '{first.number}' and '{a.number}' both order as {key[1]} "
            f"within {key[0]}; the chain order between them is undefined.",
            evidence=f"ids={first.id},{a.id}",
            amendment_id=a.id,
        ))
    return issues


# ═══════════════════════════════════════════════════
# 3. DATE ORDERING CONSTRAINT
# ═══════════════════════════════════════════════════

def _neighbor_dates(order: list[Amendment], details: dict[str, AmendmentDetail],
                    amendment_id: str) -> tuple[Optional[date], Optional[date]]:
    idx = position_index(order).get(amendment_id)
    if idx is None:
        raise KeyError(f"Amendment {amendment_id} not found")
    prev_date = next_date = None
    if idx > 0:
        prev = details.get(order[idx - 1].id)
        prev_date = prev.date if prev else None
    if idx < len(order) - 1:
        nxt = details.get(order[idx + 1].id)
        next_date = nxt.date if nxt else None
    return prev_date, next_date


def date_bounds(order: list[Amendment], details: dict[str, AmendmentDetail],
                amendment_id: str) -> tuple[Optional[date], Optional[date]]:
    """Advisory (min, max) dates for a picker: one day inside each dated neighbor."""
    prev_date, next_date = _neighbor_dates(order, details, amendment_id)
    return shift_days(prev_date, 1), shift_days(next_date, -1)


def check_date_order(order: list[Amendment], details: dict[str, AmendmentDetail],
                     amendment_id: str, proposed: Optional[date]) -> Optional[Issue]:
    """ORDERING_VIOLATION if ``proposed`` is not strictly between its dated neighbors."""
    if proposed is None:
        return None
    prev_date, next_date = _neighbor_dates(order, details, amendment_id)
    if prev_date and proposed <= prev_date:
        return make_issue(
            ORDERING_VIOLATION,
            f"Date {format_date(proposed)} must be after the previous amendment's "
            f"date {format_date(prev_date)}.",
            evidence=f"proposed={format_date(proposed)}, previous={format_date(prev_date)}",
            amendment_id=amendment_id,
        )
    if next_date and proposed >= next_date:
        return make_issue(
            ORDERING_VIOLATION,
            f"Date {format_date(proposed)} must be before the next amendment's "
            f"date {format_date(next_date)}.",
            evidence=f"proposed={format_date(proposed)}, next={format_date(next_date)}",
            amendment_id=amendment_id,
        )
    return None


def check_chain_dates(order: list[Amendment], details: dict[str, AmendmentDetail]) -> list[Issue]:
    """ORDERING_VIOLATION for every adjacent dated pair that does not strictly increase."""
    issues = []
    for left, right in zip(order, order[1:]):
        ld = details.get(left.id)
        rd = details.get(right.id)
        if not ld or not rd or not ld.date or not rd.date:
            continue
        if rd.date <= ld.date:
            issues.append(make_issue(
                ORDERING_VIOLATION,
                f"Amendment '{right.number}' is dated {format_date(rd.date)}, not after "
                f"amendment '{left.number}' ({format_date(ld.date)}) which precedes it.",
                evidence=f"{left.number}={format_date(ld.date)}, {right.number}={format_date(rd.date)}",
                amendment_id=right.id,
            ))
    return issues
