"""Validity Propagator: effective validity of every amendment in the chain.

Parity cascade
--------------
For the amendment at canonical position *i*, count the amendments at
positions > *i* whose **raw** status is ``invalid``.  Its owner relations
are effectively valid iff that count is even.  Each later invalidation
flips everything before it; two invalidations cancel out.  Nullified
amendments do not take part in the count.

The map is always recomputed over the whole chain; a single status flip
changes the parity of every earlier amendment, so there is nothing to
patch incrementally.

Court-order cascade
-------------------
A court order's ``affected_range`` names earlier amendments by number.
Applying or toggling an entry rewrites the *target's raw status* (and,
for ``invalid``, its reason), after which the parity pass runs again.
This is the only path by which a later amendment edits an earlier one.
"""

import logging
from dataclasses import replace
from typing import Optional, Union

from app.config import TRACE_ENABLED
from app.nondh.issues import DANGLING_REFERENCE, MISSING_REASON, Issue, make_issue
from app.nondh.models import (
    COURT_ORDER,
    INVALID,
    NULLIFIED,
    STATUSES,
    VALID,
    AffectedEntry,
    Amendment,
    AmendmentDetail,
)
from app.nondh.utils import normalize_number

logger = logging.getLogger(__name__)


def _trace(msg: str):
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


# ═══════════════════════════════════════════════════
# 1. PARITY CASCADE
# ═══════════════════════════════════════════════════

def effective_validity(order: list[Amendment],
                       details: dict[str, AmendmentDetail]) -> dict[str, bool]:
    """Map amendment id → effective validity under the parity rule.

    ``order`` must already be canonical.  Amendments without a detail count
    as raw-valid.
    """
    result: dict[str, bool] = {}
    later_invalid = 0
    for amendment in reversed(order):
        result[amendment.id] = later_invalid % 2 == 0
        detail = details.get(amendment.id)
        if detail is not None and detail.status == INVALID:
            later_invalid += 1
    _trace(f"PARITY {[(a.number, result[a.id]) for a in order]}")
    return result


def effective_status(detail: Optional[AmendmentDetail], parity_valid: bool) -> str:
    """Collapse raw status and parity into one of valid / invalid / nullified.

    A raw ``invalid`` or ``nullified`` status stands as is; a raw-valid
    amendment is effectively invalid when an odd number of later
    amendments are invalid.
    """
    if detail is not None and detail.status in (INVALID, NULLIFIED):
        return detail.status
    return VALID if parity_valid else INVALID


def apply_owner_validity(details: dict[str, AmendmentDetail],
                         validity: dict[str, bool]) -> dict[str, AmendmentDetail]:
    """Return the details whose owner-relation ``is_valid`` flags must change."""
    updated: dict[str, AmendmentDetail] = {}
    for amendment_id, valid in validity.items():
        detail = details.get(amendment_id)
        if detail is None:
            continue
        if all(r.is_valid == valid for r in detail.owner_relations):
            continue
        updated[amendment_id] = replace(
            detail,
            owner_relations=tuple(replace(r, is_valid=valid) for r in detail.owner_relations),
        )
    return updated


# ═══════════════════════════════════════════════════
# 2. COURT-ORDER CASCADE
# ═══════════════════════════════════════════════════

def resolve_target(order: list[Amendment], court_order_id: str,
                   number: str) -> Union[Amendment, Issue]:
    """Find the amendment an affected-range entry names.

    Only the canonical prefix before the court order is searched; the first
    match in canonical order wins.  Anything else is a DANGLING_REFERENCE.
    """
    wanted = normalize_number(number)
    for amendment in order:
        if amendment.id == court_order_id:
            break
        if amendment.number == wanted:
            return amendment
    return make_issue(
        DANGLING_REFERENCE,
        f"Court order references amendment '{number}', which does not precede it in the chain.",
        evidence=f"court_order={court_order_id}, target={number}",
        amendment_id=court_order_id,
    )


def override_reason(entry: Optional[AffectedEntry], court_order: AmendmentDetail) -> str:
    """Reason carried onto a target: the entry's own, else the court order's."""
    if entry is not None and entry.reason.strip():
        return entry.reason.strip()
    return court_order.invalid_reason.strip()


def overridden(target: AmendmentDetail, new_status: str, reason: str) -> AmendmentDetail:
    """Copy of ``target`` with its raw status rewritten by a court order."""
    if new_status not in STATUSES:
        raise ValueError(f"Unknown status {new_status!r}")
    return replace(
        target,
        status=new_status,
        invalid_reason=reason if new_status == INVALID else "",
    )


def toggled_status(current: str) -> str:
    """invalid ↔ valid; a nullified target toggles to invalid."""
    return VALID if current == INVALID else INVALID


def check_affected_range(order: list[Amendment],
                         details: dict[str, AmendmentDetail]) -> list[Issue]:
    """DANGLING_REFERENCE / MISSING_REASON findings across all court orders."""
    issues: list[Issue] = []
    for amendment in order:
        detail = details.get(amendment.id)
        if detail is None or detail.type != COURT_ORDER:
            continue
        for entry in detail.affected_range:
            target = resolve_target(order, amendment.id, entry.number)
            if isinstance(target, Issue):
                issues.append(target)
            if entry.status not in STATUSES:
                issues.append(make_issue(
                    DANGLING_REFERENCE,
                    f"Court order '{amendment.number}' gives unknown status "
                    f"'{entry.status}' for amendment '{entry.number}'.",
                    evidence=f"entry={entry.to_dict()}",
                    amendment_id=amendment.id,
                ))
            elif entry.status == INVALID and not override_reason(entry, detail):
                issues.append(make_issue(
                    MISSING_REASON,
                    f"Court order '{amendment.number}' invalidates amendment "
                    f"'{entry.number}' without a reason.",
                    evidence=f"entry={entry.to_dict()}",
                    amendment_id=amendment.id,
                ))
    return issues
