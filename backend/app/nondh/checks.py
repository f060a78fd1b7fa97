"""Snapshot-level validation: every rule the engine enforces, in one pass.

Mutations validate only what they touch; this runner re-checks a whole
snapshot (on load, after ingestion, before export) and returns a flat
list of :class:`~app.nondh.issues.Issue` results.  A check that blows up
on a corrupt snapshot is reported as DANGLING_REFERENCE rather than raised.
"""

import logging
from collections import Counter
from typing import Optional

from app.config import TRACE_ENABLED
from app.nondh.area import sum_areas
from app.nondh.issues import (
    AREA_OVERFLOW,
    DANGLING_REFERENCE,
    FORMAT_ERROR,
    MISSING_REASON,
    Issue,
    make_issue,
)
from app.nondh.ledger import AreaLedger, CeilingProvider
from app.nondh.lineage import LineageResolver
from app.nondh.models import (
    AMENDMENT_TYPES,
    COURT_ORDER,
    COURT_ORDER_AUTHORITIES,
    INVALID,
    RIGHTS,
    STATUSES,
    TENURES,
    ParcelSnapshot,
)
from app.nondh.ordering import (
    canonical_order,
    check_chain_dates,
    check_number_format,
    check_unique_numbers,
)
from app.nondh.validity import check_affected_range

logger = logging.getLogger(__name__)


def _trace(msg: str):
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


# ═══════════════════════════════════════════════════
# 1. STRUCTURE
# ═══════════════════════════════════════════════════

def check_integrity(snapshot: ParcelSnapshot, **_) -> list[Issue]:
    """Every amendment has exactly one detail and every detail an amendment."""
    issues = []
    ids = Counter(a.id for a in snapshot.amendments)
    for amendment_id, n in ids.items():
        if n > 1:
            issues.append(make_issue(
                DANGLING_REFERENCE,
                f"Amendment id '{amendment_id}' appears {n} times.",
                evidence=f"id={amendment_id}",
                amendment_id=amendment_id,
            ))
    detail_ids = Counter(d.amendment_id for d in snapshot.details)
    for amendment_id, n in detail_ids.items():
        if amendment_id not in ids:
            issues.append(make_issue(
                DANGLING_REFERENCE,
                f"Detail refers to amendment '{amendment_id}', which does not exist.",
                evidence=f"amendment_id={amendment_id}",
                amendment_id=amendment_id,
            ))
        elif n > 1:
            issues.append(make_issue(
                DANGLING_REFERENCE,
                f"Amendment '{amendment_id}' has {n} details; exactly one is allowed.",
                evidence=f"amendment_id={amendment_id}",
                amendment_id=amendment_id,
            ))
    for amendment in snapshot.amendments:
        if amendment.id not in detail_ids:
            issues.append(make_issue(
                DANGLING_REFERENCE,
                f"Amendment '{amendment.number}' has no detail.",
                evidence=f"amendment_id={amendment.id}",
                amendment_id=amendment.id,
            ))
    return issues


def check_numbers(snapshot: ParcelSnapshot, **_) -> list[Issue]:
    issues = [
        issue for a in snapshot.amendments
        if (issue := check_number_format(a.number, a.id)) is not None
    ]
    return issues + check_unique_numbers(snapshot.amendments)


def check_dates(snapshot: ParcelSnapshot, **_) -> list[Issue]:
    return check_chain_dates(canonical_order(snapshot.amendments), snapshot.details_by_id())


# ═══════════════════════════════════════════════════
# 2. DETAIL FIELDS
# ═══════════════════════════════════════════════════

def check_detail_fields(snapshot: ParcelSnapshot, **_) -> list[Issue]:
    """Closed vocabularies and the reason-required rule."""
    issues = []
    for d in snapshot.details:
        if d.type not in AMENDMENT_TYPES:
            issues.append(make_issue(
                FORMAT_ERROR, f"Unknown amendment type '{d.type}'.",
                evidence=f"type={d.type}", amendment_id=d.amendment_id,
            ))
        if d.status not in STATUSES:
            issues.append(make_issue(
                FORMAT_ERROR, f"Unknown status '{d.status}'.",
                evidence=f"status={d.status}", amendment_id=d.amendment_id,
            ))
        elif d.status == INVALID and not d.invalid_reason.strip():
            issues.append(make_issue(
                MISSING_REASON, "A reason is required when the status is invalid.",
                evidence="status=invalid, invalid_reason=''", amendment_id=d.amendment_id,
            ))
        if d.tenure and d.tenure not in TENURES:
            issues.append(make_issue(
                FORMAT_ERROR, f"Unknown tenure '{d.tenure}'.",
                evidence=f"tenure={d.tenure}", amendment_id=d.amendment_id, warning=True,
            ))
        if d.type == COURT_ORDER:
            if d.authority and d.authority not in COURT_ORDER_AUTHORITIES:
                issues.append(make_issue(
                    FORMAT_ERROR, f"Unknown court-order authority '{d.authority}'.",
                    evidence=f"authority={d.authority}", amendment_id=d.amendment_id,
                    warning=True,
                ))
            if d.right and d.right not in RIGHTS:
                issues.append(make_issue(
                    FORMAT_ERROR, f"Unknown right '{d.right}'.",
                    evidence=f"right={d.right}", amendment_id=d.amendment_id,
                ))
    return issues


def check_court_orders(snapshot: ParcelSnapshot, **_) -> list[Issue]:
    return check_affected_range(canonical_order(snapshot.amendments), snapshot.details_by_id())


# ═══════════════════════════════════════════════════
# 3. AREA CONSERVATION
# ═══════════════════════════════════════════════════

def check_area_conservation(snapshot: ParcelSnapshot, *,
                            ceiling_for: Optional[CeilingProvider] = None, **_) -> list[Issue]:
    """New-owner totals within the old owner's remaining area and the slab ceiling.

    Only effectively-valid amendments are held to the rule; an old owner
    the chain has never recorded has no known area and is not checked.
    """
    ceiling_for = ceiling_for or AreaLedger(snapshot.year_slabs)
    resolver = LineageResolver(snapshot)
    issues = []
    for amendment in resolver.order:
        detail = resolver.details.get(amendment.id)
        if detail is None or not resolver.is_effectively_valid(amendment.id):
            continue
        relations = detail.new_owner_relations() if detail.is_transfer_like else [
            r for r in detail.owner_relations if r.owner_name
        ]
        if not relations:
            continue
        total = sum_areas(r.area for r in relations)

        if detail.is_transfer_like and detail.old_owner:
            held = resolver.old_owner_area(amendment.id)
            if held is not None and total > held:
                issues.append(make_issue(
                    AREA_OVERFLOW,
                    f"Amendment '{amendment.number}' gives {total} to new owners but "
                    f"{detail.old_owner} holds only {held}.",
                    evidence=f"new_owners_total={total}, old_owner_area={held}",
                    amendment_id=amendment.id,
                    max_permissible=held,
                ))

        ceiling = ceiling_for(detail.date)
        if ceiling is not None and total > ceiling:
            issues.append(make_issue(
                AREA_OVERFLOW,
                f"Amendment '{amendment.number}' records {total}, above the year slab "
                f"area {ceiling} for {detail.date.isoformat() if detail.date else 'its date'}.",
                evidence=f"total={total}, ceiling={ceiling}",
                amendment_id=amendment.id,
                max_permissible=ceiling,
            ))
    return issues


# ═══════════════════════════════════════════════════
# MAIN ENTRY POINT
# ═══════════════════════════════════════════════════

def run_chain_checks(snapshot: ParcelSnapshot, *,
                     ceiling_for: Optional[CeilingProvider] = None) -> list[Issue]:
    """Run every snapshot check and return a flat list of issues."""
    all_issues: list[Issue] = []

    check_functions = [
        ("Structure: Integrity", check_integrity),
        ("Structure: Numbers", check_numbers),
        ("Structure: Dates", check_dates),
        ("Detail: Fields", check_detail_fields),
        ("Court order: Affected range", check_court_orders),
        ("Area: Conservation", check_area_conservation),
    ]

    for label, fn in check_functions:
        try:
            results = fn(snapshot, ceiling_for=ceiling_for)
        except Exception as e:
            logger.error(f"Chain check [{label}] failed on parcel {snapshot.parcel_id}: {e}")
            results = [make_issue(
                DANGLING_REFERENCE,
                f"Snapshot could not be checked ({label}): {e}",
                evidence=type(e).__name__,
            )]
        if results:
            logger.info(f"Chain check [{label}]: {len(results)} issue(s)")
        all_issues.extend(results)

    _trace(f"CHECKS parcel={snapshot.parcel_id} issues={[i.rule_code for i in all_issues]}")
    return all_issues
