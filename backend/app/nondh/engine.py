"""Chain engine: the single recomputation pass and every mutation.

Every mutation follows the same shape:

  1. validate the proposed change against the *prior* snapshot;
  2. on any blocking issue, return the prior snapshot unchanged;
  3. otherwise build a candidate snapshot and run :func:`recompute` over
     the whole chain.

``recompute`` is a pure function of its input: it re-sorts the chain,
re-applies equal splits, and re-derives every owner relation's
``is_valid`` flag from the parity cascade.  Running it twice gives the
same snapshot.
"""

import logging
from dataclasses import replace
from typing import Iterable, Optional, Sequence

from app.config import TRACE_ENABLED
from app.nondh.area import Area, sum_areas
from app.nondh.issues import (
    AREA_OVERFLOW,
    DANGLING_REFERENCE,
    FORMAT_ERROR,
    MISSING_REASON,
    Issue,
    MutationResult,
    make_issue,
    rejected,
)
from app.nondh.ledger import AreaLedger, CeilingProvider
from app.nondh.lineage import LineageResolver, OwnerSnapshot
from app.nondh.models import (
    COURT_ORDER,
    DISTRIBUTION_MODES,
    EQUAL,
    INVALID,
    MANUAL,
    RIGHTS,
    STATUSES,
    AffectedEntry,
    Amendment,
    AmendmentDetail,
    OwnerRelation,
    ParcelSnapshot,
    SurveyRef,
)
from app.nondh.ordering import (
    canonical_order,
    check_date_order,
    check_number_format,
    check_unique_numbers,
    date_bounds,
    primary_class,
)
from app.nondh.redistribution import check_manual_edit, redistribute
from app.nondh.utils import format_date, normalize_number, parse_date
from app.nondh.validity import (
    apply_owner_validity,
    effective_status,
    effective_validity,
    override_reason,
    overridden,
    resolve_target,
    toggled_status,
)

logger = logging.getLogger(__name__)


def _trace(msg: str):
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


def _ledger(snapshot: ParcelSnapshot, ceiling_for: Optional[CeilingProvider]) -> CeilingProvider:
    return ceiling_for or AreaLedger(snapshot.year_slabs)


# ═══════════════════════════════════════════════════
# 1. RECOMPUTATION
# ═══════════════════════════════════════════════════

def _split_base(resolver: LineageResolver, detail: AmendmentDetail,
                ceiling: Optional[Area]) -> Area:
    """Area an equal split starts from: the old owner's holding, else the ceiling."""
    held = resolver.old_owner_area(detail.amendment_id)
    if held is not None:
        return held
    if ceiling is not None:
        return ceiling
    relations = detail.new_owner_relations()
    return Area.zero(relations[0].area.unit if relations else None)


def _with_equal_split(detail: AmendmentDetail, base: Area,
                      ceiling: Optional[Area]) -> tuple[AmendmentDetail, bool]:
    targets = detail.new_owner_relations()
    result = redistribute(base, [r.owner_name for r in targets], EQUAL, ceiling)
    shares = {a.owner_name: a.area for a in result.allocations}
    relations = tuple(
        replace(r, area=shares[r.owner_name]) if r in targets else r
        for r in detail.owner_relations
    )
    return replace(detail, owner_relations=relations), result.ceiling_exceeded


def recompute(snapshot: ParcelSnapshot, *,
              ceiling_for: Optional[CeilingProvider] = None) -> ParcelSnapshot:
    """Whole-chain recomputation: canonical order, equal splits, validity flags."""
    ceiling_for = _ledger(snapshot, ceiling_for)
    order = canonical_order(snapshot.amendments)
    working = replace(snapshot, amendments=tuple(order))

    # Equal splits depend on earlier holdings, so they are applied front to back
    for amendment in order:
        detail = working.details_by_id().get(amendment.id)
        if detail is None or detail.distribution_mode != EQUAL or not detail.is_transfer_like:
            continue
        ceiling = ceiling_for(detail.date)
        base = _split_base(LineageResolver(working), detail, ceiling)
        split, _ = _with_equal_split(detail, base, ceiling)
        if split != detail:
            working = working.with_detail(split)

    details = working.details_by_id()
    validity = effective_validity(order, details)
    working = working.with_details(apply_owner_validity(details, validity))
    logger.info(f"Recomputed parcel {snapshot.parcel_id}: {len(order)} amendment(s)")
    return working


def _finish(prior: ParcelSnapshot, candidate: ParcelSnapshot,
            ceiling_for: Optional[CeilingProvider],
            warnings: Iterable[Issue] = ()) -> MutationResult:
    return MutationResult(
        snapshot=recompute(candidate, ceiling_for=ceiling_for),
        warnings=tuple(warnings),
    )


def _reject(prior: ParcelSnapshot, action: str, *issues: Issue) -> MutationResult:
    logger.info(
        f"Rejected {action} on parcel {prior.parcel_id}: "
        f"{', '.join(i.rule_code for i in issues)}"
    )
    return rejected(prior, *issues)


# ═══════════════════════════════════════════════════
# 2. CHAIN MEMBERSHIP
# ═══════════════════════════════════════════════════

def add_amendment(snapshot: ParcelSnapshot, amendment: Amendment,
                  detail: Optional[AmendmentDetail] = None, *,
                  ceiling_for: Optional[CeilingProvider] = None) -> MutationResult:
    """Insert a new amendment (and its detail) into the chain."""
    amendment = replace(amendment, number=normalize_number(amendment.number))
    issue = check_number_format(amendment.number, amendment.id)
    if issue:
        return _reject(snapshot, "add_amendment", issue)
    if any(a.id == amendment.id for a in snapshot.amendments):
        return _reject(snapshot, "add_amendment", make_issue(
            DANGLING_REFERENCE, f"Amendment id '{amendment.id}' already exists.",
            evidence=f"id={amendment.id}", amendment_id=amendment.id,
        ))
    clashes = [
        i for i in check_unique_numbers(list(snapshot.amendments) + [amendment])
        if i.amendment_id == amendment.id
    ]
    if clashes:
        return _reject(snapshot, "add_amendment", *clashes)

    detail = detail or AmendmentDetail(amendment_id=amendment.id)
    if detail.amendment_id != amendment.id:
        detail = replace(detail, amendment_id=amendment.id)

    candidate = replace(
        snapshot,
        amendments=snapshot.amendments + (amendment,),
        details=snapshot.details + (detail,),
    )
    if detail.date is not None:
        order = canonical_order(candidate.amendments)
        issue = check_date_order(order, candidate.details_by_id(), amendment.id, detail.date)
        if issue:
            return _reject(snapshot, "add_amendment", issue)
    if detail.status == INVALID and not detail.invalid_reason.strip():
        return _reject(snapshot, "add_amendment", make_issue(
            MISSING_REASON, "A reason is required when the status is invalid.",
            amendment_id=amendment.id,
        ))
    # Equal-mode areas are re-derived (and capped) by recompute
    if detail.distribution_mode != EQUAL:
        issues = _check_relation_totals(candidate, detail, _ledger(snapshot, ceiling_for))
        if issues:
            return _reject(snapshot, "add_amendment", *issues)
    return _finish(snapshot, candidate, ceiling_for)


# ═══════════════════════════════════════════════════
# 3. STATUS & DATE
# ═══════════════════════════════════════════════════

def set_status(snapshot: ParcelSnapshot, amendment_id: str, status: str,
               invalid_reason: str = "", *,
               ceiling_for: Optional[CeilingProvider] = None) -> MutationResult:
    """Change an amendment's raw status; the parity cascade is re-run over the chain."""
    detail = snapshot.detail(amendment_id)
    if status not in STATUSES:
        return _reject(snapshot, "set_status", make_issue(
            FORMAT_ERROR, f"Unknown status '{status}'.",
            evidence=f"status={status}", amendment_id=amendment_id,
        ))
    reason = (invalid_reason or "").strip()
    if status == INVALID:
        reason = reason or detail.invalid_reason.strip()
        if not reason:
            return _reject(snapshot, "set_status", make_issue(
                MISSING_REASON, "A reason is required when the status is invalid.",
                evidence="status=invalid", amendment_id=amendment_id,
            ))
    updated = replace(detail, status=status, invalid_reason=reason if status == INVALID else "")
    _trace(f"STATUS {amendment_id}: {detail.status} → {status}")
    return _finish(snapshot, snapshot.with_detail(updated), ceiling_for)


def set_date(snapshot: ParcelSnapshot, amendment_id: str, new_date, *,
             ceiling_for: Optional[CeilingProvider] = None) -> MutationResult:
    """Set the effective date, re-validated against canonical neighbours.

    The owner total is re-checked against the year-slab ceiling that
    applies on the new date.
    """
    ceiling_for = _ledger(snapshot, ceiling_for)
    detail = snapshot.detail(amendment_id)
    parsed = parse_date(new_date)
    if new_date not in (None, "") and parsed is None:
        return _reject(snapshot, "set_date", make_issue(
            FORMAT_ERROR, f"'{new_date}' is not a recognisable date.",
            evidence=f"date={new_date!r}", amendment_id=amendment_id,
        ))
    order = canonical_order(snapshot.amendments)
    issue = check_date_order(order, snapshot.details_by_id(), amendment_id, parsed)
    if issue:
        return _reject(snapshot, "set_date", issue)
    updated = replace(detail, date=parsed)
    candidate = snapshot.with_detail(updated)
    if updated.distribution_mode != EQUAL:
        issues = _check_relation_totals(candidate, updated, ceiling_for)
        if issues:
            return _reject(snapshot, "set_date", *issues)
    return _finish(snapshot, candidate, ceiling_for)


# ═══════════════════════════════════════════════════
# 4. OWNER RELATIONS & REDISTRIBUTION
# ═══════════════════════════════════════════════════

def _check_relation_totals(snapshot: ParcelSnapshot, detail: AmendmentDetail,
                           ceiling_for: CeilingProvider) -> list[Issue]:
    """Area-conservation rule for a whole relation list on one amendment."""
    relations = detail.new_owner_relations() if detail.is_transfer_like else [
        r for r in detail.owner_relations if r.owner_name
    ]
    if not relations:
        return []
    total = sum_areas(r.area for r in relations)
    issues = []
    if detail.is_transfer_like and detail.old_owner:
        held = LineageResolver(snapshot).old_owner_area(detail.amendment_id)
        if held is not None and total > held:
            issues.append(make_issue(
                AREA_OVERFLOW,
                f"New owners total {total} exceeds {detail.old_owner}'s remaining area {held}.",
                evidence=f"total={total}, old_owner_area={held}",
                amendment_id=detail.amendment_id, max_permissible=held,
            ))
    ceiling = ceiling_for(detail.date)
    if ceiling is not None and total > ceiling:
        issues.append(make_issue(
            AREA_OVERFLOW,
            f"Total area {total} exceeds the year slab area {ceiling}.",
            evidence=f"total={total}, ceiling={ceiling}",
            amendment_id=detail.amendment_id, max_permissible=ceiling,
        ))
    return issues


def set_owner_relations(snapshot: ParcelSnapshot, amendment_id: str,
                        relations: Sequence[OwnerRelation], *,
                        old_owner: Optional[str] = None,
                        ceiling_for: Optional[CeilingProvider] = None) -> MutationResult:
    """Replace an amendment's owner relations (and optionally its old owner)."""
    ceiling_for = _ledger(snapshot, ceiling_for)
    detail = snapshot.detail(amendment_id)
    updated = replace(
        detail,
        owner_relations=tuple(relations),
        old_owner=detail.old_owner if old_owner is None else old_owner,
    )
    updated = replace(updated, manual_areas=tuple(r.area for r in updated.new_owner_relations()))
    issues = _check_relation_totals(snapshot, updated, ceiling_for)
    if issues:
        return _reject(snapshot, "set_owner_relations", *issues)
    return _finish(snapshot, snapshot.with_detail(updated), ceiling_for)


def set_owner_area(snapshot: ParcelSnapshot, amendment_id: str, index: int, area: Area, *,
                   ceiling_for: Optional[CeilingProvider] = None) -> MutationResult:
    """Manual edit of one relation's area.

    Rejected (snapshot unchanged) when the new total would exceed the old
    owner's remaining area or the year-slab ceiling for the amendment's date.
    The amendment switches to manual distribution.
    """
    ceiling_for = _ledger(snapshot, ceiling_for)
    detail = snapshot.detail(amendment_id)
    if not 0 <= index < len(detail.owner_relations):
        raise IndexError(f"Amendment {amendment_id} has no owner relation #{index}")
    target = detail.owner_relations[index]

    if detail.is_transfer_like:
        counted = [
            r.area if r.owner_name and r.owner_name != detail.old_owner else Area.zero(r.area.unit)
            for r in detail.owner_relations
        ]
        old_area = None
        if detail.old_owner and target.owner_name != detail.old_owner:
            old_area = LineageResolver(snapshot).old_owner_area(amendment_id)
    else:
        counted = [r.area for r in detail.owner_relations]
        old_area = None

    issue = check_manual_edit(
        counted, index, area,
        old_owner_area=old_area,
        ceiling=ceiling_for(detail.date),
        amendment_id=amendment_id,
    )
    if issue:
        return _reject(snapshot, "set_owner_area", issue)

    relations = list(detail.owner_relations)
    relations[index] = replace(target, area=area)
    updated = replace(detail, owner_relations=tuple(relations), distribution_mode=MANUAL)
    updated = replace(updated, manual_areas=tuple(r.area for r in updated.new_owner_relations()))
    return _finish(snapshot, snapshot.with_detail(updated), ceiling_for)


def set_distribution_mode(snapshot: ParcelSnapshot, amendment_id: str, mode: str, *,
                          ceiling_for: Optional[CeilingProvider] = None) -> MutationResult:
    """Switch a transfer between equal and manual distribution.

    manual → equal stores the current manual values and recomputes every
    target's share immediately; equal → manual restores the stored values.
    """
    ceiling_for = _ledger(snapshot, ceiling_for)
    detail = snapshot.detail(amendment_id)
    if mode not in DISTRIBUTION_MODES:
        return _reject(snapshot, "set_distribution_mode", make_issue(
            FORMAT_ERROR, f"Unknown distribution mode '{mode}'.",
            evidence=f"mode={mode}", amendment_id=amendment_id,
        ))
    if mode == detail.distribution_mode:
        return _finish(snapshot, snapshot, ceiling_for)

    targets = detail.new_owner_relations()
    warnings: list[Issue] = []
    if mode == EQUAL:
        remembered = replace(detail, manual_areas=tuple(r.area for r in targets),
                             distribution_mode=EQUAL)
        ceiling = ceiling_for(detail.date)
        base = _split_base(LineageResolver(snapshot), detail, ceiling)
        updated, capped = _with_equal_split(remembered, base, ceiling)
        if capped:
            warnings.append(make_issue(
                AREA_OVERFLOW,
                f"Old owner's area {base} exceeds the year slab area {ceiling}; "
                f"the split was capped at {ceiling}.",
                evidence=f"old_owner_area={base}, ceiling={ceiling}",
                amendment_id=amendment_id, warning=True, max_permissible=ceiling,
            ))
    else:
        # Targets added since the last switch keep their current area
        stored = detail.manual_areas + tuple(r.area for r in targets[len(detail.manual_areas):])
        result = redistribute(
            Area.zero(targets[0].area.unit if targets else None),
            [r.owner_name for r in targets], MANUAL, manual_areas=stored,
        )
        shares = iter(a.area for a in result.allocations)
        relations = tuple(
            replace(r, area=next(shares)) if r in targets else r
            for r in detail.owner_relations
        )
        updated = replace(detail, owner_relations=relations, distribution_mode=MANUAL)
    return _finish(snapshot, snapshot.with_detail(updated), ceiling_for, warnings)


# ═══════════════════════════════════════════════════
# 5. COURT ORDERS
# ═══════════════════════════════════════════════════

def _court_order(snapshot: ParcelSnapshot, amendment_id: str) -> AmendmentDetail | Issue:
    detail = snapshot.detail(amendment_id)
    if detail.type != COURT_ORDER:
        return make_issue(
            FORMAT_ERROR, "Only court-order amendments carry an affected range or a right.",
            evidence=f"type={detail.type}", amendment_id=amendment_id,
        )
    return detail


def set_affected_range(snapshot: ParcelSnapshot, amendment_id: str,
                       entries: Sequence[AffectedEntry], *,
                       ceiling_for: Optional[CeilingProvider] = None) -> MutationResult:
    """Replace a court order's affected range (does not touch the targets yet)."""
    court = _court_order(snapshot, amendment_id)
    if isinstance(court, Issue):
        return _reject(snapshot, "set_affected_range", court)
    order = canonical_order(snapshot.amendments)
    issues = []
    for entry in entries:
        target = resolve_target(order, amendment_id, entry.number)
        if isinstance(target, Issue):
            issues.append(target)
        if entry.status not in STATUSES:
            issues.append(make_issue(
                FORMAT_ERROR, f"Unknown override status '{entry.status}'.",
                evidence=f"entry={entry.to_dict()}", amendment_id=amendment_id,
            ))
        elif entry.status == INVALID and not override_reason(entry, court):
            issues.append(make_issue(
                MISSING_REASON,
                f"Invalidating amendment '{entry.number}' requires a reason.",
                evidence=f"entry={entry.to_dict()}", amendment_id=amendment_id,
            ))
    if issues:
        return _reject(snapshot, "set_affected_range", *issues)
    updated = replace(court, affected_range=tuple(
        replace(e, number=normalize_number(e.number)) for e in entries
    ))
    return _finish(snapshot, snapshot.with_detail(updated), ceiling_for)


def apply_affected_range(snapshot: ParcelSnapshot, amendment_id: str, *,
                         ceiling_for: Optional[CeilingProvider] = None) -> MutationResult:
    """Write each entry's override status onto its target's raw status."""
    court = _court_order(snapshot, amendment_id)
    if isinstance(court, Issue):
        return _reject(snapshot, "apply_affected_range", court)
    order = canonical_order(snapshot.amendments)
    issues: list[Issue] = []
    updates: dict[str, AmendmentDetail] = {}
    for entry in court.affected_range:
        target = resolve_target(order, amendment_id, entry.number)
        if isinstance(target, Issue):
            issues.append(target)
            continue
        if entry.status not in STATUSES:
            issues.append(make_issue(
                FORMAT_ERROR, f"Unknown override status '{entry.status}'.",
                evidence=f"entry={entry.to_dict()}", amendment_id=amendment_id,
            ))
            continue
        reason = override_reason(entry, court)
        if entry.status == INVALID and not reason:
            issues.append(make_issue(
                MISSING_REASON,
                f"Invalidating amendment '{entry.number}' requires a reason.",
                evidence=f"entry={entry.to_dict()}", amendment_id=amendment_id,
            ))
            continue
        current = updates.get(target.id) or snapshot.detail(target.id)
        updates[target.id] = overridden(current, entry.status, reason)
        _trace(f"COURT_ORDER {amendment_id} sets {entry.number} → {entry.status}")
    if issues:
        return _reject(snapshot, "apply_affected_range", *issues)
    return _finish(snapshot, snapshot.with_details(updates), ceiling_for)


def toggle_affected_entry(snapshot: ParcelSnapshot, amendment_id: str, number: str, *,
                          ceiling_for: Optional[CeilingProvider] = None) -> MutationResult:
    """Flip the raw status of the amendment an affected-range entry names.

    The target's *current raw* status decides the direction (invalid → valid,
    anything else → invalid); the court order's reason is carried onto the
    target when it becomes invalid.
    """
    court = _court_order(snapshot, amendment_id)
    if isinstance(court, Issue):
        return _reject(snapshot, "toggle_affected_entry", court)
    wanted = normalize_number(number)
    entry_index = next(
        (i for i, e in enumerate(court.affected_range) if e.number == wanted), None
    )
    if entry_index is None:
        return _reject(snapshot, "toggle_affected_entry", make_issue(
            DANGLING_REFERENCE,
            f"Amendment '{number}' is not in this court order's affected range.",
            evidence=f"number={number}", amendment_id=amendment_id,
        ))
    target = resolve_target(canonical_order(snapshot.amendments), amendment_id, wanted)
    if isinstance(target, Issue):
        return _reject(snapshot, "toggle_affected_entry", target)

    entry = court.affected_range[entry_index]
    target_detail = snapshot.detail(target.id)
    new_status = toggled_status(target_detail.status)
    reason = override_reason(entry, court)
    if new_status == INVALID and not reason:
        return _reject(snapshot, "toggle_affected_entry", make_issue(
            MISSING_REASON,
            f"Invalidating amendment '{number}' requires a reason on the court order.",
            evidence=f"number={number}", amendment_id=amendment_id,
        ))

    entries = list(court.affected_range)
    entries[entry_index] = replace(entry, status=new_status, reason=reason if new_status == INVALID else entry.reason)
    _trace(f"COURT_ORDER toggle {number}: {target_detail.status} → {new_status}")
    candidate = snapshot.with_details({
        amendment_id: replace(court, affected_range=tuple(entries)),
        target.id: overridden(target_detail, new_status, reason),
    })
    return _finish(snapshot, candidate, ceiling_for)


def set_right(snapshot: ParcelSnapshot, amendment_id: str, right: str, *,
              ceiling_for: Optional[CeilingProvider] = None) -> MutationResult:
    """Select a court order's right and auto-populate its owner relations.

    When the populated total exceeds the year-slab ceiling every populated
    area is reset to zero and an AREA_OVERFLOW warning is returned; nothing
    is silently truncated.
    """
    ceiling_for = _ledger(snapshot, ceiling_for)
    court = _court_order(snapshot, amendment_id)
    if isinstance(court, Issue):
        return _reject(snapshot, "set_right", court)
    if right and right not in RIGHTS:
        return _reject(snapshot, "set_right", make_issue(
            FORMAT_ERROR, f"Unknown right '{right}'.",
            evidence=f"right={right}", amendment_id=amendment_id,
        ))
    if not right:
        return _finish(snapshot, snapshot.with_detail(replace(court, right="")), ceiling_for)

    owners = LineageResolver(snapshot).right_owners(amendment_id, right)
    relations = [
        OwnerRelation(owner_name=o.name, area=o.remaining_area, survey_no=o.survey_no)
        for o in owners
    ]
    warnings: list[Issue] = []
    ceiling = ceiling_for(court.date)
    total = sum_areas(r.area for r in relations)
    if ceiling is not None and total > ceiling:
        relations = [replace(r, area=Area.zero(r.area.unit)) for r in relations]
        warnings.append(make_issue(
            AREA_OVERFLOW,
            f"Auto-populated owners total {total}, above the year slab area {ceiling}. "
            f"All owner areas were reset to zero; enter areas totalling at most {ceiling}.",
            evidence=f"total={total}, ceiling={ceiling}",
            amendment_id=amendment_id, warning=True, max_permissible=ceiling,
        ))
        logger.warning(f"Parcel {snapshot.parcel_id}: right {right} on {amendment_id} exceeded ceiling")
    updated = replace(court, right=right, owner_relations=tuple(relations))
    return _finish(snapshot, snapshot.with_detail(updated), ceiling_for, warnings)


# ═══════════════════════════════════════════════════
# 6. READ MODELS FOR THE PRESENTATION LAYER
# ═══════════════════════════════════════════════════

def previous_owners(snapshot: ParcelSnapshot, amendment_id: str,
                    identifier: SurveyRef | None = None) -> list[OwnerSnapshot]:
    return LineageResolver(snapshot).previous_owners(amendment_id, identifier)


def chain_view(snapshot: ParcelSnapshot) -> list[dict]:
    """One row per amendment in canonical order, ready to render."""
    order = canonical_order(snapshot.amendments)
    details = snapshot.details_by_id()
    validity = effective_validity(order, details)
    rows = []
    for i, amendment in enumerate(order):
        detail = details.get(amendment.id)
        min_date, max_date = date_bounds(order, details, amendment.id)
        rows.append({
            "position": i,
            "id": amendment.id,
            "number": amendment.number,
            "primary_class": primary_class(amendment),
            "affected": [s.to_dict() for s in amendment.affected],
            "type": detail.type if detail else "",
            "status": detail.status if detail else "",
            "effective_valid": validity[amendment.id],
            "effective_status": effective_status(detail, validity[amendment.id]),
            "date": format_date(detail.date) if detail else "",
            "min_date": format_date(min_date),
            "max_date": format_date(max_date),
            "old_owner": detail.old_owner if detail else "",
            "right": detail.right if detail else "",
            "distribution_mode": detail.distribution_mode if detail else MANUAL,
            "owner_relations": [r.to_dict() for r in detail.owner_relations] if detail else [],
        })
    return rows
