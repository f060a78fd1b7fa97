"""Lineage Resolver: who holds what area at a point in the nondh chain.

Given an amendment, the resolver walks the canonical-order prefix strictly
before it and reconstructs the set of current holders:

  1. Amendments that are not effectively valid are skipped (raw invalid,
     raw nullified, or flipped invalid by the parity cascade).
  2. A transfer (or a 1st Right court order) with an old owner contributes
     that owner's *remaining* area: the last area recorded for the name
     earlier in the chain minus everything this amendment handed to new
     owners, floored at zero.
     Only a strictly positive remainder is emitted.
  3. Every named owner relation other than the old owner is emitted with
     its own area.
  4. Snapshots are deduplicated by owner name; the latest chain position
     wins (most recent known state of a holding).

The same walk feeds court-order right (ganot) processing:

  - 2nd Right: every holder as above.  Court orders that are themselves
    2nd Right contribute their relations in category ``"new"``.
  - 1st Right: ``old`` holders come from the principal chain only (2nd
    Right court orders excluded); ``new`` holders come only from valid
    2nd Right court orders.

Usage::

    resolver = LineageResolver(snapshot)
    owners = resolver.previous_owners(amendment_id)
    old, new = resolver.first_right_owners(amendment_id)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from app.config import DEFAULT_AREA_UNIT, TRACE_ENABLED
from app.nondh.area import Area, sum_areas
from app.nondh.models import (
    COURT_ORDER,
    FIRST_RIGHT,
    SECOND_RIGHT,
    VALID,
    Amendment,
    AmendmentDetail,
    ParcelSnapshot,
    SurveyRef,
)
from app.nondh.ordering import canonical_order, position_index
from app.nondh.validity import effective_status, effective_validity

logger = logging.getLogger(__name__)

OLD = "old"
NEW = "new"


def _trace(msg: str):
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


@dataclass(frozen=True)
class OwnerSnapshot:
    """A holder visible at some point of the chain."""
    name: str
    remaining_area: Area
    source_amendment_id: str
    position: int
    amendment_type: str = ""
    category: str = OLD
    is_old_owner: bool = False
    survey_no: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "remaining_area": self.remaining_area.to_dict(),
            "source_amendment_id": self.source_amendment_id,
            "position": self.position,
            "amendment_type": self.amendment_type,
            "category": self.category,
            "is_old_owner": self.is_old_owner,
            "survey_no": self.survey_no,
        }


def _is_second_right(detail: AmendmentDetail) -> bool:
    return detail.type == COURT_ORDER and detail.right == SECOND_RIGHT


def _first_survey_no(amendment: Amendment) -> str:
    return amendment.affected[0].value if amendment.affected else ""


def _latest_by_name(snapshots: Iterable[OwnerSnapshot]) -> list[OwnerSnapshot]:
    """Keep one snapshot per name: the one from the latest chain position."""
    latest: dict[str, OwnerSnapshot] = {}
    for snap in snapshots:
        existing = latest.get(snap.name)
        if existing is None or existing.position <= snap.position:
            latest[snap.name] = snap
    return sorted(latest.values(), key=lambda s: s.position)


class LineageResolver:
    """Reconstructs owner lineage over one immutable parcel snapshot."""

    def __init__(self, snapshot: ParcelSnapshot):
        self.snapshot = snapshot
        self.order = canonical_order(snapshot.amendments)
        self.details = snapshot.details_by_id()
        self.positions = position_index(self.order)
        parity = effective_validity(self.order, self.details)
        self.status = {
            a.id: effective_status(self.details.get(a.id), parity[a.id]) for a in self.order
        }

    # ── helpers ──

    def _prefix(self, amendment_id: str) -> list[Amendment]:
        if amendment_id not in self.positions:
            raise KeyError(f"Amendment {amendment_id} not found")
        return self.order[: self.positions[amendment_id]]

    def is_effectively_valid(self, amendment_id: str) -> bool:
        return self.status.get(amendment_id) == VALID

    def last_known_area(self, owner_name: str, before_id: str) -> Optional[Area]:
        """Area recorded for ``owner_name`` by the latest effectively-valid amendment before ``before_id``."""
        for amendment in reversed(self._prefix(before_id)):
            if not self.is_effectively_valid(amendment.id):
                continue
            detail = self.details.get(amendment.id)
            if detail is None:
                continue
            for rel in detail.owner_relations:
                if rel.owner_name == owner_name:
                    return rel.area
        return None

    def remaining_after(self, amendment_id: str) -> Optional[Area]:
        """Old owner's area left over after the transfer at ``amendment_id`` (floored at zero)."""
        detail = self.details.get(amendment_id)
        if detail is None or not detail.is_transfer_like or not detail.old_owner:
            return None
        new_relations = detail.new_owner_relations()
        unit = new_relations[0].area.unit if new_relations else DEFAULT_AREA_UNIT
        held = self.last_known_area(detail.old_owner, amendment_id) or Area.zero(unit)
        given = sum_areas((r.area for r in new_relations), held.unit)
        remaining = (held - given).floor_zero()
        _trace(f"LINEAGE remaining {detail.old_owner}@{amendment_id}: {held} - {given} = {remaining}")
        return remaining

    def _snapshots_at(self, amendment: Amendment, *, include_old_owner: bool = True,
                      category: str = OLD) -> list[OwnerSnapshot]:
        detail = self.details.get(amendment.id)
        if detail is None:
            return []
        pos = self.positions[amendment.id]
        survey_no = _first_survey_no(amendment)
        out: list[OwnerSnapshot] = []

        if include_old_owner and detail.is_transfer_like and detail.old_owner:
            remaining = self.remaining_after(amendment.id)
            if remaining is not None and remaining.is_positive():
                out.append(OwnerSnapshot(
                    name=detail.old_owner,
                    remaining_area=remaining,
                    source_amendment_id=amendment.id,
                    position=pos,
                    amendment_type=detail.type,
                    category=category,
                    is_old_owner=True,
                    survey_no=survey_no,
                ))

        for rel in detail.owner_relations:
            if not rel.owner_name or rel.owner_name == detail.old_owner:
                continue
            out.append(OwnerSnapshot(
                name=rel.owner_name,
                remaining_area=rel.area,
                source_amendment_id=amendment.id,
                position=pos,
                amendment_type=detail.type,
                category=category,
                survey_no=rel.survey_no or survey_no,
            ))
        return out

    # ── public API ──

    def previous_owners(self, amendment_id: str,
                        identifier: SurveyRef | None = None) -> list[OwnerSnapshot]:
        """Holders visible to ``amendment_id``, optionally restricted to one identifier.

        An identifier with an empty class matches its value in any class.
        """
        snapshots: list[OwnerSnapshot] = []
        for amendment in self._prefix(amendment_id):
            if not self.is_effectively_valid(amendment.id):
                continue
            if identifier is not None and not any(
                s.value == identifier.value and (not identifier.kind or s.kind == identifier.kind)
                for s in amendment.affected
            ):
                continue
            detail = self.details.get(amendment.id)
            category = NEW if detail is not None and _is_second_right(detail) else OLD
            snapshots.extend(self._snapshots_at(amendment, category=category))
        result = _latest_by_name(snapshots)
        _trace(f"LINEAGE previous_owners({amendment_id}) → {[(s.name, str(s.remaining_area)) for s in result]}")
        return result

    def second_right_owners(self, amendment_id: str) -> list[OwnerSnapshot]:
        """Owner pool auto-populated onto a 2nd Right court order."""
        return self.previous_owners(amendment_id)

    def first_right_owners(self, amendment_id: str) -> tuple[list[OwnerSnapshot], list[OwnerSnapshot]]:
        """(old, new) owner pools for a 1st Right court order."""
        old: list[OwnerSnapshot] = []
        new: list[OwnerSnapshot] = []
        for amendment in self._prefix(amendment_id):
            if not self.is_effectively_valid(amendment.id):
                continue
            detail = self.details.get(amendment.id)
            if detail is None:
                continue
            if _is_second_right(detail):
                new.extend(self._snapshots_at(amendment, include_old_owner=False, category=NEW))
            else:
                old.extend(self._snapshots_at(amendment, category=OLD))
        return _latest_by_name(old), _latest_by_name(new)

    def right_owners(self, amendment_id: str, right: str) -> list[OwnerSnapshot]:
        """Owners a court order with ``right`` is populated from."""
        if right == SECOND_RIGHT:
            return self.second_right_owners(amendment_id)
        if right == FIRST_RIGHT:
            return self.first_right_owners(amendment_id)[1]
        raise ValueError(f"Unknown right {right!r}")

    def old_owner_area(self, amendment_id: str) -> Optional[Area]:
        """Remaining area of the amendment's own old owner, as seen just before it."""
        detail = self.details.get(amendment_id)
        if detail is None or not detail.old_owner:
            return None
        for snap in self.previous_owners(amendment_id):
            if snap.name == detail.old_owner:
                return snap.remaining_area
        return None
