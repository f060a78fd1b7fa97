"""Data model for a parcel's nondh (amendment) chain.

Every value here is an immutable dataclass.  The engine never edits a
snapshot in place; each mutation builds a new ``ParcelSnapshot`` with
``dataclasses.replace`` and hands it back to the caller.

JSON-serializable via ``to_dict()`` / ``from_dict()`` for the record store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Optional

from app.nondh.area import Area
from app.nondh.utils import clean_name, format_date, normalize_number, parse_date

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════
# DOMAIN CONSTANTS
# ═══════════════════════════════════════════════════

# Identifier classes, highest priority first
SURVEY_NO = "survey_no"
BLOCK_NO = "block_no"
RE_SURVEY_NO = "re_survey_no"
IDENTIFIER_PRIORITY = (SURVEY_NO, BLOCK_NO, RE_SURVEY_NO)

_IDENTIFIER_ALIASES = {
    "survey_no": SURVEY_NO, "s_no": SURVEY_NO, "surveyno": SURVEY_NO, "sno": SURVEY_NO,
    "block_no": BLOCK_NO, "blockno": BLOCK_NO,
    "re_survey_no": RE_SURVEY_NO, "resurveyno": RE_SURVEY_NO, "re_surveyno": RE_SURVEY_NO,
}

# Amendment types
POSSESSION = "possession"            # Kabjedaar
CONSOLIDATION = "consolidation"      # Ekatrikaran
INHERITANCE = "inheritance"          # Varsai
LIFETIME_RIGHTS = "lifetime_rights"  # Hayati ma hakh dakhal
RIGHTS_REDUCTION = "rights_reduction"  # Hakkami
SALE = "sale"                        # Vechand
CORRECTION = "correction"            # Durasti
PROMULGATION = "promulgation"
COURT_ORDER = "court_order"          # Hukam
APPORTIONMENT = "apportionment"      # Vehchani
LIEN = "lien"                        # Bojo
OTHER = "other"

AMENDMENT_TYPES = frozenset({
    POSSESSION, CONSOLIDATION, INHERITANCE, LIFETIME_RIGHTS, RIGHTS_REDUCTION,
    SALE, CORRECTION, PROMULGATION, COURT_ORDER, APPORTIONMENT, LIEN, OTHER,
})

# Types where an old owner hands area to new owners
TRANSFER_TYPES = frozenset({
    INHERITANCE, LIFETIME_RIGHTS, RIGHTS_REDUCTION, SALE, APPORTIONMENT,
})

# Raw statuses
VALID = "valid"          # Pramaanik
INVALID = "invalid"      # Radd
NULLIFIED = "nullified"  # Na Manjoor
STATUSES = frozenset({VALID, INVALID, NULLIFIED})

# Court-order rights (ganot)
FIRST_RIGHT = "first_right"
SECOND_RIGHT = "second_right"
RIGHTS = frozenset({FIRST_RIGHT, SECOND_RIGHT})

COURT_ORDER_AUTHORITIES = frozenset({
    "SSRD", "Collector", "Collector_ganot", "Prant", "Mamlajdaar",
    "GRT", "Jasu", "ALT Krushipanch", "DILR",
})

TENURES = frozenset({
    "Navi", "Juni", "Kheti_Kheti_ma_Juni", "NA",
    "Bin_Kheti_Pre_Patra", "Prati_bandhit_satta_prakar",
})

# Redistribution modes
EQUAL = "equal"
MANUAL = "manual"
DISTRIBUTION_MODES = frozenset({EQUAL, MANUAL})


def normalize_identifier_class(raw: Any) -> str:
    """Map an identifier-class spelling to its canonical key (default: survey_no)."""
    key = str(raw or "").strip().lower().replace("-", "_").replace(" ", "_").replace(".", "")
    return _IDENTIFIER_ALIASES.get(key, _IDENTIFIER_ALIASES.get(key.replace("_", ""), SURVEY_NO))


# ═══════════════════════════════════════════════════
# DATA CLASSES
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class SurveyRef:
    """A parcel identifier tagged with its class."""
    value: str
    kind: str = SURVEY_NO

    def to_dict(self) -> dict:
        return {"value": self.value, "class": self.kind}

    @classmethod
    def from_dict(cls, data: Any) -> "SurveyRef":
        if isinstance(data, SurveyRef):
            return data
        if isinstance(data, dict):
            value = data.get("value", data.get("number", ""))
            kind = data.get("class", data.get("kind", data.get("type")))
            return cls(str(value).strip(), normalize_identifier_class(kind))
        return cls(str(data).strip(), SURVEY_NO)


@dataclass(frozen=True)
class Amendment:
    """A nondh: an event attached to a parcel, ordered by its number within its class."""
    id: str
    number: str
    affected: tuple[SurveyRef, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "affected": [s.to_dict() for s in self.affected],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Amendment":
        return cls(
            id=str(data["id"]),
            number=normalize_number(data.get("number", "")),
            affected=tuple(SurveyRef.from_dict(s) for s in (data.get("affected") or [])),
        )


@dataclass(frozen=True)
class OwnerRelation:
    """One named holder and the area recorded against them on an amendment."""
    owner_name: str
    area: Area = field(default_factory=Area.zero)
    is_valid: bool = True
    survey_no: str = ""
    tenure: str = ""

    def to_dict(self) -> dict:
        return {
            "owner_name": self.owner_name,
            "area": self.area.to_dict(),
            "is_valid": self.is_valid,
            "survey_no": self.survey_no,
            "tenure": self.tenure,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OwnerRelation":
        return cls(
            owner_name=clean_name(data.get("owner_name", data.get("name", ""))),
            area=Area.from_dict(data.get("area")),
            is_valid=bool(data.get("is_valid", True)),
            survey_no=str(data.get("survey_no", "") or ""),
            tenure=str(data.get("tenure", "") or ""),
        )


@dataclass(frozen=True)
class AffectedEntry:
    """A court order's override for one earlier amendment, addressed by number."""
    number: str
    status: str = INVALID
    reason: str = ""

    def to_dict(self) -> dict:
        return {"number": self.number, "status": self.status, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: dict) -> "AffectedEntry":
        return cls(
            number=normalize_number(data.get("number", "")),
            status=str(data.get("status", INVALID) or INVALID),
            reason=str(data.get("reason", data.get("invalid_reason", "")) or ""),
        )


@dataclass(frozen=True)
class AmendmentDetail:
    """The mutable facts about one amendment (exactly one per amendment)."""
    amendment_id: str
    type: str = POSSESSION
    date: Optional[date] = None
    status: str = VALID
    invalid_reason: str = ""
    old_owner: str = ""
    owner_relations: tuple[OwnerRelation, ...] = ()

    # court-order only
    authority: str = ""
    affected_range: tuple[AffectedEntry, ...] = ()
    right: str = ""
    order_date: Optional[date] = None
    restraining_order: bool = False

    # redistribution memory for transfers
    distribution_mode: str = MANUAL
    manual_areas: tuple[Area, ...] = ()

    # carried through, never interpreted
    tenure: str = ""
    vigat: str = ""
    reason: str = ""
    sale_deed_date: Optional[date] = None
    amount: Optional[str] = None
    show_in_output: bool = True

    @property
    def is_transfer_like(self) -> bool:
        """Old owner hands area to new owners: a transfer type or a 1st Right court order."""
        if self.type == COURT_ORDER:
            return self.right == FIRST_RIGHT
        return self.type in TRANSFER_TYPES

    def new_owner_relations(self) -> list[OwnerRelation]:
        """Named relations other than the old owner (the receiving side of a transfer)."""
        return [
            r for r in self.owner_relations
            if r.owner_name and r.owner_name != self.old_owner
        ]

    def to_dict(self) -> dict:
        return {
            "amendment_id": self.amendment_id,
            "type": self.type,
            "date": format_date(self.date),
            "status": self.status,
            "invalid_reason": self.invalid_reason,
            "old_owner": self.old_owner,
            "owner_relations": [r.to_dict() for r in self.owner_relations],
            "authority": self.authority,
            "affected_range": [a.to_dict() for a in self.affected_range],
            "right": self.right,
            "order_date": format_date(self.order_date),
            "restraining_order": self.restraining_order,
            "distribution_mode": self.distribution_mode,
            "manual_areas": [a.to_dict() for a in self.manual_areas],
            "tenure": self.tenure,
            "vigat": self.vigat,
            "reason": self.reason,
            "sale_deed_date": format_date(self.sale_deed_date),
            "amount": self.amount,
            "show_in_output": self.show_in_output,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AmendmentDetail":
        return cls(
            amendment_id=str(data["amendment_id"]),
            type=str(data.get("type") or POSSESSION),
            date=parse_date(data.get("date")),
            status=str(data.get("status") or VALID),
            invalid_reason=str(data.get("invalid_reason") or ""),
            old_owner=clean_name(data.get("old_owner")),
            owner_relations=tuple(
                OwnerRelation.from_dict(r) for r in (data.get("owner_relations") or [])
            ),
            authority=str(data.get("authority") or ""),
            affected_range=tuple(
                AffectedEntry.from_dict(a) for a in (data.get("affected_range") or [])
            ),
            right=str(data.get("right") or ""),
            order_date=parse_date(data.get("order_date")),
            restraining_order=bool(data.get("restraining_order", False)),
            distribution_mode=str(data.get("distribution_mode") or MANUAL),
            manual_areas=tuple(Area.from_dict(a) for a in (data.get("manual_areas") or [])),
            tenure=str(data.get("tenure") or ""),
            vigat=str(data.get("vigat") or ""),
            reason=str(data.get("reason") or ""),
            sale_deed_date=parse_date(data.get("sale_deed_date")),
            amount=data.get("amount"),
            show_in_output=bool(data.get("show_in_output", True)),
        )


@dataclass(frozen=True)
class SlabEntry:
    """A sub-allocation (paiky / ekatrikaran) inside a year slab."""
    area: Area
    identifier: Optional[SurveyRef] = None

    def to_dict(self) -> dict:
        return {
            "area": self.area.to_dict(),
            "identifier": self.identifier.to_dict() if self.identifier else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SlabEntry":
        ident = data.get("identifier")
        return cls(
            area=Area.from_dict(data.get("area")),
            identifier=SurveyRef.from_dict(ident) if ident else None,
        )


@dataclass(frozen=True)
class YearSlab:
    """Area ceiling for an inclusive range of years, possibly split into sub-allocations."""
    id: str
    start_year: int
    end_year: int
    area: Area = field(default_factory=Area.zero)
    identifier: Optional[SurveyRef] = None
    paiky_entries: tuple[SlabEntry, ...] = ()
    ekatrikaran_entries: tuple[SlabEntry, ...] = ()

    def covers(self, year: int) -> bool:
        return self.start_year <= year <= self.end_year

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "start_year": self.start_year,
            "end_year": self.end_year,
            "area": self.area.to_dict(),
            "identifier": self.identifier.to_dict() if self.identifier else None,
            "paiky_entries": [e.to_dict() for e in self.paiky_entries],
            "ekatrikaran_entries": [e.to_dict() for e in self.ekatrikaran_entries],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "YearSlab":
        ident = data.get("identifier")
        return cls(
            id=str(data.get("id", "")),
            start_year=int(data["start_year"]),
            end_year=int(data["end_year"]),
            area=Area.from_dict(data.get("area")),
            identifier=SurveyRef.from_dict(ident) if ident else None,
            paiky_entries=tuple(SlabEntry.from_dict(e) for e in (data.get("paiky_entries") or [])),
            ekatrikaran_entries=tuple(
                SlabEntry.from_dict(e) for e in (data.get("ekatrikaran_entries") or [])
            ),
        )


@dataclass(frozen=True)
class ParcelSnapshot:
    """Everything the engine needs for one parcel, frozen for one invocation."""
    parcel_id: str
    amendments: tuple[Amendment, ...] = ()
    details: tuple[AmendmentDetail, ...] = ()
    year_slabs: tuple[YearSlab, ...] = ()

    def details_by_id(self) -> dict[str, AmendmentDetail]:
        return {d.amendment_id: d for d in self.details}

    def amendment(self, amendment_id: str) -> Amendment:
        for a in self.amendments:
            if a.id == amendment_id:
                return a
        raise KeyError(f"Amendment {amendment_id} not found")

    def detail(self, amendment_id: str) -> AmendmentDetail:
        for d in self.details:
            if d.amendment_id == amendment_id:
                return d
        raise KeyError(f"Detail for amendment {amendment_id} not found")

    def with_details(self, updated: dict[str, AmendmentDetail]) -> "ParcelSnapshot":
        """Return a copy where details whose amendment id is in ``updated`` are swapped."""
        if not updated:
            return self
        return replace(
            self,
            details=tuple(updated.get(d.amendment_id, d) for d in self.details),
        )

    def with_detail(self, detail: AmendmentDetail) -> "ParcelSnapshot":
        return self.with_details({detail.amendment_id: detail})

    def to_dict(self) -> dict:
        return {
            "parcel_id": self.parcel_id,
            "amendments": [a.to_dict() for a in self.amendments],
            "details": [d.to_dict() for d in self.details],
            "year_slabs": [s.to_dict() for s in self.year_slabs],
        }

    # Only these fields can be loaded: anything else is logged and dropped
    _LOADABLE_FIELDS = frozenset({"parcel_id", "amendments", "details", "year_slabs"})

    @classmethod
    def from_dict(cls, data: dict) -> "ParcelSnapshot":
        for key in data:
            if key not in cls._LOADABLE_FIELDS:
                logger.warning(f"Parcel {data.get('parcel_id', '?')}: ignoring unknown field '{key}'")
        return cls(
            parcel_id=str(data.get("parcel_id", "")),
            amendments=tuple(Amendment.from_dict(a) for a in (data.get("amendments") or [])),
            details=tuple(AmendmentDetail.from_dict(d) for d in (data.get("details") or [])),
            year_slabs=tuple(YearSlab.from_dict(s) for s in (data.get("year_slabs") or [])),
        )
