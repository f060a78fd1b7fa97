"""Bulk JSON ingestion: land-record upload payloads → ParcelSnapshot.

Two payload shapes are accepted:

  1. The native snapshot shape written by the record store
     (``amendments`` / ``details`` / ``year_slabs``).
  2. The bulk upload shape used by the data-entry team
     (``basicInfo`` / ``yearSlabs`` / ``nondhs`` / ``nondhDetails``), with
     local status labels (Pramaanik / Radd / Na Manjoor), local nondh type
     names, ``ddmmyyyy`` dates and ``{sqm}`` or ``{acre, guntha}`` areas.

A bad nondh detail is skipped and reported; it never aborts the rest of
the payload.  The resulting snapshot is run through the engine's
``recompute`` so ordering and validity flags are consistent on arrival.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from app.config import TRACE_ENABLED
from app.nondh.area import Area, parse_area
from app.nondh.engine import recompute
from app.nondh.models import (
    APPORTIONMENT,
    COURT_ORDER,
    COURT_ORDER_AUTHORITIES,
    CONSOLIDATION,
    CORRECTION,
    EQUAL,
    FIRST_RIGHT,
    INHERITANCE,
    INVALID,
    LIEN,
    LIFETIME_RIGHTS,
    MANUAL,
    NULLIFIED,
    OTHER,
    POSSESSION,
    PROMULGATION,
    RIGHTS_REDUCTION,
    SALE,
    SECOND_RIGHT,
    TENURES,
    VALID,
    AffectedEntry,
    Amendment,
    AmendmentDetail,
    OwnerRelation,
    ParcelSnapshot,
    SlabEntry,
    SurveyRef,
    YearSlab,
    normalize_identifier_class,
)
from app.nondh.utils import clean_name, is_valid_number, normalize_number, parse_date

logger = logging.getLogger(__name__)


def _trace(msg: str):
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


# ═══════════════════════════════════════════════════
# VOCABULARY MAPPINGS
# ═══════════════════════════════════════════════════

NONDH_TYPE_MAP = {
    "Kabjedaar": POSSESSION,
    "Ekatrikaran": CONSOLIDATION,
    "Varsai": INHERITANCE,
    "Hayati_ma_hakh_dakhal": LIFETIME_RIGHTS,
    "Hakkami": RIGHTS_REDUCTION,
    "Vechand": SALE,
    "Durasti": CORRECTION,
    "Promulgation": PROMULGATION,
    "Hukam": COURT_ORDER,
    "Vehchani": APPORTIONMENT,
    "Bojo": LIEN,
    "Other": OTHER,
}

STATUS_MAP = {
    "Pramaanik": VALID,
    "Radd": INVALID,
    "Na Manjoor": NULLIFIED,
}

RIGHT_MAP = {
    "1st Right": FIRST_RIGHT,
    "2nd Right": SECOND_RIGHT,
}

# Reason recorded when an upload marks a nondh Radd without saying why
DEFAULT_INVALID_REASON = "NA"


def map_status(raw: Any) -> str:
    """Local status label → raw status; anything unrecognised reads as valid."""
    if raw in STATUS_MAP.values():
        return raw
    return STATUS_MAP.get(str(raw or "").strip(), VALID)


def map_type(raw: Any) -> Optional[str]:
    label = str(raw or "").strip()
    if label in NONDH_TYPE_MAP:
        return NONDH_TYPE_MAP[label]
    if label in NONDH_TYPE_MAP.values():
        return label
    return None


def parse_payload_area(raw: Any) -> Area:
    """Area from ``{sqm}``, ``{acre, guntha}``, a bare number (sq m) or free text."""
    if isinstance(raw, str):
        parsed = parse_area(raw, "sq_m")
        if parsed is None:
            raise ValueError(f"Unparseable area '{raw}'")
        return parsed
    if isinstance(raw, (int, float)):
        return Area.of(raw, "sq_m")
    return Area.from_dict(raw)


def parse_survey_refs(raw: Any) -> tuple[SurveyRef, ...]:
    """Affected survey numbers, each parsed exactly once into a SurveyRef.

    Uploads carry them as objects (``{"number", "type"}``) or as JSON text of
    such an object; a plain string is a bare survey number.
    """
    refs = []
    for item in raw or []:
        if isinstance(item, str):
            text = item.strip()
            if text.startswith("{"):
                try:
                    item = json.loads(text)
                except json.JSONDecodeError:
                    logger.warning(f"Ignoring malformed affected survey number: {text!r}")
                    continue
            else:
                item = {"number": text}
        if not isinstance(item, dict):
            continue
        value = str(item.get("number", item.get("value", "")) or "").strip()
        if not value:
            continue
        refs.append(SurveyRef(value, normalize_identifier_class(item.get("type", item.get("class")))))
    return tuple(refs)


# ═══════════════════════════════════════════════════
# RESULT
# ═══════════════════════════════════════════════════

@dataclass
class IngestionResult:
    snapshot: ParcelSnapshot
    errors: list[str] = field(default_factory=list)
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "parcel_id": self.snapshot.parcel_id,
            "amendments": len(self.snapshot.amendments),
            "details": len(self.snapshot.details),
            "year_slabs": len(self.snapshot.year_slabs),
            "skipped": self.skipped,
            "errors": self.errors,
        }


# ═══════════════════════════════════════════════════
# VALIDATION (per record)
# ═══════════════════════════════════════════════════

def validate_detail(detail: dict) -> list[str]:
    """Field-level problems with one uploaded nondh detail (empty list = OK)."""
    if not isinstance(detail, dict):
        return ["Detail missing"]
    errors = []
    if not detail.get("nondhNumber"):
        errors.append("Missing nondh number")
    if not detail.get("type"):
        errors.append("Missing type")
    elif map_type(detail["type"]) is None:
        errors.append(
            f"Invalid nondh type '{detail['type']}'. "
            f"Must be one of: {', '.join(NONDH_TYPE_MAP)}"
        )
    if not detail.get("date"):
        errors.append("Missing date")
    elif parse_date(str(detail["date"])) is None:
        errors.append("Date must be in ddmmyyyy format (e.g., 15012020)")
    tenure = detail.get("tenure")
    if tenure and tenure not in TENURES:
        errors.append(f"Invalid tenure type '{tenure}'. Must be one of: {', '.join(sorted(TENURES))}")
    if map_type(detail.get("type")) == COURT_ORDER:
        authority = detail.get("hukamType")
        if authority and authority not in COURT_ORDER_AUTHORITIES:
            errors.append(f"Invalid hukam type '{authority}'")
        right = detail.get("ganotType")
        if right and right not in RIGHT_MAP and right not in RIGHT_MAP.values():
            errors.append(f"Invalid ganot type '{right}'. Must be one of: {', '.join(RIGHT_MAP)}")
    return errors


# ═══════════════════════════════════════════════════
# RECORD BUILDERS
# ═══════════════════════════════════════════════════

def _relations(owners: list[dict]) -> tuple[OwnerRelation, ...]:
    out = []
    for owner in owners or []:
        name = clean_name(owner.get("name", owner.get("owner_name")))
        if not name:
            continue
        out.append(OwnerRelation(
            owner_name=name,
            area=parse_payload_area(owner.get("area")),
            survey_no=str(owner.get("surveyNumber", "") or ""),
            tenure=str(owner.get("tenure", "") or ""),
        ))
    return tuple(out)


def _affected_entries(raw: list[dict]) -> tuple[AffectedEntry, ...]:
    entries = []
    for item in raw or []:
        status = map_status(item.get("status"))
        reason = str(item.get("invalidReason", "") or "")
        if status == INVALID and not reason.strip():
            reason = DEFAULT_INVALID_REASON
        entries.append(AffectedEntry(
            number=normalize_number(item.get("nondhNo", item.get("number", ""))),
            status=status,
            reason=reason,
        ))
    return tuple(entries)


def build_detail(raw: dict, amendment_id: str) -> AmendmentDetail:
    """One uploaded nondh detail → AmendmentDetail (raises ValueError on bad areas)."""
    kind = map_type(raw.get("type")) or OTHER
    status = map_status(raw.get("status"))
    invalid_reason = ""
    if status == INVALID:
        invalid_reason = str(raw.get("invalidReason") or "").strip() or DEFAULT_INVALID_REASON

    old_owner = clean_name(raw.get("oldOwner"))
    relations = _relations(raw.get("owners")) + _relations(raw.get("newOwners"))
    right = raw.get("ganotType") or ""
    right = RIGHT_MAP.get(right, right)
    mode = raw.get("distributionMode") or MANUAL
    if mode not in (EQUAL, MANUAL):
        mode = MANUAL

    return AmendmentDetail(
        amendment_id=amendment_id,
        type=kind,
        date=parse_date(str(raw.get("date") or "")),
        status=status,
        invalid_reason=invalid_reason,
        old_owner=old_owner,
        owner_relations=relations,
        authority=(raw.get("hukamType") or "SSRD") if kind == COURT_ORDER else "",
        affected_range=_affected_entries(raw.get("affectedNondhDetails")),
        right=right if kind == COURT_ORDER else "",
        order_date=parse_date(str(raw.get("hukamDate") or "")),
        restraining_order=bool(raw.get("restrainingOrder")),
        distribution_mode=mode,
        manual_areas=tuple(
            r.area for r in relations if r.owner_name != old_owner
        ) if mode == MANUAL else (),
        tenure=str(raw.get("tenure") or "Navi"),
        vigat=str(raw.get("vigat") or ""),
        reason=str(raw.get("reason") or ""),
        sale_deed_date=parse_date(str(raw.get("sdDate") or "")),
        amount=str(raw["amount"]) if raw.get("amount") not in (None, "") else None,
        show_in_output=raw.get("showInOutput") is not False,
    )


def _slab_entries(raw: list[dict]) -> tuple[SlabEntry, ...]:
    entries = []
    for item in raw or []:
        number = item.get("sNo")
        entries.append(SlabEntry(
            area=parse_payload_area(item.get("area")),
            identifier=SurveyRef(str(number), normalize_identifier_class(item.get("sNoType")))
            if number else None,
        ))
    return tuple(entries)


def build_year_slab(raw: dict, index: int) -> YearSlab:
    number = raw.get("sNo")
    return YearSlab(
        id=str(raw.get("id") or f"slab-{index + 1}"),
        start_year=int(raw["startYear"]),
        end_year=int(raw["endYear"]),
        area=parse_payload_area(raw.get("area")),
        identifier=SurveyRef(str(number), normalize_identifier_class(raw.get("sNoType")))
        if number else None,
        paiky_entries=_slab_entries(raw.get("paikyEntries")),
        ekatrikaran_entries=_slab_entries(raw.get("ekatrikaranEntries")),
    )


# ═══════════════════════════════════════════════════
# MAIN ENTRY POINT
# ═══════════════════════════════════════════════════

def ingest_payload(payload: dict, parcel_id: str) -> IngestionResult:
    """Convert an uploaded payload into a recomputed ParcelSnapshot.

    Amendments whose number breaks the number grammar, and details that
    fail validation or name no uploaded nondh, are skipped with an error
    message; everything else is kept.
    """
    if not isinstance(payload, dict):
        raise ValueError("Payload must be a JSON object")

    if "amendments" in payload or "details" in payload:
        snapshot = ParcelSnapshot.from_dict({**payload, "parcel_id": parcel_id})
        logger.info(f"Ingested native snapshot for parcel {parcel_id}")
        return IngestionResult(snapshot=recompute(snapshot))

    errors: list[str] = []
    skipped = 0

    amendments: list[Amendment] = []
    by_number: dict[str, str] = {}
    for i, raw in enumerate(payload.get("nondhs") or []):
        number = normalize_number(raw.get("number", ""))
        if not is_valid_number(number):
            errors.append(f"Nondh {raw.get('number', '?')}: number must match digits[-/digits]*")
            skipped += 1
            continue
        if number in by_number:
            errors.append(f"Nondh {number}: duplicate number in payload")
            skipped += 1
            continue
        amendment_id = str(raw.get("id") or f"nondh-{i + 1}")
        amendments.append(Amendment(
            id=amendment_id,
            number=number,
            affected=parse_survey_refs(raw.get("affectedSNos", raw.get("affected_s_nos"))),
        ))
        by_number[number] = amendment_id

    details: dict[str, AmendmentDetail] = {}
    for raw in payload.get("nondhDetails") or []:
        label = raw.get("nondhNumber", "unknown") if isinstance(raw, dict) else "unknown"
        problems = validate_detail(raw)
        if problems:
            errors.append(f"Nondh {label}: {', '.join(problems)}")
            skipped += 1
            continue
        amendment_id = by_number.get(normalize_number(raw["nondhNumber"]))
        if amendment_id is None:
            errors.append(f"Nondh {label}: No matching nondh found in nondhs array")
            skipped += 1
            continue
        if amendment_id in details:
            errors.append(f"Nondh {label}: more than one detail supplied")
            skipped += 1
            continue
        try:
            details[amendment_id] = build_detail(raw, amendment_id)
        except ValueError as e:
            errors.append(f"Nondh {label}: {e}")
            skipped += 1

    # Every amendment carries exactly one detail
    for amendment in amendments:
        details.setdefault(amendment.id, AmendmentDetail(amendment_id=amendment.id))

    slabs = []
    for i, raw in enumerate(payload.get("yearSlabs") or []):
        try:
            slabs.append(build_year_slab(raw, i))
        except (KeyError, TypeError, ValueError) as e:
            errors.append(f"Year slab {i + 1}: {e}")
            skipped += 1

    snapshot = ParcelSnapshot(
        parcel_id=parcel_id,
        amendments=tuple(amendments),
        details=tuple(details[a.id] for a in amendments),
        year_slabs=tuple(slabs),
    )
    _trace(f"INGEST {parcel_id}: {len(amendments)} nondhs, {len(slabs)} slabs, errors={errors}")
    if errors:
        logger.warning(f"Ingestion of parcel {parcel_id}: skipped {skipped} record(s)")
    logger.info(f"Ingested parcel {parcel_id}: {len(amendments)} nondh(s)")
    return IngestionResult(snapshot=recompute(snapshot), errors=errors, skipped=skipped)
