"""Parcel chain endpoints: read the canonical chain and apply engine mutations.

Every mutation loads the stored snapshot, runs one engine operation and,
only when the result is not blocked, persists the returned snapshot.
Blocked mutations answer 422 with the issue list and store nothing.
"""

import logging
from typing import Any, Callable, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.nondh import engine
from app.nondh.area import Area
from app.nondh.checks import run_chain_checks
from app.nondh.ingestion import ingest_payload
from app.nondh.issues import MutationResult
from app.nondh.lineage import LineageResolver
from app.nondh.models import (
    FIRST_RIGHT,
    MANUAL,
    SECOND_RIGHT,
    VALID,
    Amendment,
    AmendmentDetail,
    ParcelSnapshot,
    SurveyRef,
    normalize_identifier_class,
)
from app.nondh.store import RecordStore

router = APIRouter()
logger = logging.getLogger(__name__)

store = RecordStore()

_RIGHT_ALIASES = {
    "firstRight": FIRST_RIGHT, "first_right": FIRST_RIGHT, "1st Right": FIRST_RIGHT,
    "secondRight": SECOND_RIGHT, "second_right": SECOND_RIGHT, "2nd Right": SECOND_RIGHT,
}


# ── Request bodies ──

class AmendmentIn(BaseModel):
    id: str
    number: str
    affected: list[dict[str, Any]] = []
    type: str = "possession"
    date: Optional[str] = None
    status: str = VALID
    invalid_reason: str = ""
    old_owner: str = ""
    owner_relations: list[dict[str, Any]] = []


class StatusIn(BaseModel):
    status: str
    invalid_reason: str = ""


class DateIn(BaseModel):
    date: Optional[str] = None


class AreaIn(BaseModel):
    area: dict[str, Any]


class DistributionIn(BaseModel):
    mode: str = MANUAL


class RightIn(BaseModel):
    right: str = ""


# ── Helpers ──

def _load(parcel_id: str) -> ParcelSnapshot:
    try:
        return store.get(parcel_id)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Parcel not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _right(raw: str) -> str:
    if not raw:
        return ""
    if raw not in _RIGHT_ALIASES:
        raise HTTPException(status_code=422, detail=f"Unknown right '{raw}'")
    return _RIGHT_ALIASES[raw]


def _mutate(parcel_id: str, operation: Callable[[ParcelSnapshot], MutationResult]) -> JSONResponse:
    """Run one engine mutation against the stored snapshot and persist on success."""
    snapshot = _load(parcel_id)
    try:
        result = operation(snapshot)
    except (KeyError, IndexError) as e:
        raise HTTPException(status_code=404, detail=str(e).strip("'"))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    body = result.to_dict()
    if not result.ok:
        return JSONResponse(status_code=422, content=body)
    store.replace_all(parcel_id, result.snapshot)
    body["chain"] = engine.chain_view(result.snapshot)
    return JSONResponse(content=body)


# ── Reads ──

@router.get("/")
async def list_parcels():
    return {"parcels": store.list_parcels()}


@router.get("/{parcel_id}/chain")
async def get_chain(parcel_id: str):
    snapshot = _load(parcel_id)
    return {
        "parcel_id": parcel_id,
        "chain": engine.chain_view(snapshot),
        "checks": [i.to_dict() for i in run_chain_checks(snapshot)],
    }


@router.get("/{parcel_id}/amendments/{amendment_id}/previous-owners")
async def get_previous_owners(parcel_id: str, amendment_id: str,
                              identifier: Optional[str] = None,
                              identifier_class: Optional[str] = None):
    snapshot = _load(parcel_id)
    ref = None
    if identifier:
        # No class given: match the identifier value in any class
        kind = normalize_identifier_class(identifier_class) if identifier_class else ""
        ref = SurveyRef(identifier, kind)
    try:
        owners = engine.previous_owners(snapshot, amendment_id, ref)
    except KeyError:
        raise HTTPException(status_code=404, detail="Amendment not found")
    return {"amendment_id": amendment_id, "owners": [o.to_dict() for o in owners]}


@router.get("/{parcel_id}/amendments/{amendment_id}/right-owners")
async def get_right_owners(parcel_id: str, amendment_id: str, right: str):
    snapshot = _load(parcel_id)
    resolver = LineageResolver(snapshot)
    try:
        if _right(right) == FIRST_RIGHT:
            old, new = resolver.first_right_owners(amendment_id)
            return {
                "amendment_id": amendment_id,
                "old": [o.to_dict() for o in old],
                "new": [o.to_dict() for o in new],
            }
        owners = resolver.second_right_owners(amendment_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Amendment not found")
    return {"amendment_id": amendment_id, "owners": [o.to_dict() for o in owners]}


# ── Mutations ──

@router.put("/{parcel_id}")
async def replace_parcel(parcel_id: str, payload: dict[str, Any]):
    """Replace the parcel's full state from an upload payload."""
    try:
        result = ingest_payload(payload, parcel_id)
        store.replace_all(parcel_id, result.snapshot)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {
        **result.to_dict(),
        "chain": engine.chain_view(result.snapshot),
        "checks": [i.to_dict() for i in run_chain_checks(result.snapshot)],
    }


@router.post("/{parcel_id}/amendments")
async def add_amendment(parcel_id: str, req: AmendmentIn):
    amendment = Amendment.from_dict({"id": req.id, "number": req.number, "affected": req.affected})
    try:
        detail = AmendmentDetail.from_dict({
            "amendment_id": req.id,
            "type": req.type,
            "date": req.date,
            "status": req.status,
            "invalid_reason": req.invalid_reason,
            "old_owner": req.old_owner,
            "owner_relations": req.owner_relations,
        })
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _mutate(parcel_id, lambda s: engine.add_amendment(s, amendment, detail))


@router.post("/{parcel_id}/amendments/{amendment_id}/status")
async def set_status(parcel_id: str, amendment_id: str, req: StatusIn):
    return _mutate(parcel_id, lambda s: engine.set_status(
        s, amendment_id, req.status, req.invalid_reason,
    ))


@router.post("/{parcel_id}/amendments/{amendment_id}/date")
async def set_date(parcel_id: str, amendment_id: str, req: DateIn):
    return _mutate(parcel_id, lambda s: engine.set_date(s, amendment_id, req.date))


@router.post("/{parcel_id}/amendments/{amendment_id}/owners/{index}/area")
async def set_owner_area(parcel_id: str, amendment_id: str, index: int, req: AreaIn):
    try:
        area = Area.from_dict(req.area)
    except (ValueError, ZeroDivisionError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _mutate(parcel_id, lambda s: engine.set_owner_area(s, amendment_id, index, area))


@router.post("/{parcel_id}/amendments/{amendment_id}/distribution")
async def set_distribution(parcel_id: str, amendment_id: str, req: DistributionIn):
    return _mutate(parcel_id, lambda s: engine.set_distribution_mode(s, amendment_id, req.mode))


@router.post("/{parcel_id}/amendments/{amendment_id}/affected/{number:path}/toggle")
async def toggle_affected(parcel_id: str, amendment_id: str, number: str):
    return _mutate(parcel_id, lambda s: engine.toggle_affected_entry(s, amendment_id, number))


@router.post("/{parcel_id}/amendments/{amendment_id}/affected/apply")
async def apply_affected(parcel_id: str, amendment_id: str):
    return _mutate(parcel_id, lambda s: engine.apply_affected_range(s, amendment_id))


@router.post("/{parcel_id}/amendments/{amendment_id}/right")
async def set_right(parcel_id: str, amendment_id: str, req: RightIn):
    right = _right(req.right)
    return _mutate(parcel_id, lambda s: engine.set_right(s, amendment_id, right))
