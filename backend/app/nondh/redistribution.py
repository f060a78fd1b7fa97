"""Redistribution Engine: splitting an old owner's area among new owners.

Two modes:

  equal   effective = min(old owner area, year-slab ceiling); each of the
          *n* targets receives effective / n, exactly.
  manual  each single edit is checked against (a) the old owner's area
          and (b) the ceiling for the amendment's date.  A rejected edit
          reports the largest value that would have been accepted.

All arithmetic is rational (see :mod:`app.nondh.area`), so equal shares
always sum back to the effective area with no remainder lost.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from app.config import TRACE_ENABLED
from app.nondh.area import Area, sum_areas
from app.nondh.issues import AREA_OVERFLOW, FORMAT_ERROR, Issue, make_issue
from app.nondh.models import EQUAL, MANUAL

logger = logging.getLogger(__name__)


def _trace(msg: str):
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


@dataclass(frozen=True)
class Allocation:
    owner_name: str
    area: Area

    def to_dict(self) -> dict:
        return {"owner_name": self.owner_name, "area": self.area.to_dict()}


@dataclass(frozen=True)
class RedistributionResult:
    mode: str
    allocations: tuple[Allocation, ...]
    effective_area: Area
    ceiling_exceeded: bool = False

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "allocations": [a.to_dict() for a in self.allocations],
            "effective_area": self.effective_area.to_dict(),
            "ceiling_exceeded": self.ceiling_exceeded,
        }


def effective_area(old_owner_area: Area, ceiling: Optional[Area]) -> tuple[Area, bool]:
    """(area available to split, whether the ceiling capped it)."""
    if ceiling is not None and old_owner_area > ceiling:
        return ceiling.to(old_owner_area.unit), True
    return old_owner_area, False


def equal_split(old_owner_area: Area, targets: Sequence[str],
                ceiling: Optional[Area] = None) -> RedistributionResult:
    """Divide the effective area evenly across ``targets``."""
    available, capped = effective_area(old_owner_area, ceiling)
    if not targets:
        return RedistributionResult(EQUAL, (), available, capped)
    share = available / len(targets)
    _trace(f"REDISTRIBUTE equal {available} / {len(targets)} = {share} (capped={capped})")
    return RedistributionResult(
        mode=EQUAL,
        allocations=tuple(Allocation(name, share) for name in targets),
        effective_area=available,
        ceiling_exceeded=capped,
    )


def redistribute(old_owner_area: Area, targets: Sequence[str], mode: str,
                 ceiling: Optional[Area] = None,
                 manual_areas: Sequence[Area] = ()) -> RedistributionResult:
    """Allocation for ``targets`` under ``mode``.

    In manual mode the stored ``manual_areas`` are returned as they are
    (missing trailing values read as zero); they were validated edit by
    edit when entered.
    """
    if mode == EQUAL:
        return equal_split(old_owner_area, targets, ceiling)
    if mode != MANUAL:
        raise ValueError(f"Unknown distribution mode {mode!r}")
    unit = old_owner_area.unit
    allocations = tuple(
        Allocation(name, manual_areas[i] if i < len(manual_areas) else Area.zero(unit))
        for i, name in enumerate(targets)
    )
    total = sum_areas((a.area for a in allocations), unit)
    return RedistributionResult(
        mode=MANUAL,
        allocations=allocations,
        effective_area=total,
        ceiling_exceeded=ceiling is not None and total > ceiling,
    )


def check_manual_edit(areas: Sequence[Area], index: int, proposed: Area, *,
                      old_owner_area: Optional[Area] = None,
                      ceiling: Optional[Area] = None,
                      amendment_id: str | None = None) -> Optional[Issue]:
    """Validate setting ``areas[index]`` to ``proposed``.

    Returns AREA_OVERFLOW (carrying ``max_permissible``) when the new total
    would exceed the old owner's area or the year-slab ceiling, FORMAT_ERROR
    for a negative area, and None when the edit is acceptable.
    """
    if proposed.magnitude < 0:
        return make_issue(
            FORMAT_ERROR,
            "Area cannot be negative.",
            evidence=f"proposed={proposed}",
            amendment_id=amendment_id,
        )
    others = sum_areas(
        (a for i, a in enumerate(areas) if i != index), proposed.unit
    )

    limits: list[tuple[str, Area]] = []
    if old_owner_area is not None:
        limits.append(("old owner's remaining area", old_owner_area))
    if ceiling is not None:
        limits.append(("year slab area", ceiling))

    for label, limit in sorted(limits, key=lambda item: item[1]):
        if others + proposed <= limit:
            continue
        allowed = (limit - others).floor_zero().to(proposed.unit)
        _trace(f"REDISTRIBUTE reject {proposed} at #{index}: others={others}, {label}={limit}")
        return make_issue(
            AREA_OVERFLOW,
            f"Total area ({others + proposed}) cannot exceed the {label} ({limit}); "
            f"at most {allowed} can be assigned here.",
            evidence=f"others={others}, proposed={proposed}, limit={limit}",
            amendment_id=amendment_id,
            max_permissible=allowed,
        )
    return None
