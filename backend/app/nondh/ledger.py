"""Area Ledger: the year-slab area ceiling applicable on a given date.

Year slabs are read-only input produced earlier in the workflow.  A slab
covers an inclusive year range; when it is split into paiky /
ekatrikaran sub-allocations the ceiling is the sum of those entries
(converted exactly into the slab's unit), otherwise it is the slab's own
area.

The ledger is a pure function of the date (and optionally the identifier),
so any callable with the same signature can stand in for it.
"""

import logging
from datetime import date
from typing import Callable, Iterable, Optional

from app.config import TRACE_ENABLED
from app.nondh.area import Area, sum_areas
from app.nondh.models import SurveyRef, YearSlab

logger = logging.getLogger(__name__)

CeilingProvider = Callable[[Optional[date]], Optional[Area]]


def _trace(msg: str):
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


def slab_total(slab: YearSlab) -> Area:
    """Total area of one slab, honouring sub-allocations."""
    entries = list(slab.paiky_entries) + list(slab.ekatrikaran_entries)
    if not entries:
        return slab.area
    return sum_areas((e.area for e in entries), slab.area.unit)


class AreaLedger:
    """Resolves the area ceiling for a date from a parcel's year slabs."""

    def __init__(self, year_slabs: Iterable[YearSlab] = ()):
        self.year_slabs = tuple(year_slabs)

    def slab_for(self, on: Optional[date], identifier: SurveyRef | None = None) -> Optional[YearSlab]:
        """First slab covering ``on``'s year.

        With an identifier, slabs tagged with a different identifier value
        are skipped; untagged slabs apply to every identifier.
        """
        if on is None:
            return None
        for slab in self.year_slabs:
            if not slab.covers(on.year):
                continue
            if identifier and slab.identifier and slab.identifier.value != identifier.value:
                continue
            return slab
        return None

    def ceiling_at(self, on: Optional[date], identifier: SurveyRef | None = None) -> Optional[Area]:
        """Area ceiling for ``on`` or None when no slab covers it (no ceiling applies)."""
        slab = self.slab_for(on, identifier)
        if slab is None:
            _trace(f"LEDGER no slab for {on}")
            return None
        total = slab_total(slab)
        _trace(f"LEDGER {on} → slab {slab.id} ({slab.start_year}-{slab.end_year}) = {total}")
        return total

    def __call__(self, on: Optional[date]) -> Optional[Area]:
        return self.ceiling_at(on)
