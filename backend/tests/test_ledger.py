"""Tests for backend/app/nondh/ledger.py: year-slab area ceilings."""

from datetime import date

from app.nondh.ledger import AreaLedger, slab_total
from app.nondh.models import SlabEntry, SurveyRef, YearSlab

from conftest import slab, sqm


class TestSlabTotal:

    def test_plain_slab(self):
        assert slab_total(slab(2000, 2010, 800)) == sqm(800)

    def test_sub_allocations_replace_slab_area(self):
        s = YearSlab(
            id="s", start_year=2000, end_year=2010, area=sqm(800),
            paiky_entries=(SlabEntry(sqm(300)), SlabEntry(sqm(200))),
            ekatrikaran_entries=(SlabEntry(sqm(150)),),
        )
        assert slab_total(s) == sqm(650)


class TestAreaLedger:

    def test_year_range_is_inclusive(self):
        ledger = AreaLedger([slab(2000, 2010, 800)])
        assert ledger(date(2000, 1, 1)) == sqm(800)
        assert ledger(date(2010, 12, 31)) == sqm(800)

    def test_no_covering_slab_means_no_ceiling(self):
        ledger = AreaLedger([slab(2000, 2010, 800)])
        assert ledger(date(2011, 1, 1)) is None
        assert ledger(None) is None

    def test_first_covering_slab_wins(self):
        ledger = AreaLedger([slab(2000, 2010, 800, "a"), slab(2005, 2015, 500, "b")])
        assert ledger.slab_for(date(2007, 1, 1)).id == "a"
        assert ledger(date(2012, 1, 1)) == sqm(500)

    def test_identifier_tagged_slabs(self):
        tagged = YearSlab(id="t", start_year=2000, end_year=2010, area=sqm(300),
                          identifier=SurveyRef("45"))
        ledger = AreaLedger([tagged, slab(2000, 2010, 900, "u")])
        assert ledger.ceiling_at(date(2005, 1, 1), SurveyRef("45")) == sqm(300)
        assert ledger.ceiling_at(date(2005, 1, 1), SurveyRef("46")) == sqm(900)
