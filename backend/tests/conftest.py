"""Shared fixtures for the nondh chain engine test suite."""

import pytest
from datetime import date

from app.nondh.area import Area
from app.nondh.models import (
    COURT_ORDER,
    FIRST_RIGHT,
    INHERITANCE,
    INVALID,
    POSSESSION,
    SALE,
    SURVEY_NO,
    AffectedEntry,
    Amendment,
    AmendmentDetail,
    OwnerRelation,
    ParcelSnapshot,
    SurveyRef,
    YearSlab,
)


def sqm(value) -> Area:
    return Area.of(value, "sq_m")


def amend(amendment_id: str, number: str, kind: str = SURVEY_NO, value: str = "45") -> Amendment:
    return Amendment(id=amendment_id, number=number, affected=(SurveyRef(value, kind),))


def owners(*pairs) -> tuple[OwnerRelation, ...]:
    """owners(("Ramesh", 1000), ("Suresh", 400)) → relations in sq m."""
    return tuple(OwnerRelation(owner_name=name, area=sqm(area)) for name, area in pairs)


def slab(start: int, end: int, area, slab_id: str = "s1") -> YearSlab:
    return YearSlab(id=slab_id, start_year=start, end_year=end, area=sqm(area))


# ═══════════════════════════════════════════════════
# Snapshot fixtures
# ═══════════════════════════════════════════════════

@pytest.fixture
def sale_chain():
    """Ramesh holds 1000 sq m, sells 400 to Suresh, who leaves it to Asha and Kiran.

    One year slab of 1000 sq m covers the whole chain.
    """
    return ParcelSnapshot(
        parcel_id="block-44",
        amendments=(amend("n1", "1"), amend("n2", "2"), amend("n3", "3")),
        details=(
            AmendmentDetail("n1", type=POSSESSION, date=date(2000, 1, 1),
                            owner_relations=owners(("Ramesh", 1000))),
            AmendmentDetail("n2", type=SALE, date=date(2005, 6, 1), old_owner="Ramesh",
                            owner_relations=owners(("Suresh", 400))),
            AmendmentDetail("n3", type=INHERITANCE, date=date(2010, 1, 1), old_owner="Suresh",
                            owner_relations=owners(("Asha", 200), ("Kiran", 200))),
        ),
        year_slabs=(slab(1995, 2020, 1000),),
    )


@pytest.fixture
def court_order_chain():
    """Amendments 5, 6 and 7, then a court order (8) that lists 7 as disputed."""
    return ParcelSnapshot(
        parcel_id="block-77",
        amendments=(amend("a5", "5"), amend("a6", "6"), amend("a7", "7"), amend("a8", "8")),
        details=(
            AmendmentDetail("a5", date=date(2001, 1, 1), owner_relations=owners(("Mohan", 500))),
            AmendmentDetail("a6", date=date(2002, 1, 1), owner_relations=owners(("Gita", 500))),
            AmendmentDetail("a7", date=date(2003, 1, 1), owner_relations=owners(("Hari", 500))),
            AmendmentDetail(
                "a8", type=COURT_ORDER, date=date(2004, 1, 1), authority="Collector",
                affected_range=(AffectedEntry("7", INVALID, "disputed"),),
            ),
        ),
    )


@pytest.fixture
def first_right_chain():
    """Ramesh holds 1000 sq m; a 1st Right court order hands 300 of it to a tenant."""
    return ParcelSnapshot(
        parcel_id="block-52",
        amendments=(amend("n1", "1"), amend("c2", "2"), amend("n3", "3")),
        details=(
            AmendmentDetail("n1", type=POSSESSION, date=date(2000, 1, 1),
                            owner_relations=owners(("Ramesh", 1000))),
            AmendmentDetail("c2", type=COURT_ORDER, date=date(2005, 1, 1), authority="ALT Krushipanch",
                            right=FIRST_RIGHT, old_owner="Ramesh",
                            owner_relations=owners(("Tenant", 300))),
            AmendmentDetail("n3", type=POSSESSION, date=date(2010, 1, 1)),
        ),
        year_slabs=(slab(1995, 2020, 2000),),
    )


@pytest.fixture
def upload_payload():
    """Bulk upload in the data-entry team's format, with a few bad records."""
    return {
        "basicInfo": {"district": "Anand", "taluka": "Borsad", "village": "Vasad", "blockNo": "45"},
        "yearSlabs": [
            {"startYear": 1995, "endYear": 2020, "area": {"acre": 1, "guntha": 0}},
        ],
        "nondhs": [
            {"number": 1, "affectedSNos": ['{"number": "45", "type": "s_no"}']},
            {"number": "2", "affectedSNos": [{"number": "45", "type": "s_no"}]},
            {"number": "3a", "affectedSNos": []},
        ],
        "nondhDetails": [
            {
                "nondhNumber": "1", "type": "Kabjedaar", "date": "01012000",
                "vigat": "Original holding", "status": "Pramaanik",
                "owners": [{"name": "Ramesh", "area": {"acre": 1, "guntha": 0}}],
            },
            {
                "nondhNumber": "2", "type": "Vechand", "date": "15062005",
                "vigat": "Sale deed", "status": "Radd", "oldOwner": "Ramesh",
                "newOwners": [{"name": "Suresh", "area": {"sqm": 1000}}],
            },
            {"nondhNumber": "9", "type": "Varsai", "date": "01012010", "vigat": "x"},
            {"nondhNumber": "1", "type": "Bogus", "date": "01012000", "vigat": "x"},
        ],
    }
