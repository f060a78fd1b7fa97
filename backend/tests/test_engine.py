"""Tests for backend/app/nondh/engine.py: recompute and every mutation.

Every rejected mutation must hand back the caller's prior snapshot object
unchanged; every accepted one returns a fully recomputed snapshot.
"""

import pytest
from dataclasses import replace
from datetime import date

from app.nondh import engine
from app.nondh.models import (
    BLOCK_NO,
    COURT_ORDER,
    EQUAL,
    FIRST_RIGHT,
    INVALID,
    MANUAL,
    SALE,
    SECOND_RIGHT,
    VALID,
    AffectedEntry,
    AmendmentDetail,
)

from conftest import amend, owners, slab, sqm


def _areas(snapshot, amendment_id):
    return [r.area for r in snapshot.detail(amendment_id).owner_relations]


def _codes(result):
    return [i.rule_code for i in result.issues]


# ═══════════════════════════════════════════════════
# RECOMPUTE
# ═══════════════════════════════════════════════════

class TestRecompute:

    def test_sorts_into_canonical_order(self, sale_chain):
        shuffled = replace(sale_chain, amendments=tuple(reversed(sale_chain.amendments)))
        assert [a.id for a in engine.recompute(shuffled).amendments] == ["n1", "n2", "n3"]

    def test_idempotent(self, sale_chain):
        chain = sale_chain.with_detail(
            replace(sale_chain.detail("n2"), status=INVALID, invalid_reason="forged")
        )
        once = engine.recompute(chain)
        assert engine.recompute(once) == once

    def test_owner_flags_follow_parity(self, sale_chain):
        chain = sale_chain.with_detail(
            replace(sale_chain.detail("n3"), status=INVALID, invalid_reason="forged")
        )
        out = engine.recompute(chain)
        assert all(not r.is_valid for r in out.detail("n1").owner_relations)
        assert all(r.is_valid for r in out.detail("n3").owner_relations)

    def test_equal_mode_follows_upstream_change(self, sale_chain):
        chain = sale_chain.with_detail(replace(sale_chain.detail("n3"), distribution_mode=EQUAL))
        chain = chain.with_detail(replace(chain.detail("n2"), owner_relations=owners(("Suresh", 600))))
        assert _areas(engine.recompute(chain), "n3") == [sqm(300), sqm(300)]


# ═══════════════════════════════════════════════════
# ADD AMENDMENT
# ═══════════════════════════════════════════════════

class TestAddAmendment:

    def test_accepts_composite_number(self, sale_chain):
        result = engine.add_amendment(sale_chain, amend("n4", "10-35"))
        assert result.ok
        assert [a.number for a in result.snapshot.amendments][-1] == "10-35"
        assert result.snapshot.detail("n4").status == VALID

    def test_format_error(self, sale_chain):
        result = engine.add_amendment(sale_chain, amend("n4", "12a"))
        assert _codes(result) == ["FORMAT_ERROR"]
        assert result.snapshot is sale_chain

    def test_duplicate_number_in_class(self, sale_chain):
        result = engine.add_amendment(sale_chain, amend("n4", "2-5"))
        assert _codes(result) == ["ORDERING_VIOLATION"]
        assert result.snapshot is sale_chain

    def test_same_number_other_class(self, sale_chain):
        assert engine.add_amendment(sale_chain, amend("b2", "2", BLOCK_NO)).ok

    def test_duplicate_id(self, sale_chain):
        assert _codes(engine.add_amendment(sale_chain, amend("n1", "9"))) == ["DANGLING_REFERENCE"]

    def test_date_checked_against_neighbors(self, sale_chain):
        result = engine.add_amendment(
            sale_chain, amend("n4", "4"), AmendmentDetail("n4", date=date(2009, 1, 1)),
        )
        assert _codes(result) == ["ORDERING_VIOLATION"]

    def test_invalid_needs_reason(self, sale_chain):
        result = engine.add_amendment(
            sale_chain, amend("n4", "4"), AmendmentDetail("n4", status=INVALID),
        )
        assert _codes(result) == ["MISSING_REASON"]

    def test_new_owners_checked_against_old_owner_and_slab(self, sale_chain):
        """Asha holds 200 and the slab allows 1000; Zed cannot receive 5000."""
        detail = AmendmentDetail("n4", type=SALE, date=date(2015, 1, 1), old_owner="Asha",
                                 owner_relations=owners(("Zed", 5000)))
        result = engine.add_amendment(sale_chain, amend("n4", "4"), detail)
        assert _codes(result) == ["AREA_OVERFLOW", "AREA_OVERFLOW"]
        assert [i.max_permissible for i in result.issues] == [sqm(200), sqm(1000)]
        assert result.snapshot is sale_chain

    def test_possession_checked_against_slab(self, sale_chain):
        detail = AmendmentDetail("n4", date=date(2015, 1, 1), owner_relations=owners(("Zed", 1500)))
        result = engine.add_amendment(sale_chain, amend("n4", "4"), detail)
        assert _codes(result) == ["AREA_OVERFLOW"]
        assert result.issues[0].max_permissible == sqm(1000)
        assert result.snapshot is sale_chain

    def test_sale_within_holding_accepted(self, sale_chain):
        detail = AmendmentDetail("n4", type=SALE, date=date(2015, 1, 1), old_owner="Asha",
                                 owner_relations=owners(("Zed", 150)))
        result = engine.add_amendment(sale_chain, amend("n4", "4"), detail)
        assert result.ok
        assert _areas(result.snapshot, "n4") == [sqm(150)]


# ═══════════════════════════════════════════════════
# STATUS & DATE
# ═══════════════════════════════════════════════════

class TestSetStatus:

    def test_invalid_without_reason_rejected(self, sale_chain):
        result = engine.set_status(sale_chain, "n2", INVALID)
        assert _codes(result) == ["MISSING_REASON"]
        assert result.snapshot is sale_chain

    def test_invalid_flips_earlier_owners(self, sale_chain):
        result = engine.set_status(sale_chain, "n2", INVALID, "forged deed")
        assert result.ok
        out = result.snapshot
        assert out.detail("n2").invalid_reason == "forged deed"
        assert not out.detail("n1").owner_relations[0].is_valid
        assert out.detail("n3").owner_relations[0].is_valid

    def test_back_to_valid_clears_reason(self, sale_chain):
        out = engine.set_status(sale_chain, "n2", INVALID, "forged").snapshot
        out = engine.set_status(out, "n2", VALID).snapshot
        assert out.detail("n2").invalid_reason == ""
        assert out.detail("n1").owner_relations[0].is_valid

    def test_unknown_status(self, sale_chain):
        assert _codes(engine.set_status(sale_chain, "n2", "pending")) == ["FORMAT_ERROR"]

    def test_unknown_amendment_raises(self, sale_chain):
        with pytest.raises(KeyError):
            engine.set_status(sale_chain, "nope", VALID)


class TestSetDate:

    def test_within_neighbors(self, sale_chain):
        result = engine.set_date(sale_chain, "n2", "15032004")
        assert result.ok
        assert result.snapshot.detail("n2").date == date(2004, 3, 15)

    def test_before_previous_rejected(self, sale_chain):
        result = engine.set_date(sale_chain, "n2", date(1999, 1, 1))
        assert _codes(result) == ["ORDERING_VIOLATION"]
        assert result.snapshot is sale_chain

    def test_unparseable(self, sale_chain):
        assert _codes(engine.set_date(sale_chain, "n2", "someday")) == ["FORMAT_ERROR"]

    def test_clearing_is_allowed(self, sale_chain):
        assert engine.set_date(sale_chain, "n2", None).snapshot.detail("n2").date is None

    def test_moving_into_smaller_slab_rejected(self, sale_chain):
        """Suresh's 400 fits the 2005 slab but not the 300 sq m one before it."""
        chain = replace(sale_chain, year_slabs=(
            slab(1995, 2004, 300, "s1"), slab(2005, 2020, 1000, "s2"),
        ))
        result = engine.set_date(chain, "n2", date(2004, 3, 15))
        assert _codes(result) == ["AREA_OVERFLOW"]
        assert result.issues[0].max_permissible == sqm(300)
        assert result.snapshot is chain

    def test_moving_within_larger_slab_accepted(self, sale_chain):
        chain = replace(sale_chain, year_slabs=(
            slab(1995, 2004, 300, "s1"), slab(2005, 2020, 1000, "s2"),
        ))
        assert engine.set_date(chain, "n2", date(2007, 3, 15)).ok


# ═══════════════════════════════════════════════════
# REDISTRIBUTION
# ═══════════════════════════════════════════════════

class TestSetOwnerArea:

    def test_accepted_edit_is_remembered(self, sale_chain):
        result = engine.set_owner_area(sale_chain, "n2", 0, sqm(700))
        assert result.ok
        detail = result.snapshot.detail("n2")
        assert _areas(result.snapshot, "n2") == [sqm(700)]
        assert detail.manual_areas == (sqm(700),)
        assert detail.distribution_mode == MANUAL

    def test_overflow_of_old_owner_area(self, sale_chain):
        """Kiran has 200 of Suresh's 400, so Asha can take at most 200."""
        result = engine.set_owner_area(sale_chain, "n3", 0, sqm(300))
        assert _codes(result) == ["AREA_OVERFLOW"]
        assert result.issues[0].max_permissible == sqm(200)
        assert result.snapshot is sale_chain

    def test_overflow_of_year_slab(self, sale_chain):
        chain = replace(sale_chain, year_slabs=(slab(1995, 2020, 500),))
        result = engine.set_owner_area(chain, "n2", 0, sqm(600))
        assert result.issues[0].max_permissible == sqm(500)

    def test_conservation_after_many_edits(self, sale_chain):
        snapshot = sale_chain
        for index, value in [(0, 150), (1, 250), (0, 300), (1, 100), (0, 300)]:
            snapshot = engine.set_owner_area(snapshot, "n3", index, sqm(value)).snapshot
            new_total = sum((r.area.magnitude for r in snapshot.detail("n3").owner_relations))
            assert new_total <= 400

    def test_bad_index(self, sale_chain):
        with pytest.raises(IndexError):
            engine.set_owner_area(sale_chain, "n3", 5, sqm(1))


class TestSetOwnerRelations:

    def test_replace_is_accepted_and_remembered(self, sale_chain):
        result = engine.set_owner_relations(sale_chain, "n3", owners(("Asha", 250), ("Kiran", 150)))
        assert result.ok
        assert _areas(result.snapshot, "n3") == [sqm(250), sqm(150)]
        assert result.snapshot.detail("n3").manual_areas == (sqm(250), sqm(150))

    def test_old_owner_overflow(self, sale_chain):
        """Suresh holds 400; Asha and Kiran cannot take 500 between them."""
        result = engine.set_owner_relations(sale_chain, "n3", owners(("Asha", 300), ("Kiran", 200)))
        assert _codes(result) == ["AREA_OVERFLOW"]
        assert result.issues[0].max_permissible == sqm(400)
        assert result.snapshot is sale_chain

    def test_ceiling_overflow(self, sale_chain):
        result = engine.set_owner_relations(sale_chain, "n1", owners(("Ramesh", 1200)))
        assert _codes(result) == ["AREA_OVERFLOW"]
        assert result.issues[0].max_permissible == sqm(1000)
        assert result.snapshot is sale_chain


class TestFirstRightRedistribution:

    def test_manual_edit_held_to_old_owner(self, first_right_chain):
        """Ramesh holds 1000, so the tenant cannot be given 5000."""
        result = engine.set_owner_area(first_right_chain, "c2", 0, sqm(5000))
        assert _codes(result) == ["AREA_OVERFLOW"]
        assert result.issues[0].max_permissible == sqm(1000)
        assert result.snapshot is first_right_chain

    def test_equal_split_of_old_owner_area(self, first_right_chain):
        chain = first_right_chain.with_detail(replace(
            first_right_chain.detail("c2"), owner_relations=owners(("Tenant", 0), ("Lessee", 0)),
        ))
        result = engine.set_distribution_mode(chain, "c2", EQUAL)
        assert result.ok
        assert _areas(result.snapshot, "c2") == [sqm(500), sqm(500)]
        assert result.snapshot.detail("c2").right == FIRST_RIGHT


class TestDistributionMode:

    @pytest.fixture
    def manual_chain(self, sale_chain):
        detail = replace(
            sale_chain.detail("n3"),
            owner_relations=owners(("Asha", 100), ("Kiran", 50)),
            manual_areas=(sqm(100), sqm(50)),
        )
        return sale_chain.with_detail(detail)

    def test_equal_recomputes_immediately(self, manual_chain):
        result = engine.set_distribution_mode(manual_chain, "n3", EQUAL)
        assert result.ok
        assert _areas(result.snapshot, "n3") == [sqm(200), sqm(200)]
        assert result.warnings == ()

    def test_back_to_manual_restores_values(self, manual_chain):
        equal = engine.set_distribution_mode(manual_chain, "n3", EQUAL).snapshot
        manual = engine.set_distribution_mode(equal, "n3", MANUAL).snapshot
        assert _areas(manual, "n3") == [sqm(100), sqm(50)]

    def test_ceiling_caps_equal_split(self, sale_chain):
        """Ramesh holds 1000, the slab allows 800: two buyers get 400 each."""
        chain = replace(sale_chain, year_slabs=(slab(1995, 2020, 800),))
        chain = chain.with_detail(replace(
            chain.detail("n2"), owner_relations=owners(("Suresh", 0), ("Mehul", 0)),
        ))
        result = engine.set_distribution_mode(chain, "n2", EQUAL)
        assert result.ok
        assert _areas(result.snapshot, "n2") == [sqm(400), sqm(400)]
        assert [w.rule_code for w in result.warnings] == ["AREA_OVERFLOW"]
        assert result.warnings[0].status == "WARNING"

    def test_unknown_mode(self, sale_chain):
        assert _codes(engine.set_distribution_mode(sale_chain, "n3", "ratio")) == ["FORMAT_ERROR"]


# ═══════════════════════════════════════════════════
# COURT ORDERS
# ═══════════════════════════════════════════════════

class TestCourtOrders:

    def test_apply_sets_target_raw_status(self, court_order_chain):
        """Court order lists 7 as invalid/disputed: 7 becomes Radd and flips 5 and 6."""
        result = engine.apply_affected_range(court_order_chain, "a8")
        assert result.ok
        out = result.snapshot
        assert (out.detail("a7").status, out.detail("a7").invalid_reason) == (INVALID, "disputed")
        assert not out.detail("a5").owner_relations[0].is_valid
        assert not out.detail("a6").owner_relations[0].is_valid

    def test_apply_dangling_reference(self, court_order_chain):
        chain = court_order_chain.with_detail(replace(
            court_order_chain.detail("a8"), affected_range=(AffectedEntry("9", INVALID, "x"),),
        ))
        result = engine.apply_affected_range(chain, "a8")
        assert _codes(result) == ["DANGLING_REFERENCE"]
        assert result.snapshot is chain

    def test_toggle_twice_restores(self, court_order_chain):
        once = engine.toggle_affected_entry(court_order_chain, "a8", "7").snapshot
        assert once.detail("a7").status == INVALID
        assert once.detail("a7").invalid_reason == "disputed"
        twice = engine.toggle_affected_entry(once, "a8", "7").snapshot
        assert twice.detail("a7").status == VALID
        assert twice.detail("a5").owner_relations[0].is_valid

    def test_toggle_falls_back_to_court_order_reason(self, court_order_chain):
        chain = court_order_chain.with_detail(replace(
            court_order_chain.detail("a8"),
            invalid_reason="stay order",
            affected_range=(AffectedEntry("6", VALID, ""),),
        ))
        out = engine.toggle_affected_entry(chain, "a8", "6").snapshot
        assert out.detail("a6").invalid_reason == "stay order"

    def test_toggle_without_any_reason(self, court_order_chain):
        chain = court_order_chain.with_detail(replace(
            court_order_chain.detail("a8"), affected_range=(AffectedEntry("6", VALID, ""),),
        ))
        assert _codes(engine.toggle_affected_entry(chain, "a8", "6")) == ["MISSING_REASON"]

    def test_toggle_entry_not_listed(self, court_order_chain):
        assert _codes(engine.toggle_affected_entry(court_order_chain, "a8", "5")) == ["DANGLING_REFERENCE"]

    def test_not_a_court_order(self, court_order_chain):
        assert _codes(engine.apply_affected_range(court_order_chain, "a5")) == ["FORMAT_ERROR"]

    def test_set_affected_range(self, court_order_chain):
        result = engine.set_affected_range(court_order_chain, "a8", [AffectedEntry("5", INVALID, "void")])
        assert result.ok
        assert result.snapshot.detail("a8").affected_range[0].number == "5"
        assert result.snapshot.detail("a5").status == VALID


class TestSetRight:

    @pytest.fixture
    def ganot_chain(self, sale_chain):
        return replace(
            sale_chain,
            amendments=sale_chain.amendments + (amend("c4", "4"),),
            details=sale_chain.details + (
                AmendmentDetail("c4", type=COURT_ORDER, date=date(2015, 1, 1)),
            ),
        )

    def test_second_right_populates_previous_owners(self, ganot_chain):
        chain = replace(ganot_chain, year_slabs=())
        result = engine.set_right(chain, "c4", SECOND_RIGHT)
        assert result.ok
        relations = result.snapshot.detail("c4").owner_relations
        assert [r.owner_name for r in relations] == ["Ramesh", "Suresh", "Asha", "Kiran"]
        assert relations[0].area == sqm(600)
        assert result.warnings == ()

    def test_overflow_resets_to_zero_with_warning(self, ganot_chain):
        """600 + 400 + 200 + 200 exceeds the 1000 slab."""
        result = engine.set_right(ganot_chain, "c4", SECOND_RIGHT)
        assert result.ok
        assert all(r.area.is_zero() for r in result.snapshot.detail("c4").owner_relations)
        assert [w.rule_code for w in result.warnings] == ["AREA_OVERFLOW"]
        assert result.warnings[0].max_permissible == sqm(1000)

    def test_unknown_right(self, ganot_chain):
        assert _codes(engine.set_right(ganot_chain, "c4", "third")) == ["FORMAT_ERROR"]


class TestChainView:

    def test_rows(self, sale_chain):
        rows = engine.chain_view(sale_chain)
        assert [r["number"] for r in rows] == ["1", "2", "3"]
        assert rows[1]["min_date"] == "2000-01-02"
        assert rows[1]["max_date"] == "2009-12-31"
        assert rows[1]["effective_status"] == VALID
