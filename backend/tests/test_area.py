"""Tests for backend/app/nondh/area.py: exact area arithmetic and parsing."""

import pytest
from fractions import Fraction

from app.nondh.area import Area, normalize_unit, parse_area, sum_areas, to_fraction


class TestConversions:
    """Unit conversions are exact rational multiples of a square metre."""

    def test_acre_is_forty_gunthas(self):
        assert Area.of(1, "acre") == Area.of(40, "guntha")

    def test_acre_in_square_metres(self):
        assert Area.of(1, "acre").sq_m == Fraction("4046.8564224")

    def test_round_trip_does_not_drift(self):
        a = Area.of("1234.5678", "sq_m")
        for _ in range(50):
            a = a.to("acre").to("guntha").to("sq_ft").to("sq_m")
        assert a.magnitude == Fraction("1234.5678")

    def test_float_input_uses_shortest_repr(self):
        assert to_fraction(0.1) == Fraction(1, 10)

    def test_commas_stripped(self):
        assert to_fraction("1,500") == 1500

    def test_unknown_unit_rejected(self):
        with pytest.raises(ValueError):
            normalize_unit("furlong")

    def test_unit_aliases(self):
        assert normalize_unit("Sq.M") == "sq_m"
        assert normalize_unit("gunthas") == "guntha"


class TestArithmetic:

    def test_sum_keeps_left_unit(self):
        total = Area.of(1, "acre") + Area.of(20, "guntha")
        assert total.unit == "acre"
        assert total.magnitude == Fraction(3, 2)

    def test_equal_thirds_sum_back_exactly(self):
        whole = Area.of(1000, "sq_m")
        share = whole / 3
        assert share + share + share == whole

    def test_floor_zero(self):
        assert (Area.of(100) - Area.of(250)).floor_zero() == Area.zero()

    def test_divide_by_zero_count(self):
        with pytest.raises(ZeroDivisionError):
            Area.of(10) / 0

    def test_sum_areas_empty(self):
        assert sum_areas([]) == Area.zero()

    def test_ordering_across_units(self):
        assert Area.of(1, "guntha") < Area.of(102, "sq_m")
        assert Area.of(1, "hectare") > Area.of(2, "acre")


class TestSerialization:

    def test_to_dict_is_exact(self):
        d = (Area.of(1000) / 3).to_dict()
        assert (d["numerator"], d["denominator"], d["unit"]) == (1000, 3, "sq_m")

    def test_from_dict_rational(self):
        assert Area.from_dict({"numerator": 1000, "denominator": 3, "unit": "sq_m"}) == Area.of(1000) / 3

    def test_from_dict_sqm(self):
        assert Area.from_dict({"sqm": 1200.5}) == Area.of("1200.5")

    def test_from_dict_acre_guntha(self):
        area = Area.from_dict({"acre": 2, "guntha": 10})
        assert area.unit == "guntha"
        assert area.magnitude == 90

    def test_from_dict_empty_is_zero(self):
        assert Area.from_dict(None) == Area.zero()

    def test_from_dict_rejects_non_object(self):
        with pytest.raises(ValueError):
            Area.from_dict([1, 2])


class TestParseArea:

    def test_compound_extent(self):
        assert parse_area("2 acre 10 guntha") == Area.of(90, "guntha")

    def test_square_metres_with_space(self):
        assert parse_area("1500 sq m") == Area.of(1500)

    def test_bare_number_uses_default_unit(self):
        assert parse_area("12", "guntha") == Area.of(12, "guntha")

    def test_garbage(self):
        assert parse_area("about half the field") is None
        assert parse_area("") is None
