"""
Tests for splitting a task's credit or logged minutes between its owners.
"""

import pytest

from app.services.apportionment import apportion, share_weight, split_evenly


QUANTITIES = sorted({0, 1, 2, 7, 99, 100, 101, 1000, 99_999, 100_000, *range(0, 100_001, 4999)})


class TestSplitEvenly:

    @pytest.mark.parametrize("count", range(1, 21))
    def test_parts_always_sum_to_total(self, count):
        for total in QUANTITIES:
            parts = split_evenly(total, count)
            assert len(parts) == count
            assert sum(parts) == total

    def test_three_owners_of_full_credit(self):
        assert split_evenly(100, 3) == [34, 33, 33]

    def test_remainder_goes_to_first_part_only(self):
        parts = split_evenly(10, 4)
        assert parts == [4, 2, 2, 2]

    def test_even_split_has_no_remainder(self):
        assert split_evenly(100, 4) == [25, 25, 25, 25]

    def test_total_smaller_than_count(self):
        assert split_evenly(2, 5) == [2, 0, 0, 0, 0]

    def test_rejects_non_positive_count(self):
        with pytest.raises(ValueError):
            split_evenly(100, 0)

    def test_rejects_negative_total(self):
        with pytest.raises(ValueError):
            split_evenly(-1, 2)


class TestApportion:

    def test_follows_input_order(self):
        assert apportion(["carol", "alice", "bob"], 100) == {"carol": 34, "alice": 33, "bob": 33}

    def test_minutes_split(self):
        shares = apportion([11, 12], 125)
        assert shares == {11: 63, 12: 62}
        assert sum(shares.values()) == 125

    def test_no_owners(self):
        assert apportion([], 100) == {}

    def test_duplicate_owners_rejected(self):
        with pytest.raises(ValueError):
            apportion([1, 1], 100)


class TestShareWeight:

    def test_percentage_to_fraction(self):
        assert share_weight(50) == 0.5
        assert share_weight(100) == 1.0
        assert share_weight(34) == pytest.approx(0.34)

    def test_missing_share_is_full_ownership(self):
        assert share_weight(None) == 1.0
