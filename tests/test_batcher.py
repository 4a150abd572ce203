"""Tests for queue partitioning."""

import pytest

from tasksync.errors import ConfigError
from tasksync.sync import partition


class TestPartition:
    def test_even_split(self):
        assert partition([1, 2, 3, 4], 2) == [[1, 2], [3, 4]]

    def test_last_batch_smaller(self):
        assert partition([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_batch_larger_than_input(self):
        assert partition([1, 2], 50) == [[1, 2]]

    def test_empty_input(self):
        assert partition([], 3) == []

    def test_order_preserved(self):
        items = list(range(23))

        batches = partition(items, 5)

        assert [x for batch in batches for x in batch] == items
        assert all(len(b) <= 5 for b in batches)

    @pytest.mark.parametrize("size", [0, -1, 2.5, True, "10"])
    def test_invalid_batch_size(self, size):
        with pytest.raises(ConfigError):
            partition([1, 2, 3], size)
