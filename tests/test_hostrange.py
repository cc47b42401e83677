"""Tests for hostrange.py - bracket host-range expansion."""

import pytest

from hostrange import HostRangeError, expand, expand_brackets


class TestExpand:
    """Test host-range expansion."""

    def test_plain_name(self):
        assert expand('node01') == ['node01']

    def test_range_keeps_padding(self):
        assert expand('node[08-10]') == ['node08', 'node09', 'node10']

    def test_list_and_range(self):
        assert expand('gpu[1,3-4]-ib') == ['gpu1-ib', 'gpu3-ib', 'gpu4-ib']

    def test_top_level_commas(self):
        assert expand('node01,node[02-03]') == ['node01', 'node02', 'node03']

    def test_multiple_groups(self):
        assert expand_brackets('r[1-2]n[1-2]') == ['r1n1', 'r1n2', 'r2n1', 'r2n2']

    def test_duplicates_dropped(self):
        assert expand('n[1-2],n2,n1') == ['n1', 'n2']

    @pytest.mark.parametrize('expression', ['n[1-2', 'n1-2]', 'n[a-b]', 'n[3-1]'])
    def test_malformed(self, expression):
        with pytest.raises(HostRangeError):
            expand(expression)
