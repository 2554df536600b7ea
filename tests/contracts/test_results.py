# tests/contracts/test_results.py
"""Tests for result aggregates and their public serialization."""

import pytest

from kastrace.contracts import DiscoveryResult, HistoryResult
from tests.fakes import make_tx


class TestDiscoveryResult:
    def test_to_dict_uses_public_field_names(self) -> None:
        result = DiscoveryResult(depths={"b": 2, "a": 1}, failed=frozenset({"c"}))

        assert result.to_dict() == {
            "DiscoveredCount": 2,
            "DiscoveredAddresses": ["a", "b"],
            "FailedCount": 1,
            "FailedAddresses": ["c"],
            "Canceled": False,
        }

    def test_depths_are_read_only(self) -> None:
        source = {"a": 1}
        result = DiscoveryResult(depths=source, failed=frozenset())

        source["b"] = 2

        assert result.discovered == frozenset({"a"})
        with pytest.raises(TypeError):
            result.depths["c"] = 3  # type: ignore[index]


class TestHistoryResult:
    def test_empty_is_complete(self) -> None:
        result = HistoryResult.empty()

        assert result.transactions_count == 0
        assert result.complete

    def test_failed_offsets_make_result_incomplete(self) -> None:
        assert not HistoryResult(failed_offsets=frozenset({500})).complete

    def test_to_dict_serializes_transactions_without_nulls(self) -> None:
        tx = make_tx("t1", outputs=["kaspa:b"], block_time=5)
        data = HistoryResult(transactions=(tx,), failed_offsets=frozenset({1000, 500})).to_dict()

        assert data["TransactionsCount"] == 1
        assert data["FailedOffsets"] == [500, 1000]
        assert data["Transactions"][0]["transaction_id"] == "t1"
        assert "mass" not in data["Transactions"][0]
        assert "FailedCursors" not in data

    def test_to_dict_reports_failed_cursors(self) -> None:
        data = HistoryResult(failed_cursors=frozenset({"900"})).to_dict()

        assert data["FailedCursors"] == ["900"]
