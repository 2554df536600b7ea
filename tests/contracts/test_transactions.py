# tests/contracts/test_transactions.py
"""Tests for transaction models parsed from API responses."""

from kastrace.contracts import PageDirection, Transaction, block_time_key


class TestTransactionParsing:
    def test_parses_api_payload_and_ignores_unknown_fields(self) -> None:
        tx = Transaction.model_validate(
            {
                "transaction_id": "abc",
                "block_time": "1700000000000",
                "is_accepted": True,
                "some_future_field": 1,
                "inputs": [{"index": 0, "previous_outpoint_address": "kaspa:in"}],
                "outputs": [{"index": 0, "amount": 100, "script_public_key_address": "kaspa:out"}],
            }
        )

        assert tx.block_time == 1_700_000_000_000
        assert tx.input_addresses() == ["kaspa:in"]
        assert tx.output_addresses() == ["kaspa:out"]

    def test_blank_and_missing_addresses_are_skipped(self) -> None:
        tx = Transaction.model_validate(
            {
                "inputs": [{"previous_outpoint_address": None}, {"previous_outpoint_address": ""}],
                "outputs": [{"script_public_key_address": ""}],
            }
        )

        assert tx.input_addresses() == []
        assert tx.output_addresses() == []

    def test_fields_selector_may_drop_inputs_and_outputs(self) -> None:
        tx = Transaction.model_validate({"transaction_id": "abc"})

        assert tx.input_addresses() == []
        assert tx.output_addresses() == []

    def test_missing_block_time_sorts_first(self) -> None:
        txs = [Transaction(block_time=5), Transaction(), Transaction(block_time=1)]

        assert [t.block_time for t in sorted(txs, key=block_time_key)] == [None, 1, 5]


class TestPageDirection:
    def test_header_names(self) -> None:
        assert PageDirection.BEFORE.header == "X-Next-Page-Before"
        assert PageDirection.AFTER.header == "X-Next-Page-After"
