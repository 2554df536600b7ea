# src/kastrace/contracts/transactions.py
"""Transaction records returned by the Kaspa REST API.

The API honours a ``fields`` selector, so almost every attribute may be
absent from a response. Numeric attributes are sometimes emitted as
strings; pydantic's lax mode coerces them.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


class TransactionOutput(BaseModel):
    """One transaction output, carrying the destination address."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    transaction_id: str | None = None
    index: int | None = None
    amount: int | None = None
    script_public_key: str | None = None
    script_public_key_address: str | None = None
    script_public_key_type: str | None = None
    accepting_block_hash: str | None = None


class TransactionInput(BaseModel):
    """One transaction input.

    previous_outpoint_address is only populated when the request asked for
    previous outpoints to be resolved.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    transaction_id: str | None = None
    index: int | None = None
    previous_outpoint_hash: str | None = None
    previous_outpoint_index: int | None = None
    previous_outpoint_resolved: TransactionOutput | None = None
    previous_outpoint_address: str | None = None
    previous_outpoint_amount: int | None = None
    signature_script: str | None = None
    sig_op_count: int | None = None


class Transaction(BaseModel):
    """A full transaction as returned by the address transaction endpoints.

    block_time is unix milliseconds. Blue score and DAG fields are carried
    as opaque payload.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    subnetwork_id: str | None = None
    transaction_id: str | None = None
    hash: str | None = None
    mass: int | None = None
    payload: str | None = None
    block_hash: list[str] | None = None
    block_time: int | None = None
    is_accepted: bool | None = None
    accepting_block_hash: str | None = None
    accepting_block_blue_score: int | None = None
    accepting_block_time: int | None = None
    inputs: list[TransactionInput] | None = Field(default=None)
    outputs: list[TransactionOutput] | None = Field(default=None)

    def input_addresses(self) -> list[str]:
        """Resolved previous-output addresses of all inputs, skipping blanks."""
        return [i.previous_outpoint_address for i in self.inputs or () if i.previous_outpoint_address]

    def output_addresses(self) -> list[str]:
        """Destination addresses of all outputs, skipping blanks."""
        return [o.script_public_key_address for o in self.outputs or () if o.script_public_key_address]


class TransactionCount(BaseModel):
    """Response of the transactions-count endpoint."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    total: int
    limit_exceeded: bool = False


@dataclass(frozen=True, slots=True)
class CursorPage:
    """One page from the cursor-paginated endpoint.

    Attributes:
        transactions: Transactions on this page
        next_cursor: Value of the next-page header, None when absent
    """

    transactions: list[Transaction]
    next_cursor: str | None


def block_time_key(tx: Transaction) -> int:
    """Sort key for ordering by block time; missing times sort first."""
    return tx.block_time if tx.block_time is not None else 0
