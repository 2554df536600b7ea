# src/kastrace/contracts/work.py
"""Work units: the input of one fetch operation."""

from __future__ import annotations

from dataclasses import dataclass, field, replace


@dataclass(frozen=True, slots=True)
class WorkUnit:
    """One discrete fetch.

    Discovery units target an address and carry their graph depth.
    Pagination units target an offset into a fixed address's history;
    depth_or_cursor is unused (0) for them.

    Identity is (target, depth_or_cursor). retry_count is bookkeeping and
    does not take part in equality.

    Attributes:
        target: Address (discovery) or offset (pagination)
        depth_or_cursor: Depth from the seed address, assigned at creation
        retry_count: How many times this unit has been requeued
    """

    target: str | int
    depth_or_cursor: int = 0
    retry_count: int = field(default=0, compare=False)

    @classmethod
    def for_address(cls, address: str, depth: int) -> WorkUnit:
        return cls(target=address, depth_or_cursor=depth)

    @classmethod
    def for_offset(cls, offset: int) -> WorkUnit:
        return cls(target=offset)

    @property
    def address(self) -> str:
        if not isinstance(self.target, str):
            raise TypeError(f"WorkUnit target is an offset, not an address: {self.target!r}")
        return self.target

    @property
    def offset(self) -> int:
        if not isinstance(self.target, int):
            raise TypeError(f"WorkUnit target is an address, not an offset: {self.target!r}")
        return self.target

    @property
    def depth(self) -> int:
        return self.depth_or_cursor

    def requeued(self) -> WorkUnit:
        """Copy with retry_count incremented."""
        return replace(self, retry_count=self.retry_count + 1)
