# tests/property/test_discovery_properties.py
"""Property-based tests for address discovery over random graphs.

Invariants:
- No discovered address has a depth above max_depth
- Each discovered depth equals the shortest-path distance from the seed
- The seed is never reported
- Only addresses closer than max_depth are ever fetched
"""

from __future__ import annotations

from collections import deque

from hypothesis import given
from hypothesis import strategies as st

from kastrace.engine.clock import MockClock
from kastrace.engine.discovery import AddressDiscoveryEngine
from tests.fakes import FakeFetcher

SEED = "n0"

node_ids = st.integers(min_value=0, max_value=11).map(lambda i: f"n{i}")
graphs = st.dictionaries(node_ids, st.lists(node_ids, max_size=4), max_size=12)


def _distances(graph: dict[str, list[str]], seed: str) -> dict[str, int]:
    dist = {seed: 0}
    queue = deque([seed])
    while queue:
        node = queue.popleft()
        for peer in graph.get(node, []):
            if peer not in dist:
                dist[peer] = dist[node] + 1
                queue.append(peer)
    return dist


class TestDiscoveryProperties:
    @given(graph=graphs, max_depth=st.integers(min_value=1, max_value=4), concurrency=st.integers(min_value=1, max_value=4))
    def test_depths_are_shortest_paths_within_ceiling(self, graph: dict[str, list[str]], max_depth: int, concurrency: int) -> None:
        fetcher = FakeFetcher.for_graph(graph)
        engine = AddressDiscoveryEngine(
            fetcher,
            max_depth=max_depth,
            concurrency_limit=concurrency,
            skip_inputs=True,
            poll_interval=0.01,
            clock=MockClock(),
        )

        result = engine.run(SEED)

        expected = {node: d for node, d in _distances(graph, SEED).items() if 1 <= d <= max_depth}
        assert dict(result.depths) == expected
        assert SEED not in result.discovered
        assert result.failed == frozenset()

    @given(graph=graphs, max_depth=st.integers(min_value=1, max_value=4))
    def test_only_addresses_below_ceiling_are_fetched(self, graph: dict[str, list[str]], max_depth: int) -> None:
        fetcher = FakeFetcher.for_graph(graph)

        AddressDiscoveryEngine(fetcher, max_depth=max_depth, poll_interval=0.01, clock=MockClock()).run(SEED)

        distances = _distances(graph, SEED)
        fetched = [key[1] for key in fetcher.calls]
        assert all(distances[address] < max_depth for address in fetched)
