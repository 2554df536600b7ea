# tests/engine/test_discovery.py
"""Tests for AddressDiscoveryEngine."""

from __future__ import annotations

import pytest

from kastrace.contracts import (
    CancelToken,
    ClientRequestError,
    DiscoveryPhase,
    NetworkError,
    ResolvePreviousOutpoints,
)
from kastrace.core.config import KastraceSettings
from kastrace.engine.clock import MockClock
from kastrace.engine.discovery import AddressDiscoveryEngine
from kastrace.engine.throttle import AIMDThrottle, ThrottleConfig
from tests.fakes import CancelOnSleepClock, FakeFetcher, make_tx

SEED = "kaspa:seed"

# seed -> a, b, c -> a1 -> a2 -> a3
CHAIN_GRAPH = {
    SEED: ["kaspa:a", "kaspa:b", "kaspa:c"],
    "kaspa:a": ["kaspa:a1"],
    "kaspa:a1": ["kaspa:a2"],
    "kaspa:a2": ["kaspa:a3"],
}


def _engine(fetcher: FakeFetcher, clock: MockClock, **kwargs: object) -> AddressDiscoveryEngine:
    kwargs.setdefault("max_depth", 2)
    kwargs.setdefault("poll_interval", 0.05)
    return AddressDiscoveryEngine(fetcher, clock=clock, **kwargs)  # type: ignore[arg-type]


class TestDiscoveryScenarios:
    """End-to-end traversal over an in-memory address graph."""

    def test_outbound_only_seed_discovers_two_levels(self, clock: MockClock) -> None:
        """Seed with 3 outbound transactions, max_depth=2, inputs skipped."""
        fetcher = FakeFetcher.for_graph(CHAIN_GRAPH)

        result = _engine(fetcher, clock, max_depth=2, skip_inputs=True).run(SEED)

        assert dict(result.depths) == {"kaspa:a": 1, "kaspa:b": 1, "kaspa:c": 1, "kaspa:a1": 2}
        assert "kaspa:a2" not in result.discovered
        assert result.failed == frozenset()
        assert not result.canceled

    def test_units_at_max_depth_are_never_dispatched(self, clock: MockClock) -> None:
        fetcher = FakeFetcher.for_graph(CHAIN_GRAPH)

        _engine(fetcher, clock, max_depth=2).run(SEED)

        fetched = {key[1] for key in fetcher.calls}
        assert fetched == {SEED, "kaspa:a", "kaspa:b", "kaspa:c"}

    def test_max_depth_one_reports_direct_neighbours_only(self, clock: MockClock) -> None:
        fetcher = FakeFetcher.for_graph(CHAIN_GRAPH)

        result = _engine(fetcher, clock, max_depth=1).run(SEED)

        assert result.discovered == {"kaspa:a", "kaspa:b", "kaspa:c"}
        assert fetcher.calls == [("page", SEED, 0)]

    def test_all_suppressed_discovers_nothing(self, clock: MockClock) -> None:
        fetcher = FakeFetcher.for_graph(CHAIN_GRAPH)

        result = _engine(fetcher, clock, max_depth=1, skip_inputs=True, skip_outputs=True).run(SEED)

        assert result.discovered_count == 0
        assert fetcher.calls == [("page", SEED, 0)]

    def test_inputs_are_discovered_when_not_skipped(self, clock: MockClock) -> None:
        fetcher = FakeFetcher(histories={SEED: [make_tx("t1", inputs=["kaspa:sender"], outputs=[SEED])]})

        result = _engine(fetcher, clock, max_depth=1).run(SEED)

        assert result.discovered == {"kaspa:sender"}

    def test_seed_is_never_reported(self, clock: MockClock) -> None:
        fetcher = FakeFetcher.for_graph({SEED: ["kaspa:a"], "kaspa:a": [SEED]})

        result = _engine(fetcher, clock, max_depth=3).run(SEED)

        assert result.discovered == {"kaspa:a"}

    def test_cycles_do_not_redispatch(self, clock: MockClock) -> None:
        graph = {SEED: ["kaspa:a"], "kaspa:a": ["kaspa:b"], "kaspa:b": ["kaspa:a", SEED]}
        fetcher = FakeFetcher.for_graph(graph)

        _engine(fetcher, clock, max_depth=5).run(SEED)

        assert fetcher.calls_for(("page", "kaspa:a", 0)) == 1
        assert fetcher.calls_for(("page", "kaspa:b", 0)) == 1

    def test_depth_is_minimal_across_paths(self, clock: MockClock) -> None:
        # kaspa:x is reachable at depth 3 through a chain and depth 1 directly
        graph = {
            SEED: ["kaspa:a", "kaspa:x"],
            "kaspa:a": ["kaspa:b"],
            "kaspa:b": ["kaspa:x"],
            "kaspa:x": ["kaspa:y"],
        }
        fetcher = FakeFetcher.for_graph(graph)

        result = _engine(fetcher, clock, max_depth=4).run(SEED)

        assert result.depths["kaspa:x"] == 1
        assert result.depths["kaspa:y"] == 2

    def test_skip_inputs_does_not_request_resolution(self, clock: MockClock) -> None:
        fetcher = FakeFetcher.for_graph(CHAIN_GRAPH)

        _engine(fetcher, clock, max_depth=1, skip_inputs=True).run(SEED)

        assert fetcher.resolve_requested == [ResolvePreviousOutpoints.NO]

    def test_inputs_request_light_resolution_by_default(self, clock: MockClock) -> None:
        fetcher = FakeFetcher.for_graph(CHAIN_GRAPH)

        _engine(fetcher, clock, max_depth=1).run(SEED)

        assert fetcher.resolve_requested == [ResolvePreviousOutpoints.LIGHT]

    def test_concurrency_limit_is_respected(self, clock: MockClock) -> None:
        graph = {SEED: [f"kaspa:n{i}" for i in range(12)]}
        fetcher = FakeFetcher.for_graph(graph, latency=0.01)

        result = _engine(fetcher, clock, max_depth=2, concurrency_limit=3).run(SEED)

        assert result.discovered_count == 12
        assert fetcher.peak_concurrency <= 3


class TestDiscoveryRetries:
    """Failures go through the retry ledger with a shared round counter."""

    def test_transient_failures_then_success(self, clock: MockClock) -> None:
        """Two consecutive transient failures then success, max_failed_tries=3."""
        fetcher = FakeFetcher.for_graph({SEED: ["kaspa:a"]})
        fetcher.fail(("page", SEED, 0), NetworkError("reset"), NetworkError("reset"))
        engine = _engine(fetcher, clock, max_failed_tries=3)

        result = engine.run(SEED)

        assert result.discovered == {"kaspa:a"}
        assert SEED in result.expanded
        assert result.failed == frozenset()
        assert result.retry_rounds == 2
        assert engine.phase is DiscoveryPhase.DONE

    def test_permanently_failing_address_retried_exactly_n_times(self, clock: MockClock) -> None:
        fetcher = FakeFetcher.for_graph({SEED: ["kaspa:a", "kaspa:b"]})
        fetcher.fail_always(("page", "kaspa:a", 0), NetworkError("down"))

        result = _engine(fetcher, clock, max_failed_tries=3).run(SEED)

        assert fetcher.calls_for(("page", "kaspa:a", 0)) == 4
        assert result.failed == {"kaspa:a"}
        assert "kaspa:a" not in result.expanded
        assert "kaspa:b" in result.expanded

    def test_zero_tries_abandons_immediately(self, clock: MockClock) -> None:
        fetcher = FakeFetcher.for_graph({SEED: ["kaspa:a"]})
        fetcher.fail(("page", "kaspa:a", 0), NetworkError("reset"))

        result = _engine(fetcher, clock, max_failed_tries=0).run(SEED)

        assert fetcher.calls_for(("page", "kaspa:a", 0)) == 1
        assert result.failed == {"kaspa:a"}
        assert result.retry_rounds == 0

    def test_failed_seed_is_reported(self, clock: MockClock) -> None:
        fetcher = FakeFetcher()
        fetcher.fail_always(("page", SEED, 0), NetworkError("down"))

        result = _engine(fetcher, clock, max_failed_tries=1).run(SEED)

        assert result.discovered_count == 0
        assert result.failed == {SEED}

    def test_non_retryable_errors_skip_the_ledger(self, clock: MockClock) -> None:
        fetcher = FakeFetcher.for_graph({SEED: ["kaspa:a"]})
        fetcher.fail(("page", "kaspa:a", 0), ClientRequestError(400, "invalid address"))

        result = _engine(fetcher, clock, max_failed_tries=3).run(SEED)

        assert fetcher.calls_for(("page", "kaspa:a", 0)) == 1
        assert result.failed == {"kaspa:a"}
        assert result.retry_rounds == 0

    def test_shared_counter_limits_late_failures(self, clock: MockClock) -> None:
        """One counter per run: a unit failing in a later round gets the rounds left."""
        graph = {SEED: ["kaspa:a"], "kaspa:a": ["kaspa:b"]}
        fetcher = FakeFetcher.for_graph(graph)
        # seed burns one round; a then fails on every try it gets
        fetcher.fail(("page", SEED, 0), NetworkError("reset"))
        fetcher.fail_always(("page", "kaspa:a", 0), NetworkError("down"))

        result = _engine(fetcher, clock, max_failed_tries=2).run(SEED)

        # the seed used up the first round, so a gets one retry instead of two
        assert fetcher.calls_for(("page", "kaspa:a", 0)) == 2
        assert result.retry_rounds == 2
        assert result.failed == {"kaspa:a"}


class TestDiscoveryCancellation:
    def test_cancel_returns_partial_result(self, clock: MockClock) -> None:
        token = CancelToken()
        graph = {SEED: ["kaspa:a", "kaspa:b"], "kaspa:a": ["kaspa:a1"], "kaspa:b": ["kaspa:b1"]}
        fetcher = FakeFetcher.for_graph(graph)
        fetcher.on_call(("page", "kaspa:a", 0), token.cancel)

        result = _engine(fetcher, clock, max_depth=3, concurrency_limit=1).run(SEED, cancel_token=token)

        assert result.canceled
        assert "kaspa:a" in result.failed
        assert "kaspa:a1" not in result.discovered
        assert fetcher.calls_for(("page", "kaspa:b", 0)) == 0

    def test_already_canceled_token_dispatches_nothing(self, clock: MockClock) -> None:
        token = CancelToken()
        token.cancel()
        fetcher = FakeFetcher.for_graph(CHAIN_GRAPH)

        result = _engine(fetcher, clock).run(SEED, cancel_token=token)

        assert result.canceled
        assert fetcher.calls == []
        assert result.discovered_count == 0
        assert result.failed == frozenset()

    def test_cancel_during_throttle_delay_returns_partial_result(self) -> None:
        token = CancelToken()
        # sleeps: seed, kaspa:a, then kaspa:b is canceled while it waits
        clock = CancelOnSleepClock(token, on_sleep=3)
        throttle = AIMDThrottle(ThrottleConfig(min_dispatch_delay_ms=100))
        throttle.on_capacity_error()
        fetcher = FakeFetcher.for_graph(CHAIN_GRAPH)

        result = _engine(fetcher, clock, concurrency_limit=3, throttle=throttle).run(SEED, cancel_token=token)

        assert result.canceled
        assert fetcher.calls_for(("page", "kaspa:b", 0)) == 0
        assert fetcher.calls_for(("page", "kaspa:c", 0)) == 0


class TestDiscoveryConfiguration:
    def test_invalid_max_depth_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_depth"):
            AddressDiscoveryEngine(FakeFetcher(), max_depth=0)

    def test_from_settings(self, clock: MockClock) -> None:
        settings = KastraceSettings().with_overrides("discovery", max_depth=1, skip_outputs=True)
        fetcher = FakeFetcher(histories={SEED: [make_tx("t", inputs=["kaspa:in"], outputs=["kaspa:out"])]})

        result = AddressDiscoveryEngine.from_settings(fetcher, settings, clock=clock).run(SEED)

        assert result.discovered == {"kaspa:in"}
