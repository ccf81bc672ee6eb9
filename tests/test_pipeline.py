import asyncio
import random

import pytest

from conftest import payload
from signal_desk import Action, Confidence, OrderManager, OrderManagerStatus, PerSymbolDecisionPipeline, Side


def _run(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_flat_momentum_high_confidence_enters(make_pipeline, orders, narrator):
    pipeline = make_pipeline()
    outcome = _run(pipeline.handle("momentum", payload("BTCUSDT", "LONG", "high", reasoning="Trend up")))

    assert outcome.action is Action.ENTER
    assert outcome.completed
    assert orders.calls == [("open_momentum", "BTCUSDT")]
    assert orders.active_positions["BTCUSDT"].side is Side.LONG
    assert "Trend up" in narrator.texts("BTCUSDT")
    assert pipeline.history_for("BTCUSDT").entry.confidence is Confidence.HIGH


def test_reversal_grace_holds(make_pipeline, orders, clock):
    orders.seed("ETHUSDT", Side.LONG, filled_at=clock.now - 2.0)
    pipeline = make_pipeline(reversal_grace_seconds=30.0)

    outcome = _run(pipeline.handle("orderbook", payload("ETHUSDT", "SHORT", "high")))

    assert outcome.action is Action.HOLD
    assert outcome.decision.reason == "reversal_grace"
    assert orders.calls == []


def test_smart_mode_below_floor_falls_through(make_pipeline, orders, clock, narrator):
    orders.seed("SOLUSDT", Side.LONG, filled_at=clock.now - 600.0, pnl=-80.0)
    pipeline = make_pipeline(smart_mode=True, smart_mode_min_pnl=-50.0)

    outcome = _run(pipeline.handle("orderbook", payload("SOLUSDT", "NEUTRAL", "high")))

    assert outcome.action is Action.HOLD
    assert outcome.decision.reason == "neutral_hold"
    assert orders.calls == []


def test_spoofed_medium_entry_blocked(make_pipeline, orders, narrator):
    pipeline = make_pipeline()
    message = payload(
        "ETHUSDT",
        "LONG",
        "MEDIUM",
        spoof_detection={"wall_velocity": "high", "recent_spoofs": 5},
    )

    outcome = _run(pipeline.handle("orderbook", message))

    assert outcome.action is Action.IGNORE
    assert outcome.decision.reason == "spoof_blocked"
    assert orders.calls == []
    assert any("SPOOF ALERT (5 recent)" in text for text in narrator.texts("ETHUSDT"))


def test_reversal_closes_then_opens(make_pipeline, orders, clock, portfolio):
    orders.seed("BTCUSDT", Side.LONG, filled_at=clock.now - 120.0)
    pipeline = make_pipeline(auto_mode=True)

    outcome = _run(pipeline.handle("orderbook", payload("BTCUSDT", "SHORT", "high")))

    assert outcome.action is Action.REVERSE
    assert outcome.completed
    assert orders.calls == [("close", "BTCUSDT"), ("open_order_book", "BTCUSDT")]
    assert orders.active_positions["BTCUSDT"].side is Side.SHORT
    assert portfolio.events == [
        ("remove", "BTCUSDT"),
        ("update", "BTCUSDT", Side.SHORT, Confidence.HIGH),
    ]


def test_failed_close_aborts_reversal(make_pipeline, orders, clock, narrator):
    orders.seed("BTCUSDT", Side.LONG, filled_at=clock.now - 120.0)
    orders.fail_close = RuntimeError("exchange down")
    pipeline = make_pipeline()

    outcome = _run(pipeline.handle("orderbook", payload("BTCUSDT", "SHORT", "high")))

    assert outcome.action is Action.REVERSE
    assert not outcome.completed
    assert orders.calls == [("close", "BTCUSDT")]
    assert orders.active_positions["BTCUSDT"].side is Side.LONG
    assert narrator.errors == ["Failed to close BTCUSDT for orderbook signal: exchange down"]


def test_failed_open_after_reversal_close_leaves_portfolio_flat(make_pipeline, orders, clock, portfolio, narrator):
    orders.seed("BTCUSDT", Side.LONG, filled_at=clock.now - 120.0)
    orders.fail_open = RuntimeError("insufficient margin")
    pipeline = make_pipeline(auto_mode=True)

    outcome = _run(pipeline.handle("orderbook", payload("BTCUSDT", "SHORT", "high")))

    assert outcome.action is Action.REVERSE
    assert not outcome.completed
    assert orders.calls == [("close", "BTCUSDT"), ("open_order_book", "BTCUSDT")]
    assert orders.active_positions == {}
    assert portfolio.events == [("remove", "BTCUSDT")]
    assert pipeline.history_for("BTCUSDT").entry is None
    assert narrator.errors == ["Failed to open BTCUSDT for orderbook signal: insufficient margin"]


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


def test_idempotent_hold(make_pipeline, orders, clock):
    orders.seed("BTCUSDT", Side.LONG, filled_at=clock.now - 600.0)
    pipeline = make_pipeline()

    async def scenario():
        for side in ["NEUTRAL", "LONG", "NEUTRAL", "LONG"] * 3:
            outcome = await pipeline.handle("orderbook", payload("BTCUSDT", side, "high"))
            assert outcome.action is Action.HOLD

    _run(scenario())
    assert orders.calls == []
    assert orders.active_positions["BTCUSDT"].side is Side.LONG


def test_grace_invariance(make_pipeline, orders, clock):
    pipeline = make_pipeline(smart_mode=True, entry_grace_seconds=60.0, reversal_grace_seconds=30.0)
    rng = random.Random(7)

    async def scenario():
        for _ in range(60):
            clock.advance(rng.choice([1.0, 5.0, 20.0]))
            position = orders.active_positions.get("BTCUSDT")
            side = rng.choice(["LONG", "SHORT", "NEUTRAL"])
            confidence = rng.choice(["high", "medium", "low"])
            if position is not None:
                orders.mark_pnl("BTCUSDT", rng.choice([-100.0, 0.0, 50.0]))
            outcome = await pipeline.handle("orderbook", payload("BTCUSDT", side, confidence))
            if position is None:
                continue
            age = clock.now - position.filled_at
            if outcome.action is Action.REVERSE:
                assert age >= 30.0
            if outcome.action is Action.EXIT:
                assert age >= 60.0

    _run(scenario())


def test_at_most_one_position_per_symbol(make_pipeline, orders, clock):
    pipeline = make_pipeline(trust_low_confidence=True)
    rng = random.Random(11)

    async def scenario():
        messages = [
            (
                rng.choice(["momentum", "orderbook", "scalp"]),
                payload(
                    rng.choice(["BTCUSDT", "ETHUSDT"]),
                    rng.choice(["LONG", "SHORT", "NEUTRAL"]),
                    rng.choice(["high", "medium", "low"]),
                ),
            )
            for _ in range(80)
        ]
        for strategy, message in messages:
            clock.advance(rng.choice([1.0, 40.0]))
            await pipeline.handle(strategy, message)
            status = orders.get_status()
            symbols = [position.symbol for position in status.active_positions]
            assert len(symbols) == len(set(symbols))

    _run(scenario())


def test_history_append_totality(make_pipeline, orders):
    pipeline = make_pipeline()

    async def scenario():
        await pipeline.handle("orderbook", payload("BTCUSDT", "LONG", "high"))
        await pipeline.handle("orderbook", payload("BTCUSDT", "NEUTRAL", "high"))
        await pipeline.handle("orderbook", payload("BTCUSDT", "LONG", "low"))
        await pipeline.handle("orderbook", {"data": {"symbol": "BTCUSDT"}})
        await pipeline.handle("orderbook", None)

    _run(scenario())
    assert len(pipeline.history_for("BTCUSDT")) == 3


def test_same_symbol_signals_processed_in_order(make_pipeline, orders):
    pipeline = make_pipeline()
    real_open = orders.open_order_book_signal

    async def slow_open(signal):
        await asyncio.sleep(0.01)
        await real_open(signal)

    orders.open_order_book_signal = slow_open

    async def scenario():
        return await asyncio.gather(
            pipeline.handle("orderbook", payload("BTCUSDT", "LONG", "high")),
            pipeline.handle("orderbook", payload("BTCUSDT", "SHORT", "high")),
            pipeline.handle("orderbook", payload("ETHUSDT", "SHORT", "high")),
        )

    first, second, other = _run(scenario())
    assert first.action is Action.ENTER
    assert second.action is Action.HOLD
    assert second.decision.reason == "reversal_grace"
    assert other.action is Action.ENTER
    assert [r.side for r in pipeline.history_for("BTCUSDT")] == [Side.LONG, Side.SHORT]


def test_queue_overflow_drops_signal(make_pipeline, orders):
    pipeline = make_pipeline(max_pending_per_symbol=1)

    async def scenario():
        gate = asyncio.Event()
        real_open = orders.open_momentum_signal

        async def blocked_open(signal):
            await gate.wait()
            await real_open(signal)

        orders.open_momentum_signal = blocked_open
        first = asyncio.create_task(pipeline.handle("momentum", payload("BTCUSDT", "LONG", "high")))
        await asyncio.sleep(0)
        dropped = await pipeline.handle("momentum", payload("BTCUSDT", "LONG", "high"))
        gate.set()
        return await first, dropped

    first, dropped = _run(scenario())
    assert first.action is Action.ENTER
    assert dropped is None
    assert len(pipeline.history_for("BTCUSDT")) == 1


# ---------------------------------------------------------------------------
# Execution and error handling
# ---------------------------------------------------------------------------


def test_smart_exit_closes_and_updates_portfolio(make_pipeline, orders, clock, portfolio, narrator):
    orders.seed("BTCUSDT", Side.LONG, filled_at=clock.now - 600.0, pnl=15.0)
    pipeline = make_pipeline(smart_mode=True, auto_mode=True)

    outcome = _run(pipeline.handle("momentum", payload("BTCUSDT", "SHORT", "medium")))

    assert outcome.action is Action.EXIT
    assert outcome.decision.reason == "profit_protection_reversal"
    assert orders.calls == [("close", "BTCUSDT")]
    assert orders.closed[0][1] == 15.0
    assert portfolio.events == [("remove", "BTCUSDT")]
    assert any("Locking in $15.00 profit" in text for text in narrator.texts("BTCUSDT"))
    assert pipeline.history_for("BTCUSDT").entry is None


def test_adopts_external_position(make_pipeline, orders, clock):
    orders.seed("BTCUSDT", Side.SHORT, filled_at=clock.now - 600.0)
    pipeline = make_pipeline()

    _run(pipeline.handle("scalp", payload("BTCUSDT", "SHORT", "high")))

    entry = pipeline.history_for("BTCUSDT").entry
    assert entry.side is Side.SHORT
    assert entry.confidence is None
    assert entry.index == 0


def test_pnl_failure_falls_back_to_last_aggregate(make_pipeline, orders, clock, narrator):
    orders.seed("BTCUSDT", Side.LONG, filled_at=clock.now - 600.0)
    orders.fail_pnl = RuntimeError("timeout")
    pipeline = make_pipeline(smart_mode=True)
    pipeline.observe_pnl(42.0)

    outcome = _run(pipeline.handle("momentum", payload("BTCUSDT", "SHORT", "medium")))

    assert outcome.decision.reason == "profit_protection_reversal"
    assert pipeline.history_for("BTCUSDT").records[-1].pnl == 42.0
    assert narrator.errors == []


def test_failed_open_reports_strategy(make_pipeline, orders, narrator):
    orders.fail_open = RuntimeError("insufficient margin")
    pipeline = make_pipeline()

    outcome = _run(pipeline.handle("scalp", payload("BTCUSDT", "LONG", "high")))

    assert outcome.action is Action.ENTER
    assert not outcome.completed
    assert outcome.error == "Failed to open BTCUSDT for scalp signal: insufficient margin"
    assert narrator.errors == [outcome.error]
    assert orders.active_positions == {}
    assert pipeline.history_for("BTCUSDT").entry is None


class _StatusOnlyManager(OrderManager):
    def get_status(self):
        return OrderManagerStatus()

    @property
    def active_positions(self):
        return {}

    async def close_position(self, symbol, pnl):
        raise AssertionError("not expected")

    async def query_net_pnl(self, symbol):
        return 0.0


def test_missing_capability_is_reported(narrator, clock):
    pipeline = PerSymbolDecisionPipeline(_StatusOnlyManager(), narrator=narrator, clock=clock)

    outcome = _run(pipeline.handle("momentum", payload("BTCUSDT", "LONG", "high")))

    assert outcome.action is Action.ENTER
    assert not outcome.completed
    assert "open_momentum_signal" in narrator.errors[0]


def test_unexpected_failure_is_contained(make_pipeline, orders, narrator):
    pipeline = make_pipeline()

    def broken_status():
        raise ValueError("status unavailable")

    orders.get_status = broken_status

    async def scenario():
        failed = await pipeline.handle("momentum", payload("BTCUSDT", "LONG", "high"))
        return failed

    assert _run(scenario()) is None
    assert narrator.errors == ["Failed to handle momentum signal for BTCUSDT: status unavailable"]


# ---------------------------------------------------------------------------
# Aggregate PnL polling
# ---------------------------------------------------------------------------


def test_pnl_poller_keeps_fallback_fresh(make_pipeline, orders, clock):
    orders.seed("BTCUSDT", Side.LONG, filled_at=clock.now - 600.0, pnl=12.0)
    orders.seed("ETHUSDT", Side.SHORT, filled_at=clock.now - 600.0, pnl=-2.0)
    pipeline = make_pipeline(smart_mode=True)
    naps = []

    async def fake_sleep(seconds):
        naps.append(seconds)
        clock.advance(seconds)
        if len(naps) == 1:
            orders.mark_pnl("BTCUSDT", 30.0)
            return
        raise asyncio.CancelledError

    async def scenario():
        with pytest.raises(asyncio.CancelledError):
            await pipeline.poll_pnl(sleep=fake_sleep)
        orders.fail_pnl = RuntimeError("timeout")
        return await pipeline.handle("momentum", payload("BTCUSDT", "SHORT", "medium"))

    outcome = _run(scenario())

    assert naps == [2.0, 2.0]
    assert pipeline.last_total_pnl == 28.0
    assert outcome.decision.reason == "profit_protection_reversal"
    assert pipeline.history_for("BTCUSDT").records[-1].pnl == 28.0


def test_failed_pnl_poll_keeps_last_value(make_pipeline, orders):
    pipeline = make_pipeline()
    pipeline.observe_pnl(5.0)

    async def broken_total():
        raise RuntimeError("exchange down")

    orders.query_total_pnl = broken_total

    assert _run(pipeline.refresh_pnl()) is None
    assert pipeline.last_total_pnl == 5.0


def test_pnl_poller_rejects_non_positive_interval(make_pipeline):
    with pytest.raises(ValueError):
        _run(make_pipeline().poll_pnl(0))


def test_pipeline_reused_across_event_loops(make_pipeline, orders):
    pipeline = make_pipeline()
    real_open = orders.open_order_book_signal
    real_pnl = orders.query_net_pnl

    async def slow_open(signal):
        await asyncio.sleep(0)
        await real_open(signal)

    async def slow_pnl(symbol):
        await asyncio.sleep(0)
        return await real_pnl(symbol)

    orders.open_order_book_signal = slow_open
    orders.query_net_pnl = slow_pnl

    async def contended(first_side, second_side):
        return await asyncio.gather(
            pipeline.handle("orderbook", payload("BTCUSDT", first_side, "high")),
            pipeline.handle("orderbook", payload("BTCUSDT", second_side, "high")),
        )

    first = _run(contended("LONG", "LONG"))
    second = _run(contended("NEUTRAL", "LONG"))

    assert [outcome.action for outcome in first] == [Action.ENTER, Action.HOLD]
    assert [outcome.action for outcome in second] == [Action.HOLD, Action.HOLD]
    assert len(pipeline.history_for("BTCUSDT")) == 4
