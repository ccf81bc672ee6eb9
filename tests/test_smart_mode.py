import pytest

from signal_desk import (
    Confidence,
    Position,
    Side,
    SignalHistory,
    SignalRecord,
    SmartExitConfig,
    SmartExitEvaluator,
)

H, M, L = Confidence.HIGH, Confidence.MEDIUM, Confidence.LOW


@pytest.fixture
def evaluator():
    return SmartExitEvaluator()


def _history(entry_confidence=H, records=(), opened_at=0.0, side=Side.LONG):
    """History with a LONG entry at ``opened_at`` followed by ``records``.

    ``records`` are (side, confidence, pnl) triples spaced one second apart.
    """
    history = SignalHistory("BTCUSDT")
    history.append(SignalRecord(side, entry_confidence, opened_at))
    history.mark_entry(side, entry_confidence, opened_at)
    for offset, (rec_side, confidence, pnl) in enumerate(records, start=1):
        history.append(SignalRecord(rec_side, confidence, opened_at + offset, pnl))
    return history


def _evaluate(evaluator, history, side, confidence, pnl, now, **kwargs):
    position = Position("BTCUSDT", Side.LONG, filled_at=0.0)
    return evaluator.evaluate(history, "BTCUSDT", position, side, confidence, pnl, now, **kwargs)


def test_strong_reversal(evaluator):
    history = _history(records=[(Side.SHORT, H, 0.0)])
    decision = _evaluate(evaluator, history, Side.SHORT, H, 0.0, 200.0)
    assert decision.should_exit
    assert decision.reason == "strong_reversal"
    assert "closing LONG position" in decision.statement


def test_profit_protection_on_any_opposite_signal(evaluator):
    history = _history(records=[(Side.SHORT, L, 12.0)])
    decision = _evaluate(evaluator, history, Side.SHORT, L, 12.0, 200.0)
    assert decision.reason == "profit_protection_reversal"
    assert decision.details["pnl"] == 12.0


def test_confidence_decay_requires_age(evaluator):
    history = _history(records=[(Side.LONG, L, 0.0)])
    assert not _evaluate(evaluator, history, Side.LONG, L, 0.0, 60.0).should_exit

    decision = _evaluate(evaluator, history, Side.LONG, L, 0.0, 180.0)
    assert decision.reason == "confidence_decay"


def test_confidence_decay_skipped_for_adopted_position(evaluator):
    history = SignalHistory("BTCUSDT")
    history.mark_entry(Side.LONG, None, 0.0, include_last=False)
    history.append(SignalRecord(Side.LONG, L, 180.0, 0.0))
    decision = _evaluate(evaluator, history, Side.LONG, L, 0.0, 180.0)
    assert decision.reason != "confidence_decay"


def test_persistent_low_confidence(evaluator):
    history = _history(entry_confidence=M, records=[(Side.LONG, L, 0.0)] * 2)
    decision = _evaluate(evaluator, history, Side.LONG, L, 0.0, 10.0)
    assert not decision.should_exit

    history.append(SignalRecord(Side.LONG, L, 11.0, 0.0))
    decision = _evaluate(evaluator, history, Side.LONG, L, 0.0, 11.0)
    assert decision.reason == "persistent_low_confidence"
    assert decision.details["consecutive_low_count"] == 3


def test_persistent_reversal(evaluator):
    history = _history(records=[(Side.SHORT, M, 0.0), (Side.SHORT, M, 0.0)])
    decision = _evaluate(evaluator, history, Side.SHORT, M, 0.0, 10.0)
    assert decision.reason == "persistent_reversal"


def test_same_direction_signal_resets_opposite_run(evaluator):
    history = _history(records=[(Side.SHORT, M, 0.0), (Side.LONG, M, 0.0), (Side.SHORT, M, 0.0)])
    decision = _evaluate(evaluator, history, Side.SHORT, M, 0.0, 10.0)
    assert not decision.should_exit


def test_profit_erosion(evaluator):
    history = _history(records=[(Side.LONG, H, 25.0), (Side.LONG, M, 15.0), (Side.LONG, L, 4.0)])
    decision = _evaluate(evaluator, history, Side.LONG, L, 4.0, 10.0)
    assert decision.reason == "profit_erosion"
    assert decision.details["max_past_pnl"] == 25.0


def test_stale_losing_position(evaluator):
    history = _history(entry_confidence=L, records=[(Side.LONG, M, -5.0), (Side.LONG, L, -12.0)])
    decision = _evaluate(evaluator, history, Side.LONG, L, -12.0, 400.0)
    assert decision.reason == "stale_losing_position"


def test_confidence_downtrend_while_losing(evaluator):
    history = _history(records=[(Side.LONG, H, -1.0), (Side.LONG, M, -2.0), (Side.LONG, L, -3.0)])
    decision = _evaluate(evaluator, history, Side.LONG, L, -3.0, 10.0)
    assert decision.reason == "confidence_downtrend"
    assert decision.details["scores"] == [3, 2, 1]

    profitable = _evaluate(evaluator, history, Side.LONG, L, 1.0, 10.0)
    assert not profitable.should_exit


def test_auto_mode_only_exits_on_flips(evaluator):
    history = _history(records=[(Side.LONG, H, -1.0), (Side.LONG, M, -2.0), (Side.LONG, L, -3.0)])
    decision = _evaluate(evaluator, history, Side.LONG, L, -3.0, 10.0, is_auto_mode=True)
    assert not decision.should_exit

    flip = _evaluate(evaluator, history, Side.SHORT, H, -3.0, 10.0, is_auto_mode=True)
    assert flip.reason == "strong_reversal"


def test_window_ignores_records_before_entry(evaluator):
    history = SignalHistory("BTCUSDT")
    for ts in range(5):
        history.append(SignalRecord(Side.LONG, L, float(ts)))
    history.append(SignalRecord(Side.LONG, H, 10.0))
    history.mark_entry(Side.LONG, H, 10.0)
    history.append(SignalRecord(Side.LONG, L, 11.0, 0.0))

    decision = _evaluate(evaluator, history, Side.LONG, L, 0.0, 11.0)
    assert not decision.should_exit


def test_evaluation_does_not_mutate_history(evaluator):
    history = _history(records=[(Side.SHORT, M, 0.0)])
    before = (history.records, history.entry)
    _evaluate(evaluator, history, Side.SHORT, M, 0.0, 10.0)
    assert (history.records, history.entry) == before


def test_config_validation():
    with pytest.raises(ValueError):
        SmartExitConfig(history_window=2, downtrend_length=3)
    with pytest.raises(ValueError):
        SmartExitConfig(consecutive_low_limit=0)
