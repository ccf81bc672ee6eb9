"""Failure taxonomy for the decision desk."""

from __future__ import annotations


class SignalDeskError(RuntimeError):
    """Base class for desk failures."""


class MalformedSignal(SignalDeskError):
    """Inbound payload is missing or cannot be parsed into a signal."""


class CapabilityMissing(SignalDeskError):
    """The order manager does not implement a required action."""

    def __init__(self, method: str) -> None:
        super().__init__(f"Order manager does not implement {method}")
        self.method = method


class PnlQueryFailure(SignalDeskError):
    """PnL lookup for a symbol failed."""

    def __init__(self, symbol: str, cause: BaseException | None = None) -> None:
        message = f"PnL query failed for {symbol}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.symbol = symbol


class ExecutionFailure(SignalDeskError):
    """An open/close call against the order manager was rejected."""

    def __init__(self, strategy: str, action: str, symbol: str, cause: BaseException) -> None:
        super().__init__(
            f"Failed to {action} {symbol} for {strategy} signal: {cause}"
        )
        self.strategy = strategy
        self.action = action
        self.symbol = symbol
        self.cause = cause
