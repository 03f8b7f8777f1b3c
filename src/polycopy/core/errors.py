"""Error taxonomy for the copy-trading pipeline.

A risk-gate rejection is not an error: it is a ``GateDecision`` with a reason.
"""


class CopyTradeError(Exception):
    """Base class for pipeline errors."""


class FeedError(CopyTradeError):
    """A single wallet's activity fetch failed. Retried on the next tick."""

    def __init__(self, wallet: str, cause: Exception):
        self.wallet = wallet
        self.cause = cause
        super().__init__(f"feed query failed for {wallet}: {cause}")


class SubmissionError(CopyTradeError):
    """The order gateway rejected a replica order. Never retried."""

    def __init__(self, message: str, order_id: str | None = None):
        self.order_id = order_id
        super().__init__(message)


class ConfirmationTimeout(CopyTradeError):
    """An order neither filled nor terminated before its deadline."""

    def __init__(self, order_id: str, last_status: str, filled_size: float = 0.0):
        self.order_id = order_id
        self.last_status = last_status
        self.filled_size = filled_size
        super().__init__(
            f"order {order_id} not filled before timeout "
            f"(last status {last_status}, filled {filled_size:.4f})"
        )


class LedgerInvariantViolation(CopyTradeError):
    """The ledger was asked to oversell or record a negative lot. A bug, not a condition."""
