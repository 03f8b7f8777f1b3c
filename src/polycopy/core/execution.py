"""Replica order submission and fill confirmation.

Each order moves NEW -> PARTIALLY_FILLED* -> FILLED | CANCELLED | EXPIRED | REJECTED.
Aggressive kinds (FOK/FAK) usually match on submit; anything else is polled
at a fixed interval until it terminates or its deadline passes.
"""

import itertools
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from polycopy.config import Config
from polycopy.core.errors import ConfirmationTimeout, SubmissionError
from polycopy.core.types import (
    CopyTradeResult,
    OrderGateway,
    OrderKind,
    OrderStatus,
    OrderStatusInfo,
    ReplicaOrderSpec,
    SubmitResult,
)
from polycopy.infra.logging_config import get_logger
from polycopy.infra.resilience import categorize_error

logger = get_logger("execution")


@dataclass
class OrderExecutor:
    """Drive one replica order to a terminal fill state."""

    gateway: OrderGateway
    poll_interval: float = field(default_factory=lambda: Config.CONFIRM_POLL_INTERVAL)
    limit_timeout: float = field(default_factory=lambda: Config.CONFIRM_TIMEOUT_LIMIT)
    market_timeout: float = field(default_factory=lambda: Config.CONFIRM_TIMEOUT_MARKET)
    credit_partial_fills: bool = field(
        default_factory=lambda: Config.CREDIT_PARTIAL_FILLS
    )
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep

    def timeout_for(self, kind: OrderKind) -> float:
        return self.market_timeout if kind.is_market else self.limit_timeout

    def execute(self, spec: ReplicaOrderSpec) -> CopyTradeResult:
        try:
            submit = self.gateway.submit_order(spec)
        except Exception as e:
            return self._submission_failed(spec, SubmissionError(str(e)), e)

        if not submit.success:
            error = SubmissionError(
                submit.error_message or "order rejected", order_id=submit.order_id
            )
            return self._submission_failed(spec, error)

        if submit.order_id:
            logger.order_placed(
                submit.order_id,
                spec.side.value,
                spec.size,
                spec.worst_price,
                spec.order_kind.value,
            )

        if submit.sync_fill_size:
            return self._filled(spec, submit.order_id, *self._sync_fill(spec, submit))

        if not submit.order_id:
            return self._submission_failed(
                spec, SubmissionError("gateway returned no order id")
            )

        return self._confirm(spec, submit.order_id)

    def _sync_fill(self, spec: ReplicaOrderSpec, submit: SubmitResult):
        price = submit.sync_fill_price or spec.trigger_price
        status = (
            OrderStatus.FILLED
            if submit.sync_fill_size >= spec.size - 1e-9
            else OrderStatus.PARTIALLY_FILLED
        )
        return submit.sync_fill_size, price, status

    def _confirm(self, spec: ReplicaOrderSpec, order_id: str) -> CopyTradeResult:
        deadline = self.clock() + self.timeout_for(spec.order_kind)
        last = OrderStatusInfo(status=OrderStatus.NEW, original_size=spec.size)
        polls = 0

        while self.clock() < deadline:
            polls += 1
            try:
                info = self.gateway.get_order_status(order_id)
            except Exception as e:
                logger.warning("order_poll_error", order_id=order_id, error=str(e))
            else:
                last = info
                if info.status == OrderStatus.FILLED:
                    size = info.filled_size or spec.size
                    price = info.avg_price or spec.trigger_price
                    return self._filled(spec, order_id, size, price, OrderStatus.FILLED)
                if info.status.is_terminal:
                    message = f"order {info.status.value.lower()}"
                    logger.order_failed(order_id, message, polls=polls)
                    return CopyTradeResult(
                        attempted=True,
                        success=False,
                        order_id=order_id,
                        error_message=message,
                        status=info.status,
                    )
            self.sleep(self.poll_interval)

        return self._timed_out(spec, order_id, last, polls)

    def _timed_out(
        self, spec: ReplicaOrderSpec, order_id: str, last: OrderStatusInfo, polls: int
    ) -> CopyTradeResult:
        try:
            self.gateway.cancel_order(order_id)
            logger.info("order_cancelled", order_id=order_id)
        except Exception as e:
            logger.debug("cancel_failed", order_id=order_id, error=str(e))

        if self.credit_partial_fills and last.filled_size > 0:
            price = last.avg_price or spec.trigger_price
            logger.warning(
                "partial_fill_credited", order_id=order_id, filled_size=last.filled_size
            )
            return self._filled(
                spec, order_id, last.filled_size, price, OrderStatus.PARTIALLY_FILLED
            )

        timeout = ConfirmationTimeout(order_id, last.status.value, last.filled_size)
        logger.order_failed(order_id, str(timeout), polls=polls)
        return CopyTradeResult(
            attempted=True,
            success=False,
            order_id=order_id,
            error_message=str(timeout),
            status=last.status,
        )

    def _filled(
        self,
        spec: ReplicaOrderSpec,
        order_id: str | None,
        size: float,
        price: float,
        status: OrderStatus,
    ) -> CopyTradeResult:
        logger.order_filled(order_id or "sync", size, price, side=spec.side.value)
        return CopyTradeResult(
            attempted=True,
            success=True,
            order_id=order_id,
            copy_size_used=size,
            copy_value_used=size * price,
            status=status,
        )

    def _submission_failed(
        self,
        spec: ReplicaOrderSpec,
        error: SubmissionError,
        cause: Exception | None = None,
    ) -> CopyTradeResult:
        category = categorize_error(cause or error)
        logger.order_failed(
            error.order_id, str(error), side=spec.side.value, category=category.value
        )
        return CopyTradeResult(
            attempted=True,
            success=False,
            order_id=error.order_id,
            error_message=str(error),
            status=OrderStatus.REJECTED,
        )


class PaperOrderGateway:
    """Dry-run gateway: every order fills on submit at the trigger price."""

    def __init__(self):
        self.submitted: list[ReplicaOrderSpec] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def submit_order(self, spec: ReplicaOrderSpec) -> SubmitResult:
        with self._lock:
            self.submitted.append(spec)
            order_id = f"paper-{next(self._ids)}"
        return SubmitResult(
            success=True,
            order_id=order_id,
            sync_fill_size=spec.size,
            sync_fill_price=spec.trigger_price,
        )

    def get_order_status(self, order_id: str) -> OrderStatusInfo:
        return OrderStatusInfo(status=OrderStatus.FILLED)

    def cancel_order(self, order_id: str) -> None:
        return None
