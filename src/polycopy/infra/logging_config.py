"""Structured console logging for the copy-trading pipeline.

Every record is one line: ``[HH:MM:SS] symbol event | key=value ...``.
Warnings and below go to stdout, errors to stderr.

Example output:
    [14:32:15] → poll_interval | wallets=2 interval=5.00
    [14:32:16] ✓ COPY BUY 50.00 @ 0.4200 ($20.00) ← 0x1d0034..0313 | order=0xab12
    [14:32:17] ⚠ feed_error | wallet=0x1d0034..0313 error="read timeout"
"""

import sys
from datetime import datetime
from typing import Any

from polycopy.config import LOCAL_TZ, Config


class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"
    GRAY = "\033[90m"

    BG_RED = "\033[41m"


def short_address(address: str) -> str:
    """0x1d0034134e339a309700ff2d34e99fa2d48b0313 -> 0x1d0034..0313"""
    if len(address) <= 14:
        return address
    return f"{address[:8]}..{address[-4:]}"


class StructuredLogger:
    """Leveled key=value logger with optional ANSI colors."""

    LEVELS = {
        "DEBUG": 10,
        "INFO": 20,
        "WARNING": 30,
        "ERROR": 40,
        "CRITICAL": 50,
    }

    LEVEL_STYLE = {
        "DEBUG": (Colors.GRAY, "·"),
        "INFO": (Colors.CYAN, "→"),
        "WARNING": (Colors.YELLOW, "⚠"),
        "ERROR": (Colors.RED, "✗"),
        "CRITICAL": (Colors.BG_RED + Colors.WHITE, "☠"),
    }

    def __init__(
        self, name: str = "polycopy", level: str | None = None, use_colors: bool = True
    ):
        """Initialize logger.

        Args:
            name: Logger name, shown on debug records
            level: DEBUG, INFO, WARNING, ERROR or CRITICAL (default: Config.LOG_LEVEL)
            use_colors: Use ANSI colors when stdout is a terminal
        """
        self.name = name
        self.level = self.LEVELS.get((level or Config.LOG_LEVEL).upper(), 20)
        self.use_colors = use_colors and sys.stdout.isatty()

    def _c(self, color: str, text: str) -> str:
        if self.use_colors and color:
            return f"{color}{text}{Colors.RESET}"
        return text

    def _timestamp(self) -> str:
        return self._c(Colors.DIM, f"[{datetime.now(LOCAL_TZ).strftime('%H:%M:%S')}]")

    def _format_value(self, value: Any) -> str:
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, float):
            if abs(value) < 0.01 and value != 0:
                return f"{value:.4f}"
            if abs(value) >= 1000:
                return f"{value:.0f}"
            return f"{value:.2f}"
        if isinstance(value, str) and (" " in value or "=" in value):
            return f'"{value}"'
        return str(value)

    def _format_kwargs(self, kwargs: dict) -> str:
        return " ".join(
            f"{key}={self._format_value(value)}"
            for key, value in kwargs.items()
            if not key.startswith("_")
        )

    def _emit(self, level: str, line: str):
        stream = sys.stderr if self.LEVELS.get(level, 20) >= 40 else sys.stdout
        print(line, file=stream)

    def enabled_for(self, level: str) -> bool:
        return self.LEVELS.get(level, 20) >= self.level

    def _log(self, level: str, event: str, **kwargs):
        if not self.enabled_for(level):
            return

        color, symbol = self.LEVEL_STYLE.get(level, (Colors.WHITE, "·"))
        level_num = self.LEVELS.get(level, 20)
        if level == "DEBUG":
            event = f"{self.name}.{event}"

        parts = [
            self._timestamp(),
            self._c(color, symbol),
            self._c(Colors.BOLD if level_num >= 30 else "", event),
        ]
        if kwargs:
            parts.append(self._c(Colors.DIM, "|"))
            parts.append(self._c(Colors.GRAY, self._format_kwargs(kwargs)))

        self._emit(level, " ".join(parts))

    def debug(self, event: str, **kwargs):
        self._log("DEBUG", event, **kwargs)

    def info(self, event: str, **kwargs):
        self._log("INFO", event, **kwargs)

    def warning(self, event: str, **kwargs):
        self._log("WARNING", event, **kwargs)

    def error(self, event: str, **kwargs):
        self._log("ERROR", event, **kwargs)

    def critical(self, event: str, **kwargs):
        self._log("CRITICAL", event, **kwargs)

    # Convenience methods for pipeline events

    def order_placed(
        self, order_id: str, side: str, size: float, worst_price: float, kind: str, **kwargs
    ):
        self.info(
            "order_placed",
            order_id=order_id,
            side=side,
            size=size,
            worst_price=worst_price,
            kind=kind,
            **kwargs,
        )

    def order_filled(self, order_id: str, filled_size: float, avg_price: float, **kwargs):
        self.info(
            "order_filled",
            order_id=order_id,
            filled_size=filled_size,
            avg_price=avg_price,
            **kwargs,
        )

    def order_failed(self, order_id: str | None, error: str, **kwargs):
        self.error("order_failed", order_id=order_id, error=error, **kwargs)

    def replica_attempt(
        self,
        trader: str,
        side: str,
        size: float,
        price: float,
        value: float,
        success: bool,
        attempted: bool,
        detail: str = "",
    ):
        """One line per detected trade, after it has settled."""
        if not self.enabled_for("INFO"):
            return

        if not attempted:
            icon = self._c(Colors.YELLOW, "∅ SKIP")
        elif success:
            icon = self._c(Colors.GREEN + Colors.BOLD, "✓ COPY")
        else:
            icon = self._c(Colors.RED + Colors.BOLD, "✗ FAIL")

        side_str = self._c(Colors.GREEN if side == "BUY" else Colors.MAGENTA, side)
        line = (
            f"{self._timestamp()} {icon} {side_str} {size:.2f} @ {price:.4f} "
            f"(${value:.2f}) ← {self._c(Colors.CYAN, short_address(trader))}"
        )
        if detail:
            line += f" {self._c(Colors.DIM, '|')} {self._c(Colors.GRAY, detail)}"
        self._emit("INFO", line)

    def stats_line(self, stats: dict):
        """Periodic pipeline counters."""
        if not self.enabled_for("INFO"):
            return

        run_sec = int(stats.get("running_seconds", 0))
        line = (
            f"{self._timestamp()} {self._c(Colors.DIM, f'[{run_sec // 60}m{run_sec % 60}s]')} "
            f"recv: {stats.get('activity_received', 0)} | "
            f"matched: {stats.get('activity_matched', 0)} | "
            f"detected: {stats.get('trades_detected', 0)} | "
            f"executed: {self._c(Colors.GREEN, str(stats.get('trades_executed', 0)))} | "
            f"skipped: {self._c(Colors.YELLOW, str(stats.get('trades_skipped', 0)))} | "
            f"failed: {self._c(Colors.RED, str(stats.get('trades_failed', 0)))}"
        )
        self._emit("INFO", line)

    def circuit_breaker(self, name: str, state: str, failures: int, **kwargs):
        level = "WARNING" if state == "open" else "INFO"
        self._log(level, "circuit_breaker", name=name, state=state, failures=failures, **kwargs)

    def rate_limited(self, endpoint: str, wait_time: float, **kwargs):
        self.warning("rate_limited", endpoint=endpoint, wait_time=wait_time, **kwargs)

    def status_line(self, message: str):
        self._emit("INFO", f"{self._timestamp()} {self._c(Colors.DIM, message)}")


# Global logger instance
log = StructuredLogger()


def get_logger(name: str = "polycopy") -> StructuredLogger:
    """Get a named logger instance."""
    return StructuredLogger(name=name)
