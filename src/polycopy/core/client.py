"""Polymarket collaborators: Data API trade feed, CLOB prices, CLOB order gateway."""

import time

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from polycopy.config import Config
from polycopy.core.errors import FeedError
from polycopy.core.types import (
    OrderKind,
    OrderStatus,
    OrderStatusInfo,
    PositionAggregate,
    ReplicaOrderSpec,
    Side,
    SourceTrade,
    SubmitResult,
)
from polycopy.infra.logging_config import get_logger, short_address
from polycopy.infra.resilience import CircuitBreaker, RateLimiter, with_retry

logger = get_logger("client")


def build_session(retries: int | None = None) -> requests.Session:
    """Pooled session with urllib3 retries on 429/5xx for GETs."""
    session = requests.Session()
    retry_strategy = Retry(
        total=Config.REST_RETRIES if retries is None else retries,
        backoff_factor=0.1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
    )
    adapter = HTTPAdapter(
        pool_connections=20,
        pool_maxsize=20,
        max_retries=retry_strategy,
    )
    session.mount("https://", adapter)
    session.headers.update(
        {
            "User-Agent": "polycopy/0.1",
            "Accept": "application/json",
            "Connection": "keep-alive",
        }
    )
    return session


class DataApiClient:
    """Read-only Data API client; also the engine's ``TradeFeed``.

    Requests share one rate limiter sized to the feed budget and one circuit
    breaker. Transient failures are retried by ``with_retry``; 4xx are not.
    """

    PAGE_SIZE = 500

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
        rate_limiter: RateLimiter | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        max_retries: int = 1,
    ):
        self.base_url = (base_url or Config.DATA_API).rstrip("/")
        self.timeout = timeout or Config.REST_TIMEOUT
        self.session = session or build_session()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="data_api")
        self.max_retries = max_retries

    def _get(self, path: str, params: dict):
        def call():
            resp = self.session.get(
                f"{self.base_url}{path}", params=params, timeout=self.timeout
            )
            resp.raise_for_status()
            return resp.json()

        return with_retry(
            call,
            max_retries=self.max_retries,
            circuit_breaker=self.circuit_breaker,
            rate_limiter=self.rate_limiter,
        )

    def get_activity(
        self,
        user: str,
        start: int | None = None,
        limit: int = 100,
        activity_type: str = "TRADE",
        sort: str = "ASC",
    ) -> list[dict]:
        params = {
            "user": user,
            "limit": limit,
            "type": activity_type,
            "sortBy": "TIMESTAMP",
            "sortDirection": sort,
        }
        if start is not None:
            params["start"] = start
        return self._get("/activity", params) or []

    def fetch_activity(
        self,
        wallet: str,
        since: int,
        limit: int = 100,
        activity_type: str = "TRADE",
        sort: str = "ASC",
    ) -> list[SourceTrade]:
        """Trades by ``wallet`` at or after ``since`` (unix seconds).

        Raises:
            FeedError: the request failed after retries
        """
        try:
            rows = self.get_activity(wallet, since, limit, activity_type, sort)
        except Exception as e:
            raise FeedError(wallet, e) from e

        trades = []
        for row in rows:
            trade = SourceTrade.from_activity(row, wallet=wallet)
            if trade is not None and trade.timestamp >= since:
                trades.append(trade)
        return trades

    def get_positions(self, user: str, size_threshold: float = 0.0) -> list[dict]:
        return self._get(
            "/positions",
            {"user": user, "sizeThreshold": size_threshold, "limit": self.PAGE_SIZE},
        ) or []

    def get_trades(
        self,
        user: str,
        start: int | None = None,
        end: int | None = None,
        max_trades: int = 10_000,
    ) -> list[SourceTrade]:
        """Page through ``/trades`` (newest first) and keep rows in [start, end]."""
        trades: list[SourceTrade] = []
        offset = 0
        while len(trades) < max_trades:
            rows = self._get(
                "/trades",
                {
                    "user": user,
                    "limit": self.PAGE_SIZE,
                    "offset": offset,
                    "takerOnly": "false",
                },
            ) or []
            reached_start = False
            for row in rows:
                trade = SourceTrade.from_activity(row, wallet=user)
                if trade is None:
                    continue
                if end is not None and trade.timestamp > end:
                    continue
                if start is not None and trade.timestamp < start:
                    reached_start = True
                    continue
                trades.append(trade)

            if len(rows) < self.PAGE_SIZE or reached_start:
                break
            offset += self.PAGE_SIZE

        return trades[:max_trades]

    def get_leaderboard(self, period: str = "WEEK", limit: int = 50) -> list[dict]:
        return self._get(
            "/v1/leaderboard",
            {"timePeriod": period, "orderBy": "PNL", "limit": limit},
        ) or []


class ClobPriceSource:
    """Reporting-only valuation inputs: CLOB midpoints and our own positions."""

    def __init__(
        self,
        data_api: DataApiClient | None = None,
        user: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        self.data_api = data_api
        self.user = user if user is not None else Config.FUNDER_ADDRESS
        self.base_url = (base_url or Config.CLOB_API).rstrip("/")
        self.timeout = timeout or Config.REST_TIMEOUT
        self.session = session or build_session()
        self._positions: dict[str, PositionAggregate] | None = None
        self._positions_at = 0.0
        self._positions_ttl = 30.0

    def get_current_price(self, asset: str) -> float | None:
        try:
            resp = self.session.get(
                f"{self.base_url}/midpoint",
                params={"token_id": asset},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            mid = resp.json().get("mid")
            return float(mid) if mid is not None else None
        except Exception as e:
            logger.debug("midpoint_error", asset=asset[:16], error=str(e))
            return None

    def _load_positions(self) -> dict[str, PositionAggregate]:
        now = time.time()
        if self._positions is not None and now - self._positions_at < self._positions_ttl:
            return self._positions
        positions: dict[str, PositionAggregate] = {}
        if self.data_api is not None and self.user:
            try:
                for row in self.data_api.get_positions(self.user):
                    if row.get("asset"):
                        positions[str(row["asset"])] = PositionAggregate.from_position(row)
            except Exception as e:
                logger.debug("positions_error", user=short_address(self.user), error=str(e))
        self._positions = positions
        self._positions_at = now
        return positions

    def get_position_aggregate(self, asset: str) -> PositionAggregate | None:
        return self._load_positions().get(asset)


# CLOB order statuses -> ours. LIVE/MATCHED need the matched size to decide.
_CLOB_STATUS = {
    "CANCELED": OrderStatus.CANCELLED,
    "CANCELLED": OrderStatus.CANCELLED,
    "CANCELED_MARKET_RESOLVED": OrderStatus.CANCELLED,
    "EXPIRED": OrderStatus.EXPIRED,
    "REJECTED": OrderStatus.REJECTED,
    "INVALID": OrderStatus.REJECTED,
    "UNMATCHED": OrderStatus.REJECTED,
}


def map_order_status(order: dict) -> OrderStatusInfo:
    """Translate a CLOB ``get_order`` payload."""
    raw = str(order.get("status", "")).upper()
    original = float(order.get("original_size") or order.get("size") or 0)
    matched = float(order.get("size_matched") or 0)
    price = order.get("price")
    avg_price = float(price) if price not in (None, "") else None

    if raw in ("MATCHED", "FILLED"):
        status = OrderStatus.FILLED
        matched = matched or original
    elif raw in _CLOB_STATUS:
        status = _CLOB_STATUS[raw]
    elif matched > 0:
        status = OrderStatus.PARTIALLY_FILLED
    else:
        status = OrderStatus.NEW  # LIVE, DELAYED, unknown

    return OrderStatusInfo(
        status=status, filled_size=matched, original_size=original, avg_price=avg_price
    )


class ClobOrderGateway:
    """Live order gateway over py-clob-client.

    Supports:
    - EOA wallets (signature_type=0, default)
    - Magic/proxy (1) and Safe (2) wallets, which require a funder address
    - FOK/FAK market orders and GTC limit orders
    """

    def __init__(self, client=None):
        if client is not None:
            self.client = client
            self._load_types()
            return

        if not Config.PRIVATE_KEY:
            raise ValueError("PRIVATE_KEY not set in .env")
        if Config.SIGNATURE_TYPE in (1, 2) and not Config.FUNDER_ADDRESS:
            raise ValueError(
                f"FUNDER_ADDRESS required for SIGNATURE_TYPE={Config.SIGNATURE_TYPE}"
            )
        self._init_client()

    def _load_types(self):
        from py_clob_client.clob_types import MarketOrderArgs, OrderArgs, OrderType
        from py_clob_client.order_builder.constants import BUY, SELL

        self.MarketOrderArgs = MarketOrderArgs
        self.OrderArgs = OrderArgs
        self.OrderType = OrderType
        self.BUY = BUY
        self.SELL = SELL

    def _init_client(self):
        """Initialize py-clob-client with wallet credentials."""
        try:
            from py_clob_client.client import ClobClient
        except ImportError:
            raise ImportError(
                "py-clob-client not installed. Run: pip install py-clob-client"
            )

        client_kwargs = {
            "host": Config.CLOB_API,
            "key": Config.PRIVATE_KEY,
            "chain_id": Config.CHAIN_ID,
        }
        if Config.SIGNATURE_TYPE in (1, 2):
            client_kwargs["signature_type"] = Config.SIGNATURE_TYPE
            client_kwargs["funder"] = Config.FUNDER_ADDRESS

        try:
            self.client = ClobClient(**client_kwargs)
            self.client.set_api_creds(self.client.create_or_derive_api_creds())
        except Exception as e:
            raise RuntimeError(f"Failed to init trading client: {e}")

        self._load_types()
        wallet_type = {0: "EOA", 1: "proxy", 2: "safe"}.get(Config.SIGNATURE_TYPE, "?")
        logger.info("clob_client_ready", wallet=wallet_type)

    def _side(self, side: Side):
        return self.BUY if side == Side.BUY else self.SELL

    def submit_order(self, spec: ReplicaOrderSpec) -> SubmitResult:
        order_type = getattr(self.OrderType, spec.order_kind.value)
        price = round(spec.worst_price, 3)
        try:
            if spec.order_kind == OrderKind.GTC:
                signed = self.client.create_order(
                    self.OrderArgs(
                        token_id=spec.asset,
                        price=price,
                        size=round(spec.size, 2),
                        side=self._side(spec.side),
                    )
                )
            else:
                # Market BUYs are sized in USDC, market SELLs in shares
                amount = spec.notional if spec.side == Side.BUY else spec.size
                signed = self.client.create_market_order(
                    self.MarketOrderArgs(
                        token_id=spec.asset,
                        amount=round(amount, 2),
                        side=self._side(spec.side),
                        price=price,
                        order_type=order_type,
                    )
                )
            response = self.client.post_order(signed, order_type)
        except Exception as e:
            return SubmitResult(success=False, error_message=str(e))

        return self._parse_post_response(spec, response or {})

    @staticmethod
    def _parse_post_response(spec: ReplicaOrderSpec, response: dict) -> SubmitResult:
        order_id = response.get("orderID") or response.get("id")
        if response.get("success") is False or response.get("errorMsg"):
            return SubmitResult(
                success=False,
                order_id=order_id,
                error_message=response.get("errorMsg") or "order not accepted",
            )

        result = SubmitResult(success=True, order_id=order_id)
        if str(response.get("status", "")).lower() == "matched":
            making = float(response.get("makingAmount") or 0)
            taking = float(response.get("takingAmount") or 0)
            # BUY gives USDC for shares; SELL gives shares for USDC
            shares, usdc = (taking, making) if spec.side == Side.BUY else (making, taking)
            if shares > 0:
                result.sync_fill_size = shares
                result.sync_fill_price = usdc / shares
        return result

    def get_order_status(self, order_id: str) -> OrderStatusInfo:
        return map_order_status(self.client.get_order(order_id) or {})

    def cancel_order(self, order_id: str) -> None:
        self.client.cancel(order_id)
