"""
ledger_client.py -- async JSON-RPC client for the territory ledger.

Handles:
  - Read calls (metadata, ancestry, children, bids, balances) -- retried with
    exponential backoff on transport failures
  - Transactions (bid, approve, delete, burn, mint, transfer) -- sent once,
    never retried (they are not idempotent)
  - Rate-limit awareness (token bucket + circuit breaker)
  - Fixed-point codec for amounts and region coordinates

WIRE FORMAT (how it works):
  1. POST {"jsonrpc": "2.0", "id": n, "method": <name>, "params": {...}}
  2. params = {"to": <contract>, "from": <sender or null>, "args": [...]}
  3. Amounts travel as integers scaled by 10**decimals
  4. Coordinates travel as (x + offset) * 10**decimals, so they stay unsigned
  5. Error objects use the EIP-1474 codes: -32001 resource not found,
     -32005 limit exceeded; anything else is a plain RPC error
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

import httpx

import config
from territories import ROOT_PARENT_ID, Bid, Region, Territory

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Contract method names
# ---------------------------------------------------------------------------
GET_METADATA = "getMetadata"
GET_ANCESTRY = "getAncestryMetadata"
GET_CHILDREN = "getChildrenMetadata"
GET_BIDS = "getBids"
BALANCE_OF = "balanceOf"

PLACE_BID = "bid"
APPROVE_BIDS = "batchApproveBids"
DELETE_BID = "deleteBid"
BURN = "burn"
MINT = "mintNFT"
TRANSFER = "safeTransferFrom"

# EIP-1474 error codes
RESOURCE_NOT_FOUND = -32001
LIMIT_EXCEEDED = -32005


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class LedgerError(Exception):
    """Base of every failure the ledger client reports."""

    def __init__(self, message: str, *, method: str = "") -> None:
        super().__init__(message)
        self.method = method


class TransportError(LedgerError):
    """Network, HTTP 5xx or unreadable reply.  Transient."""


class LedgerTimeout(TransportError):
    pass


class RateLimitError(TransportError):
    def __init__(self, message: str, *, method: str = "", retry_after: float | None = None) -> None:
        super().__init__(message, method=method)
        self.retry_after = retry_after


class RpcError(LedgerError):
    def __init__(self, message: str, *, method: str = "", code: int = 0, data: Any = None) -> None:
        super().__init__(message, method=method)
        self.code = code
        self.data = data


class NotFoundError(RpcError):
    """The queried territory or bid does not exist on the ledger."""


# ---------------------------------------------------------------------------
# Gateway call budget
# ---------------------------------------------------------------------------
# The gateway meters calls per client: the allowance refills at
# `decay_rate` calls per second up to `max_budget`.  A rate-limit reply
# blocks every caller for 5s, doubling per consecutive strike up to 60s.


class _RateLimiter:
    """Per-client call allowance shared by every request of one LedgerClient."""

    def __init__(self, max_budget: int = 15, decay_rate: float = 1.0):
        self._lock = asyncio.Lock()
        self._capacity = max(1, int(max_budget))
        self._refill_per_sec = max(1e-6, float(decay_rate))
        self._allowance = float(self._capacity)
        self._refilled_at = time.monotonic()
        self._strikes = 0
        self._blocked_until = 0.0

    def _refill(self, now: float) -> None:
        gained = (now - self._refilled_at) * self._refill_per_sec
        if gained > 0:
            self._allowance = min(self._capacity, self._allowance + gained)
            self._refilled_at = now

    def _delay_before_call(self) -> float:
        now = time.monotonic()
        if self._blocked_until > now:
            logger.warning("Gateway backing off, next call in %.1fs", self._blocked_until - now)
            return self._blocked_until - now
        self._refill(now)
        if self._allowance >= 1.0:
            self._allowance -= 1.0
            return 0.0
        delay = (1.0 - self._allowance) / self._refill_per_sec
        logger.warning("Gateway allowance spent (%.1f/%d), next call in %.1fs",
                       self._allowance, self._capacity, delay)
        return delay

    async def consume(self) -> None:
        """Wait for one call's worth of allowance."""
        while True:
            async with self._lock:
                delay = self._delay_before_call()
            if delay <= 0:
                return
            await asyncio.sleep(min(delay, 5.0))

    def report_rate_error(self) -> None:
        self._strikes += 1
        backoff = min(60.0, 5.0 * (2 ** (self._strikes - 1)))
        self._blocked_until = time.monotonic() + backoff
        self._allowance = 0.0
        logger.warning("Gateway rate limit strike #%d, blocking calls for %.0fs", self._strikes, backoff)

    def report_success(self) -> None:
        self._strikes = 0
        self._blocked_until = 0.0

    @property
    def circuit_open(self) -> bool:
        return self._blocked_until > time.monotonic()


# ---------------------------------------------------------------------------
# Fixed-point codec
# ---------------------------------------------------------------------------


def parse_uint(raw: Any) -> int:
    """Ledger integers arrive as JSON numbers, decimal strings or 0x-hex strings."""
    if isinstance(raw, bool):
        raise ValueError(f"not an integer: {raw!r}")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str):
        text = raw.strip().lower()
        value = int(text, 16) if text.startswith("0x") else int(text)
    elif isinstance(raw, float) and raw.is_integer():
        value = int(raw)
    else:
        raise ValueError(f"not an integer: {raw!r}")
    if value < 0:
        raise ValueError(f"negative ledger integer: {raw!r}")
    return value


def to_fixed(value: float, decimals: int, offset: float = 0.0) -> int:
    try:
        scaled = (Decimal(str(value)) + Decimal(str(offset))) * (Decimal(10) ** int(decimals))
    except InvalidOperation as exc:
        raise ValueError(f"cannot encode {value!r}") from exc
    if not scaled.is_finite() or scaled < 0:
        raise ValueError(f"{value!r} is outside the encodable range (offset {offset})")
    return int(scaled.to_integral_value())


def from_fixed(raw: Any, decimals: int, offset: float = 0.0) -> float:
    return float(Decimal(parse_uint(raw)) / (Decimal(10) ** int(decimals))) - float(offset)


def encode_region(region: Region, decimals: int, offset: float) -> dict[str, int]:
    return {
        "xMin": to_fixed(region.x_min, decimals, offset),
        "yMin": to_fixed(region.y_min, decimals, offset),
        "xMax": to_fixed(region.x_max, decimals, offset),
        "yMax": to_fixed(region.y_max, decimals, offset),
    }


def decode_region(raw: dict, decimals: int, offset: float) -> Region:
    return Region(
        x_min=from_fixed(raw["xMin"], decimals, offset),
        y_min=from_fixed(raw["yMin"], decimals, offset),
        x_max=from_fixed(raw["xMax"], decimals, offset),
        y_max=from_fixed(raw["yMax"], decimals, offset),
    )


def decode_territory(raw: dict, decimals: int, offset: float) -> Territory:
    parent = raw.get("parentId")
    return Territory(
        territory_id=parse_uint(raw["tokenId"]),
        parent_id=parse_uint(parent) if parent is not None else ROOT_PARENT_ID,
        region=decode_region(raw["field"], decimals, offset),
        owner=str(raw.get("owner") or ""),
        locked_value=from_fixed(raw.get("lockedFuel", 0), decimals),
        minimum_bid_price=from_fixed(raw.get("minimumPrice", 0), decimals),
    )


def decode_bid(raw: dict, decimals: int, offset: float) -> Bid:
    return Bid(
        bid_id=parse_uint(raw["bidId"]),
        recipient=str(raw.get("recipient") or ""),
        region=decode_region(raw["field"], decimals, offset),
        amount=from_fixed(raw.get("amount", 0), decimals),
        minimum_bid_price=from_fixed(raw.get("minimumPrice", 0), decimals),
    )


@dataclass(frozen=True)
class TransactionReceipt:
    tx_hash: str
    method: str


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class LedgerClient:
    """Async client for the territory contract's named methods."""

    def __init__(
        self,
        url: str | None = None,
        contract_address: str | None = None,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_base_sec: float | None = None,
        decimals: int | None = None,
        offset: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        rate_limiter: _RateLimiter | None = None,
    ) -> None:
        self.url = url or config.LEDGER_RPC_URL
        self.contract_address = contract_address if contract_address is not None else config.LEDGER_CONTRACT_ADDRESS
        self.timeout = float(timeout if timeout is not None else config.RPC_TIMEOUT_SEC)
        self.max_retries = max(0, int(max_retries if max_retries is not None else config.RPC_MAX_RETRIES))
        self.retry_base_sec = float(retry_base_sec if retry_base_sec is not None else config.RPC_RETRY_BASE_SEC)
        self.decimals = int(decimals if decimals is not None else config.VALUE_DECIMALS)
        self.offset = float(offset if offset is not None else config.REGION_OFFSET)
        self._transport = transport
        self._rate_limiter = rate_limiter or _RateLimiter(config.RPC_RATE_BUDGET, config.RPC_RATE_DECAY)
        self._ids = itertools.count(1)
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": "TerritoryExplorer/1.0"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # ------------------ Transport ------------------

    def _raise_rpc_error(self, method: str, error: Any) -> None:
        if not isinstance(error, dict):
            raise RpcError(f"{method}: {error}", method=method)
        code = int(error.get("code", 0) or 0)
        message = str(error.get("message", "") or "RPC error")
        data = error.get("data")
        lowered = message.lower()
        if code == LIMIT_EXCEEDED or "rate limit" in lowered:
            self._rate_limiter.report_rate_error()
            raise RateLimitError(f"{method}: {message}", method=method)
        if code == RESOURCE_NOT_FOUND or "nonexistent" in lowered or "not found" in lowered:
            raise NotFoundError(f"{method}: {message}", method=method, code=code, data=data)
        raise RpcError(f"{method}: {message}", method=method, code=code, data=data)

    async def _post(self, method: str, params: dict) -> Any:
        await self._rate_limiter.consume()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self.client.post(self.url, json=payload)
        except httpx.TimeoutException as err:
            raise LedgerTimeout(f"{method}: timed out after {self.timeout:.1f}s", method=method) from err
        except httpx.HTTPError as err:
            raise TransportError(f"{method}: {err}", method=method) from err

        if response.status_code == 429:
            self._rate_limiter.report_rate_error()
            retry_after = response.headers.get("Retry-After")
            try:
                retry_s = float(retry_after) if retry_after else None
            except ValueError:
                retry_s = None
            raise RateLimitError(f"{method}: HTTP 429", method=method, retry_after=retry_s)
        if response.status_code >= 500:
            raise TransportError(f"{method}: server error {response.status_code}", method=method)
        if response.status_code >= 400:
            raise RpcError(f"{method}: HTTP {response.status_code}", method=method, code=response.status_code)

        try:
            body = response.json()
        except ValueError as err:
            raise TransportError(f"{method}: invalid JSON reply", method=method) from err
        if not isinstance(body, dict):
            raise TransportError(f"{method}: unexpected reply {body!r:.200}", method=method)
        if body.get("error"):
            self._raise_rpc_error(method, body["error"])
        self._rate_limiter.report_success()
        return body.get("result")

    async def _call(self, method: str, args: list, *, sender: str | None = None, retry: bool = False) -> Any:
        params = {"to": self.contract_address or None, "from": sender, "args": args}
        attempts = self.max_retries + 1 if retry else 1
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._post(method, params)
            except TransportError as e:
                if attempt >= attempts:
                    logger.warning("%s failed after %d attempt(s): %s", method, attempt, e)
                    raise
                delay = getattr(e, "retry_after", None) or self.retry_base_sec * (2 ** (attempt - 1))
                logger.warning("%s transport error: %s. Retry %d/%d in %.1fs",
                               method, e, attempt, attempts - 1, delay)
                await asyncio.sleep(delay)

    def _decode_list(self, method: str, result: Any, decoder) -> tuple:
        if result is None:
            return ()
        if not isinstance(result, list):
            raise TransportError(f"{method}: expected a list, got {type(result).__name__}", method=method)
        try:
            return tuple(decoder(item, self.decimals, self.offset) for item in result)
        except (KeyError, TypeError, ValueError) as err:
            raise TransportError(f"{method}: malformed record: {err}", method=method) from err

    def _receipt(self, method: str, result: Any) -> TransactionReceipt:
        if isinstance(result, dict):
            result = result.get("transactionHash") or result.get("hash")
        if not result:
            raise TransportError(f"{method}: no transaction hash in reply", method=method)
        logger.info("%s submitted: %s", method, result)
        return TransactionReceipt(tx_hash=str(result), method=method)

    # ===================================================================
    # READ METHODS
    # ===================================================================

    async def get_metadata(self, territory_id: int) -> Territory:
        result = await self._call(GET_METADATA, [int(territory_id)], retry=True)
        if not result:
            raise NotFoundError(f"{GET_METADATA}: territory {territory_id} not found", method=GET_METADATA)
        (territory,) = self._decode_list(GET_METADATA, [result], decode_territory)
        return territory

    async def get_ancestry(self, territory_id: int) -> tuple[Territory, ...]:
        """Territory plus all its ancestors.  Order is whatever the ledger returns."""
        result = await self._call(GET_ANCESTRY, [int(territory_id)], retry=True)
        territories = self._decode_list(GET_ANCESTRY, result, decode_territory)
        if not territories:
            raise NotFoundError(f"{GET_ANCESTRY}: territory {territory_id} not found", method=GET_ANCESTRY)
        return territories

    async def get_children(self, territory_id: int) -> tuple[Territory, ...]:
        result = await self._call(GET_CHILDREN, [int(territory_id)], retry=True)
        return self._decode_list(GET_CHILDREN, result, decode_territory)

    async def get_bids(self, territory_id: int) -> tuple[Bid, ...]:
        result = await self._call(GET_BIDS, [int(territory_id)], retry=True)
        return self._decode_list(GET_BIDS, result, decode_bid)

    async def balance_of(self, account: str) -> float:
        result = await self._call(BALANCE_OF, [account], retry=True)
        try:
            return from_fixed(result or 0, self.decimals)
        except ValueError as err:
            raise TransportError(f"{BALANCE_OF}: malformed balance {result!r}", method=BALANCE_OF) from err

    # ===================================================================
    # TRANSACTIONS
    # ===================================================================

    async def place_bid(
        self,
        sender: str,
        territory_id: int,
        region: Region,
        amount: float,
        minimum_bid_price: float,
    ) -> TransactionReceipt:
        args = [
            int(territory_id),
            sender,
            encode_region(region, self.decimals, self.offset),
            to_fixed(amount, self.decimals),
            to_fixed(minimum_bid_price, self.decimals),
        ]
        return self._receipt(PLACE_BID, await self._call(PLACE_BID, args, sender=sender))

    async def approve_bids(self, sender: str, bid_ids: Iterable[int]) -> TransactionReceipt:
        ids = sorted(int(b) for b in bid_ids)
        return self._receipt(APPROVE_BIDS, await self._call(APPROVE_BIDS, [ids], sender=sender))

    async def delete_bid(self, sender: str, bid_id: int) -> TransactionReceipt:
        return self._receipt(DELETE_BID, await self._call(DELETE_BID, [int(bid_id)], sender=sender))

    async def burn(self, sender: str, territory_id: int) -> TransactionReceipt:
        return self._receipt(BURN, await self._call(BURN, [sender, int(territory_id)], sender=sender))

    async def mint(self, sender: str, parent_id: int, region: Region) -> TransactionReceipt:
        args = [int(parent_id), sender, encode_region(region, self.decimals, self.offset)]
        return self._receipt(MINT, await self._call(MINT, args, sender=sender))

    async def transfer_value(self, sender: str, recipient: str, amount: float) -> TransactionReceipt:
        args = [sender, recipient, to_fixed(amount, self.decimals)]
        return self._receipt(TRANSFER, await self._call(TRANSFER, args, sender=sender))
