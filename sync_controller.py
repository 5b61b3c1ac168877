"""
sync_controller.py -- owner task for the navigation state.

One asyncio task owns the NavState.  Everything that wants to change it
(renderer selections, account switches, fetch replies, post-transaction
refreshes) is queued as an event; the owner feeds each one through
navigator.transition() and then executes the resulting actions:

  FetchAncestry / FetchChildren / FetchBids -> background fetch task whose
      reply is queued back as *Loaded / *Failed carrying the request seq
  ReportError -> error sink
  FocusRegion -> canvas.move_into_frame()
  Redraw      -> canvas.set_primitives(project(state)); canvas.redraw()

Remote mutations run in the caller's task, serialized per territory, and
queue a refresh when they succeed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import config
import navigator as nav
import render_projector as rp
from coordinates import SpatialPrimitive, Viewport, viewport_to_region
from ledger_client import LedgerClient, LedgerError, TransactionReceipt
from notifier import ErrorReport
from territories import ROOT_PARENT_ID, Region, Territory

logger = logging.getLogger(__name__)

_STOP = object()


class MutationRefused(Exception):
    """A transaction was requested without the state it needs (account, territory, selection)."""


class SyncController:
    def __init__(
        self,
        ledger: LedgerClient,
        canvas: rp.Canvas,
        error_sink: Callable[[ErrorReport], Any],
        *,
        root_id: int | None = None,
        account: str | None = None,
    ) -> None:
        self.ledger = ledger
        self.canvas = canvas
        self.error_sink = error_sink
        root = int(root_id if root_id is not None else config.ROOT_TERRITORY_ID)
        self.state = nav.initial_state(root, account)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._owner: asyncio.Task | None = None
        self._fetches: set[asyncio.Task] = set()
        self._mutation_locks: dict[int | None, asyncio.Lock] = {}
        self._listeners: list[Callable[[nav.NavState], None]] = []
        canvas.on_primitive_selected = self.on_primitive_selected

    # ------------------ Lifecycle ------------------

    async def start(self, territory_id: int | None = None) -> None:
        if self._owner is None:
            self._owner = asyncio.create_task(self._run(), name="navigation-owner")
        start_id = territory_id if territory_id is not None else config.START_TERRITORY_ID
        logger.info("Session starting at territory %s (root %s)", start_id, self.state.root_id)
        self.submit(nav.ViewTerritory(territory_id=int(start_id)))

    async def stop(self) -> None:
        if self._owner is not None:
            self._queue.put_nowait(_STOP)
            await self._owner
            self._owner = None
        pending = list(self._fetches)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def settle(self) -> None:
        """Wait until no fetch is in flight and every queued event is applied."""
        while True:
            await self._queue.join()
            if self._fetches:
                await asyncio.gather(*list(self._fetches), return_exceptions=True)
                continue
            if self._queue.empty():
                return

    def add_listener(self, callback: Callable[[nav.NavState], None]) -> None:
        """Called with the new state after every redraw."""
        self._listeners.append(callback)

    # ------------------ Inputs ------------------

    def submit(self, event: nav.Event) -> None:
        self._queue.put_nowait(event)

    def on_primitive_selected(self, primitive: SpatialPrimitive) -> None:
        event = rp.classify_selection(primitive)
        if event is not None:
            self.submit(event)

    def view(self, territory_id: int) -> None:
        self.submit(nav.ViewTerritory(territory_id=int(territory_id)))

    def set_account(self, account: str | None) -> None:
        self.submit(nav.AccountChanged(account=account or None))

    def refresh(self, include_ancestry: bool = False) -> None:
        self.submit(nav.RefreshView(include_ancestry=include_ancestry))

    @property
    def current_territory(self) -> Territory | None:
        return self.state.path[-1] if self.state.path else None

    # ------------------ Owner loop ------------------

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if event is _STOP:
                    return
                self._apply(event)
            except Exception:
                logger.exception("Failed to apply %s", type(event).__name__)
            finally:
                self._queue.task_done()

    def _apply(self, event: nav.Event) -> None:
        if nav.is_stale(self.state, event):
            logger.debug("Discarding stale %s (seq %s)", type(event).__name__, getattr(event, "seq", "?"))
        self.state, actions = nav.transition(self.state, event)
        for action in actions:
            self._execute(action)

    def _execute(self, action: nav.Action) -> None:
        if isinstance(action, nav.FetchAncestry):
            self._spawn(self._fetch_ancestry(action))
        elif isinstance(action, nav.FetchChildren):
            self._spawn(self._fetch_children(action))
        elif isinstance(action, nav.FetchBids):
            self._spawn(self._fetch_bids(action))
        elif isinstance(action, nav.ReportError):
            self._report(action.error, action.context)
        elif isinstance(action, nav.FocusRegion):
            try:
                self.canvas.move_into_frame(action.region)
            except ValueError as e:
                logger.warning("Cannot focus on %s: %s", action.region, e)
        elif isinstance(action, nav.Redraw):
            self.canvas.set_primitives(rp.project(self.state))
            self.canvas.redraw()
            for listener in self._listeners:
                listener(self.state)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)

    def _report(self, error: Exception, context: str) -> None:
        try:
            self.error_sink(ErrorReport(error=error, context=context))
        except Exception:
            logger.exception("Error sink raised while reporting %s", context)

    # ------------------ Fetches ------------------

    async def _fetch_ancestry(self, action: nav.FetchAncestry) -> None:
        if action.fallback:
            logger.warning("Falling back to root territory %s", action.territory_id)
        try:
            territories = await self.ledger.get_ancestry(action.territory_id)
        except Exception as e:
            logger.warning("Ancestry fetch for %s failed: %s", action.territory_id, e)
            self.submit(nav.AncestryFailed(seq=action.seq, territory_id=action.territory_id, error=e,
                                           fallback=action.fallback))
        else:
            self.submit(nav.AncestryLoaded(seq=action.seq, territory_id=action.territory_id,
                                           territories=tuple(territories), fallback=action.fallback))

    async def _fetch_children(self, action: nav.FetchChildren) -> None:
        try:
            children = await self.ledger.get_children(action.parent_id)
        except Exception as e:
            self.submit(nav.ChildrenFailed(seq=action.seq, parent_id=action.parent_id, error=e))
        else:
            self.submit(nav.ChildrenLoaded(seq=action.seq, parent_id=action.parent_id,
                                           territories=tuple(children)))

    async def _fetch_bids(self, action: nav.FetchBids) -> None:
        try:
            bids = await self.ledger.get_bids(action.parent_id)
        except Exception as e:
            self.submit(nav.BidsFailed(seq=action.seq, parent_id=action.parent_id, error=e))
        else:
            self.submit(nav.BidsLoaded(seq=action.seq, parent_id=action.parent_id, bids=tuple(bids)))

    # ------------------ Transactions ------------------

    async def _mutate(
        self,
        key: int | None,
        context: str,
        call: Callable[[str], Awaitable[TransactionReceipt]],
        *,
        after: nav.Event | None = None,
    ) -> TransactionReceipt | None:
        account = self.state.account
        if not account:
            self._report(MutationRefused("no account connected"), context)
            return None
        lock = self._mutation_locks.setdefault(key, asyncio.Lock())
        async with lock:
            try:
                receipt = await call(account)
            except (LedgerError, ValueError) as e:
                self._report(e, context)
                return None
        logger.info("%s confirmed: %s", context, receipt.tx_hash)
        self.submit(after or nav.RefreshView())
        return receipt

    def _require_current(self, context: str) -> Territory | None:
        cur = self.current_territory
        if cur is None:
            self._report(MutationRefused("no territory selected"), context)
        return cur

    async def place_bid(self, region: Region, amount: float, minimum_bid_price: float) -> TransactionReceipt | None:
        cur = self._require_current("place bid")
        if cur is None:
            return None
        tid = cur.territory_id
        return await self._mutate(
            tid,
            f"bid on territory {tid}",
            lambda account: self.ledger.place_bid(account, tid, region, amount, minimum_bid_price),
        )

    async def bid_at_viewport(
        self,
        amount: float,
        minimum_bid_price: float,
        viewport: Viewport | None = None,
        margin: int | None = None,
    ) -> TransactionReceipt | None:
        try:
            region = viewport_to_region(
                viewport or self.canvas.viewport,
                config.BID_MARGIN_PX if margin is None else margin,
            )
        except ValueError as e:
            self._report(e, "bid region from viewport")
            return None
        return await self.place_bid(region, amount, minimum_bid_price)

    async def approve_selected(self) -> TransactionReceipt | None:
        cur = self._require_current("approve bids")
        if cur is None:
            return None
        bid_ids = nav.selected_ids(self.state)
        if not bid_ids:
            self._report(MutationRefused("no bids selected"), f"approve bids on territory {cur.territory_id}")
            return None
        return await self._mutate(
            cur.territory_id,
            f"approve bids {sorted(bid_ids)} on territory {cur.territory_id}",
            lambda account: self.ledger.approve_bids(account, bid_ids),
            after=nav.RefreshView(include_ancestry=True),
        )

    async def delete_bid(self, bid_id: int) -> TransactionReceipt | None:
        cur = self._require_current("delete bid")
        if cur is None:
            return None
        return await self._mutate(
            cur.territory_id,
            f"delete bid {bid_id}",
            lambda account: self.ledger.delete_bid(account, bid_id),
        )

    async def burn(self, territory_id: int | None = None) -> TransactionReceipt | None:
        cur = self.current_territory
        tid = territory_id if territory_id is not None else (cur.territory_id if cur else None)
        if tid is None:
            self._report(MutationRefused("no territory selected"), "burn")
            return None
        after: nav.Event = nav.RefreshView(include_ancestry=True)
        if cur is not None and tid == cur.territory_id:
            # The node on screen is going away; show its parent instead.
            parent = cur.parent_id if cur.parent_id != ROOT_PARENT_ID else self.state.root_id
            after = nav.ViewTerritory(territory_id=parent)
        return await self._mutate(
            tid,
            f"burn territory {tid}",
            lambda account: self.ledger.burn(account, tid),
            after=after,
        )

    async def mint(self, parent_id: int, region: Region) -> TransactionReceipt | None:
        return await self._mutate(
            parent_id,
            f"mint under territory {parent_id}",
            lambda account: self.ledger.mint(account, parent_id, region),
        )

    async def transfer_value(self, recipient: str, amount: float) -> TransactionReceipt | None:
        return await self._mutate(
            None,
            f"transfer {amount:g} to {recipient}",
            lambda account: self.ledger.transfer_value(account, recipient, amount),
        )

    async def balance(self) -> float | None:
        account = self.state.account
        if not account:
            return None
        try:
            return await self.ledger.balance_of(account)
        except LedgerError as e:
            self._report(e, f"balance of {account}")
            return None
