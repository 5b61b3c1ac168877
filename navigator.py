"""
navigator.py

Navigation-and-bid view core.

Design goals:
- Pure reducer transitions: (state, event) -> (next_state, actions)
- One owner holds the path, children, bids and active account
- Every fetch carries a sequence number; a reply whose number is not the
  latest issued for its collection is dropped
- Collections are replaced wholesale, never patched from a reply
- A failed ancestry lookup is followed by exactly one root lookup
- A refresh with nothing on screen reloads the root
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

import bid_overlay
import ownership
import territory_store as ts
from territories import Bid, Region, Territory


class NavigationError(Exception):
    """A ledger reply that cannot be turned into a consistent view."""


@dataclass(frozen=True)
class NavState:
    root_id: int
    account: str | None = None
    path: tuple[Territory, ...] = ()
    children: dict[int, Territory] = field(default_factory=dict)
    bids: dict[int, Bid] = field(default_factory=dict)
    ancestry_seq: int = 0
    children_seq: int = 0
    bids_seq: int = 0
    # "Amount to approve" display; zeroed when a territory is selected.
    approve_display: float = 0.0


# --------------------------- Events ---------------------------


@dataclass(frozen=True)
class ViewTerritory:
    territory_id: int


@dataclass(frozen=True)
class Descend:
    territory_id: int


@dataclass(frozen=True)
class ToggleBid:
    bid_id: int
    selected: bool


@dataclass(frozen=True)
class AccountChanged:
    account: str | None


@dataclass(frozen=True)
class RefreshView:
    include_ancestry: bool = False


@dataclass(frozen=True)
class AncestryLoaded:
    seq: int
    territory_id: int
    territories: tuple[Territory, ...]
    fallback: bool = False


@dataclass(frozen=True)
class AncestryFailed:
    seq: int
    territory_id: int
    error: Exception
    fallback: bool = False


@dataclass(frozen=True)
class ChildrenLoaded:
    seq: int
    parent_id: int
    territories: tuple[Territory, ...]


@dataclass(frozen=True)
class ChildrenFailed:
    seq: int
    parent_id: int
    error: Exception


@dataclass(frozen=True)
class BidsLoaded:
    seq: int
    parent_id: int
    bids: tuple[Bid, ...]


@dataclass(frozen=True)
class BidsFailed:
    seq: int
    parent_id: int
    error: Exception


Event = (
    ViewTerritory
    | Descend
    | ToggleBid
    | AccountChanged
    | RefreshView
    | AncestryLoaded
    | AncestryFailed
    | ChildrenLoaded
    | ChildrenFailed
    | BidsLoaded
    | BidsFailed
)


# --------------------------- Actions ---------------------------


@dataclass(frozen=True)
class FetchAncestry:
    seq: int
    territory_id: int
    # Set on the root lookup issued after a failure; never retried again.
    fallback: bool = False


@dataclass(frozen=True)
class FetchChildren:
    seq: int
    parent_id: int


@dataclass(frozen=True)
class FetchBids:
    seq: int
    parent_id: int


@dataclass(frozen=True)
class ReportError:
    error: Exception
    context: str


@dataclass(frozen=True)
class FocusRegion:
    region: Region


@dataclass(frozen=True)
class Redraw:
    pass


Action = FetchAncestry | FetchChildren | FetchBids | ReportError | FocusRegion | Redraw


# --------------------------- Helpers ---------------------------


def initial_state(root_id: int, account: str | None = None) -> NavState:
    return NavState(root_id=int(root_id), account=account or None)


def current_id(state: NavState) -> int | None:
    cur = ts.current_territory(state.path)
    return cur.territory_id if cur is not None else None


def selected_total(state: NavState) -> float:
    return bid_overlay.selected_total(state.bids)


def selected_ids(state: NavState) -> frozenset[int]:
    return bid_overlay.selected_ids(state.bids)


def is_stale(state: NavState, event: Event) -> bool:
    """True for a fetch reply superseded by a newer request."""
    if isinstance(event, (AncestryLoaded, AncestryFailed)):
        return event.seq != state.ancestry_seq
    if isinstance(event, (ChildrenLoaded, ChildrenFailed)):
        return event.seq != state.children_seq or event.parent_id != current_id(state)
    if isinstance(event, (BidsLoaded, BidsFailed)):
        return event.seq != state.bids_seq or event.parent_id != current_id(state)
    return False


def _request_ancestry(st: NavState, territory_id: int, fallback: bool = False) -> tuple[NavState, FetchAncestry]:
    seq = st.ancestry_seq + 1
    return replace(st, ancestry_seq=seq), FetchAncestry(seq=seq, territory_id=int(territory_id), fallback=fallback)


def _request_view(st: NavState, parent_id: int) -> tuple[NavState, list[Action]]:
    children_seq = st.children_seq + 1
    bids_seq = st.bids_seq + 1
    st = replace(st, children_seq=children_seq, bids_seq=bids_seq)
    return st, [
        FetchChildren(seq=children_seq, parent_id=int(parent_id)),
        FetchBids(seq=bids_seq, parent_id=int(parent_id)),
    ]


def _clear_view(st: NavState) -> NavState:
    return replace(st, children={}, bids={}, approve_display=0.0)


def check_invariants(state: NavState) -> list[str]:
    violations = ts.path_violations(state.path, state.root_id)
    cur = current_id(state)
    if cur is None:
        if state.children or state.bids:
            violations.append("children/bids present without a current territory")
        return violations
    for t in state.children.values():
        if t.parent_id != cur:
            violations.append(f"child {t.territory_id} has parent {t.parent_id}, current is {cur}")
    bounds = state.path[-1].region
    for key, t in state.children.items():
        if key != t.territory_id:
            violations.append(f"children key {key} holds territory {t.territory_id}")
        if not bounds.contains(t.region):
            violations.append(f"child {t.territory_id} lies outside territory {cur}")
    for key, b in state.bids.items():
        if key != b.bid_id:
            violations.append(f"bids key {key} holds bid {b.bid_id}")
        if not bounds.contains(b.region):
            violations.append(f"bid {b.bid_id} lies outside territory {cur}")
    return violations


# --------------------------- Reducer ---------------------------


def transition(state: NavState, event: Event) -> tuple[NavState, list[Action]]:
    """
    Pure reducer for one event.
    """
    actions: list[Action] = []
    st = state

    if isinstance(event, ViewTerritory):
        st, fetch = _request_ancestry(st, event.territory_id)
        actions.append(fetch)
        return st, actions

    if isinstance(event, Descend):
        # Selecting any territory resets the approve display.
        st = replace(st, approve_display=0.0)
        old_id = current_id(st)
        new_path = ts.descend_path(st.path, st.children, event.territory_id)
        new_cur = ts.current_territory(new_path)
        if new_cur is None or new_cur.territory_id != event.territory_id:
            return st, actions
        if new_cur.territory_id == old_id:
            st, fetches = _request_view(st, new_cur.territory_id)
            actions.extend(fetches)
            actions.append(FocusRegion(region=new_cur.region))
            actions.append(Redraw())
            return st, actions
        # An ancestry reply still in flight would describe the old node.
        st = replace(_clear_view(st), path=new_path, ancestry_seq=st.ancestry_seq + 1)
        st, fetches = _request_view(st, new_cur.territory_id)
        actions.extend(fetches)
        actions.append(FocusRegion(region=new_cur.region))
        actions.append(Redraw())
        return st, actions

    if isinstance(event, ToggleBid):
        bids = bid_overlay.set_selected(st.bids, event.bid_id, event.selected)
        if bids is st.bids:
            return st, actions
        st = replace(st, bids=bids, approve_display=bid_overlay.selected_total(bids))
        actions.append(Redraw())
        return st, actions

    if isinstance(event, AccountChanged):
        account = event.account or None
        # Selection is deliberately left alone on an account switch.
        st = replace(
            st,
            account=account,
            path=ownership.tag_all(st.path, account),
            children=ownership.tag_mapping(st.children, account),
            bids=ownership.tag_mapping(st.bids, account),
        )
        actions.append(Redraw())
        return st, actions

    if isinstance(event, RefreshView):
        cur = current_id(st)
        if cur is None:
            # Nothing loaded yet, or every lookup so far failed: start over from the root.
            st, fetch = _request_ancestry(st, st.root_id)
            actions.append(fetch)
            return st, actions
        if event.include_ancestry:
            st, fetch = _request_ancestry(st, cur)
            actions.append(fetch)
        st, fetches = _request_view(st, cur)
        actions.extend(fetches)
        return st, actions

    if is_stale(st, event):
        return st, actions

    if isinstance(event, AncestryLoaded):
        ordered = ts.order_ancestry(event.territories, event.territory_id, st.root_id)
        if ordered is None:
            err = NavigationError(
                f"ancestry of {event.territory_id} does not reach root {st.root_id}"
            )
            return transition(
                st, AncestryFailed(seq=event.seq, territory_id=event.territory_id, error=err, fallback=event.fallback)
            )
        old_id = current_id(st)
        st = replace(st, path=ownership.tag_all(ordered, st.account))
        new_cur = ordered[-1]
        if new_cur.territory_id != old_id:
            st = _clear_view(st)
            st, fetches = _request_view(st, new_cur.territory_id)
            actions.extend(fetches)
            actions.append(FocusRegion(region=new_cur.region))
        actions.append(Redraw())
        return st, actions

    if isinstance(event, AncestryFailed):
        actions.append(ReportError(error=event.error, context=f"ancestry of territory {event.territory_id}"))
        if not event.fallback:
            st, fetch = _request_ancestry(st, st.root_id, fallback=True)
            actions.append(fetch)
        return st, actions

    if isinstance(event, ChildrenLoaded):
        children = ts.children_by_id(ownership.tag_all(event.territories, st.account))
        st = replace(st, children=children)
        actions.append(Redraw())
        return st, actions

    if isinstance(event, ChildrenFailed):
        actions.append(ReportError(error=event.error, context=f"children of territory {event.parent_id}"))
        return st, actions

    if isinstance(event, BidsLoaded):
        bids = bid_overlay.replace_bids(ownership.tag_all(event.bids, st.account))
        st = replace(st, bids=bids, approve_display=0.0)
        actions.append(Redraw())
        return st, actions

    if isinstance(event, BidsFailed):
        actions.append(ReportError(error=event.error, context=f"bids on territory {event.parent_id}"))
        return st, actions

    return st, actions
