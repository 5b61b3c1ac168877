"""
ownership.py -- stamp the derived "owned by viewer" flag onto entities.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, TypeVar

from territories import Bid, Territory, same_account


E = TypeVar("E", Territory, Bid)


def tag(entity: E, account: str | None) -> E:
    """
    Territories are owned via ``owner``, bids via ``recipient``.
    ``account=None`` clears the flag.  Returns the same object when nothing changes.
    """
    if isinstance(entity, Bid):
        owned = same_account(entity.recipient, account)
    else:
        owned = same_account(entity.owner, account)
    if entity.owned_by_viewer == owned:
        return entity
    return replace(entity, owned_by_viewer=owned)


def tag_all(entities: Iterable[E], account: str | None) -> tuple[E, ...]:
    return tuple(tag(e, account) for e in entities)


def tag_mapping(entities: dict[int, E], account: str | None) -> dict[int, E]:
    return {key: tag(e, account) for key, e in entities.items()}
