"""
Item Sequence - ordered review chain for one learner.

Items live in a flat arena keyed by id; the chain is expressed through each
item's ``next_id`` key and the sequence's ``head`` key, never through object
references. That keeps relinking O(1) once the neighbours are known and makes
the whole structure trivially copyable for the working-copy-then-swap
discipline used by the review processor.

Ordering policy: due-date ordered insertion. Whenever an item enters the
chain (new item or just-reviewed item) it is placed after the last item whose
``due_at`` is at or before its own, so ties keep arrival order and the head
is always the item due soonest.
"""

from __future__ import annotations

import math
import threading
from collections.abc import Iterable, Iterator
from datetime import datetime, timedelta

from loguru import logger

from recall.core.errors import ConflictError, InvalidStateError, NotFoundError
from recall.core.models import Item, utc_now


class ItemSequence:
    """
    Singly linked, due-ordered chain of a learner's items.

    Invariants:
    - ``head`` is None (empty) or the id of an item in the arena
    - following ``next_id`` from head visits every item exactly once
    - no item links to itself, no cycles, no dangling keys

    All mutations and ``peek_due`` run under an internal re-entrant lock so a
    reader never observes a half-relinked chain.
    """

    def __init__(self) -> None:
        self._items: dict[str, Item] = {}
        self._head: str | None = None
        self._lock = threading.RLock()

    @classmethod
    def from_chain(cls, items: Iterable[Item], head: str | None) -> ItemSequence:
        """
        Rebuild a sequence from items whose links are already set.

        Used when loading a stored aggregate. Raises InvalidStateError if the
        stored links do not form a single valid chain.
        """
        sequence = cls()
        for item in items:
            if item.id in sequence._items:
                raise InvalidStateError(f"Duplicate item id in stored chain: {item.id}")
            sequence._items[item.id] = item
        sequence._head = head
        sequence.validate()
        return sequence

    # =========================================================================
    # Read Operations
    # =========================================================================

    @property
    def head(self) -> str | None:
        """Id of the item due next, or None when the sequence is empty."""
        return self._head

    def peek_due(self) -> Item | None:
        """Return the head item without mutating the chain."""
        with self._lock:
            if self._head is None:
                return None
            return self._items[self._head]

    def get(self, item_id: str) -> Item:
        """Look up an item by id."""
        try:
            return self._items[item_id]
        except KeyError:
            raise NotFoundError(f"Item {item_id} not found") from None

    def ids(self) -> list[str]:
        """Item ids in chain order."""
        return [item.id for item in self]

    def due_items(self, now: datetime | None = None) -> list[Item]:
        """Items due at or before ``now``, in review order."""
        now = now or utc_now()
        due = []
        for item in self:
            if item.due_at > now:
                break
            due.append(item)
        return due

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __iter__(self) -> Iterator[Item]:
        with self._lock:
            chain = self._walk()
        return iter(chain)

    def __repr__(self) -> str:
        return f"ItemSequence(head={self._head!r}, count={len(self._items)})"

    # =========================================================================
    # Mutations
    # =========================================================================

    def insert(self, item: Item) -> None:
        """
        Add a new item to the chain at its due-ordered position.

        Raises:
            ConflictError: an item with the same id is already present
        """
        with self._lock:
            if item.id in self._items:
                raise ConflictError(f"Item {item.id} already in sequence")
            item.next_id = None
            self._items[item.id] = item
            self._link_ordered(item)

        logger.debug(f"Inserted item {item.id} (due {item.due_at.isoformat()})")

    def remove(self, item_id: str) -> Item:
        """
        Remove an item, relinking its neighbours.

        Raises:
            NotFoundError: the item is not in the sequence
        """
        with self._lock:
            item = self.get(item_id)
            self._unlink(item)
            del self._items[item_id]

        logger.debug(f"Removed item {item_id}")
        return item

    def advance(
        self,
        item_id: str,
        new_interval_days: float,
        reviewed_at: datetime | None = None,
    ) -> Item:
        """
        Reposition a just-reviewed item according to its new interval.

        The item's ``due_at`` becomes ``reviewed_at + new_interval_days``
        (falling back to its ``last_reviewed_at``, then to now) and it is
        relinked at the matching due-ordered position.

        Raises:
            NotFoundError: the item is not in the sequence
            InvalidStateError: the interval is not a positive finite number
        """
        if not math.isfinite(new_interval_days) or new_interval_days <= 0:
            raise InvalidStateError(f"Interval must be positive, got {new_interval_days}")

        with self._lock:
            item = self.get(item_id)
            self._unlink(item)

            base = reviewed_at or item.last_reviewed_at or utc_now()
            item.due_at = base + timedelta(days=new_interval_days)
            self._link_ordered(item)

        logger.debug(
            f"Advanced item {item_id}: +{new_interval_days:.2f}d, due {item.due_at.isoformat()}"
        )
        return item

    def clone(self) -> ItemSequence:
        """Deep copy with a fresh lock; items are copied, links preserved."""
        with self._lock:
            other = ItemSequence()
            other._items = {item_id: item.copy() for item_id, item in self._items.items()}
            other._head = self._head
        return other

    # =========================================================================
    # Invariant Checking
    # =========================================================================

    def validate(self) -> None:
        """
        Check the chain invariant.

        Raises:
            InvalidStateError: cycle, self link, dangling key, or orphaned item
        """
        with self._lock:
            if self._head is None:
                if self._items:
                    raise InvalidStateError(
                        f"Empty head but {len(self._items)} items in arena"
                    )
                return

            seen: set[str] = set()
            current = self._head
            while current is not None:
                if current in seen:
                    raise InvalidStateError(f"Cycle detected at item {current}")
                item = self._items.get(current)
                if item is None:
                    raise InvalidStateError(f"Dangling link to missing item {current}")
                if item.next_id == item.id:
                    raise InvalidStateError(f"Item {item.id} links to itself")
                seen.add(current)
                current = item.next_id

            if len(seen) != len(self._items):
                orphans = sorted(set(self._items) - seen)
                raise InvalidStateError(f"Items unreachable from head: {orphans}")

    # =========================================================================
    # Internal Helpers (caller holds the lock)
    # =========================================================================

    def _walk(self) -> list[Item]:
        chain: list[Item] = []
        current = self._head
        while current is not None:
            if len(chain) > len(self._items):
                raise InvalidStateError("Cycle detected while walking sequence")
            item = self._items[current]
            chain.append(item)
            current = item.next_id
        return chain

    def _unlink(self, item: Item) -> None:
        if self._head == item.id:
            self._head = item.next_id
            item.next_id = None
            return

        steps = 0
        previous_id = self._head
        while previous_id is not None:
            previous = self._items[previous_id]
            if previous.next_id == item.id:
                previous.next_id = item.next_id
                item.next_id = None
                return
            previous_id = previous.next_id
            steps += 1
            if steps > len(self._items):
                break

        raise InvalidStateError(f"Item {item.id} is not reachable from head")

    def _link_ordered(self, item: Item) -> None:
        previous_id: str | None = None
        current_id = self._head
        while current_id is not None:
            current = self._items[current_id]
            if current.due_at > item.due_at:
                break
            previous_id = current_id
            current_id = current.next_id

        item.next_id = current_id
        if previous_id is None:
            self._head = item.id
        else:
            self._items[previous_id].next_id = item.id
