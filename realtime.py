"""
Live queries over the document store.

A subscription is a query (collection, filter, sort) plus a callback. The
callback receives the full current result set right away and again after
every write to the collection that changes that result set. Consumers treat
every delivery as a full-state replacement, never as a delta.

Callbacks run while their subscription's lock is held and should hand the
snapshot off quickly instead of blocking.
"""

import logging
import threading
from itertools import count
from typing import Any, Callable, Dict, List, Optional

import database
from database import SortSpec

logger = logging.getLogger(__name__)

Snapshot = List[dict]
Unsubscribe = Callable[[], None]


class Subscription:
    def __init__(self, sub_id: int, collection: str, filter_dict: Dict[str, Any], sort: SortSpec,
                 callback: Callable[[Snapshot], None]):
        self.id = sub_id
        self.collection = collection
        self.filter = filter_dict
        self.sort = sort
        self.callback = callback
        self.last: Optional[Snapshot] = None
        self.active = True
        # read and delivery happen together, so a later read is never delivered first
        self.lock = threading.RLock()


class SubscriptionHub:
    def __init__(self):
        self._subs: Dict[str, Dict[int, Subscription]] = {}
        self._ids = count(1)
        self._lock = threading.RLock()

    def subscribe(
        self,
        collection: str,
        filter_dict: Optional[Dict[str, Any]],
        callback: Callable[[Snapshot], None],
        sort: SortSpec = None,
    ) -> Unsubscribe:
        with self._lock:
            sub = Subscription(next(self._ids), collection, dict(filter_dict or {}), sort, callback)
            self._subs.setdefault(collection, {})[sub.id] = sub
        logger.debug("Subscribed #%s to %s %s", sub.id, collection, sub.filter)
        try:
            self._deliver(sub)
        except Exception:
            self._remove(sub)
            raise

        def unsubscribe():
            self._remove(sub)

        return unsubscribe

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            sub.active = False
            subs = self._subs.get(sub.collection, {})
            if subs.pop(sub.id, None) is not None:
                logger.debug("Unsubscribed #%s from %s", sub.id, sub.collection)
            if not subs:
                self._subs.pop(sub.collection, None)

    def _deliver(self, sub: Subscription) -> None:
        with sub.lock:
            if not sub.active:
                return
            snapshot = database.get_documents(sub.collection, sub.filter, sort=sub.sort)
            if snapshot == sub.last:
                return
            sub.last = snapshot
            sub.callback(list(snapshot))

    def publish(self, collection: str) -> None:
        """Re-run every live query on ``collection`` and push changed snapshots."""
        with self._lock:
            subs = list(self._subs.get(collection, {}).values())
        for sub in subs:
            try:
                self._deliver(sub)
            except Exception:
                logger.exception("Delivering %s snapshot to subscription #%s failed", collection, sub.id)

    def subscription_count(self, collection: Optional[str] = None) -> int:
        with self._lock:
            if collection is not None:
                return len(self._subs.get(collection, {}))
            return sum(len(s) for s in self._subs.values())


hub = SubscriptionHub()
database.add_change_listener(hub.publish)
