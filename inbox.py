"""
Per-viewer room state: which room is open, its live messages, unread counts.

An Inbox is either showing no room or exactly one room. Selecting a room
opens a live subscription on its messages and closing the view always
tears every subscription down. Unread counts are folded from message
snapshots of every room the viewer belongs to.

State changes go out through ``emit(event)``. Hub callbacks may fire on any
thread; pass ``dispatch`` to hop them onto the thread that owns the Inbox.
"""

import logging
from datetime import tzinfo
from functools import partial
from typing import Any, Callable, Dict, List, Optional

import messaging
from derived import arrivals, fold_unread, group_by_date, total_unread, unread_delta
from errors import NotFoundError, PermissionDeniedError
from realtime import Snapshot, Unsubscribe
from schemas import Identity

logger = logging.getLogger(__name__)

Event = Dict[str, Any]


def _call(fn, *args):
    fn(*args)


class Inbox:
    def __init__(
        self,
        kind: str,
        identity: Identity,
        emit: Callable[[Event], None],
        dispatch: Optional[Callable[..., None]] = None,
        tz: Optional[tzinfo] = None,
    ):
        self.kind = messaging.room_kind(kind)
        self.identity = identity
        self.tz = tz
        self._emit = emit
        self._dispatch = dispatch or _call

        self.rooms: List[dict] = []
        self.active_room: Optional[dict] = None
        self.messages: List[dict] = []
        self.unread: Dict[str, int] = {}

        self._rooms_unsub: Optional[Unsubscribe] = None
        self._active_unsub: Optional[Unsubscribe] = None
        self._watchers: Dict[str, Optional[Unsubscribe]] = {}
        self._snapshots: Dict[str, Snapshot] = {}
        self._auto_select = True
        self._closed = False

    @property
    def active_room_id(self) -> Optional[str]:
        return self.active_room["id"] if self.active_room else None

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _marshal(self, handler: Callable[..., None]) -> Callable[[Snapshot], None]:
        def callback(snapshot):
            self._dispatch(handler, snapshot)
        return callback

    def open(self) -> "Inbox":
        if self._rooms_unsub is None:
            self._rooms_unsub = messaging.subscribe_rooms(
                self.kind.name, self.identity, self._marshal(self._on_rooms)
            )
        return self

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._close_active()
        for unsubscribe in self._watchers.values():
            if unsubscribe:
                unsubscribe()
        self._watchers.clear()
        if self._rooms_unsub:
            self._rooms_unsub()
            self._rooms_unsub = None
        logger.debug("Inbox for %s on %s closed", self.identity.email, self.kind.name)

    # room list

    def _on_rooms(self, rooms: Snapshot) -> None:
        if self._closed:
            return
        self.rooms = rooms
        self._emit({"type": "rooms", "rooms": rooms})
        self._sync_watchers()
        if self.active_room is None:
            if self._auto_select and rooms:
                self.select(rooms[0])
            return
        for room in rooms:
            if room["id"] == self.active_room_id:
                self.active_room = room

    def _sync_watchers(self) -> None:
        wanted = [r["id"] for r in self.rooms if self.identity.email in (r.get("participants") or [])]
        for room_id in list(self._watchers):
            if room_id not in wanted:
                unsubscribe = self._watchers.pop(room_id)
                self._snapshots.pop(room_id, None)
                if unsubscribe:
                    unsubscribe()
        for room_id in wanted:
            if room_id in self._watchers:
                continue
            # registered before subscribing, the first snapshot arrives during subscribe
            self._watchers[room_id] = None
            try:
                self._watchers[room_id] = messaging.subscribe_messages(
                    self.kind.name, room_id, self._marshal(partial(self._on_watched, room_id))
                )
            except Exception:
                self._watchers.pop(room_id, None)
                raise

    def _on_watched(self, room_id: str, snapshot: Snapshot) -> None:
        if self._closed or room_id not in self._watchers:
            return
        old = self._snapshots.get(room_id)
        self._snapshots[room_id] = snapshot
        delta = unread_delta(old, snapshot, self.active_room_id, room_id, self.identity.email)
        if not delta:
            return
        self.unread = fold_unread(self.unread, room_id, delta)
        for msg in arrivals(old, snapshot, self.identity.email):
            self._emit({
                "type": "notification",
                "room_id": room_id,
                "title": f"New message from {msg.get('sender_email')}",
                "body": msg.get("text"),
            })
        self._emit_unread()

    def _emit_unread(self) -> None:
        self._emit({"type": "unread", "counts": dict(self.unread), "total": total_unread(self.unread)})

    # active room

    def _close_active(self) -> None:
        if self._active_unsub:
            self._active_unsub()
            self._active_unsub = None

    def select(self, room: dict) -> None:
        self._close_active()
        room_id = room["id"]
        self.active_room = room
        self.messages = []
        self._auto_select = True
        self.unread = {**self.unread, room_id: 0}
        self._emit({"type": "selected", "room": room})
        self._emit_unread()
        try:
            self._active_unsub = messaging.subscribe_messages(
                self.kind.name, room_id, self._marshal(partial(self._on_messages, room_id))
            )
        except Exception:
            self.active_room = None
            raise

    def select_id(self, room_id: str) -> None:
        for room in self.rooms:
            if room["id"] == room_id:
                return self.select(room)
        room = messaging.get_room(self.kind.name, room_id)
        if self.kind.members_only and self.identity.email not in room.get("participants", []):
            raise PermissionDeniedError("Not a participant")
        self.select(room)

    def deselect(self) -> None:
        self._close_active()
        self.active_room = None
        self.messages = []
        self._auto_select = False
        self._emit({"type": "selected", "room": None})

    def _on_messages(self, room_id: str, snapshot: Snapshot) -> None:
        if self._closed or room_id != self.active_room_id:
            return
        self.messages = snapshot
        self._emit({
            "type": "messages",
            "room_id": room_id,
            "messages": snapshot,
            "groups": group_by_date(snapshot, tz=self.tz),
        })

    # actions

    def send(self, text: Optional[str]) -> Optional[str]:
        if self.active_room is None:
            return None
        return messaging.send_message(self.kind.name, self.active_room_id, self.identity, text)

    def join(self, board_id: str) -> List[str]:
        if self.kind.name != "boards":
            raise NotFoundError("Only boards can be joined")
        return messaging.join_board(board_id, self.identity)

    def create_board(self, title: Optional[str], description: Optional[str] = "") -> dict:
        if self.kind.name != "boards":
            raise NotFoundError("Only boards can be created")
        board = messaging.create_board(self.identity, title, description)
        self.select(board)
        return board
