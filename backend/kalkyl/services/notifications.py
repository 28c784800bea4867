"""
User-facing notices (save succeeded, delete failed, ...).

One NotificationService per application, stored on ``app.state`` and handed to
whoever needs it. Listeners register with subscribe() and must call
unsubscribe() with the returned token when they go away. Every change
publishes a snapshot of the active notices to all listeners.

Notices live NOTIFICATION_TTL_S seconds; expire() drops the ones that are due,
and every new notice drops them as well.
"""
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from kalkyl.config import NOTIFICATION_TTL_S

logger = logging.getLogger("kalkyl-notify")

Listener = Callable[[List["Notification"]], None]


@dataclass(frozen=True)
class Notification:
    id: int
    kind: str            # "success" | "error"
    message: str
    created_at: float
    expires_at: float

    def to_dict(self) -> dict:
        return {"id": self.id, "type": self.kind, "message": self.message}


class NotificationService:

    def __init__(self, ttl_s: float = NOTIFICATION_TTL_S, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self._clock = clock
        self._ids = itertools.count(1)
        self._tokens = itertools.count(1)
        self._active: List[Notification] = []
        self._listeners: Dict[int, Listener] = {}

    # ── Subscription ─────────────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> int:
        token = next(self._tokens)
        self._listeners[token] = listener
        return token

    def unsubscribe(self, token: int) -> bool:
        return self._listeners.pop(token, None) is not None

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    # ── Publishing ───────────────────────────────────────────────────────────

    def snapshot(self) -> List[Notification]:
        return list(self._active)

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for token, listener in list(self._listeners.items()):
            try:
                listener(snapshot)
            except Exception:
                logger.exception(f"Notification listener {token} failed")

    def _push(self, kind: str, message: str) -> Notification:
        now = self._clock()
        # Lapsed notices are dropped before a new one is added
        self._active = [n for n in self._active if n.expires_at > now]
        notice = Notification(
            id=next(self._ids),
            kind=kind,
            message=message,
            created_at=now,
            expires_at=now + self.ttl_s,
        )
        self._active.append(notice)
        logger.info(f"[{kind}] {message}")
        self._publish()
        return notice

    def success(self, message: str) -> Notification:
        return self._push("success", message)

    def error(self, message: str) -> Notification:
        return self._push("error", message)

    def dismiss(self, notification_id: int) -> bool:
        before = len(self._active)
        self._active = [n for n in self._active if n.id != notification_id]
        if len(self._active) == before:
            return False
        self._publish()
        return True

    def expire(self, now: Optional[float] = None) -> int:
        """Drop every notice whose lifetime has passed. Returns how many went."""
        now = self._clock() if now is None else now
        before = len(self._active)
        self._active = [n for n in self._active if n.expires_at > now]
        removed = before - len(self._active)
        if removed:
            self._publish()
        return removed
