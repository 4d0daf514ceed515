"""Invalidation bus: tells players that their last resolution may be stale.

Mutations compute one affected-target closure and publish it as a single
batch. Delivery is at-least-once; players also poll, so a lost event only
costs latency.
"""
import inspect
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Literal

from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.orm import Session

from signage.models.playlist import PlaylistItem
from signage.models.schedule import ScheduleRule
from signage.models.screen import Screen, ScreenGroup

logger = logging.getLogger(__name__)

ALL_TARGETS = "*"

EventKind = Literal["screen_updated", "group_updated"]


class InvalidationEvent(BaseModel):
    kind: EventKind
    target_id: str

    def to_message(self, revision: int | None = None) -> dict[str, Any]:
        message: dict[str, Any] = {"event": self.kind, "payload": {"id": self.target_id}}
        if revision is not None:
            message["revision"] = revision
            message["ts"] = datetime.now(timezone.utc).isoformat()
        return message


Handler = Callable[[InvalidationEvent], Awaitable[None] | None]


def screen_event(screen_id: str) -> InvalidationEvent:
    return InvalidationEvent(kind="screen_updated", target_id=str(screen_id))


def group_event(group_id: str) -> InvalidationEvent:
    return InvalidationEvent(kind="group_updated", target_id=str(group_id))


class InvalidationBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._revision = 0

    def subscribe(self, target_id: str, handler: Handler) -> Callable[[], None]:
        target_id = str(target_id)
        self._handlers[target_id].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(target_id)
            if not handlers:
                return
            try:
                handlers.remove(handler)
            except ValueError:
                return
            if not handlers:
                self._handlers.pop(target_id, None)

        return unsubscribe

    def subscriber_count(self, target_id: str) -> int:
        return len(self._handlers.get(str(target_id), ()))

    async def publish(self, event: InvalidationEvent) -> int:
        return await self.publish_batch([event])

    async def publish_batch(self, events: Iterable[InvalidationEvent]) -> int:
        unique: list[InvalidationEvent] = []
        seen: set[tuple[str, str]] = set()
        for event in events:
            key = (event.kind, event.target_id)
            if key in seen:
                continue
            seen.add(key)
            unique.append(event)
        if not unique:
            return self._revision

        self._revision += 1
        for event in unique:
            handlers = list(self._handlers.get(event.target_id, ())) + list(self._handlers.get(ALL_TARGETS, ()))
            for handler in handlers:
                try:
                    result = handler(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception("invalidation handler failed for %s %s", event.kind, event.target_id)
        logger.debug("published %d invalidation event(s), revision %d", len(unique), self._revision)
        return self._revision

    @property
    def revision(self) -> int:
        return self._revision


def member_screen_ids(db: Session, group_id: str) -> list[str]:
    # Read at mutation time; a screen that left the group just before misses this event.
    rows = db.query(Screen.id).filter(Screen.group_id == group_id).order_by(Screen.id.asc()).all()
    return [str(row[0]) for row in rows]


def target_closure(db: Session, target_type: str, target_id: str) -> list[InvalidationEvent]:
    if target_type == "screen":
        return [screen_event(target_id)]
    events = [group_event(target_id)]
    events.extend(screen_event(screen_id) for screen_id in member_screen_ids(db, target_id))
    return events


def targets_closure(db: Session, targets: Iterable[tuple[str, str]]) -> list[InvalidationEvent]:
    events: list[InvalidationEvent] = []
    for target_type, target_id in targets:
        events.extend(target_closure(db, target_type, target_id))
    return events


def playlist_targets(db: Session, playlist_id: str) -> set[tuple[str, str]]:
    """Targets whose rules or default playlist point at ``playlist_id``."""
    targets: set[tuple[str, str]] = set()
    for rule in db.query(ScheduleRule).filter(ScheduleRule.playlist_id == playlist_id).all():
        targets.add((rule.target_type, str(rule.target_id)))
    for (screen_id,) in db.query(Screen.id).filter(Screen.default_playlist_id == playlist_id).all():
        targets.add(("screen", str(screen_id)))
    for (group_id,) in db.query(ScreenGroup.id).filter(ScreenGroup.default_playlist_id == playlist_id).all():
        targets.add(("group", str(group_id)))
    return targets


def slide_targets(db: Session, slide_id: str) -> set[tuple[str, str]]:
    targets: set[tuple[str, str]] = set()
    for model, target_type in ((Screen, "screen"), (ScreenGroup, "group")):
        rows = (
            db.query(model.id)
            .filter(or_(model.active_slide_id == slide_id, model.urgent_slide_id == slide_id))
            .all()
        )
        targets.update((target_type, str(row[0])) for row in rows)
    playlist_ids = {
        str(row[0])
        for row in db.query(PlaylistItem.playlist_id).filter(PlaylistItem.slide_id == slide_id).all()
    }
    for playlist_id in playlist_ids:
        targets.update(playlist_targets(db, playlist_id))
    return targets


def schedule_publish(background_tasks, events: list[InvalidationEvent]) -> None:
    """Queue one batch publish to run after the response is sent."""
    if events:
        background_tasks.add_task(bus.publish_batch, events)


bus = InvalidationBus()
