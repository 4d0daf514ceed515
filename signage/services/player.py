"""Screen-side playback loop.

One session per screen holds the current decision and its dwell deadline.
Only ``refresh`` mutates that state. Invalidation events and the fallback
poll reload the cached snapshot; a dwell expiry advances through the
current playlist against the cached snapshot.
"""
import asyncio
import logging
import os
from datetime import datetime, timedelta
from typing import Callable

from signage.schemas.resolution import PlaybackDecision, ResolutionSnapshot
from signage.services.invalidation import InvalidationBus, InvalidationEvent
from signage.services.resolution import resolve
from signage.services.timewindow import ensure_utc, utc_now

logger = logging.getLogger(__name__)

PLAYER_POLL_SEC = float(os.getenv("SIGNAGE_PLAYER_POLL_SEC", "10"))

SnapshotLoader = Callable[[str], ResolutionSnapshot | None]


class PlayerSession:
    def __init__(
        self,
        screen_id: str,
        loader: SnapshotLoader,
        event_bus: InvalidationBus,
        poll_interval_sec: float = PLAYER_POLL_SEC,
        on_change: Callable[[PlaybackDecision], None] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.screen_id = str(screen_id)
        self.current: PlaybackDecision | None = None
        self.dwell_deadline: datetime | None = None
        self._loader = loader
        self._bus = event_bus
        self._poll_interval_sec = max(float(poll_interval_sec), 0.1)
        self._on_change = on_change
        self._clock = clock
        self._snapshot: ResolutionSnapshot | None = None
        self._subscriptions: dict[str, Callable[[], None]] = {}
        self._wake = asyncio.Event()
        self._stale = True
        self._running = False

    # -- state machine -------------------------------------------------

    def reload(self) -> None:
        self._snapshot = self._loader(self.screen_id)
        self._stale = False
        self._sync_subscriptions()

    def refresh(self, now: datetime | None = None, advance: bool = False) -> bool:
        """Resolve and apply; returns True when the content on air changed."""
        now = ensure_utc(now or self._clock())
        if self._stale:
            self.reload()
        cursor = self.current.source_item_id if self.current is not None else None
        decision = resolve(self._snapshot, now, cursor=cursor, advance=advance)
        return self._apply(decision, now, force_deadline=advance)

    def _apply(self, decision: PlaybackDecision, now: datetime, force_deadline: bool = False) -> bool:
        changed = not decision.same_content(self.current)
        if changed or force_deadline or self.dwell_deadline is None:
            # A superseding decision cancels the pending dwell deadline.
            self.dwell_deadline = self._deadline_for(decision, now)
        self.current = decision
        if changed:
            logger.info(
                "screen %s now playing %s slide %s",
                self.screen_id,
                decision.kind,
                decision.slide_id,
            )
            if self._on_change is not None:
                self._on_change(decision)
        return changed

    @staticmethod
    def _deadline_for(decision: PlaybackDecision, now: datetime) -> datetime | None:
        if decision.kind == "urgent" and decision.expires_at is not None:
            return ensure_utc(decision.expires_at)
        if decision.kind in ("scheduled", "default") and decision.duration_sec:
            return now + timedelta(seconds=decision.duration_sec)
        return None

    def dwell_expired(self, now: datetime) -> bool:
        return self.dwell_deadline is not None and ensure_utc(now) >= self.dwell_deadline

    # -- invalidation --------------------------------------------------

    def _watched_targets(self) -> set[str]:
        targets = {self.screen_id}
        if self._snapshot is not None and self._snapshot.group is not None:
            targets.add(self._snapshot.group.id)
        return targets

    def _sync_subscriptions(self) -> None:
        # Group membership can change between reloads.
        wanted = self._watched_targets()
        for target_id in list(self._subscriptions):
            if target_id not in wanted:
                self._subscriptions.pop(target_id)()
        for target_id in wanted:
            if target_id not in self._subscriptions:
                self._subscriptions[target_id] = self._bus.subscribe(target_id, self.on_invalidation)

    def on_invalidation(self, event: InvalidationEvent) -> None:
        logger.debug("screen %s invalidated by %s %s", self.screen_id, event.kind, event.target_id)
        self._stale = True
        self._wake.set()

    def start(self) -> None:
        self._sync_subscriptions()

    def close(self) -> None:
        self._running = False
        self._wake.set()
        for unsubscribe in self._subscriptions.values():
            unsubscribe()
        self._subscriptions.clear()

    # -- loop ----------------------------------------------------------

    def _seconds_until_wake(self, now: datetime) -> float:
        timeout = self._poll_interval_sec
        if self.dwell_deadline is not None:
            timeout = min(timeout, max((self.dwell_deadline - now).total_seconds(), 0.0))
        return timeout

    async def run(self) -> None:
        self._running = True
        self.start()
        self.refresh()
        while self._running:
            timeout = self._seconds_until_wake(ensure_utc(self._clock()))
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
            if not self._running:
                break
            now = ensure_utc(self._clock())
            if self._stale:
                self.refresh(now)
            elif self.dwell_expired(now):
                self.refresh(now, advance=True)
            else:
                # Fallback poll tolerates a silent bus.
                self._stale = True
                self.refresh(now)
