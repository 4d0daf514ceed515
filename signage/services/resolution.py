"""Resolution engine: picks the single authoritative slide for a screen at an instant.

Tiers, first match wins: urgent, manual, scheduled, default, then the
"no content" sentinel. Screen-level signals beat group-level ones inside a
tier. The engine never raises on stale references; it logs and moves on.
"""
import logging
from datetime import datetime

from signage.schemas.resolution import (
    PlaybackDecision,
    PlaylistItemView,
    PlaylistView,
    Predicate,
    ResolutionSnapshot,
    ScheduleRuleView,
    TargetView,
    TimeWindowPredicate,
    no_content_decision,
)
from signage.services.timewindow import ensure_utc, to_local, window_contains

logger = logging.getLogger(__name__)

_SCOPE_RANK = {"screen": 0, "group": 1}


def predicate_matches(predicate: Predicate | None, local_now: datetime) -> bool:
    if predicate is None or not isinstance(predicate, TimeWindowPredicate):
        return True
    return window_contains(local_now, predicate.days, predicate.start_time, predicate.end_time)


def rule_matches(rule: ScheduleRuleView, local_now: datetime) -> bool:
    if not rule.days_of_week:
        return False
    return window_contains(local_now, rule.days_of_week, rule.start_time, rule.end_time)


def _targets(snapshot: ResolutionSnapshot) -> list[TargetView]:
    return [target for target in (snapshot.screen, snapshot.group) if target is not None]


def _urgent_active(target: TargetView, now: datetime) -> bool:
    if not target.urgent_slide_id:
        return False
    if target.urgent_starts_at is None or target.urgent_expires_at is None:
        return False
    return ensure_utc(target.urgent_starts_at) <= now < ensure_utc(target.urgent_expires_at)


def pick_item(
    playlist: PlaylistView,
    snapshot: ResolutionSnapshot,
    local_now: datetime,
    cursor: str | None = None,
    advance: bool = False,
) -> PlaylistItemView | None:
    items = playlist.ordered_items()
    if not items:
        return None

    start = 0
    if cursor:
        for index, item in enumerate(items):
            if item.id == cursor:
                start = index + 1 if advance else index
                break

    for offset in range(len(items)):
        item = items[(start + offset) % len(items)]
        if not predicate_matches(item.predicate, local_now):
            continue
        if not snapshot.has_slide(item.slide_id):
            logger.warning(
                "playlist %s item %s references missing slide %s, skipping",
                playlist.id,
                item.id,
                item.slide_id,
            )
            continue
        return item
    return None


def rank_rules(rules: list[ScheduleRuleView]) -> list[ScheduleRuleView]:
    """Highest priority first, then screen over group, then lowest id."""
    return sorted(
        rules,
        key=lambda rule: (-rule.priority, _SCOPE_RANK.get(rule.target_type, 2), rule.id),
    )


def _playlist_decision(
    kind: str,
    target: TargetView,
    playlist: PlaylistView,
    item: PlaylistItemView,
    rule: ScheduleRuleView | None = None,
) -> PlaybackDecision:
    return PlaybackDecision(
        kind=kind,
        slide_id=item.slide_id,
        source_target_type=target.target_type,
        source_target_id=target.id,
        source_playlist_id=playlist.id,
        source_item_id=item.id,
        source_rule_id=rule.id if rule is not None else None,
        duration_sec=item.duration_sec,
    )


def _resolve_urgent(snapshot: ResolutionSnapshot, now: datetime) -> PlaybackDecision | None:
    for target in _targets(snapshot):
        if not _urgent_active(target, now):
            continue
        if not snapshot.has_slide(target.urgent_slide_id):
            logger.warning(
                "%s %s urgent override references missing slide %s",
                target.target_type,
                target.id,
                target.urgent_slide_id,
            )
            continue
        return PlaybackDecision(
            kind="urgent",
            slide_id=target.urgent_slide_id,
            source_target_type=target.target_type,
            source_target_id=target.id,
            expires_at=ensure_utc(target.urgent_expires_at),
        )
    return None


def _resolve_manual(snapshot: ResolutionSnapshot) -> PlaybackDecision | None:
    for target in _targets(snapshot):
        if not target.active_slide_id:
            continue
        if not snapshot.has_slide(target.active_slide_id):
            logger.warning(
                "%s %s manual override references missing slide %s",
                target.target_type,
                target.id,
                target.active_slide_id,
            )
            continue
        return PlaybackDecision(
            kind="manual",
            slide_id=target.active_slide_id,
            source_target_type=target.target_type,
            source_target_id=target.id,
        )
    return None


def _resolve_scheduled(
    snapshot: ResolutionSnapshot,
    local_now: datetime,
    cursor: str | None,
    advance: bool,
) -> PlaybackDecision | None:
    candidates: list[ScheduleRuleView] = []
    for target in _targets(snapshot):
        candidates.extend(
            rule
            for rule in snapshot.list_schedule_rules(target.target_type, target.id)
            if rule_matches(rule, local_now)
        )
    by_id = {(target.target_type, target.id): target for target in _targets(snapshot)}

    for rule in rank_rules(candidates):
        playlist = snapshot.get_playlist(rule.playlist_id)
        if playlist is None:
            logger.warning("schedule rule %s references missing playlist %s", rule.id, rule.playlist_id)
            continue
        item = pick_item(playlist, snapshot, local_now, cursor, advance)
        if item is None:
            continue
        return _playlist_decision("scheduled", by_id[(rule.target_type, rule.target_id)], playlist, item, rule)
    return None


def _resolve_default(
    snapshot: ResolutionSnapshot,
    local_now: datetime,
    cursor: str | None,
    advance: bool,
) -> PlaybackDecision | None:
    for target in _targets(snapshot):
        if not target.default_playlist_id:
            continue
        playlist = snapshot.get_playlist(target.default_playlist_id)
        if playlist is None:
            logger.warning(
                "%s %s default playlist %s is missing",
                target.target_type,
                target.id,
                target.default_playlist_id,
            )
            continue
        item = pick_item(playlist, snapshot, local_now, cursor, advance)
        if item is not None:
            return _playlist_decision("default", target, playlist, item)
    return None


def resolve(
    snapshot: ResolutionSnapshot | None,
    now: datetime,
    cursor: str | None = None,
    advance: bool = False,
) -> PlaybackDecision:
    """Return the playback decision for ``snapshot`` at ``now``.

    ``cursor`` is the playlist item currently on air. When it belongs to the
    chosen playlist, selection starts at it (or right after it when
    ``advance`` is set) and wraps; otherwise the first eligible item wins.
    Naive ``now`` values are taken as UTC.
    """
    if snapshot is None or snapshot.screen is None:
        return no_content_decision()

    now_utc = ensure_utc(now)
    local_now = to_local(now_utc, snapshot.timezone)

    decision = _resolve_urgent(snapshot, now_utc)
    if decision is None:
        decision = _resolve_manual(snapshot)
    if decision is None:
        decision = _resolve_scheduled(snapshot, local_now, cursor, advance)
    if decision is None:
        decision = _resolve_default(snapshot, local_now, cursor, advance)
    return decision or no_content_decision()
