import json
import logging

from sqlalchemy.orm import Session

from signage.models.playlist import Playlist, PlaylistItem
from signage.models.schedule import ScheduleRule
from signage.models.screen import Screen, ScreenGroup
from signage.models.slide import Slide
from signage.schemas.resolution import (
    AlwaysPredicate,
    PlaylistItemView,
    PlaylistView,
    Predicate,
    ResolutionSnapshot,
    ScheduleRuleView,
    TargetView,
    TimeWindowPredicate,
)
from signage.services.timewindow import (
    DEFAULT_TIMEZONE,
    ensure_utc,
    parse_days,
    parse_hhmm,
    validate_window,
)

logger = logging.getLogger(__name__)


def parse_predicate(raw) -> Predicate:
    """Decode a stored item predicate; raises ValueError on malformed input."""
    if raw is None:
        return AlwaysPredicate()
    if isinstance(raw, str):
        if not raw.strip():
            return AlwaysPredicate()
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid predicate: {exc.msg}") from exc
    if not isinstance(raw, dict):
        raise ValueError("predicate must be a JSON object")
    start = raw.get("start_time") or None
    end = raw.get("end_time") or None
    for field, value in (("start_time", start), ("end_time", end)):
        if value is not None and not isinstance(value, str):
            raise ValueError(f"{field} must be an HH:MM string")
    raw_days = raw.get("days") or []
    if not isinstance(raw_days, (list, str)):
        raise ValueError("days must be a list of integers 0-6")
    days = parse_days(raw_days)
    if not days and start is None and end is None:
        return AlwaysPredicate()
    start_time = parse_hhmm(start) if start is not None else None
    end_time = parse_hhmm(end) if end is not None else None
    validate_window(start_time, end_time)
    return TimeWindowPredicate(days=days, start_time=start_time, end_time=end_time)


def predicate_to_json(predicate: Predicate) -> str | None:
    if not isinstance(predicate, TimeWindowPredicate):
        return None
    return json.dumps(
        {
            "days": predicate.days,
            "start_time": predicate.start_time.strftime("%H:%M:%S") if predicate.start_time else None,
            "end_time": predicate.end_time.strftime("%H:%M:%S") if predicate.end_time else None,
        },
        separators=(",", ":"),
    )


def _target_view(target_type: str, row) -> TargetView:
    return TargetView(
        target_type=target_type,
        id=str(row.id),
        default_playlist_id=row.default_playlist_id,
        active_slide_id=row.active_slide_id,
        urgent_slide_id=row.urgent_slide_id,
        urgent_starts_at=ensure_utc(row.urgent_starts_at) if row.urgent_starts_at else None,
        urgent_expires_at=ensure_utc(row.urgent_expires_at) if row.urgent_expires_at else None,
    )


def _rule_view(rule: ScheduleRule) -> ScheduleRuleView:
    return ScheduleRuleView(
        id=rule.id,
        target_type=rule.target_type,
        target_id=rule.target_id,
        playlist_id=rule.playlist_id,
        days_of_week=parse_days(rule.days_of_week),
        start_time=rule.start_time,
        end_time=rule.end_time,
        priority=rule.priority if rule.priority is not None else 1,
    )


def _item_view(item: PlaylistItem) -> PlaylistItemView:
    try:
        predicate = parse_predicate(item.predicate_json)
    except ValueError:
        logger.warning("playlist item %s has a malformed predicate, treating as always", item.id)
        predicate = AlwaysPredicate()
    return PlaylistItemView(
        id=str(item.id),
        slide_id=str(item.slide_id),
        order=item.order,
        duration_sec=item.duration_sec or 0,
        predicate=predicate,
    )


def load_playlists(db: Session, playlist_ids: set[str]) -> dict[str, PlaylistView]:
    if not playlist_ids:
        return {}
    playlists = db.query(Playlist).filter(Playlist.id.in_(list(playlist_ids))).all()
    found = {str(pl.id) for pl in playlists}
    items = db.query(PlaylistItem).filter(PlaylistItem.playlist_id.in_(list(found))).all() if found else []
    views = {pid: PlaylistView(id=pid) for pid in found}
    for item in items:
        views[str(item.playlist_id)].items.append(_item_view(item))
    return views


def load_snapshot(db: Session, screen_id: str) -> ResolutionSnapshot | None:
    """Read every row the engine needs for ``screen_id``; None for unknown screens."""
    screen = db.get(Screen, screen_id)
    if screen is None:
        return None

    group = None
    if screen.group_id:
        group = db.get(ScreenGroup, screen.group_id)
        if group is None:
            logger.warning("screen %s references missing group %s", screen.id, screen.group_id)

    rule_filters = [(ScheduleRule.target_type == "screen") & (ScheduleRule.target_id == screen.id)]
    if group is not None:
        rule_filters.append((ScheduleRule.target_type == "group") & (ScheduleRule.target_id == group.id))
    rules = []
    for condition in rule_filters:
        rules.extend(db.query(ScheduleRule).filter(condition).all())

    targets = [row for row in (screen, group) if row is not None]
    playlist_ids = {str(rule.playlist_id) for rule in rules}
    playlist_ids.update(str(row.default_playlist_id) for row in targets if row.default_playlist_id)
    playlists = load_playlists(db, playlist_ids)

    slide_refs: set[str] = set()
    for row in targets:
        for slide_id in (row.active_slide_id, row.urgent_slide_id):
            if slide_id:
                slide_refs.add(str(slide_id))
    for playlist in playlists.values():
        slide_refs.update(item.slide_id for item in playlist.items)
    slide_ids: set[str] = set()
    if slide_refs:
        slide_ids = {str(row[0]) for row in db.query(Slide.id).filter(Slide.id.in_(list(slide_refs))).all()}

    return ResolutionSnapshot(
        screen=_target_view("screen", screen),
        group=_target_view("group", group) if group is not None else None,
        timezone=(screen.timezone or "").strip() or DEFAULT_TIMEZONE,
        rules=[_rule_view(rule) for rule in rules],
        playlists=playlists,
        slide_ids=slide_ids,
    )
