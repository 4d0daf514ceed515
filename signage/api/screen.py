from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session
from signage.db import get_db
from signage.models.playlist import Playlist
from signage.models.schedule import ScheduleRule
from signage.models.screen import Screen, ScreenGroup
from signage.schemas.resolution import PlaybackDecision, ResolutionSnapshot
from signage.schemas.screen import ScreenOut
from signage.services.invalidation import schedule_publish, screen_event
from signage.services.resolution import resolve
from signage.services.snapshot import load_snapshot
from signage.services.targets import is_valid_timezone
from signage.services.timewindow import utc_now

router = APIRouter(prefix="/screens", tags=["screens"])


def _find_screen_or_404(db: Session, screen_id: str) -> Screen:
    screen = db.get(Screen, screen_id)
    if not screen:
        raise HTTPException(status_code=404, detail="Screen not found")
    return screen


def _validate_group(db: Session, group_id: str | None) -> str | None:
    group_id = (group_id or "").strip() or None
    if group_id is not None and db.get(ScreenGroup, group_id) is None:
        raise HTTPException(status_code=404, detail="Group not found")
    return group_id


def _validate_playlist(db: Session, playlist_id: str | None) -> str | None:
    playlist_id = (playlist_id or "").strip() or None
    if playlist_id is not None and db.get(Playlist, playlist_id) is None:
        raise HTTPException(status_code=404, detail="Playlist not found")
    return playlist_id


def _validate_timezone(value: str | None) -> str | None:
    tz = (value or "").strip() or None
    if tz is not None and not is_valid_timezone(tz):
        raise HTTPException(status_code=400, detail=f"Unknown timezone: {tz}")
    return tz


@router.post("", response_model=ScreenOut)
def create_screen(
    name: str,
    background_tasks: BackgroundTasks,
    group_id: str | None = None,
    timezone: str | None = None,
    default_playlist_id: str | None = None,
    org_id: str | None = None,
    db: Session = Depends(get_db),
):
    cleaned = (name or "").strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail="Screen name cannot be empty")
    screen = Screen(
        name=cleaned,
        org_id=(org_id or "").strip() or None,
        group_id=_validate_group(db, group_id),
        timezone=_validate_timezone(timezone),
        default_playlist_id=_validate_playlist(db, default_playlist_id),
    )
    db.add(screen)
    db.commit()
    db.refresh(screen)
    schedule_publish(background_tasks, [screen_event(screen.id)])
    return screen


@router.get("", response_model=list[ScreenOut])
def list_screens(org_id: str | None = None, group_id: str | None = None, db: Session = Depends(get_db)):
    query = db.query(Screen)
    if org_id:
        query = query.filter(Screen.org_id == org_id)
    if group_id:
        query = query.filter(Screen.group_id == group_id)
    return query.order_by(Screen.name.asc(), Screen.id.asc()).all()


@router.get("/{screen_id}", response_model=ScreenOut)
def get_screen(screen_id: str, db: Session = Depends(get_db)):
    return _find_screen_or_404(db, screen_id)


@router.put("/{screen_id}", response_model=ScreenOut)
def update_screen(
    screen_id: str,
    background_tasks: BackgroundTasks,
    name: str | None = None,
    group_id: str | None = None,
    timezone: str | None = None,
    default_playlist_id: str | None = None,
    db: Session = Depends(get_db),
):
    """Partial update; pass an empty string to clear group, timezone or default playlist."""
    screen = _find_screen_or_404(db, screen_id)
    if name is not None:
        cleaned = name.strip()
        if not cleaned:
            raise HTTPException(status_code=400, detail="Screen name cannot be empty")
        screen.name = cleaned
    if group_id is not None:
        # Moving between groups only changes this screen's own effective configuration.
        screen.group_id = _validate_group(db, group_id)
    if timezone is not None:
        screen.timezone = _validate_timezone(timezone)
    if default_playlist_id is not None:
        screen.default_playlist_id = _validate_playlist(db, default_playlist_id)
    db.commit()
    db.refresh(screen)
    schedule_publish(background_tasks, [screen_event(screen.id)])
    return screen


@router.delete("/{screen_id}")
def delete_screen(screen_id: str, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    screen = _find_screen_or_404(db, screen_id)
    db.query(ScheduleRule).filter(
        ScheduleRule.target_type == "screen",
        ScheduleRule.target_id == screen.id,
    ).delete(synchronize_session=False)
    db.delete(screen)
    db.commit()
    schedule_publish(background_tasks, [screen_event(screen_id)])
    return {"ok": True}


@router.get("/{screen_id}/snapshot", response_model=ResolutionSnapshot)
def screen_snapshot(screen_id: str, db: Session = Depends(get_db)):
    snapshot = load_snapshot(db, screen_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Screen not found")
    return snapshot


@router.get("/{screen_id}/playback", response_model=PlaybackDecision)
def screen_playback(
    screen_id: str,
    at: datetime | None = None,
    cursor: str | None = None,
    advance: bool = False,
    db: Session = Depends(get_db),
):
    # Unknown screens get the "no content" decision rather than an error.
    snapshot = load_snapshot(db, screen_id)
    return resolve(snapshot, at or utc_now(), cursor=cursor, advance=advance)


@router.post("/{screen_id}/refresh")
def refresh_screen(screen_id: str, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    _find_screen_or_404(db, screen_id)
    schedule_publish(background_tasks, [screen_event(screen_id)])
    return {"ok": True}
