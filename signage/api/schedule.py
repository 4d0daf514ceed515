from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from datetime import time
from sqlalchemy.orm import Session
from signage.db import get_db
from signage.models.playlist import Playlist
from signage.models.schedule import ScheduleRule
from signage.schemas.schedule import ScheduleRuleOut
from signage.services.invalidation import schedule_publish, target_closure
from signage.services.targets import TARGET_MODELS, find_target
from signage.services.timewindow import format_days, parse_days, parse_hhmm, validate_window

router = APIRouter(prefix="/schedules", tags=["schedules"])


def _parse_time(value: str) -> time:
    try:
        return parse_hhmm(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid time format. Use HH:MM or HH:MM:SS.") from exc


def _parse_days(value: str) -> str:
    try:
        days = parse_days(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"days_of_week: {exc}") from exc
    if not days:
        raise HTTPException(status_code=400, detail="days_of_week must contain at least one day")
    return format_days(days)


def _validate_window(start_time: time, end_time: time) -> None:
    # Overlapping rules are allowed; priority decides between them.
    try:
        validate_window(start_time, end_time)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _validate_target(db: Session, target_type: str, target_id: str) -> None:
    if target_type not in TARGET_MODELS:
        raise HTTPException(status_code=400, detail="target_type must be screen or group")
    if find_target(db, target_type, target_id) is None:
        raise HTTPException(status_code=404, detail=f"{target_type.capitalize()} not found")


def _validate_playlist(db: Session, playlist_id: str) -> str:
    playlist_id = (playlist_id or "").strip()
    if not playlist_id or db.get(Playlist, playlist_id) is None:
        raise HTTPException(status_code=404, detail="Playlist not found")
    return playlist_id


@router.post("", response_model=ScheduleRuleOut)
def create_schedule(
    target_type: str,
    target_id: str,
    playlist_id: str,
    days_of_week: str,
    start_time: str,
    end_time: str,
    background_tasks: BackgroundTasks,
    priority: int = 1,
    note: str | None = None,
    db: Session = Depends(get_db),
):
    _validate_target(db, target_type, target_id)
    start = _parse_time(start_time)
    end = _parse_time(end_time)
    _validate_window(start, end)
    rule = ScheduleRule(
        target_type=target_type,
        target_id=target_id,
        playlist_id=_validate_playlist(db, playlist_id),
        days_of_week=_parse_days(days_of_week),
        start_time=start,
        end_time=end,
        priority=priority,
        note=(note or "").strip() or None,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    schedule_publish(background_tasks, target_closure(db, rule.target_type, rule.target_id))
    return rule

@router.get("", response_model=list[ScheduleRuleOut])
def list_schedules(target_type: str, target_id: str, db: Session = Depends(get_db)):
    return (
        db.query(ScheduleRule)
        .filter(ScheduleRule.target_type == target_type, ScheduleRule.target_id == target_id)
        .order_by(ScheduleRule.priority.desc(), ScheduleRule.id.asc())
        .all()
    )

@router.get("/{schedule_id}", response_model=ScheduleRuleOut)
def get_schedule(schedule_id: int, db: Session = Depends(get_db)):
    rule = db.get(ScheduleRule, schedule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return rule

@router.put("/{schedule_id}", response_model=ScheduleRuleOut)
def update_schedule(
    schedule_id: int,
    background_tasks: BackgroundTasks,
    days_of_week: str | None = None,
    start_time: str | None = None,
    end_time: str | None = None,
    playlist_id: str | None = None,
    priority: int | None = None,
    note: str | None = None,
    db: Session = Depends(get_db),
):
    rule = db.get(ScheduleRule, schedule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Schedule not found")

    new_start = _parse_time(start_time) if start_time is not None else rule.start_time
    new_end = _parse_time(end_time) if end_time is not None else rule.end_time
    _validate_window(new_start, new_end)

    if days_of_week is not None:
        rule.days_of_week = _parse_days(days_of_week)
    rule.start_time = new_start
    rule.end_time = new_end
    if playlist_id is not None:
        rule.playlist_id = _validate_playlist(db, playlist_id)
    if priority is not None:
        rule.priority = priority
    if note is not None:
        rule.note = note.strip() or None
    db.commit()
    db.refresh(rule)
    schedule_publish(background_tasks, target_closure(db, rule.target_type, rule.target_id))
    return rule

@router.delete("/{schedule_id}")
def delete_schedule(schedule_id: int, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    rule = db.get(ScheduleRule, schedule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    events = target_closure(db, rule.target_type, rule.target_id)
    db.delete(rule)
    db.commit()
    schedule_publish(background_tasks, events)
    return {"ok": True}
