import os
from datetime import datetime, timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session
from signage.db import get_db
from signage.models.screen import Screen, ScreenGroup
from signage.models.slide import Slide
from signage.schemas.override import AssignSlideIn, OverrideStateOut
from signage.services.invalidation import schedule_publish, target_closure, targets_closure
from signage.services.targets import TARGET_MODELS, find_target
from signage.services.timewindow import ensure_utc, utc_now

router = APIRouter(prefix="/overrides", tags=["overrides"])
DEFAULT_URGENT_MINUTES = int(os.getenv("SIGNAGE_DEFAULT_URGENT_MINUTES", "60"))
MAX_URGENT_MINUTES = int(os.getenv("SIGNAGE_MAX_URGENT_MINUTES", str(7 * 24 * 60)))


def _storage_utc(value: datetime) -> datetime:
    # Columns hold naive UTC.
    return ensure_utc(value).replace(tzinfo=None)


def _find_target_or_404(db: Session, target_type: str, target_id: str):
    if target_type not in TARGET_MODELS:
        raise HTTPException(status_code=400, detail="target_type must be screen or group")
    target = find_target(db, target_type, target_id)
    if target is None:
        raise HTTPException(status_code=404, detail=f"{target_type.capitalize()} not found")
    return target


def _require_slide(db: Session, slide_id: str) -> str:
    slide_id = (slide_id or "").strip()
    if not slide_id or db.get(Slide, slide_id) is None:
        raise HTTPException(status_code=404, detail="Slide not found")
    return slide_id


def _urgent_active(target, now: datetime) -> bool:
    if not target.urgent_slide_id or target.urgent_starts_at is None or target.urgent_expires_at is None:
        return False
    return ensure_utc(target.urgent_starts_at) <= now < ensure_utc(target.urgent_expires_at)


def _state(target_type: str, target, now: datetime) -> OverrideStateOut:
    return OverrideStateOut(
        target_type=target_type,
        target_id=str(target.id),
        active_slide_id=target.active_slide_id,
        urgent_slide_id=target.urgent_slide_id,
        urgent_starts_at=ensure_utc(target.urgent_starts_at) if target.urgent_starts_at else None,
        urgent_expires_at=ensure_utc(target.urgent_expires_at) if target.urgent_expires_at else None,
        urgent_active=_urgent_active(target, now),
    )


@router.get("/urgent/active", response_model=list[OverrideStateOut])
def list_active_urgent(at: datetime | None = None, db: Session = Depends(get_db)):
    """Targets whose urgent override is live at ``at``; lapsed pointers are filtered, not swept."""
    now = ensure_utc(at or utc_now())
    stored_now = _storage_utc(now)
    output: list[OverrideStateOut] = []
    for target_type, model in (("screen", Screen), ("group", ScreenGroup)):
        rows = (
            db.query(model)
            .filter(
                model.urgent_slide_id.isnot(None),
                model.urgent_starts_at <= stored_now,
                model.urgent_expires_at > stored_now,
            )
            .order_by(model.urgent_expires_at.asc(), model.id.asc())
            .all()
        )
        output.extend(_state(target_type, row, now) for row in rows)
    return output


@router.post("/assign-slide")
def assign_slide(payload: AssignSlideIn, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    """Make ``slide_id`` the manual override on exactly the listed screens and groups.

    Targets that currently show this slide manually but are not listed are cleared.
    """
    slide_id = _require_slide(db, payload.slide_id)
    changed: set[tuple[str, str]] = set()
    for target_type, model, wanted_ids in (
        ("screen", Screen, set(payload.screen_ids)),
        ("group", ScreenGroup, set(payload.group_ids)),
    ):
        for target_id in sorted(wanted_ids):
            target = _find_target_or_404(db, target_type, target_id)
            if target.active_slide_id != slide_id:
                target.active_slide_id = slide_id
                changed.add((target_type, str(target.id)))
        for target in db.query(model).filter(model.active_slide_id == slide_id).all():
            if str(target.id) not in wanted_ids:
                target.active_slide_id = None
                changed.add((target_type, str(target.id)))
    db.commit()
    events = targets_closure(db, sorted(changed))
    schedule_publish(background_tasks, events)
    return {"ok": True, "changed": [{"target_type": t, "target_id": i} for t, i in sorted(changed)]}


@router.get("/{target_type}/{target_id}", response_model=OverrideStateOut)
def get_overrides(target_type: str, target_id: str, at: datetime | None = None, db: Session = Depends(get_db)):
    target = _find_target_or_404(db, target_type, target_id)
    return _state(target_type, target, ensure_utc(at or utc_now()))


@router.put("/{target_type}/{target_id}/manual", response_model=OverrideStateOut)
def set_manual(
    target_type: str,
    target_id: str,
    slide_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    target = _find_target_or_404(db, target_type, target_id)
    target.active_slide_id = _require_slide(db, slide_id)
    db.commit()
    db.refresh(target)
    schedule_publish(background_tasks, target_closure(db, target_type, target.id))
    return _state(target_type, target, utc_now())


@router.delete("/{target_type}/{target_id}/manual", response_model=OverrideStateOut)
def clear_manual(target_type: str, target_id: str, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    target = _find_target_or_404(db, target_type, target_id)
    target.active_slide_id = None
    db.commit()
    db.refresh(target)
    schedule_publish(background_tasks, target_closure(db, target_type, target.id))
    return _state(target_type, target, utc_now())


@router.put("/{target_type}/{target_id}/urgent", response_model=OverrideStateOut)
def set_urgent(
    target_type: str,
    target_id: str,
    slide_id: str,
    background_tasks: BackgroundTasks,
    starts_at: datetime | None = None,
    expires_at: datetime | None = None,
    duration_minutes: int | None = None,
    db: Session = Depends(get_db),
):
    """Time-boxed override; ``expires_at`` wins over ``duration_minutes`` when both are given."""
    target = _find_target_or_404(db, target_type, target_id)
    slide_id = _require_slide(db, slide_id)
    start = ensure_utc(starts_at) if starts_at is not None else utc_now()
    if expires_at is not None:
        end = ensure_utc(expires_at)
    else:
        minutes = duration_minutes if duration_minutes is not None else DEFAULT_URGENT_MINUTES
        if minutes <= 0 or minutes > MAX_URGENT_MINUTES:
            raise HTTPException(status_code=400, detail=f"duration_minutes must be within 1..{MAX_URGENT_MINUTES}")
        end = start + timedelta(minutes=minutes)
    if end <= start:
        raise HTTPException(status_code=400, detail="expires_at must be after starts_at")

    target.urgent_slide_id = slide_id
    target.urgent_starts_at = _storage_utc(start)
    target.urgent_expires_at = _storage_utc(end)
    db.commit()
    db.refresh(target)
    schedule_publish(background_tasks, target_closure(db, target_type, target.id))
    return _state(target_type, target, utc_now())


@router.delete("/{target_type}/{target_id}/urgent", response_model=OverrideStateOut)
def clear_urgent(target_type: str, target_id: str, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    target = _find_target_or_404(db, target_type, target_id)
    target.urgent_slide_id = None
    target.urgent_starts_at = None
    target.urgent_expires_at = None
    db.commit()
    db.refresh(target)
    schedule_publish(background_tasks, target_closure(db, target_type, target.id))
    return _state(target_type, target, utc_now())
