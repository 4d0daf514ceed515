from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session
from signage.db import get_db
from signage.models.playlist import Playlist
from signage.models.schedule import ScheduleRule
from signage.models.screen import Screen, ScreenGroup
from signage.schemas.screen import ScreenGroupOut, ScreenOut
from signage.services.invalidation import schedule_publish, target_closure

router = APIRouter(prefix="/groups", tags=["groups"])


def _find_group_or_404(db: Session, group_id: str) -> ScreenGroup:
    group = db.get(ScreenGroup, group_id)
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")
    return group


def _validate_playlist(db: Session, playlist_id: str | None) -> str | None:
    playlist_id = (playlist_id or "").strip() or None
    if playlist_id is not None and db.get(Playlist, playlist_id) is None:
        raise HTTPException(status_code=404, detail="Playlist not found")
    return playlist_id


@router.post("", response_model=ScreenGroupOut)
def create_group(
    name: str,
    default_playlist_id: str | None = None,
    org_id: str | None = None,
    db: Session = Depends(get_db),
):
    cleaned = (name or "").strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail="Group name cannot be empty")
    group = ScreenGroup(
        name=cleaned,
        org_id=(org_id or "").strip() or None,
        default_playlist_id=_validate_playlist(db, default_playlist_id),
    )
    db.add(group)
    db.commit()
    db.refresh(group)
    return group


@router.get("", response_model=list[ScreenGroupOut])
def list_groups(org_id: str | None = None, db: Session = Depends(get_db)):
    query = db.query(ScreenGroup)
    if org_id:
        query = query.filter(ScreenGroup.org_id == org_id)
    return query.order_by(ScreenGroup.name.asc(), ScreenGroup.id.asc()).all()


@router.get("/{group_id}", response_model=ScreenGroupOut)
def get_group(group_id: str, db: Session = Depends(get_db)):
    return _find_group_or_404(db, group_id)


@router.get("/{group_id}/screens", response_model=list[ScreenOut])
def list_group_screens(group_id: str, db: Session = Depends(get_db)):
    _find_group_or_404(db, group_id)
    return db.query(Screen).filter(Screen.group_id == group_id).order_by(Screen.id.asc()).all()


@router.put("/{group_id}", response_model=ScreenGroupOut)
def update_group(
    group_id: str,
    background_tasks: BackgroundTasks,
    name: str | None = None,
    default_playlist_id: str | None = None,
    db: Session = Depends(get_db),
):
    group = _find_group_or_404(db, group_id)
    if name is not None:
        cleaned = name.strip()
        if not cleaned:
            raise HTTPException(status_code=400, detail="Group name cannot be empty")
        group.name = cleaned
    if default_playlist_id is not None:
        group.default_playlist_id = _validate_playlist(db, default_playlist_id)
    db.commit()
    db.refresh(group)
    schedule_publish(background_tasks, target_closure(db, "group", group.id))
    return group


@router.delete("/{group_id}")
def delete_group(group_id: str, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    group = _find_group_or_404(db, group_id)
    events = target_closure(db, "group", group.id)
    db.query(Screen).filter(Screen.group_id == group.id).update(
        {"group_id": None},
        synchronize_session=False,
    )
    db.query(ScheduleRule).filter(
        ScheduleRule.target_type == "group",
        ScheduleRule.target_id == group.id,
    ).delete(synchronize_session=False)
    db.delete(group)
    db.commit()
    schedule_publish(background_tasks, events)
    return {"ok": True}


@router.post("/{group_id}/refresh")
def refresh_group(group_id: str, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    _find_group_or_404(db, group_id)
    events = target_closure(db, "group", group_id)
    schedule_publish(background_tasks, events)
    return {"ok": True, "notified": [event.target_id for event in events]}
