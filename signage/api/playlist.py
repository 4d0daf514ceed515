from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException
from sqlalchemy.orm import Session
from signage.db import get_db
from signage.models.playlist import Playlist, PlaylistItem
from signage.models.schedule import ScheduleRule
from signage.models.screen import Screen, ScreenGroup
from signage.models.slide import Slide
from signage.schemas.playlist import PlaylistItemOut, PlaylistOut
from signage.services.invalidation import playlist_targets, schedule_publish, targets_closure
from signage.services.snapshot import parse_predicate, predicate_to_json

router = APIRouter(prefix="/playlists", tags=["playlists"])


def _normalize_entity_id(value: str, field_name: str) -> str:
    normalized = (value or "").strip()
    if normalized.startswith("{") and normalized.endswith("}"):
        normalized = normalized[1:-1].strip()
    if not normalized:
        raise HTTPException(status_code=400, detail=f"{field_name} is required")
    return normalized


def _normalize_predicate(value: str | None) -> str | None:
    try:
        return predicate_to_json(parse_predicate(value))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _normalize_duration(value: int) -> int:
    if value is None or value <= 0:
        raise HTTPException(status_code=400, detail="duration_sec must be positive")
    return value


def _find_playlist_or_404(db: Session, playlist_id: str) -> Playlist:
    playlist = db.get(Playlist, playlist_id)
    if not playlist:
        raise HTTPException(status_code=404, detail="Playlist not found")
    return playlist


def _find_item_or_404(db: Session, item_id: str) -> PlaylistItem:
    item = db.get(PlaylistItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Playlist item not found")
    return item


def _playlist_events(db: Session, playlist_id: str):
    return targets_closure(db, sorted(playlist_targets(db, playlist_id)))


def _ordered_items(db: Session, playlist_id: str) -> list[PlaylistItem]:
    return (
        db.query(PlaylistItem)
        .filter(PlaylistItem.playlist_id == playlist_id)
        .order_by(PlaylistItem.order.asc(), PlaylistItem.id.asc())
        .all()
    )

@router.post("", response_model=PlaylistOut)
def create_playlist(name: str, org_id: str | None = None, db: Session = Depends(get_db)):
    cleaned = (name or "").strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail="Playlist name cannot be empty")
    playlist = Playlist(name=cleaned, org_id=(org_id or "").strip() or None)
    db.add(playlist)
    db.commit()
    db.refresh(playlist)
    return playlist

@router.get("", response_model=list[PlaylistOut])
def list_playlists(org_id: str | None = None, db: Session = Depends(get_db)):
    query = db.query(Playlist)
    if org_id:
        query = query.filter(Playlist.org_id == org_id)
    return query.order_by(Playlist.name.asc(), Playlist.id.asc()).all()

@router.get("/{playlist_id}", response_model=PlaylistOut)
def get_playlist(playlist_id: str, db: Session = Depends(get_db)):
    playlist_id = _normalize_entity_id(playlist_id, "playlist_id")
    return _find_playlist_or_404(db, playlist_id)

@router.put("/{playlist_id}", response_model=PlaylistOut)
def update_playlist(playlist_id: str, name: str | None = None, db: Session = Depends(get_db)):
    playlist_id = _normalize_entity_id(playlist_id, "playlist_id")
    playlist = _find_playlist_or_404(db, playlist_id)
    if name is not None:
        cleaned = name.strip()
        if not cleaned:
            raise HTTPException(status_code=400, detail="Playlist name cannot be empty")
        playlist.name = cleaned
    db.commit()
    db.refresh(playlist)
    return playlist

@router.delete("/{playlist_id}")
def delete_playlist(playlist_id: str, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    playlist_id = _normalize_entity_id(playlist_id, "playlist_id")
    playlist = _find_playlist_or_404(db, playlist_id)
    events = _playlist_events(db, playlist_id)
    db.query(PlaylistItem).filter(PlaylistItem.playlist_id == playlist_id).delete(synchronize_session=False)
    db.query(ScheduleRule).filter(ScheduleRule.playlist_id == playlist_id).delete(synchronize_session=False)
    for model in (Screen, ScreenGroup):
        db.query(model).filter(model.default_playlist_id == playlist_id).update(
            {"default_playlist_id": None},
            synchronize_session=False,
        )
    db.delete(playlist)
    db.commit()
    schedule_publish(background_tasks, events)
    return {"ok": True}

@router.post("/{playlist_id}/items", response_model=PlaylistItemOut)
def add_item(
    playlist_id: str,
    slide_id: str,
    background_tasks: BackgroundTasks,
    order: int | None = None,
    duration_sec: int = 10,
    predicate: str | None = None,
    db: Session = Depends(get_db),
):
    """Insert a slide; without ``order`` it is appended after the last item."""
    playlist_id = _normalize_entity_id(playlist_id, "playlist_id")
    slide_id = _normalize_entity_id(slide_id, "slide_id")
    _find_playlist_or_404(db, playlist_id)
    if db.get(Slide, slide_id) is None:
        raise HTTPException(status_code=404, detail="Slide not found")
    if order is None:
        existing = _ordered_items(db, playlist_id)
        order = (existing[-1].order + 1) if existing else 1
    item = PlaylistItem(
        playlist_id=playlist_id,
        slide_id=slide_id,
        order=order,
        duration_sec=_normalize_duration(duration_sec),
        predicate_json=_normalize_predicate(predicate),
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    schedule_publish(background_tasks, _playlist_events(db, playlist_id))
    return item

@router.get("/{playlist_id}/items", response_model=list[PlaylistItemOut])
def list_items(playlist_id: str, db: Session = Depends(get_db)):
    playlist_id = _normalize_entity_id(playlist_id, "playlist_id")
    _find_playlist_or_404(db, playlist_id)
    return _ordered_items(db, playlist_id)

@router.put("/{playlist_id}/items/reorder", response_model=list[PlaylistItemOut])
def reorder_items(
    playlist_id: str,
    background_tasks: BackgroundTasks,
    item_ids: list[str] = Body(...),
    db: Session = Depends(get_db),
):
    playlist_id = _normalize_entity_id(playlist_id, "playlist_id")
    _find_playlist_or_404(db, playlist_id)
    items = {str(item.id): item for item in _ordered_items(db, playlist_id)}
    if sorted(item_ids) != sorted(items):
        raise HTTPException(status_code=400, detail="item_ids must list every item of the playlist exactly once")
    for position, item_id in enumerate(item_ids, start=1):
        items[item_id].order = position
    db.commit()
    schedule_publish(background_tasks, _playlist_events(db, playlist_id))
    return _ordered_items(db, playlist_id)

@router.put("/items/{item_id}", response_model=PlaylistItemOut)
def update_item(
    item_id: str,
    background_tasks: BackgroundTasks,
    order: int | None = None,
    duration_sec: int | None = None,
    predicate: str | None = None,
    db: Session = Depends(get_db),
):
    """Pass ``predicate=""`` to make the item always eligible again."""
    item_id = _normalize_entity_id(item_id, "item_id")
    item = _find_item_or_404(db, item_id)
    if order is not None:
        item.order = order
    if duration_sec is not None:
        item.duration_sec = _normalize_duration(duration_sec)
    if predicate is not None:
        item.predicate_json = _normalize_predicate(predicate)
    db.commit()
    db.refresh(item)
    schedule_publish(background_tasks, _playlist_events(db, item.playlist_id))
    return item

@router.delete("/items/{item_id}")
def delete_item(item_id: str, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    item_id = _normalize_entity_id(item_id, "item_id")
    item = _find_item_or_404(db, item_id)
    playlist_id = item.playlist_id
    db.delete(item)
    db.commit()
    schedule_publish(background_tasks, _playlist_events(db, playlist_id))
    return {"ok": True}
