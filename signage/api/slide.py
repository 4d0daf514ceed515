import json

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException
from sqlalchemy.orm import Session
from signage.db import get_db
from signage.models.slide import Slide
from signage.schemas.slide import SlideOut
from signage.services.invalidation import schedule_publish, slide_targets, targets_closure

router = APIRouter(prefix="/slides", tags=["slides"])


@router.post("", response_model=SlideOut)
def create_slide(
    name: str,
    org_id: str | None = None,
    content: dict | None = Body(default=None),
    db: Session = Depends(get_db),
):
    cleaned = (name or "").strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail="Slide name cannot be empty")
    # Content is an opaque component tree; only stored and handed to the renderer.
    slide = Slide(
        name=cleaned,
        org_id=(org_id or "").strip() or None,
        content_json=json.dumps(content, separators=(",", ":")) if content is not None else None,
    )
    db.add(slide)
    db.commit()
    db.refresh(slide)
    return slide


@router.get("", response_model=list[SlideOut])
def list_slides(org_id: str | None = None, db: Session = Depends(get_db)):
    query = db.query(Slide)
    if org_id:
        query = query.filter(Slide.org_id == org_id)
    return query.order_by(Slide.created_at.asc(), Slide.id.asc()).all()


@router.get("/{slide_id}")
def get_slide(slide_id: str, db: Session = Depends(get_db)):
    slide = db.get(Slide, slide_id)
    if not slide:
        raise HTTPException(status_code=404, detail="Slide not found")
    return {
        "id": str(slide.id),
        "org_id": slide.org_id,
        "name": slide.name,
        "content": json.loads(slide.content_json) if slide.content_json else None,
    }


@router.delete("/{slide_id}")
def delete_slide(slide_id: str, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    slide = db.get(Slide, slide_id)
    if not slide:
        raise HTTPException(status_code=404, detail="Slide not found")
    # Overrides and playlist items keep their pointers; resolution skips them.
    events = targets_closure(db, sorted(slide_targets(db, slide_id)))
    db.delete(slide)
    db.commit()
    schedule_publish(background_tasks, events)
    return {"ok": True}
