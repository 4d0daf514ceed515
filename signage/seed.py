import json
from datetime import time
from sqlalchemy.orm import Session
from signage.db import SessionLocal, Base, engine
from signage.models.screen import Screen, ScreenGroup
from signage.models.playlist import Playlist, PlaylistItem
from signage.models.schedule import ScheduleRule
from signage.models.slide import Slide


def _notice(text: str) -> str:
    return json.dumps({"content": [{"type": "Notice", "props": {"text": text}}], "root": {"props": {}}})


def seed() -> None:
    Base.metadata.create_all(bind=engine)
    db: Session = SessionLocal()
    try:
        lobby = ScreenGroup(name="Lobby")
        db.add(lobby)
        db.commit()
        db.refresh(lobby)

        slides = []
        for label in ("Welcome", "Opening Hours", "Lunch Menu", "Evening Promo"):
            slide = Slide(name=label, content_json=_notice(label))
            db.add(slide)
            slides.append(slide)
        db.commit()
        for slide in slides:
            db.refresh(slide)

        default_playlist = Playlist(name="Always On")
        weekday_playlist = Playlist(name="Weekday Business Hours")
        db.add(default_playlist)
        db.add(weekday_playlist)
        db.commit()
        db.refresh(default_playlist)
        db.refresh(weekday_playlist)

        db.add(PlaylistItem(playlist_id=default_playlist.id, slide_id=slides[0].id, order=1, duration_sec=10))
        db.add(PlaylistItem(playlist_id=weekday_playlist.id, slide_id=slides[1].id, order=1, duration_sec=15))
        db.add(
            PlaylistItem(
                playlist_id=weekday_playlist.id,
                slide_id=slides[2].id,
                order=2,
                duration_sec=15,
                predicate_json=json.dumps({"days": [], "start_time": "11:00:00", "end_time": "14:00:00"}),
            )
        )
        db.add(
            PlaylistItem(
                playlist_id=default_playlist.id,
                slide_id=slides[3].id,
                order=2,
                duration_sec=20,
                predicate_json=json.dumps({"days": [], "start_time": "17:00:00", "end_time": "23:59:59"}),
            )
        )
        db.commit()

        lobby.default_playlist_id = default_playlist.id
        screen_a = Screen(name="Screen A", group_id=lobby.id, timezone="UTC")
        screen_b = Screen(name="Screen B", group_id=lobby.id, timezone="UTC")
        db.add(screen_a)
        db.add(screen_b)
        db.commit()

        db.add(
            ScheduleRule(
                target_type="group",
                target_id=lobby.id,
                playlist_id=weekday_playlist.id,
                days_of_week="1,2,3,4,5",
                start_time=time(8, 0, 0),
                end_time=time(17, 0, 0),
                priority=1,
            )
        )
        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    seed()
