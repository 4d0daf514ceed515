from datetime import datetime, timezone

from signage import seed
from signage.models.screen import Screen
from signage.models.slide import Slide
from signage.services.resolution import resolve
from signage.services.snapshot import load_snapshot


def _screen_a(db):
    return db.query(Screen).filter(Screen.name == "Screen A").one()


def test_seed_builds_a_resolvable_demo(session_factory, monkeypatch, db):
    monkeypatch.setattr(seed, "SessionLocal", session_factory)
    monkeypatch.setattr(seed, "engine", session_factory.kw["bind"])
    seed.seed()

    slides = {row.id: row.name for row in db.query(Slide).all()}
    snapshot = load_snapshot(db, _screen_a(db).id)

    weekday = resolve(snapshot, datetime(2024, 1, 3, 12, 0, tzinfo=timezone.utc))
    assert (weekday.kind, slides[weekday.slide_id]) == ("scheduled", "Opening Hours")

    evening = resolve(snapshot, datetime(2024, 1, 3, 18, 0, tzinfo=timezone.utc))
    assert (evening.kind, slides[evening.slide_id]) == ("default", "Welcome")
    promo = resolve(
        snapshot,
        datetime(2024, 1, 3, 18, 0, 10, tzinfo=timezone.utc),
        cursor=evening.source_item_id,
        advance=True,
    )
    assert slides[promo.slide_id] == "Evening Promo"


def test_every_seeded_slide_is_on_air_somewhere(session_factory, monkeypatch, db):
    monkeypatch.setattr(seed, "SessionLocal", session_factory)
    monkeypatch.setattr(seed, "engine", session_factory.kw["bind"])
    seed.seed()

    snapshot = load_snapshot(db, _screen_a(db).id)
    referenced = {item.slide_id for playlist in snapshot.playlists.values() for item in playlist.items}
    assert referenced == {row.id for row in db.query(Slide).all()}
