import json
from datetime import datetime, timezone

import pytest

from signage.schemas.resolution import ResolutionSnapshot
from signage.services.resolution import resolve

WED_0900 = "2024-01-03T09:00:00Z"
WED_1800 = "2024-01-03T18:00:00Z"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _create(client, path, **params):
    resp = client.post(path, params=params)
    assert resp.status_code == 200, resp.text
    return resp.json()


def _playback(client, screen_id, at):
    resp = client.get(f"/screens/{screen_id}/playback", params={"at": at})
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.fixture
def world(client):
    """One group with two member screens, a slide X in playlist P, and a spare slide."""
    group = _create(client, "/groups", name="Lobby")
    screen = _create(client, "/screens", name="Front", group_id=group["id"], timezone="UTC")
    other = _create(client, "/screens", name="Back", group_id=group["id"], timezone="UTC")
    slide_x = _create(client, "/slides", name="X")
    slide_y = _create(client, "/slides", name="Y")
    playlist = _create(client, "/playlists", name="P")
    item = _create(client, f"/playlists/{playlist['id']}/items", slide_id=slide_x["id"], duration_sec=15)
    return {
        "group": group,
        "screen": screen,
        "other": other,
        "x": slide_x,
        "y": slide_y,
        "playlist": playlist,
        "item": item,
    }


def _weekday_rule(client, world, target_type="screen", target_id=None, priority=1):
    return _create(
        client,
        "/schedules",
        target_type=target_type,
        target_id=target_id or world["screen"]["id"],
        playlist_id=world["playlist"]["id"],
        days_of_week="1,2,3,4,5",
        start_time="08:00",
        end_time="17:00",
        priority=priority,
    )


def _pairs(events):
    return {(event.kind, event.target_id) for event in events}


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------

def test_scheduled_playback_and_after_hours_sentinel(client, world):
    _weekday_rule(client, world)
    sid = world["screen"]["id"]

    decision = _playback(client, sid, WED_0900)
    assert decision["kind"] == "scheduled"
    assert decision["slide_id"] == world["x"]["id"]
    assert decision["source_item_id"] == world["item"]["id"]
    assert decision["duration_sec"] == 15

    assert _playback(client, sid, WED_1800)["kind"] == "none"


def test_create_then_delete_rule_restores_prior_decision(client, world):
    sid = world["screen"]["id"]
    before = _playback(client, sid, WED_0900)
    rule = _weekday_rule(client, world)
    assert _playback(client, sid, WED_0900) != before

    resp = client.delete(f"/schedules/{rule['id']}")
    assert resp.status_code == 200
    assert _playback(client, sid, WED_0900) == before


def test_rule_days_are_returned_as_list(client, world):
    rule = _weekday_rule(client, world)
    assert rule["days_of_week"] == [1, 2, 3, 4, 5]
    listed = client.get(
        "/schedules",
        params={"target_type": "screen", "target_id": world["screen"]["id"]},
    ).json()
    assert [row["id"] for row in listed] == [rule["id"]]


@pytest.mark.parametrize(
    "overrides",
    [
        {"start_time": "17:00", "end_time": "08:00"},
        {"start_time": "09:00", "end_time": "09:00"},
        {"start_time": "25:00"},
        {"days_of_week": ""},
        {"days_of_week": "1,9"},
        {"target_type": "building"},
    ],
)
def test_malformed_rules_are_rejected(client, world, overrides):
    params = {
        "target_type": "screen",
        "target_id": world["screen"]["id"],
        "playlist_id": world["playlist"]["id"],
        "days_of_week": "1,2,3",
        "start_time": "08:00",
        "end_time": "17:00",
    }
    params.update(overrides)
    resp = client.post("/schedules", params=params)
    assert resp.status_code == 400


def test_rule_for_unknown_playlist_or_target_is_404(client, world):
    resp = client.post(
        "/schedules",
        params={
            "target_type": "screen",
            "target_id": world["screen"]["id"],
            "playlist_id": "missing",
            "days_of_week": "1",
            "start_time": "08:00",
            "end_time": "09:00",
        },
    )
    assert resp.status_code == 404
    resp = client.post(
        "/schedules",
        params={
            "target_type": "group",
            "target_id": "missing",
            "playlist_id": world["playlist"]["id"],
            "days_of_week": "1",
            "start_time": "08:00",
            "end_time": "09:00",
        },
    )
    assert resp.status_code == 404


def test_group_rule_notifies_group_and_members(client, world, published):
    published.clear()
    _weekday_rule(client, world, target_type="group", target_id=world["group"]["id"])
    assert _pairs(published) == {
        ("group_updated", world["group"]["id"]),
        ("screen_updated", world["screen"]["id"]),
        ("screen_updated", world["other"]["id"]),
    }
    assert _playback(client, world["other"]["id"], WED_0900)["kind"] == "scheduled"


def test_screen_rule_notifies_only_that_screen(client, world, published):
    published.clear()
    _weekday_rule(client, world)
    assert _pairs(published) == {("screen_updated", world["screen"]["id"])}


def test_updating_rule_priority_changes_winner(client, world):
    other_playlist = _create(client, "/playlists", name="Q")
    _create(client, f"/playlists/{other_playlist['id']}/items", slide_id=world["y"]["id"])
    first = _weekday_rule(client, world)
    second = _create(
        client,
        "/schedules",
        target_type="screen",
        target_id=world["screen"]["id"],
        playlist_id=other_playlist["id"],
        days_of_week="3",
        start_time="08:00",
        end_time="12:00",
    )
    sid = world["screen"]["id"]
    assert _playback(client, sid, WED_0900)["source_rule_id"] == first["id"]

    resp = client.put(f"/schedules/{second['id']}", params={"priority": 5})
    assert resp.status_code == 200
    assert _playback(client, sid, WED_0900)["slide_id"] == world["y"]["id"]


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------

def test_urgent_window_via_api(client, world, published):
    sid = world["screen"]["id"]
    _weekday_rule(client, world)
    published.clear()
    resp = client.put(
        f"/overrides/screen/{sid}/urgent",
        params={"slide_id": world["y"]["id"], "starts_at": WED_0900, "duration_minutes": 15},
    )
    assert resp.status_code == 200, resp.text
    assert _pairs(published) == {("screen_updated", sid)}

    assert _playback(client, sid, "2024-01-03T09:14:00Z")["kind"] == "urgent"
    assert _playback(client, sid, "2024-01-03T09:15:00Z")["kind"] == "scheduled"
    assert _playback(client, sid, "2024-01-03T09:16:00Z")["kind"] == "scheduled"

    # Passive expiry: the pointer is still stored after it lapses.
    state = client.get(f"/overrides/screen/{sid}", params={"at": "2024-01-03T09:16:00Z"}).json()
    assert state["urgent_slide_id"] == world["y"]["id"]
    assert state["urgent_active"] is False


def test_urgent_requires_expiry_after_start(client, world):
    resp = client.put(
        f"/overrides/screen/{world['screen']['id']}/urgent",
        params={
            "slide_id": world["y"]["id"],
            "starts_at": WED_0900,
            "expires_at": WED_0900,
        },
    )
    assert resp.status_code == 400


def test_active_urgent_listing_filters_at_read_time(client, world):
    gid = world["group"]["id"]
    client.put(
        f"/overrides/group/{gid}/urgent",
        params={"slide_id": world["y"]["id"], "starts_at": WED_0900, "duration_minutes": 30},
    )
    active = client.get("/overrides/urgent/active", params={"at": "2024-01-03T09:10:00Z"}).json()
    assert [(row["target_type"], row["target_id"]) for row in active] == [("group", gid)]
    assert client.get("/overrides/urgent/active", params={"at": "2024-01-03T09:30:00Z"}).json() == []


def test_group_manual_then_screen_manual(client, world, published):
    gid, sid = world["group"]["id"], world["screen"]["id"]
    published.clear()
    resp = client.put(f"/overrides/group/{gid}/manual", params={"slide_id": world["x"]["id"]})
    assert resp.status_code == 200
    assert ("screen_updated", world["other"]["id"]) in _pairs(published)

    decision = _playback(client, sid, WED_0900)
    assert (decision["kind"], decision["slide_id"]) == ("manual", world["x"]["id"])

    client.put(f"/overrides/screen/{sid}/manual", params={"slide_id": world["y"]["id"]})
    decision = _playback(client, sid, WED_0900)
    assert (decision["kind"], decision["slide_id"]) == ("manual", world["y"]["id"])

    client.delete(f"/overrides/screen/{sid}/manual")
    assert _playback(client, sid, WED_0900)["slide_id"] == world["x"]["id"]


def test_manual_override_needs_existing_slide(client, world):
    resp = client.put(f"/overrides/screen/{world['screen']['id']}/manual", params={"slide_id": "missing"})
    assert resp.status_code == 404
    resp = client.put("/overrides/kiosk/abc/manual", params={"slide_id": world["x"]["id"]})
    assert resp.status_code == 400


def test_assign_slide_sets_and_clears(client, world, published):
    sid, oid, gid = world["screen"]["id"], world["other"]["id"], world["group"]["id"]
    slide_id = world["x"]["id"]
    resp = client.post("/overrides/assign-slide", json={"slide_id": slide_id, "screen_ids": [sid, oid]})
    assert resp.status_code == 200
    assert _playback(client, oid, WED_0900)["kind"] == "manual"

    published.clear()
    resp = client.post(
        "/overrides/assign-slide",
        json={"slide_id": slide_id, "screen_ids": [sid], "group_ids": [gid]},
    )
    body = resp.json()
    assert {(row["target_type"], row["target_id"]) for row in body["changed"]} == {
        ("screen", oid),
        ("group", gid),
    }
    assert ("group_updated", gid) in _pairs(published)
    # The other screen now inherits the group's manual override.
    decision = _playback(client, oid, WED_0900)
    assert (decision["kind"], decision["source_target_type"]) == ("manual", "group")


# ---------------------------------------------------------------------------
# Screens, playlists, slides
# ---------------------------------------------------------------------------

def test_moving_screen_between_groups_notifies_the_screen(client, world, published):
    sid = world["screen"]["id"]
    client.put(f"/overrides/group/{world['group']['id']}/manual", params={"slide_id": world["x"]["id"]})
    new_group = _create(client, "/groups", name="Cafe")

    published.clear()
    resp = client.put(f"/screens/{sid}", params={"group_id": new_group["id"]})
    assert resp.status_code == 200
    assert _pairs(published) == {("screen_updated", sid)}
    assert _playback(client, sid, WED_0900)["kind"] == "none"

    resp = client.put(f"/screens/{sid}", params={"group_id": ""})
    assert resp.json()["group_id"] is None


def test_screen_validation(client):
    assert client.post("/screens", params={"name": "A", "timezone": "Nowhere/City"}).status_code == 400
    assert client.post("/screens", params={"name": "A", "group_id": "missing"}).status_code == 404
    assert client.post("/screens", params={"name": " "}).status_code == 400


def test_unknown_screen_resolves_to_sentinel(client):
    decision = _playback(client, "does-not-exist", WED_0900)
    assert decision["kind"] == "none"
    assert decision["slide_id"] == "no-content"
    assert client.get("/screens/does-not-exist/snapshot").status_code == 404


def test_default_playlist_and_item_predicate(client, world):
    sid = world["screen"]["id"]
    pid = world["playlist"]["id"]
    lunch = json.dumps({"start_time": "11:00", "end_time": "14:00"})
    gated = _create(client, f"/playlists/{pid}/items", slide_id=world["y"]["id"], order=0, predicate=lunch)
    assert gated["predicate"]["start_time"] == "11:00:00"
    listed = client.get(f"/playlists/{pid}/items").json()
    assert [row["predicate"] for row in listed] == [
        {"days": [], "start_time": "11:00:00", "end_time": "14:00:00"},
        None,
    ]

    client.put(f"/screens/{sid}", params={"default_playlist_id": pid})
    assert _playback(client, sid, "2024-01-03T12:00:00Z")["slide_id"] == world["y"]["id"]
    decision = _playback(client, sid, WED_1800)
    assert (decision["kind"], decision["slide_id"]) == ("default", world["x"]["id"])


def test_malformed_item_predicate_is_rejected(client, world):
    pid = world["playlist"]["id"]
    malformed = (
        "not json",
        json.dumps({"start_time": "14:00", "end_time": "11:00"}),
        "[1]",
        json.dumps({"start_time": 9}),
        json.dumps({"end_time": ["10:00"]}),
        json.dumps({"days": 3}),
    )
    for predicate in malformed:
        resp = client.post(
            f"/playlists/{pid}/items",
            params={"slide_id": world["x"]["id"], "predicate": predicate},
        )
        assert resp.status_code == 400


def test_item_mutation_notifies_screens_using_playlist(client, world, published):
    _weekday_rule(client, world, target_type="group", target_id=world["group"]["id"])
    published.clear()
    resp = client.put(f"/playlists/items/{world['item']['id']}", params={"duration_sec": 30})
    assert resp.status_code == 200
    assert ("screen_updated", world["other"]["id"]) in _pairs(published)


def test_reorder_items(client, world):
    pid = world["playlist"]["id"]
    second = _create(client, f"/playlists/{pid}/items", slide_id=world["y"]["id"])
    resp = client.put(f"/playlists/{pid}/items/reorder", json=[second["id"], world["item"]["id"]])
    assert resp.status_code == 200
    assert [row["id"] for row in resp.json()] == [second["id"], world["item"]["id"]]

    resp = client.put(f"/playlists/{pid}/items/reorder", json=[second["id"]])
    assert resp.status_code == 400


def test_deleted_slide_is_skipped_and_screens_notified(client, world, published):
    sid = world["screen"]["id"]
    client.put(f"/overrides/screen/{sid}/manual", params={"slide_id": world["y"]["id"]})
    _weekday_rule(client, world)
    assert _playback(client, sid, WED_0900)["kind"] == "manual"

    published.clear()
    assert client.delete(f"/slides/{world['y']['id']}").status_code == 200
    assert ("screen_updated", sid) in _pairs(published)
    assert _playback(client, sid, WED_0900)["kind"] == "scheduled"


def test_deleting_playlist_removes_its_rules(client, world):
    sid = world["screen"]["id"]
    _weekday_rule(client, world)
    assert client.delete(f"/playlists/{world['playlist']['id']}").status_code == 200
    assert _playback(client, sid, WED_0900)["kind"] == "none"
    assert client.get("/schedules", params={"target_type": "screen", "target_id": sid}).json() == []


def test_group_refresh_publishes_closure(client, world, published):
    published.clear()
    resp = client.post(f"/groups/{world['group']['id']}/refresh")
    assert resp.status_code == 200
    assert len(resp.json()["notified"]) == 3
    assert len(published) == 3


def test_snapshot_endpoint_round_trips_into_engine(client, world):
    _weekday_rule(client, world)
    body = client.get(f"/screens/{world['screen']['id']}/snapshot").json()
    snapshot = ResolutionSnapshot.model_validate(body)
    assert resolve(snapshot, datetime(2024, 1, 3, 9, 0, tzinfo=timezone.utc)).slide_id == world["x"]["id"]
