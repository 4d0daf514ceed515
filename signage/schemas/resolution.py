from datetime import datetime, time
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

NO_CONTENT_SLIDE_ID = "no-content"

DecisionKind = Literal["urgent", "manual", "scheduled", "default", "none"]
TargetType = Literal["screen", "group"]


class AlwaysPredicate(BaseModel):
    kind: Literal["always"] = "always"


class TimeWindowPredicate(BaseModel):
    kind: Literal["time_window"] = "time_window"
    days: list[int] = Field(default_factory=list)  # empty means every day
    start_time: time | None = None
    end_time: time | None = None


Predicate = Annotated[Union[AlwaysPredicate, TimeWindowPredicate], Field(discriminator="kind")]


class PlaylistItemView(BaseModel):
    id: str
    slide_id: str
    order: int
    duration_sec: int
    predicate: Predicate = Field(default_factory=AlwaysPredicate)


class PlaylistView(BaseModel):
    id: str
    items: list[PlaylistItemView] = Field(default_factory=list)

    def ordered_items(self) -> list[PlaylistItemView]:
        return sorted(self.items, key=lambda item: (item.order, item.id))


class ScheduleRuleView(BaseModel):
    id: int
    target_type: TargetType
    target_id: str
    playlist_id: str
    days_of_week: list[int]
    start_time: time
    end_time: time
    priority: int = 1


class TargetView(BaseModel):
    target_type: TargetType
    id: str
    default_playlist_id: str | None = None
    active_slide_id: str | None = None
    urgent_slide_id: str | None = None
    urgent_starts_at: datetime | None = None
    urgent_expires_at: datetime | None = None


class ResolutionSnapshot(BaseModel):
    """Everything the engine reads for one screen, cached player-side between invalidations."""

    screen: TargetView | None = None
    group: TargetView | None = None
    timezone: str = "UTC"
    rules: list[ScheduleRuleView] = Field(default_factory=list)
    playlists: dict[str, PlaylistView] = Field(default_factory=dict)
    slide_ids: set[str] = Field(default_factory=set)

    def get_playlist(self, playlist_id: str | None) -> PlaylistView | None:
        if not playlist_id:
            return None
        return self.playlists.get(playlist_id)

    def list_schedule_rules(self, target_type: str, target_id: str) -> list[ScheduleRuleView]:
        return [
            rule
            for rule in self.rules
            if rule.target_type == target_type and rule.target_id == target_id
        ]

    def has_slide(self, slide_id: str | None) -> bool:
        return bool(slide_id) and slide_id in self.slide_ids


class PlaybackDecision(BaseModel):
    kind: DecisionKind
    slide_id: str
    source_target_type: TargetType | None = None
    source_target_id: str | None = None
    source_playlist_id: str | None = None
    source_item_id: str | None = None
    source_rule_id: int | None = None
    duration_sec: int | None = None
    expires_at: datetime | None = None

    def same_content(self, other: "PlaybackDecision | None") -> bool:
        if other is None:
            return False
        return (
            self.kind == other.kind
            and self.slide_id == other.slide_id
            and self.source_playlist_id == other.source_playlist_id
            and self.source_item_id == other.source_item_id
        )


def no_content_decision() -> PlaybackDecision:
    return PlaybackDecision(kind="none", slide_id=NO_CONTENT_SLIDE_ID)
