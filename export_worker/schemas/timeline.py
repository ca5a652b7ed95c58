from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt
from pydantic.alias_generators import to_camel

TRANSPARENT = "transparent"

TrackType = Literal["media", "text", "audio"]
MediaType = Literal["video", "image", "audio"]
BackgroundType = Literal["color", "blur"]

# Effects are either a bare name ("grayscale") or an object ({"type": "brightness", "value": 0.1}).
Effect = str | dict[str, Any]


class TimelineModel(BaseModel):
    """Base for timeline document models (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Project
# =============================================================================


class CanvasSize(TimelineModel):
    width: PositiveInt
    height: PositiveInt


class ProjectSettings(TimelineModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str | None = None
    name: str | None = None
    canvas_size: CanvasSize
    fps: PositiveInt = 30
    background_color: str = "#000000"
    background_type: BackgroundType = "color"
    blur_intensity: float = Field(default=8, ge=0)


# =============================================================================
# Elements
# =============================================================================


class ElementBase(TimelineModel):
    id: str
    name: str | None = None
    start_time: float = Field(ge=0)
    duration: float = Field(gt=0)
    trim_start: float = Field(default=0, ge=0)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class MediaElement(ElementBase):
    type: Literal["media"] = "media"
    media_id: str
    muted: bool = False
    volume: float = Field(default=1.0, ge=0)
    effects: list[Effect] = Field(default_factory=list)
    position: str | None = None


class TextElement(ElementBase):
    type: Literal["text"] = "text"
    content: str = ""
    font_size: PositiveInt = 48
    color: str = "#ffffff"
    background_color: str = TRANSPARENT
    x: float | None = None
    y: float | None = None
    position: str | None = None

    @property
    def has_background(self) -> bool:
        return self.background_color.lower() != TRANSPARENT


Element = Annotated[MediaElement | TextElement, Field(discriminator="type")]


class Track(TimelineModel):
    id: str
    name: str | None = None
    type: TrackType = "media"
    elements: list[Element] = Field(default_factory=list)

    def sorted_elements(self) -> list[MediaElement | TextElement]:
        """Elements in timeline order (stable for equal start times)."""
        return sorted(self.elements, key=lambda element: element.start_time)


# =============================================================================
# Media
# =============================================================================


class MediaAsset(TimelineModel):
    id: str | None = None
    name: str | None = None
    type: MediaType
    url: str | None = None
    width: PositiveInt | None = None
    height: PositiveInt | None = None


class TimelineDocument(TimelineModel):
    """The serialized timeline a job renders: settings, tracks and media map."""

    project: ProjectSettings
    tracks: list[Track] = Field(default_factory=list)
    media_items: dict[str, MediaAsset] = Field(default_factory=dict)

    def referenced_media_ids(self) -> list[str]:
        """Media ids used by at least one element, in first-seen order."""
        seen: dict[str, None] = {}
        for track in self.tracks:
            for element in track.sorted_elements():
                if isinstance(element, MediaElement):
                    seen.setdefault(element.media_id, None)
        return list(seen)

    def with_media_locators(self, locators: dict[str, str]) -> "TimelineDocument":
        """Return a copy whose media urls are replaced by ``locators`` (e.g. local paths)."""
        media_items = {
            media_id: asset.model_copy(update={"url": locators[media_id]}) if media_id in locators else asset
            for media_id, asset in self.media_items.items()
        }
        return self.model_copy(update={"media_items": media_items})


def calculate_timeline_duration(tracks: list[Track]) -> float:
    """Total duration in seconds: the latest end time of any element."""
    return max(
        (element.end_time for track in tracks for element in track.elements),
        default=0.0,
    )
