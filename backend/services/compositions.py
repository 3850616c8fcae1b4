"""Composition registry – static metadata for every renderable composition."""

from __future__ import annotations

from dataclasses import dataclass

from models import OutputFormat, Quality


class UnknownCompositionError(ValueError):
    """Raised when a composition id is not registered."""


class UnsupportedFormatError(ValueError):
    """Raised when a composition cannot be rendered in the requested format."""


@dataclass(frozen=True)
class CompositionInfo:
    id: str
    name: str
    description: str
    category: str
    default_duration: float  # seconds
    content_types: tuple[str, ...]
    formats: tuple[OutputFormat, ...] = tuple(OutputFormat)


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int


@dataclass(frozen=True)
class QualityPreset:
    crf: int
    codec: str = "h264"


DIMENSIONS: dict[OutputFormat, Dimensions] = {
    OutputFormat.LANDSCAPE: Dimensions(1920, 1080),
    OutputFormat.PORTRAIT: Dimensions(1080, 1920),
    OutputFormat.SQUARE: Dimensions(1080, 1080),
}

# Lower CRF = higher quality, bigger file
QUALITY_PRESETS: dict[Quality, QualityPreset] = {
    Quality.DRAFT: QualityPreset(crf=28),
    Quality.STANDARD: QualityPreset(crf=20),
    Quality.HIGH: QualityPreset(crf=15),
}

COMPOSITIONS: dict[str, CompositionInfo] = {
    c.id: c
    for c in (
        CompositionInfo(
            id="EventPromo",
            name="Event Promo",
            description="Single event spotlight with animated details",
            category="promo",
            default_duration=10,
            content_types=("event",),
        ),
        CompositionInfo(
            id="EventReel",
            name="Event Reel",
            description="Multiple events rotating through with transitions",
            category="promo",
            default_duration=30,
            content_types=("event",),
        ),
        CompositionInfo(
            id="ProductBoard",
            name="Product Board",
            description="Menu or product grid display",
            category="menu",
            default_duration=15,
            content_types=("product",),
        ),
        CompositionInfo(
            id="StatsDashboard",
            name="Stats Dashboard",
            description="Animated statistics display with counters",
            category="stats",
            default_duration=8,
            content_types=("stat",),
        ),
        CompositionInfo(
            id="Branding",
            name="Branding",
            description="Logo reveal with various effects",
            category="branding",
            default_duration=5,
            content_types=("media",),
        ),
        CompositionInfo(
            id="Alert",
            name="Alert",
            description="Announcement or alert banner",
            category="alert",
            default_duration=6,
            content_types=("message",),
        ),
    )
}


def get_composition(composition_id: str) -> CompositionInfo:
    try:
        return COMPOSITIONS[composition_id]
    except KeyError:
        raise UnknownCompositionError(f"Unknown composition: {composition_id}") from None


def list_compositions() -> list[CompositionInfo]:
    return list(COMPOSITIONS.values())
