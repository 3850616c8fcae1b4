"""Rendering engine contracts consumed by the render service.

The render service never talks to a renderer directly; it goes through these
two interfaces so the Remotion CLI adapter can be swapped for a fake in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from services.compositions import QualityPreset


@dataclass
class CompositionParams:
    """A composition resolved against a bundle, ready to hand to the engine."""

    id: str
    bundle_location: str
    props: dict[str, Any] = field(default_factory=dict)
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[int] = None
    duration_in_frames: Optional[int] = None


@dataclass
class EngineProgress:
    progress: float  # 0.0 to 1.0
    rendered_frames: int = 0
    encoded_frames: int = 0


ProgressHandler = Callable[[EngineProgress], None]


class RenderEngine(ABC):
    """Headless renderer turning a composition into a video or a still."""

    @abstractmethod
    async def resolve_composition(
        self, bundle_location: str, composition_id: str, input_props: dict[str, Any]
    ) -> CompositionParams:
        """Look the composition up inside the bundle."""

    @abstractmethod
    async def render(
        self,
        composition: CompositionParams,
        output_path: str,
        encoder: QualityPreset,
        on_progress: Optional[ProgressHandler] = None,
    ) -> None:
        """Render the full composition to ``output_path``."""

    @abstractmethod
    async def render_still(
        self, composition: CompositionParams, output_path: str, frame: int
    ) -> None:
        """Render a single frame to ``output_path``."""


class BundleBuilder(ABC):
    @abstractmethod
    async def build(self, entry_point: str) -> str:
        """Compile the compositions and return the bundle location."""
