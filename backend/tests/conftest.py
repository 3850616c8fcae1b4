"""
Pytest fixtures for the render backend tests.

The Remotion CLI is never invoked here: ``FakeEngine`` and ``FakeBuilder``
stand in for it and let tests hold individual renders open with
``asyncio.Event`` gates.
"""

import asyncio
import os
import tempfile
from pathlib import Path

import pytest

# Keep config from creating storage dirs inside the source tree
os.environ.setdefault("RENDER_STORAGE_DIR", tempfile.mkdtemp(prefix="renderflow_test_"))

from models import OutputFormat, Quality, RenderJob  # noqa: E402
from services.bundle_manager import BundleManager  # noqa: E402
from services.engine import (  # noqa: E402
    BundleBuilder,
    CompositionParams,
    EngineProgress,
    RenderEngine,
)
from services.render_queue import RenderQueue  # noqa: E402
from services.render_service import RenderService  # noqa: E402


class FakeBuilder(BundleBuilder):
    """Counts builds; optionally blocks on ``gate`` or raises queued ``errors``."""

    def __init__(self) -> None:
        self.calls = 0
        self.gate: asyncio.Event | None = None
        self.errors: list[Exception] = []

    async def build(self, entry_point: str) -> str:
        self.calls += 1
        call = self.calls
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.errors:
            raise self.errors.pop(0)
        return f"/tmp/bundle-{call}"


class FakeEngine(RenderEngine):
    """Records every call and writes small placeholder files.

    Renders are keyed by output filename, or by composition id when the
    filename has no entry: ``gate(key)`` holds that render open until the
    event is set, ``failures[key]`` makes it raise.
    """

    def __init__(self) -> None:
        self.started: list[str] = []
        self.rendered: dict[str, tuple[CompositionParams, object]] = {}
        self.stills: list[tuple[str, int]] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.failures: dict[str, Exception] = {}
        self.still_error: Exception | None = None
        self.delay = 0.0
        self.active = 0
        self.max_active = 0

    def gate(self, name: str) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[name] = event
        return event

    async def resolve_composition(self, bundle_location, composition_id, input_props):
        return CompositionParams(
            id=composition_id,
            bundle_location=bundle_location,
            props=dict(input_props),
            width=640,
            height=360,
            fps=25,
            duration_in_frames=1,
        )

    async def render(self, composition, output_path, encoder, on_progress=None):
        name = Path(output_path).name
        self.started.append(name)
        self.rendered[name] = (composition, encoder)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            total = composition.duration_in_frames
            if on_progress:
                on_progress(EngineProgress(0.25, rendered_frames=total // 2))
            gate = self.gates.get(name, self.gates.get(composition.id))
            if gate is not None:
                await gate.wait()
            else:
                await asyncio.sleep(self.delay)
            failure = self.failures.get(name, self.failures.get(composition.id))
            if failure is not None:
                raise failure
            if on_progress:
                on_progress(EngineProgress(1.0, rendered_frames=total, encoded_frames=total))
            Path(output_path).write_bytes(b"mp4")
        finally:
            self.active -= 1

    async def render_still(self, composition, output_path, frame):
        self.stills.append((Path(output_path).name, frame))
        if self.still_error is not None:
            raise self.still_error
        Path(output_path).write_bytes(b"jpg")


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_builder() -> FakeBuilder:
    return FakeBuilder()


@pytest.fixture
def until():
    return wait_until


@pytest.fixture
def make_service(tmp_path, fake_engine, fake_builder):
    """Factory for a service wired to the fakes, writing into ``tmp_path``."""

    def _make(max_concurrent: int = 2, job_timeout: float | None = None) -> RenderService:
        return RenderService(
            queue=RenderQueue(max_concurrent=max_concurrent),
            bundles=BundleManager(fake_builder, "src/index.ts"),
            engine=fake_engine,
            output_dir=tmp_path,
            job_timeout=job_timeout,
        )

    return _make


@pytest.fixture
def make_job(tmp_path):
    """Factory for bare ``RenderJob`` records."""
    counter = iter(range(1, 1000))

    def _make(**overrides) -> RenderJob:
        n = next(counter)
        fields = dict(
            id=f"job{n}",
            composition_id="EventPromo",
            format=OutputFormat.LANDSCAPE,
            width=1920,
            height=1080,
            duration=10,
            fps=30,
            quality=Quality.STANDARD,
            output_path=str(tmp_path / f"job{n}.mp4"),
        )
        fields.update(overrides)
        return RenderJob(**fields)

    return _make
