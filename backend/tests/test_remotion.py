"""Tests for the Remotion CLI adapter.

The subprocess is replaced by ``FakeProcess`` so no Node toolchain is needed.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from models import Quality
from services.compositions import QUALITY_PRESETS
from services.engine import CompositionParams
from services.remotion import (
    ProgressParser,
    RemotionBundler,
    RemotionCLI,
    RemotionEngine,
    RemotionError,
)


class FakeProcess:
    def __init__(self, stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0):
        self.pid = 4242
        self.returncode = None
        self._exit_code = returncode
        self.killed = False
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.stdout.feed_data(stdout)
        self.stdout.feed_eof()
        self.stderr.feed_data(stderr)
        self.stderr.feed_eof()

    async def wait(self):
        self.returncode = self._exit_code
        return self.returncode

    def kill(self):
        self.killed = True
        self._exit_code = -9


@pytest.fixture
def spawn(monkeypatch):
    """Patch subprocess creation; returns the AsyncMock recording calls."""

    def _install(process: FakeProcess) -> AsyncMock:
        mock = AsyncMock(return_value=process)
        monkeypatch.setattr(asyncio, "create_subprocess_exec", mock)
        return mock

    return _install


# =============================================================================
# Progress parsing
# =============================================================================


class TestProgressParser:
    def test_rendered_then_encoded(self):
        updates = []
        parser = ProgressParser(updates.append)

        parser.feed("Rendered 50/100, time remaining: 3s")
        parser.feed("Rendered 100/100")
        parser.feed("Encoded 100/100")

        assert [u.progress for u in updates] == [0.25, 0.5, 1.0]
        assert updates[0].encoded_frames == 0
        assert updates[-1].rendered_frames == 100
        assert updates[-1].encoded_frames == 100

    def test_combined_line(self):
        updates = []
        parser = ProgressParser(updates.append)

        parser.feed("Rendered 80/100, Encoded 40/100")

        assert len(updates) == 1
        assert updates[0].progress == pytest.approx(0.6)

    def test_ignores_other_output(self):
        updates = []
        parser = ProgressParser(updates.append)

        parser.feed("Bundling 42%")
        parser.feed("")

        assert updates == []

    def test_counts_never_go_backwards(self):
        updates = []
        parser = ProgressParser(updates.append)

        parser.feed("Rendered 60/100")
        parser.feed("Rendered 10/100")

        assert updates[-1].rendered_frames == 60


# =============================================================================
# CLI runner
# =============================================================================


class TestRemotionCLI:
    @pytest.mark.asyncio
    async def test_returns_stdout_lines(self, spawn, tmp_path):
        mock = spawn(FakeProcess(stdout=b"EventPromo\nAlert\n"))
        cli = RemotionCLI(tmp_path, "npx remotion")

        out = await cli.run(["compositions", "/b"], "compositions")

        assert out == "EventPromo\nAlert"
        args = mock.call_args.args
        assert args[:4] == ("npx", "remotion", "compositions", "/b")
        assert mock.call_args.kwargs["cwd"] == str(tmp_path)

    @pytest.mark.asyncio
    async def test_splits_carriage_return_redraws(self, spawn, tmp_path):
        spawn(FakeProcess(stdout=b"Rendered 1/4\rRendered 2/4\rRendered 4/4\n"))
        seen = []

        await RemotionCLI(tmp_path).run(["render"], "render", on_line=seen.append)

        assert seen == ["Rendered 1/4", "Rendered 2/4", "Rendered 4/4"]

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_with_stderr(self, spawn, tmp_path):
        spawn(FakeProcess(stderr=b"Error: composition threw", returncode=1))

        with pytest.raises(RemotionError, match="composition threw"):
            await RemotionCLI(tmp_path).run(["render"], "render")


# =============================================================================
# Engine and bundler
# =============================================================================


class TestRemotionEngine:
    @pytest.mark.asyncio
    async def test_resolve_composition(self):
        cli = AsyncMock()
        cli.run.return_value = "EventPromo\nEventReel\nAlert"
        engine = RemotionEngine(cli, node=AsyncMock())

        params = await engine.resolve_composition("/bundle", "Alert", {"level": "high"})

        assert params.id == "Alert"
        assert params.bundle_location == "/bundle"
        assert params.props == {"level": "high"}

    @pytest.mark.asyncio
    async def test_resolve_missing_composition(self):
        cli = AsyncMock()
        cli.run.return_value = "EventPromo"
        engine = RemotionEngine(cli, node=AsyncMock())

        with pytest.raises(RemotionError, match="Branding not found"):
            await engine.resolve_composition("/bundle", "Branding", {})

    @pytest.mark.asyncio
    async def test_render_overrides_fps_and_length(self):
        node = AsyncMock()
        engine = RemotionEngine(AsyncMock(), node=node, script="/srv/remotion_render.mjs")
        composition = CompositionParams(
            id="EventPromo",
            bundle_location="/bundle",
            props={"title": "Launch"},
            width=1920,
            height=1080,
            fps=60,
            duration_in_frames=1200,  # 20 s, twice the registered length
        )

        await engine.render(composition, "/out/promo.mp4", QUALITY_PRESETS[Quality.HIGH])

        script, command, raw = node.run.call_args.args[0]
        payload = json.loads(raw)
        assert (script, command) == ("/srv/remotion_render.mjs", "render")
        assert payload["fps"] == 60
        assert payload["durationInFrames"] == 1200
        assert (payload["width"], payload["height"]) == (1920, 1080)
        assert payload["props"] == {"title": "Launch"}
        assert payload["codec"] == "h264"
        assert payload["crf"] == 15
        assert payload["output"] == "/out/promo.mp4"
        assert payload["bundle"] == "/bundle"

    @pytest.mark.asyncio
    async def test_render_progress_from_script_output(self, spawn, tmp_path):
        spawn(
            FakeProcess(
                stdout=b"Rendered 600/1200, Encoded 0/1200\n"
                b"Rendered 1200/1200, Encoded 1200/1200\n"
            )
        )
        engine = RemotionEngine(RemotionCLI(tmp_path), node=RemotionCLI(tmp_path, "node"))
        composition = CompositionParams(
            id="EventPromo", bundle_location="/bundle", fps=60, duration_in_frames=1200
        )
        updates = []

        await engine.render(
            composition, str(tmp_path / "p.mp4"), QUALITY_PRESETS[Quality.DRAFT], updates.append
        )

        assert [u.progress for u in updates] == [0.25, 1.0]
        assert updates[-1].encoded_frames == 1200

    @pytest.mark.asyncio
    async def test_render_still_payload(self):
        node = AsyncMock()
        engine = RemotionEngine(AsyncMock(), node=node, jpeg_quality=80)
        composition = CompositionParams(
            id="Alert", bundle_location="/bundle", props={}, fps=60, duration_in_frames=1200
        )

        await engine.render_still(composition, "/out/a_thumb.jpg", frame=300)

        _, command, raw = node.run.call_args.args[0]
        payload = json.loads(raw)
        assert command == "still"
        assert payload["frame"] == 300
        assert payload["jpegQuality"] == 80
        assert payload["durationInFrames"] == 1200
        assert payload["output"] == "/out/a_thumb.jpg"

    def test_default_node_runner_shares_project_dir(self, tmp_path):
        engine = RemotionEngine(RemotionCLI(tmp_path, "npx remotion"))

        assert engine.node.project_dir == tmp_path
        assert engine.node.cli == ["node"]

    @pytest.mark.asyncio
    async def test_bundler_writes_into_bundles_dir(self, tmp_path):
        cli = AsyncMock()
        bundler = RemotionBundler(cli, bundles_dir=tmp_path)

        location = await bundler.build("src/index.ts")

        args = cli.run.call_args.args[0]
        assert args[:2] == ["bundle", "src/index.ts"]
        assert args[2] == f"--out-dir={location}"
        assert location.startswith(str(tmp_path))
