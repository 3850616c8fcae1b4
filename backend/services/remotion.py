"""Remotion adapter – bundling via ``npx remotion``, rendering via ``@remotion/renderer``."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shlex
import shutil
import uuid
from pathlib import Path
from typing import Any, Callable, Optional

import config
from services.compositions import QualityPreset
from services.engine import (
    BundleBuilder,
    CompositionParams,
    EngineProgress,
    ProgressHandler,
    RenderEngine,
)

logger = logging.getLogger("renderflow.remotion")

_PROGRESS_RE = re.compile(r"\b(Rendered|Encoded)\s+(\d+)\s*/\s*(\d+)")


class RemotionError(RuntimeError):
    """Raised when a Remotion CLI invocation exits non-zero."""


def check_remotion(cli: str = config.REMOTION_CLI) -> bool:
    """Return True if the launcher of ``cli`` (npx, node, ...) is on PATH."""
    return shutil.which(shlex.split(cli)[0]) is not None


class ProgressParser:
    """Turn ``Rendered a/b`` / ``Encoded a/b`` log lines into progress updates.

    Rendering and encoding each account for half of the overall fraction.
    """

    def __init__(self, on_progress: Optional[ProgressHandler]) -> None:
        self.on_progress = on_progress
        self.rendered = 0
        self.encoded = 0
        self.total = 0

    def feed(self, line: str) -> None:
        changed = False
        for kind, done, total in _PROGRESS_RE.findall(line):
            self.total = max(self.total, int(total))
            if kind == "Rendered":
                self.rendered = max(self.rendered, int(done))
            else:
                self.encoded = max(self.encoded, int(done))
            changed = True
        if changed and self.total and self.on_progress:
            fraction = (self.rendered + self.encoded) / (2 * self.total)
            self.on_progress(
                EngineProgress(
                    progress=min(fraction, 1.0),
                    rendered_frames=self.rendered,
                    encoded_frames=self.encoded,
                )
            )


class RemotionCLI:
    """Runs Remotion CLI subcommands inside the renderer project."""

    def __init__(
        self,
        project_dir: Path = config.RENDERER_DIR,
        cli: str = config.REMOTION_CLI,
    ) -> None:
        self.project_dir = Path(project_dir)
        self.cli = shlex.split(cli)

    async def run(
        self,
        args: list[str],
        description: str,
        on_line: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Run a subcommand and return its stdout.

        Cancelling the awaiting task kills the subprocess.
        """
        cmd = [*self.cli, *args]
        logger.info("Remotion [%s]: %s …", description, " ".join(cmd[:6]))
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(self.project_dir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stderr_task = asyncio.ensure_future(process.stderr.read())
        lines: list[str] = []
        try:
            async for raw in process.stdout:
                # Progress lines are redrawn with carriage returns
                for line in raw.decode(errors="replace").split("\r"):
                    line = line.strip()
                    if not line:
                        continue
                    lines.append(line)
                    if on_line:
                        on_line(line)
            stderr = await stderr_task
            returncode = await process.wait()
        except asyncio.CancelledError:
            stderr_task.cancel()
            if process.returncode is None:
                logger.warning("Remotion [%s] cancelled, killing pid %s", description, process.pid)
                process.kill()
                await process.wait()
            raise

        if returncode != 0:
            error_msg = stderr.decode(errors="replace")[-2000:] if stderr else "Unknown error"
            logger.error("Remotion failed [%s]: %s", description, error_msg)
            raise RemotionError(f"Remotion failed ({description}): {error_msg}")
        logger.info("Remotion [%s] completed successfully.", description)
        return "\n".join(lines)


class RemotionBundler(BundleBuilder):
    def __init__(self, cli: RemotionCLI, bundles_dir: Path = config.BUNDLES_DIR) -> None:
        self.cli = cli
        self.bundles_dir = Path(bundles_dir)

    async def build(self, entry_point: str) -> str:
        out_dir = self.bundles_dir / f"bundle-{uuid.uuid4().hex[:8]}"
        await self.cli.run(
            ["bundle", entry_point, f"--out-dir={out_dir}"],
            "bundle",
        )
        return str(out_dir)


class RemotionEngine(RenderEngine):
    """Resolves compositions with the CLI; renders through ``remotion_render.mjs``.

    The script applies the job's size, fps and frame count on top of the
    registered composition before calling ``renderMedia`` / ``renderStill``.
    """

    def __init__(
        self,
        cli: RemotionCLI,
        node: Optional[RemotionCLI] = None,
        script: Path = config.RENDER_SCRIPT,
        jpeg_quality: int = config.THUMBNAIL_JPEG_QUALITY,
    ) -> None:
        self.cli = cli
        self.node = node or RemotionCLI(cli.project_dir, config.NODE_BIN)
        self.script = Path(script)
        self.jpeg_quality = jpeg_quality

    async def resolve_composition(
        self, bundle_location: str, composition_id: str, input_props: dict[str, Any]
    ) -> CompositionParams:
        out = await self.cli.run(
            ["compositions", bundle_location, f"--props={json.dumps(input_props)}", "--quiet"],
            "compositions",
        )
        available = out.split()
        if composition_id not in available:
            raise RemotionError(
                f"Composition {composition_id} not found in bundle "
                f"(available: {', '.join(available) or 'none'})"
            )
        return CompositionParams(
            id=composition_id, bundle_location=bundle_location, props=dict(input_props)
        )

    async def render(
        self,
        composition: CompositionParams,
        output_path: str,
        encoder: QualityPreset,
        on_progress: Optional[ProgressHandler] = None,
    ) -> None:
        parser = ProgressParser(on_progress)
        payload = self._payload(composition, output_path)
        payload.update(codec=encoder.codec, crf=encoder.crf)
        await self.node.run(
            [str(self.script), "render", json.dumps(payload)],
            f"render {composition.id}",
            on_line=parser.feed,
        )

    async def render_still(
        self, composition: CompositionParams, output_path: str, frame: int
    ) -> None:
        payload = self._payload(composition, output_path)
        payload.update(frame=frame, jpegQuality=self.jpeg_quality)
        await self.node.run(
            [str(self.script), "still", json.dumps(payload)],
            f"still {composition.id}",
        )

    @staticmethod
    def _payload(composition: CompositionParams, output_path: str) -> dict[str, Any]:
        return {
            "bundle": composition.bundle_location,
            "id": composition.id,
            "props": composition.props,
            "width": composition.width,
            "height": composition.height,
            "fps": composition.fps,
            "durationInFrames": composition.duration_in_frames,
            "output": output_path,
        }
