"""Application configuration."""

import os
from pathlib import Path

# Base directories
BASE_DIR = Path(__file__).resolve().parent
STORAGE_DIR = Path(os.getenv("RENDER_STORAGE_DIR", BASE_DIR / "storage"))
OUTPUTS_DIR = Path(os.getenv("RENDER_OUTPUT_DIR", STORAGE_DIR / "outputs"))
BUNDLES_DIR = STORAGE_DIR / "bundles"

# Remotion project holding the compositions
RENDERER_DIR = Path(os.getenv("RENDERER_DIR", BASE_DIR.parent / "renderer"))
RENDERER_ENTRY_POINT = os.getenv("RENDERER_ENTRY_POINT", "src/index.ts")
REMOTION_CLI = os.getenv("REMOTION_CLI", "npx remotion")
NODE_BIN = os.getenv("NODE_BIN", "node")
# Node script driving @remotion/renderer for videos and stills
RENDER_SCRIPT = BASE_DIR / "services" / "remotion_render.mjs"

# Ensure directories exist
for d in [OUTPUTS_DIR, BUNDLES_DIR]:
    d.mkdir(parents=True, exist_ok=True)

# Server settings
HOST = "0.0.0.0"
PORT = int(os.getenv("PORT", "8000"))
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
).split(",")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Render settings
RENDER_CONCURRENCY = int(os.getenv("RENDER_CONCURRENCY", "2"))
RENDER_JOB_TIMEOUT = float(os.getenv("RENDER_JOB_TIMEOUT", "1800"))  # seconds, 0 disables
DEFAULT_FPS = 30
THUMBNAIL_JPEG_QUALITY = 80
