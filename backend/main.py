"""FastAPI application entry point."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from routes.compositions import router as compositions_router
from routes.render import router as render_router
from services.bundle_manager import BundleManager
from services.remotion import RemotionBundler, RemotionCLI, RemotionEngine, check_remotion
from services.render_queue import RenderQueue
from services.render_service import RenderService

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("renderflow")

# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------
app = FastAPI(
    title="RenderFlow",
    description="Render branded videos from content and composition templates",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
app.include_router(render_router, prefix="/api/render", tags=["render"])
app.include_router(compositions_router, prefix="/api/compositions", tags=["compositions"])


def build_render_service() -> RenderService:
    cli = RemotionCLI(config.RENDERER_DIR, config.REMOTION_CLI)
    return RenderService(
        queue=RenderQueue(max_concurrent=config.RENDER_CONCURRENCY),
        bundles=BundleManager(RemotionBundler(cli), config.RENDERER_ENTRY_POINT),
        engine=RemotionEngine(cli),
        output_dir=config.OUTPUTS_DIR,
        job_timeout=config.RENDER_JOB_TIMEOUT,
    )


# ---------------------------------------------------------------------------
# Render service (jobs run as tasks on the server's event loop)
# ---------------------------------------------------------------------------
@app.on_event("startup")
async def startup_event() -> None:
    for launcher in (config.REMOTION_CLI, config.NODE_BIN):
        if not check_remotion(launcher):
            logger.warning("%s not found on PATH; renders will fail.", launcher)
    app.state.render_service = build_render_service()
    logger.info("Render service started (concurrency=%d).", config.RENDER_CONCURRENCY)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    service = getattr(app.state, "render_service", None)
    if service:
        await service.shutdown()


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------
@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "renderer": check_remotion() and check_remotion(config.NODE_BIN),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT)
