"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from facelens.config import CameraConfig, Settings
    from facelens.ml.face_detector import FaceDetector

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facelens.api.routes import router
from facelens.camera.converter import FrameConverter
from facelens.camera.source import OpenCvFrameSource
from facelens.config import get_settings
from facelens.ml.face_mesh import FaceMeshDetector
from facelens.ml.inference import InferencePool
from facelens.ml.model_manager import ModelManager, get_spec
from facelens.ml.ultraface import UltraFaceDetector
from facelens.overlay.renderer import OverlayRenderer
from facelens.pipeline.controller import CameraPipeline

logger = logging.getLogger(__name__)

EVICTION_INTERVAL_SECONDS: float = 60.0


def create_detector(settings: Settings, model_manager: ModelManager) -> FaceDetector:
    """Build the detector for the configured model's runtime."""
    spec = get_spec(settings.detection_model)
    if spec.runtime == "mediapipe":
        return FaceMeshDetector(
            model_manager,
            model_name=spec.name,
            max_faces=settings.max_faces,
            min_confidence=settings.score_threshold,
        )
    return UltraFaceDetector(
        model_manager,
        model_name=spec.name,
        score_threshold=settings.score_threshold,
        nms_threshold=settings.nms_threshold,
    )


def create_pipeline(settings: Settings, detector: FaceDetector, pool: InferencePool) -> CameraPipeline:
    """Assemble the camera pipeline from settings."""
    converter = FrameConverter(settings.pixel_format)

    def source_factory(camera: CameraConfig) -> OpenCvFrameSource:
        return OpenCvFrameSource(
            camera,
            converter.pixel_format,
            capture_width=settings.capture_width,
            capture_height=settings.capture_height,
        )

    return CameraPipeline(settings.cameras, source_factory, converter, detector, pool)


async def _evict_idle_models(model_manager: ModelManager) -> None:
    while True:
        await asyncio.sleep(EVICTION_INTERVAL_SECONDS)
        model_manager.unload_idle_models()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: start the camera pipeline, stop it on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FaceLens (device=%s, model=%s, cameras=%d, fit=%s)",
        settings.device,
        settings.detection_model,
        len(settings.cameras),
        settings.fit_mode,
    )

    pool = InferencePool()
    model_manager = ModelManager(settings)
    detector = create_detector(settings, model_manager)
    try:
        await pool.run(detector.load)
    except Exception:
        logger.exception("Detection model %s could not be loaded", settings.detection_model)
        pool.shutdown()
        raise

    pipeline = create_pipeline(settings, detector, pool)
    app.state.inference_pool = pool
    app.state.model_manager = model_manager
    app.state.pipeline = pipeline
    app.state.renderer = OverlayRenderer(fit_mode=settings.fit_mode)

    if await pipeline.start():
        logger.info("FaceLens ready")
    else:
        logger.error("FaceLens started without a camera: %s", pipeline.error)
    eviction = asyncio.create_task(_evict_idle_models(model_manager))
    yield

    logger.info("Shutting down FaceLens")
    eviction.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await eviction
    await pipeline.stop()
    await pool.run(detector.close)
    pool.shutdown()
    model_manager.shutdown()
    logger.info("FaceLens shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FaceLens",
        description="Real-time camera face detection with overlay geometry",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
