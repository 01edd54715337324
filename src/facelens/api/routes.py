"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

import cv2
from fastapi import APIRouter, HTTPException, Query, Request, Response, status

from facelens.api.schemas import (
    CameraResponse,
    ErrorResponse,
    FacesResponse,
    FrameStats,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    ScreenFace,
    TextLine,
)
from facelens.camera.frames import Size
from facelens.ml.model_manager import MODEL_REGISTRY
from facelens.overlay.mapper import FitMode
from facelens.overlay.renderer import OverlayRenderer

if TYPE_CHECKING:
    from facelens.config import Settings
    from facelens.pipeline.controller import CameraPipeline

router = APIRouter(prefix="/api/v1")

SurfaceDim = Annotated[int, Query(gt=0, le=8192)]


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_pipeline(request: Request) -> CameraPipeline:
    pipeline: CameraPipeline = request.app.state.pipeline
    return pipeline


def _get_renderer(request: Request, fit: FitMode | None) -> OverlayRenderer:
    renderer: OverlayRenderer = request.app.state.renderer
    if fit is None or fit is _get_settings(request).fit_mode:
        return renderer
    return OverlayRenderer(style=renderer.style, fit_mode=fit)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Pipeline health",
)
async def health(request: Request) -> HealthResponse:
    """Report streaming status, throttling counters, and the current face count."""
    settings = _get_settings(request)
    pipeline = _get_pipeline(request)
    camera = pipeline.active_camera
    stats = pipeline.throttler.stats
    error = pipeline.error
    return HealthResponse(
        status="unavailable" if error is not None else "ok",
        detail=str(error) if error is not None else None,
        lens_facing=camera.lens_facing.value if camera is not None else None,
        camera_count=pipeline.camera_count,
        busy=pipeline.throttler.busy,
        faces=len(pipeline.render_state.faces),
        model=settings.detection_model,
        frames=FrameStats(
            accepted=stats.accepted,
            dropped=stats.dropped,
            conversion_failed=stats.conversion_failed,
            detection_failed=stats.detection_failed,
            completed=stats.completed,
            discarded=stats.discarded,
        ),
    )


@router.get(
    "/faces",
    response_model=FacesResponse,
    summary="Latest faces in surface coordinates",
)
async def faces(
    request: Request,
    width: SurfaceDim,
    height: SurfaceDim,
    fit: FitMode | None = None,
) -> FacesResponse:
    """Map the latest detection result onto a surface of the given size."""
    state = _get_pipeline(request).render_state
    renderer = _get_renderer(request, fit)
    mapped = renderer.map_faces(state, Size(width=width, height=height))
    return FacesResponse(
        width=width,
        height=height,
        lens_facing=state.lens_facing.value,
        image_width=state.image_size.width if state.image_size is not None else None,
        image_height=state.image_size.height if state.image_size is not None else None,
        faces=[
            ScreenFace(
                left=face.box[0],
                top=face.box[1],
                right=face.box[2],
                bottom=face.box[3],
                landmarks={kind.value: point for kind, point in face.landmarks.items()},
                annotation=[TextLine(text="".join(span.text for span in line)) for line in face.annotation],
            )
            for face in mapped
        ],
    )


@router.get(
    "/overlay.png",
    response_class=Response,
    responses={status.HTTP_200_OK: {"content": {"image/png": {}}}},
    summary="Rendered overlay",
)
async def overlay(
    request: Request,
    width: SurfaceDim,
    height: SurfaceDim,
    fit: FitMode | None = None,
) -> Response:
    """Render the latest faces onto a transparent PNG of the given size."""
    state = _get_pipeline(request).render_state
    canvas = _get_renderer(request, fit).render(state, Size(width=width, height=height))
    ok, encoded = cv2.imencode(".png", canvas)
    if not ok:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="PNG encoding failed")
    return Response(content=encoded.tobytes(), media_type="image/png")


@router.post(
    "/camera/toggle",
    response_model=CameraResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Switch to the next camera",
)
async def toggle_camera(request: Request) -> CameraResponse:
    """Stop the current stream, clear the overlay, and start the next camera."""
    pipeline = _get_pipeline(request)
    if pipeline.camera_count < 2:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cannot toggle camera: fewer than two cameras available",
        )
    await pipeline.toggle_camera()
    camera = pipeline.active_camera
    error = pipeline.error
    return CameraResponse(
        lens_facing=camera.lens_facing.value if camera is not None else None,
        streaming=pipeline.streaming,
        detail=str(error) if error is not None else None,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available detector models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available detector models and which one is active."""
    settings = _get_settings(request)
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                input_width=spec.input_size[0],
                input_height=spec.input_size[1],
                status="active" if spec.name == settings.detection_model else "available",
                license=spec.license,
                runtime=spec.runtime,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
