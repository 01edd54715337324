"""Environment-based configuration for FaceLens."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from facelens.camera.frames import LensFacing, PixelFormat
from facelens.overlay.mapper import FitMode


class CameraConfig(BaseModel):
    """One selectable camera."""

    device: int | str = 0
    lens_facing: LensFacing = LensFacing.FRONT
    sensor_orientation: int = 0


class Settings(BaseSettings):
    """Application settings loaded from FACELENS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FACELENS_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: str = "INFO"

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Detection model
    detection_model: str = "ultraface_rfb_320"
    models_dir: str = "models"
    # HuggingFace repo mirroring the model files (None = local files only)
    model_repo: str | None = None
    score_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    nms_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    max_faces: int = Field(default=4, ge=1)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Model management
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Capture (None = platform default pixel format)
    pixel_format: PixelFormat | None = None
    cameras: list[CameraConfig] = Field(default_factory=lambda: [CameraConfig()])
    capture_width: int = Field(default=640, ge=1)
    capture_height: int = Field(default=480, ge=1)

    # Overlay
    fit_mode: FitMode = FitMode.UNIFORM


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
