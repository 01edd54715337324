"""Model manager: locate, load, cache, and evict detector models.

Model files are looked up in the local models directory first. When
FACELENS_MODEL_REPO names a HuggingFace repo mirroring the files, missing
ones are fetched from it. ONNX sessions are cached and evicted after a TTL.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from facelens.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------

_ULTRAFACE_RELEASES = "https://github.com/Linzaer/Ultra-Light-Fast-Generic-Face-Detector-1MB/raw/master/models/onnx"
_MEDIAPIPE_MODELS = "https://storage.googleapis.com/mediapipe-models"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single detector model."""

    name: str
    filename: str
    input_size: tuple[int, int]  # (width, height)
    license: str
    runtime: Literal["onnx", "mediapipe"]
    source_url: str  # upstream download location of `filename`


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "ultraface_rfb_320": ModelSpec(
        name="ultraface_rfb_320",
        filename="version-RFB-320.onnx",
        input_size=(320, 240),
        license="MIT",
        runtime="onnx",
        source_url=f"{_ULTRAFACE_RELEASES}/version-RFB-320.onnx",
    ),
    "ultraface_slim_320": ModelSpec(
        name="ultraface_slim_320",
        filename="version-slim-320.onnx",
        input_size=(320, 240),
        license="MIT",
        runtime="onnx",
        source_url=f"{_ULTRAFACE_RELEASES}/version-slim-320.onnx",
    ),
    "face_landmarker": ModelSpec(
        name="face_landmarker",
        filename="face_landmarker.task",
        input_size=(256, 256),
        license="Apache-2.0",
        runtime="mediapipe",
        source_url=f"{_MEDIAPIPE_MODELS}/face_landmarker/face_landmarker/float16/1/face_landmarker.task",
    ),
}


def get_spec(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


@dataclass
class _CachedSession:
    session: InferenceSession
    last_used: float


class ModelManager:
    """Locates model files and loads, caches, and evicts ONNX sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._sessions: dict[str, _CachedSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local model file, fetching it from the model repo if missing.

        Raises:
            KeyError: If the model is not registered.
            FileNotFoundError: If the file is not in the models directory and
                no model repo is configured.
        """
        spec = get_spec(model_name)

        cached = self._model_paths.get(model_name)
        if cached is not None and cached.exists():
            return cached

        local = self._models_dir / spec.filename
        if local.exists():
            self._model_paths[model_name] = local
            return local

        repo_id = self._settings.model_repo
        if repo_id is None:
            raise FileNotFoundError(
                f"{spec.filename} not found in {self._models_dir}; "
                f"download it from {spec.source_url} or set FACELENS_MODEL_REPO"
            )

        downloaded = Path(
            hf_hub_download(
                repo_id=repo_id,
                filename=spec.filename,
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[model_name] = downloaded
        logger.info("Downloaded %s from %s to %s", model_name, repo_id, downloaded)
        return downloaded

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached InferenceSession, creating one if needed."""
        if get_spec(model_name).runtime != "onnx":
            raise ValueError(f"{model_name} is not an ONNX model")

        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                cached.last_used = time.monotonic()
                return cached.session

        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Another thread may have created it while we loaded.
            existing = self._sessions.get(model_name)
            if existing is not None:
                existing.last_used = time.monotonic()
                return existing.session
            self._sessions[model_name] = _CachedSession(
                session=session,
                last_used=time.monotonic(),
            )
            logger.info("Loaded session for %s", model_name)
            return session

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return list(self._sessions.keys())

    def unload_idle_models(self) -> None:
        """Remove sessions that have exceeded the configured TTL."""
        ttl = self._settings.model_ttl
        if ttl == 0:
            return

        now = time.monotonic()
        with self._lock:
            expired = [name for name, cached in self._sessions.items() if (now - cached.last_used) > ttl]
            for name in expired:
                del self._sessions[name]
                logger.info("Evicted idle session for %s", name)

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
