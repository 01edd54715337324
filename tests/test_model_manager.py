"""Tests for the model registry and model manager."""

from __future__ import annotations

import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from facelens.config import Settings
from facelens.ml.model_manager import MODEL_REGISTRY, ModelManager, get_spec

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": "/tmp/facelens_test_models",
        "model_ttl": 300,
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Model registry tests
# ---------------------------------------------------------------------------


class TestModelRegistry:
    def test_known_model_lookup(self) -> None:
        spec = get_spec("ultraface_rfb_320")
        assert spec.name == "ultraface_rfb_320"
        assert spec.input_size == (320, 240)

    def test_unknown_model_raises_keyerror(self) -> None:
        with pytest.raises(KeyError, match="Unknown model"):
            get_spec("nonexistent_model")

    def test_names_match_keys(self) -> None:
        assert all(name == spec.name for name, spec in MODEL_REGISTRY.items())

    def test_default_model_registered(self) -> None:
        assert Settings().detection_model in MODEL_REGISTRY

    def test_source_urls_point_at_model_files(self) -> None:
        for spec in MODEL_REGISTRY.values():
            assert spec.source_url.startswith("https://")
            assert spec.source_url.endswith("/" + spec.filename)

    def test_landmarker_uses_mediapipe_runtime(self) -> None:
        assert get_spec("face_landmarker").runtime == "mediapipe"
        assert get_spec("ultraface_rfb_320").runtime == "onnx"


# ---------------------------------------------------------------------------
# ModelManager tests
# ---------------------------------------------------------------------------


class TestModelManager:
    @patch("facelens.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_fetches_from_model_repo(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "version-RFB-320.onnx")
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path), model_repo="acme/face-models"))

        path = mgr.ensure_downloaded("ultraface_rfb_320")

        mock_download.assert_called_once_with(
            repo_id="acme/face-models",
            filename="version-RFB-320.onnx",
            local_dir=str(tmp_path),
        )
        assert path == tmp_path / "version-RFB-320.onnx"

    @patch("facelens.ml.model_manager.hf_hub_download")
    def test_missing_file_without_repo_names_source(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path)))

        with pytest.raises(FileNotFoundError, match="version-RFB-320.onnx") as exc_info:
            mgr.ensure_downloaded("ultraface_rfb_320")

        assert get_spec("ultraface_rfb_320").source_url in str(exc_info.value)
        assert "FACELENS_MODEL_REPO" in str(exc_info.value)
        mock_download.assert_not_called()

    @patch("facelens.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_uses_local_file(self, mock_download: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "version-slim-320.onnx"
        model_file.touch()
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path), model_repo="acme/face-models"))

        path = mgr.ensure_downloaded("ultraface_slim_320")

        mock_download.assert_not_called()
        assert path == model_file

    def test_ensure_downloaded_finds_task_file(self, tmp_path: Path) -> None:
        model_file = tmp_path / "face_landmarker.task"
        model_file.touch()
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path)))

        assert mgr.ensure_downloaded("face_landmarker") == model_file

    @patch("facelens.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_skips_cached_path(self, mock_download: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "elsewhere.onnx"
        model_file.touch()
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path)))
        # Simulate a previous download by setting the cached path.
        mgr._model_paths["ultraface_rfb_320"] = model_file

        path = mgr.ensure_downloaded("ultraface_rfb_320")

        mock_download.assert_not_called()
        assert path == model_file

    def test_get_session_rejects_non_onnx_model(self, tmp_path: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path)))
        with pytest.raises(ValueError, match="not an ONNX model"):
            mgr.get_session("face_landmarker")

    @patch("facelens.ml.model_manager.InferenceSession")
    @patch("facelens.ml.model_manager.hf_hub_download")
    def test_get_session_creates_and_caches(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "version-RFB-320.onnx")
        mock_session = MagicMock()
        mock_session_cls.return_value = mock_session
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path), model_repo="acme/face-models"))

        session1 = mgr.get_session("ultraface_rfb_320")
        session2 = mgr.get_session("ultraface_rfb_320")

        assert session1 is mock_session
        assert session2 is mock_session
        mock_session_cls.assert_called_once()

    @patch("facelens.ml.model_manager.InferenceSession")
    @patch("facelens.ml.model_manager.hf_hub_download")
    def test_get_loaded_models(self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "version-RFB-320.onnx")
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path), model_repo="acme/face-models"))

        assert mgr.get_loaded_models() == []
        mgr.get_session("ultraface_rfb_320")
        assert mgr.get_loaded_models() == ["ultraface_rfb_320"]

    @patch("facelens.ml.model_manager.InferenceSession")
    @patch("facelens.ml.model_manager.hf_hub_download")
    def test_unload_idle_models_removes_expired(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "version-RFB-320.onnx")
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path), model_ttl=1, model_repo="acme/face-models"))
        mgr.get_session("ultraface_rfb_320")

        # Fake the last_used time to be in the past.
        mgr._sessions["ultraface_rfb_320"].last_used = time.monotonic() - 10

        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []

    def test_unload_idle_skipped_when_ttl_zero(self, tmp_path: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path), model_ttl=0))
        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []

    def test_provider_building_cpu(self, tmp_path: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path), device="cpu"))
        assert mgr._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self, tmp_path: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path), device="cuda"))
        assert len(mgr._providers) == 2
        provider_name, provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self, tmp_path: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path), device="openvino"))
        provider_name, _provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert mgr._providers[1] == "CPUExecutionProvider"

    @patch("facelens.ml.model_manager.InferenceSession")
    @patch("facelens.ml.model_manager.hf_hub_download")
    def test_shutdown_clears_sessions(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "version-RFB-320.onnx")
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path), model_repo="acme/face-models"))
        mgr.get_session("ultraface_rfb_320")
        assert len(mgr.get_loaded_models()) == 1

        mgr.shutdown()
        assert mgr.get_loaded_models() == []

    def test_unknown_model_raises_keyerror(self, tmp_path: Path) -> None:
        mgr = ModelManager(_make_settings(models_dir=str(tmp_path)))
        with pytest.raises(KeyError, match="Unknown model"):
            mgr.ensure_downloaded("totally_fake_model")
