"""Tests for camera plane packing and detection buffer decoding."""

from __future__ import annotations

import numpy as np
import pytest

from facelens.camera.converter import FrameConverter
from facelens.camera.frames import DetectionInput, InputRotation, LensFacing, PixelFormat
from facelens.camera.source import OpenCvFrameSource, pack_planes
from facelens.config import CameraConfig
from facelens.ml.preprocessing import decode_frame, preprocess_for_detection

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _split_image(height: int = 4, width: int = 6) -> np.ndarray:
    """Left half black, right half white."""
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:, width // 2 :] = 255
    return image


def _source(pixel_format: PixelFormat, orientation: int = 0) -> OpenCvFrameSource:
    camera = CameraConfig(device=0, lens_facing=LensFacing.BACK, sensor_orientation=orientation)
    return OpenCvFrameSource(camera, pixel_format)


# ---------------------------------------------------------------------------
# Plane packing
# ---------------------------------------------------------------------------


class TestPackPlanes:
    def test_nv21_has_two_planes(self) -> None:
        planes = pack_planes(np.zeros((4, 6, 3), dtype=np.uint8), PixelFormat.NV21)
        assert [len(p.data) for p in planes] == [24, 12]
        assert [p.bytes_per_row for p in planes] == [6, 6]

    def test_yuv420_has_three_planes(self) -> None:
        planes = pack_planes(np.zeros((4, 6, 3), dtype=np.uint8), PixelFormat.YUV420)
        assert [len(p.data) for p in planes] == [24, 6, 6]
        assert [p.bytes_per_row for p in planes] == [6, 3, 3]

    def test_bgra_has_one_plane(self) -> None:
        planes = pack_planes(np.zeros((4, 6, 3), dtype=np.uint8), PixelFormat.BGRA8888)
        assert len(planes) == 1
        assert planes[0].bytes_per_row == 24

    def test_odd_frames_cropped_for_yuv(self) -> None:
        frame = _source(PixelFormat.NV21).to_raw_frame(np.zeros((5, 7, 3), dtype=np.uint8))
        assert (frame.width, frame.height) == (6, 4)

    def test_raw_frame_carries_camera_metadata(self) -> None:
        frame = _source(PixelFormat.BGRA8888, orientation=270).to_raw_frame(np.zeros((5, 7, 3), dtype=np.uint8))
        assert (frame.width, frame.height) == (7, 5)
        assert frame.sensor_orientation == 270
        assert frame.lens_facing is LensFacing.BACK


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class TestDecodeFrame:
    @pytest.mark.parametrize("pixel_format", list(PixelFormat))
    def test_uniform_grey_survives_conversion(self, pixel_format: PixelFormat) -> None:
        image = np.full((4, 6, 3), 128, dtype=np.uint8)
        raw = _source(pixel_format).to_raw_frame(image)
        decoded = decode_frame(FrameConverter(pixel_format).convert(raw))

        assert decoded.shape == (4, 6, 3)
        assert np.abs(decoded.astype(int) - 128).max() <= 3

    def test_rotation_applied(self) -> None:
        raw = _source(PixelFormat.BGRA8888, orientation=90).to_raw_frame(_split_image())
        decoded = decode_frame(FrameConverter(PixelFormat.BGRA8888).convert(raw))

        # Clockwise quarter turn: the black left half ends up on top.
        assert decoded.shape == (6, 4, 3)
        assert not decoded[:3].any()
        assert (decoded[3:] == 255).all()

    def test_padded_rows_ignored(self) -> None:
        # 2x2 BGRA image in rows padded to 32 bytes.
        rows = np.zeros((2, 32), dtype=np.uint8)
        rows[:, :8] = 200
        detection_input = DetectionInput(
            data=rows.tobytes(),
            width=2,
            height=2,
            rotation=InputRotation.DEG_0,
            pixel_format=PixelFormat.BGRA8888,
            bytes_per_row=32,
        )
        decoded = decode_frame(detection_input)
        assert decoded.shape == (2, 2, 3)
        assert (decoded == 200).all()

    def test_short_buffer_raises(self) -> None:
        detection_input = DetectionInput(
            data=b"\x00" * 10,
            width=4,
            height=4,
            rotation=InputRotation.DEG_0,
            pixel_format=PixelFormat.NV21,
            bytes_per_row=4,
        )
        with pytest.raises(ValueError, match="Buffer too short"):
            decode_frame(detection_input)

    def test_odd_yuv_dimensions_raise(self) -> None:
        detection_input = DetectionInput(
            data=b"\x00" * 64,
            width=3,
            height=4,
            rotation=InputRotation.DEG_0,
            pixel_format=PixelFormat.YUV420,
            bytes_per_row=3,
        )
        with pytest.raises(ValueError, match="even dimensions"):
            decode_frame(detection_input)


class TestPreprocessForDetection:
    def test_tensor_shape_and_range(self) -> None:
        tensor = preprocess_for_detection(np.full((480, 640, 3), 255, dtype=np.uint8), (320, 240))
        assert tensor.shape == (1, 3, 240, 320)
        assert tensor.dtype == np.float32
        assert tensor.max() == pytest.approx(1.0)
