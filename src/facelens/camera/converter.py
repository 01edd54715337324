"""Raw camera frame -> detector input conversion."""

from __future__ import annotations

import logging
import sys

from facelens.camera.frames import DetectionInput, InputRotation, PixelFormat, RawFrame
from facelens.errors import ConversionError

logger = logging.getLogger(__name__)


def default_pixel_format() -> PixelFormat:
    """Return the pixel format the current platform's camera stack delivers."""
    if sys.platform == "darwin":
        return PixelFormat.BGRA8888
    return PixelFormat.NV21


class FrameConverter:
    """Turns multi-plane RawFrames into DetectionInputs.

    The pixel format is fixed for the lifetime of the converter; it is a
    property of the runtime, not of individual frames.
    """

    def __init__(self, pixel_format: PixelFormat | None = None) -> None:
        self._pixel_format = pixel_format or default_pixel_format()

    @property
    def pixel_format(self) -> PixelFormat:
        return self._pixel_format

    def convert(self, frame: RawFrame) -> DetectionInput:
        """Concatenate the frame's planes into one buffer.

        Plane strides are passed through as metadata; padding is not removed.

        Raises:
            ConversionError: If the frame has no planes or a non-positive size.
        """
        if not frame.planes:
            raise ConversionError("Frame has no pixel planes")
        if frame.width <= 0 or frame.height <= 0:
            raise ConversionError(f"Invalid frame size {frame.width}x{frame.height}")

        return DetectionInput(
            data=b"".join(plane.data for plane in frame.planes),
            width=frame.width,
            height=frame.height,
            rotation=InputRotation.from_degrees(frame.sensor_orientation),
            pixel_format=self._pixel_format,
            bytes_per_row=frame.planes[0].bytes_per_row,
        )
