"""Frame data structures shared by the capture source, converter, and detector."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum, StrEnum

logger = logging.getLogger(__name__)


class LensFacing(StrEnum):
    FRONT = "front"
    BACK = "back"


class PixelFormat(StrEnum):
    """Byte layout of a detection buffer."""

    NV21 = "nv21"  # Y plane, then interleaved V/U at quarter resolution
    YUV420 = "yuv420"  # Y plane, then U plane, then V plane (I420)
    BGRA8888 = "bgra8888"  # single packed plane, 4 bytes per pixel


class InputRotation(IntEnum):
    """Clockwise rotation needed to bring a frame upright."""

    DEG_0 = 0
    DEG_90 = 90
    DEG_180 = 180
    DEG_270 = 270

    @classmethod
    def from_degrees(cls, degrees: int) -> InputRotation:
        """Map a sensor orientation onto a canonical rotation.

        Values outside 0/90/180/270 fall back to 0 degrees.
        """
        try:
            return cls(degrees)
        except ValueError:
            logger.debug("Unrecognized sensor orientation %s, using 0 degrees", degrees)
            return cls.DEG_0


@dataclass(frozen=True)
class Size:
    width: float
    height: float


@dataclass(frozen=True)
class Plane:
    """One pixel plane of a camera frame."""

    data: bytes
    bytes_per_row: int


@dataclass(frozen=True)
class RawFrame:
    """A frame as delivered by the camera, before conversion.

    Planes are kept in the order the camera produced them.
    """

    planes: tuple[Plane, ...]
    width: int
    height: int
    sensor_orientation: int
    lens_facing: LensFacing


@dataclass(frozen=True)
class DetectionInput:
    """A single contiguous buffer plus the metadata a detector needs to decode it."""

    data: bytes
    width: int
    height: int
    rotation: InputRotation
    pixel_format: PixelFormat
    bytes_per_row: int

    @property
    def upright_size(self) -> Size:
        """Image size after rotation; detector coordinates live in this space."""
        if self.rotation in (InputRotation.DEG_90, InputRotation.DEG_270):
            return Size(width=self.height, height=self.width)
        return Size(width=self.width, height=self.height)
