"""Face detection result types and detector protocol.

Implementations: UltraFace RFB-320 / slim-320 (ONNX, boxes only) and
MediaPipe FaceLandmarker (boxes, landmarks, smile and eye-open scores).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Mapping

    from facelens.camera.frames import DetectionInput


class LandmarkType(StrEnum):
    LEFT_EAR = "left_ear"
    RIGHT_EAR = "right_ear"
    LEFT_EYE = "left_eye"
    RIGHT_EYE = "right_eye"
    NOSE_BASE = "nose_base"
    LEFT_CHEEK = "left_cheek"
    RIGHT_CHEEK = "right_cheek"
    LEFT_MOUTH = "left_mouth"
    RIGHT_MOUTH = "right_mouth"
    BOTTOM_MOUTH = "bottom_mouth"


# Drawing order for landmark markers.
LANDMARK_ORDER: tuple[LandmarkType, ...] = tuple(LandmarkType)


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class BoundingBox:
    """Face rectangle in the pixel space of the image fed to the detector."""

    left: float
    top: float
    right: float
    bottom: float


@dataclass(frozen=True)
class Face:
    """A single detected face.

    Coordinates are in the upright image space of the detection input,
    never in render-surface space.
    """

    bounding_box: BoundingBox
    landmarks: Mapping[LandmarkType, Point] = field(default_factory=dict)
    smiling_probability: float | None = None
    left_eye_open_probability: float | None = None
    right_eye_open_probability: float | None = None
    tracking_id: int | None = None

    @property
    def has_classification(self) -> bool:
        return (
            self.smiling_probability is not None
            or self.left_eye_open_probability is not None
            or self.right_eye_open_probability is not None
        )


class FaceDetector(Protocol):
    """Protocol for face detection models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def detect(self, detection_input: DetectionInput) -> list[Face]:
        """Detect faces in a converted camera frame.

        Args:
            detection_input: Contiguous frame buffer with size, rotation, and format.

        Returns:
            Faces with coordinates in the input's upright image space.
        """
        ...

    def load(self) -> None:
        """Load the model so the first detection does not pay for it."""
        ...

    def close(self) -> None:
        """Release resources held by the detector."""
        ...
