"""MediaPipe FaceLandmarker detector.

Each face comes back as a 478-point mesh plus ARKit-style blendshape
scores. The named landmarks are picked from the mesh, the box is the mesh
extent, and the smile / eye-open probabilities are read from the
blendshapes. mediapipe is installed with the ``mesh`` extra.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import cv2
import numpy as np

from facelens.errors import DetectionError
from facelens.ml.face_detector import BoundingBox, Face, LandmarkType, Point
from facelens.ml.model_manager import get_spec
from facelens.ml.preprocessing import decode_frame

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from facelens.camera.frames import DetectionInput
    from facelens.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

# Mesh vertex for each named landmark. Left and right are the subject's.
MESH_INDEX: dict[LandmarkType, int] = {
    LandmarkType.LEFT_EAR: 454,
    LandmarkType.RIGHT_EAR: 234,
    LandmarkType.LEFT_EYE: 473,  # iris centre
    LandmarkType.RIGHT_EYE: 468,  # iris centre
    LandmarkType.NOSE_BASE: 2,
    LandmarkType.LEFT_CHEEK: 280,
    LandmarkType.RIGHT_CHEEK: 50,
    LandmarkType.LEFT_MOUTH: 291,
    LandmarkType.RIGHT_MOUTH: 61,
    LandmarkType.BOTTOM_MOUTH: 17,
}


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def smile_from_blendshapes(scores: Mapping[str, float]) -> float | None:
    """Mean of the two mouth-corner smile scores, or None if absent."""
    if "mouthSmileLeft" not in scores or "mouthSmileRight" not in scores:
        return None
    return _clamp01((scores["mouthSmileLeft"] + scores["mouthSmileRight"]) / 2)


def eye_open_from_blendshapes(scores: Mapping[str, float], blink_key: str) -> float | None:
    """Invert a blink score into an eye-open probability, or None if absent."""
    if blink_key not in scores:
        return None
    return _clamp01(1.0 - scores[blink_key])


def mesh_to_face(mesh: Sequence[Any], blendshapes: Sequence[Any], width: int, height: int) -> Face:
    """Build a Face from one mesh and its blendshape categories.

    Args:
        mesh: Normalized landmarks with `x` and `y` in [0, 1].
        blendshapes: Categories with `category_name` and `score`.
        width: Upright image width in pixels.
        height: Upright image height in pixels.
    """
    xs = np.array([point.x for point in mesh], dtype=np.float32) * width
    ys = np.array([point.y for point in mesh], dtype=np.float32) * height
    box = BoundingBox(
        left=float(np.clip(xs.min(), 0, width)),
        top=float(np.clip(ys.min(), 0, height)),
        right=float(np.clip(xs.max(), 0, width)),
        bottom=float(np.clip(ys.max(), 0, height)),
    )
    landmarks = {
        kind: Point(float(xs[index]), float(ys[index])) for kind, index in MESH_INDEX.items() if index < len(mesh)
    }
    scores = {category.category_name: float(category.score) for category in blendshapes}
    return Face(
        bounding_box=box,
        landmarks=landmarks,
        smiling_probability=smile_from_blendshapes(scores),
        left_eye_open_probability=eye_open_from_blendshapes(scores, "eyeBlinkLeft"),
        right_eye_open_probability=eye_open_from_blendshapes(scores, "eyeBlinkRight"),
    )


class FaceMeshDetector:
    """FaceDetector backed by MediaPipe FaceLandmarker in image mode."""

    def __init__(
        self,
        model_manager: ModelManager,
        model_name: str = "face_landmarker",
        max_faces: int = 4,
        min_confidence: float = 0.5,
    ) -> None:
        self._spec = get_spec(model_name)
        if self._spec.runtime != "mediapipe":
            raise ValueError(f"{model_name} is not a MediaPipe model")
        self._model_manager = model_manager
        self._max_faces = max_faces
        self._min_confidence = min_confidence
        self._landmarker: Any = None
        self._mp: Any = None

    @property
    def model_name(self) -> str:
        return self._spec.name

    def load(self) -> None:
        if self._landmarker is not None:
            return

        import mediapipe as mp
        from mediapipe.tasks import python
        from mediapipe.tasks.python import vision

        model_path = self._model_manager.ensure_downloaded(self._spec.name)
        options = vision.FaceLandmarkerOptions(
            base_options=python.BaseOptions(model_asset_path=str(model_path)),
            running_mode=vision.RunningMode.IMAGE,
            num_faces=self._max_faces,
            min_face_detection_confidence=self._min_confidence,
            min_face_presence_confidence=self._min_confidence,
            output_face_blendshapes=True,
        )
        self._landmarker = vision.FaceLandmarker.create_from_options(options)
        self._mp = mp
        logger.info("Loaded %s from %s", self._spec.name, model_path)

    def close(self) -> None:
        landmarker, self._landmarker = self._landmarker, None
        if landmarker is not None:
            landmarker.close()

    def detect(self, detection_input: DetectionInput) -> list[Face]:
        try:
            image = decode_frame(detection_input)
        except ValueError as exc:
            raise DetectionError(f"Cannot decode {detection_input.pixel_format} frame: {exc}") from exc

        self.load()
        height, width = image.shape[:2]
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        try:
            result = self._landmarker.detect(self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=rgb))
        except Exception as exc:
            raise DetectionError(f"{self._spec.name} inference failed: {exc}") from exc
        return self.to_faces(result, width, height)

    def to_faces(self, result: Any, width: int, height: int) -> list[Face]:
        """Convert a FaceLandmarkerResult into Faces in pixel coordinates."""
        blendshapes = result.face_blendshapes or []
        faces = [
            mesh_to_face(mesh, blendshapes[index] if index < len(blendshapes) else [], width, height)
            for index, mesh in enumerate(result.face_landmarks or [])
        ]
        logger.debug("%s found %d face(s)", self._spec.name, len(faces))
        return faces
