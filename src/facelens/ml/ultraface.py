"""UltraFace ONNX face detector.

The model takes a 1x3xHxW RGB tensor and returns per-prior class scores
(background, face) and corner boxes normalized to [0, 1]. It produces no
landmarks or classification probabilities.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import cv2
import numpy as np

from facelens.errors import DetectionError
from facelens.ml.face_detector import BoundingBox, Face
from facelens.ml.model_manager import get_spec
from facelens.ml.preprocessing import decode_frame, preprocess_for_detection

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facelens.camera.frames import DetectionInput
    from facelens.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)


class UltraFaceDetector:
    """FaceDetector backed by an UltraFace model from the model registry."""

    def __init__(
        self,
        model_manager: ModelManager,
        model_name: str = "ultraface_rfb_320",
        score_threshold: float = 0.7,
        nms_threshold: float = 0.3,
    ) -> None:
        self._spec = get_spec(model_name)
        if self._spec.runtime != "onnx":
            raise ValueError(f"{model_name} is not an UltraFace ONNX model")
        self._model_manager = model_manager
        self._score_threshold = score_threshold
        self._nms_threshold = nms_threshold

    @property
    def model_name(self) -> str:
        return self._spec.name

    def load(self) -> None:
        self._model_manager.get_session(self._spec.name)

    def close(self) -> None:
        """Sessions belong to the model manager; nothing to release here."""

    def detect(self, detection_input: DetectionInput) -> list[Face]:
        try:
            image = decode_frame(detection_input)
        except ValueError as exc:
            raise DetectionError(f"Cannot decode {detection_input.pixel_format} frame: {exc}") from exc

        height, width = image.shape[:2]
        tensor = preprocess_for_detection(image, self._spec.input_size)
        session = self._model_manager.get_session(self._spec.name)
        input_name = session.get_inputs()[0].name
        try:
            scores, boxes = session.run(["scores", "boxes"], {input_name: tensor})
        except Exception as exc:
            raise DetectionError(f"{self._spec.name} inference failed: {exc}") from exc

        return self.postprocess(scores[0], boxes[0], width, height)

    def postprocess(
        self,
        scores: NDArray[np.float32],
        boxes: NDArray[np.float32],
        width: int,
        height: int,
    ) -> list[Face]:
        """Threshold, scale to pixels, and apply non-maximum suppression.

        Args:
            scores: (N, 2) background/face probabilities.
            boxes: (N, 4) normalized x1, y1, x2, y2.
            width: Upright image width in pixels.
            height: Upright image height in pixels.
        """
        confidences = scores[:, 1]
        mask = confidences > self._score_threshold
        if not np.any(mask):
            return []

        scale = np.array([width, height, width, height], dtype=np.float32)
        pixel_boxes = boxes[mask] * scale
        pixel_boxes[:, 0::2] = np.clip(pixel_boxes[:, 0::2], 0, width)
        pixel_boxes[:, 1::2] = np.clip(pixel_boxes[:, 1::2], 0, height)
        kept_confidences = confidences[mask]

        rects = [[float(x1), float(y1), float(x2 - x1), float(y2 - y1)] for x1, y1, x2, y2 in pixel_boxes]
        keep = cv2.dnn.NMSBoxes(rects, kept_confidences.tolist(), self._score_threshold, self._nms_threshold)

        faces: list[Face] = []
        for index in np.array(keep, dtype=np.int64).flatten():
            x1, y1, x2, y2 = (float(v) for v in pixel_boxes[index])
            faces.append(Face(bounding_box=BoundingBox(left=x1, top=y1, right=x2, bottom=y2)))
        logger.debug("%s found %d face(s)", self._spec.name, len(faces))
        return faces
