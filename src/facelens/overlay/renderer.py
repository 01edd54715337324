"""Overlay rendering: boxes, landmarks, and affect annotations.

Draws with OpenCV onto a numpy canvas (BGR or BGRA). Faces are mapped
from detector space with the Transform derived from the same RenderState.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

import cv2
import numpy as np

from facelens.camera.frames import Size
from facelens.ml.face_detector import LANDMARK_ORDER
from facelens.overlay.mapper import FitMode

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facelens.ml.face_detector import Face, LandmarkType
    from facelens.overlay.mapper import Transform
    from facelens.pipeline.state import RenderState

logger = logging.getLogger(__name__)

Color = tuple[int, int, int]

# BGR
GREEN: Color = (89, 199, 52)
YELLOW: Color = (0, 204, 255)
RED: Color = (48, 59, 255)
GREY: Color = (147, 142, 142)
WHITE: Color = (255, 255, 255)

ANNOTATION_GAP: float = 5.0


class SmileTier(StrEnum):
    HAPPY = "Happy"
    NEUTRAL = "Neutral"
    SAD = "Sad"


@dataclass(frozen=True)
class OverlayStyle:
    box_color: Color = GREEN
    box_thickness: int = 2
    landmark_color: Color = RED
    landmark_radius: int = 4
    text_color: Color = WHITE
    text_background: Color = GREY
    text_background_opacity: float = 0.7
    text_padding: int = 2
    font_face: int = cv2.FONT_HERSHEY_SIMPLEX
    font_scale: float = 0.5
    font_thickness: int = 1
    line_spacing: int = 4
    smile_colors: dict[SmileTier, Color] = field(
        default_factory=lambda: {SmileTier.HAPPY: GREEN, SmileTier.NEUTRAL: YELLOW, SmileTier.SAD: RED}
    )
    eye_open_color: Color = GREEN
    eye_closed_color: Color = RED


@dataclass(frozen=True)
class TextSpan:
    text: str
    color: Color


@dataclass(frozen=True)
class AnnotationLayout:
    """Placed text block; (x, y) is the top-left corner of the text."""

    x: float
    y: float
    width: int
    height: int
    line_height: int
    ascent: int


@dataclass(frozen=True)
class MappedFace:
    """A face expressed in render-surface coordinates."""

    box: tuple[float, float, float, float]
    landmarks: dict[LandmarkType, tuple[float, float]]
    annotation: list[list[TextSpan]]


def smile_percent(probability: float) -> int:
    # Half-up rounding; probabilities are never negative.
    return math.floor(probability * 100 + 0.5)


def smile_tier(probability: float) -> SmileTier:
    percent = smile_percent(probability)
    if percent > 70:
        return SmileTier.HAPPY
    if percent > 40:
        return SmileTier.NEUTRAL
    return SmileTier.SAD


def eye_is_open(probability: float) -> bool:
    return probability > 0.5


def build_annotation(face: Face, style: OverlayStyle | None = None) -> list[list[TextSpan]]:
    """Build the annotation lines for a face; empty when it has no classification."""
    style = style or OverlayStyle()
    lines: list[list[TextSpan]] = []

    if face.smiling_probability is not None:
        tier = smile_tier(face.smiling_probability)
        text = f"{tier.value} ({smile_percent(face.smiling_probability)}%)"
        lines.append([TextSpan(text, style.smile_colors[tier])])

    eyes: list[TextSpan] = []
    for side, probability in (
        ("Left", face.left_eye_open_probability),
        ("Right", face.right_eye_open_probability),
    ):
        if probability is None:
            continue
        if eyes:
            eyes.append(TextSpan("  ", style.text_color))
        is_open = eye_is_open(probability)
        eyes.append(
            TextSpan(
                f"{side} Eye: {'Open' if is_open else 'Closed'}",
                style.eye_open_color if is_open else style.eye_closed_color,
            )
        )
    if eyes:
        lines.append(eyes)
    return lines


def should_redraw(old: RenderState | None, new: RenderState) -> bool:
    """Return True when new differs from old in image size, face list, or lens."""
    if old is None:
        return True
    return old.image_size != new.image_size or old.faces is not new.faces or old.lens_facing != new.lens_facing


class OverlayRenderer:
    """Draws a RenderState onto a surface and remembers the last drawing."""

    def __init__(self, style: OverlayStyle | None = None, fit_mode: FitMode = FitMode.UNIFORM) -> None:
        self._style = style or OverlayStyle()
        self._fit_mode = fit_mode
        self._last_state: RenderState | None = None
        self._last_size: Size | None = None
        self._last_canvas: NDArray[np.uint8] | None = None

    @property
    def style(self) -> OverlayStyle:
        return self._style

    # -- Public API ---------------------------------------------------------

    def render(self, state: RenderState, size: Size) -> NDArray[np.uint8]:
        """Render state onto a fresh transparent BGRA canvas of the given size.

        Returns the previous canvas when neither the size nor the state changed.
        """
        if (
            self._last_canvas is not None
            and self._last_size == size
            and not should_redraw(self._last_state, state)
        ):
            return self._last_canvas

        canvas = np.zeros((int(size.height), int(size.width), 4), dtype=np.uint8)
        self.paint(canvas, state)
        self._last_state = state
        self._last_size = size
        self._last_canvas = canvas
        return canvas

    def paint(self, canvas: NDArray[np.uint8], state: RenderState) -> None:
        """Draw every face in state onto canvas in place."""
        surface = Size(width=canvas.shape[1], height=canvas.shape[0])
        transform = state.transform_for(surface, self._fit_mode)
        if transform is None:
            return

        for face in state.faces:
            mapped = self._map_face(face, transform)
            left, top, right, bottom = mapped.box
            cv2.rectangle(
                canvas,
                (round(left), round(top)),
                (round(right), round(bottom)),
                self._color(canvas, self._style.box_color),
                self._style.box_thickness,
            )
            for x, y in mapped.landmarks.values():
                cv2.circle(
                    canvas,
                    (round(x), round(y)),
                    self._style.landmark_radius,
                    self._color(canvas, self._style.landmark_color),
                    thickness=cv2.FILLED,
                )
            if mapped.annotation:
                layout = self.layout_annotation(mapped.annotation, left, top, surface.height)
                self._draw_annotation(canvas, mapped.annotation, layout)

    def map_faces(self, state: RenderState, surface: Size) -> list[MappedFace]:
        """Map every face in state to surface coordinates without drawing."""
        transform = state.transform_for(surface, self._fit_mode)
        if transform is None:
            return []
        return [self._map_face(face, transform) for face in state.faces]

    def layout_annotation(
        self,
        lines: list[list[TextSpan]],
        left: float,
        top: float,
        surface_height: float,
    ) -> AnnotationLayout:
        """Measure the text block and place it just above the face box.

        The block is clamped to stay inside the surface vertically.
        """
        style = self._style
        ascent = 0
        descent = 0
        width = 0
        for line in lines:
            line_width = 0
            for span in line:
                (span_width, span_height), baseline = cv2.getTextSize(
                    span.text, style.font_face, style.font_scale, style.font_thickness
                )
                line_width += span_width
                ascent = max(ascent, span_height)
                descent = max(descent, baseline)
            width = max(width, line_width)

        line_height = ascent + descent
        height = line_height * len(lines) + style.line_spacing * (len(lines) - 1)
        upper = max(0.0, surface_height - height)
        y = min(max(top - height - ANNOTATION_GAP, 0.0), upper)
        return AnnotationLayout(x=left, y=y, width=width, height=height, line_height=line_height, ascent=ascent)

    # -- Internal -----------------------------------------------------------

    def _map_face(self, face: Face, transform: Transform) -> MappedFace:
        landmarks = {
            kind: transform.map_point(face.landmarks[kind]) for kind in LANDMARK_ORDER if kind in face.landmarks
        }
        return MappedFace(
            box=transform.map_box(face.bounding_box),
            landmarks=landmarks,
            annotation=build_annotation(face, self._style),
        )

    def _draw_annotation(
        self,
        canvas: NDArray[np.uint8],
        lines: list[list[TextSpan]],
        layout: AnnotationLayout,
    ) -> None:
        style = self._style
        pad = style.text_padding
        self._blend_rect(
            canvas,
            round(layout.x) - pad,
            round(layout.y) - pad,
            layout.width + 2 * pad,
            layout.height + 2 * pad,
        )

        baseline_y = round(layout.y) + layout.ascent
        for line in lines:
            x = round(layout.x)
            for span in line:
                cv2.putText(
                    canvas,
                    span.text,
                    (x, baseline_y),
                    style.font_face,
                    style.font_scale,
                    self._color(canvas, span.color),
                    style.font_thickness,
                    cv2.LINE_AA,
                )
                (span_width, _), _ = cv2.getTextSize(span.text, style.font_face, style.font_scale, style.font_thickness)
                x += span_width
            baseline_y += layout.line_height + style.line_spacing

    def _blend_rect(self, canvas: NDArray[np.uint8], x: int, y: int, width: int, height: int) -> None:
        x0, y0 = max(x, 0), max(y, 0)
        x1, y1 = min(x + width, canvas.shape[1]), min(y + height, canvas.shape[0])
        if x1 <= x0 or y1 <= y0:
            return
        roi = canvas[y0:y1, x0:x1]
        fill = np.empty_like(roi)
        fill[:] = self._color(canvas, self._style.text_background)
        opacity = self._style.text_background_opacity
        canvas[y0:y1, x0:x1] = cv2.addWeighted(fill, opacity, roi, 1.0 - opacity, 0.0)

    @staticmethod
    def _color(canvas: NDArray[np.uint8], color: Color) -> tuple[int, ...]:
        if canvas.ndim == 3 and canvas.shape[2] == 4:
            return (*color, 255)
        return color
