"""Image-space -> surface-space coordinate mapping.

A Transform is a pure function of (image size, surface size, lens facing,
fit mode). It is derived per render from the same RenderState whose faces
it maps, so faces and geometry never go out of step.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from facelens.camera.frames import LensFacing

if TYPE_CHECKING:
    from facelens.camera.frames import Size
    from facelens.ml.face_detector import BoundingBox, Point


class FitMode(StrEnum):
    RAW = "raw"  # pixel-for-pixel, no scaling or centering
    UNIFORM = "uniform"  # aspect-preserving fit, letterboxed and centered


@dataclass(frozen=True)
class Transform:
    """Uniform scale plus centering offsets, with optional horizontal mirror."""

    scale: float
    offset_x: float
    offset_y: float
    mirror: bool
    image_width: float

    def map_x(self, x: float) -> float:
        if self.mirror:
            return (self.image_width - x) * self.scale + self.offset_x
        return x * self.scale + self.offset_x

    def map_y(self, y: float) -> float:
        return y * self.scale + self.offset_y

    def map_point(self, point: Point) -> tuple[float, float]:
        return self.map_x(point.x), self.map_y(point.y)

    def map_box(self, box: BoundingBox) -> tuple[float, float, float, float]:
        """Map a box to (left, top, right, bottom) on the surface.

        When mirrored, the on-screen left edge comes from the image's right edge.
        """
        if self.mirror:
            left, right = self.map_x(box.right), self.map_x(box.left)
        else:
            left, right = self.map_x(box.left), self.map_x(box.right)
        return left, self.map_y(box.top), right, self.map_y(box.bottom)


def compute_transform(
    image_size: Size,
    surface_size: Size,
    lens_facing: LensFacing,
    fit_mode: FitMode = FitMode.UNIFORM,
) -> Transform:
    """Compute the transform that places an image on a render surface.

    Raises:
        ValueError: If either size has a non-positive dimension.
    """
    if image_size.width <= 0 or image_size.height <= 0:
        raise ValueError(f"Invalid image size {image_size.width}x{image_size.height}")
    if surface_size.width <= 0 or surface_size.height <= 0:
        raise ValueError(f"Invalid surface size {surface_size.width}x{surface_size.height}")

    mirror = lens_facing is LensFacing.FRONT
    if fit_mode is FitMode.RAW:
        return Transform(scale=1.0, offset_x=0.0, offset_y=0.0, mirror=mirror, image_width=image_size.width)

    scale = min(surface_size.width / image_size.width, surface_size.height / image_size.height)
    return Transform(
        scale=scale,
        offset_x=(surface_size.width - image_size.width * scale) / 2,
        offset_y=(surface_size.height - image_size.height * scale) / 2,
        mirror=mirror,
        image_width=image_size.width,
    )
