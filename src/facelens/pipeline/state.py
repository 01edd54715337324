"""Shared render state published by the detection pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from facelens.overlay.mapper import FitMode, compute_transform

if TYPE_CHECKING:
    from facelens.camera.frames import LensFacing, Size
    from facelens.ml.face_detector import Face
    from facelens.overlay.mapper import Transform


@dataclass(frozen=True)
class RenderState:
    """Latest faces together with the geometry they were detected in.

    Replaced as a whole on every publish; never mutated.
    """

    lens_facing: LensFacing
    faces: tuple[Face, ...] = field(default=())
    image_size: Size | None = None

    def transform_for(self, surface_size: Size, fit_mode: FitMode = FitMode.UNIFORM) -> Transform | None:
        """Return the transform for this state's faces, or None before any detection."""
        if self.image_size is None:
            return None
        return compute_transform(self.image_size, surface_size, self.lens_facing, fit_mode)
