"""At-most-one-in-flight detection scheduling.

Frames that arrive while a detection is running are dropped, never queued
or retried. Under sustained overload the overlay lags by at most one
detection instead of an ever-growing backlog.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from facelens.errors import ConversionError
from facelens.pipeline.state import RenderState

if TYPE_CHECKING:
    from collections.abc import Callable

    from facelens.camera.converter import FrameConverter
    from facelens.camera.frames import DetectionInput, LensFacing, RawFrame
    from facelens.ml.face_detector import FaceDetector
    from facelens.ml.inference import InferencePool

logger = logging.getLogger(__name__)


@dataclass
class ThrottlerStats:
    accepted: int = 0
    dropped: int = 0
    conversion_failed: int = 0
    detection_failed: int = 0
    completed: int = 0
    discarded: int = 0


class DetectionThrottler:
    """Feeds camera frames to a detector, one at a time.

    Must be driven from a running event loop. Only the completion path of
    a detection clears the busy flag and publishes results.
    """

    def __init__(
        self,
        converter: FrameConverter,
        detector: FaceDetector,
        pool: InferencePool,
        on_result: Callable[[RenderState], None],
    ) -> None:
        self._converter = converter
        self._detector = detector
        self._pool = pool
        self._on_result = on_result
        self._busy = False
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._stats = ThrottlerStats()

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def stats(self) -> ThrottlerStats:
        return replace(self._stats)

    def submit(self, frame: RawFrame) -> bool:
        """Offer a frame for detection.

        Returns:
            True if the frame was accepted, False if it was dropped.
        """
        loop = asyncio.get_running_loop()
        if self._busy:
            self._stats.dropped += 1
            return False

        self._busy = True
        try:
            detection_input = self._converter.convert(frame)
        except ConversionError as exc:
            self._busy = False
            self._stats.conversion_failed += 1
            logger.debug("Dropping frame: %s", exc)
            return False

        self._stats.accepted += 1
        self._task = loop.create_task(self._detect(detection_input, frame.lens_facing, self._generation))
        return True

    def reset(self) -> None:
        """Invalidate any in-flight detection so its result is never published."""
        self._generation += 1

    async def drain(self) -> None:
        """Wait for the in-flight detection, if any, to finish."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def _detect(self, detection_input: DetectionInput, lens_facing: LensFacing, generation: int) -> None:
        try:
            faces = await self._pool.run(self._detector.detect, detection_input)
        except Exception as exc:
            self._stats.detection_failed += 1
            logger.warning("Face detection failed (%s): %s", self._detector.model_name, exc)
            return
        finally:
            self._busy = False

        if generation != self._generation:
            self._stats.discarded += 1
            logger.debug("Discarding detection result from a stopped stream")
            return

        self._stats.completed += 1
        self._on_result(
            RenderState(
                lens_facing=lens_facing,
                faces=tuple(faces),
                image_size=detection_input.upright_size,
            )
        )
