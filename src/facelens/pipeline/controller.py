"""Camera pipeline: camera selection, streaming, and the shared render state."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from facelens.camera.frames import LensFacing
from facelens.errors import SourceUnavailable
from facelens.pipeline.state import RenderState
from facelens.pipeline.throttler import DetectionThrottler

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from facelens.camera.converter import FrameConverter
    from facelens.camera.source import FrameSource
    from facelens.config import CameraConfig
    from facelens.ml.face_detector import FaceDetector
    from facelens.ml.inference import InferencePool

logger = logging.getLogger(__name__)


def select_default_camera(cameras: Sequence[CameraConfig]) -> int:
    """Return the index of the first front-facing camera, else 0."""
    for index, camera in enumerate(cameras):
        if camera.lens_facing is LensFacing.FRONT:
            return index
    return 0


class CameraPipeline:
    """Wires the active camera to the detection throttler.

    `render_state` is the only state shared with the rendering side. It is
    swapped as a whole by the detection completion path and by camera
    switches; it is never modified in place.

    `start`, `toggle_camera` and `stop` are serialized so that at most one
    source is live at any time.
    """

    def __init__(
        self,
        cameras: Sequence[CameraConfig],
        source_factory: Callable[[CameraConfig], FrameSource],
        converter: FrameConverter,
        detector: FaceDetector,
        pool: InferencePool,
    ) -> None:
        self._cameras = list(cameras)
        self._source_factory = source_factory
        self._selected = select_default_camera(self._cameras)
        self._throttler = DetectionThrottler(converter, detector, pool, self._publish)
        self._source: FrameSource | None = None
        self._error: SourceUnavailable | None = None
        self._switch_lock = asyncio.Lock()

        lens = self._cameras[self._selected].lens_facing if self._cameras else LensFacing.FRONT
        self._state = RenderState(lens_facing=lens)

    # -- Public API ---------------------------------------------------------

    @property
    def render_state(self) -> RenderState:
        return self._state

    @property
    def error(self) -> SourceUnavailable | None:
        """The terminal stream error, if the active camera is unavailable."""
        return self._error

    @property
    def throttler(self) -> DetectionThrottler:
        return self._throttler

    @property
    def camera_count(self) -> int:
        return len(self._cameras)

    @property
    def active_camera(self) -> CameraConfig | None:
        if not self._cameras:
            return None
        return self._cameras[self._selected]

    @property
    def streaming(self) -> bool:
        return self._source is not None and self._error is None

    async def start(self) -> bool:
        """Start streaming from the selected camera.

        Returns:
            False if no camera could be started; `error` then holds the reason.
        """
        async with self._switch_lock:
            camera = self.active_camera
            if camera is None:
                self._error = SourceUnavailable("No camera found")
                logger.error("%s", self._error)
                return False
            await self._stop_source()
            return await self._start_camera(camera)

    async def toggle_camera(self) -> bool:
        """Switch to the next camera.

        The running stream is stopped and the overlay cleared before the new
        camera starts, so no stale faces are drawn over the new stream.
        Concurrent toggles run one after the other.

        Returns:
            False if fewer than two cameras are configured.
        """
        if len(self._cameras) < 2:
            logger.warning("Cannot toggle camera: %d camera(s) available", len(self._cameras))
            return False

        async with self._switch_lock:
            await self._stop_source()
            self._throttler.reset()
            self._selected = (self._selected + 1) % len(self._cameras)
            camera = self._cameras[self._selected]
            self._state = RenderState(lens_facing=camera.lens_facing)
            logger.info("Switching to camera %s (%s)", camera.device, camera.lens_facing)
            return await self._start_camera(camera)

    async def stop(self) -> None:
        """Stop streaming and wait for any in-flight detection."""
        async with self._switch_lock:
            await self._stop_source()
            self._throttler.reset()
        await self._throttler.drain()

    # -- Internal -----------------------------------------------------------

    async def _start_camera(self, camera: CameraConfig) -> bool:
        source = self._source_factory(camera)
        try:
            await source.start(self._throttler.submit, self._on_source_error)
        except SourceUnavailable as exc:
            self._error = exc
            logger.error("Camera %s unavailable: %s", camera.device, exc)
            return False
        self._source = source
        self._error = None
        return True

    async def _stop_source(self) -> None:
        source, self._source = self._source, None
        if source is not None:
            await source.stop()

    def _publish(self, state: RenderState) -> None:
        self._state = state

    def _on_source_error(self, error: SourceUnavailable) -> None:
        self._error = error
