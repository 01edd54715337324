"""Camera frame sources.

`OpenCvFrameSource` reads from a `cv2.VideoCapture` on a dedicated worker
thread and delivers RawFrames on the event loop, re-packed into the
runtime's multi-plane pixel format.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Protocol

import cv2
import numpy as np

from facelens.camera.frames import PixelFormat, Plane, RawFrame
from facelens.errors import SourceUnavailable

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

    from facelens.camera.frames import LensFacing
    from facelens.config import CameraConfig

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    """Protocol for camera streams."""

    @property
    def lens_facing(self) -> LensFacing:
        """Return which way the camera points."""
        ...

    async def start(
        self,
        on_frame: Callable[[RawFrame], None],
        on_error: Callable[[SourceUnavailable], None] | None = None,
    ) -> None:
        """Open the camera and begin delivering frames to on_frame.

        Raises:
            SourceUnavailable: If the camera cannot be opened.
        """
        ...

    async def stop(self) -> None:
        """Stop delivering frames and release the camera."""
        ...


def pack_planes(image: NDArray[np.uint8], pixel_format: PixelFormat) -> tuple[Plane, ...]:
    """Split a BGR image into the planes a camera of the given format would deliver.

    YUV formats require even dimensions; callers crop beforehand.
    """
    height, width = image.shape[:2]
    if pixel_format is PixelFormat.BGRA8888:
        bgra = cv2.cvtColor(image, cv2.COLOR_BGR2BGRA)
        return (Plane(data=bgra.tobytes(), bytes_per_row=width * 4),)

    flat = cv2.cvtColor(image, cv2.COLOR_BGR2YUV_I420).ravel()
    luma_size = width * height
    chroma_size = luma_size // 4
    y = flat[:luma_size]
    u = flat[luma_size : luma_size + chroma_size]
    v = flat[luma_size + chroma_size :]

    if pixel_format is PixelFormat.YUV420:
        return (
            Plane(data=y.tobytes(), bytes_per_row=width),
            Plane(data=u.tobytes(), bytes_per_row=width // 2),
            Plane(data=v.tobytes(), bytes_per_row=width // 2),
        )

    vu = np.empty((height // 2, width), dtype=np.uint8)
    vu[:, 0::2] = v.reshape(height // 2, width // 2)
    vu[:, 1::2] = u.reshape(height // 2, width // 2)
    return (
        Plane(data=y.tobytes(), bytes_per_row=width),
        Plane(data=vu.tobytes(), bytes_per_row=width),
    )


class OpenCvFrameSource:
    """Frame source backed by an OpenCV capture device."""

    def __init__(
        self,
        camera: CameraConfig,
        pixel_format: PixelFormat,
        capture_width: int = 640,
        capture_height: int = 480,
    ) -> None:
        self._camera = camera
        self._pixel_format = pixel_format
        self._capture_width = capture_width
        self._capture_height = capture_height
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="camera-capture")
        self._capture: cv2.VideoCapture | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def lens_facing(self) -> LensFacing:
        return self._camera.lens_facing

    async def start(
        self,
        on_frame: Callable[[RawFrame], None],
        on_error: Callable[[SourceUnavailable], None] | None = None,
    ) -> None:
        loop = asyncio.get_running_loop()
        try:
            self._capture = await loop.run_in_executor(self._executor, self._open)
        except SourceUnavailable:
            self._executor.shutdown(wait=False)
            raise
        self._task = loop.create_task(self._stream(self._capture, on_frame, on_error))
        logger.info("Camera %s (%s) streaming", self._camera.device, self._camera.lens_facing)

    async def stop(self) -> None:
        """Stop streaming, release the capture, and retire the capture thread.

        A stopped source cannot be restarted; create a new one instead.
        """
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.wait({task})

        capture, self._capture = self._capture, None
        if capture is not None:
            # Queued behind any read still running on the capture thread.
            await asyncio.get_running_loop().run_in_executor(self._executor, capture.release)
            logger.info("Camera %s stopped", self._camera.device)
        self._executor.shutdown(wait=False)

    def to_raw_frame(self, image: NDArray[np.uint8]) -> RawFrame:
        """Wrap a captured BGR image as a RawFrame in this source's pixel format."""
        height, width = image.shape[:2]
        if self._pixel_format is not PixelFormat.BGRA8888:
            height -= height % 2
            width -= width % 2
            image = image[:height, :width]
        return RawFrame(
            planes=pack_planes(np.ascontiguousarray(image), self._pixel_format),
            width=width,
            height=height,
            sensor_orientation=self._camera.sensor_orientation,
            lens_facing=self._camera.lens_facing,
        )

    # -- Internal -----------------------------------------------------------

    def _open(self) -> cv2.VideoCapture:
        capture = cv2.VideoCapture(self._camera.device)
        if not capture.isOpened():
            capture.release()
            raise SourceUnavailable(f"Camera {self._camera.device!r} could not be opened")
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self._capture_width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self._capture_height)
        return capture

    async def _stream(
        self,
        capture: cv2.VideoCapture,
        on_frame: Callable[[RawFrame], None],
        on_error: Callable[[SourceUnavailable], None] | None,
    ) -> None:
        loop = asyncio.get_running_loop()
        while True:
            ok, image = await loop.run_in_executor(self._executor, capture.read)
            if not ok or image is None:
                error = SourceUnavailable(f"Camera {self._camera.device!r} stopped delivering frames")
                logger.error("%s", error)
                if on_error is not None:
                    on_error(error)
                return
            on_frame(self.to_raw_frame(image))
