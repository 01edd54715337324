"""Image preprocessing pipeline.

Decodes detection buffers (NV21, I420, BGRA) into upright BGR images and
prepares model input tensors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np

from facelens.camera.frames import InputRotation, PixelFormat

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facelens.camera.frames import DetectionInput

_ROTATE_CODES: dict[InputRotation, int] = {
    InputRotation.DEG_90: cv2.ROTATE_90_CLOCKWISE,
    InputRotation.DEG_180: cv2.ROTATE_180,
    InputRotation.DEG_270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def _plane(data: bytes, offset: int, rows: int, stride: int, width: int) -> NDArray[np.uint8]:
    count = rows * stride
    if offset + count > len(data):
        raise ValueError(f"Buffer too short: need {offset + count} bytes, got {len(data)}")
    plane = np.frombuffer(data, dtype=np.uint8, count=count, offset=offset).reshape(rows, stride)
    return plane[:, :width]


def decode_frame(detection_input: DetectionInput) -> NDArray[np.uint8]:
    """Decode a detection buffer into an upright HxWx3 BGR image.

    Raises:
        ValueError: If the buffer does not match the declared size and format.
    """
    data = detection_input.data
    width = detection_input.width
    height = detection_input.height
    stride = detection_input.bytes_per_row
    fmt = detection_input.pixel_format

    if fmt is PixelFormat.BGRA8888:
        packed = _plane(data, 0, height, stride, width * 4).reshape(height, width, 4)
        image = cv2.cvtColor(np.ascontiguousarray(packed), cv2.COLOR_BGRA2BGR)
    else:
        if width % 2 or height % 2:
            raise ValueError(f"YUV frames need even dimensions, got {width}x{height}")
        luma = _plane(data, 0, height, stride, width)
        offset = height * stride
        if fmt is PixelFormat.NV21:
            chroma = _plane(data, offset, height // 2, stride, width)
            yuv = np.vstack([luma, chroma])
            code = cv2.COLOR_YUV2BGR_NV21
        else:
            chroma_stride = stride // 2
            u = _plane(data, offset, height // 2, chroma_stride, width // 2)
            offset += (height // 2) * chroma_stride
            v = _plane(data, offset, height // 2, chroma_stride, width // 2)
            yuv = np.concatenate([luma.ravel(), u.ravel(), v.ravel()]).reshape(height * 3 // 2, width)
            code = cv2.COLOR_YUV2BGR_I420
        image = cv2.cvtColor(np.ascontiguousarray(yuv), code)

    rotate_code = _ROTATE_CODES.get(detection_input.rotation)
    if rotate_code is not None:
        image = cv2.rotate(image, rotate_code)
    return image


def preprocess_for_detection(image: NDArray[np.uint8], input_size: tuple[int, int]) -> NDArray[np.float32]:
    """Prepare a BGR image for the UltraFace model.

    Args:
        image: HxWx3 BGR uint8 array.
        input_size: Model input as (width, height).

    Returns:
        1x3xHxW float32 tensor, RGB, normalized to roughly [-1, 1].
    """
    resized = cv2.resize(image, input_size)
    rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB).astype(np.float32)
    normalized = (rgb - 127.0) / 128.0
    return np.expand_dims(normalized.transpose(2, 0, 1), axis=0).astype(np.float32)
