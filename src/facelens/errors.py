"""Error taxonomy for the frame pipeline."""

from __future__ import annotations


class FaceLensError(Exception):
    """Base class for all FaceLens errors."""


class ConversionError(FaceLensError):
    """A raw frame could not be turned into detector input.

    Per-frame: the frame is dropped and no detection is attempted.
    """


class DetectionError(FaceLensError):
    """The face detector failed on an accepted frame.

    Per-frame: the previous overlay is kept and the stream continues.
    """


class SourceUnavailable(FaceLensError):
    """No camera could be opened, or the active stream failed.

    Terminal for the current stream until a camera is reselected.
    """
