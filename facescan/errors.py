"""
errors.py

Exception types for the capture pipeline.

Transient vision noise (no face, pose out of range, one dark frame) is never
raised. Only the conditions below leave their module as exceptions.
"""


class FaceScanError(Exception):
    """Base class for all facescan errors."""


class ConfigError(FaceScanError):
    """Configuration file could not be parsed or failed validation."""


class PipelineError(FaceScanError):
    """Hard failure outside the vision math: camera or detector is dead.

    The frame loop stops when this is raised.
    """


class FrameGrabError(PipelineError):
    """A single camera read failed."""


class CaptureError(FaceScanError):
    """The frame could not be grabbed or encoded at capture time.

    Recoverable: the step does not advance and the next ready tick retries.
    """
