"""Guided multi-angle face capture: head pose, lighting, hysteresis and capture sequencing."""

__version__ = "0.1.0"
