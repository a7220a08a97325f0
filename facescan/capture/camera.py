"""
camera.py

OpenCV video source.
"""

import logging

import cv2
import numpy as np

from facescan.config import CameraSettings
from facescan.errors import FrameGrabError, PipelineError

logger = logging.getLogger(__name__)


class CameraSource:
    def __init__(self, settings: CameraSettings = None):
        self.settings = settings or CameraSettings()

        self.cap = cv2.VideoCapture(self.settings.index)
        if not self.cap.isOpened():
            raise PipelineError(f"Could not open camera {self.settings.index}")

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.settings.frame_width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.settings.frame_height)

        w = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        h = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(f"Camera {self.settings.index} opened at {w}x{h}")

    def read(self) -> np.ndarray:
        ok, frame = self.cap.read()
        if not ok or frame is None:
            raise FrameGrabError(f"Camera {self.settings.index} returned no frame")

        if self.settings.mirror:
            frame = cv2.flip(frame, 1)
        return frame

    def release(self):
        self.cap.release()
        logger.debug(f"Camera {self.settings.index} released")
