"""
landmark_source.py

MediaPipe FaceLandmarker wrapper.
One face, VIDEO running mode. "No face" is a normal result (None).
"""

import logging
from typing import Optional

import cv2
import numpy as np
import mediapipe as mp
from mediapipe.tasks import python
from mediapipe.tasks.python import vision

from facescan.config import LandmarkerSettings
from facescan.errors import PipelineError
from facescan.landmarks import MEDIAPIPE_FACE_MESH, LandmarkIndexMap

logger = logging.getLogger(__name__)


class MediaPipeLandmarkSource:
    index_map: LandmarkIndexMap = MEDIAPIPE_FACE_MESH

    def __init__(self, settings: LandmarkerSettings = None):
        self.settings = settings or LandmarkerSettings()
        self._last_ts_ms = -1

        options = vision.FaceLandmarkerOptions(
            base_options=python.BaseOptions(model_asset_path=self.settings.model_path),
            running_mode=vision.RunningMode.VIDEO,
            num_faces=1,
            min_face_detection_confidence=self.settings.min_detection_confidence,
            min_face_presence_confidence=self.settings.min_presence_confidence,
            min_tracking_confidence=self.settings.min_tracking_confidence,
        )

        try:
            self._landmarker = vision.FaceLandmarker.create_from_options(options)
        except (RuntimeError, ValueError, OSError) as e:
            raise PipelineError(f"Could not load face landmarker '{self.settings.model_path}': {e}") from e

        logger.info(f"FaceLandmarker loaded from {self.settings.model_path}")

    def detect(self, frame_bgr: np.ndarray, timestamp_ms: int) -> Optional[np.ndarray]:
        """
        Landmarks for one BGR frame.

        Returns:
            read-only float32 array [N, 3] (normalized x, y, relative z) or None
        """
        # VIDEO mode needs strictly increasing timestamps
        ts = max(int(timestamp_ms), self._last_ts_ms + 1)
        self._last_ts_ms = ts

        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)

        try:
            result = self._landmarker.detect_for_video(mp_image, ts)
        except (RuntimeError, ValueError) as e:
            raise PipelineError(f"Face landmarker failed: {e}") from e

        if not result.face_landmarks:
            return None

        face = result.face_landmarks[0]
        landmarks = np.array([[lm.x, lm.y, lm.z] for lm in face], dtype=np.float32)
        landmarks.flags.writeable = False
        return landmarks

    def close(self):
        self._landmarker.close()
        logger.debug("FaceLandmarker closed")
