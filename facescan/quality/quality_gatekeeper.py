"""
quality_gatekeeper.py

LAYER 3A: Lighting Gatekeeper
----------------------------
Purpose:
- Sample brightness on the forehead and both cheeks
- Score overall brightness and evenness (0-100)
- Provide a loose is_good gate that tolerates ordinary indoor light

Frames are BGR uint8 (OpenCV convention).
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

from facescan.config import LightingSettings
from facescan.landmarks import MEDIAPIPE_FACE_MESH, LandmarkIndexMap, as_landmark_array, has_indices

logger = logging.getLogger(__name__)

# -------------------------------------------------
# Constants
# -------------------------------------------------

# Rec. 601 luma weights in BGR channel order
LUMA_BGR = np.array([0.114, 0.587, 0.299], dtype=np.float32)


@dataclass(frozen=True)
class LightingQuality:
    is_good: bool
    score: int                  # 0-100
    evenness: int               # 0-100
    brightness: int             # 0-255, mean of the regional samples
    standard_deviation: float   # raw, across regions

    def to_dict(self):
        return {
            "is_good": self.is_good,
            "score": self.score,
            "evenness": self.evenness,
            "brightness": self.brightness,
            "standard_deviation": round(self.standard_deviation, 2),
        }


BAD_LIGHTING = LightingQuality(is_good=False, score=0, evenness=0, brightness=0, standard_deviation=0.0)

# -------------------------------------------------
# Helpers
# -------------------------------------------------

def sample_window(cx, cy, radius, w, h):
    """Square window around (cx, cy) clipped to the frame: (x1, y1, x2, y2) or None."""
    x1 = max(0, cx - radius)
    y1 = max(0, cy - radius)
    x2 = min(w, cx + radius)
    y2 = min(h, cy + radius)

    if x2 <= x1 or y2 <= y1:
        return None
    return x1, y1, x2, y2


def region_brightness(frame, window):
    x1, y1, x2, y2 = window
    patch = frame[y1:y2, x1:x2, :3].astype(np.float32)
    return float((patch @ LUMA_BGR).mean())


def brightness_variance(values):
    """Population variance, ignoring non-finite values. Never NaN."""
    valid = [float(v) for v in values if v is not None and math.isfinite(v)]
    if len(valid) < 2:
        return 0.0

    var = float(np.var(valid))
    return var if math.isfinite(var) else 0.0


def brightness_score(brightness, settings: LightingSettings = None):
    settings = settings or LightingSettings()
    for low, high, score in settings.brightness_bands:
        if low <= brightness <= high:
            return score
    return settings.brightness_floor_score


def evenness_score(std_dev, settings: LightingSettings = None):
    settings = settings or LightingSettings()
    for max_std, score in settings.evenness_bands:
        if std_dev <= max_std:
            return score
    return settings.evenness_floor_score


def score_brightness_samples(samples, settings: LightingSettings = None) -> LightingQuality:
    """Turn regional brightness samples into a LightingQuality."""
    settings = settings or LightingSettings()
    valid = [float(s) for s in samples if s is not None and math.isfinite(s)]
    if not valid:
        return BAD_LIGHTING

    mean = float(np.mean(valid))
    std_dev = math.sqrt(brightness_variance(valid))

    b_score = brightness_score(mean, settings)
    e_score = evenness_score(std_dev, settings)

    return LightingQuality(
        is_good=settings.good_min < mean < settings.good_max,
        score=int(round((b_score + e_score) / 2.0)),
        evenness=int(round(e_score)),
        brightness=int(round(mean)),
        standard_deviation=std_dev,
    )

# -------------------------------------------------
# MAIN LIGHTING GATEKEEPER
# -------------------------------------------------

def estimate_lighting(frame, landmarks, frame_width, frame_height,
                      settings: LightingSettings = None,
                      index_map: LandmarkIndexMap = MEDIAPIPE_FACE_MESH) -> LightingQuality:
    """
    Estimate lighting quality on the face.

    Never raises: invalid buffers, missing landmarks and out-of-range
    indices return BAD_LIGHTING.
    """
    settings = settings or LightingSettings()
    try:
        if frame is None or not isinstance(frame, np.ndarray) or frame.size == 0:
            logger.warning("No image data available for lighting calculation")
            return BAD_LIGHTING

        if frame.ndim != 3 or frame.shape[2] < 3:
            logger.warning(f"Unsupported frame shape for lighting: {frame.shape}")
            return BAD_LIGHTING

        if frame_width is None or frame_height is None or frame_width <= 0 or frame_height <= 0:
            logger.warning(f"Invalid frame size for lighting: {frame_width}x{frame_height}")
            return BAD_LIGHTING

        pts = as_landmark_array(landmarks)
        if pts is None:
            logger.warning("No landmarks for lighting calculation")
            return BAD_LIGHTING

        if not has_indices(pts, index_map.lighting_indices):
            logger.warning(
                f"Lighting landmark index out of bounds: need {max(index_map.lighting_indices)}, "
                f"have {pts.shape[0] - 1}"
            )
            return BAD_LIGHTING

        # never sample past the real buffer
        w = min(int(frame_width), frame.shape[1])
        h = min(int(frame_height), frame.shape[0])

        regions = [
            (index_map.forehead, settings.forehead_radius),
            (index_map.left_cheek, settings.cheek_radius),
            (index_map.right_cheek, settings.cheek_radius),
        ]

        samples = []
        for idx, radius in regions:
            x, y = pts[idx, 0], pts[idx, 1]
            if not (math.isfinite(x) and math.isfinite(y)):
                continue
            window = sample_window(int(round(x * frame_width)), int(round(y * frame_height)), radius, w, h)
            if window is not None:
                samples.append(region_brightness(frame, window))

        return score_brightness_samples(samples, settings)

    except Exception as e:
        logger.error(f"Error calculating lighting quality: {e}")
        return BAD_LIGHTING
