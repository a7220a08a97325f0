"""
landmarks.py

Landmark index contract
-----------------------
The estimators address landmarks by meaning (nose tip, chin, cheeks...),
never by raw index. The mapping lives in one table per landmark source so a
different detector can be plugged in by supplying its own table.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class LandmarkIndexMap:
    """Semantic point → landmark index for one landmark source."""
    name: str
    point_count: int
    nose_tip: int
    chin: int
    left_eye_outer: int
    right_eye_outer: int
    left_mouth: int
    right_mouth: int
    forehead: int
    left_cheek: int
    right_cheek: int

    @property
    def pose_indices(self) -> Tuple[int, ...]:
        """The six points the head pose estimate needs."""
        return (
            self.nose_tip,
            self.chin,
            self.left_eye_outer,
            self.right_eye_outer,
            self.left_mouth,
            self.right_mouth,
        )

    @property
    def lighting_indices(self) -> Tuple[int, ...]:
        return (self.forehead, self.left_cheek, self.right_cheek)


# MediaPipe Face Mesh / FaceLandmarker (468 points + 10 iris points)
MEDIAPIPE_FACE_MESH = LandmarkIndexMap(
    name="mediapipe_face_mesh",
    point_count=478,
    nose_tip=1,
    chin=175,
    left_eye_outer=33,
    right_eye_outer=362,
    left_mouth=61,
    right_mouth=291,
    forehead=9,
    left_cheek=116,
    right_cheek=345,
)


def as_landmark_array(landmarks) -> Optional[np.ndarray]:
    """
    Normalize a landmark set to a float (N, 3) array.

    Accepts an ndarray, a list of (x, y, z) tuples or a list of objects with
    .x/.y/.z attributes (MediaPipe NormalizedLandmark).
    Returns None for None, empty or malformed input.
    """
    if landmarks is None:
        return None

    if isinstance(landmarks, np.ndarray):
        arr = landmarks
    else:
        try:
            points = list(landmarks)
        except TypeError:
            return None
        if not points:
            return None
        if hasattr(points[0], "x"):
            points = [[p.x, p.y, getattr(p, "z", 0.0)] for p in points]
        try:
            arr = np.asarray(points, dtype=np.float32)
        except (TypeError, ValueError):
            return None

    if arr.ndim != 2 or arr.shape[0] == 0 or arr.shape[1] < 2:
        return None

    return arr


def has_indices(landmarks: np.ndarray, indices) -> bool:
    return max(indices) < landmarks.shape[0]


def to_pixel(landmarks: np.ndarray, index: int, w: int, h: int) -> np.ndarray:
    """Normalized landmark → pixel (x, y)."""
    return np.array([landmarks[index, 0] * w, landmarks[index, 1] * h], dtype=np.float64)


def nose_x(landmarks, index_map: LandmarkIndexMap = MEDIAPIPE_FACE_MESH) -> Optional[float]:
    """Normalized horizontal nose position, or None when unavailable."""
    arr = as_landmark_array(landmarks)
    if arr is None or not has_indices(arr, (index_map.nose_tip,)):
        return None
    x = float(arr[index_map.nose_tip, 0])
    return x if np.isfinite(x) else None
