"""
pose_gatekeeper.py

LAYER 2: Pose Gatekeeper (ANGLE-AWARE)
-------------------------------------
Estimates head pose from six landmarks and validates it against the
current capture angle:
- center
- left
- right

The estimate is a geometric approximation, not a calibrated PnP solve.
It only has to respond monotonically to head turns.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

from facescan.config import PoseSettings
from facescan.landmarks import (
    MEDIAPIPE_FACE_MESH,
    LandmarkIndexMap,
    as_landmark_array,
    has_indices,
    to_pixel,
)

logger = logging.getLogger(__name__)

# -------------------------------------------------
# Constants
# -------------------------------------------------

YAW_RANGE = (-90.0, 90.0)
PITCH_RANGE = (-90.0, 90.0)
ROLL_RANGE = (-180.0, 180.0)

MIN_FOCAL_PX = 1.0
MIN_NOSE_EYE_DIST_PX = 0.1

# Guidance thresholds (degrees)
GUIDE_YAW = 15.0
GUIDE_PITCH = 15.0
GUIDE_ROLL = 10.0


@dataclass(frozen=True)
class HeadPose:
    yaw: float
    pitch: float
    roll: float

    def to_dict(self):
        return {
            "yaw": round(self.yaw, 2),
            "pitch": round(self.pitch, 2),
            "roll": round(self.roll, 2),
        }


NEUTRAL_POSE = HeadPose(0.0, 0.0, 0.0)

# -------------------------------------------------
# Helpers
# -------------------------------------------------

def _finite(value):
    return value if math.isfinite(value) else 0.0


def _clamp(value, bounds):
    lo, hi = bounds
    return max(lo, min(hi, value))


def mode_instruction(angle):
    return {
        "center": "Look straight ahead into the camera",
        "left": "Turn your head to show your left profile",
        "right": "Turn your head to show your right profile",
    }.get(angle, "Position your face in the frame")


# -------------------------------------------------
# Head pose
# -------------------------------------------------

def estimate_head_pose(landmarks, frame_width, frame_height,
                       index_map: LandmarkIndexMap = MEDIAPIPE_FACE_MESH) -> HeadPose:
    """
    Estimate yaw, pitch, roll (degrees) from a normalized landmark set.

    Never raises: missing or short landmark sets and non-positive frame
    sizes return NEUTRAL_POSE.
    """
    try:
        if frame_width is None or frame_height is None or frame_width <= 0 or frame_height <= 0:
            logger.warning(f"Invalid frame size for head pose: {frame_width}x{frame_height}")
            return NEUTRAL_POSE

        pts = as_landmark_array(landmarks)
        if pts is None:
            logger.warning("No landmarks for head pose")
            return NEUTRAL_POSE

        if not has_indices(pts, index_map.pose_indices):
            logger.warning(
                f"Head pose landmark index out of bounds: need {max(index_map.pose_indices)}, "
                f"have {pts.shape[0] - 1}"
            )
            return NEUTRAL_POSE

        w, h = float(frame_width), float(frame_height)
        nose = to_pixel(pts, index_map.nose_tip, w, h)
        left_eye = to_pixel(pts, index_map.left_eye_outer, w, h)
        right_eye = to_pixel(pts, index_map.right_eye_outer, w, h)

        eye_mid = (left_eye + right_eye) / 2.0

        # yaw: nose offset from the eye midpoint against an assumed focal length of w px
        focal = max(w, MIN_FOCAL_PX)
        yaw = math.degrees(math.atan2(nose[0] - eye_mid[0], focal))

        # pitch: vertical nose offset relative to the nose-eye distance
        dist = max(float(np.linalg.norm(nose - eye_mid)), MIN_NOSE_EYE_DIST_PX)
        pitch = math.degrees(math.atan2(nose[1] - eye_mid[1], dist))

        # roll: angle of the eye line
        dx, dy = right_eye - left_eye
        roll = math.degrees(math.atan2(dy, dx)) if (dx != 0 or dy != 0) else 0.0

        return HeadPose(
            yaw=_clamp(_finite(yaw), YAW_RANGE),
            pitch=_clamp(_finite(pitch), PITCH_RANGE),
            roll=_clamp(_finite(roll), ROLL_RANGE),
        )

    except Exception as e:
        logger.error(f"Error calculating head pose: {e}")
        return NEUTRAL_POSE


def is_head_pose_acceptable(pose: HeadPose, settings: PoseSettings = None) -> bool:
    settings = settings or PoseSettings()
    return (
        abs(pose.yaw) <= settings.yaw_max and
        abs(pose.pitch) <= settings.pitch_max and
        abs(pose.roll) <= settings.roll_max
    )


def nose_in_target_zone(nose_x, angle, settings: PoseSettings = None) -> bool:
    """
    Has the nose reached the target zone for this angle?

    center is a band around the midline. left/right are one-sided: the nose
    only has to have passed the guide line, since the user turns through it.
    """
    settings = settings or PoseSettings()
    if nose_x is None or not math.isfinite(nose_x):
        return False

    if angle == "center":
        return abs(nose_x - 0.5) <= settings.center_tolerance
    if angle == "left":
        return nose_x <= settings.left_line
    if angle == "right":
        return nose_x >= settings.right_line

    return False


def is_pose_valid(pose: HeadPose, nose_x, angle="center", settings: PoseSettings = None):
    """
    Angle-aware pose validation (raw, per frame).

    Returns a dict:{"valid": bool, "reason": str, "metrics": {...}}
    """
    settings = settings or PoseSettings()
    metrics = pose.to_dict()
    metrics["nose_x"] = None if nose_x is None else round(float(nose_x), 4)

    if angle not in ("center", "left", "right"):
        return {"valid": False, "reason": "Unknown capture angle", "metrics": metrics}

    if not is_head_pose_acceptable(pose, settings):
        return {"valid": False, "reason": pose_guidance(pose), "metrics": metrics}

    if not nose_in_target_zone(nose_x, angle, settings):
        reason = {
            "center": "Align your nose with the center line",
            "left": "Turn left until your nose crosses the line",
            "right": "Turn right until your nose crosses the line",
        }[angle]
        return {"valid": False, "reason": reason, "metrics": metrics}

    return {"valid": True, "reason": "Pose OK", "metrics": metrics}


def pose_guidance(pose: HeadPose) -> str:
    messages = []

    if abs(pose.yaw) > GUIDE_YAW:
        messages.append("Turn head left" if pose.yaw > 0 else "Turn head right")
    if abs(pose.pitch) > GUIDE_PITCH:
        messages.append("Look up" if pose.pitch > 0 else "Look down")
    if abs(pose.roll) > GUIDE_ROLL:
        messages.append("Tilt head left" if pose.roll > 0 else "Tilt head right")

    return ", ".join(messages) if messages else "Perfect position!"
