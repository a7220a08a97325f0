from .pose_gatekeeper import NEUTRAL_POSE, HeadPose, estimate_head_pose, is_pose_valid
from .quality_gatekeeper import BAD_LIGHTING, LightingQuality, estimate_lighting
from .stability_gatekeeper import SignalStabilizer, StabilizedSignals

__all__ = [
    'NEUTRAL_POSE',
    'HeadPose',
    'estimate_head_pose',
    'is_pose_valid',
    'BAD_LIGHTING',
    'LightingQuality',
    'estimate_lighting',
    'SignalStabilizer',
    'StabilizedSignals',
]
