"""
session.py

One capture session: an ordered list of required angles and at most one
image per angle.
"""

import itertools
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np

from facescan.config import CAPTURE_ANGLES

logger = logging.getLogger(__name__)

_session_counter = itertools.count(1)


def new_session_id() -> str:
    """Timestamp id, unique within the process even for back-to-back retakes."""
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    return f"{stamp}_{next(_session_counter):04d}"


@dataclass(frozen=True)
class CapturedImage:
    """A still for one angle."""
    angle: str
    pixels: np.ndarray      # BGR frame as captured
    encoded: bytes          # JPEG
    timestamp: float        # epoch seconds

    def to_dict(self) -> Dict:
        h, w = self.pixels.shape[:2]
        return {
            "angle": self.angle,
            "width": int(w),
            "height": int(h),
            "bytes": len(self.encoded),
            "timestamp": datetime.fromtimestamp(self.timestamp).isoformat(),
        }


@dataclass
class CaptureSession:
    angles: List[str] = field(default_factory=lambda: list(CAPTURE_ANGLES))
    session_id: str = field(default_factory=new_session_id)
    started_at: float = field(default_factory=time.time)
    step_index: int = 0
    images: Dict[str, CapturedImage] = field(default_factory=dict)

    @property
    def current_angle(self) -> Optional[str]:
        if self.step_index < len(self.angles):
            return self.angles[self.step_index]
        return None

    @property
    def is_complete(self) -> bool:
        return all(a in self.images for a in self.angles)

    @property
    def captured_angles(self) -> List[str]:
        return [a for a in self.angles if a in self.images]

    def add_image(self, image: CapturedImage):
        """Store the image for the current angle and advance one step."""
        if image.angle != self.current_angle:
            raise ValueError(f"Image for '{image.angle}' but current step is '{self.current_angle}'")
        if image.angle in self.images:
            raise ValueError(f"Angle '{image.angle}' already captured")

        self.images[image.angle] = image
        self.step_index += 1
        logger.info(f"Captured {image.angle} ({len(self.images)}/{len(self.angles)})")

    def ordered_images(self) -> List[CapturedImage]:
        return [self.images[a] for a in self.angles if a in self.images]
