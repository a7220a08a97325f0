import numpy as np
import pytest

from facescan.config import PipelineConfig
from facescan.errors import FrameGrabError
from facescan.landmarks import MEDIAPIPE_FACE_MESH

IDX = MEDIAPIPE_FACE_MESH

FRAME_W = 640
FRAME_H = 480


def make_landmarks(nose_x=0.5, nose_y=0.55, eye_y=0.45, eye_span=0.2, roll_dy=0.0, count=478):
    """Synthetic face: eyes centered on the midline, nose wherever asked."""
    pts = np.full((count, 3), 0.5, dtype=np.float32)
    pts[:, 2] = 0.0

    pts[IDX.nose_tip] = [nose_x, nose_y, -0.05]
    pts[IDX.chin] = [0.5, 0.75, 0.0]
    pts[IDX.left_eye_outer] = [0.5 - eye_span / 2, eye_y, 0.0]
    pts[IDX.right_eye_outer] = [0.5 + eye_span / 2, eye_y + roll_dy, 0.0]
    pts[IDX.left_mouth] = [0.45, 0.65, 0.0]
    pts[IDX.right_mouth] = [0.55, 0.65, 0.0]
    pts[IDX.forehead] = [0.5, 0.3, 0.0]
    pts[IDX.left_cheek] = [0.4, 0.55, 0.0]
    pts[IDX.right_cheek] = [0.6, 0.55, 0.0]

    pts.flags.writeable = False
    return pts


def make_frame(value=150, w=FRAME_W, h=FRAME_H):
    return np.full((h, w, 3), value, dtype=np.uint8)


def paint_region(frame, landmarks, index, value, radius):
    h, w = frame.shape[:2]
    cx = int(round(landmarks[index, 0] * w))
    cy = int(round(landmarks[index, 1] * h))
    frame[max(0, cy - radius):cy + radius, max(0, cx - radius):cx + radius] = value


class FakeVideo:
    def __init__(self, frame=None, fail=False):
        self.frame = make_frame() if frame is None else frame
        self.fail = fail
        self.reads = 0
        self.released = False

    def read(self):
        self.reads += 1
        if self.fail:
            raise FrameGrabError("no frame")
        return self.frame

    def release(self):
        self.released = True


class FakeLandmarks:
    def __init__(self, landmarks=None, error=None):
        self.landmarks = landmarks
        self.error = error
        self.calls = 0
        self.closed = False

    def detect(self, frame, timestamp_ms):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.landmarks

    def close(self):
        self.closed = True


@pytest.fixture
def config():
    return PipelineConfig()


@pytest.fixture
def landmarks():
    return make_landmarks()


class FakeClock:
    """Manual monotonic clock in seconds."""

    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
