import numpy as np

from conftest import IDX, make_landmarks
from facescan.landmarks import MEDIAPIPE_FACE_MESH, as_landmark_array, has_indices, nose_x


def test_index_table_fits_the_mesh():
    assert max(IDX.pose_indices + IDX.lighting_indices) < MEDIAPIPE_FACE_MESH.point_count


def test_as_landmark_array_normalizes_input():
    assert as_landmark_array([(0.1, 0.2, 0.0), (0.3, 0.4, 0.0)]).shape == (2, 3)
    assert as_landmark_array(None) is None
    assert as_landmark_array([]) is None
    assert as_landmark_array(42) is None
    assert as_landmark_array([(0.1, 0.2), (0.3,)]) is None
    assert as_landmark_array(np.zeros((3, 1))) is None


def test_has_indices():
    pts = np.zeros((10, 3))
    assert has_indices(pts, (0, 9))
    assert not has_indices(pts, (0, 10))


def test_nose_x():
    assert nose_x(make_landmarks(nose_x=0.42)) == np.float32(0.42)
    assert nose_x(np.zeros((1, 3))) is None
    assert nose_x(None) is None

    pts = np.array(make_landmarks())
    pts[IDX.nose_tip, 0] = np.nan
    assert nose_x(pts) is None
