"""Synthetic pose builders shared by the test modules.

All poses are hand-placed 33-point MediaPipe layouts in normalized image
coordinates (y grows downward), a person standing upright and facing the
camera with slightly bent arms.
"""

import numpy as np

from pose_core.types import PoseLandmarks

# (x, y) per landmark index
_UPRIGHT_XY = {
    0: (0.50, 0.18),   # nose
    1: (0.52, 0.16), 2: (0.53, 0.16), 3: (0.54, 0.16),
    4: (0.48, 0.16), 5: (0.47, 0.16), 6: (0.46, 0.16),
    7: (0.56, 0.17), 8: (0.44, 0.17),
    9: (0.52, 0.21), 10: (0.48, 0.21),
    11: (0.60, 0.30),  # left shoulder
    12: (0.40, 0.30),  # right shoulder
    13: (0.66, 0.45),  # left elbow
    14: (0.34, 0.45),  # right elbow
    15: (0.64, 0.60),  # left wrist
    16: (0.36, 0.60),  # right wrist
    17: (0.64, 0.62), 18: (0.36, 0.62),
    19: (0.63, 0.63), 20: (0.37, 0.63),
    21: (0.65, 0.61), 22: (0.35, 0.61),
    23: (0.57, 0.60),  # left hip
    24: (0.43, 0.60),  # right hip
    25: (0.58, 0.75),  # left knee
    26: (0.42, 0.75),  # right knee
    27: (0.58, 0.90),  # left ankle
    28: (0.42, 0.90),  # right ankle
    29: (0.57, 0.93), 30: (0.43, 0.93),
    31: (0.60, 0.94), 32: (0.40, 0.94),
}

def make_upright_data(visibility: float = 1.0) -> np.ndarray:
    data = np.zeros((33, 4), dtype=np.float64)
    for i, (x, y) in _UPRIGHT_XY.items():
        data[i] = [x, y, 0.0, visibility]
    return data

def make_landmarks(overrides=None, visibility=None) -> PoseLandmarks:
    """Upright pose with optional {index: (x, y)} overrides and {index: vis} visibility edits.

    An override of None removes the landmark (NaN coordinates, visibility 0).
    """
    data = make_upright_data()
    for i, xy in (overrides or {}).items():
        if xy is None:
            data[i, :2] = np.nan
            data[i, 3] = 0.0
        else:
            data[i, :2] = xy
    for i, v in (visibility or {}).items():
        data[i, 3] = v
    return PoseLandmarks(data)

def transform_landmarks(lm: PoseLandmarks, angle_deg=0.0, scale=1.0, shift=(0.0, 0.0)) -> PoseLandmarks:
    """Rotate about (0.5, 0.5), scale uniformly and translate in the image plane."""
    a = np.radians(angle_deg)
    rot = np.array([[np.cos(a), -np.sin(a)], [np.sin(a), np.cos(a)]])
    data = lm.data.copy()
    center = np.array([0.5, 0.5])
    data[:, :2] = ((data[:, :2] - center) @ rot.T) * scale + center + np.asarray(shift)
    return PoseLandmarks(data)

