"""MediaPipe Pose 33 关键点的索引、关节定义与骨架连接。

索引遵循 MediaPipe Pose (BlazePose Full) 33 关键点定义。
这里不依赖 mediapipe 包本身，便于评分层/界面层解耦。
https://developers.google.com/mediapipe/solutions/vision/pose_landmarker
"""

from __future__ import annotations

NUM_LANDMARKS = 33

NOSE = 0
L_SHOULDER = 11
R_SHOULDER = 12
L_ELBOW = 13
R_ELBOW = 14
L_WRIST = 15
R_WRIST = 16
L_HIP = 23
R_HIP = 24
L_KNEE = 25
R_KNEE = 26
L_ANKLE = 27
R_ANKLE = 28
L_HEEL = 29
R_HEEL = 30
L_FOOT_INDEX = 31
R_FOOT_INDEX = 32

# 归一化所需的四个锚点
ANCHORS: tuple[int, ...] = (L_SHOULDER, R_SHOULDER, L_HIP, R_HIP)

# 模板中按名称给出的关键点 -> 索引（mid_hip 为合成点，本地重新计算）
NAME_TO_INDEX: dict[str, int] = {
    "nose": NOSE,
    "left_shoulder": L_SHOULDER,
    "right_shoulder": R_SHOULDER,
    "left_elbow": L_ELBOW,
    "right_elbow": R_ELBOW,
    "left_wrist": L_WRIST,
    "right_wrist": R_WRIST,
    "left_hip": L_HIP,
    "right_hip": R_HIP,
    "left_knee": L_KNEE,
    "right_knee": R_KNEE,
    "left_ankle": L_ANKLE,
    "right_ankle": R_ANKLE,
    "left_heel": L_HEEL,
    "right_heel": R_HEEL,
    "left_foot_index": L_FOOT_INDEX,
    "right_foot_index": R_FOOT_INDEX,
}

# 关节角：(端点a, 顶点, 端点b)
JOINT_CHAINS: dict[str, tuple[int, int, int]] = {
    "left_elbow": (L_SHOULDER, L_ELBOW, L_WRIST),
    "right_elbow": (R_SHOULDER, R_ELBOW, R_WRIST),
    "left_knee": (L_HIP, L_KNEE, L_ANKLE),
    "right_knee": (R_HIP, R_KNEE, R_ANKLE),
    "left_shoulder": (L_ELBOW, L_SHOULDER, L_HIP),
    "right_shoulder": (R_ELBOW, R_SHOULDER, R_HIP),
    "left_hip": (L_SHOULDER, L_HIP, L_KNEE),
    "right_hip": (R_SHOULDER, R_HIP, R_KNEE),
}

SPINE_TILT = "spine_tilt"

JOINT_NAMES: tuple[str, ...] = tuple(JOINT_CHAINS) + (SPINE_TILT,)

# 可见度门控：每个关节依赖的关键点（肢体关节3个，脊柱倾角4个）
JOINT_LANDMARKS: dict[str, tuple[int, ...]] = {
    **JOINT_CHAINS,
    SPINE_TILT: (L_SHOULDER, R_SHOULDER, L_HIP, R_HIP),
}

# 骨骼方向相似度使用的 10 段骨骼
BONES: tuple[tuple[int, int], ...] = (
    (L_SHOULDER, L_ELBOW),
    (R_SHOULDER, R_ELBOW),
    (L_ELBOW, L_WRIST),
    (R_ELBOW, R_WRIST),
    (L_HIP, L_KNEE),
    (R_HIP, R_KNEE),
    (L_KNEE, L_ANKLE),
    (R_KNEE, R_ANKLE),
    (L_SHOULDER, L_HIP),
    (R_SHOULDER, R_HIP),
)

# 姿态嵌入中相对肩中点的关键点
EMBED_KEYS: tuple[int, ...] = (
    L_SHOULDER, R_SHOULDER, L_HIP, R_HIP,
    L_ELBOW, R_ELBOW, L_KNEE, R_KNEE,
    L_WRIST, R_WRIST, L_ANKLE, R_ANKLE,
)

# 连接对 (a, b)，用于画面叠加
POSE_CONNECTIONS: set[tuple[int, int]] = {
    # torso
    (11, 12),
    (11, 23),
    (12, 24),
    (23, 24),
    # left arm
    (11, 13),
    (13, 15),
    # right arm
    (12, 14),
    (14, 16),
    # left leg
    (23, 25),
    (25, 27),
    # right leg
    (24, 26),
    (26, 28),
    # small extras (feet)
    (27, 31),
    (31, 29),
    (28, 32),
    (32, 30),
}
