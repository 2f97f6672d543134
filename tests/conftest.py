"""
pytest configuration and synthetic calibration scenes.

Every scene is generated from known poses with exact pinhole projections, so
optimizations started near the truth must recover it.
"""

from types import SimpleNamespace

import numpy as np
import pytest
from scipy.spatial.transform import Rotation as R

from posecal import CameraIntrinsics, CorrespondenceSet

# Camera above the target looking down its -z axis.
LOOK_DOWN = R.from_rotvec([np.pi, 0.0, 0.0])

VIEW_OFFSETS = [
    # rotvec, translation of the camera in the target frame
    ((0.0, 0.0, 0.0), (0.0, 0.0, 0.6)),
    ((0.2, 0.0, 0.0), (0.05, 0.1, 0.6)),
    ((0.0, 0.2, 0.0), (-0.1, 0.0, 0.55)),
    ((0.0, 0.0, 0.3), (0.0, -0.05, 0.65)),
    ((0.15, -0.15, 0.1), (0.08, -0.08, 0.6)),
    ((-0.2, 0.1, -0.2), (-0.05, 0.1, 0.5)),
    ((0.1, 0.2, 0.3), (0.1, 0.05, 0.7)),
]


def make_transform(rotvec, translation):
    transform = np.eye(4)
    transform[:3, :3] = R.from_rotvec(rotvec).as_matrix()
    transform[:3, 3] = translation
    return transform


def perturb(transform, angle=0.04, offset=0.03):
    delta = make_transform([angle, -angle, 0.5 * angle], [offset, -offset, offset])
    return transform @ delta


def target_to_camera(view_index):
    rotvec, translation = VIEW_OFFSETS[view_index]
    transform = np.eye(4)
    transform[:3, :3] = (LOOK_DOWN * R.from_rotvec(rotvec)).as_matrix()
    transform[:3, 3] = translation
    return transform


def target_points():
    """Non-coplanar 5 x 4 grid, 5 cm spacing."""
    xs, ys = np.meshgrid(np.arange(5) - 2.0, np.arange(4) - 1.5)
    points = np.zeros((20, 3))
    points[:, 0] = xs.reshape(-1) * 0.05
    points[:, 1] = ys.reshape(-1) * 0.05
    points[:, 2] = 0.02 * (np.arange(20) % 3)
    return points


def observe(intr, camera_to_target, points):
    camera_points = points @ camera_to_target[:3, :3].T + camera_to_target[:3, 3]
    u = intr.fx * camera_points[:, 0] / camera_points[:, 2] + intr.cx
    v = intr.fy * camera_points[:, 1] / camera_points[:, 2] + intr.cy
    return CorrespondenceSet(points, np.stack([u, v], axis=1))


@pytest.fixture
def intrinsics():
    return CameraIntrinsics(fx=550.0, fy=550.0, cx=320.0, cy=240.0)


@pytest.fixture
def camera_on_wrist_scene(intrinsics):
    wrist_to_camera = make_transform([0.1, -0.05, 0.02], [0.05, -0.03, 0.1])
    camera_to_wrist = np.linalg.inv(wrist_to_camera)
    base_to_target = make_transform([0.02, -0.03, 0.1], [0.8, 0.1, 0.0])
    points = target_points()

    wrist_poses = []
    image_observations = []
    for view_index in range(len(VIEW_OFFSETS)):
        view = target_to_camera(view_index)
        wrist_poses.append(base_to_target @ view @ camera_to_wrist)
        image_observations.append(observe(intrinsics, np.linalg.inv(view), points))

    return SimpleNamespace(
        intr=intrinsics,
        camera_to_wrist=camera_to_wrist,
        base_to_target=base_to_target,
        wrist_poses=wrist_poses,
        image_observations=image_observations,
    )


@pytest.fixture
def multi_camera_scene(intrinsics):
    base_to_target = make_transform([0.02, -0.03, 0.1], [0.8, 0.1, 0.0])
    points = target_points()
    intr = [
        intrinsics,
        CameraIntrinsics(fx=600.0, fy=590.0, cx=330.0, cy=250.0),
        CameraIntrinsics(fx=500.0, fy=505.0, cx=310.0, cy=235.0),
    ]
    base_to_camera = []
    image_observations = []
    for camera_i, view_index in enumerate((0, 4, 6)):
        view = target_to_camera(view_index)
        base_to_camera.append(base_to_target @ view)
        correspondences = observe(intr[camera_i], np.linalg.inv(view), points)
        # Two images per camera, each with half of the points.
        image_observations.append(
            [
                CorrespondenceSet(
                    correspondences.points_in_target[:10],
                    correspondences.observations[:10],
                ),
                CorrespondenceSet(
                    correspondences.points_in_target[10:],
                    correspondences.observations[10:],
                ),
            ]
        )

    return SimpleNamespace(
        intr=intr,
        base_to_target=base_to_target,
        base_to_camera=base_to_camera,
        image_observations=image_observations,
    )


@pytest.fixture
def moving_target_scene(intrinsics):
    base_to_camera = make_transform([-0.1, 0.05, 0.2], [0.5, -0.2, 1.2])
    wrist_to_target = make_transform([0.05, 0.1, -0.05], [0.0, 0.02, 0.12])
    target_to_wrist = np.linalg.inv(wrist_to_target)
    points = target_points()

    wrist_poses = []
    image_observations = []
    for view_index in range(len(VIEW_OFFSETS)):
        camera_to_target = np.linalg.inv(target_to_camera(view_index))
        wrist_poses.append(base_to_camera @ camera_to_target @ target_to_wrist)
        image_observations.append(observe(intrinsics, camera_to_target, points))

    return SimpleNamespace(
        intr=intrinsics,
        base_to_camera=base_to_camera,
        wrist_to_target=wrist_to_target,
        wrist_poses=wrist_poses,
        image_observations=image_observations,
    )
