import numpy as np
import cv2
from typing import List, Sequence, Tuple
from numpy.typing import NDArray

from .structs import CameraIntrinsics, CorrespondenceSet, InvalidInputError
from .utils import LOGGER, average_pose

# Closed-form initial guesses for the nonlinear refinement.


def to_transform(rotation: NDArray, translation: NDArray) -> NDArray:
    transform = np.eye(4)
    transform[:3, :3] = rotation
    transform[:3, 3] = np.asarray(translation).reshape(-1)
    return transform


def solve_pnp(
    intr: CameraIntrinsics, correspondence_set: CorrespondenceSet
) -> NDArray:
    """camera_to_target of a single image, [4, 4]."""
    if len(correspondence_set) < 4:
        raise InvalidInputError(
            f"PnP needs at least 4 correspondences, got {len(correspondence_set)}"
        )
    is_solved, rvec, tvec = cv2.solvePnP(
        correspondence_set.points_in_target,
        correspondence_set.observations,
        intr.matrix,
        np.zeros(5),
    )
    if not is_solved:
        raise InvalidInputError("solvePnP failed to find a target pose")
    return to_transform(cv2.Rodrigues(rvec)[0], tvec)


def _target_poses(
    intr: CameraIntrinsics, image_observations: Sequence[CorrespondenceSet]
) -> Tuple[NDArray, NDArray]:
    camera_to_target = np.stack(
        [solve_pnp(intr, correspondence_set) for correspondence_set in image_observations]
    )
    return camera_to_target[:, :3, :3], camera_to_target[:, :3, 3]


def _check_wrist_poses(wrist_poses, image_observations):
    if len(wrist_poses) != len(image_observations):
        raise InvalidInputError(
            f"{len(wrist_poses)} wrist poses given for "
            f"{len(image_observations)} observation sets"
        )
    if len(wrist_poses) < 3:
        raise InvalidInputError(
            f"Hand-eye guess needs at least 3 wrist poses, got {len(wrist_poses)}"
        )
    return np.stack([np.asarray(pose, dtype=np.float64) for pose in wrist_poses])


def get_camera_on_wrist_guess(
    intr: CameraIntrinsics,
    wrist_poses: List[NDArray],
    image_observations: List[CorrespondenceSet],
    method=cv2.CALIB_HAND_EYE_TSAI,
) -> Tuple[NDArray, NDArray]:
    """
    Returns:
        camera_to_wrist, base_to_target, both [4, 4]
    """
    base_to_wrist = _check_wrist_poses(wrist_poses, image_observations)
    target_to_cam_rotation, target_to_cam_translation = _target_poses(
        intr, image_observations
    )
    cam_to_arm_rotation, cam_to_arm_translation = cv2.calibrateHandEye(
        base_to_wrist[:, :3, :3],
        base_to_wrist[:, :3, 3],
        target_to_cam_rotation,
        target_to_cam_translation,
        method=method,
    )
    wrist_to_camera = to_transform(cam_to_arm_rotation, cam_to_arm_translation)
    base_to_target = average_pose(
        [
            base_to_wrist_i @ wrist_to_camera @ to_transform(rotation, translation)
            for base_to_wrist_i, rotation, translation in zip(
                base_to_wrist, target_to_cam_rotation, target_to_cam_translation
            )
        ]
    )
    LOGGER.debug(f"Hand-eye guess from {len(base_to_wrist)} wrist poses")
    return np.linalg.inv(wrist_to_camera), base_to_target


def get_static_camera_moving_target_guess(
    intr: CameraIntrinsics,
    wrist_poses: List[NDArray],
    image_observations: List[CorrespondenceSet],
    method=cv2.CALIB_HAND_EYE_TSAI,
) -> Tuple[NDArray, NDArray]:
    """
    Eye-to-hand variant: the inverted wrist poses go where calibrateHandEye
    expects gripper poses, and it then returns the camera pose in the base.

    Returns:
        base_to_camera, wrist_to_target, both [4, 4]
    """
    base_to_wrist = _check_wrist_poses(wrist_poses, image_observations)
    wrist_to_base = np.linalg.inv(base_to_wrist)
    target_to_cam_rotation, target_to_cam_translation = _target_poses(
        intr, image_observations
    )
    cam_to_base_rotation, cam_to_base_translation = cv2.calibrateHandEye(
        wrist_to_base[:, :3, :3],
        wrist_to_base[:, :3, 3],
        target_to_cam_rotation,
        target_to_cam_translation,
        method=method,
    )
    base_to_camera = to_transform(cam_to_base_rotation, cam_to_base_translation)
    wrist_to_target = average_pose(
        [
            wrist_to_base_i @ base_to_camera @ to_transform(rotation, translation)
            for wrist_to_base_i, rotation, translation in zip(
                wrist_to_base, target_to_cam_rotation, target_to_cam_translation
            )
        ]
    )
    return base_to_camera, wrist_to_target


def get_static_camera_guess(
    intr: CameraIntrinsics,
    image_observations: List[CorrespondenceSet],
    base_to_target: NDArray,
) -> NDArray:
    """base_to_camera of one static camera, averaged over its images."""
    if len(image_observations) == 0:
        raise InvalidInputError("Camera has no images")
    rotations, translations = _target_poses(intr, image_observations)
    return average_pose(
        [
            base_to_target @ np.linalg.inv(to_transform(rotation, translation))
            for rotation, translation in zip(rotations, translations)
        ]
    )
