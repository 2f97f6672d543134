from typing import Optional
import numpy as np

from .geometry import project, transform_points
from .problem import (
    build_camera_on_wrist_problem,
    build_static_camera_moving_target_problem,
)
from .solver import SolverOptions, solve
from .structs import (
    ExtrinsicCameraOnWristProblem,
    ExtrinsicCameraOnWristResult,
    ExtrinsicStaticCameraMovingTargetProblem,
    ExtrinsicStaticCameraMovingTargetResult,
)
from .utils import LOGGER, transform_pretty_string

# Estimate, camera on the wrist:
# Camera to wrist transform
# Base to target transform
#
# Estimate, static camera and target on the wrist:
# Base to camera transform
# Wrist to target transform


def optimize_camera_on_wrist(
    params: ExtrinsicCameraOnWristProblem, options: Optional[SolverOptions] = None
) -> ExtrinsicCameraOnWristResult:
    problem = build_camera_on_wrist_problem(params)
    LOGGER.info(
        f"Optimizing camera on wrist from {len(params.image_observations)} images..."
    )
    summary = solve(problem, options)
    result = ExtrinsicCameraOnWristResult(
        converged=summary.converged,
        initial_cost_per_obs=summary.initial_cost_per_obs,
        final_cost_per_obs=summary.final_cost_per_obs,
        base_to_target=problem.pose("base_to_target"),
        camera_to_wrist=problem.pose("camera_to_wrist"),
    )
    LOGGER.info(
        f"done. Cost per obs: {result.initial_cost_per_obs:.4f} px -> "
        f"{result.final_cost_per_obs:.4f} px"
    )
    LOGGER.debug("Wrist to camera result:")
    LOGGER.debug(transform_pretty_string(result.wrist_to_camera))
    LOGGER.debug("Base to target result:")
    LOGGER.debug(transform_pretty_string(result.base_to_target))
    return result


def optimize_static_camera_moving_target(
    params: ExtrinsicStaticCameraMovingTargetProblem,
    options: Optional[SolverOptions] = None,
) -> ExtrinsicStaticCameraMovingTargetResult:
    problem = build_static_camera_moving_target_problem(params)
    LOGGER.info(
        f"Optimizing static camera from {len(params.image_observations)} images..."
    )
    summary = solve(problem, options)
    result = ExtrinsicStaticCameraMovingTargetResult(
        converged=summary.converged,
        initial_cost_per_obs=summary.initial_cost_per_obs,
        final_cost_per_obs=summary.final_cost_per_obs,
        base_to_camera=problem.pose("base_to_camera"),
        wrist_to_target=problem.pose("wrist_to_target"),
    )
    LOGGER.info(
        f"done. Cost per obs: {result.initial_cost_per_obs:.4f} px -> "
        f"{result.final_cost_per_obs:.4f} px"
    )
    LOGGER.debug("Base to camera result:")
    LOGGER.debug(transform_pretty_string(result.base_to_camera))
    return result


def per_image_reprojection_error(
    params: ExtrinsicCameraOnWristProblem, result: ExtrinsicCameraOnWristResult
) -> np.ndarray:
    """RMS pixel distance between observed and reprojected points, per image."""
    errors = []
    for base_to_wrist, correspondence_set in zip(
        params.wrist_poses, params.image_observations
    ):
        camera_to_target = (
            result.camera_to_wrist
            @ np.linalg.inv(base_to_wrist)
            @ result.base_to_target
        )
        points = transform_points(camera_to_target, correspondence_set.points_in_target)
        projected = np.stack(
            [np.asarray(project(params.intr.as_array(), point)) for point in points]
        )
        error = np.sum((correspondence_set.observations - projected) ** 2, axis=1)
        errors.append(np.sqrt(error.mean()))
    return np.array(errors)
