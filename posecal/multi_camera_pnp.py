"""
Simultaneous localization of several static cameras and one target.

Every camera sees the same target; each camera has its own pose in the base
frame. The target pose is a single parameter block shared by all residuals.
"""

from typing import Optional

from .problem import build_multi_static_camera_problem
from .solver import SolverOptions, solve
from .structs import MultiStaticCameraPnPProblem, MultiStaticCameraPnPResult
from .utils import LOGGER, transform_pretty_string


def optimize_multi_static_camera_pnp(
    params: MultiStaticCameraPnPProblem, options: Optional[SolverOptions] = None
) -> MultiStaticCameraPnPResult:
    problem = build_multi_static_camera_problem(params)
    n_images = sum(len(images) for images in params.image_observations)
    LOGGER.info(
        f"Optimizing {len(params.intr)} static cameras from {n_images} images..."
    )
    summary = solve(problem, options)
    result = MultiStaticCameraPnPResult(
        converged=summary.converged,
        initial_cost_per_obs=summary.initial_cost_per_obs,
        final_cost_per_obs=summary.final_cost_per_obs,
        base_to_target=problem.pose("base_to_target"),
        base_to_camera=[
            problem.pose(f"base_to_camera_{camera_i}")
            for camera_i in range(len(params.intr))
        ],
    )
    LOGGER.info(
        f"done. Cost per obs: {result.initial_cost_per_obs:.4f} px -> "
        f"{result.final_cost_per_obs:.4f} px"
    )
    LOGGER.debug("Base to target result:")
    LOGGER.debug(transform_pretty_string(result.base_to_target))
    return result
