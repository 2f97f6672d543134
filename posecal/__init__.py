"""Extrinsic camera calibration by reprojection error minimization."""

from functools import singledispatch
import jax

# Pixel residuals at the solution are far below float32 resolution.
jax.config.update("jax_enable_x64", True)

from .handeye_cal import (  # noqa: E402
    optimize_camera_on_wrist,
    optimize_static_camera_moving_target,
    per_image_reprojection_error,
)
from .multi_camera_pnp import optimize_multi_static_camera_pnp  # noqa: E402
from .solver import SolverOptions, SolverSummary, solve  # noqa: E402
from .structs import (  # noqa: E402
    CameraIntrinsics,
    CorrespondenceSet,
    ExtrinsicCameraOnWristProblem,
    ExtrinsicCameraOnWristResult,
    ExtrinsicStaticCameraMovingTargetProblem,
    ExtrinsicStaticCameraMovingTargetResult,
    InvalidInputError,
    MultiStaticCameraPnPProblem,
    MultiStaticCameraPnPResult,
    Pose6d,
)


@singledispatch
def optimize(params, options=None):
    raise TypeError(f"No calibration registered for {type(params).__name__}")


optimize.register(ExtrinsicCameraOnWristProblem, optimize_camera_on_wrist)
optimize.register(MultiStaticCameraPnPProblem, optimize_multi_static_camera_pnp)
optimize.register(
    ExtrinsicStaticCameraMovingTargetProblem, optimize_static_camera_moving_target
)

__all__ = [
    "CameraIntrinsics",
    "CorrespondenceSet",
    "ExtrinsicCameraOnWristProblem",
    "ExtrinsicCameraOnWristResult",
    "ExtrinsicStaticCameraMovingTargetProblem",
    "ExtrinsicStaticCameraMovingTargetResult",
    "InvalidInputError",
    "MultiStaticCameraPnPProblem",
    "MultiStaticCameraPnPResult",
    "Pose6d",
    "SolverOptions",
    "SolverSummary",
    "optimize",
    "optimize_camera_on_wrist",
    "optimize_multi_static_camera_pnp",
    "optimize_static_camera_moving_target",
    "per_image_reprojection_error",
    "solve",
]
