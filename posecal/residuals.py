"""
Reprojection cost functors, one instance per observed target point.

A functor keeps the fixed data of its observation and is called with the
parameter blocks the solver is varying. The math lives in the static
``residual`` so identical functors can be stacked and evaluated with
``jax.vmap``; ``constants()`` gives the per-observation arguments in the
order ``residual`` expects them after the parameter blocks.
"""

from dataclasses import dataclass, astuple
from numpy.typing import NDArray
import numpy as np

from .geometry import apply_inverse_pose, apply_pose, project


def _freeze(array, size):
    array = np.array(array, dtype=np.float64).reshape(size)
    array.flags.writeable = False
    return array


@dataclass(frozen=True, eq=False)
class ReprojectionCost:
    observation: NDArray  # [2]
    intrinsics: NDArray  # [4]
    point_in_target: NDArray  # [3]

    num_parameter_blocks = 2

    def __post_init__(self):
        object.__setattr__(self, "observation", _freeze(self.observation, 2))
        object.__setattr__(self, "intrinsics", _freeze(self.intrinsics, 4))
        object.__setattr__(self, "point_in_target", _freeze(self.point_in_target, 3))

    def constants(self):
        return astuple(self)

    def __call__(self, *parameter_blocks):
        return self.residual(*parameter_blocks, *self.constants())

    @staticmethod
    def residual(*args):
        raise NotImplementedError


@dataclass(frozen=True, eq=False)
class CameraOnWristReprojectionCost(ReprojectionCost):
    """
    Camera on the robot wrist looking at a static target.

    Parameter blocks: camera_to_wrist, base_to_target.
    wrist_to_base is the inverse of the robot pose at capture time.
    """

    wrist_to_base: NDArray = None  # [6]

    def __post_init__(self):
        super().__post_init__()
        object.__setattr__(self, "wrist_to_base", _freeze(self.wrist_to_base, 6))

    @staticmethod
    def residual(
        camera_to_wrist,
        base_to_target,
        observation,
        intrinsics,
        point_in_target,
        wrist_to_base,
    ):
        base_point = apply_pose(base_to_target, point_in_target)
        wrist_point = apply_pose(wrist_to_base, base_point)
        camera_point = apply_pose(camera_to_wrist, wrist_point)
        return project(intrinsics, camera_point) - observation


@dataclass(frozen=True, eq=False)
class StaticCameraReprojectionCost(ReprojectionCost):
    """Parameter blocks: base_to_target, base_to_camera."""

    @staticmethod
    def residual(
        base_to_target,
        base_to_camera,
        observation,
        intrinsics,
        point_in_target,
    ):
        base_point = apply_pose(base_to_target, point_in_target)
        camera_point = apply_inverse_pose(base_to_camera, base_point)
        return project(intrinsics, camera_point) - observation


@dataclass(frozen=True, eq=False)
class StaticCameraMovingTargetReprojectionCost(ReprojectionCost):
    """
    Target carried by the wrist, seen by a static camera.

    Parameter blocks: wrist_to_target, base_to_camera.
    """

    base_to_wrist: NDArray = None  # [6]

    def __post_init__(self):
        super().__post_init__()
        object.__setattr__(self, "base_to_wrist", _freeze(self.base_to_wrist, 6))

    @staticmethod
    def residual(
        wrist_to_target,
        base_to_camera,
        observation,
        intrinsics,
        point_in_target,
        base_to_wrist,
    ):
        wrist_point = apply_pose(wrist_to_target, point_in_target)
        base_point = apply_pose(base_to_wrist, wrist_point)
        camera_point = apply_inverse_pose(base_to_camera, base_point)
        return project(intrinsics, camera_point) - observation
