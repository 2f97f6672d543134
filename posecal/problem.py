"""
Parameter blocks, residual blocks and the builders for each calibration setup.

A ``ReprojectionProblem`` owns one arena of named pose blocks. Residual blocks
refer to blocks by name, so every observation of the same camera or target
reads the same storage and the solver moves them together.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple
import jax
import jax.numpy as jnp
import numpy as np
from numpy.typing import NDArray

from .residuals import (
    CameraOnWristReprojectionCost,
    ReprojectionCost,
    StaticCameraMovingTargetReprojectionCost,
    StaticCameraReprojectionCost,
)
from .structs import (
    CorrespondenceSet,
    ExtrinsicCameraOnWristProblem,
    ExtrinsicStaticCameraMovingTargetProblem,
    InvalidInputError,
    MultiStaticCameraPnPProblem,
    Pose6d,
    as_transform,
)
from .utils import LOGGER

POSE_SIZE = 6


class ParameterBlocks:
    def __init__(self):
        self._values: Dict[str, NDArray] = OrderedDict()
        self._constant = set()

    def add(self, name: str, values) -> str:
        if name in self._values:
            raise KeyError(f"Parameter block '{name}' already exists")
        values = np.asarray(values, dtype=np.float64).reshape(-1)
        self._values[name] = values.copy()
        return name

    def set_constant(self, name: str) -> None:
        self._check(name)
        self._constant.add(name)

    def is_constant(self, name: str) -> bool:
        return name in self._constant

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def __getitem__(self, name: str) -> NDArray:
        return self._values[name]

    @property
    def names(self) -> List[str]:
        return list(self._values)

    @property
    def variable_names(self) -> List[str]:
        return [name for name in self._values if name not in self._constant]

    @property
    def num_variables(self) -> int:
        return sum(self._values[name].size for name in self.variable_names)

    def pack(self) -> NDArray:
        """Flat vector of the variable blocks, in insertion order."""
        blocks = [self._values[name] for name in self.variable_names]
        if not blocks:
            return np.zeros(0)
        return np.concatenate(blocks)

    def unpack(self, x) -> Dict[str, jnp.ndarray]:
        result = {}
        offset = 0
        for name, values in self._values.items():
            if name in self._constant:
                result[name] = jnp.asarray(values)
            else:
                result[name] = x[offset : offset + values.size]
                offset += values.size
        return result

    def update(self, x) -> None:
        """Write an optimization vector back into the variable blocks."""
        for name, values in self.unpack(np.asarray(x)).items():
            self._values[name] = np.array(values, dtype=np.float64)

    def _check(self, name):
        if name not in self._values:
            raise KeyError(f"Unknown parameter block '{name}'")


@dataclass(frozen=True)
class ResidualBlock:
    cost: ReprojectionCost
    parameter_blocks: Tuple[str, ...]


class ReprojectionProblem:
    def __init__(self):
        self.parameters = ParameterBlocks()
        self.residual_blocks: List[ResidualBlock] = []

    def add_parameter_block(self, name: str, transform: NDArray) -> str:
        return self.parameters.add(name, Pose6d.from_matrix(transform).values)

    def add_residual_block(self, cost: ReprojectionCost, *parameter_blocks: str):
        if len(parameter_blocks) != cost.num_parameter_blocks:
            raise ValueError(
                f"{type(cost).__name__} takes {cost.num_parameter_blocks} "
                f"parameter blocks, got {len(parameter_blocks)}"
            )
        for name in parameter_blocks:
            self.parameters._check(name)
        block = ResidualBlock(cost, tuple(parameter_blocks))
        self.residual_blocks.append(block)
        return block

    @property
    def num_residuals(self) -> int:
        return 2 * len(self.residual_blocks)

    def pose(self, name: str) -> NDArray:
        return Pose6d(self.parameters[name]).to_matrix()

    def _groups(self):
        groups = OrderedDict()
        for block in self.residual_blocks:
            key = (type(block.cost), block.parameter_blocks)
            groups.setdefault(key, []).append(block.cost.constants())
        result = []
        for (cost_type, names), constants in groups.items():
            stacked = tuple(np.stack(column) for column in zip(*constants))
            in_axes = (None,) * len(names) + (0,) * len(stacked)
            result.append(
                (names, jax.vmap(cost_type.residual, in_axes=in_axes), stacked)
            )
        return result

    def residual_function(self):
        """
        Pure function mapping the optimization vector to all residuals.

        Residuals are ordered by residual block type and parameter blocks, in
        order of first registration.
        """
        groups = self._groups()
        parameters = self.parameters

        def residuals(x):
            blocks = parameters.unpack(x)
            values = [
                batched(*(blocks[name] for name in names), *constants).reshape(-1)
                for names, batched, constants in groups
            ]
            return jnp.concatenate(values)

        return residuals


def _check_observation_sets(
    image_observations: Sequence[CorrespondenceSet], label: str
) -> None:
    if len(image_observations) == 0:
        raise InvalidInputError(f"{label} has no images")
    for i, correspondence_set in enumerate(image_observations):
        if not isinstance(correspondence_set, CorrespondenceSet):
            raise InvalidInputError(
                f"{label} image {i} is a {type(correspondence_set).__name__}, "
                "expected a CorrespondenceSet"
            )
        if len(correspondence_set) == 0:
            raise InvalidInputError(f"{label} image {i} has no correspondences")


def _check_wrist_poses(wrist_poses, image_observations):
    if len(wrist_poses) != len(image_observations):
        raise InvalidInputError(
            f"{len(wrist_poses)} wrist poses given for "
            f"{len(image_observations)} observation sets"
        )
    return [as_transform(pose, f"wrist pose {i}") for i, pose in enumerate(wrist_poses)]


def build_camera_on_wrist_problem(
    params: ExtrinsicCameraOnWristProblem,
) -> ReprojectionProblem:
    _check_observation_sets(params.image_observations, "camera")
    wrist_poses = _check_wrist_poses(params.wrist_poses, params.image_observations)
    intrinsics = params.intr.as_array()

    problem = ReprojectionProblem()
    camera = problem.add_parameter_block(
        "camera_to_wrist",
        as_transform(params.camera_to_wrist_guess, "camera_to_wrist_guess"),
    )
    target = problem.add_parameter_block(
        "base_to_target",
        as_transform(params.base_to_target_guess, "base_to_target_guess"),
    )
    for base_to_wrist, correspondence_set in zip(
        wrist_poses, params.image_observations
    ):
        wrist_to_base = Pose6d.from_matrix(base_to_wrist).inverse().values
        for point_in_target, observation in correspondence_set:
            cost = CameraOnWristReprojectionCost(
                observation, intrinsics, point_in_target, wrist_to_base
            )
            problem.add_residual_block(cost, camera, target)
    LOGGER.debug(
        f"Camera on wrist problem: {len(wrist_poses)} images, "
        f"{len(problem.residual_blocks)} observations"
    )
    return problem


def build_multi_static_camera_problem(
    params: MultiStaticCameraPnPProblem,
) -> ReprojectionProblem:
    n_cameras = len(params.intr)
    if n_cameras == 0:
        raise InvalidInputError("No cameras given")
    if len(params.image_observations) != n_cameras:
        raise InvalidInputError(
            f"{len(params.image_observations)} observation lists given for "
            f"{n_cameras} cameras"
        )
    if len(params.base_to_camera) != n_cameras:
        raise InvalidInputError(
            f"{len(params.base_to_camera)} camera pose guesses given for "
            f"{n_cameras} cameras"
        )
    for camera_i in params.fixed_cameras:
        if not 0 <= camera_i < n_cameras:
            raise InvalidInputError(
                f"Fixed camera index {camera_i} out of range for {n_cameras} cameras"
            )
    for camera_i, image_observations in enumerate(params.image_observations):
        _check_observation_sets(image_observations, f"camera {camera_i}")

    problem = ReprojectionProblem()
    target = problem.add_parameter_block(
        "base_to_target",
        as_transform(params.base_to_target_guess, "base_to_target_guess"),
    )
    for camera_i, (intr, base_to_camera, image_observations) in enumerate(
        zip(params.intr, params.base_to_camera, params.image_observations)
    ):
        camera = problem.add_parameter_block(
            f"base_to_camera_{camera_i}",
            as_transform(base_to_camera, f"base_to_camera {camera_i}"),
        )
        if camera_i in params.fixed_cameras:
            problem.parameters.set_constant(camera)
        intrinsics = intr.as_array()
        for correspondence_set in image_observations:
            for point_in_target, observation in correspondence_set:
                cost = StaticCameraReprojectionCost(
                    observation, intrinsics, point_in_target
                )
                problem.add_residual_block(cost, target, camera)
    LOGGER.debug(
        f"Multi camera problem: {n_cameras} cameras "
        f"({len(params.fixed_cameras)} fixed), "
        f"{len(problem.residual_blocks)} observations"
    )
    return problem


def build_static_camera_moving_target_problem(
    params: ExtrinsicStaticCameraMovingTargetProblem,
) -> ReprojectionProblem:
    _check_observation_sets(params.image_observations, "camera")
    wrist_poses = _check_wrist_poses(params.wrist_poses, params.image_observations)
    intrinsics = params.intr.as_array()

    problem = ReprojectionProblem()
    target = problem.add_parameter_block(
        "wrist_to_target",
        as_transform(params.wrist_to_target_guess, "wrist_to_target_guess"),
    )
    camera = problem.add_parameter_block(
        "base_to_camera",
        as_transform(params.base_to_camera_guess, "base_to_camera_guess"),
    )
    for base_to_wrist, correspondence_set in zip(
        wrist_poses, params.image_observations
    ):
        base_to_wrist = Pose6d.from_matrix(base_to_wrist).values
        for point_in_target, observation in correspondence_set:
            cost = StaticCameraMovingTargetReprojectionCost(
                observation, intrinsics, point_in_target, base_to_wrist
            )
            problem.add_residual_block(cost, target, camera)
    LOGGER.debug(
        f"Static camera problem: {len(wrist_poses)} images, "
        f"{len(problem.residual_blocks)} observations"
    )
    return problem
