from numpy.typing import NDArray
from dataclasses import dataclass, field
from typing import Iterator, List, Sequence, Tuple
import numpy as np
from scipy.spatial.transform import Rotation as R


# Transforms are named `a_to_b`: the pose of frame b expressed in frame a.
# As a 4x4 matrix it maps coordinates in frame b into frame a.


class InvalidInputError(ValueError):
    pass


def as_transform(matrix, name: str = "transform") -> NDArray:
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.shape != (4, 4):
        raise InvalidInputError(f"{name} must be a 4x4 matrix, got {matrix.shape}")
    if not np.all(np.isfinite(matrix)):
        raise InvalidInputError(f"{name} contains non-finite values")
    return matrix


@dataclass(frozen=True)
class CameraIntrinsics:
    fx: float
    fy: float
    cx: float
    cy: float

    @classmethod
    def from_matrix(cls, intrinsics: NDArray) -> "CameraIntrinsics":
        intrinsics = np.asarray(intrinsics, dtype=np.float64)
        return cls(
            fx=float(intrinsics[0, 0]),
            fy=float(intrinsics[1, 1]),
            cx=float(intrinsics[0, 2]),
            cy=float(intrinsics[1, 2]),
        )

    @property
    def matrix(self) -> NDArray:  # [3, 3]
        return np.array(
            [
                [self.fx, 0.0, self.cx],
                [0.0, self.fy, self.cy],
                [0.0, 0.0, 1.0],
            ]
        )

    def as_array(self) -> NDArray:  # [4]
        return np.array([self.fx, self.fy, self.cx, self.cy], dtype=np.float64)


@dataclass
class Pose6d:
    """Rigid transform as [rx, ry, rz, x, y, z], axis-angle rotation first."""

    values: NDArray = field(default_factory=lambda: np.zeros(6))  # [6]

    def __post_init__(self):
        self.values = np.array(self.values, dtype=np.float64).reshape(6)

    @classmethod
    def from_matrix(cls, transform: NDArray) -> "Pose6d":
        transform = as_transform(transform)
        rotation = R.from_matrix(transform[:3, :3]).as_rotvec()
        return cls(np.concatenate((rotation, transform[:3, 3])))

    @classmethod
    def from_rotation_translation(
        cls, rotation: NDArray, translation: NDArray
    ) -> "Pose6d":
        rotation = R.from_matrix(rotation).as_rotvec()
        return cls(np.concatenate((rotation, np.asarray(translation).reshape(3))))

    def to_matrix(self) -> NDArray:  # [4, 4]
        transform = np.eye(4)
        transform[:3, :3] = R.from_rotvec(self.values[:3]).as_matrix()
        transform[:3, 3] = self.values[3:]
        return transform

    def inverse(self) -> "Pose6d":
        rotation = R.from_rotvec(self.values[:3]).inv()
        translation = -rotation.apply(self.values[3:])
        return Pose6d(np.concatenate((rotation.as_rotvec(), translation)))

    @property
    def rotation(self) -> NDArray:
        return self.values[:3]

    @property
    def translation(self) -> NDArray:
        return self.values[3:]

    @property
    def rx(self) -> float:
        return float(self.values[0])

    @property
    def ry(self) -> float:
        return float(self.values[1])

    @property
    def rz(self) -> float:
        return float(self.values[2])

    @property
    def x(self) -> float:
        return float(self.values[3])

    @property
    def y(self) -> float:
        return float(self.values[4])

    @property
    def z(self) -> float:
        return float(self.values[5])


@dataclass
class CorrespondenceSet:
    """One image worth of target points and the pixels they were detected at.

    Rows of the two arrays are paired: ``observations[i]`` is where
    ``points_in_target[i]`` was seen.
    """

    points_in_target: NDArray  # [N, 3]
    observations: NDArray  # [N, 2]

    def __post_init__(self):
        self.points_in_target = np.asarray(self.points_in_target, dtype=np.float64)
        self.observations = np.asarray(self.observations, dtype=np.float64)
        if self.points_in_target.ndim != 2 or self.points_in_target.shape[1] != 3:
            raise InvalidInputError(
                f"points_in_target must be [N, 3], got {self.points_in_target.shape}"
            )
        if self.observations.ndim != 2 or self.observations.shape[1] != 2:
            raise InvalidInputError(
                f"observations must be [N, 2], got {self.observations.shape}"
            )
        if len(self.points_in_target) != len(self.observations):
            raise InvalidInputError(
                f"{len(self.points_in_target)} target points paired with "
                f"{len(self.observations)} observations"
            )

    def __len__(self) -> int:
        return len(self.observations)

    def __iter__(self) -> Iterator[Tuple[NDArray, NDArray]]:
        return zip(self.points_in_target, self.observations)


@dataclass
class ExtrinsicCameraOnWristProblem:
    intr: CameraIntrinsics
    wrist_poses: List[NDArray]  # base_to_wrist, [N][4, 4]
    image_observations: List[CorrespondenceSet]  # [N]
    base_to_target_guess: NDArray  # [4, 4]
    camera_to_wrist_guess: NDArray  # [4, 4]


@dataclass
class ExtrinsicCameraOnWristResult:
    """
    converged: whether the solver reports a successful minimum. If False the
        poses below should not be trusted.
    initial_cost_per_obs / final_cost_per_obs: RMS reprojection error in
        pixels per residual. Each target point contributes a u and a v residual,
        so 1.2 means points were explained to about 1.2 px in each direction.
    """

    converged: bool
    initial_cost_per_obs: float
    final_cost_per_obs: float
    base_to_target: NDArray  # [4, 4]
    camera_to_wrist: NDArray  # [4, 4]

    @property
    def wrist_to_camera(self) -> NDArray:
        return np.linalg.inv(self.camera_to_wrist)


@dataclass
class MultiStaticCameraPnPProblem:
    intr: List[CameraIntrinsics]  # one per camera
    base_to_target_guess: NDArray  # [4, 4]
    image_observations: List[List[CorrespondenceSet]]  # [camera][image]
    base_to_camera: List[NDArray]  # guesses, one per camera [4, 4]
    # Cameras whose pose is held at its guess. Camera 0 anchors the frame by
    # default; with every pose free the solution is only defined up to a
    # global rigid motion.
    fixed_cameras: Sequence[int] = (0,)


@dataclass
class MultiStaticCameraPnPResult:
    converged: bool
    initial_cost_per_obs: float
    final_cost_per_obs: float
    base_to_target: NDArray  # [4, 4]
    base_to_camera: List[NDArray]  # [4, 4] per camera


@dataclass
class ExtrinsicStaticCameraMovingTargetProblem:
    intr: CameraIntrinsics
    wrist_poses: List[NDArray]  # base_to_wrist, [N][4, 4]
    image_observations: List[CorrespondenceSet]  # [N]
    base_to_camera_guess: NDArray  # [4, 4]
    wrist_to_target_guess: NDArray  # [4, 4]


@dataclass
class ExtrinsicStaticCameraMovingTargetResult:
    converged: bool
    initial_cost_per_obs: float
    final_cost_per_obs: float
    base_to_camera: NDArray  # [4, 4]
    wrist_to_target: NDArray  # [4, 4]
