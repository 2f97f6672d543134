"""
Pinhole projection and axis-angle rigid transforms.

Everything on the residual path is written with ``jax.numpy`` so the same
functions evaluate plain floats, numpy arrays and jax tracers (for
``jax.jacfwd`` / ``jax.grad``). Poses are 6-vectors ``[rx, ry, rz, x, y, z]``.
"""

import jax.numpy as jnp
import numpy as np
from numpy.typing import NDArray
from scipy.spatial.transform import Rotation as R

# Below this squared angle the rotation is replaced by its first-order form.
SMALL_ANGLE_SQUARED = np.finfo(np.float64).eps


def project(intrinsics, point):
    """
    Project a point given in camera coordinates to pixels.

    Args:
        intrinsics: [fx, fy, cx, cy]
        point: [x, y, z] in the camera frame, z along the optical axis

    Returns:
        [u, v]. A point with z == 0 is not divided by its depth; the result is
        finite but has no physical meaning.
    """
    x, y, z = point[0], point[1], point[2]
    at_zero_depth = z == 0
    depth = jnp.where(at_zero_depth, 1.0, z)
    xp = jnp.where(at_zero_depth, x, x / depth)
    yp = jnp.where(at_zero_depth, y, y / depth)
    return jnp.stack(
        [intrinsics[0] * xp + intrinsics[2], intrinsics[1] * yp + intrinsics[3]]
    )


def angle_axis_rotate_point(angle_axis, point):
    theta2 = jnp.dot(angle_axis, angle_axis)
    is_small = theta2 <= SMALL_ANGLE_SQUARED
    # Keep the unused branch finite so derivatives stay finite at zero.
    theta = jnp.sqrt(jnp.where(is_small, 1.0, theta2))
    w = angle_axis / theta
    cos_theta = jnp.cos(theta)
    sin_theta = jnp.sin(theta)
    rotated = (
        point * cos_theta
        + jnp.cross(w, point) * sin_theta
        + w * (1.0 - cos_theta) * jnp.dot(w, point)
    )
    first_order = point + jnp.cross(angle_axis, point)
    return jnp.where(is_small, first_order, rotated)


def apply_pose(pose, point):
    return angle_axis_rotate_point(pose[:3], point) + pose[3:]


def apply_inverse_pose(pose, point):
    return angle_axis_rotate_point(-pose[:3], point - pose[3:])


def compose_poses(lhs: NDArray, rhs: NDArray) -> NDArray:
    """6-vector of ``lhs ∘ rhs``: apply rhs first, then lhs."""
    lhs_rotation = R.from_rotvec(lhs[:3])
    rotation = lhs_rotation * R.from_rotvec(rhs[:3])
    translation = lhs_rotation.apply(rhs[3:]) + lhs[3:]
    return np.concatenate((rotation.as_rotvec(), translation))


def transform_points(transform: NDArray, points: NDArray) -> NDArray:
    return points @ transform[:3, :3].T + transform[:3, 3]
