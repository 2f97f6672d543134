from numpy.typing import NDArray
from typing import Optional
import os
import numpy as np
from scipy.spatial.transform import Rotation as R
import yaml
import logging

DEFAULT_CONFIG_FILE = os.path.join(os.path.dirname(__file__), "config.yaml")


def load_config(path: Optional[str] = None) -> dict:
    if path is None:
        path = os.environ.get("POSECAL_CONFIG", DEFAULT_CONFIG_FILE)
    with open(path) as file:
        return yaml.safe_load(file)


CONFIG = load_config()

logging.basicConfig(
    level=CONFIG["logging"]["level"],
    format=CONFIG["logging"]["format"],
)
LOGGER = logging.getLogger("posecal")


def pose_pretty_string(
    rotation: NDArray, translation: NDArray, convert_from_matrix: bool = True
) -> str:
    if convert_from_matrix:
        rotation = R.from_matrix(rotation).as_euler("xyz", degrees=True)
    result = f"Tra: x: {translation[0]:.4f}, y: {translation[1]:.4f}, z: {translation[2]:.4f}\n"
    result += (
        f"Rot: x: {rotation[0]:.5f}°, y: {rotation[1]:.5f}°, z: {rotation[2]:.5f}°\n"
    )
    return result


def transform_pretty_string(transform: NDArray) -> str:
    return pose_pretty_string(transform[:3, :3], transform[:3, 3])


def average_pose(transforms: NDArray) -> NDArray:
    transforms = np.asarray(transforms)
    result_pose = np.eye(4)
    result_pose[:3, :3] = R.from_matrix(transforms[:, :3, :3]).mean().as_matrix()
    result_pose[:3, 3] = transforms[:, :3, 3].mean(axis=0)
    return result_pose
