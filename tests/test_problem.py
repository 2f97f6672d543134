"""
Tests for parameter blocks, residual registration and the problem builders.
"""

import jax.numpy as jnp
import numpy as np
import pytest
from numpy.testing import assert_allclose

import posecal.multi_camera_pnp
from posecal import (
    CorrespondenceSet,
    ExtrinsicCameraOnWristProblem,
    InvalidInputError,
    MultiStaticCameraPnPProblem,
    optimize_multi_static_camera_pnp,
)
from posecal.problem import (
    ParameterBlocks,
    ReprojectionProblem,
    build_camera_on_wrist_problem,
    build_multi_static_camera_problem,
)
from posecal.residuals import StaticCameraReprojectionCost
from posecal.structs import Pose6d

from conftest import perturb


@pytest.fixture
def multi_camera_problem(multi_camera_scene):
    scene = multi_camera_scene
    return MultiStaticCameraPnPProblem(
        intr=scene.intr,
        base_to_target_guess=scene.base_to_target,
        image_observations=scene.image_observations,
        base_to_camera=scene.base_to_camera,
    )


class TestParameterBlocks:
    def test_pack_unpack(self):
        blocks = ParameterBlocks()
        blocks.add("a", np.arange(6.0))
        blocks.add("b", np.arange(6.0, 12.0))

        x = blocks.pack()
        unpacked = blocks.unpack(x)

        assert_allclose(x, np.arange(12.0))
        assert_allclose(unpacked["b"], np.arange(6.0, 12.0))

    def test_constant_blocks_are_not_packed(self):
        blocks = ParameterBlocks()
        blocks.add("fixed", np.ones(6))
        blocks.add("free", np.zeros(6))
        blocks.set_constant("fixed")

        assert blocks.variable_names == ["free"]
        assert blocks.num_variables == 6
        assert_allclose(blocks.unpack(np.full(6, 2.0))["fixed"], np.ones(6))

    def test_update_leaves_constant_blocks(self):
        blocks = ParameterBlocks()
        blocks.add("fixed", np.ones(6))
        blocks.add("free", np.zeros(6))
        blocks.set_constant("fixed")

        blocks.update(np.full(6, 3.0))

        assert_allclose(blocks["fixed"], np.ones(6))
        assert_allclose(blocks["free"], np.full(6, 3.0))

    def test_update_keeps_blocks_writeable(self):
        blocks = ParameterBlocks()
        blocks.add("fixed", np.ones(6))
        blocks.add("free", np.zeros(6))
        blocks.set_constant("fixed")

        blocks.update(jnp.full(6, 3.0))

        for name in blocks.names:
            assert blocks[name].flags.writeable
            Pose6d(blocks[name]).to_matrix()

    def test_duplicate_name(self):
        blocks = ParameterBlocks()
        blocks.add("a", np.zeros(6))

        with pytest.raises(KeyError):
            blocks.add("a", np.zeros(6))

    def test_guess_is_copied(self):
        guess = np.zeros(6)
        blocks = ParameterBlocks()
        blocks.add("a", guess)

        blocks.update(np.ones(6))

        assert_allclose(guess, np.zeros(6))


class TestReprojectionProblem:
    @pytest.fixture
    def cost(self):
        return StaticCameraReprojectionCost([1.0, 2.0], [1.0, 1.0, 0.0, 0.0], [0, 0, 1])

    def test_unknown_parameter_block(self, cost):
        problem = ReprojectionProblem()
        problem.add_parameter_block("target", np.eye(4))

        with pytest.raises(KeyError):
            problem.add_residual_block(cost, "target", "camera")

    def test_wrong_number_of_blocks(self, cost):
        problem = ReprojectionProblem()
        problem.add_parameter_block("target", np.eye(4))

        with pytest.raises(ValueError):
            problem.add_residual_block(cost, "target")

    def test_residual_function_matches_functors(self, cost):
        problem = ReprojectionProblem()
        target = problem.add_parameter_block("target", np.eye(4))
        camera = problem.add_parameter_block("camera", np.eye(4))
        problem.add_residual_block(cost, target, camera)
        problem.add_residual_block(cost, target, camera)

        x = np.array([0.1, 0.0, 0.0, 0.0, 0.2, 0.0, 0.0, 0.3, 0.0, 0.0, 0.0, -1.0])
        residuals = np.asarray(problem.residual_function()(x))

        expected = np.asarray(cost(x[:6], x[6:]))
        assert problem.num_residuals == 4
        assert_allclose(residuals, np.concatenate([expected, expected]))


class TestSharedParameters:
    """Every camera reads the one target pose block."""

    def test_single_target_block(self, multi_camera_problem):
        problem = build_multi_static_camera_problem(multi_camera_problem)

        target_blocks = [
            name for name in problem.parameters.names if "target" in name
        ]
        assert target_blocks == ["base_to_target"]
        assert all(
            block.parameter_blocks[0] == "base_to_target"
            for block in problem.residual_blocks
        )

    def test_target_perturbation_moves_every_camera(self, multi_camera_problem):
        problem = build_multi_static_camera_problem(multi_camera_problem)
        residuals = problem.residual_function()
        x = problem.parameters.pack()
        x_perturbed = x.copy()
        x_perturbed[3] += 0.01  # target x translation

        change = np.asarray(residuals(x_perturbed)) - np.asarray(residuals(x))

        # 20 points per camera, 2 residuals each, grouped by camera.
        for camera_change in change.reshape(3, 40):
            assert np.abs(camera_change).max() > 1.0

    def test_camera_perturbation_moves_only_that_camera(self, multi_camera_problem):
        problem = build_multi_static_camera_problem(multi_camera_problem)
        residuals = problem.residual_function()
        x = problem.parameters.pack()
        x_perturbed = x.copy()
        x_perturbed[6 + 3] += 0.01  # camera 1 x translation

        change = np.abs(np.asarray(residuals(x_perturbed)) - np.asarray(residuals(x)))

        per_camera = change.reshape(3, 40).max(axis=1)
        assert per_camera[0] == 0.0
        assert per_camera[1] > 1.0
        assert per_camera[2] == 0.0

    def test_first_camera_is_fixed_by_default(self, multi_camera_problem):
        problem = build_multi_static_camera_problem(multi_camera_problem)

        assert problem.parameters.is_constant("base_to_camera_0")
        assert problem.parameters.num_variables == 18


class TestValidation:
    def test_camera_pose_count_mismatch(self, multi_camera_problem):
        multi_camera_problem.base_to_camera = multi_camera_problem.base_to_camera[:2]

        with pytest.raises(InvalidInputError):
            build_multi_static_camera_problem(multi_camera_problem)

    def test_observation_count_mismatch(self, multi_camera_problem):
        multi_camera_problem.image_observations = (
            multi_camera_problem.image_observations[:2]
        )

        with pytest.raises(InvalidInputError):
            build_multi_static_camera_problem(multi_camera_problem)

    def test_no_cameras(self):
        params = MultiStaticCameraPnPProblem(
            intr=[],
            base_to_target_guess=np.eye(4),
            image_observations=[],
            base_to_camera=[],
        )

        with pytest.raises(InvalidInputError):
            build_multi_static_camera_problem(params)

    def test_camera_without_images(self, multi_camera_problem):
        multi_camera_problem.image_observations[1] = []

        with pytest.raises(InvalidInputError):
            build_multi_static_camera_problem(multi_camera_problem)

    def test_empty_correspondence_set(self, multi_camera_problem):
        multi_camera_problem.image_observations[2][0] = CorrespondenceSet(
            np.zeros((0, 3)), np.zeros((0, 2))
        )

        with pytest.raises(InvalidInputError):
            build_multi_static_camera_problem(multi_camera_problem)

    def test_fixed_camera_out_of_range(self, multi_camera_problem):
        multi_camera_problem.fixed_cameras = (3,)

        with pytest.raises(InvalidInputError):
            build_multi_static_camera_problem(multi_camera_problem)

    def test_bad_transform_shape(self, multi_camera_problem):
        multi_camera_problem.base_to_target_guess = np.eye(3)

        with pytest.raises(InvalidInputError):
            build_multi_static_camera_problem(multi_camera_problem)

    def test_wrist_pose_count_mismatch(self, camera_on_wrist_scene):
        scene = camera_on_wrist_scene
        params = ExtrinsicCameraOnWristProblem(
            intr=scene.intr,
            wrist_poses=scene.wrist_poses[:-1],
            image_observations=scene.image_observations,
            base_to_target_guess=scene.base_to_target,
            camera_to_wrist_guess=scene.camera_to_wrist,
        )

        with pytest.raises(InvalidInputError):
            build_camera_on_wrist_problem(params)

    def test_mismatched_correspondences(self):
        with pytest.raises(InvalidInputError):
            CorrespondenceSet(np.zeros((4, 3)), np.zeros((3, 2)))

    def test_rejected_before_solving(self, multi_camera_problem, monkeypatch):
        calls = []
        monkeypatch.setattr(
            posecal.multi_camera_pnp, "solve", lambda *args: calls.append(args)
        )
        multi_camera_problem.base_to_camera.append(
            perturb(multi_camera_problem.base_to_camera[0])
        )

        with pytest.raises(InvalidInputError):
            optimize_multi_static_camera_pnp(multi_camera_problem)
        assert calls == []
