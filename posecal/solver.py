from dataclasses import dataclass
from typing import Optional
import jax
import jax.numpy as jnp
import jaxopt
import numpy as np
from numpy.typing import NDArray
from scipy.optimize import least_squares
from tqdm import tqdm

from .problem import ReprojectionProblem
from .utils import CONFIG, LOGGER


@dataclass
class SolverOptions:
    method: str = "scipy"
    scipy_method: str = "trf"
    max_iterations: int = 200
    function_tolerance: float = 1e-12
    parameter_tolerance: float = 1e-12
    gradient_tolerance: float = 1e-12
    jaxopt_tolerance: float = 1e-6
    progress: bool = False

    @classmethod
    def from_config(cls, config: Optional[dict] = None) -> "SolverOptions":
        solver_config = (CONFIG if config is None else config)["solver"]
        return cls(
            method=solver_config["method"],
            scipy_method=solver_config["scipy-method"],
            max_iterations=int(solver_config["max-iterations"]),
            function_tolerance=float(solver_config["function-tolerance"]),
            parameter_tolerance=float(solver_config["parameter-tolerance"]),
            gradient_tolerance=float(solver_config["gradient-tolerance"]),
            jaxopt_tolerance=float(solver_config["jaxopt-tolerance"]),
            progress=bool(solver_config["progress"]),
        )


@dataclass
class SolverSummary:
    converged: bool
    initial_cost: float  # 0.5 * sum of squared residuals
    final_cost: float
    initial_cost_per_obs: float  # RMS residual, pixels
    final_cost_per_obs: float
    iterations: int
    message: str
    params: NDArray


def cost_per_obs(residuals: NDArray) -> float:
    return float(np.sqrt(np.sum(residuals**2) / residuals.size))


def _summary(converged, initial_residuals, final_residuals, iterations, message, x):
    return SolverSummary(
        converged=bool(converged),
        initial_cost=float(0.5 * np.sum(initial_residuals**2)),
        final_cost=float(0.5 * np.sum(final_residuals**2)),
        initial_cost_per_obs=cost_per_obs(initial_residuals),
        final_cost_per_obs=cost_per_obs(final_residuals),
        iterations=int(iterations),
        message=message,
        params=np.array(x, dtype=np.float64),
    )


def _solve_scipy(residual_fun, x0, initial_residuals, options):
    jacobian_fun = jax.jit(jax.jacfwd(residual_fun))
    result = least_squares(
        lambda x: np.array(residual_fun(x)),
        x0,
        jac=lambda x: np.array(jacobian_fun(x)),
        method=options.scipy_method,
        ftol=options.function_tolerance,
        xtol=options.parameter_tolerance,
        gtol=options.gradient_tolerance,
        max_nfev=options.max_iterations,
        verbose=2 if options.progress else 0,
    )
    final_residuals = np.asarray(residual_fun(result.x))
    converged = (
        result.success
        and result.status > 0
        and np.all(np.isfinite(final_residuals))
    )
    return _summary(
        converged,
        initial_residuals,
        final_residuals,
        result.nfev,
        result.message,
        result.x,
    )


def _solve_jaxopt(residual_fun, x0, initial_residuals, options):
    optimizer = jaxopt.LevenbergMarquardt(
        residual_fun,
        maxiter=options.max_iterations,
        tol=options.jaxopt_tolerance,
    )
    params = jnp.asarray(x0)
    state = optimizer.init_state(params)
    losses = [0.5 * np.sum(initial_residuals**2)]
    params_logs = [np.array(x0)]
    converged = False
    for _ in tqdm(range(optimizer.maxiter), disable=not options.progress):
        opt_step = optimizer.update(params, state)
        params = opt_step.params
        state = opt_step.state
        loss = float(0.5 * jnp.sum(residual_fun(params) ** 2))
        if not np.isfinite(loss):
            break
        losses.append(loss)
        params_logs.append(np.array(params))

        if state.error < optimizer.tol:
            converged = True
            break

    best = int(np.argmin(losses))
    x = params_logs[best]
    final_residuals = np.asarray(residual_fun(x))
    message = (
        f"gradient norm {float(state.error):.3e} after {len(losses) - 1} iterations"
    )
    return _summary(
        converged and np.all(np.isfinite(final_residuals)),
        initial_residuals,
        final_residuals,
        len(losses) - 1,
        message,
        x,
    )


def solve(
    problem: ReprojectionProblem, options: Optional[SolverOptions] = None
) -> SolverSummary:
    """
    Minimize the squared reprojection error of ``problem`` in place.

    Numerical trouble is reported through ``converged`` and never raised. The
    variable parameter blocks of ``problem`` hold the best estimate afterwards.
    """
    if options is None:
        options = SolverOptions.from_config()
    residual_fun = jax.jit(problem.residual_function())
    x0 = problem.parameters.pack()
    initial_residuals = np.asarray(residual_fun(x0))
    LOGGER.debug(
        f"{problem.num_residuals} residuals, {x0.size} parameters, "
        f"initial cost per obs {cost_per_obs(initial_residuals):.6f} px"
    )

    if not np.all(np.isfinite(initial_residuals)):
        LOGGER.warning("Residuals are not finite at the initial guess")
        return _summary(
            False,
            initial_residuals,
            initial_residuals,
            0,
            "non-finite residuals at the initial guess",
            x0,
        )

    if options.method == "scipy":
        summary = _solve_scipy(residual_fun, x0, initial_residuals, options)
    elif options.method == "jaxopt":
        summary = _solve_jaxopt(residual_fun, x0, initial_residuals, options)
    else:
        raise ValueError(f"Unknown solver method '{options.method}'")

    problem.parameters.update(summary.params)
    if summary.converged:
        LOGGER.debug(f"Solver converged: {summary.message}")
    else:
        LOGGER.warning(f"Solver did not converge: {summary.message}")
    return summary
