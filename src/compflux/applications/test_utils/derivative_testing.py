"""Module containing functionality for testing the implementation of derivatives of the
flux evaluation.

The derivatives are tested with a Taylor expansion along a direction: if the derivative
is exact, the error of the first-order expansion decays with order 2 in the step size.

"""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np
import scipy.sparse as sps

from ...assembly import FluxOptions, compute_connection_fluxes
from ...jacobian import assemble_global_system
from ...states import ConnectionStencils
from .properties import SyntheticFluid

__all__ = [
    "get_EOC_taylor",
    "assert_order_at_least",
    "global_flux_functions",
]


def get_EOC_taylor(
    func: Callable[[np.ndarray], np.ndarray],
    dfunc: Callable[[np.ndarray], np.ndarray | sps.spmatrix],
    x0: np.ndarray,
    d: np.ndarray,
    h: np.ndarray,
    tol: float = 1e-14,
) -> np.ndarray:
    """Estimate the order of convergence (EOC) of the derivative of ``func`` at point
    ``x0`` along direction ``d`` using Taylor expansion.

    The EOC is estimated by computing the error between the exact function value and
    the first-order Taylor approximation for a sequence of step sizes.

    Parameters:
        func: Vector valued function of a vector argument.
        dfunc: Function computing the Jacobian of ``func``, dense or sparse, with
            shape ``(m, n)`` for ``m`` outputs and ``n`` inputs.
        x0: Point at which the derivative is computed.
        d: Direction along which the derivative is computed.
        h: Array of (decreasing) step sizes to use for the Taylor expansion.
        tol: Tolerance below which errors are considered zero
            (i.e., exact approximation).

    Returns:
        Estimated EOC values for each consecutive pair of step sizes.

    """
    # Norming direction for sensible scaling.
    d = d / np.linalg.norm(d)

    f0 = func(x0)
    df0 = dfunc(x0) @ d

    errorlist = []
    for h_ in h:
        approx = f0 + h_ * df0
        exact = func(x0 + h_ * d)
        error = float(np.linalg.norm(exact - approx))
        # If errors are small, their ratios can falsely indicate order loss due to
        # floating point arithmetics.
        if error < tol:
            error = 0.0
        errorlist.append(error)

    errors = np.array(errorlist)
    h_ratios = h[1:] / h[:-1]

    error_ratios = np.full_like(errors[1:], np.nan)
    mask = errors[:-1] > tol
    error_ratios[mask] = errors[1:][mask] / errors[:-1][mask]

    orders = np.full_like(error_ratios, np.inf)
    finite_mask = np.isfinite(error_ratios) & (error_ratios > tol)
    orders[finite_mask] = np.log(error_ratios[finite_mask]) / np.log(
        h_ratios[finite_mask]
    )
    return orders


def assert_order_at_least(
    orders: np.ndarray,
    expected_order: float,
    tol: float = 0.1,
    err_msg: str = "",
    asymptotic: Optional[int] = None,
) -> None:
    """Asserts that the average of the estimated orders are at least the expected order
    minus a tolerance.

    If orders are negative or nan, an error is raised.
    Order values of + infinity are treated as an exact approximation and treated as the
    expected order.

    Parameters:
        orders: List of order values, error ratios divided by refinement ratios.
        expected_order: The value of the expected (average) order value.
        tol: Tolerance for expected order for numerical reasons.
        err_msg: Appended to the assertion message.
        asymptotic: If given as an integer ``n``, only the last ``n`` values are
            checked.

    """
    orders = np.array(orders, dtype=float)
    if asymptotic is not None:
        orders = orders[-asymptotic:]

    if np.any(orders < 0):
        raise ValueError(f"Negative orders, derivative INCONSISTENT: {err_msg}")
    if np.any(np.isnan(orders)):
        raise ValueError(f"Estimated orders contain NAN values: {err_msg}")

    # If order all inf, we have an exact approximation.
    if not np.all(np.isinf(orders)):
        orders[np.isinf(orders)] = expected_order
        order_avg = np.mean(orders)
        assert order_avg >= expected_order - tol, (
            f"Expected all orders to be at least {expected_order - tol}, "
            f"but got {order_avg}: {err_msg}"
        )


def global_flux_functions(
    stencils: ConnectionStencils,
    fluid: SyntheticFluid,
    grav_coef: np.ndarray,
    dt: float,
    options: Optional[FluxOptions] = None,
    total_flux: Optional[np.ndarray] = None,
) -> tuple[Callable[[np.ndarray], np.ndarray], Callable[[np.ndarray], sps.csr_matrix]]:
    """Wraps the flux evaluation into a residual function of all unknowns and its
    Jacobian.

    The unknowns are stacked per cell as ``[pressure, comp_dens_0, ...]``, matching
    the degrees of freedom of :func:`~compflux.jacobian.assemble_global_system`.
    The properties are recomputed by ``fluid`` for every argument. The total flux,
    if given, is kept fixed.

    Returns:
        A 2-tuple containing the residual function and the Jacobian function.

    """
    num_cells = grav_coef.shape[0]
    ndof = fluid.num_components + 1

    def _evaluate(x: np.ndarray) -> tuple[np.ndarray, sps.csr_matrix]:
        unknowns = x.reshape((num_cells, ndof))
        properties = fluid.evaluate(unknowns[:, 0], unknowns[:, 1:], grav_coef)
        local = compute_connection_fluxes(
            stencils, properties, dt, options=options, total_flux=total_flux
        )
        cells = stencils.flat_cells(properties.subregion_offsets, num_cells)
        return assemble_global_system(
            cells, stencils.stencil_size, local.residual, local.jacobian, num_cells
        )

    def func(x: np.ndarray) -> np.ndarray:
        return _evaluate(x)[0]

    def dfunc(x: np.ndarray) -> sps.csr_matrix:
        return _evaluate(x)[1]

    return func, dfunc
