"""Module containing tests for the synthetic fluid used to test the flux evaluation.

Tested functionality includes:
    - Consistency of fractions and phase compositions.
    - Derivatives of all properties, by a Taylor expansion w.r.t. pressure and
      component densities.

"""

from __future__ import annotations

import numpy as np
import pytest

import compflux as cf
from compflux.applications.test_utils.derivative_testing import (
    assert_order_at_least,
    get_EOC_taylor,
)
from compflux.applications.test_utils.properties import SyntheticFluid

NC = 3
X0 = np.array([1.5, 0.4, 0.9, 0.2])


def _evaluate(fluid: SyntheticFluid, x: np.ndarray) -> cf.CellProperties:
    return fluid.evaluate(x[:1], x[np.newaxis, 1:], np.zeros(1))


def _value_and_jacobian(
    props: cf.CellProperties, name: str
) -> tuple[np.ndarray, np.ndarray]:
    """Value of a property in the single cell of ``props`` and its derivatives w.r.t.
    ``[p, rho_0, ..., rho_NC-1]``, after applying the chain rule where necessary."""
    dz_drho = props.dcomp_frac_dcomp_dens[0]

    if name == "phase_mob":
        dp = props.dphase_mob_dpres[0]
        drho = props.dphase_mob_dcomp[0]
    elif name == "phase_dens":
        dp = props.dphase_dens_dpres[0]
        drho = props.dphase_dens_dcomp[0] @ dz_drho
    elif name == "phase_mass_dens":
        dp = props.dphase_mass_dens_dpres[0]
        drho = props.dphase_mass_dens_dcomp[0] @ dz_drho
    elif name == "phase_comp_frac":
        dp = props.dphase_comp_frac_dpres[0].ravel()
        drho = (props.dphase_comp_frac_dcomp[0] @ dz_drho).reshape((-1, NC))
    elif name == "phase_cap_pressure":
        dpc_ds = props.dphase_cap_pressure_dvol_frac[0]
        dp = dpc_ds @ props.dphase_vol_frac_dpres[0]
        drho = dpc_ds @ props.dphase_vol_frac_dcomp[0]
    else:
        raise ValueError(f"Unknown property {name}.")

    value = getattr(props, name)[0].ravel()
    return value, np.hstack([dp[:, np.newaxis], drho])


def test_fractions():
    """Phase compositions sum up to 1, and the fractions are invariant under scaling
    of the component densities."""
    fluid = SyntheticFluid(2, NC)
    props = _evaluate(fluid, X0)
    assert np.allclose(props.phase_comp_frac.sum(axis=2), 1.0, rtol=0.0, atol=1e-14)
    assert np.allclose(
        props.dphase_comp_frac_dpres.sum(axis=2), 0.0, rtol=0.0, atol=1e-14
    )
    # derivatives of the fractions in the direction of the densities are zero
    rho = X0[1:]
    assert np.allclose(props.dcomp_frac_dcomp_dens[0] @ rho, 0.0, rtol=0.0, atol=1e-14)
    assert np.all(props.phase_mob > 0.0)


@pytest.mark.parametrize("num_phases", [1, 2, 3])
@pytest.mark.parametrize(
    "name",
    [
        "phase_mob",
        "phase_dens",
        "phase_mass_dens",
        "phase_comp_frac",
        "phase_cap_pressure",
    ],
)
def test_property_derivatives(num_phases: int, name: str):
    """The first order Taylor expansion of every property converges with order 2."""
    fluid = SyntheticFluid(num_phases, NC)

    def func(x: np.ndarray) -> np.ndarray:
        return _value_and_jacobian(_evaluate(fluid, x), name)[0]

    def dfunc(x: np.ndarray) -> np.ndarray:
        return _value_and_jacobian(_evaluate(fluid, x), name)[1]

    h = 1e-2 * 0.5 ** np.arange(6)
    rng = np.random.default_rng(3)
    directions = [rng.random(X0.shape[0]) - 0.5 for _ in range(3)]
    directions.append(np.array([1.0, 0.0, 0.0, 0.0]))

    for d in directions:
        orders = get_EOC_taylor(func, dfunc, X0, d, h)
        assert_order_at_least(orders, 2.0, tol=0.2, err_msg=name)
