"""Tests for the upwinded phase fluxes, mobilities and fractional flows."""

from __future__ import annotations

import numpy as np
import pytest

import compflux as cf
from compflux.applications.test_utils.properties import SyntheticFluid

PPU = int(cf.UpwindScheme.PHASE_POTENTIAL)
HU = int(cf.UpwindScheme.HYBRID)
PU = int(cf.UpwindScheme.PHASE)
VISCOUS = int(cf.UpwindTerm.VISCOUS)
GRAVITY = int(cf.UpwindTerm.GRAVITY)


def _scenario_properties() -> cf.CellProperties:
    """Two cells with pressures 100 and 90, one phase and one component, no gravity."""
    props = cf.initialize_cell_properties(2, 1, 1)
    props.pres = np.array([100.0, 90.0])
    props.phase_mob = np.array([[0.8], [0.6]])
    props.dphase_mob_dpres = np.array([[0.01], [0.02]])
    props.dphase_mob_dcomp = np.array([[[0.05]], [[0.07]]])
    props.phase_dens = np.full((2, 1), 1000.0)
    props.phase_mass_dens = np.full((2, 1), 1000.0)
    props.dphase_mass_dens_dpres = np.full((2, 1), 0.3)
    props.phase_comp_frac = np.ones((2, 1, 1))
    return props


def _ppu_velocity(
    props: cf.CellProperties,
    ip: int,
    cells: np.ndarray,
    weights: np.ndarray,
    cap_pressure_flag: bool = False,
) -> tuple[int, float, np.ndarray, np.ndarray]:
    nc = props.num_components
    dflux_dpres = np.zeros(cells.shape[0])
    dflux_dcomp = np.zeros((cells.shape[0], nc))
    k_up, flux = cf.form_ppu_velocity(
        props.num_phases,
        ip,
        cells.shape[0],
        cells,
        weights,
        props.pres,
        props.dpres,
        props.grav_coef,
        props.phase_mob,
        props.dphase_mob_dpres,
        props.dphase_mob_dcomp,
        props.dphase_vol_frac_dpres,
        props.dphase_vol_frac_dcomp,
        props.dcomp_frac_dcomp_dens,
        props.phase_mass_dens,
        props.dphase_mass_dens_dpres,
        props.dphase_mass_dens_dcomp,
        props.phase_cap_pressure,
        props.dphase_cap_pressure_dvol_frac,
        cap_pressure_flag,
        dflux_dpres,
        dflux_dcomp,
        np.zeros(nc),
    )
    return k_up, flux, dflux_dpres, dflux_dcomp


def _frac_flow(
    props: cf.CellProperties, scheme: int, term: int, ip: int, total_flux: float
) -> tuple[int, float, np.ndarray, np.ndarray]:
    nc = props.num_components
    dfflow_dpres = np.zeros(2)
    dfflow_dcomp = np.zeros((2, nc))
    k_up, fflow = cf.form_frac_flow(
        scheme,
        term,
        props.num_phases,
        ip,
        2,
        np.array([0, 1]),
        np.array([1.0, -1.0]),
        total_flux,
        props.pres,
        props.dpres,
        props.grav_coef,
        props.phase_mob,
        props.dphase_mob_dpres,
        props.dphase_mob_dcomp,
        props.phase_mass_dens,
        props.phase_cap_pressure,
        False,
        dfflow_dpres,
        dfflow_dcomp,
        np.zeros(2),
        np.zeros((2, nc)),
        np.zeros(nc),
        np.zeros(nc),
    )
    return k_up, fflow, dfflow_dpres, dfflow_dcomp


def _grav_flux(
    props: cf.CellProperties, scheme: int, ip: int, total_flux: float
) -> tuple[int, float]:
    nc = props.num_components
    k_up, flux = cf.form_grav_flux(
        scheme,
        props.num_phases,
        ip,
        2,
        np.array([0, 1]),
        np.array([1.0, -1.0]),
        total_flux,
        props.pres,
        props.dpres,
        props.grav_coef,
        props.phase_mob,
        props.dphase_mob_dpres,
        props.dphase_mob_dcomp,
        props.dcomp_frac_dcomp_dens,
        props.phase_mass_dens,
        props.dphase_mass_dens_dpres,
        props.dphase_mass_dens_dcomp,
        props.phase_cap_pressure,
        False,
        np.zeros(2),
        np.zeros((2, nc)),
        np.zeros((4, 2)),
        np.zeros((4, 2, nc)),
        np.zeros((3, nc)),
    )
    return k_up, flux


def test_ppu_velocity_scenario():
    """Potential 10 with upwind cell 0: the flux is ``0.8 * 10`` and the mobility
    derivative of the upwind cell is added at index 0 only."""
    props = _scenario_properties()
    cells = np.array([0, 1])
    weights = np.array([1.0, -1.0])

    k_up, flux, dflux_dpres, dflux_dcomp = _ppu_velocity(props, 0, cells, weights)
    assert k_up == 0
    assert np.isclose(flux, 8.0, rtol=0.0, atol=1e-14)
    assert np.allclose(dflux_dpres, [0.8 + 10.0 * 0.01, -0.8], rtol=0.0, atol=1e-14)
    assert np.allclose(dflux_dcomp[:, 0], [10.0 * 0.05, 0.0], rtol=0.0, atol=1e-14)

    # reversed flow takes the mobility of the second cell
    props.pres = np.array([90.0, 100.0])
    k_up, flux, dflux_dpres, _ = _ppu_velocity(props, 0, cells, weights)
    assert k_up == 1
    assert np.isclose(flux, -6.0, rtol=0.0, atol=1e-14)
    assert np.allclose(dflux_dpres, [0.6, -0.6 - 10.0 * 0.02], rtol=0.0, atol=1e-14)


@pytest.mark.parametrize("mobility", [0.0, 1e-25, -1e-21])
def test_ppu_velocity_zero_mobility(mobility: float):
    """Negligible upwind mobilities give exactly zero fluxes and derivatives, even
    with non-zero mobility derivatives."""
    props = _scenario_properties()
    props.phase_mob[0, 0] = mobility
    # gravity adds derivatives of the potential at both cells
    props.grav_coef = np.array([0.0, 0.001])
    cells = np.array([0, 1])
    weights = np.array([1.0, -1.0])

    k_up, flux, dflux_dpres, dflux_dcomp = _ppu_velocity(props, 0, cells, weights)
    assert k_up == 0
    assert flux == 0.0
    assert np.all(dflux_dpres == 0.0)
    assert np.all(dflux_dcomp == 0.0)


def test_upwind_mobility_guard():
    """The upwinded mobility and its derivatives are taken from the upwind cell, or
    zero if negligible."""
    props = _scenario_properties()
    dmob_dcomp = np.full(1, 3.0)
    args = (
        2,
        np.array([0, 1]),
        np.array([1.0, -1.0]),
        -1.0,
        props.pres,
        props.dpres,
        props.grav_coef,
        props.phase_mob,
        props.dphase_mob_dpres,
        props.dphase_mob_dcomp,
        props.phase_mass_dens,
        props.phase_cap_pressure,
        False,
        dmob_dcomp,
    )

    # negative total flux upwinds from the second cell
    k_up, mob, dmob_dpres = cf.upwind_mobility(HU, VISCOUS, 1, 0, *args)
    assert k_up == 1
    assert mob == 0.6
    assert dmob_dpres == 0.02
    assert dmob_dcomp[0] == 0.07

    props.phase_mob[1, 0] = 1e-30
    k_up, mob, dmob_dpres = cf.upwind_mobility(HU, VISCOUS, 1, 0, *args)
    assert k_up == 1
    assert mob == 0.0
    assert dmob_dpres == 0.0
    assert dmob_dcomp[0] == 0.0


@pytest.mark.parametrize(
    "scheme, term", [(PPU, VISCOUS), (HU, VISCOUS), (HU, GRAVITY), (PU, GRAVITY)]
)
@pytest.mark.parametrize("total_flux", [1.0, -0.5])
def test_frac_flow_bounds(scheme: int, term: int, total_flux: float):
    """Fractional flows are in ``[0, 1]`` and sum up to 1."""
    fluid = SyntheticFluid(3, 2, seed=3)
    props = fluid.evaluate(
        np.array([1.0, 1.2]),
        np.array([[0.5, 1.0], [1.5, 0.2]]),
        np.array([0.3, -0.2]),
    )

    fflows = []
    for ip in range(3):
        k_up, fflow, _, _ = _frac_flow(props, scheme, term, ip, total_flux)
        assert k_up in (0, 1)
        assert 0.0 <= fflow <= 1.0
        fflows.append(fflow)
    assert np.isclose(sum(fflows), 1.0, rtol=0.0, atol=1e-14)


def test_frac_flow_quotient_rule():
    """With a common upwind cell, the derivatives of the fractional flow follow the
    quotient rule."""
    props = cf.initialize_cell_properties(2, 2, 1)
    props.phase_mob = np.array([[0.2, 0.6], [0.9, 0.9]])
    props.dphase_mob_dpres = np.array([[0.1, -0.3], [5.0, 5.0]])
    props.dphase_mob_dcomp = np.array([[[0.4], [0.2]], [[5.0], [5.0]]])

    k_up, fflow, dfflow_dpres, dfflow_dcomp = _frac_flow(props, HU, VISCOUS, 0, 1.0)
    tot = 0.8
    assert k_up == 0
    assert np.isclose(fflow, 0.25, rtol=0.0, atol=1e-15)
    expected_dpres = 0.1 / tot - 0.25 * (0.1 - 0.3) / tot
    expected_dcomp = 0.4 / tot - 0.25 * (0.4 + 0.2) / tot
    assert np.allclose(dfflow_dpres, [expected_dpres, 0.0], rtol=0.0, atol=1e-14)
    assert np.allclose(dfflow_dcomp[:, 0], [expected_dcomp, 0.0], rtol=0.0, atol=1e-14)


def test_frac_flow_no_flow():
    """Without any mobility, the fractional flow is zero and no NaN is produced."""
    props = cf.initialize_cell_properties(2, 2, 1)
    props.dphase_mob_dpres[:] = 1.0

    for ip in range(2):
        k_up, fflow, dfflow_dpres, dfflow_dcomp = _frac_flow(
            props, HU, VISCOUS, ip, 1.0
        )
        assert k_up == 0
        assert fflow == 0.0
        assert np.all(dfflow_dpres == 0.0)
        assert np.all(dfflow_dcomp == 0.0)


@pytest.mark.parametrize("nphase", [2, 3])
@pytest.mark.parametrize("scheme", [HU, PU])
def test_grav_flux_cancels(nphase: int, scheme: int):
    """The gravitational parts of the phase fluxes sum up to zero."""
    fluid = SyntheticFluid(nphase, 2, seed=5)
    props = fluid.evaluate(
        np.array([1.0, 1.1]),
        np.array([[0.5, 1.0], [1.5, 0.2]]),
        np.array([0.5, -0.5]),
    )

    fluxes = [_grav_flux(props, scheme, ip, 0.3)[1] for ip in range(nphase)]
    assert not np.allclose(fluxes, 0.0)
    assert np.isclose(sum(fluxes), 0.0, rtol=0.0, atol=1e-14)


def test_grav_flux_without_gravity():
    """Without gravity there is no gravitational flux."""
    fluid = SyntheticFluid(2, 1, seed=5)
    props = fluid.evaluate(np.array([1.0, 1.1]), np.ones((2, 1)), np.zeros(2))
    for ip in range(2):
        assert _grav_flux(props, HU, ip, 1.0)[1] == 0.0


def test_total_flux():
    """The total flux is the sum of the classical phase fluxes."""
    fluid = SyntheticFluid(3, 2, seed=7)
    props = fluid.evaluate(
        np.array([2.0, 1.0]), np.array([[0.5, 1.0], [1.5, 0.2]]), np.array([0.1, 0.0])
    )
    cells = np.array([0, 1])
    weights = np.array([1.0, -1.0])

    expected = sum(_ppu_velocity(props, ip, cells, weights)[1] for ip in range(3))
    total = cf.form_total_flux(
        3,
        2,
        cells,
        weights,
        props.pres,
        props.dpres,
        props.grav_coef,
        props.phase_mob,
        props.dphase_mob_dpres,
        props.dphase_mob_dcomp,
        props.dphase_vol_frac_dpres,
        props.dphase_vol_frac_dcomp,
        props.dcomp_frac_dcomp_dens,
        props.phase_mass_dens,
        props.dphase_mass_dens_dpres,
        props.dphase_mass_dens_dcomp,
        props.phase_cap_pressure,
        props.dphase_cap_pressure_dvol_frac,
        False,
        np.zeros(2),
        np.zeros((2, 2)),
        np.zeros(2),
    )
    assert np.isclose(total, expected, rtol=0.0, atol=1e-14)
