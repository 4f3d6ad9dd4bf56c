"""Tests for the upwind schemes and the choice of upwind direction."""

from __future__ import annotations

import numpy as np
import pytest

import compflux as cf

PPU = int(cf.UpwindScheme.PHASE_POTENTIAL)
HU = int(cf.UpwindScheme.HYBRID)
PU = int(cf.UpwindScheme.PHASE)
VISCOUS = int(cf.UpwindTerm.VISCOUS)
GRAVITY = int(cf.UpwindTerm.GRAVITY)
CAPILLARY = int(cf.UpwindTerm.CAPILLARY)


@pytest.fixture
def segregating_properties() -> cf.CellProperties:
    """Two cells with a heavy and a light phase, and a weighted gravity sum of 1.

    The gravitational heads are 1.0 for phase 0 and 0.5 for phase 1. The pressure
    difference is 2.

    """
    props = cf.initialize_cell_properties(2, 2, 1)
    props.pres = np.array([3.0, 1.0])
    props.grav_coef = np.array([1.0, 0.0])
    props.phase_mass_dens = np.array([[1.0, 0.5], [1.0, 0.5]])
    props.phase_mob = np.array([[0.2, 0.3], [0.4, 0.5]])
    return props


def _calc_potential(
    props: cf.CellProperties, scheme: int, term: int, ip: int, total_flux: float
) -> tuple[float, int]:
    return cf.calc_potential(
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
        props.phase_mass_dens,
        props.phase_cap_pressure,
        False,
    )


def _upwind_dir(
    props: cf.CellProperties, scheme: int, term: int, ip: int, total_flux: float
) -> int:
    return cf.get_upwind_dir(
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
        props.phase_mass_dens,
        props.phase_cap_pressure,
        False,
    )


def test_ppu_upwind_monotonicity():
    """Opposite signs give opposite directions, the tie resolves to the first cell."""
    eps = 1e-12
    assert cf.ppu_upwind_direction(eps) == 0
    assert cf.ppu_upwind_direction(-eps) == 1
    assert cf.ppu_upwind_direction(0.0) == 0


@pytest.mark.parametrize(
    "pot, source, expected",
    [
        (1.0, 0, 0),
        (-1.0, 0, 1),
        (0.0, 0, 1),
        (1.0, 1, 1),
        (-1.0, 1, 0),
        (0.0, 1, 0),
    ],
)
def test_upwind_direction(pot: float, source: int, expected: int):
    """A positive potential selects the source, otherwise the other cell."""
    assert cf.upwind_direction(pot, source) == expected


def test_segregation_potential(segregating_properties: cf.CellProperties):
    """The heavy phase takes the mobility of the light phase in the downstream cell,
    the light phase the mobility of the heavy phase in the upstream cell."""
    props = segregating_properties
    cells = np.array([0, 1])
    weights = np.array([1.0, -1.0])

    pot_heavy = cf.segregation_potential(
        2, 0, 2, cells, weights, props.grav_coef, props.phase_mob, props.phase_mass_dens
    )
    pot_light = cf.segregation_potential(
        2, 1, 2, cells, weights, props.grav_coef, props.phase_mob, props.phase_mass_dens
    )
    assert np.isclose(pot_heavy, 0.5 * (0.5 - 1.0), rtol=0.0, atol=1e-15)
    assert np.isclose(pot_light, 0.2 * (1.0 - 0.5), rtol=0.0, atol=1e-15)


def test_calc_potential_dispatch(segregating_properties: cf.CellProperties):
    """Every scheme and term forms the potential listed in the module documentation,
    always oriented from the first cell."""
    props = segregating_properties
    total_flux = 0.7
    # pressure difference minus gravitational head
    phase_pot = [2.0 - 1.0, 2.0 - 0.5]
    segregation = [-0.25, 0.1]

    for ip in range(2):
        for term in (VISCOUS, GRAVITY, CAPILLARY):
            pot, source = _calc_potential(props, PPU, term, ip, total_flux)
            assert np.isclose(pot, phase_pot[ip], rtol=0.0, atol=1e-14)
            assert source == 0

            pot, _ = _calc_potential(props, PU, term, ip, total_flux)
            assert np.isclose(pot, total_flux + segregation[ip], rtol=0.0, atol=1e-14)

        pot, _ = _calc_potential(props, HU, VISCOUS, ip, total_flux)
        assert pot == total_flux
        pot, _ = _calc_potential(props, HU, GRAVITY, ip, total_flux)
        assert np.isclose(pot, segregation[ip], rtol=0.0, atol=1e-14)
        pot, _ = _calc_potential(props, HU, CAPILLARY, ip, total_flux)
        assert np.isclose(pot, phase_pot[ip], rtol=0.0, atol=1e-14)


def test_get_upwind_dir(segregating_properties: cf.CellProperties):
    """Tie rules differ between the classical and the hybrid schemes."""
    props = segregating_properties

    assert _upwind_dir(props, HU, VISCOUS, 0, 2.0) == 0
    assert _upwind_dir(props, HU, VISCOUS, 0, -2.0) == 1
    assert _upwind_dir(props, HU, VISCOUS, 0, 0.0) == 1

    # counter-current segregation, the heavy phase flows towards the second cell
    assert _upwind_dir(props, HU, GRAVITY, 0, 0.0) == 1
    assert _upwind_dir(props, HU, GRAVITY, 1, 0.0) == 0

    # equal pressures and no gravity give a zero phase potential
    props.pres = np.array([1.0, 1.0])
    props.grav_coef = np.zeros(2)
    assert _upwind_dir(props, PPU, VISCOUS, 0, 0.0) == 0
    props.pres = np.array([1.0, 1.0 + 1e-10])
    assert _upwind_dir(props, PPU, VISCOUS, 0, 0.0) == 1
