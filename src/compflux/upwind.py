"""Module containing the upwind schemes and the choice of the upwind direction.

A scheme is identified by a value of :class:`~compflux._core.UpwindScheme` and is
applied to a physical term identified by a value of
:class:`~compflux._core.UpwindTerm`. Both are passed as integers into the compiled
functions, which dispatch on them in :func:`calc_potential`:

=================== ========================= ========================= ======================
scheme              VISCOUS                   GRAVITY                   CAPILLARY
=================== ========================= ========================= ======================
PHASE_POTENTIAL     phase potential           phase potential           phase potential
HYBRID              total flux                segregation potential     phase potential
PHASE               total flux + segregation  total flux + segregation  total flux + segregation
=================== ========================= ========================= ======================

The phase potential is the value of
:func:`~compflux.potential.form_ppu_potential`. The segregation potential of phase
``ip`` compares its gravitational head with the heads of all other phases, see
:func:`segregation_potential`.

"""

from __future__ import annotations

import numba
import numpy as np

from ._core import NUMBA_CACHE, NUMBA_FAST_MATH, UpwindScheme, UpwindTerm
from .potential import grav_head_value, pressure_gradient_value

__all__ = [
    "upwind_direction",
    "ppu_upwind_direction",
    "segregation_potential",
    "calc_potential",
    "get_upwind_dir",
]

# integer tags, frozen as compile time constants by numba
_PHASE_POTENTIAL = int(UpwindScheme.PHASE_POTENTIAL)
_HYBRID = int(UpwindScheme.HYBRID)
_PHASE = int(UpwindScheme.PHASE)
_VISCOUS = int(UpwindTerm.VISCOUS)
_GRAVITY = int(UpwindTerm.GRAVITY)


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def upwind_direction(pot: float, source: int) -> int:
    """Converts a potential into an upwind direction.

    A positive potential selects ``source``. Otherwise the other primary cell is
    selected, which treats the orientation reversal of the hybrid schemes.

    Important:
        The tie ``pot == 0`` selects the cell opposite to ``source``.

    Parameters:
        pot: Potential formed by an upwind scheme.
        source: Primary cell (0 or 1) the potential is oriented from.

    Returns:
        0 or 1.

    """
    if pot > 0:
        return source
    return 1 if source == 0 else 0


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def ppu_upwind_direction(pot: float) -> int:
    """Upwind direction of the classical phase potential upwinding.

    Returns 0 if ``pot >= 0``, 1 otherwise. The tie ``pot == 0`` resolves to the first
    cell.

    """
    return 0 if pot >= 0 else 1


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def segregation_potential(
    num_phases: int,
    ip: int,
    stencil_size: int,
    cells: np.ndarray,
    weights: np.ndarray,
    grav_coef: np.ndarray,
    phase_mob: np.ndarray,
    phase_mass_dens: np.ndarray,
) -> float:
    r"""Gravitational segregation potential of phase ``ip``.

    .. math::

        \omega = \sum_{j \neq i} \lambda_j \left(g_j - g_i\right)~,

    with :math:`g` the gravitational heads and :math:`\lambda_j` the mobility of phase
    ``j`` in the second (downstream) primary cell if :math:`g_i - g_j \geq 0`, and in
    the first (upstream) primary cell otherwise.

    """
    grav_head = grav_head_value(
        ip, stencil_size, cells, weights, grav_coef, phase_mass_dens
    )
    pot = 0.0
    for jp in range(num_phases):
        if jp == ip:
            continue
        grav_head_other = grav_head_value(
            jp, stencil_size, cells, weights, grav_coef, phase_mass_dens
        )
        mob_up = phase_mob[cells[0], jp]
        mob_dw = phase_mob[cells[1], jp]

        if grav_head - grav_head_other >= 0:
            pot += mob_dw * (grav_head_other - grav_head)
        else:
            pot += mob_up * (grav_head_other - grav_head)
    return pot


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def calc_potential(
    scheme: int,
    term: int,
    num_phases: int,
    ip: int,
    stencil_size: int,
    cells: np.ndarray,
    weights: np.ndarray,
    total_flux: float,
    pres: np.ndarray,
    dpres: np.ndarray,
    grav_coef: np.ndarray,
    phase_mob: np.ndarray,
    phase_mass_dens: np.ndarray,
    phase_cap_pressure: np.ndarray,
    cap_pressure_flag: bool,
) -> tuple[float, int]:
    """Forms the potential deciding the upwind direction of phase ``ip``.

    See the module documentation for the potential of each scheme and term.

    Parameters:
        scheme: Integer value of an :class:`~compflux._core.UpwindScheme`.
        term: Integer value of an :class:`~compflux._core.UpwindTerm`.
        num_phases: Number of phases.
        ip: Phase index.
        stencil_size: Number of cells in the stencil.
        cells: Resolved cell indices of the connection.
        weights: Stencil weights of the connection.
        total_flux: Signed total flux over the connection. Only used by the hybrid
            and phase upwinding.
        pres: Pressure per cell.
        dpres: Pressure increment per cell.
        grav_coef: Gravity coefficient per cell.
        phase_mob: Phase mobility per cell.
        phase_mass_dens: Phase mass density per cell.
        phase_cap_pressure: Capillary pressure per cell and phase.
        cap_pressure_flag: If False, the capillary pressure is ignored.

    Returns:
        A 2-tuple containing the potential and the primary cell it is oriented from.

    """
    source = 0

    if scheme == _PHASE or (scheme == _HYBRID and term == _VISCOUS):
        pot = total_flux
        if scheme == _PHASE:
            pot += segregation_potential(
                num_phases,
                ip,
                stencil_size,
                cells,
                weights,
                grav_coef,
                phase_mob,
                phase_mass_dens,
            )
    elif scheme == _HYBRID and term == _GRAVITY:
        pot = segregation_potential(
            num_phases,
            ip,
            stencil_size,
            cells,
            weights,
            grav_coef,
            phase_mob,
            phase_mass_dens,
        )
    else:
        # phase potential, also for the capillary term of the hybrid scheme
        pot = pressure_gradient_value(
            ip,
            stencil_size,
            cells,
            weights,
            pres,
            dpres,
            phase_cap_pressure,
            cap_pressure_flag,
        ) - grav_head_value(
            ip, stencil_size, cells, weights, grav_coef, phase_mass_dens
        )

    return pot, source


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def get_upwind_dir(
    scheme: int,
    term: int,
    num_phases: int,
    ip: int,
    stencil_size: int,
    cells: np.ndarray,
    weights: np.ndarray,
    total_flux: float,
    pres: np.ndarray,
    dpres: np.ndarray,
    grav_coef: np.ndarray,
    phase_mob: np.ndarray,
    phase_mass_dens: np.ndarray,
    phase_cap_pressure: np.ndarray,
    cap_pressure_flag: bool,
) -> int:
    """Upwind direction of phase ``ip`` for a scheme and term.

    The classical scheme uses :func:`ppu_upwind_direction`, all other schemes use
    :func:`upwind_direction` with the source returned by :func:`calc_potential`.

    Returns:
        The upwind direction, 0 or 1.

    """
    pot, source = calc_potential(
        scheme,
        term,
        num_phases,
        ip,
        stencil_size,
        cells,
        weights,
        total_flux,
        pres,
        dpres,
        grav_coef,
        phase_mob,
        phase_mass_dens,
        phase_cap_pressure,
        cap_pressure_flag,
    )
    if scheme == _PHASE_POTENTIAL:
        return ppu_upwind_direction(pot)
    return upwind_direction(pot, source)
