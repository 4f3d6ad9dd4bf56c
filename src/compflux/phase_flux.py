"""Module containing the upwinded phase fluxes and their derivatives.

Every phase flux is the product of an upwinded mobility (or fractional flow) with a
driving force. The derivatives are accumulated in two parts:

1. the derivatives of the driving force at every stencil cell, scaled by the upwinded
   mobility,
2. the derivative of the upwinded mobility times the driving force, added only at the
   upwind direction, since the mobility is a function of the unknowns of the upwind
   cell only.

Upwinded mobilities with an absolute value not above
:data:`~compflux._core.MOBILITY_EPS` are replaced by exact zeros, including their
derivatives.

Buffer arguments are provided by the caller and sized by the stencil capacity
``MAX_STENCIL`` and the number of components ``NC``.

"""

from __future__ import annotations

import numba
import numpy as np

from ._core import (
    MOBILITY_EPS,
    NUM_ELEMS,
    NUMBA_CACHE,
    NUMBA_FAST_MATH,
    UNSET_DIRECTION,
    UpwindTerm,
)
from .potential import form_grav_head, form_ppu_potential
from .upwind import get_upwind_dir, ppu_upwind_direction

__all__ = [
    "form_ppu_velocity",
    "form_total_flux",
    "upwind_mobility",
    "form_frac_flow",
    "form_viscous_flux",
    "form_grav_flux",
]

_VISCOUS = int(UpwindTerm.VISCOUS)
_GRAVITY = int(UpwindTerm.GRAVITY)


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def form_ppu_velocity(
    num_phases: int,
    ip: int,
    stencil_size: int,
    cells: np.ndarray,
    weights: np.ndarray,
    pres: np.ndarray,
    dpres: np.ndarray,
    grav_coef: np.ndarray,
    phase_mob: np.ndarray,
    dphase_mob_dpres: np.ndarray,
    dphase_mob_dcomp: np.ndarray,
    dphase_vol_frac_dpres: np.ndarray,
    dphase_vol_frac_dcomp: np.ndarray,
    dcomp_frac_dcomp_dens: np.ndarray,
    phase_mass_dens: np.ndarray,
    dphase_mass_dens_dpres: np.ndarray,
    dphase_mass_dens_dcomp: np.ndarray,
    phase_cap_pressure: np.ndarray,
    dphase_cap_pressure_dvol_frac: np.ndarray,
    cap_pressure_flag: bool,
    dphase_flux_dpres: np.ndarray,
    dphase_flux_dcomp: np.ndarray,
    dprop_dcomp: np.ndarray,
) -> tuple[int, float]:
    """Forms the phase flux of phase ``ip`` with the classical phase potential
    upwinding.

    The flux is the mobility of the upwind cell times the phase potential of
    :func:`~compflux.potential.form_ppu_potential`. The upwind cell is the first
    primary cell if the potential is non-negative, the second otherwise.

    Parameters:
        dphase_flux_dpres: ``shape=(MAX_STENCIL,)``

            Output, the first ``stencil_size`` entries are overwritten with the
            pressure derivatives of the flux.
        dphase_flux_dcomp: ``shape=(MAX_STENCIL, NC)``

            Output, overwritten with the component density derivatives.
        dprop_dcomp: ``shape=(NC,)``

            Working buffer.

    See :func:`~compflux.potential.form_pressure_gradient` and
    :func:`~compflux.potential.form_grav_head` for the other parameters.

    Returns:
        A 2-tuple containing the upwind direction and the phase flux.

    """
    nc = dphase_flux_dcomp.shape[1]

    pot = form_ppu_potential(
        num_phases,
        ip,
        stencil_size,
        cells,
        weights,
        pres,
        dpres,
        grav_coef,
        dphase_vol_frac_dpres,
        dphase_vol_frac_dcomp,
        dcomp_frac_dcomp_dens,
        phase_mass_dens,
        dphase_mass_dens_dpres,
        dphase_mass_dens_dcomp,
        phase_cap_pressure,
        dphase_cap_pressure_dvol_frac,
        cap_pressure_flag,
        dphase_flux_dpres,
        dphase_flux_dcomp,
        dprop_dcomp,
    )

    k_up = ppu_upwind_direction(pot)
    cell_up = cells[k_up]

    mobility = phase_mob[cell_up, ip]
    dmob_dpres = dphase_mob_dpres[cell_up, ip]
    mob_flag = 1.0
    if abs(mobility) <= MOBILITY_EPS:
        mobility = 0.0
        dmob_dpres = 0.0
        mob_flag = 0.0

    phase_flux = mobility * pot

    for ke in range(stencil_size):
        dphase_flux_dpres[ke] *= mobility
        for jc in range(nc):
            dphase_flux_dcomp[ke, jc] *= mobility

    # contribution from the upstream cell mobility derivatives
    dphase_flux_dpres[k_up] += dmob_dpres * pot
    for jc in range(nc):
        dphase_flux_dcomp[k_up, jc] += (
            mob_flag * dphase_mob_dcomp[cell_up, ip, jc] * pot
        )

    return k_up, phase_flux


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def form_total_flux(
    num_phases: int,
    stencil_size: int,
    cells: np.ndarray,
    weights: np.ndarray,
    pres: np.ndarray,
    dpres: np.ndarray,
    grav_coef: np.ndarray,
    phase_mob: np.ndarray,
    dphase_mob_dpres: np.ndarray,
    dphase_mob_dcomp: np.ndarray,
    dphase_vol_frac_dpres: np.ndarray,
    dphase_vol_frac_dcomp: np.ndarray,
    dcomp_frac_dcomp_dens: np.ndarray,
    phase_mass_dens: np.ndarray,
    dphase_mass_dens_dpres: np.ndarray,
    dphase_mass_dens_dcomp: np.ndarray,
    phase_cap_pressure: np.ndarray,
    dphase_cap_pressure_dvol_frac: np.ndarray,
    cap_pressure_flag: bool,
    dphase_flux_dpres: np.ndarray,
    dphase_flux_dcomp: np.ndarray,
    dprop_dcomp: np.ndarray,
) -> float:
    """Sum of the phase fluxes of :func:`form_ppu_velocity` over all phases.

    Intended to provide the total flux for the hybrid schemes, where it enters as a
    fixed parameter. The derivative buffers are only used as working memory.

    """
    total_flux = 0.0
    for ip in range(num_phases):
        _, phase_flux = form_ppu_velocity(
            num_phases,
            ip,
            stencil_size,
            cells,
            weights,
            pres,
            dpres,
            grav_coef,
            phase_mob,
            dphase_mob_dpres,
            dphase_mob_dcomp,
            dphase_vol_frac_dpres,
            dphase_vol_frac_dcomp,
            dcomp_frac_dcomp_dens,
            phase_mass_dens,
            dphase_mass_dens_dpres,
            dphase_mass_dens_dcomp,
            phase_cap_pressure,
            dphase_cap_pressure_dvol_frac,
            cap_pressure_flag,
            dphase_flux_dpres,
            dphase_flux_dcomp,
            dprop_dcomp,
        )
        total_flux += phase_flux
    return total_flux


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def upwind_mobility(
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
    dphase_mob_dpres: np.ndarray,
    dphase_mob_dcomp: np.ndarray,
    phase_mass_dens: np.ndarray,
    phase_cap_pressure: np.ndarray,
    cap_pressure_flag: bool,
    dmob_dcomp: np.ndarray,
) -> tuple[int, float, float]:
    """Upwinded mobility of phase ``ip`` according to a scheme and term.

    Parameters:
        dmob_dcomp: ``shape=(NC,)``

            Output, overwritten with the component density derivatives of the
            upwinded mobility, w.r.t. the unknowns of the upwind cell.

    See :func:`~compflux.upwind.calc_potential` for the other parameters.

    Returns:
        A 3-tuple containing the upwind direction, the upwinded mobility and its
        pressure derivative.

    """
    nc = dmob_dcomp.shape[0]

    upwind_dir = get_upwind_dir(
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
    cell_up = cells[upwind_dir]

    mob = 0.0
    dmob_dpres = 0.0
    for ic in range(nc):
        dmob_dcomp[ic] = 0.0

    if abs(phase_mob[cell_up, ip]) > MOBILITY_EPS:
        mob = phase_mob[cell_up, ip]
        dmob_dpres = dphase_mob_dpres[cell_up, ip]
        for ic in range(nc):
            dmob_dcomp[ic] = dphase_mob_dcomp[cell_up, ip, ic]

    return upwind_dir, mob, dmob_dpres


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def form_frac_flow(
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
    dphase_mob_dpres: np.ndarray,
    dphase_mob_dcomp: np.ndarray,
    phase_mass_dens: np.ndarray,
    phase_cap_pressure: np.ndarray,
    cap_pressure_flag: bool,
    dfflow_dpres: np.ndarray,
    dfflow_dcomp: np.ndarray,
    dtot_mob_dpres: np.ndarray,
    dtot_mob_dcomp: np.ndarray,
    dmob_dcomp: np.ndarray,
    dmain_mob_dcomp: np.ndarray,
) -> tuple[int, float]:
    r"""Upwinded fractional flow of phase ``ip`` according to a scheme and term.

    .. math::

        f_i = \frac{\lambda_i}{\sum_j \lambda_j}~,

    where every mobility is upwinded independently with the same scheme and term, and
    its derivatives are accumulated at its own upwind direction.

    If the upwinded mobility of phase ``ip`` is negligible, the fractional flow and
    its derivatives are exactly zero. This includes the case of a vanishing total
    mobility.

    Parameters:
        dfflow_dpres: ``shape=(MAX_STENCIL,)``

            Output, overwritten with the pressure derivatives.
        dfflow_dcomp: ``shape=(MAX_STENCIL, NC)``

            Output, overwritten with the component density derivatives.
        dtot_mob_dpres: ``shape=(MAX_STENCIL,)``

            Working buffer.
        dtot_mob_dcomp: ``shape=(MAX_STENCIL, NC)``

            Working buffer.
        dmob_dcomp: ``shape=(NC,)``

            Working buffer.
        dmain_mob_dcomp: ``shape=(NC,)``

            Working buffer.

    See :func:`~compflux.upwind.calc_potential` for the other parameters.

    Returns:
        A 2-tuple containing the upwind direction of phase ``ip`` and the fractional
        flow. The direction is :data:`~compflux._core.UNSET_DIRECTION` if ``ip`` is
        not a phase index.

    """
    nc = dfflow_dcomp.shape[1]

    main_mob = 0.0
    dmain_mob_dpres = 0.0
    tot_mob = 0.0

    k_up_main = UNSET_DIRECTION
    fflow = 0.0
    for ke in range(stencil_size):
        dfflow_dpres[ke] = 0.0
        dtot_mob_dpres[ke] = 0.0
        for jc in range(nc):
            dfflow_dcomp[ke, jc] = 0.0
            dtot_mob_dcomp[ke, jc] = 0.0
    for jc in range(nc):
        dmain_mob_dcomp[jc] = 0.0

    for jp in range(num_phases):
        k_up, mob, dmob_dpres = upwind_mobility(
            scheme,
            term,
            num_phases,
            jp,
            stencil_size,
            cells,
            weights,
            total_flux,
            pres,
            dpres,
            grav_coef,
            phase_mob,
            dphase_mob_dpres,
            dphase_mob_dcomp,
            phase_mass_dens,
            phase_cap_pressure,
            cap_pressure_flag,
            dmob_dcomp,
        )

        tot_mob += mob
        dtot_mob_dpres[k_up] += dmob_dpres
        for ic in range(nc):
            dtot_mob_dcomp[k_up, ic] += dmob_dcomp[ic]

        if jp == ip:
            k_up_main = k_up
            main_mob = mob
            dmain_mob_dpres = dmob_dpres
            for ic in range(nc):
                dmain_mob_dcomp[ic] = dmob_dcomp[ic]

    # guard against no flow regions
    if abs(main_mob) > MOBILITY_EPS:
        fflow = main_mob / tot_mob
        dfflow_dpres[k_up_main] = dmain_mob_dpres / tot_mob
        for jc in range(nc):
            dfflow_dcomp[k_up_main, jc] = dmain_mob_dcomp[jc] / tot_mob

        for ke in range(stencil_size):
            dfflow_dpres[ke] -= fflow * dtot_mob_dpres[ke] / tot_mob
            for jc in range(nc):
                dfflow_dcomp[ke, jc] -= fflow * dtot_mob_dcomp[ke, jc] / tot_mob

    return k_up_main, fflow


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def form_viscous_flux(
    scheme: int,
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
    dphase_mob_dpres: np.ndarray,
    dphase_mob_dcomp: np.ndarray,
    phase_mass_dens: np.ndarray,
    phase_cap_pressure: np.ndarray,
    cap_pressure_flag: bool,
    dphase_flux_dpres: np.ndarray,
    dphase_flux_dcomp: np.ndarray,
    work_dpres: np.ndarray,
    work_dcomp: np.ndarray,
    work_vec: np.ndarray,
) -> tuple[int, float]:
    """Viscous part ``fflow * total_flux`` of the phase flux of phase ``ip``.

    The fractional flow is upwinded for the viscous term, the total flux is a fixed
    parameter and does not contribute derivatives.

    Parameters:
        dphase_flux_dpres: ``shape=(MAX_STENCIL,)``

            Output, overwritten with the pressure derivatives.
        dphase_flux_dcomp: ``shape=(MAX_STENCIL, NC)``

            Output, overwritten with the component density derivatives.
        work_dpres: ``shape=(>= 1, MAX_STENCIL)``

            Working buffer.
        work_dcomp: ``shape=(>= 1, MAX_STENCIL, NC)``

            Working buffer.
        work_vec: ``shape=(>= 2, NC)``

            Working buffer.

    Returns:
        A 2-tuple containing the upwind direction and the viscous phase flux.

    """
    nc = dphase_flux_dcomp.shape[1]

    k_up, fflow = form_frac_flow(
        scheme,
        _VISCOUS,
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
        dphase_mob_dpres,
        dphase_mob_dcomp,
        phase_mass_dens,
        phase_cap_pressure,
        cap_pressure_flag,
        dphase_flux_dpres,
        dphase_flux_dcomp,
        work_dpres[0],
        work_dcomp[0],
        work_vec[0],
        work_vec[1],
    )

    for ke in range(stencil_size):
        dphase_flux_dpres[ke] *= total_flux
        for jc in range(nc):
            dphase_flux_dcomp[ke, jc] *= total_flux

    return k_up, fflow * total_flux


@numba.njit(fastmath=NUMBA_FAST_MATH, cache=NUMBA_CACHE)
def form_grav_flux(
    scheme: int,
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
    dphase_mob_dpres: np.ndarray,
    dphase_mob_dcomp: np.ndarray,
    dcomp_frac_dcomp_dens: np.ndarray,
    phase_mass_dens: np.ndarray,
    dphase_mass_dens_dpres: np.ndarray,
    dphase_mass_dens_dcomp: np.ndarray,
    phase_cap_pressure: np.ndarray,
    cap_pressure_flag: bool,
    dphase_flux_dpres: np.ndarray,
    dphase_flux_dcomp: np.ndarray,
    work_dpres: np.ndarray,
    work_dcomp: np.ndarray,
    work_vec: np.ndarray,
) -> tuple[int, float]:
    r"""Gravitational part of the phase flux of phase ``ip``.

    .. math::

        G_i = \sum_{j \neq i} f_i \lambda_j \left(g_j - g_i\right)~,

    with the fractional flow :math:`f_i` and the mobilities :math:`\lambda_j` upwinded
    for the gravity term, and :math:`g` the gravitational heads of
    :func:`~compflux.potential.form_grav_head`. Summed over all phases, the
    gravitational parts cancel.

    Parameters:
        dphase_flux_dpres: ``shape=(MAX_STENCIL,)``

            Output, overwritten with the pressure derivatives.
        dphase_flux_dcomp: ``shape=(MAX_STENCIL, NC)``

            Output, overwritten with the component density derivatives.
        work_dpres: ``shape=(>= 4, MAX_STENCIL)``

            Working buffer.
        work_dcomp: ``shape=(>= 4, MAX_STENCIL, NC)``

            Working buffer.
        work_vec: ``shape=(>= 3, NC)``

            Working buffer.

    Returns:
        A 2-tuple containing the upwind direction of the fractional flow and the
        gravitational phase flux.

    """
    nc = dphase_flux_dcomp.shape[1]

    dfflow_dpres = work_dpres[0]
    dfflow_dcomp = work_dcomp[0]
    dgrav_head_dpres = work_dpres[2]
    dgrav_head_dcomp = work_dcomp[2]
    dgrav_head_other_dpres = work_dpres[3]
    dgrav_head_other_dcomp = work_dcomp[3]
    dmob_other_dcomp = work_vec[0]
    dprop_dcomp = work_vec[2]

    k_up_main, fflow = form_frac_flow(
        scheme,
        _GRAVITY,
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
        dphase_mob_dpres,
        dphase_mob_dcomp,
        phase_mass_dens,
        phase_cap_pressure,
        cap_pressure_flag,
        dfflow_dpres,
        dfflow_dcomp,
        work_dpres[1],
        work_dcomp[1],
        work_vec[0],
        work_vec[1],
    )

    for ke in range(stencil_size):
        dphase_flux_dpres[ke] = 0.0
        for jc in range(nc):
            dphase_flux_dcomp[ke, jc] = 0.0

    grav_head = form_grav_head(
        ip,
        stencil_size,
        cells,
        weights,
        grav_coef,
        dcomp_frac_dcomp_dens,
        phase_mass_dens,
        dphase_mass_dens_dpres,
        dphase_mass_dens_dcomp,
        dgrav_head_dpres,
        dgrav_head_dcomp,
        dprop_dcomp,
    )

    phase_flux = 0.0
    for jp in range(num_phases):
        if jp == ip:
            continue

        grav_head_other = form_grav_head(
            jp,
            stencil_size,
            cells,
            weights,
            grav_coef,
            dcomp_frac_dcomp_dens,
            phase_mass_dens,
            dphase_mass_dens_dpres,
            dphase_mass_dens_dcomp,
            dgrav_head_other_dpres,
            dgrav_head_other_dcomp,
            dprop_dcomp,
        )
        k_up_other, mob_other, dmob_other_dpres = upwind_mobility(
            scheme,
            _GRAVITY,
            num_phases,
            jp,
            stencil_size,
            cells,
            weights,
            total_flux,
            pres,
            dpres,
            grav_coef,
            phase_mob,
            dphase_mob_dpres,
            dphase_mob_dcomp,
            phase_mass_dens,
            phase_cap_pressure,
            cap_pressure_flag,
            dmob_other_dcomp,
        )

        head_diff = grav_head_other - grav_head
        phase_flux += fflow * mob_other * head_diff

        # fractional flow, at every stencil cell
        scale = mob_other * head_diff
        for ke in range(stencil_size):
            dphase_flux_dpres[ke] += dfflow_dpres[ke] * scale
            for jc in range(nc):
                dphase_flux_dcomp[ke, jc] += dfflow_dcomp[ke, jc] * scale

        # mobility of the other phase, at its upwind cell
        scale = fflow * head_diff
        dphase_flux_dpres[k_up_other] += dmob_other_dpres * scale
        for jc in range(nc):
            dphase_flux_dcomp[k_up_other, jc] += dmob_other_dcomp[jc] * scale

        # gravitational heads, at the primary cells
        scale = fflow * mob_other
        for ke in range(NUM_ELEMS):
            dphase_flux_dpres[ke] += scale * (
                dgrav_head_other_dpres[ke] - dgrav_head_dpres[ke]
            )
            for jc in range(nc):
                dphase_flux_dcomp[ke, jc] += scale * (
                    dgrav_head_other_dcomp[ke, jc] - dgrav_head_dcomp[ke, jc]
                )

    return k_up_main, phase_flux
