"""Module containing the evaluation of upwinded fluxes over all connections of a mesh.

The entry point is :func:`compute_connection_fluxes`, which resolves the stencils,
checks the input and dispatches to a parallel, numba-compiled loop over connections.
Each connection is evaluated independently with its own accumulators, which are
allocated once per connection inside the parallel loop and passed down to the
allocation-free kernels.

Two evaluation paths exist:

1. :attr:`~compflux._core.UpwindScheme.PHASE_POTENTIAL`: Every phase flux is the
   upwinded mobility times the phase potential. The mobility is expected to include
   the phase density (i.e. molar or mass mobility), hence no rescaling is performed.
2. :attr:`~compflux._core.UpwindScheme.HYBRID` and
   :attr:`~compflux._core.UpwindScheme.PHASE`: Every phase flux is split into a
   viscous part driven by a given total flux and a gravitational part. The mobilities
   are volumetric and both parts are rescaled by the upstream phase density before
   being distributed onto components. The total flux is a fixed parameter per
   connection and can be obtained with :func:`compute_total_flux`.

"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numba
import numpy as np

from ._core import NUMBA_CACHE, NUMBA_FAST_MATH, NUMBA_PARALLEL, UpwindScheme
from .component_flux import density_multiply, form_phase_comp
from .jacobian import fill_local_jacobi
from .phase_flux import (
    form_grav_flux,
    form_ppu_velocity,
    form_total_flux,
    form_viscous_flux,
)
from .states import CellProperties, ConnectionStencils, LocalFluxes
from .utils import FluxEvaluationError

__all__ = [
    "FluxOptions",
    "compute_connection_fluxes",
    "compute_total_flux",
]

logger = logging.getLogger(__name__)


@dataclass
class FluxOptions:
    """Options of a flux evaluation."""

    scheme: UpwindScheme = UpwindScheme.PHASE_POTENTIAL
    """Upwind scheme, see :class:`~compflux._core.UpwindScheme`."""

    capillary_pressure: bool = False
    """Flag to include the capillary pressure in the phase potentials.

    Only used by the phase potential upwinding and by :func:`compute_total_flux`. The
    hybrid schemes assemble no capillary part and ignore the flag.

    """

    use_mass: bool = False
    """Flag to rescale volumetric fluxes with the mass density instead of the molar
    density. Only used by the hybrid schemes."""


@numba.njit(
    fastmath=NUMBA_FAST_MATH,
    cache=NUMBA_CACHE,
    parallel=NUMBA_PARALLEL,
)
def _ppu_fluxes(
    cells: np.ndarray,
    weights: np.ndarray,
    stencil_size: np.ndarray,
    dt: float,
    cap_pressure_flag: bool,
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
    phase_comp_frac: np.ndarray,
    dphase_comp_frac_dpres: np.ndarray,
    dphase_comp_frac_dcomp: np.ndarray,
    phase_cap_pressure: np.ndarray,
    dphase_cap_pressure_dvol_frac: np.ndarray,
    residual: np.ndarray,
    jacobian: np.ndarray,
    upwind_direction: np.ndarray,
    status: np.ndarray,
) -> None:
    """Parallelized evaluation of the classical phase potential upwinding.

    ``status[conn]`` is set to ``ip + 1`` if no valid upwind direction was selected
    for phase ``ip``, in which case the outputs of ``conn`` are left untouched.

    """
    num_conn, max_stencil = cells.shape
    num_phases = phase_mob.shape[1]
    nc = dcomp_frac_dcomp_dens.shape[1]

    for conn in numba.prange(num_conn):
        size = stencil_size[conn]
        conn_cells = cells[conn]
        conn_weights = weights[conn]

        dphase_flux_dpres = np.zeros(max_stencil)
        dphase_flux_dcomp = np.zeros((max_stencil, nc))
        comp_flux = np.zeros(nc)
        dcomp_flux_dpres = np.zeros((max_stencil, nc))
        dcomp_flux_dcomp = np.zeros((max_stencil, nc, nc))
        dprop_dcomp = np.zeros(nc)
        k_ups = np.zeros(num_phases, dtype=np.int64)

        failed = 0
        for ip in range(num_phases):
            k_up, phase_flux = form_ppu_velocity(
                num_phases,
                ip,
                size,
                conn_cells,
                conn_weights,
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
            if k_up < 0 or k_up >= size:
                failed = ip + 1
                break
            k_ups[ip] = k_up

            form_phase_comp(
                ip,
                k_up,
                size,
                conn_cells,
                phase_comp_frac,
                dphase_comp_frac_dpres,
                dphase_comp_frac_dcomp,
                dcomp_frac_dcomp_dens,
                phase_flux,
                dphase_flux_dpres,
                dphase_flux_dcomp,
                comp_flux,
                dcomp_flux_dpres,
                dcomp_flux_dcomp,
                dprop_dcomp,
            )

        if failed > 0:
            status[conn] = failed
        else:
            fill_local_jacobi(
                comp_flux,
                dcomp_flux_dpres,
                dcomp_flux_dcomp,
                size,
                dt,
                residual[conn],
                jacobian[conn],
            )
            for ip in range(num_phases):
                upwind_direction[conn, ip] = k_ups[ip]


@numba.njit(
    fastmath=NUMBA_FAST_MATH,
    cache=NUMBA_CACHE,
    parallel=NUMBA_PARALLEL,
)
def _hybrid_fluxes(
    scheme: int,
    cells: np.ndarray,
    weights: np.ndarray,
    stencil_size: np.ndarray,
    dt: float,
    cap_pressure_flag: bool,
    total_flux: np.ndarray,
    pres: np.ndarray,
    dpres: np.ndarray,
    grav_coef: np.ndarray,
    phase_mob: np.ndarray,
    dphase_mob_dpres: np.ndarray,
    dphase_mob_dcomp: np.ndarray,
    dcomp_frac_dcomp_dens: np.ndarray,
    phase_dens: np.ndarray,
    dphase_dens_dpres: np.ndarray,
    dphase_dens_dcomp: np.ndarray,
    phase_mass_dens: np.ndarray,
    dphase_mass_dens_dpres: np.ndarray,
    dphase_mass_dens_dcomp: np.ndarray,
    phase_comp_frac: np.ndarray,
    dphase_comp_frac_dpres: np.ndarray,
    dphase_comp_frac_dcomp: np.ndarray,
    phase_cap_pressure: np.ndarray,
    residual: np.ndarray,
    jacobian: np.ndarray,
    upwind_direction: np.ndarray,
    status: np.ndarray,
) -> None:
    """Parallelized evaluation of the hybrid and phase upwinding.

    ``phase_dens`` and its derivatives are the density used to rescale the volumetric
    fluxes, molar or mass. ``status`` as in :func:`_ppu_fluxes`.

    """
    num_conn, max_stencil = cells.shape
    num_phases = phase_mob.shape[1]
    nc = dcomp_frac_dcomp_dens.shape[1]

    for conn in numba.prange(num_conn):
        size = stencil_size[conn]
        conn_cells = cells[conn]
        conn_weights = weights[conn]
        conn_total_flux = total_flux[conn]

        dphase_flux_dpres = np.zeros(max_stencil)
        dphase_flux_dcomp = np.zeros((max_stencil, nc))
        comp_flux = np.zeros(nc)
        dcomp_flux_dpres = np.zeros((max_stencil, nc))
        dcomp_flux_dcomp = np.zeros((max_stencil, nc, nc))
        work_dpres = np.zeros((4, max_stencil))
        work_dcomp = np.zeros((4, max_stencil, nc))
        work_vec = np.zeros((3, nc))
        dprop_dcomp = np.zeros(nc)
        k_ups = np.zeros(num_phases, dtype=np.int64)

        failed = 0
        for ip in range(num_phases):
            # viscous part
            k_up, phase_flux = form_viscous_flux(
                scheme,
                num_phases,
                ip,
                size,
                conn_cells,
                conn_weights,
                conn_total_flux,
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
                work_dpres,
                work_dcomp,
                work_vec,
            )
            if k_up < 0 or k_up >= size:
                failed = ip + 1
                break
            k_ups[ip] = k_up

            phase_flux = density_multiply(
                ip,
                k_up,
                size,
                conn_cells,
                dcomp_frac_dcomp_dens,
                phase_dens,
                dphase_dens_dpres,
                dphase_dens_dcomp,
                phase_flux,
                dphase_flux_dpres,
                dphase_flux_dcomp,
                dprop_dcomp,
            )
            form_phase_comp(
                ip,
                k_up,
                size,
                conn_cells,
                phase_comp_frac,
                dphase_comp_frac_dpres,
                dphase_comp_frac_dcomp,
                dcomp_frac_dcomp_dens,
                phase_flux,
                dphase_flux_dpres,
                dphase_flux_dcomp,
                comp_flux,
                dcomp_flux_dpres,
                dcomp_flux_dcomp,
                dprop_dcomp,
            )

            # gravitational part
            k_up, phase_flux = form_grav_flux(
                scheme,
                num_phases,
                ip,
                size,
                conn_cells,
                conn_weights,
                conn_total_flux,
                pres,
                dpres,
                grav_coef,
                phase_mob,
                dphase_mob_dpres,
                dphase_mob_dcomp,
                dcomp_frac_dcomp_dens,
                phase_mass_dens,
                dphase_mass_dens_dpres,
                dphase_mass_dens_dcomp,
                phase_cap_pressure,
                cap_pressure_flag,
                dphase_flux_dpres,
                dphase_flux_dcomp,
                work_dpres,
                work_dcomp,
                work_vec,
            )
            if k_up < 0 or k_up >= size:
                failed = ip + 1
                break

            phase_flux = density_multiply(
                ip,
                k_up,
                size,
                conn_cells,
                dcomp_frac_dcomp_dens,
                phase_dens,
                dphase_dens_dpres,
                dphase_dens_dcomp,
                phase_flux,
                dphase_flux_dpres,
                dphase_flux_dcomp,
                dprop_dcomp,
            )
            form_phase_comp(
                ip,
                k_up,
                size,
                conn_cells,
                phase_comp_frac,
                dphase_comp_frac_dpres,
                dphase_comp_frac_dcomp,
                dcomp_frac_dcomp_dens,
                phase_flux,
                dphase_flux_dpres,
                dphase_flux_dcomp,
                comp_flux,
                dcomp_flux_dpres,
                dcomp_flux_dcomp,
                dprop_dcomp,
            )

        if failed > 0:
            status[conn] = failed
        else:
            fill_local_jacobi(
                comp_flux,
                dcomp_flux_dpres,
                dcomp_flux_dcomp,
                size,
                dt,
                residual[conn],
                jacobian[conn],
            )
            for ip in range(num_phases):
                upwind_direction[conn, ip] = k_ups[ip]


@numba.njit(
    fastmath=NUMBA_FAST_MATH,
    cache=NUMBA_CACHE,
    parallel=NUMBA_PARALLEL,
)
def _total_fluxes(
    cells: np.ndarray,
    weights: np.ndarray,
    stencil_size: np.ndarray,
    cap_pressure_flag: bool,
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
) -> np.ndarray:
    """Parallelized evaluation of the total flux per connection."""
    num_conn, max_stencil = cells.shape
    num_phases = phase_mob.shape[1]
    nc = dcomp_frac_dcomp_dens.shape[1]

    total_flux = np.empty(num_conn)
    for conn in numba.prange(num_conn):
        dphase_flux_dpres = np.zeros(max_stencil)
        dphase_flux_dcomp = np.zeros((max_stencil, nc))
        dprop_dcomp = np.zeros(nc)
        total_flux[conn] = form_total_flux(
            num_phases,
            stencil_size[conn],
            cells[conn],
            weights[conn],
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
    return total_flux


def _resolve_input(
    stencils: ConnectionStencils, properties: CellProperties
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Checks stencils and properties, and returns the resolved cells, the weights and
    the stencil sizes as contiguous arrays."""
    properties.validate()
    cells = stencils.flat_cells(properties.subregion_offsets, properties.num_cells)
    weights = np.ascontiguousarray(stencils.weights, dtype=np.float64)
    stencil_size = np.ascontiguousarray(stencils.stencil_size, dtype=np.int64)
    return np.ascontiguousarray(cells), weights, stencil_size


def compute_connection_fluxes(
    stencils: ConnectionStencils,
    properties: CellProperties,
    dt: float,
    options: Optional[FluxOptions] = None,
    total_flux: Optional[np.ndarray] = None,
) -> LocalFluxes:
    """Evaluates the upwinded component fluxes of all connections, and returns their
    local residuals and Jacobians.

    Parameters:
        stencils: Stencils of all connections.
        properties: Per-cell state and fluid properties.
        dt: Time step size.
        options: ``default=None``

            Evaluation options. If not given, the classical phase potential upwinding
            without capillarity is used.
        total_flux: ``default=None``

            ``shape=(num_connections,)``

            Total flux per connection. Required by the hybrid and phase upwinding.

    Raises:
        ValueError: If a property array has an unexpected shape, or if a total flux is
            required but not given.
        FluxEvaluationError: If a stencil is invalid, or if no upwind direction could
            be selected for a phase of a connection.

    Returns:
        The local residuals and Jacobians per connection, and the upwind directions
        per connection and phase.

    """
    if options is None:
        options = FluxOptions()
    scheme = UpwindScheme(options.scheme)

    cells, weights, stencil_size = _resolve_input(stencils, properties)
    num_conn, max_stencil = cells.shape
    nc = properties.num_components
    num_phases = properties.num_phases

    logger.debug(
        f"Evaluating fluxes of {num_conn} connections with {scheme.name} upwinding,"
        f" {num_phases} phases and {nc} components."
    )

    result = LocalFluxes(
        residual=np.zeros((num_conn, 2 * nc)),
        jacobian=np.zeros((num_conn, 2 * nc, max_stencil * (nc + 1))),
        upwind_direction=np.full((num_conn, num_phases), -1, dtype=np.int64),
    )
    status = np.zeros(num_conn, dtype=np.int64)
    p = properties

    if scheme == UpwindScheme.PHASE_POTENTIAL:
        _ppu_fluxes(
            cells,
            weights,
            stencil_size,
            float(dt),
            bool(options.capillary_pressure),
            p.pres,
            p.dpres,
            p.grav_coef,
            p.phase_mob,
            p.dphase_mob_dpres,
            p.dphase_mob_dcomp,
            p.dphase_vol_frac_dpres,
            p.dphase_vol_frac_dcomp,
            p.dcomp_frac_dcomp_dens,
            p.phase_mass_dens,
            p.dphase_mass_dens_dpres,
            p.dphase_mass_dens_dcomp,
            p.phase_comp_frac,
            p.dphase_comp_frac_dpres,
            p.dphase_comp_frac_dcomp,
            p.phase_cap_pressure,
            p.dphase_cap_pressure_dvol_frac,
            result.residual,
            result.jacobian,
            result.upwind_direction,
            status,
        )
    else:
        if total_flux is None:
            msg = f"{scheme.name} upwinding requires a total flux."
            logger.error(msg)
            raise ValueError(msg)
        total_flux = np.ascontiguousarray(total_flux, dtype=np.float64)
        if total_flux.shape != (num_conn,):
            msg = f"Total flux has shape {total_flux.shape}, expected ({num_conn},)."
            logger.error(msg)
            raise ValueError(msg)
        if options.capillary_pressure:
            logger.debug(
                f"Capillary pressure is ignored by {scheme.name} upwinding, only the"
                " total flux carries it."
            )

        if options.use_mass:
            dens = (
                p.phase_mass_dens,
                p.dphase_mass_dens_dpres,
                p.dphase_mass_dens_dcomp,
            )
        else:
            dens = (p.phase_dens, p.dphase_dens_dpres, p.dphase_dens_dcomp)

        _hybrid_fluxes(
            int(scheme),
            cells,
            weights,
            stencil_size,
            float(dt),
            bool(options.capillary_pressure),
            total_flux,
            p.pres,
            p.dpres,
            p.grav_coef,
            p.phase_mob,
            p.dphase_mob_dpres,
            p.dphase_mob_dcomp,
            p.dcomp_frac_dcomp_dens,
            dens[0],
            dens[1],
            dens[2],
            p.phase_mass_dens,
            p.dphase_mass_dens_dpres,
            p.dphase_mass_dens_dcomp,
            p.phase_comp_frac,
            p.dphase_comp_frac_dpres,
            p.dphase_comp_frac_dcomp,
            p.phase_cap_pressure,
            result.residual,
            result.jacobian,
            result.upwind_direction,
            status,
        )

    failed = np.flatnonzero(status)
    if failed.size > 0:
        conn = int(failed[0])
        msg = (
            f"No upwind direction selected for phase {int(status[conn]) - 1}"
            f" of connection {conn}."
        )
        logger.error(msg)
        raise FluxEvaluationError(msg)

    return result


def compute_total_flux(
    stencils: ConnectionStencils,
    properties: CellProperties,
    options: Optional[FluxOptions] = None,
) -> np.ndarray:
    """Computes the total flux per connection as the sum of the phase fluxes of the
    classical phase potential upwinding.

    Intended to provide the total flux for :func:`compute_connection_fluxes` with a
    hybrid scheme. Only ``options.capillary_pressure`` is used.

    Returns:
        An array of ``shape=(num_connections,)``.

    """
    if options is None:
        options = FluxOptions()
    cells, weights, stencil_size = _resolve_input(stencils, properties)
    p = properties
    return _total_fluxes(
        cells,
        weights,
        stencil_size,
        bool(options.capillary_pressure),
        p.pres,
        p.dpres,
        p.grav_coef,
        p.phase_mob,
        p.dphase_mob_dpres,
        p.dphase_mob_dcomp,
        p.dphase_vol_frac_dpres,
        p.dphase_vol_frac_dcomp,
        p.dcomp_frac_dcomp_dens,
        p.phase_mass_dens,
        p.dphase_mass_dens_dpres,
        p.dphase_mass_dens_dcomp,
        p.phase_cap_pressure,
        p.dphase_cap_pressure_dvol_frac,
    )
