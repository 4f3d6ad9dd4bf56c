"""Module containing the data structures passed into and returned from the flux
evaluation.

Note:
    The data structures are a contract between the flux evaluation and its external
    collaborators: the mesh layer provides :class:`ConnectionStencils`, the
    constitutive layer provides :class:`CellProperties`. Both are only read during an
    evaluation. The results are returned as :class:`LocalFluxes`, to be scattered into
    a global system by the caller (see :mod:`compflux.jacobian`).

    All arrays are unpacked into plain numpy buffers before they are passed to the
    numba-compiled kernels.

"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from ._core import NUM_ELEMS
from .utils import FluxEvaluationError, check_stencil_sizes

__all__ = [
    "ConnectionStencils",
    "CellProperties",
    "LocalFluxes",
    "initialize_cell_properties",
]

logger = logging.getLogger(__name__)


@dataclass
class ConnectionStencils:
    """Dataclass for storing the stencils of all connections of a mesh.

    Each connection is a row in the 2D arrays. The capacity of a row is the maximal
    stencil size ``MAX_STENCIL``, of which only the first :attr:`stencil_size` entries
    are used. The first two entries are the primary cells of the connection.

    A cell is identified by a triple (region, subregion, index within subregion).

    """

    element_region: np.ndarray = field(
        default_factory=lambda: np.zeros((0, NUM_ELEMS), dtype=np.int64)
    )
    """Region index per stencil entry, ``shape=(num_connections, MAX_STENCIL)``."""

    element_subregion: np.ndarray = field(
        default_factory=lambda: np.zeros((0, NUM_ELEMS), dtype=np.int64)
    )
    """Subregion index per stencil entry, ``shape=(num_connections, MAX_STENCIL)``."""

    element_index: np.ndarray = field(
        default_factory=lambda: np.zeros((0, NUM_ELEMS), dtype=np.int64)
    )
    """Local index within the subregion per stencil entry,
    ``shape=(num_connections, MAX_STENCIL)``."""

    weights: np.ndarray = field(
        default_factory=lambda: np.zeros((0, NUM_ELEMS), dtype=np.float64)
    )
    """Transmissibility weight per stencil entry,
    ``shape=(num_connections, MAX_STENCIL)``."""

    stencil_size: np.ndarray = field(
        default_factory=lambda: np.zeros(0, dtype=np.int64)
    )
    """Number of used entries per connection, ``shape=(num_connections,)``."""

    @classmethod
    def from_flat_cells(
        cls,
        cells: np.ndarray,
        weights: np.ndarray,
        stencil_size: Optional[np.ndarray] = None,
    ) -> ConnectionStencils:
        """Creates stencils for a mesh with a single region and subregion.

        Parameters:
            cells: ``shape=(num_connections, MAX_STENCIL)``

                Cell indices per stencil entry.
            weights: ``shape=(num_connections, MAX_STENCIL)``

                Transmissibility weights per stencil entry.
            stencil_size: ``default=None``

                Number of used entries per connection. If not given, all entries are
                used.

        """
        cells = np.atleast_2d(np.asarray(cells, dtype=np.int64))
        weights = np.atleast_2d(np.asarray(weights, dtype=np.float64))
        if stencil_size is None:
            stencil_size = np.full(cells.shape[0], cells.shape[1], dtype=np.int64)
        return cls(
            element_region=np.zeros_like(cells),
            element_subregion=np.zeros_like(cells),
            element_index=cells,
            weights=weights,
            stencil_size=np.asarray(stencil_size, dtype=np.int64),
        )

    @property
    def num_connections(self) -> int:
        """Number of connections."""
        return self.stencil_size.shape[0]

    @property
    def max_stencil(self) -> int:
        """Capacity of a stencil, i.e. the number of columns of the stencil arrays."""
        return self.weights.shape[1]

    def validate(self) -> None:
        """Checks the consistency of array shapes and stencil sizes.

        Raises:
            FluxEvaluationError: If the arrays are of inconsistent shape, or if the
                size of a stencil is out of bounds.

        """
        shape = (self.num_connections, self.max_stencil)
        names = ("element_region", "element_subregion", "element_index", "weights")
        for name in names:
            if getattr(self, name).shape != shape:
                msg = (
                    f"Stencil array {name} has shape {getattr(self, name).shape},"
                    f" expected {shape}."
                )
                logger.error(msg)
                raise FluxEvaluationError(msg)
        check_stencil_sizes(self.stencil_size, self.max_stencil)

    def flat_cells(self, subregion_offsets: np.ndarray, num_cells: int) -> np.ndarray:
        """Resolves the cell triples into rows of the property arrays.

        Only the first :attr:`stencil_size` entries of a connection are checked and
        resolved, padding beyond is ignored.

        Parameters:
            subregion_offsets: ``shape=(num_regions, num_subregions)``

                Row of the first cell of each subregion in the property arrays.
            num_cells: Number of rows in the property arrays.

        Raises:
            FluxEvaluationError: If a used stencil entry refers to a region or
                subregion not present in ``subregion_offsets``, has a negative index,
                or maps outside of the property arrays.

        Returns:
            An integer array of ``shape=(num_connections, MAX_STENCIL)``. Unused
            entries are set to -1.

        """
        self.validate()
        subregion_offsets = np.atleast_2d(
            np.asarray(subregion_offsets, dtype=np.int64)
        )
        num_regions, num_subregions = subregion_offsets.shape
        used = np.arange(self.max_stencil) < self.stencil_size[:, np.newaxis]

        # negative triples would wrap around instead of failing
        invalid_triple = used & (
            (self.element_region < 0)
            | (self.element_region >= num_regions)
            | (self.element_subregion < 0)
            | (self.element_subregion >= num_subregions)
            | (self.element_index < 0)
        )
        if np.any(invalid_triple):
            conn = int(np.flatnonzero(invalid_triple.any(axis=1))[0])
            msg = (
                f"Connection {conn} refers to a region, subregion or index outside of"
                f" the {num_regions} x {num_subregions} subregions."
            )
            logger.error(msg)
            raise FluxEvaluationError(msg)

        cells = np.full(used.shape, -1, dtype=np.int64)
        cells[used] = (
            subregion_offsets[self.element_region[used], self.element_subregion[used]]
            + self.element_index[used]
        )

        invalid = used & (cells >= num_cells)
        if np.any(invalid):
            conn = int(np.flatnonzero(invalid.any(axis=1))[0])
            msg = f"Connection {conn} refers to a cell outside of the property arrays."
            logger.error(msg)
            raise FluxEvaluationError(msg)
        return cells


@dataclass
class CellProperties:
    """Dataclass for storing the per-cell state and fluid properties consumed by the
    flux evaluation.

    Storage is in array format, with the cell as first axis. Phase-dependent
    properties have the phase as second axis, component-dependent properties have the
    component as last axis.

    Derivatives are denoted with a ``d*``. Derivatives w.r.t. component densities are
    either given directly (``_dcomp`` suffix on mobility and volume fraction), or
    w.r.t. component fractions (``_dcomp`` suffix on densities and phase compositions),
    in which case they are converted with :attr:`dcomp_frac_dcomp_dens` when used.

    """

    pres: np.ndarray = field(default_factory=lambda: np.zeros(0))
    """Pressure at the beginning of the Newton iteration."""

    dpres: np.ndarray = field(default_factory=lambda: np.zeros(0))
    """Accumulated pressure increment of the current time step."""

    grav_coef: np.ndarray = field(default_factory=lambda: np.zeros(0))
    """Gravity coefficient (gravity vector dotted with the cell center)."""

    phase_mob: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    """Phase mobility."""

    dphase_mob_dpres: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    """Derivative of the phase mobility w.r.t. pressure."""

    dphase_mob_dcomp: np.ndarray = field(default_factory=lambda: np.zeros((0, 0, 0)))
    """Derivatives of the phase mobility w.r.t. component densities."""

    phase_dens: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    """Phase molar density."""

    dphase_dens_dpres: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    """Derivative of the phase molar density w.r.t. pressure."""

    dphase_dens_dcomp: np.ndarray = field(default_factory=lambda: np.zeros((0, 0, 0)))
    """Derivatives of the phase molar density w.r.t. component fractions."""

    phase_mass_dens: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    """Phase mass density. Always used in the gravitational head."""

    dphase_mass_dens_dpres: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 0))
    )
    """Derivative of the phase mass density w.r.t. pressure."""

    dphase_mass_dens_dcomp: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 0, 0))
    )
    """Derivatives of the phase mass density w.r.t. component fractions."""

    phase_comp_frac: np.ndarray = field(default_factory=lambda: np.zeros((0, 0, 0)))
    """Fractions of components in a phase."""

    dphase_comp_frac_dpres: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 0, 0))
    )
    """Derivatives of the phase compositions w.r.t. pressure."""

    dphase_comp_frac_dcomp: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 0, 0, 0))
    )
    """Derivatives of the phase compositions w.r.t. component fractions.

    This is a 4D array! The third axis is the component in the phase, the fourth
    axis the component fraction the derivative is taken with.

    """

    dcomp_frac_dcomp_dens: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 0, 0))
    )
    """Jacobian of the component fractions w.r.t. the component densities per cell,
    with entry ``[cell, j, i]`` the derivative of fraction ``j`` w.r.t. density ``i``.
    """

    dphase_vol_frac_dpres: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 0))
    )
    """Derivative of the phase volume fraction (saturation) w.r.t. pressure."""

    dphase_vol_frac_dcomp: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 0, 0))
    )
    """Derivatives of the phase volume fraction w.r.t. component densities."""

    phase_cap_pressure: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    """Capillary pressure per phase."""

    dphase_cap_pressure_dvol_frac: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 0, 0))
    )
    """Derivatives of the capillary pressure of a phase (second axis) w.r.t. the
    volume fractions of all phases (third axis)."""

    subregion_offsets: np.ndarray = field(
        default_factory=lambda: np.zeros((1, 1), dtype=np.int64)
    )
    """Row of the first cell of each (region, subregion) pair in the arrays above."""

    @property
    def num_cells(self) -> int:
        """Number of cells (rows)."""
        return self.pres.shape[0]

    @property
    def num_phases(self) -> int:
        """Number of phases."""
        return self.phase_mob.shape[1]

    @property
    def num_components(self) -> int:
        """Number of components."""
        return self.dcomp_frac_dcomp_dens.shape[1]

    def validate(self) -> None:
        """Checks that all arrays are of the shapes implied by the number of cells,
        phases and components.

        Raises:
            ValueError: If an array has an unexpected shape.

        """
        n, npf, nc = self.num_cells, self.num_phases, self.num_components
        expected = {
            "pres": (n,),
            "dpres": (n,),
            "grav_coef": (n,),
            "phase_mob": (n, npf),
            "dphase_mob_dpres": (n, npf),
            "dphase_mob_dcomp": (n, npf, nc),
            "phase_dens": (n, npf),
            "dphase_dens_dpres": (n, npf),
            "dphase_dens_dcomp": (n, npf, nc),
            "phase_mass_dens": (n, npf),
            "dphase_mass_dens_dpres": (n, npf),
            "dphase_mass_dens_dcomp": (n, npf, nc),
            "phase_comp_frac": (n, npf, nc),
            "dphase_comp_frac_dpres": (n, npf, nc),
            "dphase_comp_frac_dcomp": (n, npf, nc, nc),
            "dcomp_frac_dcomp_dens": (n, nc, nc),
            "dphase_vol_frac_dpres": (n, npf),
            "dphase_vol_frac_dcomp": (n, npf, nc),
            "phase_cap_pressure": (n, npf),
            "dphase_cap_pressure_dvol_frac": (n, npf, npf),
        }
        for name, shape in expected.items():
            if getattr(self, name).shape != shape:
                msg = (
                    f"Property {name} has shape {getattr(self, name).shape},"
                    f" expected {shape}."
                )
                logger.error(msg)
                raise ValueError(msg)


@dataclass
class LocalFluxes:
    """Dataclass for the per-connection results of a flux evaluation."""

    residual: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    """Local residual, ``shape=(num_connections, 2 * NC)``. The first ``NC`` entries
    belong to the donor cell, the last ``NC`` entries to the receiver cell."""

    jacobian: np.ndarray = field(default_factory=lambda: np.zeros((0, 0, 0)))
    """Local Jacobian, ``shape=(num_connections, 2 * NC, MAX_STENCIL * (NC + 1))``.

    Columns are ordered per stencil entry as ``[pressure, comp_0, ..., comp_NC-1]``.
    Columns of unused stencil entries are zero.

    """

    upwind_direction: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 0), dtype=np.int64)
    )
    """Upwind direction per connection and phase, as index into the stencil.

    For hybrid schemes, this is the direction of the viscous part.

    """


def initialize_cell_properties(
    num_cells: int, num_phases: int, num_components: int
) -> CellProperties:
    """Creates a property bundle for a given number of cells, phases and components.

    All values and derivatives are zero. The caller is expected to fill in values.

    Parameters:
        num_cells: Number of cells.
        num_phases: Number of phases.
        num_components: Number of components.

    Returns:
        A property bundle with arrays of consistent shapes.

    """
    n, npf, nc = num_cells, num_phases, num_components
    return CellProperties(
        pres=np.zeros(n),
        dpres=np.zeros(n),
        grav_coef=np.zeros(n),
        phase_mob=np.zeros((n, npf)),
        dphase_mob_dpres=np.zeros((n, npf)),
        dphase_mob_dcomp=np.zeros((n, npf, nc)),
        phase_dens=np.zeros((n, npf)),
        dphase_dens_dpres=np.zeros((n, npf)),
        dphase_dens_dcomp=np.zeros((n, npf, nc)),
        phase_mass_dens=np.zeros((n, npf)),
        dphase_mass_dens_dpres=np.zeros((n, npf)),
        dphase_mass_dens_dcomp=np.zeros((n, npf, nc)),
        phase_comp_frac=np.zeros((n, npf, nc)),
        dphase_comp_frac_dpres=np.zeros((n, npf, nc)),
        dphase_comp_frac_dcomp=np.zeros((n, npf, nc, nc)),
        dcomp_frac_dcomp_dens=np.zeros((n, nc, nc)),
        dphase_vol_frac_dpres=np.zeros((n, npf)),
        dphase_vol_frac_dcomp=np.zeros((n, npf, nc)),
        phase_cap_pressure=np.zeros((n, npf)),
        dphase_cap_pressure_dvol_frac=np.zeros((n, npf, npf)),
        subregion_offsets=np.zeros((1, 1), dtype=np.int64),
    )
