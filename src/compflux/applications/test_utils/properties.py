"""Synthetic fluid properties with analytically consistent derivatives, for testing the
flux evaluation.

The properties are smooth functions of the cell unknowns, pressure ``p`` and component
densities ``rho``. The component fractions are ``z = rho / sum(rho)``. Following the
conventions of :class:`~compflux.states.CellProperties`, the densities and phase
compositions are functions of ``(p, z)``, mobilities, volume fractions and capillary
pressures are functions of ``(p, rho)``.

"""

from __future__ import annotations

from typing import Optional

import numpy as np

from ...states import CellProperties, initialize_cell_properties

__all__ = [
    "SyntheticFluid",
]


def _density(
    ref: np.ndarray,
    pres_coef: np.ndarray,
    comp_coef: np.ndarray,
    p: np.ndarray,
    z: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """``ref * exp(pres_coef * p) * (1 + comp_coef @ z)`` per cell and phase, with
    derivatives w.r.t. ``p`` and ``z``."""
    exp_p = ref[np.newaxis, :] * np.exp(pres_coef[np.newaxis, :] * p[:, np.newaxis])
    lin_z = 1.0 + z @ comp_coef.T
    val = exp_p * lin_z
    dval_dp = pres_coef[np.newaxis, :] * val
    dval_dz = exp_p[:, :, np.newaxis] * comp_coef[np.newaxis, :, :]
    return val, dval_dp, dval_dz


class SyntheticFluid:
    """A fluid with randomly drawn, but fixed, coefficients.

    Parameters:
        num_phases: Number of phases.
        num_components: Number of components.
        seed: ``default=42``

            Seed of the random number generator for the coefficients.

    """

    def __init__(self, num_phases: int, num_components: int, seed: int = 42) -> None:
        rng = np.random.default_rng(seed)
        npf, nc = num_phases, num_components

        self.num_phases: int = npf
        """Number of phases passed at instantiation."""
        self.num_components: int = nc
        """Number of components passed at instantiation."""

        self.dens_ref = 1.0 + rng.random(npf)
        self.dens_pres = 0.1 * rng.random(npf)
        self.dens_comp = 0.5 * rng.random((npf, nc))

        # well separated mass densities, heavy phases first
        self.mass_dens_ref = np.linspace(1.0, 0.3, npf)
        self.mass_dens_pres = 0.05 * rng.random(npf)
        self.mass_dens_comp = 0.1 * rng.random((npf, nc))

        self.k_values = 0.5 + rng.random((npf, nc))
        self.k_pres = 0.1 * rng.random((npf, nc))

        self.sat_comp = rng.random((npf, nc))
        self.sat_pres = 0.1 * rng.random(npf)

        self.viscosity = 0.5 + rng.random(npf)
        self.cap_coef = 0.1 * rng.random((npf, npf))

    def evaluate(
        self,
        pres: np.ndarray,
        comp_dens: np.ndarray,
        grav_coef: np.ndarray,
        dpres: Optional[np.ndarray] = None,
    ) -> CellProperties:
        """Evaluates all properties and derivatives.

        Parameters:
            pres: ``shape=(num_cells,)``

                Pressure per cell.
            comp_dens: ``shape=(num_cells, num_components)``

                Strictly positive component densities per cell.
            grav_coef: ``shape=(num_cells,)``

                Gravity coefficients, copied into the result.
            dpres: ``default=None``

                Pressure increments. The properties are evaluated at
                ``pres + dpres``. Zero if not given.

        Returns:
            A property bundle for a single region and subregion.

        """
        pres = np.asarray(pres, dtype=float)
        comp_dens = np.asarray(comp_dens, dtype=float)
        n = pres.shape[0]
        npf, nc = self.num_phases, self.num_components
        eye = np.eye(nc)

        props = initialize_cell_properties(n, npf, nc)
        props.pres = pres.copy()
        props.dpres = np.zeros(n) if dpres is None else np.asarray(dpres, dtype=float)
        props.grav_coef = np.asarray(grav_coef, dtype=float).copy()
        p = props.pres + props.dpres

        # component fractions, entry [cell, j, i] is d z_j / d rho_i
        rho_t = comp_dens.sum(axis=1)
        z = comp_dens / rho_t[:, np.newaxis]
        props.dcomp_frac_dcomp_dens = (
            eye[np.newaxis, :, :] - z[:, :, np.newaxis]
        ) / rho_t[:, np.newaxis, np.newaxis]

        (
            props.phase_dens,
            props.dphase_dens_dpres,
            props.dphase_dens_dcomp,
        ) = _density(self.dens_ref, self.dens_pres, self.dens_comp, p, z)
        (
            props.phase_mass_dens,
            props.dphase_mass_dens_dpres,
            props.dphase_mass_dens_dcomp,
        ) = _density(
            self.mass_dens_ref, self.mass_dens_pres, self.mass_dens_comp, p, z
        )

        # phase compositions x_ic = w_ic / sum_j w_ij, w_ic = z_c * K_ic(p)
        k_p = self.k_values[np.newaxis] * (
            1.0 + self.k_pres[np.newaxis] * p[:, np.newaxis, np.newaxis]
        )
        w = z[:, np.newaxis, :] * k_p
        w_sum = w.sum(axis=2)
        x = w / w_sum[:, :, np.newaxis]
        dw_dp = z[:, np.newaxis, :] * (self.k_values * self.k_pres)[np.newaxis]
        props.phase_comp_frac = x
        props.dphase_comp_frac_dpres = (
            dw_dp - x * dw_dp.sum(axis=2)[:, :, np.newaxis]
        ) / w_sum[:, :, np.newaxis]
        dw_dz = k_p[:, :, :, np.newaxis] * eye[np.newaxis, np.newaxis]
        props.dphase_comp_frac_dcomp = (
            dw_dz - x[:, :, :, np.newaxis] * k_p[:, :, np.newaxis, :]
        ) / w_sum[:, :, np.newaxis, np.newaxis]

        # volume fractions as softmax of g = sat_comp @ rho + sat_pres * p
        g = comp_dens @ self.sat_comp.T + self.sat_pres[np.newaxis] * p[:, np.newaxis]
        e = np.exp(g - g.max(axis=1, keepdims=True))
        s = e / e.sum(axis=1, keepdims=True)
        ds_dp = s * (
            self.sat_pres[np.newaxis]
            - (s * self.sat_pres[np.newaxis]).sum(axis=1, keepdims=True)
        )
        ds_drho = s[:, :, np.newaxis] * (
            self.sat_comp[np.newaxis] - (s @ self.sat_comp)[:, np.newaxis, :]
        )
        props.dphase_vol_frac_dpres = ds_dp
        props.dphase_vol_frac_dcomp = ds_drho

        # quadratic relative permeabilities
        visc = self.viscosity[np.newaxis]
        props.phase_mob = s**2 / visc
        props.dphase_mob_dpres = 2.0 * s * ds_dp / visc
        props.dphase_mob_dcomp = 2.0 * (s / visc)[:, :, np.newaxis] * ds_drho

        # pc_i = sum_j C_ij s_j^2
        props.phase_cap_pressure = (s**2) @ self.cap_coef.T
        props.dphase_cap_pressure_dvol_frac = (
            2.0 * self.cap_coef[np.newaxis] * s[:, np.newaxis, :]
        )

        return props
