"""   compflux.

Root directory for the compflux package: upwinded phase and component fluxes, with
exact derivatives, for fully implicit multiphase multicomponent flow.

The package is organized leaf to root:

potential: Pressure gradients, gravitational heads and phase potentials.

upwind: Potentials per upwind scheme and physical term, choice of upwind direction.

phase_flux: Upwinded mobilities, fractional flows and phase fluxes.

component_flux: Rescaling by upstream density and splitting into component fluxes.

jacobian: Local residual and Jacobian stamps, scattering into a global system.

assembly: Parallel evaluation over all connections of a mesh.

All numerically intensive functions are compiled with numba. Compilation flags are
controlled by the section ``[numba]`` of the configuration file ``compflux.cfg``,
which is read from the directory where the python process was launched.

isort:skip_file

"""

import configparser
import os
from pathlib import Path

__version__ = "0.3.0"

# Try to read the config file from the directory where python process was launched
try:
    cwd = Path(os.getcwd())
    pth = cwd / Path("compflux.cfg")
    cfg = configparser.ConfigParser()
    cfg.read(pth)
    config = {name: dict(section) for name, section in cfg.items()}
except configparser.Error:
    # the assumption is that no configurations are given
    config = {}

__all__ = []

from . import (
    _core,
    utils,
    states,
    potential,
    upwind,
    phase_flux,
    component_flux,
    jacobian,
    assembly,
)
from ._core import *
from .utils import *
from .states import *
from .potential import *
from .upwind import *
from .phase_flux import *
from .component_flux import *
from .jacobian import *
from .assembly import *

__all__.extend(_core.__all__)
__all__.extend(utils.__all__)
__all__.extend(states.__all__)
__all__.extend(potential.__all__)
__all__.extend(upwind.__all__)
__all__.extend(phase_flux.__all__)
__all__.extend(component_flux.__all__)
__all__.extend(jacobian.__all__)
__all__.extend(assembly.__all__)
