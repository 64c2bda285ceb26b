"""
*viscosim*

Implicit viscosity solver for free-surface liquids on staggered (MAC) grids.
"""

from ._precision import *  # noqa
from .types import *  # noqa
from .errors import *  # noqa
from .config import *  # noqa
from .grids import *  # noqa
from .levelset import *  # noqa
from .volumes import *  # noqa
from .parallel import *  # noqa
from .linalg import *  # noqa
from .viscosity import *  # noqa

__version__ = "0.1.0"
