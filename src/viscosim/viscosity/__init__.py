"""Face classification, system assembly and the implicit viscosity solve."""

from .materials import *  # noqa
from .coefficients import *  # noqa
from .assembly import *  # noqa
from .solve import *  # noqa
