"""provx: dependency-aware cache of asynchronously computed values."""

from importlib.metadata import version as _version

__version__ = _version("provx")

from provx._errors import DependencyCycleError, ProviderError, ProviderKeyError
from provx._registry import clear as clear_instances, get_instance, get_instance_count
from provx._scheduling import get_pending_count
from provx.cell import Cell
from provx.provider import Buildable, Provider
# textual NOT auto-imported — opt-in only

__all__ = [
    "Cell",
    "Provider",
    "Buildable",
    "get_instance",
    "get_instance_count",
    "clear_instances",
    "get_pending_count",
    "ProviderError",
    "ProviderKeyError",
    "DependencyCycleError",
]
