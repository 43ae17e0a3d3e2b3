"""cellx: glitch-free reactive cells with explicit dependencies for Python."""

from importlib.metadata import version as _version

__version__ = _version("cellx")

from cellx._registry import Subscription, set_error_handler
from cellx.equality import EqualityMode, is_primitive, should_notify
from cellx.cell import Cell, ReadonlyCell, writable, readable
from cellx.derived import Derived, DerivedOptions, derive, derived
from cellx.interop import StoreContractError, get
from cellx.pipe import pipe, pipable_from
# textual NOT auto-imported — opt-in only

__all__ = [
    "Cell",
    "ReadonlyCell",
    "writable",
    "readable",
    "Derived",
    "DerivedOptions",
    "derive",
    "derived",
    "get",
    "StoreContractError",
    "Subscription",
    "set_error_handler",
    "EqualityMode",
    "is_primitive",
    "should_notify",
    "pipe",
    "pipable_from",
]
