from .config import CellControlConfig
from .freeway_cell import FreewayCell, LockedFreewayCell
from .merge import MergeArea, NoOnRamp, OnRamp, estimate_merge_density

__all__ = [
    "CellControlConfig",
    "FreewayCell",
    "LockedFreewayCell",
    "MergeArea",
    "NoOnRamp",
    "OnRamp",
    "estimate_merge_density",
]
