from .config import load_yaml, resolve_path, section, section_list
from .logging import setup_logging
from .types import CellEstimate, CellParameters, SensorRole, SensorRoleTable

__all__ = [
    "CellEstimate",
    "CellParameters",
    "SensorRole",
    "SensorRoleTable",
    "load_yaml",
    "resolve_path",
    "section",
    "section_list",
    "setup_logging",
]
