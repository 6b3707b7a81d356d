"""
User data sources and formatters for agent context.
"""

from .formatters import format_current_workout, format_profile_snapshot
from .sources import (
    DataSource,
    DataSourceRegistry,
    DataSourceResult,
    build_default_sources,
    load_profile_snapshot,
)

__all__ = [
    "DataSource",
    "DataSourceRegistry",
    "DataSourceResult",
    "build_default_sources",
    "load_profile_snapshot",
    "format_current_workout",
    "format_profile_snapshot",
]
