"""Layered configuration: defaults, files, environment, programmatic overrides.

Resolve once, freeze, then pass the frozen config to the factories:

    config = resolve_config().to_frozen()
    executor = create_retry_executor(config)
"""

from .api import get_effective_profile, list_available_profiles, resolve_config
from .file_loader import FileConfigLoader
from .resolver import ConfigResolver
from .schema import ResilienceSettings
from .types import ConfigOrigin, FrozenConfig, ResolvedConfig, SourceMap

__all__ = [
    "ConfigOrigin",
    "ConfigResolver",
    "FileConfigLoader",
    "FrozenConfig",
    "ResilienceSettings",
    "ResolvedConfig",
    "SourceMap",
    "get_effective_profile",
    "list_available_profiles",
    "resolve_config",
]
