"""Public API for configuration resolution and profile discovery."""

from pathlib import Path
from typing import Any

from .resolver import ConfigResolver
from .types import ResolvedConfig

_resolver = ConfigResolver()


def resolve_config(
    programmatic: dict[str, Any] | None = None,
    *,
    profile: str | None = None,
    project_root: Path | None = None,
) -> ResolvedConfig:
    """Resolve configuration from all sources with proper precedence.

    Args:
        programmatic: Overrides with the highest precedence. Only known
            fields are used.
        profile: Profile to load from the configuration files. Defaults to
            ``LLM_RESILIENCE_PROFILE`` when set.
        project_root: Directory to search for pyproject.toml. Defaults to the
            current directory and its parents.

    Returns:
        ResolvedConfig with merged values and per-field origins.

    Raises:
        ConfigurationError: If the merged configuration is invalid.
        ConfigFileError: If the project file exists but is malformed.

    Example:
        config = resolve_config({"max_attempts": 5}, profile="production")
        executor = create_retry_executor(config.to_frozen())
    """
    return _resolver.resolve(
        programmatic=programmatic, profile=profile, project_root=project_root
    )


def list_available_profiles(project_root: Path | None = None) -> dict[str, list[str]]:
    """Profile names found in the project and home files, keyed by source."""
    return _resolver.list_available_profiles(project_root)


def get_effective_profile() -> str | None:
    """Profile named by ``LLM_RESILIENCE_PROFILE``, or None."""
    return _resolver.get_effective_profile()
