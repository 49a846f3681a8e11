"""Configuration resolution with precedence handling.

Precedence, highest first:
Programmatic > Environment > Project file > Home file > Defaults
"""

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from llm_resilience.exceptions import ConfigFileError, ConfigurationError

from .file_loader import FileConfigLoader
from .schema import ENV_PREFIX, ResilienceSettings
from .types import ConfigOrigin, ResolvedConfig, SourceMap

log = logging.getLogger(__name__)

PROFILE_ENV_VAR = f"{ENV_PREFIX}PROFILE"


class SourceTracker:
    """Records where each configuration value came from."""

    def __init__(self) -> None:
        self._origins: dict[str, ConfigOrigin] = {}

    def set_multiple(self, fields: dict[str, Any], origin: ConfigOrigin) -> None:
        for field in fields:
            self._origins[field] = origin

    def get_source_map(self) -> SourceMap:
        return dict(self._origins)


def load_env_config() -> dict[str, str]:
    """Raw ``LLM_RESILIENCE_*`` values for known fields.

    Values stay strings; the schema coerces them during final validation.
    """
    env_values: dict[str, str] = {}
    for field in ResilienceSettings.model_fields:
        env_var = f"{ENV_PREFIX}{field.upper()}"
        if env_var in os.environ:
            env_values[field] = os.environ[env_var]
    return env_values


class ConfigResolver:
    """Merges configuration from all sources in precedence order."""

    def __init__(self) -> None:
        self.file_loader = FileConfigLoader()

    def resolve(
        self,
        programmatic: dict[str, Any] | None = None,
        *,
        profile: str | None = None,
        project_root: Path | None = None,
    ) -> ResolvedConfig:
        """Resolve configuration from all sources.

        Raises:
            ConfigurationError: If the merged values fail validation.
            ConfigFileError: If the project file is malformed and no profile
                was requested.
        """
        tracker = SourceTracker()
        merged: dict[str, Any] = {}

        if profile is None:
            profile = self.get_effective_profile()

        def apply(values: dict[str, Any], origin: ConfigOrigin) -> None:
            known = {k: v for k, v in values.items() if k in ResilienceSettings.model_fields}
            unknown = set(values) - set(known)
            if unknown:
                log.debug("Ignoring unknown %s config keys: %s", origin, sorted(unknown))
            merged.update(known)
            tracker.set_multiple(known, origin)

        apply(ResilienceSettings.field_defaults(), "default")

        # Home file problems never block resolution
        try:
            apply(self.file_loader.load_home_config(profile=profile), "file")
        except ConfigFileError as e:
            log.warning("Skipping home configuration: %s", e)

        try:
            apply(
                self.file_loader.load_project_config(
                    project_root=project_root, profile=profile
                ),
                "file",
            )
        except ConfigFileError as e:
            if profile is None:
                raise
            log.warning("Skipping project configuration: %s", e)

        apply(load_env_config(), "env")

        if programmatic:
            apply(programmatic, "programmatic")

        try:
            settings = ResilienceSettings(**merged)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        resolved = ResolvedConfig(**settings.to_dict(), origin=tracker.get_source_map())
        log.debug("Resolved configuration (profile=%s)", profile)
        return resolved

    def get_effective_profile(self) -> str | None:
        return os.getenv(PROFILE_ENV_VAR) or None

    def list_available_profiles(
        self, project_root: Path | None = None
    ) -> dict[str, list[str]]:
        return self.file_loader.list_available_profiles(project_root)
