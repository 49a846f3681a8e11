"""File-based configuration loading with profile support.

Two TOML sources are read: the project's ``pyproject.toml``
(``[tool.llm_resilience]``) and a home file, ``~/.config/llm_resilience.toml``.
Both may define named profiles under ``profiles.<name>``.
"""

import logging
import os
from pathlib import Path
import tomllib
from typing import Any

from llm_resilience.exceptions import ConfigFileError

log = logging.getLogger(__name__)

CONFIG_TOOL_NAME = "llm_resilience"
HOME_ENV_VAR = "LLM_RESILIENCE_CONFIG_HOME"
PYPROJECT_ENV_VAR = "LLM_RESILIENCE_PYPROJECT_PATH"


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open(mode="rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigFileError(path, f"Failed to parse TOML: {e}", cause=e) from e


def _select_profile(
    path: Path, section: dict[str, Any], profile: str | None
) -> dict[str, Any]:
    if profile:
        profiles = section.get("profiles", {})
        if profile not in profiles:
            raise ConfigFileError(
                path,
                f"Profile '{profile}' not found. Available profiles: {list(profiles)}",
            )
        return dict(profiles[profile])
    config = dict(section)
    config.pop("profiles", None)
    return config


class FileConfigLoader:
    """Loads configuration from the project and home TOML files."""

    def load_project_config(
        self, project_root: Path | None = None, profile: str | None = None
    ) -> dict[str, Any]:
        """Load ``[tool.llm_resilience]`` (or one of its profiles) from pyproject.toml.

        Returns:
            The section's values; empty if there is no file or no section.

        Raises:
            ConfigFileError: If the file cannot be parsed or the profile is missing.
        """
        pyproject_path = self.find_pyproject_toml(project_root)
        if pyproject_path is None:
            return {}
        section = _read_toml(pyproject_path).get("tool", {}).get(CONFIG_TOOL_NAME, {})
        if not section:
            return {}
        return _select_profile(pyproject_path, section, profile)

    def load_home_config(self, profile: str | None = None) -> dict[str, Any]:
        """Load the home configuration file (root table or a profile).

        Raises:
            ConfigFileError: If the file cannot be parsed or the profile is missing.
        """
        home_path = self.home_config_path()
        if not home_path.exists():
            return {}
        return _select_profile(home_path, _read_toml(home_path), profile)

    def list_available_profiles(
        self, project_root: Path | None = None
    ) -> dict[str, list[str]]:
        """Profile names per source; unreadable files contribute none."""
        profiles: dict[str, list[str]] = {"project": [], "home": []}

        pyproject_path = self.find_pyproject_toml(project_root)
        if pyproject_path is not None:
            try:
                data = _read_toml(pyproject_path)
            except ConfigFileError as e:
                log.debug("Skipping unreadable %s: %s", pyproject_path, e.message)
            else:
                section = data.get("tool", {}).get(CONFIG_TOOL_NAME, {})
                profiles["project"] = list(section.get("profiles", {}))

        home_path = self.home_config_path()
        if home_path.exists():
            try:
                data = _read_toml(home_path)
            except ConfigFileError as e:
                log.debug("Skipping unreadable %s: %s", home_path, e.message)
            else:
                profiles["home"] = list(data.get("profiles", {}))

        return profiles

    def find_pyproject_toml(self, start_dir: Path | None = None) -> Path | None:
        """Find pyproject.toml by searching up from `start_dir` (default: cwd).

        ``LLM_RESILIENCE_PYPROJECT_PATH`` pins the file when no directory is given.
        """
        if start_dir is None:
            override = os.getenv(PYPROJECT_ENV_VAR)
            if override:
                path = Path(override)
                return path if path.exists() else None
            start_dir = Path.cwd()

        current = Path(start_dir).resolve()
        while True:
            candidate = current / "pyproject.toml"
            if candidate.exists():
                return candidate
            if current == current.parent:
                return None
            current = current.parent

    def home_config_path(self) -> Path:
        override = os.getenv(HOME_ENV_VAR)
        if override:
            return Path(override)
        return Path.home() / ".config" / "llm_resilience.toml"
