"""YAML configuration loading with include directive support."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import yaml
from platformdirs import user_config_dir
from pydantic_settings import BaseSettings, YamlConfigSettingsSource

CONFIG_FILENAME = "backport.yaml"


def cli_includes(argv: list[str] | None = None) -> list[str]:
    """Collect --include values before pydantic parses the CLI."""
    argv = sys.argv if argv is None else argv
    includes = []
    i = 1
    while i < len(argv):
        if argv[i] == "--include" and i + 1 < len(argv):
            includes.append(argv[i + 1])
            i += 1
        elif argv[i].startswith("--include="):
            includes.append(argv[i].split("=", 1)[1])
        i += 1
    return includes


class YamlWithIncludesSettingsSource(YamlConfigSettingsSource):
    """YAML settings source with include: and --include support.

    Deep merges, lowest priority first:
        package defaults < user config < project config < CLI includes
    """

    def __init__(self, settings_cls: type[BaseSettings], yaml_file=None):
        includes = cli_includes()
        base = yaml_file or settings_cls.model_config.get("yaml_file")

        if base and includes:
            yaml_file = (
                [base] if isinstance(base, (str, os.PathLike)) else list(base)
            ) + includes
        elif includes:
            yaml_file = includes
        else:
            yaml_file = base

        super().__init__(settings_cls, yaml_file)

    def _read_files(self, files):
        """Load defaults, user config, project config and includes.

        Args:
            files: Project config name plus any --include paths

        Returns:
            Deep-merged dictionary of every file that exists
        """
        files_to_load = [
            Path(__file__).parent.parent / "defaults" / "default.yaml",
            Path(user_config_dir("backport", appauthor=False))
            / CONFIG_FILENAME,
        ]

        if files:
            if isinstance(files, (str, os.PathLike)):
                files = [files]
            files_to_load.extend(Path(f).expanduser() for f in files)

        result: dict = {}
        for file_path in files_to_load:
            if file_path.is_file():
                data = self._load_file_recursive(file_path, set())
                result = self._deep_merge(result, data)

        return result

    def _load_file_recursive(self, filepath: Path, visited: set[Path]) -> dict:
        """Load a file, resolving include: directives depth first.

        Raises:
            ValueError: If an include cycle is found
        """
        filepath = filepath.resolve()
        if filepath in visited:
            raise ValueError(f"Circular include: {filepath}")
        visited.add(filepath)

        with open(filepath, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if "include" in data:
            includes = data.pop("include")
            if isinstance(includes, str):
                includes = [includes]

            for inc in includes:
                inc_path = self._resolve_path(inc, filepath)
                inc_data = self._load_file_recursive(inc_path, visited.copy())
                data = self._deep_merge(inc_data, data)

        return data

    @staticmethod
    def _resolve_path(include_path: str, relative_to: Path) -> Path:
        path = Path(include_path).expanduser()
        if path.is_absolute():
            return path
        return (relative_to.parent / path).resolve()

    @classmethod
    def _deep_merge(cls, base: dict, override: dict) -> dict:
        """Merge override into base; override wins, dicts merge."""
        result = base.copy()
        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = cls._deep_merge(result[key], value)
            else:
                result[key] = value
        return result
