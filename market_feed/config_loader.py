"""
Configuration loading and management.
Loads a YAML run config with parser, output and logging sections.
"""

import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional
import logging
from .config import ParserConfig


logger = logging.getLogger(__name__)

REPORT_FORMATS = ('json', 'csv', 'xlsx')


@dataclass
class OutputSettings:
    dir: Path = Path('./out')
    report_formats: List[str] = field(default_factory=lambda: ['json'])


@dataclass
class LoggingSettings:
    level: str = 'INFO'
    json: bool = True
    dir: Path = Path('./logs')


class ConfigLoader:
    """Loads and caches configuration from YAML files."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else None
        self._cache = {}

    def _load_yaml(self, filepath: Path) -> dict[str, Any]:
        """Load a YAML file and cache it."""
        if filepath in self._cache:
            return self._cache[filepath]

        if not filepath.exists():
            raise FileNotFoundError(f"Config file not found: {filepath}")

        logger.info(f"Loading config: {filepath}")
        with open(filepath, 'r') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {filepath}")

        self._cache[filepath] = data
        return data

    def _section(self, name: str) -> dict[str, Any]:
        if self.config_path is None:
            return {}
        section = self._load_yaml(self.config_path).get(name) or {}
        if not isinstance(section, dict):
            raise ValueError(f"Config section '{name}' must be a mapping")
        return section

    def load_parser_config(self, **overrides) -> ParserConfig:
        """
        Build the parser configuration.

        Args:
            **overrides: Values taking precedence over the file (None is ignored)

        Returns:
            ParserConfig
        """
        data = dict(self._section('parser'))
        data.update({k: v for k, v in overrides.items() if v is not None})
        config = ParserConfig.from_dict(data)
        logger.debug(f"Parser config: {config}")
        return config

    def load_output_settings(self) -> OutputSettings:
        data = self._section('output')
        formats = data.get('report_formats', ['json'])
        if isinstance(formats, str):
            formats = [formats]
        unknown = [f for f in formats if f not in REPORT_FORMATS]
        if unknown:
            raise ValueError(f"Unknown report formats: {', '.join(unknown)}")
        return OutputSettings(
            dir=Path(data.get('dir', './out')),
            report_formats=list(formats),
        )

    def load_logging_settings(self) -> LoggingSettings:
        data = self._section('logging')
        level = str(data.get('level', 'INFO')).upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Invalid log level: {level}")
        return LoggingSettings(
            level=level,
            json=bool(data.get('json', True)),
            dir=Path(data.get('dir', './logs')),
        )

    def clear_cache(self):
        """Clear configuration cache (useful for testing or reload)."""
        self._cache.clear()
        logger.debug("Config cache cleared")
