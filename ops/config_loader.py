"""
Configuration Loader for the Moose WMU Map Pipeline

This module provides a centralized way to load and access configuration
settings from the config.yaml file.

Usage:
    from ops.config_loader import Config

    config = Config()
    units_path = config.get_input_path('wmu_boundaries')
    working_crs = config.get_system_setting('working_crs')
"""

import os
import pathlib
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml  # type: ignore[import-untyped]
from loguru import logger

PACKAGE_CONFIG = Path(__file__).parent / "config.yaml"


class Config:
    """Configuration manager for the moose map pipeline."""

    # Default values that can be overridden in config
    DEFAULTS: Dict[str, Any] = {
        "columns": {
            "units": {"wmu_raw": "WMUNIT_COD", "wmu_name": "WMUNIT_NAM"},
            "grid": {"cell_id": "GRID_ID", "wmu_raw": "WMUNIT_COD"},
            "observations": {
                "species": "species",
                "count": "count",
                "wmu_raw": "wmu",
                "survey_date": "survey_date",
                "latitude": "latitude",
                "longitude": "longitude",
            },
            "density": {"wmu_raw": "wmu", "density": "density", "survey_year": "survey_year"},
            "predictions": {"cell_id": "GRID_ID", "abundance": "predicted_abundance"},
        },
        "identifiers": {
            "prefix_width": 1,
            "default_unit_code": "515",
            "grid_codes_composite": True,
        },
        "analysis": {
            "target_species": "moose",
            "quantile_classes": 10,
            "assign_cells_by_location": False,
        },
        "visualization": {
            "colormap": "viridis",
            "density_colormap": "YlOrRd",
            "tiles": "CartoDB Positron",
            "zoom_start": 7,
        },
        "system": {
            "input_crs": "EPSG:4326",
            "working_crs": "EPSG:3400",
            "output_crs": "EPSG:4326",
            "simplify_tolerance": 100.0,
            "max_area_change": 0.05,
            "jitter_radius": 500.0,
        },
    }

    def __init__(
        self,
        config_file: Optional[Union[str, Path]] = None,
        project_root_override: Optional[Union[str, Path]] = None,
    ):
        """
        Initialize configuration manager.

        Args:
            config_file: Path to config file. If None, looks for:
                        1. Environment variable PIPELINE_CONFIG_PATH
                        2. config.yaml in current directory
                        3. ops/config.yaml shipped with the package
            project_root_override: Override project root detection
        """
        if config_file is None:
            env_config = os.environ.get("PIPELINE_CONFIG_PATH")
            if env_config and Path(env_config).exists():
                config_file = env_config
                logger.debug(f"Using config from environment: {config_file}")
            elif Path("config.yaml").exists():
                config_file = "config.yaml"
            elif PACKAGE_CONFIG.exists():
                config_file = PACKAGE_CONFIG
                logger.debug("Using ops/config.yaml")
            else:
                raise FileNotFoundError(
                    "No config.yaml found. Check current directory or set PIPELINE_CONFIG_PATH"
                )

        self.config_path = Path(config_file).resolve()

        if project_root_override:
            self.project_root = Path(project_root_override).resolve()
            logger.debug(f"Using project root override: {self.project_root}")
        else:
            self.project_root = self._find_project_root()

        logger.debug(f"Loading config from: {self.config_path}")
        logger.debug(f"Project root: {self.project_root}")

        with open(self.config_path, "r") as f:
            self.data = yaml.safe_load(f) or {}

        dirs = self.data.get("directories", {})
        self.output_dir = self.project_root / dirs.get("output", "output")

    def get_input_path(self, filename_key: str) -> pathlib.Path:
        """
        Get full path to an input file, relative to the project root.

        Args:
            filename_key: Key for the filename in input_files

        Returns:
            Full absolute path to the input file
        """
        relative_path_str = self.data.get("input_files", {}).get(filename_key)
        if not relative_path_str:
            raise ValueError(
                f"Input filename key '{filename_key}' not found in config: input_files"
            )
        return self.project_root / relative_path_str

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation with intelligent defaults.

        Args:
            key_path: Dot-separated path to the configuration value
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key_path.split(".")

        value: Any = self.data
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                value = None
                break

        if value is None:
            value = self.DEFAULTS
            for key in keys:
                if isinstance(value, dict) and key in value:
                    value = value[key]
                else:
                    return default

        return value

    def get_column_map(self, table: str) -> Dict[str, str]:
        """Canonical -> source column names for one input table, defaults overlaid."""
        columns = dict(self.DEFAULTS["columns"].get(table, {}))
        columns.update(self.data.get("columns", {}).get(table, {}) or {})
        if not columns:
            raise ValueError(f"No column configuration for table: {table}")
        return columns

    def get_analysis_setting(self, setting_key: str) -> Any:
        """Get analysis setting with intelligent defaults."""
        return self.get(f"analysis.{setting_key}")

    def get_visualization_setting(self, setting_key: str) -> Any:
        """Get visualization setting with intelligent defaults."""
        return self.get(f"visualization.{setting_key}")

    def get_system_setting(self, setting_key: str) -> Any:
        """Get system setting with intelligent defaults."""
        return self.get(f"system.{setting_key}")

    def get_output_dir(self) -> pathlib.Path:
        return pathlib.Path(self.output_dir)

    def get_map_path(self) -> pathlib.Path:
        """Get path to the interactive map HTML file."""
        return self.get_output_dir() / self.get("output_files.map_html", "moose_map.html")

    def validate_input_files(self) -> Dict[str, bool]:
        """Validate that input files exist."""
        results: Dict[str, bool] = {}
        for filename_key in self.data.get("input_files", {}):
            results[filename_key] = self.get_input_path(filename_key).exists()
        return results

    def print_config_summary(self) -> None:
        """Log a summary of the current configuration."""
        logger.debug("📋 Configuration Summary")
        logger.debug("=" * 50)
        logger.debug(f"Project: {self.get('project_name', 'Unknown')}")
        logger.debug(f"Description: {self.get('description', 'No description')}")
        logger.debug(f"Config file: {self.config_path}")
        logger.debug(f"Output directory: {self.output_dir}")

        logger.debug("📊 Input Files:")
        for file_key, exists in self.validate_input_files().items():
            status = "✅" if exists else "❌"
            logger.debug(f"  {status} {file_key}")

    def _find_project_root(self) -> Path:
        """Find the project root directory by looking for characteristic files/directories."""
        current = self.config_path.parent
        project_markers = ["data", "ops", "processing", "pyproject.toml", ".git"]

        for _ in range(5):
            markers_found = sum(1 for marker in project_markers if (current / marker).exists())
            if markers_found >= 2:
                return current

            parent = current.parent
            if parent == current:
                break
            current = parent

        if self.config_path.parent.name == "ops":
            return self.config_path.parent.parent

        logger.warning(
            f"Could not reliably detect project root, using config directory: {self.config_path.parent}"
        )
        return self.config_path.parent

