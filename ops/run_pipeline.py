#!/usr/bin/env python3
"""
Moose Map Pipeline with Click CLI

Loads the survey, density, prediction and boundary files named in
config.yaml, builds the map layers, writes each layer as GeoJSON and renders
an interactive HTML map.

Usage:
    python -m ops.run_pipeline [OPTIONS] [COMMAND]

    # Full run with the default config:
    python -m ops.run_pipeline

    # Reproducible jitter and a different class count:
    python -m ops.run_pipeline --seed 7 --config analysis.quantile_classes=20

    # Check inputs and settings without running:
    python -m ops.run_pipeline check

    # Verbose logging:
    python -m ops.run_pipeline --verbose --log-file pipeline.log
"""

import sys
import time
from pathlib import Path
from typing import Any, Optional, Tuple

import click
import numpy as np
from loguru import logger

from ops.config_loader import Config
from processing.data_utils import export_layers, load_inputs
from processing.errors import PipelineError
from processing.pipeline import PipelineSettings, build_layers, summarize


class ConfigOverride(click.ParamType):
    """KEY=VALUE config override using dot notation."""

    name = "config_override"

    def convert(self, value, param, ctx) -> Tuple[str, Any]:
        if "=" not in value:
            self.fail(f"Invalid format: {value}. Use KEY=VALUE", param, ctx)

        key, val = value.split("=", 1)

        # Auto-parse value type
        if val.lower() in ("true", "false"):
            parsed_val: Any = val.lower() == "true"
        elif val.isdigit():
            parsed_val = int(val)
        elif "." in val and val.replace(".", "", 1).isdigit():
            parsed_val = float(val)
        else:
            parsed_val = val

        return key, parsed_val


def apply_override(config: Config, key: str, value: Any) -> None:
    """Set a dot-notation key on a loaded config."""
    keys = key.split(".")
    current = config.data
    for k in keys[:-1]:
        if not isinstance(current.get(k), dict):
            current[k] = {}
        current = current[k]
    current[keys[-1]] = value
    logger.debug(f"Added override: {key} = {value}")


@click.group(invoke_without_command=True)
@click.option(
    "--config-file",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to config.yaml (default: PIPELINE_CONFIG_PATH, ./config.yaml, ops/config.yaml)",
)
@click.option(
    "--config",
    "config_overrides",
    multiple=True,
    type=ConfigOverride(),
    help="Set config values using dot notation (e.g., system.jitter_radius=250)",
)
@click.option("--seed", type=int, help="Seed for jitter randomness (reproducible output)")
@click.option("--output-dir", type=click.Path(file_okay=False), help="Override output directory")
@click.option("--no-map", is_flag=True, help="Write GeoJSON layers only, skip the HTML map")
@click.option("-v", "--verbose", is_flag=True, help="Enable DEBUG level logging")
@click.option(
    "--trace", is_flag=True, help="Enable TRACE level logging for deep debugging (maximum detail)"
)
@click.option("--log-file", type=str, help="Also log to specified file")
@click.pass_context
def cli(ctx, **kwargs):
    """
    Moose WMU Map Pipeline

    \b
    Examples:
      python -m ops.run_pipeline                                   # Full run
      python -m ops.run_pipeline --seed 7                          # Reproducible jitter
      python -m ops.run_pipeline --config analysis.quantile_classes=20
      python -m ops.run_pipeline --no-map --output-dir out/        # GeoJSON only
      python -m ops.run_pipeline check                             # Validate inputs
    """
    setup_logging(verbose=kwargs["verbose"], enable_trace=kwargs["trace"])

    if kwargs.get("log_file"):
        log_level = "TRACE" if kwargs["trace"] else ("DEBUG" if kwargs["verbose"] else "INFO")
        logger.add(
            kwargs["log_file"],
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
        )
        logger.info(f"📄 Also logging to file: {kwargs['log_file']}")

    logger.info("🦌 Moose WMU Map Pipeline")
    logger.debug(f"🔧 CLI arguments received: {kwargs}")

    try:
        config = Config(kwargs["config_file"])
    except Exception as e:
        logger.critical(f"Configuration error: {e}")
        logger.info("💡 Make sure config.yaml exists and is valid")
        ctx.exit(1)

    for key, value in kwargs["config_overrides"]:
        apply_override(config, key, value)

    logger.info(f"📋 Project: {config.get('project_name')}")
    logger.info(f"📋 Description: {config.get('description')}")

    ctx.obj = {"config": config, "kwargs": kwargs}

    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.pass_context
def run(ctx):
    """Build the layers, export them and render the map."""
    config: Config = ctx.obj["config"]
    kwargs = ctx.obj["kwargs"]
    start = time.time()

    output_dir = Path(kwargs["output_dir"]) if kwargs["output_dir"] else config.get_output_dir()
    seed: Optional[int] = kwargs["seed"]
    rng = np.random.default_rng(seed)
    if seed is not None:
        logger.info(f"🎲 Jitter seed: {seed}")

    try:
        settings = PipelineSettings.from_config(config)
        inputs = load_inputs(config)
        bundle = build_layers(inputs, settings, rng)
    except (PipelineError, FileNotFoundError, ValueError) as e:
        handle_critical_error(e, "Layer pipeline", enable_trace=kwargs["trace"])
        ctx.exit(1)

    written = export_layers(bundle, output_dir)

    if not kwargs["no_map"]:
        # Imported here so GeoJSON-only runs do not need folium
        from analysis.map_moose import create_moose_map

        map_path = output_dir / Path(config.get_map_path()).name
        create_moose_map(
            bundle,
            map_path,
            tiles=config.get_visualization_setting("tiles"),
            zoom_start=config.get_visualization_setting("zoom_start"),
            colormap=config.get_visualization_setting("colormap"),
            density_colormap=config.get_visualization_setting("density_colormap"),
        )

    for name, info in summarize(bundle).items():
        logger.info(f"   📊 {name}: {info['features']:,} {info['kind']} features")
    for name, path in written.items():
        logger.debug(f"   💾 {name}: {path}")

    logger.success(f"🎉 Pipeline completed in {time.time() - start:.1f}s")


@cli.command()
@click.pass_context
def check(ctx):
    """Validate input files and show the effective settings."""
    config: Config = ctx.obj["config"]
    config.print_config_summary()

    validation = config.validate_input_files()
    for key, exists in validation.items():
        status = "✅" if exists else "❌"
        logger.info(f"  {status} {key}: {config.get_input_path(key)}")

    settings = PipelineSettings.from_config(config)
    logger.info(f"  🎯 Target species: {settings.target_species}")
    logger.info(f"  🔑 Default unit for missing codes: {settings.default_unit_code}")
    logger.info(f"  🎨 Quantile classes: {settings.quantile_classes}")
    logger.info(f"  🌐 Working CRS: {settings.working_crs} → output {settings.output_crs}")

    if not all(validation.values()):
        logger.error("❌ Some input files are missing")
        ctx.exit(1)
    logger.success("✅ All input files present")


def setup_logging(verbose: bool = False, enable_trace: bool = False) -> None:
    """
    Configure loguru logging with appropriate levels.

    Args:
        verbose: If True, set log level to DEBUG
        enable_trace: If True, enable TRACE level logging for deep debugging
    """
    logger.remove()

    if enable_trace:
        log_level = "TRACE"
        log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
    elif verbose:
        log_level = "DEBUG"
        log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
    else:
        log_level = "INFO"
        log_format = (
            "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
        )

    logger.add(
        sys.stderr,
        format=log_format,
        level=log_level,
        colorize=True,
        backtrace=enable_trace,
        diagnose=enable_trace,
    )

    if verbose:
        logger.debug("🔧 Verbose logging enabled (DEBUG level)")
    if enable_trace:
        logger.trace("🔍 Trace logging enabled - maximum detail mode")


def handle_critical_error(error: Exception, context: str = "", enable_trace: bool = False) -> None:
    """
    Log a fatal error, with the full traceback in TRACE mode.

    Args:
        error: The exception that occurred
        context: Additional context about where the error occurred
        enable_trace: If True, also log the full traceback
    """
    if enable_trace:
        logger.opt(exception=error).trace(f"💥 TRACE MODE: {context} failed")

    logger.critical(f"💥 CRITICAL ERROR: {context}")
    logger.critical(f"Exception: {type(error).__name__}: {error}")

    if not enable_trace:
        logger.info("💡 For detailed debugging, run with --trace flag")


if __name__ == "__main__":
    cli()
