"""Logging configuration for console and rotating file logs."""

from __future__ import annotations

from pathlib import Path
import sys

from loguru import logger

from signal_trader.config import RuntimeConfig


def setup_logger(runtime: RuntimeConfig | None = None, base_dir: str | Path = "."):
    """Send loguru output to stdout and to a rotating file under `base_dir`.

    Level, file location, rotation and retention come from the `runtime`
    config section. Existing sinks are dropped, so calling this twice does
    not duplicate output.
    """
    runtime = runtime or RuntimeConfig()
    log_path = Path(base_dir) / runtime.log_dir / runtime.log_file
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(sys.stdout, level=runtime.log_level, enqueue=True)
    logger.add(
        log_path,
        level=runtime.log_level,
        rotation=runtime.log_rotation,
        retention=runtime.log_retention,
        enqueue=True,
        encoding="utf-8",
    )
    logger.debug("Logging to {} level={}", log_path, runtime.log_level)
    return logger
