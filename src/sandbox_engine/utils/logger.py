# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import sys
from pathlib import Path

from loguru import logger

LOG_DIR = Path("logs")
LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", log_dir: Path = LOG_DIR) -> None:
    """Install the stderr and JSON file sinks.

    Replaces any sinks already configured on the loguru logger. The file sink
    writes one JSON record per line to `<log_dir>/app.log`.
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "app.log",
        level=level,
        rotation="500 MB",
        retention="10 days",
        serialize=True,
        enqueue=True,
    )
