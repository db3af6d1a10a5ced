"""Loguru sinks for the CLI, ingestion and answering pipelines."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

LOG_FILE = "logs/proposal_rag.log"

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} - {message}"


def setup_logger(
    log_level: str = "INFO",
    log_file: Optional[str] = LOG_FILE,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """
    Replace loguru's default sink.

    Console output goes to stderr so `ask --json` keeps stdout clean. The
    file sink rotates, retains and zips old logs; pass log_file=None to skip it.
    """
    logger.remove()
    logger.add(sys.stderr, level=log_level, format=_CONSOLE_FORMAT, colorize=True)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=log_level,
            format=_FILE_FORMAT,
            rotation=rotation,
            retention=retention,
            compression="zip",
            enqueue=True,
        )

    logger.debug(f"[Logger] level={log_level} file={log_file or '-'}")


def setup_from_config(config: dict) -> None:
    """Apply the `logging` section of config.yaml."""
    cfg = config.get("logging", {})
    setup_logger(
        log_level=cfg.get("level", "INFO"),
        log_file=cfg.get("file", LOG_FILE),
        rotation=cfg.get("rotation", "10 MB"),
        retention=cfg.get("retention", "7 days"),
    )
