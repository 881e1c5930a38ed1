"""Utility functions for literature enrichment scoring."""

import logging
import platform
from pathlib import Path
from typing import Union

# Configure tqdm to work properly on macOS
is_mac = platform.system() == 'Darwin'
TQDM_KWARGS = {
    'position': 0,
    'leave': True,
    'dynamic_ncols': True,  # Allow tqdm to adjust the width dynamically
    'ascii': is_mac,        # Use ASCII characters on macOS for better terminal compatibility
}

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(log_dir: Union[str, Path, None] = None, level=logging.INFO) -> logging.Logger:
    """Set up logging configuration.

    Args:
        log_dir: Directory to store the ``pubscore.log`` file. Console only if None.
        level: Logging level

    Returns:
        The ``pubscore`` package logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if log_dir:
        log_dir = ensure_dir(Path(log_dir))
        file_handler = logging.FileHandler(log_dir / 'pubscore.log', mode='w')
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(file_handler)
        # Ensure the file is created immediately
        root_logger.info("Logging initialized")

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'
    ))
    root_logger.addHandler(console_handler)

    logger = logging.getLogger('pubscore')
    logger.setLevel(level)
    return logger


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path

    Returns:
        Path object for the directory
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
