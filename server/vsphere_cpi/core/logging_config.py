"""Process-wide logging setup."""
import logging
from typing import Optional

from .config import Settings, settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(config: Optional[Settings] = None) -> None:
    """Configure root logging for the process embedding the CPI."""

    config = config or settings
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format=LOG_FORMAT,
    )
