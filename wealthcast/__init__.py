"""Wealthcast: financial projection and debt-optimization simulation engine."""

import logging
from typing import Optional

from wealthcast.config import Settings, get_global_settings

__version__ = "0.1.0"


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging from application settings.

    Args:
        settings: Settings to read the log level from (defaults to global settings)
    """
    if settings is None:
        settings = get_global_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
