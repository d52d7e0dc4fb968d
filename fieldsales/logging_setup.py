from __future__ import annotations

import logging

from fieldsales.config import settings

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


def configure_logging(level: str | None = None) -> None:
    resolved = (level or settings.log_level or 'INFO').upper()
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
