from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"fleetops.{name}")


def configure_logging(app_env: str) -> None:
    level = logging.DEBUG if app_env == "development" else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("fleetops").setLevel(level)
