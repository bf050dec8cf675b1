"""
log_config.py — one-time logging setup for the Flask app.

Request code logs through current_app.logger; service modules use
logging.getLogger(__name__). Both end up on the "authgate" package handler
with the format:

    [INFO] [token_refresh] - session renewed for user 7

Secrets (session handles, refresh tokens, authorization codes) are never
passed to a logger.
"""

from __future__ import annotations

import logging

from flask import Flask

LOG_FORMAT = "[%(levelname)s] [%(module)s] - %(message)s"


def configure_logging(app: Flask) -> None:
    level = logging.getLevelName(app.config.get("LOG_LEVEL", "INFO"))
    if not isinstance(level, int):
        level = logging.INFO

    # Must run before app.logger is first touched: Flask only attaches its
    # default handler when no ancestor logger has one.
    package_logger = logging.getLogger("authgate")
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(handler)
    package_logger.setLevel(level)

    app.logger.setLevel(level)
