import logging
import os
import sys

logger = logging.getLogger("redisquery")
connection_logger = logger.getChild("connection")

if os.environ.get("REDISQUERY_DEBUG"):
    logger.setLevel(logging.DEBUG)
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
    )
    logger.addHandler(handler)
    os.environ["REDISQUERY_DEBUG"] = ""


def enable_debug():
    """Switch the package logger to DEBUG, attaching a stderr handler
    unless one is already configured."""
    logger.setLevel(logging.DEBUG)
    if not logger.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
        )
        logger.addHandler(handler)
