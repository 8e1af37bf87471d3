"""Structured logging configuration."""

import logging
import re
import sys
from pythonjsonlogger import jsonlogger
from provisioner.infra.config import config

# Telegram bot tokens look like "<bot id>:<secret>"
_BOT_TOKEN_RE = re.compile(r"(?<!\d)(\d{5,}):[A-Za-z0-9_-]{20,}")


class RedactBotTokenFilter(logging.Filter):
    """Mask Telegram bot tokens in log messages, keeping the bot ID."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _BOT_TOKEN_RE.sub(r"\1:***", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class ProvisionerJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every line with service and environment."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record.setdefault("service", "agent-provisioner")
        log_record.setdefault("env", config.APP_ENV)


def setup_logging(debug: bool = config.DEBUG) -> logging.Logger:
    """
    Send JSON lines for the ``provisioner`` package to stdout.

    Module loggers (``logging.getLogger(__name__)``) propagate to the package
    logger, so ``extra={"tenant_id": ..., "step": ...}`` shows up as fields.
    """
    logger = logging.getLogger("provisioner")
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProvisionerJsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    handler.addFilter(RedactBotTokenFilter())
    logger.addHandler(handler)

    # Third-party noise; httpx logs full request URLs, which carry bot tokens
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logger


app_logger = setup_logging()
