import contextvars
import json
import logging
import os
import re
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

import colorama
from colorama import Fore, Style

from .config import settings

user_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "user_id_var", default=None
)
school_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "school_id_var", default=None
)
step_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "step_var", default="APP"
)

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

URL_REGEX = re.compile(r'https?://[^/\s]+(/[^"\'\s<]*)?')

SECRET_PARAM_REGEX = re.compile(
    r"((?:authCode|key|access_token|refresh_token|code)=)[^&\s\"']+"
)

security_logger = logging.getLogger("security")


def redact_url(message: str) -> str:
    """Finds URLs in a log message and replaces them with just the path."""

    def replacer(match):
        path = match.group(1)
        return path if path else "/"

    return URL_REGEX.sub(replacer, message)


def redact_secrets(message: str) -> str:
    """Masks credential-bearing query parameters."""
    return SECRET_PARAM_REGEX.sub(r"\1***", message)


class CustomFormatter(logging.Formatter):
    """
    Colours the level and step tags and appends whichever request context
    (school, user) is set. Credentials and hosts are redacted last.
    """

    RESET = Style.RESET_ALL

    LEVEL_COLORS = {
        logging.DEBUG: Fore.CYAN,
        logging.INFO: Fore.GREEN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Style.BRIGHT,
    }

    # (context var, tag label, colour)
    CONTEXT_TAGS = (
        (school_id_var, "school", Fore.GREEN),
        (user_id_var, "user", Fore.CYAN),
    )

    def _paint(self, color: str, text: str) -> str:
        return f"{color}{text}{self.RESET}"

    def format(self, record):
        created = datetime.fromtimestamp(record.created)
        stamp = f"[{created:%Y-%m-%dT%H:%M:%S}.{int(record.msecs):03d}]"
        record.step = step_var.get()

        parts = [
            self._paint(Fore.LIGHTBLACK_EX, stamp),
            self._paint(
                self.LEVEL_COLORS.get(record.levelno, self.RESET), f"[{record.levelname}]"
            ),
            self._paint(Fore.BLUE, f"[{record.step}]"),
        ]
        for var, label, color in self.CONTEXT_TAGS:
            if value := var.get():
                parts.append(self._paint(color, f" [{label}={value}]"))

        record.message = record.getMessage()
        line = "".join(parts) + f" {record.message}"

        if record.exc_info:
            line += f"\n{self.RESET}{self.formatException(record.exc_info)}"

        return redact_url(redact_secrets(line))


class AuditFormatter(logging.Formatter):
    """Security audit lines are already JSON; only secrets are masked."""

    def format(self, record):
        return redact_secrets(record.getMessage())


def _console_handler(stream, level: int, errors_only: bool) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    if not errors_only:
        handler.addFilter(lambda record: record.levelno < logging.ERROR)
    handler.setFormatter(CustomFormatter())
    return handler


def add_audit_log_handler(path: str) -> Optional[logging.FileHandler]:
    """
    Mirrors the security audit trail into a JSON-lines file.
    """
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as e:
        logging.error(f"[SYSTEM] Failed to open security audit log {path}: {e}")
        return None

    handler.setLevel(logging.INFO)
    handler.setFormatter(AuditFormatter())
    security_logger.addHandler(handler)
    return handler


def setup_logging():
    """
    Configures the root logger: everything below ERROR to stdout, errors to
    stderr, plus the optional security audit file.
    """
    colorama.init()

    log_level = LOG_LEVELS.get(settings.LOGGING_LEVEL.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    root_logger.addHandler(_console_handler(sys.stdout, log_level, errors_only=False))
    root_logger.addHandler(_console_handler(sys.stderr, logging.ERROR, errors_only=True))

    for handler in list(security_logger.handlers):
        security_logger.removeHandler(handler)
        handler.close()
    if settings.SECURITY_LOG_FILE:
        add_audit_log_handler(settings.SECURITY_LOG_FILE)


@contextmanager
def log_step(name: str):
    """Context manager to set the 'step' for all logs within it."""
    token = step_var.set(name)
    try:
        yield
    finally:
        step_var.reset(token)


@contextmanager
def user_context(user_id: str | None, school_id: str | None = None):
    """Tags every log line inside the block with the acting user and school."""
    user_token = user_id_var.set(user_id)
    school_token = school_id_var.set(school_id)
    try:
        yield
    finally:
        school_id_var.reset(school_token)
        user_id_var.reset(user_token)


def log_security_event(event: str, user, **details) -> dict:
    """
    Writes a structured audit line for a security-relevant calendar action.
    """
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "user_id": getattr(user, "id", None),
        "role": str(getattr(user, "role", "")) or None,
        "school_id": details.pop("school_id", None),
        "details": details,
    }
    with log_step("SECURITY"):
        security_logger.info(json.dumps(entry, default=str))
    return entry
