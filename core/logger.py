import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Patterns for secrets that should be masked in logs
SECRET_PATTERNS = [
    (re.compile(r"(api[_-]?key\s*[=:]\s*)[\"']?[\w-]{20,}[\"']?", re.IGNORECASE), r"\1***MASKED***"),
    (re.compile(r"(bearer\s+)[\w.-]{20,}", re.IGNORECASE), r"\1***MASKED***"),
    (re.compile(r"\bsk-[\w-]{10,}"), "sk-***MASKED***"),
]


def mask_secrets(text: str) -> str:
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SecretMaskingFilter(logging.Filter):
    """Mask credentials that leak into messages, e.g. through raw error bodies."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = mask_secrets(record.msg)
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(mask_secrets(a) if isinstance(a, str) else a for a in record.args)
        return True


class ColorFormatter(logging.Formatter):
    grey = "\x1b[38;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"

    COLORS = {
        logging.DEBUG: grey,
        logging.INFO: grey,
        logging.WARNING: yellow,
        logging.ERROR: red,
        logging.CRITICAL: bold_red,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, self.grey)
        formatter = logging.Formatter(color + LOG_FORMAT + self.reset, datefmt=DATE_FORMAT)
        return formatter.format(record)


def setup_logging(output_dir: str | Path | None = None, level: int = logging.INFO) -> logging.Logger:
    """Attach a coloured console handler and, when output_dir is given, a rotating app.log.

    Safe to call more than once: handlers this function installed earlier are replaced,
    so a later call can point the file handler at a new run directory.
    """
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, "_custdev", False):
            root.removeHandler(handler)
            handler.close()

    secret_filter = SecretMaskingFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(ColorFormatter())
    console.addFilter(secret_filter)
    console._custdev = True  # type: ignore[attr-defined]
    root.addHandler(console)

    if output_dir is not None:
        log_dir = Path(output_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "app.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        file_handler.addFilter(secret_filter)
        file_handler._custdev = True  # type: ignore[attr-defined]
        root.addHandler(file_handler)

    # httpx logs every request at INFO; keep it out of the run log
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return root
