"""Boutique POS: workbook-backed sales reconciliation and reporting."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Mapping, Optional


LOG_DIR_ENV = "BOUTIQUE_POS_LOG_DIR"
LOG_FILE_NAME = "boutique_pos.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def resolve_log_dir(environ: Optional[Mapping[str, str]] = None, cwd: Optional[Path] = None) -> Path:
    """Return the directory the package log file is written to.

    ``BOUTIQUE_POS_LOG_DIR`` takes precedence. Without it a source checkout
    logs into ``.logs`` beside its ``pyproject.toml``, and an installed
    package logs into ``.logs`` under the working directory, which is where
    the shop's ``config.ini`` and workbook live.
    """

    environ = os.environ if environ is None else environ
    override = environ.get(LOG_DIR_ENV, "").strip()
    if override:
        return Path(override).expanduser()

    checkout_root = Path(__file__).resolve().parents[2]
    if (checkout_root / "pyproject.toml").is_file():
        return checkout_root / ".logs"
    return (cwd or Path.cwd()) / ".logs"


def configure_logging(name: str = __name__, log_dir: Optional[Path] = None) -> logging.Logger:
    """Attach a rotating file handler and a stderr handler to ``name``.

    A logger that already has handlers is returned untouched, so importing
    the package twice never duplicates output. When the log directory cannot
    be created the logger keeps only its stderr handler.
    """

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    log_file = (log_dir or resolve_log_dir()) / LOG_FILE_NAME
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: boutique_pos logs will not be written to '{log_file}': {exc}", file=sys.stderr)
    else:
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = configure_logging()
log.debug("Logging configured for %s", __name__)
