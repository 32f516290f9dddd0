from __future__ import annotations

import datetime
import logging
import os
import sys
from pathlib import Path

import termcolor

__appname__ = "marginalia"


def resolve_path(path: Path | str) -> Path:
    return Path(path).expanduser().resolve()


def resolve_logs_dir() -> Path:
    env_dir = os.environ.get("MARGINALIA_LOG_DIR", "").strip()
    if env_dir:
        return resolve_path(env_dir)
    return resolve_path(Path.home() / f"{__appname__}_logs")


if os.name == "nt":  # Windows
    import colorama
    colorama.init()


COLORS = {
    "WARNING": "yellow",
    "INFO": "white",
    "DEBUG": "blue",
    "CRITICAL": "red",
    "ERROR": "red",
}


class ColoredFormatter(logging.Formatter):
    def __init__(self, fmt, use_color=True):
        logging.Formatter.__init__(self, fmt)
        self.use_color = use_color

    def format(self, record):
        levelname = record.levelname
        record.levelname2 = "{:<7}".format(levelname)
        record.message2 = record.getMessage()
        record.asctime2 = datetime.datetime.fromtimestamp(record.created)
        record.module2 = record.module
        record.funcName2 = record.funcName
        record.lineno2 = record.lineno
        if self.use_color and levelname in COLORS:

            def colored(text):
                return termcolor.colored(
                    str(text),
                    color=COLORS[levelname],
                    attrs=["bold"],
                )

            record.levelname2 = colored(record.levelname2)
            record.message2 = colored(record.message2)
            record.asctime2 = termcolor.colored(str(record.asctime2), color="green")
            record.module2 = termcolor.colored(record.module, color="cyan")
            record.funcName2 = termcolor.colored(record.funcName, color="cyan")
            record.lineno2 = termcolor.colored(str(record.lineno), color="cyan")
        return logging.Formatter.format(self, record)


logger = logging.getLogger(__appname__)
logger.setLevel(logging.INFO)

stream_handler = logging.StreamHandler(sys.stderr)
stream_handler.setFormatter(
    ColoredFormatter(
        "%(asctime2)s [%(levelname2)s] %(module2)s:%(funcName2)s:%(lineno2)s"
        " - %(message2)s",
        use_color=sys.stderr.isatty(),
    )
)
logger.addHandler(stream_handler)

# One log file per day; skipped when the logs directory is not writable.
current_date = datetime.datetime.now().strftime("%Y-%m-%d")
try:
    logs_dir = resolve_logs_dir()
    logs_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(logs_dir / f"{__appname__}_{current_date}.log")
except OSError:
    file_handler = None
if file_handler is not None:
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(module)s:%(funcName)s:%(lineno)d - %(message)s"
        )
    )
    logger.addHandler(file_handler)
