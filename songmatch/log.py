"""
Console logging for the service and the scripts.

Library modules only call ``logging.getLogger(__name__)``; handlers are
attached by ``setup_logging`` from the entry points. The ``log_*``
helpers print progress banners and key/value details straight to the
console, outside the logging tree.
"""

import logging
import os
import sys
from typing import Optional, TextIO

from wcwidth import wcswidth

LOGGER_NAME = "songmatch"

# level -> (ANSI colour, icon)
LEVEL_STYLES = {
    'DEBUG': ('36', '🔍'),
    'INFO': ('32', '✅'),
    'WARNING': ('33', '⚠️'),
    'ERROR': ('31', '❌'),
    'CRITICAL': ('35', '🔥'),
}
ICON_COLS = 2


def _display_width(s: str) -> int:
    w = wcswidth(s)
    return len(s) if w < 0 else w


def _pad_display(s: str, cols: int, center: bool = False) -> str:
    """Pad to ``cols`` terminal columns; emoji count double."""
    pad = cols - _display_width(s)
    if pad <= 0:
        return s
    left = pad // 2 if center else 0
    return " " * left + s + " " * (pad - left)


def use_color(stream: TextIO) -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


def _paint(text: str, code: str, enabled: bool) -> str:
    return f"\033[{code}m{text}\033[0m" if enabled else text


class PrettyFormatter(logging.Formatter):
    """
    ``[time] <icon> LEVEL    │ module: message``

    The ``songmatch.`` prefix is dropped from logger names, so records
    from ``songmatch.recognizer`` show up as ``recognizer``.
    """

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record):
        code, icon = LEVEL_STYLES.get(record.levelname, ('0', ''))
        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        name = record.name
        if name.startswith(LOGGER_NAME + "."):
            name = name[len(LOGGER_NAME) + 1:]

        level = _paint(f"{_pad_display(icon, ICON_COLS)} {record.levelname:<8}", code, self.color)
        formatted = f"{_paint(f'[{timestamp}]', '1', self.color)} {level} │ {name}: {record.getMessage()}"
        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)
        return formatted


def setup_logging(level: int = logging.INFO, stream: Optional[TextIO] = None) -> logging.Logger:
    """Attach the pretty console handler to the package logger (once)."""
    stream = stream or sys.stdout
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    handler = next((h for h in logger.handlers if isinstance(h.formatter, PrettyFormatter)), None)
    if handler is None:
        handler = logging.StreamHandler(stream)
        handler.setFormatter(PrettyFormatter(color=use_color(stream)))
        logger.addHandler(handler)
    handler.setLevel(level)
    return logger


# -----------------------------
# Console progress helpers
# -----------------------------

def _out(line: str, code: Optional[str] = None, stream: Optional[TextIO] = None) -> None:
    stream = stream or sys.stdout
    print(_paint(line, code, use_color(stream)) if code else line, file=stream)


def log_section(title: str, width: int = 50, stream: Optional[TextIO] = None):
    """Boxed banner, title centered by display width."""
    _out("", stream=stream)
    _out(f"╔{'═' * width}╗", '1;34', stream)
    _out(f"║ {_pad_display(title, width - 2, center=True)} ║", '1;34', stream)
    _out(f"╚{'═' * width}╝", '1;34', stream)
    _out("", stream=stream)


def log_step(step_num: int, description: str, stream: Optional[TextIO] = None):
    _out(f"  [Step {step_num}] ➜  {description}", '1;36', stream)


def log_success(message: str, stream: Optional[TextIO] = None):
    _out(f"  ✓ {message}", '1;32', stream)


def log_detail(key: str, value, stream: Optional[TextIO] = None):
    _out(f"      • {key}: {value}", stream=stream)
