import io
import logging
import sys

from songmatch.log import (
    PrettyFormatter,
    log_detail,
    log_section,
    log_step,
    log_success,
    setup_logging,
)


def make_record(name="songmatch.recognizer", level=logging.WARNING, msg="Skipping %s", args=("a.wav",)):
    return logging.LogRecord(name, level, __file__, 1, msg, args, None)


def test_formatter_plain():
    line = PrettyFormatter(color=False).format(make_record())
    assert "\033[" not in line
    assert "WARNING" in line
    assert line.endswith("│ recognizer: Skipping a.wav")


def test_formatter_keeps_foreign_logger_names():
    line = PrettyFormatter(color=False).format(make_record(name="uvicorn.error", level=logging.INFO))
    assert "uvicorn.error: Skipping a.wav" in line


def test_formatter_color_and_traceback():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord("songmatch.db", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
    line = PrettyFormatter(color=True).format(record)
    assert "\033[31m" in line
    assert "RuntimeError: boom" in line


def test_setup_logging_attaches_one_handler():
    logger = setup_logging(logging.DEBUG, stream=io.StringIO())
    setup_logging(logging.INFO, stream=io.StringIO())
    pretty = [h for h in logger.handlers if isinstance(h.formatter, PrettyFormatter)]
    assert len(pretty) == 1
    assert logger.level == logging.INFO
    assert pretty[0].level == logging.INFO


def test_console_helpers_without_tty():
    out = io.StringIO()
    log_section("🎵 Indexing", width=20, stream=out)
    log_step(1, "Opening catalog", stream=out)
    log_success("done", stream=out)
    log_detail("Tracks", 3, stream=out)

    lines = out.getvalue().splitlines()
    assert "\033[" not in out.getvalue()
    assert lines[1] == "╔" + "═" * 20 + "╗"
    # the emoji takes two columns
    assert lines[2] == "║    🎵 Indexing     ║"
    assert "[Step 1] ➜  Opening catalog" in lines[5]
    assert lines[6] == "  ✓ done"
    assert lines[7] == "      • Tracks: 3"
