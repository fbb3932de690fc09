"""
Logging for the HSR change analysis.

Console output is human-readable; a rotating JSON Lines file under
config.LOG_DIR keeps the structured step fields (scenario, species,
summaries, timing, validation warnings) for later inspection. Modules
obtain loggers through get_pipeline_logger(), which configures the root
logger on first use.

Usage:
    from hsr_urban.logging_config import get_pipeline_logger
    log = get_pipeline_logger(__name__)
"""

import json
import logging
import os
import time
import uuid
from logging.handlers import RotatingFileHandler

# Fields copied from a record's ``extra`` into the JSON entry.
STEP_FIELDS = ("step_name", "scenario", "species", "input_summary",
               "output_summary", "timing_seconds", "warnings")

# One id per interpreter, shared by every record of an assessment run.
_run_id = None
_configured = False


def get_run_id():
    """Return the id of this assessment run, generating it on first use."""
    global _run_id
    if _run_id is None:
        _run_id = uuid.uuid4().hex[:8]
    return _run_id


class RunIdFilter(logging.Filter):
    """Stamp each record with the run id."""

    def filter(self, record):
        record.run_id = get_run_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with step fields when present."""

    def format(self, record):
        entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S.") +
                         f"{int(record.msecs):03d}",
            "level": record.levelname,
            "logger": record.name,
            "run_id": getattr(record, "run_id", None),
            "message": record.getMessage(),
        }
        entry.update({key: getattr(record, key)
                      for key in STEP_FIELDS if hasattr(record, key)})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(console_level=None, log_dir=None):
    """Attach console and rotating JSON handlers to the root logger once.

    Parameters
    ----------
    console_level : int, optional
        Default: the LOG_LEVEL environment variable, else INFO.
    log_dir : str, optional
        Directory for ``hsr.log``. Default: config.LOG_DIR.
    """
    global _configured
    if _configured:
        return

    from hsr_urban import config

    if console_level is None:
        env_level = os.environ.get("LOG_LEVEL", "INFO").upper()
        console_level = getattr(logging, env_level, logging.INFO)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    # Handler-level so records propagated from module loggers are stamped.
    run_filter = RunIdFilter()

    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    console.addFilter(run_filter)
    root.addHandler(console)

    log_dir = log_dir or config.LOG_DIR
    os.makedirs(log_dir, exist_ok=True)
    rotating = RotatingFileHandler(
        os.path.join(log_dir, "hsr.log"),
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=3,
    )
    rotating.setLevel(logging.DEBUG)
    rotating.setFormatter(JsonFormatter())
    rotating.addFilter(run_filter)
    root.addHandler(rotating)

    _configured = True


def get_pipeline_logger(name):
    """Logger for an analysis module; sets up logging on first call."""
    setup_logging()
    return logging.getLogger(name)


def log_step_summary(logger, step_name, status="success", input_summary=None,
                     output_summary=None, timing_seconds=None, warnings_list=None):
    """Log one structured line per step: ERROR for failures, WARNING when
    the step succeeded with validation warnings, INFO otherwise.

    The scenario and species of ``input_summary`` are lifted to top-level
    fields so the JSON log can be filtered by them.
    """
    input_summary = input_summary or {}
    parts = [f"[{step_name}] {status}"]
    if timing_seconds is not None:
        parts.append(f"({timing_seconds:.1f}s)")
    if output_summary:
        parts.append(f"output={output_summary}")
    if warnings_list:
        parts.append(f"{len(warnings_list)} warning(s)")

    extra = {"step_name": step_name, "input_summary": input_summary}
    for key in ("scenario", "species"):
        if key in input_summary:
            extra[key] = input_summary[key]
    if output_summary:
        extra["output_summary"] = output_summary
    if timing_seconds is not None:
        extra["timing_seconds"] = timing_seconds
    if warnings_list:
        extra["warnings"] = list(warnings_list)

    if status == "error":
        level = logging.ERROR
    elif warnings_list:
        level = logging.WARNING
    else:
        level = logging.INFO
    logger.log(level, " ".join(parts), extra=extra)


class StepTimer:
    """Wall-clock timer for a block.

    Usage:
        with StepTimer() as t:
            do_work()
        print(t.elapsed)
    """

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed = time.perf_counter() - self.start
