"""
Console progress output for pipeline runs.

Stage headers, per-unit progress and warnings go to stdout indented by two
spaces so a run reads as one report. Every line is mirrored to the
``prism`` logging hierarchy at DEBUG (progress) or WARNING (warnings), so
``--verbose`` runs and log captures see the same stream.
"""

import logging
import sys
from typing import Callable, List, Optional

logger = logging.getLogger("prism.run")

LogFn = Callable[[str], None]

RULE = "=" * 60


def console_log(msg: str) -> None:
    print(f"  {msg}")
    logger.debug(msg)


def console_heading(msg: str) -> None:
    print(f"\n{RULE}\n  {msg}\n{RULE}")
    logger.debug("== %s ==", msg)


def console_warn(msg: str) -> None:
    print(f"  ! {msg}")
    logger.warning(msg)


def console_error(msg: str) -> None:
    print(f"Error: {msg}", file=sys.stderr)
    logger.error(msg)


class RunLogger:
    """Log/warn sinks for one run, counting warnings as they are emitted.

    ``log`` and ``warn`` default to the console printers; callers that embed
    the pipeline (a plugin host, tests) pass their own functions.
    """

    def __init__(self, log: Optional[LogFn] = None, warn: Optional[LogFn] = None,
                 heading: Optional[LogFn] = None):
        self._log = log or console_log
        self._warn = warn or console_warn
        if heading is not None:
            self._heading = heading
        elif log is None:
            self._heading = console_heading
        else:
            self._heading = lambda msg: self._log(f"== {msg} ==")
        self.warnings: List[str] = []

    def log(self, msg: str) -> None:
        self._log(msg)

    def heading(self, msg: str) -> None:
        self._heading(msg)

    def warn(self, msg: str) -> None:
        self.warnings.append(msg)
        self._warn(msg)
