from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO


LOG_FORMAT = "%(message)s"
DEBUG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
HANDLER_NAME = "chefcli"


def configure_logging(*, verbose: bool = False, stream: Optional[TextIO] = None) -> logging.Handler:
    """Configure the root logger for CLI use.

    Operator-facing messages go to stderr as plain text; `verbose` switches to
    DEBUG with timestamps and logger names. Calling it again replaces the
    handler installed by the previous call.
    """
    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(logging.Formatter(DEBUG_FORMAT if verbose else LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    # boto3/botocore are chatty at DEBUG
    for name in ("boto3", "botocore", "urllib3"):
        logging.getLogger(name).setLevel(logging.INFO if verbose else logging.WARNING)
    return handler
