"""Structured logging via structlog.

Configured once by the CLI before any command runs. Library modules keep
using `logging.getLogger(__name__)`; the stdlib bridge routes their records
through the same stream.

Renderer selection:
  debug=True  — `ConsoleRenderer` with colours for interactive use.
  debug=False — `JSONRenderer` for machine-parseable logs (CI, wrappers).

Logs go to stderr. Command output (status tables, summaries) is printed to
stdout and must stay parseable by the shell layer.
"""

from __future__ import annotations

import logging
import sys

import structlog


def configure_structlog(debug: bool = True, verbose: bool = False) -> None:
    """Configure structlog for the process lifetime.

    Calling multiple times is safe; the last call wins.
    """
    shared_processors: list = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if debug:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    level = logging.DEBUG if verbose else logging.INFO

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    # Route stdlib loggers (every patcher module) through a formatter that
    # renders with the same processor chain.
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
