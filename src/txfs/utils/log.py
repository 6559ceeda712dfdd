"""structlog setup for command-line use.

Library code only calls ``structlog.get_logger``; entry points decide where
events go. The CLI sends them to stderr so ``--json`` output on stdout stays
machine-readable.
"""

import logging
import sys

import structlog


def configure_logging(verbose: bool = False) -> None:
    """Route structlog events to stderr.

    Args:
        verbose: Emit info-level events; otherwise warnings and errors only
    """
    level = logging.INFO if verbose else logging.WARNING
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
