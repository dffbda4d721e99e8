"""
CLI logger adapter - implements LoggerProtocol for command-line usage.

Provides a simple logger that writes timestamped lines to stderr, keeping
stdout free for command output.
"""

from __future__ import annotations

import sys
from datetime import UTC, datetime


class CLILogger:
    """
    Logger implementation for CLI (implements LoggerProtocol from services).

    Outputs messages to stderr with optional verbose mode.
    """

    def __init__(self, verbose: bool = False) -> None:
        """
        Initialize CLI logger.

        Args:
            verbose: If True, show info messages. If False, only warnings/errors.
        """
        self.verbose = verbose

    def _timestamp(self) -> str:
        return datetime.now(UTC).strftime('%Y-%m-%d %H:%M:%S')

    async def info(self, message: str) -> None:
        """Log info message (only if verbose)."""
        if self.verbose:
            print(f'[{self._timestamp()}] [INFO] {message}', file=sys.stderr)

    async def warning(self, message: str) -> None:
        """Log warning message."""
        print(f'[{self._timestamp()}] [WARNING] {message}', file=sys.stderr)

    async def error(self, message: str) -> None:
        """Log error message."""
        print(f'[{self._timestamp()}] [ERROR] {message}', file=sys.stderr)
