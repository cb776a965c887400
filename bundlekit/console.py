"""Leveled console output used by the CLI and the job pipeline."""
from __future__ import annotations

from typing import Mapping
import os
import sys

LOG_LEVEL_ENV = "BUNDLEKIT_LOG_LEVEL"


class Console:
    """Simple console output handler with configurable log level.

    Levels: none < error < info < debug
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "info": 2,
        "debug": 3,
    }

    def __init__(self, level: str = "info", dry_run: bool = False):
        self.level_name = level if level in self.LEVELS else "info"
        self.level = self.LEVELS[self.level_name]
        self.dry_run = dry_run

    @classmethod
    def from_settings(
        cls,
        *,
        configured: str | None = None,
        verbose: bool = False,
        quiet: bool = False,
        dry_run: bool = False,
        environ: Mapping[str, str] | None = None,
    ) -> "Console":
        if verbose:
            return cls("debug", dry_run=dry_run)
        if quiet:
            return cls("error", dry_run=dry_run)
        env = os.environ if environ is None else environ
        level = env.get(LOG_LEVEL_ENV, "").strip().lower() or (configured or "info").lower()
        return cls(level, dry_run=dry_run)

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            print(f"[INFO] {message}")

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            print(f"[ERROR] {message}", file=sys.stderr)

    def dry(self, message: str) -> None:
        if self.dry_run:
            print(f"[DRY] {message}")

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            print(f"[DEBUG] {message}")
