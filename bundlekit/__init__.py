"""Bundle matrix compiler and ordered text-patch engine for JavaScript library builds."""
from __future__ import annotations

from .cli import main

__all__ = ["main"]
