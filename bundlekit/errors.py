"""Exception taxonomy shared by the matrix compiler and the post-processing pipeline."""
from __future__ import annotations


class BundleError(Exception):
    """Base class for all bundlekit errors."""


class ConfigurationError(BundleError, ValueError):
    """Raised when descriptors or settings are invalid. Fatal before any job runs."""


class UnknownFormatError(ConfigurationError):
    """Raised when a format id is not part of the registry."""

    def __init__(self, format_id: str, known: tuple[str, ...] = ()) -> None:
        message = f"Unknown format '{format_id}'"
        if known:
            message = f"{message}. Supported: {', '.join(known)}"
        super().__init__(message)
        self.format_id = format_id


class JobError(BundleError, RuntimeError):
    """Base class for failures that abort a single build job."""


class UnresolvedDependencyError(JobError):
    """Raised when an external has no artifact for the requested format."""

    def __init__(self, dependency: str, format_id: str, *, from_path: str | None = None) -> None:
        message = f"Unresolved dependency '{dependency}' for format '{format_id}'"
        if from_path:
            message = f"{message} (referenced from {from_path})"
        super().__init__(message)
        self.dependency = dependency
        self.format_id = format_id
        self.from_path = from_path


class RewriteFailureError(JobError):
    """Raised when a rewrite rule fails on a match."""

    def __init__(self, rule: str, match: str, offset: int, reason: str | None = None) -> None:
        excerpt = match if len(match) <= 60 else f"{match[:57]}..."
        message = f"Rewrite rule '{rule}' failed at offset {offset} on {excerpt!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.rule = rule
        self.match = match
        self.offset = offset


__all__ = [
    "BundleError",
    "ConfigurationError",
    "JobError",
    "RewriteFailureError",
    "UnknownFormatError",
    "UnresolvedDependencyError",
]
