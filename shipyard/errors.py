"""
Error taxonomy for shipyard.

Configuration and startup errors abort the process; BuildFailure is
collected into the pipeline report; proxy errors become upstream-error
responses.
"""

from __future__ import annotations

from typing import Optional


class ShipyardError(RuntimeError):
    """Base class for all shipyard errors."""


class ConfigError(ShipyardError):
    """Invalid or unreadable shipyard.yaml."""


class CyclicDependencyError(ConfigError):
    """The workspace dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cyclic workspace dependency: {' -> '.join(cycle)}")


class UnknownDependencyError(ConfigError):
    """A workspace depends on a name that is not declared."""

    def __init__(self, workspace: str, dependency: str):
        self.workspace = workspace
        self.dependency = dependency
        super().__init__(
            f"Workspace '{workspace}' depends on unknown workspace '{dependency}'"
        )


class BuildFailure(ShipyardError):
    """A single workspace build failed."""

    def __init__(self, workspace: str, detail: str):
        self.workspace = workspace
        self.detail = detail
        super().__init__(f"{workspace}: {detail}")


class PublishError(ShipyardError):
    """The producer built successfully but there is nothing to publish."""


class StaticRootUnreadable(ShipyardError):
    """The production static root cannot be served."""


class ProxyError(ShipyardError):
    """The development upstream could not answer a request."""

    label = "Error contacting"

    def __init__(self, target: str, reason: Optional[str] = None):
        self.target = target
        self.reason = reason
        message = f"{self.label} upstream {target}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ProxyTimeout(ProxyError):
    label = "Timed out waiting for"


class ProxyUnreachable(ProxyError):
    label = "Cannot reach"
