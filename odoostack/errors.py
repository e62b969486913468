from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ReconciliationOutcome


class ProvisionError(Exception):
    """Base class for every failure that aborts a provisioning run."""

    stage: str = "unknown"

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class PreconditionError(ProvisionError):
    """The host is not fit for provisioning (wrong OS, no runtime, no network)."""

    stage = "preconditions"


class CommandError(ProvisionError):
    """An external command exited non-zero."""

    def __init__(self, cmd: list[str], returncode: int, output: str):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.output = output.strip()
        detail = self.output or f"exit status {returncode}"
        super().__init__(f"{' '.join(self.cmd)}: {detail}")


class ReconcileFailed(ProvisionError):
    """A resource could not be brought to its desired state."""

    def __init__(self, outcome: ReconciliationOutcome):
        self.outcome = outcome
        super().__init__(
            f"{outcome.kind.value} '{outcome.name}': {outcome.reason}",
            stage=f"{outcome.kind.value}:{outcome.name}",
        )


class ConfigError(ProvisionError):
    """The deployment configuration file is unreadable or invalid."""

    stage = "configuration"
