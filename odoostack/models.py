from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field


class ResourceKind(str, Enum):
    CONTAINER = "container"
    COMPOSE_STACK = "compose-stack"
    CONFIG_FILE = "config-file"
    NETWORK = "network"
    FIREWALL_RULE = "firewall-rule"
    OS_ACCOUNT = "os-account"


class ObservedState(str, Enum):
    ABSENT = "absent"
    PRESENT_STOPPED = "present-stopped"
    PRESENT_RUNNING = "present-running"
    # Never produced by a probe; existing resources are taken as they are.
    PRESENT_WITH_DRIFT = "present-with-drift"


class OutcomeStatus(str, Enum):
    CREATED = "created"
    STARTED_EXISTING = "started-existing"
    ALREADY_SATISFIED = "already-satisfied"
    FAILED = "failed"


class ContainerSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    image: str = Field(..., description="Docker image (name:tag)")
    environment: dict[str, str] = Field(default_factory=dict)
    ports: dict[str, int] = Field(default_factory=dict, description="container port -> host port, e.g. {'8069/tcp': 8069}")
    volumes: dict[str, str] = Field(default_factory=dict, description="host path -> container path")
    network: str | None = None
    restart_policy: str = Field("always", description="no|always|unless-stopped|on-failure")


class NetworkSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    driver: str = "bridge"


class FileSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    content: str = ""
    sensitive: bool = Field(False, description="Restrict to owner read/write (0600)")
    directory: bool = Field(False, description="Create a directory (0700) instead of a file")
    owner_uid: int | None = Field(None, description="Hand the artifact to this uid after creation (e.g. the container user)")


class ComposeSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    compose_file: str
    services: tuple[str, ...] = ()


class FirewallRuleSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    rule: str = Field("OpenSSH", description="ufw application profile or port spec")


class AccountSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    public_key: str = Field(..., min_length=1)
    password: str | None = Field(None, description="Login password for sudo; the account is passwordless when unset")
    admin_group: str = "sudo"
    home_root: str = "/home"
    shell: str = "/bin/bash"


class SshdLockdownSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str = "/etc/ssh/sshd_config"
    directives: dict[str, str] = Field(
        default_factory=lambda: {"PermitRootLogin": "no", "PasswordAuthentication": "no"}
    )
    service: str = "ssh"


DesiredSpec = Union[
    ContainerSpec,
    NetworkSpec,
    FileSpec,
    ComposeSpec,
    FirewallRuleSpec,
    AccountSpec,
    SshdLockdownSpec,
]


class ManagedResource(BaseModel):
    """One externally managed thing, identified by (kind, name)."""

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind
    name: str = Field(..., min_length=1)
    desired_spec: DesiredSpec

    @property
    def key(self) -> tuple[ResourceKind, str]:
        return self.kind, self.name


@dataclass(frozen=True)
class ReconciliationOutcome:
    kind: ResourceKind
    name: str
    status: OutcomeStatus
    observed: ObservedState | None = None
    reason: str | None = None

    @property
    def failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED


_S = TypeVar("_S", bound=BaseModel)


def spec_as(resource: ManagedResource, cls: type[_S]) -> _S:
    spec = resource.desired_spec
    if not isinstance(spec, cls):
        raise TypeError(f"{resource.kind.value} '{resource.name}' expects {cls.__name__}, got {type(spec).__name__}")
    return spec
