from __future__ import annotations

import re
from typing import Any

import docker
from docker.errors import DockerException
from docker.models.containers import Container
from docker.models.networks import Network

from .models import ContainerSpec, ManagedResource, NetworkSpec, ObservedState, spec_as


CONTAINER_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.\-]{0,127}$")

# A probe counts "restarting" as running and leaves it to docker's restart
# policy; right after create or start it means the container already crashed.
RUNNING_STATUSES = {"running", "restarting"}


def validate_container_name(name: str) -> None:
    if not CONTAINER_NAME_RE.match(name):
        raise ValueError(
            "Invalid container/network name. Use letters, digits and _.- starting with a letter or digit (max 128 chars)."
        )


def _client() -> docker.DockerClient:
    return docker.from_env()


def docker_available(client: docker.DockerClient | None = None) -> bool:
    try:
        c = client or _client()
        c.ping()
        return True
    except DockerException:
        return False


def find_container(client: docker.DockerClient, name: str) -> Container | None:
    """Return the container named exactly ``name``.

    The daemon's name filter is a substring/regex match, so the result is
    narrowed to an exact comparison here.
    """
    for c in client.containers.list(all=True, filters={"name": name}):
        if c.name == name:
            return c
    return None


def find_network(client: docker.DockerClient, name: str) -> Network | None:
    for n in client.networks.list(names=[name]):
        if n.name == name:
            return n
    return None


def container_state(client: docker.DockerClient, name: str) -> ObservedState:
    c = find_container(client, name)
    if c is None:
        return ObservedState.ABSENT
    if c.status in RUNNING_STATUSES:
        return ObservedState.PRESENT_RUNNING
    return ObservedState.PRESENT_STOPPED


def container_image_tags(client: docker.DockerClient, name: str) -> list[str]:
    c = find_container(client, name)
    if c is None:
        return []
    return list(c.image.tags)


def container_logs(client: docker.DockerClient, name: str, tail: int = 200) -> str:
    c = find_container(client, name)
    if c is None:
        return ""
    raw = c.logs(tail=tail, stdout=True, stderr=True)
    return raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)


class DockerHandler:
    def __init__(self, client: docker.DockerClient | None = None):
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = _client()
        return self._client


class ContainerHandler(DockerHandler):
    """Probe/create/start primitives for single containers."""

    def probe(self, resource: ManagedResource) -> ObservedState:
        return container_state(self.client, resource.name)

    def create(self, resource: ManagedResource) -> None:
        spec = spec_as(resource, ContainerSpec)
        validate_container_name(resource.name)

        kwargs: dict[str, Any] = {
            "detach": True,
            "name": resource.name,
            "environment": dict(spec.environment),
            "ports": dict(spec.ports),
            "volumes": {host: {"bind": target, "mode": "rw"} for host, target in spec.volumes.items()},
            "restart_policy": {"Name": spec.restart_policy},
        }
        if spec.network:
            kwargs["network"] = spec.network

        # containers.run pulls the image when it is not present locally.
        container = self.client.containers.run(spec.image, **kwargs)
        _expect_running(container)

    def start(self, resource: ManagedResource) -> None:
        c = find_container(self.client, resource.name)
        if c is None:
            raise RuntimeError(f"container '{resource.name}' disappeared before it could be started")
        if c.status == "paused":
            c.unpause()
        else:
            c.start()
        _expect_running(c)


class NetworkHandler(DockerHandler):
    """Networks have no stopped state: present means satisfied."""

    def probe(self, resource: ManagedResource) -> ObservedState:
        if find_network(self.client, resource.name) is None:
            return ObservedState.ABSENT
        return ObservedState.PRESENT_RUNNING

    def create(self, resource: ManagedResource) -> None:
        spec = spec_as(resource, NetworkSpec)
        validate_container_name(resource.name)
        self.client.networks.create(resource.name, driver=spec.driver)

    def start(self, resource: ManagedResource) -> None:
        raise RuntimeError("networks cannot be started")


def _expect_running(container: Container) -> None:
    container.reload()
    if container.status != "running":
        raise RuntimeError(f"container '{container.name}' did not enter running state (status: {container.status})")
