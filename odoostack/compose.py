from __future__ import annotations

from typing import Any

import docker
import yaml

from .config import SetupConfig
from .docker_ops import RUNNING_STATUSES, DockerHandler
from .models import ComposeSpec, ManagedResource, ObservedState, spec_as
from .system import CommandRunner

PROJECT_LABEL = "com.docker.compose.project"
SERVICE_LABEL = "com.docker.compose.service"


def render_compose(cfg: SetupConfig) -> str:
    """Service definition equivalent to the container-by-container deployment."""
    doc: dict[str, Any] = {
        "services": {
            "db": {
                "image": cfg.postgres_image,
                "container_name": cfg.db_container_name,
                "environment": {
                    "POSTGRES_USER": cfg.db_user,
                    "POSTGRES_PASSWORD": cfg.db_password,
                    "POSTGRES_DB": "postgres",
                },
                "volumes": [f"{cfg.db_data_path}:/var/lib/postgresql/data"],
                "networks": [cfg.odoo_network],
                "restart": "always",
            },
            "odoo": {
                "image": cfg.odoo_image,
                "container_name": cfg.odoo_container_name,
                "depends_on": ["db"],
                "ports": [f"{cfg.odoo_port}:8069"],
                "volumes": [
                    f"{cfg.odoo_addons_path}:/mnt/extra-addons",
                    f"{cfg.odoo_config_file}:/etc/odoo/odoo.conf",
                ],
                "networks": [cfg.odoo_network],
                "restart": "always",
            },
        },
        "networks": {cfg.odoo_network: {"name": cfg.odoo_network}},
    }
    return yaml.safe_dump(doc, sort_keys=False)


def project_containers(client: docker.DockerClient, project: str) -> list[Any]:
    """Containers labelled with exactly this compose project name."""
    found = client.containers.list(all=True, filters={"label": f"{PROJECT_LABEL}={project}"})
    return [c for c in found if c.labels.get(PROJECT_LABEL) == project]


class ComposeHandler(DockerHandler):
    """Compose stacks are probed through container labels and driven by ``docker compose``."""

    def __init__(self, runner: CommandRunner, client: docker.DockerClient | None = None):
        super().__init__(client)
        self.runner = runner

    def probe(self, resource: ManagedResource) -> ObservedState:
        spec = spec_as(resource, ComposeSpec)
        containers = project_containers(self.client, resource.name)
        present = {c.labels.get(SERVICE_LABEL) for c in containers}
        expected = set(spec.services) or present
        # A service without a container needs ``up``; ``start`` cannot create it.
        if not containers or not expected <= present:
            return ObservedState.ABSENT
        running = {c.labels.get(SERVICE_LABEL) for c in containers if c.status in RUNNING_STATUSES}
        if expected <= running:
            return ObservedState.PRESENT_RUNNING
        return ObservedState.PRESENT_STOPPED

    def create(self, resource: ManagedResource) -> None:
        spec = spec_as(resource, ComposeSpec)
        self.runner.run(["docker", "compose", "-p", resource.name, "-f", spec.compose_file, "up", "-d"])

    def start(self, resource: ManagedResource) -> None:
        spec = spec_as(resource, ComposeSpec)
        self.runner.run(["docker", "compose", "-p", resource.name, "-f", spec.compose_file, "start"])
