from __future__ import annotations

import getpass
import os
import socket
from dataclasses import dataclass, field

import docker

from . import journal
from .alerts import alert_failure
from .compose import ComposeHandler, render_compose
from .config import SetupConfig, load_or_create
from .console import console, log_info, log_success, outcome_table, print_section
from .docker_ops import ContainerHandler, NetworkHandler
from .errors import ProvisionError
from .files import FileHandler
from .models import (
    ComposeSpec,
    ContainerSpec,
    FileSpec,
    ManagedResource,
    NetworkSpec,
    OutcomeStatus,
    ReconciliationOutcome,
    ResourceKind,
)
from .preflight import check_memory, check_ubuntu, ensure_docker_group, require_docker
from .reconciler import Reconciler, ResourceHandler
from .settings import Settings, settings
from .system import CommandRunner

ODOO_INTERNAL_PORT = 8069
POSTGRES_PORT = 5432


@dataclass
class RunReport:
    mode: str
    outcomes: list[ReconciliationOutcome] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    run_id: int | None = None

    def by_status(self, status: OutcomeStatus) -> list[ReconciliationOutcome]:
        return [o for o in self.outcomes if o.status is status]


def render_odoo_conf(cfg: SetupConfig) -> str:
    return (
        "[options]\n"
        f"admin_passwd = {cfg.odoo_master_password}\n"
        f"db_host = {cfg.db_container_name}\n"
        f"db_port = {POSTGRES_PORT}\n"
        f"db_user = {cfg.db_user}\n"
        f"db_password = {cfg.db_password}\n"
        "addons_path = /mnt/extra-addons\n"
    )


def _file(path: str, **kwargs) -> ManagedResource:
    return ManagedResource(kind=ResourceKind.CONFIG_FILE, name=path, desired_spec=FileSpec(path=path, **kwargs))


def build_resources(cfg: SetupConfig) -> list[ManagedResource]:
    """Everything one provisioning run is responsible for, in dependency order."""
    resources = [_file(cfg.base_path, directory=True)]
    seen = {cfg.base_path}
    for path in cfg.data_paths:
        if path in seen:
            continue
        seen.add(path)
        uid = cfg.odoo_uid if path == cfg.odoo_addons_path else None
        resources.append(_file(path, directory=True, owner_uid=uid))
    resources.append(_file(cfg.odoo_config_file, content=render_odoo_conf(cfg), sensitive=True, owner_uid=cfg.odoo_uid))

    if cfg.deploy_mode == "compose":
        resources.append(_file(cfg.compose_file, content=render_compose(cfg), sensitive=True))
        resources.append(
            ManagedResource(
                kind=ResourceKind.COMPOSE_STACK,
                name=cfg.compose_project,
                desired_spec=ComposeSpec(compose_file=cfg.compose_file, services=("db", "odoo")),
            )
        )
        return resources

    resources.append(ManagedResource(kind=ResourceKind.NETWORK, name=cfg.odoo_network, desired_spec=NetworkSpec()))
    resources.append(
        ManagedResource(
            kind=ResourceKind.CONTAINER,
            name=cfg.db_container_name,
            desired_spec=ContainerSpec(
                image=cfg.postgres_image,
                environment={
                    "POSTGRES_USER": cfg.db_user,
                    "POSTGRES_PASSWORD": cfg.db_password,
                    "POSTGRES_DB": "postgres",
                },
                volumes={cfg.db_data_path: "/var/lib/postgresql/data"},
                network=cfg.odoo_network,
            ),
        )
    )
    resources.append(
        ManagedResource(
            kind=ResourceKind.CONTAINER,
            name=cfg.odoo_container_name,
            desired_spec=ContainerSpec(
                image=cfg.odoo_image,
                ports={f"{ODOO_INTERNAL_PORT}/tcp": cfg.odoo_port},
                volumes={
                    cfg.odoo_addons_path: "/mnt/extra-addons",
                    cfg.odoo_config_file: "/etc/odoo/odoo.conf",
                },
                network=cfg.odoo_network,
            ),
        )
    )
    return resources


def build_handlers(runner: CommandRunner, client: docker.DockerClient | None = None) -> dict[ResourceKind, ResourceHandler]:
    return {
        ResourceKind.CONFIG_FILE: FileHandler(),
        ResourceKind.NETWORK: NetworkHandler(client),
        ResourceKind.CONTAINER: ContainerHandler(client),
        ResourceKind.COMPOSE_STACK: ComposeHandler(runner, client),
    }


def host_address() -> str:
    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError:
        return "localhost"


def access_url(port: int) -> str:
    return f"http://{host_address()}:{port}"


def _invoking_user() -> str | None:
    return os.getenv("SUDO_USER") or os.getenv("USER") or getpass.getuser()


def provision(
    config_path: str | None = None,
    *,
    client: docker.DockerClient | None = None,
    runner: CommandRunner | None = None,
    cfg: Settings = settings,
    docker_group_user: str | None = None,
) -> RunReport:
    """Bring the Odoo stack up, creating only what is missing.

    Raises ProvisionError (with ``stage`` set) on the first fatal failure.
    """
    runner = runner or CommandRunner()
    config_path = config_path or cfg.config_file
    report = RunReport(mode="provision")

    journal.init_db()
    run_id = journal.start_run("provision")
    report.run_id = run_id
    try:
        log_info("Running prerequisite checks...")
        check_ubuntu(cfg.os_release_path)
        if not check_memory(cfg.min_memory_gb):
            report.warnings.append("low memory")
        require_docker(client)
        log_success("Prerequisite checks passed.")

        log_info("Loading configuration...")
        setup, created = load_or_create(config_path)
        if created:
            log_info(f"Configuration file not found. Created default '{config_path}' with random passwords.")
            journal.log_event("INFO", f"Generated {config_path}", run_id=run_id)
        log_success(f"Configuration loaded from {config_path}")

        if cfg.manage_docker_group:
            user = docker_group_user or _invoking_user()
            if ensure_docker_group(runner, user):
                report.warnings.append(f"'{user}' must log in again to use docker")

        reconciler = Reconciler(build_handlers(runner, client), run_id=run_id)
        report.outcomes = reconciler.reconcile_all(build_resources(setup))
    except ProvisionError as e:
        journal.finish_run(run_id, "failed", stage=e.stage, message=str(e))
        alert_failure("provision", e.stage, str(e), cfg)
        raise

    journal.finish_run(run_id, "succeeded")
    _print_summary(setup, report)
    return report


def _print_summary(setup: SetupConfig, report: RunReport) -> None:
    rows = [(f"{o.kind.value} {o.name}", o.status.value, o.reason or "") for o in report.outcomes]
    console.print(outcome_table("Provisioning result", rows))
    print_section("🎉 Odoo and PostgreSQL setup is complete! 🎉")
    console.print(f"You can access your Odoo instance at: {access_url(setup.odoo_port)}")
    console.print(f"Your custom addons folder is at: {setup.odoo_addons_path}")
    console.print(f"Your Odoo config file is at: {setup.odoo_config_file}")
    console.print("To backup your database, run: odoostack backup")
