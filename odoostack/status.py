"""Read-only health report.

Only probes run here: handlers' ``probe`` methods, container inspection and
logs, ``systemctl is-active`` and one HTTP request. Nothing is created,
started or written, the journal included.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

import docker
import httpx
from docker.errors import DockerException

from . import journal
from .config import SetupConfig, load_config
from .console import console, log_info, outcome_table
from .docker_ops import container_image_tags, container_logs
from .errors import PreconditionError
from .health import check_health, scan_log
from .models import ContainerSpec, FileSpec, ObservedState, ResourceKind
from .preflight import require_docker
from .provision import build_handlers, build_resources
from .reconciler import ResourceHandler
from .settings import Settings, settings
from .system import CommandRunner, service_active

PASS = "PASS"
WARN = "WARN"
FAIL = "FAIL"


@dataclass(frozen=True)
class Finding:
    resource: str
    level: str
    detail: str


@dataclass
class StatusReport:
    findings: list[Finding] = field(default_factory=list)

    def add(self, resource: str, level: str, detail: str) -> None:
        self.findings.append(Finding(resource, level, detail))

    def with_level(self, level: str) -> list[Finding]:
        return [f for f in self.findings if f.level == level]

    @property
    def healthy(self) -> bool:
        return not self.with_level(FAIL)


def collect_status(
    setup: SetupConfig,
    handlers: Mapping[ResourceKind, ResourceHandler],
    client: docker.DockerClient,
    runner: CommandRunner,
    log_tail: int = 200,
    health_timeout_s: float = 5.0,
    transport: httpx.BaseTransport | None = None,
) -> StatusReport:
    report = StatusReport()

    if service_active(runner, "docker"):
        report.add("docker service", PASS, "active")
    else:
        report.add("docker service", FAIL, "inactive")

    for r in build_resources(setup):
        label = f"{r.kind.value} {r.name}"
        try:
            state = handlers[r.kind].probe(r)
        except Exception as e:
            report.add(label, FAIL, f"probe failed: {e}")
            continue
        if state is not ObservedState.PRESENT_RUNNING:
            report.add(label, FAIL, state.value)
            continue

        try:
            level, detail = _inspect_present(client, r.desired_spec, r.name, state)
        except (OSError, DockerException) as e:
            report.add(label, FAIL, f"inspection failed: {e}")
            continue
        report.add(label, level, detail)

    for name in (setup.db_container_name, setup.odoo_container_name):
        try:
            hits = scan_log(container_logs(client, name, tail=log_tail))
        except DockerException as e:
            report.add(f"logs {name}", FAIL, f"cannot read logs: {e}")
            continue
        counts = {k: len(v) for k, v in hits.items() if v}
        if counts:
            summary = ", ".join(f"{k}: {n}" for k, n in counts.items())
            report.add(f"logs {name}", WARN, f"last {log_tail} lines - {summary}")
        else:
            report.add(f"logs {name}", PASS, f"no error keywords in last {log_tail} lines")

    ok, msg, latency = check_health(f"http://127.0.0.1:{setup.odoo_port}/web/health", health_timeout_s, transport)
    detail = f"{msg} ({latency} ms)" if latency is not None else msg
    report.add("odoo http", PASS if ok else FAIL, detail)
    return report


def _inspect_present(client: docker.DockerClient, spec: object, name: str, state: ObservedState) -> tuple[str, str]:
    if isinstance(spec, FileSpec) and spec.sensitive:
        mode = os.stat(spec.path).st_mode & 0o777
        if mode & 0o077:
            return WARN, f"readable by group/others (mode {mode:o})"
    elif isinstance(spec, ContainerSpec) and spec.image not in container_image_tags(client, name):
        # Drift is reported, never acted upon.
        return WARN, f"running, but not from {spec.image}"
    return PASS, state.value


def status(
    config_path: str | None = None,
    *,
    client: docker.DockerClient | None = None,
    runner: CommandRunner | None = None,
    cfg: Settings = settings,
    transport: httpx.BaseTransport | None = None,
) -> StatusReport:
    """Print the health report. Raises PreconditionError when there is nothing to inspect."""
    runner = runner or CommandRunner()
    config_path = config_path or cfg.config_file
    if not os.path.exists(config_path):
        raise PreconditionError(f"{config_path} not found; run 'odoostack provision' first.", stage="status")
    setup = load_config(config_path)
    require_docker(client)
    client = client or docker.from_env()

    report = collect_status(
        setup,
        build_handlers(runner, client),
        client,
        runner,
        log_tail=cfg.status_log_tail,
        health_timeout_s=cfg.health_timeout_s,
        transport=transport,
    )
    rows = [(f.resource, f.level, f.detail) for f in report.findings]
    console.print(outcome_table("Status", rows))
    passed, warned, failed = (len(report.with_level(x)) for x in (PASS, WARN, FAIL))
    console.print(f"{passed} passed, {warned} warnings, {failed} failed")

    runs = journal.latest_runs(limit=5)
    if runs:
        log_info("Recent runs:")
        for run in runs:
            console.print(f"  #{run.id} {run.mode} {run.status} {run.started_at} {run.stage or ''}", markup=False)

    events = journal.latest_events(limit=cfg.status_event_count)
    if events:
        log_info("Recent events:")
        for event in events:
            console.print(f"  {event['ts']} {event['level']} {event['message']}", markup=False)
    return report
