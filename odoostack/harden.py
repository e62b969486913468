from __future__ import annotations

from . import journal
from .accounts import AccountHandler, validate_public_key, validate_username
from .alerts import alert_failure
from .console import console, log_info, log_success, log_warning, outcome_table
from .errors import ProvisionError
from .firewall import FirewallHandler
from .models import AccountSpec, FirewallRuleSpec, ManagedResource, ResourceKind, SshdLockdownSpec
from .preflight import check_connectivity, require_root
from .provision import RunReport, host_address
from .reconciler import Reconciler, ResourceHandler
from .settings import Settings, settings
from .sshd import SshdHandler
from .system import CommandRunner


def build_resources(
    username: str,
    public_key: str,
    password: str | None = None,
    sshd_config: str = "/etc/ssh/sshd_config",
    home_root: str = "/home",
    firewall_rule: str = "OpenSSH",
) -> list[ManagedResource]:
    return [
        ManagedResource(
            kind=ResourceKind.OS_ACCOUNT,
            name=username,
            desired_spec=AccountSpec(public_key=public_key, password=password, home_root=home_root),
        ),
        ManagedResource(kind=ResourceKind.CONFIG_FILE, name=sshd_config, desired_spec=SshdLockdownSpec(path=sshd_config)),
        ManagedResource(kind=ResourceKind.FIREWALL_RULE, name=firewall_rule, desired_spec=FirewallRuleSpec(rule=firewall_rule)),
    ]


def build_handlers(runner: CommandRunner) -> dict[ResourceKind, ResourceHandler]:
    return {
        ResourceKind.OS_ACCOUNT: AccountHandler(runner),
        ResourceKind.CONFIG_FILE: SshdHandler(runner),
        ResourceKind.FIREWALL_RULE: FirewallHandler(runner),
    }


def harden(
    username: str,
    public_key: str,
    *,
    password: str | None = None,
    home_root: str = "/home",
    runner: CommandRunner | None = None,
    check_network: bool = True,
    cfg: Settings = settings,
) -> RunReport:
    """First-run lockdown of a fresh server.

    Creates the admin account with key access before password and root
    logins are disabled, so the host stays reachable.
    """
    runner = runner or CommandRunner()
    report = RunReport(mode="harden")

    journal.init_db()
    run_id = journal.start_run("harden")
    report.run_id = run_id
    try:
        require_root()
        if check_network:
            log_info("Checking for internet connection...")
            check_connectivity(cfg.connectivity_url, cfg.health_timeout_s)
            log_success("Internet connection is active.")
        try:
            validate_username(username)
            public_key = validate_public_key(public_key)
        except ValueError as e:
            raise ProvisionError(str(e), stage="input") from None

        resources = build_resources(username, public_key, password, cfg.sshd_config_path, home_root)
        reconciler = Reconciler(build_handlers(runner), run_id=run_id)
        report.outcomes = reconciler.reconcile_all(resources)
    except ProvisionError as e:
        journal.finish_run(run_id, "failed", stage=e.stage, message=str(e))
        alert_failure("harden", e.stage, str(e), cfg)
        raise

    journal.finish_run(run_id, "succeeded")
    _print_summary(username, report)
    return report


def _print_summary(username: str, report: RunReport) -> None:
    rows = [(f"{o.kind.value} {o.name}", o.status.value, o.reason or "") for o in report.outcomes]
    console.print(outcome_table("Hardening result", rows))
    log_warning("IMPORTANT: Your server is now secured.")
    log_warning("Before you close this terminal, open a NEW terminal and test that you can log in:")
    console.print(f"    ssh {username}@{host_address()}")
    log_warning("If you cannot log in, DO NOT close this root session.")
    log_success(f"Initial server setup is complete for '{username}'.")
