import glob
import os
import stat
from dataclasses import replace

import pytest

from odoostack import accounts, harden as harden_mod
from odoostack.accounts import AccountHandler, install_authorized_key, validate_public_key
from odoostack.errors import CommandError, ProvisionError, ReconcileFailed
from odoostack.firewall import FirewallHandler, parse_active, parse_added_rules
from odoostack.harden import harden
from odoostack.models import (
    AccountSpec,
    FirewallRuleSpec,
    ManagedResource,
    ObservedState,
    OutcomeStatus,
    ResourceKind,
    SshdLockdownSpec,
)
from odoostack.reconciler import Reconciler
from odoostack.sshd import SshdHandler, apply_directives, is_locked_down, parse_effective_config
from odoostack.system import CommandResult

KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIJv0example alice@laptop"
LOCKDOWN = {"PermitRootLogin": "no", "PasswordAuthentication": "no"}

STOCK_SSHD = """Include {dropins}/*.conf
#PermitRootLogin prohibit-password
#PasswordAuthentication yes
UsePAM yes

Match User anoncvs
\tPasswordAuthentication yes
"""


def _stock_sshd(tmp_path):
    return STOCK_SSHD.replace("{dropins}", str(tmp_path / "sshd_config.d"))


def _read_sshd(path, found):
    """Global settings in file order, following Include; returns False at Match."""
    with open(path) as fh:
        for line in fh:
            parts = line.split(None, 1)
            if not parts or parts[0].startswith("#"):
                continue
            key, value = parts[0].lower(), parts[1].strip() if len(parts) > 1 else ""
            if key == "match":
                return False
            if key == "include":
                for included in sorted(glob.glob(value)):
                    if not _read_sshd(included, found):
                        return False
                continue
            found.setdefault(key, value)
    return True


def _sshd_dump(cmd, input):
    # Stands in for ``sshd -T``: first value wins, drop-ins included.
    found = {}
    _read_sshd(cmd[-1], found)
    return CommandResult(tuple(cmd), 0, "".join(f"{k} {v}\n" for k, v in found.items()), "")


def _serve_sshd_dump(runner, path):
    runner.responses[("sshd", "-T", "-f", str(path))] = _sshd_dump


def _sshd_resource(path):
    return ManagedResource(kind=ResourceKind.CONFIG_FILE, name=str(path), desired_spec=SshdLockdownSpec(path=str(path)))


def _account(name="alice", home_root="/home"):
    return ManagedResource(kind=ResourceKind.OS_ACCOUNT, name=name, desired_spec=AccountSpec(public_key=KEY, home_root=home_root))


def _firewall(rule="OpenSSH"):
    return ManagedResource(kind=ResourceKind.FIREWALL_RULE, name=rule, desired_spec=FirewallRuleSpec(rule=rule))


# sshd


def test_apply_directives_pins_values_ahead_of_include():
    out = apply_directives(STOCK_SSHD, LOCKDOWN)

    assert out.startswith("PermitRootLogin no\nPasswordAuthentication no\nInclude ")
    assert "#PermitRootLogin" not in out
    assert "#PasswordAuthentication" not in out
    # Match blocks keep their own settings.
    assert out.endswith("Match User anoncvs\n\tPasswordAuthentication yes\n")


def test_leading_comments_stay_on_top():
    out = apply_directives("# managed host\n\nUsePAM yes\nMatch all\n", {"PermitRootLogin": "no"})
    assert out == "# managed host\n\nPermitRootLogin no\nUsePAM yes\nMatch all\n"


def test_effective_config_keeps_first_value():
    effective = parse_effective_config("permitrootlogin yes\npermitrootlogin no\npasswordauthentication no\n")
    assert effective["permitrootlogin"] == "yes"
    assert not is_locked_down(effective, LOCKDOWN)
    assert is_locked_down({"permitrootlogin": "no", "passwordauthentication": "no"}, LOCKDOWN)


def test_sshd_handler_validates_then_restarts(tmp_path, runner):
    cfg = tmp_path / "sshd_config"
    cfg.write_text(_stock_sshd(tmp_path))
    os.chmod(cfg, 0o644)
    _serve_sshd_dump(runner, cfg)
    rec = Reconciler({ResourceKind.CONFIG_FILE: SshdHandler(runner)})

    assert rec.reconcile(_sshd_resource(cfg)).status is OutcomeStatus.CREATED
    assert runner.calls[0] == ["sshd", "-T", "-f", str(cfg)]
    assert runner.calls[1][:2] == ["sshd", "-t"]
    assert runner.calls[2] == ["systemctl", "restart", "ssh"]
    assert stat.S_IMODE(os.stat(cfg).st_mode) == 0o644

    runner.calls.clear()
    assert rec.reconcile(_sshd_resource(cfg)).status is OutcomeStatus.ALREADY_SATISFIED
    assert runner.calls == [["sshd", "-T", "-f", str(cfg)]]


def test_drop_in_that_enables_passwords_is_overridden(tmp_path, runner):
    dropins = tmp_path / "sshd_config.d"
    dropins.mkdir()
    (dropins / "50-cloud-init.conf").write_text("PasswordAuthentication yes\n")
    cfg = tmp_path / "sshd_config"
    cfg.write_text(f"Include {dropins}/*.conf\nPermitRootLogin no\nPasswordAuthentication no\n")
    _serve_sshd_dump(runner, cfg)
    handler = SshdHandler(runner)

    # The main file alone looks locked down, but the drop-in is read first.
    assert handler.probe(_sshd_resource(cfg)) is ObservedState.ABSENT

    outcome = Reconciler({ResourceKind.CONFIG_FILE: handler}).reconcile(_sshd_resource(cfg))

    assert outcome.status is OutcomeStatus.CREATED
    assert handler.probe(_sshd_resource(cfg)) is ObservedState.PRESENT_RUNNING
    assert (dropins / "50-cloud-init.conf").read_text() == "PasswordAuthentication yes\n"


def test_invalid_sshd_config_is_not_installed(tmp_path, runner):
    cfg = tmp_path / "sshd_config"
    original = _stock_sshd(tmp_path)
    cfg.write_text(original)
    _serve_sshd_dump(runner, cfg)
    runner.run = _failing_on(["sshd", "-t"], runner.run)

    outcome = Reconciler({ResourceKind.CONFIG_FILE: SshdHandler(runner)}).reconcile(_sshd_resource(cfg))

    assert outcome.failed
    assert "Bad configuration option" in outcome.reason
    assert cfg.read_text() == original
    assert sorted(os.listdir(tmp_path)) == ["sshd_config"]
    assert ["systemctl", "restart", "ssh"] not in runner.calls


def _failing_on(prefix, run):
    def wrapped(cmd, check=True, input=None):
        if cmd[: len(prefix)] == prefix:
            raise CommandError(cmd, 255, "Bad configuration option")
        return run(cmd, check=check, input=input)

    return wrapped


# firewall


def test_parse_ufw_output():
    assert parse_active("Status: active\n\nTo   Action  From\n") is True
    assert parse_active("Status: inactive\n") is False
    added = "Added user rules (see 'ufw status' for running firewall):\nufw allow OpenSSH\nufw allow 8069/tcp\n"
    assert parse_added_rules(added) == ["allow OpenSSH", "allow 8069/tcp"]


@pytest.mark.parametrize(
    "added,status,expected",
    [
        ("", "Status: inactive", ObservedState.ABSENT),
        ("ufw allow OpenSSH-extra\n", "Status: active", ObservedState.ABSENT),
        ("ufw allow OpenSSH\n", "Status: inactive", ObservedState.PRESENT_STOPPED),
        ("ufw allow OpenSSH\n", "Status: active", ObservedState.PRESENT_RUNNING),
    ],
)
def test_firewall_probe(runner, added, status, expected):
    runner.set(["ufw", "show", "added"], stdout=added)
    runner.set(["ufw", "status"], stdout=status)
    assert FirewallHandler(runner).probe(_firewall()) is expected


def test_firewall_absent_rule_is_added_and_enabled(runner):
    runner.set(["ufw", "show", "added"], stdout="Added user rules (see 'ufw status' for running firewall):\n")
    outcome = Reconciler({ResourceKind.FIREWALL_RULE: FirewallHandler(runner)}).reconcile(_firewall())

    assert outcome.status is OutcomeStatus.CREATED
    assert runner.calls[-2:] == [["ufw", "allow", "OpenSSH"], ["ufw", "--force", "enable"]]


def test_firewall_inactive_is_only_enabled(runner):
    runner.set(["ufw", "show", "added"], stdout="ufw allow OpenSSH\n")
    runner.set(["ufw", "status"], stdout="Status: inactive\n")
    outcome = Reconciler({ResourceKind.FIREWALL_RULE: FirewallHandler(runner)}).reconcile(_firewall())

    assert outcome.status is OutcomeStatus.STARTED_EXISTING
    assert ["ufw", "allow", "OpenSSH"] not in runner.calls
    assert runner.calls[-1] == ["ufw", "--force", "enable"]


# accounts


def test_account_creation_installs_key_owner_only(tmp_path, runner, monkeypatch):
    monkeypatch.setattr(accounts, "user_exists", lambda name: False)
    outcome = Reconciler({ResourceKind.OS_ACCOUNT: AccountHandler(runner)}).reconcile(_account(home_root=str(tmp_path)))

    assert outcome.status is OutcomeStatus.CREATED
    assert runner.calls[0][0] == "adduser" and runner.calls[0][-1] == "alice"
    assert ["usermod", "-aG", "sudo", "alice"] in runner.calls
    ssh_dir = tmp_path / "alice" / ".ssh"
    assert runner.calls[-1] == ["chown", "-R", "alice:alice", str(ssh_dir)]
    keys = ssh_dir / "authorized_keys"
    assert keys.read_text() == KEY + "\n"
    assert stat.S_IMODE(os.stat(keys).st_mode) == 0o600
    assert stat.S_IMODE(os.stat(ssh_dir).st_mode) == 0o700


def test_home_directory_is_created_under_home_root(tmp_path, runner, monkeypatch):
    monkeypatch.setattr(accounts, "user_exists", lambda name: False)
    home_root = tmp_path / "srv" / "home"
    AccountHandler(runner).create(_account(home_root=str(home_root)))

    home = home_root / "alice"
    assert runner.calls[0] == ["adduser", "--disabled-password", "--gecos", "", "--home", str(home), "--shell", "/bin/bash", "alice"]
    assert (home / ".ssh" / "authorized_keys").read_text() == KEY + "\n"


def test_password_is_set_through_stdin(tmp_path, runner, monkeypatch):
    monkeypatch.setattr(accounts, "user_exists", lambda name: False)
    resource = ManagedResource(
        kind=ResourceKind.OS_ACCOUNT,
        name="alice",
        desired_spec=AccountSpec(public_key=KEY, password="s3cret-pass", home_root=str(tmp_path)),
    )
    AccountHandler(runner).create(resource)

    idx = runner.calls.index(["chpasswd"])
    assert runner.inputs[idx] == "alice:s3cret-pass\n"


def test_existing_account_is_left_untouched(tmp_path, runner, monkeypatch):
    monkeypatch.setattr(accounts, "user_exists", lambda name: True)
    outcome = Reconciler({ResourceKind.OS_ACCOUNT: AccountHandler(runner)}).reconcile(_account(home_root=str(tmp_path)))

    assert outcome.status is OutcomeStatus.ALREADY_SATISFIED
    assert runner.calls == []
    assert not (tmp_path / "alice").exists()


def test_authorized_key_is_not_duplicated(tmp_path):
    ssh_dir = str(tmp_path / ".ssh")
    assert install_authorized_key(ssh_dir, KEY) is True
    assert install_authorized_key(ssh_dir, KEY) is False
    assert (tmp_path / ".ssh" / "authorized_keys").read_text().count(KEY) == 1


@pytest.mark.parametrize("key", ["", "hello", "ssh-rsa", "ssh-ed25519 AAA\nssh-rsa BBB"])
def test_bad_public_keys_are_rejected(key):
    with pytest.raises(ValueError):
        validate_public_key(key)


# full flow


@pytest.fixture
def host(tmp_path, runner, monkeypatch):
    sshd = tmp_path / "sshd_config"
    sshd.write_text(_stock_sshd(tmp_path))
    _serve_sshd_dump(runner, sshd)
    users = set()

    def adduser(cmd, input):
        users.add(cmd[-1])
        return CommandResult(tuple(cmd), 0, "", "")

    monkeypatch.setattr(harden_mod, "require_root", lambda: None)
    monkeypatch.setattr(accounts, "user_exists", lambda name: name in users)
    home = str(tmp_path / "alice")
    runner.responses[("adduser", "--disabled-password", "--gecos", "", "--home", home, "--shell", "/bin/bash", "alice")] = adduser
    return sshd


def test_harden_flow_and_rerun(tmp_path, runner, test_settings, host):
    cfg = replace(test_settings, sshd_config_path=str(host))
    runner.set(["ufw", "show", "added"], stdout="")

    first = harden("alice", KEY, home_root=str(tmp_path), runner=runner, check_network=False, cfg=cfg)
    assert [o.kind for o in first.outcomes] == [ResourceKind.OS_ACCOUNT, ResourceKind.CONFIG_FILE, ResourceKind.FIREWALL_RULE]
    assert all(o.status is OutcomeStatus.CREATED for o in first.outcomes)

    runner.set(["ufw", "show", "added"], stdout="ufw allow OpenSSH\n")
    runner.set(["ufw", "status"], stdout="Status: active\n")
    runner.calls.clear()

    second = harden("alice", KEY, home_root=str(tmp_path), runner=runner, check_network=False, cfg=cfg)
    assert all(o.status is OutcomeStatus.ALREADY_SATISFIED for o in second.outcomes)
    # Only probes on the second run.
    assert {tuple(call[:2]) for call in runner.calls} <= {("sshd", "-T"), ("ufw", "show"), ("ufw", "status")}


def test_harden_rejects_bad_username(tmp_path, runner, test_settings, host):
    with pytest.raises(ProvisionError) as exc:
        harden("Root User", KEY, home_root=str(tmp_path), runner=runner, check_network=False, cfg=test_settings)
    assert exc.value.stage == "input"
    assert runner.calls == []


def test_harden_stops_when_sshd_validation_fails(tmp_path, runner, test_settings, host):
    cfg = replace(test_settings, sshd_config_path=str(host))
    runner.run = _failing_on(["sshd", "-t"], runner.run)

    with pytest.raises(ReconcileFailed) as exc:
        harden("alice", KEY, home_root=str(tmp_path), runner=runner, check_network=False, cfg=cfg)

    assert exc.value.outcome.kind is ResourceKind.CONFIG_FILE
    assert not any(call[0] == "ufw" for call in runner.calls)
