from __future__ import annotations

import grp
import pwd
import subprocess
from dataclasses import dataclass

from .errors import CommandError


@dataclass(frozen=True)
class CommandResult:
    cmd: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Blocking subprocess wrapper; the only place host commands are executed."""

    def run(self, cmd: list[str], check: bool = True, input: str | None = None) -> CommandResult:
        try:
            proc = subprocess.run(cmd, input=input, capture_output=True, text=True)
        except FileNotFoundError:
            raise CommandError(cmd, 127, f"{cmd[0]}: command not found") from None
        result = CommandResult(tuple(cmd), proc.returncode, proc.stdout or "", proc.stderr or "")
        if check and not result.ok:
            raise CommandError(cmd, result.returncode, result.stderr or result.stdout)
        return result


def service_active(runner: CommandRunner, service: str) -> bool:
    return runner.run(["systemctl", "is-active", "--quiet", service], check=False).ok


def user_exists(username: str) -> bool:
    try:
        pwd.getpwnam(username)
    except KeyError:
        return False
    return True


def user_in_group(username: str, group: str) -> bool:
    """Exact membership check: supplementary members or primary group."""
    try:
        g = grp.getgrnam(group)
    except KeyError:
        return False
    if username in g.gr_mem:
        return True
    try:
        return pwd.getpwnam(username).pw_gid == g.gr_gid
    except KeyError:
        return False


def add_user_to_group(runner: CommandRunner, username: str, group: str, sudo: bool = False) -> bool:
    """Add ``username`` to ``group``; returns False when it already is a member."""
    if user_in_group(username, group):
        return False
    cmd = ["usermod", "-aG", group, username]
    runner.run(["sudo", *cmd] if sudo else cmd)
    return True
