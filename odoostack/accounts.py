from __future__ import annotations

import os
import re

from .files import OWNER_ONLY_FILE, make_private_dir, write_new_file
from .models import AccountSpec, ManagedResource, ObservedState, spec_as
from .system import CommandRunner, user_exists

USERNAME_RE = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")
KEY_TYPES = (
    "ssh-rsa",
    "ssh-ed25519",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "sk-ssh-ed25519@openssh.com",
    "sk-ecdsa-sha2-nistp256@openssh.com",
)


def validate_username(name: str) -> None:
    if not USERNAME_RE.match(name):
        raise ValueError("Invalid username. Use lowercase letters, digits, '_' and '-', starting with a letter (max 32 chars).")


def validate_public_key(key: str) -> str:
    key = key.strip()
    if "\n" in key:
        raise ValueError("Expected a single SSH public key line.")
    parts = key.split()
    if len(parts) < 2 or parts[0] not in KEY_TYPES:
        raise ValueError(f"Not an SSH public key (expected one of: {', '.join(KEY_TYPES)}).")
    return key


def install_authorized_key(ssh_dir: str, key: str) -> bool:
    """Add ``key`` to ``ssh_dir/authorized_keys``; returns False if it was already there."""
    make_private_dir(ssh_dir)
    path = os.path.join(ssh_dir, "authorized_keys")
    if not os.path.exists(path):
        write_new_file(path, key + "\n", sensitive=True)
        return True
    with open(path, encoding="utf-8") as fh:
        existing = fh.read()
    if key in (line.strip() for line in existing.splitlines()):
        os.chmod(path, OWNER_ONLY_FILE)
        return False
    with open(path, "a", encoding="utf-8") as fh:
        if existing and not existing.endswith("\n"):
            fh.write("\n")
        fh.write(key + "\n")
    os.chmod(path, OWNER_ONLY_FILE)
    return True


class AccountHandler:
    """Administrative login accounts with SSH key access.

    An existing account is left alone: no group or key changes are applied.
    """

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def probe(self, resource: ManagedResource) -> ObservedState:
        spec_as(resource, AccountSpec)
        if user_exists(resource.name):
            return ObservedState.PRESENT_RUNNING
        return ObservedState.ABSENT

    def create(self, resource: ManagedResource) -> None:
        spec = spec_as(resource, AccountSpec)
        name = resource.name
        validate_username(name)
        key = validate_public_key(spec.public_key)

        home = os.path.join(spec.home_root, name)
        self.runner.run(["adduser", "--disabled-password", "--gecos", "", "--home", home, "--shell", spec.shell, name])
        if spec.password:
            self.runner.run(["chpasswd"], input=f"{name}:{spec.password}\n")
        self.runner.run(["usermod", "-aG", spec.admin_group, name])

        ssh_dir = os.path.join(home, ".ssh")
        install_authorized_key(ssh_dir, key)
        self.runner.run(["chown", "-R", f"{name}:{name}", ssh_dir])

    def start(self, resource: ManagedResource) -> None:
        raise RuntimeError("accounts have no stopped state")
