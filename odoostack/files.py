from __future__ import annotations

import os

from .console import log_warning
from .models import FileSpec, ManagedResource, ObservedState, spec_as

OWNER_ONLY_FILE = 0o600
OWNER_ONLY_DIR = 0o700
DEFAULT_FILE = 0o644


def write_new_file(path: str, content: str, sensitive: bool = False) -> None:
    """Create ``path`` with ``content``; fails if it already exists.

    Sensitive files are created 0600 from the start, so there is no window
    in which they are readable by group or others.
    """
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    mode = OWNER_ONLY_FILE if sensitive else DEFAULT_FILE
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        # The umask may have cleared bits; set the exact mode.
        os.fchmod(fh.fileno(), mode)
        fh.write(content)


def make_private_dir(path: str) -> None:
    os.makedirs(path, mode=OWNER_ONLY_DIR, exist_ok=True)
    os.chmod(path, OWNER_ONLY_DIR)


class FileHandler:
    """Write-once file artifacts and data directories.

    Present files are never rewritten, even when the desired content has
    changed since they were generated.
    """

    def probe(self, resource: ManagedResource) -> ObservedState:
        spec = spec_as(resource, FileSpec)
        if not os.path.lexists(spec.path):
            return ObservedState.ABSENT
        if spec.directory and not os.path.isdir(spec.path):
            raise NotADirectoryError(f"{spec.path} exists but is not a directory")
        return ObservedState.PRESENT_RUNNING

    def create(self, resource: ManagedResource) -> None:
        spec = spec_as(resource, FileSpec)
        if spec.directory:
            make_private_dir(spec.path)
        else:
            write_new_file(spec.path, spec.content, sensitive=spec.sensitive)
        if spec.owner_uid is not None:
            try:
                os.chown(spec.path, spec.owner_uid, -1)
            except PermissionError:
                log_warning(f"Could not hand {spec.path} to uid {spec.owner_uid}; run as root so the container can read it.")

    def start(self, resource: ManagedResource) -> None:
        raise RuntimeError("file artifacts have no stopped state")
