from __future__ import annotations

import os

import docker
import httpx

from .console import log_info, log_success, log_warning
from .docker_ops import docker_available
from .errors import PreconditionError
from .system import CommandRunner, add_user_to_group


def check_ubuntu(os_release_path: str = "/etc/os-release") -> None:
    try:
        with open(os_release_path, encoding="utf-8") as fh:
            text = fh.read()
    except OSError:
        raise PreconditionError(f"Cannot read {os_release_path}; this tool is intended for Ubuntu only.") from None
    if "Ubuntu" not in text:
        raise PreconditionError("This tool is intended for Ubuntu only.")


def total_memory_gb(meminfo_path: str = "/proc/meminfo") -> float | None:
    try:
        with open(meminfo_path, encoding="utf-8") as fh:
            for line in fh:
                if line.startswith("MemTotal:"):
                    return int(line.split()[1]) / (1024 * 1024)
    except (OSError, ValueError, IndexError):
        return None
    return None


def check_memory(min_gb: int, meminfo_path: str = "/proc/meminfo") -> bool:
    """Warn (never fail) when the host has less memory than Odoo wants."""
    total = total_memory_gb(meminfo_path)
    if total is not None and total < min_gb:
        log_warning(f"Less than {min_gb}GB of RAM detected ({total:.1f}GB). Odoo may run slowly.")
        return False
    return True


def require_docker(client: docker.DockerClient | None = None) -> None:
    if not docker_available(client):
        raise PreconditionError("Docker is not available. Start it with 'sudo systemctl start docker' and try again.")


def require_root() -> None:
    if os.geteuid() != 0:
        raise PreconditionError("This command must be run as root. Please use 'sudo'.")


def check_connectivity(url: str, timeout_s: float = 5.0) -> None:
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=False) as client:
            client.head(url)
    except httpx.HTTPError as e:
        raise PreconditionError(f"No internet connection ({type(e).__name__}). Please check your network settings.") from None


def ensure_docker_group(runner: CommandRunner, username: str | None) -> bool:
    """Let ``username`` use docker without sudo. Soft step: returns True when it was added."""
    if not username or username == "root":
        return False
    log_info("Checking Docker group permissions...")
    added = add_user_to_group(runner, username, "docker", sudo=os.geteuid() != 0)
    if added:
        log_warning(f"Added '{username}' to the 'docker' group. Log out and back in for it to take effect.")
    else:
        log_info(f"User '{username}' is already in the docker group.")
    log_success("User permissions for Docker are set.")
    return added
