from __future__ import annotations

import gzip
import os
from datetime import datetime

import docker

from . import journal
from .config import SetupConfig
from .console import log_info, log_success
from .docker_ops import find_container
from .errors import CommandError, PreconditionError
from .files import OWNER_ONLY_FILE, make_private_dir


def backup_path_for(setup: SetupConfig, now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return os.path.join(setup.backup_path, f"dump_{stamp}.sql.gz")


def backup_database(setup: SetupConfig, client: docker.DockerClient, now: datetime | None = None) -> str:
    """Stream ``pg_dumpall`` from the db container into a gzip file (0600).

    A partial file is removed when the dump fails.
    """
    container = find_container(client, setup.db_container_name)
    if container is None or container.status != "running":
        raise PreconditionError(f"Database container '{setup.db_container_name}' is not running.", stage="backup")

    make_private_dir(setup.backup_path)
    target = backup_path_for(setup, now)
    cmd = ["pg_dumpall", "-U", setup.db_user]
    log_info(f"Backing up Odoo database to {target}...")

    exec_id = client.api.exec_create(container.id, cmd, stdout=True, stderr=True)["Id"]
    stderr_chunks: list[bytes] = []
    fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL, OWNER_ONLY_FILE)
    try:
        with os.fdopen(fd, "wb") as raw, gzip.GzipFile(fileobj=raw, mode="wb") as gz:
            for out, err in client.api.exec_start(exec_id, stream=True, demux=True):
                if out:
                    gz.write(out)
                if err:
                    stderr_chunks.append(err)
        exit_code = client.api.exec_inspect(exec_id).get("ExitCode")
        if exit_code != 0:
            raise CommandError(cmd, exit_code if exit_code is not None else -1, b"".join(stderr_chunks).decode("utf-8", "replace"))
    except BaseException:
        os.unlink(target)
        raise

    journal.init_db()
    journal.log_event("INFO", f"Backup written to {target}", resource=f"container {setup.db_container_name}")
    log_success("Backup complete!")
    return target
