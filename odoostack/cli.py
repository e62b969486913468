from __future__ import annotations

import argparse
import sys

import docker

from .backup import backup_database
from .config import load_config
from .console import log_error
from .errors import ProvisionError
from .harden import harden
from .preflight import require_docker
from .provision import provision
from .settings import settings
from .status import status


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, encoding="utf-8") as fh:
        return fh.read()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="odoostack", description="Provision and inspect a single-host Odoo + PostgreSQL stack")
    p.add_argument("--config", default=settings.config_file, help="Key-value config file (generated on first run)")
    sub = p.add_subparsers(dest="cmd")

    sub.add_parser("provision", help="Create whatever is missing (default)")
    sub.add_parser("status", help="Read-only health report")
    sub.add_parser("backup", help="Dump all databases into BACKUP_PATH")

    s_hard = sub.add_parser("harden", help="First-run server hardening (run as root)")
    s_hard.add_argument("--user", required=True, help="Admin account to create")
    key = s_hard.add_mutually_exclusive_group(required=True)
    key.add_argument("--pubkey", help="SSH public key line")
    key.add_argument("--pubkey-file", help="File holding the SSH public key ('-' for stdin)")
    s_hard.add_argument("--password-file", help="File holding the account password ('-' for stdin)")
    s_hard.add_argument("--home-root", default="/home")
    s_hard.add_argument("--skip-network-check", action="store_true")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    cmd = args.cmd or "provision"

    try:
        if cmd == "provision":
            provision(args.config)
            return 0

        if cmd == "status":
            status(args.config)
            return 0

        if cmd == "backup":
            setup = load_config(args.config)
            require_docker()
            backup_database(setup, docker.from_env())
            return 0

        if cmd == "harden":
            public_key = args.pubkey if args.pubkey else _read_text(args.pubkey_file)
            password = _read_text(args.password_file).rstrip("\n") if args.password_file else None
            harden(
                args.user,
                public_key,
                password=password,
                home_root=args.home_root,
                check_network=not args.skip_network_check,
            )
            return 0
    except ProvisionError as e:
        log_error(f"Failed at stage '{e.stage}': {e}. Aborting.")
        return 1
    except OSError as e:
        log_error(f"Failed: {e}. Aborting.")
        return 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
