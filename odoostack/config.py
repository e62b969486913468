"""Key-value deployment configuration (``setup.conf``).

The file is generated once with random credentials and is the single source
of names, ports, paths and passwords for a run. Later runs load it as-is.
"""
from __future__ import annotations

import os
import re
import secrets
import shlex

from pydantic import BaseModel, Field, ValidationError, field_validator

from .docker_ops import validate_container_name
from .errors import ConfigError
from .files import write_new_file

_LINE_RE = re.compile(r"^\s*(?:export\s+)?([A-Z_][A-Z0-9_]*)\s*=\s*(.*)$")
_VAR_RE = re.compile(r"\$(?:\{([A-Za-z_][A-Za-z0-9_]*)\}|([A-Za-z_][A-Za-z0-9_]*))")


class SetupConfig(BaseModel):
    odoo_version: str = Field("16.0", description="Odoo image tag")
    postgres_version: str = Field("15", description="PostgreSQL image tag")
    odoo_container_name: str = "odoo"
    db_container_name: str = "db"
    db_user: str = "odoo"
    db_password: str = Field(..., min_length=8)
    odoo_master_password: str = Field(..., min_length=8)
    odoo_port: int = Field(8069, ge=1, le=65535)
    odoo_network: str = "odoo-net"

    base_path: str
    odoo_addons_path: str
    odoo_config_path: str
    db_data_path: str
    backup_path: str

    deploy_mode: str = Field("containers", description="containers|compose")
    compose_project: str = "odoo"
    odoo_uid: int | None = Field(101, description="uid of the odoo user inside the image")

    @field_validator("odoo_container_name", "db_container_name", "odoo_network", "compose_project")
    @classmethod
    def _dns_safe(cls, v: str) -> str:
        validate_container_name(v)
        return v

    @field_validator("odoo_uid", mode="before")
    @classmethod
    def _blank_uid(cls, v: object) -> object:
        return None if v == "" else v

    @field_validator("deploy_mode")
    @classmethod
    def _known_mode(cls, v: str) -> str:
        if v not in {"containers", "compose"}:
            raise ValueError("DEPLOY_MODE must be 'containers' or 'compose'.")
        return v

    @property
    def odoo_config_file(self) -> str:
        return os.path.join(self.odoo_config_path, "odoo.conf")

    @property
    def compose_file(self) -> str:
        return os.path.join(self.base_path, "docker-compose.yml")

    @property
    def odoo_image(self) -> str:
        return f"odoo:{self.odoo_version}"

    @property
    def postgres_image(self) -> str:
        return f"postgres:{self.postgres_version}"

    @property
    def data_paths(self) -> list[str]:
        return [self.odoo_addons_path, self.odoo_config_path, self.db_data_path, self.backup_path]


def generate_password(nbytes: int = 24) -> str:
    return secrets.token_urlsafe(nbytes)


def default_config_text() -> str:
    return f"""# --- Configuration Variables ---
# Feel free to change these values to match your requirements.
# Passwords below were generated randomly on first run.

ODOO_VERSION="16.0"                 # The version of Odoo to install.
POSTGRES_VERSION="15"               # The PostgreSQL image tag.
ODOO_CONTAINER_NAME="odoo"          # The name for the Odoo Docker container.
DB_CONTAINER_NAME="db"              # The name for the PostgreSQL Docker container.
DB_USER="odoo"                      # The PostgreSQL user for Odoo.
DB_PASSWORD="{generate_password()}"
ODOO_MASTER_PASSWORD="{generate_password()}"
ODOO_PORT="8069"                    # The port on which Odoo will be accessible.
ODOO_NETWORK="odoo-net"             # The name for the dedicated Docker network.
DEPLOY_MODE="containers"            # containers | compose
COMPOSE_PROJECT="odoo"              # Project name used in compose mode.
ODOO_UID="101"                      # uid of the odoo user inside the image.

# --- Paths ---
BASE_PATH="$HOME/odoo-data"
ODOO_ADDONS_PATH="$BASE_PATH/addons"
ODOO_CONFIG_PATH="$BASE_PATH/config"
DB_DATA_PATH="$BASE_PATH/postgres"
BACKUP_PATH="$BASE_PATH/backups"
"""


def parse_config_text(text: str, environ: dict[str, str] | None = None) -> dict[str, str]:
    """Parse ``KEY="value"  # comment`` lines.

    ``$VAR`` / ``${VAR}`` refer to keys defined earlier in the file, then to
    the environment (``$HOME``). Unknown variables expand to an empty string.
    """
    env = dict(os.environ if environ is None else environ)
    values: dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        m = _LINE_RE.match(line)
        if not m:
            raise ValueError(f"line {lineno}: expected KEY=value, got {line.strip()!r}")
        key, raw = m.groups()
        try:
            parts = shlex.split(raw, comments=True)
        except ValueError as e:
            raise ValueError(f"line {lineno}: {e}") from None
        value = parts[0] if parts else ""

        def _expand(vm: re.Match[str]) -> str:
            name = vm.group(1) or vm.group(2)
            return values.get(name, env.get(name, ""))

        values[key] = _VAR_RE.sub(_expand, value)
    return values


def config_from_values(values: dict[str, str]) -> SetupConfig:
    return SetupConfig(**{k.lower(): v for k, v in values.items() if k.lower() in SetupConfig.model_fields})


def load_config(path: str, environ: dict[str, str] | None = None) -> SetupConfig:
    try:
        with open(path, encoding="utf-8") as fh:
            values = parse_config_text(fh.read(), environ)
        return config_from_values(values)
    except ValidationError as e:
        raise ConfigError(f"{path}: {e.error_count()} invalid setting(s)\n{e}") from None
    except (OSError, ValueError) as e:
        raise ConfigError(f"{path}: {e}") from None


def load_or_create(path: str, environ: dict[str, str] | None = None) -> tuple[SetupConfig, bool]:
    """Load ``path``, generating it (0600) first when missing.

    Returns (config, created).
    """
    created = False
    if not os.path.exists(path):
        try:
            write_new_file(path, default_config_text(), sensitive=True)
        except OSError as e:
            raise ConfigError(f"{path}: {e}") from None
        created = True
    return load_config(path, environ), created
