from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Callable

import pytest

from odoostack import journal
from odoostack.config import SetupConfig
from odoostack.errors import CommandError
from odoostack.settings import Settings
from odoostack.system import CommandResult, CommandRunner


class FakeContainer:
    def __init__(self, name: str, image: str, status: str = "running", labels: dict[str, str] | None = None, logs: bytes = b""):
        self.id = f"id-{name}"
        self.name = name
        self.status = status
        self.labels = labels or {}
        self.image = SimpleNamespace(tags=[image])
        self._logs = logs
        self.start_calls = 0

    def reload(self) -> None:
        pass

    def start(self) -> None:
        self.start_calls += 1
        self.status = "running"

    def unpause(self) -> None:
        self.status = "running"

    def logs(self, tail: int = 200, stdout: bool = True, stderr: bool = True) -> bytes:
        return self._logs


class FakeContainers:
    def __init__(self) -> None:
        self.items: dict[str, FakeContainer] = {}
        self.run_calls: list[dict[str, Any]] = []
        self.run_status = "running"

    def add(self, name: str, image: str = "odoo:16.0", status: str = "running", **kwargs: Any) -> FakeContainer:
        c = FakeContainer(name, image, status, **kwargs)
        self.items[name] = c
        return c

    def list(self, all: bool = False, filters: dict[str, Any] | None = None) -> list[FakeContainer]:
        filters = filters or {}
        found = list(self.items.values())
        if "name" in filters:
            # The daemon matches names as substrings.
            found = [c for c in found if filters["name"] in c.name]
        if "label" in filters:
            key, _, value = filters["label"].partition("=")
            found = [c for c in found if c.labels.get(key) == value]
        if not all:
            found = [c for c in found if c.status == "running"]
        return found

    def run(self, image: str, **kwargs: Any) -> FakeContainer:
        self.run_calls.append({"image": image, **kwargs})
        return self.add(kwargs["name"], image, self.run_status)


class FakeNetworks:
    def __init__(self) -> None:
        self.items: dict[str, SimpleNamespace] = {}
        self.create_calls: list[tuple[str, str]] = []

    def list(self, names: list[str] | None = None) -> list[SimpleNamespace]:
        found = list(self.items.values())
        if names:
            found = [n for n in found if any(x in n.name for x in names)]
        return found

    def create(self, name: str, driver: str = "bridge") -> SimpleNamespace:
        self.create_calls.append((name, driver))
        net = SimpleNamespace(name=name, driver=driver)
        self.items[name] = net
        return net


class FakeDockerClient:
    def __init__(self) -> None:
        self.containers = FakeContainers()
        self.networks = FakeNetworks()
        self.api = SimpleNamespace()

    def ping(self) -> bool:
        return True


Responder = Callable[[list[str], "str | None"], CommandResult]


class FakeRunner(CommandRunner):
    """Records commands; answers from ``responses`` keyed by the full command tuple."""

    def __init__(self, responses: dict[tuple[str, ...], CommandResult | Responder] | None = None):
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []
        self.responses = dict(responses or {})

    def set(self, cmd: list[str], stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        self.responses[tuple(cmd)] = CommandResult(tuple(cmd), returncode, stdout, stderr)

    def run(self, cmd: list[str], check: bool = True, input: str | None = None) -> CommandResult:
        self.calls.append(list(cmd))
        self.inputs.append(input)
        resp = self.responses.get(tuple(cmd))
        if callable(resp):
            result = resp(cmd, input)
        elif resp is not None:
            result = resp
        else:
            result = CommandResult(tuple(cmd), 0, "", "")
        if check and not result.ok:
            raise CommandError(cmd, result.returncode, result.stderr or result.stdout)
        return result


@pytest.fixture(autouse=True)
def isolated_journal(tmp_path, monkeypatch):
    path = tmp_path / "journal" / "odoostack.db"
    monkeypatch.setattr(journal, "settings", Settings(journal_path=str(path)))
    return path


@pytest.fixture
def fake_client() -> FakeDockerClient:
    return FakeDockerClient()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    os_release = tmp_path / "os-release"
    os_release.write_text('NAME="Ubuntu"\nVERSION_ID="22.04"\n')
    return Settings(
        config_file=str(tmp_path / "setup.conf"),
        journal_path=str(tmp_path / "journal" / "odoostack.db"),
        os_release_path=str(os_release),
        min_memory_gb=0,
        manage_docker_group=False,
        enable_email=False,
    )


@pytest.fixture
def setup_config(tmp_path) -> SetupConfig:
    base = tmp_path / "odoo-data"
    return SetupConfig(
        db_password="db-secret-123",
        odoo_master_password="master-secret-123",
        base_path=str(base),
        odoo_addons_path=str(base / "addons"),
        odoo_config_path=str(base / "config"),
        db_data_path=str(base / "postgres"),
        backup_path=str(base / "backups"),
        odoo_uid=None,
    )
