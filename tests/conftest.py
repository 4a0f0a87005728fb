"""
Pytest configuration and fixtures for deploy agent tests.
"""

import io
import tarfile
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from deploy_agent.deploy.stack import StackController


TRIGGER_SECRET = "S1"
SOURCE_SECRET = "upstream-secret"


@pytest.fixture(autouse=True)
def isolate_settings_env(monkeypatch):
    """Keep host environment variables out of Settings() in tests."""
    for name in (
        "HOST",
        "PORT",
        "CONFIG_DIR",
        "DOCKER_BINARY",
        "FETCH_TIMEOUT_SECONDS",
        "COMMAND_TIMEOUT_SECONDS",
        "LOG_LEVEL",
        "LOG_FORMAT",
        "METRICS_ENABLED",
        "METRICS_PORT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def deploy_dir(tmp_path: Path) -> Path:
    return tmp_path / "srv" / "app"


@pytest.fixture
def config_dir(tmp_path: Path, deploy_dir: Path) -> Path:
    """Credential directory pointing at ``deploy_dir``; values padded like hand-edited files."""
    d = tmp_path / "config"
    d.mkdir()
    (d / "source_location").write_text(f"{deploy_dir}\n")
    (d / "source_server").write_text("source.local:8080\n")
    (d / "source_password").write_text(f"  {SOURCE_SECRET}\n")
    (d / "orchestrator_password").write_text(f"{TRIGGER_SECRET}\n")
    return d


Entry = Tuple[str, int, Optional[bytes]]


def build_tar(entries: List[Entry], mode: str = "w") -> bytes:
    """Build a tar archive; an entry with ``None`` content is a directory."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode=mode) as tar:
        for name, perm, content in entries:
            info = tarfile.TarInfo(name)
            info.mode = perm
            if content is None:
                info.type = tarfile.DIRTYPE
                tar.addfile(info)
            else:
                info.size = len(content)
                tar.addfile(info, io.BytesIO(content))
    return buf.getvalue()


@pytest.fixture
def make_tar() -> Callable[..., bytes]:
    return build_tar


class FakeStackController(StackController):
    """Records calls instead of running docker."""

    def __init__(self, workdir: Path, calls: List[str], failures: Optional[Dict[str, Exception]] = None):
        self.workdir = workdir
        self.calls = calls
        self.failures = failures or {}

    def rebuild_and_restart(self) -> None:
        self.calls.append("rebuild_and_restart")
        if "rebuild_and_restart" in self.failures:
            raise self.failures["rebuild_and_restart"]

    def prune_unused(self) -> None:
        self.calls.append("prune_unused")
        if "prune_unused" in self.failures:
            raise self.failures["prune_unused"]


@pytest.fixture
def stack_calls() -> List[str]:
    return []


@pytest.fixture
def stack_failures() -> Dict[str, Exception]:
    return {}


@pytest.fixture
def controller_factory(stack_calls, stack_failures):
    """Controller factory recording into ``stack_calls``; set ``stack_failures`` to make steps fail."""
    workdirs: List[Path] = []

    def factory(workdir: Path) -> FakeStackController:
        workdirs.append(workdir)
        return FakeStackController(workdir, stack_calls, stack_failures)

    factory.workdirs = workdirs
    return factory


@pytest.fixture
def fetch_calls() -> List[dict]:
    return []


@pytest.fixture
def fake_fetcher(fetch_calls):
    """Fetcher writing a two-entry tree without any network."""

    def fetcher(dest: Path, server_address: str, server_secret: str, *, timeout=None) -> int:
        fetch_calls.append(
            {"dest": dest, "server_address": server_address, "server_secret": server_secret, "timeout": timeout}
        )
        (dest / "app").mkdir(parents=True)
        (dest / "app" / "main.sh").write_text("echo hi")
        return 2

    return fetcher
