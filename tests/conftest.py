from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path

import pytest

from git_standalone_builder.config import BuildConfig
from git_standalone_builder.core.exceptions import ProcessFailed

# Minimal ELF header followed by filler; enough for the magic-number check.
FAKE_ELF = b"\x7fELF\x02\x01\x01" + b"\x00" * 57 + b"fake-binary"

Handler = Callable[[str, Path, Mapping[str, str] | None], str]


class FakeRunner:
    """Records commands and dispatches them to handlers matched by substring."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Path, dict[str, str] | None]] = []
        self.handlers: list[tuple[str, Handler]] = []
        self.failures: dict[str, tuple[int, str]] = {}

    def on(self, fragment: str, handler: Handler) -> None:
        self.handlers.append((fragment, handler))

    def fail(self, fragment: str, returncode: int = 1, output: str = "boom") -> None:
        self.failures[fragment] = (returncode, output)

    def commands(self) -> list[str]:
        return [c for c, _, _ in self.calls]

    async def run(self, command: str, cwd: Path, env: Mapping[str, str] | None = None) -> str:
        self.calls.append((command, Path(cwd), dict(env) if env is not None else None))
        for fragment, (returncode, output) in self.failures.items():
            if fragment in command:
                raise ProcessFailed(command, returncode, output)
        for fragment, handler in self.handlers:
            if fragment in command:
                return handler(command, Path(cwd), env)
        return ""


def write_executable(path: Path, content: bytes = FAKE_ELF) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    path.chmod(0o755)
    return path


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def config() -> BuildConfig:
    return BuildConfig(jobs=4, use_sudo=False)


@pytest.fixture
def write_exe() -> Callable[..., Path]:
    return write_executable


@pytest.fixture
def elf_bytes() -> bytes:
    return FAKE_ELF
