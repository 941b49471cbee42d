"""Base class for AI agent CLI adapters."""

from __future__ import annotations

import os
import re
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class CommandSpec:
    """A resolved command line and the directory to launch it from."""

    cmd: list[str]
    cwd: str
    env: dict[str, str] = field(default_factory=dict)

    def full_env(self) -> dict[str, str]:
        """Inherited environment plus overrides. Agents must never prompt interactively."""
        env = dict(os.environ)
        env["CI"] = "true"
        env.update(self.env)
        return env


class EngineBase(ABC):
    """Abstract agent adapter.  Subclasses implement ``build_cmd``."""

    name: str = "base"
    binary: str = ""
    description: str = ""
    install_hint: str = ""

    @abstractmethod
    def build_cmd(self, prompt: str, folder: str) -> CommandSpec:
        """Return the command for running *prompt* against *folder*."""
        ...

    def resolve_binary(self) -> str:
        # Use resolved path so subprocess gets an absolute path; on some platforms
        # (e.g. Windows with pipx) the child process resolves PATH differently.
        return shutil.which(self.binary) or self.binary

    def check_available(self) -> str | None:
        """Return an error message if the agent CLI is not available, else None."""
        if not shutil.which(self.binary):
            return f"{self.binary} not found in PATH. {self.install_hint}".strip()
        return None

    def version_cmd(self) -> list[str]:
        return [self.binary, "--version"]

    def parse_version(self, raw: str) -> str | None:
        """Pull a version string out of ``--version`` output."""
        match = re.search(r"(\d+\.\d+(?:\.\d+)?)", raw)
        if match:
            return match.group(1)
        first = raw.strip().splitlines()
        return first[0] if first else None
