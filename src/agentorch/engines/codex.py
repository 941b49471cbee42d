"""Codex CLI engine adapter."""

from __future__ import annotations

import os
import re

from agentorch.engines.base import CommandSpec, EngineBase


class CodexEngine(EngineBase):
    name = "codex"
    binary = "codex"
    description = "Codex CLI (an AI coding assistant that executes commands in a sandboxed environment)"
    install_hint = "Make sure 'codex' is in your PATH."

    def build_cmd(self, prompt: str, folder: str) -> CommandSpec:
        # codex takes its working root from -C, so launch from our own cwd.
        return CommandSpec(
            cmd=[self.resolve_binary(), "exec", "-C", folder, prompt],
            cwd=os.getcwd(),
        )

    def parse_version(self, raw: str) -> str | None:
        # e.g. "codex-cli 0.73.0"
        match = re.search(r"codex(?:-cli)?\s*([\d.]+)", raw, re.IGNORECASE)
        if match:
            return match.group(1)
        return super().parse_version(raw)
