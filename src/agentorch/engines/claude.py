"""Claude Code engine adapter."""

from __future__ import annotations

import re

from agentorch.engines.base import CommandSpec, EngineBase


class ClaudeEngine(EngineBase):
    name = "claude"
    binary = "claude"
    description = "Claude Code (an AI coding assistant that can read files, edit code, and run commands)"
    install_hint = "Install from https://github.com/anthropics/claude-code"

    def build_cmd(self, prompt: str, folder: str) -> CommandSpec:
        # -p runs non-interactively; claude works on its current directory.
        return CommandSpec(cmd=[self.resolve_binary(), "-p", prompt], cwd=folder)

    def parse_version(self, raw: str) -> str | None:
        # e.g. "2.0.71 (Claude Code)"
        match = re.match(r"^\s*([\d.]+)", raw)
        if match:
            return match.group(1)
        return super().parse_version(raw)
