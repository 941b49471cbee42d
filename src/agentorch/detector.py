"""Probe which agent CLIs and local model services are installed."""

from __future__ import annotations

import asyncio
import re
import subprocess
from dataclasses import asdict, dataclass, field
from typing import Any

from agentorch import log
from agentorch.config import DEFAULT_OLLAMA_URL
from agentorch.engines.base import EngineBase
from agentorch.engines.registry import all_engines
from agentorch.ollama import fetch_models

VERSION_TIMEOUT = 10


@dataclass
class AgentInfo:
    name: str
    command: str
    installed: bool = False
    version: str | None = None


@dataclass
class OllamaModel:
    name: str
    size: int = 0
    modified_at: str = ""


@dataclass
class OllamaInfo:
    available: bool = False
    version: str | None = None
    models: list[OllamaModel] = field(default_factory=list)


@dataclass
class DetectionResult:
    agents: list[AgentInfo] = field(default_factory=list)
    ollama: OllamaInfo = field(default_factory=OllamaInfo)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _run_version(cmd: list[str]) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=VERSION_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None


def detect_agent(engine: EngineBase) -> AgentInfo:
    info = AgentInfo(name=engine.name, command=engine.binary)
    proc = _run_version(engine.version_cmd())
    if proc is None or proc.returncode != 0:
        return info
    info.installed = True
    info.version = engine.parse_version(proc.stdout or "")
    return info


def detect_ollama(base_url: str = DEFAULT_OLLAMA_URL) -> OllamaInfo:
    proc = _run_version(["ollama", "--version"])
    if proc is None:
        return OllamaInfo()

    # e.g. "ollama version is 0.13.3"
    match = re.search(r"(\d+\.\d+\.\d+)", proc.stdout or "")
    models = [
        OllamaModel(
            name=str(m["name"]),
            size=int(m.get("size") or 0),
            modified_at=str(m.get("modified_at") or ""),
        )
        for m in fetch_models(base_url)
    ]
    return OllamaInfo(available=True, version=match.group(1) if match else None, models=models)


def detect_all(base_url: str = DEFAULT_OLLAMA_URL) -> DetectionResult:
    result = DetectionResult(
        agents=[detect_agent(engine) for engine in all_engines()],
        ollama=detect_ollama(base_url),
    )
    found = [a.name for a in result.agents if a.installed]
    log.debug(f"Detected agents: {', '.join(found) or 'none'}; ollama={result.ollama.available}")
    return result


async def detect_agents(base_url: str = DEFAULT_OLLAMA_URL) -> DetectionResult:
    """Run every probe concurrently without blocking the event loop."""
    engines = all_engines()
    probes = [asyncio.to_thread(detect_agent, engine) for engine in engines]
    agents_and_ollama = await asyncio.gather(*probes, asyncio.to_thread(detect_ollama, base_url))
    *agents, ollama = agents_and_ollama
    return DetectionResult(agents=list(agents), ollama=ollama)
