"""Client for the local Ollama service used to enhance prompts."""

from __future__ import annotations

import json
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from agentorch import log
from agentorch.config import DEFAULT_OLLAMA_URL
from agentorch.engines.registry import get_engine
from agentorch.errors import ServiceError, ServiceUnavailable

ENHANCEMENT_SYSTEM_PROMPT = """You are a prompt engineering assistant for AI coding agents.
Transform brief task descriptions into detailed, actionable prompts.

Rules:
1. State the objective clearly
2. Provide context about what to look for
3. Specify expected outputs (code, explanations, tests)
4. Include relevant best practices
5. Keep it focused and actionable
6. Return ONLY the enhanced prompt, no preamble or explanation"""

GENERATE_TIMEOUT = 120
TAGS_TIMEOUT = 3


def build_enhancement_prompt(prompt: str, agent: str) -> str:
    agent_context = get_engine(agent).description
    return f"""{ENHANCEMENT_SYSTEM_PROMPT}

Target agent: {agent_context}

User's brief task description:
"{prompt}"

Enhanced prompt:"""


def _get_json(url: str, *, timeout: float) -> Any:
    with urlopen(url, timeout=timeout) as resp:
        return json.loads(resp.read().decode("utf-8"))


def enhance_prompt(
    model: str,
    prompt: str,
    agent: str,
    base_url: str = DEFAULT_OLLAMA_URL,
    *,
    timeout: float = GENERATE_TIMEOUT,
) -> str:
    """Ask *model* to rewrite *prompt* for *agent*. Blocking; run it in a thread."""
    body = json.dumps(
        {
            "model": model,
            "prompt": build_enhancement_prompt(prompt, agent),
            "stream": False,
        }
    ).encode("utf-8")
    req = Request(
        f"{base_url.rstrip('/')}/api/generate",
        data=body,
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    log.debug(f"Enhancing prompt with {model} ({len(prompt)} chars)")
    try:
        with urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except HTTPError as exc:
        raise ServiceError(f"Ollama API error: {exc.code}") from exc
    except (URLError, OSError) as exc:
        raise ServiceUnavailable(f"Ollama is not reachable at {base_url}: {exc}") from exc

    try:
        data = json.loads(raw)
        enhanced = data["response"]
    except (json.JSONDecodeError, KeyError, TypeError) as exc:
        raise ServiceError("Ollama returned an unexpected response") from exc
    if not isinstance(enhanced, str):
        raise ServiceError("Ollama returned an unexpected response")
    return enhanced.strip()


def fetch_models(base_url: str = DEFAULT_OLLAMA_URL) -> list[dict[str, Any]]:
    """Return the raw model entries from ``/api/tags``, or ``[]`` if unavailable."""
    try:
        data = _get_json(f"{base_url.rstrip('/')}/api/tags", timeout=TAGS_TIMEOUT)
    except (URLError, OSError, json.JSONDecodeError, UnicodeDecodeError):
        return []
    models = data.get("models") if isinstance(data, dict) else None
    if not isinstance(models, list):
        return []
    return [m for m in models if isinstance(m, dict) and m.get("name")]
