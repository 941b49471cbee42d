"""agentorch CLI.

Installed as ``agentorch`` console_script via pipx / pip.
"""

from __future__ import annotations

import click
from rich.table import Table

from agentorch import __version__
from agentorch.config import Config

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output and agent output lines")
@click.version_option(__version__, prog_name="agentorch")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """agentorch: queue AI coding agents per folder.

    Tasks in the same folder run one after another; tasks in different
    folders run in parallel. Progress streams to the browser over a
    WebSocket.

    \b
    EXAMPLES:
      agentorch serve                      # http://127.0.0.1:3000
      agentorch serve --port 8080 -v       # custom port, echo agent output
      agentorch detect                     # which agent CLIs are installed
    """
    from agentorch import log

    log.set_verbose(verbose)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@main.command()
@click.option("--host", default="", help="Interface to bind (env AGENTORCH_HOST, default 127.0.0.1)")
@click.option("--port", type=int, default=0, help="Port to listen on (env AGENTORCH_PORT, default 3000)")
@click.option("--ollama-url", default="", help="Ollama base URL (env OLLAMA_HOST)")
@click.option("--open/--no-open", "open_browser", default=None, help="Open the browser on start")
@click.pass_context
def serve(
    ctx: click.Context,
    host: str,
    port: int,
    ollama_url: str,
    open_browser: bool | None,
) -> None:
    """Run the task server."""
    from agentorch.server import run_server

    if port < 0 or port > 65535:
        raise click.BadParameter("Port must be between 0 and 65535.", param_hint="--port")

    cfg = Config(
        host=host,
        port=port,
        ollama_url=ollama_url,
        open_browser=open_browser,
        verbose=ctx.obj.get("verbose", False),
    )
    run_server(cfg)


@main.command()
@click.option("--ollama-url", default="", help="Ollama base URL (env OLLAMA_HOST)")
def detect(ollama_url: str) -> None:
    """Show installed agent CLIs and local Ollama models."""
    from agentorch import log
    from agentorch.detector import detect_all
    from agentorch.engines.registry import get_engine

    cfg = Config(ollama_url=ollama_url, open_browser=False)
    result = detect_all(cfg.ollama_url)

    table = Table(title="Agents")
    table.add_column("Agent")
    table.add_column("Installed")
    table.add_column("Version")
    for agent in result.agents:
        table.add_row(
            agent.name,
            "[green]yes[/green]" if agent.installed else "[red]no[/red]",
            agent.version or "-",
        )
    log.console.print(table)
    for agent in result.agents:
        if not agent.installed:
            hint = get_engine(agent.name).check_available()
            if hint:
                log.warn(hint)

    ollama = result.ollama
    if not ollama.available:
        log.warn("Ollama not found; prompt enhancement is unavailable.")
        return
    log.info(f"Ollama {ollama.version or '(unknown version)'} at {cfg.ollama_url}")
    if ollama.models:
        for model in ollama.models:
            log.console.print(f"  {model.name}")
    else:
        log.warn("No Ollama models found (is `ollama serve` running?)")
