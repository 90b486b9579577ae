"""
MCP Bridge CLI - Chat with a model that can use MCP server tools.

Commands:
    mcpbridge chat            Interactive session
    mcpbridge ask "..."       Answer one message and exit
    mcpbridge tools           List the tools every server advertises
    mcpbridge init            Write a default ~/.mcpbridge/config.yaml
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from mcpbridge import __version__
from mcpbridge.core.bridge import Bridge, build_bridge
from mcpbridge.mcp.errors import MCPError
from mcpbridge.validation.config import BridgeConfig, Config, ConfigError

console = Console()
err_console = Console(stderr=True)

EXIT_KEYWORDS = {"quit", "exit", "bye", "q"}


def configure_logging(level: str, log_file: Optional[str] = None) -> None:
    """Route library logging to a rich stderr handler and, optionally, a file."""
    handlers: list = [
        RichHandler(
            console=err_console,
            show_time=False,
            show_path=False,
            markup=False,
            rich_tracebacks=False,
        )
    ]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handlers.append(file_handler)
    logging.basicConfig(level=level.upper(), format="%(message)s", handlers=handlers, force=True)


def _load_config(config_path: Optional[Path], verbose: bool) -> BridgeConfig:
    try:
        config = Config.from_file(config_path) if config_path else Config.load()
        merged = config.merged
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(1)
    configure_logging("DEBUG" if verbose else merged.logging.level, merged.logging.file)
    return merged


def _start_bridge(config: BridgeConfig) -> Bridge:
    with console.status("[bold blue]Connecting to MCP servers...[/bold blue]", spinner="dots"):
        try:
            bridge = build_bridge(config)
        except (MCPError, ValueError) as e:
            console.print(f"[red]{e}[/red]")
            sys.exit(1)
    for name, error in bridge.failed_servers.items():
        console.print(f"[yellow]Skipped MCP server {name}: {error}[/yellow]")
    return bridge


def _check_model(bridge: Bridge) -> None:
    """Warn when the model endpoint does not answer."""
    provider = bridge.llm.provider
    if not provider.validate_connection():
        console.print(
            f"[yellow]Model endpoint for {provider.provider_name} is not reachable "
            f"({bridge.config.llm.model}). Messages will fail until it is.[/yellow]"
        )


def _render_answer(answer: str) -> None:
    try:
        console.print(Markdown(answer))
    except Exception:
        console.print(answer)


def _tools_table(bridge: Bridge) -> Table:
    table = Table(title=f"Available tools ({len(bridge.directory)})")
    table.add_column("Tool", style="cyan")
    table.add_column("Server", style="magenta")
    table.add_column("Description")
    for descriptor in bridge.directory.descriptors():
        owner = bridge.directory.owner_of(descriptor.name)
        description = (descriptor.description or "").split("\n")[0][:100]
        table.add_row(descriptor.name, owner.name if owner else "-", description)
    return table


class BridgeREPL:
    """Interactive chat loop on top of a connected bridge."""

    def __init__(self, bridge: Bridge):
        self.bridge = bridge
        self.running = True
        self._ctrlc_count = 0

    def _print_banner(self):
        servers = ", ".join(self.bridge.sessions) or "none"
        console.print(Panel(
            f"[bold]MCP Bridge[/bold] v{__version__}\n"
            f"Model: {self.bridge.config.llm.provider}/{self.bridge.config.llm.model}\n"
            f"Servers: {servers} | Tools: {len(self.bridge.tools)}\n"
            "[dim]Type a message, or /help for commands. /exit to quit.[/dim]",
            border_style="blue",
        ))

    def _print_help(self):
        help_text = """
/help     Show this help
/tools    List available tools
/reset    Forget the conversation so far
/exit     Quit
"""
        console.print(Panel(help_text.strip(), title="MCP Bridge Help", border_style="blue"))

    def _handle_command(self, user_input: str) -> bool:
        """Handle a slash command. Returns False to exit."""
        command = user_input.split()[0].lower()
        if command in ("/exit", "/quit"):
            return False
        elif command == "/help":
            self._print_help()
        elif command == "/tools":
            console.print(_tools_table(self.bridge))
        elif command == "/reset":
            self.bridge.llm.reset()
            console.print("[green]Conversation cleared.[/green]")
        else:
            console.print(f"[yellow]Unknown command: {command}[/yellow]")
            console.print("[dim]Type /help for available commands[/dim]")
        return True

    def _execute(self, message: str):
        with console.status("[bold blue]Thinking...[/bold blue]", spinner="dots"):
            answer = self.bridge.process_message(message)
        console.print()
        _render_answer(answer)

    def run(self):
        """Run the interactive REPL."""
        self._print_banner()
        while self.running:
            try:
                user_input = console.input("[bold green]> [/bold green]").strip()
                self._ctrlc_count = 0
                if not user_input:
                    continue
                if user_input.startswith("/"):
                    if not self._handle_command(user_input):
                        break
                    continue
                if user_input.lower() in EXIT_KEYWORDS:
                    break
                self._execute(user_input)
                console.print()
            except EOFError:
                break
            except KeyboardInterrupt:
                self._ctrlc_count += 1
                if self._ctrlc_count >= 2:
                    break
                console.print("\n[dim]Press Ctrl+C again to exit, or type a command.[/dim]")
        console.print("[dim]Goodbye.[/dim]")


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Config file to use instead of ~/.mcpbridge and .mcpbridge",
)
@click.option("-v", "--verbose", is_flag=True, help="Log at DEBUG level")
@click.version_option(__version__, prog_name="mcpbridge")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: bool):
    """Bridge a language model to MCP tool servers."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


@cli.command()
@click.pass_context
def chat(ctx: click.Context):
    """Start an interactive chat session."""
    config = _load_config(ctx.obj["config_path"], ctx.obj["verbose"])
    bridge = _start_bridge(config)
    _check_model(bridge)
    try:
        BridgeREPL(bridge).run()
    finally:
        bridge.close()


@cli.command()
@click.argument("message")
@click.pass_context
def ask(ctx: click.Context, message: str):
    """Answer a single MESSAGE and exit."""
    config = _load_config(ctx.obj["config_path"], ctx.obj["verbose"])
    bridge = _start_bridge(config)
    try:
        with console.status("[bold blue]Thinking...[/bold blue]", spinner="dots"):
            answer = bridge.process_message(message)
        _render_answer(answer)
    finally:
        bridge.close()


@cli.command()
@click.pass_context
def tools(ctx: click.Context):
    """List the tools advertised by the configured MCP servers."""
    config = _load_config(ctx.obj["config_path"], ctx.obj["verbose"])
    bridge = _start_bridge(config)
    try:
        if not len(bridge.directory):
            console.print("[dim]No tools available. Configure MCP servers in .mcpbridge/config.yaml:[/dim]")
            console.print("[dim]  mcp_servers:[/dim]")
            console.print("[dim]    primary:[/dim]")
            console.print('[dim]      command: "npx"[/dim]')
            console.print('[dim]      args: ["-y", "@modelcontextprotocol/server-filesystem", "."][/dim]')
            return
        console.print(_tools_table(bridge))
    finally:
        bridge.close()


@cli.command()
def init():
    """Write a default global configuration file."""
    path = Config.create_default_global()
    console.print(f"[green]Configuration file: {path}[/green]")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
