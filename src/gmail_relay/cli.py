# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for gmail-relay.

Usage:
    gmail-relay serve --port 8000
    gmail-relay auth-url --redirect-uri http://localhost:8000/api/auth/google/callback
    gmail-relay exchange-code <code> --redirect-uri http://localhost:8000/api/auth/google/callback
    gmail-relay compose request.json -o message.eml

Every command reads the same configuration as the server: an INI file
(``--config`` or ``GMR_CONFIG``) with ``GMR_*`` environment variables as
fallbacks.

Example:
    $ gmail-relay --config config.ini auth-url
    $ gmail-relay --config config.ini exchange-code 4/0AbCd... --json
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .api import CALLBACK_PATH, create_app
from .config import RelayConfig, load_settings
from .core import MailRelay
from .errors import MailRelayError
from .logger import configure_logging
from .models import EmailRequest
from .oauth import GoogleOAuthClient

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Execute an async coroutine synchronously from CLI context."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    console.print_json(json.dumps(data, indent=2, default=str))


def _redirect_uri(config: RelayConfig, option: str | None) -> str:
    if option:
        return option
    if config.redirect_uri:
        return config.redirect_uri
    return f"http://localhost:{config.port}{CALLBACK_PATH}"


@click.group()
@click.version_option(package_name="gmail-relay")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to config.ini (default: GMR_CONFIG or ./config.ini).",
)
@click.pass_context
def main(ctx: click.Context, config_path: str | None) -> None:
    """gmail-relay: deliver email requests through the Gmail API."""
    ctx.obj = load_settings(config_path)


@main.command()
@click.option("--host", "-h", default=None, help="Host to bind to (default: from config).")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default: from config).")
@click.option("--log-level", default=None, help="Logging level (default: from config).")
@click.pass_obj
def serve(config: RelayConfig, host: str | None, port: int | None, log_level: str | None) -> None:
    """Run the HTTP relay."""
    import uvicorn

    level = (log_level or config.log_level).upper()
    configure_logging(level)
    host = host or config.host
    port = port or config.port

    if not config.oauth_configured:
        err_console.print("[yellow]Warning:[/yellow] OAuth client credentials are not configured")

    console.print("\n[bold cyan]Starting gmail-relay[/bold cyan]")
    console.print(f"  Listen:  {host}:{port}")
    console.print(f"  API key: {'required' if config.api_key else 'not required'}")
    console.print()

    app = create_app(MailRelay(config))
    uvicorn.run(app, host=host, port=port, log_level=level.lower())


@main.command("auth-url")
@click.option("--redirect-uri", default=None, help="Redirect URI registered for the OAuth client.")
@click.option("--state", default=None, help="Opaque state echoed back to the callback.")
@click.pass_obj
def auth_url(config: RelayConfig, redirect_uri: str | None, state: str | None) -> None:
    """Print the Google consent URL for obtaining a refresh token."""
    oauth = GoogleOAuthClient.from_config(config)
    try:
        url = oauth.authorization_url(_redirect_uri(config, redirect_uri), state=state)
    except MailRelayError as exc:
        print_error(exc.message)
        sys.exit(1)
    click.echo(url)


@main.command("exchange-code")
@click.argument("code")
@click.option("--redirect-uri", default=None, help="Redirect URI used to obtain the code.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def exchange_code(config: RelayConfig, code: str, redirect_uri: str | None, as_json: bool) -> None:
    """Exchange an authorization code for a refresh token."""
    oauth = GoogleOAuthClient.from_config(config)
    try:
        grant = run_async(oauth.exchange_code(code, _redirect_uri(config, redirect_uri)))
    except MailRelayError as exc:
        print_error(exc.message)
        sys.exit(1)

    if as_json:
        print_json({
            "refreshToken": grant.refresh_token,
            "accessToken": grant.access_token,
            "expiresIn": grant.expires_in,
        })
        return
    print_success("Refresh token issued")
    click.echo(grant.refresh_token)


@main.command()
@click.argument("request_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None,
    help="Write the message to this file instead of stdout.",
)
@click.pass_obj
def compose(config: RelayConfig, request_file: Path, output: Path | None) -> None:
    """Build the MIME message for a JSON request without delivering it.

    Attachments given by URL are downloaded so the reported size is the one
    the relay would send.
    """
    try:
        request = EmailRequest.model_validate(json.loads(request_file.read_text(encoding="utf-8")))
    except (ValueError, ValidationError) as exc:
        print_error(f"Invalid request file: {exc}")
        sys.exit(1)

    relay = MailRelay(config)
    try:
        prepared = run_async(relay.prepare(request, require_token=False))
    except MailRelayError as exc:
        print_error(exc.message)
        sys.exit(1)

    if output is not None:
        output.write_bytes(prepared.message.raw)
        print_success(f"Message written to {output}")
    else:
        click.echo(prepared.message.as_text())

    table = Table(title="Composed message")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Size", f"{prepared.message.size} bytes")
    table.add_row("Limit", f"{config.max_message_bytes} bytes")
    table.add_row("Attachments", str(len(prepared.attachments)))
    table.add_row("Attachment bytes", str(prepared.attachment_bytes))
    err_console.print(table)


if __name__ == "__main__":
    main()
