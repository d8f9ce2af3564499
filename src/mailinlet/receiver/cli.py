"""CLI commands for polling a mail endpoint."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from mailinlet.errors import MailInletError
from mailinlet.errors.user_messages import format_error_for_cli

from .config import MailEndpointConfig, load_endpoint_config
from .detached import DetachedMessage
from .headers import DefaultMailHeaderMapper, InboundMessage, MailHeaders
from .imap_receiver import create_imap_receiver
from .poller import MailPoller
from .receiver import MailReceiver
from .selector import Selector, all_of, sender_in, subject_contains

console = Console()
error_console = Console(stderr=True)

mail_app = typer.Typer(help="Mail receiver commands")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _build_config(
    url: Optional[str],
    config_path: Optional[Path],
    password: Optional[str],
    overrides: dict,
    selectors: List[Selector],
    map_headers: bool,
) -> MailEndpointConfig:
    if url:
        overrides["url"] = url
    config = load_endpoint_config(config_path, overrides=overrides)
    if password and config.url is not None:
        config = config.with_changes(url=config.url.with_password(password))
    changes: dict = {}
    if selectors:
        changes["selector"] = all_of(*selectors)
    if map_headers:
        changes["header_mapper"] = DefaultMailHeaderMapper()
    return config.with_changes(**changes) if changes else config


def _summarize(message: Any) -> dict:
    if isinstance(message, InboundMessage):
        payload = message.payload
        return {
            "uid": None,
            "subject": message.headers.get(MailHeaders.SUBJECT),
            "from": message.headers.get(MailHeaders.FROM),
            "received": str(message.headers.get(MailHeaders.RECEIVED_DATE) or ""),
            "content_type": message.content_type,
            "size": len(payload) if isinstance(payload, (str, bytes)) else None,
        }
    if isinstance(message, DetachedMessage):
        return {
            "uid": message.uid,
            "subject": message.subject,
            "from": message.message.get("From"),
            "received": str(message.received_date or ""),
            "content_type": message.content_type,
            "size": len(message.as_bytes()),
        }
    return {"repr": repr(message)}


def _print_batch(messages: List[Any], json_output: bool) -> None:
    rows = [_summarize(message) for message in messages]
    if json_output:
        print(json.dumps({"count": len(rows), "messages": rows}, default=str))
        return
    if not rows:
        console.print("[dim]No new messages[/dim]")
        return
    table = Table(title=f"Received {len(rows)} messages")
    table.add_column("UID")
    table.add_column("From")
    table.add_column("Subject")
    table.add_column("Received")
    table.add_column("Content-Type")
    for row in rows:
        table.add_row(
            str(row.get("uid") or "-"),
            str(row.get("from") or ""),
            str(row.get("subject") or ""),
            str(row.get("received") or ""),
            str(row.get("content_type") or ""),
        )
    console.print(table)


def _fail(exc: Exception, json_output: bool) -> None:
    if json_output:
        payload = exc.to_dict() if isinstance(exc, MailInletError) else {"error": str(exc)}
        print(json.dumps({"success": False, **payload}, default=str))
    else:
        error_console.print(f"[bold red]✗[/bold red] {format_error_for_cli(exc)}")
        error_console.print(f"[dim]{exc}[/dim]")
    raise typer.Exit(1)


@mail_app.command("poll")
def poll(
    url: Optional[str] = typer.Argument(None, help="Store URL, e.g. imaps://user@host/INBOX"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON endpoint configuration"),
    password: Optional[str] = typer.Option(None, "--password", "-p", help="Password (or MAILINLET_PASSWORD)"),
    max_fetch_size: Optional[int] = typer.Option(None, "--max-fetch-size", "-n", help="Messages per poll"),
    delete: bool = typer.Option(False, "--delete", help="Delete messages after receiving them"),
    user_flag: Optional[str] = typer.Option(None, "--user-flag", help="Keyword used to mark received mail"),
    mark_read: bool = typer.Option(True, "--mark-read/--no-mark-read", help="Set \\Seen on received mail"),
    map_headers: bool = typer.Option(False, "--map-headers/--raw", help="Emit payload + mapped headers"),
    subject: List[str] = typer.Option([], "--subject", help="Only receive subjects containing this text"),
    sender: List[str] = typer.Option([], "--sender", help="Only receive mail from this address"),
    interval: float = typer.Option(60.0, "--interval", "-i", help="Seconds between polls"),
    once: bool = typer.Option(False, "--once", help="Poll a single time and exit"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Poll a mailbox and print newly received messages.

    Examples:
        mailinlet mail poll imaps://me@imap.example.com/INBOX --once
        mailinlet mail poll --config endpoint.json --subject invoice --delete
    """
    _configure_logging(verbose)

    overrides: dict = {}
    if max_fetch_size is not None:
        overrides["max_fetch_size"] = max_fetch_size
    if delete:
        overrides["should_delete_messages"] = True
    if user_flag:
        overrides["user_flag"] = user_flag

    selectors: List[Selector] = []
    if subject:
        selectors.append(subject_contains(*subject))
    if sender:
        selectors.append(sender_in(*sender))

    try:
        config = _build_config(url, config_path, password, overrides, selectors, map_headers)
    except MailInletError as exc:
        _fail(exc, json_output)
        return

    receiver = create_imap_receiver(config, should_mark_messages_as_read=mark_read)
    with receiver:
        if once:
            try:
                messages = receiver.receive()
            except MailInletError as exc:
                _fail(exc, json_output)
                return
            _print_batch(messages, json_output)
            return

        if not json_output:
            console.print(f"[bold blue]Polling {receiver} every {interval:g}s (Ctrl+C to stop)[/bold blue]")
        _run_forever(receiver, interval, json_output)


def _run_forever(receiver: MailReceiver, interval: float, json_output: bool) -> None:
    poller = MailPoller(
        receiver=receiver,
        handler=lambda batch: _print_batch(batch, json_output),
        poll_interval=interval,
    )

    async def _main() -> None:
        await poller.start()
        try:
            await asyncio.Event().wait()
        finally:
            await poller.stop()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        if not json_output:
            console.print("[dim]Stopped[/dim]")


@mail_app.command("test-connection")
def test_connection(
    url: str = typer.Argument(..., help="Store URL, e.g. imaps://user@host/INBOX"),
    password: Optional[str] = typer.Option(None, "--password", "-p", help="Password (or MAILINLET_PASSWORD)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Open and close the configured folder once, reporting its permanent flags."""

    if not json_output:
        console.print("[bold blue]Testing mail connection...[/bold blue]")

    try:
        config = _build_config(url, None, password, {}, [], False)
        receiver = create_imap_receiver(config)
        with receiver:
            with receiver.connection.lock:
                folder = receiver.connection.open_folder()
                permanent_flags = sorted(folder.permanent_flags or ())
                receiver.connection.close_folder()
    except MailInletError as exc:
        _fail(exc, json_output)
        return

    if json_output:
        print(json.dumps({
            "success": True,
            "folder": config.folder_name,
            "permanent_flags": permanent_flags,
        }))
    else:
        console.print(f"[bold green]✓ Connection successful![/bold green] {receiver}")
        console.print(f"Folder: {config.folder_name}")
        console.print(f"Permanent flags: {', '.join(permanent_flags) or '(none)'}")


__all__ = ["mail_app"]
