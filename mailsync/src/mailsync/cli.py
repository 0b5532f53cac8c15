"""Command-line interface for operating a sync backend by hand.

What:
  Provide a Typer application with ``folders``, ``watch`` and ``send`` so an
  operator can check what a device would see: the folder hierarchy with its
  tokens, change notifications, and message submission.

Why:
  Diagnosing a device usually starts with "which folders and tokens does the
  backend hand out" and "does a new message trigger a change". Running those
  flows from a shell against the real store answers both without a device.

How:
  Every command loads the runtime configuration, logs on with the given
  credentials and device id, runs one backend operation and logs off. Output
  goes to stdout as tab separated lines.

Interfaces:
  ``app`` (Typer application), ``folders``, ``watch``, ``send``, ``main``.

Invariants & Safety:
  - Exit codes follow shell expectations (``0`` success, ``1`` failure).
  - The backend is always logged off, flushing the device's folder map.
"""
from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from .backend import ImapSyncBackend
from .config.loader import ConfigLoadError, load_runtime_config
from .core.errors import MailSyncError
from .core.outbox import SendRequest
from .utils.logging import get_logger


app = typer.Typer(help="IMAP mobile sync backend tools")

LOGGER = get_logger("cli")

_CONFIG_OPTION = typer.Option(None, "--config", help="Path to config.yaml")
_USERNAME_OPTION = typer.Option(..., envvar="MAILSYNC_USERNAME", help="Mailbox login")
_PASSWORD_OPTION = typer.Option(..., envvar="MAILSYNC_PASSWORD", help="Mailbox password")
_DOMAIN_OPTION = typer.Option("", help="Login domain used for the default sender")
_DEVICE_OPTION = typer.Option("default", "--device", help="Device whose folder tokens are used")


@contextmanager
def _session(
    config_path: Optional[Path], username: str, password: str, domain: str, device: str
) -> Iterator[ImapSyncBackend]:
    """Yield a logged on backend and log it off afterwards."""

    try:
        runtime = load_runtime_config(config_path)
    except ConfigLoadError as exc:
        LOGGER.error("runtime_load_failed", error=str(exc))
        raise typer.Exit(code=1) from exc

    backend = ImapSyncBackend(runtime)
    try:
        ready = backend.logon(username, password, domain=domain, device_id=device)
    except MailSyncError as exc:
        LOGGER.error("logon_aborted", error=str(exc))
        raise typer.Exit(code=1) from exc
    if not ready:
        typer.echo("login refused", err=True)
        raise typer.Exit(code=1)
    try:
        yield backend
    finally:
        backend.logoff()


@app.command("folders")
def folders(
    *,
    config_path: Optional[Path] = _CONFIG_OPTION,
    username: str = _USERNAME_OPTION,
    password: str = _PASSWORD_OPTION,
    domain: str = _DOMAIN_OPTION,
    device: str = _DEVICE_OPTION,
) -> None:
    """Print every visible folder as ``token<TAB>parent<TAB>name``."""

    with _session(config_path, username, password, domain, device) as backend:
        try:
            listing = backend.get_folder_list()
        except MailSyncError as exc:
            LOGGER.error("folder_list_failed", error=str(exc))
            raise typer.Exit(code=1) from exc
        for folder in listing:
            typer.echo(f"{folder.token}\t{folder.parent_token}\t{folder.display_name}")


@app.command("watch")
def watch(
    tokens: Optional[List[str]] = typer.Argument(None, help="Folder tokens to watch; all folders when omitted"),
    *,
    timeout: float = typer.Option(30.0, "--timeout", help="Seconds to wait for a change"),
    config_path: Optional[Path] = _CONFIG_OPTION,
    username: str = _USERNAME_OPTION,
    password: str = _PASSWORD_OPTION,
    domain: str = _DOMAIN_OPTION,
    device: str = _DEVICE_OPTION,
) -> None:
    """Wait for changes in the given folders and print the changed tokens.

    What:
      Arms the change sink for each token, then polls once until a change is
      seen or ``--timeout`` elapses.

    Why:
      Lets an operator confirm that deliveries are noticed within the polling
      interval the devices rely on.
    """

    with _session(config_path, username, password, domain, device) as backend:
        try:
            watched = tokens or [folder.token for folder in backend.get_folder_list()]
            armed = [token for token in watched if backend.changes_sink_initialize(token)]
            if not armed:
                typer.echo("no folder could be watched", err=True)
                raise typer.Exit(code=1)
            changed = backend.changes_sink(timeout)
        except MailSyncError as exc:
            LOGGER.error("watch_failed", error=str(exc))
            raise typer.Exit(code=1) from exc
        for token in changed:
            typer.echo(token)


@app.command("send")
def send(
    message_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="RFC 822 message to submit"),
    *,
    save_in_sent: bool = typer.Option(False, "--save-in-sent", help="Keep a copy in the sent folder"),
    config_path: Optional[Path] = _CONFIG_OPTION,
    username: str = _USERNAME_OPTION,
    password: str = _PASSWORD_OPTION,
    domain: str = _DOMAIN_OPTION,
    device: str = _DEVICE_OPTION,
) -> None:
    """Submit an ``.eml`` file through the configured relay."""

    request = SendRequest(mime=message_path.read_bytes(), save_in_sent=save_in_sent)
    with _session(config_path, username, password, domain, device) as backend:
        try:
            result = backend.send_mail(request)
        except MailSyncError as exc:
            LOGGER.error("send_failed", error=str(exc))
            raise typer.Exit(code=1) from exc
        typer.echo(f"sent to {len(result.recipients)} recipient(s)")
        for outcome in result.outcomes:
            if not outcome.ok:
                typer.echo(f"{outcome.action}: {outcome.reason}", err=True)


def main() -> None:
    """Execute the Typer application entry point."""

    app()
