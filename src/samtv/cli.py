"""CLI entry point for samtv."""

import asyncio
from pathlib import Path

import click

from samtv import __version__
from samtv.config import Config, load_config, save_session_data
from samtv.errors import (
    AckValidationFailed,
    ConfigurationError,
    HandshakeRejected,
    PairingRequired,
    SamtvError,
    TransportError,
)
from samtv.keys import get_key_code_list
from samtv.logging import setup_logging

KEY_PAUSE = 0.4  # seconds, for the "_" pseudo-key
KEY_DELAY = 0.1  # seconds between keys

PAIRING_HINT = "Please use 'samtv pair --pin PIN' to associate with the TV"


def _build_session(config: Config, with_backend: bool = False):
    """Create a session from configuration.

    Raises:
        ConfigurationError: If the configuration is unusable.
    """
    from samtv.pairing import create_backend
    from samtv.session import SmartViewSession
    from samtv.transport import HttpTransport

    if not config.server:
        raise ConfigurationError("No TV address: use --server or set 'server' in the config file")

    transport = HttpTransport(request_timeout=config.timeouts.request_timeout)
    backend = create_backend(config.pairing, transport) if with_backend else None
    session = SmartViewSession(
        config.server,
        timeouts=config.timeouts,
        transport=transport,
        backend=backend,
    )
    session.restore_session_data(
        config.session_key_bytes(), config.session_id, config.device_uuid or ""
    )
    return session


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.option("--server", default=None, help="TV IP address.")
@click.option("--device-uuid", default=None, help="SmartView device UUID.")
@click.option("--session-key", default=None, help="SmartView session key (32 hex chars).")
@click.option("--session-id", type=int, default=None, help="SmartView session ID.")
@click.option("--debug", is_flag=True, default=False, help="Enable debug mode.")
@click.pass_context
def main(
    ctx: click.Context,
    config: Path | None,
    server: str | None,
    device_uuid: str | None,
    session_key: str | None,
    session_id: int | None,
    debug: bool,
) -> None:
    """samtv - A CLI remote for Samsung smart TVs (2014+)."""
    ctx.ensure_object(dict)
    try:
        cfg = load_config(config)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    # Command-line flags and SAMTV_* variables override the file
    if server:
        cfg.server = server
    if device_uuid:
        cfg.device_uuid = device_uuid
    if session_key is not None:
        cfg.session_key = session_key
    if session_id is not None:
        cfg.session_id = session_id
    if debug:
        cfg.debug = True

    ctx.obj["config_path"] = config
    ctx.obj["config"] = cfg
    ctx.obj["logger"] = setup_logging(cfg)


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"samtv version {__version__}")


@main.command()
@click.argument("keys", nargs=-1)
@click.option("--list", "-l", "list_keys", is_flag=True, help="List keys.")
@click.pass_context
def key(ctx: click.Context, keys: tuple[str, ...], list_keys: bool) -> None:
    """Send one or several key codes to the TV.

    When several keys are given, a small delay is inserted between them.
    The special argument '_' inserts a longer pause.

    \b
    Examples:
      samtv key --list
      samtv key KEY_VOLDOWN
      samtv key KEY_MENU _ _ KEY_DOWN KEY_DOWN _ KEY_RETURN
    """
    if list_keys:
        for k in get_key_code_list():
            click.echo(f"- {k}")
        return

    if not keys:
        raise click.UsageError("Requires at least 1 key or --list")

    config = ctx.obj["config"]
    try:
        session = _build_session(config)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    async def _send() -> int:
        async with session:
            try:
                await session.init_session()
            except PairingRequired:
                click.echo(PAIRING_HINT, err=True)
                return 1
            except SamtvError as e:
                click.echo(f"Cannot initialize session: {e}", err=True)
                return 1

            failed = 0
            for i, k in enumerate(keys):
                if k == "_":
                    await asyncio.sleep(KEY_PAUSE)
                    continue
                try:
                    await session.send_key(k)
                except SamtvError as e:
                    click.echo(f"Cannot send key '{k}': {e}", err=True)
                    failed += 1
                if i + 1 < len(keys):
                    await asyncio.sleep(KEY_DELAY)
            return 1 if failed else 0

    rc = asyncio.run(_send())
    if rc:
        raise SystemExit(rc)


@main.command()
@click.option("--pin", type=int, default=0, help="Pairing PIN code (negative closes the PIN page).")
@click.option("--save", is_flag=True, help="Save the session to the config file.")
@click.option("--force", is_flag=True, help="Pair even if a session is configured.")
@click.pass_context
def pair(ctx: click.Context, pin: int, save: bool, force: bool) -> None:
    """Pair with a Smart TV.

    \b
    Examples:
      samtv pair              # Start pairing process
      samtv pair --pin 1234   # Enter TV PIN code
      samtv pair --pin -1     # Close the PIN page
    """
    config = ctx.obj["config"]

    if pin == 0 and config.is_paired and not force:
        click.echo(
            f"Already paired (session id {config.session_id}); use --force to pair again."
        )
        return

    try:
        session = _build_session(config, with_backend=pin > 0)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    async def _pair():
        async with session:
            return await session.pair(pin)

    try:
        outcome = asyncio.run(_pair())
    except PairingRequired:
        click.echo("The TV should now display a PIN code.")
        click.echo("Complete pairing with: samtv pair --pin PIN")
        return
    except (HandshakeRejected, AckValidationFailed) as e:
        click.echo(f"Pairing rejected (wrong PIN?): {e}", err=True)
        raise SystemExit(1)
    except TransportError as e:
        click.echo(f"TV unreachable: {e}", err=True)
        raise SystemExit(1)
    except SamtvError as e:
        click.echo(f"Pairing error: {e}", err=True)
        raise SystemExit(1)

    if outcome is None:
        click.echo("PIN page closed.")
        return

    click.echo("You can save the following items:", err=True)
    click.echo(f"device_uuid: {outcome.device_id}")
    click.echo(f"session_key: {outcome.session_key_hex}")
    click.echo(f"session_id:  {outcome.session_id}")

    if save:
        path = save_session_data(
            ctx.obj["config_path"],
            outcome.device_id,
            outcome.session_key_hex,
            outcome.session_id,
        )
        click.echo(f"Session saved to {path}")


@main.command()
@click.pass_context
def description(ctx: click.Context) -> None:
    """Show the TV device description."""
    config = ctx.obj["config"]
    try:
        session = _build_session(config)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    async def _describe():
        async with session:
            return await session.device_description()

    try:
        desc = asyncio.run(_describe())
    except SamtvError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Device name:  {desc.device_name}")
    click.echo(f"Model:        {desc.model_name} ({desc.model})")
    click.echo(f"Firmware:     {desc.firmware_version}")
    click.echo(f"Network:      {desc.network_type} {desc.ip}")
    click.echo(f"Resolution:   {desc.resolution}")
    for cap in desc.capabilities:
        click.echo(f"Capability:   {cap.name} port {cap.port} {cap.location}")


def run() -> None:
    """Console script entry point; reads SAMTV_* environment variables."""
    main(auto_envvar_prefix="SAMTV")
