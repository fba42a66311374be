import asyncio
import sys
from functools import update_wrapper
from typing import List, Optional

import click
from loguru import logger

from sms_relay.common.config import RelayConfig, load_config_from_file
from sms_relay.common.models import SmsEvent, Success
from sms_relay.common.store import ConfigStore, KeyValueBackend, create_backend
from sms_relay.forwarder.client import TelegramClient
from sms_relay.forwarder.onboarding import (
    InvalidCredentialError,
    current_setup_step,
    send_test_message,
    validate_and_save,
)
from sms_relay.forwarder.orchestrator import (
    ForwardingOrchestrator,
    StatusNotifier,
    WorkTracker,
)


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

_app_config: Optional[RelayConfig] = None
_backend: Optional[KeyValueBackend] = None
_store: Optional[ConfigStore] = None
_orchestrator: Optional[ForwardingOrchestrator] = None


def get_app_config() -> RelayConfig:
    global _app_config
    if not _app_config:
        raise RuntimeError("Application config not initialized")
    return _app_config


def get_store() -> ConfigStore:
    global _store
    if not _store:
        raise RuntimeError("Config store not initialized")
    return _store


def get_orchestrator() -> ForwardingOrchestrator:
    global _orchestrator
    if not _orchestrator:
        raise RuntimeError("Orchestrator not initialized")
    return _orchestrator


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)


def setup_app(config: RelayConfig):
    """Initialize the application with the given config."""
    global _app_config, _backend, _store, _orchestrator

    configure_logging(config.log_level)

    config.validate_store_config()

    _backend = create_backend(
        store_type=config.store_type,
        sqlite_config=config.sqlite_config,
    )
    _store = ConfigStore(
        _backend,
        forwarding_enabled_default=config.forwarding_enabled_default,
    )
    _orchestrator = ForwardingOrchestrator(
        store=_store,
        client=TelegramClient.from_config(config.telegram),
        notifier=StatusNotifier(),
        tracker=WorkTracker(),
    )

    _app_config = config

    logger.debug(f"SMS Relay initialized with {config.store_type.value} store")


def teardown_app():
    global _backend
    if _backend:
        _backend.close()
        _backend = None


def _load_config(config_path: Optional[str]) -> RelayConfig:
    if config_path:
        return load_config_from_file(config_path)
    return RelayConfig()


@click.group()
@click.option(
    "--config",
    "-c",
    default=None,
    help="Path to configuration file (settings are read from SMS_RELAY_* variables otherwise)",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str]):
    """SMS Relay CLI"""
    ctx.obj = config


def with_app(f):
    """Initialize the application before the command runs.

    Deferred to here so that `--help` on a subcommand touches no state.
    """

    def new_func(*args, **kwargs):
        root = click.get_current_context().find_root()
        if not root.meta.get("sms_relay.initialized"):
            try:
                setup_app(_load_config(root.obj))
            except Exception as e:
                logger.error(f"Failed to initialize SMS Relay: {e}")
                sys.exit(1)
            root.meta["sms_relay.initialized"] = True
            root.call_on_close(teardown_app)
        return f(*args, **kwargs)

    return update_wrapper(new_func, f)


@cli.command("serve")
@with_app
def serve():
    """Start the HTTP receiver for inbound SMS events."""
    from sms_relay.receiver.server import run_server

    try:
        run_server(get_app_config())
    except Exception as e:
        logger.error(f"Failed to start receiver: {e}")
        sys.exit(1)


@cli.command("configure")
@click.option("--token", prompt="Bot API token", hide_input=True, help="Telegram bot token")
@click.option("--chat-id", prompt="Chat ID", help="Destination chat id")
@with_app
def configure(token: str, chat_id: str):
    """Validate a bot token and chat id with a test message, then save them."""
    try:
        result = asyncio.run(validate_and_save(get_orchestrator(), token, chat_id))
    except InvalidCredentialError as e:
        raise click.BadParameter(str(e))

    if isinstance(result, Success):
        click.echo("Settings saved.")
    else:
        click.echo(f"Validation failed: {result.reason}", err=True)
        sys.exit(1)


@cli.command("test")
@with_app
def test_message():
    """Send a test message with the stored settings."""
    result = asyncio.run(send_test_message(get_orchestrator()))
    click.echo(get_store().load_last_status() or result.reason)
    if not isinstance(result, Success):
        sys.exit(1)


@cli.command("destinations")
@click.option("--token", default=None, help="Bot token (defaults to the stored one)")
@with_app
def destinations(token: Optional[str]):
    """List chats that recently messaged the bot."""
    if not token:
        credential = get_store().load_credential()
        if credential is None:
            click.echo("No bot token configured; pass --token.", err=True)
            sys.exit(1)
        token = credential.token

    result = asyncio.run(get_orchestrator().client.list_destinations(token))
    if not isinstance(result, Success):
        click.echo(f"Lookup failed: {result.reason}", err=True)
        sys.exit(1)

    if not result.value:
        click.echo("No chats found. Send a message to the bot first.")
    for info in result.value:
        name = info.title or info.first_name or "-"
        username = f"@{info.username}" if info.username else ""
        click.echo(f"{info.id}\t{name}\t{username}".rstrip())


@cli.command("status")
@with_app
def status():
    """Show the forwarding state and the last status line."""
    store = get_store()
    state = store.state()
    click.echo(f"Forwarding: {'enabled' if state.enabled else 'disabled'}")
    click.echo(f"Configured: {'yes' if store.load_credential() else 'no'}")
    click.echo(f"Last status: {state.last_status or 'Not configured'}")


@cli.command("enable")
@with_app
def enable():
    """Turn forwarding on."""
    orchestrator = get_orchestrator()
    orchestrator.store.set_forwarding_enabled(True)
    orchestrator.notifier.announce()
    click.echo("Forwarding enabled")


@cli.command("disable")
@with_app
def disable():
    """Turn forwarding off."""
    orchestrator = get_orchestrator()
    orchestrator.store.set_forwarding_enabled(False)
    orchestrator.notifier.announce()
    click.echo("Forwarding disabled")


@cli.command("reset")
@click.confirmation_option(prompt="Clear all settings and status?")
@with_app
def reset():
    """Clear credential and status, disable forwarding."""
    orchestrator = get_orchestrator()
    orchestrator.store.reset()
    orchestrator.notifier.announce()
    click.echo("Settings cleared")


@cli.command("setup-step")
@click.option(
    "--permission/--no-permission",
    default=True,
    help="Whether the host grants access to incoming SMS",
)
@with_app
def setup_step(permission: bool):
    """Print the setup step the installation is at."""
    click.echo(current_setup_step(get_store(), has_permission=permission).value)


async def _forward_once(event: SmsEvent) -> None:
    orchestrator = get_orchestrator()
    orchestrator.dispatch(event)
    await orchestrator.tracker.wait_idle(get_app_config().shutdown_timeout)


@cli.command("forward")
@click.option("--sender", default=None, help="Originating address")
@click.option("--body", "bodies", multiple=True, help="Message part; repeat for multipart SMS")
@with_app
def forward(sender: Optional[str], bodies: List[str]):
    """Run one inbound SMS through the forwarding pipeline."""
    orchestrator = get_orchestrator()
    store = orchestrator.store

    def echo_status():
        click.echo(store.load_last_status() or "")

    orchestrator.notifier.subscribe(echo_status)
    try:
        asyncio.run(_forward_once(SmsEvent(originating_address=sender, fragments=list(bodies))))
    finally:
        orchestrator.notifier.unsubscribe(echo_status)


if __name__ == "__main__":
    cli()
