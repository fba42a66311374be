"""First-run setup flow.

The setup step is derived from three facts only: whether a credential is
stored, whether the host granted access to incoming messages, and the
first-run flag kept in the store.
"""

from enum import Enum

from loguru import logger

from sms_relay.common.models import Failure, OutboundResult, Success
from sms_relay.common.store import ConfigStore
from sms_relay.forwarder.orchestrator import ForwardingOrchestrator


TEST_MESSAGE_BODY = "SMS Relay test message: forwarding to this chat is set up."


class SetupStep(str, Enum):
    WELCOME = "welcome"
    CONFIGURE = "configure"
    PERMISSION = "permission"
    SUMMARY = "summary"


class InvalidCredentialError(ValueError):
    pass


def resolve_setup_step(has_credential: bool, has_permission: bool, first_run: bool) -> SetupStep:
    if first_run:
        return SetupStep.WELCOME
    if not has_credential:
        return SetupStep.CONFIGURE
    if not has_permission:
        return SetupStep.PERMISSION
    return SetupStep.SUMMARY


def current_setup_step(store: ConfigStore, has_permission: bool) -> SetupStep:
    return resolve_setup_step(
        has_credential=store.load_credential() is not None,
        has_permission=has_permission,
        first_run=store.is_first_run(),
    )


def _record_test_result(orchestrator: ForwardingOrchestrator, result: OutboundResult) -> None:
    if isinstance(result, Success):
        orchestrator.record(f"{orchestrator.timestamp()} Test message sent successfully")
    else:
        reason = result.reason or "unknown error"
        orchestrator.record(f"{orchestrator.timestamp()} Test message failed: {reason}")


async def send_test_message(orchestrator: ForwardingOrchestrator) -> OutboundResult:
    """Send a test message with the stored credential and record the outcome."""
    credential = orchestrator.store.load_credential()
    if credential is None:
        return Failure(reason="Not configured")

    result = await orchestrator.client.send(
        credential.token, credential.destination_id, TEST_MESSAGE_BODY
    )
    _record_test_result(orchestrator, result)
    return result


async def validate_and_save(
    orchestrator: ForwardingOrchestrator, token: str, destination_id: str
) -> OutboundResult:
    """Check a credential by sending a test message; store it only if that works."""
    token = (token or "").strip()
    destination_id = (destination_id or "").strip()

    missing = [
        name
        for name, value in (("API token", token), ("Chat ID", destination_id))
        if not value
    ]
    if missing:
        raise InvalidCredentialError(f"Missing {' and '.join(missing)}")

    result = await orchestrator.client.send(token, destination_id, TEST_MESSAGE_BODY)
    if isinstance(result, Success):
        orchestrator.store.save_credential(token, destination_id)
        orchestrator.store.complete_onboarding()
        logger.info(f"Saved credential for chat {destination_id}")
    else:
        logger.warning(f"Credential check failed: {result.reason}")

    _record_test_result(orchestrator, result)
    return result
