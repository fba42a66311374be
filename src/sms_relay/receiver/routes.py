from fastapi import APIRouter, Depends

from sms_relay.common.models import ForwardingState, SmsEvent
from sms_relay.common.store import ConfigStore
from sms_relay.forwarder.orchestrator import ForwardingOrchestrator


router = APIRouter()


async def get_orchestrator() -> ForwardingOrchestrator:
    from sms_relay.forwarder.app import get_orchestrator
    return get_orchestrator()


async def get_store() -> ConfigStore:
    from sms_relay.forwarder.app import get_store
    return get_store()


@router.post("/sms", status_code=202)
async def receive_sms(
    event: SmsEvent,
    orchestrator: ForwardingOrchestrator = Depends(get_orchestrator),
):
    # The send continues in the background; the status endpoint reports it
    task = orchestrator.dispatch(event)
    return {"status": "dispatched" if task is not None else "recorded"}


@router.get("/status", response_model=ForwardingState)
async def get_status(store: ConfigStore = Depends(get_store)):
    return store.state()


@router.get("/health")
async def health_check():
    return {"status": "ok"}
