"""
Channel adapter endpoint.

Messaging-channel adapters (WhatsApp, web chat...) forward every inbound
customer message here and deliver the returned text and media.
"""

from fastapi import APIRouter, Depends, Request

from shared.utils.exceptions import ExternalServiceError
from order_engine.schemas import InboundMessage, OutboundMessage
from order_engine.services.chat import ToolCallingOrchestrator

router = APIRouter(prefix="/api", tags=["messages"])


def get_orchestrator(request: Request) -> ToolCallingOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise ExternalServiceError("conversation orchestrator", is_unavailable=True)
    return orchestrator


@router.post("/messages", response_model=OutboundMessage)
async def receive_message(
    body: InboundMessage,
    orchestrator: ToolCallingOrchestrator = Depends(get_orchestrator),
) -> OutboundMessage:
    """
    Answer one customer message.

    A repeated ``message_id`` returns ``duplicate=true`` with empty text;
    adapters must not deliver anything for it.
    """
    return await orchestrator.handle_message(body)
