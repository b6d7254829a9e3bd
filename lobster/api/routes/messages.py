"""
Message submission routes.
"""

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, status

from lobster.errors import RateLimitExceeded, ValidationError
from lobster.types.packets import AcceptedResponse, InboundMessage

if TYPE_CHECKING:
    from lobster.adapters.http_channel import HttpInputAdapter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/messages", tags=["Messages"])


def get_adapter(request: Request) -> "HttpInputAdapter":
    """Resolve the input adapter that owns this application."""
    return request.app.state.adapter


@router.post(
    "",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a message",
    description="Hand a chat message to the relay. The reply is delivered asynchronously.",
)
async def submit_message(
    body: InboundMessage,
    adapter: "HttpInputAdapter" = Depends(get_adapter),
) -> AcceptedResponse:
    """
    Submit a message for processing.

    Args:
        body: The inbound message.
        adapter: The HTTP input adapter.

    Returns:
        AcceptedResponse with the message id.
    """
    try:
        packet = await adapter.submit(body)
    except RateLimitExceeded as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded. Please try again in {e.retry_after_seconds} seconds.",
            headers={"Retry-After": str(e.retry_after_seconds)},
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )

    if packet is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay is not accepting messages",
        )

    return AcceptedResponse(id=packet.id)
