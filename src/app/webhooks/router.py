"""
FastAPI router for voice provider webhooks.

The provider must be acknowledged quickly. The request path only parses
the body, identifies the tenant well enough to pick its secret and checks
the signature; storing and processing the event happen after the response.
"""

import json
from typing import Annotated, Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.shared.database import get_db_session
from app.shared.exceptions import WebhookAuthenticationError, WebhookPayloadError
from app.shared.logging import get_logger
from app.tenants.credentials import resolve_tenant_credentials
from app.webhooks.events import parse_webhook_payload
from app.webhooks.identity import IdentityResolver
from app.webhooks.intake import WebhookIntake, get_webhook_intake
from app.webhooks.schemas import WebhookAck
from app.webhooks.signature import SignatureVerifier

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _decode_body(raw_body: bytes) -> Any:
    if not raw_body:
        raise WebhookPayloadError("Empty webhook body")
    try:
        return json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise WebhookPayloadError("Webhook body is not valid JSON") from e


@router.post(
    "/voice",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Receive voice provider webhook events",
)
async def receive_voice_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    intake: Annotated[WebhookIntake, Depends(get_webhook_intake)],
) -> WebhookAck:
    """Verify and acknowledge a webhook; processing continues in the background.

    Raises:
        WebhookPayloadError: Body is empty, not JSON, or has no event type (400).
        WebhookAuthenticationError: Signature rejected (401).
    """
    settings = get_settings()
    raw_body = await request.body()
    payload = _decode_body(raw_body)
    event = parse_webhook_payload(payload)

    identity = await IdentityResolver(session).resolve(event)
    credentials = await resolve_tenant_credentials(session, identity.tenant_id, settings)

    signature = request.headers.get(settings.webhook_signature_header)
    check = SignatureVerifier(settings.is_production).check(
        raw_body,
        signature,
        credentials.webhook_secret,
        generic=identity.is_generic,
    )
    if not check.accepted:
        raise WebhookAuthenticationError(
            "Webhook signature verification failed",
            error_code=check.value,
        )

    event_key = event.idempotency_key(settings.idempotency_bucket_seconds)
    background_tasks.add_task(intake.accept, event, payload, event_key, identity.tenant_id)

    logger.info(
        "Webhook acknowledged",
        extra={
            "event_type": event.raw_type,
            "event_key": event_key,
            "external_call_id": event.external_call_id,
            "tenant_id": str(identity.tenant_id) if identity.tenant_id else None,
            "identity_source": identity.source.value,
            "signature": check.value,
        },
    )
    return WebhookAck(received=True)
