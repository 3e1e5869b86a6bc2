"""
Webhook receiver.

Every delivery is authenticated before its body is parsed:
1. Standard Webhooks signature (webhook-* or svix-* headers) over the raw body
2. Optional shared header secret registered with each hook
3. Producer (tenant) extracted from the body and validated
4. Tenant must have a stored session
"""

import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request, status

from ..errors import MissingSignatureHeaders, WebhookVerificationError
from ..models import WebhookAck, WebhookEnvelope
from ..platform_api import SHARED_SECRET_HEADER
from ..security_events import EventType, Severity
from ..tenants.identifiers import try_extract_tenant_id
from ..tenants.models import TenantSession
from .verification import has_signature_headers, read_envelope

logger = logging.getLogger(__name__)

webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])

UNINSTALL_TOPICS = ("app/uninstalled", "store/app/uninstalled")

# Platforms that name the producer in a header rather than the body
PRODUCER_HEADERS = ("x-shopify-shop-domain",)


@dataclass
class AuthenticatedWebhook:
    topic: str
    tenant_id: str
    payload: Dict[str, Any]
    envelope: WebhookEnvelope
    session: TenantSession


def _reject(request: Request, reason: str, status_code: int = status.HTTP_401_UNAUTHORIZED) -> HTTPException:
    services = request.app.state.services
    services.security_events.record(
        EventType.INVALID_WEBHOOK,
        Severity.HIGH,
        path=request.url.path,
        reason=reason,
        ip=request.client.host if request.client else None,
    )
    detail = "Unauthorized" if status_code == status.HTTP_401_UNAUTHORIZED else "Bad request"
    return HTTPException(status_code=status_code, detail=detail)


async def authenticate_webhook(request: Request, topic: str) -> AuthenticatedWebhook:
    """
    Authenticate a webhook delivery and resolve its tenant.

    Raises:
        HTTPException: 401 on signature failure, 400 on a malformed body or
            missing producer, 404 when the tenant is not installed
    """
    services = request.app.state.services
    settings = services.settings
    body = await request.body()
    headers = request.headers

    if has_signature_headers(headers):
        try:
            envelope = services.webhook_verifier.verify(body, headers)
        except WebhookVerificationError as e:
            logger.warning("Webhook signature verification failed", extra={"reason": e.reason, "topic": topic})
            raise _reject(request, e.reason)
    elif settings.unsigned_webhooks_allowed:
        logger.warning(
            "Missing webhook signature headers; skipping verification in non-production",
            extra={"topic": topic, "environment": settings.ENVIRONMENT},
        )
        envelope = read_envelope(body, headers)
    else:
        logger.warning("Missing webhook signature headers", extra={"topic": topic})
        raise _reject(request, MissingSignatureHeaders.reason)

    expected_secret = settings.WEBHOOK_SHARED_HEADER_SECRET
    if expected_secret:
        provided = headers.get(SHARED_SECRET_HEADER, "")
        if not hmac.compare_digest(provided.encode("utf-8"), expected_secret.encode("utf-8")):
            logger.warning("Webhook shared header secret mismatch", extra={"topic": topic})
            raise _reject(request, "shared_secret_mismatch")

    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, ValueError):
        raise _reject(request, "malformed_body", status.HTTP_400_BAD_REQUEST)
    if not isinstance(payload, dict):
        raise _reject(request, "malformed_body", status.HTTP_400_BAD_REQUEST)

    producer = payload.get("producer")
    if not producer:
        for header in PRODUCER_HEADERS:
            producer = headers.get(header)
            if producer:
                break
    if not producer or not isinstance(producer, str):
        raise _reject(request, "missing_producer", status.HTTP_400_BAD_REQUEST)

    tenant_id = try_extract_tenant_id(producer, services.profile.context_pattern)
    if not tenant_id:
        raise _reject(request, "invalid_producer", status.HTTP_400_BAD_REQUEST)

    session = await services.store.get_session(tenant_id)
    if session is None:
        logger.info("Webhook for unknown tenant", extra={"tenant_id": tenant_id, "topic": topic})
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")

    return AuthenticatedWebhook(
        topic=topic,
        tenant_id=tenant_id,
        payload=payload,
        envelope=envelope.model_copy(update={"producer": producer}),
        session=session,
    )


@webhook_router.post("/{topic:path}", response_model=WebhookAck)
async def receive_webhook(request: Request, topic: str) -> WebhookAck:
    webhook = await authenticate_webhook(request, topic)
    services = request.app.state.services

    if webhook.topic in UNINSTALL_TOPICS:
        await services.revoke_tenant(webhook.tenant_id)
        logger.info("Tenant revoked by uninstall webhook", extra={"tenant_id": webhook.tenant_id})
    else:
        logger.info(
            "Webhook received",
            extra={"tenant_id": webhook.tenant_id, "topic": webhook.topic, "webhook_id": webhook.envelope.id},
        )

    return WebhookAck(status="ok", topic=webhook.topic, tenantId=webhook.tenant_id)
