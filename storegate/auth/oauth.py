"""
OAuth Install Flow
==================

Handles the install callback: exchanges the one-time authorization code for
a tenant-scoped access token, persists the tenant session and installing
user, and schedules the post-install setup in the background so the
merchant is redirected without waiting on it.
"""

import logging
from typing import List, Optional

import httpx
from pydantic import ValidationError

from ..errors import OAuthExchangeError, UpstreamApiError
from ..models import InstallResult, OAuthTokenResponse
from ..platform_api import PlatformApiClient
from ..platforms import PlatformProfile
from ..tasks import TaskQueue
from ..tenants.identifiers import extract_tenant_id
from ..tenants.store import TenantSessionStore

logger = logging.getLogger(__name__)


# =============================================================================
# Post-install setup
# =============================================================================

class PostInstallSetup:
    """
    Background setup after a successful install.

    Steps run independently: store metadata, webhook registration and
    storefront script sync. A failing step does not stop the others; if
    any step failed, ``run`` raises afterwards so the task queue retries.
    Every step is safe to repeat.
    """

    def __init__(self, api: PlatformApiClient, store: TenantSessionStore, profile: PlatformProfile):
        self._api = api
        self._store = store
        self._profile = profile

    async def capture_store_info(self, tenant_id: str, account_uuid: Optional[str] = None) -> None:
        info = await self._api.fetch_store_info(tenant_id)
        store_domain = info.get("domain") or info.get("myshopify_domain")
        resolved_uuid = account_uuid or info.get("account_uuid") or info.get("accountUuid")
        await self._store.update_store_metadata(
            tenant_id,
            store_domain=store_domain,
            account_uuid=str(resolved_uuid) if resolved_uuid else None,
        )
        logger.info("Store info captured", extra={"tenant_id": tenant_id, "store_domain": store_domain})

    async def register_webhooks(self, tenant_id: str) -> None:
        failures = []
        for subscription in self._profile.webhook_subscriptions:
            try:
                await self._api.register_webhook(tenant_id, subscription)
            except UpstreamApiError as e:
                logger.error(
                    "Webhook registration failed",
                    extra={"tenant_id": tenant_id, "topic": subscription.topic, "status": e.status_code},
                )
                failures.append(subscription.topic)
        if failures:
            raise UpstreamApiError(f"Webhook registration failed for: {', '.join(failures)}")

    async def run(self, tenant_id: str, account_uuid: Optional[str] = None) -> None:
        failed_steps: List[str] = []

        steps = (
            ("store_info", lambda: self.capture_store_info(tenant_id, account_uuid)),
            ("webhooks", lambda: self.register_webhooks(tenant_id)),
            ("storefront_scripts", lambda: self._api.ensure_storefront_scripts(tenant_id)),
        )
        for name, step in steps:
            try:
                await step()
            except UpstreamApiError as e:
                logger.error(
                    "Post-install step failed",
                    extra={"tenant_id": tenant_id, "step": name, "error": str(e), "status": e.status_code},
                )
                failed_steps.append(name)

        if failed_steps:
            raise UpstreamApiError(f"Post-install setup incomplete: {', '.join(failed_steps)}")

        logger.info("Post-install setup complete", extra={"tenant_id": tenant_id})


# =============================================================================
# Install flow
# =============================================================================

class OAuthInstallFlow:
    """
    Authorization-code exchange and tenant provisioning.

    Args:
        http_client: Shared httpx.AsyncClient
        profile: Platform profile (token endpoint, context pattern)
        client_id: App client id
        client_secret: App client secret (sent to the token endpoint only)
        redirect_uri: The install callback URL registered with the platform
        store: Tenant session store
        task_queue: Queue for the post-install job
        setup: Post-install setup runner
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        profile: PlatformProfile,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        store: TenantSessionStore,
        task_queue: TaskQueue,
        setup: PostInstallSetup,
    ):
        self._http = http_client
        self._profile = profile
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._store = store
        self._task_queue = task_queue
        self._setup = setup

    async def exchange_code_for_token(
        self,
        code: str,
        context: str,
        scope: str,
        tenant_id: Optional[str] = None,
    ) -> OAuthTokenResponse:
        """
        Exchange an authorization code for an access token.

        Args:
            code: One-time authorization code
            context: Platform context string from the callback
            scope: Requested scopes from the callback
            tenant_id: Tenant id, for platforms with per-tenant token endpoints

        Returns:
            Parsed token response

        Raises:
            OAuthExchangeError: Non-2xx response, transport failure or
                unparseable body
        """
        payload = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "code": code,
            "context": context,
            "scope": scope,
            "grant_type": "authorization_code",
            "redirect_uri": self._redirect_uri,
        }

        try:
            response = await self._http.post(
                self._profile.token_url(tenant_id),
                json=payload,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error("OAuth token exchange request failed", extra={"error": type(e).__name__})
            raise OAuthExchangeError("OAuth token exchange failed") from e

        if not response.is_success:
            logger.error(
                "OAuth token exchange failed",
                extra={"status": response.status_code, "body": response.text[:500]},
            )
            raise OAuthExchangeError(
                f"OAuth token exchange failed: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return OAuthTokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error("OAuth token response could not be parsed", extra={"error": type(e).__name__})
            raise OAuthExchangeError("OAuth token response was malformed") from e

    async def install(self, code: str, scope: str, context: str) -> InstallResult:
        """
        Complete an install callback.

        Returns:
            InstallResult with the tenant id, installing user and setup job id

        Raises:
            InvalidContext: The callback context is malformed
            OAuthExchangeError: The code could not be exchanged
        """
        tenant_id = extract_tenant_id(context, self._profile.context_pattern)
        token = await self.exchange_code_for_token(code, context, scope, tenant_id=tenant_id)

        user_id = token.user.id if token.user else 0
        email = token.user.email if token.user else ""

        await self._store.upsert_session(
            tenant_id,
            access_token=token.access_token,
            scope=token.scope or scope,
            user_id=user_id,
            email=email,
            account_uuid=token.account_uuid,
        )
        if token.user:
            # owner status is settled on the first load callback
            await self._store.upsert_user(tenant_id, user_id, email, is_owner=False)

        job_id = self._task_queue.enqueue(
            f"post_install:{tenant_id}",
            lambda: self._setup.run(tenant_id, token.account_uuid),
        )

        logger.info("App installed", extra={"tenant_id": tenant_id, "user_id": user_id, "job_id": job_id})
        return InstallResult(tenant_id=tenant_id, user_id=user_id, email=email, setup_job_id=job_id)
