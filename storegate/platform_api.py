"""
Platform Admin API Client
=========================

The small slice of the platform admin API that the trust boundary needs:
store metadata, webhook registration, storefront script sync and the
tenant's storefront domains.

Every call is authenticated with the tenant's stored access token. The token
is looked up per call and never logged.
"""

import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from .errors import UpstreamApiError
from .platforms import PlatformProfile, WebhookSubscription
from .tenants.store import TenantSessionStore

logger = logging.getLogger(__name__)

SHARED_SECRET_HEADER = "x-webhook-secret"

_ALREADY_EXISTS_RE = re.compile(r"already exists", re.IGNORECASE)

# Scripts installed on the storefront, by name. The app URL and tenant id
# are filled in per tenant.
STOREFRONT_SCRIPTS = (
    ("Storegate Loader", "/storefront/loader.js"),
    ("Storegate Widgets", "/storefront/widgets.js"),
)


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}


class PlatformApiClient:
    """
    Authenticated client for the platform admin API.

    Args:
        http_client: Shared httpx.AsyncClient (owned by the app lifespan)
        profile: Platform profile (base URL, auth header, paths)
        store: Tenant session store, for access token lookup
        app_url: Public base URL of this service, without trailing slash
        shared_header_secret: Optional value registered as x-webhook-secret
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        profile: PlatformProfile,
        store: TenantSessionStore,
        app_url: str,
        shared_header_secret: Optional[str] = None,
    ):
        self._http = http_client
        self._profile = profile
        self._store = store
        self._app_url = app_url.rstrip("/")
        self._shared_header_secret = shared_header_secret

    @property
    def profile(self) -> PlatformProfile:
        return self._profile

    async def request(
        self,
        tenant_id: str,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Make an authenticated request against the tenant's admin API.

        Raises:
            UpstreamApiError: No stored session for the tenant, or the
                request could not be sent
        """
        session = await self._store.get_session(tenant_id)
        if session is None:
            raise UpstreamApiError(f"No session for tenant {tenant_id}")

        headers = {
            self._profile.api_auth_header: session.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        url = self._profile.api_url(session.tenant_id, path)
        try:
            return await self._http.request(method, url, headers=headers, json=json)
        except httpx.HTTPError as e:
            raise UpstreamApiError(f"Platform API request failed: {type(e).__name__}") from e

    # =========================================================================
    # Store metadata
    # =========================================================================

    async def fetch_store_info(self, tenant_id: str) -> Dict[str, Any]:
        """
        Fetch the tenant's store metadata.

        Returns:
            The store object (unwrapped from {"shop": ...} where applicable)

        Raises:
            UpstreamApiError: On a non-2xx response
        """
        response = await self.request(tenant_id, "GET", self._profile.store_info_path)
        if not response.is_success:
            raise UpstreamApiError("Failed to fetch store info", status_code=response.status_code)

        data = _safe_json(response)
        if isinstance(data, dict) and isinstance(data.get("shop"), dict):
            data = data["shop"]
        return data if isinstance(data, dict) else {}

    async def list_domains(self, tenant_id: str) -> List[str]:
        """
        Storefront origins for a tenant, from its store metadata.

        Returns:
            https origins, deduplicated, in the order found
        """
        info = await self.fetch_store_info(tenant_id)
        origins: List[str] = []
        for key in ("secure_url", "domain", "myshopify_domain"):
            value = info.get(key)
            if not value or not isinstance(value, str):
                continue
            host = value.strip().rstrip("/")
            if host.startswith("http://"):
                continue
            if not host.startswith("https://"):
                host = f"https://{host}"
            if host not in origins:
                origins.append(host)
        return origins

    # =========================================================================
    # Webhooks
    # =========================================================================

    async def register_webhook(self, tenant_id: str, subscription: WebhookSubscription) -> bool:
        """
        Register one webhook subscription.

        A duplicate registration (409, or 422 whose title says the hook
        already exists) counts as success.

        Returns:
            True if the hook is registered (newly or already)

        Raises:
            UpstreamApiError: On any other failure
        """
        headers = {}
        if self._shared_header_secret:
            headers[SHARED_SECRET_HEADER] = self._shared_header_secret

        body = self._profile.webhook_body(
            subscription,
            destination=f"{self._app_url}{subscription.path}",
            headers=headers,
        )
        response = await self.request(tenant_id, "POST", self._profile.hooks_path, json=body)

        if response.is_success:
            logger.info("Webhook registered", extra={"tenant_id": tenant_id, "topic": subscription.topic})
            return True

        error = _safe_json(response)
        title = str(error.get("title") or error.get("errors") or "") if isinstance(error, dict) else ""
        if response.status_code == 409 or (
            response.status_code == 422 and _ALREADY_EXISTS_RE.search(title)
        ):
            logger.info("Webhook already exists", extra={"tenant_id": tenant_id, "topic": subscription.topic})
            return True

        raise UpstreamApiError(
            f"Webhook registration failed for {subscription.topic}",
            status_code=response.status_code,
        )

    # =========================================================================
    # Storefront scripts
    # =========================================================================

    def storefront_scripts(self, tenant_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query = f"?tenant_id={quote(tenant_id)}" if tenant_id else ""
        return [
            {
                "name": name,
                "src": f"{self._app_url}{path}{query}",
                "auto_uninstall": True,
                "load_method": "default",
                "location": "footer",
                "visibility": "all_pages",
                "kind": "src",
                "consent_category": "essential",
            }
            for name, path in STOREFRONT_SCRIPTS
        ]

    async def _list_scripts(self, tenant_id: str) -> List[Dict[str, Any]]:
        response = await self.request(tenant_id, "GET", self._profile.scripts_path)
        if not response.is_success:
            raise UpstreamApiError("Failed to list storefront scripts", status_code=response.status_code)
        data = _safe_json(response)
        items = data.get("data") if isinstance(data, dict) else None
        return items if isinstance(items, list) else []

    async def _delete_script(self, tenant_id: str, script: Dict[str, Any]) -> bool:
        response = await self.request(
            tenant_id, "DELETE", f"{self._profile.scripts_path}/{script.get('uuid')}"
        )
        if not response.is_success:
            logger.warning(
                "Failed to remove storefront script",
                extra={"tenant_id": tenant_id, "uuid": script.get("uuid"), "status": response.status_code},
            )
            return False
        return True

    async def ensure_storefront_scripts(self, tenant_id: str) -> int:
        """
        Install the storefront scripts with the current app URL.

        Existing scripts with the same name are deleted first, then each
        script is created fresh.

        Returns:
            Number of scripts created
        """
        if not self._profile.supports_script_sync:
            return 0

        existing = await self._list_scripts(tenant_id)
        created = 0
        for script in self.storefront_scripts(tenant_id):
            for old in [item for item in existing if item.get("name") == script["name"]]:
                await self._delete_script(tenant_id, old)

            response = await self.request(tenant_id, "POST", self._profile.scripts_path, json=script)
            if not response.is_success:
                logger.error(
                    "Storefront script installation failed",
                    extra={"tenant_id": tenant_id, "script": script["name"], "status": response.status_code},
                )
                continue
            created += 1
            logger.info("Storefront script installed", extra={"tenant_id": tenant_id, "script": script["name"]})
        return created

    async def cleanup_storefront_scripts(self, tenant_id: str) -> int:
        """
        Remove this app's storefront scripts. Best-effort: never raises.

        Returns:
            Number of scripts removed
        """
        if not self._profile.supports_script_sync:
            return 0

        try:
            existing = await self._list_scripts(tenant_id)
            targets = self.storefront_scripts()
            names = {t["name"] for t in targets}
            removed = 0
            for script in existing:
                if script.get("name") in names and await self._delete_script(tenant_id, script):
                    removed += 1
            return removed
        except UpstreamApiError as e:
            logger.warning(
                "Storefront script cleanup failed",
                extra={"tenant_id": tenant_id, "error": str(e), "status": e.status_code},
            )
            return 0
