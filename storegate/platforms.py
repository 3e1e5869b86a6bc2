"""
Platform profiles.

The two supported e-commerce platforms differ only in claim names, context
formats, audience/issuer enforcement, how a tenant's storefront origin is
found, and the shape of their admin API. Everything else in the trust
boundary is shared, so those differences are captured here as data.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Pattern, Tuple

from .tenants.identifiers import DEFAULT_CONTEXT_PATTERN


@dataclass(frozen=True)
class WebhookSubscription:
    topic: str
    path: str


@dataclass(frozen=True)
class PlatformProfile:
    """
    Static description of one platform variant.

    Attributes:
        name: Platform key used in configuration
        context_pattern: Regex whose first group is the tenant id
        tenant_claim: Signed-payload claim holding the tenant id directly
        context_claims: Claims parsed with context_pattern, in priority order
        user_claim / owner_claim: Claims holding {id, email} objects
        enforce_claims: Whether audience/issuer are verified on signed payloads
        issuer: Expected issuer when enforce_claims is set
        token_endpoint: OAuth token URL; may contain {tenant_id}
        api_base: Admin API base URL; contains {tenant_id}
        api_auth_header: Header carrying the tenant access token
        storefront_domain: Suffix for derived origins; None means remote lookup
        webhook_subscriptions: Hooks registered after install
        supports_script_sync: Whether storefront scripts are managed via API
    """

    name: str
    context_pattern: Pattern[str]
    tenant_claim: Optional[str]
    context_claims: Tuple[str, ...]
    user_claim: str
    owner_claim: Optional[str]
    enforce_claims: bool
    issuer: Optional[str]
    token_endpoint: str
    api_base: str
    api_auth_header: str
    storefront_domain: Optional[str]
    store_info_path: str
    hooks_path: str
    scripts_path: Optional[str]
    webhook_subscriptions: Tuple[WebhookSubscription, ...] = field(default_factory=tuple)
    supports_script_sync: bool = False

    def api_url(self, tenant_id: str, path: str) -> str:
        return self.api_base.format(tenant_id=tenant_id) + path

    def token_url(self, tenant_id: Optional[str] = None) -> str:
        return self.token_endpoint.format(tenant_id=tenant_id or "")

    def derived_origin(self, tenant_id: str) -> Optional[str]:
        """Deterministic storefront origin, when the platform has one."""
        if not self.storefront_domain:
            return None
        return f"https://store-{tenant_id}.{self.storefront_domain}"

    def webhook_body(self, subscription: WebhookSubscription, destination: str,
                     headers: Dict[str, str]) -> Dict[str, Any]:
        """Registration body for one webhook, in this platform's API shape."""
        if self.name == "shopify":
            return {
                "webhook": {
                    "topic": subscription.topic,
                    "address": destination,
                    "format": "json",
                }
            }
        return {
            "scope": subscription.topic,
            "destination": destination,
            "is_active": True,
            "headers": headers,
        }


BIGCOMMERCE = PlatformProfile(
    name="bigcommerce",
    context_pattern=DEFAULT_CONTEXT_PATTERN,
    tenant_claim="store_hash",
    context_claims=("sub", "context"),
    user_claim="user",
    owner_claim="owner",
    enforce_claims=True,
    issuer="bc",
    token_endpoint="https://login.bigcommerce.com/oauth2/token",
    api_base="https://api.bigcommerce.com/stores/{tenant_id}",
    api_auth_header="X-Auth-Token",
    storefront_domain="mybigcommerce.com",
    store_info_path="/v2/store",
    hooks_path="/v3/hooks",
    scripts_path="/v3/content/scripts",
    webhook_subscriptions=(
        WebhookSubscription("store/order/created", "/webhooks/orders/create"),
        WebhookSubscription("store/app/uninstalled", "/webhooks/app/uninstalled"),
    ),
    supports_script_sync=True,
)

SHOPIFY = PlatformProfile(
    name="shopify",
    context_pattern=re.compile(r"^(?:https://)?([a-z0-9]+)\.myshopify\.com", re.IGNORECASE | re.ASCII),
    tenant_claim=None,
    context_claims=("dest", "iss"),
    user_claim="sub",
    owner_claim=None,
    enforce_claims=False,
    issuer=None,
    token_endpoint="https://{tenant_id}.myshopify.com/admin/oauth/access_token",
    api_base="https://{tenant_id}.myshopify.com/admin/api/2024-10",
    api_auth_header="X-Shopify-Access-Token",
    storefront_domain=None,
    store_info_path="/shop.json",
    hooks_path="/webhooks.json",
    scripts_path=None,
    webhook_subscriptions=(
        WebhookSubscription("orders/create", "/webhooks/orders/create"),
        WebhookSubscription("app/uninstalled", "/webhooks/app/uninstalled"),
    ),
    supports_script_sync=False,
)

PROFILES = {
    BIGCOMMERCE.name: BIGCOMMERCE,
    SHOPIFY.name: SHOPIFY,
}


def get_platform_profile(name: str) -> PlatformProfile:
    try:
        return PROFILES[name.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown platform: {name}") from None
