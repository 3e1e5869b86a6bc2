"""
Tests for the OAuth install flow, post-install setup and platform API client.
"""

import json
from unittest.mock import Mock

import httpx
import pytest

from storegate.auth.oauth import OAuthInstallFlow, PostInstallSetup
from storegate.errors import InvalidContext, OAuthExchangeError, UpstreamApiError
from storegate.platform_api import PlatformApiClient
from storegate.platforms import BIGCOMMERCE, WebhookSubscription
from storegate.tasks import TaskQueue

from .factories import APP_URL, CLIENT_ID, CLIENT_SECRET, TENANT_ID


@pytest.fixture
def http_client(fake_platform):
    return fake_platform.client()


@pytest.fixture
def api(http_client, store):
    return PlatformApiClient(http_client, BIGCOMMERCE, store, APP_URL, shared_header_secret="hook-secret")


@pytest.fixture
def task_queue():
    return TaskQueue(base_delay=0.0, jitter=0.0)


@pytest.fixture
def flow(http_client, store, api, task_queue):
    return OAuthInstallFlow(
        http_client,
        BIGCOMMERCE,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_uri=f"{APP_URL}/auth/install",
        store=store,
        task_queue=task_queue,
        setup=PostInstallSetup(api, store, BIGCOMMERCE),
    )


class TestTokenExchange:

    @pytest.mark.asyncio
    async def test_posts_authorization_code_grant(self, flow, fake_platform):
        token = await flow.exchange_code_for_token("code-1", f"stores/{TENANT_ID}", "store_v2_content")

        assert token.access_token == "access-token-xyz"
        assert token.user.id == 42

        request = fake_platform.calls("POST", "/oauth2/token")[0]
        assert str(request.url) == "https://login.bigcommerce.com/oauth2/token"
        assert json.loads(request.content) == {
            "client_id": CLIENT_ID,
            "client_secret": CLIENT_SECRET,
            "code": "code-1",
            "context": f"stores/{TENANT_ID}",
            "scope": "store_v2_content",
            "grant_type": "authorization_code",
            "redirect_uri": f"{APP_URL}/auth/install",
        }

    @pytest.mark.asyncio
    async def test_non_2xx_raises(self, flow, fake_platform):
        fake_platform.token_status = 401
        with pytest.raises(OAuthExchangeError) as exc_info:
            await flow.exchange_code_for_token("bad-code", f"stores/{TENANT_ID}", "scope")
        assert exc_info.value.status_code == 401
        assert CLIENT_SECRET not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_redirect_is_not_success(self, flow, fake_platform):
        fake_platform.token_status = 302
        with pytest.raises(OAuthExchangeError) as exc_info:
            await flow.exchange_code_for_token("code-1", f"stores/{TENANT_ID}", "scope")
        assert exc_info.value.status_code == 302

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, store, api, task_queue):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        flow = OAuthInstallFlow(
            httpx.AsyncClient(transport=httpx.MockTransport(refuse)),
            BIGCOMMERCE,
            client_id=CLIENT_ID,
            client_secret=CLIENT_SECRET,
            redirect_uri=f"{APP_URL}/auth/install",
            store=store,
            task_queue=task_queue,
            setup=Mock(),
        )
        with pytest.raises(OAuthExchangeError):
            await flow.exchange_code_for_token("code", f"stores/{TENANT_ID}", "scope")


class TestInstall:

    @pytest.mark.asyncio
    async def test_install_persists_session_and_user(self, flow, store, task_queue):
        result = await flow.install(code="code-1", scope="store_v2_content", context=f"stores/{TENANT_ID}")

        assert result.tenant_id == TENANT_ID
        assert result.user_id == 42
        assert result.setup_job_id

        session = await store.get_session(TENANT_ID)
        assert session.access_token == "access-token-xyz"
        assert session.account_uuid == "acc-0001"

        users = await store.list_users(TENANT_ID)
        assert [(u.platform_user_id, u.is_owner) for u in users] == [(42, False)]

    @pytest.mark.asyncio
    async def test_install_does_not_wait_for_setup(self, flow, fake_platform, task_queue):
        await flow.install(code="code-1", scope="scope", context=f"stores/{TENANT_ID}")

        # queue not started: setup is only scheduled
        assert task_queue.pending == 1
        assert fake_platform.calls("POST", "/v3/hooks") == []

        await task_queue.start()
        await task_queue.drain()
        await task_queue.stop()
        assert len(fake_platform.calls("POST", "/v3/hooks")) == 2

    @pytest.mark.asyncio
    async def test_invalid_context_makes_no_upstream_call(self, flow, fake_platform):
        with pytest.raises(InvalidContext):
            await flow.install(code="code-1", scope="scope", context="stores/../evil")
        assert fake_platform.requests == []

    @pytest.mark.asyncio
    async def test_exchange_failure_stores_nothing(self, flow, fake_platform, store):
        fake_platform.token_status = 500
        with pytest.raises(OAuthExchangeError):
            await flow.install(code="code-1", scope="scope", context=f"stores/{TENANT_ID}")
        assert await store.get_session(TENANT_ID) is None


class TestPostInstallSetup:

    @pytest.mark.asyncio
    async def test_full_setup(self, api, store, fake_platform):
        await store.upsert_session(TENANT_ID, "access-token-xyz", "scope", 42, "owner@example.com")

        await PostInstallSetup(api, store, BIGCOMMERCE).run(TENANT_ID, "acc-0001")

        session = await store.get_session(TENANT_ID)
        assert session.store_domain == "shop.example.com"

        hooks = [json.loads(r.content) for r in fake_platform.calls("POST", "/v3/hooks")]
        assert [h["scope"] for h in hooks] == ["store/order/created", "store/app/uninstalled"]
        assert hooks[1]["destination"] == f"{APP_URL}/webhooks/app/uninstalled"
        assert hooks[0]["headers"] == {"x-webhook-secret": "hook-secret"}

        auth_headers = {r.headers["X-Auth-Token"] for r in fake_platform.requests}
        assert auth_headers == {"access-token-xyz"}

        assert sorted(s["name"] for s in fake_platform.scripts) == ["Storegate Loader", "Storegate Widgets"]

    @pytest.mark.asyncio
    async def test_failed_step_does_not_stop_others(self, api, store, fake_platform):
        await store.upsert_session(TENANT_ID, "access-token-xyz", "scope", 42, "owner@example.com")
        fake_platform.store_info_status = 500

        with pytest.raises(UpstreamApiError) as exc_info:
            await PostInstallSetup(api, store, BIGCOMMERCE).run(TENANT_ID)

        assert "store_info" in str(exc_info.value)
        assert len(fake_platform.calls("POST", "/v3/hooks")) == 2
        assert len(fake_platform.scripts) == 2

    @pytest.mark.asyncio
    async def test_setup_is_repeatable(self, api, store, fake_platform):
        await store.upsert_session(TENANT_ID, "access-token-xyz", "scope", 42, "owner@example.com")
        setup = PostInstallSetup(api, store, BIGCOMMERCE)

        await setup.run(TENANT_ID)
        await setup.run(TENANT_ID)

        assert len(fake_platform.scripts) == 2


class TestWebhookRegistration:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error", [
        (409, {"title": "Conflict"}),
        (422, {"title": "Hook already exists for this scope"}),
    ])
    async def test_duplicate_counts_as_success(self, api, store, fake_platform, status, error):
        await store.upsert_session(TENANT_ID, "access-token-xyz", "scope", 42, "owner@example.com")
        fake_platform.hook_status = status
        fake_platform.hook_error = error

        subscription = WebhookSubscription("store/order/created", "/webhooks/orders/create")
        assert await api.register_webhook(TENANT_ID, subscription) is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error", [
        (422, {"title": "Invalid destination"}),
        (302, {}),
        (500, {}),
    ])
    async def test_other_errors_raise(self, api, store, fake_platform, status, error):
        await store.upsert_session(TENANT_ID, "access-token-xyz", "scope", 42, "owner@example.com")
        fake_platform.hook_status = status
        fake_platform.hook_error = error

        subscription = WebhookSubscription("store/order/created", "/webhooks/orders/create")
        with pytest.raises(UpstreamApiError) as exc_info:
            await api.register_webhook(TENANT_ID, subscription)
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_unknown_tenant_raises(self, api):
        subscription = WebhookSubscription("store/order/created", "/webhooks/orders/create")
        with pytest.raises(UpstreamApiError):
            await api.register_webhook("nobody", subscription)


class TestStorefrontScripts:

    @pytest.mark.asyncio
    async def test_ensure_replaces_same_name_scripts(self, api, store, fake_platform):
        await store.upsert_session(TENANT_ID, "access-token-xyz", "scope", 42, "owner@example.com")
        fake_platform.scripts = [
            {"uuid": "old-1", "name": "Storegate Loader", "src": "https://old.example.com/loader.js"},
            {"uuid": "other", "name": "Someone Else", "src": "https://other.example.com/x.js"},
        ]

        created = await api.ensure_storefront_scripts(TENANT_ID)

        assert created == 2
        names = sorted(s["name"] for s in fake_platform.scripts)
        assert names == ["Someone Else", "Storegate Loader", "Storegate Widgets"]
        loader = next(s for s in fake_platform.scripts if s["name"] == "Storegate Loader")
        assert loader["src"] == f"{APP_URL}/storefront/loader.js?tenant_id={TENANT_ID}"

    @pytest.mark.asyncio
    async def test_cleanup_removes_only_own_scripts(self, api, store, fake_platform):
        await store.upsert_session(TENANT_ID, "access-token-xyz", "scope", 42, "owner@example.com")
        await api.ensure_storefront_scripts(TENANT_ID)
        fake_platform.scripts.append({"uuid": "other", "name": "Someone Else"})

        assert await api.cleanup_storefront_scripts(TENANT_ID) == 2
        assert [s["name"] for s in fake_platform.scripts] == ["Someone Else"]

    @pytest.mark.asyncio
    async def test_cleanup_without_session_never_raises(self, api):
        assert await api.cleanup_storefront_scripts("nobody") == 0

    @pytest.mark.asyncio
    async def test_list_domains(self, api, store):
        await store.upsert_session(TENANT_ID, "access-token-xyz", "scope", 42, "owner@example.com")
        assert await api.list_domains(TENANT_ID) == ["https://shop.example.com"]
