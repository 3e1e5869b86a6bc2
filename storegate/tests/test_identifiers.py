"""
Tests for tenant identifier validation and context parsing.
"""

import pytest

from storegate.errors import InvalidContext
from storegate.platforms import SHOPIFY
from storegate.tenants.identifiers import (
    extract_tenant_id,
    normalize_tenant_id,
    try_extract_tenant_id,
)


class TestNormalizeTenantId:

    @pytest.mark.parametrize("raw,expected", [
        ("abc123", "abc123"),
        ("  abc123\t", "abc123"),
        ("ABC123", "ABC123"),
        ("0", "0"),
    ])
    def test_accepts_alphanumeric(self, raw, expected):
        assert normalize_tenant_id(raw) == expected

    @pytest.mark.parametrize("raw", [
        None,
        "",
        "   ",
        "abc-123",
        "abc_123",
        "abc 123",
        "../etc",
        "stores/abc123",
        "abc123\n; DROP TABLE",
        "ábc",
        "ſtore1",
        "abc\u212a",
        "ıd9",
        "' OR 1=1",
        123,
        {"id": "abc"},
    ])
    def test_rejects_everything_else(self, raw):
        assert normalize_tenant_id(raw) is None

    def test_result_is_trimmed_input(self):
        """The accepted value is the trimmed input, not a transformation of it."""
        raw = " x9Y "
        assert normalize_tenant_id(raw) == raw.strip()


class TestExtractTenantId:

    def test_plain_context(self):
        assert extract_tenant_id("stores/abc123") == "abc123"

    def test_context_with_suffix(self):
        assert extract_tenant_id("stores/abc123/v3/catalog") == "abc123"

    def test_case_insensitive_prefix(self):
        assert extract_tenant_id("STORES/Abc123") == "Abc123"

    @pytest.mark.parametrize("context", [
        None,
        "",
        "abc123",
        "store/abc123",
        "stores/",
        "stores/-abc",
        "/stores/abc123",
        "stores/ſhop1",
        "stores/ıd9",
    ])
    def test_invalid_context_raises(self, context):
        with pytest.raises(InvalidContext):
            extract_tenant_id(context)

    def test_try_extract_returns_none(self):
        assert try_extract_tenant_id("nope") is None
        assert try_extract_tenant_id("stores/abc") == "abc"

    def test_shopify_shop_domain(self):
        assert extract_tenant_id("demo42.myshopify.com", SHOPIFY.context_pattern) == "demo42"
        assert extract_tenant_id("https://demo42.myshopify.com/admin", SHOPIFY.context_pattern) == "demo42"

    def test_shopify_rejects_foreign_domain(self):
        with pytest.raises(InvalidContext):
            extract_tenant_id("demo42.example.com", SHOPIFY.context_pattern)

    def test_shopify_rejects_non_ascii_shop_name(self):
        with pytest.raises(InvalidContext):
            extract_tenant_id("ſhop1.myshopify.com", SHOPIFY.context_pattern)
