"""Tests for URL canonicalization and backend URL validation."""

import logging

import pytest

from shopsync.urls import (
    canonicalize_url,
    hostname_of,
    is_cart_url,
    require_canonical_url,
    validate_backend_url,
)


class TestCanonicalizeUrl:
    def test_strips_query_and_fragment(self):
        url = "https://shop.example.com/p/123?utm_source=mail&session=abc#reviews"
        assert canonicalize_url(url) == "https://shop.example.com/p/123"

    def test_strips_credentials(self):
        assert canonicalize_url("https://user:pw@shop.example.com/cart") == "https://shop.example.com/cart"

    def test_keeps_explicit_port(self):
        assert canonicalize_url("http://localhost:8080/p?x=1") == "http://localhost:8080/p"

    def test_lowercases_scheme_and_host(self):
        assert canonicalize_url("HTTPS://Shop.Example.COM/Path") == "https://shop.example.com/Path"

    def test_is_idempotent(self):
        once = canonicalize_url("https://shop.example.com/a/b?c=d")
        assert canonicalize_url(once) == once

    @pytest.mark.parametrize(
        "url",
        ["", "   ", "not a url", "ftp://example.com/file", "javascript:alert(1)", "https://", None, 42],
    )
    def test_rejects_unparseable(self, url):
        assert canonicalize_url(url) is None

    def test_rejects_bad_port(self):
        assert canonicalize_url("https://example.com:99999/p") is None

    def test_require_raises_value_error(self):
        with pytest.raises(ValueError, match="not a valid"):
            require_canonical_url("nope")


class TestUrlHelpers:
    def test_hostname_strips_www(self):
        assert hostname_of("https://www.zara.com/us/") == "zara.com"

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://shop.example.com/cart", True),
            ("https://shop.example.com/checkout/step-1", True),
            ("https://shop.example.com/bag", True),
            ("https://shop.example.com/CART", True),
            ("https://shop.example.com/cartier-watch", False),
            ("https://shop.example.com/handbags", False),
        ],
    )
    def test_is_cart_url(self, url, expected):
        assert is_cart_url(url) is expected


class TestValidateBackendUrl:
    def test_https_allowed(self):
        assert validate_backend_url("https://api.example.com/api/") == "https://api.example.com/api"

    def test_localhost_http_allowed(self):
        assert validate_backend_url("http://localhost:3001/api") == "http://localhost:3001/api"
        assert validate_backend_url("http://127.0.0.1:3001") == "http://127.0.0.1:3001"

    def test_remote_http_rejected(self, caplog):
        with caplog.at_level(logging.WARNING, logger="shopsync.urls"):
            assert validate_backend_url("http://api.example.com") is None
        assert "non-local http" in caplog.text

    def test_localhost_http_rejected_when_disallowed(self):
        assert validate_backend_url("http://localhost:3001", allow_localhost_http=False) is None

    def test_bad_scheme_rejected(self):
        assert validate_backend_url("file:///etc/passwd") is None

    def test_empty_is_none(self):
        assert validate_backend_url("") is None
        assert validate_backend_url(None) is None
