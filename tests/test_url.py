import pytest

from muxagent.relayws.url import http_url_from_ws


def test_secure_url_with_ws_path():
    assert http_url_from_ws("wss://relay.example.com/ws") == "https://relay.example.com"


def test_plain_url_with_ws_path():
    assert http_url_from_ws("ws://localhost:8080/ws") == "http://localhost:8080"


def test_other_path_is_kept():
    assert http_url_from_ws("wss://relay.example.com/api") == "https://relay.example.com/api"


@pytest.mark.parametrize("url", ["https://relay.example.com", "http://localhost:8080/api", ""])
def test_non_ws_urls_pass_through(url):
    assert http_url_from_ws(url) == url


@pytest.mark.parametrize("url", ["wss://relay.example.com/ws", "ws://localhost/ws", "ws://localhost/x"])
def test_conversion_is_idempotent(url):
    once = http_url_from_ws(url)
    assert http_url_from_ws(once) == once
    assert once.startswith("http")