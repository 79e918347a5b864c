"""Relay URL helpers."""


def http_url_from_ws(ws_url: str) -> str:
    """Turn a relay WebSocket URL into the matching HTTP base URL."""
    http_url = ws_url
    if http_url.startswith("ws://"):
        http_url = "http://" + http_url[len("ws://"):]
    if http_url.startswith("wss://"):
        http_url = "https://" + http_url[len("wss://"):]
    return http_url.removesuffix("/ws")