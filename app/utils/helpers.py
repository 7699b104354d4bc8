"""Helper utilities (responses, request helpers)."""
from fastapi import Request


def format_response(data=None, success=True):
    return {"success": success, "data": data}


def get_client_ip(request: Request) -> str:
    """Return client's IP address from request headers or connection info.

    Checks `X-Forwarded-For` first (comma-separated), then falls back to
    `request.client.host`. Returns 'unknown' if not found.
    """
    x_forwarded_for = request.headers.get("x-forwarded-for")
    if x_forwarded_for:
        # X-Forwarded-For can contain a list of IPs
        return x_forwarded_for.split(",")[0].strip()

    client = getattr(request, "client", None)
    if client and getattr(client, "host", None):
        return client.host

    return "unknown"


def get_user_agent(request: Request) -> str:
    return (request.headers.get("user-agent") or "")[:512]


def describe_device(user_agent: str | None) -> str:
    """Coarse "Browser on OS" label shown in the session list."""
    ua = (user_agent or "").lower()
    if not ua:
        return "Unknown device"

    if "edg/" in ua:
        browser = "Edge"
    elif "firefox" in ua:
        browser = "Firefox"
    elif "chrome" in ua:
        browser = "Chrome"
    elif "safari" in ua:
        browser = "Safari"
    elif "python-httpx" in ua or "curl" in ua:
        browser = "API client"
    else:
        browser = "Browser"

    if "android" in ua:
        os_name = "Android"
    elif "iphone" in ua or "ipad" in ua:
        os_name = "iOS"
    elif "windows" in ua:
        os_name = "Windows"
    elif "mac os" in ua:
        os_name = "macOS"
    elif "linux" in ua:
        os_name = "Linux"
    else:
        return browser

    return f"{browser} on {os_name}"
