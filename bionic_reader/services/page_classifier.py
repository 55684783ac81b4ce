from urllib.parse import urlparse

from ..models.session import PageCategory

# Schemes owned by the browser itself; no document context ever runs there.
RESTRICTED_SCHEMES = {
    "chrome", "chrome-extension", "chrome-search", "chrome-untrusted",
    "edge", "brave", "opera", "vivaldi",
    "about", "moz-extension", "resource",
    "view-source", "devtools", "data", "javascript",
}

# Store pages refuse content scripts even though they are served over https.
RESTRICTED_HOSTS = {
    "chrome.google.com",
    "chromewebstore.google.com",
    "addons.mozilla.org",
    "microsoftedge.microsoft.com",
}

FILE_SCHEMES = {"file"}

DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}


def _scheme(url: str) -> str:
    url = (url or "").strip()
    head, sep, _ = url.partition(":")
    if not sep:
        return ""
    return head.lower()


def classify(url: str, file_access_granted: bool = False) -> PageCategory:
    scheme = _scheme(url)

    if scheme in RESTRICTED_SCHEMES:
        return PageCategory.RESTRICTED

    if scheme in ("http", "https"):
        try:
            host = (urlparse(url.strip()).hostname or "").lower()
        except ValueError:
            host = ""
        if host in RESTRICTED_HOSTS:
            return PageCategory.RESTRICTED

    if scheme in FILE_SCHEMES and not file_access_granted:
        return PageCategory.FILE_SYSTEM_UNAUTHORIZED

    return PageCategory.NORMAL


def origin_of(url: str) -> str:
    """
    Normalize a page URL to the origin used for per-site preferences:
    lower-cased scheme and host, explicit port only when it is not the
    scheme default. Local files share the single origin ``file://``.
    """
    url = (url or "").strip()
    scheme = _scheme(url)
    if not scheme:
        return ""
    if scheme in FILE_SCHEMES:
        return "file://"

    try:
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        port = parsed.port
    except ValueError:
        return ""

    if not host:
        return f"{scheme}://"
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"
