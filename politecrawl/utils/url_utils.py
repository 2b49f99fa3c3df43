from pathlib import Path
from typing import List
from urllib.parse import urlparse, urlsplit, urlunparse
import json
import re

from loguru import logger

from politecrawl.errors import InvalidUrlError


DEFAULT_PORTS = {"http": 80, "https": 443}


def _clean_tracking_params(query: str) -> str:
    clean_query = re.sub(r"(utm_[^=&]+|sessionid|fbclid|gclid)=[^&]*", "", query, flags=re.IGNORECASE)
    clean_query = re.sub(r"&&+", "&", clean_query).strip("&")
    return clean_query


def normalize_url(url: str) -> str | None:
    """Normalize a user-supplied URL; returns None when it cannot be crawled."""
    raw = (url or "").strip()
    if not raw:
        return None

    # scheme-less input such as "example.com/team"
    if not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", raw):
        raw = f"https://{raw.lstrip('/')}"

    try:
        parsed = urlparse(raw)
        _ = parsed.port
    except ValueError:
        return None

    if parsed.scheme.lower() not in ("http", "https") or not parsed.hostname:
        return None

    path = re.sub(r"/{2,}", "/", parsed.path or "/")
    if path != "/" and path.endswith("/"):
        path = path[:-1]

    parsed = parsed._replace(
        scheme=parsed.scheme.lower(),
        netloc=parsed.netloc.lower(),
        path=path,
        query=_clean_tracking_params(parsed.query),
        fragment="",
    )
    return urlunparse(parsed)


def get_origin(url: str) -> str:
    """Return ``scheme://host[:port]`` for a URL, dropping the scheme's default port."""
    try:
        parsed = urlparse((url or "").strip())
        port = parsed.port
    except ValueError as exc:
        raise InvalidUrlError(url, f"Invalid port ({exc})") from exc

    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "").lower()
    if scheme not in DEFAULT_PORTS or not host:
        raise InvalidUrlError(url)

    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != DEFAULT_PORTS[scheme]:
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def get_request_path(url: str) -> str:
    """Path (with any ;params) plus query string, the part of a URL robots rules are matched against."""
    parsed = urlsplit(url)
    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"
    return path


def robots_url(origin: str) -> str:
    return f"{origin}/robots.txt"


def load_urls(path: str) -> List[str]:
    """Read URLs from a JSON file holding either a list or ``{"urls": [...]}``."""
    file_path = Path(path).resolve()
    if not file_path.exists():
        raise FileNotFoundError(f"Input file not found: {file_path}")

    data = json.loads(file_path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("urls")
    if not isinstance(data, list):
        raise ValueError("Invalid input format. Expected array of URLs or {\"urls\": [...]}")

    urls: List[str] = []
    for raw in data:
        normalized = normalize_url(str(raw))
        if normalized is None:
            logger.warning(f"Ignoring uncrawlable input URL: {raw!r}")
            continue
        urls.append(normalized)
    return urls
