from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from typing import Final, List, Optional

import httpx

from docstruct.core.config import settings
from docstruct.services.converters import decode_text
from docstruct.utils.html_text import html_to_text


logger = logging.getLogger(__name__)

ALLOWED_SCHEMES: Final[set[str]] = {"http", "https"}
ALLOWED_PORTS: Final[set[int]] = {80, 443}
MAX_URL_LENGTH: Final[int] = 2048
REDIRECT_STATUSES: Final[set[int]] = {301, 302, 303, 307, 308}
ACCEPT_HEADER = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


class SsrfProtectionError(ValueError):
    """Raised when a URL points somewhere the service must not connect to."""


class LinkFetchError(RuntimeError):
    """Raised when a remote page cannot be fetched or has no text."""


class ContentSizeLimitError(LinkFetchError):
    """Raised when a remote page exceeds ``link_fetch_max_bytes``."""


def validate_url(url: str) -> httpx.URL:
    """Check scheme, credentials, port and host syntax of ``url``.

    Host resolution is checked separately by :func:`ensure_public_host`.
    """

    if not url or not url.strip():
        raise SsrfProtectionError("URL cannot be empty")
    if len(url) > MAX_URL_LENGTH:
        raise SsrfProtectionError(f"URL exceeds maximum length of {MAX_URL_LENGTH} characters")

    try:
        parsed = httpx.URL(url.strip())
    except (httpx.InvalidURL, TypeError, ValueError) as exc:
        raise SsrfProtectionError(f"Invalid URL format: {exc}") from exc

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise SsrfProtectionError("Only HTTP and HTTPS schemes are allowed")
    if parsed.userinfo:
        raise SsrfProtectionError("URL must not contain embedded credentials")
    if parsed.port is not None and parsed.port not in ALLOWED_PORTS:
        raise SsrfProtectionError("Only ports 80 and 443 are allowed")
    if not parsed.host:
        raise SsrfProtectionError("URL must have a valid host")
    return parsed


def check_ip_address(address: str, host: str) -> None:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError as exc:
        raise SsrfProtectionError(f"Cannot interpret address {address!r} for {host}") from exc

    mapped = getattr(ip, "ipv4_mapped", None)
    if mapped is not None:
        ip = mapped

    if ip.is_loopback:
        raise SsrfProtectionError(f"Localhost addresses are not allowed: {host}")
    if ip.is_link_local:
        raise SsrfProtectionError(f"Link-local addresses are not allowed: {host}")
    if ip.is_unspecified:
        raise SsrfProtectionError(f"Wildcard addresses are not allowed: {host}")
    if ip.is_multicast:
        raise SsrfProtectionError(f"Multicast addresses are not allowed: {host}")
    if ip.is_private or ip.is_reserved:
        raise SsrfProtectionError(f"Private IP addresses are not allowed: {host}")


async def resolve_host(host: str) -> List[str]:
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except socket.gaierror as exc:
        raise SsrfProtectionError(f"Cannot resolve host: {host}") from exc
    return sorted({info[4][0] for info in infos})


async def ensure_public_host(host: str) -> None:
    addresses = await resolve_host(host)
    if not addresses:
        raise SsrfProtectionError(f"Cannot resolve host: {host}")
    for address in addresses:
        check_ip_address(address, host)


async def fetch_link_text(
    url: str, *, transport: Optional[httpx.AsyncBaseTransport] = None
) -> str:
    """Fetch ``url`` and return its readable text.

    Redirects are followed manually so every hop is re-validated, and the body
    is streamed against ``link_fetch_max_bytes``.
    """

    current = validate_url(url)
    await ensure_public_host(current.host)
    logger.info("[link] fetching %s", current)

    timeout = httpx.Timeout(
        settings.link_fetch_read_timeout_seconds,
        connect=settings.link_fetch_connect_timeout_seconds,
    )
    headers = {"User-Agent": settings.link_fetch_user_agent, "Accept": ACCEPT_HEADER}
    max_bytes = settings.link_fetch_max_bytes

    async with httpx.AsyncClient(
        timeout=timeout, follow_redirects=False, transport=transport
    ) as client:
        redirects = 0
        while True:
            try:
                async with client.stream("GET", current, headers=headers) as response:
                    if response.status_code in REDIRECT_STATUSES:
                        redirects += 1
                        if redirects > settings.link_fetch_max_redirects:
                            raise LinkFetchError(
                                f"Too many redirects (max: {settings.link_fetch_max_redirects})"
                            )
                        location = response.headers.get("location")
                        if not location or not location.strip():
                            raise LinkFetchError("Redirect without Location header")
                        current = validate_url(str(current.join(location.strip())))
                        await ensure_public_host(current.host)
                        logger.info("[link] redirect %s -> %s", redirects, current)
                        continue

                    if response.status_code != 200:
                        raise LinkFetchError(f"HTTP error code: {response.status_code}")

                    declared = response.headers.get("content-length")
                    if declared and declared.isdigit() and int(declared) > max_bytes:
                        raise ContentSizeLimitError(
                            f"Content size exceeds limit of {max_bytes} bytes"
                        )

                    body = bytearray()
                    async for chunk in response.aiter_bytes():
                        body.extend(chunk)
                        if len(body) > max_bytes:
                            raise ContentSizeLimitError(
                                f"Content size exceeds limit of {max_bytes} bytes"
                            )
                    content_type = (response.headers.get("content-type") or "").lower()
                    charset = response.charset_encoding
                    break
            except httpx.HTTPError as exc:
                raise LinkFetchError(f"Failed to fetch URL: {exc}") from exc

    decoded = decode_text(bytes(body), charset)
    if content_type.startswith("text/plain"):
        text = decoded.strip()
    else:
        if content_type and "html" not in content_type:
            logger.warning("[link] non-HTML content type %s for %s", content_type, current)
        text = html_to_text(decoded)

    if not text:
        raise LinkFetchError("No text content extracted from page")
    logger.info("[link] extracted %s characters from %s", len(text), current)
    return text
