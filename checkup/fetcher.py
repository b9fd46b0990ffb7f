"""
SSRF-safe page fetcher for AI Visibility Checkup.

Every hop of a redirect chain is validated against the private-network guard
before it is requested. Expected failures (timeouts, non-2xx, redirect
exhaustion, network errors) are returned as FetchResult values, never raised.
"""

import ipaddress
import re
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as LookupTimeout
from dataclasses import dataclass
from typing import Callable, List, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

import requests
from requests.exceptions import RequestException, Timeout

from .config import FetchConfig
from .errors import InputError, SecurityRejection
from .logging_setup import get_logger

logger = get_logger("fetcher")

Resolver = Callable[[str], List[str]]

SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z\d+.-]*:")

READ_CHUNK_BYTES = 4 * 1024

BLOCKED_IPV4_NETWORKS = [
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("100.64.0.0/10"),  # carrier-grade NAT
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
]

BLOCKED_IPV6_NETWORKS = [
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]

_SESSION: Optional[requests.Session] = None
_DNS_POOL = ThreadPoolExecutor(max_workers=8, thread_name_prefix="checkup-dns")


def _get_session() -> requests.Session:
    global _SESSION
    if _SESSION is None:
        _SESSION = requests.Session()
    return _SESSION


@dataclass
class FetchResult:
    """Outcome of fetching one target, whatever happened on the way."""
    ok: bool
    status: int
    final_url: str
    html: str = ""
    timed_out: bool = False
    blocked_status: bool = False
    redirect_count: int = 0
    error: Optional[str] = None


def normalize_url(raw: str) -> str:
    """
    Trim, default the scheme to https, and drop the fragment.

    Raises InputError for empty, unparsable, or non-http(s) input.
    """
    value = (raw or "").strip()
    if not value:
        raise InputError("Please provide a URL.")
    if not SCHEME_PATTERN.match(value):
        value = f"https://{value}"

    try:
        parsed = urlsplit(value)
        parsed.port  # raises ValueError on a malformed port
    except ValueError:
        raise InputError("Invalid URL format.")

    scheme = parsed.scheme.lower()
    if scheme not in ("http", "https"):
        raise InputError("Only http(s) URLs are allowed.")
    if not parsed.hostname:
        raise InputError("Invalid URL format.")

    userinfo, _, hostport = parsed.netloc.rpartition("@")
    netloc = f"{userinfo}@{hostport.lower()}" if userinfo else hostport.lower()
    return urlunsplit((scheme, netloc, parsed.path or "/", parsed.query, ""))


def is_private_address(ip: str) -> bool:
    """True for loopback, private, link-local, CGNAT, unspecified or unparseable addresses."""
    try:
        addr = ipaddress.ip_address(ip.split("%")[0])
    except ValueError:
        return True

    if isinstance(addr, ipaddress.IPv6Address):
        if addr.ipv4_mapped is not None:
            return is_private_address(str(addr.ipv4_mapped))
        return any(addr in network for network in BLOCKED_IPV6_NETWORKS)

    return any(addr in network for network in BLOCKED_IPV4_NETWORKS)


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.split("%")[0])
        return True
    except ValueError:
        return False


def _resolve_host(hostname: str) -> List[str]:
    """Return every address the hostname resolves to; empty on failure."""
    try:
        infos = socket.getaddrinfo(hostname, None)
    except (socket.gaierror, UnicodeError, OSError):
        return []
    return [info[4][0] for info in infos]


def _lookup(resolver: Resolver, host: str, timeout_seconds: Optional[float]) -> List[str]:
    if timeout_seconds is None:
        return resolver(host)
    return _DNS_POOL.submit(resolver, host).result(timeout=max(0.0, timeout_seconds))


def assert_safe_target(url: str, resolver: Resolver = None, timeout_seconds: float = None) -> None:
    """
    Reject local and private-network targets.

    Domain names must resolve, and every resolved address must be public.
    With timeout_seconds set, a lookup that takes longer raises LookupTimeout.
    """
    host = (urlsplit(url).hostname or "").lower().rstrip(".")
    if not host:
        raise SecurityRejection("Invalid URL format.")

    if host == "localhost" or host.endswith(".localhost") or host.endswith(".local"):
        raise SecurityRejection("Private or local network targets are blocked.")

    if _is_ip_literal(host):
        if is_private_address(host):
            raise SecurityRejection("Private or internal IP targets are blocked.")
        return

    addresses = _lookup(resolver or _resolve_host, host, timeout_seconds)
    if not addresses:
        raise SecurityRejection("Hostname could not be resolved.")

    for address in addresses:
        if is_private_address(address):
            raise SecurityRejection("Resolved IP points to a private/internal range.")


def resolve_url(raw: str, resolver: Resolver = None) -> str:
    """Normalize user input and verify it is a safe public target."""
    url = normalize_url(raw)
    assert_safe_target(url, resolver)
    return url


def _decode_body(response, body: bytes) -> str:
    content_type = (response.headers.get("content-type") or "").lower()
    encoding = response.encoding if "charset" in content_type and response.encoding else "utf-8"
    try:
        return body.decode(encoding, errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


def _read_capped(response, max_chars: int) -> str:
    """Read the body until max_chars bytes or end of stream."""
    chunks = []
    size = 0
    for chunk in response.iter_content(chunk_size=READ_CHUNK_BYTES):
        if not chunk:
            continue
        chunks.append(chunk)
        size += len(chunk)
        if size >= max_chars:
            break
    text = _decode_body(response, b"".join(chunks))
    return text[:max_chars]


def _underlying_socket(response) -> Optional[socket.socket]:
    """The socket a streamed requests response reads from, when reachable."""
    raw = getattr(response, "raw", None)
    sock = getattr(getattr(raw, "_connection", None), "sock", None)
    if sock is None:
        # http.client drops conn.sock on Connection: close; the reader still holds it
        reader = getattr(getattr(raw, "_fp", None), "fp", None)
        sock = getattr(getattr(reader, "raw", None), "_sock", None)
    return sock if isinstance(sock, socket.socket) else None


class _Hop:
    """
    One GET of a redirect chain, run on a worker thread.

    The caller waits at most until the hop's deadline. On expiry it calls
    abort(), which shuts the socket down so a blocked read returns at once;
    the worker then closes the response and exits.
    """

    def __init__(self, session, url: str, headers: dict, timeout_seconds: float, max_chars: int):
        self.session = session
        self.url = url
        self.headers = headers
        self.timeout_seconds = timeout_seconds
        self.max_chars = max_chars

        self.status: Optional[int] = None
        self.location: Optional[str] = None
        self.html = ""
        self.error: Optional[BaseException] = None

        self.done = threading.Event()
        self._response = None
        self._aborted = False
        self._lock = threading.Lock()

    def run(self) -> None:
        response = None
        try:
            response = self.session.get(
                self.url,
                headers=self.headers,
                allow_redirects=False,
                stream=True,
                timeout=(self.timeout_seconds, self.timeout_seconds),
            )
            with self._lock:
                self._response = response
                aborted = self._aborted
            if aborted:
                return

            self.status = response.status_code
            if 300 <= self.status < 400:
                self.location = response.headers.get("location")
            else:
                self.html = _read_capped(response, self.max_chars)
        except Exception as e:
            self.error = e
        finally:
            if response is not None:
                response.close()
            self.done.set()

    def abort(self) -> None:
        with self._lock:
            self._aborted = True
            response = self._response
        sock = _underlying_socket(response) if response is not None else None
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"Socket already closed for {self.url}: {e}")


def fetch_following_redirects(
    url: str,
    timeout_seconds: float = None,
    config: FetchConfig = None,
    session: requests.Session = None,
    resolver: Resolver = None,
) -> FetchResult:
    """
    GET url, following up to config.max_redirects redirects by hand.

    Each hop gets its own wall-clock budget of timeout_seconds, covering the
    DNS check, the request and the body read. When the budget runs out the
    hop's connection is shut down and a timed-out result is returned.
    """
    config = config or FetchConfig()
    timeout_seconds = timeout_seconds or config.page_timeout_seconds
    session = session or _get_session()
    headers = {"User-Agent": config.user_agent, "Accept": config.accept}
    timeout_message = f"Fetch timed out after {round(timeout_seconds)} seconds."

    current = url
    redirects = 0

    def failure(status: int, error: str, timed_out: bool = False) -> FetchResult:
        return FetchResult(
            ok=False,
            status=status,
            final_url=current,
            timed_out=timed_out,
            redirect_count=redirects,
            error=error,
        )

    while True:
        if urlsplit(current).scheme.lower() not in ("http", "https"):
            return failure(400, "Redirected to an unsupported URL scheme.")

        deadline = time.monotonic() + timeout_seconds

        try:
            assert_safe_target(current, resolver, timeout_seconds=timeout_seconds)
        except SecurityRejection as e:
            logger.warning(f"Blocked hop {redirects} to {current}: {e.message}")
            return failure(400, f"Blocked target: {e.message}")
        except LookupTimeout:
            logger.info(f"DNS lookup for {current} exceeded {timeout_seconds}s")
            return failure(408, timeout_message, timed_out=True)

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return failure(408, timeout_message, timed_out=True)

        hop = _Hop(session, current, headers, remaining, config.max_body_chars)
        worker = threading.Thread(target=hop.run, name="checkup-fetch", daemon=True)
        worker.start()

        if not hop.done.wait(max(0.0, deadline - time.monotonic())):
            hop.abort()
            logger.info(f"Hop {redirects} to {current} exceeded {timeout_seconds}s, aborted")
            return failure(408, timeout_message, timed_out=True)

        if isinstance(hop.error, Timeout):
            return failure(408, timeout_message, timed_out=True)
        if isinstance(hop.error, RequestException):
            logger.debug(f"Fetch failed for {current}: {hop.error}")
            return failure(520, "Target fetch failed.")
        if hop.error is not None:
            raise hop.error

        status = hop.status
        if 300 <= status < 400:
            if not hop.location:
                return failure(status, "Redirect response missing Location header.")

            redirects += 1
            if redirects > config.max_redirects:
                return failure(508, f"Too many redirects (>{config.max_redirects}).")

            current = urljoin(current, hop.location.strip())
            continue

        return FetchResult(
            ok=200 <= status < 300,
            status=status,
            final_url=current,
            html=hop.html,
            blocked_status=status in (403, 429),
            redirect_count=redirects,
        )


def fetch_with_isolation(
    url: str,
    timeout_seconds: float = None,
    config: FetchConfig = None,
    session: requests.Session = None,
    resolver: Resolver = None,
) -> Optional[FetchResult]:
    """
    Fetch for optional probes. Never raises.

    Returns None when the probe could not be evaluated at all.
    """
    try:
        return fetch_following_redirects(url, timeout_seconds, config, session, resolver)
    except Exception as e:
        logger.warning(f"Probe of {url} could not be evaluated: {e}")
        return None
