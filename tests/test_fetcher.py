"""
Tests for the SSRF-safe fetcher.
"""

import socket
import threading
import time
from unittest.mock import Mock

import pytest
import requests
from requests.exceptions import ConnectionError, ConnectTimeout
from requests.structures import CaseInsensitiveDict

from checkup.config import FetchConfig
from checkup.errors import InputError, SecurityRejection
from checkup.fetcher import (
    assert_safe_target,
    fetch_following_redirects,
    fetch_with_isolation,
    is_private_address,
    normalize_url,
    resolve_url,
)


class StalledResponse:
    """Response whose body never arrives until released."""

    status_code = 200
    encoding = "utf-8"

    def __init__(self):
        self.headers = CaseInsensitiveDict({"content-type": "text/html"})
        self.release = threading.Event()
        self.closed = threading.Event()

    def iter_content(self, chunk_size: int = 1):
        self.release.wait(5)
        yield b"late"

    def close(self):
        self.closed.set()


class TestNormalizeUrl:
    """Tests for URL normalization."""

    def test_adds_https_to_bare_domain(self):
        assert normalize_url("example.com") == "https://example.com/"

    def test_lowercases_scheme_and_host_and_drops_fragment(self):
        assert normalize_url("HTTP://Example.COM/Path?q=1#top") == "http://example.com/Path?q=1"

    def test_trims_whitespace(self):
        assert normalize_url("  https://example.com/about  ") == "https://example.com/about"

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_rejects_empty(self, raw):
        with pytest.raises(InputError, match="Please provide a URL."):
            normalize_url(raw)

    @pytest.mark.parametrize("raw", ["ftp://example.com/file", "javascript:alert(1)", "mailto:a@example.com"])
    def test_rejects_non_http_schemes(self, raw):
        with pytest.raises(InputError, match=r"Only http\(s\) URLs are allowed."):
            normalize_url(raw)

    def test_rejects_malformed_port(self):
        with pytest.raises(InputError, match="Invalid URL format."):
            normalize_url("https://example.com:notaport/")


class TestIsPrivateAddress:
    """Tests for the private-range classifier."""

    @pytest.mark.parametrize("ip", [
        "127.0.0.1",
        "10.0.0.5",
        "172.16.0.1",
        "172.31.255.255",
        "192.168.1.1",
        "169.254.169.254",
        "100.64.0.1",
        "0.0.0.0",
        "::1",
        "::",
        "fd00::1",
        "fe80::1",
        "::ffff:127.0.0.1",
        "not-an-ip",
    ])
    def test_private_and_unparseable(self, ip):
        assert is_private_address(ip) is True

    @pytest.mark.parametrize("ip", ["8.8.8.8", "93.184.216.34", "172.32.0.1", "2606:4700::1111"])
    def test_public(self, ip):
        assert is_private_address(ip) is False


class TestAssertSafeTarget:
    """Guard rejections happen before any network activity."""

    @pytest.mark.parametrize("url", ["http://127.0.0.1/", "http://10.0.0.5/admin", "http://[::1]/"])
    def test_rejects_private_ip_literals(self, url):
        resolver = Mock()
        with pytest.raises(SecurityRejection, match="Private or internal IP targets are blocked."):
            assert_safe_target(url, resolver)
        resolver.assert_not_called()

    @pytest.mark.parametrize("url", ["http://localhost/", "http://internal.local/", "http://app.localhost:3000/"])
    def test_rejects_local_names(self, url):
        resolver = Mock()
        with pytest.raises(SecurityRejection, match="Private or local network targets are blocked."):
            assert_safe_target(url, resolver)
        resolver.assert_not_called()

    def test_rejects_names_resolving_to_private_ranges(self):
        resolver = Mock(return_value=["93.184.216.34", "10.1.2.3"])
        with pytest.raises(SecurityRejection, match="Resolved IP points to a private/internal range."):
            assert_safe_target("https://sneaky.example/", resolver)
        resolver.assert_called_once_with("sneaky.example")

    def test_rejects_unresolvable_names(self):
        with pytest.raises(SecurityRejection, match="Hostname could not be resolved."):
            assert_safe_target("https://nowhere.example/", lambda host: [])

    def test_accepts_public_names(self, public_resolver):
        assert_safe_target("https://example.com/", public_resolver)

    def test_resolve_url_normalizes_then_guards(self, public_resolver):
        assert resolve_url("Example.com", public_resolver) == "https://example.com/"


class TestFetchFollowingRedirects:
    """Tests for the manual redirect loop."""

    def test_plain_success(self, make_session, make_response, fetch_config, public_resolver):
        response = make_response(200, "<html><body>hello</body></html>")
        session = make_session({"https://example.com/": response})

        result = fetch_following_redirects(
            "https://example.com/", config=fetch_config, session=session, resolver=public_resolver
        )

        assert result.ok is True
        assert result.status == 200
        assert result.final_url == "https://example.com/"
        assert result.redirect_count == 0
        assert "hello" in result.html
        assert response.closed is True

    def test_sends_identifying_headers_without_auto_redirects(self, make_response, fetch_config, public_resolver):
        session = Mock()
        session.get.return_value = make_response(200, "ok")

        fetch_following_redirects(
            "https://example.com/", config=fetch_config, session=session, resolver=public_resolver
        )

        kwargs = session.get.call_args.kwargs
        assert kwargs["allow_redirects"] is False
        assert kwargs["stream"] is True
        assert kwargs["headers"]["User-Agent"] == "AICV-AI-Visibility-Checkup/1.0"

    def test_follows_relative_and_absolute_redirects(
        self, make_session, make_response, make_redirect, fetch_config, public_resolver
    ):
        session = make_session({
            "http://example.com/": make_redirect("https://example.com/"),
            "https://example.com/": make_redirect("/home", status=302),
            "https://example.com/home": make_response(200, "landed"),
        })

        result = fetch_following_redirects(
            "http://example.com/", config=fetch_config, session=session, resolver=public_resolver
        )

        assert result.ok is True
        assert result.redirect_count == 2
        assert result.final_url == "https://example.com/home"

    def test_six_redirects_rejected_without_seventh_fetch(
        self, make_session, make_redirect, fetch_config, public_resolver
    ):
        routes = {
            f"https://example.com/hop{i}": make_redirect(f"https://example.com/hop{i + 1}")
            for i in range(7)
        }
        session = make_session(routes)

        result = fetch_following_redirects(
            "https://example.com/hop0", config=fetch_config, session=session, resolver=public_resolver
        )

        assert result.ok is False
        assert result.status == 508
        assert result.error == "Too many redirects (>5)."
        assert len(session.calls) == 6
        assert "https://example.com/hop6" not in session.calls

    def test_redirect_without_location_is_an_error(self, make_session, make_response, fetch_config, public_resolver):
        session = make_session({"https://example.com/": make_response(302, "", headers={})})

        result = fetch_following_redirects(
            "https://example.com/", config=fetch_config, session=session, resolver=public_resolver
        )

        assert result.ok is False
        assert result.status == 302
        assert "Location" in result.error

    def test_redirect_to_private_target_is_blocked(
        self, make_session, make_redirect, fetch_config, public_resolver
    ):
        session = make_session({"https://example.com/": make_redirect("http://127.0.0.1/admin")})

        result = fetch_following_redirects(
            "https://example.com/", config=fetch_config, session=session, resolver=public_resolver
        )

        assert result.ok is False
        assert result.status == 400
        assert result.error.startswith("Blocked target:")
        assert session.calls == ["https://example.com/"]

    def test_redirect_to_unsupported_scheme(self, make_session, make_redirect, fetch_config, public_resolver):
        session = make_session({"https://example.com/": make_redirect("ftp://example.com/file")})

        result = fetch_following_redirects(
            "https://example.com/", config=fetch_config, session=session, resolver=public_resolver
        )

        assert result.status == 400
        assert len(session.calls) == 1

    def test_connect_timeout_maps_to_408(self, make_session, fetch_config, public_resolver):
        session = make_session({"https://example.com/": ConnectTimeout("slow")})

        result = fetch_following_redirects(
            "https://example.com/", config=fetch_config, session=session, resolver=public_resolver
        )

        assert result.status == 408
        assert result.timed_out is True
        assert result.error == "Fetch timed out after 2 seconds."

    def test_network_error_maps_to_520(self, make_session, fetch_config, public_resolver):
        session = make_session({"https://example.com/": ConnectionError("refused")})

        result = fetch_following_redirects(
            "https://example.com/", config=fetch_config, session=session, resolver=public_resolver
        )

        assert result.status == 520
        assert result.error == "Target fetch failed."

    def test_stalled_body_read_times_out_at_deadline(self, make_session, fetch_config, public_resolver):
        response = StalledResponse()
        session = make_session({"https://example.com/": response})

        started = time.monotonic()
        result = fetch_following_redirects(
            "https://example.com/", timeout_seconds=0.2, config=fetch_config,
            session=session, resolver=public_resolver,
        )
        elapsed = time.monotonic() - started
        response.release.set()

        assert result.status == 408
        assert result.timed_out is True
        assert result.html == ""
        assert elapsed < 1.5
        assert response.closed.wait(2)

    def test_slow_dns_counts_against_the_hop_budget(self, make_session, fetch_config):
        gate = threading.Event()

        def slow_resolver(host):
            gate.wait(5)
            return ["93.184.216.34"]

        session = make_session()
        started = time.monotonic()
        result = fetch_following_redirects(
            "https://example.com/", timeout_seconds=0.2, config=fetch_config,
            session=session, resolver=slow_resolver,
        )
        elapsed = time.monotonic() - started
        gate.set()

        assert result.status == 408
        assert result.timed_out is True
        assert elapsed < 1.5
        assert session.calls == []

    def test_body_is_capped(self, make_session, make_response, public_resolver):
        config = FetchConfig(max_body_chars=100)
        session = make_session({"https://example.com/": make_response(200, "a" * 1000)})

        result = fetch_following_redirects(
            "https://example.com/", config=config, session=session, resolver=public_resolver
        )

        assert result.ok is True
        assert len(result.html) == 100

    def test_blocking_statuses_are_flagged(self, make_session, make_response, fetch_config, public_resolver):
        session = make_session({"https://example.com/": make_response(403, "Forbidden")})

        result = fetch_following_redirects(
            "https://example.com/", config=fetch_config, session=session, resolver=public_resolver
        )

        assert result.ok is False
        assert result.status == 403
        assert result.blocked_status is True


class TestFetchWithIsolation:
    """Tests for the never-raise probe wrapper."""

    def test_returns_none_on_unexpected_error(self, fetch_config, public_resolver):
        session = Mock()
        session.get.side_effect = RuntimeError("boom")

        result = fetch_with_isolation(
            "https://example.com/robots.txt", config=fetch_config, session=session, resolver=public_resolver
        )

        assert result is None

    def test_passes_through_expected_failures(self, make_session, fetch_config, public_resolver):
        session = make_session()

        result = fetch_with_isolation(
            "https://example.com/robots.txt", config=fetch_config, session=session, resolver=public_resolver
        )

        assert result is not None
        assert result.status == 404


SLOW_BODY_HEAD = (
    b"HTTP/1.1 200 OK\r\nContent-Type: text/html\r\nContent-Length: 100000\r\n\r\n"
)
SLOW_HEADERS_HEAD = b"HTTP/1.1 200 OK\r\nContent-Type: text/html\r\nX-Slow: "


@pytest.fixture
def slow_server():
    """Starts local servers that send head, then one byte every 0.1s."""
    stop = threading.Event()
    listeners = []

    def start(head: bytes) -> str:
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        listener.settimeout(5)
        listeners.append(listener)

        def serve():
            try:
                conn, _ = listener.accept()
            except OSError:
                return
            with conn:
                conn.recv(65536)
                try:
                    conn.sendall(head)
                    while not stop.wait(0.1):
                        conn.sendall(b"x")
                except OSError:
                    pass

        threading.Thread(target=serve, daemon=True).start()
        return f"http://127.0.0.1:{listener.getsockname()[1]}/"

    yield start
    stop.set()
    for listener in listeners:
        listener.close()


def fetch_workers_alive() -> bool:
    return any(t.name == "checkup-fetch" and t.is_alive() for t in threading.enumerate())


class TestWallClockBudget:
    """A server trickling bytes cannot hold a hop past its budget."""

    @pytest.fixture
    def session(self) -> requests.Session:
        session = requests.Session()
        session.trust_env = False
        return session

    @pytest.fixture(autouse=True)
    def allow_loopback(self, monkeypatch):
        monkeypatch.setattr("checkup.fetcher.assert_safe_target", lambda *args, **kwargs: None)

    @pytest.mark.parametrize("head", [SLOW_BODY_HEAD, SLOW_HEADERS_HEAD], ids=["body", "headers"])
    def test_trickling_server_is_cut_off(self, slow_server, session, head):
        url = slow_server(head)

        started = time.monotonic()
        result = fetch_following_redirects(url, timeout_seconds=1.0, session=session)
        elapsed = time.monotonic() - started

        assert result.status == 408
        assert result.timed_out is True
        assert elapsed < 2.0

    def test_connection_is_shut_down_after_body_timeout(self, slow_server, session):
        url = slow_server(SLOW_BODY_HEAD)

        fetch_following_redirects(url, timeout_seconds=0.5, session=session)

        give_up = time.monotonic() + 2.0
        while fetch_workers_alive() and time.monotonic() < give_up:
            time.sleep(0.05)
        assert not fetch_workers_alive()
