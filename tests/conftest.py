"""Shared fixtures: in-memory store, controllable clock and a fake WebDAV server."""

import email.utils
from xml.sax.saxutils import escape

import httpx
import pytest

from otpvault.context import VaultContext
from otpvault.storage import CredentialEntry, MemoryStore
from otpvault.vault import CredentialVault
from otpvault.webdav import WebDAVConfig

T0 = 1_700_000_000_000
DAV_URL = "https://dav.example.com/remote.php/dav/files/alice/otp/"
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"  # b"12345678901234567890"


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeDav:
    """WebDAV collection served through httpx.MockTransport."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.files = {}
        self.requests = []
        self.fail_status = None
        self.before = None

    def add(self, name: str, body: str, modified_ms: int) -> None:
        self.files[name] = (body.encode("utf-8"), modified_ms)

    def body(self, name: str) -> str:
        return self.files[name][0].decode("utf-8")

    def _multistatus(self, collection: str) -> str:
        parts = [
            '<?xml version="1.0" encoding="utf-8"?>',
            '<d:multistatus xmlns:d="DAV:">',
            f"<d:response><d:href>{collection}</d:href></d:response>",
        ]
        for name, (_, modified) in sorted(self.files.items()):
            stamp = email.utils.formatdate(modified / 1000, usegmt=True)
            parts.append(
                f"<d:response><d:href>{collection}{escape(name)}</d:href>"
                f"<d:propstat><d:prop><d:displayname>{escape(name)}</d:displayname>"
                f"<d:getlastmodified>{stamp}</d:getlastmodified></d:prop>"
                f"<d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
            )
        parts.append("</d:multistatus>")
        return "".join(parts)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.before is not None:
            self.before(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status)
        path = request.url.path
        if request.method == "PROPFIND":
            return httpx.Response(207, text=self._multistatus(path))
        name = path.rsplit("/", 1)[-1]
        if request.method == "GET":
            if name not in self.files:
                return httpx.Response(404)
            return httpx.Response(200, content=self.files[name][0])
        if request.method == "PUT":
            created = name not in self.files
            self.files[name] = (request.read(), self.clock())
            return httpx.Response(201 if created else 204)
        return httpx.Response(405)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def dav(clock):
    return FakeDav(clock)


@pytest.fixture
def context(store, clock, dav):
    return VaultContext(store, clock=clock, http_client_factory=dav.client).init()


@pytest.fixture
def vault(context):
    return CredentialVault(context)


@pytest.fixture
def webdav_config():
    return WebDAVConfig(server_url=DAV_URL, username="alice", password="s3cret")


@pytest.fixture
def configured(context, webdav_config):
    context.save_webdav_config(webdav_config)
    return context


def make_entry(issuer="Example", account="alice@example.com", secret="JBSWY3DPEHPK3PXP", **kwargs):
    return CredentialEntry(secret=secret, issuer=issuer, account=account, **kwargs)
