import asyncio
import base64

import pytest
from aioresponses import aioresponses

from gmail_relay.attachments import AttachmentManager, AttachmentPolicy, URLAttachmentFetcher
from gmail_relay.attachments.base import AttachmentFetcherBase, FetchedContent
from gmail_relay.config import RelayConfig
from gmail_relay.errors import ResolutionError, SizeLimitError, ValidationError
from gmail_relay.models import AttachmentSpec

HELLO = base64.b64encode(b"hello").decode()


class StubFetcher(AttachmentFetcherBase):
    def __init__(self, payloads=None, delay=0.0):
        self.payloads = payloads or {}
        self.delay = delay
        self.calls = []

    async def fetch(self, source, max_size=None):
        self.calls.append(source)
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.payloads[source]
        if isinstance(result, Exception):
            raise result
        return result


def fetched(data: bytes, content_type=None) -> FetchedContent:
    return FetchedContent(base64.b64encode(data).decode(), len(data), content_type)


@pytest.mark.asyncio
async def test_inline_content_is_passed_through():
    manager = AttachmentManager()
    resolved = await manager.resolve([AttachmentSpec(filename="hello.txt", content=HELLO)])

    assert len(resolved) == 1
    assert resolved[0].content == HELLO
    assert resolved[0].size == 5
    assert resolved[0].content_type == "text/plain"


@pytest.mark.asyncio
async def test_declared_content_type_wins():
    fetcher = StubFetcher({"https://x.test/a": fetched(b"abc", "text/csv")})
    manager = AttachmentManager(url_fetcher=fetcher)
    resolved = await manager.resolve([
        AttachmentSpec(filename="a.dat", url="https://x.test/a", content_type="application/x-custom"),
        AttachmentSpec(filename="b.dat", url="https://x.test/a"),
        AttachmentSpec(filename="c.unknownext", content=HELLO),
    ])

    assert [r.content_type for r in resolved] == ["application/x-custom", "text/csv", "application/octet-stream"]


@pytest.mark.asyncio
async def test_too_many_attachments_rejected_before_any_fetch():
    fetcher = StubFetcher()
    manager = AttachmentManager(url_fetcher=fetcher)
    attachments = [AttachmentSpec(filename=f"f{i}.pdf", url=f"https://x.test/{i}") for i in range(11)]

    with pytest.raises(ValidationError) as excinfo:
        await manager.resolve(attachments)

    assert "(11)" in excinfo.value.message
    assert "Maximum allowed: 10" in excinfo.value.message
    assert fetcher.calls == []


@pytest.mark.asyncio
async def test_invalid_items_are_listed():
    manager = AttachmentManager()
    with pytest.raises(ValidationError) as excinfo:
        await manager.resolve([AttachmentSpec(filename="../x.txt", content=HELLO)])

    assert excinfo.value.field == "attachments"
    assert excinfo.value.invalid[0]["index"] == 0
    assert "path traversal" in excinfo.value.invalid[0]["reason"]


@pytest.mark.asyncio
async def test_content_with_url_is_rejected_without_fetching():
    fetcher = StubFetcher({"https://x.test/a": fetched(b"remote")})
    manager = AttachmentManager(url_fetcher=fetcher)

    with pytest.raises(ValidationError) as excinfo:
        await manager.resolve([AttachmentSpec(filename="a.pdf", content=HELLO, url="https://x.test/a")])

    assert "not both" in excinfo.value.invalid[0]["reason"]
    assert fetcher.calls == []


@pytest.mark.asyncio
async def test_inline_total_over_limit_is_size_error():
    manager = AttachmentManager(policy=AttachmentPolicy(max_size=100, max_total_size=8))
    with pytest.raises(SizeLimitError) as excinfo:
        await manager.resolve([
            AttachmentSpec(filename="a.txt", content=HELLO),
            AttachmentSpec(filename="b.txt", content=HELLO),
        ])

    assert excinfo.value.measured == 10
    assert excinfo.value.limit == 8


@pytest.mark.asyncio
async def test_resolved_total_over_limit_is_size_error():
    fetcher = StubFetcher({"https://x.test/a": fetched(b"12345"), "https://x.test/b": fetched(b"67890")})
    manager = AttachmentManager(policy=AttachmentPolicy(max_size=100, max_total_size=8), url_fetcher=fetcher)

    with pytest.raises(SizeLimitError):
        await manager.resolve([
            AttachmentSpec(filename="a.txt", url="https://x.test/a"),
            AttachmentSpec(filename="b.txt", url="https://x.test/b"),
        ])


@pytest.mark.asyncio
async def test_url_404_aborts_with_named_attachment():
    url = "https://files.example.com/missing.pdf"
    manager = AttachmentManager(url_fetcher=URLAttachmentFetcher())
    with aioresponses() as m:
        m.get(url, status=404)
        with pytest.raises(ResolutionError) as excinfo:
            await manager.resolve([
                AttachmentSpec(filename="ok.txt", content=HELLO),
                AttachmentSpec(filename="missing.pdf", url=url),
            ])

    err = excinfo.value
    assert err.message.startswith('Failed to load attachment "missing.pdf" from URL:')
    assert "404" in err.message
    assert err.status == 404
    assert err.filename == "missing.pdf"


@pytest.mark.asyncio
async def test_sequential_resolution_stops_at_first_failure():
    fetcher = StubFetcher({
        "https://x.test/1": ResolutionError("boom", url="https://x.test/1"),
        "https://x.test/2": fetched(b"never"),
    })
    manager = AttachmentManager(url_fetcher=fetcher)

    with pytest.raises(ResolutionError):
        await manager.resolve([
            AttachmentSpec(filename="one.txt", url="https://x.test/1"),
            AttachmentSpec(filename="two.txt", url="https://x.test/2"),
        ])

    assert fetcher.calls == ["https://x.test/1"]


@pytest.mark.asyncio
async def test_bounded_concurrency_preserves_order():
    payloads = {f"https://x.test/{i}": fetched(str(i).encode()) for i in range(4)}
    fetcher = StubFetcher(payloads, delay=0.01)
    manager = AttachmentManager(url_fetcher=fetcher, concurrency=2)

    resolved = await manager.resolve(
        [AttachmentSpec(filename=f"{i}.txt", url=f"https://x.test/{i}") for i in range(4)]
    )

    assert [base64.b64decode(r.content) for r in resolved] == [b"0", b"1", b"2", b"3"]


def test_from_config_applies_limits():
    config = RelayConfig(max_attachments=3, max_attachment_bytes=10, max_total_attachment_bytes=20,
                         attachment_timeout=5, attachment_concurrency=2)
    manager = AttachmentManager.from_config(config)

    assert manager.policy == AttachmentPolicy(max_count=3, max_size=10, max_total_size=20)
    assert manager._url_fetcher.timeout == 5
    assert manager._concurrency == 2
