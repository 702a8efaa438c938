import io
import uuid
import zipfile

import docx
import httpx
import pytest
from youtube_transcript_api import TranscriptsDisabled

from quire.core.errors import ExtractionFailed, TranscriptUnavailable, UnsupportedContentType
from quire.core.storage import LocalObjectStorage
from quire.ingest.base import SourceDescriptor
from quire.ingest.extractor import ContentExtractor, text_title
from quire.ingest.loaders import CSV, DOCX, JSON, PDF, TEXT, load_file, sniff_mime_type
from quire.ingest.web import parse_html, website_title
from quire.ingest.youtube import video_id
from quire.models.source import SourceType

PAGE = (
    "<html><head><title>  Tide   Pools </title></head><body>"
    "<nav>Home | About</nav><main><p>Anemones live here.</p><script>track()</script>"
    "<p>So do crabs.</p></main><footer>(c)</footer></body></html>"
)


@pytest.mark.unit
def test_csv_rows_become_documents():
    mime, docs = load_file(b"name,age\nAda,36\nAlan,41\n", "text/csv", "people.csv")
    assert mime == CSV
    assert [d.text for d in docs] == ["name: Ada\nage: 36", "name: Alan\nage: 41"]
    assert docs[1].metadata == {"row": 2}


@pytest.mark.unit
def test_json_array_elements_become_documents():
    mime, docs = load_file(b'[{"a": 1}, {"b": {"c": "two"}}]', "application/json")
    assert mime == JSON
    assert [d.text for d in docs] == ["/0/a: 1", "/1/b/c: two"]


@pytest.mark.unit
def test_plain_text_and_docx():
    mime, docs = load_file("café\r\nline two".encode(), None, "notes.txt")
    assert mime == TEXT and docs[0].text == "café\nline two"

    document = docx.Document()
    document.add_paragraph("First paragraph")
    document.add_paragraph("Second paragraph")
    buffer = io.BytesIO()
    document.save(buffer)
    mime, docs = load_file(buffer.getvalue(), "application/octet-stream", "report.docx")
    assert mime == DOCX
    assert docs[0].text == "First paragraph\nSecond paragraph"


@pytest.mark.unit
def test_content_wins_over_declared_type():
    assert sniff_mime_type(b"%PDF-1.7 rest", "text/plain", "x.txt") == PDF
    assert sniff_mime_type(b'{"k": 1}', "text/plain") == JSON


@pytest.mark.unit
def test_unsupported_content_is_rejected():
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("readme.txt", "hi")
    with pytest.raises(UnsupportedContentType):
        load_file(buffer.getvalue(), "application/zip", "bundle.zip")
    with pytest.raises(UnsupportedContentType):
        load_file(b"\x89PNG\r\n\x1a\n\xff\xfe\x00", "image/png", "pic.png")


@pytest.mark.unit
def test_html_principal_text():
    title, text = parse_html(PAGE)
    assert title == "Tide Pools"
    assert text == "Anemones live here.\nSo do crabs."


@pytest.mark.unit
def test_titles_and_video_ids():
    assert text_title("short") == "short"
    assert text_title("x" * 60) == "x" * 50 + "..."
    assert website_title("https://example.org/a/b") == "Website: example.org"
    assert video_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=4") == "dQw4w9WgXcQ"
    assert video_id("https://youtu.be/dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert video_id("https://vimeo.com/123") is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_website_extraction_uses_page_title(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, html=PAGE)

    extractor = ContentExtractor(LocalObjectStorage(tmp_path), transport=httpx.MockTransport(handler))
    result = await extractor.extract(SourceDescriptor(uuid.uuid4(), SourceType.WEBSITE, url="https://tide.example/pools"))
    assert result.title == "Tide Pools"
    assert result.documents[0].metadata["url"] == "https://tide.example/pools"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_network_errors_are_transient(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    extractor = ContentExtractor(LocalObjectStorage(tmp_path), transport=httpx.MockTransport(handler))
    with pytest.raises(ExtractionFailed) as info:
        await extractor.extract(SourceDescriptor(uuid.uuid4(), SourceType.WEBSITE, url="https://down.example"))
    assert info.value.transient is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_http_error_status_is_terminal(tmp_path):
    extractor = ContentExtractor(
        LocalObjectStorage(tmp_path), transport=httpx.MockTransport(lambda request: httpx.Response(404))
    )
    with pytest.raises(ExtractionFailed) as info:
        await extractor.extract(SourceDescriptor(uuid.uuid4(), SourceType.WEBSITE, url="https://gone.example"))
    assert info.value.transient is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_youtube_without_captions(tmp_path):
    def no_captions(vid, languages):
        raise TranscriptsDisabled(vid)

    extractor = ContentExtractor(
        LocalObjectStorage(tmp_path),
        transport=httpx.MockTransport(lambda request: httpx.Response(404)),
        transcript_fetcher=no_captions,
    )
    with pytest.raises(TranscriptUnavailable):
        await extractor.extract(
            SourceDescriptor(uuid.uuid4(), SourceType.YOUTUBE, url="https://youtu.be/dQw4w9WgXcQ")
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_youtube_transcript_and_oembed_title(tmp_path):
    def captions(vid, languages):
        return [{"text": "hello  there", "start": 0.0, "duration": 1.0}, {"text": "general", "start": 1.0, "duration": 1.0}]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"title": "A Talk"})

    extractor = ContentExtractor(
        LocalObjectStorage(tmp_path), transport=httpx.MockTransport(handler), transcript_fetcher=captions
    )
    result = await extractor.extract(
        SourceDescriptor(uuid.uuid4(), SourceType.YOUTUBE, url="https://www.youtube.com/watch?v=dQw4w9WgXcQ")
    )
    assert result.title == "A Talk"
    assert result.documents[0].text == "hello there general"
    assert result.documents[0].metadata["videoId"] == "dQw4w9WgXcQ"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stored_file_is_read_back(tmp_path):
    storage = LocalObjectStorage(tmp_path)
    url = await storage.put("uploads/nb/people.csv", b"name\nAda\n", CSV)
    result = await ContentExtractor(storage).extract(
        SourceDescriptor(uuid.uuid4(), SourceType.FILE, url=url, mime_type=CSV)
    )
    assert result.title is None
    assert result.documents[0].text == "name: Ada"
    assert result.documents[0].metadata["mimeType"] == CSV
