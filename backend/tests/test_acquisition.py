from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from conftest import write_wav
from ifrench.acquisition import (
    SUPPORTED_EXTENSIONS,
    AcquisitionManager,
    AudioMetadata,
    AudioProbe,
    ResolvedStream,
    extract_video_id,
)
from ifrench.errors import (
    INVALID_URL,
    MISSING_SOURCE,
    UNREADABLE_AUDIO,
    UNSUPPORTED_FORMAT,
    NetworkError,
    ValidationError,
)


class DummyProbe:
    def __init__(self, duration: float = 30.0, title=None):
        self.duration = duration
        self.title = title
        self.calls = []

    def __call__(self, path: Path, *, extension=None) -> AudioMetadata:
        self.calls.append((path, extension))
        return AudioMetadata(duration=self.duration, title=self.title, artist="Artiste", album=None)


class DummyResolver:
    def __init__(self, stream: ResolvedStream):
        self.stream = stream
        self.resolved = []

    async def resolve(self, video_id: str) -> ResolvedStream:
        self.resolved.append(video_id)
        return self.stream


def _manager(root: Path, handler=None, **kwargs) -> AcquisitionManager:
    handler = handler or (lambda r: httpx.Response(404))
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AcquisitionManager(root, client=client, **kwargs)


def _files(root: Path):
    return sorted(p.name for p in root.iterdir())


# ---- local import ------------------------------------------------------------

def test_import_real_wav_reads_duration(tmp_path: Path, wav_factory):
    source = wav_factory("bonjour.wav", seconds=2.0)
    manager = _manager(tmp_path / "storage")

    asset = asyncio.run(manager.import_local(source))

    assert asset.duration == pytest.approx(2.0, rel=0.01)
    assert asset.title == "bonjour"
    assert asset.file_name.endswith(".wav")
    assert asset.path.read_bytes() == source.read_bytes()
    assert manager.list_stored() == [asset.file_name]


@pytest.mark.parametrize("ext", SUPPORTED_EXTENSIONS)
def test_every_supported_extension_imports(tmp_path: Path, ext: str):
    source = tmp_path / f"clip.{ext.upper()}"
    source.write_bytes(b"\x00" * 64)
    probe = DummyProbe(duration=12.5)
    manager = _manager(tmp_path / "storage", probe=probe)

    asset = asyncio.run(manager.import_local(source))

    assert asset.duration > 0
    assert asset.file_name.endswith(f".{ext}")
    assert probe.calls[0][1] == ext
    assert manager.list_stored() == [asset.file_name]


@pytest.mark.parametrize("name", ["notes.txt", "video.mkv", "noextension", "archive.mp3.zip"])
def test_unsupported_extension_leaves_storage_empty(tmp_path: Path, name: str):
    source = tmp_path / name
    source.write_bytes(b"data")
    storage = tmp_path / "storage"
    manager = _manager(storage, probe=DummyProbe())

    with pytest.raises(ValidationError) as info:
        asyncio.run(manager.import_local(source))

    assert info.value.reason == UNSUPPORTED_FORMAT
    assert _files(storage) == []


def test_missing_source_file(tmp_path: Path):
    manager = _manager(tmp_path / "storage", probe=DummyProbe())
    with pytest.raises(ValidationError) as info:
        asyncio.run(manager.import_local(tmp_path / "ghost.mp3"))
    assert info.value.reason == MISSING_SOURCE


def test_unreadable_audio_is_rejected_and_cleaned_up(tmp_path: Path):
    source = tmp_path / "broken.mp3"
    source.write_bytes(b"definitely not audio" * 10)
    storage = tmp_path / "storage"
    manager = _manager(storage)

    with pytest.raises(ValidationError) as info:
        asyncio.run(manager.import_local(source))

    assert info.value.reason == UNREADABLE_AUDIO
    assert _files(storage) == []


def test_tag_title_wins_over_filename(tmp_path: Path):
    source = tmp_path / "track01.mp3"
    source.write_bytes(b"\x00")
    manager = _manager(tmp_path / "storage", probe=DummyProbe(title="Au marché"))
    asset = asyncio.run(manager.import_local(source))
    assert asset.title == "Au marché"
    assert asset.artist == "Artiste"


def test_probe_reads_wav_without_tags(tmp_path: Path):
    meta = AudioProbe()(write_wav(tmp_path / "a.wav", 0.25))
    assert meta.duration == pytest.approx(0.25, rel=0.01)
    assert meta.title is None


# ---- generic downloads ---------------------------------------------------------

def test_download_uses_content_disposition_name(tmp_path: Path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            content=b"a" * 1000,
            headers={"Content-Disposition": 'attachment; filename="../lesson 3.mp3"'},
        )

    received = []
    manager = _manager(tmp_path / "storage", handler, probe=DummyProbe())
    asset = asyncio.run(
        manager.download_remote("https://cdn.example.com/get?id=3", progress=lambda n, t: received.append((n, t)))
    )

    assert asset.file_name == "lesson 3.mp3"
    assert asset.title == "lesson 3"
    assert asset.source == "https://cdn.example.com/get?id=3"
    assert received[-1] == (1000, 1000)
    assert manager.list_stored() == ["lesson 3.mp3"]


def test_download_falls_back_to_url_name(tmp_path: Path):
    manager = _manager(tmp_path / "storage", lambda r: httpx.Response(200, content=b"new audio"), probe=DummyProbe())
    asset = asyncio.run(manager.download_remote("https://cdn.example.com/audio/dialogue.wav", title="Dialogue"))

    assert asset.file_name == "dialogue.wav"
    assert asset.title == "Dialogue"
    assert manager.list_stored() == ["dialogue.wav"]


def test_download_name_collision_keeps_both_files(tmp_path: Path):
    bodies = iter([b"first lesson", b"second lesson"])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            content=next(bodies),
            headers={"Content-Disposition": 'attachment; filename="lesson.mp3"'},
        )

    storage = tmp_path / "storage"
    manager = _manager(storage, handler, probe=DummyProbe())
    first = asyncio.run(manager.download_remote("https://cdn.example.com/get?id=1"))
    second = asyncio.run(manager.download_remote("https://cdn.example.com/get?id=2"))

    assert first.file_name == "lesson.mp3"
    assert second.file_name != first.file_name
    assert second.file_name.startswith("lesson_")
    assert second.file_name.endswith(".mp3")
    assert second.path == storage / second.file_name
    assert first.path.read_bytes() == b"first lesson"
    assert second.path.read_bytes() == b"second lesson"
    assert manager.list_stored() == sorted([first.file_name, second.file_name])


def test_discard_removes_stored_file(tmp_path: Path):
    manager = _manager(tmp_path / "storage", lambda r: httpx.Response(200, content=b"x"), probe=DummyProbe())
    asset = asyncio.run(manager.download_remote("https://cdn.example.com/audio/dialogue.wav"))
    manager.discard(asset.file_name)
    manager.discard(asset.file_name)
    assert manager.list_stored() == []


def test_download_generates_name_without_hint(tmp_path: Path):
    manager = _manager(tmp_path / "storage", lambda r: httpx.Response(200, content=b"x"), probe=DummyProbe())
    asset = asyncio.run(manager.download_remote("https://cdn.example.com/stream"))
    assert asset.file_name.startswith("download_")
    assert asset.file_name.endswith(".mp3")


@pytest.mark.parametrize("status", [404, 500])
def test_download_non_2xx_is_network_error(tmp_path: Path, status: int):
    storage = tmp_path / "storage"
    manager = _manager(storage, lambda r: httpx.Response(status, text="nope"), probe=DummyProbe())
    with pytest.raises(NetworkError) as info:
        asyncio.run(manager.download_remote("https://cdn.example.com/a.mp3"))
    assert info.value.status_code == status
    assert _files(storage) == []


def test_download_connection_failure_is_network_error(tmp_path: Path):
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    storage = tmp_path / "storage"
    manager = _manager(storage, handler, probe=DummyProbe())
    with pytest.raises(NetworkError):
        asyncio.run(manager.download_remote("https://cdn.example.com/a.mp3"))
    assert _files(storage) == []


@pytest.mark.parametrize("url", ["ftp://cdn.example.com/a.mp3", "not a url", "https:///a.mp3"])
def test_download_rejects_non_http_urls(tmp_path: Path, url: str):
    manager = _manager(tmp_path / "storage", probe=DummyProbe())
    with pytest.raises(ValidationError) as info:
        asyncio.run(manager.download_remote(url))
    assert info.value.reason == INVALID_URL


# ---- video platform --------------------------------------------------------------

@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://youtu.be/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=42", "dQw4w9WgXcQ"),
        ("https://m.youtube.com/watch?v=abc-_123", "abc-_123"),
        ("https://youtube.com/watch?feature=share&v=XYZ", "XYZ"),
    ],
)
def test_extract_video_id(url: str, expected: str):
    assert extract_video_id(url) == expected


@pytest.mark.parametrize(
    "url",
    [
        "https://vimeo.com/12345",
        "https://www.youtube.com/watch",
        "https://www.youtube.com/dQw4w9WgXcQ",
        "https://youtu.be/",
        "https://youtu.be/a/b",
        "ftp://youtu.be/dQw4w9WgXcQ",
        "https://youtu.be/bad id",
        "not a url",
    ],
)
def test_extract_video_id_rejects(url: str):
    with pytest.raises(ValidationError) as info:
        extract_video_id(url)
    assert info.value.reason == INVALID_URL


def test_video_download_resolves_stream_and_names_file(tmp_path: Path):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, content=b"m4a bytes")

    resolver = DummyResolver(ResolvedStream(url="https://media.example.com/s/123", extension="m4a", title="Leçon 1"))
    manager = _manager(tmp_path / "storage", handler, probe=DummyProbe(), video_resolver=resolver)

    asset = asyncio.run(manager.download_remote("https://youtu.be/dQw4w9WgXcQ", is_video_platform=True))

    assert resolver.resolved == ["dQw4w9WgXcQ"]
    assert seen == ["https://media.example.com/s/123"]
    assert asset.file_name.startswith("youtube_") and asset.file_name.endswith(".m4a")
    assert asset.title == "Leçon 1"
    assert asset.source == "https://youtu.be/dQw4w9WgXcQ"


def test_video_title_defaults(tmp_path: Path):
    resolver = DummyResolver(ResolvedStream(url="https://media.example.com/s/1", extension="webm"))
    manager = _manager(
        tmp_path / "storage", lambda r: httpx.Response(200, content=b"x"), probe=DummyProbe(), video_resolver=resolver
    )
    untitled = asyncio.run(manager.download_remote("https://youtu.be/abc", is_video_platform=True))
    titled = asyncio.run(manager.download_remote("https://youtu.be/abc", "Mon titre", True))
    assert untitled.title == "YouTube Audio"
    assert titled.title == "Mon titre"


def test_invalid_video_url_never_resolves(tmp_path: Path):
    resolver = DummyResolver(ResolvedStream(url="https://media.example.com/s/1"))
    manager = _manager(tmp_path / "storage", probe=DummyProbe(), video_resolver=resolver)
    with pytest.raises(ValidationError):
        asyncio.run(manager.download_remote("https://vimeo.com/1", is_video_platform=True))
    assert resolver.resolved == []
