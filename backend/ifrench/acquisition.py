"""
Audio acquisition: bring a local file or a remote URL into durable storage.

Every file lands in the storage root through a temporary ``.part`` file that
is renamed into place with ``os.replace``, so readers never observe a partly
written audio file. Unsupported or unreadable audio leaves nothing behind.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
import shutil
import tempfile
import uuid
import wave
from dataclasses import dataclass
from email.message import Message
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

import httpx
import yt_dlp
from mutagen import File as MutagenFile
from mutagen import MutagenError

from .errors import (
	INVALID_URL,
	MISSING_SOURCE,
	UNREADABLE_AUDIO,
	UNSUPPORTED_FORMAT,
	NetworkError,
	ValidationError,
)
from .schemas import AudioAsset
from .settings import Settings

LOGGER = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ("mp3", "wav", "m4a", "aac", "mp4", "caf")
SHORT_LINK_HOSTS = ("youtu.be",)
DEFAULT_VIDEO_HOSTS = ("youtube.com", "www.youtube.com", "m.youtube.com", "youtu.be")
_VIDEO_ID = re.compile(r"^[A-Za-z0-9_-]+$")

ProgressCallback = Callable[[int, Optional[int]], None]


# ============================================================================
# METADATA PROBE
# ============================================================================

@dataclass(frozen=True)
class AudioMetadata:
	duration: float
	title: Optional[str] = None
	artist: Optional[str] = None
	album: Optional[str] = None


def _first_tag(tags: Any, keys: Iterable[str]) -> Optional[str]:
	if not tags:
		return None
	for key in keys:
		try:
			value = tags.get(key)
		except (KeyError, ValueError, TypeError):
			continue
		if value is None:
			continue
		if isinstance(value, (list, tuple)):
			value = value[0] if value else None
		text = str(value).strip() if value is not None else ""
		if text:
			return text
	return None


def _wav_duration(path: Path) -> Optional[float]:
	try:
		with contextlib.closing(wave.open(str(path), "rb")) as handle:
			rate = handle.getframerate()
			if not rate:
				return None
			return handle.getnframes() / float(rate)
	except (wave.Error, EOFError, OSError):
		return None


class AudioProbe:
	"""Reads duration and common tags (title, artist, album) with mutagen."""

	TITLE_KEYS = ("title", "TIT2", "\xa9nam")
	ARTIST_KEYS = ("artist", "TPE1", "\xa9ART")
	ALBUM_KEYS = ("album", "TALB", "\xa9alb")

	def __call__(self, path: Path, *, extension: Optional[str] = None) -> AudioMetadata:
		ext = (extension or path.suffix.lstrip(".")).lower()
		duration: Optional[float] = None
		tags: Any = None
		try:
			audio = MutagenFile(str(path), easy=True)
		except (MutagenError, OSError) as exc:
			LOGGER.debug("mutagen could not read %s: %s", path, exc)
			audio = None
		if audio is not None:
			length = getattr(getattr(audio, "info", None), "length", None)
			duration = float(length) if length else None
			tags = audio.tags
		if not duration and ext == "wav":
			duration = _wav_duration(path)
		if not duration or duration <= 0:
			raise ValidationError(UNREADABLE_AUDIO, path.name, f"cannot determine the duration of {path.name}")
		return AudioMetadata(
			duration=duration,
			title=_first_tag(tags, self.TITLE_KEYS),
			artist=_first_tag(tags, self.ARTIST_KEYS),
			album=_first_tag(tags, self.ALBUM_KEYS),
		)


# ============================================================================
# VIDEO PLATFORM
# ============================================================================

@dataclass(frozen=True)
class ResolvedStream:
	url: str
	extension: str = "mp3"
	title: Optional[str] = None


def extract_video_id(url: str, hosts: Sequence[str] = DEFAULT_VIDEO_HOSTS) -> str:
	"""Video id from ``host/<id>`` short links or ``?v=<id>`` watch links."""
	try:
		parsed = httpx.URL(url)
	except (httpx.InvalidURL, TypeError, ValueError) as exc:
		raise ValidationError(INVALID_URL, url) from exc
	host = (parsed.host or "").lower()
	if parsed.scheme not in ("http", "https") or host not in {h.lower() for h in hosts}:
		raise ValidationError(INVALID_URL, url)
	video_id = parsed.params.get("v")
	if not video_id and host in SHORT_LINK_HOSTS:
		segments = [s for s in parsed.path.split("/") if s]
		if len(segments) == 1:
			video_id = segments[0]
	if not video_id or not _VIDEO_ID.match(video_id):
		raise ValidationError(INVALID_URL, url)
	return video_id


class VideoAudioResolver:
	"""Resolves a video id to a direct audio stream with yt-dlp (no download)."""

	def __init__(self, options: Optional[Mapping[str, Any]] = None) -> None:
		self.options = {
			"quiet": True,
			"format": "bestaudio/best",
			"skip_download": True,
			"noplaylist": True,
			**(options or {}),
		}

	def _extract(self, watch_url: str) -> ResolvedStream:
		try:
			with yt_dlp.YoutubeDL(self.options) as ydl:
				info = ydl.extract_info(watch_url, download=False)
		except yt_dlp.utils.DownloadError as exc:
			raise NetworkError(f"could not resolve audio stream for {watch_url}: {exc}") from exc
		stream_url = (info or {}).get("url")
		if not stream_url:
			raise NetworkError(f"no audio stream found for {watch_url}")
		return ResolvedStream(url=stream_url, extension=info.get("ext") or "mp3", title=info.get("title"))

	async def resolve(self, video_id: str) -> ResolvedStream:
		watch_url = f"https://www.youtube.com/watch?v={video_id}"
		return await asyncio.to_thread(self._extract, watch_url)


# ============================================================================
# FILENAMES
# ============================================================================

def suggested_filename(response: httpx.Response) -> Optional[str]:
	"""Server-suggested filename: Content-Disposition first, then the URL path."""
	disposition = response.headers.get("content-disposition")
	if disposition:
		msg = Message()
		msg["content-disposition"] = disposition
		name = msg.get_filename()
		if name:
			name = PurePosixPath(name.replace("\\", "/")).name.strip()
			if name and name not in (".", ".."):
				return name
	last = PurePosixPath(response.url.path).name
	if last and "." in last.strip("."):
		return last
	return None


# ============================================================================
# MANAGER
# ============================================================================

class AcquisitionManager:
	def __init__(
		self,
		storage_root: Path,
		*,
		client: Optional[httpx.AsyncClient] = None,
		probe: Optional[Callable[..., AudioMetadata]] = None,
		video_resolver: Optional[VideoAudioResolver] = None,
		video_hosts: Sequence[str] = DEFAULT_VIDEO_HOSTS,
		timeout: float = 120.0,
	) -> None:
		self.storage_root = Path(storage_root)
		self.storage_root.mkdir(parents=True, exist_ok=True)
		self.probe = probe or AudioProbe()
		self.video_resolver = video_resolver or VideoAudioResolver()
		self.video_hosts = tuple(video_hosts)
		self._owns_client = client is None
		self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

	@classmethod
	def from_settings(cls, cfg: Settings, *, client: Optional[httpx.AsyncClient] = None) -> "AcquisitionManager":
		return cls(
			cfg.audio_storage_dir,
			client=client,
			video_hosts=cfg.video_platform_hosts,
			timeout=cfg.download_timeout,
		)

	def list_stored(self) -> List[str]:
		return sorted(
			p.name for p in self.storage_root.iterdir()
			if p.is_file() and not p.name.endswith(".part")
		)

	# ---- local files -------------------------------------------------------

	async def import_local(self, source: Path) -> AudioAsset:
		source = Path(source)
		ext = source.suffix.lstrip(".").lower()
		if ext not in SUPPORTED_EXTENSIONS:
			raise ValidationError(UNSUPPORTED_FORMAT, ext or source.name, f"unsupported audio format: {ext or source.name}")
		if not source.is_file():
			raise ValidationError(MISSING_SOURCE, str(source), f"audio file not found: {source}")
		file_name = f"{uuid.uuid4()}.{ext}"
		LOGGER.info("Importing %s as %s", source.name, file_name)
		part = self._part_path()
		try:
			await asyncio.to_thread(shutil.copyfile, source, part)
			meta = await asyncio.to_thread(self.probe, part, extension=ext)
			destination = self._commit(part, file_name)
		except BaseException:
			self._discard(part)
			raise
		return AudioAsset(
			file_name=file_name,
			path=destination,
			duration=meta.duration,
			title=meta.title or source.stem,
			artist=meta.artist,
			album=meta.album,
			source=str(source),
		)

	# ---- remote sources ----------------------------------------------------

	async def download_remote(
		self,
		url: str,
		title: Optional[str] = None,
		is_video_platform: bool = False,
		*,
		progress: Optional[ProgressCallback] = None,
	) -> AudioAsset:
		if is_video_platform:
			video_id = extract_video_id(url, self.video_hosts)
			LOGGER.info("Resolving video %s", video_id)
			stream = await self.video_resolver.resolve(video_id)
			file_name = f"youtube_{uuid.uuid4()}.{stream.extension}"
			asset = await self._download(stream.url, progress=progress, file_name=file_name, source=url)
			asset.title = title or stream.title or "YouTube Audio"
			return asset
		self._check_http_url(url)
		asset = await self._download(url, progress=progress, source=url)
		if title:
			asset.title = title
		return asset

	def _check_http_url(self, url: str) -> None:
		try:
			parsed = httpx.URL(url)
		except (httpx.InvalidURL, TypeError, ValueError) as exc:
			raise ValidationError(INVALID_URL, url) from exc
		if parsed.scheme not in ("http", "https") or not parsed.host:
			raise ValidationError(INVALID_URL, url)

	async def _download(
		self,
		url: str,
		*,
		source: str,
		progress: Optional[ProgressCallback] = None,
		file_name: Optional[str] = None,
	) -> AudioAsset:
		part = self._part_path()
		try:
			try:
				async with self._client.stream("GET", url) as r:
					if not r.is_success:
						await r.aread()
						raise NetworkError(
							f"download of {url} failed with HTTP {r.status_code}",
							status_code=r.status_code,
							body=r.text,
						)
					total = _content_length(r)
					received = 0
					with part.open("wb") as fh:
						async for chunk in r.aiter_bytes():
							fh.write(chunk)
							received += len(chunk)
							if progress is not None:
								progress(received, total)
					if file_name is None:
						file_name = suggested_filename(r) or _generated_name(url)
			except httpx.RequestError as exc:
				raise NetworkError(f"download of {url} failed: {exc}") from exc
			ext = PurePosixPath(file_name).suffix.lstrip(".").lower()
			meta = await asyncio.to_thread(self.probe, part, extension=ext)
			destination = self._commit(part, file_name)
		except BaseException:
			self._discard(part)
			raise
		LOGGER.info("Downloaded %s to %s (%.1fs)", url, destination.name, meta.duration)
		return AudioAsset(
			file_name=destination.name,
			path=destination,
			duration=meta.duration,
			title=meta.title or PurePosixPath(file_name).stem,
			artist=meta.artist,
			album=meta.album,
			source=source,
		)

	# ---- storage helpers ---------------------------------------------------

	def _part_path(self) -> Path:
		fd, name = tempfile.mkstemp(dir=self.storage_root, prefix=".", suffix=".part")
		os.close(fd)
		return Path(name)

	def _commit(self, part: Path, file_name: str) -> Path:
		destination = self.storage_root / file_name
		if destination.exists():
			destination = self.storage_root / f"{destination.stem}_{uuid.uuid4().hex[:8]}{destination.suffix}"
			LOGGER.info("%s already stored, keeping the new file as %s", file_name, destination.name)
		os.replace(part, destination)
		return destination

	def discard(self, file_name: str) -> None:
		"""Remove a stored audio file; a missing file is ignored."""
		with contextlib.suppress(FileNotFoundError):
			(self.storage_root / PurePosixPath(file_name).name).unlink()

	@staticmethod
	def _discard(part: Path) -> None:
		with contextlib.suppress(FileNotFoundError):
			part.unlink()

	async def aclose(self) -> None:
		if self._owns_client:
			await self._client.aclose()


def _content_length(response: httpx.Response) -> Optional[int]:
	value = response.headers.get("content-length")
	try:
		return int(value) if value is not None else None
	except ValueError:
		return None


def _generated_name(url: str) -> str:
	ext = PurePosixPath(httpx.URL(url).path).suffix.lstrip(".").lower() or "mp3"
	return f"download_{uuid.uuid4()}.{ext}"
