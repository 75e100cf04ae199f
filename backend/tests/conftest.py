from __future__ import annotations

import json
import struct
import wave
from pathlib import Path
from typing import Callable, List

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def write_wav(path: Path, seconds: float = 1.0, rate: int = 8000) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    frames = int(seconds * rate)
    with wave.open(str(path), "wb") as handle:
        handle.setnchannels(1)
        handle.setsampwidth(2)
        handle.setframerate(rate)
        handle.writeframes(struct.pack("<h", 0) * frames)
    return path


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture(scope="session")
def rsa_private_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture()
def credentials_file(tmp_path: Path, rsa_private_pem: str) -> Path:
    path = tmp_path / "service-account.json"
    path.write_text(
        json.dumps({
            "type": "service_account",
            "client_email": "listener@ifrench.iam.example.com",
            "private_key": rsa_private_pem,
        }),
        encoding="utf-8",
    )
    return path


@pytest.fixture()
def wav_factory(tmp_path: Path) -> Callable[..., Path]:
    def _make(name: str = "clip.wav", seconds: float = 1.0) -> Path:
        return write_wav(tmp_path / "src" / name, seconds)

    return _make


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
