from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from conftest import FakeClock
from ifrench.acquisition import AcquisitionManager
from ifrench.errors import AuthError, PollingTimeoutError, TransportError, ValidationError
from ifrench.pipeline import ExerciseCatalog, ExercisePipeline
from ifrench.question_generation import QuestionGenerator
from ifrench.schemas import Difficulty, Exercise, ExerciseType
from ifrench.session import ClockedPlayer, ExerciseSession
from ifrench.stats import InMemoryStatsSink


class DummyTranscriber:
    def __init__(self, transcript: str = "Bonjour! Comment allez-vous?", error: Exception = None):
        self.transcript = transcript
        self.error = error
        self.paths = []

    async def transcribe(self, audio_path: Path) -> str:
        self.paths.append(audio_path)
        if self.error is not None:
            raise self.error
        return self.transcript


def _pipeline(tmp_path: Path, transcriber: DummyTranscriber, handler=None) -> ExercisePipeline:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler or (lambda r: httpx.Response(404))))
    acquisition = AcquisitionManager(tmp_path / "storage", client=client)
    return ExercisePipeline(acquisition, transcriber, QuestionGenerator(), ExerciseCatalog())


def test_import_builds_exercise_and_catalogs_it(tmp_path: Path, wav_factory):
    transcriber = DummyTranscriber()
    pipeline = _pipeline(tmp_path, transcriber)

    exercise = asyncio.run(pipeline.import_local(wav_factory("salut.wav", seconds=30.0)))

    assert exercise.title == "salut"
    assert exercise.duration == pytest.approx(30.0, rel=0.01)
    assert exercise.transcript == "Bonjour! Comment allez-vous?"
    assert exercise.type is ExerciseType.extensive
    assert exercise.difficulty is exercise.questions[0].difficulty
    assert transcriber.paths == [tmp_path / "storage" / exercise.audio_file_name]
    assert pipeline.catalog.get(exercise.id) is exercise
    assert len(pipeline.catalog) == 1

    q = exercise.questions[0]
    assert len(q.options) == 4
    assert 0 <= q.correct_option_index <= 3


def test_end_to_end_answer_emits_stats(tmp_path: Path, wav_factory):
    pipeline = _pipeline(tmp_path, DummyTranscriber())
    exercise = asyncio.run(pipeline.import_local(wav_factory("salut.wav", seconds=30.0)))
    stats = InMemoryStatsSink()
    session = ExerciseSession(ClockedPlayer(FakeClock()), pipeline.generator, stats, pipeline.acquisition.storage_root)

    session.select(exercise)
    session.submit_answer(exercise.correct_option_index)

    assert session.error is None
    assert len(stats.events) == 1
    assert stats.events[0].accuracy == 1.0


@pytest.mark.parametrize("error", [TransportError("down"), AuthError("bad key"), PollingTimeoutError(30)])
def test_transcription_errors_propagate(tmp_path: Path, wav_factory, error):
    pipeline = _pipeline(tmp_path, DummyTranscriber(error=error))
    with pytest.raises(type(error)):
        asyncio.run(pipeline.import_local(wav_factory()))
    assert len(pipeline.catalog) == 0
    assert pipeline.acquisition.list_stored() == []


def test_metadata_only_fallback_when_allowed(tmp_path: Path, wav_factory):
    pipeline = _pipeline(tmp_path, DummyTranscriber(error=TransportError("down")))
    exercise = asyncio.run(pipeline.import_local(wav_factory(), allow_metadata_only=True))
    assert exercise.transcript == ""
    assert len(exercise.questions) == 3
    assert exercise.difficulty is Difficulty.beginner
    assert len(pipeline.catalog) == 1
    assert len(pipeline.acquisition.list_stored()) == 1


def test_validation_errors_stop_before_transcription(tmp_path: Path):
    transcriber = DummyTranscriber()
    pipeline = _pipeline(tmp_path, transcriber)
    bad = tmp_path / "notes.txt"
    bad.write_text("hi", encoding="utf-8")
    with pytest.raises(ValidationError):
        asyncio.run(pipeline.import_local(bad))
    assert transcriber.paths == []


def test_download_remote_flows_through(tmp_path: Path, wav_factory):
    payload = wav_factory("remote.wav", seconds=2.0).read_bytes()
    pipeline = _pipeline(tmp_path, DummyTranscriber(), lambda r: httpx.Response(200, content=payload))
    exercise = asyncio.run(pipeline.download_remote("https://cdn.example.com/audio/lecon.wav", "Leçon"))
    assert exercise.title == "Leçon"
    assert exercise.audio_file_name == "lecon.wav"
    assert exercise.duration == pytest.approx(2.0, rel=0.01)


def test_catalog_operations():
    catalog = ExerciseCatalog()
    a = catalog.add(Exercise(title="A", audio_file_name="a.mp3", duration=1))
    b = catalog.add(Exercise(title="B", audio_file_name="b.mp3", duration=2))
    assert [e.title for e in catalog.all()] == ["A", "B"]
    assert a.id in catalog

    updated = a.model_copy(update={"title": "A2"})
    catalog.replace(updated)
    assert catalog.get(a.id).title == "A2"
    assert [e.id for e in catalog] == [a.id, b.id]

    with pytest.raises(KeyError):
        catalog.get("missing")
    with pytest.raises(KeyError):
        catalog.replace(Exercise(title="C", audio_file_name="c.mp3", duration=1))


def test_failed_download_transcription_leaves_no_audio_behind(tmp_path: Path, wav_factory):
    payload = wav_factory("remote.wav", seconds=2.0).read_bytes()
    pipeline = _pipeline(
        tmp_path,
        DummyTranscriber(error=PollingTimeoutError(30)),
        lambda r: httpx.Response(200, content=payload),
    )
    with pytest.raises(PollingTimeoutError):
        asyncio.run(pipeline.download_remote("https://cdn.example.com/audio/lecon.wav"))
    assert list((tmp_path / "storage").iterdir()) == []
    assert len(pipeline.catalog) == 0
