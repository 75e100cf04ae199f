"""
Exercise Router

HTTP surface for the listening-comprehension pipeline:
- Importing local audio and downloading remote / video-platform audio
- Listing assembled exercises (correct answers hidden until answered)
- Driving the single playback session: select, play, pause, seek, skip
- Recording answers and bookmarks, regenerating questions
- Answer analysis, exercise recommendations and learning statistics

Pipeline errors are translated into HTTP status codes here; the components
themselves only raise the ``ListeningError`` hierarchy.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..errors import (
    INVALID_ANSWER,
    AuthError,
    ListeningError,
    ParseError,
    PollingTimeoutError,
    SessionError,
    TransportError,
    ValidationError,
)
from ..schemas import Exercise, Question
from ..services import Services
from ..session import DEFAULT_SKIP_SECONDS


# Initialize FastAPI router for exercise endpoints
router = APIRouter(prefix="/exercises", tags=["exercises"])


# ============================================================================
# REQUEST MODELS
# ============================================================================

class ImportRequest(BaseModel):
    """
    Request model for importing a file already present on the server.

    Attributes:
        path: Filesystem path of the audio file to import
        allow_metadata_only: Keep the exercise even if transcription fails
    """
    path: str
    allow_metadata_only: bool = False


class DownloadRequest(BaseModel):
    """
    Request model for downloading remote audio.

    Attributes:
        url: Direct audio URL, or a video-platform watch/short link
        title: Optional title overriding the detected one
        is_video_platform: Treat ``url`` as a video-platform link
        allow_metadata_only: Keep the exercise even if transcription fails
    """
    url: str
    title: Optional[str] = None
    is_video_platform: bool = False
    allow_metadata_only: bool = False


class SeekRequest(BaseModel):
    fraction: float = Field(ge=0.0, le=1.0)


class SkipRequest(BaseModel):
    seconds: float = Field(default=DEFAULT_SKIP_SECONDS, gt=0)


class AnswerRequest(BaseModel):
    """
    A user's answer to a question of the selected exercise.

    Attributes:
        index: Selected option index
        question_id: Question addressed; defaults to the first question
    """
    index: int
    question_id: Optional[str] = None


class AnalysisRequest(BaseModel):
    """
    Ask for feedback on an answer of the selected exercise.

    Attributes:
        index: Answer to analyse; defaults to the answer already recorded
        question_id: Question addressed; defaults to the first question
    """
    index: Optional[int] = None
    question_id: Optional[str] = None


# ============================================================================
# HELPERS
# ============================================================================

def get_services(request: Request) -> Services:
    return request.app.state.services


def _http_error(exc: ListeningError) -> HTTPException:
    """
    Translate a pipeline error into an HTTPException.

    Order matters: ``NetworkError`` is a ``TransportError`` and
    ``PollingTimeoutError`` is checked before the generic fallbacks.
    """
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail={"reason": exc.reason, "message": str(exc)})
    if isinstance(exc, SessionError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, PollingTimeoutError):
        return HTTPException(status_code=504, detail=str(exc))
    if isinstance(exc, (AuthError, TransportError, ParseError)):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _public_question(q: Question) -> Dict[str, Any]:
    # Correct index only revealed once the question has been answered
    out: Dict[str, Any] = {
        "id": q.id,
        "question": q.question,
        "options": list(q.options),
        "difficulty": q.difficulty.value,
        "user_selected": q.user_selected,
    }
    if q.is_answered:
        out["correct_option_index"] = q.correct_option_index
        out["is_correct"] = q.is_correct
    return out


def _public_exercise(ex: Exercise) -> Dict[str, Any]:
    return {
        "id": ex.id,
        "title": ex.title,
        "audio_file_name": ex.audio_file_name,
        "duration": ex.duration,
        "transcript": ex.transcript,
        "difficulty": ex.difficulty.value,
        "type": ex.type.value,
        "artist": ex.artist,
        "album": ex.album,
        "marked_timestamps": list(ex.marked_timestamps),
        "questions": [_public_question(q) for q in ex.questions],
    }


def _session_view(services: Services) -> Dict[str, Any]:
    s = services.session
    return {
        "state": s.state.value,
        "exercise": _public_exercise(s.current_exercise) if s.current_exercise else None,
        "progress": s.progress,
        "current_time": s.current_time,
        "duration": s.duration,
        "error": s.error,
    }


# ============================================================================
# EXERCISES
# ============================================================================

@router.get("/")
async def list_exercises(services: Services = Depends(get_services)) -> List[Dict[str, Any]]:
    """Return every assembled exercise in insertion order."""
    return [_public_exercise(ex) for ex in services.catalog.all()]


@router.post("/import")
async def import_exercise(req: ImportRequest, services: Services = Depends(get_services)):
    """
    Import a local audio file and assemble an exercise from it.

    Runs acquisition, transcription and question generation in sequence.
    Unsupported formats are rejected with 400 before anything is stored.

    Raises:
        HTTPException: 400 on validation errors, 502/504 on remote failures
    """
    try:
        exercise = await services.pipeline.import_local(req.path, allow_metadata_only=req.allow_metadata_only)
    except ListeningError as exc:
        raise _http_error(exc) from exc
    return _public_exercise(exercise)


@router.post("/download")
async def download_exercise(req: DownloadRequest, services: Services = Depends(get_services)):
    """
    Download remote audio (direct URL or video-platform link) and assemble
    an exercise from it.

    Raises:
        HTTPException: 400 on an invalid URL, 502 on download or remote
        service failures, 504 when transcription polling runs out
    """
    try:
        exercise = await services.pipeline.download_remote(
            req.url,
            req.title,
            req.is_video_platform,
            allow_metadata_only=req.allow_metadata_only,
        )
    except ListeningError as exc:
        raise _http_error(exc) from exc
    return _public_exercise(exercise)


@router.get("/stored")
async def list_stored(services: Services = Depends(get_services)) -> List[str]:
    """Return the audio file names currently held in storage."""
    return services.acquisition.list_stored()


@router.post("/{exercise_id}/select")
async def select_exercise(exercise_id: str, services: Services = Depends(get_services)):
    """
    Make ``exercise_id`` the active exercise of the session.

    A missing audio file does not fail the request; it is reported in the
    ``error`` field of the returned session view.
    """
    try:
        exercise = services.catalog.get(exercise_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Exercise not found")
    services.session.select(exercise)
    return _session_view(services)


# ============================================================================
# SESSION
# ============================================================================

@router.get("/session")
async def get_session(services: Services = Depends(get_services)):
    services.session.tick()
    return _session_view(services)


@router.post("/session/deselect")
async def deselect(services: Services = Depends(get_services)):
    services.session.deselect()
    return _session_view(services)


@router.post("/session/play")
async def play(services: Services = Depends(get_services)):
    services.session.play()
    return _session_view(services)


@router.post("/session/pause")
async def pause(services: Services = Depends(get_services)):
    services.session.pause()
    return _session_view(services)


@router.post("/session/seek")
async def seek(req: SeekRequest, services: Services = Depends(get_services)):
    services.session.seek(req.fraction)
    return _session_view(services)


@router.post("/session/forward")
async def forward(req: SkipRequest, services: Services = Depends(get_services)):
    services.session.forward(req.seconds)
    return _session_view(services)


@router.post("/session/backward")
async def backward(req: SkipRequest, services: Services = Depends(get_services)):
    services.session.backward(req.seconds)
    return _session_view(services)


@router.post("/session/answer")
async def answer(req: AnswerRequest, services: Services = Depends(get_services)):
    """
    Record an answer on the selected exercise.

    Answers may be overwritten. A correct answer emits one learning-stats
    event; the response says whether one was recorded.
    """
    try:
        event = services.session.submit_answer(req.index, req.question_id)
    except ListeningError as exc:
        raise _http_error(exc) from exc
    view = _session_view(services)
    view["stats_recorded"] = event is not None
    return view


@router.post("/session/bookmark")
async def bookmark(services: Services = Depends(get_services)):
    try:
        position = services.session.mark_timestamp()
    except ListeningError as exc:
        raise _http_error(exc) from exc
    view = _session_view(services)
    view["bookmark"] = position
    return view


@router.post("/session/regenerate")
async def regenerate(services: Services = Depends(get_services)):
    """
    Replace the questions of the selected exercise.

    Identity, title and audio reference are kept; question generation never
    fails, so the only error is having no exercise selected.
    """
    try:
        await services.session.regenerate_questions()
    except ListeningError as exc:
        raise _http_error(exc) from exc
    return _session_view(services)


@router.post("/session/analysis")
async def analyze_answer(req: AnalysisRequest, services: Services = Depends(get_services)):
    """
    Explain an answer of the selected exercise.

    Without an explicit ``index`` the answer already recorded on the question
    is analysed. Feedback generation itself never fails: an unreachable
    completion service yields a canned or local analysis.

    Raises:
        HTTPException: 409 without a selected exercise, 400 when there is
        no answer to analyse
    """
    exercise = services.session.current_exercise
    if exercise is None:
        raise _http_error(SessionError("no exercise selected"))
    index = req.index
    if index is None:
        question = next((q for q in exercise.questions if req.question_id in (None, q.id)), None)
        index = question.user_selected if question is not None else None
    if index is None:
        raise _http_error(ValidationError(INVALID_ANSWER, "", "no answer to analyse"))
    analysis = await services.advisor.analyze_comprehension(exercise, index, req.question_id)
    return analysis.model_dump(mode="json")


# ============================================================================
# LEARNING STATISTICS
# ============================================================================

@router.get("/stats")
async def learning_stats(
    limit: int = Query(default=20, ge=1, le=200),
    services: Services = Depends(get_services),
):
    """Aggregate learning statistics plus the most recent events, newest first."""
    return {
        "summary": services.stats.summary(),
        "recent": [e.model_dump(mode="json") for e in services.stats.recent(limit)],
    }


@router.get("/recommendations")
async def recommendations(services: Services = Depends(get_services)):
    """
    Suggest listening exercises from the recorded learning statistics.

    Falls back to canned or fixed suggestions when the completion service is
    unavailable, so this endpoint always answers 200.
    """
    recs = await services.advisor.recommend(services.stats.summary())
    return [r.model_dump(mode="json") for r in recs]
