"""
Answer analysis and exercise recommendations.

Both features ask the completion endpoint first. When the service cannot be
reached the canned keyword templates stand in, and when nothing usable comes
back a fixed local result is returned. Neither call raises.

Analysis replies are read section by section::

    Explanation: text
    Suggested topics:
    - topic
    Difficulty analysis: text
    Common mistakes:
    - mistake

Recommendation replies are read one numbered line at a time; the exercise
type and difficulty are picked from keywords on the line.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .completion_client import CompletionClient
from .errors import ListeningError
from .question_generation import (
	ANALYSIS_PROMPT_MARKER,
	DEFAULT_TEMPLATES,
	RECOMMENDATION_PROMPT_MARKER,
	KeywordTemplateStrategy,
)
from .schemas import ComprehensionAnalysis, Difficulty, Exercise, ExerciseRecommendation, ExerciseType, Question

LOGGER = logging.getLogger(__name__)

RECOMMENDATION_CONFIDENCE = 0.85

# Section headers, English and Chinese
SECTION_MARKERS: Dict[str, Tuple[str, ...]] = {
	"explanation": ("Explanation", "解释"),
	"suggested_topics": ("Suggested topics", "建议学习主题"),
	"difficulty_analysis": ("Difficulty analysis", "难度分析"),
	"common_mistakes": ("Common mistakes", "常见错误"),
}
LIST_SECTIONS = ("suggested_topics", "common_mistakes")

TYPE_KEYWORDS: Tuple[Tuple[ExerciseType, Tuple[str, ...]], ...] = (
	(ExerciseType.precision, ("precision", "精听")),
	(ExerciseType.listen_repeat, ("listen and repeat", "listen-repeat", "跟读", "听说")),
	(ExerciseType.extensive, ("extensive", "泛听")),
)
DIFFICULTY_KEYWORDS: Tuple[Tuple[Difficulty, Tuple[str, ...]], ...] = (
	(Difficulty.advanced, ("advanced", "高级")),
	(Difficulty.intermediate, ("intermediate", "中级")),
	(Difficulty.beginner, ("beginner", "初级")),
)

_NUMBERED_LINE = re.compile(r"^\s*\d+\s*[.)、]\s*(.+)$")


# ============================================================================
# PROMPTS
# ============================================================================

def build_analysis_prompt(exercise: Exercise, question: Question, answer: int) -> str:
	options = "\n".join(f"{i}. {opt}" for i, opt in enumerate(question.options))
	return (
		f"Here is a French listening exercise. Please {ANALYSIS_PROMPT_MARKER}.\n\n"
		f"Transcript:\n{exercise.transcript}\n\n"
		f"Question: {question.question}\n"
		f"Options:\n{options}\n"
		f"Correct answer: {question.correct_option_index}\n"
		f"My answer: {answer}\n\n"
		"Explain whether my choice is right and why, then list suggested topics to study, "
		"a difficulty analysis and common mistakes, using this layout:\n"
		"Explanation: ...\n"
		"Suggested topics:\n- ...\n"
		"Difficulty analysis: ...\n"
		"Common mistakes:\n- ..."
	)


def build_recommendation_prompt(summary: Mapping[str, Any]) -> str:
	accuracy = float(summary.get("mean_accuracy") or 0.0)
	return (
		"These are my French learning statistics:\n"
		f"- Study time: {float(summary.get('total_duration') or 0.0):.0f} seconds\n"
		"- Topic: listening\n"
		f"- Completed items: {int(summary.get('events') or 0)}\n"
		f"- Accuracy: {accuracy * 100:.0f}%\n\n"
		f"Please {RECOMMENDATION_PROMPT_MARKER} for me: 2-3 listening exercise types "
		"(precision, extensive, listen and repeat) with a difficulty level each, "
		"one numbered line per exercise."
	)


# ============================================================================
# PARSERS
# ============================================================================

def _section_start(line: str) -> Optional[Tuple[str, str]]:
	for name, markers in SECTION_MARKERS.items():
		for marker in markers:
			if line.startswith(marker):
				rest = line[len(marker):].lstrip()
				if rest[:1] in (":", "："):
					return name, rest[1:].strip()
	return None


def parse_analysis(text: str, is_correct: bool) -> Optional[ComprehensionAnalysis]:
	"""
	Read the four analysis sections out of a reply.

	Text sections keep every line until the next header; list sections keep
	the dash-prefixed lines. Returns None when no section has any content.
	"""
	texts: Dict[str, List[str]] = {"explanation": [], "difficulty_analysis": []}
	lists: Dict[str, List[str]] = {name: [] for name in LIST_SECTIONS}
	current: Optional[str] = None

	for raw in text.splitlines():
		line = raw.strip()
		if not line:
			continue
		start = _section_start(line)
		if start is not None:
			current, rest = start
			if rest and current in texts:
				texts[current].append(rest)
			continue
		if current in lists:
			if line.startswith(("-", "•")):
				item = line.lstrip("-• ").strip()
				if item:
					lists[current].append(item)
		elif current in texts:
			texts[current].append(line)

	if not any(texts.values()) and not any(lists.values()):
		return None
	return ComprehensionAnalysis(
		is_correct=is_correct,
		explanation=" ".join(texts["explanation"]),
		suggested_topics=lists["suggested_topics"],
		difficulty_analysis=" ".join(texts["difficulty_analysis"]),
		common_mistakes=lists["common_mistakes"],
	)


def _pick(line: str, table, default):
	lowered = line.lower()
	for value, keywords in table:
		if any(k in lowered for k in keywords):
			return value
	return default


def parse_recommendations(text: str) -> List[ExerciseRecommendation]:
	recs: List[ExerciseRecommendation] = []
	for raw in text.splitlines():
		m = _NUMBERED_LINE.match(raw)
		if not m:
			continue
		reason = m.group(1).strip()
		recs.append(ExerciseRecommendation(
			type=_pick(reason, TYPE_KEYWORDS, ExerciseType.extensive),
			difficulty=_pick(reason, DIFFICULTY_KEYWORDS, Difficulty.beginner),
			reason=reason,
			confidence=RECOMMENDATION_CONFIDENCE,
		))
	if not recs:
		recs.append(ExerciseRecommendation(
			type=ExerciseType.extensive,
			difficulty=Difficulty.beginner,
			reason="Start with basic extensive listening",
			confidence=0.9,
		))
	return recs


# ============================================================================
# LOCAL FALLBACKS
# ============================================================================

def local_analysis(is_correct: bool) -> ComprehensionAnalysis:
	return ComprehensionAnalysis(
		is_correct=is_correct,
		explanation=(
			"This question checks basic greetings. In the dialogue 'Je m'appelle' "
			"is the usual way to give your name."
		),
		suggested_topics=["Basic greetings", "Introducing yourself"],
		difficulty_analysis="Beginner level: the most common greeting and self-introduction phrases.",
		common_mistakes=[
			"Confusing 'Je m'appelle' with 'Comment allez-vous'",
			"Missing the basic greeting 'Bonjour'",
		],
	)


def default_recommendations() -> List[ExerciseRecommendation]:
	return [
		ExerciseRecommendation(
			type=ExerciseType.precision,
			difficulty=Difficulty.beginner,
			reason="Keep strengthening precision listening on basic dialogues",
			confidence=0.85,
		),
		ExerciseRecommendation(
			type=ExerciseType.extensive,
			difficulty=Difficulty.intermediate,
			reason="Try intermediate extensive listening material",
			confidence=0.75,
		),
	]


# ============================================================================
# ADVISOR
# ============================================================================

class FeedbackAdvisor:
	def __init__(
		self,
		client: Optional[CompletionClient] = None,
		*,
		templates: Sequence[Tuple[str, str]] = DEFAULT_TEMPLATES,
	) -> None:
		self.client = client
		self._templates = KeywordTemplateStrategy(templates)

	async def _ask(self, prompt: str) -> Optional[str]:
		if self.client is not None:
			try:
				return await self.client.generate(prompt)
			except ListeningError as exc:
				LOGGER.warning("Remote feedback request failed: %s", exc)
		return self._templates.match(prompt)

	async def analyze_comprehension(
		self,
		exercise: Exercise,
		answer: int,
		question_id: Optional[str] = None,
	) -> ComprehensionAnalysis:
		question = _find_question(exercise, question_id)
		if question is None:
			return local_analysis(False)
		is_correct = answer == question.correct_option_index
		reply = await self._ask(build_analysis_prompt(exercise, question, answer))
		analysis = parse_analysis(reply, is_correct) if reply else None
		if analysis is None:
			LOGGER.info("No usable analysis for exercise %s; using the local one", exercise.id)
			return local_analysis(is_correct)
		return analysis

	async def recommend(self, summary: Mapping[str, Any]) -> List[ExerciseRecommendation]:
		reply = await self._ask(build_recommendation_prompt(summary))
		if reply is None:
			return default_recommendations()
		return parse_recommendations(reply)


def _find_question(exercise: Exercise, question_id: Optional[str]) -> Optional[Question]:
	if question_id is None:
		return exercise.questions[0] if exercise.questions else None
	for q in exercise.questions:
		if q.id == question_id:
			return q
	return None
