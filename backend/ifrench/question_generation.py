"""
Question generation with an ordered fallback chain.

Strategies are tried in order and the first one producing at least one
question wins:

1. ``RemoteStrategy``: ask the completion endpoint and parse its reply.
2. ``KeywordTemplateStrategy``: pick a canned reply by matching markers in the
   prompt and parse it with the same grammar.
3. ``HardcodedStrategy``: two generic questions.

A remote reply that arrives but holds no usable block goes straight to the
hardcoded set; the canned templates only stand in for an unreachable service.

``QuestionGenerator.generate`` never raises; the winning tier is only logged.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence, Tuple

from .completion_client import CompletionClient
from .errors import ListeningError
from .question_parser import DEFAULT_GRAMMAR, ResponseGrammar, parse_questions
from .schemas import Difficulty, GenerationResult, GenerationTier, Question

LOGGER = logging.getLogger(__name__)

QUESTION_PROMPT_MARKER = "listening comprehension test questions"
RECOMMENDATION_PROMPT_MARKER = "recommend exercises"
ANALYSIS_PROMPT_MARKER = "analyse my choice"

QUESTION_COUNT = 3


def build_prompt(transcript: str, *, count: int = QUESTION_COUNT) -> str:
	return (
		f"Generate {count} {QUESTION_PROMPT_MARKER} for the following French text. "
		"Each question must contain the question itself, 4 options numbered 0-3, "
		"the index of the correct answer, and a difficulty level "
		"(beginner, intermediate, advanced). Separate questions with a blank line.\n\n"
		f"Text:\n{transcript}\n\n"
		"Output format example:\n"
		"Question 1: Where do the two people meet?\n"
		"Options 1:\n"
		"0. At a café\n"
		"1. At a shopping centre\n"
		"2. At school\n"
		"3. In a park\n"
		"Correct answer 1: 0\n"
		"Difficulty 1: beginner\n\n"
		"Question 2: ..."
	)


# Canned replies keyed by a marker that must appear in the prompt
DEFAULT_TEMPLATES: Tuple[Tuple[str, str], ...] = (
	(
		QUESTION_PROMPT_MARKER,
		"Question: According to the audio, which statement is the most accurate?\n"
		"Options:\n"
		"0. This is a conversation introducing French culture\n"
		"1. Two people are discussing the weather\n"
		"2. Someone is asking for directions\n"
		"3. This is an everyday shopping conversation\n"
		"Correct answer: 3\n"
		"Difficulty: intermediate",
	),
	(
		RECOMMENDATION_PROMPT_MARKER,
		"Recommended exercises:\n"
		"1. Precision listening - beginner: consolidate core vocabulary and grammar.\n"
		"2. Extensive listening - intermediate: get used to natural speech rate.\n"
		"3. Listen and repeat - beginner: improve pronunciation and intonation.",
	),
	(
		ANALYSIS_PROMPT_MARKER,
		"Explanation: The dialogue takes place in a shop. The customer asks for a price and the seller answers with an amount in euros.\n"
		"Suggested topics:\n"
		"- Shopping vocabulary\n"
		"- Numbers and prices\n"
		"- Dialogues in a shop\n"
		"Difficulty analysis: Intermediate. The speech is close to natural speed and numbers are easy to mishear.\n"
		"Common mistakes:\n"
		"- Confusing similar-sounding numbers such as seize and treize\n"
		"- Missing the polite phrase 'Je voudrais' that opens a request",
	),
)


def fallback_questions() -> List[Question]:
	"""The fixed last-resort question set; identical on every call."""
	return [
		Question(
			id="fallback-1",
			question="Where is this conversation most likely taking place?",
			options=["At a café", "At a school", "In a park", "In a supermarket"],
			correct_option_index=0,
			difficulty=Difficulty.beginner,
		),
		Question(
			id="fallback-2",
			question="How many people are mentioned in the conversation?",
			options=["One", "Two", "Three", "Four or more"],
			correct_option_index=1,
			difficulty=Difficulty.beginner,
		),
	]


def basic_questions(difficulty: Difficulty) -> List[Question]:
	"""Questions that only rely on exercise metadata, for audio without a transcript."""
	rate_index = {
		Difficulty.beginner: 0,
		Difficulty.intermediate: 1,
		Difficulty.advanced: 2,
	}[difficulty]
	return [
		Question(
			question="What is the main topic of this recording?",
			options=["Everyday conversation", "Cultural presentation", "Grammar lesson", "Storytelling"],
			correct_option_index=0,
			difficulty=difficulty,
		),
		Question(
			question="How fast is the speech in this recording?",
			options=[
				"Very slow, suited to beginners",
				"Moderate, with a few pauses",
				"Close to natural native speed",
				"Very fast, hard to follow",
			],
			correct_option_index=rate_index,
			difficulty=difficulty,
		),
		Question(
			question="Where would this recording most likely be heard?",
			options=["A language course", "A news report", "A film", "A radio show"],
			correct_option_index=0,
			difficulty=difficulty,
		),
	]


class GenerationStrategy(Protocol):
	tier: GenerationTier

	async def produce(self, prompt: str) -> Optional[GenerationResult]:
		...


class RemoteStrategy:
	tier = GenerationTier.remote

	def __init__(self, client: CompletionClient, grammar: ResponseGrammar = DEFAULT_GRAMMAR) -> None:
		self.client = client
		self.grammar = grammar

	async def produce(self, prompt: str) -> Optional[GenerationResult]:
		try:
			reply = await self.client.generate(prompt)
		except ListeningError as exc:
			LOGGER.warning("Remote question generation failed: %s", exc)
			return None
		questions = parse_questions(reply, self.grammar)
		if not questions:
			LOGGER.warning("Remote reply contained no usable question block; using the fixed fallback set")
			return GenerationResult(tier=GenerationTier.hardcoded, questions=fallback_questions())
		return GenerationResult(tier=self.tier, questions=questions)


class KeywordTemplateStrategy:
	tier = GenerationTier.keyword_template

	def __init__(
		self,
		templates: Sequence[Tuple[str, str]] = DEFAULT_TEMPLATES,
		grammar: ResponseGrammar = DEFAULT_GRAMMAR,
	) -> None:
		self.templates = tuple(templates)
		self.grammar = grammar

	def match(self, prompt: str) -> Optional[str]:
		for marker, canned in self.templates:
			if marker in prompt:
				return canned
		return None

	async def produce(self, prompt: str) -> Optional[GenerationResult]:
		canned = self.match(prompt)
		if canned is None:
			return None
		questions = parse_questions(canned, self.grammar)
		if not questions:
			return None
		return GenerationResult(tier=self.tier, questions=questions)


class HardcodedStrategy:
	tier = GenerationTier.hardcoded

	async def produce(self, prompt: str) -> Optional[GenerationResult]:
		return GenerationResult(tier=self.tier, questions=fallback_questions())


class QuestionGenerator:
	def __init__(
		self,
		client: Optional[CompletionClient] = None,
		*,
		strategies: Optional[Sequence[GenerationStrategy]] = None,
		templates: Sequence[Tuple[str, str]] = DEFAULT_TEMPLATES,
		grammar: ResponseGrammar = DEFAULT_GRAMMAR,
	) -> None:
		if strategies is None:
			chain: List[GenerationStrategy] = []
			if client is not None:
				chain.append(RemoteStrategy(client, grammar))
			chain.append(KeywordTemplateStrategy(templates, grammar))
			chain.append(HardcodedStrategy())
			strategies = chain
		self.strategies = list(strategies)

	async def generate_result(self, transcript: str) -> GenerationResult:
		prompt = build_prompt(transcript)
		for strategy in self.strategies:
			try:
				result = await strategy.produce(prompt)
			except Exception:
				LOGGER.exception("Question strategy %s crashed", getattr(strategy, "tier", strategy))
				continue
			if result is not None and result.questions:
				LOGGER.info("Questions produced by tier %s (%d)", result.tier.value, len(result.questions))
				return result
		LOGGER.warning("Every question strategy came up empty; using the fixed fallback set")
		return GenerationResult(tier=GenerationTier.hardcoded, questions=fallback_questions())

	async def generate(self, transcript: str) -> List[Question]:
		result = await self.generate_result(transcript)
		return result.questions

	def basic_result(self, difficulty: Difficulty = Difficulty.beginner) -> GenerationResult:
		"""Metadata-only questions for exercises that have no transcript."""
		result = GenerationResult(tier=GenerationTier.metadata, questions=basic_questions(difficulty))
		LOGGER.info("Questions produced by tier %s (%d)", result.tier.value, len(result.questions))
		return result

	def basic_questions(self, difficulty: Difficulty = Difficulty.beginner) -> List[Question]:
		return self.basic_result(difficulty).questions
