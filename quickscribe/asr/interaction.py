"""AI tasks over a finished transcript: summaries, key points, Q&A.

TranscriptInteraction sends one Groq chat completion per request. The
transcript is cut to fit the model's context window; token counts are
estimated from character length.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import httpx

from quickscribe.utils.errors import InteractionError
from quickscribe.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_INTERACTION_MODEL = "llama3-70b-8192"

MODEL_CONTEXT_WINDOWS: dict[str, int] = {
    "llama3-8b-8192": 7800,
    "llama3-70b-8192": 7800,
    "gemma-7b-it": 7800,
}
DEFAULT_CONTEXT_WINDOW = 7800

CHARS_PER_TOKEN = 4
MIN_OUTPUT_RESERVE_TOKENS = 1500
OUTPUT_RESERVE_RATIO = 0.40
MIN_PAYLOAD_TOKENS = 100
MIN_QA_TRANSCRIPT_TOKENS = 50

MAX_RETRIES = 2
INITIAL_BACKOFF_SECONDS = 1.5

TRUNCATION_MARKER = "\n...[TRANSCRIPT TRUNCATED]"
QA_TRUNCATION_MARKER = "\n...[TRANSCRIPT SEGMENT TRUNCATED]"
QA_PREAMBLE = "Based on the following transcript:\n\n---\n"
QA_POSTAMBLE = "\n---\n\nPlease answer this question: {question}"


class InteractionTask(str, Enum):
    SUMMARIZE = "summarize"
    EXTRACT_KEY_POINTS = "extract_key_points"
    CUSTOM_QUESTION = "custom_question"
    EXTRACT_ACTION_ITEMS = "extract_action_items"
    IDENTIFY_TOPICS = "identify_topics"


SYSTEM_PROMPTS: dict[InteractionTask, str] = {
    InteractionTask.SUMMARIZE: (
        "You are a helpful AI assistant. Your task is to provide a concise "
        "summary of the following transcript. Focus on the main points and key "
        "information. The summary should be a single paragraph or a few short "
        "paragraphs if necessary."
    ),
    InteractionTask.EXTRACT_KEY_POINTS: (
        "You are a helpful AI assistant. Your task is to extract the key points "
        "or main takeaways from the following transcript. Present them clearly, "
        "ideally as a bulleted list (e.g., using '-' or '*' as bullet points). "
        "Each point should be concise."
    ),
    InteractionTask.CUSTOM_QUESTION: (
        "You are an AI assistant. Your task is to answer the question based "
        "*solely* on the provided transcript. If the answer is not in the text, "
        "state that clearly. Do not make up information. Be concise."
    ),
    InteractionTask.EXTRACT_ACTION_ITEMS: (
        "You are an AI assistant specializing in identifying action items. "
        "Analyze the transcript and extract all explicit/implied action items, "
        "tasks, or commitments. For each, identify: 1. The action. 2. Who is "
        "responsible (if mentioned). 3. Any deadline (if mentioned). Present as "
        "a clear, numbered or bulleted list. If none, state 'No specific action "
        "items were identified.'"
    ),
    InteractionTask.IDENTIFY_TOPICS: (
        "You are a helpful AI assistant. Your task is to analyze the following "
        "transcript and identify the main topics or subjects discussed. List up "
        "to 5-7 of the most significant topics. Present the topics as a simple "
        "bulleted list, with each topic being a short, concise phrase (2-5 "
        "words). If the transcript is too short or lacks clear topics, state "
        "'No distinct topics could be identified.'"
    ),
}


@dataclass
class InteractionResult:
    """Model answer for one transcript task."""

    task: InteractionTask
    text: str
    model: str
    truncated: bool = False


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per CHARS_PER_TOKEN characters."""
    return -(-len(text) // CHARS_PER_TOKEN)


def truncate_to_tokens(text: str, limit: int) -> tuple[str, bool]:
    """Cut text to at most `limit` estimated tokens.

    Returns:
        (text, was_truncated)
    """
    max_chars = max(limit, 0) * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text, False
    return text[:max_chars], True


def parse_task(value: str | InteractionTask) -> InteractionTask:
    """Raises InteractionError (400) for an unknown task name."""
    try:
        return InteractionTask(value)
    except ValueError:
        raise InteractionError(
            f"Unsupported AI task type: {value}", status_code=400
        ) from None


def build_user_message(
    transcript_text: str,
    task: InteractionTask,
    question: str | None = None,
    model: str = DEFAULT_INTERACTION_MODEL,
) -> tuple[str, bool]:
    """Build the user message for a task within the model's context budget.

    Part of the context window is reserved for the answer; the transcript
    gets what remains after the system prompt (and, for questions, the
    question framing).

    Returns:
        (message, was_truncated)

    Raises:
        InteractionError: 413 when the budget leaves no room for the transcript.
    """
    context_window = MODEL_CONTEXT_WINDOWS.get(model, DEFAULT_CONTEXT_WINDOW)
    reserved = max(MIN_OUTPUT_RESERVE_TOKENS, int(context_window * OUTPUT_RESERVE_RATIO))
    available = context_window - estimate_tokens(SYSTEM_PROMPTS[task]) - reserved

    if available <= MIN_PAYLOAD_TOKENS:
        raise InteractionError(
            f"Not enough tokens for the transcript (available: {available}) "
            f"within the context of {model} ({context_window} tokens).",
            status_code=413,
        )

    if task is InteractionTask.CUSTOM_QUESTION:
        postamble = QA_POSTAMBLE.format(question=question)
        target = available - estimate_tokens(QA_PREAMBLE) - estimate_tokens(postamble)
        if target <= MIN_QA_TRANSCRIPT_TOKENS:
            raise InteractionError(
                "Not enough tokens for the transcript alongside this question. "
                "Please ask a shorter question.",
                status_code=413,
            )
        segment, truncated = truncate_to_tokens(transcript_text, target)
        if truncated:
            segment += QA_TRUNCATION_MARKER
        return f"{QA_PREAMBLE}{segment}{postamble}", truncated

    segment, truncated = truncate_to_tokens(transcript_text, available)
    if truncated:
        segment += TRUNCATION_MARKER
    return segment, truncated


class TranscriptInteraction:
    """Runs InteractionTasks with a Groq chat-completion model."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_INTERACTION_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 60.0,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self.model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def interact(
        self,
        transcript_text: str,
        task: str | InteractionTask,
        question: str | None = None,
    ) -> InteractionResult:
        """Run one task over a transcript.

        Args:
            transcript_text: Full transcript text.
            task: Task name or InteractionTask.
            question: Required for custom_question.

        Raises:
            InteractionError: On invalid input (400), oversized input (413)
                or a provider failure after retries.
        """
        if not transcript_text or not transcript_text.strip():
            raise InteractionError("Transcript text cannot be empty.", status_code=400)

        interaction_task = parse_task(task)
        if interaction_task is InteractionTask.CUSTOM_QUESTION and (
            not question or not question.strip()
        ):
            raise InteractionError(
                "Question cannot be empty for the Q&A task.", status_code=400
            )

        message, truncated = build_user_message(
            transcript_text, interaction_task, question, self.model
        )
        if truncated:
            logger.warning(
                "Transcript truncated for task %s (model=%s)",
                interaction_task.value,
                self.model,
            )

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPTS[interaction_task]},
                {"role": "user", "content": message},
            ],
        }

        try:
            text = await retry_with_backoff(
                f"groq_chat_{interaction_task.value}",
                lambda: self._complete(payload),
                max_retries=MAX_RETRIES,
                initial_backoff=INITIAL_BACKOFF_SECONDS,
                is_retryable=_is_retryable,
            )
        except InteractionError as exc:
            exc.truncated = truncated
            raise

        return InteractionResult(
            task=interaction_task, text=text, model=self.model, truncated=truncated
        )

    async def _complete(self, payload: dict) -> str:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}/chat/completions",
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json=payload,
                )
        except httpx.TimeoutException as exc:
            raise InteractionError(
                "Groq API Error: Connection timed out. The request might be too "
                "complex or the service is currently busy. Please try again shortly.",
                retryable=True,
            ) from exc
        except httpx.TransportError as exc:
            raise InteractionError(
                f"A connection error occurred with the AI service ({type(exc).__name__}). "
                "This can happen with large requests or network interruptions.",
                retryable=True,
            ) from exc

        _check_status(response, self.model)

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise InteractionError(
                "The AI service returned an unexpected response."
            ) from exc
        if not isinstance(content, str) or not content.strip():
            raise InteractionError("The AI service returned an empty response.")
        return content.strip()


def _check_status(response: httpx.Response, model: str) -> None:
    status = response.status_code
    if 200 <= status < 300:
        return

    body = response.text
    if status == 400 and "model_decommissioned" in body:
        raise InteractionError(
            f"The selected AI model ({model}) is currently unavailable or "
            "decommissioned. Please try a different model or check service status.",
            status_code=400,
        )
    if status == 413:
        raise InteractionError(
            "The request to the AI service was too large (Status 413), even "
            "after attempting to shorten it.",
            status_code=413,
        )
    if status == 429:
        raise InteractionError(
            "The AI service is experiencing high demand (Status 429). Please "
            "try again in a few moments.",
            status_code=429,
            retryable=True,
        )
    if status >= 500:
        raise InteractionError(
            f"The AI service encountered a server error (Status {status}). "
            "Please try again later.",
            status_code=status,
            retryable=True,
        )
    raise InteractionError(
        f"Groq API Error (Status: {status}): {body[:300]}", status_code=status
    )


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, InteractionError) and exc.retryable
