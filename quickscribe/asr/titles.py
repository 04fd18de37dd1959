"""Short display titles for finished transcripts.

Best-effort: any failure falls back to DEFAULT_TITLE and is only logged.
"""

import logging

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_TITLE_MODEL = "llama3-8b-8192"
DEFAULT_TITLE = "Untitled Transcription"
MAX_INPUT_CHARS = 4000
MAX_TITLE_CHARS = 120

SYSTEM_PROMPT = (
    "You are an expert at summarizing long texts. Based on the following "
    "transcription, generate a concise, descriptive title of no more than "
    "4-5 words. Do not use quotation marks in your response."
)


class TitleGenerator:
    """Generates a title with a Groq chat-completion model."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_TITLE_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def generate(self, transcript_text: str) -> str:
        """Return a title for the transcript, or DEFAULT_TITLE on failure."""
        if not transcript_text or not transcript_text.strip():
            return DEFAULT_TITLE

        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": transcript_text[:MAX_INPUT_CHARS]},
            ],
            "temperature": 0.2,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}/chat/completions",
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json=payload,
                )
                response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError):
            logger.warning("Title generation failed, using default", exc_info=True)
            return DEFAULT_TITLE

        if not isinstance(content, str):
            logger.warning(
                "Title model returned %s content, using default", type(content).__name__
            )
            return DEFAULT_TITLE

        title = content.strip().strip('"').strip()
        return title[:MAX_TITLE_CHARS] or DEFAULT_TITLE
