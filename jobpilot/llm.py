"""Chat completions against the Groq OpenAI-compatible endpoint."""
from __future__ import annotations

from typing import Any

GROQ_BASE_URL = "https://api.groq.com/openai/v1"


def transient_errors() -> tuple[type[BaseException], ...]:
    """Connection drops, 429s and 5xx replies; worth one more try."""
    from openai import APIConnectionError, InternalServerError, RateLimitError

    return (APIConnectionError, RateLimitError, InternalServerError)


def chat(
    api_key: str,
    model: str,
    content: str | list[dict[str, Any]],
    *,
    max_tokens: int,
    temperature: float | None = None,
) -> str:
    from openai import OpenAI

    client = OpenAI(api_key=api_key, base_url=GROQ_BASE_URL)
    kwargs: dict[str, Any] = {}
    if temperature is not None:
        kwargs["temperature"] = temperature
    r = client.chat.completions.create(
        model=model,
        messages=[{"role": "user", "content": content}],
        max_tokens=max_tokens,
        **kwargs,
    )
    return (r.choices[0].message.content or "").strip()
