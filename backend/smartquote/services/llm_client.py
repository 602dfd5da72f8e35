"""
LLM Client Abstraction
Single entry point for all AI calls in SmartQuote.
Primary: the model chosen by the caller (Gemini flash models by default)
Fallback: Groq LLaMA 3.1 70B
"""
import logging
from typing import Optional

import litellm

from smartquote.config import FALLBACK_MODEL, FAST_EXTRACTOR_MODEL
from smartquote.services.errors import ExtractionError

logger = logging.getLogger("smartquote-api.llm")

# Suppress litellm verbose logging
litellm.set_verbose = False


def _json_only(messages: list) -> list:
    """Copy of ``messages`` with a JSON-only instruction for models without response_format."""
    messages = [dict(m) for m in messages]
    if messages and messages[0]["role"] == "system":
        messages[0]["content"] += "\n\nIMPORTANT: Respond with valid JSON only."
    else:
        messages = [{"role": "system", "content": "You must respond with valid JSON only."}] + messages
    return messages


async def complete(
    messages: list,
    model: Optional[str] = None,
    temperature: float = 0.1,
    top_p: Optional[float] = None,
    json_mode: bool = False,
    max_tokens: int = 8192,
) -> str:
    """
    Call the primary model. Falls back to FALLBACK_MODEL on rate limit or error.
    Returns the response content string.
    """
    primary = model or FAST_EXTRACTOR_MODEL
    kwargs = {
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if top_p is not None:
        kwargs["top_p"] = top_p
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    try:
        response = await litellm.acompletion(model=primary, **kwargs)
        return response.choices[0].message.content
    except litellm.RateLimitError:
        logger.warning("rate limit hit, falling back", extra={"llm_model": primary})
    except litellm.AuthenticationError:
        logger.warning("auth error, falling back", extra={"llm_model": primary})
    except Exception as e:
        logger.warning(f"{primary} error ({type(e).__name__}: {e}), falling back to {FALLBACK_MODEL}")

    try:
        fallback_kwargs = {k: v for k, v in kwargs.items() if k != "response_format"}
        if json_mode:
            fallback_kwargs["messages"] = _json_only(messages)
        response = await litellm.acompletion(model=FALLBACK_MODEL, **fallback_kwargs)
        return response.choices[0].message.content
    except Exception as e:
        logger.error(f"Both LLMs failed. Fallback error: {e}")
        raise ExtractionError(f"All LLM providers failed. Last error: {e}") from e


async def complete_with_vision(
    images: list,
    prompt: str,
    model: Optional[str] = None,
    temperature: float = 0.1,
    json_mode: bool = False,
) -> str:
    """
    Vision-capable call for scanned quotes and photographed schedules.
    images: list of (mime_type, base64 string) pairs
    """
    content = [
        {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{data}"}}
        for mime, data in images
    ]
    content.append({"type": "text", "text": prompt})
    messages = [{"role": "user", "content": content}]

    kwargs = {"messages": messages, "temperature": temperature, "max_tokens": 8192}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    # Only the Gemini models read images; no cross-provider fallback here
    try:
        response = await litellm.acompletion(model=model or FAST_EXTRACTOR_MODEL, **kwargs)
        return response.choices[0].message.content
    except Exception as e:
        logger.error(f"Vision LLM failed: {e}")
        raise ExtractionError(f"Vision LLM failed: {e}") from e


class LLMClient:
    """
    Class-based wrapper around the module-level complete() / complete_with_vision().
    The extractors take one of these so tests can hand them a fake.
    """

    async def chat(
        self,
        messages: list,
        model: Optional[str] = None,
        temperature: float = 0.1,
        top_p: Optional[float] = None,
        json_mode: bool = False,
        max_tokens: int = 8192,
    ) -> str:
        return await complete(
            messages,
            model=model,
            temperature=temperature,
            top_p=top_p,
            json_mode=json_mode,
            max_tokens=max_tokens,
        )

    async def vision(
        self,
        images: list,
        prompt: str,
        model: Optional[str] = None,
        temperature: float = 0.1,
        json_mode: bool = False,
    ) -> str:
        return await complete_with_vision(images, prompt, model=model, temperature=temperature, json_mode=json_mode)
