from typing import Any, Dict, List, Optional
import logging
import openai
import instructor
from callsight.config import settings

logger = logging.getLogger(__name__)

_chat_client = None
_async_client = None


def get_chat_client() -> openai.AsyncOpenAI:
    """Returns the plain OpenAI client, created on first use."""
    global _chat_client
    if _chat_client is None:
        settings.require("OPENAI_API_KEY")
        _chat_client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _chat_client


def get_async_client():
    """Returns the instructor-patched OpenAI client, created on first use."""
    global _async_client
    if _async_client is None:
        _async_client = instructor.from_openai(get_chat_client())
    return _async_client


async def get_structured_response(
    prompt: str,
    response_model: Any,
    model: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Any:
    """
    Sends a prompt to the OpenAI API and returns a structured response
    based on the provided Pydantic model, or None if the call fails.
    """
    client = get_async_client()
    try:
        response = await client.chat.completions.create(
            model=model or settings.CATEGORISATION_MODEL,
            messages=[{"role": "user", "content": prompt}],  # type: ignore
            response_model=response_model,
            temperature=0.0,
            timeout=timeout,
            max_retries=1,
        )
        logger.info(f"LLM structured response received: {response.model_dump_json()}")
        return response
    except Exception as e:
        logger.error(f"An error occurred in get_structured_response: {e}", exc_info=True)
        return None


async def get_llm_response(
    messages: List[Dict[str, str]],
    model: Optional[str] = None,
    temperature: float = 0.3,
    max_tokens: int = 1500,
    timeout: Optional[float] = None,
) -> Optional[str]:
    """
    Sends a chat conversation to the OpenAI API and returns the reply text,
    or None if the call fails or the model returns nothing.
    """
    client = get_chat_client()
    try:
        response = await client.chat.completions.create(
            model=model or settings.QUERY_MODEL,
            messages=messages,  # type: ignore
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
        content = response.choices[0].message.content
        logger.info(f"LLM response received ({len(content or '')} chars)")
        return content or None
    except Exception as e:
        logger.error(f"An error occurred in get_llm_response: {e}", exc_info=True)
        return None
