import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

import tiktoken
from openai import OpenAI, OpenAIError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT = 30.0  # seconds
MAX_OUTLINE_TOKENS = 12000
MAX_RESPONSE_TOKENS = 2000

SYSTEM_MESSAGE = (
    "You are an API response generator that ONLY outputs valid, parsable JSON. "
    "No text, markdown formatting, code blocks, or explanations - ONLY THE JSON ARRAY ITSELF."
)

# Failure kinds carried by CompletionResult
UNAVAILABLE = "unavailable"
UNPARSABLE = "unparsable"


class CompletionError(Exception):
    """Base class for failures of the completion collaborator."""


class CompletionUnavailable(CompletionError):
    """Network, authentication, quota or timeout failure."""


class UnparsableCompletionResponse(CompletionError):
    """The completion text could not be turned into the expected structure."""


@dataclass
class CompletionResult:
    """Outcome of a completion step: either a value or a failure kind."""

    ok: bool
    value: Any = None
    failure: Optional[str] = None
    message: str = ""

    @classmethod
    def success(cls, value: Any) -> "CompletionResult":
        return cls(ok=True, value=value)

    @classmethod
    def failed(cls, kind: str, message: str = "") -> "CompletionResult":
        return cls(ok=False, failure=kind, message=message)


_encoder = None


def _get_encoder(model: str = DEFAULT_MODEL):
    global _encoder
    if _encoder is None:
        try:
            _encoder = tiktoken.encoding_for_model(model)
        except Exception:
            logger.warning(f"Specific encoding for {model} not found, using cl100k_base instead")
            try:
                _encoder = tiktoken.get_encoding("cl100k_base")
            except Exception as e:
                logger.warning(f"Error getting tokenizer: {e}")
                return None
    return _encoder


def truncate_to_token_budget(text: str, max_tokens: int = MAX_OUTLINE_TOKENS) -> str:
    """
    Cut text down so it fits into max_tokens.

    Every token covers at least one character, so texts no longer than the
    budget are returned without touching the tokenizer.
    """
    if len(text) <= max_tokens:
        return text

    encoder = _get_encoder()
    if encoder is not None:
        try:
            tokens = encoder.encode(text)
            if len(tokens) <= max_tokens:
                return text
            logger.info(f"Truncating outline text from {len(tokens)} to {max_tokens} tokens")
            return encoder.decode(tokens[:max_tokens])
        except Exception as e:
            logger.warning(f"Error truncating by tokens: {e}. Using character-based estimate.")

    return text[:max_tokens * 4]


class OpenAICompletionClient:
    """
    Completion collaborator backed by the OpenAI chat completions API.

    complete() returns the raw response text. The SDK's own retries are
    disabled; any SDK failure is raised as CompletionUnavailable.
    """

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL,
                 timeout: float = DEFAULT_TIMEOUT, temperature: float = 0.1):
        self.model = model
        self.temperature = temperature
        self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def complete(self, prompt: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_MESSAGE},
                    {"role": "user", "content": prompt}
                ],
                temperature=self.temperature,
                max_tokens=MAX_RESPONSE_TOKENS,
            )
        except OpenAIError as api_error:
            logger.error(f"OpenAI API error: {str(api_error)}")
            raise CompletionUnavailable(f"OpenAI API error: {str(api_error)}") from api_error

        if not response.choices:
            raise CompletionUnavailable("OpenAI API response contained no choices")

        content = response.choices[0].message.content or ""
        logger.info(f"OpenAI completion received ({len(content)} chars)")
        return content


def create_completion_client(api_key: Optional[str] = None, model: str = DEFAULT_MODEL,
                             timeout: float = DEFAULT_TIMEOUT) -> Optional[OpenAICompletionClient]:
    """Build the OpenAI client, or None when no API key is configured."""
    api_key = api_key if api_key is not None else os.environ.get("OPENAI_API_KEY")
    if not api_key or not api_key.strip():
        logger.warning("OPENAI_API_KEY not found - assessments will be extracted by pattern matching")
        return None

    api_key_start = api_key[:5] + "..." if len(api_key) > 5 else "too short"
    logger.info(f"OPENAI_API_KEY found, starts with: {api_key_start}")
    return OpenAICompletionClient(api_key=api_key.strip(), model=model, timeout=timeout)


def request_completion(client, prompt: str) -> CompletionResult:
    """Call client.complete(prompt) and report the outcome as a CompletionResult."""
    try:
        return CompletionResult.success(client.complete(prompt))
    except CompletionError as e:
        logger.warning(f"Completion collaborator failed: {str(e)}")
        return CompletionResult.failed(UNAVAILABLE, str(e))
