"""
OpenAI chat client for JSON-only completions validated into pydantic models.
"""
import json
import logging
import time
from typing import Any, Optional, Type, TypeVar

from openai import OpenAI
from pydantic import BaseModel

from ..config import OpenAIConfig, get_config
from ..errors import AIAnalysisError


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class LLMClient:
    """
    Thin wrapper over the OpenAI chat API. SDK retries are off: the caller
    runs every completion under its own deadline and treats a slow answer
    as a timeout.
    """

    def __init__(self, config: Optional[OpenAIConfig] = None, timeout: Optional[float] = None):
        config = config or get_config().openai
        self.model = config.model
        self.max_tokens = config.max_tokens
        self.temperature = config.temperature

        self.client: Optional[OpenAI] = None
        if config.api_key:
            self.client = OpenAI(api_key=config.api_key, timeout=timeout, max_retries=0)
        else:
            logger.warning("No OpenAI API key configured, merchant analysis disabled")

    def is_available(self) -> bool:
        return self.client is not None

    def complete_json(self, system_prompt: str, user_prompt: str) -> Any:
        """
        One JSON-mode completion, decoded.

        Raises:
            AIAnalysisError: Client not configured, or completion cut off at max_tokens
            json.JSONDecodeError: Content is not JSON
            openai.OpenAIError: Transport or API failure
        """
        if self.client is None:
            raise AIAnalysisError("OpenAI client not configured", reason="not_configured")

        started = time.monotonic()
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            response_format={"type": "json_object"},
        )
        elapsed_ms = int((time.monotonic() - started) * 1000)

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        tokens = usage.total_tokens if usage is not None else "?"
        logger.info(f"{self.model} answered in {elapsed_ms}ms ({tokens} tokens)")

        # A truncated JSON object never decodes cleanly
        if choice.finish_reason == "length":
            raise AIAnalysisError(
                f"Completion truncated at {self.max_tokens} tokens",
                reason="invalid_response",
            )

        try:
            return json.loads(choice.message.content or "")
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON from LLM: {e}")
            raise

    def call_with_schema(self, system_prompt: str, user_prompt: str, response_model: Type[T]) -> T:
        """
        JSON-mode completion validated against `response_model`.

        Raises:
            pydantic.ValidationError: Decoded JSON does not fit the model
            plus everything complete_json raises
        """
        return response_model.model_validate(self.complete_json(system_prompt, user_prompt))
