"""
gateway.py – Uniform completion contract over an OpenAI-compatible chat endpoint.

Callers (the analysis dispatcher and the chat orchestrator) never touch the SDK directly. They hand
a system prompt and a user prompt to `ModelGateway.complete()` and receive the completion text, or
one of two errors:

- ModelUnavailable: the gateway has no client binding (credentials missing at startup).
- ModelError: the remote call raised, timed out, or returned no usable content.

The gateway performs no retries; a failed aspect is reported once and the dispatcher decides what
to do with it.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from monitoring.metrics import LLM_REQUEST_TIME
from shared.errors import ModelError, ModelUnavailable

logger = logging.getLogger(__name__)


class ModelGateway:
    """
    Async wrapper around one chat-completions client.

    Attributes:
        client: An AsyncOpenAI-compatible client, or None when no binding is configured.
        model_name (str): Default model used for completions.
        timeout_s (float): Per-call timeout applied around the remote request.
        name (str): Label used in logs ("primary", "secondary").
    """

    def __init__(self, client: Any, model_name: str, timeout_s: float = 20.0, name: str = "primary"):
        self.client = client
        self.model_name = model_name
        self.timeout_s = timeout_s
        self.name = name

    @property
    def available(self) -> bool:
        return self.client is not None

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        model: Optional[str] = None,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> str:
        """
        Run one chat completion and return its text content.

        Args:
            system_prompt (str): Instructions for the model.
            user_prompt (str): The user content (code or chat message).
            max_tokens (int): Completion token limit.
            temperature (float): Sampling temperature.
            model (Optional[str]): Overrides the gateway's default model.
            history (Optional[List[Dict[str, str]]]): Earlier conversation turns as
                {'role', 'content'} messages, sent between the system and user prompts.

        Returns:
            str: The non-empty completion text.

        Raises:
            ModelUnavailable: If the gateway has no client binding.
            ModelError: On remote failure, timeout, or a response without usable text.
        """
        if self.client is None:
            raise ModelUnavailable(f"No model client configured for the {self.name} gateway")

        model_name = model or self.model_name
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(history or [])
        messages.append({"role": "user", "content": user_prompt})

        start_time = time.time()
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=model_name,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                ),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise ModelError(f"Model call timed out after {self.timeout_s:g}s") from e
        except Exception as e:
            logger.warning("Model call failed on %s gateway: %s", self.name, e)
            raise ModelError(f"Model call failed: {e}") from e
        finally:
            LLM_REQUEST_TIME.labels(model=model_name).observe(time.time() - start_time)

        choices = getattr(response, "choices", None)
        if not choices:
            raise ModelError("Model returned no choices")

        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if not isinstance(content, str) or not content.strip():
            raise ModelError("Model returned an empty response")

        return content
