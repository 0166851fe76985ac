"""
Oracle gateway: chat-style completion against OpenAI or Gemini.

Every call is bounded by a timeout. Transport failures, timeouts and
empty replies all surface as GatewayError; there are no retries here.
"""

import asyncio
import time
from typing import Dict, List, Optional

import google.generativeai as genai
from openai import AsyncOpenAI

from config import AppConfig
from connection import Connections
from errors import GatewayError
from logger import get_logger

logger = get_logger(__name__)

Message = Dict[str, str]

# Sampling presets: structured extraction vs conversational replies
EXTRACTION_TEMPERATURE = 0.1
CONVERSATION_TEMPERATURE = 0.7


class OracleGateway:
    """Base class: timing, timeout and error wrapping around `_complete`."""

    gateway_name = "oracle"

    def __init__(self, model: str, timeout: float = 15.0):
        self.model = model
        self.timeout = timeout

    async def _complete(self, messages: List[Message], temperature: float, max_tokens: int) -> str:
        raise NotImplementedError

    async def complete(
        self,
        messages: List[Message],
        *,
        temperature: float = EXTRACTION_TEMPERATURE,
        max_tokens: int = 150,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Run one completion and return the stripped reply text.

        Raises:
            GatewayError: on timeout, transport failure or an empty reply
        """
        limit = timeout or self.timeout
        start = time.time()
        try:
            text = await asyncio.wait_for(
                self._complete(messages, temperature, max_tokens),
                timeout=limit,
            )
        except asyncio.TimeoutError:
            duration = (time.time() - start) * 1000
            logger.gateway_call(self.gateway_name, "complete", False, duration, model=self.model, timed_out=True)
            raise GatewayError(self.gateway_name, f"Oracle request timed out after {limit}s", timed_out=True)
        except Exception as e:
            duration = (time.time() - start) * 1000
            logger.gateway_call(self.gateway_name, "complete", False, duration, model=self.model, error=str(e))
            raise GatewayError(
                self.gateway_name,
                f"Oracle request failed: {e}",
                upstream_status=getattr(e, "status_code", None),
            )

        duration = (time.time() - start) * 1000
        logger.llm_call(model=self.model, duration_ms=round(duration, 2), max_tokens=max_tokens)

        if not text or not text.strip():
            raise GatewayError(self.gateway_name, "Oracle returned an empty reply")
        return text.strip()

    async def ask(self, system: str, user: str, **kwargs) -> str:
        """Single-turn convenience: one system and one user message."""
        return await self.complete(
            [{"role": "system", "content": system}, {"role": "user", "content": user}],
            **kwargs,
        )


class OpenAIOracle(OracleGateway):
    """Oracle backed by the OpenAI chat completions API."""

    def __init__(self, client: AsyncOpenAI, model: str, timeout: float = 15.0):
        super().__init__(model, timeout)
        self.client = client

    async def _complete(self, messages: List[Message], temperature: float, max_tokens: int) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.choices[0].message.content or ""


class GeminiOracle(OracleGateway):
    """Oracle backed by Gemini; system messages are folded into the first user turn."""

    def __init__(self, model_instance: genai.GenerativeModel, model: str, timeout: float = 15.0):
        super().__init__(model, timeout)
        self.model_instance = model_instance

    @staticmethod
    def to_contents(messages: List[Message]) -> List[Dict]:
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        contents = []
        for message in messages:
            if message["role"] == "system":
                continue
            role = "model" if message["role"] == "assistant" else "user"
            contents.append({"role": role, "parts": [message["content"]]})

        if system:
            if contents and contents[0]["role"] == "user":
                contents[0]["parts"] = [f"{system}\n\n{contents[0]['parts'][0]}"]
            else:
                contents.insert(0, {"role": "user", "parts": [system]})
        return contents

    async def _complete(self, messages: List[Message], temperature: float, max_tokens: int) -> str:
        response = await self.model_instance.generate_content_async(
            self.to_contents(messages),
            generation_config=genai.types.GenerationConfig(
                temperature=temperature,
                max_output_tokens=max_tokens,
            ),
        )
        return getattr(response, "text", "") or ""


def build_oracle(config: AppConfig, connections: Connections) -> Optional[OracleGateway]:
    """Build the configured oracle, or None when AI is disabled."""
    if not config.ai_enabled:
        logger.info("AI disabled, running without an oracle")
        return None

    if config.oracle_provider == "gemini":
        return GeminiOracle(connections.get_gemini_model(), config.gemini_model_name, config.oracle_timeout)
    return OpenAIOracle(connections.get_openai_client(), config.openai_model, config.oracle_timeout)
