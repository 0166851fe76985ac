"""
Connection utilities for the Apps Script backend, OpenAI and Gemini.

Clients are created lazily from an AppConfig and owned by one Connections
instance for the lifetime of the app.
"""

import time
from typing import Any, Dict, Optional

import google.generativeai as genai
import httpx
from openai import AsyncOpenAI

from config import AppConfig
from logger import get_logger

logger = get_logger(__name__)


class OracleConnectionError(Exception):
    """Oracle client could not be created."""
    pass


class Connections:
    """Manages connections to external services."""

    def __init__(self, config: AppConfig):
        self.config = config
        self._http_client: Optional[httpx.AsyncClient] = None
        self._openai_client: Optional[AsyncOpenAI] = None
        self._gemini_model: Optional[genai.GenerativeModel] = None

    def get_http_client(self) -> httpx.AsyncClient:
        """
        Get or create the shared HTTP client for the data backend.

        Apps Script answers web-app calls with a redirect, so redirects
        are followed.
        """
        if self._http_client is not None:
            return self._http_client

        self._http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.request_timeout),
            follow_redirects=True,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        logger.info("[BACKEND] HTTP client created", url=(self.config.apps_script_url or "NOT SET")[:50])
        return self._http_client

    def get_openai_client(self) -> AsyncOpenAI:
        """Get OpenAI client."""
        if self._openai_client is not None:
            return self._openai_client

        if not self.config.openai_api_key:
            raise OracleConnectionError("OPENAI_API_KEY not set")

        # Retries are the orchestrator's fallback chain's job, not the SDK's
        self._openai_client = AsyncOpenAI(
            api_key=self.config.openai_api_key,
            timeout=self.config.oracle_timeout,
            max_retries=0,
        )
        logger.info("[OPENAI] Client created", model=self.config.openai_model)
        return self._openai_client

    def get_gemini_model(self) -> genai.GenerativeModel:
        """Configure Gemini and return the model instance."""
        if self._gemini_model is not None:
            return self._gemini_model

        if not self.config.gemini_api_key:
            raise OracleConnectionError("GEMINI_API_KEY not set")

        genai.configure(api_key=self.config.gemini_api_key)
        self._gemini_model = genai.GenerativeModel(model_name=self.config.gemini_model_name)
        logger.info("[GEMINI] Configured successfully", model=self.config.gemini_model_name)
        return self._gemini_model

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        if self._openai_client is not None:
            await self._openai_client.close()
            self._openai_client = None

    def health_check(self) -> Dict[str, Any]:
        """Configuration-level health; live checks are done by the caller."""
        start = time.time()
        status: Dict[str, Any] = {
            "backend": {
                "configured": bool(self.config.apps_script_url),
            },
            "oracle": {
                "enabled": self.config.ai_enabled,
                "provider": self.config.oracle_provider,
                "configured": self.config.oracle_configured,
            },
        }
        status["duration_ms"] = round((time.time() - start) * 1000, 2)
        return status
