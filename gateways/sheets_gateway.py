"""
Data-backend gateway for a Google Apps Script web app.

The web app takes a JSON body with an ``action`` and answers with
``{"status": "success"|"error", "data": ..., "message": ...}``.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

import httpx

from errors import GatewayError
from logger import get_logger

logger = get_logger(__name__)


class SheetsGateway:
    """Contract for the tabular backend: list, read, append and create."""

    gateway_name = "sheets"

    async def list_collections(self, document_id: Optional[str] = None) -> List[str]:
        raise NotImplementedError

    async def read_collection(self, name: str, document_id: Optional[str] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def append_row(self, name: str, values: List[Any], document_id: Optional[str] = None) -> Dict[str, Any]:
        raise NotImplementedError

    async def create_collection(self, name: str, document_id: Optional[str] = None) -> Dict[str, Any]:
        raise NotImplementedError


class AppsScriptGateway(SheetsGateway):
    """Talks to the Apps Script web app over HTTP."""

    def __init__(self, url: str, client: httpx.AsyncClient, timeout: float = 10.0):
        self.url = url
        self.client = client
        self.timeout = timeout

    async def _call(self, operation: str, payload: Dict[str, Any],
                    document_id: Optional[str] = None) -> Dict[str, Any]:
        if not self.url:
            raise GatewayError(self.gateway_name, f"Data backend {operation} failed: APPS_SCRIPT_URL is not configured")
        if document_id:
            payload = {**payload, "spreadsheetId": document_id}

        start = time.time()
        try:
            response = await asyncio.wait_for(
                self.client.post(self.url, json=payload),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.gateway_call(self.gateway_name, operation, False, (time.time() - start) * 1000, timed_out=True)
            raise GatewayError(
                self.gateway_name,
                f"Data backend {operation} failed: request timed out after {self.timeout}s",
                timed_out=True,
            )
        except httpx.HTTPError as e:
            logger.gateway_call(self.gateway_name, operation, False, (time.time() - start) * 1000, error=str(e))
            raise GatewayError(self.gateway_name, f"Data backend {operation} failed: {e}")

        duration = (time.time() - start) * 1000

        if response.status_code >= 400:
            logger.gateway_call(self.gateway_name, operation, False, duration, status=response.status_code)
            raise GatewayError(
                self.gateway_name,
                f"Data backend {operation} failed: HTTP {response.status_code}: {response.text[:200]}",
                upstream_status=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            logger.gateway_call(self.gateway_name, operation, False, duration, error="invalid JSON")
            raise GatewayError(self.gateway_name, f"Data backend {operation} failed: reply is not JSON")

        if not isinstance(body, dict) or body.get("status") == "error":
            message = body.get("message", "unknown error") if isinstance(body, dict) else repr(body)[:200]
            logger.gateway_call(self.gateway_name, operation, False, duration, error=message)
            raise GatewayError(self.gateway_name, f"Data backend {operation} failed: {message}")

        logger.gateway_call(self.gateway_name, operation, True, duration)
        return body

    async def list_collections(self, document_id: Optional[str] = None) -> List[str]:
        body = await self._call("listSheets", {"action": "listSheets"}, document_id)
        names = []
        for entry in body.get("data") or []:
            if isinstance(entry, str):
                names.append(entry)
            elif isinstance(entry, dict) and entry.get("name"):
                names.append(str(entry["name"]))
        return names

    async def read_collection(self, name: str, document_id: Optional[str] = None) -> List[Dict[str, Any]]:
        body = await self._call("readSheet", {"action": "readSheet", "tabName": name}, document_id)
        rows = body.get("data") or []
        return [row for row in rows if isinstance(row, dict)]

    async def append_row(self, name: str, values: List[Any], document_id: Optional[str] = None) -> Dict[str, Any]:
        body = await self._call(
            "appendRow",
            {"action": "appendRow", "tabName": name, "values": values},
            document_id,
        )
        return {"status": body.get("status", "success"), "message": body.get("message", "Row added")}

    async def create_collection(self, name: str, document_id: Optional[str] = None) -> Dict[str, Any]:
        body = await self._call("createSheet", {"action": "createSheet", "tabName": name}, document_id)
        return {"status": body.get("status", "success"), "message": body.get("message", "Sheet created")}
