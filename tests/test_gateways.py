"""
Unit tests for gateways/ - Apps Script backend over HTTP and the oracle wrappers.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, Mock

import httpx
import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import AppConfig
from errors import GatewayError
from gateways import AppsScriptGateway, GeminiOracle, OpenAIOracle, build_oracle
from gateways.oracle_gateway import OracleGateway
from tests.test_logger import test_logger

URL = "https://script.example/exec"


def gateway_with(handler, url=URL, timeout=5.0):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AppsScriptGateway(url, client, timeout)


class TestAppsScriptGateway:

    def setup_method(self):
        test_logger.log_section("TESTING: gateways/sheets_gateway.py - AppsScriptGateway")

    def test_list_collections(self):
        """Test listing sheet names."""
        with test_logger.check("sheets_gateway.py", "list_collections", "names"):
            seen = []

            def handler(request):
                seen.append(json.loads(request.content))
                return httpx.Response(200, json={"status": "success", "data": ["groceries", {"name": "hardware"}]})

            names = asyncio.run(gateway_with(handler).list_collections("doc-1"))
            assert names == ["groceries", "hardware"]
            assert seen == [{"action": "listSheets", "spreadsheetId": "doc-1"}]

    def test_append_row_payload(self):
        """Test the appendRow request payload."""
        with test_logger.check("sheets_gateway.py", "append_row", "payload"):
            seen = []

            def handler(request):
                seen.append(json.loads(request.content))
                return httpx.Response(200, json={"status": "success", "message": "Row added"})

            result = asyncio.run(gateway_with(handler).append_row("groceries", ["apples", 2, 12.0, "paid"]))
            assert result == {"status": "success", "message": "Row added"}
            assert seen[0] == {"action": "appendRow", "tabName": "groceries", "values": ["apples", 2, 12.0, "paid"]}

    def test_create_collection_payload(self):
        """Test the createSheet request payload."""
        with test_logger.check("sheets_gateway.py", "create_collection", "payload"):
            seen = []

            def handler(request):
                seen.append(json.loads(request.content))
                return httpx.Response(200, json={"status": "success", "message": "Sheet pantry created"})

            result = asyncio.run(gateway_with(handler).create_collection("pantry", "doc-2"))
            assert result == {"status": "success", "message": "Sheet pantry created"}
            assert seen == [{"action": "createSheet", "tabName": "pantry", "spreadsheetId": "doc-2"}]

    def test_read_collection_keeps_row_objects(self):
        """Test readSheet keeps only row objects."""
        with test_logger.check("sheets_gateway.py", "read_collection", "rows"):
            handler = lambda request: httpx.Response(200, json={"status": "success", "data": [{"item": "a"}, "junk"]})
            assert asyncio.run(gateway_with(handler).read_collection("groceries")) == [{"item": "a"}]

    @pytest.mark.parametrize("response, fragment", [
        (httpx.Response(500, text="boom"), "HTTP 500"),
        (httpx.Response(200, text="<html>login</html>"), "reply is not JSON"),
        (httpx.Response(200, json={"status": "error", "message": "Sheet not found"}), "Sheet not found"),
    ])
    def test_backend_errors(self, response, fragment):
        """Test backend error replies become gateway errors."""
        with test_logger.check("sheets_gateway.py", "_call", "backend_error"):
            with pytest.raises(GatewayError) as exc:
                asyncio.run(gateway_with(lambda request: response).list_collections())
            assert exc.value.message.startswith("Data backend listSheets failed:")
            assert fragment in exc.value.message

    def test_transport_error(self):
        """Test transport failures become gateway errors."""
        with test_logger.check("sheets_gateway.py", "_call", "transport_error"):
            def handler(request):
                raise httpx.ConnectError("connection refused")

            with pytest.raises(GatewayError) as exc:
                asyncio.run(gateway_with(handler).append_row("g", [1]))
            assert "connection refused" in exc.value.message
            assert exc.value.status_code == 502

    def test_timeout(self):
        """Test a backend timeout is a 504 gateway error."""
        with test_logger.check("sheets_gateway.py", "_call", "timeout"):
            def handler(request):
                raise httpx.ReadTimeout("slow")

            with pytest.raises(GatewayError) as exc:
                asyncio.run(gateway_with(handler).list_collections())
            assert exc.value.timed_out
            assert exc.value.status_code == 504

    def test_missing_url(self):
        """Test a missing backend URL fails at call time."""
        with test_logger.check("sheets_gateway.py", "_call", "missing_url"):
            with pytest.raises(GatewayError) as exc:
                asyncio.run(gateway_with(lambda request: httpx.Response(200), url="").list_collections())
            assert "APPS_SCRIPT_URL" in exc.value.message


class SlowOracle(OracleGateway):

    async def _complete(self, messages, temperature, max_tokens):
        await asyncio.sleep(1)
        return "late"


class TestOracleGateway:

    def setup_method(self):
        test_logger.log_section("TESTING: gateways/oracle_gateway.py")

    def test_timeout_is_gateway_error(self):
        """Test an oracle timeout is a gateway error."""
        with test_logger.check("oracle_gateway.py", "OracleGateway.complete", "timeout"):
            with pytest.raises(GatewayError) as exc:
                asyncio.run(SlowOracle("slow", timeout=0.01).ask("sys", "user"))
            assert exc.value.timed_out

    def test_openai_call(self):
        """Test the OpenAI request and reply handling."""
        with test_logger.check("oracle_gateway.py", "OpenAIOracle._complete", "request"):
            client = MagicMock()
            reply = Mock()
            reply.choices = [Mock(message=Mock(content="  READ \n"))]
            client.chat.completions.create = AsyncMock(return_value=reply)

            text = asyncio.run(OpenAIOracle(client, "gpt-test").ask("sys", "user", temperature=0.0, max_tokens=3))
            assert text == "READ"
            kwargs = client.chat.completions.create.call_args.kwargs
            assert kwargs["model"] == "gpt-test"
            assert kwargs["max_tokens"] == 3
            assert kwargs["messages"][0] == {"role": "system", "content": "sys"}

    def test_openai_empty_reply(self):
        """Test an empty OpenAI reply is an error."""
        with test_logger.check("oracle_gateway.py", "OpenAIOracle._complete", "empty"):
            client = MagicMock()
            reply = Mock()
            reply.choices = [Mock(message=Mock(content=None))]
            client.chat.completions.create = AsyncMock(return_value=reply)
            with pytest.raises(GatewayError):
                asyncio.run(OpenAIOracle(client, "gpt-test").ask("sys", "user"))

    def test_upstream_error_message(self):
        """Test upstream oracle errors keep their message."""
        with test_logger.check("oracle_gateway.py", "OracleGateway.complete", "upstream_error"):
            client = MagicMock()
            client.chat.completions.create = AsyncMock(side_effect=RuntimeError("rate limited"))
            with pytest.raises(GatewayError) as exc:
                asyncio.run(OpenAIOracle(client, "gpt-test").ask("sys", "user"))
            assert exc.value.message == "Oracle request failed: rate limited"

    def test_gemini_folds_system_prompt(self):
        """Test Gemini folds the system prompt into the first user turn."""
        with test_logger.check("oracle_gateway.py", "GeminiOracle.to_contents", "system_fold"):
            contents = GeminiOracle.to_contents([
                {"role": "system", "content": "rules"},
                {"role": "user", "content": "question"},
                {"role": "assistant", "content": "answer"},
            ])
            assert contents[0] == {"role": "user", "parts": ["rules\n\nquestion"]}
            assert contents[1]["role"] == "model"

    def test_build_oracle(self):
        """Test oracle construction per provider."""
        with test_logger.check("oracle_gateway.py", "build_oracle", "provider"):
            connections = Mock()
            assert build_oracle(AppConfig(ai_enabled=False), connections) is None

            oracle = build_oracle(AppConfig(ai_enabled=True, oracle_provider="gemini", gemini_model_name="g"), connections)
            assert isinstance(oracle, GeminiOracle)
            connections.get_gemini_model.assert_called_once()

            oracle = build_oracle(AppConfig(ai_enabled=True, openai_model="o"), connections)
            assert isinstance(oracle, OpenAIOracle)
            assert oracle.model == "o"
