"""Gateways to the external data backend and the oracle."""

from .oracle_gateway import OracleGateway, OpenAIOracle, GeminiOracle, build_oracle
from .sheets_gateway import SheetsGateway, AppsScriptGateway

__all__ = [
    "OracleGateway", "OpenAIOracle", "GeminiOracle", "build_oracle",
    "SheetsGateway", "AppsScriptGateway"
]
