"""
Intent classifier for free-form commands.

Asks the oracle a one-word question: does the command READ data or
WRITE data? Anything other than those two literals is ambiguous.
"""

import json
from typing import Any, Dict, List, Optional

from errors import AmbiguousIntentError
from gateways.oracle_gateway import OracleGateway
from logger import get_logger
from models import Intent

logger = get_logger(__name__)


class IntentClassifier:
    """Maps a free-form command to READ or WRITE."""

    def __init__(self, oracle: OracleGateway):
        self.oracle = oracle

    @staticmethod
    def build_prompt(collections: List[str], context: Optional[Dict[str, Any]] = None) -> str:
        return f"""Classify the user's spreadsheet command.
Available sheets: {json.dumps(collections)}
Recent context: {json.dumps(context or {}, default=str)}

WRITE means the user wants to add or record data in a sheet.
READ means the user asks a question about data already in a sheet.
Respond with exactly one word: READ or WRITE."""

    async def classify(self, command: str, collections: List[str],
                       context: Optional[Dict[str, Any]] = None) -> Intent:
        """
        Classify one command. No retries.

        Raises:
            AmbiguousIntentError: if the reply is neither READ nor WRITE
            GatewayError: if the oracle call fails
        """
        reply = await self.oracle.ask(
            self.build_prompt(collections, context), command,
            temperature=0.0, max_tokens=3,
        )
        literal = reply.strip().upper()
        try:
            intent = Intent(literal)
        except ValueError:
            logger.warning("Ambiguous intent", reply=reply)
            raise AmbiguousIntentError(reply)

        logger.info("Intent classified", intent=intent.value)
        return intent
