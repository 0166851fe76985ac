"""
AI parser adapter.

Wraps the oracle for every prompt the pipeline needs: transcript parsing,
correction suggestions, data correction, free-form row extraction,
collection selection and question answering. Replies are decoded strictly
into Outcomes right after the call; nothing downstream trusts raw JSON.
"""

import json
import math
import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from errors import AIParseFailure, GatewayError
from gateways.oracle_gateway import OracleGateway, EXTRACTION_TEMPERATURE, CONVERSATION_TEMPERATURE
from logger import get_logger
from models import InventoryUpdate, RowWrite
from parsers.outcome import Outcome

logger = get_logger(__name__)

REQUIRED_FIELDS = ("tab", "item", "qty", "price", "status")
MAX_ROWS_IN_PROMPT = 200

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def static_suggestion(secret_phrase: str) -> str:
    return f"Bad format - use: {secret_phrase} [tab] [item] [quantity] at [price] [status]"


def _strip_fence(text: str) -> str:
    match = _FENCE.match(text.strip())
    return match.group(1) if match else text.strip()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _load_object(raw: str) -> Dict[str, Any]:
    """Decode a JSON object or raise AIParseFailure."""
    try:
        payload = json.loads(_strip_fence(raw))
    except (TypeError, ValueError):
        raise AIParseFailure("Oracle reply is not valid JSON", raw)
    if not isinstance(payload, dict):
        raise AIParseFailure("Oracle reply is not a JSON object", raw)
    return payload


def decode_inventory(payload: Dict[str, Any], raw: Optional[str] = None) -> InventoryUpdate:
    """Strictly validate the success shape `{tab, item, qty, price, status}`."""
    if "error" in payload:
        raise AIParseFailure(f"Oracle could not parse the command: {payload.get('reason', 'no reason given')}", raw)

    missing = [name for name in REQUIRED_FIELDS if name not in payload]
    if missing:
        raise AIParseFailure(f"Oracle reply is missing fields: {', '.join(missing)}", raw)

    for name in ("tab", "item", "status"):
        if not isinstance(payload[name], str) or not payload[name].strip():
            raise AIParseFailure(f"Oracle reply field '{name}' must be a non-empty string", raw)
    for name in ("qty", "price"):
        if not _is_number(payload[name]) or payload[name] <= 0:
            raise AIParseFailure(f"Oracle reply field '{name}' must be a positive number", raw)

    try:
        return InventoryUpdate(**{name: payload[name] for name in REQUIRED_FIELDS})
    except PydanticValidationError as e:
        raise AIParseFailure(f"Oracle reply failed validation: {e.errors()[0]['msg']}", raw)


def decode_parse_reply(raw: str) -> Outcome:
    """Success(InventoryUpdate) or Failure(AIParseFailure)."""
    try:
        return Outcome.success("ai", decode_inventory(_load_object(raw), raw))
    except AIParseFailure as e:
        return Outcome.failure("ai", e)


def match_collection(name: Any, collections: List[str]) -> Optional[str]:
    """Case-insensitive match returning the canonical collection name."""
    if not isinstance(name, str):
        return None
    wanted = name.strip().strip('"\'.').lower()
    for collection in collections:
        if collection.lower() == wanted:
            return collection
    return None


def decode_row_reply(raw: str, collections: List[str]) -> Outcome:
    """Success(RowWrite) for `{targetCollection, rowValues[]}` naming a live collection."""
    try:
        payload = _load_object(raw)
        if "error" in payload:
            raise AIParseFailure(f"Oracle could not extract a row: {payload.get('reason', 'no reason given')}", raw)

        target = match_collection(payload.get("targetCollection"), collections)
        if target is None:
            raise AIParseFailure(
                f"Oracle named an unknown collection: {payload.get('targetCollection')!r}", raw
            )

        values = payload.get("rowValues")
        if not isinstance(values, list) or not values:
            raise AIParseFailure("Oracle reply field 'rowValues' must be a non-empty list", raw)
        if any(isinstance(v, (dict, list)) for v in values):
            raise AIParseFailure("Oracle reply field 'rowValues' must hold scalar values", raw)

        return Outcome.success("ai-row", RowWrite(sheet_name=target, data=values))
    except AIParseFailure as e:
        return Outcome.failure("ai-row", e)


class AIParser:
    """Prompts and strict decoders around one oracle."""

    def __init__(self, oracle: OracleGateway, secret_phrase: str):
        self.oracle = oracle
        self.secret_phrase = secret_phrase

    @property
    def parse_instructions(self) -> str:
        return f"""You are an inventory management assistant. Parse voice commands into structured data.

Expected format: "{self.secret_phrase} [tab] [item] [quantity] at [price] [status]"
Example: "{self.secret_phrase} groceries apples two at 1200 pending"

Extract:
- tab: The tab/category name (e.g., "groceries")
- item: The product name (e.g., "apples")
- qty: The quantity as a number (e.g., 2 from "two")
- price: The price per kg as a number (e.g., 1200)
- status: The status (e.g., "owes", "paid", "pending")

Respond ONLY with valid JSON in this exact format:
{{"tab": "string", "item": "string", "qty": number, "price": number, "status": "string"}}

If parsing fails, respond with: {{"error": "parsing_failed", "reason": "description"}}"""

    async def parse(self, transcript: str) -> Outcome:
        """One oracle call; any failure is an AIParseFailure outcome."""
        try:
            raw = await self.oracle.ask(
                self.parse_instructions, transcript,
                temperature=EXTRACTION_TEMPERATURE, max_tokens=150,
            )
        except GatewayError as e:
            return Outcome.failure("ai", AIParseFailure(f"Oracle unavailable: {e.message}"))

        outcome = decode_parse_reply(raw)
        if outcome.ok:
            logger.info("AI parsed transcript", tab=outcome.value.tab, item=outcome.value.item)
        else:
            logger.info("AI parse rejected", reason=outcome.error.message)
        return outcome

    async def suggest_correction(self, transcript: str) -> str:
        """One-line correction for a transcript that failed every parser."""
        system = f"""You are a helpful assistant for voice-controlled inventory management.
When users provide incorrect voice commands, suggest corrections.

Expected format: "{self.secret_phrase} [tab] [item] [quantity] at [price] [status]"
Example: "{self.secret_phrase} groceries apples two at 1200 pending"

Provide a helpful, concise correction suggestion on a single line."""
        try:
            reply = await self.oracle.ask(
                system,
                f'The user said: "{transcript}". This couldn\'t be parsed. What should they say instead?',
                temperature=0.3, max_tokens=100,
            )
        except GatewayError as e:
            logger.warning("Suggestion unavailable, using static format hint", error=e.message)
            return static_suggestion(self.secret_phrase)

        line = next((part.strip() for part in reply.splitlines() if part.strip()), "")
        return line or static_suggestion(self.secret_phrase)

    async def validate_and_correct(self, command: InventoryUpdate) -> Tuple[InventoryUpdate, List[str]]:
        """
        Ask the oracle to standardize a valid command.

        Returns the corrected command and any warnings. The original command
        is returned whenever the oracle declines, fails, or sends back data
        that does not decode strictly.
        """
        system = """You are a data validator for inventory management. Review and suggest corrections for inventory data.

Common corrections:
- Standardize item names (e.g., "starbursts" -> "starburst")
- Validate reasonable prices (alert if extremely high/low)
- Standardize status values ("owe" -> "owes", "payed" -> "paid")
- Ensure tab names are consistent

Respond with JSON in this format:
{"corrected": true/false, "data": {"tab": "string", "item": "string", "qty": number, "price": number, "status": "string"}, "warnings": ["warning1", "warning2"]}"""
        original = command.model_dump(include=set(REQUIRED_FIELDS))
        try:
            raw = await self.oracle.ask(
                system,
                f"Please validate this inventory data: {json.dumps(original)}",
                temperature=EXTRACTION_TEMPERATURE, max_tokens=200,
            )
            payload = _load_object(raw)
        except (GatewayError, AIParseFailure) as e:
            logger.warning("Data correction skipped", error=e.message)
            return command, []

        raw_warnings = payload.get("warnings")
        warnings = [str(w) for w in raw_warnings if w] if isinstance(raw_warnings, list) else []
        if warnings:
            logger.info("Data validation warnings", warnings=warnings)

        if payload.get("corrected") is not True or not isinstance(payload.get("data"), dict):
            return command, warnings

        try:
            corrected = decode_inventory(payload["data"], raw)
        except AIParseFailure as e:
            logger.warning("Discarding unusable correction", error=e.message)
            return command, warnings

        if corrected != command:
            logger.info("Command corrected", before=original, after=corrected.model_dump(include=set(REQUIRED_FIELDS)))
        return corrected, warnings

    async def extract_row(self, command: str, collections: List[str],
                          context: Optional[Dict[str, Any]] = None) -> Outcome:
        """Free-form WRITE: which collection and which row values."""
        system = f"""You convert spreadsheet commands into a row to append.
Available sheets: {json.dumps(collections)}
Conversation context: {json.dumps(context or {}, default=str)}

Pick the single most appropriate sheet from the list and the values for one new row,
in column order (item, quantity, price, status when they apply).
Respond ONLY with JSON: {{"targetCollection": "sheet name", "rowValues": [values]}}
If the command cannot be turned into a row, respond with: {{"error": "extraction_failed", "reason": "description"}}"""
        try:
            raw = await self.oracle.ask(system, command, temperature=EXTRACTION_TEMPERATURE, max_tokens=200)
        except GatewayError as e:
            return Outcome.failure("ai-row", AIParseFailure(f"Oracle unavailable: {e.message}"))
        return decode_row_reply(raw, collections)

    async def pick_collection(self, question: str, collections: List[str],
                              context: Optional[Dict[str, Any]] = None) -> Outcome:
        """Free-form READ: name the one collection the question is about."""
        system = f"""You route questions about spreadsheet data to the right sheet.
Available sheets: {json.dumps(collections)}
Conversation context: {json.dumps(context or {}, default=str)}

Respond with ONLY the exact name of the single most relevant sheet."""
        try:
            raw = await self.oracle.ask(system, question, temperature=0.0, max_tokens=20)
        except GatewayError as e:
            return Outcome.failure("ai-pick", AIParseFailure(f"Oracle unavailable: {e.message}"))

        target = match_collection(raw, collections)
        if target is None:
            return Outcome.failure("ai-pick", AIParseFailure(f"Oracle named an unknown collection: {raw!r}", raw))
        return Outcome.success("ai-pick", target)

    async def answer_question(self, question: str, collection: str, rows: List[Dict[str, Any]],
                              context: Optional[Dict[str, Any]] = None,
                              summary: Optional[Dict[str, Any]] = None) -> str:
        """
        Natural-language answer grounded in the rows of one collection.

        Raises:
            GatewayError: if the oracle call fails
        """
        shown = rows[:MAX_ROWS_IN_PROMPT]
        totals = f"Totals: {json.dumps(summary, default=str)}\n" if summary else ""
        system = f"""You are Ara, a helpful assistant answering questions about spreadsheet data.
Sheet "{collection}" has {len(rows)} rows{' (first ' + str(len(shown)) + ' shown)' if len(shown) < len(rows) else ''}:
{json.dumps(shown, default=str)}
{totals}Conversation context: {json.dumps(context or {}, default=str)}

Answer using only this data. Be concise and conversational."""
        return await self.oracle.ask(system, question, temperature=CONVERSATION_TEMPERATURE, max_tokens=300)
