"""
Command orchestrator.

Runs one request through the pipeline for its mode and records the
interaction in the session store, successful or not:

- fixed-grammar: lexical parser -> validator -> append
- assisted:      AI parser, then lexical parser -> validator -> append
- free-form:     classify -> WRITE: row extraction, then lexical grammar -> append
                            READ:  pick collection, then preferred collection -> answer
- structured:    validator -> append

When every parser fails, the error message is the best suggestion available.
Summaries, per-person totals and row searches read the backend directly
and are not recorded as interactions; creating a sheet is.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import analytics
from config import AppConfig
from errors import CommandError, FormatError
from gateways.sheets_gateway import SheetsGateway
from classifier import IntentClassifier
from logger import get_logger
from models import CommandResponse, Intent, Interaction, InteractionType, InventoryUpdate
from parsers import AIParser, LexicalParser, Outcome, first_success
from parsers.ai_parser import match_collection
from session_store import SessionStore
from validator import CommandValidator, FIELDS

logger = get_logger(__name__)


class CommandMode(str, Enum):
    FIXED_GRAMMAR = "fixed-grammar"
    ASSISTED = "assisted"
    FREE_FORM = "free-form"
    STRUCTURED = "structured"


class CommandOrchestrator:
    """Interprets commands and executes them against the data backend."""

    def __init__(
        self,
        config: AppConfig,
        store: SessionStore,
        sheets: SheetsGateway,
        lexical: LexicalParser,
        validator: CommandValidator,
        ai_parser: Optional[AIParser] = None,
        classifier: Optional[IntentClassifier] = None,
    ):
        self.config = config
        self.store = store
        self.sheets = sheets
        self.lexical = lexical
        self.validator = validator
        self.ai_parser = ai_parser
        self.classifier = classifier

    @property
    def ai_available(self) -> bool:
        return self.config.ai_enabled and self.ai_parser is not None

    @property
    def free_form_available(self) -> bool:
        return self.ai_available and self.classifier is not None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle(self, session_id: Optional[str], text: str, mode: CommandMode) -> CommandResponse:
        """
        Run one text command.

        Raises:
            CommandError: typed failure, after the failed interaction is recorded
        """
        sid = self.store.get_or_create(session_id).id
        if mode == CommandMode.FREE_FORM and not self.free_form_available:
            logger.info("Free-form requested without AI, using the fixed grammar", session_id=sid)
            mode = CommandMode.FIXED_GRAMMAR

        start = time.time()
        run: Dict[str, Any] = {"intent": None}
        try:
            if mode == CommandMode.FIXED_GRAMMAR:
                response = await self._run_fixed_grammar(sid, text)
            elif mode == CommandMode.ASSISTED:
                response = await self._run_assisted(sid, text)
            elif mode == CommandMode.FREE_FORM:
                response = await self._run_free_form(sid, text, run)
            else:
                raise ValueError(f"Unsupported text mode: {mode}")
        except Exception as e:
            self._record_failure(sid, text, e, self._failure_type(mode, run["intent"]))
            raise

        logger.info(
            "Command completed",
            session_id=sid,
            mode=mode.value,
            type=response.type,
            duration_ms=round((time.time() - start) * 1000, 2),
        )
        return response

    async def handle_structured(self, session_id: Optional[str], record: Mapping[str, Any]) -> CommandResponse:
        """Validate and append an already-structured inventory update."""
        sid = self.store.get_or_create(session_id).id
        text = " ".join(str(record.get(name)) for name in FIELDS if record.get(name) is not None)
        try:
            return await self._write_inventory(sid, text, record, "structured")
        except Exception as e:
            self._record_failure(sid, text, e, InteractionType.ACTION)
            raise

    # ------------------------------------------------------------------
    # Data operations
    # ------------------------------------------------------------------

    async def read_all(self, session_id: Optional[str]) -> Dict[str, List[Dict[str, Any]]]:
        """Every collection of the session's document, read concurrently."""
        document_id = self.store.get_current_spreadsheet(session_id)
        collections = await self.sheets.list_collections(document_id)
        results = await asyncio.gather(
            *(self.sheets.read_collection(name, document_id) for name in collections)
        )
        return dict(zip(collections, results))

    async def summarize(self, session_id: Optional[str]) -> CommandResponse:
        """Totals and breakdowns for every collection."""
        sid = self.store.resolve_id(session_id)
        summary = analytics.summarize(await self.read_all(session_id))
        logger.info("Summary calculated", session_id=sid, sheets=summary["totalSheets"])
        return CommandResponse(
            type="summary",
            message=f"Summary of {summary['totalSheets']} sheets",
            data=summary,
            session_id=sid,
        )

    async def person_totals(self, session_id: Optional[str], person: Optional[str] = None) -> CommandResponse:
        """Owed, paid and pending totals per person."""
        sid = self.store.resolve_id(session_id)
        totals = analytics.person_totals(await self.read_all(session_id), person)
        if person and not totals:
            message = f"No rows found for {person}"
        else:
            message = f"Totals for {len(totals)} people"
        return CommandResponse(type="summary", message=message, data={"people": totals}, session_id=sid)

    async def find_rows(self, session_id: Optional[str], collection: str,
                        criteria: Mapping[str, Any]) -> CommandResponse:
        """
        Rows of one collection matching every criterion.

        Raises:
            FormatError: if the collection does not exist
        """
        sid = self.store.resolve_id(session_id)
        document_id = self.store.get_current_spreadsheet(session_id)
        collections = await self.sheets.list_collections(document_id)
        target = match_collection(collection, collections)
        if target is None:
            raise FormatError(
                f"Unknown sheet '{collection}'. Available sheets: {', '.join(collections) or 'none'}",
                {"collections": collections},
            )

        rows = analytics.find_rows(await self.sheets.read_collection(target, document_id), criteria)
        return CommandResponse(
            type="rows",
            message=f"Found {len(rows)} matching rows in {target}",
            data={"collection": target, "criteria": dict(criteria), "rows": rows},
            session_id=sid,
        )

    async def create_collection(self, session_id: Optional[str], name: str) -> CommandResponse:
        """
        Create a new collection and make it the session's preferred one.

        Raises:
            FormatError: if the name is empty or already taken
        """
        sid = self.store.get_or_create(session_id).id
        text = f"create sheet {name}"
        try:
            title = (name or "").strip()
            if not title:
                raise FormatError("Sheet name cannot be empty")

            document_id = self.store.get_current_spreadsheet(sid)
            existing = match_collection(title, await self.sheets.list_collections(document_id))
            if existing is not None:
                raise FormatError(f"Sheet '{existing}' already exists", {"collection": existing})

            sheets_response = await self.sheets.create_collection(title, document_id)
            response = CommandResponse(
                type=InteractionType.ACTION.value,
                message=f"Created sheet {title}",
                data={
                    "interpreted_action": {"action": "create_sheet", "collection": title},
                    "sheets_response": sheets_response,
                },
                session_id=sid,
            )
        except Exception as e:
            self._record_failure(sid, text, e, InteractionType.ACTION)
            raise

        self._record_success(sid, text, response, InteractionType.ACTION, action="create", collection=title)
        return response

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    async def _lexical_step(self, text: str) -> Outcome:
        return self.lexical.try_parse(text)

    async def _run_fixed_grammar(self, sid: str, text: str) -> CommandResponse:
        outcome = self.lexical.try_parse(text)
        if not outcome.ok:
            raise await self._parse_failure(text, outcome)
        return await self._write_inventory(sid, text, outcome.value, outcome.stage)

    async def _run_assisted(self, sid: str, text: str) -> CommandResponse:
        steps = []
        if self.ai_available:
            steps.append(("ai", lambda: self.ai_parser.parse(text)))
        steps.append(("lexical", lambda: self._lexical_step(text)))

        outcome = await first_success(steps)
        if not outcome.ok:
            raise await self._parse_failure(text, outcome)
        return await self._write_inventory(sid, text, outcome.value, outcome.stage)

    async def _run_free_form(self, sid: str, text: str, run: Dict[str, Any]) -> CommandResponse:
        document_id = self.store.get_current_spreadsheet(sid)
        collections = await self.sheets.list_collections(document_id)
        context = self.store.get_conversation_context(sid)

        run["intent"] = await self.classifier.classify(text, collections, context)
        if run["intent"] == Intent.WRITE:
            return await self._free_form_write(sid, text, collections, context, document_id)
        return await self._free_form_read(sid, text, collections, context, document_id)

    async def _free_form_write(self, sid: str, text: str, collections: List[str],
                               context: Dict[str, Any], document_id: Optional[str]) -> CommandResponse:
        outcome = await first_success([
            ("ai-row", lambda: self.ai_parser.extract_row(text, collections, context)),
            ("lexical", lambda: self._lexical_step(text)),
        ])
        if not outcome.ok:
            raise await self._parse_failure(text, outcome)

        if isinstance(outcome.value, InventoryUpdate):
            return await self._write_inventory(sid, text, outcome.value, outcome.stage)

        row = outcome.value
        sheets_response = await self.sheets.append_row(row.sheet_name, row.data, document_id)
        item = str(row.data[0]) if row.data else None
        response = CommandResponse(
            type=InteractionType.ACTION.value,
            message=f"Added a row to {row.sheet_name}",
            data={
                "interpreted_action": {
                    "action": "append_row",
                    "collection": row.sheet_name,
                    "values": row.data,
                    "stage": outcome.stage,
                },
                "sheets_response": sheets_response,
            },
            session_id=sid,
        )
        self._record_success(sid, text, response, InteractionType.ACTION,
                             action="add", item=item, collection=row.sheet_name)
        return response

    async def _free_form_read(self, sid: str, text: str, collections: List[str],
                              context: Dict[str, Any], document_id: Optional[str]) -> CommandResponse:
        async def preferred_collection() -> Outcome:
            match = match_collection(context.get("preferredCollection"), collections)
            if match is None:
                return Outcome.failure("preferred", FormatError("Preferred collection is not available"))
            return Outcome.success("preferred", match)

        outcome = await first_success([
            ("ai-pick", lambda: self.ai_parser.pick_collection(text, collections, context)),
            ("preferred", preferred_collection),
        ])
        if not outcome.ok:
            raise FormatError(
                f"Could not tell which sheet the question is about. Available sheets: {', '.join(collections) or 'none'}",
                {"collections": collections},
            )

        collection = outcome.value
        rows = await self.sheets.read_collection(collection, document_id)
        summary = analytics.summarize_collection(rows)
        answer = await self.ai_parser.answer_question(text, collection, rows, context, summary)

        response = CommandResponse(
            type=InteractionType.ANSWER.value,
            message=answer,
            data={"collection": collection, "row_count": len(rows), "stage": outcome.stage, "summary": summary},
            session_id=sid,
        )
        self._record_success(sid, text, response, InteractionType.ANSWER, collection=collection)
        return response

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _write_inventory(self, sid: str, text: str, candidate: Any, stage: str) -> CommandResponse:
        if isinstance(candidate, InventoryUpdate):
            candidate = candidate.model_dump(include=set(FIELDS))

        record, warnings = await self.validator.validate_and_correct(candidate)
        values = record.row_values()
        sheets_response = await self.sheets.append_row(
            record.tab, values, self.store.get_current_spreadsheet(sid)
        )

        response = CommandResponse(
            type=InteractionType.ACTION.value,
            message=f'Added "{record.item}" to {record.tab}',
            data={
                "parsed": record.model_dump(include=set(FIELDS)),
                "interpreted_action": {
                    "action": "append_row",
                    "collection": record.tab,
                    "values": values,
                    "stage": stage,
                },
                "sheets_response": sheets_response,
                "warnings": warnings,
            },
            session_id=sid,
        )
        self._record_success(sid, text, response, InteractionType.ACTION,
                             action="add", item=record.item, collection=record.tab)
        return response

    async def _parse_failure(self, text: str, outcome: Outcome) -> FormatError:
        """Turn the last failed parse into a FormatError carrying the best suggestion."""
        reason = outcome.error.message if outcome.error else "Command could not be parsed"
        message = reason
        if self.ai_available:
            message = await self.ai_parser.suggest_correction(text)

        stages = [o.stage for o in outcome.previous] + [outcome.stage]
        return FormatError(message, {
            "reason": reason,
            "expected_format": self.lexical.expected_format,
            "stages": stages,
        })

    @staticmethod
    def _failure_type(mode: CommandMode, intent: Optional[Intent]) -> InteractionType:
        if mode == CommandMode.FREE_FORM:
            return InteractionType.ACTION if intent == Intent.WRITE else InteractionType.UNKNOWN
        return InteractionType.ACTION

    def _record_success(self, sid: str, text: str, response: CommandResponse,
                        interaction_type: InteractionType, **summary) -> None:
        self.store.record_interaction(sid, Interaction(
            timestamp=self.store.now(),
            command=text,
            response=response.model_dump(by_alias=True),
            type=interaction_type,
            success=True,
            **summary,
        ))

    def _record_failure(self, sid: str, text: str, error: Exception, interaction_type: InteractionType) -> None:
        if isinstance(error, CommandError):
            body = error.to_dict()
            logger.command_failed(error.kind, error.message, error.status_code, session_id=sid)
        else:
            body = {"status": "error", "kind": "internal_error", "message": str(error)}
            logger.error(f"Command failed unexpectedly: {str(error)}", session_id=sid, exc_info=True)

        self.store.record_interaction(sid, Interaction(
            timestamp=self.store.now(),
            command=text or "",
            response=body,
            type=interaction_type,
            success=False,
        ))
