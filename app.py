"""
FastAPI application for Ara Voice.

Serverless-compatible: startup problems put the app in degraded mode
instead of crashing, and /health reports what went wrong.
"""

import os
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

# Only load .env file in development (not on Vercel)
if os.getenv("VERCEL") != "1":
    from dotenv import load_dotenv
    load_dotenv(override=True)

from fastapi import FastAPI, Header, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AuthResult, authenticate, validate_bearer_token, validate_secret_phrase
from classifier import IntentClassifier
from config import AppConfig, ConfigValidator, validate_config_on_startup
from connection import Connections, OracleConnectionError
from errors import AuthError, CommandError, GatewayError
from gateways import AppsScriptGateway, OracleGateway, SheetsGateway, build_oracle
from logger import get_logger, request_id_var
from models import (
    CollectionRequest, CommandRequest, CommandResponse, FindRowsRequest, PreferenceRequest,
    SpreadsheetRequest, StructuredCommandRequest, TranscriptRequest
)
from orchestrator import CommandMode, CommandOrchestrator
from parsers import AIParser, LexicalParser
from session_store import SessionStore
from validator import CommandValidator

logger = get_logger(__name__)

API_VERSION = "1.0.0"

# Check if running in serverless environment
IS_SERVERLESS = os.getenv("VERCEL") == "1" or os.getenv("AWS_LAMBDA_FUNCTION_NAME") is not None

PIN_PROMPT = "PIN authenticated. You can now send your voice command."
KEY_METHOD = 'Secret phrase in the "key" field'
BEARER_METHOD = "Bearer token in Authorization header"


def build_orchestrator(config: AppConfig, store: SessionStore, sheets: SheetsGateway,
                       oracle: Optional[OracleGateway]) -> CommandOrchestrator:
    """Wire the pipeline components from one config."""
    ai_parser = AIParser(oracle, config.secret_phrase) if oracle is not None else None
    classifier = IntentClassifier(oracle) if oracle is not None else None
    validator = CommandValidator(
        price_min=config.price_min,
        price_max=config.price_max,
        status_allowlist=config.status_allowlist,
        ai_parser=ai_parser if (config.ai_enabled and config.ai_correction) else None,
    )
    return CommandOrchestrator(
        config=config,
        store=store,
        sheets=sheets,
        lexical=LexicalParser(config.secret_phrase),
        validator=validator,
        ai_parser=ai_parser,
        classifier=classifier,
    )


def create_app(config: Optional[AppConfig] = None,
               sheets_gateway: Optional[SheetsGateway] = None,
               oracle: Optional[OracleGateway] = None) -> FastAPI:
    """
    Build the application.

    Args:
        config: Use this configuration instead of loading it from the environment
        sheets_gateway: Data backend to use instead of the Apps Script web app
        oracle: Oracle to use instead of the one built from the configuration
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info(f"Starting Ara Voice API (Serverless: {IS_SERVERLESS})")
        logger.info("=" * 60)

        app.state.startup_status = {"healthy": True, "error": None}

        cfg = config
        if cfg is None:
            try:
                cfg = validate_config_on_startup()
                logger.info("Configuration validated")
            except ValueError as e:
                logger.error(f"Configuration validation failed: {e}")
                app.state.startup_status = {"healthy": False, "error": f"Configuration error: {str(e)}"}
                cfg = ConfigValidator().load_config()
                logger.warning("[STARTUP] Starting in DEGRADED MODE")

        connections = Connections(cfg)
        sheets = sheets_gateway or AppsScriptGateway(
            cfg.apps_script_url, connections.get_http_client(), cfg.request_timeout
        )

        active_oracle = oracle
        if active_oracle is None:
            try:
                active_oracle = build_oracle(cfg, connections)
            except OracleConnectionError as e:
                logger.error(f"[STARTUP] Oracle unavailable: {e}")
                app.state.startup_status = {"healthy": False, "error": f"Oracle error: {str(e)}"}
                logger.warning("[STARTUP] Starting in DEGRADED MODE - AI features disabled")

        store = SessionStore.from_config(cfg)
        store.start()

        app.state.config = cfg
        app.state.connections = connections
        app.state.sheets = sheets
        app.state.store = store
        app.state.orchestrator = build_orchestrator(cfg, store, sheets, active_oracle)

        logger.info(
            "[STARTUP] Ready",
            ai_enabled=cfg.ai_enabled and active_oracle is not None,
            provider=cfg.oracle_provider if active_oracle is not None else None,
        )

        yield

        logger.info("Shutting down")
        store.destroy()
        try:
            await connections.aclose()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    app = FastAPI(
        title="Ara Voice API",
        description="Voice and natural-language commands for spreadsheet data",
        version=API_VERSION,
        lifespan=lifespan
    )

    if config is not None:
        cors_origins = config.cors_origins
    else:
        cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------
    # Error handlers
    # ------------------------------------------------------------------

    @app.exception_handler(CommandError)
    async def command_error_handler(request: Request, exc: CommandError):
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "status": "error",
                "kind": "invalid_request",
                "message": "Request body is invalid",
                "details": {"errors": jsonable_encoder(exc.errors())},
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "status": "error",
                "kind": "not_found" if exc.status_code == 404 else "http_error",
                "message": str(exc.detail),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle all uncaught exceptions."""
        logger.error(
            f"Unhandled exception: {str(exc)}",
            path=request.url.path,
            method=request.method,
            exc_info=True
        )
        cfg = getattr(request.app.state, "config", None)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "status": "error",
                "kind": "internal_error",
                "message": "Internal server error",
                "details": {"error": str(exc)} if cfg is not None and cfg.debug else None,
            }
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all HTTP requests with timing."""
        start_time = time.time()
        request_id = str(uuid.uuid4())[:8]
        token = request_id_var.set(request_id)

        try:
            response = await call_next(request)
            logger.request(
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=(time.time() - start_time) * 1000,
            )
            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            logger.error(
                f"Request failed: {str(e)}",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.time() - start_time) * 1000, 2)
            )
            raise
        finally:
            request_id_var.reset(token)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _authenticate(request: Request, authorization: Optional[str], command: str,
                      session_id: Optional[str]) -> AuthResult:
        cfg: AppConfig = request.app.state.config
        result = authenticate(authorization, command, cfg.bearer_token, cfg.spoken_pin)
        request.app.state.store.set_auth(session_id, {"method": result.method})
        logger.info("Request authenticated", method=result.method)
        return result

    def _pin_prompt(request: Request, result: AuthResult, session_id: Optional[str]) -> dict:
        sid = request.app.state.store.resolve_id(session_id)
        return CommandResponse(
            type="auth",
            message=PIN_PROMPT,
            data={"authMethod": result.method},
            session_id=sid,
        ).model_dump(by_alias=True)

    def _body(response: CommandResponse, **extra) -> dict:
        body = response.model_dump(by_alias=True)
        body.update(extra)
        return body

    def _require_session(request: Request, session_id: str) -> None:
        if not session_id or not session_id.strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Session ID cannot be empty")
        if session_id not in request.app.state.store:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")

    def _require_bearer(request: Request, authorization: Optional[str]) -> None:
        if not validate_bearer_token(authorization, request.app.state.config.bearer_token):
            logger.warning("Bearer token required", path=request.url.path)
            raise AuthError("Bearer token required", methods=[BEARER_METHOD])

    # ------------------------------------------------------------------
    # Service endpoints
    # ------------------------------------------------------------------

    @app.get("/")
    async def root(request: Request):
        """Root endpoint."""
        cfg: AppConfig = request.app.state.config
        return {
            "message": "Ara Voice API",
            "version": API_VERSION,
            "status": "running",
            "serverless": IS_SERVERLESS,
            "expectedFormat": cfg.expected_format,
            "docs": "/docs"
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Startup status, configuration flags and a live data backend check."""
        startup_status = request.app.state.startup_status
        services = request.app.state.connections.health_check()

        try:
            collections = await request.app.state.sheets.list_collections()
            services["backend"].update({"healthy": True, "collections": len(collections)})
        except GatewayError as e:
            services["backend"].update({"healthy": False, "error": e.message})

        healthy = startup_status.get("healthy", False) and services["backend"]["healthy"]
        return {
            "status": "healthy" if healthy else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "serverless": IS_SERVERLESS,
            "startup_validation": startup_status,
            "live_check": services,
            "sessions": len(request.app.state.store),
        }

    @app.get("/config")
    async def config_view(request: Request):
        """Non-secret view of the running configuration."""
        cfg: AppConfig = request.app.state.config
        return {
            "expectedFormat": cfg.expected_format,
            "aiEnabled": request.app.state.orchestrator.ai_available,
            "aiCorrection": cfg.ai_correction,
            "oracleProvider": cfg.oracle_provider,
            "authMethods": {
                "bearerToken": bool(cfg.bearer_token),
                "spokenPin": bool(cfg.spoken_pin),
            },
            "backendConfigured": bool(cfg.apps_script_url),
            "defaultSheet": cfg.default_sheet_name,
            "priceRange": [cfg.price_min, cfg.price_max],
            "statusAllowlist": cfg.status_allowlist,
            "sessionMaxAge": cfg.session_max_age,
        }

    # ------------------------------------------------------------------
    # Command endpoints
    # ------------------------------------------------------------------

    @app.post("/voice-command")
    async def voice_command(body: CommandRequest, request: Request,
                            authorization: Optional[str] = Header(None)):
        """Free-form natural-language command. Requires authentication."""
        result = _authenticate(request, authorization, body.command, body.session_id)
        if result.pin_only:
            return _pin_prompt(request, result, body.session_id)

        response = await request.app.state.orchestrator.handle(
            body.session_id, result.command, CommandMode.FREE_FORM
        )
        return _body(response, authMethod=result.method)

    @app.post("/webhook/voice")
    async def voice_webhook(body: CommandRequest, request: Request,
                            authorization: Optional[str] = Header(None)):
        """Fixed-grammar voice transcript. Requires authentication."""
        result = _authenticate(request, authorization, body.command, body.session_id)
        if result.pin_only:
            return _pin_prompt(request, result, body.session_id)

        response = await request.app.state.orchestrator.handle(
            body.session_id, result.command, CommandMode.FIXED_GRAMMAR
        )
        return _body(response, authMethod=result.method)

    @app.post("/process-command")
    async def process_command(body: TranscriptRequest, request: Request):
        """Transcript parsed by the AI first, then by the fixed grammar."""
        response = await request.app.state.orchestrator.handle(
            body.session_id, body.transcript, CommandMode.ASSISTED
        )
        return _body(response)

    @app.post("/inventory")
    async def inventory(body: StructuredCommandRequest, request: Request):
        """Structured inventory update gated by the secret phrase."""
        if not validate_secret_phrase(body.key, request.app.state.config.secret_phrase):
            logger.warning("Invalid inventory key")
            raise AuthError("Invalid key", methods=[KEY_METHOD])

        response = await request.app.state.orchestrator.handle_structured(body.session_id, body.record())
        return _body(response)

    # ------------------------------------------------------------------
    # Data endpoints
    # ------------------------------------------------------------------

    @app.post("/collections")
    async def create_collection(body: CollectionRequest, request: Request,
                                authorization: Optional[str] = Header(None)):
        """Create a sheet in the session's document. Requires a bearer token."""
        _require_bearer(request, authorization)
        response = await request.app.state.orchestrator.create_collection(body.session_id, body.name)
        return _body(response)

    @app.get("/analytics/summary")
    async def analytics_summary(request: Request, session_id: Optional[str] = Query(None, alias="sessionId"),
                                authorization: Optional[str] = Header(None)):
        """Totals and breakdowns for every sheet. Requires a bearer token."""
        _require_bearer(request, authorization)
        response = await request.app.state.orchestrator.summarize(session_id)
        return _body(response)

    @app.get("/analytics/people")
    async def analytics_people(request: Request, person: Optional[str] = None,
                               session_id: Optional[str] = Query(None, alias="sessionId"),
                               authorization: Optional[str] = Header(None)):
        """Owed, paid and pending totals per person. Requires a bearer token."""
        _require_bearer(request, authorization)
        response = await request.app.state.orchestrator.person_totals(session_id, person)
        return _body(response)

    @app.post("/analytics/find")
    async def analytics_find(body: FindRowsRequest, request: Request,
                             authorization: Optional[str] = Header(None)):
        """Rows of one sheet matching every criterion. Requires a bearer token."""
        _require_bearer(request, authorization)
        response = await request.app.state.orchestrator.find_rows(body.session_id, body.collection, body.criteria)
        return _body(response)

    # ------------------------------------------------------------------
    # Session endpoints
    # ------------------------------------------------------------------

    @app.get("/session/{session_id}")
    async def get_session(session_id: str, request: Request):
        """Session history, context and auth state."""
        _require_session(request, session_id)
        snapshot = request.app.state.store.snapshot(session_id)
        if snapshot is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
        return snapshot

    @app.delete("/session/{session_id}")
    async def delete_session(session_id: str, request: Request):
        """Delete a session and clear its history."""
        _require_session(request, session_id)
        if not request.app.state.store.clear_session(session_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
        return {"message": "Session deleted successfully", "sessionId": session_id}

    @app.post("/session/{session_id}/spreadsheet")
    async def set_spreadsheet(session_id: str, body: SpreadsheetRequest, request: Request):
        """Point a session at a different backend document."""
        store: SessionStore = request.app.state.store
        store.set_current_spreadsheet(session_id, body.spreadsheet_id)
        logger.info("Spreadsheet selected", session_id=session_id)
        return {
            "message": "Spreadsheet selected",
            "sessionId": store.resolve_id(session_id),
            "spreadsheetId": body.spreadsheet_id,
        }

    @app.post("/session/{session_id}/preferences")
    async def set_preference(session_id: str, body: PreferenceRequest, request: Request):
        """Store one preference on a session."""
        store: SessionStore = request.app.state.store
        store.set_preference(session_id, body.key, body.value)
        return {
            "message": "Preference saved",
            "sessionId": store.resolve_id(session_id),
            "preferences": {body.key: store.get_preference(session_id, body.key)},
        }

    @app.get("/session/{session_id}/patterns")
    async def session_patterns(session_id: str, request: Request):
        """Frequency analysis of a session's commands."""
        _require_session(request, session_id)
        patterns = request.app.state.store.analyze_conversation_patterns(session_id)
        if patterns is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
        return {"sessionId": session_id, "patterns": patterns}

    @app.get("/sessions/stats")
    async def sessions_stats(request: Request):
        """Statistics about active sessions."""
        sessions = request.app.state.store.active_sessions()
        return {
            "total_sessions": len(sessions),
            "total_interactions": sum(s["totalInteractions"] for s in sessions),
            "sessions": sessions,
        }

    @app.post("/sessions/cleanup")
    async def cleanup_expired_sessions(request: Request):
        """Run an expiry sweep now."""
        store: SessionStore = request.app.state.store
        removed = store.expire_sweep()
        return {
            "message": "Expired sessions cleaned up",
            "cleaned_count": len(removed),
            "remaining_sessions": len(store),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from config import get_config

    config = get_config()
    uvicorn.run(
        "app:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level=config.log_level.lower()
    )
