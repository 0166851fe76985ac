"""
Configuration validation and management for Ara Voice.

This module validates all required environment variables on startup
and provides centralized configuration access. Components never read
environment variables themselves; they receive an AppConfig.
"""

import os
from typing import Optional, List
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


DEFAULT_SECRET_PHRASE = "people purple dance keyboard pig"
ORACLE_PROVIDERS = ("openai", "gemini")


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    key: str
    message: str
    is_critical: bool = True


@dataclass
class AppConfig:
    """Application configuration with validated values."""

    # Authentication / grammar gating
    secret_phrase: str = DEFAULT_SECRET_PHRASE
    bearer_token: str = ""
    spoken_pin: str = ""

    # Data backend (Google Apps Script web app)
    apps_script_url: str = ""
    request_timeout: float = 10.0

    # Oracle
    ai_enabled: bool = False
    ai_correction: bool = True
    oracle_provider: str = "openai"
    openai_api_key: str = ""
    openai_model: str = "gpt-3.5-turbo"
    gemini_api_key: str = ""
    gemini_model_name: str = "gemini-2.5-flash"
    oracle_timeout: float = 15.0

    # Sessions
    session_max_age: int = 1800
    session_max_history: int = 50
    session_sweep_interval: int = 300
    default_sheet_name: str = "groceries"

    # Validation
    price_min: float = 0.01
    price_max: float = 1_000_000.0
    status_allowlist: List[str] = field(default_factory=list)

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"

    # CORS
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def expected_format(self) -> str:
        return f"{self.secret_phrase} [tab] [item] [quantity] at [price] [status]"

    @property
    def oracle_configured(self) -> bool:
        if self.oracle_provider == "gemini":
            return bool(self.gemini_api_key)
        return bool(self.openai_api_key)


class ConfigValidator:
    """Validates and loads application configuration."""

    REQUIRED_VARS = [
        ("APPS_SCRIPT_URL", "Required for the spreadsheet backend"),
    ]

    OPTIONAL_VARS = [
        ("BEARER_TOKEN", "Required for Bearer token authentication"),
        ("SPOKEN_PIN", "Required for spoken PIN authentication"),
        ("SECRET_PHRASE", "Optional: defaults to the built-in trigger phrase"),
    ]

    def __init__(self):
        self.errors: List[ConfigValidationError] = []
        self.warnings: List[str] = []
        self.config: Optional[AppConfig] = None

    def validate(self) -> bool:
        """
        Validate all configuration values.

        Returns:
            bool: True if all critical validations pass
        """
        self.errors = []
        self.warnings = []

        # Check required variables
        for var_name, description in self.REQUIRED_VARS:
            value = os.getenv(var_name)
            if not value or value.strip() == "":
                self.errors.append(ConfigValidationError(
                    key=var_name,
                    message=f"Missing required environment variable: {var_name}. {description}",
                    is_critical=True
                ))

        # Check optional variables
        for var_name, description in self.OPTIONAL_VARS:
            value = os.getenv(var_name)
            if not value or value.strip() == "":
                self.warnings.append(f"Optional variable not set: {var_name}. {description}")

        # Validate specific formats
        self._validate_apps_script_url()
        self._validate_port()
        self._validate_spoken_pin()
        self._validate_oracle()
        self._validate_numeric_values()
        self._validate_price_range()

        return len([e for e in self.errors if e.is_critical]) == 0

    def _validate_apps_script_url(self) -> None:
        """Validate Apps Script URL format."""
        url = os.getenv("APPS_SCRIPT_URL", "")
        if url and not (url.startswith("http://") or url.startswith("https://")):
            self.errors.append(ConfigValidationError(
                key="APPS_SCRIPT_URL",
                message=f"Invalid APPS_SCRIPT_URL format: {url}. Must start with http:// or https://",
                is_critical=True
            ))

    def _validate_port(self) -> None:
        """Validate port number."""
        port_str = os.getenv("PORT", "8000")
        try:
            port = int(port_str)
            if port < 1 or port > 65535:
                self.errors.append(ConfigValidationError(
                    key="PORT",
                    message=f"Invalid PORT: {port}. Must be between 1 and 65535",
                    is_critical=False
                ))
        except ValueError:
            self.errors.append(ConfigValidationError(
                key="PORT",
                message=f"Invalid PORT: {port_str}. Must be a number",
                is_critical=False
            ))

    def _validate_spoken_pin(self) -> None:
        """The spoken PIN is matched as a word, so it must be digits only."""
        pin = os.getenv("SPOKEN_PIN", "").strip()
        if pin and not pin.isdigit():
            self.errors.append(ConfigValidationError(
                key="SPOKEN_PIN",
                message="Invalid SPOKEN_PIN. Must contain digits only",
                is_critical=True
            ))

    def _validate_oracle(self) -> None:
        """Validate oracle provider and its API key when AI is enabled."""
        provider = os.getenv("ORACLE_PROVIDER", "openai").strip().lower()
        if provider not in ORACLE_PROVIDERS:
            self.errors.append(ConfigValidationError(
                key="ORACLE_PROVIDER",
                message=f"Invalid ORACLE_PROVIDER: {provider}. Must be one of {', '.join(ORACLE_PROVIDERS)}",
                is_critical=True
            ))
            return

        if not _parse_bool(os.getenv("AI_ENABLED"), False):
            self.warnings.append("AI_ENABLED is off: free-form commands use the fixed grammar")
            return

        key_var = "GEMINI_API_KEY" if provider == "gemini" else "OPENAI_API_KEY"
        if not os.getenv(key_var, "").strip():
            self.errors.append(ConfigValidationError(
                key=key_var,
                message=f"AI_ENABLED is set but {key_var} is missing for provider '{provider}'",
                is_critical=True
            ))

    def _validate_numeric_values(self) -> None:
        """Validate numeric configuration values."""
        numeric_vars = [
            ("SESSION_MAX_AGE", 60, 86400),
            ("SESSION_MAX_HISTORY", 1, 1000),
            ("SESSION_SWEEP_INTERVAL", 1, 3600),
            ("REQUEST_TIMEOUT", 1, 120),
            ("ORACLE_TIMEOUT", 1, 120),
        ]

        for var_name, min_val, max_val in numeric_vars:
            value_str = os.getenv(var_name)
            if value_str:
                try:
                    value = float(value_str)
                    if value < min_val or value > max_val:
                        self.warnings.append(
                            f"{var_name}={value_str} is outside recommended range [{min_val}, {max_val}]"
                        )
                except ValueError:
                    self.errors.append(ConfigValidationError(
                        key=var_name,
                        message=f"Invalid {var_name}: {value_str}. Must be a number",
                        is_critical=False
                    ))

    def _validate_price_range(self) -> None:
        """PRICE_MIN must be positive and stay below PRICE_MAX."""
        price_min = _parse_float(os.getenv("PRICE_MIN"), AppConfig.price_min)
        price_max = _parse_float(os.getenv("PRICE_MAX"), AppConfig.price_max)
        if price_min <= 0:
            self.errors.append(ConfigValidationError(
                key="PRICE_MIN",
                message=f"PRICE_MIN ({price_min}) must be greater than 0",
                is_critical=True
            ))
        elif price_min >= price_max:
            self.errors.append(ConfigValidationError(
                key="PRICE_MIN",
                message=f"PRICE_MIN ({price_min}) must be lower than PRICE_MAX ({price_max})",
                is_critical=True
            ))

    def load_config(self) -> AppConfig:
        """
        Load and return validated configuration.

        Returns:
            AppConfig: Loaded configuration object
        """
        def safe_int(value: str, default: int) -> int:
            try:
                return int(value) if value else default
            except (ValueError, TypeError):
                return default

        cors_origins_str = os.getenv("CORS_ORIGINS", "*")
        cors_origins = [o.strip() for o in cors_origins_str.split(",") if o.strip()]

        allowlist_str = os.getenv("STATUS_ALLOWLIST", "")
        status_allowlist = [s.strip().lower() for s in allowlist_str.split(",") if s.strip()]

        self.config = AppConfig(
            secret_phrase=os.getenv("SECRET_PHRASE", DEFAULT_SECRET_PHRASE).strip().lower() or DEFAULT_SECRET_PHRASE,
            bearer_token=os.getenv("BEARER_TOKEN", "").strip(),
            spoken_pin=os.getenv("SPOKEN_PIN", "").strip(),
            apps_script_url=os.getenv("APPS_SCRIPT_URL", "").strip(),
            request_timeout=_parse_float(os.getenv("REQUEST_TIMEOUT"), 10.0),
            ai_enabled=_parse_bool(os.getenv("AI_ENABLED"), False),
            ai_correction=_parse_bool(os.getenv("AI_CORRECTION"), True),
            oracle_provider=os.getenv("ORACLE_PROVIDER", "openai").strip().lower(),
            openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-3.5-turbo"),
            gemini_api_key=os.getenv("GEMINI_API_KEY", "").strip(),
            gemini_model_name=os.getenv("GEMINI_MODEL_NAME", "gemini-2.5-flash"),
            oracle_timeout=_parse_float(os.getenv("ORACLE_TIMEOUT"), 15.0),
            session_max_age=safe_int(os.getenv("SESSION_MAX_AGE"), 1800),
            session_max_history=safe_int(os.getenv("SESSION_MAX_HISTORY"), 50),
            session_sweep_interval=safe_int(os.getenv("SESSION_SWEEP_INTERVAL"), 300),
            default_sheet_name=os.getenv("DEFAULT_SHEET_NAME", "groceries").strip().lower() or "groceries",
            price_min=_parse_float(os.getenv("PRICE_MIN"), 0.01),
            price_max=_parse_float(os.getenv("PRICE_MAX"), 1_000_000.0),
            status_allowlist=status_allowlist,
            host=os.getenv("HOST", "0.0.0.0"),
            port=safe_int(os.getenv("PORT"), 8000),
            debug=_parse_bool(os.getenv("DEBUG"), False),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            cors_origins=cors_origins,
        )

        return self.config

    def print_status(self) -> None:
        """Print configuration status to console."""
        print("\n" + "=" * 60)
        print("CONFIGURATION VALIDATION")
        print("=" * 60)

        if self.errors:
            print("\n[X] ERRORS:")
            for error in self.errors:
                critical = "[CRITICAL]" if error.is_critical else "[WARNING]"
                print(f"  {critical} {error.key}: {error.message}")

        if self.warnings:
            print("\n[!] WARNINGS:")
            for warning in self.warnings:
                print(f"  - {warning}")

        if not self.errors and not self.warnings:
            print("\n[OK] All configuration values are valid!")

        print("=" * 60 + "\n")


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if not value:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value else default
    except (ValueError, TypeError):
        return default


def validate_config_on_startup() -> AppConfig:
    """
    Validate configuration on application startup.

    Raises:
        ValueError: If critical configuration is missing (instead of SystemExit for serverless compatibility)

    Returns:
        AppConfig: Validated configuration
    """
    validator = ConfigValidator()
    is_valid = validator.validate()
    config = validator.load_config()

    validator.print_status()

    if not is_valid:
        error_msgs = [f"{error.key}: {error.message}" for error in validator.errors if error.is_critical]
        raise ValueError(
            f"Cannot start application due to configuration errors. "
            f"Missing or invalid: {', '.join(error_msgs)}"
        )

    return config


# Global config instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get the global configuration instance.

    Returns:
        AppConfig: Application configuration
    """
    global _config
    if _config is None:
        _config = validate_config_on_startup()
    return _config
