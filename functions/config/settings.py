"""JobLedger configuration settings.

Loads configuration from environment variables with sensible defaults.
The OpenAI key is read from Secret Manager in production and from the
environment when running against the emulators.
"""

import os
from typing import Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv
import structlog

# Load .env file for non-secret configuration (emulator hosts, feature flags, etc.)
load_dotenv()

logger = structlog.get_logger(__name__)


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    # LLM Configuration (non-secrets)
    llm_model: str = field(default_factory=lambda: os.getenv("LLM_MODEL", "gpt-4o"))
    llm_temperature: float = field(default_factory=lambda: float(os.getenv("LLM_TEMPERATURE", "0.1")))
    llm_max_retries: int = field(default_factory=lambda: int(os.getenv("LLM_MAX_RETRIES", "3")))

    # Firebase Configuration
    firebase_project_id: Optional[str] = field(
        default_factory=lambda: os.getenv("GCLOUD_PROJECT") or os.getenv("FIREBASE_PROJECT_ID")
    )
    use_firebase_emulators: bool = field(
        default_factory=lambda: (
            os.getenv("USE_FIREBASE_EMULATORS", "false").lower() == "true"
            or os.getenv("FUNCTIONS_EMULATOR") == "true"
            or os.getenv("FIRESTORE_EMULATOR_HOST") is not None
        )
    )
    firestore_emulator_host: str = field(default_factory=lambda: os.getenv("FIRESTORE_EMULATOR_HOST", "localhost:8081"))

    # Document Defaults (used when the user profile has no value)
    default_tax_rate: float = field(default_factory=lambda: float(os.getenv("DEFAULT_TAX_RATE", "0")))
    default_payment_terms_days: int = field(default_factory=lambda: int(os.getenv("DEFAULT_PAYMENT_TERMS_DAYS", "30")))

    # Line Item Rules
    max_hierarchy_depth: int = field(default_factory=lambda: int(os.getenv("MAX_HIERARCHY_DEPTH", "2")))
    cost_tolerance: float = field(default_factory=lambda: float(os.getenv("COST_TOLERANCE", "0.01")))

    # Conversation / History
    conversation_history_limit: int = field(default_factory=lambda: int(os.getenv("CONVERSATION_HISTORY_LIMIT", "50")))
    audit_log_limit: int = field(default_factory=lambda: int(os.getenv("AUDIT_LOG_LIMIT", "100")))

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Internal: cached secret value (use openai_api_key property instead)
    _openai_api_key: Optional[str] = field(default=None, repr=False)

    @property
    def openai_api_key(self) -> Optional[str]:
        """OpenAI API key, fetched once and cached on the instance."""
        if self._openai_api_key is None:
            self._openai_api_key = self._read_secret("OPENAI_API_KEY")
        return self._openai_api_key

    def _read_secret(self, secret_id: str) -> Optional[str]:
        """Latest Secret Manager version of a secret, or the env var of the same name.

        The environment wins under the emulators and whenever Secret
        Manager cannot be reached.
        """
        if self.use_firebase_emulators:
            return os.environ.get(secret_id)

        try:
            from google.cloud import secretmanager

            client = secretmanager.SecretManagerServiceClient()
            project_id = self.firebase_project_id or "jobledger-dev"
            response = client.access_secret_version(
                request={"name": f"projects/{project_id}/secrets/{secret_id}/versions/latest"}
            )
            return response.payload.data.decode("UTF-8")
        except Exception as e:
            logger.warning("secret_manager_unavailable", secret_id=secret_id, error=str(e))
            return os.environ.get(secret_id)

    def validate(self) -> None:
        """Validate required settings are present.

        Raises:
            ValueError: If required settings are missing.
        """
        if not self.openai_api_key and not self.use_firebase_emulators:
            raise ValueError("OPENAI_API_KEY is required in production")
        if self.max_hierarchy_depth < 1:
            raise ValueError("MAX_HIERARCHY_DEPTH must be at least 1")

    @property
    def is_emulator_mode(self) -> bool:
        """Check if running in emulator mode."""
        return self.use_firebase_emulators


# Singleton settings instance
settings = Settings()
