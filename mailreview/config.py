"""Centralized configuration for Gemini Mail Review.

Typed constants for the cache, key derivation, remote service and storage.
Environment variable overrides use safe defaults so the service starts
without extra env configuration; a project .env file is loaded first.
"""

from __future__ import annotations

from mailreview.infrastructure.env import ensure_env_loaded, env_float, env_int, get_optional_env

ensure_env_loaded()

# --- App ---
APP_VERSION: str = "1.0.0"

# --- Cache ---
MAX_CACHE_ENTRIES: int = env_int("MAILREVIEW_MAX_CACHE_ENTRIES", 50, minimum=1)
MAX_TRACKED_TABS: int = env_int("MAILREVIEW_MAX_TRACKED_TABS", 20, minimum=1)
DEFAULT_CACHE_RETENTION_DAYS: int = 7
MIN_CACHE_RETENTION_DAYS: int = 1
MAX_CACHE_RETENTION_DAYS: int = 365
MS_PER_DAY: int = 24 * 60 * 60 * 1000

# --- Key derivation ---
PROFILE_KEY_ITERATIONS: int = 100_000
CACHE_KEY_ITERATIONS: int = 10_000
PROFILE_SALT_BYTES: int = 16
KEY_BYTES: int = 32
NONCE_BYTES: int = 12
# Versioned with the cache format; changing it orphans every cached entry
CACHE_KEY_SALT: bytes = b"thunderbird-gemini-mail-cache-v1"

# --- Persistent store keys ---
CACHE_TABLE_KEY: str = "geminiCache"
CHECKPOINT_TABLE_KEY: str = "lastCheckedHashes"
RETENTION_DAYS_KEY: str = "cacheRetentionDays"
PROFILE_SALT_KEY: str = "profileEncryptionSalt"
INSTALLATION_ID_KEY: str = "installationId"
API_ENDPOINT_KEY: str = "geminiApiEndpoint"
API_KEY_ENCRYPTED_KEY: str = "geminiApiKeyEncrypted"
API_KEY_LEGACY_KEY: str = "geminiApiKey"
PROMPT_TEMPLATES_ENCRYPTED_KEY: str = "customPromptTemplatesEncrypted"
PROMPT_TEMPLATES_LEGACY_KEY: str = "customPromptTemplates"
CUSTOM_PROMPT_LEGACY_KEY: str = "customPrompt"

# --- Storage ---
DB_PATH: str | None = get_optional_env("MAILREVIEW_DB_PATH") or None
DB_CONNECT_TIMEOUT: float = env_float("MAILREVIEW_DB_CONNECT_TIMEOUT", 30.0)
DB_RETRY_MAX: int = env_int("MAILREVIEW_DB_RETRY_MAX", 5, minimum=0)
DB_RETRY_BASE_DELAY: float = env_float("MAILREVIEW_DB_RETRY_BASE_DELAY", 0.1)
DB_RETRY_MAX_DELAY: float = env_float("MAILREVIEW_DB_RETRY_MAX_DELAY", 2.0)
DB_RETRY_JITTER: float = env_float("MAILREVIEW_DB_RETRY_JITTER", 0.1)

# --- LLM ---
DEFAULT_API_ENDPOINT: str = (
    "https://generativelanguage.googleapis.com/v1/models/gemini-2.5-flash:generateContent"
)
# Unset or 0 means the remote call is awaited without a timeout
LLM_TIMEOUT_SECONDS: float | None = env_float("MAILREVIEW_LLM_TIMEOUT", 0.0) or None
MIN_API_KEY_LENGTH: int = 20
MAX_CONTENT_CHARS: int = 10_000

# --- API ---
API_HOST: str = get_optional_env("MAILREVIEW_API_HOST") or "127.0.0.1"
API_PORT: int = env_int("MAILREVIEW_API_PORT", 8765, minimum=1)
