"""CertGate — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class CertGateSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "CERTGATE_",
        "extra": "ignore",
    }

    # ── Storage (resource store + decision ledger) ─────────────
    database_url: str = "sqlite:///certgate.db"
    database_echo: bool = False

    # ── Separation of duties ───────────────────────────────────
    min_reviewers: int = 2

    # ── Conditions ─────────────────────────────────────────────
    # Overrides the per-role max_draft_applications condition when set
    max_draft_applications: int | None = None

    # ── Audit ──────────────────────────────────────────────────
    record_decisions: bool = True

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = CertGateSettings()
