"""Runtime settings for the PersonalBot service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")

_DEFAULT_PROFILE = Path(__file__).parent / "data" / "user_profile.json"


@dataclass(frozen=True)
class Settings:
    """Configuration for agents, pacing and the session engine.

    Delays are in seconds, the suppression window in milliseconds to match
    the timestamps kept by the session registry.
    """

    model: str = "claude-sonnet-4-6"
    profile_path: str = str(_DEFAULT_PROFILE)
    frontend_url: str = "http://localhost:3000"

    # Gating
    suppression_window_ms: int = 300_000  # 5 minutes
    history_window: int = 10
    min_detail_length: int = 30

    # Staged exchange pacing
    step_interval_seconds: float = 0.8
    lead_in_seconds: float = 2.0
    follow_up_seconds: float = 2.0

    agent_timeout_seconds: float = 30.0
    max_renegotiation_rounds: int = 3
    pricing_cache_ttl_seconds: float = 3600.0

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            model=os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-6"),
            profile_path=os.getenv("PROFILE_PATH", str(_DEFAULT_PROFILE)),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
            suppression_window_ms=int(os.getenv("SUPPRESSION_WINDOW_MS", "300000")),
            history_window=int(os.getenv("HISTORY_WINDOW", "10")),
            min_detail_length=int(os.getenv("MIN_DETAIL_LENGTH", "30")),
            step_interval_seconds=float(os.getenv("STEP_INTERVAL_SECONDS", "0.8")),
            lead_in_seconds=float(os.getenv("LEAD_IN_SECONDS", "2.0")),
            follow_up_seconds=float(os.getenv("FOLLOW_UP_SECONDS", "2.0")),
            agent_timeout_seconds=float(os.getenv("AGENT_TIMEOUT_SECONDS", "30")),
            max_renegotiation_rounds=int(os.getenv("MAX_RENEGOTIATION_ROUNDS", "3")),
            pricing_cache_ttl_seconds=float(os.getenv("PRICING_CACHE_TTL_SECONDS", "3600")),
        )
