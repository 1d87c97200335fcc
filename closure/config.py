"""Centralized configuration for the Closure orchestrator.

Re-exports everything from closure.infrastructure.settings, then adds typed
constants for timers, thresholds, the store and the LLM.  Environment variable
overrides use safe defaults so the orchestrator starts without extra env
configuration.
"""

from __future__ import annotations

import os

from closure.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "1.3.2"

# --- Store ---
SCHEMA_VERSION: int = 2
DB_CONNECT_TIMEOUT: float = float(os.getenv("CLOSURE_DB_CONNECT_TIMEOUT", "30.0"))
DB_RETRY_MAX: int = int(os.getenv("CLOSURE_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("CLOSURE_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("CLOSURE_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("CLOSURE_DB_RETRY_JITTER", "0.1"))

# --- Timers (minutes) ---
SWEEP_ALARM: str = "dead-end-sweeper"
IDLE_CHECK_ALARM: str = "idle-tab-check"
BADGE_CLEAR_ALARM: str = "clear-sweep-badge"
TOPIC_GROUPING_ALARM: str = "topic-grouping"
COLLAPSE_ALARM_PREFIX: str = "collapse-group-"
SNOOZE_ALARM_PREFIX: str = "snooze-"

SWEEP_PERIOD_MINUTES: float = 60
IDLE_CHECK_PERIOD_MINUTES: float = 15
BADGE_CLEAR_DELAY_MINUTES: float = 0.5
SNOOZE_DURATION_MINUTES: float = 24 * 60
MINUTES_PER_DAY: float = 24 * 60

# --- Thresholds ---
GROUP_THRESHOLD_MIN: int = 3
GROUP_THRESHOLD_MAX: int = 10
IDLE_THRESHOLD_HOURS_MIN: int = 4
IDLE_THRESHOLD_HOURS_MAX: int = 168
NUCLEAR_IDLE_THRESHOLD_HOURS: float = 4
STUCK_LOADING_MS: int = 60 * 60 * 1000
TOPIC_GROUPING_MIN_CANDIDATES: int = 4
TOPIC_CLUSTER_MIN_MEMBERS: int = 2

# --- Stats ---
RAM_PER_TAB_MB: int = 50

# --- Notifications ---
REPRIEVE_NOTIFICATION_PREFIX: str = "reprieve-"
ARCHIVED_NOTIFICATION_PREFIX: str = "archived-"
REPRIEVE_BUTTONS: tuple[str, ...] = ("Keep", "Snooze 24h")
REPRIEVE_LEAD_MINUTES: float = 60

# --- LLM ---
USE_LLM: bool = os.getenv("CLOSURE_USE_LLM", "true").lower() == "true"
LLM_TIMEOUT_SECONDS: int = int(os.getenv("CLOSURE_LLM_TIMEOUT", "30"))
LLM_MAX_RETRIES: int = int(os.getenv("CLOSURE_LLM_MAX_RETRIES", "3"))
LLM_AVAILABILITY_TTL_SECONDS: int = int(os.getenv("CLOSURE_LLM_AVAILABILITY_TTL", "300"))
LLM_BREAKER_FAIL_MAX: int = 3
LLM_BREAKER_RESET_SECONDS: float = 300.0

# --- Prompts ---
SUMMARY_WORD_BUDGET: int = 60
PROMPT_TITLE_MAX_CHARS: int = 200
PROMPT_URL_MAX_CHARS: int = 300
PROMPT_EXCERPT_MAX_CHARS: int = 500
FALLBACK_EXCERPT_MAX_CHARS: int = 150
ERROR_SCAN_MAX_CHARS: int = 2000
