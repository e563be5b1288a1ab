import json
import logging
import os
from typing import Any

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEV_MODE = os.getenv("DEV_MODE", "false").lower() == "true"

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")
JWT_SECRET = os.getenv("JWT_SECRET", "")
ACCESS_TOKEN_TTL_MINUTES = int(os.getenv("ACCESS_TOKEN_TTL_MINUTES", "60"))

# Round lifecycle
SURVEY_WINDOW_DAYS = int(os.getenv("SURVEY_WINDOW_DAYS", "30"))
LAUNCH_LOOKAHEAD_DAYS = int(os.getenv("LAUNCH_LOOKAHEAD_DAYS", "30"))
SCHEDULE_HORIZON_YEARS = int(os.getenv("SCHEDULE_HORIZON_YEARS", "2"))
MAX_SCHEDULED_ROUNDS = int(os.getenv("MAX_SCHEDULED_ROUNDS", "12"))
ALLOWED_CADENCES = (2, 4)
DEFAULT_CADENCE = int(os.getenv("DEFAULT_CADENCE", "2"))
REMINDER_DAYS = [int(d) for d in os.getenv("REMINDER_DAYS", "10,20").split(",") if d.strip()]

# Dispatch
DISPATCH_MAX_WORKERS = int(os.getenv("DISPATCH_MAX_WORKERS", "5"))
DISPATCH_SEND_TIMEOUT_SECONDS = float(os.getenv("DISPATCH_SEND_TIMEOUT_SECONDS", "10"))
DISPATCH_STALE_SECONDS = int(os.getenv("DISPATCH_STALE_SECONDS", "300"))
TRANSPORT_MAX_PER_SECOND = int(os.getenv("TRANSPORT_MAX_PER_SECOND", "2"))
EMAIL_TRANSPORT = os.getenv("EMAIL_TRANSPORT", "resend").strip().lower()
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
EMAIL_FROM = os.getenv("EMAIL_FROM", "ResidentPulse <surveys@residentpulse.local>")
SURVEY_BASE_URL = os.getenv("SURVEY_BASE_URL", "http://localhost:5173").rstrip("/")

# Sweeper
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
ROUND_SWEEP_INTERVAL_MINUTES = int(os.getenv("ROUND_SWEEP_INTERVAL_MINUTES", "60"))

# Analytics
REVENUE_AT_RISK_WARNING_RATIO = float(os.getenv("REVENUE_AT_RISK_WARNING_RATIO", "0.25"))
WORD_CLOUD_MAX_WORDS = int(os.getenv("WORD_CLOUD_MAX_WORDS", "60"))

DEFAULT_ALERT_KEYWORDS: dict[str, list[str]] = {
    "contract_termination": [
        "terminate the contract",
        "terminate our contract",
        "termination",
        "cancel the contract",
        "cancel our contract",
        "end the contract",
        "not renew",
        "won't renew",
        "new management company",
        "replace management",
        "switch management",
        "looking at other management",
        "request for proposal",
        "rfp",
    ],
    "legal_threat": [
        "lawsuit",
        "sue",
        "suing",
        "attorney",
        "lawyer",
        "legal action",
        "litigation",
        "breach of contract",
        "negligence",
    ],
    "safety_concern": [
        "unsafe",
        "dangerous",
        "hazard",
        "injury",
        "injured",
        "fire code",
        "gas leak",
        "mold",
        "structural",
        "collapse",
        "carbon monoxide",
        "electrical fire",
    ],
}
ALERT_KEYWORDS: dict[str, list[str]] = {k: list(v) for k, v in DEFAULT_ALERT_KEYWORDS.items()}

if os.getenv("ALERT_KEYWORDS_JSON"):
    try:
        _override: Any = json.loads(os.getenv("ALERT_KEYWORDS_JSON", "{}"))
        if isinstance(_override, dict):
            for _key, _words in _override.items():
                if _key in ALERT_KEYWORDS and isinstance(_words, list):
                    ALERT_KEYWORDS[_key] = [str(w).strip().lower() for w in _words if str(w).strip()]
    except json.JSONDecodeError:
        logging.getLogger(__name__).warning("[ANALYTICS] ALERT_KEYWORDS_JSON is not valid JSON; using default keywords")
