import os
from dataclasses import dataclass

_POLICIES = ("skip", "block", "allow")


@dataclass(frozen=True)
class Settings:
    token: str
    data_path: str = "dispatch_data.json"
    # Set to True to sync commands per guild for faster propagation
    sync_per_guild: bool = True
    # What happens to riders failing availability/double-booking checks
    candidate_policy: str = "skip"
    check_availability: bool = True
    reconcile_attempts: int = 3
    reminder_lead_hours: int = 24
    log_level: str = "INFO"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def load_settings() -> Settings:
    token = os.getenv("DISCORD_BOT_TOKEN", "").strip()
    policy = os.getenv("DISPATCH_CANDIDATE_POLICY", "skip").strip().lower()
    return Settings(
        token=token or "",
        data_path=os.getenv("DISPATCH_DATA_PATH", "").strip() or "dispatch_data.json",
        candidate_policy=policy if policy in _POLICIES else "skip",
        check_availability=_env_bool("DISPATCH_CHECK_AVAILABILITY", True),
        reconcile_attempts=max(1, _env_int("DISPATCH_RECONCILE_ATTEMPTS", 3)),
        reminder_lead_hours=max(1, _env_int("DISPATCH_REMINDER_HOURS", 24)),
        log_level=os.getenv("DISPATCH_LOG_LEVEL", "").strip().upper() or "INFO",
    )
