import os
from dataclasses import dataclass, field


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _default_data_dir() -> str:
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "..", "ParkReserve-data")


@dataclass
class Settings:
    db_dir: str = field(default_factory=_default_data_dir)
    db_filename: str = "ParkReserve.db"
    db_timeout: float = 5.0
    log_dir: str = "logs"

    no_show_grace_minutes: int = 30
    check_in_early_minutes: int = 15
    full_refund_hours: float = 2.0
    partial_refund_percent: float = 50.0

    no_show_sweep_seconds: int = 300
    expiry_sweep_seconds: int = 900
    lease_seconds: int = 120
    sweeper_enabled: bool = True

    aes_key: str = None

    @property
    def db_path(self) -> str:
        return os.path.join(self.db_dir, self.db_filename)


def load_settings() -> Settings:
    # Tests mogen de data directory overriden via de environment
    db_dir = os.environ.get("PARKRESERVE_DB_DIR") or _default_data_dir()
    os.makedirs(db_dir, exist_ok=True)

    return Settings(
        db_dir=db_dir,
        db_timeout=_env_float("PARKRESERVE_DB_TIMEOUT", 5.0),
        log_dir=os.environ.get("PARKRESERVE_LOG_DIR") or os.path.join(db_dir, "logs"),
        no_show_grace_minutes=_env_int("PARKRESERVE_NO_SHOW_GRACE_MINUTES", 30),
        check_in_early_minutes=_env_int("PARKRESERVE_CHECK_IN_EARLY_MINUTES", 15),
        full_refund_hours=_env_float("PARKRESERVE_FULL_REFUND_HOURS", 2.0),
        partial_refund_percent=_env_float("PARKRESERVE_PARTIAL_REFUND_PERCENT", 50.0),
        no_show_sweep_seconds=_env_int("PARKRESERVE_NO_SHOW_SWEEP_SECONDS", 300),
        expiry_sweep_seconds=_env_int("PARKRESERVE_EXPIRY_SWEEP_SECONDS", 900),
        lease_seconds=_env_int("PARKRESERVE_LEASE_SECONDS", 120),
        sweeper_enabled=_env_bool("PARKRESERVE_SWEEPER_ENABLED", True),
        aes_key=os.environ.get("PARKRESERVE_AES_KEY") or None,
    )
