import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


PKG_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "data" / "catalog.tsv"

# Vehicles of the field team, used when ALLOWED_VTRS is not set
DEFAULT_VTRS = [
    "LV-01", "LV-02", "LV-03", "LV-04", "LV-05",
    "VTR-06", "VTR-07", "VTR-08", "VTR-09", "VTR-10",
]

REQUEST_POLICIES = ("reserve_only", "eager_deduct")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        warnings.warn(f"{name}={raw!r} is not an integer, using {default}", RuntimeWarning)
        return default


def get_admin_passphrase() -> str:
    """
    Get the admin passphrase from environment.
    Production refuses to start without one.
    """
    passphrase = os.getenv("ADMIN_PASSPHRASE")

    if not passphrase:
        env = os.getenv("ENVIRONMENT", "development")
        if env == "production":
            raise RuntimeError(
                "CRITICAL: Admin passphrase must be set in production! "
                "Set ADMIN_PASSPHRASE environment variable."
            )
        warnings.warn(
            "No admin passphrase set! Using development passphrase. "
            "Set ADMIN_PASSPHRASE for production.",
            RuntimeWarning
        )
        passphrase = "dev-admin"

    return passphrase


def get_database_url() -> str:
    # Prefer explicit DATABASE_URL env var, otherwise a local SQLite file in
    # a `data/` folder adjacent to the package directory.
    env_db = os.getenv("DATABASE_URL")
    if env_db:
        return env_db
    data_dir = PKG_ROOT / "data"
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        return "sqlite:///:memory:"
    return f"sqlite:///{(data_dir / 'fleet_core.db').as_posix()}"


def get_allowed_vtrs() -> List[str]:
    raw = os.getenv("ALLOWED_VTRS")
    if raw is None:
        return list(DEFAULT_VTRS)
    return [v.strip() for v in raw.split(",") if v.strip()]


def get_cors_origins() -> List[str]:
    """Get CORS origins from environment or use defaults for development"""
    origins_env = os.getenv("CORS_ORIGINS", "")
    if origins_env:
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    return [
        "http://127.0.0.1:3000",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ]


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///:memory:"
    remote_url: Optional[str] = None
    cooldown_ms: int = 4000
    pull_timeout_ms: int = 15000
    push_timeout_ms: int = 15000
    pull_interval_s: int = 90
    request_policy: str = "reserve_only"
    ledger_enabled: bool = True
    allowed_vtrs: List[str] = field(default_factory=lambda: list(DEFAULT_VTRS))
    admin_passphrase: str = "dev-admin"
    seed_catalog_path: Path = DEFAULT_CATALOG_PATH
    cors_origins: List[str] = field(default_factory=list)


def get_settings() -> Settings:
    policy = os.getenv("REQUEST_POLICY", "reserve_only").strip().lower()
    if policy not in REQUEST_POLICIES:
        raise RuntimeError(
            f"REQUEST_POLICY must be one of {', '.join(REQUEST_POLICIES)} (got {policy!r})"
        )

    remote_url = (os.getenv("REMOTE_SYNC_URL") or "").strip() or None
    catalog = os.getenv("SEED_CATALOG_PATH")

    return Settings(
        database_url=get_database_url(),
        remote_url=remote_url,
        cooldown_ms=_env_int("SYNC_COOLDOWN_MS", 4000),
        pull_timeout_ms=_env_int("PULL_TIMEOUT_MS", 15000),
        push_timeout_ms=_env_int("PUSH_TIMEOUT_MS", 15000),
        pull_interval_s=_env_int("PULL_INTERVAL_S", 90),
        request_policy=policy,
        ledger_enabled=_env_bool("MOVEMENT_LEDGER", True),
        allowed_vtrs=get_allowed_vtrs(),
        admin_passphrase=get_admin_passphrase(),
        seed_catalog_path=Path(catalog) if catalog else DEFAULT_CATALOG_PATH,
        cors_origins=get_cors_origins(),
    )
