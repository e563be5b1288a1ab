import logging
import os
import time
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from .config import ADMIN_TOKEN, LOG_LEVEL, SCHEDULER_ENABLED
from .database import SessionLocal
from .routes import include_modular_routers
from .services.dispatch import supervisor
from .tasks.round_scheduler import start_round_scheduler, stop_round_scheduler

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="ResidentPulse Rounds API")
include_modular_routers(app)

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def run_migrations() -> None:
    env_dir = os.getenv("MIGRATIONS_DIR", "").strip()
    docker_dir = Path("/app/migrations")
    local_dir = Path(__file__).resolve().parents[1] / "migrations"

    if env_dir:
        migrations_dir = Path(env_dir)
    elif docker_dir.exists():
        migrations_dir = docker_dir
    else:
        migrations_dir = local_dir

    if not migrations_dir.exists() or not migrations_dir.is_dir():
        raise FileNotFoundError(
            "Migrations directory not found. Checked: "
            f"MIGRATIONS_DIR={env_dir or '<unset>'}, {docker_dir}, {local_dir}"
        )

    files = sorted([f.name for f in migrations_dir.iterdir() if f.is_file() and f.suffix == ".sql"])
    with SessionLocal() as db:
        for fname in files:
            sql = (migrations_dir / fname).read_text(encoding="utf-8")
            db.execute(text(sql))
        db.commit()
    logger.info("Applied %s migration files from %s", len(files), migrations_dir)


def wait_for_db(max_attempts: int = 20, delay_seconds: float = 1.5) -> None:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
                db.commit()
            return
        except OperationalError as exc:
            last_err = exc
            time.sleep(delay_seconds)
    if last_err:
        raise last_err


def start_background_services() -> None:
    if SCHEDULER_ENABLED:
        start_round_scheduler()
    resumed = supervisor.resume_orphaned()
    if resumed:
        logger.warning("[DISPATCH] resumed %s orphaned jobs at startup", len(resumed))


@app.on_event("startup")
def on_startup() -> None:
    wait_for_db()
    run_migrations()
    if not ADMIN_TOKEN:
        logger.info("[AUTH] ADMIN_TOKEN not set; only bearer tokens are accepted")
    start_background_services()


@app.on_event("shutdown")
def on_shutdown() -> None:
    stop_round_scheduler()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
