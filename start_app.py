# start_app.py
"""Apply document-store migrations and launch the Smart Order API."""

from __future__ import annotations

import argparse
import os
import subprocess
import sys

import uvicorn
from dotenv import load_dotenv

import config

ALEMBIC_INI = "smartorder/alembic.ini"


def migrate() -> None:
    """Bring the ``documents`` table up to date; exit on failure."""

    try:
        subprocess.run(
            [sys.executable, "-m", "alembic", "-c", ALEMBIC_INI, "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
        )
    except subprocess.CalledProcessError as exc:
        if exc.stdout:
            sys.stdout.write(exc.stdout)
        if exc.stderr:
            sys.stderr.write(exc.stderr)
        print(f"database migration failed (exit code {exc.returncode})", file=sys.stderr)
        raise SystemExit(exc.returncode)


def main(argv: list[str] | None = None) -> None:
    """Load settings, migrate the SQL store when used, then start uvicorn."""

    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--skip-db-migrations",
        action="store_true",
        help="Start without running Alembic migrations",
    )
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    args = parser.parse_args(argv)

    load_dotenv()  # load environment variables from a .env file
    config.get_settings.cache_clear()
    settings = config.get_settings()

    env_flag = os.getenv("SKIP_DB_MIGRATIONS")
    skip = args.skip_db_migrations or (env_flag and env_flag.lower() not in {"0", "false"})
    if settings.store_backend == config.StoreBackend.SQL and not skip:
        migrate()

    uvicorn.run(
        "smartorder.app.main:create_app",
        factory=True,
        host="0.0.0.0",  # nosec B104: bind for local development
        port=args.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
