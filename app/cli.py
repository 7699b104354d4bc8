"""Developer helpers exposed as console scripts (see ``[project.scripts]``).

Usage (from project root, after ``pip install -e .[test]``):
  courier-runserver --host=0.0.0.0 --port=8000 --no-reload
  courier-tests -k rotation
  courier-migrate              # defaults to `alembic upgrade head`
  courier-init-env             # copies .env.example -> .env if missing
"""
from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List

from app.core.logger import setup_logging

logger = logging.getLogger("app.cli")

ROOT = Path(__file__).resolve().parents[1]


def _args() -> List[str]:
    return sys.argv[1:]


def runserver() -> None:
    """Run Uvicorn programmatically. Accepts simple flags:

    --host=<host>  (default 127.0.0.1)
    --port=<port>  (default 8000)
    --no-reload    (disable auto-reload)
    """
    import uvicorn

    setup_logging()
    host = "127.0.0.1"
    port = 8000
    reload = True

    for a in _args():
        if a.startswith("--host="):
            host = a.split("=", 1)[1]
        elif a.startswith("--port="):
            value = a.split("=", 1)[1]
            if not value.isdigit():
                raise SystemExit(f"Invalid port: {value}")
            port = int(value)
        elif a == "--no-reload":
            reload = False
        elif a == "--reload":
            reload = True

    logger.info("Starting uvicorn on %s:%s (reload=%s)", host, port, reload)
    uvicorn.run("app.main:app", host=host, port=port, reload=reload)


def run_tests() -> None:
    """Run pytest with any forwarded args."""
    subprocess.run(["pytest", *_args()], check=True, cwd=ROOT)


def run_migrations() -> None:
    """Run alembic. If no args provided, runs `alembic upgrade head`."""
    args = _args() or ["upgrade", "head"]
    subprocess.run(["alembic", *args], check=True, cwd=ROOT)


def init_env() -> None:
    """Copy `.env.example` to `.env` if `.env` is missing."""
    setup_logging()
    src = ROOT / ".env.example"
    dst = ROOT / ".env"
    if dst.exists():
        logger.info(".env already exists at %s", dst)
        return
    if not src.exists():
        logger.error(".env.example not found at %s", src)
        return
    shutil.copy(src, dst)
    logger.info("Created .env from .env.example at %s", dst)


if __name__ == "__main__":
    # Allow running the helpers directly: python -m app.cli runserver
    if len(sys.argv) <= 1:
        print(__doc__)
        sys.exit(0)
    cmd = sys.argv.pop(1)
    commands = {
        "runserver": runserver,
        "run-tests": run_tests,
        "migrate": run_migrations,
        "init-env": init_env,
    }
    if cmd not in commands:
        print(f"Unknown command: {cmd}")
        sys.exit(1)
    commands[cmd]()
