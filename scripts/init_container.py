#!/usr/bin/env python3
"""
Init container script for the Purehealth auth service.

Applies database migrations before the API starts.

Usage:
    python -m scripts.init_container

Exit codes:
    0 - Success
    1 - Migration failure
"""

import logging
import subprocess
import sys
from pathlib import Path

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [init] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("init_container")

MIGRATION_TIMEOUT_SECONDS = 300


def _log_lines(output: str, level: int) -> None:
    for line in output.strip().split("\n"):
        if line.strip():
            logger.log(level, f"alembic: {line}")


def run_migrations() -> bool:
    """
    Run ``alembic upgrade head`` from the project root.

    Returns:
        True if migrations succeeded, False otherwise
    """
    logger.info("Applying database migrations...")
    project_dir = Path(__file__).parent.parent

    try:
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            cwd=project_dir,
            capture_output=True,
            text=True,
            check=True,
            timeout=MIGRATION_TIMEOUT_SECONDS,
        )
    except subprocess.TimeoutExpired:
        logger.error(f"Migration timed out after {MIGRATION_TIMEOUT_SECONDS} seconds")
        return False
    except subprocess.CalledProcessError as e:
        logger.error(f"Migration failed with exit code {e.returncode}")
        if e.stderr:
            _log_lines(e.stderr, logging.ERROR)
        if e.stdout:
            _log_lines(e.stdout, logging.INFO)
        return False
    except FileNotFoundError:
        logger.error("alembic command not found - ensure it's installed")
        return False

    if result.stdout:
        _log_lines(result.stdout, logging.INFO)
    logger.info("Database migrations applied")
    return True


def main() -> int:
    logger.info("Purehealth init container starting")

    if not run_migrations():
        logger.error("FAILED: database migrations failed - aborting startup")
        return 1

    logger.info("Init container completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
