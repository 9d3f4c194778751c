"""
Helper script to apply all Alembic migrations using the current environment.
Usage: set DATABASE_URL then run this file.
"""
import os
import subprocess
import sys
from pathlib import Path


def main() -> int:
    env = os.environ.copy()
    env.setdefault("FLASK_APP", "apps.reminders.app:create_app")

    project_root = Path(__file__).resolve().parents[3]
    cmd = [sys.executable, "-m", "flask", "db", "upgrade"]

    result = subprocess.run(cmd, cwd=project_root, env=env)
    return result.returncode


if __name__ == "__main__":
    sys.exit(main())
