#!/usr/bin/env python3
"""Mostaql Hub — Application Runner.

Performs pre-flight checks and launches the main application.

Usage:
    python scripts/run.py serve
    python scripts/run.py listen --url ws://host:8080/jobNotificationHub
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

BANNER = r"""
╔══════════════════════════════════════════════════════════╗
║                                                          ║
║              Mostaql Hub v1.0                            ║
║      New-listing detection with push fan-out             ║
║                                                          ║
╚══════════════════════════════════════════════════════════╝
"""

OPTIONAL_ENV_VARS = [
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
]

REQUIRED_FILES = [
    "config/settings.yaml",
]


def _mask(val: str) -> str:
    return val[:6] + "..." + val[-4:] if len(val) > 10 else "***"


def preflight_checks() -> bool:
    """Run pre-flight checks before starting the application.

    Checks:
      - .env file (optional; values may also come from the environment)
      - Telegram variables (optional; the sink is disabled without them)
      - Required config files exist
      - logs/ directory exists (creates it)

    Returns:
        True if all checks pass, False otherwise.
    """
    os.chdir(str(PROJECT_ROOT))
    ok = True

    env_path = PROJECT_ROOT / ".env"
    if env_path.exists():
        from dotenv import load_dotenv
        load_dotenv(env_path)
        print("✅ .env loaded")
    else:
        print("⚠️  .env file not found (using process environment)")

    for var in OPTIONAL_ENV_VARS:
        val = os.environ.get(var, "")
        if val:
            print(f"✅ {var} = {_mask(val)}")
        else:
            print(f"⚠️  {var} not set (Telegram sink will be disabled)")

    for f in REQUIRED_FILES:
        path = PROJECT_ROOT / f
        if not path.exists():
            print(f"❌ {f} not found!")
            ok = False
        else:
            print(f"✅ {f} exists")

    (PROJECT_ROOT / "logs").mkdir(exist_ok=True)
    print("✅ logs/ directory ready")

    return ok


def main() -> None:
    """Entry point: run checks then start the application."""
    print(BANNER)

    print("═══ Pre-flight Checks ═══\n")
    if not preflight_checks():
        print("\n❌ Pre-flight checks failed! Fix the issues above and try again.")
        sys.exit(1)

    print("\n✅ All checks passed!\n")
    print("═══ Starting Mostaql Hub ═══\n")

    from mostaql_hub.main import main as app_main
    sys.exit(app_main(sys.argv[1:]))


if __name__ == "__main__":
    main()
