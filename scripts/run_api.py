#!/usr/bin/env python
"""
Start the Billing Engine API under uvicorn.

Usage:
    python scripts/run_api.py [--host HOST] [--port PORT] [--no-reload]

Host, port and log level default to the BILLING_ENGINE_HOST,
BILLING_ENGINE_PORT and BILLING_ENGINE_LOG_LEVEL settings.
"""
import argparse
import os
import subprocess
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
src_path = project_root / 'src'
sys.path.insert(0, str(src_path))

from billing_engine.config.settings import get_settings


def parse_args(argv=None):
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Run the Billing Engine API")
    parser.add_argument('--host', default=settings.api_host)
    parser.add_argument('--port', type=int, default=settings.api_port)
    parser.add_argument('--no-reload', dest='reload', action='store_false', help="disable auto-reload")
    return parser.parse_args(argv)


def uvicorn_command(host: str, port: int, log_level: str, reload: bool) -> list[str]:
    command = [
        sys.executable, "-m", "uvicorn", "billing_engine.api.main:app",
        "--host", host,
        "--port", str(port),
        "--log-level", log_level.lower(),
    ]
    if reload:
        command += ["--reload", "--reload-dir", str(src_path)]
    return command


def main(argv=None):
    args = parse_args(argv)
    settings = get_settings()
    os.chdir(project_root)

    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(p for p in (str(src_path), env.get("PYTHONPATH")) if p)

    if not settings.compiled_rules.exists() and not settings.rules_csv.exists():
        print(f"Warning: no rules at {settings.compiled_rules} or {settings.rules_csv}; "
              "pricing endpoints will answer 503 until rules are created")

    print(f"Starting Billing Engine API on http://{args.host}:{args.port} ...")
    try:
        subprocess.run(uvicorn_command(args.host, args.port, settings.log_level, args.reload), env=env)
    except KeyboardInterrupt:
        print("\nAPI stopped.")


if __name__ == "__main__":
    main()
