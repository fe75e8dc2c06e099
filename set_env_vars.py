"""Simple .env loader and runner.

Usage:
  - Import and call `load()` from Python: `from set_env_vars import load; load()`
  - Check the keys the server cannot start without: `python set_env_vars.py --check`
  - Run a command with the .env loaded:
      python set_env_vars.py --exec python main.py
"""
from __future__ import annotations

import json
import os
import pathlib
import subprocess
from typing import Dict, Iterable

REQUIRED_KEYS = (
    "MONGO_URI",
    "MONGO_DB",
    "OPENAI_API_KEY",
)

# Optional tuning knobs and the value used when they are unset.
DEFAULTS = {
    "OPENAI_MODEL": "gpt-4o",
    "OPENAI_BASE_URL": "https://api.openai.com/v1",
    "OPENAI_TIMEOUT_S": "60",
    "TUTOR_MAX_RETRIES": "2",
    "TUTOR_RETRY_BACKOFF_S": "1.0",
    "UPLOAD_MAX_BYTES": str(10 * 1024 * 1024),
    "PORT": "8080",
}


def _parse_dotenv(content: str) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip()
        if not key:
            continue
        if len(val) >= 2 and ((val[0] == val[-1] == '"') or (val[0] == val[-1] == "'")):
            val = val[1:-1]
        pairs[key] = val
    return pairs


def _load_dotenv_file(path: pathlib.Path) -> Dict[str, str]:
    try:
        return _parse_dotenv(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}


def load(path: str = ".env", override: bool = False) -> Dict[str, str]:
    """Load key=value pairs from `path` (and `<path>.local`) into os.environ.

    Args:
        path: path to .env file (default: .env)
        override: if True, overwrite existing environment variables

    Returns the pairs that were actually applied.
    """
    base = pathlib.Path(path).expanduser()
    loaded: Dict[str, str] = {}
    for candidate in (base, base.with_name(base.name + ".local")):
        loaded.update(_load_dotenv_file(candidate))

    applied: Dict[str, str] = {}
    for k, v in loaded.items():
        if override or not os.environ.get(k):
            os.environ[k] = v
            applied[k] = v
    return applied


def missing_keys(keys: Iterable[str] = REQUIRED_KEYS) -> list[str]:
    return [k for k in keys if not os.environ.get(k)]


def check_required(keys: Iterable[str] = REQUIRED_KEYS) -> None:
    missing = missing_keys(keys)
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")


def status() -> Dict[str, object]:
    out: Dict[str, object] = {f"{k.lower()}_set": bool(os.environ.get(k)) for k in REQUIRED_KEYS}
    for k, default in DEFAULTS.items():
        out[k] = os.environ.get(k) or default
    return out


def run_command_with_env(cmd: list[str]) -> int:
    """Run a command (list form) with the current process environment and return exit code."""
    return subprocess.run(cmd, env=os.environ).returncode


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Load .env and optionally run a command with it.")
    parser.add_argument("--env-file", "-e", default=".env", help="Path to .env file")
    parser.add_argument("--override", action="store_true", help="Override existing env vars")
    parser.add_argument("--check", action="store_true", help="Print which settings are present")
    parser.add_argument("--exec", "-x", nargs=argparse.REMAINDER, help="Command to run with env loaded")
    args = parser.parse_args()

    load(args.env_file, override=args.override)

    if args.check:
        print(json.dumps(status(), indent=2))
        raise SystemExit(1 if missing_keys() else 0)
    if args.exec:
        rc = run_command_with_env(args.exec)
        raise SystemExit(rc)
    print(f"Loaded environment from {args.env_file}")
