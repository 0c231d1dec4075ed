# src/openapi_snapshot/cli.py
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any

import structlog

from . import __version__
from . import main as main_module
from .actions import emit_annotation
from .errors import SnapshotStageError
from .log import configure_logging

STAGE_UNKNOWN = "unknown"

logger = structlog.get_logger(__name__)


def _parse_dotenv_line(line: str) -> tuple[str, str] | None:
    """
    Minimal .env parser.
    Supports:
      - KEY=VALUE
      - export KEY=VALUE
      - comments (#...) when not inside quotes
      - quoted values with '...' or "..."
    No variable expansion.
    """
    s = line.strip()
    if not s or s.startswith("#"):
        return None

    if s.startswith("export "):
        s = s[len("export ") :].lstrip()
        if not s:
            return None

    if "=" not in s:
        return None

    key, rest = s.split("=", 1)
    key = key.strip()
    if not key:
        return None

    val = rest.strip()
    if not val:
        return key, ""

    if val[0] in ("'", '"'):
        quote = val[0]
        out = []
        escaped = False
        for ch in val[1:]:
            if escaped:
                out.append(ch)
                escaped = False
            elif quote == '"' and ch == "\\":
                escaped = True
            elif ch == quote:
                break
            else:
                out.append(ch)
        # anything after the closing quote is ignored
        return key, "".join(out)

    value, _, _ = val.partition("#")
    return key, value.strip()


def _load_dotenv_file(path: str, *, override: bool = False) -> bool:
    """
    Loads key/value pairs from a .env file into os.environ.
    Returns True if the file existed and was read.
    """
    p = Path(path)
    if not p.exists() or not p.is_file():
        return False

    for raw_line in p.read_text(encoding="utf-8").splitlines():
        parsed = _parse_dotenv_line(raw_line)
        if not parsed:
            continue
        k, v = parsed
        if not override and k in os.environ:
            continue
        os.environ[k] = v
    return True


def _print_success(obj: dict[str, Any]) -> None:
    print(json.dumps(obj, separators=(",", ":")), file=sys.stdout)


def _print_failure(stage: str, err: Exception) -> None:
    out = {
        "ok": False,
        "stage": stage,
        "error_code": f"SNAPSHOT_FAILED_{stage.upper()}",
        "error_message": str(err),
    }
    print(json.dumps(out, separators=(",", ":")), file=sys.stdout)
    emit_annotation("error", f"Action failed: {err}")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="openapi-snapshot",
        description="Submit an OpenAPI schema snapshot and report the result on the pull request.",
    )
    parser.add_argument(
        "--dotenv",
        nargs="?",
        const=".env",
        default=None,
        metavar="PATH",
        help="Optional: load env vars (INPUT_*, GITHUB_*) from a local .env file (default: ./.env).",
    )
    parser.add_argument(
        "--dotenv-override",
        action="store_true",
        help="Optional: allow .env values to override already-set environment variables.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve inputs, context and credential, but do not submit or report.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"openapi-snapshot {__version__}",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    loaded = None
    if args.dotenv:
        loaded = _load_dotenv_file(str(args.dotenv), override=bool(args.dotenv_override))

    # After .env so LOG_LEVEL can come from it.
    configure_logging()
    if args.dotenv:
        logger.info("dotenv", path=str(args.dotenv), loaded=loaded)

    try:
        result = main_module.run(dry_run=bool(args.dry_run))
        _print_success(result)
        logger.info("Action completed successfully!")
        return 0

    except SnapshotStageError as e:
        _print_failure(e.stage, e)
        return 1

    except Exception as e:  # noqa: BLE001 - top-level CLI error handler
        _print_failure(STAGE_UNKNOWN, e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
