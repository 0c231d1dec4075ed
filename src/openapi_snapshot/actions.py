# src/openapi_snapshot/actions.py
from __future__ import annotations

import os
import sys
import uuid
from typing import Mapping, TextIO


def escape_workflow_command(value: str | None) -> str:
    """
    Escape a string for GitHub workflow commands (annotation messages).

    See: https://docs.github.com/actions/using-workflows/workflow-commands-for-github-actions
    """
    if value is None:
        return ""
    return str(value).replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def emit_annotation(level: str, message: str, *, title: str | None = None, stream: TextIO | None = None) -> None:
    out = stream or sys.stderr
    props = f" title={escape_workflow_command(title)}" if title else ""
    out.write(f"::{level}{props}::{escape_workflow_command(message)}\n")
    out.flush()


def set_output(name: str, value: str, environ: Mapping[str, str] | None = None) -> bool:
    """
    Append one output for later steps. Returns False outside of a runner.

    Multi-line values use the delimiter form so they survive intact.
    """
    env = os.environ if environ is None else environ
    path = env.get("GITHUB_OUTPUT")
    if not path:
        return False

    with open(path, "a", encoding="utf-8") as f:
        if "\n" in value or "\r" in value:
            delim = f"ghadelimiter_{uuid.uuid4()}"
            f.write(f"{name}<<{delim}\n{value}\n{delim}\n")
        else:
            f.write(f"{name}={value}\n")
    return True


def append_step_summary(markdown: str, environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    path = env.get("GITHUB_STEP_SUMMARY")
    if not path:
        return False

    with open(path, "a", encoding="utf-8") as f:
        f.write(markdown)
        if not markdown.endswith("\n"):
            f.write("\n")
    return True
