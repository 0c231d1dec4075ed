# src/openapi_snapshot/context.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict

EventKind = Literal["pull_request", "push", "tag", "other"]

BRANCH_PREFIX = "refs/heads/"
TAG_PREFIX = "refs/tags/"

_PULL_REQUEST_EVENTS = {"pull_request", "pull_request_target", "pull_request_review"}


class InvocationContext(BaseModel):
    """The event that triggered this run. Captured once, never mutated."""

    model_config = ConfigDict(frozen=True)

    event_kind: EventKind
    event_name: str = ""
    ref: str = ""
    pull_request_number: int | None = None
    base_ref: str | None = None
    head_ref: str | None = None
    is_fork: bool = False
    repository_full_name: str = ""
    commit_sha: str = ""

    @property
    def is_pull_request(self) -> bool:
        return self.event_kind == "pull_request"

    @property
    def owner_and_repo(self) -> tuple[str, str]:
        owner, _, repo = self.repository_full_name.partition("/")
        return owner, repo

    @classmethod
    def from_github_env(
        cls,
        environ: Mapping[str, str] | None = None,
        event_payload: Mapping[str, Any] | None = None,
    ) -> "InvocationContext":
        env = os.environ if environ is None else environ
        payload = event_payload if event_payload is not None else load_event_payload(env.get("GITHUB_EVENT_PATH"))

        event_name = (env.get("GITHUB_EVENT_NAME") or "").strip()
        ref = (env.get("GITHUB_REF") or "").strip()
        pr = payload.get("pull_request") if isinstance(payload.get("pull_request"), dict) else None

        if event_name in _PULL_REQUEST_EVENTS or pr is not None:
            kind: EventKind = "pull_request"
        elif event_name == "push" and ref.startswith(TAG_PREFIX):
            kind = "tag"
        elif event_name == "push":
            kind = "push"
        else:
            kind = "other"

        base_ref = (env.get("GITHUB_BASE_REF") or "").strip() or None
        head_ref = (env.get("GITHUB_HEAD_REF") or "").strip() or None
        number = None
        is_fork = False
        if pr is not None:
            number = _positive_int(pr.get("number"))
            base_ref = base_ref or _nested_str(pr, "base", "ref")
            head_ref = head_ref or _nested_str(pr, "head", "ref")
            is_fork = _is_fork_pull_request(pr)

        return cls(
            event_kind=kind,
            event_name=event_name,
            ref=ref,
            pull_request_number=number,
            base_ref=base_ref,
            head_ref=head_ref,
            is_fork=is_fork,
            repository_full_name=(env.get("GITHUB_REPOSITORY") or "").strip(),
            commit_sha=(env.get("GITHUB_SHA") or "").strip(),
        )


def load_event_payload(path: str | None) -> dict[str, Any]:
    if not path:
        return {}
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def _positive_int(v: Any) -> int | None:
    if isinstance(v, bool):
        return None
    if isinstance(v, int) and v > 0:
        return v
    return None


def _nested_str(obj: Mapping[str, Any], *keys: str) -> str | None:
    cur: Any = obj
    for k in keys:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(k)
    if isinstance(cur, str) and cur.strip():
        return cur.strip()
    return None


def _is_fork_pull_request(pr: Mapping[str, Any]) -> bool:
    head_repo = _nested_str(pr, "head", "repo", "full_name")
    base_repo = _nested_str(pr, "base", "repo", "full_name")
    if head_repo and base_repo:
        return head_repo != base_repo
    head = pr.get("head")
    repo = head.get("repo") if isinstance(head, Mapping) else None
    return bool(isinstance(repo, Mapping) and repo.get("fork"))


# -----------------------------
# Context Resolver
# -----------------------------


@dataclass(frozen=True)
class SnapshotIdentity:
    snapshot_name: str
    permanent: bool
    base_branch_name: str | None = None


def derive_snapshot_name(ctx: InvocationContext, override: str | None = None) -> str:
    """
    Priority:
      1) non-empty override
      2) PR number (pull request runs)
      3) branch name without refs/heads/
      4) tag name without refs/tags/
      5) raw ref
    """
    if override and override.strip():
        return override.strip()
    if ctx.is_pull_request and ctx.pull_request_number is not None:
        return str(ctx.pull_request_number)
    if ctx.ref.startswith(BRANCH_PREFIX):
        return ctx.ref[len(BRANCH_PREFIX) :]
    if ctx.ref.startswith(TAG_PREFIX):
        return ctx.ref[len(TAG_PREFIX) :]
    return ctx.ref


def derive_permanent(ctx: InvocationContext, override: bool | None = None) -> bool:
    if override is not None:
        return override
    return not ctx.is_pull_request


def resolve_identity(
    ctx: InvocationContext,
    snapshot_name_override: str | None = None,
    permanent_override: bool | None = None,
) -> SnapshotIdentity:
    name = derive_snapshot_name(ctx, snapshot_name_override)
    if not name:
        # A context with no ref and no PR number cannot be named; still never empty.
        name = ctx.commit_sha or "snapshot"
    base = ctx.base_ref if ctx.is_pull_request and ctx.base_ref else None
    return SnapshotIdentity(
        snapshot_name=name,
        permanent=derive_permanent(ctx, permanent_override),
        base_branch_name=base,
    )
