# src/openapi_snapshot/report.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Literal, Mapping, Protocol

import structlog

from openapi_snapshot.actions import append_step_summary
from openapi_snapshot.context import InvocationContext, SnapshotIdentity
from openapi_snapshot.errors import ReportingError
from openapi_snapshot.submit import (
    SubmissionFailure,
    SubmissionResult,
    SubmissionSuccess,
    compare_url,
    view_url,
)

logger = structlog.get_logger(__name__)

COMMENT_MARKER = "<!-- openapi-snapshot-comment -->"
HEADING = "## 📸 OpenAPI Snapshot"

FAILURE_LINE = "❌ Failed to create snapshot"
SUCCESS_LINE = "✅ Successfully created snapshot!"
UNKNOWN_BASE = "the base branch"


# -----------------------------
# Rendering
# -----------------------------


def _result_lines(
    result: SubmissionResult,
    *,
    project: str,
    pr_number: int | None,
    base_ref: str | None,
) -> list[str]:
    if isinstance(result, SubmissionFailure):
        lines = [FAILURE_LINE]
        if result.error_message:
            lines += ["", f"**Error:** {result.error_message}"]
        return lines

    if result.same_as_base:
        if not base_ref:
            return [
                f"ℹ️ No changes detected compared to {UNKNOWN_BASE}",
                "",
                f"🔗 **Snapshot URL:** {result.snapshot_url}",
            ]
        return [
            f"ℹ️ No changes detected compared to `{base_ref}`",
            "",
            f"🔗 **Base Snapshot URL:** {view_url(project, base_ref)}",
        ]

    lines = [SUCCESS_LINE]
    if pr_number is not None and base_ref:
        lines += ["", f"🔄 **Compare URL:** {compare_url(project, base_ref, str(pr_number))}"]
    lines += ["", f"🔗 **Snapshot URL:** {view_url(project, result.snapshot_name)}"]
    if result.message:
        lines += ["", f"📝 {result.message}"]
    return lines


def render_comment(
    result: SubmissionResult,
    *,
    project: str,
    pr_number: int | None = None,
    base_ref: str | None = None,
) -> str:
    """Pull request comment body. The marker is always the first line."""
    lines = [COMMENT_MARKER, HEADING, ""]
    lines += _result_lines(result, project=project, pr_number=pr_number, base_ref=base_ref)
    return "\n".join(lines)


def render_summary(
    result: SubmissionResult,
    *,
    project: str,
    identity: SnapshotIdentity,
    ctx: InvocationContext,
    reason: str | None = None,
) -> str:
    lines = [HEADING, ""]
    lines += _result_lines(result, project=project, pr_number=ctx.pull_request_number, base_ref=identity.base_branch_name)
    lines += [
        "",
        "### Details",
        "",
        "| Field | Value |",
        "| --- | --- |",
        f"| Project | `{project}` |",
        f"| Snapshot | `{identity.snapshot_name}` |",
        f"| Retention | {'permanent' if identity.permanent else 'temporary'} |",
        f"| Event | `{ctx.event_name or ctx.event_kind}` |",
    ]
    if ctx.ref:
        lines.append(f"| Ref | `{ctx.ref}` |")
    if identity.base_branch_name:
        lines.append(f"| Base branch | `{identity.base_branch_name}` |")
    if ctx.commit_sha:
        lines.append(f"| Commit | `{ctx.commit_sha[:7]}` |")
    if isinstance(result, SubmissionSuccess) and result.snapshot_id:
        lines.append(f"| Snapshot ID | `{result.snapshot_id}` |")
    if reason:
        lines += ["", f"> {reason}"]
    return "\n".join(lines) + "\n"


# -----------------------------
# Target selection
# -----------------------------


@dataclass(frozen=True)
class ReportTarget:
    kind: Literal["comment", "summary"]
    reason: str | None = None


def select_target(ctx: InvocationContext, github_token: str | None) -> ReportTarget:
    if not ctx.is_pull_request:
        event = ctx.event_name or ctx.event_kind
        return ReportTarget(
            "summary",
            f"This run was triggered by a `{event}` event rather than a pull request, "
            "so there is no conversation to comment on.",
        )
    # pull_request_target runs in the base repository with a write-capable token.
    if ctx.is_fork and ctx.event_name != "pull_request_target":
        return ReportTarget(
            "summary",
            "This pull request comes from a fork. Workflow runs for fork pull requests only get a "
            "read-only token, so the result is recorded in this run summary instead of a comment.",
        )
    if not github_token:
        return ReportTarget(
            "summary",
            "No `github-token` input was provided, so the result could not be posted as a pull request comment.",
        )
    return ReportTarget("comment")


# -----------------------------
# Sinks
# -----------------------------


class CommentSink(Protocol):
    def list_issue_comments(self, issue_number: int) -> list[dict[str, Any]]: ...

    def create_issue_comment(self, issue_number: int, body: str) -> dict[str, Any]: ...

    def update_issue_comment(self, comment_id: int, body: str) -> dict[str, Any]: ...


def find_marked_comment(comments: list[dict[str, Any]], marker: str = COMMENT_MARKER) -> dict[str, Any] | None:
    for c in comments:
        body = c.get("body")
        if isinstance(body, str) and marker in body:
            return c
    return None


@dataclass
class CommentReporter:
    sink: CommentSink
    pr_number: int | None

    def upsert(self, body: str) -> dict[str, Any]:
        """
        Update the first comment carrying the marker, else create one.
        Keyed by content, so reruns never leave two marked comments behind.
        """
        if self.pr_number is None:
            raise ReportingError("No pull request number found")

        existing = find_marked_comment(self.sink.list_issue_comments(self.pr_number))
        if existing is not None:
            out = self.sink.update_issue_comment(existing["id"], body)
            logger.info("PR comment updated", comment_id=existing["id"])
        else:
            out = self.sink.create_issue_comment(self.pr_number, body)
            logger.info("PR comment created", comment_id=out.get("id"))
        return out


@dataclass
class SummaryReporter:
    environ: Mapping[str, str] | None = None

    def append(self, body: str) -> bool:
        written = append_step_summary(body, self.environ)
        if written:
            logger.info("Run summary written")
        else:
            logger.info("GITHUB_STEP_SUMMARY not set; summary follows", summary=body)
        return written


def deliver_report(
    result: SubmissionResult,
    *,
    project: str,
    identity: SnapshotIdentity,
    ctx: InvocationContext,
    github_token: str | None,
    sink_factory: Callable[[str], CommentSink],
    environ: Mapping[str, str] | None = None,
) -> ReportTarget:
    target = select_target(ctx, github_token)
    if target.kind == "comment":
        assert github_token
        body = render_comment(
            result,
            project=project,
            pr_number=ctx.pull_request_number,
            base_ref=identity.base_branch_name,
        )
        CommentReporter(sink=sink_factory(github_token), pr_number=ctx.pull_request_number).upsert(body)
    else:
        logger.warning("Skipping PR comment", reason=target.reason)
        SummaryReporter(environ).append(
            render_summary(result, project=project, identity=identity, ctx=ctx, reason=target.reason)
        )
    return target
