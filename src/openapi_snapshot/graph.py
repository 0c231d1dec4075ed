# src/openapi_snapshot/graph.py
from __future__ import annotations

import contextlib
import json
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional, TypedDict

import httpx
import structlog

from openapi_snapshot.actions import set_output
from openapi_snapshot.auth import Credential, ForkContext, authenticate, default_providers
from openapi_snapshot.context import InvocationContext, SnapshotIdentity, resolve_identity
from openapi_snapshot.errors import RemoteRejectionError, SnapshotActionError, SnapshotStageError
from openapi_snapshot.github import GITHUB_API_URL, GitHubClient
from openapi_snapshot.inputs import ActionInputs, read_schema_file
from openapi_snapshot.report import ReportTarget, deliver_report
from openapi_snapshot.submit import (
    MalformedResponseError,
    SubmissionFailure,
    SubmissionRequest,
    SubmissionResult,
    SubmissionSuccess,
    build_request,
    endpoint_for,
    submit_snapshot,
)

try:
    from langgraph.graph import END, StateGraph
except Exception as e:  # pragma: no cover
    raise RuntimeError("LangGraph is required. Install 'langgraph'.") from e

logger = structlog.get_logger(__name__)


# -----------------------------
# Stages (canonical)
# -----------------------------
STAGE_INIT = "init"
STAGE_LOAD_INPUTS = "load_inputs"
STAGE_RESOLVE_CONTEXT = "resolve_context"
STAGE_AUTHENTICATE = "authenticate"
STAGE_SUBMIT = "submit"
STAGE_PUBLISH = "publish"
STAGE_REPORT = "report"
STAGE_EMIT_RESULT = "emit_result"
STAGE_DONE = "done"
STAGE_DONE_DRY_RUN = "done_dry_run"

# Errors that mean "the snapshot was not created" rather than "the run is misconfigured".
SUBMISSION_ERRORS = (RemoteRejectionError, MalformedResponseError, httpx.TransportError)


@dataclass(frozen=True)
class RuntimeConfig:
    dry_run: bool
    timeout: float = 30.0
    github_api_url: str = GITHUB_API_URL
    # In-memory transports let tests run the whole pipeline without a network.
    api_transport: httpx.BaseTransport | None = None
    github_transport: httpx.BaseTransport | None = None


class SnapshotState(TypedDict, total=False):
    environ: dict[str, str]
    config: RuntimeConfig
    stage: str

    inputs: ActionInputs
    schema: dict[str, Any]
    fork_context: Optional[ForkContext]

    context: InvocationContext
    identity: SnapshotIdentity

    credential: Credential
    request: SubmissionRequest

    submission: Optional[SubmissionResult]
    submission_error: Optional[Exception]

    outputs: dict[str, str]
    report_target: Optional[ReportTarget]
    report_error: Optional[str]

    result: dict[str, Any]


def _api_client(cfg: RuntimeConfig) -> httpx.Client:
    return httpx.Client(timeout=cfg.timeout, transport=cfg.api_transport)


def node_load_inputs(state: SnapshotState) -> SnapshotState:
    stage = STAGE_LOAD_INPUTS
    try:
        env = state["environ"]
        inputs = ActionInputs.from_env(env)
        logger.debug("Inputs", **inputs.public_dict())
        logger.info("Project", project=inputs.project)
        logger.info("Reading schema", path=inputs.schema_file)
        schema = read_schema_file(inputs.schema_file)
        fork_context = ForkContext.from_parts(
            inputs.fork_target_repository,
            inputs.fork_pull_request,
            inputs.fork_commit_sha,
        )

        state["stage"] = stage
        state["inputs"] = inputs
        state["schema"] = schema
        state["fork_context"] = fork_context
        return state
    except Exception as e:
        raise SnapshotStageError(stage, e) from e


def node_resolve_context(state: SnapshotState) -> SnapshotState:
    stage = STAGE_RESOLVE_CONTEXT
    try:
        inputs = state["inputs"]
        ctx = InvocationContext.from_github_env(state["environ"])
        identity = resolve_identity(ctx, inputs.snapshot_name, inputs.permanent)
        logger.info(
            "Snapshot identity resolved",
            event_kind=ctx.event_kind,
            snapshot_name=identity.snapshot_name,
            permanent=identity.permanent,
            base_branch=identity.base_branch_name,
        )

        state["stage"] = stage
        state["context"] = ctx
        state["identity"] = identity
        return state
    except Exception as e:
        raise SnapshotStageError(stage, e) from e


def node_authenticate(state: SnapshotState) -> SnapshotState:
    stage = STAGE_AUTHENTICATE
    try:
        inputs = state["inputs"]
        with _api_client(state["config"]) as client:
            providers = default_providers(
                client=client,
                fork_context=state.get("fork_context"),
                static_token=inputs.auth_token,
                audience=inputs.oidc_audience,
                environ=state["environ"],
            )
            credential = authenticate(providers)

        state["stage"] = stage
        state["credential"] = credential
        state["request"] = build_request(
            schema=state["schema"],
            project=inputs.project,
            identity=state["identity"],
            credential=credential,
        )
        return state
    except Exception as e:
        raise SnapshotStageError(stage, e) from e


def node_submit(state: SnapshotState) -> SnapshotState:
    stage = STAGE_SUBMIT
    try:
        cfg = state["config"]
        request = state["request"]
        state["stage"] = stage
        state["submission"] = None
        state["submission_error"] = None

        if cfg.dry_run:
            logger.info("Dry run: not sending schema", url=endpoint_for(state["inputs"].api_url, request))
            return state

        try:
            with _api_client(cfg) as client:
                submission = submit_snapshot(client, state["inputs"].api_url, request, state["credential"])
        except SUBMISSION_ERRORS as e:
            message = str(e) or type(e).__name__
            logger.error("Failed to send schema to API", error=message)
            state["submission"] = SubmissionFailure(error_message=message)
            state["submission_error"] = e
            return state

        if isinstance(submission, SubmissionFailure):
            logger.error("Snapshot API reported an error", error=submission.error_message)
            state["submission_error"] = SnapshotActionError(submission.error_message)
        state["submission"] = submission
        return state
    except Exception as e:
        raise SnapshotStageError(stage, e) from e


def node_publish(state: SnapshotState) -> SnapshotState:
    """Expose the normalized result to later steps before anything else can fail."""
    stage = STAGE_PUBLISH
    state["stage"] = stage
    state["outputs"] = {}
    submission = state.get("submission")
    if submission is None:
        return state

    outputs = {"response": json.dumps(submission.to_dict(), separators=(",", ":"))}
    if isinstance(submission, SubmissionSuccess):
        outputs["snapshot-url"] = submission.snapshot_url
        logger.info("Snapshot stored", url=submission.snapshot_url, same_as_base=submission.same_as_base)

    try:
        for name, value in outputs.items():
            set_output(name, value, state["environ"])
    except OSError as e:
        logger.warning("GitHub outputs write failed", error=str(e))

    state["outputs"] = outputs
    return state


def node_report(state: SnapshotState) -> SnapshotState:
    stage = STAGE_REPORT
    state["stage"] = stage
    state["report_target"] = None
    state["report_error"] = None
    submission = state.get("submission")
    if submission is None:
        return state

    cfg = state["config"]
    ctx = state["context"]
    try:
        with contextlib.ExitStack() as stack:

            def _sink(token: str) -> GitHubClient:
                return stack.enter_context(
                    GitHubClient(
                        token,
                        ctx.repository_full_name,
                        api_url=cfg.github_api_url,
                        transport=cfg.github_transport,
                        timeout=cfg.timeout,
                    )
                )

            state["report_target"] = deliver_report(
                submission,
                project=state["inputs"].project,
                identity=state["identity"],
                ctx=ctx,
                github_token=state["inputs"].github_token,
                sink_factory=_sink,
                environ=state["environ"],
            )
        return state
    except Exception as e:
        if isinstance(submission, SubmissionFailure):
            # Best effort only: the submission failure is what the run reports.
            logger.warning("Failure report could not be posted", error=str(e))
            state["report_error"] = str(e)
            return state
        raise SnapshotStageError(
            stage,
            SnapshotActionError(f"Snapshot was stored at {submission.snapshot_url} but reporting failed: {e}"),
        ) from e


def node_emit_result(state: SnapshotState) -> SnapshotState:
    stage = STAGE_EMIT_RESULT
    err = state.get("submission_error")
    if err is not None:
        raise SnapshotStageError(STAGE_SUBMIT, err) from err

    try:
        cfg = state["config"]
        inputs = state["inputs"]
        identity = state["identity"]
        ctx = state["context"]
        request = state["request"]
        submission = state.get("submission")
        target = state.get("report_target")

        result: dict[str, Any] = {
            "ok": True,
            "stage": STAGE_DONE_DRY_RUN if cfg.dry_run else STAGE_DONE,
            "project": inputs.project,
            "snapshot_name": identity.snapshot_name,
            "permanent": identity.permanent,
            "base_branch_name": identity.base_branch_name,
            "event": ctx.event_kind,
            "mode": request.mode,
            "endpoint": endpoint_for(inputs.api_url, request),
        }
        if submission is not None:
            result["snapshot"] = submission.to_dict()
        if target is not None:
            result["report"] = {"target": target.kind, "reason": target.reason}

        state["stage"] = stage
        state["result"] = result
        return state
    except Exception as e:
        raise SnapshotStageError(stage, e) from e


def build_snapshot_graph():
    g = StateGraph(SnapshotState)

    g.add_node("load_inputs", node_load_inputs)
    g.add_node("resolve_context", node_resolve_context)
    g.add_node("authenticate", node_authenticate)
    g.add_node("submit", node_submit)
    g.add_node("publish", node_publish)
    g.add_node("report", node_report)
    g.add_node("emit_result", node_emit_result)

    g.set_entry_point("load_inputs")
    g.add_edge("load_inputs", "resolve_context")
    g.add_edge("resolve_context", "authenticate")
    g.add_edge("authenticate", "submit")
    g.add_edge("submit", "publish")
    g.add_edge("publish", "report")
    g.add_edge("report", "emit_result")
    g.add_edge("emit_result", END)

    return g.compile()


def run_snapshot_graph(
        *,
        environ: Mapping[str, str] | None = None,
        config: RuntimeConfig,
) -> dict[str, Any]:
    app = build_snapshot_graph()
    state: SnapshotState = {
        "environ": dict(os.environ if environ is None else environ),
        "config": config,
        "stage": STAGE_INIT,
    }
    final_state = app.invoke(state)
    return final_state["result"]
