# src/openapi_snapshot/submit.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Literal, Optional, Union
from urllib.parse import quote

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from openapi_snapshot.auth import BearerCredential, Credential, ForkContext, ForkCredential
from openapi_snapshot.context import SnapshotIdentity
from openapi_snapshot.errors import RemoteRejectionError

logger = structlog.get_logger(__name__)

FORK_ENDPOINT_SUFFIX = "-fork"
VIEW_BASE_URL = "https://explore-openapi.dev"


def view_url(project: str, snapshot: str, base_url: str = VIEW_BASE_URL) -> str:
    return f"{base_url}/view?project={quote(project, safe='')}&snapshot={quote(snapshot, safe='')}"


def compare_url(project: str, base: str, head: str, base_url: str = VIEW_BASE_URL) -> str:
    return f"{base_url}/compare/{quote(project, safe='')}/from/{quote(base, safe='')}/to/{quote(head, safe='')}"


# -----------------------------
# Outbound request (tagged by mode)
# -----------------------------


@dataclass(frozen=True)
class StandardRequest:
    schema: dict[str, Any]
    project: str
    snapshot_name: str
    permanent: bool
    base_branch_name: str | None = None
    mode: Literal["standard"] = "standard"


@dataclass(frozen=True)
class ForkRequest:
    schema: dict[str, Any]
    project: str
    snapshot_name: str
    permanent: bool
    fork_context: ForkContext
    base_branch_name: str | None = None
    mode: Literal["fork"] = "fork"


SubmissionRequest = Union[StandardRequest, ForkRequest]


def build_request(
    *,
    schema: dict[str, Any],
    project: str,
    identity: SnapshotIdentity,
    credential: Credential,
) -> SubmissionRequest:
    if isinstance(credential, ForkCredential):
        return ForkRequest(
            schema=schema,
            project=project,
            snapshot_name=identity.snapshot_name,
            permanent=identity.permanent,
            base_branch_name=identity.base_branch_name,
            fork_context=credential.fork_context,
        )
    return StandardRequest(
        schema=schema,
        project=project,
        snapshot_name=identity.snapshot_name,
        permanent=identity.permanent,
        base_branch_name=identity.base_branch_name,
    )


def endpoint_for(api_url: str, request: SubmissionRequest) -> str:
    base = api_url.rstrip("/")
    if isinstance(request, ForkRequest):
        return f"{base}{FORK_ENDPOINT_SUFFIX}"
    return base


def headers_for(request: SubmissionRequest, credential: Credential) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if isinstance(request, ForkRequest):
        if not isinstance(credential, ForkCredential):
            raise TypeError("Fork requests require a fork credential.")
        headers["Authorization"] = f"Fork {request.fork_context.target_repository}"
    else:
        if not isinstance(credential, BearerCredential):
            raise TypeError("Standard requests require a bearer credential.")
        headers["Authorization"] = f"Bearer {credential.token}"
    return headers


def request_body(request: SubmissionRequest) -> dict[str, Any]:
    body: dict[str, Any] = {
        "schema": request.schema,
        "project": request.project,
        "name": request.snapshot_name,
        "permanent": request.permanent,
    }
    if request.base_branch_name:
        body["baseBranchName"] = request.base_branch_name
    if isinstance(request, ForkRequest):
        body["forkContext"] = request.fork_context.to_wire()
    return body


# -----------------------------
# Normalized result
# -----------------------------


@dataclass(frozen=True)
class SubmissionSuccess:
    snapshot_id: str | None
    snapshot_url: str
    snapshot_name: str
    same_as_base: bool = False
    message: str | None = None
    ok: Literal[True] = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SubmissionFailure:
    error_message: str
    ok: Literal[False] = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


SubmissionResult = Union[SubmissionSuccess, SubmissionFailure]


# -----------------------------
# Wire shapes seen from the service over time.
# parse_response() is the only place that knows about them.
# -----------------------------


class _WireSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[Union[str, int]] = None
    name: Optional[str] = None
    projectId: Optional[str] = None


class _FlatShape(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[Union[str, int]] = None
    name: Optional[str] = None
    url: Optional[str] = None
    snapshotUrl: Optional[str] = None
    sameAsBase: Optional[bool] = None
    message: Optional[str] = None
    error: Optional[str] = None
    success: Optional[bool] = None


class _NestedShape(BaseModel):
    model_config = ConfigDict(extra="ignore")

    snapshot: Optional[_WireSnapshot] = None
    url: Optional[str] = None
    sameAsBase: Optional[bool] = None
    message: Optional[str] = None
    error: Optional[str] = None


class MalformedResponseError(ValueError):
    pass


def _opt_str(v: str | int | None) -> str | None:
    if v is None or v == "":
        return None
    return str(v)


def parse_response(
    payload: Any,
    *,
    project: str,
    snapshot_name: str,
    view_base_url: str = VIEW_BASE_URL,
) -> SubmissionResult:
    if not isinstance(payload, dict):
        raise MalformedResponseError(f"Expected a JSON object from the snapshot API, got {type(payload).__name__}.")

    try:
        if "snapshot" in payload:
            nested = _NestedShape.model_validate(payload)
            snap = nested.snapshot or _WireSnapshot()
            snapshot_id, name, url = _opt_str(snap.id), snap.name, nested.url
            same, message, error, success = bool(nested.sameAsBase), nested.message, nested.error, None
        else:
            flat = _FlatShape.model_validate(payload)
            snapshot_id, name, url = _opt_str(flat.id), flat.name, flat.url or flat.snapshotUrl
            same, message, error, success = bool(flat.sameAsBase), flat.message, flat.error, flat.success
    except ValidationError as e:
        raise MalformedResponseError(f"Unexpected snapshot API response: {e}") from e

    if error:
        return SubmissionFailure(error_message=error)
    if success is False:
        return SubmissionFailure(error_message=message or "Snapshot API reported failure")

    name = name or snapshot_name
    return SubmissionSuccess(
        snapshot_id=snapshot_id,
        snapshot_url=url or view_url(project, name, view_base_url),
        snapshot_name=name,
        same_as_base=same,
        message=message or None,
    )


def submit_snapshot(
    client: httpx.Client,
    api_url: str,
    request: SubmissionRequest,
    credential: Credential,
) -> SubmissionResult:
    """
    One POST, no retries.

    - non-2xx: RemoteRejectionError(status, verbatim body)
    - transport failures: httpx.TransportError propagates unchanged
    """
    url = endpoint_for(api_url, request)
    logger.info("Sending schema to API", url=url, mode=request.mode, snapshot=request.snapshot_name)

    resp = client.post(url, json=request_body(request), headers=headers_for(request, credential))
    if resp.status_code < 200 or resp.status_code >= 300:
        raise RemoteRejectionError(resp.status_code, resp.text)

    try:
        payload = resp.json()
    except ValueError as e:
        raise MalformedResponseError(f"Snapshot API returned non-JSON body: {resp.text[:500]}") from e

    logger.info("API response received", response=payload)
    return parse_response(payload, project=request.project, snapshot_name=request.snapshot_name)
