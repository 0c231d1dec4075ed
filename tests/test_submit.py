import json

import httpx
import pytest

from openapi_snapshot.auth import BearerCredential, ForkContext, ForkCredential
from openapi_snapshot.context import SnapshotIdentity
from openapi_snapshot.errors import RemoteRejectionError
from openapi_snapshot.submit import (
    ForkRequest,
    MalformedResponseError,
    StandardRequest,
    SubmissionFailure,
    SubmissionSuccess,
    build_request,
    endpoint_for,
    headers_for,
    parse_response,
    request_body,
    submit_snapshot,
)

API_URL = "https://api.example.com/snapshot"
SCHEMA = {"openapi": "3.0.0"}
FORK = ForkContext(target_repository="test-owner/test-repo", target_pull_request=5, commit_sha="abc1234")
STATIC = BearerCredential(token="test-token", source="static")


def standard(**overrides) -> StandardRequest:
    data = dict(schema=SCHEMA, project="test-project", snapshot_name="test-snapshot", permanent=False)
    data.update(overrides)
    return StandardRequest(**data)


def mock_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


# ── request construction ──────────────────────────────────────────────────────


def test_build_request_follows_credential_mode():
    identity = SnapshotIdentity(snapshot_name="123", permanent=False, base_branch_name="main")
    req = build_request(schema=SCHEMA, project="p", identity=identity, credential=STATIC)
    assert isinstance(req, StandardRequest)
    assert req.base_branch_name == "main"

    req = build_request(schema=SCHEMA, project="p", identity=identity, credential=ForkCredential(FORK))
    assert isinstance(req, ForkRequest)
    assert req.fork_context == FORK


def test_standard_body_and_headers():
    req = standard(permanent=True)
    assert request_body(req) == {
        "schema": SCHEMA,
        "project": "test-project",
        "name": "test-snapshot",
        "permanent": True,
    }
    assert headers_for(req, STATIC) == {"Content-Type": "application/json", "Authorization": "Bearer test-token"}
    assert endpoint_for(API_URL, req) == API_URL


def test_fork_body_headers_and_endpoint():
    req = ForkRequest(
        schema=SCHEMA, project="p", snapshot_name="5", permanent=False, fork_context=FORK, base_branch_name="main"
    )
    body = request_body(req)
    assert body["baseBranchName"] == "main"
    assert body["forkContext"] == {"targetRepository": "test-owner/test-repo", "targetPullRequest": 5, "commitSha": "abc1234"}
    assert headers_for(req, ForkCredential(FORK))["Authorization"] == "Fork test-owner/test-repo"
    assert endpoint_for(API_URL + "/", req) == API_URL + "-fork"


def test_mismatched_mode_and_credential_is_rejected():
    with pytest.raises(TypeError):
        headers_for(standard(), ForkCredential(FORK))
    req = ForkRequest(schema=SCHEMA, project="p", snapshot_name="5", permanent=False, fork_context=FORK)
    with pytest.raises(TypeError):
        headers_for(req, STATIC)


# ── response normalization ────────────────────────────────────────────────────


def test_parse_flat_response():
    result = parse_response(
        {"id": "snap-1", "url": "https://x/snap-1", "sameAsBase": False, "message": "ok"},
        project="p",
        snapshot_name="n",
    )
    assert result == SubmissionSuccess(
        snapshot_id="snap-1", snapshot_url="https://x/snap-1", snapshot_name="n", same_as_base=False, message="ok"
    )


def test_parse_nested_response_builds_view_url():
    result = parse_response(
        {"snapshot": {"id": "snap-2", "name": "test-snapshot", "projectId": "proj"}, "sameAsBase": True, "error": None},
        project="test-project",
        snapshot_name="ignored",
    )
    assert isinstance(result, SubmissionSuccess)
    assert result.snapshot_id == "snap-2"
    assert result.snapshot_name == "test-snapshot"
    assert result.same_as_base is True
    assert result.snapshot_url == "https://explore-openapi.dev/view?project=test-project&snapshot=test-snapshot"


def test_parse_legacy_snapshot_url_response():
    result = parse_response(
        {"success": True, "snapshotUrl": "https://example.com/snapshot/123", "message": "Snapshot created"},
        project="p",
        snapshot_name="123",
    )
    assert result.snapshot_url == "https://example.com/snapshot/123"
    assert result.message == "Snapshot created"


def test_parse_integer_id():
    result = parse_response({"id": 42, "sameAsBase": None}, project="p", snapshot_name="n")
    assert result.snapshot_id == "42"
    assert result.same_as_base is False


def test_error_field_means_failure():
    result = parse_response({"url": "u", "sameAsBase": False, "error": "quota exceeded"}, project="p", snapshot_name="n")
    assert result == SubmissionFailure(error_message="quota exceeded")


def test_legacy_success_false_means_failure():
    result = parse_response({"success": False, "message": "nope"}, project="p", snapshot_name="n")
    assert result == SubmissionFailure(error_message="nope")


def test_non_object_response_is_malformed():
    with pytest.raises(MalformedResponseError):
        parse_response(["not", "an", "object"], project="p", snapshot_name="n")


# ── the single POST ───────────────────────────────────────────────────────────


def test_submit_posts_once():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"id": "snap-1", "sameAsBase": False})

    with mock_client(handler) as client:
        result = submit_snapshot(client, API_URL, standard(), STATIC)

    assert len(calls) == 1
    req = calls[0]
    assert req.method == "POST"
    assert str(req.url) == API_URL
    assert req.headers["Authorization"] == "Bearer test-token"
    assert req.headers["Content-Type"] == "application/json"
    assert json.loads(req.content)["name"] == "test-snapshot"
    assert result.snapshot_url == "https://explore-openapi.dev/view?project=test-project&snapshot=test-snapshot"


def test_submit_rejection_carries_status_and_body():
    with mock_client(lambda request: httpx.Response(401, text="Unauthorized")) as client:
        with pytest.raises(RemoteRejectionError) as exc:
            submit_snapshot(client, API_URL, standard(), STATIC)
    assert exc.value.status_code == 401
    assert exc.value.body == "Unauthorized"
    assert "401" in str(exc.value)
    assert "Unauthorized" in str(exc.value)


def test_submit_transport_error_propagates_unchanged():
    def handler(request):
        raise httpx.ConnectError("Network connection failed", request=request)

    with mock_client(handler) as client:
        with pytest.raises(httpx.ConnectError, match="Network connection failed"):
            submit_snapshot(client, API_URL, standard(), STATIC)


def test_submit_non_json_success_body():
    with mock_client(lambda request: httpx.Response(200, text="<html>")) as client:
        with pytest.raises(MalformedResponseError):
            submit_snapshot(client, API_URL, standard(), STATIC)
