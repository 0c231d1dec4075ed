# src/openapi_snapshot/auth.py
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Literal, Mapping, Protocol, Sequence, Union

import httpx
import structlog

from openapi_snapshot.errors import ConfigurationError, CredentialError

logger = structlog.get_logger(__name__)

OIDC_REQUEST_URL_ENV = "ACTIONS_ID_TOKEN_REQUEST_URL"
OIDC_REQUEST_TOKEN_ENV = "ACTIONS_ID_TOKEN_REQUEST_TOKEN"

OIDC_PERMISSION_HINT = (
    "Add `permissions: id-token: write` to the workflow (or job) so the runner can issue an OIDC token."
)

_REPO_RE = re.compile(r"^[\w.-]+/[\w.-]+$")
_SHA_RE = re.compile(r"^[0-9a-fA-F]{7,40}$")


@dataclass(frozen=True)
class ForkContext:
    target_repository: str
    target_pull_request: int
    commit_sha: str

    @classmethod
    def from_parts(
        cls,
        target_repository: str | None,
        target_pull_request: str | int | None,
        commit_sha: str | None,
    ) -> "ForkContext | None":
        """
        All three parts or nothing: a partial fork context is the same as none.
        A complete but malformed context is a configuration error.
        """
        repo = (target_repository or "").strip()
        pr_raw = str(target_pull_request).strip() if target_pull_request is not None else ""
        sha = (commit_sha or "").strip()
        if not (repo and pr_raw and sha):
            return None

        if not _REPO_RE.match(repo):
            raise ConfigurationError(f"Fork target repository must look like 'owner/repo', got {repo!r}.")
        try:
            pr = int(pr_raw)
        except ValueError:
            pr = 0
        if pr <= 0:
            raise ConfigurationError(f"Fork pull request must be a positive integer, got {pr_raw!r}.")
        if not _SHA_RE.match(sha):
            raise ConfigurationError(f"Fork commit SHA must be 7-40 hex characters, got {sha!r}.")
        return cls(target_repository=repo, target_pull_request=pr, commit_sha=sha)

    def to_wire(self) -> dict[str, object]:
        return {
            "targetRepository": self.target_repository,
            "targetPullRequest": self.target_pull_request,
            "commitSha": self.commit_sha,
        }


@dataclass(frozen=True)
class BearerCredential:
    token: str
    source: Literal["oidc", "static"]

    @property
    def mode(self) -> str:
        return self.source


@dataclass(frozen=True)
class ForkCredential:
    fork_context: ForkContext

    @property
    def mode(self) -> str:
        return "fork"


Credential = Union[BearerCredential, ForkCredential]


class CredentialProvider(Protocol):
    name: str

    def can_supply(self) -> bool: ...

    def supply(self) -> Credential: ...


# -------------------------------------------------------------------
# GitHub Actions OIDC
# -------------------------------------------------------------------


def oidc_available(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return bool((env.get(OIDC_REQUEST_URL_ENV) or "").strip() and (env.get(OIDC_REQUEST_TOKEN_ENV) or "").strip())


def fetch_identity_token(
    client: httpx.Client,
    audience: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    """
    Ask the runner's token endpoint for a short-lived identity token.

    Every failure is fatal for the run and is reported with the permission hint.
    """
    env = os.environ if environ is None else environ
    try:
        request_url = (env.get(OIDC_REQUEST_URL_ENV) or "").strip()
        request_token = (env.get(OIDC_REQUEST_TOKEN_ENV) or "").strip()
        if not request_url or not request_token:
            raise RuntimeError(f"Unable to get {OIDC_REQUEST_URL_ENV} env variable")

        # The runner URL already carries `api-version`; `params=` would replace that query.
        url = httpx.URL(request_url)
        if audience:
            url = url.copy_add_param("audience", audience)
        resp = client.get(
            url,
            headers={"Authorization": f"bearer {request_token}", "Accept": "application/json"},
        )
        if resp.status_code < 200 or resp.status_code >= 300:
            raise RuntimeError(f"token endpoint returned {resp.status_code}: {resp.text}")

        token = resp.json().get("value")
        if not isinstance(token, str) or not token:
            raise RuntimeError("Failed to get OIDC token from GitHub Actions")
        return token
    except Exception as e:  # noqa: BLE001 - every cause maps to the same remediation
        raise CredentialError(f"Failed to retrieve OIDC token: {e}. {OIDC_PERMISSION_HINT}") from e


# -------------------------------------------------------------------
# Providers (evaluated in order)
# -------------------------------------------------------------------


@dataclass
class ForkDelegatedProvider:
    fork_context: ForkContext | None
    identity_available: bool
    name: str = "fork"

    def can_supply(self) -> bool:
        return self.fork_context is not None and not self.identity_available

    def supply(self) -> Credential:
        assert self.fork_context is not None
        return ForkCredential(self.fork_context)


@dataclass
class IdentityTokenProvider:
    client: httpx.Client
    audience: str | None = None
    environ: Mapping[str, str] | None = None
    name: str = "oidc"

    def can_supply(self) -> bool:
        return oidc_available(self.environ)

    def supply(self) -> Credential:
        token = fetch_identity_token(self.client, self.audience, self.environ)
        return BearerCredential(token=token, source="oidc")


@dataclass
class StaticTokenProvider:
    token: str | None
    name: str = "static"

    def can_supply(self) -> bool:
        return bool(self.token and self.token.strip())

    def supply(self) -> Credential:
        assert self.token
        return BearerCredential(token=self.token.strip(), source="static")


def default_providers(
    *,
    client: httpx.Client,
    fork_context: ForkContext | None,
    static_token: str | None,
    audience: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[CredentialProvider]:
    identity = IdentityTokenProvider(client=client, audience=audience, environ=environ)
    return [
        ForkDelegatedProvider(fork_context=fork_context, identity_available=identity.can_supply()),
        identity,
        StaticTokenProvider(token=static_token),
    ]


def authenticate(providers: Sequence[CredentialProvider]) -> Credential:
    """
    First provider that can supply wins. A provider that can supply but then fails
    aborts the run; there is no fall-through to weaker credentials.
    """
    for p in providers:
        if p.can_supply():
            cred = p.supply()
            logger.info("Credential selected", mode=cred.mode)
            return cred

    raise CredentialError(
        "No credential available for the snapshot API. Either grant the workflow "
        "`permissions: id-token: write` (OIDC), pass the `auth-token` input, or pass "
        "`fork-target-repository`, `fork-pull-request` and `fork-commit-sha` for fork pull requests."
    )
