# src/openapi_snapshot/inputs.py
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ValidationError, field_validator

from openapi_snapshot.errors import ConfigurationError

DEFAULT_API_URL = "https://editor-api.explore-openapi.dev/public/v1/snapshot"

_TRUE = {"true", "yes", "1", "on"}
_FALSE = {"false", "no", "0", "off"}

# input name -> model field
INPUT_FIELDS: dict[str, str] = {
    "schema-file": "schema_file",
    "project": "project",
    "snapshot-name": "snapshot_name",
    "permanent": "permanent",
    "auth-token": "auth_token",
    "oidc-audience": "oidc_audience",
    "github-token": "github_token",
    "api-url": "api_url",
    "fork-target-repository": "fork_target_repository",
    "fork-pull-request": "fork_pull_request",
    "fork-commit-sha": "fork_commit_sha",
}

REQUIRED_INPUTS = ("schema-file", "project")


def parse_tristate(value: str | None) -> bool | None:
    """Empty means unset. Anything outside the accepted spellings is rejected."""
    v = (value or "").strip().lower()
    if not v:
        return None
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ValueError(f"expected true or false, got {value!r}")


def input_env_name(name: str) -> str:
    # GitHub Actions exposes `with:` inputs as INPUT_<NAME>, spaces to underscores, dashes kept.
    return "INPUT_" + name.replace(" ", "_").upper()


def get_input(name: str, environ: Mapping[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    return (env.get(input_env_name(name)) or "").strip()


class ActionInputs(BaseModel):
    schema_file: str
    project: str
    snapshot_name: str | None = None
    permanent: bool | None = None
    auth_token: str | None = None
    oidc_audience: str | None = None
    github_token: str | None = None
    api_url: str = DEFAULT_API_URL

    fork_target_repository: str | None = None
    fork_pull_request: str | None = None
    fork_commit_sha: str | None = None

    @field_validator("permanent", mode="before")
    @classmethod
    def _permanent_tristate(cls, v: Any) -> bool | None:
        if v is None or isinstance(v, bool):
            return v
        return parse_tristate(str(v))

    @field_validator("api_url", mode="before")
    @classmethod
    def _api_url_default(cls, v: Any) -> str:
        if v is None or not str(v).strip():
            return DEFAULT_API_URL
        return str(v).strip().rstrip("/")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ActionInputs":
        """
        Contract:
        - `schema-file` and `project` are required; empty counts as missing.
        - Optional inputs that are empty are treated as not provided.
        """
        missing = [n for n in REQUIRED_INPUTS if not get_input(n, environ)]
        if missing:
            raise ConfigurationError(f"Input required and not supplied: {', '.join(missing)}")

        data: dict[str, Any] = {}
        for name, field in INPUT_FIELDS.items():
            v = get_input(name, environ)
            if v:
                data[field] = v

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid action inputs: {e}") from e

    def public_dict(self) -> dict[str, Any]:
        """Inputs with secrets masked, for logging."""
        d = self.model_dump(mode="json")
        for k in ("auth_token", "github_token"):
            if d.get(k):
                d[k] = "***"
        return d


def read_schema_file(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    try:
        raw = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read schema file {str(p)!r}: {e}") from e

    try:
        schema = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Schema file {str(p)!r} is not valid JSON: {e}") from e

    if not isinstance(schema, dict):
        raise ConfigurationError(f"Schema file {str(p)!r} must contain a JSON object.")
    return schema
