# src/openapi_snapshot/main.py
from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional

import httpx


def run(
        environ: Optional[Mapping[str, str]] = None,
        dry_run: bool = False,
        *,
        api_transport: Optional[httpx.BaseTransport] = None,
        github_transport: Optional[httpx.BaseTransport] = None,
) -> Dict[str, Any]:
    """
    Core entrypoint used by openapi_snapshot.cli.

    openapi_snapshot.graph owns the full workflow
    (inputs → context → credential → submit → publish outputs → report → emit result).
    """
    from openapi_snapshot.graph import GITHUB_API_URL, RuntimeConfig, run_snapshot_graph

    env = os.environ if environ is None else environ
    config = RuntimeConfig(
        dry_run=dry_run,
        # GitHub Enterprise runners point this at their own API host.
        github_api_url=(env.get("GITHUB_API_URL") or GITHUB_API_URL).rstrip("/"),
        api_transport=api_transport,
        github_transport=github_transport,
    )
    # Let SnapshotStageError bubble up so the CLI can render stage-aware JSON.
    return run_snapshot_graph(environ=environ, config=config)
