from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import yaml

from apicopilot.core.exceptions import ApiDescriptionError


def resolve_api_description_path(path: str) -> Path:
    """Resolve an API description path deterministically.

    Accepts absolute paths, or relative paths resolved against:
      1) the current working directory
      2) the project root (derived from this file location)

    This makes `OPENAPI_SPEC_FILE=./openapi.yml` work reliably in Docker/uvicorn,
    even when the process working directory differs.
    """
    if not path or not str(path).strip():
        raise ApiDescriptionError("API description path is empty")

    # Expand env vars / ~ in the PATH itself.
    raw = os.path.expandvars(str(path))
    raw = os.path.expanduser(raw)

    candidate = Path(raw)
    if candidate.is_absolute():
        if candidate.exists():
            return candidate
        raise ApiDescriptionError(f"API description file not found. Path='{path}'")

    tried: list[Path] = []

    # 1) Relative to CWD
    cwd_candidate = (Path.cwd() / candidate).resolve()
    tried.append(cwd_candidate)
    if cwd_candidate.exists():
        return cwd_candidate

    # 2) Relative to project root: .../<repo>/src/apicopilot/core/spec_loader.py
    # parents: core -> apicopilot -> src -> <repo>
    repo_root = Path(__file__).resolve().parents[3]
    repo_candidate = (repo_root / candidate).resolve()
    tried.append(repo_candidate)
    if repo_candidate.exists():
        return repo_candidate

    tried_str = ", ".join(str(p) for p in tried)
    raise ApiDescriptionError(
        f"API description file not found. Path='{path}'. Tried: {tried_str}"
    )


def parse_api_description(raw: str, *, env_expand: bool = True) -> Dict[str, Any]:
    """Parse a YAML or JSON OpenAPI document (YAML is a superset of JSON)."""
    if env_expand:
        raw = os.path.expandvars(raw)

    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        raise ApiDescriptionError(f"Failed to parse API description: {e}") from e

    if not isinstance(data, dict):
        raise ApiDescriptionError("API description root must be a mapping/object")

    paths = data.get("paths")
    if paths is not None and not isinstance(paths, dict):
        raise ApiDescriptionError("API description 'paths' must be a mapping/object")

    return data


def load_api_description(path: str, *, env_expand: bool = True) -> Dict[str, Any]:
    """Load an OpenAPI description from a YAML or JSON file."""
    p = resolve_api_description_path(path)
    return parse_api_description(p.read_text(encoding="utf-8"), env_expand=env_expand)


async def fetch_api_description(
    url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout_s: float = 10.0,
) -> Dict[str, Any]:
    """Fetch an OpenAPI description published by the target API (e.g. /api-docs.json)."""
    if client is None:
        async with httpx.AsyncClient(timeout=timeout_s) as owned:
            return await fetch_api_description(url, client=owned)

    # A caller-supplied client stays open.
    try:
        resp = await client.get(url)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        raise ApiDescriptionError(f"Failed to fetch API description from {url}: {e}") from e
    return parse_api_description(resp.text, env_expand=False)


def api_description_snapshot(doc: Dict[str, Any]) -> Dict[str, Any]:
    """A small, stable summary for logs/health endpoints."""
    info = doc.get("info") or {}
    paths = doc.get("paths") or {}
    return {
        "title": info.get("title"),
        "version": info.get("version"),
        "openapi": doc.get("openapi") or doc.get("swagger"),
        "path_count": len(paths),
    }
