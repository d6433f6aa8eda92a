"""Actionable error catalog for neonlocal."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "persistent_token_required": {
        "what": "Persistent API token required for creating new branches.",
        "next": "Import an API key with `neonlocal set-api-key` and retry.",
    },
    "auth_required": {
        "what": "Authentication required.",
        "next": "Sign in or import an API key with `neonlocal set-api-key`.",
    },
    "auth_expired": {
        "what": "Failed to refresh authentication token.",
        "next": "Sign in again, or import a persistent API key to avoid session expiry.",
    },
    "branch_limit": {
        "what": "Unable to create ephemeral branch, as you have reached your Branch limit.",
        "next": "Delete one or more branches in the selected project and retry.",
    },
    "container_error": {
        "what": "Container reported an error in logs.",
        "next": "Inspect the output of `docker logs {container_name}` for details.",
    },
    "readiness_timeout": {
        "what": "Container failed to become ready within {timeout} seconds.",
        "next": "Inspect `docker logs {container_name}` and check your network connection.",
    },
    "handoff_timeout": {
        "what": "Failed to get ephemeral branch ID within {timeout} seconds.",
        "next": "Stop the proxy with `neonlocal stop` and start it again.",
    },
    "container_not_found": {
        "what": "Proxy container {container_name} is not running.",
        "next": "Start it with `neonlocal start`.",
    },
    "image_pull_failed": {
        "what": "Could not pull proxy image {image}.",
        "next": "Check Docker is running and that you can reach Docker Hub, then retry.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
