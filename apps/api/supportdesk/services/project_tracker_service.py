"""ClickUp / Asana task creation for recurring issues."""

from __future__ import annotations

import logging

import httpx

from supportdesk.core.encryption import decrypt_credentials
from supportdesk.db.enums import TrackerProvider
from supportdesk.db.models import TrackerConnection
from supportdesk.services.http_service import ExternalAPIError, ensure_success, request_with_retries

logger = logging.getLogger(__name__)

CLICKUP_API_BASE = "https://api.clickup.com/api/v2"
ASANA_API_BASE = "https://app.asana.com/api/1.0"

TASK_TAGS = ["auto-generated", "recurring-issue"]
# ClickUp priority ids
CLICKUP_PRIORITIES = {"urgent": 1, "high": 2, "normal": 3}


async def _create_clickup_task(
    client: httpx.AsyncClient, credentials: dict, connection: TrackerConnection, task: dict
) -> str | None:
    token = credentials.get("access_token") or credentials.get("api_key")
    if not token:
        raise ExternalAPIError("clickup", 401, "Missing ClickUp token")
    response = await request_with_retries(
        lambda: client.post(
            f"{CLICKUP_API_BASE}/list/{connection.target_id}/task",
            headers={"Authorization": token},
            json={
                "name": task["name"],
                "description": task["description"],
                "priority": CLICKUP_PRIORITIES.get(task["priority"], 3),
                "tags": TASK_TAGS,
            },
        )
    )
    return ensure_success(response, "clickup").get("id")


async def _create_asana_task(
    client: httpx.AsyncClient, credentials: dict, connection: TrackerConnection, task: dict
) -> str | None:
    token = credentials.get("access_token")
    if not token:
        raise ExternalAPIError("asana", 401, "Missing Asana token")
    # Asana tags must already exist as objects; labels go in the notes
    notes = f"{task['description']}\n\nPriority: {task['priority']}\nTags: {', '.join(TASK_TAGS)}"
    data = {"name": task["name"], "notes": notes, "projects": [connection.target_id]}
    if connection.workspace_id:
        data["workspace"] = connection.workspace_id
    response = await request_with_retries(
        lambda: client.post(
            f"{ASANA_API_BASE}/tasks",
            headers={"Authorization": f"Bearer {token}"},
            json={"data": data},
        )
    )
    return (ensure_success(response, "asana").get("data") or {}).get("gid")


_CREATORS = {
    TrackerProvider.CLICKUP: _create_clickup_task,
    TrackerProvider.ASANA: _create_asana_task,
}


async def create_task(
    client: httpx.AsyncClient, connection: TrackerConnection, task: dict
) -> str | None:
    """Create one task; ``task`` carries name, description and priority."""
    credentials = decrypt_credentials(connection.credentials_encrypted)
    creator = _CREATORS[TrackerProvider(connection.provider)]
    return await creator(client, credentials, connection, task)
