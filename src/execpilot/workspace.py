"""Summary: Document, spreadsheet, file, and task-list surface operations.

Importance: Gives follow-ups and assistant actions thin, account-bound access to the remaining surfaces.
Alternatives: Use one Google discovery client per surface.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
import urllib.parse

from execpilot.gateway import SurfaceGateway
from execpilot.models import utc_now_iso


TASK_FIELDS = "items(id,title,notes,status,due,updated,completed,links)"


@dataclass(frozen=True)
class DocumentsClient:
    gateway: SurfaceGateway
    account_id: str

    def create_document(self, title: str) -> dict[str, Any]:
        return self.gateway.call(
            self.account_id, "documents", method="POST", body={"title": title}
        )

    def batch_update(self, document_id: str, requests: list[dict[str, Any]]) -> dict[str, Any]:
        return self.gateway.call(
            self.account_id,
            f"documents/{document_id}:batchUpdate",
            method="POST",
            body={"requests": requests},
        )


@dataclass(frozen=True)
class SpreadsheetsClient:
    gateway: SurfaceGateway
    account_id: str

    def append_values(
        self,
        spreadsheet_id: str,
        value_range: str,
        values: list[list[Any]],
        value_input_option: str = "USER_ENTERED",
    ) -> dict[str, Any]:
        """Summary: Append rows after the last row of a range, inserting new rows."""

        encoded_range = urllib.parse.quote(value_range, safe="")
        return self.gateway.call(
            self.account_id,
            f"spreadsheets/{spreadsheet_id}/values/{encoded_range}:append",
            method="POST",
            query={"valueInputOption": value_input_option, "insertDataOption": "INSERT_ROWS"},
            body={"values": values},
        )


@dataclass(frozen=True)
class FilesClient:
    gateway: SurfaceGateway
    account_id: str

    def get_file(self, file_id: str, fields: str = "id, parents") -> dict[str, Any]:
        return self.gateway.call(self.account_id, f"files/{file_id}", query={"fields": fields})

    def update_parents(
        self,
        file_id: str,
        add_parents: str | None = None,
        remove_parents: str | None = None,
    ) -> dict[str, Any]:
        """Summary: Move a file between folders by editing its parent list."""

        return self.gateway.call(
            self.account_id,
            f"files/{file_id}",
            method="PATCH",
            query={
                "addParents": add_parents,
                "removeParents": remove_parents,
                "fields": "id, parents",
            },
            body={},
        )


@dataclass(frozen=True)
class TaskListClient:
    """Summary: Task-list operations bound to one account.

    Importance: Normalizes task payloads so callers never parse link arrays.
    Alternatives: Return raw surface items.
    """

    gateway: SurfaceGateway
    account_id: str

    def list_tasks(
        self, list_id: str = "@default", show_completed: bool = False, max_results: int = 20
    ) -> list[dict[str, Any]]:
        response = self.gateway.call(
            self.account_id,
            f"lists/{_quote(list_id)}/tasks",
            query={
                "showCompleted": show_completed,
                "showHidden": False,
                "maxResults": max_results,
                "fields": TASK_FIELDS,
            },
        )
        return [map_task(item) for item in response.get("items", []) or [] if item]

    def insert_task(
        self,
        title: str,
        notes: str | None = None,
        due: str | None = None,
        list_id: str = "@default",
    ) -> dict[str, Any]:
        if not title or not title.strip():
            raise ValueError("Task title is required")
        body: dict[str, Any] = {"title": title.strip()}
        if notes:
            body["notes"] = notes
        if due:
            body["due"] = due
        response = self.gateway.call(
            self.account_id, f"lists/{_quote(list_id)}/tasks", method="POST", body=body
        )
        return map_task(response)

    def patch_task(
        self, task_id: str, changes: dict[str, Any], list_id: str = "@default"
    ) -> dict[str, Any]:
        response = self.gateway.call(
            self.account_id,
            f"lists/{_quote(list_id)}/tasks/{_quote(task_id)}",
            method="PATCH",
            body=changes,
        )
        return map_task(response)

    def complete_task(self, task_id: str, list_id: str = "@default") -> dict[str, Any]:
        if not task_id:
            raise ValueError("Task id is required")
        return self.patch_task(
            task_id, {"status": "completed", "completed": utc_now_iso()}, list_id=list_id
        )


def map_task(task: dict[str, Any]) -> dict[str, Any]:
    links = task.get("links", []) or []
    edit_link = next((link.get("link") for link in links if link.get("type") == "edit"), None)
    return {
        "id": task.get("id"),
        "title": task.get("title") or "",
        "notes": task.get("notes") or "",
        "status": task.get("status") or "needsAction",
        "due": task.get("due"),
        "updated": task.get("updated"),
        "completed": task.get("completed"),
        "web_view_link": edit_link,
    }


def _quote(value: str) -> str:
    return urllib.parse.quote(value, safe="")
