"""
Azure DevOps REST client for work tracking.

API Reference: https://learn.microsoft.com/rest/api/azure/devops/wit

Every call first refreshes the persisted settings, then reads the
organization from the OrganizationContext and the bearer headers from the
CredentialManager. Mutating calls check the readonly flag before anything
else, so a blocked call never touches the network.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from ..errors import AdoToolsError, ReadonlyModeError, RemoteError, ValidationError, safe_error_message
from .models import Project, RelationEdge, WorkItem, WorkItemComment, WorkItemHistory, WorkItemUpdate
from .tree import WorkItemTreeNode, build_work_item_tree

if TYPE_CHECKING:
    from ..config import AdoToolsConfig
    from ..credentials import CredentialManager
    from ..organization import OrganizationContext

logger = logging.getLogger(__name__)

API_VERSION = "7.1"
COMMENTS_API_VERSION = "7.1-preview.3"
DEFAULT_TOP = 50
DEFAULT_TIMEOUT = 30.0
JSON_PATCH = "application/json-patch+json"


class QueryScope(str, Enum):
    """Where a WIQL query runs."""

    ORGANIZATION = "organization"
    PROJECT = "project"
    TEAM = "team"


def _segment(value: str) -> str:
    return quote(value, safe="")


class AzureDevOpsClient:
    """
    One method per work tracking operation.

    Usage:
        client = AzureDevOpsClient(credentials, organization, config)
        items = await client.query_work_items(
            "SELECT [System.Id] FROM WorkItems", scope="project", project_name="Fabrikam"
        )
    """

    def __init__(
        self,
        credentials: CredentialManager,
        organization: OrganizationContext,
        config: AdoToolsConfig,
        http_client: httpx.AsyncClient | None = None,
        interactive: bool = True,
    ):
        """
        Initialize the client.

        Args:
            credentials: Supplies the Authorization header
            organization: Active organization base URL
            config: Refreshed from the settings file on every call, so readonly
                and organization changes made by another process apply
            http_client: Optional shared client (tests pass one with a mock transport)
            interactive: Allow a call without a session to start a sign-in.
                Servers pass False so a call fails fast and the user signs in
                through ado_login instead.
        """
        self.credentials = credentials
        self.organization = organization
        self.config = config
        self.interactive = interactive
        self._client = http_client
        self._owns_client = http_client is None
        self._seen_organization_url = config.organization_url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # --- Organization ---

    def get_organization(self) -> str | None:
        return self.organization.get()

    async def test_connection(self) -> bool:
        """Fetch one project. Never raises; failures are logged and reported as False."""
        try:
            base_url = self._require_organization()
            headers = await self._auth_headers()
            response = await self._get_client().get(
                f"{base_url}/_apis/projects",
                params={"api-version": API_VERSION, "$top": 1},
                headers=headers,
            )
        except (AdoToolsError, httpx.HTTPError) as e:
            logger.error(f"Connection test failed: {safe_error_message(e)}")
            return False

        connected = response.is_success and response.status_code != 203
        if not connected:
            logger.error(f"Connection test failed: {response.status_code} {response.reason_phrase}")
        return connected

    # --- Queries ---

    async def get_projects(self) -> list[Project]:
        base_url = self._require_organization()
        headers = await self._auth_headers()
        url = f"{base_url}/_apis/projects"

        logger.info(f"Fetching projects from {url}")
        response = await self._get_client().get(url, params={"api-version": API_VERSION}, headers=headers)
        self._raise_for_status(response, "fetch projects")

        data = self._decode(response, "fetch projects")
        if "value" not in data:
            raise AdoToolsError("Unexpected response format from Azure DevOps API")
        return [Project.from_api(project) for project in data["value"]]

    async def query_work_items(
        self,
        query: str,
        scope: QueryScope | str = QueryScope.ORGANIZATION,
        project_name: str | None = None,
        team_name: str | None = None,
        top: int = DEFAULT_TOP,
    ) -> list[WorkItem]:
        """
        Run a flat WIQL query (SELECT ... FROM WorkItems ...).

        The first `top` ids are fetched in a single batch call. The result
        order follows the batch response.

        Raises:
            ConfigurationError: If no organization is set
            ValidationError: If the scope is missing a project or team name
            RemoteError: If Azure DevOps answers with an error status
        """
        base_url = self._require_organization()
        url = self._wiql_url(base_url, scope, project_name, team_name)
        top = self._check_top(top)

        data = await self._run_wiql(url, query, "execute WIQL work items query")
        ids = [ref["id"] for ref in data.get("workItems") or []][:top]
        return await self._get_work_items_by_ids(ids)

    async def query_work_item_tree(
        self,
        query: str,
        scope: QueryScope | str = QueryScope.ORGANIZATION,
        project_name: str | None = None,
        team_name: str | None = None,
        top: int = DEFAULT_TOP,
    ) -> list[WorkItemTreeNode]:
        """
        Run a link WIQL query (SELECT ... FROM WorkItemLinks ...) and build a forest.

        The relation rows are cut to `top` first; every id on either end of
        the remaining rows is fetched in one batch call.
        """
        base_url = self._require_organization()
        url = self._wiql_url(base_url, scope, project_name, team_name)
        top = self._check_top(top)

        data = await self._run_wiql(url, query, "execute WIQL work item links query")
        edges = [RelationEdge.from_api(row) for row in data.get("workItemRelations") or []][:top]
        if not edges:
            return []

        ids: dict[int, None] = {}
        for edge in edges:
            for item_id in (edge.source_id, edge.target_id):
                if item_id is not None:
                    ids.setdefault(item_id)

        items = await self._get_work_items_by_ids(ids)
        return build_work_item_tree(edges, {item.id: item for item in items})

    # --- Mutations ---

    async def create_work_item(self, project_name: str, work_item_type: str, fields: dict[str, Any]) -> WorkItem:
        self._check_writable("create work item")
        base_url = self._require_organization()
        if not project_name or not work_item_type:
            raise ValidationError("Project name and work item type are required to create a work item")

        url = f"{base_url}/{_segment(project_name)}/_apis/wit/workitems/${_segment(work_item_type)}"
        logger.info(f"Creating {work_item_type} in project {project_name}")
        response = await self._send_patch("POST", url, self._patch_document("add", fields))
        self._raise_for_status(response, "create work item")
        return WorkItem.from_api(self._decode(response, "create work item"))

    async def update_work_item(self, work_item_id: int, fields: dict[str, Any]) -> WorkItem:
        self._check_writable("update work item")
        base_url = self._require_organization()

        url = f"{base_url}/_apis/wit/workitems/{work_item_id}"
        logger.info(f"Updating work item {work_item_id}")
        response = await self._send_patch("PATCH", url, self._patch_document("replace", fields))
        self._raise_for_status(response, "update work item")
        return WorkItem.from_api(self._decode(response, "update work item"))

    async def delete_work_item(self, work_item_id: int) -> None:
        self._check_writable("delete work item")
        base_url = self._require_organization()
        headers = await self._auth_headers()

        url = f"{base_url}/_apis/wit/workitems/{work_item_id}"
        logger.info(f"Deleting work item {work_item_id}")
        response = await self._get_client().delete(url, params={"api-version": API_VERSION}, headers=headers)
        self._raise_for_status(response, "delete work item")

    # --- History and comments ---

    async def get_work_item_history(self, work_item_id: int) -> WorkItemHistory:
        base_url = self._require_organization()
        headers = await self._auth_headers()

        url = f"{base_url}/_apis/wit/workitems/{work_item_id}/updates"
        logger.info(f"Fetching history of work item {work_item_id}")
        response = await self._get_client().get(url, params={"api-version": API_VERSION}, headers=headers)
        self._raise_for_status(response, "fetch work item history")

        updates = self._decode(response, "fetch work item history").get("value") or []
        return WorkItemHistory(
            work_item_id=work_item_id,
            updates=[WorkItemUpdate.from_api(update) for update in updates],
        )

    async def get_work_item_comments(self, work_item_id: int) -> list[WorkItemComment]:
        base_url = self._require_organization()
        headers = await self._auth_headers()

        url = f"{base_url}/_apis/wit/workitems/{work_item_id}/comments"
        logger.info(f"Fetching comments of work item {work_item_id}")
        response = await self._get_client().get(
            url, params={"api-version": COMMENTS_API_VERSION}, headers=headers
        )
        self._raise_for_status(response, "fetch work item comments")

        comments = self._decode(response, "fetch work item comments").get("comments") or []
        return [WorkItemComment.from_api(comment) for comment in comments]

    async def add_work_item_comment(self, work_item_id: int, text: str) -> WorkItemComment:
        self._check_writable("add work item comment")
        base_url = self._require_organization()
        if not text or not text.strip():
            raise ValidationError("Comment text cannot be empty")
        headers = await self._auth_headers()

        url = f"{base_url}/_apis/wit/workitems/{work_item_id}/comments"
        logger.info(f"Adding comment to work item {work_item_id}")
        response = await self._get_client().post(
            url,
            params={"api-version": COMMENTS_API_VERSION},
            headers={**headers, "Content-Type": "application/json"},
            json={"text": text},
        )
        self._raise_for_status(response, "add work item comment")
        return WorkItemComment.from_api(self._decode(response, "add work item comment"))

    # --- Internals ---

    async def _get_work_items_by_ids(self, ids: Iterable[int]) -> list[WorkItem]:
        """Fetch full records in one batch call; an empty id list makes no call."""
        id_list = [str(item_id) for item_id in ids]
        if not id_list:
            return []

        base_url = self._require_organization()
        headers = await self._auth_headers()
        logger.debug(f"Fetching {len(id_list)} work items by id")
        response = await self._get_client().get(
            f"{base_url}/_apis/wit/workitems",
            params={"ids": ",".join(id_list), "$expand": "all", "api-version": API_VERSION},
            headers=headers,
        )
        self._raise_for_status(response, "fetch work items")
        data = self._decode(response, "fetch work items")
        return [WorkItem.from_api(item) for item in data.get("value") or []]

    async def _run_wiql(self, url: str, query: str, action: str) -> dict[str, Any]:
        headers = await self._auth_headers()
        logger.info(f"Running WIQL query at {url}")
        logger.debug(f"Query: {query}")
        response = await self._get_client().post(
            url,
            params={"api-version": API_VERSION},
            headers={**headers, "Content-Type": "application/json"},
            json={"query": query},
        )
        self._raise_for_status(response, action)
        return self._decode(response, action)

    async def _send_patch(self, method: str, url: str, document: list[dict[str, Any]]) -> httpx.Response:
        headers = await self._auth_headers()
        return await self._get_client().request(
            method,
            url,
            params={"api-version": API_VERSION},
            headers={**headers, "Content-Type": JSON_PATCH},
            json=document,
        )

    @staticmethod
    def _patch_document(op: str, fields: dict[str, Any]) -> list[dict[str, Any]]:
        if not fields:
            raise ValidationError("At least one field is required")
        return [{"op": op, "path": f"/fields/{name}", "value": value} for name, value in fields.items()]

    @staticmethod
    def _wiql_url(
        base_url: str,
        scope: QueryScope | str,
        project_name: str | None,
        team_name: str | None,
    ) -> str:
        try:
            scope = QueryScope(scope)
        except ValueError:
            raise ValidationError(f"Unsupported scope: {scope}") from None

        if scope is QueryScope.ORGANIZATION:
            return f"{base_url}/_apis/wit/wiql"
        if scope is QueryScope.PROJECT:
            if not project_name:
                raise ValidationError("Project name is required for project-level queries")
            return f"{base_url}/{_segment(project_name)}/_apis/wit/wiql"
        if not project_name or not team_name:
            raise ValidationError("Project name and team name are required for team-level queries")
        return f"{base_url}/{_segment(project_name)}/{_segment(team_name)}/_apis/wit/wiql"

    @staticmethod
    def _check_top(top: int) -> int:
        if top < 1:
            raise ValidationError("top must be at least 1")
        return top

    def _sync_settings(self) -> None:
        """Pick up readonly and organization changes persisted since the last call."""
        self.config.refresh()
        url = self.config.organization_url
        if url != self._seen_organization_url:
            self._seen_organization_url = url
            if url:
                logger.info(f"Organization changed to {url}")
                self.organization.set(url)
            else:
                self.organization.clear()

    def _require_organization(self) -> str:
        self._sync_settings()
        return self.organization.require()

    def _check_writable(self, operation: str) -> None:
        self._sync_settings()
        if self.config.readonly:
            raise ReadonlyModeError(operation)

    async def _auth_headers(self) -> dict[str, str]:
        return await self.credentials.get_auth_headers(interactive=self.interactive)

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        # 203 is the HTML sign-in page Azure DevOps serves for rejected credentials
        if response.is_success and response.status_code != 203:
            return
        if response.status_code in (401, 203):
            logger.warning(f"Azure DevOps rejected the bearer token while trying to {action}")
        error = RemoteError(action, response.status_code, response.reason_phrase, response.text)
        logger.error(f"Failed to {action}: {error}")
        raise error

    @staticmethod
    def _decode(response: httpx.Response, action: str) -> dict[str, Any]:
        """JSON object body of a successful response, or a RemoteError."""
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            error = RemoteError(action, response.status_code, response.reason_phrase, response.text)
            logger.error(f"Failed to {action}: unexpected response body ({error})")
            raise error
        return data

