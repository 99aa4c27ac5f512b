"""
Azure DevOps Tool - Work items through the Azure DevOps REST API.

Authentication:
- Reuses an Azure CLI session when one exists.
- Otherwise signs in with the device code flow; the verification code is
  sent to the MCP client as a log message.

Every tool returns text. Structured results are embedded as a fenced JSON
block, and failures come back as "Failed to ...: <reason>" instead of
raising into the host.

API Reference: https://learn.microsoft.com/rest/api/azure/devops/wit
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Literal

import httpx
from fastmcp import Context, FastMCP

from ado_tools.client import DEFAULT_TOP, count_work_items, serialize_tree
from ado_tools.credentials import AuthMethod, ConfiguredPrompter
from ado_tools.errors import AdoToolsError, safe_error_message

if TYPE_CHECKING:
    from ado_tools.client import AzureDevOpsClient
    from ado_tools.credentials import CredentialManager

logger = logging.getLogger(__name__)

Scope = Literal["organization", "project", "team"]


def _json_block(data: Any) -> str:
    return f"```json\n{json.dumps(data, indent=2, ensure_ascii=False)}\n```"


def _failure(action: str, error: Exception) -> str:
    """Text for a failed call; only the message is used, never the exception object."""
    if isinstance(error, httpx.TimeoutException):
        reason = "Azure DevOps request timed out"
    elif isinstance(error, httpx.RequestError):
        reason = f"Network error: {safe_error_message(error)}"
    else:
        reason = safe_error_message(error)
    logger.warning(f"Failed to {action}: {reason}")
    return f"Failed to {action}: {reason}"


def register_tools(
    mcp: FastMCP,
    client: AzureDevOpsClient,
    credentials: CredentialManager,
) -> None:
    """Register Azure DevOps tools with the MCP server."""

    # ── Session ─────────────────────────────────────────────────────

    @mcp.tool()
    async def ado_login(ctx: Context | None = None) -> str:
        """Sign in to Azure DevOps.

        Does nothing when a valid session already exists. Otherwise starts
        the device code flow; the verification URL and code are sent to the
        client as a log message and must be entered in a browser.

        Returns:
            Text describing the outcome.
        """
        try:
            if await credentials.is_authenticated():
                return "Already authenticated with Azure DevOps."

            notify = ctx.info if ctx is not None else None
            prompter = ConfiguredPrompter(method=AuthMethod.DEVICE_CODE, notify=notify)
            await credentials.get_token_device_code(prompter=prompter)
            return "Successfully authenticated with Azure DevOps."
        except (AdoToolsError, httpx.HTTPError) as e:
            return _failure("authenticate with Azure DevOps", e)

    # ── Read-only tools ─────────────────────────────────────────────

    @mcp.tool()
    async def ado_list_projects() -> str:
        """List the projects in the configured Azure DevOps organization.

        Returns:
            One line per project with its state and description.
        """
        try:
            projects = await client.get_projects()
        except (AdoToolsError, httpx.HTTPError) as e:
            return _failure("fetch projects", e)

        if not projects:
            return "No projects found in your Azure DevOps organization."

        project_list = "\n\n".join(
            f"• **{p.name}** ({p.state})\n  {p.description or 'No description'}" for p in projects
        )
        return f"Found {len(projects)} projects:\n\n{project_list}"

    @mcp.tool()
    async def ado_query_work_items(
        wiql_query: str,
        scope: Scope = "organization",
        project_name: str | None = None,
        team_name: str | None = None,
        top: int = DEFAULT_TOP,
    ) -> str:
        """Run a flat WIQL query and return the matching work items.

        Use for queries like:
        SELECT [System.Id], [System.Title] FROM WorkItems WHERE [System.State] = 'Active'

        Args:
            wiql_query: WIQL query selecting FROM WorkItems.
            scope: "organization", "project" (needs project_name) or
                "team" (needs project_name and team_name).
            project_name: Project for project and team scoped queries.
            team_name: Team for team scoped queries.
            top: Maximum number of work items to return (default 50).

        Returns:
            The work items as JSON, or an explanation of what failed.
        """
        if not wiql_query or not wiql_query.strip():
            return "Error: WIQL query is required."

        try:
            work_items = await client.query_work_items(
                wiql_query, scope=scope, project_name=project_name, team_name=team_name, top=top
            )
        except (AdoToolsError, httpx.HTTPError) as e:
            return _failure("execute WIQL query", e)

        if not work_items:
            return "No work items found matching the query."

        payload = [item.to_dict() for item in work_items]
        return f"Found {len(work_items)} work items:\n\n{_json_block(payload)}"

    @mcp.tool()
    async def ado_query_work_item_tree(
        wiql_query: str,
        scope: Scope = "organization",
        project_name: str | None = None,
        team_name: str | None = None,
        top: int = DEFAULT_TOP,
    ) -> str:
        """Run a WIQL link query and return the work items as a hierarchy.

        Use for queries like:
        SELECT [System.Id] FROM WorkItemLinks
        WHERE [System.Links.LinkType] = 'System.LinkTypes.Hierarchy-Forward'
        MODE (Recursive)

        Args:
            wiql_query: WIQL query selecting FROM WorkItemLinks.
            scope: "organization", "project" (needs project_name) or
                "team" (needs project_name and team_name).
            project_name: Project for project and team scoped queries.
            team_name: Team for team scoped queries.
            top: Maximum number of relation rows to use (default 50).

        Returns:
            The tree as nested JSON, or an explanation of what failed.
        """
        if not wiql_query or not wiql_query.strip():
            return "Error: WIQL query is required."

        try:
            roots = await client.query_work_item_tree(
                wiql_query, scope=scope, project_name=project_name, team_name=team_name, top=top
            )
        except (AdoToolsError, httpx.HTTPError) as e:
            return _failure("execute WIQL work item links query", e)

        if not roots:
            return "No work item links found matching the query."

        total = count_work_items(roots)
        return f"Found {total} work items in hierarchical structure:\n\n{_json_block(serialize_tree(roots))}"

    @mcp.tool()
    async def ado_get_work_item_history(work_item_id: int) -> str:
        """Get the revision history of a work item.

        Args:
            work_item_id: ID of the work item.

        Returns:
            Every update with the changed fields (old and new values) as JSON.
        """
        if not work_item_id:
            return "Error: Work item ID is required."

        try:
            history = await client.get_work_item_history(work_item_id)
        except (AdoToolsError, httpx.HTTPError) as e:
            return _failure("get work item history", e)

        return f"Work item history retrieved:\n\n{_json_block(history.model_dump(mode='json'))}"

    @mcp.tool()
    async def ado_get_work_item_comments(work_item_id: int) -> str:
        """Get the discussion comments of a work item.

        Args:
            work_item_id: ID of the work item.

        Returns:
            The comments as JSON.
        """
        if not work_item_id:
            return "Error: Work item ID is required."

        try:
            comments = await client.get_work_item_comments(work_item_id)
        except (AdoToolsError, httpx.HTTPError) as e:
            return _failure("get work item comments", e)

        payload = [comment.model_dump(mode="json", exclude_none=True) for comment in comments]
        return f"Work item comments retrieved ({len(comments)} comments):\n\n{_json_block(payload)}"

    # ── Write tools (blocked in readonly mode) ──────────────────────

    @mcp.tool()
    async def ado_create_work_item(project_name: str, work_item_type: str, fields: dict[str, Any]) -> str:
        """Create a work item.

        Args:
            project_name: Project to create the work item in.
            work_item_type: Type such as "Bug", "Task" or "User Story".
            fields: Field reference names to values, e.g.
                {"System.Title": "Fix login", "Microsoft.VSTS.Common.Priority": 2}.

        Returns:
            The created work item as JSON, or an explanation of what failed.
        """
        if not project_name or not work_item_type or not fields:
            return "Error: Project name, work item type, and fields are required."

        try:
            work_item = await client.create_work_item(project_name, work_item_type, fields)
        except (AdoToolsError, httpx.HTTPError) as e:
            return _failure("create work item", e)

        return f"Work item created successfully:\n\n{_json_block(work_item.to_dict())}"

    @mcp.tool()
    async def ado_update_work_item(work_item_id: int, fields: dict[str, Any]) -> str:
        """Update fields of an existing work item.

        Args:
            work_item_id: ID of the work item.
            fields: Field reference names to new values, e.g. {"System.State": "Closed"}.

        Returns:
            The updated work item as JSON, or an explanation of what failed.
        """
        if not work_item_id or not fields:
            return "Error: Work item ID and fields are required."

        try:
            work_item = await client.update_work_item(work_item_id, fields)
        except (AdoToolsError, httpx.HTTPError) as e:
            return _failure("update work item", e)

        return f"Work item updated successfully:\n\n{_json_block(work_item.to_dict())}"

    @mcp.tool()
    async def ado_delete_work_item(work_item_id: int) -> str:
        """Delete a work item (it moves to the recycle bin).

        Args:
            work_item_id: ID of the work item.
        """
        if not work_item_id:
            return "Error: Work item ID is required."

        try:
            await client.delete_work_item(work_item_id)
        except (AdoToolsError, httpx.HTTPError) as e:
            return _failure("delete work item", e)

        return f"Work item {work_item_id} deleted successfully."

    @mcp.tool()
    async def ado_add_work_item_comment(work_item_id: int, comment_text: str) -> str:
        """Add a discussion comment to a work item.

        Args:
            work_item_id: ID of the work item.
            comment_text: Comment text (HTML or plain text).

        Returns:
            The created comment as JSON, or an explanation of what failed.
        """
        if not work_item_id or not comment_text or not comment_text.strip():
            return "Error: Work item ID and comment text are required."

        try:
            comment = await client.add_work_item_comment(work_item_id, comment_text)
        except (AdoToolsError, httpx.HTTPError) as e:
            return _failure("add work item comment", e)

        return f"Comment added successfully:\n\n{_json_block(comment.model_dump(mode='json', exclude_none=True))}"
