"""
Azure DevOps tool implementations for FastMCP.

Usage:
    from fastmcp import FastMCP
    from ado_tools.cli import build_services
    from ado_tools.config import AdoToolsConfig
    from ado_tools.tools import register_all_tools

    services = build_services(AdoToolsConfig.load())
    mcp = FastMCP("azure-devops")
    register_all_tools(mcp, client=services.client, credentials=services.credentials)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastmcp import FastMCP

from .ado_tool import register_tools as register_ado

if TYPE_CHECKING:
    from ado_tools.client import AzureDevOpsClient
    from ado_tools.credentials import CredentialManager


def register_all_tools(
    mcp: FastMCP,
    client: AzureDevOpsClient,
    credentials: CredentialManager,
) -> list[str]:
    """
    Register all tools with a FastMCP server.

    Args:
        mcp: FastMCP server instance
        client: Azure DevOps REST client shared by every tool
        credentials: Credential manager used by the login tool

    Returns:
        List of registered tool names
    """
    register_ado(mcp, client=client, credentials=credentials)

    return [
        "ado_login",
        "ado_list_projects",
        "ado_query_work_items",
        "ado_query_work_item_tree",
        "ado_get_work_item_history",
        "ado_get_work_item_comments",
        "ado_create_work_item",
        "ado_update_work_item",
        "ado_delete_work_item",
        "ado_add_work_item_comment",
    ]


__all__ = ["register_all_tools"]
