"""
Azure DevOps Tool - Query, create, update and comment on work items.

Supports:
- Azure CLI sessions (az login)
- Device code sign-in, surfaced to the MCP client
"""

from .ado_tool import register_tools

__all__ = ["register_tools"]
