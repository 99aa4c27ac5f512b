"""
Azure DevOps tools for AI assistants.

Query and change work items in an Azure DevOps organization through a small
set of MCP tools, with the bearer token managed by ado_tools.credentials.
"""

__version__ = "0.3.0"
