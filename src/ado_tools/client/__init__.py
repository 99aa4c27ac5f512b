"""
Azure DevOps work tracking client.

Usage:
    from ado_tools.client import AzureDevOpsClient, serialize_tree

    client = AzureDevOpsClient(credentials, organization, config)
    roots = await client.query_work_item_tree(query, scope="project", project_name="Fabrikam")
    print(serialize_tree(roots))
"""

from .api import API_VERSION, COMMENTS_API_VERSION, DEFAULT_TOP, AzureDevOpsClient, QueryScope
from .models import (
    IdentityRef,
    Project,
    RelationEdge,
    WorkItem,
    WorkItemComment,
    WorkItemHistory,
    WorkItemLink,
    WorkItemUpdate,
)
from .tree import WorkItemTreeNode, build_work_item_tree, count_work_items, iter_tree, serialize_tree

__all__ = [
    # Client
    "AzureDevOpsClient",
    "QueryScope",
    "API_VERSION",
    "COMMENTS_API_VERSION",
    "DEFAULT_TOP",
    # Records
    "IdentityRef",
    "Project",
    "RelationEdge",
    "WorkItem",
    "WorkItemComment",
    "WorkItemHistory",
    "WorkItemLink",
    "WorkItemUpdate",
    # Trees
    "WorkItemTreeNode",
    "build_work_item_tree",
    "count_work_items",
    "iter_tree",
    "serialize_tree",
]
