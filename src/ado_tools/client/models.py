"""
Domain records for Azure DevOps work tracking.

Every mapper here is total: a raw REST payload with optional fields missing
still maps, with empty strings for the core text fields and None elsewhere.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError


class Project(BaseModel):
    id: str
    name: str
    description: str | None = None
    url: str = ""
    state: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Project:
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            description=data.get("description"),
            url=data.get("url", ""),
            state=data.get("state", ""),
        )


class IdentityRef(BaseModel):
    """A user as referenced by comments and revisions."""

    display_name: str = ""
    unique_name: str = ""
    id: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any] | None) -> IdentityRef:
        data = data or {}
        return cls(
            display_name=data.get("displayName") or "",
            unique_name=data.get("uniqueName") or "",
            id=data.get("id") or "",
        )


class WorkItemLink(BaseModel):
    """A typed link from a work item (parent, child, related, hyperlink...)."""

    rel: str = ""
    url: str = ""
    attributes: dict[str, Any] | None = None


# Well-known field reference names
TITLE = "System.Title"
WORK_ITEM_TYPE = "System.WorkItemType"
STATE = "System.State"

_FIELD_MAP: dict[str, str] = {
    "created_date": "System.CreatedDate",
    "changed_date": "System.ChangedDate",
    "activated_date": "Microsoft.VSTS.Common.ActivatedDate",
    "resolved_date": "Microsoft.VSTS.Common.ResolvedDate",
    "closed_date": "Microsoft.VSTS.Common.ClosedDate",
    "area_path": "System.AreaPath",
    "iteration_path": "System.IterationPath",
    "team_project": "System.TeamProject",
    "description": "System.Description",
    "acceptance_criteria": "Microsoft.VSTS.Common.AcceptanceCriteria",
    "reproduction_steps": "Microsoft.VSTS.TCM.ReproSteps",
    "system_info": "Microsoft.VSTS.TCM.SystemInfo",
    "tags": "System.Tags",
    "story_points": "Microsoft.VSTS.Scheduling.StoryPoints",
    "effort": "Microsoft.VSTS.Scheduling.Effort",
    "original_estimate": "Microsoft.VSTS.Scheduling.OriginalEstimate",
    "remaining_work": "Microsoft.VSTS.Scheduling.RemainingWork",
    "completed_work": "Microsoft.VSTS.Scheduling.CompletedWork",
    "activity": "Microsoft.VSTS.Common.Activity",
    "priority": "Microsoft.VSTS.Common.Priority",
    "severity": "Microsoft.VSTS.Common.Severity",
    "risk": "Microsoft.VSTS.Common.Risk",
    "business_value": "Microsoft.VSTS.Common.BusinessValue",
    "time_criticality": "Microsoft.VSTS.Common.TimeCriticality",
    "found_in": "Microsoft.VSTS.Build.FoundIn",
    "integrated_in": "Microsoft.VSTS.Build.IntegrationBuild",
    "parent": "System.Parent",
}

_IDENTITY_FIELDS: dict[str, str] = {
    "assigned_to": "System.AssignedTo",
    "created_by": "System.CreatedBy",
    "changed_by": "System.ChangedBy",
}


def _identity_name(value: Any) -> Any:
    """Identity fields arrive as objects on newer API versions and as strings on older ones."""
    if isinstance(value, dict):
        return value.get("displayName") or value.get("uniqueName") or None
    return value


class WorkItem(BaseModel):
    """
    Snapshot of a work item.

    The well-known fields are typed; `fields` keeps every raw field,
    custom ones included, keyed by reference name.
    """

    id: int
    title: str = ""
    work_item_type: str = ""
    state: str = ""
    url: str = ""

    assigned_to: str | None = None
    created_by: str | None = None
    changed_by: str | None = None
    created_date: str | None = None
    changed_date: str | None = None
    activated_date: str | None = None
    resolved_date: str | None = None
    closed_date: str | None = None

    area_path: str | None = None
    iteration_path: str | None = None
    team_project: str | None = None
    description: str | None = None
    acceptance_criteria: str | None = None
    reproduction_steps: str | None = None
    system_info: str | None = None
    tags: str | None = None

    story_points: float | None = None
    effort: float | None = None
    original_estimate: float | None = None
    remaining_work: float | None = None
    completed_work: float | None = None
    activity: str | None = None

    priority: int | None = None
    severity: str | None = None
    risk: str | None = None
    business_value: float | None = None
    time_criticality: float | None = None

    found_in: str | None = None
    integrated_in: str | None = None

    parent: int | None = None

    links: list[WorkItemLink] | None = None
    fields: dict[str, Any] = Field(default_factory=dict)
    rev: int | None = None
    api_links: dict[str, Any] | None = None

    def field(self, reference_name: str, default: Any = None) -> Any:
        """Raw value of any field, e.g. item.field("Custom.Team")."""
        return self.fields.get(reference_name, default)

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> WorkItem:
        """Map a REST work item payload."""
        fields = item.get("fields") or {}
        links = (item.get("_links") or {}).get("html") or {}
        relations = item.get("relations")

        values: dict[str, Any] = {
            name: fields.get(reference) for name, reference in _FIELD_MAP.items()
        }
        values.update(
            {name: _identity_name(fields.get(reference)) for name, reference in _IDENTITY_FIELDS.items()}
        )

        data = {
            "id": item.get("id") or 0,
            "title": fields.get(TITLE) or "",
            "work_item_type": fields.get(WORK_ITEM_TYPE) or "",
            "state": fields.get(STATE) or "",
            "url": links.get("href") or "",
            **values,
            "links": (
                [
                    WorkItemLink(
                        rel=rel.get("rel") or "",
                        url=rel.get("url") or "",
                        attributes=rel.get("attributes"),
                    )
                    for rel in relations
                ]
                if relations is not None
                else None
            ),
            "fields": fields,
            "rev": item.get("rev"),
            "api_links": item.get("_links"),
        }

        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            # A process template may store an unexpected type in a well-known
            # field; the raw value stays reachable through `fields`.
            for error in e.errors():
                name = error["loc"][0] if error["loc"] else None
                if name in values:
                    data[name] = None
            return cls.model_validate(data)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class WorkItemComment(BaseModel):
    id: int
    text: str = ""
    created_by: IdentityRef = Field(default_factory=IdentityRef)
    created_date: str | None = None
    modified_by: IdentityRef | None = None
    modified_date: str | None = None
    url: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> WorkItemComment:
        modified_by = data.get("modifiedBy")
        return cls(
            id=data.get("id", 0),
            text=data.get("text") or "",
            created_by=IdentityRef.from_api(data.get("createdBy")),
            created_date=data.get("createdDate"),
            modified_by=IdentityRef.from_api(modified_by) if modified_by else None,
            modified_date=data.get("modifiedDate"),
            url=data.get("url") or "",
        )


class WorkItemUpdate(BaseModel):
    """One revision of a work item, with old/new values of the changed fields."""

    id: int
    rev: int | None = None
    revised_by: IdentityRef = Field(default_factory=IdentityRef)
    revised_date: str | None = None
    fields: dict[str, Any] | None = None
    relations: dict[str, Any] | None = None
    url: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> WorkItemUpdate:
        return cls(
            id=data.get("id", 0),
            rev=data.get("rev"),
            revised_by=IdentityRef.from_api(data.get("revisedBy")),
            revised_date=data.get("revisedDate"),
            fields=data.get("fields"),
            relations=data.get("relations"),
            url=data.get("url") or "",
        )


class WorkItemHistory(BaseModel):
    work_item_id: int
    updates: list[WorkItemUpdate] = Field(default_factory=list)


class RelationEdge(BaseModel):
    """
    A source -> target row of a link query.

    Root rows of a tree query have no source.
    """

    source_id: int | None = None
    target_id: int | None = None
    rel: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RelationEdge:
        source = data.get("source") or {}
        target = data.get("target") or {}
        return cls(source_id=source.get("id"), target_id=target.get("id"), rel=data.get("rel"))
