"""Tests for mapping REST payloads to domain records."""

from ado_tools.client import (
    IdentityRef,
    Project,
    RelationEdge,
    WorkItem,
    WorkItemComment,
    WorkItemUpdate,
)

FULL_WORK_ITEM = {
    "id": 42,
    "rev": 7,
    "fields": {
        "System.Title": "Login fails on Safari",
        "System.WorkItemType": "Bug",
        "System.State": "Active",
        "System.AssignedTo": {"displayName": "Ada Lovelace", "uniqueName": "ada@contoso.com"},
        "System.CreatedBy": {"displayName": "Grace Hopper"},
        "System.ChangedBy": "Alan Turing <alan@contoso.com>",
        "System.CreatedDate": "2025-01-02T03:04:05Z",
        "System.AreaPath": "Fabrikam\\Web",
        "System.IterationPath": "Fabrikam\\Sprint 4",
        "System.TeamProject": "Fabrikam",
        "System.Tags": "safari; login",
        "System.Parent": 40,
        "Microsoft.VSTS.Common.Priority": 1,
        "Microsoft.VSTS.Common.Severity": "2 - High",
        "Microsoft.VSTS.Scheduling.StoryPoints": 3,
        "Microsoft.VSTS.TCM.ReproSteps": "<div>Open Safari</div>",
        "Custom.Customer": "Northwind",
    },
    "relations": [
        {
            "rel": "System.LinkTypes.Hierarchy-Reverse",
            "url": "https://dev.azure.com/fabrikam/_apis/wit/workItems/40",
            "attributes": {"isLocked": False, "name": "Parent"},
        }
    ],
    "_links": {"html": {"href": "https://dev.azure.com/fabrikam/_workitems/edit/42"}},
}


class TestWorkItemMapping:
    def test_well_known_fields(self):
        item = WorkItem.from_api(FULL_WORK_ITEM)

        assert item.id == 42
        assert item.rev == 7
        assert item.title == "Login fails on Safari"
        assert item.work_item_type == "Bug"
        assert item.state == "Active"
        assert item.url == "https://dev.azure.com/fabrikam/_workitems/edit/42"
        assert item.area_path == "Fabrikam\\Web"
        assert item.iteration_path == "Fabrikam\\Sprint 4"
        assert item.priority == 1
        assert item.severity == "2 - High"
        assert item.story_points == 3
        assert item.reproduction_steps == "<div>Open Safari</div>"
        assert item.parent == 40

    def test_identity_fields(self):
        item = WorkItem.from_api(FULL_WORK_ITEM)
        assert item.assigned_to == "Ada Lovelace"
        assert item.created_by == "Grace Hopper"
        assert item.changed_by == "Alan Turing <alan@contoso.com>"

    def test_raw_fields_are_kept(self):
        item = WorkItem.from_api(FULL_WORK_ITEM)
        assert item.field("Custom.Customer") == "Northwind"
        assert item.field("Custom.Missing", "n/a") == "n/a"
        assert item.fields["System.Title"] == "Login fails on Safari"

    def test_links(self):
        item = WorkItem.from_api(FULL_WORK_ITEM)
        assert len(item.links) == 1
        assert item.links[0].rel == "System.LinkTypes.Hierarchy-Reverse"
        assert item.links[0].attributes == {"isLocked": False, "name": "Parent"}

    def test_minimal_payload(self):
        item = WorkItem.from_api({"id": 1})

        assert item.id == 1
        assert item.title == ""
        assert item.work_item_type == ""
        assert item.state == ""
        assert item.url == ""
        assert item.assigned_to is None
        assert item.priority is None
        assert item.links is None
        assert item.fields == {}

    def test_empty_payload(self):
        item = WorkItem.from_api({})
        assert item.id == 0
        assert item.title == ""

    def test_unexpected_field_type_does_not_fail(self):
        item = WorkItem.from_api(
            {"id": 3, "fields": {"Microsoft.VSTS.Common.Priority": {"odd": "shape"}, "System.Title": "T"}}
        )
        assert item.priority is None
        assert item.title == "T"
        assert item.field("Microsoft.VSTS.Common.Priority") == {"odd": "shape"}

    def test_to_dict_omits_missing_values(self):
        data = WorkItem.from_api({"id": 1, "fields": {"System.Title": "T"}}).to_dict()
        assert data["id"] == 1
        assert data["title"] == "T"
        assert "priority" not in data


class TestOtherRecords:
    def test_project(self):
        project = Project.from_api(
            {"id": "p1", "name": "Fabrikam", "state": "wellFormed", "url": "https://x/p1"}
        )
        assert project.name == "Fabrikam"
        assert project.description is None

    def test_identity_ref_defaults(self):
        assert IdentityRef.from_api(None) == IdentityRef(display_name="", unique_name="", id="")

    def test_comment(self):
        comment = WorkItemComment.from_api(
            {
                "id": 9,
                "text": "Looks good",
                "createdBy": {"displayName": "Ada", "uniqueName": "ada@contoso.com", "id": "u1"},
                "createdDate": "2025-01-02T03:04:05Z",
                "url": "https://x/comments/9",
            }
        )
        assert comment.created_by.display_name == "Ada"
        assert comment.modified_by is None

    def test_comment_with_modification(self):
        comment = WorkItemComment.from_api({"id": 9, "text": "x", "modifiedBy": {"displayName": "Grace"}})
        assert comment.modified_by.display_name == "Grace"
        assert comment.modified_by.id == ""

    def test_update(self):
        update = WorkItemUpdate.from_api(
            {
                "id": 2,
                "rev": 2,
                "revisedBy": {"displayName": "Ada"},
                "revisedDate": "2025-01-02T03:04:05Z",
                "fields": {"System.State": {"oldValue": "New", "newValue": "Active"}},
            }
        )
        assert update.revised_by.display_name == "Ada"
        assert update.fields["System.State"]["newValue"] == "Active"
        assert update.relations is None

    def test_relation_edge(self):
        edge = RelationEdge.from_api(
            {"rel": "System.LinkTypes.Hierarchy-Forward", "source": {"id": 1}, "target": {"id": 2}}
        )
        assert (edge.source_id, edge.target_id) == (1, 2)

    def test_root_relation_edge(self):
        edge = RelationEdge.from_api({"rel": None, "source": None, "target": {"id": 1}})
        assert edge.source_id is None
        assert edge.target_id == 1
