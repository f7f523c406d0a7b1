from datetime import datetime, timedelta

from tasks_api.models import utcnow
from tasks_api.repositories import InMemoryRepository, get_repository
from tasks_api.main import app

BASE = "/api/v1/tasks"


def create_task_payload(
    title="Test Task",
    description="Do something",
    priority=None,
    due_date=None,
    **extra,
):
    payload = {"title": title, "description": description}
    if priority is not None:
        payload["priority"] = priority
    if due_date is not None:
        payload["dueDate"] = due_date
    payload.update(extra)
    return payload


def create_task(client, **kwargs):
    res = client.post(f"{BASE}/", json=create_task_payload(**kwargs))
    assert res.status_code == 201, res.text
    return res.json()["data"]


def assert_task_shape(task: dict):
    for key in [
        "id",
        "title",
        "status",
        "priority",
        "isCompleted",
        "completedAt",
        "tags",
        "comments",
        "attachments",
        "history",
        "createdAt",
        "updatedAt",
        "isOverdue",
        "progressPercentage",
        "timeRemaining",
    ]:
        assert key in task
    assert isinstance(task["id"], str)
    assert isinstance(task["isCompleted"], bool)
    datetime.fromisoformat(task["createdAt"].replace("Z", "+00:00"))
    datetime.fromisoformat(task["updatedAt"].replace("Z", "+00:00"))


class TestHealth:
    def test_health_check(self, client):
        res = client.get("/")
        assert res.status_code == 200
        data = res.json()
        assert data["status"] == "success"
        assert data["backend"] in ("memory", "sqlite")

    def test_request_id_is_echoed(self, client):
        res = client.get("/", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert client.get("/").headers["X-Request-ID"]


class TestTasksCRUD:
    def test_create_task_defaults(self, client):
        res = client.post(f"{BASE}/", json={"title": "  Buy milk  "})
        assert res.status_code == 201
        body = res.json()
        assert body["status"] == "success"
        assert body["message"] == "Task created successfully"
        task = body["data"]
        assert_task_shape(task)
        assert task["title"] == "Buy milk"
        assert task["status"] == "pending"
        assert task["priority"] == "medium"
        assert task["isCompleted"] is False
        assert task["completedAt"] is None
        assert task["isOverdue"] is False
        assert task["progressPercentage"] == 0
        assert task["timeRemaining"] is None

    def test_create_with_due_date_reports_time_remaining(self, client, future):
        task = create_task(client, title="Pay bills", due_date=future.isoformat())
        assert task["timeRemaining"] > 0
        assert task["isOverdue"] is False

    def test_create_completed_sets_completed_at(self, client):
        task = create_task(client, title="Already done", isCompleted=True)
        assert task["completedAt"] is not None
        assert task["progressPercentage"] == 100

    def test_get_task_and_not_found(self, client):
        task = create_task(client, title="Read book")
        res_get = client.get(f"{BASE}/{task['id']}")
        assert res_get.status_code == 200
        assert res_get.json()["data"]["title"] == "Read book"

        res_404 = client.get(f"{BASE}/doesnotexist")
        assert res_404.status_code == 404
        assert res_404.json() == {"status": "error", "message": "Task not found"}

    def test_patch_partial_update_records_history(self, client):
        task = create_task(client, title="Partial", description="X")
        res = client.patch(f"{BASE}/{task['id']}", json={"title": "Partial Updated", "priority": "high"})
        assert res.status_code == 200
        patched = res.json()["data"]
        assert patched["title"] == "Partial Updated"
        assert patched["priority"] == "high"
        assert patched["description"] == "X"
        fields = {h["field"] for h in patched["history"]}
        assert fields == {"title", "priority"}
        title_change = next(h for h in patched["history"] if h["field"] == "title")
        assert title_change["oldValue"] == "Partial"
        assert title_change["newValue"] == "Partial Updated"
        assert title_change["changedBy"] == "system"

    def test_put_uses_partial_semantics(self, client):
        task = create_task(client, title="Initial", description="A")
        res = client.put(f"{BASE}/{task['id']}", json={"status": "in-progress"})
        assert res.status_code == 200
        updated = res.json()["data"]
        assert updated["title"] == "Initial"
        assert updated["status"] == "in-progress"
        assert updated["progressPercentage"] == 50

    def test_completion_toggle_sets_and_clears_completed_at(self, client):
        task = create_task(client, title="Toggle")
        done = client.patch(f"{BASE}/{task['id']}", json={"isCompleted": True}).json()["data"]
        assert done["completedAt"] is not None
        assert {"isCompleted", "completedAt"} <= {h["field"] for h in done["history"]}

        reopened = client.patch(f"{BASE}/{task['id']}", json={"isCompleted": False}).json()["data"]
        assert reopened["completedAt"] is None
        assert reopened["isCompleted"] is False

    def test_update_not_found(self, client):
        res = client.patch(f"{BASE}/missing", json={"title": "Nope"})
        assert res.status_code == 404
        assert res.json()["message"] == "Task not found"

    def test_update_rejects_self_dependency(self, client):
        task = create_task(client, title="Loop")
        res = client.patch(f"{BASE}/{task['id']}", json={"dependencies": [task["id"]]})
        assert res.status_code == 400
        body = res.json()
        assert body["message"] == "Validation failed"
        assert body["errors"][0]["field"] == "dependencies"

    def test_complete_task(self, client):
        task = create_task(client, title="Finish me")
        res = client.patch(f"{BASE}/{task['id']}/complete")
        assert res.status_code == 200
        body = res.json()
        assert body["message"] == "Task marked as completed"
        assert body["data"]["isCompleted"] is True
        assert body["data"]["status"] == "completed"
        assert body["data"]["completedAt"] is not None

        assert client.patch(f"{BASE}/missing/complete").status_code == 404

    def test_delete_task(self, client):
        task = create_task(client, title="ToDelete")
        res_del = client.delete(f"{BASE}/{task['id']}")
        assert res_del.status_code == 200
        assert res_del.json()["message"] == "Task deleted successfully"

        assert client.get(f"{BASE}/{task['id']}").status_code == 404
        res_again = client.delete(f"{BASE}/{task['id']}")
        assert res_again.status_code == 404


class TestCommentsAndAttachments:
    def test_add_comment(self, client):
        task = create_task(client, title="Discuss")
        res = client.post(f"{BASE}/{task['id']}/comments", json={"content": "Looks good", "author": "Ann"})
        assert res.status_code == 200
        data = res.json()["data"]
        assert len(data["comments"]) == 1
        assert data["comments"][0]["content"] == "Looks good"
        assert data["comments"][0]["author"] == "Ann"
        assert data["history"] == []

    def test_add_comment_requires_author(self, client):
        task = create_task(client, title="Discuss")
        res = client.post(f"{BASE}/{task['id']}/comments", json={"content": "Hi"})
        assert res.status_code == 400
        assert res.json()["errors"][0]["field"] == "author"

    def test_add_comment_missing_task(self, client):
        res = client.post(f"{BASE}/missing/comments", json={"content": "Hi", "author": "Ann"})
        assert res.status_code == 404

    def test_add_attachment(self, client):
        task = create_task(client, title="Spec")
        payload = {
            "filename": "spec-1.pdf",
            "originalName": "Spec.pdf",
            "mimeType": "application/pdf",
            "size": 1024,
            "url": "https://files.example.com/spec-1.pdf",
        }
        res = client.post(f"{BASE}/{task['id']}/attachments", json=payload)
        assert res.status_code == 200
        attachment = res.json()["data"]["attachments"][0]
        assert attachment["originalName"] == "Spec.pdf"
        assert attachment["url"] == "https://files.example.com/spec-1.pdf"
        assert attachment["uploadedAt"]

    def test_add_attachment_rejects_bad_size(self, client):
        task = create_task(client, title="Spec")
        payload = {
            "filename": "a",
            "originalName": "a",
            "mimeType": "text/plain",
            "size": 0,
            "url": "https://files.example.com/a",
        }
        res = client.post(f"{BASE}/{task['id']}/attachments", json=payload)
        assert res.status_code == 400


class TestListPaginationFilteringSorting:
    def test_pagination_summary(self, client, repo):
        repo.create_many([{"title": f"Task {i}"} for i in range(25)])

        page3 = client.get(f"{BASE}/?page=3&limit=10").json()
        assert page3["results"] == 5
        assert page3["pagination"] == {
            "currentPage": 3,
            "totalPages": 3,
            "totalItems": 25,
            "hasNextPage": False,
            "hasPrevPage": True,
        }

        page1 = client.get(f"{BASE}/?limit=10").json()
        assert page1["results"] == 10
        assert page1["pagination"]["hasPrevPage"] is False
        assert page1["pagination"]["hasNextPage"] is True

    def test_page_past_the_end_is_empty(self, client, repo):
        repo.create_many([{"title": f"Task {i}"} for i in range(3)])
        res = client.get(f"{BASE}/?page=5&limit=2")
        assert res.status_code == 200
        body = res.json()
        assert body["data"] == []
        assert body["pagination"]["totalPages"] == 2
        assert body["pagination"]["hasNextPage"] is False

    def test_empty_collection(self, client):
        body = client.get(f"{BASE}/").json()
        assert body["results"] == 0
        assert body["pagination"] == {
            "currentPage": 1,
            "totalPages": 0,
            "totalItems": 0,
            "hasNextPage": False,
            "hasPrevPage": False,
        }

    def test_filter_by_priority_and_sort_by_priority(self, client):
        for priority in ("high", "medium", "low"):
            create_task(client, title=f"{priority} task", priority=priority)

        high = client.get(f"{BASE}/?priority=high").json()
        assert high["results"] == 1
        assert high["data"][0]["priority"] == "high"

        ordered = client.get(f"{BASE}/?sortBy=priority&sortOrder=desc").json()
        # Priorities compare as strings, not by severity.
        assert [t["priority"] for t in ordered["data"]] == ["medium", "low", "high"]

        ascending = client.get(f"{BASE}/?sortBy=priority").json()
        assert [t["priority"] for t in ascending["data"]] == ["high", "low", "medium"]

    def test_default_sort_is_newest_first(self, client):
        for i in range(5):
            create_task(client, title=f"Task {i}")
        items = client.get(f"{BASE}/").json()["data"]
        created = [datetime.fromisoformat(t["createdAt"].replace("Z", "+00:00")) for t in items]
        assert created == sorted(created, reverse=True)

    def test_combined_filters(self, client):
        create_task(client, title="Auth", category="Development", priority="high", tags=["security"])
        create_task(client, title="Docs", category="Documentation", priority="high", tags=["docs"])
        create_task(client, title="Schema", category="Development", priority="low", tags=["db"])

        res = client.get(f"{BASE}/?category=Development&priority=high&limit=5").json()
        assert [t["title"] for t in res["data"]] == ["Auth"]

    def test_search_is_case_insensitive_across_fields(self, client):
        create_task(client, title="Write docs", assignee="Alice Johnson")
        create_task(client, title="Deploy", project="Alice's Platform")
        create_task(client, title="Review", reporter="alice")

        res = client.get(f"{BASE}/?search=ALICE").json()
        assert sorted(t["title"] for t in res["data"]) == ["Deploy", "Write docs"]

    def test_tags_filter_matches_any(self, client):
        create_task(client, title="A", tags=["a", "c"])
        create_task(client, title="B", tags=["b"])
        create_task(client, title="D", tags=["d"])

        res = client.get(f"{BASE}/?tags=a,b").json()
        assert sorted(t["title"] for t in res["data"]) == ["A", "B"]

        # Blank tag lists add no constraint.
        assert client.get(f"{BASE}/?tags=,").json()["results"] == 3

    def test_boolean_filters(self, client):
        create_task(client, title="Open")
        create_task(client, title="Closed", isCompleted=True)
        create_task(client, title="Tmpl", isTemplate=True)

        done = client.get(f"{BASE}/?isCompleted=true").json()["data"]
        assert [t["title"] for t in done] == ["Closed"]
        templates = client.get(f"{BASE}/?isTemplate=true").json()["data"]
        assert [t["title"] for t in templates] == ["Tmpl"]
        not_templates = client.get(f"{BASE}/?isTemplate=false").json()
        assert not_templates["results"] == 2

    def test_overdue_filter_and_completion(self, client, repo, past, future):
        late = repo.create({"title": "Late", "due_date": past})
        repo.create({"title": "Late but done", "due_date": past, "is_completed": True})
        repo.create({"title": "Upcoming", "due_date": future})
        repo.create({"title": "No due date"})

        res = client.get(f"{BASE}/?overdue=true").json()
        assert [t["title"] for t in res["data"]] == ["Late"]
        assert res["data"][0]["isOverdue"] is True
        assert res["data"][0]["timeRemaining"] == 0

        assert client.get(f"{BASE}/?overdue=false").json()["results"] == 4

        client.patch(f"{BASE}/{late['id']}/complete")
        assert client.get(f"{BASE}/?overdue=true").json()["results"] == 0

    def test_invalid_query_params(self, client):
        for query in ("limit=101", "limit=0", "page=0", "sortBy=secret", "sortOrder=up", "status=done"):
            res = client.get(f"{BASE}/?{query}")
            assert res.status_code == 400, query
            assert res.json()["message"] == "Validation failed"


class TestStats:
    def test_empty_stats(self, client):
        body = client.get(f"{BASE}/stats").json()
        assert body["status"] == "success"
        assert body["data"]["overview"] == {
            "totalTasks": 0,
            "completedTasks": 0,
            "pendingTasks": 0,
            "inProgressTasks": 0,
            "overdueTasks": 0,
            "totalEstimatedHours": 0,
            "totalActualHours": 0,
        }
        assert body["data"]["priorityBreakdown"] == []

    def test_overview_and_breakdowns(self, client, repo, past, future):
        repo.create({"title": "a", "priority": "high", "category": "Dev", "estimated_hours": 8, "actual_hours": 2})
        repo.create({"title": "b", "priority": "high", "category": "Dev", "status": "in-progress"})
        repo.create({"title": "c", "priority": "low", "category": "Docs", "is_completed": True, "estimated_hours": 4})
        repo.create({"title": "d", "project": "Site", "due_date": future})
        repo.create({"title": "e", "due_date": past})

        data = client.get(f"{BASE}/stats").json()["data"]
        overview = data["overview"]
        assert overview["totalTasks"] == 5
        assert overview["completedTasks"] == 1
        assert overview["pendingTasks"] == 4
        assert overview["inProgressTasks"] == 1
        assert overview["totalEstimatedHours"] == 12
        assert overview["totalActualHours"] == 2
        # Counts open tasks whose due date is still ahead.
        assert overview["overdueTasks"] == 1

        priorities = {row["_id"]: row["count"] for row in data["priorityBreakdown"]}
        assert priorities == {"high": 2, "low": 1, "medium": 2}
        assert sum(priorities.values()) == overview["totalTasks"]

        assert data["categoryBreakdown"][0] == {"_id": "Dev", "count": 2}
        assert data["projectBreakdown"] == [{"_id": "Site", "count": 1}]

    def test_breakdowns_keep_top_ten(self, client, repo):
        rows = []
        for i in range(12):
            rows.extend({"title": f"t{i}-{n}", "category": f"cat{i}"} for n in range(i + 1))
        repo.create_many(rows)

        categories = client.get(f"{BASE}/stats").json()["data"]["categoryBreakdown"]
        assert len(categories) == 10
        counts = [row["count"] for row in categories]
        assert counts == sorted(counts, reverse=True)
        assert categories[0] == {"_id": "cat11", "count": 12}


class TestAdvancedSearch:
    def test_search_by_query_and_status(self, client):
        create_task(client, title="Implement user authentication", tags=["authentication"])
        create_task(client, title="Authentication docs", status="completed")
        res = client.get(f"{BASE}/search?query=authentication&status=pending").json()
        assert res["results"] == 1
        assert res["data"][0]["title"] == "Implement user authentication"

    def test_has_comments_and_attachments(self, client):
        talked = create_task(client, title="Talked about", category="Development")
        create_task(client, title="Quiet", category="Development")
        client.post(f"{BASE}/{talked['id']}/comments", json={"content": "Hi", "author": "Bob"})

        res = client.get(f"{BASE}/search?hasComments=true&category=Development").json()
        assert [t["title"] for t in res["data"]] == ["Talked about"]
        assert client.get(f"{BASE}/search?hasAttachments=true").json()["results"] == 0
        assert client.get(f"{BASE}/search?hasComments=false").json()["results"] == 2

    def test_date_range(self, client):
        create_task(client, title="Now")
        tomorrow = (utcnow() + timedelta(days=1)).date().isoformat()
        yesterday = (utcnow() - timedelta(days=1)).date().isoformat()

        assert client.get(f"{BASE}/search?dateFrom={tomorrow}").json()["results"] == 0
        assert client.get(f"{BASE}/search?dateFrom={yesterday}&dateTo={tomorrow}").json()["results"] == 1

    def test_invalid_date(self, client):
        res = client.get(f"{BASE}/search?dateFrom=not-a-date")
        assert res.status_code == 400
        body = res.json()
        assert body["errors"][0]["field"] == "dateFrom"
        assert body["errors"][0]["value"] == "not-a-date"


class TestExport:
    def test_export_json_omits_history(self, client):
        task = create_task(client, title="Exported", priority="high")
        client.patch(f"{BASE}/{task['id']}", json={"title": "Exported again"})
        create_task(client, title="Other", priority="low")

        res = client.get(f"{BASE}/export?priority=high")
        assert res.status_code == 200
        body = res.json()
        assert body["results"] == 1
        assert "history" not in body["data"][0]
        assert body["data"][0]["title"] == "Exported again"

    def test_export_csv(self, client):
        create_task(client, title='Say "hi"', category="Dev")
        res = client.get(f"{BASE}/export?format=csv")
        assert res.status_code == 200
        assert res.headers["content-type"].startswith("text/csv")
        assert "attachment" in res.headers["content-disposition"]

        lines = res.text.strip().split("\n")
        assert lines[0] == (
            '"id","title","description","status","priority","category","project",'
            '"dueDate","assignee","reporter","isCompleted","createdAt","updatedAt"'
        )
        assert len(lines) == 2
        assert '"Say ""hi"""' in lines[1]
        assert '"Dev"' in lines[1]
        assert '"false"' in lines[1]

    def test_export_csv_empty(self, client):
        res = client.get(f"{BASE}/export?format=csv")
        assert res.text.strip().startswith('"id","title"')


class TestTemplates:
    def test_template_lifecycle(self, client):
        res = client.post(
            f"{BASE}/templates",
            json={
                "title": "Bug Fix Template",
                "description": "Standard template for bug fixes",
                "category": "Bug Fix",
                "estimatedHours": 4,
                "tags": ["bug", "fix"],
                "templateName": "Standard Bug Fix",
            },
        )
        assert res.status_code == 201
        template = res.json()["data"]
        assert template["isTemplate"] is True

        listed = client.get(f"{BASE}/templates").json()
        assert listed["results"] == 1
        for hidden in ("history", "comments", "attachments"):
            assert hidden not in listed["data"][0]

        res_task = client.post(
            f"{BASE}/from-template",
            json={"templateId": template["id"], "customizations": {"title": "Fix login bug", "tags": []}},
        )
        assert res_task.status_code == 201
        task = res_task.json()["data"]
        assert task["title"] == "Fix login bug"
        assert task["category"] == "Bug Fix"
        assert task["estimatedHours"] == 4
        assert task["tags"] == ["bug", "fix"]
        assert task["isTemplate"] is False

    def test_from_template_not_found(self, client):
        plain = create_task(client, title="Not a template")
        for template_id in ("missing", plain["id"]):
            res = client.post(f"{BASE}/from-template", json={"templateId": template_id})
            assert res.status_code == 404
            assert res.json()["message"] == "Template not found"

    def test_from_template_rechecks_due_date(self, client, repo, past):
        template = repo.create({"title": "Stale template", "is_template": True, "due_date": past})
        res = client.post(
            f"{BASE}/from-template", json={"templateId": template["id"], "customizations": {}}
        )
        assert res.status_code == 400
        body = res.json()
        assert body["message"] == "Validation failed"
        assert body["errors"][0]["field"] == "dueDate"
        assert "Due date cannot be in the past" in body["errors"][0]["message"]
        assert repo.count() == 1

    def test_customized_due_date_replaces_stale_one(self, client, repo, past, future):
        template = repo.create({"title": "Stale template", "is_template": True, "due_date": past})
        res = client.post(
            f"{BASE}/from-template",
            json={"templateId": template["id"], "customizations": {"dueDate": future.isoformat()}},
        )
        assert res.status_code == 201
        task = res.json()["data"]
        assert task["isOverdue"] is False
        assert task["title"] == "Stale template"


class TestDependencies:
    def test_dependencies_are_expanded_on_reads(self, client):
        blocker = create_task(client, title="Blocker")
        blocked = create_task(client, title="Blocked", dependencies=[blocker["id"]])
        expected = [
            {"id": blocker["id"], "title": "Blocker", "status": "pending", "isCompleted": False}
        ]
        assert blocked["dependencies"] == expected

        fetched = client.get(f"{BASE}/{blocked['id']}").json()["data"]
        assert fetched["dependencies"] == expected

        listed = client.get(f"{BASE}/?search=Blocked").json()["data"]
        assert listed[0]["dependencies"] == expected

    def test_expanded_dependency_reflects_current_state(self, client):
        blocker = create_task(client, title="Blocker")
        blocked = create_task(client, title="Blocked", dependencies=[blocker["id"]])
        client.patch(f"{BASE}/{blocker['id']}/complete")

        updated = client.patch(f"{BASE}/{blocked['id']}", json={"priority": "high"}).json()["data"]
        assert updated["dependencies"][0]["status"] == "completed"
        assert updated["dependencies"][0]["isCompleted"] is True

    def test_missing_dependencies_are_dropped(self, client):
        kept = create_task(client, title="Kept")
        gone = create_task(client, title="Gone")
        blocked = create_task(client, title="Blocked", dependencies=[gone["id"], kept["id"]])
        client.delete(f"{BASE}/{gone['id']}")

        fetched = client.get(f"{BASE}/{blocked['id']}").json()["data"]
        assert [d["id"] for d in fetched["dependencies"]] == [kept["id"]]

    def test_unknown_dependency_ids_render_empty(self, client):
        task = create_task(client, title="Dangling", dependencies=["no-such-task"])
        assert task["dependencies"] == []


class TestBulkOperations:
    def test_bulk_create_update_delete(self, client):
        res = client.post(f"{BASE}/bulk", json={"tasks": [{"title": "One"}, {"title": "Two"}]})
        assert res.status_code == 201
        body = res.json()
        assert body["message"] == "2 tasks created successfully"
        ids = [t["id"] for t in body["data"]]

        res_update = client.patch(
            f"{BASE}/bulk", json={"taskIds": ids + ["missing"], "updates": {"priority": "urgent"}}
        )
        assert res_update.status_code == 200
        assert res_update.json()["data"] == {"matchedCount": 2, "modifiedCount": 2}

        again = client.patch(f"{BASE}/bulk", json={"taskIds": ids, "updates": {"priority": "urgent"}})
        assert again.json()["data"] == {"matchedCount": 2, "modifiedCount": 0}

        res_delete = client.request("DELETE", f"{BASE}/bulk", json={"taskIds": [ids[0], "missing"]})
        assert res_delete.status_code == 200
        assert res_delete.json()["data"] == {"deletedCount": 1}
        assert client.get(f"{BASE}/").json()["results"] == 1

    def test_bulk_requires_items(self, client):
        assert client.post(f"{BASE}/bulk", json={"tasks": []}).status_code == 400
        assert client.patch(f"{BASE}/bulk", json={"taskIds": [], "updates": {}}).status_code == 400
        assert client.request("DELETE", f"{BASE}/bulk", json={"taskIds": []}).status_code == 400

    def test_bulk_create_validates_every_task(self, client):
        res = client.post(f"{BASE}/bulk", json={"tasks": [{"title": "Ok"}, {"title": ""}]})
        assert res.status_code == 400
        assert client.get(f"{BASE}/").json()["results"] == 0


class TestValidationErrors:
    def test_create_validation_error_title_empty(self, client):
        res = client.post(f"{BASE}/", json={"title": "  ", "description": "x"})
        assert res.status_code == 400
        body = res.json()
        assert body["status"] == "error"
        assert body["message"] == "Validation failed"
        assert body["errors"][0]["field"] == "title"

    def test_due_date_in_past_rejected(self, client):
        res = client.post(f"{BASE}/", json={"title": "Late", "dueDate": "2000-01-01"})
        assert res.status_code == 400
        error = res.json()["errors"][0]
        assert error["field"] == "dueDate"
        assert "Due date cannot be in the past" in error["message"]

    def test_too_many_tags_rejected(self, client):
        res = client.post(f"{BASE}/", json={"title": "Tagged", "tags": [str(i) for i in range(11)]})
        assert res.status_code == 400

    def test_patch_bad_due_date(self, client):
        task = create_task(client, title="Due date bad")
        res = client.patch(f"{BASE}/{task['id']}", json={"dueDate": "not-a-date"})
        assert res.status_code == 400
        assert res.json()["errors"][0]["field"] == "dueDate"


class BrokenRepository(InMemoryRepository):
    def find(self, *args, **kwargs):
        raise RuntimeError("disk on fire")

    def aggregate(self, pipeline):
        raise RuntimeError("aggregation exploded")


class TestStorageFailures:
    def setup_method(self):
        app.dependency_overrides[get_repository] = BrokenRepository

    def teardown_method(self):
        app.dependency_overrides.clear()

    def test_list_failure_is_reported(self):
        from fastapi.testclient import TestClient

        res = TestClient(app).get(f"{BASE}/")
        assert res.status_code == 500
        assert res.json() == {
            "status": "error",
            "message": "Failed to fetch tasks",
            "error": "disk on fire",
        }

    def test_stats_failure_is_single_error(self):
        from fastapi.testclient import TestClient

        res = TestClient(app).get(f"{BASE}/stats")
        assert res.status_code == 500
        body = res.json()
        assert body["message"] == "Failed to fetch task statistics"
        assert body["error"] == "aggregation exploded"
        assert "data" not in body
