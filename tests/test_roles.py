"""Role request workflow tests."""

import re
from unittest.mock import MagicMock, patch

import pytest
from mongomock.collection import Collection
from pymongo.errors import PyMongoError

from roles import RoleRequestConflict, RoleRequestNotFound, RoleWorkflow, generate_chef_id


@pytest.fixture
def workflow(db):
    db.users.insert_one({"name": "Ayesha", "email": "a@x.com", "role": "user"})
    return RoleWorkflow(db)


def test_submit_creates_pending_request(workflow, db):
    record = workflow.submit("a@x.com", "Ayesha", "chef")

    assert record["status"] == "pending"
    assert record["requestType"] == "chef"
    assert db.roleRequests.count_documents({}) == 1
    user = db.users.find_one({"email": "a@x.com"})
    assert user["pendingRequests"] == {"chef": "pending"}


def test_duplicate_pending_request_conflicts(workflow, db):
    workflow.submit("a@x.com", "Ayesha", "chef")

    with pytest.raises(RoleRequestConflict):
        workflow.submit("a@x.com", "Ayesha", "chef")

    assert db.roleRequests.count_documents({"userEmail": "a@x.com"}) == 1


def test_different_request_types_do_not_conflict(workflow, db):
    workflow.submit("a@x.com", "Ayesha", "chef")
    workflow.submit("a@x.com", "Ayesha", "admin")

    assert db.roleRequests.count_documents({"status": "pending"}) == 2


def test_resubmit_after_rejection(workflow, db):
    workflow.submit("a@x.com", "Ayesha", "chef")
    workflow.decide("a@x.com", "chef", "reject")

    record = workflow.submit("a@x.com", "Ayesha", "chef")

    assert record["status"] == "pending"
    assert db.roleRequests.count_documents({"userEmail": "a@x.com"}) == 2


def test_approve_chef_assigns_chef_id(workflow, db):
    workflow.submit("a@x.com", "Ayesha", "chef")

    outcome = workflow.decide("a@x.com", "chef", "approve")

    user = db.users.find_one({"email": "a@x.com"})
    assert user["role"] == "chef"
    assert re.fullmatch(r"chef-\d{4}", user["chefId"])
    assert outcome["chefId"] == user["chefId"]
    assert user["pendingRequests"]["chef"] == "approved"
    assert db.roleRequests.find_one({"userEmail": "a@x.com"})["status"] == "approved"


def test_approve_admin_sets_admin_role(workflow, db):
    workflow.submit("a@x.com", "Ayesha", "admin")

    outcome = workflow.decide("a@x.com", "admin", "approve")

    user = db.users.find_one({"email": "a@x.com"})
    assert user["role"] == "admin"
    assert "chefId" not in user
    assert outcome["role"] == "admin"


def test_reject_keeps_role(workflow, db):
    workflow.submit("a@x.com", "Ayesha", "chef")

    outcome = workflow.decide("a@x.com", "chef", "reject")

    user = db.users.find_one({"email": "a@x.com"})
    assert outcome["status"] == "rejected"
    assert user["role"] == "user"
    assert "chefId" not in user
    assert db.roleRequests.find_one({"userEmail": "a@x.com"})["status"] == "rejected"


def test_decision_is_applied_once(workflow):
    workflow.submit("a@x.com", "Ayesha", "chef")
    workflow.decide("a@x.com", "chef", "approve")

    with pytest.raises(RoleRequestNotFound):
        workflow.decide("a@x.com", "chef", "reject")


def test_stale_pending_read_does_not_touch_user(workflow, db):
    """A request decided after the pending read is not decided a second time."""
    workflow.submit("a@x.com", "Ayesha", "chef")
    stale = db.roleRequests.find_one({"userEmail": "a@x.com"})
    workflow.decide("a@x.com", "chef", "reject")

    cursor = MagicMock()
    cursor.sort.return_value.limit.return_value = [stale]
    original_find = Collection.find

    def stale_find(self, *args, **kwargs):
        if self.name == "roleRequests":
            return cursor
        return original_find(self, *args, **kwargs)

    with patch.object(Collection, "find", stale_find):
        with pytest.raises(RoleRequestNotFound):
            workflow.decide("a@x.com", "chef", "approve")

    user = db.users.find_one({"email": "a@x.com"})
    assert db.roleRequests.find_one({"userEmail": "a@x.com"})["status"] == "rejected"
    assert user["role"] == "user"
    assert "chefId" not in user
    assert user["pendingRequests"]["chef"] == "rejected"


def test_unknown_action_changes_nothing(workflow, db):
    workflow.submit("a@x.com", "Ayesha", "chef")

    with pytest.raises(ValueError):
        workflow.decide("a@x.com", "chef", "escalate")

    assert db.roleRequests.find_one({"userEmail": "a@x.com"})["status"] == "pending"
    assert db.users.find_one({"email": "a@x.com"})["role"] == "user"


def test_user_write_failure_leaves_request_approved(workflow, db):
    """Approval is two separate writes; a failed user write is not rolled back."""
    workflow.submit("a@x.com", "Ayesha", "chef")
    original_update_one = Collection.update_one

    def failing_user_write(self, filter, update, *args, **kwargs):
        if self.name == "users":
            raise PyMongoError("connection reset")
        return original_update_one(self, filter, update, *args, **kwargs)

    with patch.object(Collection, "update_one", failing_user_write):
        with pytest.raises(PyMongoError):
            workflow.decide("a@x.com", "chef", "approve")

    assert db.roleRequests.find_one({"userEmail": "a@x.com"})["status"] == "approved"
    assert db.users.find_one({"email": "a@x.com"})["role"] == "user"


def test_generate_chef_id_range():
    for _ in range(50):
        number = int(generate_chef_id().removeprefix("chef-"))
        assert 1000 <= number <= 9999


# ===================== HTTP flow =====================

def test_role_request_end_to_end(client, login, db):
    login("a@x.com")
    response = client.post(
        "/role-requests",
        json={"userName": "Ayesha", "userEmail": "a@x.com", "requestType": "chef"},
    )
    assert response.status_code == 200
    assert response.json()["success"] is True

    login("admin@x.com", role="admin")
    response = client.get("/role-requests")
    assert response.status_code == 200
    requests = response.json()["data"]
    assert len(requests) == 1
    assert requests[0]["status"] == "pending"

    response = client.patch(
        "/role-requests",
        json={"userEmail": "a@x.com", "requestType": "chef", "action": "approve"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "approved"

    user = db.users.find_one({"email": "a@x.com"})
    assert user["role"] == "chef"
    assert re.fullmatch(r"chef-\d{4}", user["chefId"])
    assert db.roleRequests.find_one({"userEmail": "a@x.com"})["status"] == "approved"


def test_duplicate_role_request_returns_conflict(client, login, db):
    login("a@x.com")
    body = {"userName": "Ayesha", "userEmail": "a@x.com", "requestType": "chef"}
    client.post("/role-requests", json=body)

    response = client.post("/role-requests", json=body)

    assert response.status_code == 409
    assert response.json()["success"] is False
    assert db.roleRequests.count_documents({}) == 1


def test_role_request_for_someone_else_forbidden(client, login):
    login("a@x.com")
    response = client.post(
        "/role-requests",
        json={"userName": "Bo", "userEmail": "b@x.com", "requestType": "admin"},
    )
    assert response.status_code == 403


def test_decide_requires_admin(client, login):
    login("a@x.com")
    response = client.patch(
        "/role-requests",
        json={"userEmail": "a@x.com", "requestType": "chef", "action": "approve"},
    )
    assert response.status_code == 403


def test_decide_rejects_unknown_action(client, login):
    login("admin@x.com", role="admin")
    response = client.patch(
        "/role-requests",
        json={"userEmail": "a@x.com", "requestType": "chef", "action": "maybe"},
    )
    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert "action" in body["message"]


def test_decide_without_pending_request(client, login):
    login("admin@x.com", role="admin")
    response = client.patch(
        "/role-requests",
        json={"userEmail": "a@x.com", "requestType": "chef", "action": "approve"},
    )
    assert response.status_code == 404


def test_list_role_requests_filtered_by_status(client, login, db):
    workflow = RoleWorkflow(db)
    workflow.submit("a@x.com", "Ayesha", "chef")
    workflow.submit("b@x.com", "Bo", "chef")
    workflow.decide("b@x.com", "chef", "reject")

    login("admin@x.com", role="admin")
    response = client.get("/role-requests", params={"status": "pending"})

    assert response.status_code == 200
    assert [r["userEmail"] for r in response.json()["data"]] == ["a@x.com"]
