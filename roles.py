"""Role upgrade workflow: users ask to become chef or admin, admins decide.

A request moves pending -> approved | rejected exactly once. Approval writes
the request and then the user document; the two writes are not atomic, so a
failure between them leaves the request approved while the user keeps the
old role. The admin has to re-issue the role change in that case.
"""

import logging
import random
from datetime import datetime, timezone
from typing import List, Optional

from pymongo.database import Database

from database import NEWEST_FIRST, ROLE_REQUESTS, USERS, get_documents, serialize_doc

logger = logging.getLogger(__name__)


class RoleRequestConflict(Exception):
    """A pending request already exists for this user and role."""


class RoleRequestNotFound(Exception):
    """No pending request matches the decision."""


def generate_chef_id() -> str:
    # not checked against existing chef ids
    return f"chef-{random.randint(1000, 9999)}"


class RoleWorkflow:
    def __init__(self, db: Database):
        self.db = db

    def submit(self, user_email: str, user_name: str, request_type: str) -> dict:
        """Open a pending request and mark it on the user document."""
        existing = self.db[ROLE_REQUESTS].find_one(
            {"userEmail": user_email, "requestType": request_type, "status": "pending"}
        )
        if existing:
            raise RoleRequestConflict(f"A {request_type} request is already pending")

        record = {
            "userName": user_name,
            "userEmail": user_email,
            "requestType": request_type,
            "status": "pending",
            "createdAt": datetime.now(timezone.utc),
        }
        result = self.db[ROLE_REQUESTS].insert_one(record)
        self.db[USERS].update_one(
            {"email": user_email},
            {"$set": {f"pendingRequests.{request_type}": "pending"}},
        )
        record["_id"] = result.inserted_id
        return serialize_doc(record)

    def list_requests(self, status: Optional[str] = None) -> List[dict]:
        filter_dict = {"status": status} if status else {}
        return get_documents(self.db, ROLE_REQUESTS, filter_dict, sort=NEWEST_FIRST)

    def decide(self, user_email: str, request_type: str, action: str) -> dict:
        """Approve or reject the most recent pending request for the pair."""
        if action not in ("approve", "reject"):
            raise ValueError(f"Unknown action: {action}")

        pending = list(
            self.db[ROLE_REQUESTS]
            .find({"userEmail": user_email, "requestType": request_type, "status": "pending"})
            .sort(NEWEST_FIRST)
            .limit(1)
        )
        if not pending:
            raise RoleRequestNotFound(f"No pending {request_type} request for {user_email}")
        request = pending[0]

        new_status = "approved" if action == "approve" else "rejected"
        decided_at = datetime.now(timezone.utc)
        result = self.db[ROLE_REQUESTS].update_one(
            {"_id": request["_id"], "status": "pending"},
            {"$set": {"status": new_status, "decidedAt": decided_at}},
        )
        if result.modified_count == 0:
            # decided by a concurrent call since the read above
            raise RoleRequestNotFound(f"Request {request['_id']} is no longer pending")

        user_update = {f"pendingRequests.{request_type}": new_status}
        if action == "approve":
            user_update["role"] = request_type
            if request_type == "chef":
                user_update["chefId"] = generate_chef_id()
            if request_type == "admin":
                user_update["role"] = "admin"
        self.db[USERS].update_one({"email": user_email}, {"$set": user_update})

        logger.info(f"Role request {request['_id']} for {user_email} ({request_type}) {new_status}")
        outcome = {"requestId": str(request["_id"]), "status": new_status}
        if "chefId" in user_update:
            outcome["chefId"] = user_update["chefId"]
        if action == "approve":
            outcome["role"] = user_update["role"]
        return outcome
