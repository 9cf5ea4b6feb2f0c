"""In-memory stand-ins for the Google Sheet and Supabase, used by the test scripts."""

import copy
from typing import List, Optional

from employee_sync.errors import DirectoryStoreError, RosterSourceError
from employee_sync.models import DirectoryRecord, RosterRecord, utc_now_iso


class FakeRosterSource:
    def __init__(self, records: Optional[List[RosterRecord]] = None, error: Optional[str] = None):
        self.records = records or []
        self.error = error

    async def list_employees(self) -> List[RosterRecord]:
        if self.error:
            raise RosterSourceError(self.error)
        return list(self.records)


class FakeDirectoryStore:
    """
    Employees table plus auth users, keyed like Supabase.

    The fail_* sets name employee ids whose call should fail with a
    DirectoryStoreError; crash_on names ids whose auth creation raises an
    unexpected RuntimeError, and crash_on_insert does the same
    for the metadata insert.
    """

    def __init__(self, records: Optional[List[DirectoryRecord]] = None):
        self.records = {}
        self.auth_users = {}
        self.sessions = {}
        self.fail_create = set()
        self.fail_insert = set()
        self.fail_update = set()
        self.crash_on = set()
        self.crash_on_insert = set()
        self.fail_delete = False
        self.fail_list = False
        self.deleted_auth_users = []
        self._next_id = 1
        for record in records or []:
            self.records[record.employee_id] = record
            if record.auth_user_id:
                self.auth_users[record.auth_user_id] = {
                    "email": record.login_email(),
                    "password": "secret1",
                    "attributes": {"employee_id": record.employee_id},
                }

    def snapshot(self) -> List[DirectoryRecord]:
        return [copy.copy(record) for record in self.records.values()]

    async def list_employee_records(self, order: Optional[str] = None) -> List[DirectoryRecord]:
        if self.fail_list:
            raise DirectoryStoreError("Failed to fetch existing employees: connection refused")
        records = self.snapshot()
        if order == "name.asc":
            records.sort(key=lambda record: record.name)
        return records

    async def create_credential_account(self, email: str, password: str, attributes: dict) -> str:
        employee_id = attributes["employee_id"]
        if employee_id in self.crash_on:
            raise RuntimeError("connection reset")
        if employee_id in self.fail_create:
            raise DirectoryStoreError("A user with this email address has already been registered", status_code=422)
        user_id = f"auth-{self._next_id}"
        self._next_id += 1
        self.auth_users[user_id] = {"email": email, "password": password, "attributes": attributes}
        return user_id

    async def delete_credential_account(self, user_id: str) -> None:
        if self.fail_delete:
            raise DirectoryStoreError("User not found", status_code=404)
        self.auth_users.pop(user_id, None)
        self.deleted_auth_users.append(user_id)

    async def insert_employee_record(self, record: DirectoryRecord) -> None:
        if record.employee_id in self.crash_on_insert:
            raise RuntimeError("connection reset during insert")
        if record.employee_id in self.fail_insert:
            raise DirectoryStoreError("duplicate key value violates unique constraint", status_code=409, code="23505")
        stored = copy.copy(record)
        stored.created_at = stored.updated_at = utc_now_iso()
        self.records[record.employee_id] = stored

    async def update_employee_record(self, employee_id: str, fields: dict) -> None:
        if employee_id in self.fail_update:
            raise DirectoryStoreError("permission denied for table employees", status_code=403, code="42501")
        record = self.records.get(employee_id)
        if record is None:
            return
        for key, value in fields.items():
            setattr(record, key, value)

    async def get_employee(self, employee_id: str) -> Optional[DirectoryRecord]:
        record = self.records.get(employee_id)
        return copy.copy(record) if record else None

    async def get_employee_by_auth_user(self, auth_user_id: str) -> Optional[DirectoryRecord]:
        for record in self.records.values():
            if record.auth_user_id == auth_user_id:
                return copy.copy(record)
        return None

    async def set_active(self, employee_id: str, active: bool) -> None:
        await self.update_employee_record(employee_id, {"is_active": active})

    async def set_password(self, user_id: str, password: str) -> None:
        if user_id not in self.auth_users:
            raise DirectoryStoreError("User not found", status_code=404)
        self.auth_users[user_id]["password"] = password

    async def sign_in(self, email: str, password: str) -> dict:
        for user_id, user in self.auth_users.items():
            if user["email"] == email and user["password"] == password:
                token = f"token-{user_id}"
                self.sessions[token] = user_id
                return {"access_token": token, "token_type": "bearer", "user": {"id": user_id, "email": email}}
        raise DirectoryStoreError("Invalid login credentials", status_code=400)

    async def get_user(self, access_token: str) -> dict:
        user_id = self.sessions.get(access_token)
        if not user_id:
            raise DirectoryStoreError("invalid JWT", status_code=401)
        return {"id": user_id, "email": self.auth_users[user_id]["email"]}
