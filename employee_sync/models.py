"""Models for sync operations."""

from datetime import datetime, timezone
from typing import Any, List, Optional


DEFAULT_LOCAL_DOMAIN = "alpro.local"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RosterRecord:
    """One employee row read from the roster spreadsheet."""

    def __init__(
        self,
        employee_id: str,
        name: str = "",
        position: str = "",
        email: str = "",
        phone: str = "",
        outlet: str = "",
    ):
        self.employee_id = employee_id
        self.name = name
        self.position = position
        self.email = email
        self.phone = phone
        self.outlet = outlet

    def __repr__(self):
        return f"RosterRecord(employee_id={self.employee_id!r}, name={self.name!r})"


class DirectoryRecord:
    """
    Employee metadata row stored in the Supabase ``employees`` table.

    ``is_superadmin`` and ``auth_user_id`` are owned by the directory and are
    never written by reconciliation after the record is created.
    """

    def __init__(
        self,
        employee_id: str,
        name: str = "",
        position: str = "",
        email: str = "",
        phone: str = "",
        outlet: str = "",
        is_active: bool = True,
        is_superadmin: bool = False,
        auth_user_id: Optional[str] = None,
        created_at: Optional[str] = None,
        updated_at: Optional[str] = None,
    ):
        self.employee_id = employee_id
        self.name = name
        self.position = position
        self.email = email
        self.phone = phone
        self.outlet = outlet
        self.is_active = is_active
        self.is_superadmin = is_superadmin
        self.auth_user_id = auth_user_id
        self.created_at = created_at
        self.updated_at = updated_at

    @classmethod
    def from_row(cls, row: dict) -> "DirectoryRecord":
        """Build a record from a PostgREST row, tolerating nulls."""
        return cls(
            employee_id=str(row.get("employee_id") or ""),
            name=row.get("name") or "",
            position=row.get("position") or "",
            email=row.get("email") or "",
            phone=row.get("phone") or "",
            outlet=row.get("outlet") or "",
            is_active=bool(row.get("is_active")),
            is_superadmin=bool(row.get("is_superadmin")),
            auth_user_id=row.get("auth_user_id"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_row(self) -> dict:
        """Row payload for insertion; timestamps are left to the database."""
        return {
            "employee_id": self.employee_id,
            "name": self.name,
            "position": self.position,
            "email": self.email,
            "phone": self.phone,
            "outlet": self.outlet,
            "is_active": self.is_active,
            "is_superadmin": self.is_superadmin,
            "auth_user_id": self.auth_user_id,
        }

    def to_dict(self) -> dict:
        data = self.to_row()
        data["created_at"] = self.created_at
        data["updated_at"] = self.updated_at
        return data

    def login_email(self, local_domain: str = DEFAULT_LOCAL_DOMAIN) -> str:
        return self.email or fallback_email(self.employee_id, local_domain)

    def __repr__(self):
        return f"DirectoryRecord(employee_id={self.employee_id!r}, is_active={self.is_active!r})"


def fallback_email(employee_id: str, local_domain: str = DEFAULT_LOCAL_DOMAIN) -> str:
    """Synthetic login email for employees without one on the roster."""
    return f"{employee_id}@{local_domain}"


class SyncSettings:
    """Process-wide inputs to a reconciliation run."""

    def __init__(self, default_password: str, local_domain: str = DEFAULT_LOCAL_DOMAIN):
        if not default_password:
            raise ValueError("default_password is required for sync")
        self.default_password = default_password
        self.local_domain = local_domain or DEFAULT_LOCAL_DOMAIN


class OperationResult:
    """Outcome of one directory mutation: either a value or an error message."""

    def __init__(self, ok: bool, value: Any = None, error: str = ""):
        self.ok = ok
        self.value = value
        self.error = error

    @classmethod
    def success(cls, value: Any = None) -> "OperationResult":
        return cls(True, value=value)

    @classmethod
    def failure(cls, error: str) -> "OperationResult":
        return cls(False, error=error)

    def __repr__(self):
        if self.ok:
            return f"OperationResult(ok, value={self.value!r})"
        return f"OperationResult(error={self.error!r})"


class SyncReport:
    """Aggregated result of one reconciliation run."""

    def __init__(self, timestamp: Optional[str] = None):
        self.added = 0
        self.updated = 0
        self.locked = 0
        self.errors: List[str] = []
        self.timestamp = timestamp or utc_now_iso()

    @property
    def success(self) -> bool:
        return not self.errors

    def add_error(self, message: str):
        self.errors.append(message)

    def to_dict(self):
        return {
            "success": self.success,
            "added": self.added,
            "updated": self.updated,
            "locked": self.locked,
            "errors": list(self.errors),
            "timestamp": self.timestamp,
        }

    def __repr__(self):
        return (
            f"SyncReport(added={self.added}, updated={self.updated}, "
            f"locked={self.locked}, errors={len(self.errors)})"
        )
