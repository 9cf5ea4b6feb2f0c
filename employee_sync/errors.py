"""Exception types raised by the roster and directory clients."""

from typing import Optional


class EmployeeSyncError(Exception):
    """Base error for the employee sync package."""


class RosterSourceError(EmployeeSyncError):
    """The roster spreadsheet could not be read."""


class DirectoryStoreError(EmployeeSyncError):
    """A Supabase Auth or REST call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code  # PostgREST / Postgres error code, when the body carried one
