"""Supabase client helpers for the employee directory (Auth admin API + PostgREST)."""

import logging
from typing import List, Optional

import httpx

from .errors import DirectoryStoreError
from .models import DirectoryRecord

logger = logging.getLogger(__name__)

EMPLOYEES_TABLE = "employees"

# PostgREST / Postgres codes meaning the employees table is not there yet
_MISSING_TABLE_CODES = {"PGRST116", "PGRST205", "42P01"}


def _error_message(response: httpx.Response) -> tuple:
    """Pull (message, code) out of a GoTrue or PostgREST error body."""
    try:
        body = response.json()
    except ValueError:
        return (response.text[:200] or response.reason_phrase, None)
    if not isinstance(body, dict):
        return (str(body)[:200], None)
    message = (
        body.get("msg")
        or body.get("message")
        or body.get("error_description")
        or body.get("error")
        or response.reason_phrase
    )
    code = body.get("code") or body.get("error_code")
    return (str(message), str(code) if code is not None else None)


class SupabaseClient:
    """Client for the Supabase Auth admin API and the employees table."""

    def __init__(
        self,
        supabase_url: str,
        service_key: str,
        anon_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = supabase_url.rstrip("/")
        self.service_key = service_key
        self.anon_key = anon_key or service_key
        self.timeout = timeout
        self._transport = transport

    def _get_headers(self, key: str, bearer: Optional[str] = None) -> dict:
        return {
            "apikey": key,
            "Authorization": f"Bearer {bearer or key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        key: Optional[str] = None,
        bearer: Optional[str] = None,
        extra_headers: Optional[dict] = None,
        **kwargs,
    ) -> httpx.Response:
        """
        Send one request and translate httpx failures into DirectoryStoreError.

        Args:
            method: HTTP method
            path: Path below the project URL (e.g. "/rest/v1/employees")
            key: API key to send (defaults to the service-role key)
            bearer: Bearer token if it differs from the API key (user sessions)
            extra_headers: Additional headers (e.g. PostgREST "Prefer")
        """
        headers = self._get_headers(key or self.service_key, bearer)
        if extra_headers:
            headers.update(extra_headers)
        url = f"{self.base_url}{path}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as exc:
            message, code = _error_message(exc.response)
            raise DirectoryStoreError(message, status_code=exc.response.status_code, code=code) from exc
        except httpx.RequestError as exc:
            raise DirectoryStoreError(f"Request to Supabase failed: {exc}") from exc

    # Employees table

    async def list_employee_records(self, order: Optional[str] = None) -> List[DirectoryRecord]:
        """
        Fetch the whole employees table.

        A missing table is treated as an empty directory rather than an error.
        """
        params = {"select": "*"}
        if order:
            params["order"] = order
        try:
            response = await self._request("GET", f"/rest/v1/{EMPLOYEES_TABLE}", params=params)
        except DirectoryStoreError as exc:
            if exc.code in _MISSING_TABLE_CODES or exc.status_code == 404:
                logger.warning(f"Employees table not found, treating directory as empty: {exc}")
                return []
            raise DirectoryStoreError(
                f"Failed to fetch existing employees: {exc}", status_code=exc.status_code, code=exc.code
            ) from exc
        return [DirectoryRecord.from_row(row) for row in response.json() or []]

    async def _get_one(self, column: str, value: str) -> Optional[DirectoryRecord]:
        response = await self._request(
            "GET",
            f"/rest/v1/{EMPLOYEES_TABLE}",
            params={"select": "*", column: f"eq.{value}", "limit": "1"},
        )
        rows = response.json() or []
        return DirectoryRecord.from_row(rows[0]) if rows else None

    async def get_employee(self, employee_id: str) -> Optional[DirectoryRecord]:
        return await self._get_one("employee_id", employee_id)

    async def get_employee_by_auth_user(self, auth_user_id: str) -> Optional[DirectoryRecord]:
        return await self._get_one("auth_user_id", auth_user_id)

    async def insert_employee_record(self, record: DirectoryRecord) -> None:
        await self._request(
            "POST",
            f"/rest/v1/{EMPLOYEES_TABLE}",
            json=record.to_row(),
            extra_headers={"Prefer": "return=minimal"},
        )

    async def update_employee_record(self, employee_id: str, fields: dict) -> None:
        await self._request(
            "PATCH",
            f"/rest/v1/{EMPLOYEES_TABLE}",
            params={"employee_id": f"eq.{employee_id}"},
            json=fields,
            extra_headers={"Prefer": "return=minimal"},
        )

    async def set_active(self, employee_id: str, active: bool) -> None:
        await self.update_employee_record(employee_id, {"is_active": active})

    # Auth admin API

    async def create_credential_account(self, email: str, password: str, attributes: dict) -> str:
        """
        Create a confirmed Supabase Auth user.

        Returns:
            The new auth user id
        """
        payload = {
            "email": email,
            "password": password,
            "email_confirm": True,
            "user_metadata": attributes,
        }
        response = await self._request("POST", "/auth/v1/admin/users", json=payload)
        body = response.json() or {}
        user = body.get("user", body)
        user_id = user.get("id")
        if not user_id:
            raise DirectoryStoreError("Auth user created without an id", status_code=response.status_code)
        return user_id

    async def delete_credential_account(self, user_id: str) -> None:
        await self._request("DELETE", f"/auth/v1/admin/users/{user_id}")

    async def set_password(self, user_id: str, password: str) -> None:
        await self._request("PUT", f"/auth/v1/admin/users/{user_id}", json={"password": password})

    # Public auth API (anon key)

    async def sign_in(self, email: str, password: str) -> dict:
        """
        Password sign-in. Returns the session dict (access_token, refresh_token, user, ...).
        """
        response = await self._request(
            "POST",
            "/auth/v1/token",
            key=self.anon_key,
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return response.json()

    async def get_user(self, access_token: str) -> dict:
        response = await self._request("GET", "/auth/v1/user", key=self.anon_key, bearer=access_token)
        return response.json()
