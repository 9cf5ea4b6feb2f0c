"""Google Sheets client for reading the employee roster."""

import logging
import time
from typing import List, Optional

import httpx
import jwt

from .errors import RosterSourceError
from .models import RosterRecord

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"
SHEETS_READONLY_SCOPE = "https://www.googleapis.com/auth/spreadsheets.readonly"

# Header row is skipped; columns A..F
ROSTER_RANGE = "A2:F"


def normalize_private_key(private_key: str) -> str:
    """Env files usually carry the PEM with literal "\\n" sequences."""
    return private_key.replace("\\n", "\n").strip()


def parse_roster_rows(rows: List[list]) -> List[RosterRecord]:
    """
    Convert sheet rows into roster records.

    Column layout: A name, B employee id, C position, D email, E phone, F outlet.
    Rows without an employee id are skipped; short rows are padded with "".
    """
    employees = []
    for row in rows:
        cells = [str(cell).strip() if cell is not None else "" for cell in row]
        cells += [""] * (6 - len(cells))
        employee_id = cells[1]
        if not employee_id:
            continue
        employees.append(RosterRecord(
            employee_id=employee_id,
            name=cells[0],
            position=cells[2],
            email=cells[3],
            phone=cells[4],
            outlet=cells[5],
        ))
    return employees


class GoogleSheetsClient:
    """Reads the roster sheet with a service account."""

    def __init__(
        self,
        sheet_id: str,
        service_account_email: str,
        private_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.sheet_id = sheet_id
        self.service_account_email = service_account_email
        self.private_key = normalize_private_key(private_key)
        self.timeout = timeout
        self._transport = transport

    def _build_assertion(self, now: Optional[int] = None) -> str:
        """Signed RS256 JWT for the service-account token exchange (valid 1 hour)."""
        now = int(now if now is not None else time.time())
        payload = {
            "iss": self.service_account_email,
            "scope": SHEETS_READONLY_SCOPE,
            "aud": TOKEN_URL,
            "iat": now,
            "exp": now + 3600,
        }
        return jwt.encode(payload, self.private_key, algorithm="RS256")

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            TOKEN_URL,
            data={
                "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                "assertion": self._build_assertion(),
            },
        )
        if response.is_error:
            logger.error(f"Google OAuth error: {response.status_code} {response.text[:200]}")
            raise RosterSourceError("Failed to get Google access token")
        return response.json()["access_token"]

    async def list_employees(self) -> List[RosterRecord]:
        """
        Read all roster rows from the sheet.

        Raises:
            RosterSourceError: If the token exchange or the sheet read fails
        """
        url = f"{SHEETS_API_URL}/{self.sheet_id}/values/{ROSTER_RANGE}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                access_token = await self._get_access_token(client)
                response = await client.get(url, headers={"Authorization": f"Bearer {access_token}"})
                if response.is_error:
                    logger.error(f"Google Sheets API error: {response.status_code} {response.text[:200]}")
                    raise RosterSourceError("Failed to read Google Sheet")
                body = response.json()
                if not isinstance(body, dict) or not isinstance(body.get("values", []), list):
                    logger.error(f"Unexpected Google Sheets response: {response.text[:200]}")
                    raise RosterSourceError("Unexpected response from Google Sheets API")
                rows = body.get("values", [])
        except RosterSourceError:
            raise
        except (httpx.HTTPError, jwt.PyJWTError, ValueError, KeyError, TypeError) as exc:
            logger.error(f"Error reading Google Sheet: {exc}")
            raise RosterSourceError(f"Failed to read employee data from Google Sheet: {exc}") from exc

        return parse_roster_rows(rows)
