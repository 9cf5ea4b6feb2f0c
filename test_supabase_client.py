"""
Test script for SupabaseClient request building and error translation.

Run this script to test the client against a mocked Supabase:
    python test_supabase_client.py
"""

import asyncio
import json
import sys
from pathlib import Path

import httpx

# Add the project root to the path so we can import the module
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from employee_sync.errors import DirectoryStoreError
from employee_sync.models import DirectoryRecord
from employee_sync.supabase_client import SupabaseClient

SUPABASE_URL = "https://project.supabase.co"


def _client(handler):
    return SupabaseClient(
        SUPABASE_URL + "/",
        "service-key",
        "anon-key",
        transport=httpx.MockTransport(handler),
    )


def test_list_employee_records():
    print("\n=== Test 1: list employees ===")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["apikey"] = request.headers["apikey"]
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json=[
            {"employee_id": "E1", "name": "Alice", "is_active": True, "is_superadmin": False,
             "auth_user_id": "u1", "email": None, "phone": None},
        ])

    records = asyncio.run(_client(handler).list_employee_records(order="name.asc"))

    assert seen["url"].path == "/rest/v1/employees"
    assert seen["url"].params["select"] == "*"
    assert seen["url"].params["order"] == "name.asc"
    assert seen["apikey"] == "service-key"
    assert seen["auth"] == "Bearer service-key"
    assert len(records) == 1
    assert records[0].employee_id == "E1"
    assert records[0].email == ""
    assert records[0].auth_user_id == "u1"
    print("✅ Test 1 passed!")


def test_missing_table_is_empty_directory():
    print("\n=== Test 2: missing table ===")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={
            "code": "42P01",
            "message": 'relation "public.employees" does not exist',
        })

    assert asyncio.run(_client(handler).list_employee_records()) == []
    print("✅ Test 2 passed!")


def test_list_failure_raises():
    print("\n=== Test 3: list failure ===")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Invalid API key"})

    try:
        asyncio.run(_client(handler).list_employee_records())
        assert False, "should have raised DirectoryStoreError"
    except DirectoryStoreError as e:
        assert e.status_code == 401
        assert str(e) == "Failed to fetch existing employees: Invalid API key"
    print("✅ Test 3 passed!")


def test_create_credential_account():
    print("\n=== Test 4: create auth user ===")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "new-user-id", "email": "e1@example.local"})

    user_id = asyncio.run(_client(handler).create_credential_account(
        "e1@example.local", "Welcome@123", {"employee_id": "E1"}
    ))

    assert user_id == "new-user-id"
    assert seen["method"] == "POST"
    assert seen["path"] == "/auth/v1/admin/users"
    assert seen["body"] == {
        "email": "e1@example.local",
        "password": "Welcome@123",
        "email_confirm": True,
        "user_metadata": {"employee_id": "E1"},
    }
    print("✅ Test 4 passed!")


def test_create_credential_account_error_message():
    print("\n=== Test 5: auth error message ===")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={
            "code": 422,
            "error_code": "email_exists",
            "msg": "A user with this email address has already been registered",
        })

    try:
        asyncio.run(_client(handler).create_credential_account("a@b.c", "pw1234", {}))
        assert False, "should have raised DirectoryStoreError"
    except DirectoryStoreError as e:
        assert str(e) == "A user with this email address has already been registered"
        assert e.status_code == 422
    print("✅ Test 5 passed!")


def test_insert_and_update_requests():
    print("\n=== Test 6: insert / update ===")
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201 if request.method == "POST" else 204)

    client = _client(handler)
    record = DirectoryRecord("E1", name="Alice", auth_user_id="u1")
    asyncio.run(client.insert_employee_record(record))
    asyncio.run(client.update_employee_record("E1", {"is_active": False}))

    insert, update = requests
    assert insert.method == "POST"
    assert insert.headers["Prefer"] == "return=minimal"
    assert json.loads(insert.content)["auth_user_id"] == "u1"
    assert "created_at" not in json.loads(insert.content)
    assert update.method == "PATCH"
    assert update.url.params["employee_id"] == "eq.E1"
    assert json.loads(update.content) == {"is_active": False}
    print("✅ Test 6 passed!")


def test_delete_and_set_password():
    print("\n=== Test 7: delete / set password ===")
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path, request.content))
        return httpx.Response(200, json={})

    client = _client(handler)
    asyncio.run(client.delete_credential_account("u1"))
    asyncio.run(client.set_password("u2", "secret99"))

    assert requests[0][:2] == ("DELETE", "/auth/v1/admin/users/u1")
    assert requests[1][:2] == ("PUT", "/auth/v1/admin/users/u2")
    assert json.loads(requests[1][2]) == {"password": "secret99"}
    print("✅ Test 7 passed!")


def test_sign_in_uses_anon_key():
    print("\n=== Test 8: sign in ===")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["apikey"] = request.headers["apikey"]
        seen["grant_type"] = request.url.params["grant_type"]
        return httpx.Response(200, json={"access_token": "jwt", "user": {"id": "u1"}})

    session = asyncio.run(_client(handler).sign_in("e1@example.local", "pw"))

    assert session["user"]["id"] == "u1"
    assert seen == {"apikey": "anon-key", "grant_type": "password"}
    print("✅ Test 8 passed!")


def test_get_user_sends_session_token():
    print("\n=== Test 9: get user ===")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"id": "u1"})

    user = asyncio.run(_client(handler).get_user("session-jwt"))

    assert user == {"id": "u1"}
    assert seen["auth"] == "Bearer session-jwt"
    print("✅ Test 9 passed!")


def test_get_employee_not_found():
    print("\n=== Test 10: get employee ===")

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["employee_id"] == "eq.E404"
        return httpx.Response(200, json=[])

    assert asyncio.run(_client(handler).get_employee("E404")) is None
    print("✅ Test 10 passed!")


def test_network_error_is_translated():
    print("\n=== Test 11: network error ===")

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    try:
        asyncio.run(_client(handler).update_employee_record("E1", {}))
        assert False, "should have raised DirectoryStoreError"
    except DirectoryStoreError as e:
        assert e.status_code is None
        assert "connection refused" in str(e)
    print("✅ Test 11 passed!")


if __name__ == "__main__":
    print("=" * 60)
    print("Testing SupabaseClient")
    print("=" * 60)

    try:
        test_list_employee_records()
        test_missing_table_is_empty_directory()
        test_list_failure_raises()
        test_create_credential_account()
        test_create_credential_account_error_message()
        test_insert_and_update_requests()
        test_delete_and_set_password()
        test_sign_in_uses_anon_key()
        test_get_user_sends_session_token()
        test_get_employee_not_found()
        test_network_error_is_translated()

        print("\n" + "=" * 60)
        print("✅ All tests passed!")
        print("=" * 60)
    except Exception as e:
        print("\n" + "=" * 60)
        print(f"❌ Test failed with error: {e}")
        import traceback
        traceback.print_exc()
        print("=" * 60)
        sys.exit(1)
