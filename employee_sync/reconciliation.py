"""Reconciliation of the roster spreadsheet against the Supabase employee directory."""

import logging
from typing import Awaitable, Callable, Sequence

from .errors import EmployeeSyncError
from .models import (
    DirectoryRecord,
    OperationResult,
    RosterRecord,
    SyncReport,
    SyncSettings,
    fallback_email,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


async def _attempt(call: Callable[..., Awaitable], *args) -> OperationResult:
    """
    Run one directory call and fold an expected failure into an OperationResult.

    Only EmployeeSyncError is treated as an expected failure; anything else
    propagates to the per-record handler in reconcile().
    """
    try:
        value = await call(*args)
    except EmployeeSyncError as exc:
        return OperationResult.failure(str(exc))
    return OperationResult.success(value)


async def _create_employee(record: RosterRecord, store, settings: SyncSettings) -> OperationResult:
    """
    Create the auth user and the metadata row for a new employee.

    If the metadata insert fails, the freshly created auth user is deleted so
    no credential account is left without a directory entry.
    """
    employee_id = record.employee_id

    # Step 1: Credential account
    email = record.email or fallback_email(employee_id, settings.local_domain)
    attributes = {
        "employee_id": employee_id,
        "name": record.name,
        "position": record.position,
        "outlet": record.outlet,
    }
    auth_result = await _attempt(
        store.create_credential_account, email, settings.default_password, attributes
    )
    if not auth_result.ok:
        return OperationResult.failure(f"Failed to create auth for {employee_id}: {auth_result.error}")

    auth_user_id = auth_result.value

    # Step 2: Metadata row
    directory_record = DirectoryRecord(
        employee_id=employee_id,
        name=record.name,
        position=record.position,
        email=record.email,
        phone=record.phone,
        outlet=record.outlet,
        is_active=True,
        auth_user_id=auth_user_id,
    )
    try:
        insert_result = await _attempt(store.insert_employee_record, directory_record)
    except Exception as exc:
        # Any insert failure, expected or not, must roll back the auth user
        logger.exception(f"Unexpected error inserting metadata for {employee_id}")
        insert_result = OperationResult.failure(str(exc))
    if insert_result.ok:
        return OperationResult.success(auth_user_id)

    # Step 3: Roll back the auth user; a failure here is not reported
    try:
        await store.delete_credential_account(auth_user_id)
    except Exception as exc:
        logger.warning(f"Rollback of auth user {auth_user_id} for {employee_id} failed: {exc}")
    return OperationResult.failure(f"Failed to insert metadata for {employee_id}: {insert_result.error}")


async def _refresh_employee(record: RosterRecord, store) -> OperationResult:
    """Rewrite an existing employee's roster fields and force it active."""
    fields = {
        "name": record.name,
        "position": record.position,
        "email": record.email,
        "phone": record.phone,
        "outlet": record.outlet,
        "is_active": True,
        "updated_at": utc_now_iso(),
    }
    result = await _attempt(store.update_employee_record, record.employee_id, fields)
    if not result.ok:
        return OperationResult.failure(f"Failed to update {record.employee_id}: {result.error}")
    return result


async def _lock_employee(record: DirectoryRecord, store) -> OperationResult:
    """Deactivate a removed employee. The auth user is kept for history and reactivation."""
    fields = {
        "is_active": False,
        "updated_at": utc_now_iso(),
    }
    result = await _attempt(store.update_employee_record, record.employee_id, fields)
    if not result.ok:
        return OperationResult.failure(f"Failed to lock {record.employee_id}: {result.error}")
    return result


async def reconcile(
    roster: Sequence[RosterRecord],
    directory: Sequence[DirectoryRecord],
    store,
    settings: SyncSettings,
) -> SyncReport:
    """
    Bring the directory into agreement with the roster.

    Steps:
    1. Index both snapshots by employee_id
    2. For each roster record (in roster order): create it if new, otherwise refresh it
    3. For each active directory record missing from the roster: lock it
    4. Aggregate counters and errors into a SyncReport

    Args:
        roster: Current roster snapshot (blank ids already filtered out)
        directory: Current directory snapshot
        store: Directory backend (create/delete credential account, insert/update record)
        settings: Default password and fallback email domain for new accounts

    Returns:
        SyncReport. Per-record failures are collected in report.errors and never
        stop the run; this function does not raise.
    """
    report = SyncReport()

    roster_ids = {record.employee_id for record in roster}
    directory_ids = {record.employee_id for record in directory}

    for record in roster:
        employee_id = record.employee_id
        try:
            if employee_id not in directory_ids:
                logger.info(f"Creating new employee: {employee_id}")
                result = await _create_employee(record, store, settings)
                if result.ok:
                    report.added += 1
                    logger.info(f"Added new employee: {employee_id}")
            else:
                result = await _refresh_employee(record, store)
                if result.ok:
                    report.updated += 1
            if not result.ok:
                logger.warning(result.error)
                report.add_error(result.error)
        except Exception as exc:
            logger.exception(f"Unexpected error processing {employee_id}")
            report.add_error(f"Error processing {employee_id}: {exc}")

    for record in directory:
        if record.employee_id in roster_ids or not record.is_active:
            continue
        try:
            logger.info(f"Locking removed employee: {record.employee_id}")
            result = await _lock_employee(record, store)
            if result.ok:
                report.locked += 1
                logger.info(f"Locked employee: {record.employee_id}")
            else:
                logger.warning(result.error)
                report.add_error(result.error)
        except Exception as exc:
            logger.exception(f"Unexpected error locking {record.employee_id}")
            report.add_error(f"Error locking {record.employee_id}: {exc}")

    logger.info(
        f"Sync completed: added={report.added} updated={report.updated} "
        f"locked={report.locked} errors={len(report.errors)}"
    )
    return report


async def run_sync(roster_source, store, settings: SyncSettings) -> SyncReport:
    """
    Fetch both snapshots and reconcile them.

    A failure to read either snapshot aborts the run: the returned report has
    zero counters and a single "Sync failed" error.
    """
    try:
        logger.info("Reading employees from roster sheet...")
        roster = await roster_source.list_employees()
        logger.info(f"Found {len(roster)} employees in sheet")
        directory = await store.list_employee_records()
    except Exception as exc:
        logger.error(f"Sync aborted, snapshot unavailable: {exc}")
        report = SyncReport()
        report.add_error(f"Sync failed: {exc}")
        return report

    return await reconcile(roster, directory, store, settings)
