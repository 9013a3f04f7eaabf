"""Offline sync routes.

Conflicts are data: a batch with conflicted records is still a 200 and
clients must read the per-record results. Only an aborted unit of work
produces an error response (SyncError → 500, see api.main).
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header

from finance.api.dependencies import get_current_user, get_sync_service
from finance.models.ledger import User
from finance.sync.resolver import RESOLVED
from finance.sync.schemas import (
    ClearSyncRequest,
    FullSyncRequest,
    ResolveConflictsRequest,
    SyncTransactionsRequest,
)
from finance.sync.service import SyncService

router = APIRouter()


@router.get("/status")
def sync_status(
    x_device_id: Optional[str] = Header(default=None),
    user: User = Depends(get_current_user),
    service: SyncService = Depends(get_sync_service),
):
    """In-progress flag, last completed sync, pending and conflicted counts."""
    return {"success": True, "data": service.status(user.id, x_device_id)}


@router.post("/transactions")
def sync_transactions(
    request: SyncTransactionsRequest,
    user: User = Depends(get_current_user),
    service: SyncService = Depends(get_sync_service),
):
    """Submit a batch of transactions created while offline."""
    batch = service.sync_transactions(user.id, request)
    return {"success": True, "message": "Transactions synced", "data": batch.to_dict()}


@router.post("/full")
def full_sync(
    request: FullSyncRequest,
    user: User = Depends(get_current_user),
    service: SyncService = Depends(get_sync_service),
):
    """Pull everything changed since last_sync (or a snapshot without one)."""
    return {
        "success": True,
        "message": "Full sync completed",
        "data": service.full_sync(user.id, request),
    }


@router.get("/conflicts")
def list_conflicts(
    user: User = Depends(get_current_user),
    service: SyncService = Depends(get_sync_service),
):
    conflicts = service.conflicts(user.id)
    return {"success": True, "data": {"conflicts": conflicts, "count": len(conflicts)}}


@router.post("/resolve-conflicts")
def resolve_conflicts(
    request: ResolveConflictsRequest,
    user: User = Depends(get_current_user),
    service: SyncService = Depends(get_sync_service),
):
    results = service.resolve_conflicts(user.id, request)
    return {
        "success": True,
        "message": "Conflicts resolved",
        "data": {
            "resolved": [r.model_dump() for r in results if r.status == RESOLVED],
            "failed": [r.model_dump() for r in results if r.status != RESOLVED],
        },
    }


@router.get("/last-sync")
def last_sync(
    x_device_id: Optional[str] = Header(default=None),
    user: User = Depends(get_current_user),
    service: SyncService = Depends(get_sync_service),
):
    """Last completed session, per device when X-Device-ID is sent."""
    return {"success": True, "data": service.last_sync(user.id, x_device_id)}


@router.delete("/clear")
def clear_sync_data(
    request: ClearSyncRequest,
    user: User = Depends(get_current_user),
    service: SyncService = Depends(get_sync_service),
):
    """Wipe offline records, sessions and checkpoints. Requires confirm=true."""
    return {
        "success": True,
        "message": "Sync data cleared successfully",
        "data": service.clear(user.id, request.device_id),
    }


@router.get("/statistics")
def sync_statistics(
    user: User = Depends(get_current_user),
    service: SyncService = Depends(get_sync_service),
):
    return {"success": True, "data": service.statistics(user.id)}
