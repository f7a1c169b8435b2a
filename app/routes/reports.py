"""
Report Routes.

Citizen reports per disaster and the official-updates feed. Reports may
be edited or removed by their author or an admin.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from ..clients.postgrest_client import get_store
from ..clients.store import BaseStore, NoRowsError
from ..middleware.auth import get_current_user
from ..middleware.error_handler import APIError, NotFoundError
from ..models import ReportCreate, ReportUpdate, VerificationStatus, envelope
from ..services.official_updates import OfficialUpdatesService, get_official_updates_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("/disaster/{disaster_id}")
async def reports_for_disaster(
    disaster_id: str,
    verification_status: Optional[VerificationStatus] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    store: BaseStore = Depends(get_store),
):
    """Reports for a disaster, newest first."""
    query = (
        store.table("reports")
        .select("*")
        .eq("disaster_id", disaster_id)
        .order("created_at", desc=True)
        .range(offset, offset + limit - 1)
    )
    status_filter = verification_status.value if verification_status else None
    if status_filter:
        query = query.eq("verification_status", status_filter)

    reports = await query.execute()

    return envelope(
        reports,
        disaster_id=disaster_id,
        count=len(reports),
        filters={"verification_status": status_filter},
    )


@router.get("/disaster/{disaster_id}/official-updates")
async def official_updates(
    disaster_id: str,
    updates_service: OfficialUpdatesService = Depends(get_official_updates_service),
):
    """Press releases from official agencies, newest first."""
    updates = await updates_service.get_official_updates(disaster_id)

    sources = []
    for update in updates:
        if update.source not in sources:
            sources.append(update.source)

    return envelope(
        [u.model_dump(mode="json") for u in updates],
        disaster_id=disaster_id,
        count=len(updates),
        sources=sources,
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_report(
    body: ReportCreate,
    user: Dict[str, str] = Depends(get_current_user),
    store: BaseStore = Depends(get_store),
):
    try:
        await store.table("disasters").select("id").eq("id", body.disaster_id).single()
    except NoRowsError:
        raise NotFoundError("Disaster not found")

    report = await store.table("reports").insert({
        "disaster_id": body.disaster_id,
        "user_id": user["id"],
        "content": body.content,
        "image_url": body.image_url,
        "verification_status": VerificationStatus.PENDING.value,
    })

    logger.info(f"Report created: {report['id']} for disaster {body.disaster_id}")
    return envelope(report)


async def _load_report(store: BaseStore, report_id: str, user: Dict[str, str]) -> dict:
    """Fetch a report the user may modify (its author or an admin)."""
    try:
        existing = await store.table("reports").select("*").eq("id", report_id).single()
    except NoRowsError:
        raise NotFoundError("Report not found")

    if existing.get("user_id") != user["id"] and user["role"] != "admin":
        raise APIError(code="FORBIDDEN", message="Insufficient permissions", status_code=403)
    return existing


@router.put("/{report_id}")
async def update_report(
    report_id: str,
    body: ReportUpdate,
    user: Dict[str, str] = Depends(get_current_user),
    store: BaseStore = Depends(get_store),
):
    """Edit a report. A verification status from a non-admin is ignored."""
    existing = await _load_report(store, report_id, user)

    values = {
        "content": body.content or existing.get("content"),
        "image_url": body.image_url if "image_url" in body.model_fields_set else existing.get("image_url"),
    }
    if user["role"] == "admin" and body.verification_status:
        values["verification_status"] = body.verification_status.value

    updated = await store.table("reports").eq("id", report_id).update(values)
    report = updated[0] if updated else {**existing, **values}

    logger.info(f"Report updated: {report_id} by {user['id']}")
    return envelope(report)


@router.delete("/{report_id}")
async def delete_report(
    report_id: str,
    user: Dict[str, str] = Depends(get_current_user),
    store: BaseStore = Depends(get_store),
):
    await _load_report(store, report_id, user)

    await store.table("reports").eq("id", report_id).delete()

    logger.info(f"Report deleted: {report_id} by {user['id']}")
    return {"success": True, "message": "Report deleted successfully"}
