from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Response

from ..deps import get_stores
from ..core.errors import InvalidPayload, StoreUnavailable
from ..core.log import get_logger
from ..core.nats import publish_checkin
from ..core.config import get_settings
from ..core.payload import parse_payload
from ..schemas import CheckInRecord, RecordClaim, ScanOutcome, ScanRequest, ScanResult
from ..services.dedup import AcceptMeta, StoreRegistry

settings = get_settings()
router = APIRouter(prefix="/checkin", tags=["checkin"])
log = get_logger("api")

def _canonical(code: str) -> str:
    code = code.strip().lower()
    if not code:
        raise HTTPException(status_code=422, detail="Empty guest code")
    return code

async def _publish(rec: CheckInRecord):
    if not settings.nats_enabled:
        return
    try:
        await publish_checkin(rec)
    except Exception as exc:
        # non-fatal for the check-in response
        log.warning("check-in event for %s not published: %s", rec.code, exc)

# --- 1) Staff device submits a scanned payload: normalize + first-acceptance decision
@router.post("/events/{event_id}/scan", response_model=ScanResult)
async def scan(
    event_id: str,
    payload: ScanRequest,
    response: Response,
    stores: StoreRegistry = Depends(get_stores),
):
    try:
        scanned = parse_payload(payload.payload)
    except InvalidPayload as exc:
        raise HTTPException(status_code=422, detail=f"Invalid QR payload: {exc.reason}")

    meta = AcceptMeta(name_hint=scanned.name_hint, accepted_by=payload.device_id)
    try:
        result = await stores.get(event_id).try_accept(scanned.code, meta)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    rec = result.record
    if result.accepted:
        response.status_code = 201
        if not result.recovered:
            await _publish(rec)
    return ScanResult(
        outcome=ScanOutcome.ACCEPTED if result.accepted else ScanOutcome.DUPLICATE,
        code=rec.code, display_name=rec.display_name,
        accepted_at=rec.accepted_at, accepted_by=rec.accepted_by,
    )

# --- 2) Conditional write for remote stores: 201 created, 200 + existing record otherwise
@router.put("/events/{event_id}/records/{code}", response_model=CheckInRecord)
async def claim_record(
    event_id: str,
    code: str,
    claim: RecordClaim,
    response: Response,
    stores: StoreRegistry = Depends(get_stores),
):
    rec = CheckInRecord(event_id=event_id, code=_canonical(code), **claim.model_dump())
    try:
        if await stores.backend.claim(rec):
            response.status_code = 201
            log.info("accepted %s for event %s via remote claim (%s)", rec.code, event_id, rec.accepted_by)
            await _publish(rec)
            return rec
        existing = await stores.backend.fetch(event_id, rec.code)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    if existing is None:
        raise HTTPException(status_code=503, detail="Record rejected but not readable")
    return existing

# --- 3) Read by code
@router.get("/events/{event_id}/records/{code}", response_model=CheckInRecord)
async def get_record(event_id: str, code: str, stores: StoreRegistry = Depends(get_stores)):
    try:
        rec = await stores.backend.fetch(event_id, _canonical(code))
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    if rec is None:
        raise HTTPException(status_code=404, detail="Not checked in")
    return rec

# --- 4) Roster, oldest first
@router.get("/events/{event_id}/roster", response_model=list[CheckInRecord])
async def roster(event_id: str, stores: StoreRegistry = Depends(get_stores)):
    try:
        return await stores.backend.list_records(event_id)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
