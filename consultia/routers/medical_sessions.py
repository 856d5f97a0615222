import json
import logging
import math
import uuid
from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, Query

from consultia.database import get_db
from consultia.models.medical_session import (
    MedicalSessionCreate,
    MedicalSessionRecord,
    MedicalSessionUpdate,
    ReportsPage,
    SessionData,
    SessionStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["medical-sessions"])

_COLUMNS = (
    "id, patient_id, doctor_id, session_data, transcriptions, analyses, "
    "final_report, status, created_at, updated_at"
)


def _loads(raw, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Failed to parse stored JSON column")
        return default


def _row_to_record(row) -> MedicalSessionRecord:
    session_data = _loads(row["session_data"], None)
    return MedicalSessionRecord(
        id=row["id"],
        patient_id=row["patient_id"],
        doctor_id=row["doctor_id"],
        session_data=SessionData.model_validate(session_data) if session_data else None,
        transcriptions=_loads(row["transcriptions"], []),
        analyses=_loads(row["analyses"], []),
        final_report=_loads(row["final_report"], None),
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


async def store_medical_session(body: MedicalSessionCreate) -> MedicalSessionRecord:
    """Insert a consultation record and return it as stored."""
    db = await get_db()
    record_id = str(uuid.uuid4())
    now = datetime.now(UTC).isoformat()

    await db.execute(
        f"INSERT INTO medical_sessions ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            record_id,
            body.patient_id,
            body.doctor_id,
            body.session_data.model_dump_json() if body.session_data else None,
            json.dumps([t.model_dump() for t in body.transcriptions]),
            json.dumps(body.analyses),
            json.dumps(body.final_report) if body.final_report is not None else None,
            body.status,
            now,
            now,
        ),
    )
    await db.commit()
    logger.info("Medical session %s stored for patient %s", record_id, body.patient_id)

    return MedicalSessionRecord(
        id=record_id,
        created_at=now,
        updated_at=now,
        **body.model_dump(),
    )


@router.post("/medical-sessions", response_model=MedicalSessionRecord)
async def create_medical_session(body: MedicalSessionCreate):
    """Persist a consultation: transcript, analyses and (optionally) the final report."""
    return await store_medical_session(body)


@router.get("/medical-sessions", response_model=list[MedicalSessionRecord])
async def list_medical_sessions(patient_id: str | None = None):
    """List stored consultations, newest first, optionally for one patient."""
    db = await get_db()
    if patient_id:
        rows = await db.fetch_all(
            f"SELECT {_COLUMNS} FROM medical_sessions WHERE patient_id = ? ORDER BY created_at DESC",
            (patient_id,),
        )
    else:
        rows = await db.fetch_all(
            f"SELECT {_COLUMNS} FROM medical_sessions ORDER BY created_at DESC"
        )
    return [_row_to_record(row) for row in rows]


@router.get("/medical-sessions/{record_id}", response_model=MedicalSessionRecord)
async def get_medical_session(record_id: str):
    db = await get_db()
    row = await db.fetch_one(
        f"SELECT {_COLUMNS} FROM medical_sessions WHERE id = ?", (record_id,)
    )
    if not row:
        raise HTTPException(status_code=404, detail="Medical session not found")
    return _row_to_record(row)


@router.patch("/medical-sessions/{record_id}", response_model=MedicalSessionRecord)
async def update_medical_session(record_id: str, body: MedicalSessionUpdate):
    """Attach a final report and/or change the status of a stored consultation."""
    db = await get_db()
    row = await db.fetch_one("SELECT id FROM medical_sessions WHERE id = ?", (record_id,))
    if not row:
        raise HTTPException(status_code=404, detail="Medical session not found")

    now = datetime.now(UTC).isoformat()
    if body.final_report is not None:
        await db.execute(
            "UPDATE medical_sessions SET final_report = ?, status = ?, updated_at = ? WHERE id = ?",
            (json.dumps(body.final_report), body.status, now, record_id),
        )
    else:
        await db.execute(
            "UPDATE medical_sessions SET status = ?, updated_at = ? WHERE id = ?",
            (body.status, now, record_id),
        )
    await db.commit()
    return await get_medical_session(record_id)


@router.get("/reports-history", response_model=ReportsPage)
async def get_reports_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: SessionStatus = Query("completed"),
):
    """Consultations in ``status`` that carry a final report, newest first."""
    db = await get_db()
    where = "WHERE status = ? AND final_report IS NOT NULL"
    count_row = await db.fetch_one(f"SELECT COUNT(*) AS total FROM medical_sessions {where}", (status,))
    total = count_row["total"] if count_row else 0

    rows = await db.fetch_all(
        f"SELECT {_COLUMNS} FROM medical_sessions {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
        (status, limit, (page - 1) * limit),
    )
    return ReportsPage(
        reports=[_row_to_record(row) for row in rows],
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if total else 0,
    )
