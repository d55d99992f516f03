# Jobs que dispara un cron externo con Authorization: Bearer <CRON_SECRET>.
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.api.deps import verify_cron_secret
from app.services.extension import extend_indefinite_recurrences
from app.services.reminders import send_due_reminders

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(verify_cron_secret)])

@router.api_route("/extend-recurrences", methods=["GET", "POST"])
async def extend_recurrences(db: AsyncSession = Depends(get_db)):
    report = await extend_indefinite_recurrences(db)
    return {"ok": True, **report.as_dict()}

@router.api_route("/send-reminders", methods=["GET", "POST"])
async def send_reminders(db: AsyncSession = Depends(get_db)):
    report = await send_due_reminders(db)
    return {"ok": True, **report.as_dict()}
