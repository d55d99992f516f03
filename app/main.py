import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.errors import register_exception_handlers
from app.api.v1.auth import router as auth_router
from app.api.v1.professionals import router as professionals_router
from app.api.v1.patient import router as patient_router
from app.api.v1.recurrences import router as recurrences_router
from app.api.v1.appointment import router as appointment_router
from app.api.v1.availability import router as availability_router
from app.api.v1.groups import router as groups_router
from app.api.v1.public import router as public_router
from app.api.v1.jobs import router as jobs_router
from app.api.v1.audit import router as audit_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(title="Clinic Agenda API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth_router)
app.include_router(professionals_router)
app.include_router(patient_router)
# recurrences antes que /appointments/{id}
app.include_router(recurrences_router)
app.include_router(appointment_router)
app.include_router(availability_router)
app.include_router(groups_router)
app.include_router(public_router)
app.include_router(jobs_router)
app.include_router(audit_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
