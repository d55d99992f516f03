import os
import tempfile

# la config se lee al importar app.core: primero el entorno de test
_DB_PATH = os.path.join(tempfile.mkdtemp(prefix="agenda-tests-"), "agenda.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["LINK_SECRET"] = "test-link-secret"
os.environ.pop("RESEND_API_KEY", None)

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

import app.models  # noqa: F401
from app.core.db import Base, SessionLocal, engine
from app.main import app as fastapi_app

from .helpers import make_clinic, make_user, make_professional, make_patient, add_rules, auth_headers


@pytest_asyncio.fixture(autouse=True)
async def _schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db():
    async with SessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def clinic(db):
    return await make_clinic(db)


@pytest_asyncio.fixture
async def admin(db, clinic):
    return await make_user(db, clinic, email="admin@clinicacentral.com.br", role="admin")


@pytest_asyncio.fixture
async def professional_user(db, clinic):
    return await make_user(db, clinic, email="ana@clinicacentral.com.br", role="professional")


@pytest_asyncio.fixture
async def professional(db, clinic, professional_user):
    prof = await make_professional(db, clinic, user=professional_user, name="Dra. Ana")
    await add_rules(db, prof)
    return prof


@pytest_asyncio.fixture
async def patient(db, clinic):
    return await make_patient(db, clinic, name="Juan Pérez", email="juan.perez@gmail.com", consent_email=True)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def professional_headers(professional, professional_user):
    return auth_headers(professional_user)
