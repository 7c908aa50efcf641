"""Shared fixtures: SQLite database, fake object storage, mocked user service."""

import io
import json
import os
import tempfile
from dataclasses import dataclass, field

_TEST_DB_DIR = tempfile.mkdtemp(prefix="csvimport-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/test.db"

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from csvimport.models.base import Base
from csvimport.models.database import create_engine, create_session_maker
from csvimport.repositories.job_repo import CsvJobRepository
from csvimport.services.batch_processor import BatchProcessor
from csvimport.services.storage import build_file_locator, get_org_bucket_name, object_key_for
from csvimport.services.user_service import UserServiceClient

USER_SERVICE_URL = "http://users.test/student-create"
ORG_ID = "5f0c7b1e-2d4a-4c1b-9a6e-1f2e3d4c5b6a"
USER_ID = "a1b2c3d4-0000-4000-8000-000000000001"


def make_csv(rows: int, header: str = "email,firstname,lastname,phoneno") -> str:
    lines = [header]
    lines += [f"student{i}@school.org,First{i},Last{i},555000{i}" for i in range(1, rows + 1)]
    return "\n".join(lines) + "\n"


class FakeStorage:
    """In-memory stand-in for the MinIO bucket layout."""

    def __init__(self):
        self.objects: dict[tuple[str, str], str] = {}
        self.fail_reads = False

    def put(self, organization_id: str, key: str, text: str) -> str:
        self.objects[(get_org_bucket_name(organization_id), key)] = text
        return build_file_locator(organization_id, key)

    def open_text(self, bucket: str, key: str):
        if self.fail_reads:
            raise ConnectionError("object storage unavailable")
        return io.StringIO(self.objects[(bucket, key)])

    async def upload(self, organization_id: str, key: str, data: bytes, content_type: str = "text/csv") -> str:
        return self.put(organization_id, key, data.decode("utf-8"))


@dataclass
class Downstream:
    """Records create calls and answers them with a configurable status."""

    requests: list[dict] = field(default_factory=list)
    reject: dict[str, tuple[int, str]] = field(default_factory=dict)

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if body["email"] in self.reject:
            status_code, text = self.reject[body["email"]]
            return httpx.Response(status_code, text=text)
        return httpx.Response(201, json={"id": len(self.requests)})

    @property
    def emails(self) -> list[str]:
        return [r["email"] for r in self.requests]


@pytest_asyncio.fixture
async def session_maker():
    engine = create_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_maker(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def downstream() -> Downstream:
    return Downstream()


@pytest_asyncio.fixture
async def user_service(downstream):
    client = UserServiceClient(
        create_url=USER_SERVICE_URL,
        transport=httpx.MockTransport(downstream.handler),
    )
    yield client
    await client.close()


@pytest.fixture
def processor(session_maker, storage, user_service) -> BatchProcessor:
    return BatchProcessor(session_maker, storage, user_service, batch_size=50)


@pytest.fixture
def create_job(session_maker, storage):
    """Store a CSV and insert its queued job row."""

    async def _create(rows: int = 2, text: str | None = None, total_records: int | None = None):
        text = text if text is not None else make_csv(rows)
        async with session_maker() as session:
            repo = CsvJobRepository(session)
            job = await repo.create(
                organization_id=ORG_ID,
                file_name="students.csv",
                file_size=len(text),
                created_by=USER_ID,
                total_records=rows if total_records is None else total_records,
                headers=["email", "firstname", "lastname", "phoneno"],
            )
            await session.commit()
        storage.put(ORG_ID, object_key_for(job.job_id, job.file_name), text)
        return job

    return _create


@pytest.fixture
def fetch_job(session_maker):
    """Reload a job row in a fresh session."""

    async def _fetch(job_id):
        async with session_maker() as session:
            return await CsvJobRepository(session).get(job_id)

    return _fetch


@pytest_asyncio.fixture
async def app(session_maker, storage, user_service):
    from csvimport.main import create_app

    application = create_app(session_maker=session_maker, storage=storage, user_service=user_service)
    yield application
    await application.state.scheduler.stop()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
