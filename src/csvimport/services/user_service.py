"""Client for the downstream record-creation (user) service."""

from dataclasses import dataclass

import httpx
import structlog

from csvimport.config import settings
from csvimport.schemas.record import StudentRecord

logger = structlog.get_logger()


@dataclass
class CreateResult:
    """Outcome of one create call."""

    ok: bool
    status_code: int | None = None
    error: str | None = None


class UserServiceClient:
    """Creates one student per HTTP call."""

    def __init__(
        self,
        create_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.create_url = create_url or settings.user_service_create_url
        self.timeout = timeout or settings.user_service_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def create_student(
        self,
        record: StudentRecord,
        organization_id: str,
        created_by: str,
    ) -> CreateResult:
        """POST a single record; never raises for HTTP or transport failures."""
        client = await self._get_client()
        try:
            response = await client.post(
                self.create_url,
                json=record.to_payload(organization_id, created_by),
            )
        except httpx.HTTPError as e:
            logger.error("User service request failed", email=record.email, error=str(e))
            return CreateResult(ok=False, error=str(e) or e.__class__.__name__)

        if response.is_success:
            logger.debug("Created user", email=record.email, status_code=response.status_code)
            return CreateResult(ok=True, status_code=response.status_code)

        error = f"{response.status_code} - {response.text}"
        logger.warning("User service rejected record", email=record.email, error=error)
        return CreateResult(ok=False, status_code=response.status_code, error=error)
