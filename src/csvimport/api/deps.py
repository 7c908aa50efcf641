"""API dependencies for dependency injection."""

from typing import Annotated, AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from csvimport.services.storage import ObjectStorage
from csvimport.workers.scheduler import JobScheduler


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session."""
    async with request.app.state.session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_scheduler(request: Request) -> JobScheduler:
    """The scheduler owned by the application."""
    return request.app.state.scheduler


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
Scheduler = Annotated[JobScheduler, Depends(get_scheduler)]
Storage = Annotated[ObjectStorage, Depends(get_storage)]
