"""Direct-enqueue endpoints for photo analysis and chat replies."""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from fortune.container import ServiceContainer
from fortune.routes.deps import get_container
from fortune.services.intake_service import (
    REASON_INSUFFICIENT_CREDITS,
    REASON_MAINTENANCE,
    IntakeResult,
)

router = APIRouter(prefix="/jobs", tags=["jobs"])


class PhotoJobRequest(BaseModel):
    user_id: str
    chat_id: int
    image_url: str = Field(min_length=1)
    persona: Literal["arina", "cassandra"] = "arina"
    language: str = "ru"
    user_name: str | None = None


class ChatJobRequest(BaseModel):
    user_id: str
    chat_id: int
    text: str = Field(min_length=1, max_length=4000)
    conversation_id: str | None = None
    language: str = "ru"


class JobAccepted(BaseModel):
    job_id: str
    status: str = "queued"


def _accepted_or_raise(result: IntakeResult) -> JobAccepted:
    if result.accepted and result.job_id:
        return JobAccepted(job_id=result.job_id)
    if result.reason == REASON_INSUFFICIENT_CREDITS:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail="Insufficient credits")
    if result.reason == REASON_MAINTENANCE:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Maintenance mode")
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Could not queue the request, try again"
    )


@router.post("/photo", status_code=status.HTTP_202_ACCEPTED, response_model=JobAccepted)
async def submit_photo(body: PhotoJobRequest, container: ServiceContainer = Depends(get_container)):
    result = await container.intake.submit_photo(**body.model_dump())
    return _accepted_or_raise(result)


@router.post("/chat", status_code=status.HTTP_202_ACCEPTED, response_model=JobAccepted)
async def submit_chat(body: ChatJobRequest, container: ServiceContainer = Depends(get_container)):
    result = await container.intake.submit_chat_message(**body.model_dump())
    return _accepted_or_raise(result)
