"""
Handlers for the direct-enqueue queues: analyze-photo, chat-reply and
send-message.

Payloads are validated first; a malformed payload raises
PayloadValidationError and is never retried. LLM and channel errors carry
their own ErrorKind and the queue decides about retries.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fortune.infrastructure.observability.logging import get_logger
from fortune.jobs.errors import PayloadValidationError
from fortune.jobs.models import Job
from fortune.services.llm_service import LLMService
from fortune.services.telegram_client import TelegramClient

logger = get_logger(__name__)

Persona = Literal["arina", "cassandra"]

PERSONA_PROMPTS: dict[str, str] = {
    "arina": "You are Arina, a warm coffee grounds reader. Describe the symbols you see "
    "in the cup and give a gentle, practical interpretation.",
    "cassandra": "You are Cassandra, a mystical oracle. Give a deep, detailed reading of the "
    "symbols in the coffee cup.",
}
CHAT_SYSTEM_PROMPT = "You are a friendly fortune teller continuing a conversation with the user."

PHOTO_MAX_TOKENS = 1500
CHAT_MAX_TOKENS = 800


class PhotoAnalysisPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    chat_id: int
    image_url: str = Field(min_length=1)
    persona: Persona = "arina"
    language: str = "ru"
    user_name: str | None = None


class ChatReplyPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    chat_id: int
    text: str = Field(min_length=1)
    conversation_id: str | None = None
    language: str = "ru"


class SendMessagePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    chat_id: int
    text: str = Field(min_length=1)
    parse_mode: str | None = "HTML"


def parse_payload(model: type[BaseModel], job: Job):
    try:
        return model.model_validate(job.payload)
    except ValidationError as e:
        raise PayloadValidationError(f"Invalid payload for {job.queue_name}: {e}") from e


class JobHandlers:
    def __init__(self, llm: LLMService, channel: TelegramClient):
        self.llm = llm
        self.channel = channel

    async def handle_analyze_photo(self, job: Job) -> None:
        payload: PhotoAnalysisPayload = parse_payload(PhotoAnalysisPayload, job)
        job_logger = logger.bind(job_id=job.id, user_id=payload.user_id, persona=payload.persona)
        job_logger.info("Analyzing photo")

        messages = [
            {
                "role": "system",
                "content": f"{PERSONA_PROMPTS[payload.persona]} Reply in language '{payload.language}'.",
            },
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": f"Reader name: {payload.user_name or 'guest'}."},
                    {"type": "image_url", "image_url": {"url": payload.image_url}},
                ],
            },
        ]
        result = await self.llm.invoke(messages, max_tokens=PHOTO_MAX_TOKENS)
        await self.channel.send_message(payload.chat_id, result.content)

        job_logger.info("Photo analysis delivered", tokens_used=result.total_tokens)

    async def handle_chat_reply(self, job: Job) -> None:
        payload: ChatReplyPayload = parse_payload(ChatReplyPayload, job)
        job_logger = logger.bind(job_id=job.id, user_id=payload.user_id)

        messages = [
            {"role": "system", "content": f"{CHAT_SYSTEM_PROMPT} Reply in language '{payload.language}'."},
            {"role": "user", "content": payload.text},
        ]
        result = await self.llm.invoke(messages, max_tokens=CHAT_MAX_TOKENS)
        await self.channel.send_message(payload.chat_id, result.content)

        job_logger.info(
            "Chat reply delivered",
            conversation_id=payload.conversation_id,
            tokens_used=result.total_tokens,
        )

    async def handle_send_message(self, job: Job) -> None:
        payload: SendMessagePayload = parse_payload(SendMessagePayload, job)
        await self.channel.send_message(payload.chat_id, payload.text, parse_mode=payload.parse_mode)
        logger.info("Message delivered", job_id=job.id, chat_id=payload.chat_id)
