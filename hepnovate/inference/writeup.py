"""Generate a History and Physical write-up from a confirmed diagnosis."""

import logging

from hepnovate.config import settings
from hepnovate.errors import InvalidInputError, RemoteModelError
from hepnovate.inference.client import chat_completion
from hepnovate.models import WriteUpRequest
from hepnovate.prompts import WRITEUP_SYSTEM, compose_writeup_prompt

logger = logging.getLogger(__name__)


async def generate_writeup(request: WriteUpRequest) -> str:
    if not request.diagnoses:
        raise InvalidInputError("Missing diagnosis data")

    try:
        raw = await chat_completion(
            system_prompt=WRITEUP_SYSTEM,
            user_prompt=compose_writeup_prompt(request),
            model=settings.text_model,
            max_tokens=settings.writeup_max_tokens,
            temperature=settings.writeup_temperature,
            call_type="writeup",
        )
    except Exception as e:
        logger.error("Write-up generation failed: %s", e, exc_info=True)
        raise RemoteModelError("Failed to generate write-up") from e

    write_up = raw.strip()
    if not write_up:
        logger.error("Write-up model returned no text.")
        raise RemoteModelError("Failed to generate write-up")
    return write_up
