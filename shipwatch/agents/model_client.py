"""
Generative model client.

The extractor only needs single-shot text (or text + image) completion. The
default client runs a thin google-adk Agent through an InMemoryRunner, one
session per call.
"""

import asyncio
import logging
from typing import Optional, Protocol

from google.adk.agents.llm_agent import Agent
from google.adk.runners import InMemoryRunner
from google.genai import errors as genai_errors
from google.genai.types import Blob, Content, GenerateContentConfig, Part

from shipwatch.config import DEFAULT_MODEL

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429


class GenerativeExtractionError(Exception):
    """The model call failed or returned something unusable."""


class RateLimitedError(GenerativeExtractionError):
    """The model provider rejected the call for rate limiting."""


class ModelClient(Protocol):
    """Single-shot completion collaborator."""

    async def complete(self, prompt: str, image_bytes: Optional[bytes] = None) -> str:
        ...


def detect_image_mime_type(image_bytes: bytes) -> str:
    """
    Detect MIME type from image bytes.

    Args:
        image_bytes: Image data as bytes

    Returns:
        MIME type string (e.g., 'image/png', 'image/jpeg')
    """
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    elif image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    elif image_bytes.startswith(b"GIF87a") or image_bytes.startswith(b"GIF89a"):
        return "image/gif"
    elif image_bytes.startswith(b"RIFF") and b"WEBP" in image_bytes[:20]:
        return "image/webp"
    else:
        return "application/octet-stream"


def build_extractor_agent(model: str = DEFAULT_MODEL) -> Agent:
    """Agent that answers shipment extraction and summary prompts verbatim."""
    return Agent(
        name="shipment_extractor",
        description="Extracts shipment details from shipping emails and screenshots.",
        instruction=(
            "You read shipping notifications and tracking screenshots for an "
            "Indian e-commerce shopper. Follow the output format requested in "
            "each message exactly."
        ),
        generate_content_config=GenerateContentConfig(temperature=0.1),
        model=model,
    )


class AgentModelClient:
    """
    ModelClient backed by a google-adk Agent.

    Errors from the provider are translated: HTTP 429 becomes
    RateLimitedError, everything else (including timeouts and empty
    responses) GenerativeExtractionError.
    """

    def __init__(
        self,
        agent: Optional[Agent] = None,
        timeout: float = 30.0,
        app_name: str = "shipwatch-extractor",
        user_id: str = "shipwatch",
    ):
        self.agent = agent or build_extractor_agent()
        self.runner = InMemoryRunner(agent=self.agent, app_name=app_name)
        self.timeout = timeout
        self.user_id = user_id

    async def _run(self, content: Content) -> str:
        session = await self.runner.session_service.create_session(
            app_name=self.runner.app_name,
            user_id=self.user_id,
        )

        result_text = ""
        async for event in self.runner.run_async(
            user_id=self.user_id,
            session_id=session.id,
            new_message=content,
        ):
            if event.content and event.content.parts:
                for part in event.content.parts:
                    if part.text:
                        result_text = part.text
        return result_text

    async def complete(self, prompt: str, image_bytes: Optional[bytes] = None) -> str:
        parts = [Part(text=prompt)]
        if image_bytes:
            mime_type = detect_image_mime_type(image_bytes)
            parts.append(Part(inline_data=Blob(data=image_bytes, mime_type=mime_type)))
        content = Content(role="user", parts=parts)

        try:
            result_text = await asyncio.wait_for(self._run(content), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise GenerativeExtractionError(
                f"Model call timed out after {self.timeout}s"
            ) from e
        except genai_errors.APIError as e:
            if e.code == RATE_LIMIT_STATUS:
                raise RateLimitedError(str(e)) from e
            raise GenerativeExtractionError(f"Model call failed: {e}") from e
        except Exception as e:
            raise GenerativeExtractionError(f"Model call failed: {e}") from e

        if not result_text:
            raise GenerativeExtractionError("Empty response from model")
        return result_text
