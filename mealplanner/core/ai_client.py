import logging
from typing import Optional
from datetime import datetime, timezone
from google import genai
from google.genai import types

from ..errors import GenerationServiceError
from ..settings import settings

logger = logging.getLogger("mealplanner.ai")


class AIClient:
    _instance = None

    def __init__(self):
        self.api_key = settings.gemini_api_key
        self.mode = settings.ai_mode  # "mock" or "gemini"
        self._client: Optional[genai.Client] = None
        self.last_error: Optional[str] = None
        self.last_error_at: Optional[datetime] = None

        if self.mode == "gemini" and self.api_key:
            self._client = genai.Client(api_key=self.api_key)

    @classmethod
    def get_instance(cls):
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def is_available(self) -> bool:
        return self.mode == "gemini" and self._client is not None

    async def generate_text(
        self,
        prompt: str,
        model: Optional[str] = None,
        system_instruction: Optional[str] = None,
    ) -> str:
        """
        Send one prompt and return the raw response text.
        Raises GenerationServiceError when unavailable, failing or empty.
        """
        if not self.is_available():
            raise GenerationServiceError(f"Generation service is not available (mode={self.mode})")

        model_id = model or settings.gemini_text_model

        try:
            config = types.GenerateContentConfig(
                response_mime_type="application/json",
                system_instruction=system_instruction,
            )
            response = await self._client.aio.models.generate_content(
                model=model_id,
                contents=prompt,
                config=config,
            )
        except Exception as e:
            self.last_error = f"{e.__class__.__name__}: {str(e)}"
            self.last_error_at = datetime.now(timezone.utc)
            logger.error(f"Gemini generation failed: {e}")
            raise GenerationServiceError(f"Generation service error: {e}") from e

        if not response.text:
            logger.warning("Gemini returned empty response")
            raise GenerationServiceError("Generation service returned an empty response")

        return response.text


# Singleton instance access
ai_client = AIClient.get_instance()
