"""
QuizMaster - Vision LLM Providers
=================================
Thin wrappers around the two supported multimodal services:
  1. Gemini (Google)     (default)
  2. Claude (Anthropic)  (alternative)

Both take an ordered list of parts (PreparedImage or str) and ask for the
four-field quiz result as structured output. Each provider translates its
SDK's failures into the gateway error taxonomy; nothing here retries.

Set in .env:
  QUIZMASTER_PROVIDER=gemini   (gemini | claude)
  GEMINI_API_KEY=...
  ANTHROPIC_API_KEY=...
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Union

from prompts.scan_prompts import SYSTEM_PROMPT
from quizmaster.config import Settings, has_credential
from quizmaster.exceptions import AuthError, ConfigurationError, ServiceError
from quizmaster.preprocessor import PreparedImage

logger = logging.getLogger(__name__)

Part = Union[PreparedImage, str]

RESULT_FIELDS = ("studentName", "score", "totalMarks", "subject")

# Gemini's schema dialect (upper-case OpenAPI types)
GEMINI_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "studentName": {"type": "STRING"},
        "score":       {"type": "NUMBER"},
        "totalMarks":  {"type": "NUMBER"},
        "subject":     {"type": "STRING"},
    },
    "required": list(RESULT_FIELDS),
}

# JSON Schema for Claude's tool input
CLAUDE_RESULT_TOOL = {
    "name": "record_quiz_result",
    "description": "Record the student name, score, total marks and subject read from the quiz paper.",
    "input_schema": {
        "type": "object",
        "properties": {
            "studentName": {"type": "string"},
            "score":       {"type": "number"},
            "totalMarks":  {"type": "number"},
            "subject":     {"type": "string"},
        },
        "required": list(RESULT_FIELDS),
    },
}


@dataclass
class LLMResponse:
    text: str
    provider: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0


# ─────────────────────────────────────────────────────────────────────────────
# Gemini Provider (Google), default
# ─────────────────────────────────────────────────────────────────────────────

class GeminiVisionProvider:
    name = "gemini"
    DEFAULT_MODEL = "gemini-2.5-pro"

    def __init__(self, api_key: str, model: Optional[str] = None, timeout: float = 120.0):
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            if not self.is_available():
                raise ConfigurationError("GEMINI_API_KEY is not set")
            import google.generativeai as genai
            genai.configure(api_key=self.api_key)
            self._client = genai.GenerativeModel(
                model_name=self.model,
                system_instruction=SYSTEM_PROMPT,
                generation_config={
                    "temperature": 0.1,
                    "response_mime_type": "application/json",
                    "response_schema": GEMINI_RESPONSE_SCHEMA,
                },
            )
            logger.info("Gemini client ready: %s", self.model)
        return self._client

    def generate(self, parts: List[Part]) -> LLMResponse:
        from google.api_core import exceptions as google_exceptions

        client = self._get_client()
        contents = [
            {"mime_type": p.mime_type, "data": p.encoded_bytes} if isinstance(p, PreparedImage) else p
            for p in parts
        ]

        start = time.time()
        try:
            response = client.generate_content(contents, request_options={"timeout": self.timeout})
        except (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied) as e:
            raise AuthError(f"Gemini rejected the API key: {e}")
        except google_exceptions.InvalidArgument as e:
            if "API key" in str(e) or "API_KEY" in str(e):
                raise AuthError(f"Gemini rejected the API key: {e}")
            raise ServiceError(f"Gemini request failed: {e}", status_code=400)
        except google_exceptions.GoogleAPIError as e:
            raise ServiceError(f"Gemini request failed: {e}", status_code=getattr(e, "code", None))
        except (OSError, TimeoutError) as e:
            raise ServiceError(f"Gemini request failed: {e}")

        try:
            text = response.text
        except ValueError:
            # No candidate parts (e.g. blocked by safety filters)
            text = ""

        usage = getattr(response, "usage_metadata", None)
        latency = (time.time() - start) * 1000
        return LLMResponse(
            text=text or "",
            provider=self.name,
            model=self.model,
            prompt_tokens=getattr(usage, "prompt_token_count", 0) or 0,
            completion_tokens=getattr(usage, "candidates_token_count", 0) or 0,
            latency_ms=round(latency, 2),
        )

    def is_available(self) -> bool:
        return has_credential(self.api_key)


# ─────────────────────────────────────────────────────────────────────────────
# Claude Provider (Anthropic)
# ─────────────────────────────────────────────────────────────────────────────

class ClaudeVisionProvider:
    name = "claude"
    DEFAULT_MODEL = "claude-sonnet-4-5"

    def __init__(self, api_key: str, model: Optional[str] = None, timeout: float = 120.0):
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            if not self.is_available():
                raise ConfigurationError("ANTHROPIC_API_KEY is not set")
            import anthropic
            self._client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout, max_retries=0)
            logger.info("Claude client ready: %s", self.model)
        return self._client

    def generate(self, parts: List[Part]) -> LLMResponse:
        import anthropic

        client = self._get_client()
        content = []
        for p in parts:
            if isinstance(p, PreparedImage):
                content.append({
                    "type": "image",
                    "source": {"type": "base64", "media_type": p.mime_type, "data": p.base64},
                })
            else:
                content.append({"type": "text", "text": p})

        start = time.time()
        try:
            message = client.messages.create(
                model=self.model,
                max_tokens=1024,
                system=SYSTEM_PROMPT,
                tools=[CLAUDE_RESULT_TOOL],
                tool_choice={"type": "tool", "name": CLAUDE_RESULT_TOOL["name"]},
                messages=[{"role": "user", "content": content}],
            )
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            raise AuthError(f"Claude rejected the API key: {e}")
        except anthropic.APIStatusError as e:
            raise ServiceError(f"Claude request failed: {e}", status_code=e.status_code)
        except anthropic.APIError as e:
            raise ServiceError(f"Claude request failed: {e}")

        text = self._response_text(message)
        latency = (time.time() - start) * 1000
        return LLMResponse(
            text=text,
            provider=self.name,
            model=self.model,
            prompt_tokens=message.usage.input_tokens,
            completion_tokens=message.usage.output_tokens,
            latency_ms=round(latency, 2),
        )

    @staticmethod
    def _response_text(message) -> str:
        # The forced tool call carries the structured result; fall back to any text blocks.
        for block in message.content:
            if block.type == "tool_use":
                return json.dumps(block.input)
        return "".join(block.text for block in message.content if block.type == "text")

    def is_available(self) -> bool:
        return has_credential(self.api_key)


# ─────────────────────────────────────────────────────────────────────────────
# Factory
# ─────────────────────────────────────────────────────────────────────────────

def provider_from_settings(settings: Settings):
    if settings.provider == "gemini":
        return GeminiVisionProvider(settings.gemini_api_key, settings.gemini_model, settings.request_timeout)
    if settings.provider == "claude":
        return ClaudeVisionProvider(settings.anthropic_api_key, settings.claude_model, settings.request_timeout)
    raise ConfigurationError(f"Unknown QUIZMASTER_PROVIDER: {settings.provider!r} (expected gemini or claude)")
