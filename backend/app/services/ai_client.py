"""
Unified AI client — Oracle OCI request-signing with Anthropic as the alternative.

Primary provider:
  Oracle Generative AI Inference via OCI SDK + signed requests using ~/.oci/config.

Alternative:
  Anthropic (only when OCI is not configured).

Nothing here is created at import time: build an AIClient from a Settings
object and pass it to whatever needs it.
"""

from __future__ import annotations

import json
import asyncio
import logging
from pathlib import Path

import anthropic
import oci
from pydantic import BaseModel

from app.errors import ConfigurationError, GenerationError

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# OCI chat request / response
# ─────────────────────────────────────────────────────────────────────────────

def _uses_cohere_format(settings) -> bool:
    forced = settings.ORACLE_GENAI_API_FORMAT.strip().upper()
    if forced in ("COHERE", "GENERIC"):
        return forced == "COHERE"
    return settings.ORACLE_GENAI_MODEL.lower().startswith("cohere.")


def _cohere_chat_request(system: str, messages: list[dict]) -> dict:
    # Cohere takes the last turn as "message" and earlier turns as history.
    *earlier, last = messages or [{"content": ""}]
    request: dict = {"apiFormat": "COHERE", "message": last.get("content", "")}
    if earlier:
        request["chatHistory"] = [
            {"role": "USER" if m.get("role") == "user" else "CHATBOT", "message": m.get("content", "")}
            for m in earlier
        ]
    if system:
        request["preambleOverride"] = system
    return request


def _generic_chat_request(system: str, messages: list[dict]) -> dict:
    turns = [("SYSTEM", system)] if system else []
    turns += [("USER" if m.get("role") == "user" else "ASSISTANT", m.get("content", "")) for m in messages]
    return {
        "apiFormat": "GENERIC",
        "messages": [{"role": role, "content": [{"type": "TEXT", "text": text}]} for role, text in turns],
    }


def build_chat_body(settings, system: str, messages: list[dict], max_tokens: int, temperature: float) -> dict:
    """JSON body for POST /actions/chat in the format the configured model expects."""
    if _uses_cohere_format(settings):
        chat_request = _cohere_chat_request(system, messages)
    else:
        chat_request = _generic_chat_request(system, messages)
    chat_request.update({"maxTokens": max_tokens, "temperature": temperature, "isStream": False})

    body: dict = {
        "servingMode": {"servingType": "ON_DEMAND", "modelId": settings.ORACLE_GENAI_MODEL},
        "chatRequest": chat_request,
    }
    if settings.ORACLE_GENAI_COMPARTMENT_ID:
        body["compartmentId"] = settings.ORACLE_GENAI_COMPARTMENT_ID
    return body


def reply_text(response_json: dict) -> str:
    """Text of the first reply in an /actions/chat response."""
    chat_response = response_json.get("chatResponse", {})
    if chat_response.get("apiFormat") == "COHERE":
        return chat_response.get("text", "")
    for choice in chat_response.get("choices", [])[:1]:
        content = choice.get("message", {}).get("content", [])
        if isinstance(content, list):
            return "".join(part.get("text", "") for part in content)
        return str(content)
    return ""


def extract_json(text: str) -> str:
    """Strip markdown fences and surrounding prose from a JSON reply."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        cleaned = cleaned.rsplit("```", 1)[0]
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end < start:
        raise ValueError("No JSON object found in model output")
    return cleaned[start:end + 1]


# ─────────────────────────────────────────────────────────────────────────────
# Oracle GenAI — OCI signed requests
# ─────────────────────────────────────────────────────────────────────────────

def oracle_configured(settings) -> bool:
    # Request signing needs OCI config/profile + compartment + model.
    return bool(
        settings.OCI_CONFIG_FILE
        and settings.OCI_CONFIG_PROFILE
        and settings.ORACLE_GENAI_MODEL
        and settings.ORACLE_GENAI_COMPARTMENT_ID
    )


def _oci_config(settings) -> dict:
    cfg_file = str(Path(settings.OCI_CONFIG_FILE).expanduser())
    return oci.config.from_file(file_location=cfg_file, profile_name=settings.OCI_CONFIG_PROFILE)


def _oci_endpoint(settings, cfg: dict) -> str:
    if settings.ORACLE_GENAI_BASE_URL:
        return settings.ORACLE_GENAI_BASE_URL.rstrip("/")
    region = cfg.get("region", "us-chicago-1")
    return f"https://inference.generativeai.{region}.oci.oraclecloud.com"


def oci_post(settings, path: str, body: dict, timeout: tuple = (10.0, 300.0)) -> dict:
    """Perform a signed POST request via OCI base client and return JSON dict.

    Args:
        timeout: (connect_timeout, read_timeout) in seconds.
    """
    cfg = _oci_config(settings)
    endpoint = _oci_endpoint(settings, cfg)

    client = oci.generative_ai_inference.GenerativeAiInferenceClient(
        config=cfg,
        service_endpoint=endpoint,
        timeout=timeout,
    )

    # OCI SDK already prefixes the API version path (/20231130).
    response = client.base_client.call_api(
        resource_path=path,
        method="POST",
        header_params={"content-type": "application/json"},
        body=body,
        response_type="str",
    )
    text = response.data if isinstance(response.data, str) else str(response.data)
    return json.loads(text)


def oracle_embed(settings, texts: list[str], model_id: str, input_type: str) -> list[list[float]]:
    """Embed strings using /actions/embedText.

    input_type is SEARCH_DOCUMENT for indexed chunks and SEARCH_QUERY for queries.
    """
    body: dict = {
        "inputs": texts,
        "inputType": input_type,
        "truncate": "END",
        "servingMode": {"servingType": "ON_DEMAND", "modelId": model_id},
    }
    if settings.ORACLE_GENAI_COMPARTMENT_ID:
        body["compartmentId"] = settings.ORACLE_GENAI_COMPARTMENT_ID
    data = oci_post(settings, "/actions/embedText", body)
    return data.get("embeddings", [])


# ─────────────────────────────────────────────────────────────────────────────
# Client
# ─────────────────────────────────────────────────────────────────────────────

class AIClient:
    """Chat completions against whichever provider the settings configure.

    Provider priority:
      1. Oracle GenAI (OCI signed) when OCI config + compartment + model are set
      2. Anthropic when ANTHROPIC_API_KEY is set
    With neither, every call raises ConfigurationError.
    """

    def __init__(self, settings):
        self.settings = settings
        self._anthropic: anthropic.Anthropic | None = None

    @property
    def provider(self) -> str | None:
        if oracle_configured(self.settings):
            return "oci"
        if self.settings.ANTHROPIC_API_KEY:
            return "anthropic"
        return None

    @property
    def model_name(self) -> str | None:
        if self.provider == "oci":
            return self.settings.ORACLE_GENAI_MODEL
        if self.provider == "anthropic":
            return self.settings.ANTHROPIC_MODEL
        return None

    def provider_name(self) -> str:
        if self.provider == "oci":
            return f"Oracle GenAI OCI-Signed ({self.settings.ORACLE_GENAI_MODEL})"
        if self.provider == "anthropic":
            return f"Anthropic ({self.settings.ANTHROPIC_MODEL})"
        return "none"

    def is_configured(self) -> bool:
        return self.provider is not None

    def ensure_configured(self) -> None:
        if not self.is_configured():
            raise ConfigurationError(
                "Language model is not configured",
                detail=(
                    "Set OCI_CONFIG_FILE, OCI_CONFIG_PROFILE, ORACLE_GENAI_COMPARTMENT_ID and "
                    "ORACLE_GENAI_MODEL, or ANTHROPIC_API_KEY, in backend/.env."
                ),
            )

    async def chat(
        self,
        system: str,
        messages: list[dict],
        max_tokens: int = 400,
        temperature: float = 0.7,
    ) -> str:
        """Send a chat completion request and return the reply text."""
        self.ensure_configured()
        provider = self.provider
        try:
            if provider == "oci":
                body = build_chat_body(self.settings, system, messages, max_tokens, temperature)
                data = await asyncio.to_thread(oci_post, self.settings, "/actions/chat", body)
                return reply_text(data)
            return await asyncio.to_thread(self._anthropic_chat, system, messages, max_tokens, temperature)
        except Exception as e:
            logger.error("%s chat call failed: %s", provider, e)
            raise GenerationError(f"Language model call failed ({provider})", detail=str(e)) from e

    def _anthropic_chat(self, system: str, messages: list[dict], max_tokens: int, temperature: float) -> str:
        if self._anthropic is None:
            self._anthropic = anthropic.Anthropic(api_key=self.settings.ANTHROPIC_API_KEY)
        response = self._anthropic.messages.create(
            model=self.settings.ANTHROPIC_MODEL,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=messages,
        )
        return response.content[0].text

    async def chat_json(
        self,
        system: str,
        messages: list[dict],
        schema: type[BaseModel],
        max_tokens: int = 1500,
        temperature: float = 0.5,
    ) -> BaseModel:
        """Ask for a JSON object and validate it against schema."""
        instruction = (
            f"{system}\n\n"
            "Respond with a single JSON object that validates against this JSON schema, "
            "with no markdown fences and no text before or after it:\n"
            f"{json.dumps(schema.model_json_schema())}"
        )
        raw = await self.chat(instruction, messages, max_tokens=max_tokens, temperature=temperature)
        try:
            return schema.model_validate_json(extract_json(raw))
        except ValueError as e:
            raise GenerationError("Model output did not match the expected schema", detail=str(e)) from e

    async def health_check(self) -> dict:
        """Live connectivity test — called by /api/health/ai."""
        provider = self.provider_name()
        if not self.is_configured():
            return {
                "provider": "none",
                "status": "unconfigured",
                "message": (
                    "Set OCI_CONFIG_FILE, OCI_CONFIG_PROFILE, "
                    "ORACLE_GENAI_COMPARTMENT_ID and ORACLE_GENAI_MODEL in backend/.env."
                ),
            }

        try:
            reply = await self.chat(
                system="You are a test assistant.",
                messages=[{"role": "user", "content": "Reply with exactly: OK"}],
                max_tokens=10,
                temperature=0.0,
            )
            return {"provider": provider, "status": "ok", "test_reply": reply.strip()}
        except GenerationError as e:
            return {"provider": provider, "status": "error", "error": e.detail or e.message}
