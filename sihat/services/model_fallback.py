"""
Model Fallback
Tries a sequence of Gemini models until one returns a usable response,
and maps provider errors to user-facing error codes.
"""
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from fastapi.responses import JSONResponse

from sihat.config import settings
from sihat.services.alert_manager import alert_manager
from sihat.services.gemini_service import Contents, get_gemini_service

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_MODELS = ["gemini-2.0-flash", "gemini-1.5-flash"]
ADVANCED_FALLBACK_MODELS = ["gemini-2.0-flash", "gemini-1.5-flash"]

MODEL_STATUS_MESSAGES = {
    "gemini-2.0-flash": "Using rapid analysis...",
    "gemini-1.5-flash": "Using standard analysis...",
}

# Doctor level chosen by the patient or admin -> model
DOCTOR_MODEL_MAPPING = {
    "Master": {"model": "gemini-3.0-preview", "label": "Gemini 3.0 Preview (Master)"},
    "Expert": {"model": "gemini-2.5-pro", "label": "Gemini 2.5 Pro (Expert)"},
    "Physician": {"model": "gemini-2.0-flash", "label": "Gemini 2.0 Flash"},
}

Validator = Callable[[str], Tuple[bool, Any]]


class AllModelsFailedError(Exception):
    """Raised when the primary model and every fallback failed"""


@dataclass
class FallbackResult:
    """Outcome of a non-streaming generation"""
    text: str
    parsed: Any
    model_used: int  # 1-based position in the model order
    model_id: str
    status: str


@dataclass
class StreamResult:
    """A live stream plus the model that produced its first chunk"""
    chunks: Iterator[str]
    model_id: str
    used_fallback: bool

    @property
    def header_value(self) -> str:
        return f"{self.model_id}-fallback" if self.used_fallback else self.model_id


@dataclass
class ApiError:
    code: str
    user_message: str
    details: str


def model_order(primary: str, fallbacks: Optional[List[str]] = None) -> List[str]:
    """Primary first, then each fallback that is not the primary"""
    fallbacks = DEFAULT_FALLBACK_MODELS if fallbacks is None else fallbacks
    return [primary] + [m for m in fallbacks if m != primary]


def model_for_doctor_level(level: Optional[str]) -> str:
    entry = DOCTOR_MODEL_MAPPING.get(level or "")
    return entry["model"] if entry else settings.DEFAULT_MODEL


def generate_text_with_fallback(
    primary: str,
    contents: Contents,
    system_instruction: Optional[str] = None,
    fallbacks: Optional[List[str]] = None,
    context: str = "generation",
    validator: Optional[Validator] = None,
    generation_config: Optional[Dict[str, Any]] = None
) -> FallbackResult:
    """
    Generate text, falling back through models on errors or empty output

    Args:
        primary: Model tried first
        contents: Prompt text or multimodal parts
        system_instruction: System prompt
        fallbacks: Models tried after the primary (primary is skipped if listed)
        context: Label used in logs and the final error
        validator: Optional check returning (is_valid, parsed_value)

    Returns:
        FallbackResult for the first model that produced a valid response

    Raises:
        AllModelsFailedError: every model errored, returned nothing, or failed validation
    """
    gemini = get_gemini_service()
    models = model_order(primary, fallbacks)
    last_error: Optional[Exception] = None

    for index, model_id in enumerate(models):
        try:
            logger.info(f"[{context}] Trying model {index + 1}/{len(models)}: {model_id}")
            text = gemini.generate(model_id, contents, system_instruction, generation_config)

            if not text or not text.strip():
                logger.warning(f"[{context}] Empty response from {model_id}")
                alert_manager.record_ratio("ai_success_rate", False)
                last_error = ValueError(f"Empty response from {model_id}")
                continue
            alert_manager.record_ratio("ai_success_rate", True)

            parsed = None
            if validator is not None:
                is_valid, parsed = validator(text)
                if not is_valid:
                    logger.warning(f"[{context}] Response from {model_id} failed validation")
                    last_error = ValueError(f"Invalid response from {model_id}")
                    continue

            status = MODEL_STATUS_MESSAGES.get(model_id, "Analysis complete") if index else "Analysis complete"
            return FallbackResult(
                text=text,
                parsed=parsed,
                model_used=index + 1,
                model_id=model_id,
                status=status
            )

        except Exception as e:
            logger.warning(f"[{context}] Model {model_id} failed: {e}")
            alert_manager.record_ratio("ai_success_rate", False)
            last_error = e

    raise AllModelsFailedError(f"All models failed for {context}") from last_error


def stream_text_with_fallback(
    primary: str,
    contents: Contents,
    system_instruction: Optional[str] = None,
    fallbacks: Optional[List[str]] = None,
    context: str = "stream",
    generation_config: Optional[Dict[str, Any]] = None
) -> StreamResult:
    """
    Open a streaming generation, falling back when a model fails to start

    The first chunk of each stream is pulled eagerly so that quota or
    model-not-found errors surface here rather than mid-response.
    """
    gemini = get_gemini_service()
    primary_error: Optional[Exception] = None

    for index, model_id in enumerate(model_order(primary, fallbacks)):
        try:
            chunks = gemini.stream(model_id, contents, system_instruction, generation_config)
            first = next(chunks, None)
            if first is None:
                raise ValueError(f"Empty stream from {model_id}")
            alert_manager.record_ratio("ai_success_rate", True)
            if index:
                logger.info(f"[{context}] Streaming with fallback model {model_id}")
            return StreamResult(
                chunks=itertools.chain([first], chunks),
                model_id=model_id,
                used_fallback=index > 0
            )
        except Exception as e:
            logger.warning(f"[{context}] Model {model_id} failed to stream: {e}")
            alert_manager.record_ratio("ai_success_rate", False)
            if primary_error is None:
                primary_error = e

    raise AllModelsFailedError(f"All models failed. Primary error: {primary_error}") from primary_error


def parse_api_error(error: Exception) -> ApiError:
    """Map a provider error to a stable code and a message safe to show patients"""
    message = str(error)
    lowered = message.lower()

    if "leaked" in lowered or "api key was reported" in lowered:
        return ApiError("API_KEY_LEAKED", "The AI service key has been disabled. Please contact the administrator.", message)
    if "invalid" in lowered or "API_KEY_INVALID" in message:
        return ApiError("API_KEY_INVALID", "The AI service key is invalid. Please contact the administrator.", message)
    if "quota" in lowered or "RATE_LIMIT" in message or "429" in message:
        return ApiError("API_QUOTA_EXCEEDED", "The AI service is busy. Please try again in a few minutes.", message)
    if "not found" in lowered or "does not exist" in lowered:
        return ApiError("MODEL_NOT_FOUND", "The selected AI model is unavailable. Please try another doctor level.", message)
    return ApiError("UNKNOWN_ERROR", "An error occurred. Please try again.", message)


def build_error_response(error: Exception, context: str = "api") -> JSONResponse:
    """JSON 500 response for a failed AI call; details only outside production"""
    api_error = parse_api_error(error)
    logger.error(f"[{context}] {api_error.code}: {api_error.details}")

    body = {"error": api_error.user_message, "code": api_error.code}
    if settings.is_development:
        body["details"] = api_error.details
    return JSONResponse(status_code=500, content=body)
