"""
Inquiry Service
Chat-based inquiry (问诊) and the summary handed to the final diagnosis
"""
import logging
import time
from typing import Dict, List, Optional, Any

from sqlalchemy.orm import Session

from sihat.services.model_fallback import (
    StreamResult, generate_text_with_fallback, parse_api_error, stream_text_with_fallback
)
from sihat.services.prompt_service import prompt_service
from sihat.services.prompts import language_instruction

logger = logging.getLogger(__name__)

SUMMARY_FALLBACK_MODEL = "gemini-1.5-flash"
NO_HISTORY_MESSAGE = "No consultation history found. Please complete the consultation first."

LANGUAGE_NAMES = {
    "zh": "Chinese (Simplified/简体中文)",
    "ms": "Malay (Bahasa Malaysia)",
}

# Error code -> stage reported back to the client
ERROR_STEPS = {
    "API_KEY_LEAKED": "api_key",
    "API_KEY_INVALID": "api_key",
    "API_QUOTA_EXCEEDED": "rate_limit",
    "MODEL_NOT_FOUND": "model",
}


class NoHistoryError(ValueError):
    """Raised when a summary is requested before any inquiry took place"""


def format_chat_history(messages: List[Dict[str, Any]]) -> str:
    return "\n\n".join(
        f"[{str(m.get('role', 'user')).upper()}]: {m.get('content', '')}" for m in messages
    )


def format_basic_info(basic_info: Optional[Dict[str, Any]]) -> str:
    info = basic_info or {}
    return "\n".join([
        f"- Name: {info.get('name') or 'Not provided'}",
        f"- Age: {info.get('age') or 'Not provided'}",
        f"- Gender: {info.get('gender') or 'Not provided'}",
        f"- Chief Complaint: {info.get('symptoms') or 'Not provided'}",
        f"- Symptom Duration: {info.get('symptomDuration') or 'Not provided'}",
    ])


def build_summary_prompt(
    chat_history: List[Dict[str, Any]],
    report_files: Optional[List[Dict[str, Any]]],
    medicine_files: Optional[List[Dict[str, Any]]],
    basic_info: Optional[Dict[str, Any]],
    language: str
) -> str:
    """User prompt listing everything collected during the inquiry step"""
    if report_files:
        reports = "\n\n".join(
            f"- {f.get('name', 'Report')}:\n{f.get('extractedText') or 'No text extracted'}" for f in report_files
        )
    else:
        reports = "None uploaded"

    if medicine_files:
        medicines = "\n".join(
            f"- {f.get('name', 'Medicine')}: {f.get('extractedText') or 'No medication info extracted'}"
            for f in medicine_files
        )
    else:
        medicines = "None uploaded"

    return f"""PATIENT DATA FOR SUMMARY

## Patient Basic Info:
{format_basic_info(basic_info)}

## Uploaded Medical Reports:
{reports}

## Current Medications (from uploaded images):
{medicines}

## Complete Chat History (问诊记录):
{format_chat_history(chat_history)}

INSTRUCTIONS
Please generate a comprehensive yet concise medical summary based on the above data.
Respond in {LANGUAGE_NAMES.get(language, 'English')}.
Follow the structured format specified in your system prompt.
"""


class InquiryService:
    """Inquiry chat streaming and summarisation"""

    def stream_chat(
        self,
        db: Optional[Session],
        messages: List[Dict[str, Any]],
        basic_info: Optional[Dict[str, Any]] = None,
        language: str = "en",
        model: str = "gemini-2.0-flash"
    ) -> StreamResult:
        """Stream the doctor's next inquiry question; raises AllModelsFailedError"""
        system_prompt = (
            language_instruction(language) + "\n\n"
            + prompt_service.get_system_prompt(db, "doctor_chat")
            + "\n\nPATIENT BASIC INFO:\n" + format_basic_info(basic_info)
        )
        transcript = format_chat_history(messages) if messages else "[USER]: Hello, I am ready to begin."
        return stream_text_with_fallback(
            primary=model,
            contents=transcript + "\n\n[ASSISTANT]:",
            system_instruction=system_prompt,
            context="inquiry chat"
        )

    def summarize(
        self,
        db: Optional[Session],
        chat_history: Optional[List[Dict[str, Any]]],
        report_files: Optional[List[Dict[str, Any]]] = None,
        medicine_files: Optional[List[Dict[str, Any]]] = None,
        basic_info: Optional[Dict[str, Any]] = None,
        language: str = "en",
        model: str = "gemini-1.5-pro"
    ) -> Dict[str, Any]:
        """
        Summarise the inquiry for the final diagnosis

        Returns:
            {"summary": str, "timing": {"total": ms, "generation": ms}}

        Raises:
            NoHistoryError: chat history is empty
            AllModelsFailedError: primary and fallback model both failed
        """
        start = time.monotonic()
        if not chat_history:
            raise NoHistoryError(NO_HISTORY_MESSAGE)

        system_prompt = prompt_service.get_system_prompt(db, "doctor_inquiry_summary")
        user_prompt = build_summary_prompt(chat_history, report_files, medicine_files, basic_info, language)

        generation_start = time.monotonic()
        result = generate_text_with_fallback(
            primary=model,
            contents=user_prompt,
            system_instruction=system_prompt,
            fallbacks=[SUMMARY_FALLBACK_MODEL],
            context="inquiry summary"
        )
        generation_ms = int((time.monotonic() - generation_start) * 1000)
        total_ms = int((time.monotonic() - start) * 1000)
        logger.info(f"Inquiry summary generated by {result.model_id} in {generation_ms}ms")

        return {
            "summary": result.text,
            "timing": {"total": total_ms, "generation": generation_ms},
        }

    @staticmethod
    def summary_error_body(error: Exception, duration_ms: int) -> Dict[str, Any]:
        """Error body for a failed summary, naming the stage that failed"""
        cause = error.__cause__ or error
        api_error = parse_api_error(cause)
        code = api_error.code if api_error.code != "UNKNOWN_ERROR" else "GENERATION_FAILED"
        return {
            "error": api_error.user_message,
            "code": code,
            "step": ERROR_STEPS.get(api_error.code, "generation"),
            "duration": duration_ms,
        }


inquiry_service = InquiryService()
