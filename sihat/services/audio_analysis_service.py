"""
Audio Analysis Service
Listening diagnosis (闻诊) of the patient's voice recording
"""
import json
import logging
from typing import Dict, Optional, Any, Tuple

from sqlalchemy.orm import Session

from sihat.services.gemini_service import decode_data_url, get_gemini_service, parse_json_response
from sihat.services.model_fallback import AllModelsFailedError, generate_text_with_fallback
from sihat.services.prompt_service import prompt_service

logger = logging.getLogger(__name__)

# Most capable first
AUDIO_MODELS = ["gemini-2.5-pro", "gemini-2.0-flash"]

AUDIO_SECTIONS = ("voice_quality_analysis", "breathing_patterns", "speech_patterns", "cough_sounds")

LISTENING_USER_PROMPT = """Please analyze this audio recording for TCM diagnostic purposes.
Listen carefully for:
1. Voice quality - strength, clarity, pitch, resonance
2. Breathing patterns - rhythm, depth, any unusual sounds
3. Speech patterns - flow, pace, coherence, emotional undertones
4. Cough sounds - if present, describe the quality and frequency

If the audio is silent or contains only background noise, return JSON with "status": "silence" and "overall_observation": "No clear voice or breathing sounds detected. Please record again." Do not invent findings for silence.

Provide your analysis in the specified JSON format."""


def _empty_sections() -> Dict[str, None]:
    return {section: None for section in AUDIO_SECTIONS}


def _pending_section(observation: str, significance: str) -> Dict[str, Any]:
    return {
        "observation": observation,
        "severity": "pending",
        "tcm_indicators": [],
        "clinical_significance": significance,
    }


class AudioAnalysisService:
    """Runs listening analysis with model fallback and graceful placeholders"""

    @staticmethod
    def _validate(text: str) -> Tuple[bool, Any]:
        try:
            data = parse_json_response(text)
        except json.JSONDecodeError:
            # Unstructured but substantial text still becomes a partial result
            return len(text) > 50, None
        if isinstance(data, dict) and (data.get("overall_observation") or data.get("voice_quality_analysis")):
            return True, data
        return False, None

    def analyze(self, db: Optional[Session], audio: Optional[str]) -> Dict[str, Any]:
        """
        Analyze a voice recording

        Args:
            db: Session used to look up the doctor_listening override
            audio: Data URL (data:audio/webm;base64,...) or bare base64

        Returns:
            Response body; never raises
        """
        if not audio:
            return {
                "overall_observation": "No audio was provided. Please record your voice.",
                **_empty_sections(),
                "status": "error",
            }

        try:
            audio_bytes, mime_type = decode_data_url(audio, "audio/webm")
            system_prompt = prompt_service.get_system_prompt(db, "doctor_listening")
            contents = [LISTENING_USER_PROMPT, get_gemini_service().part_from_data(audio_bytes, mime_type)]

            try:
                result = generate_text_with_fallback(
                    primary=AUDIO_MODELS[0],
                    contents=contents,
                    system_instruction=system_prompt,
                    fallbacks=AUDIO_MODELS[1:],
                    context="audio analysis",
                    validator=self._validate
                )
            except AllModelsFailedError:
                logger.warning("All audio models failed, returning placeholder response")
                return self._placeholder()

            if result.parsed is None:
                return {
                    "overall_observation": result.text,
                    "voice_quality_analysis": {
                        "observation": "Analysis available in overall observation",
                        "severity": "normal",
                        "tcm_indicators": [],
                        "clinical_significance": "See overall observation for details",
                    },
                    "breathing_patterns": None,
                    "speech_patterns": None,
                    "cough_sounds": None,
                    "modelUsed": result.model_used,
                    "status": "partial",
                    "notes": "Full structured analysis unavailable",
                }

            return {
                **result.parsed,
                "modelUsed": result.model_used,
                "status": result.parsed.get("status") or "success",
            }

        except Exception as e:
            logger.error(f"Audio analysis failed: {e}")
            return {
                "overall_observation": "Audio analysis encountered an issue. Your recording is saved for later review.",
                **_empty_sections(),
                "status": "error",
                "error": str(e),
            }

    @staticmethod
    def _placeholder() -> Dict[str, Any]:
        return {
            "overall_observation": "Audio analysis will be processed with your final diagnosis report.",
            "voice_quality_analysis": {
                "observation": "Voice recording received",
                "severity": "pending",
                "tcm_indicators": ["Audio recorded successfully"],
                "clinical_significance": "Will be integrated with other diagnostic data",
            },
            "breathing_patterns": _pending_section("Pending analysis", "Pending comprehensive analysis"),
            "speech_patterns": _pending_section("Pending analysis", "Will be evaluated alongside other findings"),
            "cough_sounds": _pending_section("Pending analysis", "Pending"),
            "pattern_suggestions": ["Analysis pending"],
            "recommendations": ["Continue with remaining diagnostic steps"],
            "confidence": "low",
            "notes": "Real-time audio analysis temporarily unavailable. Your recording has been saved and will be analyzed in your final diagnosis.",
            "modelUsed": 0,
            "status": "pending",
        }


audio_analysis_service = AudioAnalysisService()
