"""
Image Analysis Service
Tongue, face and body inspection (望诊) through Gemini vision models
"""
import json
import logging
from typing import Dict, List, Optional, Any, Tuple

from sqlalchemy.orm import Session

from sihat.config import settings
from sihat.services.gemini_service import decode_data_url, get_gemini_service, parse_json_response
from sihat.services.model_fallback import (
    ADVANCED_FALLBACK_MODELS, AllModelsFailedError, generate_text_with_fallback
)
from sihat.services.prompt_service import prompt_service

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 60
MIN_OBSERVATION_LENGTH = 50

# Phrases that mean the model refused or could not see anything
REFUSAL_PHRASES = [
    "cannot analyze",
    "unable to analyze",
    "no observation",
    "unclear image",
    "cannot see",
    "not visible",
    "i cannot",
    "i'm unable",
    "sorry",
]

IMAGE_TYPE_ROLES = {
    "tongue": "doctor_tongue",
    "face": "doctor_face",
    "body": "doctor_body",
}

PENDING_OBSERVATION = (
    "Unable to analyze the image at this time. "
    "The visual inspection results will be reviewed manually."
)


def is_valid_observation(text: Optional[str]) -> bool:
    """A usable observation is long enough and is not a refusal"""
    if not text or len(text) < MIN_OBSERVATION_LENGTH:
        return False
    lowered = text.lower()
    return not any(phrase in lowered for phrase in REFUSAL_PHRASES)


def build_patient_context(main_complaint: Optional[str], symptoms: Optional[str]) -> str:
    if not main_complaint and not symptoms:
        return ""
    context = "\n\nPATIENT CONTEXT:"
    if main_complaint:
        context += f"\nMain Complaint: {main_complaint}"
    if symptoms:
        context += f"\nSymptoms: {symptoms}"
    return context


def read_confidence(parsed: Dict[str, Any]) -> float:
    try:
        return float(parsed.get("confidence", 100))
    except (TypeError, ValueError):
        return 100


def is_rejected_image(parsed: Dict[str, Any]) -> bool:
    """The model says the photo does not show what was asked for"""
    return parsed.get("is_valid_image", True) is False or read_confidence(parsed) < MIN_CONFIDENCE


def resolve_observation(parsed: Dict[str, Any], raw_text: str) -> str:
    for key in ("observation", "analysis", "description"):
        value = parsed.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return raw_text.strip()


class ImageAnalysisService:
    """Runs visual inspection and gates results on image validity"""

    def select_prompt(self, db: Optional[Session], image_type: str) -> str:
        """
        Custom doctor_image prompt if an admin set one, otherwise the
        prompt for the image type, otherwise the generic image prompt
        """
        if db is not None and prompt_service.has_custom_prompt(db, "doctor_image"):
            return prompt_service.get_system_prompt(db, "doctor_image")
        role = IMAGE_TYPE_ROLES.get(image_type, "doctor_image")
        return prompt_service.get_system_prompt(db, role)

    @staticmethod
    def _validate(text: str) -> Tuple[bool, Any]:
        """
        Accept a rejected-image verdict as is; otherwise the observation
        must pass the refusal check or the next model is tried
        """
        try:
            parsed = parse_json_response(text)
        except json.JSONDecodeError:
            parsed = None
        if not isinstance(parsed, dict):
            return is_valid_observation(text), None

        if is_rejected_image(parsed):
            return True, parsed
        observation = resolve_observation(parsed, text)
        if not is_valid_observation(observation):
            return False, None
        return True, dict(parsed, observation=observation)

    def analyze(
        self,
        db: Optional[Session],
        image: str,
        image_type: str = "tongue",
        symptoms: Optional[str] = None,
        main_complaint: Optional[str] = None,
        model: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Analyze a patient photo

        Args:
            db: Session used to look up prompt overrides
            image: Data URL or bare base64 image
            image_type: tongue, face, body or other
            symptoms: Free-text symptoms for clinical consistency
            main_complaint: Chief complaint from the basic info step

        Returns:
            Response body; never raises
        """
        try:
            image_bytes, mime_type = decode_data_url(image, "image/jpeg")
            system_prompt = self.select_prompt(db, image_type)
            user_prompt = (
                f"Analyze this {image_type} image following the instructions."
                + build_patient_context(main_complaint, symptoms)
            )
            contents = [user_prompt, get_gemini_service().part_from_data(image_bytes, mime_type)]

            try:
                result = generate_text_with_fallback(
                    primary=model or settings.DEFAULT_MODEL,
                    contents=contents,
                    system_instruction=system_prompt,
                    fallbacks=ADVANCED_FALLBACK_MODELS,
                    context=f"{image_type} image analysis",
                    validator=self._validate,
                    generation_config={"temperature": 0.2, "max_output_tokens": 4096}
                )
            except AllModelsFailedError as e:
                logger.error(f"Image analysis unavailable for {image_type}: {e.__cause__}")
                return {
                    "observation": PENDING_OBSERVATION,
                    "potential_issues": [],
                    "modelUsed": 0,
                    "status": "Analysis pending",
                }

            return self._build_response(result.parsed, result.text, image_type, result.model_used, result.status)

        except Exception as e:
            logger.error(f"Image analysis failed: {e}")
            return {
                "observation": "An error occurred while analyzing the image.",
                "potential_issues": [],
                "status": "error",
                "error": str(e),
            }

    def _build_response(
        self,
        parsed: Optional[Dict[str, Any]],
        raw_text: str,
        image_type: str,
        model_used: int,
        status: str
    ) -> Dict[str, Any]:
        if parsed is None:
            # Plain-text observation that passed the refusal check
            return {
                "observation": raw_text.strip(),
                "potential_issues": [],
                "modelUsed": model_used,
                "status": status,
                "confidence": 100,
            }

        confidence = read_confidence(parsed)
        description = parsed.get("image_description")

        if is_rejected_image(parsed):
            logger.info(f"Rejected {image_type} image (confidence {confidence}): {description}")
            return {
                "status": "invalid_image",
                "confidence": confidence,
                "image_description": description,
                "message": (
                    f"This image does not appear to contain a {image_type}. "
                    f"Detected: {description or 'unrecognized content'}"
                ),
                "modelUsed": model_used,
            }

        return {
            "observation": parsed.get("observation", ""),
            "potential_issues": self._potential_issues(parsed),
            "modelUsed": model_used,
            "status": status,
            "confidence": confidence,
            "image_description": description,
            "analysis_tags": parsed.get("analysis_tags", []),
            "tcm_indicators": parsed.get("tcm_indicators", []),
            "pattern_suggestions": parsed.get("pattern_suggestions", []),
            "notes": parsed.get("notes"),
        }

    @staticmethod
    def _potential_issues(parsed: Dict[str, Any]) -> List[Any]:
        for key in ("potential_issues", "issues", "indications", "pattern_suggestions"):
            if parsed.get(key):
                return parsed[key]
        return []


image_analysis_service = ImageAnalysisService()
