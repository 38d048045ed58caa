"""
Gemini AI Service - Thin wrapper around Vertex AI generative models
Used by the image, audio, inquiry and consultation routes
"""
import base64
import binascii
import logging
import json
import os
import re
from typing import Dict, List, Optional, Any, Iterator, Tuple, Union

import vertexai
from vertexai.generative_models import GenerativeModel, Part, SafetySetting, HarmCategory, HarmBlockThreshold
from google.oauth2 import service_account
from fastapi import Depends
from sqlalchemy.orm import Session

from sihat.config import settings
from sihat.database.connection import get_db
from sihat.database.models import SystemSetting

logger = logging.getLogger(__name__)

Contents = Union[str, List[Any]]


class GeminiNotConfiguredError(RuntimeError):
    """Raised when a generation is attempted without Vertex AI credentials"""


class GeminiService:
    """
    Google Gemini via Vertex AI

    Authenticates with a service account file when one is configured,
    otherwise with GEMINI_API_KEY. Generation calls raise on failure so
    the model fallback loop can move on to the next model.
    """

    def __init__(self):
        self.project_id = None
        self.api_key = None
        self.location = settings.GOOGLE_CLOUD_LOCATION
        self.initialized = False

        # Diagnosis content talks about symptoms and bodies; the default filters block too much
        self.safety_settings = [
            SafetySetting(category=category, threshold=HarmBlockThreshold.BLOCK_ONLY_HIGH)
            for category in (
                HarmCategory.HARM_CATEGORY_HARASSMENT,
                HarmCategory.HARM_CATEGORY_HATE_SPEECH,
                HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
                HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
            )
        ]

        self._initialize()

    def _initialize(self):
        """Initialize Vertex AI with service account credentials or an API key"""
        try:
            credentials_path = settings.GOOGLE_APPLICATION_CREDENTIALS

            if credentials_path and os.path.exists(credentials_path):
                with open(credentials_path, 'r') as f:
                    self.project_id = json.load(f).get('project_id')

                if not self.project_id:
                    logger.error("No project_id found in service account JSON")
                    return

                credentials = service_account.Credentials.from_service_account_file(
                    credentials_path,
                    scopes=['https://www.googleapis.com/auth/cloud-platform']
                )
                vertexai.init(
                    project=self.project_id,
                    location=self.location,
                    credentials=credentials
                )
            elif settings.GEMINI_API_KEY:
                vertexai.init(api_key=settings.GEMINI_API_KEY)
                self.api_key = settings.GEMINI_API_KEY
            else:
                logger.warning("Gemini not configured: set GOOGLE_APPLICATION_CREDENTIALS or GEMINI_API_KEY")
                return

            self.initialized = True
            logger.info(f"Gemini initialized (project: {self.project_id or 'api-key'})")

        except Exception as e:
            logger.error(f"Failed to initialize Gemini via Vertex AI: {e}")

    def use_api_key(self, api_key: Optional[str]) -> bool:
        """
        Switch to an API key set by an admin

        Service account credentials keep priority. Returns True when the key
        was applied.
        """
        if not api_key or self.project_id or api_key == self.api_key:
            return False
        try:
            vertexai.init(api_key=api_key)
        except Exception as e:
            logger.error(f"Failed to apply admin Gemini API key: {e}")
            return False
        self.api_key = api_key
        self.initialized = True
        logger.info("Gemini API key override applied")
        return True

    def _model(self, model_id: str, system_instruction: Optional[str]) -> GenerativeModel:
        if not self.initialized:
            raise GeminiNotConfiguredError("Gemini model not initialized. Check API key or service account credentials.")
        if system_instruction:
            return GenerativeModel(model_id, system_instruction=system_instruction)
        return GenerativeModel(model_id)

    def generate(
        self,
        model_id: str,
        contents: Contents,
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Generate a complete response

        Args:
            model_id: Gemini model identifier, e.g. "gemini-2.0-flash"
            contents: Prompt text or a list of text and media parts
            system_instruction: System prompt for the model
            generation_config: Temperature and token limits

        Returns:
            Response text (may be empty)
        """
        model = self._model(model_id, system_instruction)
        response = model.generate_content(
            contents,
            safety_settings=self.safety_settings,
            generation_config=generation_config or {"temperature": 0.2, "max_output_tokens": 4096}
        )
        return response.text or ""

    def stream(
        self,
        model_id: str,
        contents: Contents,
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None
    ) -> Iterator[str]:
        """Generate a response as a stream of text chunks"""
        model = self._model(model_id, system_instruction)
        responses = model.generate_content(
            contents,
            safety_settings=self.safety_settings,
            generation_config=generation_config or {"temperature": 0.7, "max_output_tokens": 8192},
            stream=True
        )
        for chunk in responses:
            if chunk.text:
                yield chunk.text

    @staticmethod
    def part_from_data(data: bytes, mime_type: str) -> Part:
        """Wrap inline image or audio bytes for a multimodal request"""
        return Part.from_data(data=data, mime_type=mime_type)


DATA_URL_PATTERN = re.compile(r'^data:([^;]+);base64,(.+)$', re.DOTALL)


def decode_data_url(value: str, default_mime_type: str) -> Tuple[bytes, str]:
    """
    Decode a browser data URL (or bare base64) into bytes and a MIME type

    Raises:
        ValueError: if the payload is not valid base64
    """
    match = DATA_URL_PATTERN.match(value.strip())
    if match:
        mime_type, payload = match.group(1), match.group(2)
    else:
        mime_type, payload = default_mime_type, value.strip()
    try:
        return base64.b64decode(payload, validate=True), mime_type
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 media payload: {e}") from e


def parse_json_response(response_text: str) -> Any:
    """Strip markdown code fences and parse JSON; raises json.JSONDecodeError"""
    cleaned = (response_text or "").strip()
    if cleaned.startswith('```json'):
        cleaned = cleaned[7:]
    if cleaned.startswith('```'):
        cleaned = cleaned[3:]
    if cleaned.endswith('```'):
        cleaned = cleaned[:-3]
    return json.loads(cleaned.strip())


_gemini_service: Optional[GeminiService] = None


def get_gemini_service() -> GeminiService:
    """Lazily create the shared Gemini service"""
    global _gemini_service
    if _gemini_service is None:
        _gemini_service = GeminiService()
    return _gemini_service


ADMIN_API_KEY_SETTING = "gemini_api_key"


def apply_admin_api_key(db: Session = Depends(get_db)) -> None:
    """Router dependency: use the admin's Gemini key, if one is saved, for this request"""
    row = db.query(SystemSetting.value).filter(SystemSetting.key == ADMIN_API_KEY_SETTING).first()
    if row and row.value:
        get_gemini_service().use_api_key(row.value.strip())
