"""
System Prompt Service
Resolves AI system prompts from admin overrides with built-in defaults
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sihat.database.models import SystemPrompt, SystemSetting
from sihat.services.model_fallback import DOCTOR_MODEL_MAPPING, model_for_doctor_level
from sihat.services.prompts import DEFAULT_PROMPTS, REQUIRED_PROMPT_ROLES

logger = logging.getLogger(__name__)

DOCTOR_CONFIG_ROLE = "doctor"
DEFAULT_LEVEL_SETTING = "default_doctor_level"


class PromptService:
    """Admin-editable system prompts, one row per doctor role"""

    def get_default_prompt(self, role: str) -> str:
        if role not in DEFAULT_PROMPTS:
            raise KeyError(f"Unknown prompt role: {role}")
        return DEFAULT_PROMPTS[role]

    def _custom_prompt(self, db: Session, role: str) -> Optional[str]:
        row = db.query(SystemPrompt).filter(SystemPrompt.role == role).first()
        if row and row.prompt_text and row.prompt_text.strip():
            return row.prompt_text
        return None

    def has_custom_prompt(self, db: Session, role: str) -> bool:
        try:
            return self._custom_prompt(db, role) is not None
        except SQLAlchemyError as e:
            logger.warning(f"Could not check custom prompt for {role}: {e}")
            return False

    def get_system_prompt(self, db: Optional[Session], role: str) -> str:
        """
        Get the prompt for a role

        A stored, non-empty override wins; otherwise (or if the database
        is unavailable) the built-in default is returned.
        """
        if db is not None:
            try:
                custom = self._custom_prompt(db, role)
                if custom:
                    return custom
            except SQLAlchemyError as e:
                logger.warning(f"Falling back to default prompt for {role}: {e}")
        return self.get_default_prompt(role)

    def list_prompts(self, db: Session) -> List[Dict[str, Any]]:
        """All known roles with their effective text"""
        overrides = {p.role: p for p in db.query(SystemPrompt).all()}
        prompts = []
        for role, default_text in DEFAULT_PROMPTS.items():
            row = overrides.get(role)
            is_custom = bool(row and row.prompt_text and row.prompt_text.strip())
            prompts.append({
                "role": role,
                "prompt_text": row.prompt_text if is_custom else default_text,
                "is_custom": is_custom,
                "updated_at": row.updated_at.isoformat() if is_custom and row.updated_at else None,
            })
        return prompts

    def save_prompt(self, db: Session, role: str, prompt_text: str, user_id: int = None) -> SystemPrompt:
        """Create or update the override for a role"""
        self.get_default_prompt(role)

        row = db.query(SystemPrompt).filter(SystemPrompt.role == role).first()
        if row:
            row.prompt_text = prompt_text
            row.updated_by = user_id
            row.updated_at = datetime.utcnow()
        else:
            row = SystemPrompt(role=role, prompt_text=prompt_text, updated_by=user_id)
            db.add(row)
        db.commit()
        db.refresh(row)
        logger.info(f"Saved system prompt for {role}")
        return row

    def reset_prompt(self, db: Session, role: str) -> bool:
        """Delete an override so the default applies again"""
        deleted = db.query(SystemPrompt).filter(SystemPrompt.role == role).delete()
        db.commit()
        return deleted > 0

    def get_doctor_config(self, db: Session) -> Dict[str, str]:
        row = db.query(SystemPrompt).filter(SystemPrompt.role == DOCTOR_CONFIG_ROLE).first()
        if row and row.config:
            return row.config
        setting = db.query(SystemSetting.value).filter(SystemSetting.key == DEFAULT_LEVEL_SETTING).first()
        level = setting.value if setting and setting.value in DOCTOR_MODEL_MAPPING else "Physician"
        return {"default_level": level, "model": DOCTOR_MODEL_MAPPING[level]["model"]}

    def resolve_model(self, db: Session, requested_model: str, doctor_level: Optional[str] = None) -> str:
        """
        Model for an AI request

        A known doctor level picks its mapped model. Any other level
        (for example "default") uses the admin's default level. Without a
        level the requested model is used as is.
        """
        if not doctor_level:
            return requested_model
        if doctor_level in DOCTOR_MODEL_MAPPING:
            return model_for_doctor_level(doctor_level)
        return self.get_doctor_config(db)["model"]

    def save_doctor_config(self, db: Session, level: str, user_id: int = None) -> Dict[str, str]:
        """Store the default doctor level and its model"""
        if level not in DOCTOR_MODEL_MAPPING:
            raise ValueError(f"Unknown doctor level: {level}")

        config = {"default_level": level, "model": DOCTOR_MODEL_MAPPING[level]["model"]}
        row = db.query(SystemPrompt).filter(SystemPrompt.role == DOCTOR_CONFIG_ROLE).first()
        if row:
            row.config = config
            row.updated_by = user_id
            row.updated_at = datetime.utcnow()
        else:
            db.add(SystemPrompt(role=DOCTOR_CONFIG_ROLE, prompt_text="", config=config, updated_by=user_id))
        db.commit()
        return config

    def get_prompt_status(self, db: Session) -> List[Dict[str, str]]:
        """Whether each required role is customized or using its default"""
        return [
            {"role": role, "status": "customized" if self.has_custom_prompt(db, role) else "default"}
            for role in REQUIRED_PROMPT_ROLES
        ]


prompt_service = PromptService()
