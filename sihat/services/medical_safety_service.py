"""
Medical Safety Service - Emergency screening and recommendation safety checks

Features:
- Emergency keyword and symptom-combination detection
- Drug-herb interaction lookup against a known-interactions table
- Pregnancy, age and allergy screening of report recommendations
- Failsafe result when validation itself breaks
"""
import logging
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field, asdict
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_EMERGENCY_CONTACTS = ["Emergency Services: 999", "Hospital Emergency Department"]

EMERGENCY_KEYWORDS = [
    "chest pain",
    "difficulty breathing",
    "severe headache",
    "loss of consciousness",
    "severe bleeding",
    "stroke symptoms",
    "heart attack",
    "anaphylaxis",
    "severe abdominal pain",
    "high fever",
    "seizure",
    "poisoning",
    "severe burns",
    "choking",
    "cardiac arrest",
    "respiratory distress",
    "severe trauma",
    "overdose",
    "severe dehydration",
    "diabetic emergency",
]

PREGNANCY_UNSAFE_KEYWORDS = ["strong herbs", "blood-moving", "cold nature", "purgative", "stimulating"]

SEVERITY_RANK = {"low": 0, "medium": 1, "high": 2, "critical": 3}


class InteractionSeverity(Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    SEVERE = "severe"


# Interaction severity -> (concern severity, action required)
SEVERITY_MAP = {
    InteractionSeverity.MINOR: ("low", "monitor"),
    InteractionSeverity.MODERATE: ("medium", "seek_medical_advice"),
    InteractionSeverity.MAJOR: ("high", "seek_medical_advice"),
    InteractionSeverity.SEVERE: ("critical", "avoid_completely"),
}


@dataclass
class EmergencyFlag:
    condition: str
    symptoms: List[str]
    urgency: str
    recommended_action: str
    emergency_contacts: List[str] = field(default_factory=lambda: list(DEFAULT_EMERGENCY_CONTACTS))


@dataclass
class HerbDrugInteraction:
    """Known interaction between a TCM herb or food and a Western drug"""
    herb_or_food: str
    medication: str
    interaction_type: str
    severity: InteractionSeverity
    mechanism: str
    clinical_significance: str
    management: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


@dataclass
class SafetyConcern:
    type: str
    severity: str
    description: str
    affected_recommendation: str
    action_required: str


@dataclass
class SafetyValidationResult:
    is_safe: bool
    risk_level: str
    concerns: List[SafetyConcern]
    recommendations: List[str]
    emergency_flags: List[EmergencyFlag]
    drug_interactions: List[HerbDrugInteraction]
    alternative_suggestions: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_safe": self.is_safe,
            "risk_level": self.risk_level,
            "concerns": [asdict(c) for c in self.concerns],
            "recommendations": self.recommendations,
            "emergency_flags": [asdict(f) for f in self.emergency_flags],
            "drug_interactions": [i.to_dict() for i in self.drug_interactions],
            "alternative_suggestions": self.alternative_suggestions,
        }


class EmergencyDetector:
    """Screens free-text symptoms for conditions needing immediate care"""

    def __init__(self):
        self.emergency_keywords = list(EMERGENCY_KEYWORDS)
        self.critical_symptoms = self._load_critical_symptoms()

    def _load_critical_symptoms(self) -> Dict[str, EmergencyFlag]:
        return {
            "chest pain": EmergencyFlag(
                condition="Chest Pain",
                symptoms=["chest pain", "pressure", "tightness"],
                urgency="immediate",
                recommended_action="Call 999 immediately, may indicate heart attack",
                emergency_contacts=["Emergency Services: 999"]
            ),
            "difficulty breathing": EmergencyFlag(
                condition="Respiratory Distress",
                symptoms=["difficulty breathing", "shortness of breath", "wheezing"],
                urgency="immediate",
                recommended_action="Call 999, ensure airway is clear",
                emergency_contacts=["Emergency Services: 999"]
            ),
            "loss of consciousness": EmergencyFlag(
                condition="Unconsciousness",
                symptoms=["loss of consciousness", "fainting", "unresponsive"],
                urgency="immediate",
                recommended_action="Call 999, check breathing and pulse",
                emergency_contacts=["Emergency Services: 999"]
            ),
            "severe bleeding": EmergencyFlag(
                condition="Severe Hemorrhage",
                symptoms=["severe bleeding", "heavy blood loss", "hemorrhage"],
                urgency="immediate",
                recommended_action="Call 999, apply direct pressure to wound",
                emergency_contacts=["Emergency Services: 999"]
            ),
        }

    def scan_text(self, text: str) -> List[EmergencyFlag]:
        """Flags for every emergency keyword found in the text"""
        lowered = (text or "").lower()
        flags = []
        for keyword in self.emergency_keywords:
            if keyword in lowered:
                flags.append(self.critical_symptoms.get(keyword) or EmergencyFlag(
                    condition=keyword,
                    symptoms=[keyword],
                    urgency="immediate",
                    recommended_action="Seek immediate emergency medical care"
                ))
        return flags

    def check_combinations(self, text: str) -> List[EmergencyFlag]:
        """Symptom combinations that point to a specific emergency"""
        lowered = (text or "").lower()
        flags = []

        if "chest pain" in lowered and ("shortness of breath" in lowered or "nausea" in lowered):
            flags.append(EmergencyFlag(
                condition="Possible Heart Attack",
                symptoms=["chest pain", "shortness of breath", "nausea"],
                urgency="immediate",
                recommended_action="Call 999 immediately, chew aspirin if not allergic",
                emergency_contacts=["Emergency Services: 999"]
            ))

        if ("facial drooping" in lowered or "arm weakness" in lowered) and "speech difficulty" in lowered:
            flags.append(EmergencyFlag(
                condition="Possible Stroke",
                symptoms=["facial drooping", "arm weakness", "speech difficulty"],
                urgency="immediate",
                recommended_action="Call 999 immediately, note time of symptom onset",
                emergency_contacts=["Emergency Services: 999"]
            ))

        if "difficulty breathing" in lowered and ("swelling" in lowered or "rash" in lowered):
            flags.append(EmergencyFlag(
                condition="Possible Anaphylaxis",
                symptoms=["difficulty breathing", "swelling", "rash"],
                urgency="immediate",
                recommended_action="Call 999, use EpiPen if available",
                emergency_contacts=["Emergency Services: 999"]
            ))

        return flags

    def detect(self, symptoms: Any) -> Dict[str, Any]:
        """
        Screen symptoms for emergencies

        Args:
            symptoms: Free text or a list of symptom strings

        Returns:
            {is_emergency, flags, urgency, immediate_actions, emergency_contacts}
        """
        text = " ".join(symptoms) if isinstance(symptoms, list) else str(symptoms or "")
        flags = self.scan_text(text) + self.check_combinations(text)

        actions = []
        contacts = []
        for flag in flags:
            if flag.recommended_action not in actions:
                actions.append(flag.recommended_action)
            for contact in flag.emergency_contacts:
                if contact not in contacts:
                    contacts.append(contact)

        if flags:
            logger.warning(f"Emergency symptoms detected: {[f.condition for f in flags]}")

        return {
            "is_emergency": bool(flags),
            "flags": [asdict(f) for f in flags],
            "urgency": "immediate" if flags else "none",
            "immediate_actions": actions,
            "emergency_contacts": contacts or list(DEFAULT_EMERGENCY_CONTACTS),
        }


class HerbDrugInteractionChecker:
    """Known-interaction lookup between herbs and current medications"""

    def __init__(self):
        self.known_interactions = self._load_known_interactions()

    def _load_known_interactions(self) -> Dict[str, List[HerbDrugInteraction]]:
        return {
            "warfarin": [
                HerbDrugInteraction(
                    herb_or_food="ginkgo",
                    medication="warfarin",
                    interaction_type="synergistic",
                    severity=InteractionSeverity.MAJOR,
                    mechanism="Increased bleeding risk due to antiplatelet effects",
                    clinical_significance="Significantly increased risk of bleeding",
                    management="Avoid combination or monitor INR closely"
                ),
                HerbDrugInteraction(
                    herb_or_food="ginseng",
                    medication="warfarin",
                    interaction_type="antagonistic",
                    severity=InteractionSeverity.MODERATE,
                    mechanism="May reduce anticoagulant effect",
                    clinical_significance="Reduced effectiveness of warfarin",
                    management="Monitor INR, may need dose adjustment"
                ),
                HerbDrugInteraction(
                    herb_or_food="garlic",
                    medication="warfarin",
                    interaction_type="synergistic",
                    severity=InteractionSeverity.MODERATE,
                    mechanism="Antiplatelet effects may enhance bleeding risk",
                    clinical_significance="Increased bleeding risk",
                    management="Monitor for bleeding, consider dose adjustment"
                ),
            ],
            "metformin": [
                HerbDrugInteraction(
                    herb_or_food="bitter melon",
                    medication="metformin",
                    interaction_type="synergistic",
                    severity=InteractionSeverity.MODERATE,
                    mechanism="Additive glucose-lowering effects",
                    clinical_significance="Risk of hypoglycemia",
                    management="Monitor blood glucose closely"
                ),
            ],
            "lisinopril": [
                HerbDrugInteraction(
                    herb_or_food="hawthorn",
                    medication="lisinopril",
                    interaction_type="synergistic",
                    severity=InteractionSeverity.MODERATE,
                    mechanism="Additive hypotensive effects",
                    clinical_significance="Risk of excessive blood pressure reduction",
                    management="Monitor blood pressure, adjust doses as needed"
                ),
            ],
            "digoxin": [
                HerbDrugInteraction(
                    herb_or_food="licorice",
                    medication="digoxin",
                    interaction_type="toxic",
                    severity=InteractionSeverity.MAJOR,
                    mechanism="Hypokalemia increases digoxin toxicity risk",
                    clinical_significance="Increased risk of digoxin toxicity",
                    management="Avoid combination, monitor potassium and digoxin levels"
                ),
            ],
        }

    def check_pair(self, herb: str, medication: str) -> Optional[HerbDrugInteraction]:
        """Known interaction for one herb and one medication, matched by substring"""
        herb_lower = herb.strip().lower()
        medication_lower = medication.strip().lower()
        if not herb_lower or not medication_lower:
            return None

        for drug, interactions in self.known_interactions.items():
            if drug not in medication_lower and medication_lower not in drug:
                continue
            for interaction in interactions:
                known = interaction.herb_or_food
                if known in herb_lower or herb_lower in known:
                    return interaction
        return None

    def check(self, herbs: List[str], medications: List[str]) -> List[HerbDrugInteraction]:
        found = []
        for herb in herbs:
            for medication in medications:
                interaction = self.check_pair(herb, medication)
                if interaction:
                    found.append(interaction)
        return found

    @staticmethod
    def to_concern(interaction: HerbDrugInteraction, herb: str = None) -> SafetyConcern:
        severity, action = SEVERITY_MAP.get(interaction.severity, ("medium", "seek_medical_advice"))
        return SafetyConcern(
            type="drug_interaction",
            severity=severity,
            description=(
                f"{interaction.herb_or_food} may interact with {interaction.medication}: "
                f"{interaction.clinical_significance}"
            ),
            affected_recommendation=herb or interaction.herb_or_food,
            action_required=action
        )


class MedicalSafetyService:
    """Validates report recommendations against the patient's history"""

    def __init__(self):
        self.emergency_detector = EmergencyDetector()
        self.interaction_checker = HerbDrugInteractionChecker()

    def check_emergency(self, symptoms: Any) -> Dict[str, Any]:
        return self.emergency_detector.detect(symptoms)

    def check_interactions(self, herbs: List[str], medications: List[str]) -> List[Dict[str, Any]]:
        return [i.to_dict() for i in self.interaction_checker.check(herbs, medications)]

    def validate_recommendations(
        self,
        recommendations: Dict[str, List[str]],
        medical_history: Optional[Dict[str, Any]] = None,
        age: Optional[int] = None,
        symptoms: Optional[str] = None
    ) -> SafetyValidationResult:
        """
        Check dietary, herbal, lifestyle and acupressure recommendations

        Args:
            recommendations: {dietary, herbal, lifestyle, acupressure} lists
            medical_history: {current_medications, allergies, pregnancy_status, age}
            age: Patient age, overrides medical_history.age
            symptoms: Symptom text screened for emergencies

        Returns:
            SafetyValidationResult; a failsafe result if validation errors
        """
        try:
            history = medical_history or {}
            all_items = self._flatten(recommendations)
            concerns: List[SafetyConcern] = []

            concerns.extend(self._check_pregnancy(all_items, history.get("pregnancy_status")))
            concerns.extend(self._check_age(all_items, age or history.get("age")))
            concerns.extend(self._check_allergies(all_items, history.get("allergies") or []))

            interactions = []
            for herb in recommendations.get("herbal") or []:
                for medication in history.get("current_medications") or []:
                    interaction = self.interaction_checker.check_pair(herb, medication)
                    if interaction:
                        interactions.append(interaction)
                        concerns.append(self.interaction_checker.to_concern(interaction, herb))

            emergency_flags = []
            if symptoms:
                emergency_flags = (
                    self.emergency_detector.scan_text(symptoms)
                    + self.emergency_detector.check_combinations(symptoms)
                )
                for flag in emergency_flags:
                    concerns.append(SafetyConcern(
                        type="condition_specific",
                        severity="critical",
                        description=f"Emergency condition detected: {flag.condition}",
                        affected_recommendation="all",
                        action_required="emergency_care"
                    ))

            risk_level = self._overall_risk(concerns)
            result = SafetyValidationResult(
                is_safe=risk_level != "critical",
                risk_level=risk_level,
                concerns=concerns,
                recommendations=self._safety_recommendations(concerns),
                emergency_flags=emergency_flags,
                drug_interactions=interactions,
                alternative_suggestions=[
                    f"Safe alternative to {c.affected_recommendation}: consult practitioner for suitable substitute"
                    for c in concerns if c.affected_recommendation != "all"
                ]
            )
            logger.info(f"Safety validation: risk={risk_level}, concerns={len(concerns)}")
            return result

        except Exception as e:
            logger.error(f"Safety validation failed: {e}")
            return self._failsafe_result()

    @staticmethod
    def _flatten(recommendations: Dict[str, List[str]]) -> List[str]:
        items = []
        for key in ("dietary", "herbal", "lifestyle", "acupressure"):
            items.extend(str(item) for item in recommendations.get(key) or [])
        return items

    @staticmethod
    def _check_pregnancy(items: List[str], pregnancy_status: Optional[str]) -> List[SafetyConcern]:
        if pregnancy_status not in ("pregnant", "breastfeeding"):
            return []
        concerns = []
        for keyword in PREGNANCY_UNSAFE_KEYWORDS:
            for item in items:
                if keyword in item.lower():
                    concerns.append(SafetyConcern(
                        type="pregnancy",
                        severity="medium",
                        description="Recommendation may not be suitable during pregnancy/breastfeeding",
                        affected_recommendation=item,
                        action_required="seek_medical_advice"
                    ))
        return concerns

    @staticmethod
    def _check_age(items: List[str], age: Optional[int]) -> List[SafetyConcern]:
        if not age:
            return []
        concerns = []
        if age < 18:
            for item in items:
                if "strong" in item.lower() or "potent" in item.lower():
                    concerns.append(SafetyConcern(
                        type="age_related",
                        severity="medium",
                        description="Strong herbs may not be appropriate for children",
                        affected_recommendation=item,
                        action_required="seek_medical_advice"
                    ))
        elif age > 65:
            for item in items:
                if "cold nature" in item.lower() or "cooling" in item.lower():
                    concerns.append(SafetyConcern(
                        type="age_related",
                        severity="low",
                        description="Cooling herbs should be used cautiously in elderly patients",
                        affected_recommendation=item,
                        action_required="monitor"
                    ))
        return concerns

    @staticmethod
    def _check_allergies(items: List[str], allergies: List[str]) -> List[SafetyConcern]:
        concerns = []
        for allergy in allergies:
            allergen = str(allergy).strip().lower()
            if not allergen:
                continue
            for item in items:
                if allergen in item.lower():
                    concerns.append(SafetyConcern(
                        type="allergy",
                        severity="high",
                        description=f"Recommendation contains a known allergen: {allergy}",
                        affected_recommendation=item,
                        action_required="avoid_completely"
                    ))
        return concerns

    @staticmethod
    def _overall_risk(concerns: List[SafetyConcern]) -> str:
        if not concerns:
            return "low"
        return max((c.severity for c in concerns), key=lambda s: SEVERITY_RANK.get(s, 0))

    @staticmethod
    def _safety_recommendations(concerns: List[SafetyConcern]) -> List[str]:
        actions = {c.action_required for c in concerns}
        recommendations = []
        if "emergency_care" in actions:
            recommendations.append("Seek immediate emergency medical care")
        if "seek_medical_advice" in actions:
            recommendations.append("Consult healthcare provider before following recommendations")
        if "avoid_completely" in actions:
            recommendations.append("Avoid flagged substances completely")
        if "monitor" in actions:
            recommendations.append("Monitor for any adverse reactions")
        return recommendations

    @staticmethod
    def _failsafe_result() -> SafetyValidationResult:
        return SafetyValidationResult(
            is_safe=False,
            risk_level="high",
            concerns=[SafetyConcern(
                type="condition_specific",
                severity="high",
                description="Safety validation system error - please consult healthcare provider",
                affected_recommendation="all",
                action_required="seek_medical_advice"
            )],
            recommendations=["Consult healthcare provider before following any recommendations"],
            emergency_flags=[],
            drug_interactions=[],
            alternative_suggestions=[]
        )


medical_safety_service = MedicalSafetyService()
