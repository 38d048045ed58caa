"""
Consultation Service
Builds the Four Examinations (四诊合参) case file for the final diagnosis
and streams the report from Gemini.
"""
import logging
from typing import Dict, List, Optional, Any

from sqlalchemy.orm import Session

from sihat.services.model_fallback import StreamResult, stream_text_with_fallback
from sihat.services.prompt_service import prompt_service
from sihat.services.prompts import language_instruction

logger = logging.getLogger(__name__)

CONSULT_FALLBACK_MODELS = ["gemini-1.5-flash", "gemini-2.0-flash"]
INQUIRY_SUMMARY_MIN_LENGTH = 50

RULE = "=" * 79

# Option flag -> (include text, omit text); an empty omit text means say nothing
REPORT_OPTION_SECTIONS = [
    ("Patient Information", [
        ("includePatientName", "Include patient name", "OMIT patient name"),
        ("includePatientAge", "Include patient age", "OMIT patient age"),
        ("includePatientGender", "Include patient gender", "OMIT patient gender"),
        ("includePatientContact", "Include contact information", ""),
        ("includePatientAddress", "Include patient address", ""),
        ("includeEmergencyContact", "Include emergency contact", ""),
    ]),
    ("Vital Signs & Measurements", [
        ("includeVitalSigns", "Include vital signs (BP, HR, Temperature)", "OMIT vital signs"),
        ("includeBMI", "Include BMI & body measurements", "OMIT BMI"),
        ("includeSmartConnectData", "Include smart device health data", "OMIT smart device data"),
    ]),
    ("Medical History", [
        ("includeMedicalHistory", "Include past medical history", ""),
        ("includeAllergies", "Include known allergies", ""),
        ("includeCurrentMedications", "Include current medications", ""),
        ("includePastDiagnoses", "Include past TCM diagnoses", ""),
        ("includeFamilyHistory", "Include family medical history", ""),
    ]),
    ("TCM Recommendations (REQUIRED)", [
        ("suggestMedicine", "MUST suggest herbal medicine formulas with detailed prescriptions", "DO NOT suggest specific herbal medicines"),
        ("suggestDoctor", "MUST recommend consulting a nearby TCM doctor", "DO NOT suggest consulting doctors"),
        ("includeDietary", "MUST include comprehensive dietary advice (食疗) with specific foods and recipes", "OMIT dietary advice"),
        ("includeLifestyle", "MUST include lifestyle recommendations (养生)", "OMIT lifestyle advice"),
        ("includeAcupuncture", "MUST include acupuncture points (穴位) with locations and self-massage techniques", "OMIT acupuncture points"),
        ("includeExercise", "MUST include exercise recommendations (运动建议)", "OMIT exercise advice"),
        ("includeSleepAdvice", "MUST include sleep and rest guidance", "OMIT sleep advice"),
        ("includeEmotionalWellness", "MUST include emotional wellness guidance (情志调养)", "OMIT emotional wellness"),
    ]),
    ("Report Format & Extras", [
        ("includePrecautions", "MUST include precautions and warning signs", "OMIT precautions"),
        ("includeFollowUp", "MUST include follow-up guidance with timeline", "OMIT follow-up guidance"),
        ("includeTimestamp", "Include report timestamp", ""),
        ("includeQRCode", "Include QR code reference", ""),
        ("includeDoctorSignature", "Include doctor signature placeholder", ""),
    ]),
]

# Option flag -> recommendation field the model must return
RECOMMENDATION_FIELDS = [
    ("includeDietary", '"food_therapy": {"beneficial": [], "recipes": [], "avoid": []}'),
    ("includeLifestyle", '"lifestyle": []'),
    ("includeAcupuncture", '"acupoints": []'),
    ("includeExercise", '"exercise": []'),
    ("includeSleepAdvice", '"sleep_guidance": ""'),
    ("includeEmotionalWellness", '"emotional_care": ""'),
    ("suggestMedicine", '"herbal_formulas": [{"name": "", "ingredients": [], "dosage": "", "purpose": ""}]'),
    ("suggestDoctor", '"doctor_consultation": ""'),
]

FIVE_ELEMENTS_GUIDE = """Five Elements scoring (analysis.five_elements):
- Score liver, heart, spleen, lung and kidney from 0 to 100 (100 = optimal function)
- 80-100 healthy, 60-79 mild imbalance, 40-59 moderate imbalance, below 40 significant imbalance
- Give a one-sentence justification for each score based on the collected evidence"""

DEFAULT_REPORT_REQUIREMENTS = f"""
{RULE}
REPORT REQUIREMENTS
{RULE}
Return the complete JSON structure from your instructions, including diagnosis,
constitution, analysis (with five_elements), recommendations, precautions and
follow_up.

{FIVE_ELEMENTS_GUIDE}
"""


def _header(title: str) -> str:
    return f"\n{RULE}\n{title}\n{RULE}\n"


def calculate_bmi(weight: Any, height: Any) -> Optional[float]:
    """BMI to one decimal, or None when either value is missing or invalid"""
    try:
        weight, height = float(weight), float(height)
    except (TypeError, ValueError):
        return None
    if weight <= 0 or height <= 0:
        return None
    return round(weight / (height / 100) ** 2, 1)


def _section(value: Any) -> Dict[str, Any]:
    """A case-data section; anything that is not an object counts as empty"""
    return value if isinstance(value, dict) else {}


def _join(values: Any) -> str:
    if isinstance(values, (list, tuple)):
        return ", ".join(str(v) for v in values)
    return str(values)


class ConsultService:
    """Final TCM diagnosis"""

    def build_diagnosis_info(self, data: Dict[str, Any]) -> str:
        """
        Render every examination into one case file

        A verified summary in data["verified_summaries"] replaces the
        generated text for its section.
        """
        verified = {
            key: value
            for key, value in _section(data.get("verified_summaries")).items()
            if isinstance(value, str)
        }
        info = _header("患者资料 PATIENT PROFILE")
        info += verified.get("basic_info") or self._profile_section(_section(data.get("basic_info")))

        info += _header("问诊数据 INQUIRY DATA")
        info += verified.get("wen_inquiry") or self._inquiry_section(data)

        info += _header("切诊数据 PULSE DATA")
        if verified.get("qie"):
            info += verified["qie"]
        else:
            qie = _section(data.get("qie"))
            info += self._pulse_section(qie) if qie else "Pulse not measured"

        info += _header("望诊数据 VISUAL OBSERVATIONS")
        info += self._visual_section(data, verified)

        info += _header("闻诊数据 LISTENING DATA")
        info += verified.get("wen_audio") or self._listening_section(_section(data.get("wen_audio")))

        smart_connect = _section(data.get("smart_connect"))
        if smart_connect:
            info += _header("智能设备数据 SMART HEALTH DEVICE DATA")
            info += verified.get("smart_connect") or self._smart_device_section(smart_connect)

        info += _header("诊断资料汇总 DIAGNOSTIC DATA SUMMARY")
        info += "Data Availability Status:\n" + self._availability(data)

        options = _section(data.get("report_options"))
        info += self.build_report_requirements(options) if options else DEFAULT_REPORT_REQUIREMENTS
        return info

    @staticmethod
    def _profile_section(basic: Dict[str, Any]) -> str:
        lines = [
            f"Name: {basic.get('name') or 'Unknown'}",
            f"Age: {basic.get('age') or 'Unknown'}",
            f"Gender: {basic.get('gender') or 'Unknown'}",
            f"Weight: {basic.get('weight') or 'Unknown'} kg",
            f"Height: {basic.get('height') or 'Unknown'} cm",
        ]
        bmi = calculate_bmi(basic.get("weight"), basic.get("height"))
        if bmi is not None:
            lines.append(f"BMI: {bmi}")
        symptoms = basic.get("symptoms")
        lines.append(f"Reported Symptoms: {_join(symptoms) if symptoms else 'None'}")
        lines.append(f"Symptom Duration: {basic.get('symptomDuration') or 'Not specified'}")
        return "\n".join(lines) + "\n"

    @staticmethod
    def _inquiry_section(data: Dict[str, Any]) -> str:
        inquiry_text = str(_section(data.get("wen_inquiry")).get("inquiryText") or "")
        if len(inquiry_text) > INQUIRY_SUMMARY_MIN_LENGTH:
            return (
                f"Inquiry Summary: {inquiry_text}\n"
                "(Full chat history omitted as summary is provided)\n"
            )

        text = f"Notes: {inquiry_text}\n" if inquiry_text else ""
        chat = _section(data.get("wen_chat")).get("chat")
        if isinstance(chat, list) and chat:
            history = "\n".join(f"{m.get('role')}: {m.get('content')}" for m in chat if isinstance(m, dict))
            text += f"\nChat History (问诊记录):\n{history}\n"
        else:
            text += "Chat History: No chat recorded\n"
        return text

    @staticmethod
    def _pulse_section(qie: Dict[str, Any]) -> str:
        text = f"Pulse BPM: {qie.get('bpm', 'Unknown')}"
        if qie.get("quality"):
            text += f"\nPulse Quality: {_join(qie['quality'])}"
        return text

    @staticmethod
    def _visual_section(data: Dict[str, Any], verified: Dict[str, str]) -> str:
        text = ""
        for key, label, required in (
            ("wang_tongue", "舌诊 Tongue", True),
            ("wang_face", "面诊 Face", True),
            ("wang_part", "体部诊 Body Part", False),
        ):
            if verified.get(key):
                text += f"\n{label} Observation:\n{verified[key]}\n"
                continue
            section = _section(data.get(key))
            if section.get("observation"):
                text += f"\n{label} Observation:\n{section['observation']}\n"
                if section.get("potential_issues"):
                    text += f"{label.split(' ', 1)[1]} Indications: {_join(section['potential_issues'])}\n"
            elif required:
                text += f"{label.split(' ', 1)[1]}: No observation recorded\n"
        return text

    @staticmethod
    def _listening_section(audio: Dict[str, Any]) -> str:
        if not audio.get("audio"):
            return "Voice Recording: Not provided\n"

        text = "Voice Recording: ✓ Provided\n"
        analysis = _section(audio.get("analysis"))
        if analysis:
            text += "\n--- AUDIO ANALYSIS RESULTS ---\n"
            text += f"Overall Observation: {analysis.get('overall_observation') or 'N/A'}\n"
            for key, label in (
                ("voice_quality_analysis", "Voice Quality"),
                ("breathing_patterns", "Breathing"),
                ("speech_patterns", "Speech"),
                ("cough_sounds", "Cough"),
            ):
                section = analysis.get(key)
                if isinstance(section, dict) and section:
                    text += f"{label}: {section.get('observation')} (Severity: {section.get('severity')})\n"
            if analysis.get("pattern_suggestions"):
                text += f"Audio-suggested Patterns: {_join(analysis['pattern_suggestions'])}\n"
        elif audio.get("observation"):
            text += f"Voice Analysis: {audio['observation']}\n"

        if audio.get("transcription"):
            text += f"Voice Transcription: {audio['transcription']}\n"
        return text

    @staticmethod
    def _smart_device_section(device: Dict[str, Any]) -> str:
        fields = [
            ("pulseRate", "Pulse Rate (Heart Rate): {} BPM"),
            ("bloodPressure", "Blood Pressure: {} mmHg"),
            ("bloodOxygen", "Blood Oxygen (SpO2): {}%"),
            ("bodyTemp", "Body Temperature: {}°C"),
            ("hrv", "Heart Rate Variability (HRV): {} ms"),
            ("stressLevel", "Stress Level: {}"),
        ]
        return "".join(template.format(device[key]) + "\n" for key, template in fields if device.get(key))

    @staticmethod
    def _availability(data: Dict[str, Any]) -> str:
        checks = [
            (_section(data.get("wang_tongue")).get("image"), "Tongue image provided", "No tongue image"),
            (_section(data.get("wang_face")).get("image"), "Face image provided", "No face image"),
            (_section(data.get("wang_part")).get("image"), "Body area image provided", "No body area image"),
            (_section(data.get("wen_audio")).get("audio"), "Voice recording provided", "No voice recording"),
            (_section(data.get("qie")).get("bpm"), "Pulse measurement taken", "No pulse measurement"),
            (_section(data.get("smart_connect")), "Smart health device data connected", "No smart device data"),
        ]
        return "".join(f"✓ {yes}\n" if present else f"✗ {no}\n" for present, yes, no in checks)

    def build_report_requirements(self, options: Dict[str, Any]) -> str:
        """REPORT REQUIREMENTS section from the patient's report options"""
        text = _header("REPORT REQUIREMENTS")
        text += "IMPORTANT: Generate the report following EXACTLY these user-selected options.\n"
        for title, flags in REPORT_OPTION_SECTIONS:
            text += f"\n【{title}】\n"
            for flag, include, omit in flags:
                if options.get(flag):
                    text += f"✓ {include}\n"
                elif omit:
                    text += f"✗ {omit}\n"

        recommendation_fields = [field for flag, field in RECOMMENDATION_FIELDS if options.get(flag)]
        text += "\n=== JSON STRUCTURE REQUIREMENTS ===\n"
        text += "Your response MUST include: patient_summary, diagnosis, constitution, analysis (with five_elements)"
        if recommendation_fields:
            text += ", and recommendations with:\n" + "\n".join(f"  {f}" for f in recommendation_fields)
        text += f"\n\n{FIVE_ELEMENTS_GUIDE}\n"
        return text

    def build_system_prompt(self, db: Optional[Session], language: str) -> str:
        return language_instruction(language) + "\n\n" + prompt_service.get_system_prompt(db, "doctor_final")

    def stream_consultation(
        self,
        db: Optional[Session],
        data: Dict[str, Any],
        model: str = "gemini-1.5-flash",
        language: str = "en"
    ) -> StreamResult:
        """Stream the final diagnosis report; raises AllModelsFailedError"""
        diagnosis_info = self.build_diagnosis_info(data)
        patient = _section(data.get("basic_info")).get("name") or "guest"
        logger.info(f"Final consultation for {patient}: {len(diagnosis_info)} chars of case data")

        return stream_text_with_fallback(
            primary=model,
            contents=diagnosis_info,
            system_instruction=self.build_system_prompt(db, language),
            fallbacks=CONSULT_FALLBACK_MODELS,
            context="consult"
        )


consult_service = ConsultService()
