"""
Report Chat Service
Lets a patient ask questions about their finished diagnosis report
"""
import json
import logging
from typing import Dict, List, Optional, Any

from sihat.services.model_fallback import DEFAULT_FALLBACK_MODELS, StreamResult, stream_text_with_fallback
from sihat.services.prompts import language_instruction
from sihat.services.inquiry_service import format_chat_history

logger = logging.getLogger(__name__)

REPORT_CHAT_ROLE = """You are a helpful TCM (Traditional Chinese Medicine) assistant helping a patient understand their diagnosis report.

PATIENT'S TCM DIAGNOSIS REPORT
{context}

YOUR ROLE:
1. Answer questions about the patient's TCM diagnosis in an easy-to-understand way
2. Explain medical and TCM terminology simply
3. Provide educational context about TCM concepts (Yin/Yang, Qi, Five Elements)
4. Clarify the reasoning behind food, lifestyle and treatment recommendations
5. If asked about something not in the report, explain that you can only discuss the current diagnosis

GUIDELINES:
- Keep responses concise (2-4 paragraphs)
- Do NOT give medical advice beyond what is in the report, and never diagnose new conditions
- Encourage the patient to consult a licensed TCM practitioner for personalised treatment"""


def _text(value: Any, key: str) -> str:
    """A string field, or the named key of a dict field, or its JSON"""
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and value.get(key):
        return str(value[key])
    return json.dumps(value, ensure_ascii=False)


def _items(values: Optional[List[Any]]) -> List[str]:
    return [str(v) for v in values or []]


def build_report_context(report: Dict[str, Any], patient_info: Optional[Dict[str, Any]] = None) -> str:
    """Render the diagnosis report as plain text for the system prompt"""
    context = ""

    if patient_info:
        context += (
            "PATIENT INFORMATION:\n"
            f"- Name: {patient_info.get('name') or 'Not provided'}\n"
            f"- Age: {patient_info.get('age') or 'Not provided'}\n"
            f"- Gender: {patient_info.get('gender') or 'Not provided'}\n"
            f"- Chief Complaint: {patient_info.get('symptoms') or 'Not provided'}\n"
        )

    diagnosis = report.get("diagnosis")
    if diagnosis:
        context += f"\nMAIN DIAGNOSIS (辨证): {_text(diagnosis, 'primary_pattern')}\n"
        if isinstance(diagnosis, dict):
            if diagnosis.get("secondary_patterns"):
                context += f"Secondary Patterns: {', '.join(_items(diagnosis['secondary_patterns']))}\n"
            if diagnosis.get("affected_organs"):
                context += f"Affected Organs: {', '.join(_items(diagnosis['affected_organs']))}\n"

    constitution = report.get("constitution")
    if constitution:
        context += f"\nCONSTITUTION TYPE: {_text(constitution, 'type')}\n"
        if isinstance(constitution, dict) and constitution.get("description"):
            context += f"Description: {constitution['description']}\n"

    analysis = report.get("analysis")
    if analysis:
        context += f"\nFINAL ANALYSIS (综合诊断): {_text(analysis, 'summary')}\n"
        if isinstance(analysis, dict):
            if analysis.get("pattern_rationale"):
                context += f"Rationale: {analysis['pattern_rationale']}\n"
            findings = analysis.get("key_findings")
            if isinstance(findings, dict):
                for source, finding in findings.items():
                    if finding:
                        context += f"Finding ({source.replace('_', ' ')}): {finding}\n"

    recommendations = report.get("recommendations")
    if isinstance(recommendations, dict):
        context += "\nRECOMMENDATIONS:\n"
        food_therapy = recommendations.get("food_therapy") or {}
        rows = [
            ("Beneficial Foods", food_therapy.get("beneficial"), ", "),
            ("Recommended Foods", recommendations.get("food"), ", "),
            ("Foods to Avoid", food_therapy.get("avoid"), ", "),
            ("Avoid", recommendations.get("avoid"), ", "),
            ("Lifestyle Advice", recommendations.get("lifestyle"), "; "),
            ("Acupressure Points", recommendations.get("acupoints"), ", "),
            ("Exercise", recommendations.get("exercise"), "; "),
        ]
        for label, values, separator in rows:
            if values:
                context += f"- {label}: {separator.join(_items(values))}\n"
        if recommendations.get("sleep_guidance"):
            context += f"- Sleep Guidance: {recommendations['sleep_guidance']}\n"
        if recommendations.get("emotional_care"):
            context += f"- Emotional Wellness: {recommendations['emotional_care']}\n"
        formulas = recommendations.get("herbal_formulas") or []
        if formulas:
            names = [f.get("name", "") if isinstance(f, dict) else str(f) for f in formulas]
            context += f"- Herbal Formulas: {', '.join(names)}\n"

    precautions = report.get("precautions")
    if isinstance(precautions, dict):
        context += "\nPRECAUTIONS:\n"
        if precautions.get("warning_signs"):
            context += f"- Warning Signs: {'; '.join(_items(precautions['warning_signs']))}\n"
        if precautions.get("contraindications"):
            context += f"- Contraindications: {'; '.join(_items(precautions['contraindications']))}\n"

    follow_up = report.get("follow_up")
    if isinstance(follow_up, dict):
        context += "\nFOLLOW-UP:\n"
        timeline = follow_up.get("timeline") or follow_up.get("timing")
        if timeline:
            context += f"- Timeline: {timeline}\n"
        if follow_up.get("expected_improvement"):
            context += f"- Expected Improvement: {follow_up['expected_improvement']}\n"

    return context


class ReportChatService:
    """Streams answers grounded in one diagnosis report"""

    def stream_reply(
        self,
        messages: List[Dict[str, Any]],
        report: Dict[str, Any],
        patient_info: Optional[Dict[str, Any]] = None,
        language: str = "en",
        model: str = "gemini-2.0-flash"
    ) -> StreamResult:
        """Raises AllModelsFailedError when no model can stream"""
        system_prompt = (
            language_instruction(language) + "\n\n"
            + REPORT_CHAT_ROLE.format(context=build_report_context(report, patient_info))
        )
        logger.info(f"Report chat with {len(messages)} messages using {model}")
        return stream_text_with_fallback(
            primary=model,
            contents=format_chat_history(messages) + "\n\n[ASSISTANT]:",
            system_instruction=system_prompt,
            fallbacks=DEFAULT_FALLBACK_MODELS,
            context="report chat"
        )


report_chat_service = ReportChatService()
