"""
Consultation API Routes
Streaming inquiry chat, inquiry summary, final diagnosis and report chat
"""
import time
import logging
from typing import Optional, List, Dict, Any
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field

from sihat.database.connection import get_db
from sihat.services.gemini_service import apply_admin_api_key
from sihat.services.model_fallback import AllModelsFailedError, StreamResult, build_error_response
from sihat.services.prompt_service import prompt_service
from sihat.services.inquiry_service import inquiry_service, NoHistoryError
from sihat.services.consult_service import consult_service
from sihat.services.report_chat_service import report_chat_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Consultation"], dependencies=[Depends(apply_admin_api_key)])


# ==================== Pydantic Models ====================

class ChatMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = []
    basicInfo: Optional[Dict[str, Any]] = None
    language: str = "en"
    model: str = "gemini-2.0-flash"
    doctorLevel: Optional[str] = None


class SummarizeInquiryRequest(BaseModel):
    chatHistory: List[ChatMessage] = []
    reportFiles: Optional[List[Dict[str, Any]]] = None
    medicineFiles: Optional[List[Dict[str, Any]]] = None
    basicInfo: Optional[Dict[str, Any]] = None
    language: str = "en"
    model: str = "gemini-1.5-pro"


class ConsultRequest(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)
    model: str = "gemini-1.5-flash"
    language: str = "en"
    doctorLevel: Optional[str] = None


class ReportChatRequest(BaseModel):
    messages: List[ChatMessage]
    reportData: Dict[str, Any]
    patientInfo: Optional[Dict[str, Any]] = None
    language: str = "en"
    model: str = "gemini-2.0-flash"


def stream_response(result: StreamResult) -> StreamingResponse:
    return StreamingResponse(
        result.chunks,
        media_type="text/plain; charset=utf-8",
        headers={"X-Model-Used": result.header_value}
    )


# ==================== Routes ====================

@router.post("/chat")
async def chat(body: ChatRequest, db: Session = Depends(get_db)):
    """Stream the doctor's next inquiry question"""
    messages = [m.model_dump() for m in body.messages]
    model = prompt_service.resolve_model(db, body.model, body.doctorLevel)
    try:
        result = inquiry_service.stream_chat(db, messages, body.basicInfo, body.language, model)
    except AllModelsFailedError as e:
        return build_error_response(e.__cause__ or e, "chat")
    return stream_response(result)


@router.post("/summarize-inquiry")
async def summarize_inquiry(body: SummarizeInquiryRequest, db: Session = Depends(get_db)):
    """Condense the inquiry conversation and uploaded files for the final diagnosis"""
    start = time.monotonic()
    try:
        return inquiry_service.summarize(
            db,
            [m.model_dump() for m in body.chatHistory],
            report_files=body.reportFiles,
            medicine_files=body.medicineFiles,
            basic_info=body.basicInfo,
            language=body.language,
            model=body.model
        )
    except NoHistoryError as e:
        return JSONResponse(
            status_code=400,
            content={"error": str(e), "code": "NO_HISTORY", "step": "validation"}
        )
    except AllModelsFailedError as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        return JSONResponse(status_code=500, content=inquiry_service.summary_error_body(e, duration_ms))


@router.post("/consult")
async def consult(body: ConsultRequest, db: Session = Depends(get_db)):
    """Stream the final TCM diagnosis report"""
    model = prompt_service.resolve_model(db, body.model, body.doctorLevel)
    try:
        result = consult_service.stream_consultation(db, body.data, model, body.language)
    except AllModelsFailedError as e:
        return build_error_response(e.__cause__ or e, "consult")
    return stream_response(result)


@router.post("/report-chat")
async def report_chat(body: ReportChatRequest):
    """Answer follow-up questions about a finished report"""
    try:
        result = report_chat_service.stream_reply(
            [m.model_dump() for m in body.messages],
            body.reportData,
            patient_info=body.patientInfo,
            language=body.language,
            model=body.model
        )
    except AllModelsFailedError as e:
        return build_error_response(e.__cause__ or e, "report chat")
    return stream_response(result)
