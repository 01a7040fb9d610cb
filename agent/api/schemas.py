from typing import Any, Optional

from pydantic import BaseModel


class CreateScheduleRequest(BaseModel):
    patientId: Optional[str] = None
    scheduledAt: Optional[str] = None
    when: Optional[str] = None  # natural-language time, used without scheduledAt
    message: Optional[str] = None


class ImmediateCallRequest(BaseModel):
    patientId: Optional[str] = None
    message: Optional[str] = None


class ParseTimeRequest(BaseModel):
    text: Optional[str] = None


class TranslateRequest(BaseModel):
    message: Optional[str] = None


class ApiResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: Any = None
