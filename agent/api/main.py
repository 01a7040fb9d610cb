"""
FastAPI app exposing call scheduling, previews, call logs and the Vapi webhook
"""
import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from config.settings import Settings, load_settings
from followup.outcome_recorder import CallOutcomeRecorder
from scheduling.service import ScheduleService, create_schedule_service
from scheduling.tasks import enqueue_summary
from shared.errors import PostOpError, ValidationError
from utils.time_utils import now_utc

from .schemas import (
    ApiResponse, CreateScheduleRequest, ImmediateCallRequest, ParseTimeRequest, TranslateRequest
)

logger = logging.getLogger("postop-api")

app = FastAPI(title="PostCare Call Scheduling")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


@lru_cache(maxsize=1)
def get_schedule_service() -> ScheduleService:
    return create_schedule_service(get_settings())


@lru_cache(maxsize=1)
def get_outcome_recorder() -> CallOutcomeRecorder:
    return CallOutcomeRecorder(get_schedule_service().scheduler, enqueue_summary=enqueue_summary)


async def get_doctor_id(x_doctor_id: Optional[str] = Header(default=None)) -> str:
    if not x_doctor_id:
        raise ValidationError("X-Doctor-Id header is required")
    return x_doctor_id


@app.exception_handler(PostOpError)
async def postop_error_handler(request: Request, exc: PostOpError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health():
    return {"status": "healthy", "service": "postop-scheduling", "timestamp": now_utc().isoformat()}


@app.post("/api/schedules", status_code=201, response_model=ApiResponse)
async def create_schedule(
    req: CreateScheduleRequest,
    doctor_id: str = Depends(get_doctor_id),
    service: ScheduleService = Depends(get_schedule_service),
):
    schedule = await service.create_schedule(
        doctor_id, req.patientId, req.message, scheduled_at=req.scheduledAt, when=req.when
    )
    return ApiResponse(data=schedule.to_public_dict())


# Redis-only handlers are plain def and run in the threadpool
@app.get("/api/schedules", response_model=ApiResponse)
def list_schedules(
    patientId: Optional[str] = None,
    status: Optional[str] = None,
    doctor_id: str = Depends(get_doctor_id),
    service: ScheduleService = Depends(get_schedule_service),
):
    schedules = service.list_schedules(doctor_id, patient_id=patientId, status=status)
    return ApiResponse(data=[schedule.to_public_dict() for schedule in schedules])


@app.put("/api/schedules/{schedule_id}/cancel", response_model=ApiResponse)
def cancel_schedule(
    schedule_id: str,
    doctor_id: str = Depends(get_doctor_id),
    service: ScheduleService = Depends(get_schedule_service),
):
    schedule = service.cancel_schedule(doctor_id, schedule_id)
    return ApiResponse(data=schedule.to_public_dict())


@app.post("/api/schedules/trigger", response_model=ApiResponse)
async def trigger_dispatch(
    doctor_id: str = Depends(get_doctor_id),
    service: ScheduleService = Depends(get_schedule_service),
):
    report = await service.trigger()
    return ApiResponse(data=report.to_dict())


@app.post("/api/schedules/test-call", response_model=ApiResponse)
async def test_call(
    req: ImmediateCallRequest,
    doctor_id: str = Depends(get_doctor_id),
    service: ScheduleService = Depends(get_schedule_service),
):
    result, call_log = await service.test_call(doctor_id, req.patientId, req.message)
    return ApiResponse(
        message="Call initiated! The patient should receive the call shortly.",
        data={"providerCallId": result.provider_call_id, "callLog": call_log.to_public_dict()},
    )


@app.post("/api/schedules/parse-time", response_model=ApiResponse)
async def parse_time(
    req: ParseTimeRequest,
    doctor_id: str = Depends(get_doctor_id),
    service: ScheduleService = Depends(get_schedule_service),
):
    resolved = await service.preview_time(req.text)
    return ApiResponse(data=resolved.to_public_dict())


@app.post("/api/schedules/translate", response_model=ApiResponse)
async def translate(
    req: TranslateRequest,
    doctor_id: str = Depends(get_doctor_id),
    service: ScheduleService = Depends(get_schedule_service),
):
    variants = await service.preview_translation(req.message)
    return ApiResponse(data=variants)


@app.get("/api/call-logs", response_model=ApiResponse)
def list_call_logs(
    patientId: Optional[str] = None,
    limit: int = 50,
    doctor_id: str = Depends(get_doctor_id),
    service: ScheduleService = Depends(get_schedule_service),
):
    logs = service.list_call_logs(doctor_id, patient_id=patientId, limit=min(max(limit, 1), 200))
    return ApiResponse(data=[log.to_public_dict() for log in logs])


@app.post("/api/webhooks/vapi")
async def vapi_webhook(request: Request, recorder: CallOutcomeRecorder = Depends(get_outcome_recorder)):
    # Always 200; errors are logged, never returned
    try:
        body = await request.json()
        outcome = await run_in_threadpool(recorder.handle_event, body if isinstance(body, dict) else {})
        logger.debug(f"Vapi webhook handled: {outcome}")
    except Exception as e:
        logger.error(f"Vapi webhook error: {e}", exc_info=True)
    return {"received": True}
