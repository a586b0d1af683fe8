"""FastAPI application: relay WebSocket, diagnosis and record endpoints, CORS."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hepnovate.config import settings
from hepnovate.errors import ServiceError
from hepnovate.inference.diagnosis import diagnose
from hepnovate.inference.symptom_detection import detect_symptoms
from hepnovate.inference.writeup import generate_writeup
from hepnovate.models import (
    DetectSymptomsRequest,
    DiagnoseRequest,
    DiagnosisResponse,
    DiagnosisResult,
    ExtractionResult,
    WriteUpRequest,
    WriteUpResponse,
)
from hepnovate.relay.session import handle_relay_websocket
from hepnovate.storage.record_store import DiagnosisRecordStore, build_record_store

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the record store and report configuration on startup."""
    app.state.record_store = build_record_store()
    if not settings.deepgram_api_key:
        logger.warning("DEEPGRAM_API_KEY is not set. Live transcription will not work.")
    logger.info(
        "LLM server configured at: %s (vision: %s, text: %s, symptoms: %s)",
        settings.llm_base_url,
        settings.vision_model,
        settings.text_model,
        settings.resolved_symptom_model,
    )
    yield
    logger.info("Shutting down.")


app = FastAPI(
    title="Hepnovate",
    description="Scan diagnosis assistant with live transcription relay",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


def _describe_validation_error(error: dict) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    problems = [_describe_validation_error(error) for error in exc.errors()]
    logger.info("Rejected %s %s: %s", request.method, request.url.path, problems)
    return JSONResponse(
        status_code=400,
        content={"error": f"Invalid request: {'; '.join(problems)}"},
    )


def _record_store(app_: FastAPI) -> DiagnosisRecordStore:
    store = getattr(app_.state, "record_store", None)
    if store is None:
        store = build_record_store()
        app_.state.record_store = store
    return store


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await handle_relay_websocket(
        websocket,
        upstream_factory=getattr(app.state, "upstream_factory", None),
    )


@app.post(
    "/api/detect-symptoms",
    response_model=ExtractionResult,
    response_model_by_alias=True,
)
async def detect_symptoms_endpoint(body: DetectSymptomsRequest):
    return await detect_symptoms(body.transcript)


@app.post(
    "/api/diagnose",
    response_model=DiagnosisResponse,
    response_model_by_alias=True,
)
async def diagnose_endpoint(body: DiagnoseRequest):
    result = await diagnose(body)
    _record_store(app).supersede(result)
    return DiagnosisResponse(diagnoses=result.diagnoses)


@app.post(
    "/api/writeup",
    response_model=WriteUpResponse,
    response_model_by_alias=True,
)
async def writeup_endpoint(body: WriteUpRequest):
    return WriteUpResponse(write_up=await generate_writeup(body))


@app.get("/api/diagnosis/current", response_model=DiagnosisResult, response_model_by_alias=True)
async def get_current_diagnosis():
    current = _record_store(app).get_current()
    if current is None:
        raise ServiceError("No current diagnosis", status_code=404)
    return current


@app.put("/api/diagnosis/current", response_model=DiagnosisResult, response_model_by_alias=True)
async def put_current_diagnosis(body: DiagnosisResult):
    return _record_store(app).store_current(body)


@app.post(
    "/api/diagnosis/current/reset",
    response_model=DiagnosisResult,
    response_model_by_alias=True,
)
async def reset_current_diagnosis():
    reset = _record_store(app).reset_keep_context()
    if reset is None:
        raise ServiceError("No current diagnosis", status_code=404)
    return reset


@app.delete("/api/diagnosis/current")
async def delete_current_diagnosis():
    _record_store(app).clear()
    return {"status": "cleared"}


@app.get("/health")
async def health():
    return {
        "status": "ok" if settings.deepgram_api_key else "degraded",
        "vision_model": settings.vision_model,
        "text_model": settings.text_model,
        "symptom_model": settings.resolved_symptom_model,
        "transcription_ready": bool(settings.deepgram_api_key),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "hepnovate.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
    )
