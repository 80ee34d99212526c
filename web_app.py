import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, StreamingResponse

from hopeai import database
from hopeai.analysis_graph import answer_clinical_question, run_clinical_analysis
from hopeai.config import SEED_DEMO_DATA, logger
from hopeai.formatter import format_clinical_response
from hopeai.schemas import (
    AnalyzeRequest,
    ClinicalQueryCreate,
    ClinicalQueryOut,
    ClinicalQueryUpdate,
    EvaluationDraftUpdate,
    FeedbackRequest,
    PatientCreate,
    PatientOut,
    PatientUpdate,
    QuestionRequest,
    TestResultCreate,
    TestResultOut,
)
from hopeai.services import ClinicalQueryService
from hopeai.streaming import ResponseStreamManager, sse_event


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.init_db()
    if SEED_DEMO_DATA:
        database.seed_demo()
    yield


app = FastAPI(title="HopeAI Clinical Assistant", lifespan=lifespan)


def get_query_service() -> ClinicalQueryService:
    return ClinicalQueryService()


def _query_out(query: dict) -> dict:
    return ClinicalQueryOut.model_validate(query).model_dump(by_alias=True)


def _patient_out(patient: dict) -> dict:
    return PatientOut.model_validate(patient).model_dump(by_alias=True, exclude_none=True)


def _get_query_or_404(query_id: int) -> dict:
    query = database.get_query(query_id)
    if query is None:
        raise HTTPException(status_code=404, detail="Clinical query not found")
    return query


def _get_patient_or_404(patient_id: str, include_test_results: bool = False) -> dict:
    patient = database.get_patient(patient_id, include_test_results=include_test_results)
    if patient is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    return patient


# -----------------------
# Service status
# -----------------------
@app.get("/api/health")
async def health():
    connected = await run_in_threadpool(database.check_connection)
    return {
        "status": "ok",
        "database": "connected" if connected else "disconnected",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api/models")
async def models():
    return {"models": await run_in_threadpool(database.list_tables)}


@app.get("/api/analysis")
async def analysis_status():
    return {
        "message": "Clinical analysis API is working",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# -----------------------
# Symptom analysis
# -----------------------
@app.post("/api/clinical/analyze")
async def analyze_patient(request: AnalyzeRequest, service: ClinicalQueryService = Depends(get_query_service)):
    if not request.patient_data:
        raise HTTPException(status_code=400, detail="Patient data not provided")
    logger.info(f"Analysing patient data ({len(request.patient_data)} characters)")
    try:
        result = await run_in_threadpool(run_clinical_analysis, request.patient_data, service.llm)
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Error in the clinical analysis: {exc}") from exc
    return {"success": True, "data": result.model_dump(by_alias=True)}


@app.post("/api/clinical/question")
async def answer_question(request: QuestionRequest, service: ClinicalQueryService = Depends(get_query_service)):
    if not request.question:
        raise HTTPException(status_code=400, detail="Question not provided")
    if not request.analysis_state:
        raise HTTPException(status_code=400, detail="Analysis state not provided")
    try:
        answer = await run_in_threadpool(
            answer_clinical_question, request.analysis_state, request.question, service.llm
        )
    except Exception as exc:
        raise HTTPException(status_code=500, detail=f"Error answering the question: {exc}") from exc
    return {"success": True, "data": {"answer": answer}}


# -----------------------
# Clinical queries
# -----------------------
@app.get("/api/clinical/queries/patient/{patient_id}")
async def list_patient_queries(patient_id: str, limit: int = 20, offset: int = 0,
                               tag: Optional[str] = None, favorite: bool = False):
    queries, total = await run_in_threadpool(database.list_queries, patient_id, limit, offset, tag, favorite)
    return {"success": True, "data": {"queries": [_query_out(q) for q in queries], "total": total}}


@app.get("/api/clinical/queries/{query_id}")
async def get_query(query_id: int):
    return {"success": True, "data": _query_out(_get_query_or_404(query_id))}


@app.post("/api/clinical/queries", status_code=201)
async def create_query(request: ClinicalQueryCreate, background_tasks: BackgroundTasks,
                       service: ClinicalQueryService = Depends(get_query_service)):
    if not database.patient_exists(request.patient_id):
        raise HTTPException(status_code=404, detail="Patient not found")
    query = database.create_query(request.patient_id, request.question, request.tags, request.created_by)
    # Answer after the response has been sent
    background_tasks.add_task(service.process_query_async, query["id"])
    return {"success": True, "data": _query_out(query), "message": "Query created and being processed"}


@app.put("/api/clinical/queries/{query_id}")
async def update_query(query_id: int, request: ClinicalQueryUpdate):
    _get_query_or_404(query_id)
    query = database.update_query(query_id, **request.model_dump(exclude_unset=True))
    return {"success": True, "data": _query_out(query)}


@app.delete("/api/clinical/queries/{query_id}")
async def delete_query(query_id: int):
    if not database.delete_query(query_id):
        raise HTTPException(status_code=404, detail="Clinical query not found")
    return {"success": True, "message": "Clinical query deleted"}


@app.patch("/api/clinical/queries/{query_id}/favorite")
async def toggle_favorite(query_id: int):
    query = database.toggle_favorite(query_id)
    if query is None:
        raise HTTPException(status_code=404, detail="Clinical query not found")
    return {"success": True, "data": _query_out(query)}


@app.post("/api/clinical/queries/{query_id}/process")
async def process_query(query_id: int, service: ClinicalQueryService = Depends(get_query_service)):
    _get_query_or_404(query_id)
    query = await run_in_threadpool(service.process_query, query_id)
    if query is None:
        raise HTTPException(status_code=500, detail="Error processing the clinical query")
    return {"success": True, "data": _query_out(query)}


@app.post("/api/clinical/queries/{query_id}/stream")
async def stream_query(query_id: int, service: ClinicalQueryService = Depends(get_query_service)):
    """Process a query, relaying progress and tokens as Server-Sent Events."""
    _get_query_or_404(query_id)
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    manager = ResponseStreamManager()
    # Callbacks fire on the worker thread
    manager.on_progress(lambda event: loop.call_soon_threadsafe(
        queue.put_nowait, sse_event("progress", event.model_dump(by_alias=True))))
    manager.on_chunk(lambda chunk: loop.call_soon_threadsafe(
        queue.put_nowait, sse_event("token", {"token": chunk})))

    def work():
        try:
            return service.process_query(query_id, stream_manager=manager)
        finally:
            loop.call_soon_threadsafe(queue.put_nowait, None)

    async def event_stream():
        task = asyncio.ensure_future(run_in_threadpool(work))
        try:
            while True:
                frame = await queue.get()
                if frame is None:
                    break
                yield frame
        except (asyncio.CancelledError, GeneratorExit):
            # A running worker thread cannot be interrupted; it still stores the answer
            logger.info(f"Client left the stream of query {query_id}; processing continues")
            raise
        query = await task
        if query is None:
            yield sse_event("error", {"error": "Error processing the clinical query"})
        else:
            yield sse_event("result", _query_out(query))

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.get("/api/clinical/queries/{query_id}/html", response_class=HTMLResponse)
async def query_html(query_id: int) -> HTMLResponse:
    query = _get_query_or_404(query_id)
    return HTMLResponse(format_clinical_response(query["response_json"]))


@app.post("/api/clinical/queries/{query_id}/feedback")
async def provide_feedback(query_id: int, request: FeedbackRequest):
    _get_query_or_404(query_id)
    tags = [name for name, flag in (("helpful", request.helpful), ("accurate", request.accurate),
                                    ("detailed", request.detailed)) if flag]
    query = database.record_feedback(query_id, request.rating, request.feedback, tags)
    return {"success": True, "message": "Feedback recorded", "data": _query_out(query)}


# -----------------------
# Patients
# -----------------------
@app.get("/api/patients")
async def list_patients():
    patients = await run_in_threadpool(database.list_patients)
    return [_patient_out(p) for p in patients]


@app.post("/api/patients", status_code=201)
async def create_patient(request: PatientCreate):
    if request.id and database.patient_exists(request.id):
        raise HTTPException(status_code=400, detail="A patient with this id already exists")
    fields = request.model_dump(exclude={"id", "name"}, exclude_none=True)
    patient = database.create_patient(request.name, patient_id=request.id, **fields)
    return _patient_out(patient)


@app.get("/api/patients/{patient_id}")
async def get_patient(patient_id: str):
    return _patient_out(_get_patient_or_404(patient_id, include_test_results=True))


@app.put("/api/patients/{patient_id}")
async def update_patient(patient_id: str, request: PatientUpdate):
    patient = database.update_patient(patient_id, **request.model_dump(exclude_unset=True))
    if patient is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    return _patient_out(patient)


@app.put("/api/patients/{patient_id}/evaluation-draft")
async def update_evaluation_draft(patient_id: str, request: EvaluationDraftUpdate):
    patient = database.update_patient(patient_id, evaluation_draft=request.draft)
    if patient is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    return _patient_out(patient)


@app.post("/api/patients/{patient_id}/test-results", status_code=201)
async def add_test_result(patient_id: str, request: TestResultCreate):
    result = database.add_test_result(patient_id, **request.model_dump())
    if result is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    return TestResultOut.model_validate(result).model_dump(by_alias=True)
