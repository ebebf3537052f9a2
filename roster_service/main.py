# roster_service/main.py
from datetime import datetime, timezone
import os
import logging
import threading

from fastapi import FastAPI, HTTPException, BackgroundTasks, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from roster_service import database, events, schemas, sheets
from roster_service.errors import NotFound, SourceUnavailable
from roster_service.facade import RosterFacade
from roster_service.roster import GoogleSheetRosterSource, CsvExportRosterSource, SqlRosterSource
from roster_service.seating import SeatAllocator
from roster_service.verification import VerificationService

# config / env
ROSTER_BACKEND = os.getenv("ROSTER_BACKEND", "sheet")
SPREADSHEET_ID = os.getenv("SPREADSHEET_ID", "")
ROSTER_CSV_URL = os.getenv("ROSTER_CSV_URL", "")
SHEET_NAME = os.getenv("SHEET_NAME", "Sheet1")
GOOGLE_SERVICE_ACCOUNT_CREDENTIALS = os.getenv("GOOGLE_SERVICE_ACCOUNT_CREDENTIALS")
DATABASE_URL = os.getenv("DATABASE_URL", "")
SEAT_LAYOUT = os.getenv("SEAT_LAYOUT", "grid")
SEAT_ROWS = os.getenv("SEAT_ROWS", "ABCDEFGHIJ")
SEATS_PER_ROW = int(os.getenv("SEATS_PER_ROW", "20"))
TOTAL_SEATS = int(os.getenv("TOTAL_SEATS", "40"))
SEAT_MAX_ATTEMPTS = int(os.getenv("SEAT_MAX_ATTEMPTS", "200"))
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10"))
RABBITMQ_URL = os.getenv("RABBITMQ_URL", "")

MISSING_FIELDS_ERROR = "Enrollment number and unique code are required"

# logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger("roster-service")

app = FastAPI(title="Student Roster Verification Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

def build_roster_source():
    if ROSTER_BACKEND == "sql":
        if not DATABASE_URL:
            raise ValueError("DATABASE_URL must be set when ROSTER_BACKEND=sql")
        return SqlRosterSource(DATABASE_URL)
    if ROSTER_BACKEND != "sheet":
        raise ValueError(f"Unknown ROSTER_BACKEND: {ROSTER_BACKEND}")

    if not SPREADSHEET_ID:
        # public export only, no write-back possible
        return CsvExportRosterSource(ROSTER_CSV_URL, timeout=REQUEST_TIMEOUT_SECONDS)

    writer = None
    try:
        credentials = sheets.load_credentials(GOOGLE_SERVICE_ACCOUNT_CREDENTIALS)
    except ValueError as e:
        # reads and verification keep working, only write-back is lost
        logger.warning("Invalid GOOGLE_SERVICE_ACCOUNT_CREDENTIALS; roster write-back disabled: %s", e)
    else:
        if credentials:
            token_provider = sheets.ServiceAccountTokenProvider(credentials, timeout=REQUEST_TIMEOUT_SECONDS)
            writer = sheets.SheetsWriter(SPREADSHEET_ID, token_provider, SHEET_NAME, timeout=REQUEST_TIMEOUT_SECONDS)
        else:
            logger.warning("GOOGLE_SERVICE_ACCOUNT_CREDENTIALS not set; roster write-back disabled")
    return GoogleSheetRosterSource(SPREADSHEET_ID, writer, export_url=ROSTER_CSV_URL or None,
                                   timeout=REQUEST_TIMEOUT_SECONDS)

_facade = None
_facade_lock = threading.Lock()
def get_facade() -> RosterFacade:
    global _facade
    if _facade is None:
        with _facade_lock:
            # one facade, so every request shares the same verification lock
            if _facade is None:
                source = build_roster_source()
                allocator = SeatAllocator.from_settings(SEAT_LAYOUT, SEAT_ROWS, SEATS_PER_ROW, TOTAL_SEATS, SEAT_MAX_ATTEMPTS)
                _facade = RosterFacade(source, VerificationService(source, allocator))
    return _facade

@app.on_event("startup")
def startup():
    logger.info("Starting roster service with backend=%s seat_layout=%s", ROSTER_BACKEND, SEAT_LAYOUT)
    get_facade()
    if ROSTER_BACKEND == "sql":
        database.init_db(DATABASE_URL)
    logger.info("Startup complete.")

@app.exception_handler(RequestValidationError)
async def invalid_request(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": MISSING_FIELDS_ERROR})

# Root and health endpoints
@app.get("/")
def root():
    return {"service": "Student Roster Verification", "status": "running",
            "endpoints": ["/students", "/verify", "/seats", "/docs"]}

@app.get("/health")
def health(facade: RosterFacade = Depends(get_facade)):
    try:
        facade.list_students()
    except SourceUnavailable as e:
        logger.error("Health check failed: %s", e.message)
        raise HTTPException(status_code=503, detail="Roster source unreachable")
    return {"status": "ok"}

@app.get("/students", response_model=schemas.StudentList)
def list_students(facade: RosterFacade = Depends(get_facade)):
    try:
        roster = facade.list_students()
    except Exception as e:
        logger.exception("Error fetching students")
        return JSONResponse(status_code=500, content={"error": "Failed to fetch students", "details": str(e)})

    logger.info("Processed %d students", len(roster))
    return schemas.StudentList(
        students=[schemas.StudentOut(enrollment=s.enrollment, name=s.name, status=s.status.value, seat=s.seat)
                  for s in roster],
        last_updated=datetime.now(timezone.utc),
    )

@app.post("/verify", response_model=schemas.VerifyResponse, response_model_exclude_none=True)
def verify_student(req: schemas.VerifyRequest, background_tasks: BackgroundTasks,
                   facade: RosterFacade = Depends(get_facade)):
    if not req.enrollment or not req.unique_code:
        return JSONResponse(status_code=400, content={"error": MISSING_FIELDS_ERROR})

    logger.info("Verifying student: %s", req.enrollment)
    try:
        outcome = facade.verify_student(req.enrollment, req.unique_code)
    except NotFound:
        return JSONResponse(status_code=404, content={"success": False, "error": "Student not found"})
    except Exception as e:
        logger.exception("Error verifying student %s", req.enrollment)
        return JSONResponse(status_code=500, content={"success": False, "error": "Verification failed", "details": str(e)})

    if outcome.verified:
        background_tasks.add_task(events.publish_student_verified, RABBITMQ_URL, req.enrollment, outcome.seat)

    return schemas.VerifyResponse(
        verified=outcome.verified,
        status=outcome.status,
        seat=outcome.seat,
        message=outcome.message,
        warning=outcome.warning,
    )

@app.get("/seats", response_model=schemas.SeatChartOut)
def seat_chart(facade: RosterFacade = Depends(get_facade)):
    try:
        chart = facade.seat_chart()
    except Exception as e:
        logger.exception("Error fetching seat data")
        return JSONResponse(status_code=500, content={"error": "Failed to fetch seat data", "details": str(e)})
    return schemas.SeatChartOut.model_validate(chart)
