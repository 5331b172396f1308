import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from crm.database import create_db_and_tables
from crm.config import settings
from crm.storage import FileStorage, get_storage
from crm.auth.router import router as auth_router
from crm.users.router import router as team_router, sales_router
from crm.leads.router import router as leads_router
from crm.activities.router import router as activities_router, feed_router
from crm.dashboard.router import router as dashboard_router
from crm.ai.router import router as ai_router
# Imported so every table is registered before create_all
from crm.users.models import User  # noqa: F401
from crm.leads.models import Lead, LeadAssignment  # noqa: F401
from crm.activities.models import LeadActivity  # noqa: F401

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
    create_db_and_tables()
    logger.info("%s %s started", settings.APP_TITLE, settings.APP_VERSION)
    yield

app = FastAPI(
    title=settings.APP_TITLE,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
    if response.status_code == 404:
        logger.warning("Not found: %s %s", request.method, request.url.path)
    return response

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

app.include_router(auth_router)
app.include_router(team_router)
app.include_router(sales_router)
app.include_router(leads_router)
app.include_router(activities_router)
app.include_router(feed_router)
app.include_router(dashboard_router)
app.include_router(ai_router)

@app.get("/")
def read_root():
    return {"message": "Welcome to the CRM API"}

@app.get("/uploads/{filename}")
def read_upload(filename: str, storage: FileStorage = Depends(get_storage)):
    path = storage.resolve(filename)
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")
    if path.suffix.lower() == ".pdf":
        return FileResponse(
            path,
            media_type="application/pdf",
            headers={"Content-Disposition": f'inline; filename="{path.name}"'},
        )
    return FileResponse(path)
