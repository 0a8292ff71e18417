import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.exceptions import AppError
from app.core.websocket_manager import ConnectionRegistry
from app.routers import (
    job_router, application_router, payment_router, admin_router,
    chat_router, notification_router, skill_router,
)

# --- 匯入所有 Model，讓 SQLAlchemy 註冊全部資料表 ---
from app.models import user
from app.models import skill
from app.models import job
from app.models import application
from app.models import transaction
from app.models import message
from app.models import notification


logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # 每個 server process 一個連線登記表，關閉時丟棄
    app.state.connections = ConnectionRegistry()
    logger.info("Connection registry ready")
    yield
    logger.info(f"Shutting down with {len(app.state.connections.online_user_ids())} open connection(s)")

app = FastAPI(lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- 錯誤對應 (AppError -> JSON) ---
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, **exc.to_dict()},
    )

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "InternalError", "message": "Something went wrong"},
    )

# --- Root ---
@app.get("/")
def read_root():
    return {"status": "success", "message": "Backend is running!"}

# --- 路由註冊 ---
app.include_router(job_router.router)
app.include_router(application_router.router)
app.include_router(payment_router.router)
app.include_router(admin_router.router)
app.include_router(chat_router.router)
app.include_router(notification_router.router)
app.include_router(skill_router.router)
