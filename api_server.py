"""FastAPI REST API server for Necessity Reminder.

This module provides the HTTP endpoints used by the web frontend: signup and
login, and reminder management for the logged-in user. Every reminder route
takes the owner id from the bearer token, never from the request.

Notifications themselves are sent by the background worker, not here.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

from fastapi import BackgroundTasks, FastAPI, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

import crud
import schemas
import database
import security
from config import settings
from database import CategoryEnum
from dispatcher import NotificationDispatcher, build_channel, render_notification, render_welcome
from exceptions import ReminderNotFound, ReminderValidationError, StoreUnavailable, UserAlreadyExists
from logger_config import setup_logger

logger = setup_logger(__name__, 'api.log')


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.init_db()
    logger.info(f"🚀 API ready on http://{settings.API_HOST}:{settings.API_PORT}/api")
    logger.info(f"📧 Delivery channel: {settings.DELIVERY_CHANNEL} (email configured: {settings.email_configured})")
    yield


# Create FastAPI application
app = FastAPI(
    title="Necessity Reminder API",
    description="Multi-user reminders with scheduled notifications",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== ERROR MAPPING ====================

@app.exception_handler(ReminderValidationError)
async def validation_error_handler(request: Request, exc: ReminderValidationError):
    return JSONResponse(status_code=400, content={"message": str(exc)})


@app.exception_handler(UserAlreadyExists)
async def user_exists_handler(request: Request, exc: UserAlreadyExists):
    return JSONResponse(status_code=400, content={"message": "Email already registered"})


@app.exception_handler(ReminderNotFound)
async def not_found_handler(request: Request, exc: ReminderNotFound):
    return JSONResponse(status_code=404, content={"message": "Reminder not found"})


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=503, content={"message": "Database unavailable, try again later"})


# Message for a request body with required fields left out, per route
REQUIRED_FIELDS_MESSAGES = {
    "/api/auth/signup": "All fields are required",
    "/api/auth/login": "Email and password required",
    "/api/reminders": "Title, category, and time are required",
}


def _is_missing(error: dict) -> bool:
    return error.get("type") == "missing" or error.get("input") in ("", None)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors and all(_is_missing(e) for e in errors) and request.url.path in REQUIRED_FIELDS_MESSAGES:
        message = REQUIRED_FIELDS_MESSAGES[request.url.path]
    elif errors:
        first = errors[0]
        message = f"Invalid {first['loc'][-1]}: {first['msg']}"
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"message": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None)
    )


# ==================== DEPENDENCIES ====================

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> int:
    """Authenticated user id from the Authorization: Bearer header."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Access token required")
    try:
        return security.decode_access_token(credentials.credentials)
    except security.InvalidToken:
        raise HTTPException(status_code=403, detail="Invalid or expired token")


@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(
        build_channel(settings),
        timeout_seconds=settings.DELIVERY_TIMEOUT_SECONDS,
        concurrency=1,
        dashboard_url=settings.DASHBOARD_URL,
    )


# ==================== AUTH ROUTES ====================

async def send_welcome(dispatcher: NotificationDispatcher, email: str, full_name: str):
    """Greet a new user. A failed send is logged and otherwise ignored."""
    result = await dispatcher.send(email, full_name, render_welcome(full_name, settings.LOGIN_URL))
    if result.delivered:
        logger.info(f"✅ Welcome email sent to {email}")
    else:
        logger.warning(f"⚠️ Could not send welcome email to {email}: {result.error}")


@app.post("/api/auth/signup", status_code=201)
def signup(
    body: schemas.SignupRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(database.get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    """Register a user and send a welcome e-mail after the response. Returns the new user id."""
    password_hash = security.get_password_hash(body.password)
    user = crud.create_user(db, body.full_name, body.email, password_hash)
    background_tasks.add_task(send_welcome, dispatcher, user.email, user.full_name)
    return {"message": "User created successfully", "userId": user.user_id}


@app.post("/api/auth/login", response_model=schemas.LoginResponse)
def login(body: schemas.LoginRequest, db: Session = Depends(database.get_db)):
    """Exchange e-mail and password for a bearer token."""
    user = crud.get_user_by_email(db, body.email)
    if not user or not security.verify_password(body.password, user.password):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    token = security.create_access_token(user.user_id, user.email)
    logger.info(f"User {user.user_id} logged in")
    return {
        "message": "Login successful",
        "token": token,
        "user": schemas.UserResponse.model_validate(user)
    }


# ==================== REMINDER ROUTES ====================

@app.get("/api/reminders", response_model=List[schemas.ReminderResponse])
def list_reminders(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(database.get_db)
):
    """All reminders of the logged-in user, earliest first."""
    return crud.list_reminders_for_owner(db, user_id)


@app.post("/api/reminders", status_code=201)
def create_reminder(
    body: schemas.ReminderCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(database.get_db)
):
    """Create a new reminder.

    Request body example:
    ```json
    {
        "title": "Take vitamins",
        "category": "medicine",
        "reminderTime": "2025-10-26T15:00:00Z",
        "notes": "After breakfast"
    }
    ```
    """
    reminder = crud.create_reminder(
        db, user_id, body.title, body.category, body.reminder_time, body.notes
    )
    return {"message": "Reminder created successfully", "reminderId": reminder.reminder_id}


@app.patch("/api/reminders/{reminder_id}/complete")
def complete_reminder(
    reminder_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(database.get_db)
):
    """Mark a reminder completed. It will not be notified afterwards."""
    crud.mark_completed(db, reminder_id, user_id)
    return {"message": "Reminder marked as completed"}


@app.delete("/api/reminders/{reminder_id}")
def delete_reminder(
    reminder_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(database.get_db)
):
    crud.delete_reminder(db, reminder_id, user_id)
    return {"message": "Reminder deleted successfully"}


@app.post("/api/test-email")
async def send_test_email(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(database.get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    """Send a sample notification to the logged-in user through the configured channel."""
    user = await run_in_threadpool(crud.get_user, db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    notification = render_notification(
        title="Test Reminder",
        category=CategoryEnum.OTHER,
        reminder_time=datetime.now(timezone.utc),
        notes="This is a test email to verify email functionality.",
        recipient_name=user.full_name,
        dashboard_url=settings.DASHBOARD_URL,
    )
    result = await dispatcher.send(user.email, user.full_name, notification)
    if not result.delivered:
        raise HTTPException(status_code=500, detail="Failed to send test email")
    return {"message": "Test email sent successfully! Check your inbox."}


@app.get("/api/health")
def health_check():
    """Health check endpoint for monitoring"""
    return {
        "status": "OK",
        "message": "Server is running",
        "deliveryChannel": settings.DELIVERY_CHANNEL,
        "emailConfigured": settings.email_configured,
    }


def run():
    """Serve the API with uvicorn."""
    import uvicorn
    uvicorn.run(
        app,
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info"
    )


if __name__ == "__main__":
    run()
