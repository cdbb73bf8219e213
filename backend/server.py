from fastapi import FastAPI, APIRouter, HTTPException, Depends, UploadFile, File, Form, Request, Response
from fastapi.responses import StreamingResponse
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorGridFSBucket
from pymongo import ReturnDocument
import logging
from pathlib import Path
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
import uuid
from datetime import datetime, timezone, timedelta
import io
from passlib.context import CryptContext
from jose import JWTError, jwt

from app_config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ALERT_EMAIL_WEBHOOK_URL,
    ALERT_HOOK_TIMEOUT_SECONDS,
    ALGORITHM,
    CORS_ORIGINS,
    LOG_FORMAT,
    PUBLIC_BASE_URL,
    SECRET_KEY,
    get_mongo_settings,
)
from care_models import NotificationType
from emergency_alerts import (
    ContactValidationError,
    EmergencyAlertDispatcher,
    TRIGGER_ABNORMAL_REPORT,
    TRIGGER_CONTACTS_REGISTERED,
    TRIGGER_REPORT_SHARED,
    alert_if_abnormal,
    build_alert_message,
    is_abnormal_report,
    validate_contact_emails,
)
from reminder_engine import is_valid_hhmm, normalize_hhmm

# Password hashing configuration
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# MongoDB connection (lazy, so helpers and tests can import without MONGO_URL)
mongo_client = None
db = None
fs_bucket = None

def get_db():
    global mongo_client, db, fs_bucket
    if db is None:
        mongo_url, db_name = get_mongo_settings()
        mongo_client = AsyncIOMotorClient(mongo_url)
        db = mongo_client[db_name]
        # GridFS for health report files
        fs_bucket = AsyncIOMotorGridFSBucket(db)
    return db

def get_fs_bucket():
    get_db()
    return fs_bucket

alert_dispatcher = EmergencyAlertDispatcher(
    webhook_url=ALERT_EMAIL_WEBHOOK_URL,
    timeout=ALERT_HOOK_TIMEOUT_SECONDS
)

# Create the main app without a prefix
app = FastAPI()

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT
)
logger = logging.getLogger(__name__)

# ==================== HELPERS ====================

def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password):
    return pwd_context.hash(password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt

def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

async def next_id(sequence: str) -> int:
    """Serial integer ids, one counter document per collection."""
    counter = await get_db().counters.find_one_and_update(
        {"_id": sequence},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER
    )
    return int(counter["seq"])

def clean_time_or_400(value: str) -> str:
    normalized = normalize_hhmm(value)
    if not is_valid_hhmm(normalized):
        raise HTTPException(status_code=400, detail=f"Invalid time '{value}', expected HH:MM")
    return normalized

def public_user(user_doc: dict) -> dict:
    doc = dict(user_doc)
    doc.pop("_id", None)
    doc.pop("hashed_password", None)
    return doc

async def create_durable_notification(
    user_id: int,
    title: str,
    message: str,
    notification_type: str = "other"
) -> dict:
    doc = {
        "id": await next_id("notifications"),
        "user_id": user_id,
        "title": title,
        "message": message,
        "type": notification_type,
        "read": False,
        "created_at": now_iso()
    }
    await get_db().notifications.insert_one(doc)
    doc.pop("_id", None)
    return doc

async def load_emergency_contacts(user_id: int) -> List[dict]:
    return await get_db().emergency_contacts.find(
        {"user_id": user_id},
        {"_id": 0}
    ).sort("id", 1).to_list(20)

async def log_alert_dispatch(user_doc: dict, trigger: str, contacts: List[dict], results: List[dict]):
    await get_db().alert_notification_logs.insert_one({
        "id": f"notify_{uuid.uuid4().hex[:12]}",
        "user_id": user_doc["id"],
        "event_type": trigger,
        "recipients": [c.get("email") for c in contacts],
        "results": results,
        "created_at": now_iso()
    })

async def notify_emergency_contacts(
    user_doc: dict,
    trigger: str,
    subject: Optional[str] = None,
    html: Optional[str] = None
) -> List[dict]:
    """Best-effort fan-out to the user's contacts. Never raises into the caller."""
    try:
        contacts = await load_emergency_contacts(user_doc["id"])
        results = await alert_dispatcher.dispatch(user_doc, contacts, trigger, subject, html)
        await log_alert_dispatch(user_doc, trigger, contacts, results)
        return results
    except Exception as e:
        logger.error(f"Emergency contact notification ({trigger}) failed for user {user_doc.get('id')}: {e}")
        return []

async def alert_contacts_if_abnormal(user_doc: dict, report: dict) -> Optional[List[dict]]:
    """None for a normal report; otherwise the per-contact delivery results."""
    try:
        contacts = await load_emergency_contacts(user_doc["id"])
        results = await alert_if_abnormal(alert_dispatcher, user_doc, report, contacts)
        if results is not None:
            await log_alert_dispatch(user_doc, TRIGGER_ABNORMAL_REPORT, contacts, results)
        return results
    except Exception as e:
        logger.error(f"Abnormal report alert failed for user {user_doc.get('id')}: {e}")
        return [] if is_abnormal_report(report) else None

def health_alert_message(file_name: str, blood_pressure: Optional[str], results: List[dict]) -> str:
    reading = f"Your report {file_name} showed blood pressure {blood_pressure}."
    if not results:
        return f"{reading} No emergency contacts are registered, so nobody was notified."
    delivered = sum(1 for r in results if r.get("sent"))
    if delivered == len(results):
        return f"{reading} Your emergency contacts have been notified."
    return f"{reading} {delivered} of {len(results)} emergency contact(s) could be notified."

# ==================== MODELS ====================

class User(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: int
    username: str
    first_name: str
    last_name: str
    email: str
    age: Optional[int] = None
    phone: Optional[str] = None
    sms_opt_in: bool = False
    is_premium: bool = False
    has_added_emergency_contacts: bool = False
    created_at: Optional[datetime] = None

class UserCreate(BaseModel):
    username: str
    password: str
    first_name: str
    last_name: str
    email: str
    age: Optional[int] = None
    phone: Optional[str] = None
    sms_opt_in: bool = False

class UserLogin(BaseModel):
    email: str
    password: str

class UserUpdate(BaseModel):
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    age: Optional[int] = None
    phone: Optional[str] = None
    sms_opt_in: Optional[bool] = None

class PasswordChange(BaseModel):
    current_password: str
    new_password: str

class SmsSettings(BaseModel):
    phone: Optional[str] = None
    sms_opt_in: Optional[bool] = None

class ScheduleCreate(BaseModel):
    title: str
    time: str
    duration: int = Field(ge=0)
    category: str
    completed: bool = False
    sms_enabled: bool = True

class ScheduleUpdate(BaseModel):
    title: Optional[str] = None
    time: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = None
    completed: Optional[bool] = None
    sms_enabled: Optional[bool] = None

class MedicineCreate(BaseModel):
    name: str
    dosage: str
    frequency: str
    time: str
    stock_level: int = 30
    sms_enabled: bool = True

class MedicineUpdate(BaseModel):
    name: Optional[str] = None
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    time: Optional[str] = None
    stock_level: Optional[int] = None
    sms_enabled: Optional[bool] = None

class NotificationCreate(BaseModel):
    title: str
    message: str
    type: NotificationType = "other"

class EmergencyContactsRequest(BaseModel):
    emails: List[str] = []

class PremiumUpgradeRequest(BaseModel):
    payment_method: Optional[str] = None

# ==================== AUTHENTICATION ====================

async def get_current_user(request: Request) -> User:
    """Get current user from JWT token in cookie or Authorization header"""
    token = request.cookies.get("access_token")

    # Fallback to Authorization header
    if not token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ")[1]

    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        email: str = payload.get("sub")
        if email is None:
            raise HTTPException(status_code=401, detail="Invalid authentication token")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid authentication token")

    user_doc = await get_db().users.find_one(
        {"email": email},
        {"_id": 0}
    )

    if not user_doc:
        raise HTTPException(status_code=401, detail="User not found")

    return User(**user_doc)

def require_same_user(current_user: User, user_id: int):
    if current_user.id != user_id:
        raise HTTPException(status_code=403, detail="Access denied for this user")

async def get_user_doc(user_id: int) -> dict:
    user_doc = await get_db().users.find_one({"id": user_id}, {"_id": 0})
    if not user_doc:
        raise HTTPException(status_code=404, detail="User not found")
    return user_doc

# ==================== AUTH ROUTES ====================

@api_router.post("/auth/register", status_code=201)
async def register(user_data: UserCreate):
    """Register a new user"""
    existing_user = await get_db().users.find_one({"email": user_data.email})
    if existing_user:
        raise HTTPException(status_code=400, detail="User already exists")

    new_user = {
        "id": await next_id("users"),
        **user_data.model_dump(exclude={"password"}),
        "hashed_password": get_password_hash(user_data.password),
        "is_premium": False,
        "has_added_emergency_contacts": False,
        "created_at": now_iso()
    }
    await get_db().users.insert_one(new_user)
    return {"message": "User registered successfully", "user": public_user(new_user)}

@api_router.post("/auth/login")
async def login(response: Response, form_data: UserLogin):
    """Login user and set JWT cookie"""
    user_doc = await get_db().users.find_one({"email": form_data.email}, {"_id": 0})
    if not user_doc or not verify_password(form_data.password, user_doc["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    access_token_expires = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(
        data={"sub": user_doc["email"], "user_id": user_doc["id"]},
        expires_delta=access_token_expires
    )

    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=True,
        samesite="none",
        path="/",
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60
    )

    return {"message": "Login successful", "access_token": access_token, "user": public_user(user_doc)}

@api_router.get("/auth/me")
async def get_me(current_user: User = Depends(get_current_user)):
    """Get current user info"""
    return current_user.model_dump()

@api_router.post("/auth/logout")
async def logout(response: Response):
    """Logout user"""
    response.delete_cookie(key="access_token", path="/")
    return {"message": "Logged out"}

@api_router.post("/auth/change-password")
async def change_password(
    payload: PasswordChange,
    current_user: User = Depends(get_current_user)
):
    user_doc = await get_user_doc(current_user.id)
    if not verify_password(payload.current_password, user_doc["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid current password.")
    await get_db().users.update_one(
        {"id": current_user.id},
        {"$set": {"hashed_password": get_password_hash(payload.new_password)}}
    )
    return {"message": "Password updated successfully."}

# ==================== USERS ====================

@api_router.get("/users/{user_id}", response_model=dict)
async def get_user(user_id: int, current_user: User = Depends(get_current_user)):
    require_same_user(current_user, user_id)
    return public_user(await get_user_doc(user_id))

@api_router.patch("/users/{user_id}", response_model=dict)
async def update_user(
    user_id: int,
    updates: UserUpdate,
    current_user: User = Depends(get_current_user)
):
    require_same_user(current_user, user_id)
    update_data = {k: v for k, v in updates.model_dump().items() if v is not None}
    if update_data:
        await get_db().users.update_one({"id": user_id}, {"$set": update_data})
    return public_user(await get_user_doc(user_id))

@api_router.get("/users/{user_id}/sms-settings", response_model=dict)
async def get_sms_settings(user_id: int, current_user: User = Depends(get_current_user)):
    require_same_user(current_user, user_id)
    user_doc = await get_user_doc(user_id)
    return {"phone": user_doc.get("phone"), "sms_opt_in": user_doc.get("sms_opt_in", False)}

@api_router.patch("/users/{user_id}/sms-settings", response_model=dict)
async def update_sms_settings(
    user_id: int,
    settings: SmsSettings,
    current_user: User = Depends(get_current_user)
):
    require_same_user(current_user, user_id)
    update_data = {k: v for k, v in settings.model_dump().items() if v is not None}
    if update_data:
        await get_db().users.update_one({"id": user_id}, {"$set": update_data})
    user_doc = await get_user_doc(user_id)
    return {"phone": user_doc.get("phone"), "sms_opt_in": user_doc.get("sms_opt_in", False)}

# ==================== SCHEDULES ====================

@api_router.get("/schedules/{user_id}", response_model=List[dict])
async def get_schedules(user_id: int, current_user: User = Depends(get_current_user)):
    require_same_user(current_user, user_id)
    schedules = await get_db().schedules.find(
        {"user_id": user_id},
        {"_id": 0}
    ).sort("time", 1).to_list(500)
    return schedules

@api_router.post("/schedules", response_model=dict, status_code=201)
async def create_schedule(
    schedule: ScheduleCreate,
    current_user: User = Depends(get_current_user)
):
    doc = {
        "id": await next_id("schedules"),
        "user_id": current_user.id,
        **schedule.model_dump(),
        "time": clean_time_or_400(schedule.time),
        "created_at": now_iso()
    }
    await get_db().schedules.insert_one(doc)
    doc.pop("_id", None)
    return doc

@api_router.patch("/schedules/{schedule_id}", response_model=dict)
async def update_schedule(
    schedule_id: int,
    schedule: ScheduleUpdate,
    current_user: User = Depends(get_current_user)
):
    update_data = {k: v for k, v in schedule.model_dump().items() if v is not None}
    if "time" in update_data:
        update_data["time"] = clean_time_or_400(update_data["time"])
    updated = await get_db().schedules.find_one_and_update(
        {"id": schedule_id, "user_id": current_user.id},
        {"$set": update_data},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return updated

@api_router.delete("/schedules/{schedule_id}", status_code=204)
async def delete_schedule(schedule_id: int, current_user: User = Depends(get_current_user)):
    result = await get_db().schedules.delete_one({"id": schedule_id, "user_id": current_user.id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return Response(status_code=204)

# ==================== MEDICINES ====================

@api_router.get("/medicines/{user_id}", response_model=List[dict])
async def get_medicines(user_id: int, current_user: User = Depends(get_current_user)):
    require_same_user(current_user, user_id)
    medicines = await get_db().medicines.find(
        {"user_id": user_id},
        {"_id": 0}
    ).sort("time", 1).to_list(500)
    return medicines

@api_router.post("/medicines", response_model=dict, status_code=201)
async def create_medicine(
    medicine: MedicineCreate,
    current_user: User = Depends(get_current_user)
):
    doc = {
        "id": await next_id("medicines"),
        "user_id": current_user.id,
        **medicine.model_dump(),
        "time": clean_time_or_400(medicine.time),
        "created_at": now_iso()
    }
    await get_db().medicines.insert_one(doc)
    doc.pop("_id", None)
    return doc

@api_router.patch("/medicines/{medicine_id}", response_model=dict)
async def update_medicine(
    medicine_id: int,
    medicine: MedicineUpdate,
    current_user: User = Depends(get_current_user)
):
    update_data = {k: v for k, v in medicine.model_dump().items() if v is not None}
    if "time" in update_data:
        update_data["time"] = clean_time_or_400(update_data["time"])
    updated = await get_db().medicines.find_one_and_update(
        {"id": medicine_id, "user_id": current_user.id},
        {"$set": update_data},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Medicine not found")
    return updated

@api_router.delete("/medicines/{medicine_id}", status_code=204)
async def delete_medicine(medicine_id: int, current_user: User = Depends(get_current_user)):
    result = await get_db().medicines.delete_one({"id": medicine_id, "user_id": current_user.id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Medicine not found")
    return Response(status_code=204)

# ==================== HEALTH REPORTS (MongoDB GridFS) ====================

async def get_owned_report(report_id: int, current_user: User) -> dict:
    report = await get_db().health_reports.find_one(
        {"id": report_id, "user_id": current_user.id},
        {"_id": 0}
    )
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    return report

@api_router.get("/health-reports/{user_id}", response_model=List[dict])
async def get_health_reports(user_id: int, current_user: User = Depends(get_current_user)):
    require_same_user(current_user, user_id)
    reports = await get_db().health_reports.find(
        {"user_id": user_id},
        {"_id": 0}
    ).sort("upload_date", -1).to_list(200)
    return reports

@api_router.post("/health-reports", response_model=dict, status_code=201)
async def upload_health_report(
    report: UploadFile = File(...),
    blood_pressure: Optional[str] = Form(None),
    blood_sugar: Optional[str] = Form(None),
    heart_rate: Optional[str] = Form(None),
    current_user: User = Depends(get_current_user)
):
    """Store a health report in GridFS and alert emergency contacts on abnormal vitals"""
    content = await report.read()
    if not content:
        raise HTTPException(status_code=400, detail="No file uploaded.")

    ext = Path(report.filename).suffix if report.filename else ".pdf"
    stored_filename = f"report_{current_user.id}_{uuid.uuid4().hex[:8]}{ext}"
    content_type = report.content_type or 'application/octet-stream'

    await get_fs_bucket().upload_from_stream(
        stored_filename,
        io.BytesIO(content),
        metadata={
            "user_id": current_user.id,
            "content_type": content_type,
            "original_filename": report.filename,
            "uploaded_at": now_iso()
        }
    )

    doc = {
        "id": await next_id("health_reports"),
        "user_id": current_user.id,
        "file_name": report.filename or stored_filename,
        "stored_filename": stored_filename,
        "upload_date": now_iso(),
        "blood_pressure": blood_pressure,
        "blood_sugar": blood_sugar,
        "heart_rate": heart_rate
    }
    await get_db().health_reports.insert_one(doc)
    doc.pop("_id", None)

    # Runs once, at upload; delivery problems never undo the upload.
    user_doc = await get_user_doc(current_user.id)
    results = await alert_contacts_if_abnormal(user_doc, doc)
    doc["abnormal"] = results is not None
    if doc["abnormal"]:
        doc["alert_results"] = results
        try:
            await create_durable_notification(
                current_user.id,
                "Health alert sent" if results else "Abnormal health report",
                health_alert_message(doc["file_name"], blood_pressure, results),
                "other"
            )
        except Exception as e:
            logger.error(f"Could not record health alert notification for user {current_user.id}: {e}")

    return doc

@api_router.get("/reports/{report_id}/view")
async def view_health_report(report_id: int, current_user: User = Depends(get_current_user)):
    """Stream a stored health report from GridFS"""
    report = await get_owned_report(report_id, current_user)
    filename = report.get("stored_filename")
    try:
        grid_out = await get_fs_bucket().open_download_stream_by_name(filename)
        content = await grid_out.read()
        content_type = grid_out.metadata.get('content_type', 'application/octet-stream') if grid_out.metadata else 'application/octet-stream'
        return StreamingResponse(
            io.BytesIO(content),
            media_type=content_type,
            headers={"Content-Disposition": f"inline; filename={report.get('file_name')}"}
        )
    except Exception as e:
        logger.error(f"Error retrieving report file {filename}: {e}")
        raise HTTPException(status_code=404, detail="File not found on server")

@api_router.delete("/reports/{report_id}", status_code=204)
async def delete_health_report(report_id: int, current_user: User = Depends(get_current_user)):
    report = await get_owned_report(report_id, current_user)
    await get_db().health_reports.delete_one({"id": report_id, "user_id": current_user.id})
    try:
        grid_out = await get_fs_bucket().open_download_stream_by_name(report.get("stored_filename"))
        await get_fs_bucket().delete(grid_out._id)
    except Exception as e:
        logger.error(f"Could not remove stored file for report {report_id}: {e}")
    return Response(status_code=204)

@api_router.post("/health-reports/{report_id}/send-to-contacts", response_model=dict)
async def send_report_to_contacts(report_id: int, current_user: User = Depends(get_current_user)):
    report = await get_owned_report(report_id, current_user)
    user_doc = await get_user_doc(current_user.id)
    download_link = f"{PUBLIC_BASE_URL}/api/reports/{report_id}/view"
    subject, html = build_alert_message(
        TRIGGER_REPORT_SHARED, user_doc, report=report, download_link=download_link
    )
    results = await notify_emergency_contacts(user_doc, TRIGGER_REPORT_SHARED, subject, html)
    return {"message": "Report sent to emergency contacts.", "results": results}

# ==================== NOTIFICATIONS ====================

@api_router.get("/notifications/{user_id}", response_model=List[dict])
async def get_notifications(user_id: int, current_user: User = Depends(get_current_user)):
    """Durable notifications only, newest first; reminders are merged on the device"""
    require_same_user(current_user, user_id)
    notifications = await get_db().notifications.find(
        {"user_id": user_id},
        {"_id": 0}
    ).sort([("created_at", -1), ("id", -1)]).to_list(1000)
    return notifications

@api_router.post("/notifications", response_model=dict, status_code=201)
async def create_notification(
    notification: NotificationCreate,
    current_user: User = Depends(get_current_user)
):
    return await create_durable_notification(
        current_user.id,
        notification.title,
        notification.message,
        notification.type
    )

@api_router.patch("/notifications/{notification_id}/read", status_code=204)
async def mark_notification_read(notification_id: int, current_user: User = Depends(get_current_user)):
    result = await get_db().notifications.update_one(
        {"id": notification_id, "user_id": current_user.id},
        {"$set": {"read": True}}
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Notification not found")
    return Response(status_code=204)

@api_router.patch("/notifications/{user_id}/read-all", status_code=204)
async def mark_all_notifications_read(user_id: int, current_user: User = Depends(get_current_user)):
    require_same_user(current_user, user_id)
    result = await get_db().notifications.update_many(
        {"user_id": user_id},
        {"$set": {"read": True}}
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Could not update notifications")
    return Response(status_code=204)

# ==================== EMERGENCY CONTACTS ====================

async def replace_emergency_contacts(user_id: int, emails: List[str]) -> List[dict]:
    await get_db().emergency_contacts.delete_many({"user_id": user_id})
    docs = []
    for email in emails:
        docs.append({
            "id": await next_id("emergency_contacts"),
            "user_id": user_id,
            "email": email,
            "name": "Family Member",
            "relationship": "Family",
            "created_at": now_iso()
        })
    if docs:
        await get_db().emergency_contacts.insert_many(docs)
    for doc in docs:
        doc.pop("_id", None)
    await get_db().users.update_one(
        {"id": user_id},
        {"$set": {"has_added_emergency_contacts": True}}
    )
    return docs

@api_router.get("/user/emergency-contacts", response_model=dict)
async def get_emergency_contacts(current_user: User = Depends(get_current_user)):
    contacts = await get_db().emergency_contacts.find(
        {"user_id": current_user.id},
        {"_id": 0}
    ).sort("id", 1).to_list(20)
    return {"contacts": contacts}

@api_router.post("/user/emergency-contacts", response_model=dict)
async def save_emergency_contacts(
    payload: EmergencyContactsRequest,
    current_user: User = Depends(get_current_user)
):
    """Replace the contact set and send every contact a welcome notice"""
    try:
        emails = validate_contact_emails(payload.emails)
    except ContactValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    user_doc = await get_user_doc(current_user.id)
    contacts = await replace_emergency_contacts(current_user.id, emails)

    results = await notify_emergency_contacts(user_doc, TRIGGER_CONTACTS_REGISTERED)
    try:
        await create_durable_notification(
            current_user.id,
            "Emergency contacts notified",
            f"We let {len(contacts)} emergency contact(s) know they were added.",
            "other"
        )
    except Exception as e:
        logger.error(f"Could not record contacts notification for user {current_user.id}: {e}")

    return {
        "message": "Emergency contacts saved successfully",
        "contacts_count": len(contacts),
        "contacts": contacts,
        "results": results
    }

@api_router.patch("/user/emergency-contacts", response_model=dict)
async def update_emergency_contacts(
    payload: EmergencyContactsRequest,
    current_user: User = Depends(get_current_user)
):
    try:
        emails = validate_contact_emails(payload.emails)
    except ContactValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    contacts = await replace_emergency_contacts(current_user.id, emails)
    return {"message": "Emergency contacts updated successfully", "contacts": contacts}

# ==================== PREMIUM ====================

@api_router.post("/premium/upgrade", response_model=dict)
async def upgrade_to_premium(
    payload: PremiumUpgradeRequest,
    current_user: User = Depends(get_current_user)
):
    """Flip the premium flag; payment itself happens with the provider, not here"""
    await get_db().users.update_one(
        {"id": current_user.id},
        {"$set": {"is_premium": True, "premium_since": now_iso(), "payment_method": payload.payment_method}}
    )
    return {"success": True, "message": "Premium upgrade successful"}

# ==================== ROOT ====================

@api_router.get("/")
async def root():
    return {"message": "WellnessBuddy API"}

# Include the router in the main app
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("shutdown")
async def shutdown_db_client():
    if mongo_client is not None:
        mongo_client.close()
