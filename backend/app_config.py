import os
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

PLATFORM_NAME = "WellnessBuddy"

# Auth Configuration
SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "fallback_secret_key_change_in_production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 30  # 30 days

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')
PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:8000").rstrip('/')

# Emergency alert delivery
ALERT_EMAIL_WEBHOOK_URL = os.environ.get("ALERT_EMAIL_WEBHOOK_URL", "").strip()
ALERT_HOOK_TIMEOUT_SECONDS = float(os.environ.get("ALERT_HOOK_TIMEOUT_SECONDS", "8.0"))
MAX_EMERGENCY_CONTACTS = 3

# Reminder agent
WELLNESS_API_URL = os.environ.get("WELLNESS_API_URL", "http://localhost:8000").rstrip('/')
WELLNESS_API_TOKEN = os.environ.get("WELLNESS_API_TOKEN", "")
WELLNESS_USER_ID = os.environ.get("WELLNESS_USER_ID", "")
WELLNESS_PROFILE_DIR = Path(
    os.environ.get("WELLNESS_PROFILE_DIR", str(Path.home() / ".wellnessbuddy"))
)
REMINDER_INTERVAL_SECONDS = int(os.environ.get("REMINDER_INTERVAL_SECONDS", "60"))
API_TIMEOUT_SECONDS = float(os.environ.get("API_TIMEOUT_SECONDS", "10.0"))

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def get_mongo_settings():
    """MONGO_URL and DB_NAME are only required once the database is touched."""
    return os.environ['MONGO_URL'], os.environ['DB_NAME']
