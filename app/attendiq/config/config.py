import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """
    Settings read straight from environment variables.

    Every numeric anti-proxy and attendance policy knob lives here so it can be
    retuned per deployment without a code change.
    """
    # Database
    DATABASE_URL: str = os.environ.get("DATABASE_URL")

    # Redis: application data (attempt tracking) and rate limiter storage
    APPLICATION_REDIS_URL: str = os.environ.get("APPLICATION_REDIS_URL")
    RATE_LIMITER_REDIS_URL: str = os.environ.get("RATE_LIMITER_REDIS_URL", "memory://")

    # JWT
    SECRET_KEY: str = os.environ.get("SECRET_KEY")
    ALGORITHM: str = os.environ.get("ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", 60))

    # Notifications
    NOTIFICATION_WEBHOOK_URL: str = os.environ.get("NOTIFICATION_WEBHOOK_URL")
    NOTIFICATION_TIMEOUT_SECONDS: float = float(os.environ.get("NOTIFICATION_TIMEOUT_SECONDS", 10))

    # --- Risk scoring ---
    RISK_VALID_THRESHOLD: int = int(os.environ.get("RISK_VALID_THRESHOLD", 60))
    RECENT_HISTORY_LIMIT: int = int(os.environ.get("RECENT_HISTORY_LIMIT", 20))
    SHARED_DEVICE_WINDOW_MINUTES: int = int(os.environ.get("SHARED_DEVICE_WINDOW_MINUTES", 60))
    SESSION_SHARING_WINDOW_MINUTES: int = int(os.environ.get("SESSION_SHARING_WINDOW_MINUTES", 10))

    # --- Blocking policy ---
    CREDENTIAL_SHARING_BLOCK_SCORE: int = int(os.environ.get("CREDENTIAL_SHARING_BLOCK_SCORE", 60))
    REPEAT_ATTEMPT_THRESHOLD: int = int(os.environ.get("REPEAT_ATTEMPT_THRESHOLD", 3))
    REPEAT_ATTEMPT_MIN_SCORE: int = int(os.environ.get("REPEAT_ATTEMPT_MIN_SCORE", 50))
    MAX_SUSPICIOUS_ATTEMPTS: int = int(os.environ.get("MAX_SUSPICIOUS_ATTEMPTS", 5))

    # --- Attempt tracking ---
    ATTEMPT_HISTORY_LIMIT: int = int(os.environ.get("ATTEMPT_HISTORY_LIMIT", 10))
    ATTEMPT_TTL_SECONDS: int = int(os.environ.get("ATTEMPT_TTL_SECONDS", 86400))

    # --- Location ---
    LOCATION_POLICY: str = os.environ.get("LOCATION_POLICY", "tolerant")
    DEFAULT_LOCATION_RADIUS_METERS: float = float(os.environ.get("DEFAULT_LOCATION_RADIUS_METERS", 30))
    GPS_BASE_TOLERANCE_METERS: float = float(os.environ.get("GPS_BASE_TOLERANCE_METERS", 20))
    GPS_RADIUS_TOLERANCE_RATIO: float = float(os.environ.get("GPS_RADIUS_TOLERANCE_RATIO", 0.25))
    ANDROID_GPS_BASE_TOLERANCE_METERS: float = float(os.environ.get("ANDROID_GPS_BASE_TOLERANCE_METERS", 50))
    ANDROID_GPS_RADIUS_TOLERANCE_RATIO: float = float(os.environ.get("ANDROID_GPS_RADIUS_TOLERANCE_RATIO", 0.5))

    # --- Attendance ---
    MIN_PRESENCE_RATIO: float = float(os.environ.get("MIN_PRESENCE_RATIO", 0.8))
    OTP_LENGTH: int = int(os.environ.get("OTP_LENGTH", 6))
    OTP_MAX_GENERATION_ATTEMPTS: int = int(os.environ.get("OTP_MAX_GENERATION_ATTEMPTS", 10))

# Single importable instance
settings = Config()
