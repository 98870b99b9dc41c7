"""Runtime configuration for the app (read from the environment, overridable in tests)."""
import os
from typing import NamedTuple

from dotenv import load_dotenv

load_dotenv()


class Settings(NamedTuple):
    database_url: str
    razorpay_key_id: str
    razorpay_key_secret: str
    razorpay_webhook_secret: str
    razorpay_api_url: str
    gemini_api_key: str
    gemini_image_model: str
    encryption_key: str
    signup_credits: int
    log_level: str


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./mannequin.db"),
        razorpay_key_id=os.getenv("RAZORPAY_KEY_ID", ""),
        razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET", ""),
        razorpay_webhook_secret=os.getenv("RAZORPAY_WEBHOOK_SECRET", ""),
        razorpay_api_url=os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1"),
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_image_model=os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image"),
        encryption_key=os.getenv("ENCRYPTION_KEY", "default-secret-key-change-in-production"),
        signup_credits=int(os.getenv("SIGNUP_CREDITS", "3")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


state = load_settings()


def get_settings() -> Settings:
    return state


def override(**changes) -> Settings:
    """Replace individual settings at runtime and return the new state."""
    global state
    state = state._replace(**changes)
    return state


def reset():
    global state
    state = load_settings()
