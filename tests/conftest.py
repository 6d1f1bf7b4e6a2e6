import pytest

from app.core.rate_limiter import RateLimiter
from app.services.chat_store import ChatStore
from app.services.job_manager import PromptQueueManager


@pytest.fixture(autouse=True)
def reset_queue_service():
    """Every test starts with empty in-memory stores."""
    PromptQueueManager._instance = None
    RateLimiter._instance = None
    ChatStore._instance = None
    yield
    PromptQueueManager._instance = None
    RateLimiter._instance = None
    ChatStore._instance = None
