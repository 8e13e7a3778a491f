from .models import QALog
from .session import init_db, close_db

__all__ = ["QALog", "init_db", "close_db"]
