from .locks import KeyedLock
from .retry import compute_backoff, schedule_retry

__all__ = ["KeyedLock", "compute_backoff", "schedule_retry"]
