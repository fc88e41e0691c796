"""Event bus and owner thread"""

from .events import EventBus
from .owner import OwnerExecutor

__all__ = ["EventBus", "OwnerExecutor"]
