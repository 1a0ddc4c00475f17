from parley.models.base import Base, Role, now_ms
from parley.models.turn import Turn

__all__ = [
    "Base",
    "Role",
    "Turn",
    "now_ms",
]
