from .schemas import Episode, MemorySnapshot, MemoryTier, MemoryUpdate, Message, MessageRole
from .store import JsonlMemoryStore
from .write_policy import WritePolicy

__all__ = [
    "Episode",
    "JsonlMemoryStore",
    "MemorySnapshot",
    "MemoryTier",
    "MemoryUpdate",
    "Message",
    "MessageRole",
    "WritePolicy",
]
