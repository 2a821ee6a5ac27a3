from .loader import default_state_dir, load_settings
from .settings import AgentSettings

__all__ = ["AgentSettings", "default_state_dir", "load_settings"]
