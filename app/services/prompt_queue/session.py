"""Per-conversation state shared by the engine, the poller and the trigger."""
from dataclasses import dataclass
from typing import Optional


@dataclass
class EngineSession:
    chat_id: Optional[str]
    model: str
    is_authenticated: bool = False
    system_prompt: Optional[str] = None
    enable_search: bool = False
    user_id: Optional[str] = None
    # Bumped on every reset; late results from an older generation are dropped.
    generation: int = 0

    def reset(self, chat_id: Optional[str]) -> int:
        self.chat_id = chat_id
        self.generation += 1
        return self.generation
