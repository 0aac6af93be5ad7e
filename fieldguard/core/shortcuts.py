"""
Keyboard command routing for the undo shortcut.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .schema import UndoResult
from .undo import UndoManager
from ..util.logging import logger

UNDO_KEYS = {"ctrl+z", "meta+z"}

# Focus targets where ctrl+z belongs to the text field, not the app
TEXT_INPUT_TARGETS = {"input", "textarea", "select", "contenteditable"}


@dataclass
class KeyEvent:
    key: str
    ctrl: bool = False
    meta: bool = False
    shift: bool = False
    target: Optional[str] = None  # focused element kind, e.g. "input", "body"

    @property
    def combo(self) -> str:
        modifier = "ctrl+" if self.ctrl else "meta+" if self.meta else ""
        return f"{modifier}{self.key.lower()}"


def is_text_input(target: Optional[str]) -> bool:
    return bool(target) and target.lower() in TEXT_INPUT_TARGETS


def should_handle_undo(event: KeyEvent, undo_manager: UndoManager) -> bool:
    """Undo shortcut fires only outside text inputs and while an entry is undoable."""
    if event.shift or event.combo not in UNDO_KEYS:
        return False
    if is_text_input(event.target):
        return False
    return undo_manager.can_undo


async def handle_undo_shortcut(event: KeyEvent, undo_manager: UndoManager,
                               undo: Optional[Callable[[], Awaitable[UndoResult]]] = None) -> Optional[UndoResult]:
    """
    Run the undo for a key event; None when the event is not ours to handle.

    Pass the controller's undo so open sessions pick up the restored values.
    """
    if not should_handle_undo(event, undo_manager):
        return None
    logger.debug("Keyboard shortcut: Undo")
    return await (undo or undo_manager.execute_undo)()
