"""
Presentation state for the tutor page: theme, modal dialogs, status line.

Kept apart from the session controller; the page reads to_dict() and the status
helpers, and the only side effect is apply_theme() on a root class set.
"""
from typing import Any, Dict, MutableSet, Optional

THEMES = ("light", "dark")
MODALS = ("about", "config")

STATUS_TEXT = {
    "idle": "Press start to begin your lesson.",
    "connecting": "Connecting...",
    "listening": "Listening... Start speaking!",
}
UNKNOWN_ERROR = "An unknown error occurred."


class PresentationState:
    def __init__(self, theme: str = "dark"):
        self.theme = theme if theme in THEMES else "dark"
        self.open_modals: set = set()

    def set_theme(self, theme: str) -> str:
        if theme not in THEMES:
            raise ValueError(f"Unknown theme {theme!r}; expected one of {THEMES}")
        self.theme = theme
        return self.theme

    def toggle_theme(self) -> str:
        return self.set_theme("light" if self.theme == "dark" else "dark")

    def open_modal(self, name: str) -> None:
        if name not in MODALS:
            raise ValueError(f"Unknown modal {name!r}")
        self.open_modals.add(name)

    def close_modal(self, name: str) -> None:
        if name not in MODALS:
            raise ValueError(f"Unknown modal {name!r}")
        self.open_modals.discard(name)

    def apply_theme(self, root_classes: MutableSet[str]) -> MutableSet[str]:
        """Add or remove the 'dark' class on the document root class set."""
        if self.theme == "dark":
            root_classes.add("dark")
        else:
            root_classes.discard("dark")
        return root_classes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "theme": self.theme,
            "modals": {name: name in self.open_modals for name in MODALS},
        }


def status_text(state: str, error: Optional[str] = None) -> str:
    """Single status line keyed by lifecycle state; errors replace the indicator."""
    if state == "error":
        return f"Error: {error or UNKNOWN_ERROR}"
    return STATUS_TEXT.get(state, STATUS_TEXT["idle"])


def is_conversation_active(state: str) -> bool:
    return state in ("connecting", "listening")


def selector_disabled(state: str) -> bool:
    """Language can't change while a session is connecting or live."""
    return is_conversation_active(state)
