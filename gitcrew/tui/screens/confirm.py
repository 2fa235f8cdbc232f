"""Yes/no modal used before destructive task and workspace operations.

Returns True if confirmed, False if cancelled.
"""
from __future__ import annotations

from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Label, Static


class ConfirmScreen(ModalScreen[bool]):
    """Ask ``question``; ``y`` confirms, ``n`` or Esc cancels."""

    BINDINGS = [
        ("escape", "cancel", "Cancel"),
        ("n", "cancel", "Cancel"),
        ("y", "confirm", "Confirm"),
    ]

    DEFAULT_CSS = """
    ConfirmScreen {
        align: center middle;
    }
    ConfirmScreen > Vertical {
        width: 60;
        height: auto;
        background: $surface;
        border: thick $warning;
        padding: 1 2;
    }
    ConfirmScreen #confirm-question {
        text-style: bold;
        width: 100%;
    }
    ConfirmScreen #confirm-detail {
        color: $text-muted;
        margin-top: 1;
    }
    ConfirmScreen .modal-actions {
        height: 3;
        margin-top: 1;
        align: center middle;
    }
    ConfirmScreen .modal-actions Button {
        margin: 0 1;
        min-width: 14;
    }
    """

    def __init__(self, question: str, detail: str = "", **kwargs) -> None:
        super().__init__(**kwargs)
        self.question = question
        self.detail = detail

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Label(self.question, id="confirm-question")
            if self.detail:
                yield Static(self.detail, id="confirm-detail", markup=False)
            with Horizontal(classes="modal-actions"):
                yield Button("[y] Yes", id="confirm-yes", variant="error")
                yield Button("[n] No", id="confirm-no")

    def on_mount(self) -> None:
        self.query_one("#confirm-no", Button).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        self.dismiss(event.button.id == "confirm-yes")

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)
