"""Option list modal: the task action menu, agent picker and status menu.

Options are buttons grouped under section headings. Returns the chosen
option's value, or None if cancelled.
"""
from __future__ import annotations

from typing import Any

from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Static

from gitcrew.tui.runtime import Option


class MenuScreen(ModalScreen[Any]):
    """Pick one of ``options``; arrow keys move between them."""

    BINDINGS = [
        ("escape", "cancel", "Cancel"),
        ("q", "cancel", "Cancel"),
    ]

    DEFAULT_CSS = """
    MenuScreen {
        align: center middle;
    }
    MenuScreen > Vertical {
        width: 56;
        height: auto;
        max-height: 32;
        background: $surface;
        border: thick $accent;
        padding: 1 2;
    }
    MenuScreen .menu-title {
        text-align: center;
        text-style: bold;
        color: $accent;
        width: 100%;
        margin-bottom: 1;
    }
    MenuScreen .menu-list {
        height: auto;
        max-height: 22;
    }
    MenuScreen .menu-section {
        margin: 1 0 0 0;
        text-style: bold;
        color: $text-muted;
    }
    MenuScreen .menu-btn {
        width: 100%;
        height: 3;
        margin: 0;
    }
    MenuScreen .menu-btn:focus {
        border: tall $accent;
    }
    MenuScreen .modal-actions {
        height: 3;
        align: center middle;
    }
    """

    def __init__(self, title: str, options: list[Option], **kwargs) -> None:
        super().__init__(**kwargs)
        self.title_text = title
        self.options = options

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Static(self.title_text, classes="menu-title", markup=False)
            with VerticalScroll(classes="menu-list"):
                section = ""
                for index, option in enumerate(self.options):
                    if option.section and option.section != section:
                        yield Static(option.section, classes="menu-section", markup=False)
                    section = option.section
                    label = option.label + (f"  ({option.hint})" if option.hint else "")
                    yield Button(
                        label,
                        id=f"option-{index}",
                        classes="menu-btn",
                        variant=option.variant,
                    )
            with Horizontal(classes="modal-actions"):
                yield Button("[Esc] Cancel", id="menu-cancel")

    def on_mount(self) -> None:
        if self.options:
            self.query_one("#option-0", Button).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        button_id = event.button.id or ""
        if not button_id.startswith("option-"):
            self.dismiss(None)
            return
        self.dismiss(self.options[int(button_id.removeprefix("option-"))].value)

    def key_up(self) -> None:
        self.focus_previous(".menu-btn")

    def key_down(self) -> None:
        self.focus_next(".menu-btn")

    def action_cancel(self) -> None:
        self.dismiss(None)
