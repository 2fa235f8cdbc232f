"""Display-width aware line wrapping.

Widths are terminal cells as computed by rich, so wide (CJK) characters
count as two. Runs of ASCII word characters are kept together when they
fit on a line of their own; any other text may break between characters.
"""
from __future__ import annotations

from rich.cells import cell_len, get_character_cell_size


def is_ascii_word_char(char: str) -> bool:
    return ("a" <= char <= "z") or ("A" <= char <= "Z") or ("0" <= char <= "9") or char in "_-"


def wrap_text(text: str, width: int) -> str:
    """Wrap ``text`` at ``width`` cells, keeping existing newlines as hard breaks."""
    if width <= 0:
        return text
    return "\n".join(wrap_paragraph(paragraph, width) for paragraph in text.split("\n"))


def wrap_paragraph(text: str, width: int) -> str:
    """Wrap a single line of text (no newlines) at ``width`` cells."""
    if cell_len(text) <= width:
        return text

    out: list[str] = []
    line_width = 0
    for i, char in enumerate(text):
        char_width = get_character_cell_size(char)

        if line_width + char_width > width and line_width > 0:
            out.append("\n")
            line_width = 0

        # Start of (or inside) an ASCII word: move the rest of the word down
        # if it overflows here but would fit on a fresh line.
        if is_ascii_word_char(char) and line_width > 0:
            word_width = 0
            for ahead in text[i:]:
                if not is_ascii_word_char(ahead):
                    break
                word_width += get_character_cell_size(ahead)
            if line_width + word_width > width and word_width <= width:
                out.append("\n")
                line_width = 0

        out.append(char)
        line_width += char_width

    return "".join(out)
