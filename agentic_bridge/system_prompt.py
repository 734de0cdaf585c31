"""System instruction builder.

The instruction is a pure function of the file listing: the same snapshot
always renders to the same bytes, and every provider adapter receives the
identical string.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Iterable, Mapping

from jinja2 import Environment, FileSystemLoader, StrictUndefined, Template


PROMPTS_ROOT = Path(__file__).resolve().parent / "prompts"
TEMPLATE_NAME = "system_instruction.md.j2"
EMPTY_FILE_SYSTEM_PLACEHOLDER = "No files exist yet."


@lru_cache(maxsize=1)
def _template() -> Template:
    env = Environment(
        loader=FileSystemLoader(str(PROMPTS_ROOT)),
        autoescape=False,
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=False,
    )
    return env.get_template(TEMPLATE_NAME)


def render_file_listing(paths: Iterable[str]) -> str:
    """Sorted, newline-separated paths, or the placeholder when there are none."""
    ordered = sorted(set(paths))
    if not ordered:
        return EMPTY_FILE_SYSTEM_PLACEHOLDER
    return "\n".join(ordered)


def build_system_instruction(file_system: Mapping[str, str]) -> str:
    """Render the system instruction for the given snapshot."""
    return _template().render(file_listing=render_file_listing(file_system.keys()))


__all__ = [
    "EMPTY_FILE_SYSTEM_PLACEHOLDER",
    "build_system_instruction",
    "render_file_listing",
]
