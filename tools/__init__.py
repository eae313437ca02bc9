"""Tools package for negotiation helpers."""

from tools.join_link import build_join_link, parse_join_link
from tools.contract_renderer import format_progress, render_contract_markdown

__all__ = [
    "build_join_link",
    "parse_join_link",
    "format_progress",
    "render_contract_markdown",
]
