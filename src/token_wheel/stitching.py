"""Token stitching: combining a text prefix with generated tokens.

The provider's tokens already encode their own whitespace (``" mat"`` carries
its leading space, ``"ing"`` continues the previous word), so stitching is
plain concatenation. The same rule is used on every path: stepping,
divergence confirmation and undo replay. Replaying ``stitch_all`` therefore
reproduces exactly the text the incremental ``stitch`` calls built.
"""

from __future__ import annotations

from collections.abc import Iterable
from functools import reduce

_WHITESPACE_GLYPH = "␣"  # open box, shown for whitespace-only tokens
_SPECIAL_GLYPHS: dict[str, str] = {
    "\n": "↵",
    "\t": "→",
    " ": _WHITESPACE_GLYPH,
}


def stitch(prefix: str, token: str) -> str:
    """Append *token* to *prefix*."""
    return prefix + token


def stitch_all(prefix: str, tokens: Iterable[str]) -> str:
    """Left fold of :func:`stitch` over *tokens*, starting from *prefix*.

    ``stitch_all(stitch_all(p, ts[:k]), ts[k:]) == stitch_all(p, ts)`` for
    every split point ``k``.
    """
    return reduce(stitch, tokens, prefix)


def format_token_for_display(token: str) -> str:
    """Return a compact, visible label for *token*.

    Newlines, tabs and bare spaces map to glyphs; other tokens are stripped
    of surrounding whitespace, and whitespace-only tokens show as a space glyph.
    """
    if token in _SPECIAL_GLYPHS:
        return _SPECIAL_GLYPHS[token]
    trimmed = token.strip()
    if not trimmed:
        return _WHITESPACE_GLYPH
    return trimmed
