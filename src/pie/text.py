"""Text cleanup shared by the Atomizer and Associator.

Entry bodies come out of a rich-text editor, so they carry HTML tags and
entities (often double-encoded, e.g. ``&amp;nbsp;``).
"""

from __future__ import annotations

import re

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")
_HSPACE_RE = re.compile(r"[^\S\n]+")
_BLOCK_TAG_RE = re.compile(
    r"<\s*(?:br|/p|/div|/li|/h[1-6]|/blockquote|/tr)\b[^>]*>", re.IGNORECASE
)
_SPLIT_RE = re.compile(r"[\s.,!?;:'\"()\[\]{}\-—–…/\\]+")

_ENTITIES = {
    "&nbsp;": " ",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
    "&#x27;": "'",
    "&#x2F;": "/",
    "&#47;": "/",
    "&apos;": "'",
}
_MAX_DECODE_PASSES = 5

STOP_WORDS = frozenset(
    """
    a an and are as at be been by for from has he in is it its of on that the to
    was were will with this but they have had what said each which their time if
    up out many then them these so some her would make like into him two more very
    after words long than first call who oil sit now find down day did get come
    made may part i you me my we our ours us your yours his hers she theirs am
    being having do does doing should could might must can cannot ought shall
    about above across against along among around before behind below beneath
    beside between beyond concerning despite during except inside near off onto
    outside over past regarding round since through throughout till toward towards
    under underneath until unto upon within without
    """.split()
)


def decode_entities(text: str) -> str:
    # Loop until stable to undo double encoding such as "&amp;nbsp;"
    for _ in range(_MAX_DECODE_PASSES):
        previous = text
        for entity, char in _ENTITIES.items():
            text = text.replace(entity, char)
        text = text.replace("&amp;", "&")
        if text == previous:
            break
    return text


def strip_html(text: str | None) -> str:
    """Remove markup, decode entities, collapse whitespace."""
    if not text or not isinstance(text, str):
        return ""
    without_tags = _TAG_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", decode_entities(without_tags)).strip()


def strip_html_lines(text: str | None) -> str:
    """Like strip_html, but paragraph and line-break tags become newlines."""
    if not text or not isinstance(text, str):
        return ""
    broken = _BLOCK_TAG_RE.sub("\n", text)
    plain = decode_entities(_TAG_RE.sub(" ", broken))
    lines = (_HSPACE_RE.sub(" ", line).strip() for line in plain.splitlines())
    return "\n".join(line for line in lines if line)


def split_words(text: str) -> list[str]:
    """Split plain text on whitespace and punctuation, keeping case."""
    return [w for w in _SPLIT_RE.split(text) if w]


def tokenize(text: str | None) -> list[str]:
    """Lower-cased tokens with stop words and single characters removed."""
    plain = strip_html(text).lower()
    return [t for t in split_words(plain) if len(t) > 1 and t not in STOP_WORDS]
