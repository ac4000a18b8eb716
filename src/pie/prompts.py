"""Conversation prompts for a chapter.

Suggests a few reflective questions from what the chapter's entries are
about and how the most recent one felt.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping

from pie.models import Chapter, Emotion, EnrichedEntry

MAX_PROMPTS = 4
BUSY_CHAPTER_ENTRIES = 10

EMOTION_PROMPTS: dict[Emotion, str] = {
    Emotion.EXCITED: "You seemed really happy recently. What was the best part of that moment?",
    Emotion.HAPPY: "You seemed really happy recently. What was the best part of that moment?",
    Emotion.SAD: (
        "It looks like things might have been tough recently. "
        "Is there anything you'd like to talk about?"
    ),
    Emotion.ANGRY: (
        "It looks like things might have been tough recently. "
        "Is there anything you'd like to talk about?"
    ),
    Emotion.CALM: "You've been feeling calm lately. What's helping you find that peace?",
    Emotion.TIRED: "I noticed you've been feeling tired. How are you taking care of yourself?",
}

GENERIC_PROMPTS = [
    "What's something you've been thinking about lately?",
    "Is there anything you're looking forward to?",
    "What's on your mind today?",
]


def top_shared_topic(chapter: Chapter, all_enriched: Mapping[str, EnrichedEntry]) -> str | None:
    """Most frequent theme among the chapter members' theme chapters, title-cased."""
    counts: Counter[str] = Counter()
    for entry_id in chapter.entry_ids:
        entry = all_enriched.get(entry_id)
        if entry is None:
            continue
        for grouping_id in entry.grouping_ids:
            if grouping_id.startswith("theme-"):
                name = grouping_id.removeprefix("theme-")
                counts[name[:1].upper() + name[1:]] += 1
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def generate_prompts(chapter: Chapter, all_enriched: Mapping[str, EnrichedEntry]) -> list[str]:
    prompts: list[str] = []

    def add(prompt: str) -> None:
        if prompt not in prompts:
            prompts.append(prompt)

    topic = top_shared_topic(chapter, all_enriched)
    if topic:
        add(f'I\'ve noticed we talk a lot about "{topic}". How are things on that front?')

    # entry_ids is most-recent-first
    latest = all_enriched.get(chapter.entry_ids[0]) if chapter.entry_ids else None
    if latest is not None:
        add(EMOTION_PROMPTS[latest.primary_emotion])

    count = len(chapter.entry_ids)
    if count > BUSY_CHAPTER_ENTRIES:
        add("We've shared quite a bit together. What's been on your mind most lately?")
    elif count > 0:
        add("I'm here to listen. What would you like to share today?")

    for prompt in GENERIC_PROMPTS:
        add(prompt)
    return prompts[:MAX_PROMPTS]
