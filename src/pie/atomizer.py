"""Atomizer — turn one raw entry into an enrichment record.

Steps:
1. Strip markup and tokenize (lower-case, stop words and 1-char tokens removed)
2. Heuristic entity candidates (capitalized mid-sentence words)
3. Frequency-ranked keywords
4. Lexicon emotion bucket + normalized sentiment

Deterministic for identical input and never raises on malformed content:
empty or non-string bodies come back with no keywords, no entities and a
neutral/calm reading.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import replace
from datetime import datetime

from pie.models import (
    DetectedEmotion,
    Emotion,
    EnrichedEntry,
    EntityKind,
    NamedEntity,
    RawEntry,
    Sentiment,
    mood_label,
    utcnow,
)
from pie.text import split_words, strip_html, strip_html_lines, tokenize

logger = logging.getLogger(__name__)

DEFAULT_KEYWORD_LIMIT = 10

POSITIVE_WORDS: dict[str, int] = {
    "happy": 3,
    "joy": 3,
    "joyful": 3,
    "excited": 2,
    "grateful": 2,
    "gratitude": 2,
    "love": 3,
    "loved": 3,
    "proud": 2,
    "calm": 1,
    "relaxed": 1,
    "energized": 2,
    "accomplished": 2,
    "great": 2,
    "amazing": 2,
    "wonderful": 2,
    "progress": 1,
    "laugh": 2,
    "smiling": 1,
    "peaceful": 1,
}

NEGATIVE_WORDS: dict[str, int] = {
    "sad": 3,
    "angry": 3,
    "upset": 2,
    "anxious": 3,
    "anxiety": 3,
    "stressed": 3,
    "stress": 3,
    "tired": 2,
    "exhausted": 3,
    "lonely": 2,
    "frustrated": 2,
    "worry": 2,
    "worried": 2,
    "fear": 2,
    "afraid": 2,
    "overwhelmed": 3,
    "disappointed": 2,
    "confused": 1,
    "bored": 1,
    "burnt": 2,
    "burnout": 3,
    "hopeless": 3,
}

# Capitalized words that are almost never people
ENTITY_EXCLUSIONS = frozenset(
    """
    monday tuesday wednesday thursday friday saturday sunday
    january february march april may june july august september october november december
    today tomorrow yesterday tonight morning afternoon evening
    the a an and but or so then also however after before when while this that these those
    there here what why how where who it its my our their his her we you they he she
    dear diary hi hello thanks ok okay
    google apple amazon microsoft facebook instagram twitter netflix spotify youtube
    uber starbucks iphone android whatsapp tiktok linkedin
    """.split()
)

# Ordered: the first threshold the raw score clears wins
EMOTION_THRESHOLDS: list[tuple[float, Emotion]] = [
    (3, Emotion.EXCITED),
    (1, Emotion.HAPPY),
    (-1, Emotion.CALM),
    (-3, Emotion.TIRED),
    (-5, Emotion.SAD),
]

SENTIMENT_SCALE = 10.0
SENTIMENT_LABEL_THRESHOLD = 0.2

_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+|\n+")
_WORD_RE = re.compile(r"[^\W\d_][\w'’-]*")
_POSSESSIVE_RE = re.compile(r"['’]s$")


def emotion_for_score(raw_score: float) -> Emotion:
    if raw_score >= EMOTION_THRESHOLDS[0][0]:
        return Emotion.EXCITED
    for threshold, emotion in EMOTION_THRESHOLDS[1:]:
        if raw_score > threshold:
            return emotion
    return Emotion.ANGRY


def sentiment_for_score(raw_score: float) -> Sentiment:
    score = max(-1.0, min(1.0, raw_score / SENTIMENT_SCALE))
    if score > SENTIMENT_LABEL_THRESHOLD:
        label = "positive"
    elif score < -SENTIMENT_LABEL_THRESHOLD:
        label = "negative"
    else:
        label = "neutral"
    return Sentiment(score=round(score, 4), label=label)


def resolve_mood(mood: object) -> Emotion | None:
    """Map a user-chosen mood label (case-insensitive) to an Emotion."""
    label = mood_label(mood)
    if not label:
        return None
    try:
        return Emotion(label.lower())
    except ValueError:
        return None


class Atomizer:
    """Pure enrichment of RawEntry -> EnrichedEntry."""

    def __init__(self, keyword_limit: int = DEFAULT_KEYWORD_LIMIT) -> None:
        self.keyword_limit = keyword_limit

    # ── Tokens ────────────────────────────────────────────────

    def tokenize_and_clean(self, plain: str) -> list[str]:
        return tokenize(plain)

    # ── Entities ──────────────────────────────────────────────

    def extract_entities(self, plain: str) -> list[NamedEntity]:
        """Capitalized, non-initial, non-acronym words not on the exclusion list."""
        seen: dict[str, NamedEntity] = {}
        for sentence in _SENTENCE_RE.split(plain):
            words = _WORD_RE.findall(sentence)
            for word in words[1:]:
                word = _POSSESSIVE_RE.sub("", word).strip("'’-")
                if len(word) < 2 or not word[0].isupper() or word.isupper():
                    continue
                if word.lower() in ENTITY_EXCLUSIONS:
                    continue
                if word not in seen:
                    seen[word] = NamedEntity(word, EntityKind.PERSON)
        return list(seen.values())

    # ── Keywords ──────────────────────────────────────────────

    def extract_keywords(self, tokens: list[str]) -> list[str]:
        # Counter keeps first-occurrence order among equal counts
        return [word for word, _ in Counter(tokens).most_common(self.keyword_limit)]

    # ── Emotion ───────────────────────────────────────────────

    def lexicon_score(self, plain: str) -> float:
        score = 0
        for word in split_words(plain.lower()):
            score += POSITIVE_WORDS.get(word, 0)
            score -= NEGATIVE_WORDS.get(word, 0)
        return float(score)

    def analyze_emotion(self, plain: str) -> tuple[DetectedEmotion, Sentiment]:
        raw = self.lexicon_score(plain)
        return DetectedEmotion(emotion_for_score(raw), raw), sentiment_for_score(raw)

    # ── Entry point ───────────────────────────────────────────

    def enrich(
        self,
        entry: RawEntry,
        mood: object = None,
        *,
        now: datetime | None = None,
    ) -> EnrichedEntry:
        """Enrich an entry. ``mood`` defaults to the entry's own mood label."""
        content = entry.content if isinstance(entry.content, str) else ""
        source = content or entry.content_html or ""
        plain = strip_html(source)
        tokens = self.tokenize_and_clean(plain)
        detected, sentiment = self.analyze_emotion(plain)

        user_emotion = resolve_mood(mood if mood is not None else entry.mood)
        enriched = EnrichedEntry(
            id=entry.id,
            title=entry.title or "",
            content=content,
            content_html=entry.content_html,
            created_at=entry.created_at,
            mood=mood_label(mood) or entry.mood,
            relationship_ids=list(entry.relationship_ids or []),
            keywords=self.extract_keywords(tokens),
            entities=self.extract_entities(strip_html_lines(source)),
            primary_emotion=user_emotion or detected.primary,
            detected_emotion=detected,
            sentiment=sentiment,
            processed_at=now or utcnow(),
        )
        logger.debug(
            "Enriched %s: %d keywords, %d entities, %s",
            entry.id,
            len(enriched.keywords),
            len(enriched.entities),
            enriched.primary_emotion.value,
        )
        return enriched


def with_groupings(entry: EnrichedEntry, grouping_ids: list[str]) -> EnrichedEntry:
    return replace(entry, grouping_ids=list(grouping_ids))
