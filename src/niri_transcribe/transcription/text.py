"""Transcript clean-up shared by every backend."""

from __future__ import annotations

import re

# Common Whisper hallucination phrases to strip from transcript start/end (case-insensitive)
_HALLUCINATION_PHRASES = (
    "thank you",
    "thanks for watching",
    "thanks for listening",
    "please subscribe",
)
_HALLUCINATION_LEAD_PATTERNS = tuple(
    re.compile(r"^\s*[.,!?]*\s*" + re.escape(p) + r"[.,!?\s]*", re.IGNORECASE)
    for p in _HALLUCINATION_PHRASES
)
_HALLUCINATION_TRAIL_PATTERNS = tuple(
    re.compile(r"[.,!?\s]*" + re.escape(p) + r"\s*[.,!?]*\s*$", re.IGNORECASE)
    for p in _HALLUCINATION_PHRASES
)
# whisper.cpp marks non-speech with bracketed tags such as [BLANK_AUDIO] or (music)
_NON_SPEECH_TAG = re.compile(r"\[[^\]]*\]|\([^)]*\)")


def strip_hallucination_phrases(text: str) -> str:
    """
    Remove common Whisper hallucination phrases from start and end of text.
    Case-insensitive; allows optional punctuation/whitespace around phrases.
    """
    t = text.strip()
    while True:
        changed = False
        for lead_re, trail_re in zip(_HALLUCINATION_LEAD_PATTERNS, _HALLUCINATION_TRAIL_PATTERNS):
            t_new = lead_re.sub("", t).strip()
            t_new = trail_re.sub("", t_new).strip()
            if t_new != t:
                t = t_new
                changed = True
                break
        if not changed:
            break
    return t


def clean_transcript(text: str) -> str:
    """Drop non-speech tags and hallucinated filler, collapse whitespace."""
    t = _NON_SPEECH_TAG.sub(" ", text)
    t = " ".join(t.split())
    return strip_hallucination_phrases(t)
