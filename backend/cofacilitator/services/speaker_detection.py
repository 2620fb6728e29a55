from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

FACILITATOR = "Facilitator"
PARTICIPANT = "Participant"

FACILITATOR_PATTERNS = (
    # Questions
    "what do you think",
    "how does that",
    "can you tell us",
    "would you share",
    "what's your experience",
    # Transitions
    "let's move on",
    "our next question",
    "moving to",
    "let's explore",
    "next topic",
    # Acknowledgments
    "thank you for sharing",
    "i appreciate that",
    "great point",
    "interesting perspective",
    "thanks for that",
    # Time management
    "we have about",
    "few more minutes",
    "time for one more",
    "let's spend",
    # Session management
    "welcome everyone",
    "before we close",
    "to summarize",
    "let me ask",
    # Clarifications
    "just to clarify",
    "what i'm hearing",
    "to build on that",
    "following up on",
)

_TOPIC_INTRO = re.compile(
    r"\b(let's talk about|our next topic|turning to|moving to)\b.*\b(ai|artificial intelligence|transformation|automation)\b"
    r"|\b(today we'll|we're going to|our agenda|our focus)\b",
    re.IGNORECASE,
)
_GUIDE_QUESTION = re.compile(
    r"\b(what does your org look like|what scares you most|what's one takeaway|how does that connect|can you say more)\b"
    r"|\b(fast forward.*years|the darker version|what needs to be true)\b",
    re.IGNORECASE,
)
_PARTICIPANT_FIRST_HAND = re.compile(
    r"\b(the way we do it at|at our company|our experience at|we handle it by|at \w+, we)\b"
    r"|\b(in our organization|our approach at|we've found that|our team at)\b",
    re.IGNORECASE,
)
_ASKING_ABOUT_OTHERS = re.compile(
    r"\b(how does \w+ do it|how do you at \w+|what's your experience at|how does your company)\b"
    r"|\b(how do they handle it at|what's the approach at \w+|how does \w+ think about)\b",
    re.IGNORECASE,
)
_TRANSITION_START = re.compile(r"^(so|now|okay|alright|great|well|let's)\b", re.IGNORECASE)
_SUMMARY_LANGUAGE = re.compile(r"summariz|wrap up|key takeaway|moving forward", re.IGNORECASE)
_ASKING_AUDIENCE = re.compile(
    r"\b(what do you think|what's your view|how do you see|tell me|share with us|thoughts on)\b"
    r"|\b(any questions|what questions|does anyone)\b",
    re.IGNORECASE,
)
_ASKING_CLARIFICATION = re.compile(
    r"\b(can you clarify|what did you mean|how do you|what's your take)\b",
    re.IGNORECASE,
)


@dataclass
class SpeakerGuess:
    speaker: str
    at: float
    confidence: str  # high | medium | low


class SpeakerDetector:
    """
    Heuristic Facilitator/Participant attribution for unlabeled transcript lines.

    Strong cues (self-introductions, agenda framing, guide questions) always win.
    Within the continuity window the previous speaker is kept unless the line
    breaks the flow (facilitator opening the floor, participant asking back).
    """

    def __init__(
        self,
        facilitator_name: str = "",
        continuity_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.continuity_seconds = continuity_seconds
        self._clock = clock
        self._last: Optional[SpeakerGuess] = None
        name = (facilitator_name or "").strip()
        self._facilitator_name = name
        if name:
            escaped = re.escape(name)
            self._self_intro = re.compile(
                rf"\b(my name is|i'm|i am)\b.*\b{escaped}\b|\b{escaped}\b.*\b(here|facilitator|leading|moderating)\b",
                re.IGNORECASE,
            )
            self._participant_intro = re.compile(
                rf"\b(my name is|i'm|i am)\s+(?!{escaped}\b)[a-z]+\b|\b(i work at|i'm with|i'm from)\s+\w+",
                re.IGNORECASE,
            )
        else:
            self._self_intro = re.compile(r"\b(i'll be (your )?facilitat\w*|i'm your (host|facilitator|moderator))\b", re.IGNORECASE)
            self._participant_intro = re.compile(
                r"\b(my name is)\s+\w+|\b(i work at|i'm with|i'm from)\s+\w+",
                re.IGNORECASE,
            )

    @property
    def last_speaker(self) -> Optional[str]:
        return self._last.speaker if self._last else None

    def reset(self) -> None:
        self._last = None

    def detect(self, text: str) -> str:
        value = (text or "").strip()
        lower = value.lower()
        now = self._clock()

        if self._participant_intro.search(value) and not self._self_intro.search(value):
            return self._remember(PARTICIPANT, now, "high")

        if self._self_intro.search(value) or _TOPIC_INTRO.search(value) or _GUIDE_QUESTION.search(value):
            return self._remember(FACILITATOR, now, "high")

        asking_audience = bool(_ASKING_AUDIENCE.search(value))
        asking_clarification = bool(_ASKING_CLARIFICATION.search(value))
        last = self._last
        if last is not None and (now - last.at) < self.continuity_seconds:
            if last.speaker == FACILITATOR and asking_audience:
                return self._remember(FACILITATOR, now, "medium")
            if last.speaker == PARTICIPANT and asking_clarification:
                return self._remember(PARTICIPANT, now, "medium")
            if not asking_audience and not asking_clarification:
                return last.speaker

        is_question = value.endswith("?") and len(value) < 200
        weak_facilitator = (
            any(pattern in lower for pattern in FACILITATOR_PATTERNS)
            or bool(_ASKING_ABOUT_OTHERS.search(value))
            or (is_question and bool(_TRANSITION_START.search(value)))
            or bool(_SUMMARY_LANGUAGE.search(value))
        )
        if weak_facilitator:
            return self._remember(FACILITATOR, now, "medium")
        if _PARTICIPANT_FIRST_HAND.search(value):
            return self._remember(PARTICIPANT, now, "medium")
        return self._remember(PARTICIPANT, now, "low")

    def _remember(self, speaker: str, now: float, confidence: str) -> str:
        self._last = SpeakerGuess(speaker=speaker, at=now, confidence=confidence)
        return speaker
