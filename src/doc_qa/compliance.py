"""Pre-send screening of draft questions.

Flags likely protected health information (PHI) and wording that suggests a
legal or regulatory escalation, so a client can warn the user before the
question is sent.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any


@dataclass(slots=True, frozen=True)
class PHIMatch:
    type: str
    match: str
    start_index: int
    end_index: int


@dataclass(slots=True, frozen=True)
class EscalationMatch:
    keyword: str
    category: str
    start_index: int
    end_index: int


@dataclass(slots=True)
class EscalationWarning:
    show: bool
    categories: list[str]
    message: str

    def to_wire(self) -> dict[str, Any]:
        return {"show": self.show, "categories": list(self.categories), "message": self.message}


PHI_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("SSN", re.compile(r"\b\d{3}[-.\s]?\d{2}[-.\s]?\d{4}\b")),
    ("Phone Number", re.compile(r"\b(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b")),
    ("Email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b")),
    (
        "Date of Birth",
        re.compile(r"\b(?:DOB|D\.O\.B\.?|Date of Birth|born|birthday)[\s:]*\d{1,2}[-/]\d{1,2}[-/]\d{2,4}\b", re.IGNORECASE),
    ),
    (
        "Medical Record Number",
        re.compile(r"\b(?:MRN|Medical Record|Patient ID|Chart)[\s:#]*[A-Z0-9]{6,12}\b", re.IGNORECASE),
    ),
    ("Credit Card", re.compile(r"\b(?:\d{4}[-.\s]?){3}\d{4}\b")),
    ("Potential Date", re.compile(r"\b(?:0?[1-9]|1[0-2])[-/](?:0?[1-9]|[12]\d|3[01])[-/](?:19|20)\d{2}\b")),
]

ESCALATION_KEYWORDS: list[tuple[str, list[str]]] = [
    (
        "Legal Action",
        ["lawsuit", "sue", "suing", "legal action", "attorney", "lawyer", "litigation", "court", "subpoena", "deposition"],
    ),
    (
        "Regulatory Complaint",
        [
            "bbb",
            "better business bureau",
            "state board",
            "medical board",
            "dental board",
            "file a complaint",
            "report to",
            "regulatory",
        ],
    ),
    ("Malpractice", ["malpractice", "negligence", "negligent", "damages", "injury", "harm", "wrongful"]),
    (
        "Cease Communication",
        [
            "cease and desist",
            "stop contacting",
            "do not contact",
            "cease all communication",
            "no further contact",
            "stop calling",
        ],
    ),
    ("Threats", ["threatening", "threat", "going to the media", "news", "expose", "public", "social media"]),
]


def detect_phi(text: str) -> list[PHIMatch]:
    """Find PHI-like spans, ordered by position.

    When several patterns match at the same start index only the first
    (in pattern order) is kept.
    """
    matches = [
        PHIMatch(type=phi_type, match=found.group(0), start_index=found.start(), end_index=found.end())
        for phi_type, pattern in PHI_PATTERNS
        for found in pattern.finditer(text)
    ]
    matches.sort(key=lambda item: item.start_index)
    return [
        match
        for position, match in enumerate(matches)
        if position == 0 or match.start_index != matches[position - 1].start_index
    ]


def has_phi(text: str) -> bool:
    return bool(detect_phi(text))


def phi_warning(text: str) -> str | None:
    matches = detect_phi(text)
    if not matches:
        return None
    types = list(dict.fromkeys(match.type for match in matches))
    return (
        f"Warning: Your message may contain {', '.join(types)}. "
        "Please ensure you are not sharing Protected Health Information."
    )


def detect_escalation(text: str) -> list[EscalationMatch]:
    """Return the earliest keyword hit per escalation category, ordered by position.

    Keywords are matched as case-insensitive substrings.
    """
    lower_text = text.lower()
    matches: list[EscalationMatch] = []
    for category, keywords in ESCALATION_KEYWORDS:
        for keyword in keywords:
            index = lower_text.find(keyword)
            if index != -1:
                matches.append(
                    EscalationMatch(keyword=keyword, category=category, start_index=index, end_index=index + len(keyword))
                )

    matches.sort(key=lambda item: item.start_index)
    seen: set[str] = set()
    unique: list[EscalationMatch] = []
    for match in matches:
        if match.category in seen:
            continue
        seen.add(match.category)
        unique.append(match)
    return unique


def has_escalation_keywords(text: str) -> bool:
    return bool(detect_escalation(text))


def escalation_warning(text: str) -> EscalationWarning:
    matches = detect_escalation(text)
    if not matches:
        return EscalationWarning(show=False, categories=[], message="")
    categories = list(dict.fromkeys(match.category for match in matches))
    return EscalationWarning(
        show=True,
        categories=categories,
        message=(
            f"This inquiry involves {', '.join(categories)}. Please follow the internal escalation workflow "
            "as documented. Cease all communication and consult with management before responding."
        ),
    )
