"""Tests for prompts.py — context rendering and prompt variant selection."""
from __future__ import annotations

import pytest

from doc_qa.prompts import (
    FLEXIBLE_PATIENT_SYSTEM_PROMPT,
    FLEXIBLE_SYSTEM_PROMPT,
    NO_CONTEXT_TEXT,
    NOT_FOUND_ANSWER,
    RELEVANCE_FLOOR,
    STRICT_PATIENT_SYSTEM_PROMPT,
    STRICT_SYSTEM_PROMPT,
    build_answer_prompt,
    format_context,
    has_relevant_results,
    select_system_prompt,
)


class TestFormatContext:
    def test_numbered_blocks_in_order(self, sample_results):
        context = format_context(sample_results)
        assert context.startswith("[1] Section: Intake\n---\n")
        assert "\n\n[2] Section: Scheduling\n---\nScheduling appointments follows these steps.\n---" in context
        assert context.index("[2]") < context.index("[3]")

    def test_no_results(self):
        assert format_context([]) == NO_CONTEXT_TEXT


class TestSelectSystemPrompt:
    @pytest.mark.parametrize(
        "strict, patient, expected",
        [
            (True, False, STRICT_SYSTEM_PROMPT),
            (False, False, FLEXIBLE_SYSTEM_PROMPT),
            (True, True, STRICT_PATIENT_SYSTEM_PROMPT),
            (False, True, FLEXIBLE_PATIENT_SYSTEM_PROMPT),
        ],
    )
    def test_matrix(self, strict, patient, expected):
        assert select_system_prompt(strict, patient) == expected

    def test_strict_prompt_names_not_found_answer(self):
        assert NOT_FOUND_ANSWER in STRICT_SYSTEM_PROMPT


class TestBuildAnswerPrompt:
    def test_relevant_results_use_grounded_prompt(self, sample_results):
        prompt = build_answer_prompt("How do I book?", sample_results, strict=False)
        assert prompt.variant == "grounded"
        assert prompt.system == FLEXIBLE_SYSTEM_PROMPT
        assert "USER QUESTION:\nHow do I book?" in prompt.user
        assert format_context(sample_results) in prompt.user

    def test_weak_results_use_not_found_prompt_always_strict(self, sample_results):
        for result in sample_results:
            result.score = 0.2
        prompt = build_answer_prompt("Parking rules?", sample_results, strict=False, patient_response=True)
        assert prompt.variant == "not_found"
        assert prompt.system == STRICT_PATIENT_SYSTEM_PROMPT
        assert "(may not be relevant)" in prompt.user
        assert f'"{NOT_FOUND_ANSWER}"' in prompt.user

    def test_floor_is_strict_inequality(self, sample_results):
        for result in sample_results:
            result.score = RELEVANCE_FLOOR
        assert not has_relevant_results(sample_results)
        sample_results[2].score = RELEVANCE_FLOOR + 1e-6
        assert has_relevant_results(sample_results)

    def test_empty_results_fall_to_not_found(self):
        prompt = build_answer_prompt("Anything?", [])
        assert prompt.variant == "not_found"
        assert NO_CONTEXT_TEXT in prompt.user
