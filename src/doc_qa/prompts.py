from __future__ import annotations

from .schema import PromptPair, SearchResult

RELEVANCE_FLOOR = 0.35
NOT_FOUND_ANSWER = "Not found in the provided document."
NO_CONTEXT_TEXT = "No relevant context found in the document."

STRICT_SYSTEM_PROMPT = f"""You are a document Q&A assistant for internal operations workflows. You MUST follow these rules strictly:

1. ONLY use information from the provided context chunks to answer questions.
2. If the information is NOT found in the context, respond with: "{NOT_FOUND_ANSWER}"
3. NEVER use external knowledge, personal opinions, or "best practices" that are not explicitly stated in the document.
4. Include citation numbers [1], [2], etc. for each claim you make, referencing the relevant context chunk.
5. NEVER provide legal, medical, or compliance advice beyond what is explicitly documented.
6. Be concise but thorough - include all relevant information from the document.
7. If a question is ambiguous, state what assumptions you're making based on the document.
8. Format your response clearly with proper paragraphs and structure.

Remember: You can ONLY use information from the context provided. If you're unsure, say so."""

FLEXIBLE_SYSTEM_PROMPT = """You are a helpful document Q&A assistant for internal operations workflows. Follow these guidelines:

1. Primarily use information from the provided context chunks to answer questions.
2. Include citation numbers [1], [2], etc. for information from the document.
3. If information is not found in the document, you may note that while still being helpful.
4. Be concise but thorough.
5. Format your response clearly.

Note: Prioritize document content but you may provide helpful context when appropriate."""

_PATIENT_STYLE = """

PATIENT-FRIENDLY RESPONSE MODE:
The answer will be shared with a patient or family member, not with staff.
- Use plain, warm language at roughly an eighth-grade reading level.
- Replace internal jargon, codes and abbreviations with everyday words.
- Speak directly to the reader ("you") and keep sentences short.
- Leave out internal-only details such as staff workflows, system names and escalation paths.
- Keep the citation numbers [1], [2], etc. so staff can verify the answer."""

STRICT_PATIENT_SYSTEM_PROMPT = STRICT_SYSTEM_PROMPT + _PATIENT_STYLE
FLEXIBLE_PATIENT_SYSTEM_PROMPT = FLEXIBLE_SYSTEM_PROMPT + _PATIENT_STYLE


def select_system_prompt(strict: bool = True, patient_response: bool = False) -> str:
    if strict:
        return STRICT_PATIENT_SYSTEM_PROMPT if patient_response else STRICT_SYSTEM_PROMPT
    return FLEXIBLE_PATIENT_SYSTEM_PROMPT if patient_response else FLEXIBLE_SYSTEM_PROMPT


def format_context(results: list[SearchResult]) -> str:
    """Render results as numbered context blocks; numbering matches citation numbers."""
    if not results:
        return NO_CONTEXT_TEXT
    return "\n\n".join(
        f"[{number}] Section: {result.heading}\n---\n{result.content}\n---"
        for number, result in enumerate(results, start=1)
    )


def has_relevant_results(results: list[SearchResult], floor: float = RELEVANCE_FLOOR) -> bool:
    return any(result.score > floor for result in results)


def build_prompt(
    question: str,
    results: list[SearchResult],
    strict: bool = True,
    patient_response: bool = False,
) -> PromptPair:
    """Build the grounded prompt asking for a cited answer from the context."""
    user = (
        "CONTEXT CHUNKS FROM DOCUMENT:\n"
        f"{format_context(results)}\n\n"
        "USER QUESTION:\n"
        f"{question}\n\n"
        "Please answer the question using ONLY the information provided in the context chunks above. "
        "Include citation numbers [1], [2], etc. for each claim."
    )
    return PromptPair(system=select_system_prompt(strict, patient_response), user=user, variant="grounded")


def build_not_found_prompt(
    question: str,
    results: list[SearchResult],
    patient_response: bool = False,
) -> PromptPair:
    """Build the prompt used when nothing retrieved clears the relevance floor.

    Always uses the strict system prompt, whatever mode was requested.
    """
    user = (
        "CONTEXT CHUNKS FROM DOCUMENT (may not be relevant):\n"
        f"{format_context(results)}\n\n"
        "USER QUESTION:\n"
        f"{question}\n\n"
        "The retrieved chunks may not contain information relevant to this question. "
        f'If you cannot find a clear answer in the context above, respond with "{NOT_FOUND_ANSWER}" '
        "and briefly explain what topics the retrieved chunks do cover."
    )
    return PromptPair(system=select_system_prompt(True, patient_response), user=user, variant="not_found")


def build_answer_prompt(
    question: str,
    results: list[SearchResult],
    strict: bool = True,
    patient_response: bool = False,
    floor: float = RELEVANCE_FLOOR,
) -> PromptPair:
    """Pick the grounded or not-found prompt depending on the best score.

    Args:
        question: The user's question.
        results: Final (reranked, truncated) results, in citation order.
        strict: Use the strict system prompt for grounded answers.
        patient_response: Use the patient-friendly system prompt variant.
        floor: A result must score strictly above this to count as relevant.

    Returns:
        The prompt pair; ``variant`` records which template was used.
    """
    if has_relevant_results(results, floor):
        return build_prompt(question, results, strict, patient_response)
    return build_not_found_prompt(question, results, patient_response)
