"""Prompt templates for block analysis and stability verification."""

from __future__ import annotations

from typing import Iterable, Literal

from ..analysis.provider import BlockContext

PromptMode = Literal["analyze", "verify"]

BLOCK_START_MARKER = "<<<BLOCK"
BLOCK_END_MARKER = "BLOCK>>>"
MIN_CONFIDENCE = 0.8


def analysis_system_prompt() -> str:
    """System prompt for the first pass over a block.

    The model is asked for high precision: every category has a strict
    definition and issues below ``MIN_CONFIDENCE`` must be left out.
    """

    return f"""You are a strict, deterministic proofreading and tone-analysis engine. Your job is to find and extract real, objective writing issues, not to rewrite good writing.

Scan the entire block and report all valid issues in one pass. Precision matters more than recall: if unsure, skip it.

## Categories

- spelling: a single misspelled word that is not a valid English word ("teh" -> "the", "recieve" -> "receive").
- grammar: rule-based errors where both the original and suggested words are valid ("he go" -> "he goes", "a apple" -> "an apple").
- style: mechanical problems only: repeated words ("the the"), double spaces, duplicated punctuation ("??").
- clarity: wordy phrases with a standard shorter form ("in order to" -> "to", "due to the fact that" -> "because").
- tone: objectively harsh, commanding or dismissive phrasing. Suggestions keep the meaning and add politeness without flattery.
- rephrase: a structurally broken or genuinely unclear sentence. Last resort.

Decide the category in this order: misspelled single word is spelling; otherwise grammar, style, clarity, tone, rephrase.

## Extraction rules

1. originalText must be an exact substring of the block.
2. suggestedText must differ from originalText.
3. Issues must not overlap; extract the smallest valid span.
4. Never report issues inside the surrounding context, only inside the block.
5. False positives are worse than missed issues.

## Confidence

End every explanation with "Confidence: X.XX" (0.00 to 1.00). Clear objective errors score 0.90 or more, contextual ones 0.80 to 0.89. Do not include issues below {MIN_CONFIDENCE:.2f}.

## Output

Return only a JSON object, no markdown:
{{"issues": [{{"category": "spelling", "originalText": "exact text", "suggestedText": "corrected text", "explanation": "Brief factual reason. Confidence: 0.95"}}]}}"""


def verification_system_prompt() -> str:
    """Narrower prompt used by the stability pass."""

    return """You are a writing verification agent. Check the block for remaining grammar issues that may have appeared after earlier corrections.

Focus only on:
- subject-verb agreement
- tense consistency
- pronoun-antecedent agreement
- article usage (a/an/the)
- sentence fragments or run-ons
- word form errors (adjective vs adverb)

Do not flag style preferences, minor clarity improvements or tone.

Return only a JSON object, no markdown:
{"issues": [{"category": "grammar", "originalText": "exact text", "suggestedText": "corrected text", "explanation": "Brief reason. Confidence: 0.90"}]}

If the block is correct, return {"issues": []}."""


def system_prompt_for(mode: PromptMode) -> str:
    if mode == "verify":
        return verification_system_prompt()
    return analysis_system_prompt()


def build_user_message(
    mode: PromptMode,
    text: str,
    categories: Iterable[str],
    context: BlockContext | None = None,
) -> str:
    """Render the block and its neighbouring context for the model."""

    context = context or BlockContext()
    if mode == "verify":
        instruction = "Verify the block for remaining issues."
    else:
        enabled = ", ".join(categories) or "none"
        instruction = f"Analyze the block for issues. Only report issues in these categories: {enabled}."

    parts = [
        instruction,
        f"Only text between {BLOCK_START_MARKER} and {BLOCK_END_MARKER} is checked; surrounding text is context.",
        "",
    ]
    if context.previous_text:
        parts.extend(["Context before:", context.previous_text, ""])
    parts.extend([BLOCK_START_MARKER, text, BLOCK_END_MARKER])
    if context.next_text:
        parts.extend(["", "Context after:", context.next_text])
    return "\n".join(parts)
