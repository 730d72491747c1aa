"""
Prompt safety and quality checks.

Heuristic token estimation, prompt-injection detection, quality scoring,
sanitization of untrusted input, output-format instructions, template
auditing and token-limit truncation. Nothing here calls a model; every
function is pure.
"""
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .errors import InvalidArgumentError
from .serialization import dump_json
from .template import VARIABLE_PATTERN, PromptTemplate


DEFAULT_SANITIZE_MAX_LENGTH = 50_000
DEFAULT_TRUNCATION_MARKER = "\n\n[Content truncated due to length]"

_WORD_PATTERN = re.compile(r"\S+")
_SPECIAL_CHARS = frozenset("{}[]();:<>=|&!@#")

# (pattern, description) pairs; a match flags the text as a likely injection
INJECTION_PATTERNS: list[tuple[re.Pattern, str]] = [
    (
        re.compile(
            r"\bignore\b.*\b(previous|above|all|prior)\b.*"
            r"\b(instructions?|prompts?|rules?|guidelines?)\b",
            re.IGNORECASE,
        ),
        "Instruction override: attempts to ignore previous instructions",
    ),
    (
        re.compile(
            r"\b(disregard|forget|override|bypass|skip)\b.*"
            r"\b(instructions?|prompts?|rules?|constraints?|guidelines?|system)\b",
            re.IGNORECASE,
        ),
        "Instruction override: attempts to disregard/bypass rules",
    ),
    (
        re.compile(
            r"\byou\s+are\s+now\b.*\b(new|different|DAN|evil|unrestricted|unfiltered)\b",
            re.IGNORECASE,
        ),
        "Role hijacking: attempts to reassign the model's identity",
    ),
    (
        re.compile(
            r"\b(pretend|act\s+as\s+if|imagine|suppose)\b.*"
            r"\b(no\s+(rules?|restrictions?|limits?|boundaries)|unrestricted|unfiltered|jailbr[eo]ak)\b",
            re.IGNORECASE,
        ),
        "Jailbreak: attempts to remove model restrictions via roleplay",
    ),
    (
        re.compile(
            r"\bsystem\s*prompt\b.*\b(show|reveal|display|print|tell|output|repeat|what)\b",
            re.IGNORECASE,
        ),
        "System prompt extraction: attempts to reveal system instructions",
    ),
    (
        re.compile(
            r"\b(reveal|show|display|output|print|leak|expose)\b.*"
            r"\b(system\s*(prompt|message|instructions?)|hidden\s*(prompt|instructions?)"
            r"|initial\s*(prompt|instructions?))\b",
            re.IGNORECASE,
        ),
        "System prompt extraction: attempts to expose hidden instructions",
    ),
    (
        re.compile(r"\b(do\s+not|don'?t|never)\s+(follow|obey|listen|adhere)\b", re.IGNORECASE),
        "Instruction override: attempts to make the model disobey",
    ),
    (
        # Case-sensitive: "dan" is a common word and a name
        re.compile(r"\bDAN\b|\bDo\s+Anything\s+Now\b"),
        "Known jailbreak: DAN (Do Anything Now) pattern",
    ),
    (
        re.compile(
            r"\b(from\s+now\s+on|starting\s+now|henceforth)\b.*"
            r"\b(you\s+(will|must|should|shall)|your\s+(role|purpose|function))\b",
            re.IGNORECASE,
        ),
        "Role hijacking: attempts to redefine model behavior",
    ),
    (
        re.compile(
            r"\[\s*SYSTEM\s*\]|\[\s*INST\s*\]|<<\s*SYS\s*>>|<\|system\|>|<\|im_start\|>",
            re.IGNORECASE,
        ),
        "Delimiter injection: attempts to inject system-level markers",
    ),
]

_VAGUE_PATTERN = re.compile(
    r"\b(something|stuff|things?|whatever|somehow|kind\s+of|sort\s+of|maybe|idk"
    r"|etc\.?|and\s+so\s+on)\b",
    re.IGNORECASE,
)
_QUESTION_PATTERN = re.compile(
    r"[?？]|\b(what|how|why|when|where|which|who|explain|describe|list"
    r"|tell\s+me|show\s+me|give\s+me|can\s+you)\b",
    re.IGNORECASE,
)
_SPECIFICITY_PATTERN = re.compile(
    r"\b\d+\b|\"[^\"]+\"|\bexample\b|\be\.?g\.?\b|\bfor\s+instance\b"
    r"|\bspecifically\b|\bexactly\b|\bprecisely\b",
    re.IGNORECASE,
)
_FORMAT_REQUEST_PATTERN = re.compile(
    r"\b(json|xml|csv|yaml|table|list|bullet|markdown|format|structured)\b",
    re.IGNORECASE,
)
_STRUCTURE_PATTERN = re.compile(
    r"[\n\r].*[\n\r]|^\s*[-*•]\s+|^\s*\d+[.)]\s+|```|#{1,6}\s+",
    re.MULTILINE,
)
_ROLE_PATTERN = re.compile(r"\b(you\s+are|act\s+as|role|persona|context|background)\b", re.IGNORECASE)
_EXAMPLES_PATTERN = re.compile(
    r"\bexamples?\s*[:：]|\bfor\s+example\b|\be\.?g\.?\b|\binput\s*[:：].*output\s*[:：]",
    re.IGNORECASE | re.DOTALL,
)
_CONSTRAINT_PATTERN = re.compile(
    r"\b(must|should|do\s+not|don'?t|avoid|ensure|require|constraint|limit"
    r"|maximum|minimum|at\s+(most|least))\b",
    re.IGNORECASE,
)

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_MARKER_REPLACEMENTS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\[SYSTEM\]", re.IGNORECASE), "[BLOCKED_SYSTEM]"),
    (re.compile(r"\[INST\]", re.IGNORECASE), "[BLOCKED_INST]"),
    (re.compile(r"<<SYS>>", re.IGNORECASE), "<<BLOCKED_SYS>>"),
    (re.compile(r"<\|system\|>", re.IGNORECASE), "<|blocked_system|>"),
    (re.compile(r"<\|im_start\|>", re.IGNORECASE), "<|blocked_im_start|>"),
    (re.compile(r"<\|im_end\|>", re.IGNORECASE), "<|blocked_im_end|>"),
]

LONG_VARIABLE_NAME = 50


class OutputFormat(Enum):
    """Response formats understood by wrap_with_format()."""
    JSON = "json"
    NUMBERED_LIST = "numbered_list"
    BULLET_LIST = "bullet_list"
    TABLE = "table"
    STEP_BY_STEP = "step_by_step"
    ONE_LINE = "one_line"
    XML = "xml"
    CSV = "csv"
    YAML = "yaml"


_FORMAT_INSTRUCTIONS: dict[OutputFormat, str] = {
    OutputFormat.JSON: "Respond with valid JSON only. No markdown, no explanation, "
                       "just the JSON object or array.",
    OutputFormat.NUMBERED_LIST: "Respond as a numbered list (1., 2., 3., etc.). One item per line.",
    OutputFormat.BULLET_LIST: "Respond as a bullet list using '- ' for each item. One item per line.",
    OutputFormat.TABLE: "Respond as a markdown table with a header row and separator.",
    OutputFormat.STEP_BY_STEP: "Respond with step-by-step instructions. Number each step. "
                               "Be specific and actionable.",
    OutputFormat.ONE_LINE: "Respond in a single line. No newlines, no bullet points, "
                           "no extra formatting.",
    OutputFormat.XML: "Respond with valid XML only. No markdown, no explanation, "
                      "just the XML document.",
    OutputFormat.CSV: "Respond as CSV (comma-separated values) with a header row. "
                      "No markdown formatting.",
    OutputFormat.YAML: "Respond with valid YAML only. No markdown, no explanation, "
                       "just the YAML document.",
}


def quality_grade(score: int) -> str:
    """Map a 0-100 quality score to a letter grade (A-F)."""
    if score >= 90:
        return "A"
    if score >= 75:
        return "B"
    if score >= 60:
        return "C"
    if score >= 40:
        return "D"
    return "F"


@dataclass
class PromptAnalysis:
    """Result of analyze().

    Attributes:
        original_prompt: The analysed text.
        character_count: Length in characters.
        word_count: Number of whitespace-separated words.
        estimated_tokens: Heuristic token estimate.
        token_limit: The limit checked against, if any.
        exceeds_token_limit: True when estimated_tokens > token_limit.
        has_injection_risk: True when any injection pattern matched.
        injection_patterns: Descriptions of the matched patterns.
        quality_score: Heuristic quality score, 0-100.
        warnings: Problems worth fixing before sending.
        suggestions: Optional improvements.
    """
    original_prompt: str
    character_count: int
    word_count: int
    estimated_tokens: int
    token_limit: Optional[int] = None
    exceeds_token_limit: bool = False
    has_injection_risk: bool = False
    injection_patterns: list[str] = field(default_factory=list)
    quality_score: int = 0
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    @property
    def quality_grade(self) -> str:
        return quality_grade(self.quality_score)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "originalPrompt": self.original_prompt,
            "estimatedTokens": self.estimated_tokens,
            "characterCount": self.character_count,
            "wordCount": self.word_count,
            "hasInjectionRisk": self.has_injection_risk,
        }
        if self.injection_patterns:
            data["injectionPatterns"] = list(self.injection_patterns)
        data["qualityScore"] = self.quality_score
        data["qualityGrade"] = self.quality_grade
        data["exceedsTokenLimit"] = self.exceeds_token_limit
        if self.token_limit is not None:
            data["tokenLimit"] = self.token_limit
        if self.warnings:
            data["warnings"] = list(self.warnings)
        if self.suggestions:
            data["suggestions"] = list(self.suggestions)
        return data

    def to_json(self, indent: Optional[int] = 2) -> str:
        return dump_json(self.to_dict(), indent=indent)


def _require_text(value: Any, what: str = "Prompt") -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{what} cannot be null or empty.")
    return value


def estimate_tokens(text: Optional[str]) -> int:
    """Estimate how many tokens a model will see for this text.

    Blends a characters/4 estimate with a words*1.3 estimate, then adds
    15% for code-heavy text and half a token per newline. Always at least
    1 for non-empty text.

    Example:
        >>> estimate_tokens("")
        0
        >>> estimate_tokens("Hello world")
        3
    """
    if not text:
        return 0

    estimate = len(text) / 4.0
    words = len(_WORD_PATTERN.findall(text))
    if words > 0:
        estimate = (estimate + words * 1.3) / 2.0

    special = sum(1 for ch in text if ch in _SPECIAL_CHARS)
    if special > len(text) * 0.1:
        estimate *= 1.15

    estimate += text.count("\n") * 0.5
    return max(1, math.ceil(estimate))


def detect_injection_patterns(text: Optional[str]) -> list[str]:
    """Return descriptions of every injection pattern found in text."""
    if not text or not text.strip():
        return []
    return [description for pattern, description in INJECTION_PATTERNS if pattern.search(text)]


def detect_injection(text: Optional[str]) -> bool:
    """Return True if text matches any known prompt-injection pattern."""
    if not text or not text.strip():
        return False
    return any(pattern.search(text) for pattern, _ in INJECTION_PATTERNS)


def calculate_quality_score(prompt: Optional[str]) -> int:
    """Score a prompt from 0 to 100 on clarity, specificity and structure.

    Starts at 50. Length, question or instruction wording, concrete
    details, format requests, structure, role context, examples and
    constraints add points; very short prompts and vague wording take
    them away.
    """
    if not prompt or not prompt.strip():
        return 0

    score = 50
    words = len(_WORD_PATTERN.findall(prompt))

    if words < 3:
        score -= 20
    elif words < 8:
        score -= 10
    elif 10 <= words <= 200:
        score += 10
    elif words > 500:
        score -= 5

    if _QUESTION_PATTERN.search(prompt):
        score += 10

    score += min(len(_SPECIFICITY_PATTERN.findall(prompt)) * 3, 12)

    if _FORMAT_REQUEST_PATTERN.search(prompt):
        score += 5
    if _STRUCTURE_PATTERN.search(prompt):
        score += 8

    score -= min(len(_VAGUE_PATTERN.findall(prompt)) * 3, 12)

    if _ROLE_PATTERN.search(prompt):
        score += 5
    if _EXAMPLES_PATTERN.search(prompt):
        score += 8
    if _CONSTRAINT_PATTERN.search(prompt):
        score += 5

    return max(0, min(100, score))


def _warnings_for(analysis: PromptAnalysis) -> list[str]:
    warnings = []
    if analysis.has_injection_risk:
        warnings.append(
            "Potential prompt injection detected. Review the prompt for "
            "malicious patterns before sending."
        )
    if analysis.exceeds_token_limit:
        warnings.append(
            f"Estimated tokens ({analysis.estimated_tokens}) exceed the limit "
            f"({analysis.token_limit}). The prompt may be truncated by the model. "
            "Use truncate_to_token_limit() to trim."
        )
    if analysis.word_count < 3:
        warnings.append(
            "Prompt is very short (fewer than 3 words). This may produce "
            "generic or unhelpful responses."
        )
    if analysis.character_count > 100_000:
        warnings.append(
            "Prompt is extremely long (>100K characters). Consider splitting "
            "into multiple requests or summarizing."
        )
    return warnings


def _suggestions_for(prompt: str, analysis: PromptAnalysis) -> list[str]:
    suggestions = []
    if not _QUESTION_PATTERN.search(prompt):
        suggestions.append(
            "Consider starting with a clear instruction verb (Explain, List, "
            "Describe, Compare, etc.) or asking a question."
        )
    if not _FORMAT_REQUEST_PATTERN.search(prompt) and analysis.word_count > 10:
        suggestions.append(
            "Consider specifying the desired output format (JSON, list, table, "
            "etc.) for more structured responses."
        )
    if not _SPECIFICITY_PATTERN.search(prompt) and analysis.word_count > 5:
        suggestions.append(
            "Adding specific details (numbers, examples, constraints) typically "
            "produces better results."
        )
    if len(_VAGUE_PATTERN.findall(prompt)) > 2:
        suggestions.append(
            "The prompt contains several vague terms. Replacing 'something', "
            "'stuff', 'things', etc. with specific language improves response quality."
        )
    if analysis.word_count > 20 and not _STRUCTURE_PATTERN.search(prompt):
        suggestions.append(
            "For longer prompts, consider using structure (bullet points, "
            "numbered steps, sections) to organize your instructions clearly."
        )
    if analysis.quality_score >= 80 and not suggestions:
        suggestions.append("This prompt follows good prompt engineering practices!")
    return suggestions


def analyze(prompt: str, token_limit: Optional[int] = None) -> PromptAnalysis:
    """Run every check on a prompt and collect the results.

    Args:
        prompt: Text to analyse.
        token_limit: Optional budget; sets exceeds_token_limit and a warning.

    Returns:
        A PromptAnalysis with counts, risks, score, warnings and suggestions.

    Raises:
        InvalidArgumentError: If prompt is blank.
    """
    _require_text(prompt)

    injections = detect_injection_patterns(prompt)
    analysis = PromptAnalysis(
        original_prompt=prompt,
        character_count=len(prompt),
        word_count=len(_WORD_PATTERN.findall(prompt)),
        estimated_tokens=estimate_tokens(prompt),
        token_limit=token_limit,
        has_injection_risk=bool(injections),
        injection_patterns=injections,
    )
    if token_limit is not None:
        analysis.exceeds_token_limit = analysis.estimated_tokens > token_limit

    analysis.quality_score = calculate_quality_score(prompt)
    analysis.warnings = _warnings_for(analysis)
    analysis.suggestions = _suggestions_for(prompt, analysis)
    return analysis


def sanitize(text: Optional[str], max_length: int = DEFAULT_SANITIZE_MAX_LENGTH) -> str:
    """Clean untrusted text before it is interpolated into a prompt.

    Removes control characters (tabs and newlines survive), defuses
    chat-template markers such as [SYSTEM] and <|im_start|>, collapses
    runs of spaces and blank lines, trims, and truncates to max_length,
    preferring a word boundary.

    Raises:
        InvalidArgumentError: If max_length is less than 1.
    """
    if max_length < 1:
        raise InvalidArgumentError(f"max_length must be at least 1, got {max_length}")
    if not text:
        return ""

    result = _CONTROL_CHARS.sub("", text)
    for pattern, replacement in _MARKER_REPLACEMENTS:
        result = pattern.sub(replacement, result)

    result = re.sub(r" {3,}", "  ", result)
    result = re.sub(r"\n{3,}", "\n\n", result)
    result = result.strip()

    if len(result) > max_length:
        result = result[:max_length]
        last_space = result.rfind(" ")
        if last_space > max_length * 0.8:
            result = result[:last_space]

    return result


def wrap_with_format(prompt: str, output_format: Union[OutputFormat, str]) -> str:
    """Append an output-format instruction to a prompt.

    Args:
        prompt: The prompt text.
        output_format: An OutputFormat, or a custom instruction string.

    Raises:
        InvalidArgumentError: If the prompt or a custom instruction is blank.
    """
    _require_text(prompt)
    if isinstance(output_format, OutputFormat):
        instruction = _FORMAT_INSTRUCTIONS[output_format]
    else:
        instruction = _require_text(output_format, "Format instruction")
    return f"{prompt}\n\n{instruction}"


def check_template(template: PromptTemplate) -> list[str]:
    """Audit a template for unused defaults and suspicious content."""
    if not isinstance(template, PromptTemplate):
        raise InvalidArgumentError("template must be a PromptTemplate")

    warnings = []
    variables = template.get_variables()

    for name, value in template.defaults.items():
        if name not in variables:
            warnings.append(
                f"Default value for '{name}' is set but the variable is not "
                "referenced in the template."
            )
        if detect_injection(value):
            warnings.append(f"Default value for '{name}' contains a potential injection pattern.")

    static_text = VARIABLE_PATTERN.sub("PLACEHOLDER", template.template)
    if detect_injection(static_text):
        warnings.append(
            "Template text contains potential injection patterns in the "
            "static portions (outside variables)."
        )

    for name in variables:
        if len(name) > LONG_VARIABLE_NAME:
            warnings.append(
                f"Variable '{name[:20]}...' has an unusually long name "
                f"({len(name)} chars). This could indicate obfuscation."
            )

    return warnings


def truncate_to_token_limit(
    prompt: str,
    max_tokens: int,
    marker: str = DEFAULT_TRUNCATION_MARKER,
) -> str:
    """Shorten a prompt until its estimate fits max_tokens.

    Cuts at a sentence or line break when one is near the end, otherwise
    at a word boundary, and appends marker. A prompt already within the
    limit is returned unchanged.

    Raises:
        InvalidArgumentError: If prompt is blank or max_tokens < 1.
    """
    _require_text(prompt)
    if max_tokens < 1:
        raise InvalidArgumentError(f"max_tokens must be at least 1, got {max_tokens}")

    if estimate_tokens(prompt) <= max_tokens:
        return prompt

    marker = marker or ""
    target = max_tokens - estimate_tokens(marker)
    if target < 1:
        return marker if marker else prompt[:1]

    # Longest prefix whose estimate fits
    low, high = 0, len(prompt)
    while low < high:
        mid = (low + high + 1) // 2
        if estimate_tokens(prompt[:mid]) <= target:
            low = mid
        else:
            high = mid - 1

    if low == 0:
        return marker

    truncated = prompt[:low]
    last_break = max(truncated.rfind(". "), truncated.rfind("\n"))
    if last_break > low * 0.7:
        truncated = truncated[:last_break + 1]
    else:
        last_space = truncated.rfind(" ")
        if last_space > low * 0.8:
            truncated = truncated[:last_space]

    return truncated.rstrip() + marker
