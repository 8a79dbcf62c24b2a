"""Pulls (amount, category) pairs out of the sales posts agents type in chat.

Supported shapes:
    "$624 Americo IUL", "624$ Americo IUL"
    "His: $4,000 NLG IUL  Hers: $2,400 NLG IUL"
    "378$ HIS FORESTERS 378$ HERS FORESTERS"

Each amount owns the text between it and the next amount; that text is
cleaned down to a short category label.
"""
import math
import re
from dataclasses import dataclass
from typing import List

DEFAULT_CATEGORY = "General Policy"
MAX_CATEGORY_WORDS = 3

_NUMBER = r"(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{1,2})?"

# One alternation so a literal amount can only ever be matched once, even
# when it carries a symbol on both sides ("$624$").
AMOUNT_RE = re.compile(
    rf"\$\s*(?P<lead>{_NUMBER})(?!,?\d)"
    rf"|(?<![\d,.])(?P<trail>{_NUMBER})\s*\$"
)

ROLE_WORDS = (
    "His", "Hers", "Child", "Spouse", "Wife", "Husband",
    "Son", "Daughter", "Kid", "Parent", "Mother", "Father",
)
_ROLE = "|".join(ROLE_WORDS)
LEADING_ROLE_RE = re.compile(rf"^\s*(?:{_ROLE})\s*:", re.IGNORECASE)
# "$4,000 NLG IUL Hers:" - the trailing label belongs to the next sale
TRAILING_ROLE_RE = re.compile(rf"\b(?:{_ROLE})\s*:\s*$", re.IGNORECASE)

CUSTOM_EMOJI_RE = re.compile(r"<a?:\w+:\d+>|:[A-Za-z0-9_]+:")
UNICODE_EMOJI_RE = re.compile(
    "["
    "\U0001F000-\U0001FAFF"
    "\u2600-\u27BF"
    "\u2B00-\u2BFF"
    "\uFE0F\u200D"
    "]+"
)
MENTION_RE = re.compile(r"<@[!&]?\d+>|<#\d+>|@\w+")
COMMENTARY_RE = re.compile(r"\b(?:w/|with\b)", re.IGNORECASE)
NON_WORD_RE = re.compile(r"[^\w\s-]")
WHITESPACE_RE = re.compile(r"\s+")

POLICY_KEYWORDS = (
    "Index Universal Life",
    "Variable Universal Life",
    "Universal Life",
    "Whole Life",
    "Final Expense",
    "Term Life",
    "Americo",
    "Ladder",
    "IULE",
    "IUL",
    "NLG",
    "TLE",
    "TERM",
    "MOO",
    "UL",
    "WL",
)
_KEYWORDS = "|".join(re.escape(k).replace(r"\ ", r"\s+") for k in POLICY_KEYWORDS)
KEYWORD_RE = re.compile(
    rf"(?:\b[\w-]+\s+)?\b(?:{_KEYWORDS})\b(?:\s+[\w-]+)?",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class SaleEntry:
    amount: float
    category: str


def _collapse(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text).strip()


def _to_amount(raw: str) -> float:
    try:
        amount = float(raw.replace(",", ""))
    except ValueError:
        return 0.0
    # Runaway digit strings overflow to inf; treat them as malformed.
    if not math.isfinite(amount):
        return 0.0
    return round(amount, 2)


def clean_category_text(text: str) -> str:
    """Strip labels, emoji, mentions and commentary from the text after an amount."""
    text = LEADING_ROLE_RE.sub("", text)
    text = TRAILING_ROLE_RE.sub("", text)
    text = CUSTOM_EMOJI_RE.sub(" ", text)
    text = UNICODE_EMOJI_RE.sub(" ", text)
    text = MENTION_RE.sub(" ", text)

    commentary = COMMENTARY_RE.search(text)
    if commentary:
        text = text[:commentary.start()]
    text = text.split("#", 1)[0]

    text = NON_WORD_RE.sub(" ", text)
    return _collapse(text)


def title_case(label: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in label.split())


def extract_category(text: str) -> str:
    """Turn the free text that follows an amount into a title-cased category label."""
    cleaned = clean_category_text(text)

    match = KEYWORD_RE.search(cleaned)
    if match:
        category = _collapse(match.group(0))
    else:
        category = " ".join(cleaned.split()[:MAX_CATEGORY_WORDS])

    if len(category) < 2:
        category = DEFAULT_CATEGORY
    return title_case(category)


def parse_sales(text) -> List[SaleEntry]:
    """
    Extract every sale posted in one chat message.

    Returns an empty list when the message holds no usable amount. Amounts
    that parse to zero are dropped. Entries keep the order they were typed in.
    """
    if not text:
        return []
    normalized = _collapse(str(text))

    matches = list(AMOUNT_RE.finditer(normalized))
    sales = []
    for i, match in enumerate(matches):
        amount = _to_amount(match.group("lead") or match.group("trail"))
        if amount <= 0:
            continue
        segment_end = matches[i + 1].start() if i + 1 < len(matches) else len(normalized)
        category = extract_category(normalized[match.end():segment_end])
        sales.append(SaleEntry(amount=amount, category=category))
    return sales
