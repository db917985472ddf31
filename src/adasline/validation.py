import re
from datetime import datetime
from zoneinfo import ZoneInfo

from adasline.config import BUSINESS_TIMEZONE


def match_any_keyword(text: str, keywords) -> bool:
    """Check if any keyword appears in text as a whole word (not substring)."""
    lower = text.lower()
    return any(re.search(rf'(?<!\w){re.escape(kw)}(?!\w)', lower) for kw in keywords)


def contains_any(text: str, phrases) -> bool:
    """Plain substring check, for multi-word phrases where boundaries don't matter."""
    lower = text.lower()
    return any(p in lower for p in phrases)


_ET = ZoneInfo(BUSINESS_TIMEZONE)


def _now_et() -> datetime:
    """Get current time in the business timezone. Extracted for test mocking."""
    return datetime.now(_ET)


# --- Caller-turn phrase lists ---

FILLER_ONLY = re.compile(r"^(um|uh|hmm|mhm|ah|uh-huh|mm-hmm)+$")

SHORT_ANSWERS = {"no", "ok", "si", "sí"}

GOODBYE_PHRASES = {
    "bye", "goodbye", "good bye", "have a good day", "talk later",
    "see ya", "take care", "adios", "adiós", "chao", "hasta luego",
}

TRANSFER_PHRASES = {
    "transfer to randy", "talk to randy", "speak with randy",
    "get me randy", "connect me to randy",
}

ASSISTANT_TRANSFER_TRIGGERS = {"transferring you to randy", "transfer_to_randy"}

OVERRIDE_YES = re.compile(
    r"^(yes|si|sí|correcto|ok|okay|adelante|continue|confirmo|afirmativo|dale|claro)",
    re.IGNORECASE,
)
OVERRIDE_NO = re.compile(r"^(no|negativo|nunca|cancel|cancelar|espera|wait)", re.IGNORECASE)

CONFIRMATION_PHRASES = {
    "yes", "correct", "that's right", "sounds good", "looks good", "yeah",
    "yep", "yup", "affirmative", "that's correct", "all good", "perfect",
    "sí", "si", "correcto", "está bien", "esta bien", "así es", "asi es",
    "exacto", "perfecto", "bien", "ok", "dale", "eso es",
}


def is_noise_utterance(text: str) -> bool:
    """True for transcription fragments that should never reach the transcript."""
    t = text.strip().lower()
    if t.rstrip(".!?,") in SHORT_ANSWERS:
        return False
    if len(t) < 3:
        return True
    return bool(FILLER_ONLY.match(t.replace(" ", "")))


def is_goodbye(text: str) -> bool:
    t = text.strip().lower().rstrip(".!?")
    return t in GOODBYE_PHRASES


def is_transfer_request(text: str) -> bool:
    return contains_any(text, TRANSFER_PHRASES)


def is_confirmation(text: str) -> bool:
    return match_any_keyword(text, CONFIRMATION_PHRASES)


def classify_override_answer(text: str) -> str:
    """Classify a reply to the override question: yes, no or unclear."""
    t = text.strip().lower()
    if OVERRIDE_YES.match(t):
        return "yes"
    if OVERRIDE_NO.match(t):
        return "no"
    return "unclear"


# --- Spoken numbers ---

WORD_TO_DIGIT = {
    "zero": "0", "oh": "0",
    "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
}

# word -> (value, kind)
_ENGLISH_NUMBERS = {
    **{w: (int(d), "unit") for w, d in WORD_TO_DIGIT.items()},
    "ten": (10, "teen"), "eleven": (11, "teen"), "twelve": (12, "teen"),
    "thirteen": (13, "teen"), "fourteen": (14, "teen"), "fifteen": (15, "teen"),
    "sixteen": (16, "teen"), "seventeen": (17, "teen"), "eighteen": (18, "teen"),
    "nineteen": (19, "teen"),
    "twenty": (20, "tens"), "thirty": (30, "tens"), "forty": (40, "tens"),
    "fifty": (50, "tens"), "sixty": (60, "tens"), "seventy": (70, "tens"),
    "eighty": (80, "tens"), "ninety": (90, "tens"),
    "hundred": (100, "hundred"), "thousand": (1000, "thousand"),
}

_SPANISH_NUMBERS = {
    "cero": (0, "unit"), "uno": (1, "unit"), "dos": (2, "unit"), "tres": (3, "unit"),
    "cuatro": (4, "unit"), "cinco": (5, "unit"), "seis": (6, "unit"),
    "siete": (7, "unit"), "ocho": (8, "unit"), "nueve": (9, "unit"),
    "diez": (10, "teen"), "once": (11, "teen"), "doce": (12, "teen"),
    "trece": (13, "teen"), "catorce": (14, "teen"), "quince": (15, "teen"),
    "dieciseis": (16, "teen"), "dieciséis": (16, "teen"),
    "diecisiete": (17, "teen"), "dieciocho": (18, "teen"), "diecinueve": (19, "teen"),
    "veinte": (20, "tens"),
    "veintiuno": (21, "teen"), "veintidos": (22, "teen"), "veintidós": (22, "teen"),
    "veintitres": (23, "teen"), "veintitrés": (23, "teen"),
    "veinticuatro": (24, "teen"), "veinticinco": (25, "teen"),
    "veintiseis": (26, "teen"), "veintiséis": (26, "teen"),
    "veintisiete": (27, "teen"), "veintiocho": (28, "teen"), "veintinueve": (29, "teen"),
    "treinta": (30, "tens"), "cuarenta": (40, "tens"), "cincuenta": (50, "tens"),
    "sesenta": (60, "tens"), "setenta": (70, "tens"), "ochenta": (80, "tens"),
    "noventa": (90, "tens"),
    "cien": (100, "hundreds"), "ciento": (100, "hundreds"),
    "doscientos": (200, "hundreds"), "trescientos": (300, "hundreds"),
    "cuatrocientos": (400, "hundreds"), "quinientos": (500, "hundreds"),
    "seiscientos": (600, "hundreds"), "setecientos": (700, "hundreds"),
    "ochocientos": (800, "hundreds"), "novecientos": (900, "hundreds"),
    "mil": (1000, "thousand"),
}


def _number_run_pattern(lexicon: dict, connector: str) -> re.Pattern:
    words = sorted(lexicon, key=len, reverse=True)
    word = "(?:" + "|".join(re.escape(w) for w in words) + ")"
    return re.compile(
        rf"(?<!\w){word}(?:[\s,-]+(?:{connector}\s+)?{word})*(?!\w)",
        re.IGNORECASE,
    )


class _Group:
    """Accumulates one spoken number ("twenty four", "mil quinientos")."""

    def __init__(self):
        self.total = 0
        self.current = 0
        self.place = 0  # place value of the last token; 0 = empty group
        self.zero = False

    @property
    def empty(self) -> bool:
        return self.place == 0 and not self.zero

    def text(self) -> str:
        if self.zero and self.place == 0:
            return "0"
        return str(self.total + self.current)

    def accepts(self, value: int, kind: str) -> bool:
        if self.empty:
            return True
        if self.zero and self.place == 0:
            return False
        if kind == "hundred":
            return self.current < 100 and self.place < 100
        if kind == "thousand":
            return self.place < 1000 and self.total == 0
        if kind == "hundreds":
            return self.current == 0 and self.place >= 1000
        if kind in ("tens", "teen"):
            return self.current % 100 == 0 and self.place > 10
        # unit
        if value == 0:
            return False
        if self.place == 10:
            return self.current % 10 == 0
        return self.place >= 100 and self.current % 100 == 0

    def add(self, value: int, kind: str) -> None:
        if kind == "hundred":
            self.current = (self.current or 1) * 100
            self.place = 100
        elif kind == "thousand":
            self.total = (self.current or 1) * 1000
            self.current = 0
            self.place = 1000
        elif kind == "hundreds":
            self.current += value
            self.place = 100
        elif kind == "tens":
            self.current += value
            self.place = 10
        elif value == 0 and self.empty:
            self.zero = True
        else:
            self.current += value
            self.place = 1


def _run_to_digits(run: str, lexicon: dict) -> str:
    tokens = [t for t in re.split(r"[\s,-]+", run.lower()) if t and t in lexicon]
    out = []
    group = _Group()
    for tok in tokens:
        value, kind = lexicon[tok]
        if not group.accepts(value, kind):
            out.append(group.text())
            group = _Group()
        group.add(value, kind)
    if not group.empty:
        out.append(group.text())
    return "".join(out)


_ENGLISH_RUN = _number_run_pattern(_ENGLISH_NUMBERS, "and")
_SPANISH_RUN = _number_run_pattern(_SPANISH_NUMBERS, "y")


def spoken_to_digits(text: str) -> str:
    """Replace runs of English number words with digit strings.

    Groups are concatenated the way people read identifiers aloud:
    "twenty four five six seven" -> "24567", "three oh nine five" -> "3095".
    """
    if not text:
        return text
    return _ENGLISH_RUN.sub(lambda m: _run_to_digits(m.group(0), _ENGLISH_NUMBERS), text)


def convert_spanish_numbers_to_digits(text: str) -> str:
    """Replace runs of Spanish number words with digit strings.

    Handles "sesenta y siete" -> 67 and "veinticuatro mil quinientos sesenta
    y siete" -> 24567; separately spoken digits are concatenated.
    """
    if not text:
        return text
    return _SPANISH_RUN.sub(lambda m: _run_to_digits(m.group(0), _SPANISH_NUMBERS), text)


def normalize_spoken_numbers(text: str) -> str:
    return spoken_to_digits(convert_spanish_numbers_to_digits(text))


# --- RO / PO numbers ---

YEAR_LIKE = re.compile(r"^20(1[5-9]|2[0-9]|30)$")

_RO_PREFIX_PATTERNS = [
    re.compile(r"(?:\bro|\br\.o\.|\bpo|\bp\.o\.)\s*(?:is|es|number|numero|número|#|:)?\s*(\d{4,8})\b", re.IGNORECASE),
    re.compile(r"(?:repair\s*order|work\s*order|orden)\s*(?:#|:)?\s*(\d{4,8})\b", re.IGNORECASE),
]


def pad_ro(ro: str | None) -> str | None:
    if not ro:
        return ro
    digits = re.sub(r"\D", "", ro)
    if len(digits) < 4:
        return digits.rjust(4, "0")
    return digits


def extract_ro_from_text(text: str | None) -> str | None:
    """Find a 4-8 digit RO/PO in one utterance, English or Spanish.

    Prefixed forms ("RO 24567", "orden 24567") win over bare numbers; bare
    numbers skip model years and, when a VIN is being discussed, 4-digit
    VIN endings.
    """
    if not text:
        return None
    normalized = normalize_spoken_numbers(text)

    for pattern in _RO_PREFIX_PATTERNS:
        m = pattern.search(normalized)
        if m:
            return pad_ro(m.group(1))

    for num in re.findall(r"\b(\d{4,8})\b", normalized):
        if YEAR_LIKE.match(num):
            continue
        if len(num) == 4 and "vin" in normalized.lower():
            continue
        return pad_ro(num)
    return None


def validate_ro_po(value) -> tuple[bool, str, str]:
    """Validate an RO/PO for tool use.

    Returns (ok, digits, error_message).
    """
    raw = "" if value is None else str(value)
    digits = re.sub(r"\D", "", raw)
    if 4 <= len(digits) <= 8:
        return True, digits, ""
    return (
        False,
        digits,
        f'Invalid RO/PO format: "{raw}". RO must be 4-8 digits only (e.g., "24567"). '
        "Please ask for the correct RO number.",
    )


def is_valid_ro_candidate(
    value: str | None,
    caller_name: str | None = None,
    vin_context: bool = False,
) -> bool:
    """Rejection predicates for an extracted job identifier."""
    if not value:
        return False
    cleaned = value.strip()
    if re.match(r"^20(1[5-9]|2[0-9])$", cleaned):
        return False
    digits = sum(c.isdigit() for c in cleaned)
    letters = sum(c.isalpha() for c in cleaned)
    if digits < 3 or digits < letters:
        return False
    if len(cleaned) == 17:
        return False
    if vin_context and len(cleaned) == 4:
        return False
    if caller_name and cleaned.lower() == caller_name.strip().lower():
        return False
    return True
