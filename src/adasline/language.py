"""Caller language detection and the per-call language lock.

detect_language() is a pure classifier that returns "en", "es" or None
(None means the utterance must not influence the lock).  update_language()
applies the lock/hysteresis rules on top of it against a LanguageState.
"""

import logging
import re
from dataclasses import dataclass

from adasline.config import LANGUAGE_SWITCH_THRESHOLD
from adasline.session import LanguageState
from adasline.validation import contains_any, match_any_keyword

logger = logging.getLogger(__name__)

FOREIGN_SCRIPT = re.compile(
    "["
    "ऀ-ॿ"  # Devanagari
    "஀-௿"  # Tamil
    "؀-ۿ"  # Arabic
    "一-鿿"  # CJK
    "぀-ヿ"  # Kana
    "가-힯"  # Hangul
    "Ѐ-ӿ"  # Cyrillic
    "ÄäÖö"  # umlauts; whisper emits these for Finnish/German noise
    "]"
)

JUNK_PHRASES = {
    "phone from me", "do you want to cut it", "cut it", "phone from",
    "do you want", "want to cut", "the cut", "cut the",
    "continued", "tinued", "ontinued", "inued",
    "sequence", "handling", "peace",
}

JUNK_FILLERS = {"um", "uh", "hmm", "uh-huh", "mhm", "ah", "eh", "huh"}

SPANISH_REQUEST = re.compile(r"habla(s)?\s+espa(ñ|n)ol")

SPANISH_KEYWORDS = {
    "hola", "buenos", "buenas", "buenos días", "buenas tardes", "buenas noches",
    "bueno", "como estas", "cómo estás", "necesito", "puedes", "ayuda",
    "vehículo", "vehiculo", "calibración", "calibracion",
    "hablas español", "español", "en español",
    "taller", "por favor", "el carro", "el coche", "la camioneta",
    "número", "numero", "cuándo", "cuando", "dónde", "donde",
    "qué hora", "a qué hora", "para hoy", "para mañana",
    "me llamo", "mi nombre es", "estoy llamando",
    "listo", "está listo", "esta listo", "no está listo",
    "correcto", "exacto", "perfecto", "así es", "asi es",
    "a las", "de la tarde", "de la mañana", "de la manana",
    "con quién", "con quien", "qué", "cuál", "cual",
    "gracias", "muchas gracias", "mucho gusto",
    "es un", "es una", "para el", "para la",
}

# "del 2024", "un Ford"
SPANISH_PATTERNS = [
    re.compile(r"\bdel\s+(19|20)\d{2}\b"),
    re.compile(
        r"\bun\s+(ford|toyota|nissan|honda|chevrolet|chevy|kia|hyundai|mazda|bmw|"
        r"mercedes|volkswagen|jeep|dodge|ram|mustang|camry|accord|altima|civic|corolla)\b"
    ),
    re.compile(r"(?<!\w)sí(?!\w)"),
]

NEUTRAL_WORDS = {"yes", "yeah", "yep", "no", "ok", "okay"}
AMBIGUOUS_WORDS = NEUTRAL_WORDS | {"si", "sure", "right"}
NOISE_WORDS = {"bye", "goodbye", "peace", "thanks", "thank", "um", "uh", "hmm"}

INDUSTRY_TERMS = {
    "autosport", "auto sport", "paintmax", "paint max", "jmd", "ccnm", "reinaldo",
    "ford", "mustang", "toyota", "honda", "nissan", "chevrolet", "chevy", "gmc",
    "bmw", "mercedes", "audi", "volkswagen", "tesla", "kia", "hyundai", "mazda",
    "subaru", "jeep", "dodge", "ram", "chrysler", "lexus", "acura", "infiniti",
    "camry", "accord", "altima", "civic", "corolla", "f-150", "f150", "silverado",
    "ro", "po", "vin", "adas",
}

ENGLISH_INDICATORS = [
    "the", "is", "are", "what", "how", "can", "i'm", "my", "name", "from",
    "calling", "ready", "not ready", "vehicle", "shop",
]

MEANINGLESS = {"bye", "goodbye", "peace", "thanks", "thank you", "um", "uh", "hmm", "okay", "ok"}


def _words(t: str) -> list[str]:
    return t.split()


def is_spanish_request(text: str) -> bool:
    return bool(SPANISH_REQUEST.search(text.lower()))


def is_meaningful(text: str) -> bool:
    t = text.strip().lower()
    words = _words(t)
    if len(words) == 1 and words[0].strip(".,!?") in MEANINGLESS:
        return False
    return len(t) >= 3


def detect_language(text: str) -> str | None:
    """Classify one caller utterance as "en", "es" or None."""
    t = text.strip().lower()
    if not t:
        return None

    if FOREIGN_SCRIPT.search(t):
        logger.debug("Ignoring foreign-script text: %r", text)
        return None
    if contains_any(t, JUNK_PHRASES):
        return None

    words = _words(t)
    if len(words) <= 3 and match_any_keyword(t, JUNK_FILLERS):
        return None

    if any(p.search(t) for p in SPANISH_PATTERNS):
        return "es"
    if match_any_keyword(t, SPANISH_KEYWORDS):
        return "es"

    bare = [w.strip(".,!?") for w in words]
    if len(bare) == 1 and bare[0] in NEUTRAL_WORDS:
        return None
    if len(bare) <= 2 and all(w in AMBIGUOUS_WORDS for w in bare):
        return None
    if len(bare) == 1 and bare[0] in NOISE_WORDS:
        return None

    if all(w in INDUSTRY_TERMS for w in bare):
        logger.debug("Only industry terms, not locking language: %r", text)
        return None

    english = sum(1 for ind in ENGLISH_INDICATORS if match_any_keyword(t, [ind]))
    if english >= 2:
        return "en"
    return None


@dataclass
class LanguageDecision:
    language: str
    changed: bool = False
    # The turn that produced the change should interrupt and re-greet
    forced_spanish: bool = False
    first_lock: bool = False


def update_language(
    state: LanguageState,
    text: str,
    threshold: int = LANGUAGE_SWITCH_THRESHOLD,
) -> LanguageDecision:
    """Apply one caller utterance to the language lock.

    - An explicit "¿hablas español?" forces and locks Spanish.
    - The first classified utterance locks the language.
    - A locked language flips only after `threshold` consecutive
      full-sentence (3+ words, meaningful) utterances in the other language.
    - A same-language or unclassified utterance resets the counter; a short
      phrase in the other language leaves it as it is.
    """
    if is_spanish_request(text):
        changed = state.language != "es"
        state.language = "es"
        state.locked = True
        state.other_count = 0
        logger.info("Caller asked for Spanish, language locked to es")
        return LanguageDecision("es", changed=changed, forced_spanish=True)

    detected = detect_language(text)

    if not state.locked:
        if detected is None:
            return LanguageDecision(state.language)
        changed = state.language != detected
        state.language = detected
        state.locked = True
        state.other_count = 0
        logger.info("Language locked to %s", detected)
        return LanguageDecision(detected, changed=changed, first_lock=True)

    full_sentence = len(_words(text.strip())) >= 3 and is_meaningful(text)
    if detected is not None and detected != state.language:
        if not full_sentence:
            logger.debug("Short %s phrase, counter stays at %d", detected, state.other_count)
            return LanguageDecision(state.language)
        state.other_count += 1
        logger.info(
            "Other-language utterance (%s) %d/%d", detected, state.other_count, threshold
        )
        if state.other_count >= threshold:
            state.language = detected
            state.other_count = 0
            logger.info("Language switched to %s", detected)
            return LanguageDecision(detected, changed=True)
        return LanguageDecision(state.language)

    state.other_count = 0
    return LanguageDecision(state.language)
