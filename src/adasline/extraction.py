"""Ops field extraction from a call transcript.

Every field is resolved by a short list of strategies tried in order of how
much we trust the source:

1. the assistant's own confirmation summary (it has already applied any
   corrections the caller made),
2. the caller's direct answer to the question that asked for the field,
3. an explicit correction anywhere in caller speech ("no, the RO is ..."),
4. a scan of all caller text for field-shaped patterns.

Candidates then go through per-field rejection predicates.  A field nobody
could pin down stays None; it is never guessed.
"""

import logging
import re
from dataclasses import asdict, dataclass

from adasline.normalizers import SHOP_ALIASES, match_known_shop, normalize_shop_name
from adasline.validation import (
    extract_ro_from_text,
    is_valid_ro_candidate,
    normalize_spoken_numbers,
)

logger = logging.getLogger(__name__)


@dataclass
class OpsRecord:
    ro_number: str | None = None
    shop: str | None = None
    year: str | None = None
    make: str | None = None
    model: str | None = None
    vin_last4: str | None = None
    status: str | None = None  # "ready" | "not ready"
    scheduled: str | None = None  # raw phrase, normalized at log time
    notes: str | None = None
    caller_name: str | None = None

    @property
    def vehicle_info(self) -> str | None:
        if not (self.year and self.make and self.model):
            return None
        vehicle = f"{self.year} {self.make} {self.model}"
        if self.vin_last4:
            vehicle += f" (VIN ending {self.vin_last4})"
        return vehicle

    def missing_required(self) -> list[str]:
        """Fields that must be known before a record can be logged."""
        missing = []
        if not self.ro_number:
            missing.append("ro_number")
        if not self.shop:
            missing.append("shop")
        if not self.vehicle_info:
            missing.append("vehicle_info")
        if not self.status:
            missing.append("status")
        return missing

    def to_dict(self) -> dict:
        data = asdict(self)
        data["vehicle_info"] = self.vehicle_info
        return data


# --- Transcript helpers ---

def _lower(turn) -> str:
    return turn.text.lower()


def user_text(turns) -> str:
    return " ".join(t.text for t in turns if t.role == "user")


def confirmation_turns(turns) -> list:
    """Assistant turns that read something back for confirmation, oldest first."""
    return [
        t for t in turns
        if t.role == "assistant" and ("confirm" in _lower(t) or "confirmar" in _lower(t))
    ]


def answers_to(turns, is_question) -> list[tuple]:
    """(question, answer) pairs where the answer is the caller turn right after
    an assistant turn matching is_question.  An intervening assistant turn
    means the question went unanswered."""
    pairs = []
    for i, turn in enumerate(turns[:-1]):
        if turn.role != "assistant" or not is_question(_lower(turn)):
            continue
        nxt = turns[i + 1]
        if nxt.role == "user":
            pairs.append((turn, nxt))
    return pairs


def _question(*markers: str):
    return lambda lower: any(m in lower for m in markers)


def _question_re(pattern: str):
    compiled = re.compile(pattern, re.IGNORECASE)
    return lambda lower: bool(compiled.search(lower))


# --- Caller name ---

NOT_NAMES = {
    "yes", "yeah", "yep", "no", "okay", "ok", "hey", "hi", "hello", "help", "need",
    "got", "have", "the", "and", "for", "calling", "from", "here", "thank", "thanks",
    "thankyou", "you", "sorry", "excuse", "please", "sure", "right", "correct",
    "good", "great", "fine", "well", "do", "want", "cut", "phone", "continued",
    "tinued", "ontinued", "cont", "inued", "audio", "speaking", "unclear",
    "inaudible", "sequence", "handling", "peace", "nor", "antes", "um", "uh", "hmm",
    "uh-huh", "mhm", "ah", "eh", "huh", "uhh", "umm", "just", "like", "so", "that",
    "this", "what", "with", "about", "actually", "basically", "my", "name", "is",
    "it's", "its", "i'm", "im", "me", "let", "now", "gracias", "por", "favor",
    "bueno", "bien", "claro", "dale", "esta", "si", "como", "quien", "quién",
    "después", "despues", "ahora", "luego", "nunca", "siempre", "también",
    "tambien", "hola", "adiós", "adios", "mucho", "gusto", "tengo", "taller",
    "vehículo", "vehiculo", "listo", "lista", "correcto", "exacto", "perfecto",
    "empezar", "terminar", "confirmar", "registrar", "calibrar", "número", "numero",
    "ready", "waiting", "soy", "habla", "llamo", "mi", "nombre", "es",
    "autosport", "paintmax", "jmd", "ccnm", "reinaldo", "ford", "mustang", "toyota",
    "honda", "nissan", "ro", "po", "vin", "adas",
}

_DATE_WORDS = {
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "january", "february", "march", "april", "may", "june", "july", "august",
    "september", "october", "november", "december", "today", "tomorrow",
    "tonight", "morning", "afternoon", "evening", "noon", "week", "weekend",
    "lunes", "martes", "miércoles", "miercoles", "jueves", "viernes", "sábado",
    "sabado", "domingo", "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre", "hoy",
    "mañana", "manana", "tarde", "noche", "semana",
}
NOT_NAMES |= _DATE_WORDS

_JUNK_NAME_RESPONSES = [
    re.compile(p, re.IGNORECASE) for p in (
        r"^do\s+you", r"want\s+to\s+cut", r"phone\s+from", r"^continued",
        r"^sequence", r"^handling", r"^\s*[a-z]{1,2}\s*[.!?]?\s*$",
    )
]

_NAME_QUESTION = _question(
    "who am i speaking", "con quién", "con quien", "tengo el gusto", "your name",
    "tu nombre", "su nombre", "antes de empezar", "may i have your name",
    "who's calling", "who is calling",
)

_INTRO_PHRASE = re.compile(
    r"(?:this is|my name is|i'm|i am|it's|me llamo|habla|soy)\s+([A-Za-záéíóúñ]{2,15})",
    re.IGNORECASE,
)

# Name group is case-sensitive so "Great, let me..." never yields "Let".
_GREETING_NAME = [
    re.compile(p) for p in (
        r"(?i:nice to meet you),?\s+([A-Z][a-z]{2,15})(?:[.,!]|\s|$)",
        r"(?i:great),?\s+([A-Z][a-z]{2,15})(?:[.,!]|\s|$)",
        r"(?i:perfect),?\s+([A-Z][a-z]{2,15})(?:[.,!]|\s|$)",
        r"(?i:thanks?),?\s+([A-Z][a-z]{2,15})(?:[.,!]|\s|$)",
        r"(?i:got it),?\s+([A-Z][a-z]{2,15})(?:[.,!]|\s|$)",
        r"(?i:hi|hello),?\s+([A-Z][a-z]{2,15})(?:[.,!]|\s|$)",
        r"(?i:mucho gusto),?\s+([A-ZÁÉÍÓÚÑ][a-záéíóúñ]{2,15})(?:[.,!]|\s|$)",
        r"(?i:gracias),?\s+([A-ZÁÉÍÓÚÑ][a-záéíóúñ]{2,15})(?:[.,!]|\s|$)",
        r"(?i:genial),?\s+([A-ZÁÉÍÓÚÑ][a-záéíóúñ]{2,15})(?:[.,!]|\s|$)",
        r"(?i:perfecto),?\s+([A-ZÁÉÍÓÚÑ][a-záéíóúñ]{2,15})(?:[.,!]|\s|$)",
    )
]


def _title(word: str) -> str:
    return word[:1].upper() + word[1:].lower()


def _acceptable_name(word: str) -> bool:
    return len(word) >= 2 and word.lower() not in NOT_NAMES


def name_from_direct_answer(turns) -> str | None:
    """First usable name given in answer to "who am I speaking with?"."""
    for _, answer in answers_to(turns, _NAME_QUESTION):
        response = answer.text.strip()
        if any(p.search(response) for p in _JUNK_NAME_RESPONSES):
            logger.debug("Skipping junk name response %r", response)
            continue
        m = _INTRO_PHRASE.search(response)
        if m and _acceptable_name(m.group(1)):
            return _title(m.group(1))
        for word in response.split():
            clean = word.strip(".,!?¿¡")
            if clean[:1].isupper() and _acceptable_name(clean):
                return _title(clean)
        m = re.match(r"^([A-Za-záéíóúñ]{3,15})[.!]?$", response)
        if m and _acceptable_name(m.group(1)):
            return _title(m.group(1))
    return None


def name_from_assistant_greeting(turns) -> str | None:
    """Name the assistant echoed back ("Nice to meet you, Carlos")."""
    for turn in turns:
        if turn.role != "assistant":
            continue
        for pattern in _GREETING_NAME:
            m = pattern.search(turn.text)
            if m and _acceptable_name(m.group(1)):
                return _title(m.group(1))
    return None


def extract_caller_name(turns) -> str | None:
    direct = name_from_direct_answer(turns)
    echoed = name_from_assistant_greeting(turns)
    if echoed and direct and echoed != direct:
        logger.info("Caller name %r overridden by assistant greeting %r", direct, echoed)
    return echoed or direct


# --- RO / PO ---

_RO_QUESTION = _question_re(
    r"\b(?:ro|po)\b|r\.o\.|p\.o\.|repair order|work order|n[uú]mero de (?:ro|orden)"
)
_RO_MENTION = re.compile(r"\b(?:ro|po)\b|r\.o|p\.o|repair order|orden", re.IGNORECASE)
_RO_IN_CONFIRMATION = re.compile(r"(?:\bro\b|r\.o\.|\bpo\b|p\.o\.)\s*[\s#:]*(\d{3,10})", re.IGNORECASE)
_RO_DIRECT = [
    re.compile(r"\b(\d{3,10})\b"),
    re.compile(r"\b([A-Z]?\d{3,}[A-Z]?)\b", re.IGNORECASE),
]
_RO_CORRECTIONS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"(?:actually|no,?\s*it'?s?|correction|the ro is|ro is|po is)\s*[\s#:]*(\d[\d\s\-]{2,15}\d)",
        r"(?:\bro|\bpo|r\.o\.|p\.o\.)\s*(?:number)?\s*[\s#:]*(\d[\d\s\-]{2,15}\d)",
        r"(?:el\s+)?(?:\bro|\bpo|r\.o\.|p\.o\.)\s*(?:es|es el)\s*(?:el\s+)?(\d[\d\s\-]{2,15}\d)",
    )
]


def _has_vin_context(*texts: str) -> bool:
    return any(re.search(r"\bvin\b|v\.i\.n|terminado en|ending", t, re.IGNORECASE) for t in texts)


def ro_from_confirmation(turns) -> str | None:
    for turn in reversed(confirmation_turns(turns)):
        m = _RO_IN_CONFIRMATION.search(turn.text)
        if m:
            return m.group(1)
    return None


def ro_from_corrections(turns, caller_name: str | None = None) -> str | None:
    """Most recent explicit RO statement/correction in caller speech."""
    found = None
    for turn in turns:
        if turn.role != "user" or not _RO_MENTION.search(turn.text):
            continue
        text = normalize_spoken_numbers(turn.text)
        for pattern in _RO_CORRECTIONS:
            for m in pattern.finditer(text):
                candidate = re.sub(r"[\s\-]", "", m.group(1)).upper()
                if 3 <= len(candidate) <= 10 and is_valid_ro_candidate(candidate, caller_name):
                    found = candidate
    return found


def ro_from_direct_answers(turns, caller_name: str | None = None) -> str | None:
    """Most recent valid answer to an RO question."""
    found = None
    for question, answer in answers_to(turns, _RO_QUESTION):
        text = normalize_spoken_numbers(answer.text.strip())
        vin_context = _has_vin_context(question.text, answer.text)
        for pattern in _RO_DIRECT:
            m = pattern.search(text)
            if m:
                candidate = m.group(1).upper()
                if is_valid_ro_candidate(candidate, caller_name, vin_context):
                    found = candidate
                else:
                    logger.debug("Rejected RO candidate %r from direct answer", candidate)
                break
    return found


def ro_from_caller_text(turns, caller_name: str | None = None) -> str | None:
    for turn in reversed([t for t in turns if t.role == "user"]):
        candidate = extract_ro_from_text(turn.text)
        if candidate and is_valid_ro_candidate(candidate, caller_name, _has_vin_context(turn.text)):
            return candidate
    return None


def extract_ro(turns, caller_name: str | None = None) -> str | None:
    confirmed = ro_from_confirmation(turns)
    if confirmed and is_valid_ro_candidate(confirmed, caller_name):
        return confirmed
    for strategy in (ro_from_corrections, ro_from_direct_answers, ro_from_caller_text):
        candidate = strategy(turns, caller_name)
        if candidate:
            logger.debug("RO %s found by %s", candidate, strategy.__name__)
            return candidate
    return None


# --- Shop ---

SHOP_JUNK_PHRASES = [
    "la tarde", "la mañana", "la noche", "de la tarde", "de la mañana", "de la noche",
    "por la tarde", "por la mañana", "por la noche", "peace", "bye", "goodbye",
    "thanks", "gracias", "a las", "el miércoles", "el lunes", "el martes",
    "el jueves", "el viernes", "hoy", "mañana", "manana", "tarde", "noche",
    "continued", "sequence", "handling", "phone from",
]

CALLER_FIRST_NAMES = {
    "randy", "sandy", "carlos", "mike", "john", "jose", "david", "james", "robert",
    "michael", "william", "richard", "joseph", "thomas", "charles", "daniel",
    "matthew", "anthony", "mark", "donald", "steven", "paul", "andrew", "joshua",
    "kenneth", "kevin", "brian", "george", "timothy", "ronald", "edward", "jason",
    "jeffrey", "ryan", "jacob", "gary", "nicholas", "eric", "jonathan", "stephen",
    "larry", "justin", "scott", "brandon", "benjamin", "samuel", "raymond",
    "gregory", "frank", "alexander", "patrick", "jack", "dennis", "jerry", "tyler",
    "aaron", "adam", "nathan", "henry", "douglas", "zachary", "peter", "kyle",
    "noah", "ethan", "jeremy", "walter", "christian", "keith", "roger", "terry",
    "austin", "sean", "gerald", "carl", "dylan", "harold", "jordan", "jesse",
    "bryan", "lawrence", "arthur", "gabriel", "bruce", "albert", "willie", "alan",
    "wayne", "elijah", "juan", "louis", "russell", "vincent", "philip", "bobby",
    "johnny", "bradley", "maria", "ana", "carmen", "rosa", "elena", "lucia",
    "isabel", "sofia", "pedro", "luis", "miguel", "jorge", "fernando", "manuel",
    "francisco", "antonio", "ricardo", "alberto", "roberto",
}

_SHOP_IN_CONFIRMATION = re.compile(
    r"(?:shop\s+(?:is\s+)?|taller\s+(?:es\s+)?)([a-záéíóúñ0-9\s&'.-]+?)"
    r"(?:,|\.(?:\s|$)|veh[ií]culo|vehicle|20\d{2}|\s+ro\s|\s+estado|$)",
    re.IGNORECASE,
)
_SHOP_QUESTION = _question(
    "what shop", "which shop", "calling from", "qué taller", "que taller", "de qué taller",
    "name of the shop", "nombre del taller",
)
_SHOP_FROM_PHRASE = re.compile(r"(?:calling from|\bfrom|llamando del?|somos del?|soy del?)\s+(.+)$", re.IGNORECASE)
_SHOP_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"(?:calling from|from)\s+([a-z0-9\s&'.-]{2,25})",
        r"(?:shop name is|shop is|the shop is|shop's)\s+([a-z0-9\s&'.-]{2,25})",
        r"(?:taller\s+(?:es|se llama))\s+([a-z0-9\s&'.-]{2,25})",
        r"(?:\bde)\s+([a-z0-9\s&'.-]{2,25})\s+(?:body\s*shop|taller)",
    )
]
_SHOP_STOP = re.compile(
    r"\s+(?:and|with|about|for|to|i|we|calling|have|y|con|para|que|tengo|por)\b.*$",
    re.IGNORECASE,
)
_SHOP_VEHICLE_WORDS = re.compile(r"\b(19|20)\d{2}\b|\b(toyota|honda|ford|nissan|camry|accord|f-150)\b", re.IGNORECASE)
_SHOP_FILLER = {"the shop", "the", "a", "an", "that", "our", "my", "here", "this is", "hi", "hello", "yes", "no"}


def is_junk_shop(candidate: str) -> bool:
    lower = candidate.lower()
    if any(junk in lower for junk in SHOP_JUNK_PHRASES):
        return True
    first = lower.split()[0] if lower.split() else ""
    return first in CALLER_FIRST_NAMES


def _clean_shop(raw: str) -> str:
    cleaned = raw.strip()
    cleaned = _SHOP_STOP.sub("", cleaned)
    cleaned = re.sub(r"[.,:;!?]+\s*[A-Za-z]?$", "", cleaned)
    cleaned = re.sub(r"\s+(sí|si|no|es|el|la|un|una|de|del|y|o|correct|correcto)$", "", cleaned, flags=re.IGNORECASE)
    return cleaned.strip()


def shop_from_confirmation(turns) -> str | None:
    for turn in reversed(confirmation_turns(turns)):
        m = _SHOP_IN_CONFIRMATION.search(turn.text)
        if m:
            candidate = _clean_shop(m.group(1))
            if len(candidate) >= 3 and not is_junk_shop(candidate):
                return normalize_shop_name(candidate)
            logger.debug("Rejected shop %r from confirmation", candidate)
        known = match_known_shop(turn.text)
        if known:
            return known
    return None


def shop_from_direct_answer(turns) -> str | None:
    for _, answer in answers_to(turns, _SHOP_QUESTION):
        response = answer.text.strip()
        if is_junk_shop(response):
            logger.debug("Rejected junk shop answer %r", response)
            continue
        known = match_known_shop(response)
        if known:
            return known
        m = _SHOP_FROM_PHRASE.search(response)
        candidate = _clean_shop(m.group(1) if m else response)
        if len(candidate) >= 3 and not is_junk_shop(candidate):
            return normalize_shop_name(candidate)
    return None


def shop_from_caller_text(turns) -> str | None:
    text = user_text(turns)
    known = None
    last_pos = -1
    lower = text.lower()
    for canonical, aliases in SHOP_ALIASES.items():
        for alias in aliases:
            pos = lower.rfind(alias)
            if pos > last_pos:
                known, last_pos = canonical, pos
    if known:
        return known

    for pattern in _SHOP_PATTERNS:
        m = pattern.search(text)
        if not m:
            continue
        candidate = _clean_shop(m.group(1))
        if (
            len(candidate) >= 3
            and candidate.lower() not in _SHOP_FILLER
            and not is_junk_shop(candidate)
            and not _SHOP_VEHICLE_WORDS.search(candidate)
        ):
            return normalize_shop_name(candidate)
    return None


def extract_shop(turns) -> str | None:
    for strategy in (shop_from_confirmation, shop_from_direct_answer, shop_from_caller_text):
        shop = strategy(turns)
        if shop and not is_junk_shop(shop):
            return shop
    return None


# --- Vehicle ---

MAKES = {
    "toyota": "Toyota", "lexus": "Lexus", "honda": "Honda", "acura": "Acura",
    "ford": "Ford", "lincoln": "Lincoln", "chevrolet": "Chevrolet", "chevy": "Chevrolet",
    "gmc": "GMC", "buick": "Buick", "cadillac": "Cadillac", "nissan": "Nissan",
    "infiniti": "Infiniti", "mercedes": "Mercedes-Benz", "benz": "Mercedes-Benz",
    "bmw": "BMW", "audi": "Audi", "volkswagen": "Volkswagen", "vw": "Volkswagen",
    "tesla": "Tesla", "subaru": "Subaru", "mazda": "Mazda", "hyundai": "Hyundai",
    "kia": "Kia", "jeep": "Jeep", "ram": "Ram", "dodge": "Dodge", "chrysler": "Chrysler",
    "volvo": "Volvo", "porsche": "Porsche", "land rover": "Land Rover", "jaguar": "Jaguar",
    "genesis": "Genesis", "mini": "MINI", "mitsubishi": "Mitsubishi",
}

_MAKE_RE = re.compile(r"\b(" + "|".join(re.escape(k) for k in MAKES) + r")\b", re.IGNORECASE)
_YEAR = re.compile(r"\b(199\d|20[0-2]\d)\b")
_VEHICLE_QUESTION = _question(
    "year, make", "make and model", "what vehicle", "which vehicle", "what car",
    "año, marca", "marca y modelo", "qué vehículo", "que vehiculo",
)
_MODEL_TOKEN = re.compile(r"[a-záéíóúñ0-9\-]+", re.IGNORECASE)
MODEL_SKIP_WORDS = {
    "with", "for", "on", "the", "has", "is", "was", "are", "and", "del", "de", "el",
    "la", "un", "una", "es", "y", "sí", "si", "no", "that", "it", "ro", "vin",
}
_TRIM_WORDS = {"hybrid", "sport", "limited", "touring", "plus", "max", "cab", "crew", "pro", "premium", "series", "class"}
_VEHICLE_IN_CONFIRMATION = [
    re.compile(r"\b(20\d{2})\s+([A-Za-z-]+)\s+([A-Za-záéíóúñ0-9-]+)"),
    # "un Honda Accord del 2024"
    re.compile(r"\b([A-Za-z-]+)\s+([A-Za-záéíóúñ0-9-]+)\s+del?\s+(20\d{2})\b"),
]


def _model_after(text: str, start: int) -> str | None:
    tokens = _MODEL_TOKEN.findall(text[start:start + 40])
    if not tokens or tokens[0].lower() in MODEL_SKIP_WORDS or _YEAR.fullmatch(tokens[0]):
        return None
    model = tokens[0]
    if len(tokens) > 1:
        second = tokens[1]
        if second.lower() not in MODEL_SKIP_WORDS and not _YEAR.fullmatch(second) and (
            (second.isdigit() and len(second) <= 3)
            or (any(c.isdigit() for c in second) and any(c.isalpha() for c in second))
            or (second.isupper() and len(second) <= 3)
            or second.lower() in _TRIM_WORDS
        ):
            model = f"{model} {second}"
    if len(model) < 2:
        return None
    return model[0].upper() + model[1:] if model.islower() else model


def vehicle_from_confirmation(turns) -> tuple[str | None, str | None, str | None]:
    for turn in reversed(confirmation_turns(turns)):
        m = _VEHICLE_IN_CONFIRMATION[0].search(turn.text)
        if m and m.group(2).lower() in MAKES:
            return m.group(1), MAKES[m.group(2).lower()], m.group(3)
        m = _VEHICLE_IN_CONFIRMATION[1].search(turn.text)
        if m and m.group(1).lower() in MAKES:
            return m.group(3), MAKES[m.group(1).lower()], m.group(2)
    return None, None, None


def year_from_caller(turns) -> str | None:
    years = []
    for _, answer in answers_to(turns, _VEHICLE_QUESTION):
        years.extend(_YEAR.findall(answer.text))
    if not years:
        years = _YEAR.findall(user_text(turns))
    return years[-1] if years else None


def make_model_from_caller(turns) -> tuple[str | None, str | None]:
    text = user_text(turns)
    matches = list(_MAKE_RE.finditer(text))
    if not matches:
        return None, None
    last = matches[-1]
    return MAKES[last.group(1).lower()], _model_after(text, last.end())


def extract_vehicle(turns) -> tuple[str | None, str | None, str | None]:
    year, make, model = vehicle_from_confirmation(turns)
    if year and make and model:
        return year, make, model
    caller_year = year_from_caller(turns)
    caller_make, caller_model = make_model_from_caller(turns)
    return year or caller_year, make or caller_make, model or caller_model


# --- VIN suffix ---

VIN_WORDS = {
    "zero": "0", "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
    "cero": "0", "uno": "1", "dos": "2", "tres": "3", "cuatro": "4",
    "cinco": "5", "seis": "6", "siete": "7", "ocho": "8", "nueve": "9",
    "diez": "10", "once": "11", "doce": "12", "trece": "13", "catorce": "14",
    "quince": "15", "dieciséis": "16", "dieciseis": "16", "diecisiete": "17",
    "dieciocho": "18", "diecinueve": "19", "veinte": "20",
    "veintiuno": "21", "veintidós": "22", "veintidos": "22", "veintitrés": "23",
    "veintitres": "23", "veinticuatro": "24", "veinticinco": "25",
    "veintiséis": "26", "veintiseis": "26", "veintisiete": "27", "veintiocho": "28",
    "veintinueve": "29",
}

_VIN_CHAR = r"[A-HJ-NPR-Z0-9]"
_VIN_LEAD = r"(?:vin|v\.i\.n\.?)(?:\s+(?:number\s+is|number|ending\s+in|ending|ends\s+in|is|terminado\s+en|termina\s+en|terminado|termina))?"
_ENDING_LEAD = r"(?:ending\s+in|ending|ends\s+with|ends\s+in|last\s+four|last\s+4|terminado\s+en|termina\s+en|[uú]ltimos\s+cuatro)"

_VIN_FULL = re.compile(rf"\b({_VIN_CHAR}{{17}})\b", re.IGNORECASE)
_VIN_LAST4 = re.compile(rf"{_VIN_LEAD}[\s:]*({_VIN_CHAR}{{4}})\b", re.IGNORECASE)
_VIN_ENDING = re.compile(rf"{_ENDING_LEAD}(?:\s+(?:is|es))?[\s:]+({_VIN_CHAR}{{4}})\b", re.IGNORECASE)
_VIN_SPLIT = re.compile(
    rf"(?:{_VIN_LEAD}|{_ENDING_LEAD})(?:\s+(?:is|es))?[\s:]+"
    rf"({_VIN_CHAR})[\s,\-]+({_VIN_CHAR})[\s,\-]+({_VIN_CHAR})[\s,\-]+({_VIN_CHAR})\b",
    re.IGNORECASE,
)
_VIN_NATURAL = re.compile(r"\b([0-9])[\s,]+([0-9])[\s,]+([0-9])[\s,]+([0-9])\b")
_VIN_WORDS4 = re.compile(
    rf"(?:{_VIN_LEAD}|{_ENDING_LEAD})(?:\s+(?:is|es))?[\s:]+(\w+)\s+(\w+)\s+(\w+)\s+(\w+)\b",
    re.IGNORECASE,
)
_VIN_WORDS3 = re.compile(
    rf"(?:{_VIN_LEAD}|{_ENDING_LEAD})(?:\s+(?:is|es))?[\s:]+(\w+)\s+(\w+)\s+(\w+)\b",
    re.IGNORECASE,
)
_VIN_IN_CONFIRMATION = re.compile(
    r"VIN\s+(?:ending(?:\s+in)?|terminado\s+en|que\s+termina\s+en)\s+([A-Z0-9]{4})\b", re.IGNORECASE
)


def _has_digit(value: str) -> bool:
    return any(c.isdigit() for c in value)


def vin_from_confirmation(turns) -> str | None:
    for turn in reversed([t for t in turns if t.role == "assistant"]):
        m = _VIN_IN_CONFIRMATION.search(turn.text)
        if m and _has_digit(m.group(1)):
            return m.group(1).upper()
    return None


def vin_candidates(text: str, allow_bare_digits: bool = False) -> list[tuple[int, str]]:
    """Every VIN-suffix reading in caller text as (position, suffix)."""
    found = []
    for m in _VIN_FULL.finditer(text):
        if _has_digit(m.group(1)):
            found.append((m.start(), m.group(1)[-4:].upper()))
    for pattern in (_VIN_LAST4, _VIN_ENDING):
        for m in pattern.finditer(text):
            if _has_digit(m.group(1)):
                found.append((m.start(), m.group(1).upper()))
    for m in _VIN_SPLIT.finditer(text):
        value = "".join(m.groups()).upper()
        if _has_digit(value):
            found.append((m.start(), value))
    if allow_bare_digits:
        for m in _VIN_NATURAL.finditer(text):
            found.append((m.start(), "".join(m.groups())))
    for m in _VIN_WORDS4.finditer(text):
        digits = [VIN_WORDS.get(w.lower()) for w in m.groups()]
        if all(d and len(d) == 1 for d in digits):
            found.append((m.start(), "".join(digits)))
    # "cero cinco veintiséis" -> 0526
    for m in _VIN_WORDS3.finditer(text):
        digits = [VIN_WORDS.get(w.lower()) for w in m.groups()]
        if all(digits) and len(digits[0]) == 1 and len(digits[1]) == 1 and len(digits[2]) == 2:
            found.append((m.start(), "".join(digits)))
    return found


def extract_vin_last4(turns, have_vehicle: bool = False) -> str | None:
    confirmed = vin_from_confirmation(turns)
    if confirmed:
        return confirmed
    candidates = vin_candidates(user_text(turns), allow_bare_digits=have_vehicle)
    if not candidates:
        return None
    return max(candidates, key=lambda c: c[0])[1]


# --- Readiness status ---

NOT_READY_PHRASES = [
    "not ready", "isn't ready", "not yet ready", "not currently ready",
    "is not ready", "still not ready", "isn't ready yet",
    "no está listo", "no esta listo", "no listo", "no está lista", "no esta lista",
    "todavía no está listo", "todavia no esta listo",
    "todavía no", "todavia no", "aún no", "aun no",
    "no está preparado", "no esta preparado",
]

READY_PHRASES = [
    "está listo", "esta listo", "está lista", "esta lista",
    "sí, listo", "si, listo", "sí listo", "si listo", "ya está listo", "ya esta listo",
    "listo para calibrar", "lista para calibrar", "preparado", "preparada",
]
_READY_WORD = re.compile(r"\b(ready|listo|lista)\b")


def status_from_confirmation(turns) -> str | None:
    for turn in reversed(confirmation_turns(turns)):
        conf = _lower(turn)
        if any(p in conf for p in ("status not ready", "estado no", "no está listo", "no listo", "not ready")):
            return "not ready"
        if "status ready" in conf or "estado listo" in conf or ("estado" in conf and "listo" in conf):
            return "ready"
    return None


def status_from_utterance(text: str) -> str | None:
    lower = text.lower()
    if any(p in lower for p in NOT_READY_PHRASES):
        return "not ready"
    if any(p in lower for p in READY_PHRASES) or _READY_WORD.search(lower):
        return "ready"
    return None


def status_from_caller(turns) -> str | None:
    # newest statement wins so a second vehicle's status replaces the first
    for turn in reversed(turns):
        if turn.role == "user":
            status = status_from_utterance(turn.text)
            if status:
                return status
    return None


def extract_status(turns) -> str | None:
    return status_from_confirmation(turns) or status_from_caller(turns)


# --- Scheduled date/time ---

_TIME = r"\d{1,2}(?::\d{2})?\s*(?:am|pm|a\.m\.|p\.m\.)?"
_DAYS_EN = r"monday|tuesday|wednesday|thursday|friday|saturday|sunday"
_DAYS_ES = r"lunes|martes|mi[eé]rcoles|jueves|viernes|s[aá]bado|domingo"
_MONTHS = r"january|february|march|april|may|june|july|august|september|october|november|december"
_DAYPART_ES = r"de la tarde|de la mañana|de la manana|de la noche"

_SCHEDULED_IN_CONFIRMATION = [
    re.compile(r"programado\s+(?:para\s+)?(.+?)(?:,|\bnotas?\b|\bnotes?\b|\.(?=\s|$)|$)", re.IGNORECASE),
    re.compile(r"scheduled\s+(?:for\s+)?(.+?)(?:,|\bnotes?\b|\.(?=\s|$)|$)", re.IGNORECASE),
]
_SCHEDULED_COMBINED = [
    re.compile(p, re.IGNORECASE) for p in (
        rf"\b({_DAYS_EN})\s+(?:at|around)\s+({_TIME})",
        rf"\b(today|tomorrow)\s+(?:at|around)\s+({_TIME})",
        rf"\b({_MONTHS})\s+(\d{{1,2}}(?:st|nd|rd|th)?)\s+(?:at|around)\s+({_TIME})",
        rf"\b(\d{{1,2}}/\d{{1,2}}(?:/\d{{2,4}})?)\s+(?:at|around)\s+({_TIME})",
        rf"(?:para\s+)?\b(hoy|mañana|manana)\s+(?:a las?|a eso de las?)\s+([\w\s]+?(?:{_DAYPART_ES}))",
        rf"(?:para\s+)?\b({_DAYS_ES})\s+(?:a las?|a eso de las?)\s+([\w\s]+?(?:{_DAYPART_ES}))",
        rf"(?:para\s+)?\b(hoy|mañana|manana)\s+(?:a las?)\s+(\d{{1,2}}(?::\d{{2}})?(?:\s*(?:am|pm|a\.m\.|p\.m\.))?)",
    )
]
_SCHEDULED_DATE = [
    re.compile(p, re.IGNORECASE) for p in (
        r"(?:on|for|scheduled)\s+(\d{1,2}/\d{1,2}(?:/\d{2,4})?)",
        rf"(?:on|for|scheduled)\s+({_MONTHS})\s+(\d{{1,2}}(?:st|nd|rd|th)?)",
        rf"\b({_DAYS_EN})\b",
        r"\b(today|tomorrow)\b",
        r"(?<!la\s)\b(hoy|mañana|manana)\b",
        rf"\b({_DAYS_ES})\b",
    )
]
_SCHEDULED_TIME_ES = [
    re.compile(p, re.IGNORECASE) for p in (
        rf"a\s+las?\s+([\w\s]+?(?:{_DAYPART_ES}))",
        r"a\s+las?\s+(\d{1,2}(?::\d{2})?(?:\s*(?:am|pm|a\.m\.|p\.m\.))?)",
    )
]
_SCHEDULED_TIME_EN = [
    re.compile(p, re.IGNORECASE) for p in (
        r"(?:at|around)\s+(\d{1,2}(?::\d{2})?\s*(?:am|pm|a\.m\.|p\.m\.))",
        r"\b(\d{1,2}(?::\d{2})?\s*(?:am|pm|a\.m\.|p\.m\.))",
        r"(?:at|around)\s+(\d{1,2})\s*(?:o'clock|oclock)",
        r"(?:at|around)\s+(\d{1,2}:\d{2})",
        r"(?:at|around)\s+(\d{1,2})\b(?!:|\d)",
    )
]
_SCHEDULED_ASSISTANT = [
    re.compile(r"scheduled\s+(?:for\s+)?([A-Za-z]+(?:\s+at\s+\d{1,2}(?::\d{2})?\s*(?:am|pm|a\.m\.|p\.m\.)?)?)", re.IGNORECASE),
    re.compile(r"programado\s+(?:para\s+)?(.+?)(?:,|\.\s|\s+notas|\s+notes)", re.IGNORECASE),
]


def scheduled_from_confirmation(turns) -> str | None:
    for turn in reversed(confirmation_turns(turns)):
        for pattern in _SCHEDULED_IN_CONFIRMATION:
            m = pattern.search(turn.text)
            if m and m.group(1).strip():
                return m.group(1).strip()
    return None


def _combined_schedule(text: str) -> str | None:
    for pattern in _SCHEDULED_COMBINED:
        matches = list(pattern.finditer(text))
        if not matches:
            continue
        g = matches[-1].groups()
        if len(g) == 3:
            return f"{g[0]} {g[1]} at {g[2].strip()}"
        connector = "a las" if re.match(rf"hoy|mañana|manana|{_DAYS_ES}", g[0], re.IGNORECASE) else "at"
        return f"{g[0]} {connector} {g[1].strip()}"
    return None


def _last_match(patterns, text: str):
    for pattern in patterns:
        matches = list(pattern.finditer(text))
        if matches:
            return matches[-1]
    return None


def scheduled_from_caller(turns) -> str | None:
    user_turns = [t for t in turns if t.role == "user"]
    for turn in reversed(user_turns):
        combined = _combined_schedule(turn.text)
        if combined:
            return combined

    text = " ".join(t.text for t in user_turns)
    parts = []
    date_match = _last_match(_SCHEDULED_DATE, text)
    if date_match:
        parts.append(" ".join(g for g in date_match.groups() if g))
    time_match = _last_match(_SCHEDULED_TIME_ES, text)
    if time_match:
        parts.append(f"a las {time_match.group(1).strip()}")
    else:
        time_match = _last_match(_SCHEDULED_TIME_EN, text)
        if time_match:
            parts.append(f"at {time_match.group(1).strip()}")
    return " ".join(parts) or None


def scheduled_from_assistant(turns) -> str | None:
    text = " ".join(t.text for t in turns if t.role == "assistant")
    for pattern in _SCHEDULED_ASSISTANT:
        m = pattern.search(text)
        if m and m.group(1).strip():
            return m.group(1).strip()
    return None


def extract_scheduled(turns) -> str | None:
    return scheduled_from_confirmation(turns) or scheduled_from_caller(turns) or scheduled_from_assistant(turns)


# --- Notes ---

_NOTES_QUESTION = [
    re.compile(p, re.IGNORECASE) for p in (
        r"any\s*(other\s*)?(notes?|special|additional)",
        r"notes?\s*for\s*(the\s*)?(vehicle|this)",
        r"anything\s*(else\s*)?(to\s*add|to\s*note|special)",
        r"alguna\s*nota",
        r"algo\s*m[aá]s",
    )
]
_NO_NOTES = [
    re.compile(p, re.IGNORECASE) for p in (
        r"^(no|none|nothing|nope|nah)$",
        r"^no\s*(notes?)?$",
        r"^(that'?s?\s*(all|it)|nothing\s*else)$",
        r"^(no|nada|ninguno|ninguna|no\s*hay|sin\s*notas?)$",
        r"^(não|nao|nenhum|nenhuma)$",
    )
]
_NOT_NOTES = [
    re.compile(p, re.IGNORECASE) for p in (
        r"^(yes|yeah|yep|yup|correct|that'?s?\s*right|sounds?\s*good|looks?\s*good|perfect|all\s*good|ok|okay|affirmative|sí|si|claro|dale|perfecto|está\s*bien)$",
        r"^(yes|yeah|sí),?\s*(that'?s?\s*(right|correct)|sounds?\s*good|correcto)$",
    )
]
_DATE_TIME_ONLY = [
    re.compile(p, re.IGNORECASE) for p in (
        rf"^(today|tomorrow|{_DAYS_EN})",
        rf"^(hoy|mañana|manana|{_DAYS_ES})",
        r"^\d{1,2}(:\d{2})?\s*(am|pm|a\.m\.|p\.m\.)?$",
        r"^\d{1,2}/\d{1,2}",
        r"^at\s+\d",
        r"^a\s+las?\s+\d",
        r"^(this\s+)?(morning|afternoon|evening)",
        r"^(esta\s+)?(mañana|tarde|noche)",
        r"^in\s+the\s+(morning|afternoon|evening)",
        r"^(por|en)\s+la\s+(mañana|tarde|noche)",
        r"de\s+la\s+(mañana|tarde|noche)",
        r"por\s+la\s+(mañana|tarde|noche)",
        r"a\s+las?\s+\d.*p\.?m\.?",
        r"^(next|this)\s+(week|month|monday|tuesday|wednesday|thursday|friday)",
        r"^(la\s+)?(próxima|proxima|esta)\s+(semana)",
    )
]


def last_notes_answer(turns) -> str | None:
    """The caller turn right after the most recent notes question."""
    for i in range(len(turns) - 1, -1, -1):
        turn = turns[i]
        if turn.role != "assistant" or not any(p.search(turn.text) for p in _NOTES_QUESTION):
            continue
        if i + 1 < len(turns) and turns[i + 1].role == "user":
            return turns[i + 1].text.strip()
        return None
    return None


def is_rejected_notes(response: str) -> bool:
    trimmed = response.strip().rstrip(".!").strip()
    return (
        any(p.search(trimmed) for p in _NO_NOTES)
        or any(p.search(trimmed) for p in _NOT_NOTES)
        or any(p.search(trimmed) for p in _DATE_TIME_ONLY)
    )


def extract_notes(turns) -> str | None:
    response = last_notes_answer(turns)
    if not response:
        return None
    if is_rejected_notes(response):
        logger.debug("Notes answer %r discarded", response)
        return None
    if not 2 <= len(response) < 200:
        return None
    return response


# --- Confirmation summaries ---

_CONFIRM_PHRASES = [
    "let me confirm", "to confirm", "just to confirm", "confirming",
    "déjame confirmar", "dejame confirmar", "para confirmar", "confirmando",
]
_CONFIRM_QUESTIONS = [
    "does everything sound correct", "is that all correct", "does all that sound",
    "does that sound right", "is everything correct", "is that correct",
    "todo está correcto", "todo correcto", "está todo correcto", "esta todo correcto",
    "suena bien todo", "todo suena bien", "es correcto",
]


def summary_fields(text: str) -> dict[str, bool]:
    """Which record fields an assistant utterance mentions."""
    lower = text.lower()
    return {
        "ro": bool(re.search(r"(?:\b(?:ro|po)\b|r\.o\.|p\.o\.)\s*[\s#:]*\d+", lower)),
        "shop": "shop" in lower or "taller" in lower or match_known_shop(lower) is not None,
        "vehicle": bool(re.search(r"\b20\d{2}\b", lower)) and bool(_MAKE_RE.search(lower)),
        "vin": "vin" in lower or "ending" in lower or bool(re.search(r"\b\d{4}\b", lower)),
        "status": bool(re.search(r"\b(ready|listo|lista|status|estado)\b", lower)),
        "scheduled": bool(
            re.search(r"scheduled|programado|today|tomorrow|\bhoy\b|mañana|" + _DAYS_EN, lower)
            or re.search(r"\b\d{1,2}\s*(am|pm|a\.m\.|p\.m\.)", lower)
            or re.search(r"\b(at|a las?)\s*\d", lower)
        ),
        "notes": bool(re.search(r"\b(notes?|notas?|none|nada|ninguna)\b", lower)),
    }


def is_complete_confirmation_summary(text: str) -> bool:
    """An assistant read-back of the whole record that ends in a question."""
    lower = text.lower()
    if not any(p in lower for p in _CONFIRM_PHRASES):
        return False
    if not any(q in lower for q in _CONFIRM_QUESTIONS):
        return False
    fields = summary_fields(text)
    if not all(fields.values()):
        logger.info(
            "Partial confirmation, missing %s",
            ", ".join(k for k, v in fields.items() if not v),
        )
        return False
    return True


def looks_like_record_summary(text: str) -> bool:
    """Loose check used when the caller confirms: the last assistant turn read
    back at least three of RO / shop / VIN / status."""
    lower = text.lower()
    if "confirm" not in lower and "confirmar" not in lower:
        return False
    fields = summary_fields(text)
    ro = fields["ro"] or bool(re.search(r"\b\d{4,}\b", lower))
    hits = sum((ro, fields["shop"], fields["vin"], fields["status"]))
    return hits >= 3


# --- Whole record ---

def extract_ops_record(turns, carried: dict | None = None) -> OpsRecord:
    """Build a record from the transcript so far.

    `carried` holds shop / scheduled values from an earlier vehicle in the
    same call; they fill in only when this transcript does not say otherwise.
    """
    carried = carried or {}
    caller_name = extract_caller_name(turns)
    year, make, model = extract_vehicle(turns)
    record = OpsRecord(
        ro_number=extract_ro(turns, caller_name),
        shop=extract_shop(turns),
        year=year,
        make=make,
        model=model,
        vin_last4=extract_vin_last4(turns, have_vehicle=bool(year and make)),
        status=extract_status(turns),
        scheduled=extract_scheduled(turns),
        notes=extract_notes(turns),
        caller_name=caller_name,
    )
    if not record.shop and carried.get("shop"):
        record.shop = carried["shop"]
        logger.info("Using carried shop %r", record.shop)
    if not record.scheduled and carried.get("scheduled"):
        record.scheduled = carried["scheduled"]
        logger.info("Using carried schedule %r", record.scheduled)
    logger.info(
        "Extracted ops record: ro=%s shop=%s vehicle=%s status=%s scheduled=%s",
        record.ro_number, record.shop, record.vehicle_info, record.status, record.scheduled,
    )
    return record
