"""Canonical forms for what gets written to the record store.

Shop names collapse onto the known-shop whitelist, schedule phrases in
either language become "Weekday, Month D, YYYY at H:MM AM/PM", and notes
always leave as "Caller: X. Notes: Y." in English.
"""

import logging
import re
from datetime import date, datetime, timedelta

from adasline.config import DEFAULT_SCHEDULE_TIME
from adasline.validation import _now_et

logger = logging.getLogger(__name__)


# --- Shop names ---

SHOP_FILLER_PREFIXES = [
    "is", "es", "the", "el", "la", "from", "de", "at", "en",
    "it's", "its", "it is", "this is", "that's", "that is",
    "called", "named", "llamado", "llamada",
]

# canonical name -> substrings that identify it
SHOP_ALIASES = {
    "JMD Body Shop": ["jmd", "j.m.d", "j m d"],
    "Reinaldo Body Shop": ["reinaldo", "reynaldo"],
    "PaintMax": ["paintmax", "paint max", "paint-max"],
    "AutoSport": ["autosport", "auto sport", "auto-sport"],
    "CCNM": ["ccnm", "collision center", "north miami", "centro de colision", "centro de colisión"],
}


def match_known_shop(text: str) -> str | None:
    lower = text.lower()
    for canonical, aliases in SHOP_ALIASES.items():
        if any(alias in lower for alias in aliases):
            return canonical
    return None


def normalize_shop_name(shop_name: str | None) -> str | None:
    """Map a spoken shop name onto the whitelist.

    Leading filler ("it's", "from", "el") is stripped first.  Unknown but
    non-trivial names pass through unchanged; filler-only input gives None.
    """
    if not shop_name:
        return None
    cleaned = shop_name.strip()
    # prefixes can stack ("it's the ...")
    stripped = True
    while stripped:
        stripped = False
        for filler in SHOP_FILLER_PREFIXES:
            new = re.sub(rf"^{re.escape(filler)}\s+", "", cleaned, flags=re.IGNORECASE).strip()
            if new != cleaned:
                cleaned = new
                stripped = True

    if len(cleaned) < 2:
        logger.info("Shop name %r is only filler, rejecting", shop_name)
        return None

    known = match_known_shop(cleaned)
    if known:
        return known
    logger.info("Shop name %r not in whitelist, passing through", cleaned)
    return cleaned


# --- Schedules ---

WEEKDAYS_EN = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
WEEKDAYS_ES = {
    "lunes": 0, "martes": 1, "miercoles": 2, "miércoles": 2, "jueves": 3,
    "viernes": 4, "sabado": 5, "sábado": 5, "domingo": 6,
}
MONTHS = [
    "january", "february", "march", "april", "may", "june", "july",
    "august", "september", "october", "november", "december",
]
SPANISH_HOURS = {
    "una": 1, "dos": 2, "tres": 3, "cuatro": 4, "cinco": 5, "seis": 6,
    "siete": 7, "ocho": 8, "nueve": 9, "diez": 10, "once": 11, "doce": 12,
}

_SPANISH_HOUR = r"(\d{1,2}|una|dos|tres|cuatro|cinco|seis|siete|ocho|nueve|diez|once|doce)"
_MERIDIEM_TIME = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*(a\.?\s?m\.?|p\.?\s?m\.?)(?![a-z])", re.IGNORECASE)
_AT_TIME = re.compile(r"\bat\s+(\d{1,2})(?::(\d{2}))?(?!\s*[ap]\.?\s?m)", re.IGNORECASE)
_SPANISH_TIME = re.compile(
    rf"a\s+las?\s+{_SPANISH_HOUR}(?::(\d{{2}}))?(?:\s+y\s+(media|cuarto|\d{{1,2}}))?",
    re.IGNORECASE,
)


def _next_weekday(today: date, weekday: int) -> date:
    days = weekday - today.weekday()
    if days <= 0:
        days += 7
    return today + timedelta(days=days)


def _resolve_date(raw: str, today: date) -> date | None:
    if re.search(r"\b(today|hoy)\b", raw):
        return today
    # "de la mañana" is a time of day, not tomorrow
    if re.search(r"\b(tomorrow|mañana|manana)\b", re.sub(r"de\s+la\s+ma[nñ]ana", "", raw)):
        return today + timedelta(days=1)

    m = re.search(r"\b(" + "|".join(WEEKDAYS_EN) + r")\b", raw)
    if m:
        return _next_weekday(today, WEEKDAYS_EN.index(m.group(1)))

    m = re.search(r"\b(lunes|martes|mi[eé]rcoles|jueves|viernes|s[aá]bado|domingo)\b", raw)
    if m:
        return _next_weekday(today, WEEKDAYS_ES[m.group(1)])

    m = re.search(r"\b(" + "|".join(MONTHS) + r")\s+(\d{1,2})", raw)
    if m:
        return _future_date(today, MONTHS.index(m.group(1)) + 1, int(m.group(2)))

    m = re.search(r"\b(\d{1,2})/(\d{1,2})\b", raw)
    if m:
        return _future_date(today, int(m.group(1)), int(m.group(2)))
    return None


def _future_date(today: date, month: int, day: int) -> date | None:
    try:
        target = date(today.year, month, day)
    except ValueError:
        return None
    if target < today:
        try:
            target = target.replace(year=today.year + 1)
        except ValueError:
            return None
    return target


def parse_clock_time(raw: str) -> tuple[int, int] | None:
    """Find a time of day in an English or Spanish phrase; (hour24, minute)."""
    raw = raw.lower()
    m = _MERIDIEM_TIME.search(raw)
    if m:
        hour = int(m.group(1))
        minute = int(m.group(2) or 0)
        is_pm = m.group(3).startswith("p")
        if is_pm and hour < 12:
            hour += 12
        if not is_pm and hour == 12:
            hour = 0
        return hour, minute

    m = _AT_TIME.search(raw)
    if m:
        hour = int(m.group(1))
        minute = int(m.group(2) or 0)
        # bare business-hours times are afternoon
        if 1 <= hour <= 6:
            hour += 12
        return hour, minute

    m = _SPANISH_TIME.search(raw)
    if m:
        word = m.group(1)
        hour = SPANISH_HOURS.get(word) or int(word)
        minute = int(m.group(2) or 0)
        extra = m.group(3)
        if extra == "media":
            minute = 30
        elif extra == "cuarto":
            minute = 15
        elif extra:
            minute = int(extra)
        if re.search(r"de\s+la\s+(tarde|noche)", raw):
            if hour < 12:
                hour += 12
        elif re.search(r"de\s+la\s+ma[nñ]ana", raw):
            if hour == 12:
                hour = 0
        elif 1 <= hour <= 6:
            hour += 12
        return hour, minute
    return None


def format_clock(hour: int, minute: int) -> str:
    display = hour % 12 or 12
    return f"{display}:{minute:02d} {'PM' if hour >= 12 else 'AM'}"


def normalize_scheduled(scheduled: str | None, now: datetime | None = None) -> str:
    """Render a spoken schedule as "Weekday, Month D, YYYY at H:MM AM/PM".

    Missing date means today; missing time falls back to
    DEFAULT_SCHEDULE_TIME and is logged as a low-confidence default.
    """
    if not scheduled or not scheduled.strip():
        return "TBD"
    raw = scheduled.strip().lower()
    now = now or _now_et()
    today = now.date()

    target = _resolve_date(raw, today) or today

    clock = parse_clock_time(raw)
    if clock is None:
        clock = parse_clock_time(DEFAULT_SCHEDULE_TIME)
        logger.warning(
            "No specific time found in %r, defaulting to %s", scheduled, DEFAULT_SCHEDULE_TIME
        )
    hour, minute = clock

    result = (
        f"{target.strftime('%A')}, {target.strftime('%B')} {target.day}, "
        f"{target.year} at {format_clock(hour, minute)}"
    )
    logger.info("Scheduled normalized: %r -> %r", scheduled, result)
    return result


def format_schedule_datetime(date_val, time_val) -> str:
    """Short "M/D/YYYY H:MM AM" form used in flow-history notes."""
    if not date_val and not time_val:
        return "unscheduled"

    date_part = ""
    if isinstance(date_val, (date, datetime)):
        date_part = f"{date_val.month}/{date_val.day}/{date_val.year}"
    elif date_val:
        date_part = str(date_val)
        m = re.match(r"^(\d{4})-(\d{2})-(\d{2})", date_part)
        if m:
            date_part = f"{int(m.group(2))}/{int(m.group(3))}/{m.group(1)}"

    time_part = ""
    if isinstance(time_val, datetime):
        time_part = format_clock(time_val.hour, time_val.minute)
    elif time_val:
        time_part = str(time_val)
        m = re.match(r"^\d{4}-\d{2}-\d{2}T(\d{2}):(\d{2})", time_part)
        if m:
            time_part = format_clock(int(m.group(1)), int(m.group(2)))

    return " ".join(p for p in (date_part, time_part) if p) or "unscheduled"


# --- Notes ---

NO_NOTES_WORDS = {
    "no", "none", "nothing", "n/a", "na", "nope", "nor",
    "nada", "ninguna", "ninguno", "no hay", "sin notas", "no tengo",
    "não", "nao", "nenhum", "nenhuma",
}

NO_NOTES_PHRASES = [
    re.compile(p, re.IGNORECASE) for p in (
        r"^(and\s+)?no,?\s*no\s+notes",
        r"^(and\s+)?no\s+notes?\s*(for\s+)?(the\s+)?vehicle",
        r"^(and\s+)?no\s+notes?$",
        r"^(and\s+)?there('s|s)?\s*(are\s+)?no\s+notes",
        r"^nothing\s+(else|more|to\s+add)",
        r"^that('s|s)?\s*(it|all)",
        r"^(and\s+)?nope",
        r"^(y\s+)?no,?\s*ninguna\s*nota",
        r"^(y\s+)?sin\s+notas?",
        r"^(y\s+)?no\s+hay\s+notas?",
        r"^(y\s+)?nada\s*(más|mas)?$",
    )
]

DATE_TIME_ONLY = [
    re.compile(p, re.IGNORECASE) for p in (
        r"^(for\s+)?today(\s+at\s+\d+)?",
        r"^(for\s+)?tomorrow(\s+at\s+\d+)?",
        r"^(for\s+)?(monday|tuesday|wednesday|thursday|friday|saturday|sunday)(\s+at\s+\d+)?",
        r"^(for\s+|para\s+)?(el\s+)?(lunes|martes|mi[eé]rcoles|jueves|viernes|s[aá]bado|domingo)(\s+a\s+las?\s+\d+)?",
        r"^(for\s+|para\s+)?hoy(\s+a\s+las?\s+\d+)?",
        r"^(for\s+|para\s+)?ma[nñ]ana(\s+a\s+las?\s+\d+)?",
        r"^\d{1,2}(:\d{2})?\s*(a\.?m\.?|p\.?m\.?)$",
        r"^at\s+\d{1,2}",
        r"^a\s+las?\s+\d{1,2}",
    )
]

FOREIGN_SCRIPT = re.compile("[ऀ-ॿ஀-௿؀-ۿ一-鿿぀-ヿ가-힯Ѐ-ӿ]")
_LATIN_CHAR = re.compile(r"[a-záéíóúüñ\s.,!?'\-]", re.IGNORECASE)

NOTES_TRANSLATIONS = {
    "cámara frontal": "front camera",
    "camara frontal": "front camera",
    "cámara trasera": "rear camera",
    "camara trasera": "rear camera",
    "cámara delantera": "front camera",
    "camara delantera": "front camera",
    "radar delantero": "front radar",
    "sensores": "sensors",
    "parabrisas nuevo": "new windshield",
    "parabrisas": "windshield",
    "vidrio nuevo": "new glass",
    "recién reparado": "recently repaired",
    "recien reparado": "recently repaired",
    "golpe frontal": "front collision",
    "golpe trasero": "rear collision",
    "accidente": "accident",
    "colisión": "collision",
    "colision": "collision",
    "daño": "damage",
    "dano": "damage",
    "urgente": "urgent",
    "lo antes posible": "ASAP",
    "lo más pronto posible": "ASAP",
    "lo mas pronto posible": "ASAP",
    "cuanto antes": "ASAP",
    "rápido": "rush",
    "rapido": "rush",
    "prioridad": "priority",
    "no está listo": "not ready",
    "no esta listo": "not ready",
    "no listo": "not ready",
    "está listo": "is ready",
    "esta listo": "is ready",
    "listo": "ready",
    "esperando": "waiting",
    "en espera": "waiting",
    "por favor": "please",
    "necesitan": "need",
    "necesita": "needs",
    "revisar": "check",
    "verificar": "verify",
    "calibrar": "calibrate",
    "calibración": "calibration",
    "calibracion": "calibration",
    "hacer": "do",
    "también": "also",
    "tambien": "also",
    "sólo": "only",
    "solo": "only",
    "el vehículo": "the vehicle",
    "el vehiculo": "the vehicle",
    "el carro": "the vehicle",
    "la camioneta": "the truck",
    "del cliente": "from customer",
    "para el": "for the",
    "para la": "for the",
    "con": "with",
    "sin": "without",
    "y": "and",
    "o": "or",
    "pronto": "soon",
    "después": "later",
    "despues": "later",
}


def _apply_translations(text: str, table: dict[str, str], word_boundaries: bool = True) -> str:
    """Replace phrases longest-first so "no está listo" wins over "listo"."""
    for source in sorted(table, key=len, reverse=True):
        escaped = re.escape(source)
        pattern = rf"(?<!\w){escaped}(?!\w)" if word_boundaries else escaped
        text = re.sub(pattern, table[source], text, flags=re.IGNORECASE)
    return text


def _unwrap_notes(text: str) -> str:
    """Strip any number of "Caller: X. Notes:" wrappers."""
    while text.lower().startswith("caller:"):
        m = re.search(r"notes:\s*(.*)$", text, re.IGNORECASE | re.DOTALL)
        if m:
            # innermost wrapper: text after the last "Notes:"
            inner = re.split(r"notes:\s*", text, flags=re.IGNORECASE)[-1].strip()
            text = inner
        else:
            text = re.sub(r"^caller:\s*[^.]+\.\s*", "", text, flags=re.IGNORECASE).strip()
            break
    return text


def is_no_notes(text: str) -> bool:
    lower = text.strip().lower().rstrip(".!")
    if lower in NO_NOTES_WORDS or len(lower) < 3:
        return True
    return any(p.search(lower) for p in NO_NOTES_PHRASES)


def is_date_time_only(text: str) -> bool:
    lower = text.strip().lower()
    return any(p.search(lower) for p in DATE_TIME_ONLY)


def is_foreign_noise(text: str) -> bool:
    if FOREIGN_SCRIPT.search(text):
        return True
    total = len(re.sub(r"\s", "", text))
    if total == 0:
        return False
    latin = len(_LATIN_CHAR.findall(text))
    return latin / total < 0.7


def normalize_notes(notes: str | None, caller_name: str | None) -> str:
    """Always returns "Caller: {name}. Notes: {text}." with text or "none".

    Re-normalizing an already wrapped value yields a single wrapper.
    """
    caller = caller_name or "Unknown"
    empty = f"Caller: {caller}. Notes: none."
    if not notes:
        return empty

    clean = _unwrap_notes(notes.strip())
    clean = re.sub(r"^nor,?\s+", "", clean, flags=re.IGNORECASE)
    clean = re.sub(r"^no,\s*", "", clean, flags=re.IGNORECASE).strip()

    if is_date_time_only(clean):
        logger.info("Notes %r look like scheduling info, treating as none", clean)
        return empty
    if is_no_notes(clean):
        return empty
    if is_foreign_noise(clean):
        logger.info("Notes %r look like transcription noise, treating as none", clean)
        return empty

    translated = _apply_translations(clean, NOTES_TRANSLATIONS).strip()
    translated = translated.rstrip(".").strip()
    translated = re.sub(r"^none\.?\s*", "", translated, flags=re.IGNORECASE).strip() or "none"
    return f"Caller: {caller}. Notes: {translated}."


# --- Free-text reasons (reschedule / cancel / tech notes) ---

REASON_TRANSLATIONS = {
    "el vehículo fue declarado pérdida total": "Vehicle was declared a total loss",
    "vehículo fue declarado pérdida total": "Vehicle was declared a total loss",
    "pérdida total": "total loss",
    "el carro no está listo": "The car is not ready",
    "carro no está listo": "Car is not ready",
    "no está listo": "not ready",
    "el cliente canceló": "Customer cancelled",
    "cliente canceló": "Customer cancelled",
    "el cliente no quiere": "Customer does not want",
    "cliente no quiere": "Customer does not want",
    "ya no necesita calibración": "No longer needs calibration",
    "no necesita calibración": "Does not need calibration",
    "el seguro no aprobó": "Insurance did not approve",
    "seguro no aprobó": "Insurance did not approve",
    "el taller canceló": "Shop cancelled",
    "taller canceló": "Shop cancelled",
    "el carro no estaba listo": "The car was not ready",
    "carro no estaba listo": "Car was not ready",
    "no estaba listo": "was not ready",
    "necesitan más tiempo": "They need more time",
    "necesita más tiempo": "Needs more time",
    "el cliente pidió otro día": "Customer requested another day",
    "cliente pidió otro día": "Customer requested another day",
    "conflicto de horario": "Schedule conflict",
    "el técnico no puede": "Technician cannot make it",
    "técnico no puede": "Technician cannot make it",
    "el técnico está ocupado": "Technician is busy",
    "técnico está ocupado": "Technician is busy",
    "calibración completada exitosamente": "Calibration completed successfully",
    "calibración completada": "Calibration completed",
    "en camino": "On the way",
    "llegué al taller": "Arrived at shop",
    "llegue al taller": "Arrived at shop",
    "esperando el vehículo": "Waiting for vehicle",
    "esperando vehículo": "Waiting for vehicle",
    "trabajando en el vehículo": "Working on vehicle",
    "trabajo completado": "Work completed",
    "sin problemas": "No issues",
    "todo bien": "All good",
    "listo": "Done",
}


def translate_to_english(text: str | None) -> str | None:
    """Translate common Spanish reason phrases; flow history stays English."""
    if not text:
        return text
    return _apply_translations(text, REASON_TRANSLATIONS, word_boundaries=False)
