"""Technician-side extraction.

extract_tech_record() is the one-shot reading of a whole transcript.
TechTracker follows the technician turn by turn (name, systems touched,
static/dynamic, help topics, "it passed", "close it out") and builds the
closure payload from what it has seen.
"""

import logging
import re
from dataclasses import dataclass, field

from adasline.extraction import NOT_NAMES
from adasline.session import TechState
from adasline.validation import contains_any, extract_ro_from_text, match_any_keyword

logger = logging.getLogger(__name__)


@dataclass
class TechRecord:
    ro_number: str | None = None
    technician: str | None = None
    calibration_required: list = field(default_factory=list)
    calibration_performed: list = field(default_factory=list)
    status: str | None = None
    notes: str = "none"

    def to_payload(self) -> dict:
        return {
            "ro_number": self.ro_number,
            "technician": self.technician or "",
            "calibration_required": ", ".join(self.calibration_required),
            "calibration_performed": ", ".join(self.calibration_performed),
            "status_from_tech": self.status or "",
            "tech_notes": self.notes,
        }


# --- One-shot extraction ---

_TECH_RO = re.compile(r"(?:\bro\b|r\.o\.|\bpo\b|p\.o\.)[\s#:]*(?:number\s*)?(?:is\s*)?(\d[\d\-]{2,})", re.IGNORECASE)
_TECH_NAME = [
    re.compile(r"(?:my name is|this is|i'm|im|i am)\s+([a-z]+)", re.IGNORECASE),
    re.compile(r"(?:tech|technician)[\s:]+([a-z]+)", re.IGNORECASE),
]
RECORD_SYSTEMS = [
    (re.compile(r"\bfcw\b|forward collision", re.IGNORECASE), "FCW"),
    (re.compile(r"\blkas?\b|lane keep|lane assist", re.IGNORECASE), "LKA"),
    (re.compile(r"\bacc\b|adaptive cruise", re.IGNORECASE), "ACC"),
    (re.compile(r"\bbsm\b|blind spot", re.IGNORECASE), "BSM"),
    (re.compile(r"\brcta\b|rear cross", re.IGNORECASE), "RCTA"),
    (re.compile(r"\btss\b|toyota safety sense", re.IGNORECASE), "TSS"),
    (re.compile(r"honda sensing", re.IGNORECASE), "Honda Sensing"),
]
TECH_STATUSES = ["completed", "failed", "not ready", "blocked dtc"]
_DTC = re.compile(r"(?:dtc|code|error)[\s:]*([PCBU][0-9][0-9A-F]{3})\b", re.IGNORECASE)
_ISSUE = re.compile(r"(?:issue|problem)[\s:]*([^.,;!?]{10,60})", re.IGNORECASE)


def _tech_name_from(text: str) -> str | None:
    for pattern in _TECH_NAME:
        m = pattern.search(text)
        if m and len(m.group(1)) > 2 and m.group(1).lower() not in NOT_NAMES:
            return m.group(1).capitalize()
    return None


def extract_tech_record(turns) -> TechRecord:
    """Read RO, technician, systems, status and notes from the whole call."""
    full = " ".join(t.text for t in turns)
    caller = " ".join(t.text for t in turns if t.role == "user")
    record = TechRecord()

    m = _TECH_RO.search(full)
    if m:
        record.ro_number = re.sub(r"\D", "", m.group(1))
    else:
        record.ro_number = extract_ro_from_text(caller)

    record.technician = _tech_name_from(caller)

    systems = [name for pattern, name in RECORD_SYSTEMS if pattern.search(full)]
    record.calibration_required = list(systems)
    record.calibration_performed = list(systems)

    lower = caller.lower()
    for status in TECH_STATUSES:
        if status in lower:
            record.status = status.title()
            break

    notes = []
    dtcs = [code.upper() for code in _DTC.findall(full)]
    if dtcs:
        notes.append(f"DTCs: {', '.join(dict.fromkeys(dtcs))}")
    issue = _ISSUE.search(caller)
    if issue:
        notes.append(issue.group(1).strip())
    record.notes = "; ".join(notes) if notes else "none"
    return record


# --- Turn-by-turn tracking ---

TRACKED_SYSTEMS = [
    (re.compile(r"\b(radar|radar delantero|front radar|rear radar|radar trasero)\b", re.IGNORECASE), "radar"),
    (re.compile(r"\b(camera|cámara|camara|front camera|cámara frontal|windshield camera)\b", re.IGNORECASE), "camera"),
    (re.compile(r"\b(acc|adaptive cruise|control crucero|crucero adaptativo)\b", re.IGNORECASE), "ACC"),
    (re.compile(r"\b(blind spot|bsm|punto ciego)\b", re.IGNORECASE), "BSM"),
    (re.compile(r"\b(lane|lka|lkas|lane keep|carril)\b", re.IGNORECASE), "LKA"),
    (re.compile(r"\b(360|surround|parking|estacionamiento)\b", re.IGNORECASE), "360 camera"),
    (re.compile(r"\b(fcw|forward collision|colisión frontal|colision frontal)\b", re.IGNORECASE), "FCW"),
]

HELP_TOPICS = [
    (re.compile(r"radar", re.IGNORECASE), "radar calibration"),
    (re.compile(r"camera|cámara|camara", re.IGNORECASE), "camera calibration"),
    (re.compile(r"blind spot|\bbsm\b|punto ciego", re.IGNORECASE), "blind spot monitor calibration"),
    (re.compile(r"\blane\b|\blkas?\b|carril", re.IGNORECASE), "lane keep assist calibration"),
    (re.compile(r"\bdtc\b|\bcodes?\b|fault|error|código|codigo|falla", re.IGNORECASE), "DTC troubleshooting"),
    (re.compile(r"target|distance|setup|alignment|blanco|alineación|alineacion", re.IGNORECASE), "target setup"),
    (re.compile(r"\b360\b|surround|parking|estacionamiento", re.IGNORECASE), "360 camera calibration"),
    (re.compile(r"no me deja|no entra|no coge|no conecta|no pasa|no abre", re.IGNORECASE), "troubleshooting"),
]

PASS_PHRASES = [
    "passed", "successful", "it passed", "calibration passed", "calibration successful",
    "we're good", "all good",
    "pasó", "ya calibró", "ya calibro", "quedó bien", "quedo bien",
    "lo logré", "lo logre", "funcionó", "funciono", "ya funcionó", "ya funciono",
]
# bare "paso" is too common in Spanish; matched as a whole word only
PASS_WORDS = ["paso"]

CLOSURE_CONFIRMATIONS = [
    "it's completed", "its completed", "it is completed",
    "it's done", "its done", "it is done",
    "it's finished", "its finished", "it is finished",
    "we're done", "were done", "we are done",
    "all set", "that's completed", "thats completed",
    "that's finished", "thats finished", "that's done", "thats done",
    "finished", "nothing else",
    "está completado", "esta completado", "está listo", "esta listo",
    "ya quedó", "ya quedo", "ya terminó", "ya termino", "ya acabó", "ya acabo",
    "terminado", "finalizado", "todo listo", "nada más", "nada mas",
    "está terminado", "esta terminado",
]

CLOSE_COMMANDS = [
    "close this ro", "close this r.o", "close the ro", "close the r.o",
    "close this po", "close this p.o", "close the po", "close the p.o",
    "finalize this job", "finalize the job", "finalize this",
    "mark it completed", "mark it complete", "mark this completed", "mark this complete",
    "i'm closing this", "im closing this", "closing this one", "closing this out",
    "let's close this", "lets close this", "close this out", "close it out",
    "log this as complete", "log it as complete", "log this complete",
    "close it", "let's close", "lets close",
    "ciérralo", "cierralo", "cierra esto", "cierra este",
    "vamos a cerrar", "cerrar este ro", "cerrar este po", "cerrar el ro", "cerrar el po",
    "quiero finalizarlo", "finalizar esto", "finalizar este",
    "márcalo como completado", "marcalo como completado", "marca completado",
    "voy a cerrar", "estoy cerrando", "cerrar el trabajo", "cerrar este trabajo",
    "registra esto", "loguea esto",
]

CALIBRATION_INFO = re.compile(
    r"\b(radar|camera|cámara|camara|acc|bsm|blind spot|punto ciego|lka|lane|carril|fcw|360)\b",
    re.IGNORECASE,
)

_TRACKED_NAME = [
    re.compile(p, re.IGNORECASE) for p in (
        r"(?:my name is|this is|i'm|i am)\s+([a-z]+)",
        r"(?:it's|its)\s+([a-z]+)\s+(?:here|calling)",
        r"^(?:hey |hi |hello )?([a-z]+)(?:\s+here)?[.!]?$",
        r"(?:mi nombre es|me llamo|soy)\s+([a-záéíóúñ]+)",
        r"([a-záéíóúñ]+)\s+(?:por aquí|por aqui|aquí|aqui)",
    )
]
_TECH_NOT_NAMES = NOT_NAMES | {
    "nope", "aqui", "aquí", "que", "qué", "cómo", "cual", "cuál", "una", "uno",
    "radar", "camera", "done", "finished", "passed", "working", "calibrating",
    "here", "ready", "static", "dynamic", "both", "ambas",
    "perfect", "cool", "alright", "awesome", "gotcha", "understood", "copy",
}

_STATIC = re.compile(r"\b(static|estática|estatica)\b", re.IGNORECASE)
_DYNAMIC = re.compile(r"\b(dynamic|dinámica|dinamica)\b", re.IGNORECASE)
_BOTH = re.compile(r"\b(both|ambas|las dos)\b", re.IGNORECASE)

_TEXT = {
    "en": {
        "not_specified_by_tech": "Not specified by technician",
        "completed": "Completed",
        "assisted": "Assisted with {topics}. ",
        "calibration_ok": "Calibration completed successfully.",
        "not_specified": "Not specified",
    },
    "es": {
        "not_specified_by_tech": "No especificado por técnico",
        "completed": "Completado",
        "assisted": "Asistencia: {topics}. ",
        "calibration_ok": "Calibración completada exitosamente.",
        "not_specified": "No especificado",
    },
}


def capture_tech_name(text: str) -> str | None:
    t = text.strip()
    for pattern in _TRACKED_NAME:
        m = pattern.search(t)
        if m and 2 < len(m.group(1)) < 15 and m.group(1).lower() not in _TECH_NOT_NAMES:
            return m.group(1).capitalize()
    return None


def is_pass_statement(text: str) -> bool:
    return contains_any(text, PASS_PHRASES) or match_any_keyword(text, PASS_WORDS)


def is_closure_confirmation(text: str) -> bool:
    return contains_any(text, CLOSURE_CONFIRMATIONS)


def is_close_command(text: str) -> bool:
    return contains_any(text, CLOSE_COMMANDS)


def mentions_calibration_info(text: str) -> bool:
    return bool(CALIBRATION_INFO.search(text))


@dataclass
class TurnObservation:
    passed: bool = False
    closure_confirmation: bool = False
    closure_request: bool = False


class TechTracker:
    """Accumulates what a technician says into a TechState."""

    def __init__(self, state: TechState):
        self.state = state

    def track_name(self, text: str) -> None:
        if self.state.tech_name:
            return
        name = capture_tech_name(text)
        if name:
            self.state.tech_name = name
            logger.info("Captured technician name: %s", name)

    def track_systems(self, text: str) -> None:
        for pattern, system in TRACKED_SYSTEMS:
            if not pattern.search(text):
                continue
            if system not in self.state.calibration_required:
                self.state.calibration_required.append(system)
            if system not in self.state.calibration_performed:
                self.state.calibration_performed.append(system)
                logger.info("Tracking calibration system: %s", system)

    def track_calibration_type(self, text: str) -> None:
        current = self.state.calibration_type
        if _STATIC.search(text):
            current = "both" if current == "dynamic" else "static"
        if _DYNAMIC.search(text):
            current = "both" if current == "static" else "dynamic"
        if _BOTH.search(text):
            current = "both"
        if current != self.state.calibration_type:
            logger.info("Calibration type: %s", current)
            self.state.calibration_type = current

    def track_topics(self, text: str) -> None:
        for pattern, summary in HELP_TOPICS:
            if pattern.search(text) and summary not in self.state.assistance_summaries:
                self.state.assistance_summaries.append(summary)
                logger.debug("Assistance topic: %s", summary)

    def observe(self, text: str) -> TurnObservation:
        """Track one technician turn; closure signals count only once an RO is loaded."""
        self.track_name(text)
        self.track_systems(text)
        self.track_calibration_type(text)
        if not self.state.current_ro:
            return TurnObservation()

        self.track_topics(text)
        obs = TurnObservation(
            passed=is_pass_statement(text),
            closure_confirmation=is_closure_confirmation(text),
        )
        obs.closure_request = obs.closure_confirmation or is_close_command(text)
        if (obs.passed or obs.closure_confirmation) and not self.state.calibration_passed:
            self.state.calibration_passed = True
            logger.info("Calibration passed noted for RO %s", self.state.current_ro)
        return obs

    def calibration_topics(self) -> list[str]:
        return [s for s in self.state.assistance_summaries if "troubleshooting" not in s]

    def has_calibration_data(self) -> bool:
        return bool(
            self.state.calibration_required
            or self.state.calibration_performed
            or self.calibration_topics()
        )

    def build_closure_payload(self, language: str = "en") -> dict:
        """tech_update payload for closing the current RO, defaults filled in."""
        text = _TEXT.get(language, _TEXT["en"])
        s = self.state

        required = ", ".join(s.calibration_required) or ", ".join(self.calibration_topics())
        if not required.strip():
            required = text["not_specified_by_tech"]

        performed = ", ".join(s.calibration_performed) or required
        if performed in (text["not_specified_by_tech"], _TEXT["en"]["not_specified_by_tech"]):
            performed = text["completed"]

        type_note = f" ({s.calibration_type})" if s.calibration_type else ""

        summary = ""
        if s.assistance_summaries:
            summary = text["assisted"].format(topics=", ".join(s.assistance_summaries))
        summary += text["calibration_ok"]

        return {
            "ro_number": s.current_ro,
            "technician": s.tech_name or text["not_specified"],
            "calibration_required": required + type_note,
            "calibration_performed": performed + type_note,
            "status_from_tech": "Completed",
            "tech_notes": summary,
        }
