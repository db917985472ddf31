"""Built-in OEM ADAS calibration knowledge for the oem_lookup tool.

Answers are trimmed for voice: a handful of systems, prerequisites and
quirks per brand rather than full service-information text.
"""

import logging

logger = logging.getLogger(__name__)

STATIC = "static"
DYNAMIC = "dynamic"
STATIC_AND_DYNAMIC = "static + dynamic"
SELF_LEARNING = "self-learning"
PROGRAMMING_ONLY = "programming only"


def _cal(system, method, target="", tools=None, triggers=None):
    return {
        "system": system,
        "method": method,
        "staticRequired": method in (STATIC, STATIC_AND_DYNAMIC),
        "dynamicRequired": method in (DYNAMIC, STATIC_AND_DYNAMIC),
        "targetSpecs": target,
        "tools": tools or [],
        "triggers": triggers or [],
    }


OEM_KNOWLEDGE = {
    "Toyota": {
        "portal": "techinfo.toyota.com",
        "calibrations": [
            _cal("front camera", STATIC, "Toyota camera target at 1,800 mm",
                 ["Techstream", "camera target"], ["windshield replacement", "camera removal"]),
            _cal("front radar", STATIC, "radar reflector centered on emblem",
                 ["Techstream", "radar reflector"], ["front bumper R&I", "grille replacement"]),
            _cal("blind spot", STATIC, "", ["Techstream"], ["rear bumper R&I"]),
        ],
        "prerequisites": {
            "alignment": "Thrust angle within tolerance before camera or radar aiming",
            "rideHeight": "Unladen, full fuel, spare and jack in place",
            "battery": "Battery support above 12.5 V during calibration",
            "criticalNotes": [
                "Clear all DTCs before starting",
                "Level floor within 3 mm across the target area",
            ],
        },
        "dtcBlockers": ["U0126", "C1A67"],
        "quirks": ["Radar emblem must be OEM; aftermarket emblems block the radar"],
        "programming": {"software": "Techstream", "j2534": True, "nastfRequired": False},
        "legal": {"nastfRequired": False, "freeAccess": False, "sgwSecurity": False},
    },
    "Honda": {
        "portal": "techinfo.honda.com",
        "calibrations": [
            _cal("front camera", STATIC, "Honda aiming target at 1,500 mm",
                 ["i-HDS", "camera target"], ["windshield replacement", "airbag deployment"]),
            _cal("front radar", STATIC, "millimeter-wave radar reflector",
                 ["i-HDS", "radar reflector"], ["front bumper R&I"]),
            _cal("lanewatch", STATIC, "LaneWatch mat on passenger side",
                 ["i-HDS", "LaneWatch target mat"], ["right mirror replacement"]),
            _cal("blind spot", STATIC, "", ["i-HDS"], ["rear bumper R&I"]),
        ],
        "prerequisites": {
            "alignment": "Four-wheel alignment before camera aiming",
            "rideHeight": "Unladen, tires at placard pressure",
            "battery": "Battery maintainer connected",
            "criticalNotes": ["Any airbag deployment requires camera recalibration"],
        },
        "dtcBlockers": ["U0126", "U0151"],
        "quirks": ["LaneWatch camera is on the passenger mirror only"],
        "programming": {"software": "i-HDS", "j2534": True, "nastfRequired": False},
        "legal": {"nastfRequired": False, "freeAccess": False, "sgwSecurity": False},
    },
    "Nissan": {
        "portal": "nissan-techinfo.com",
        "calibrations": [
            _cal("front camera", STATIC, "Nissan camera target", ["CONSULT-III plus"],
                 ["windshield replacement"]),
            _cal("front radar", STATIC, "radar reflector", ["CONSULT-III plus"],
                 ["front bumper R&I"]),
            _cal("360 camera", STATIC, "around-view mats at each corner",
                 ["CONSULT-III plus", "around view mats"], ["mirror or tailgate replacement"]),
        ],
        "prerequisites": {
            "alignment": "Alignment required if suspension or steering was touched",
            "rideHeight": "Unladen",
            "battery": "Battery support recommended",
            "criticalNotes": ["Steering angle sensor reset after alignment"],
        },
        "dtcBlockers": ["C1A67", "U0428"],
        "quirks": ["Around-view calibration fails under uneven shop lighting"],
        "programming": {"software": "CONSULT-III plus", "j2534": False, "nastfRequired": False},
        "legal": {"nastfRequired": False, "freeAccess": False, "sgwSecurity": False},
    },
    "Subaru": {
        "portal": "techinfo.subaru.com",
        "calibrations": [
            _cal("eyesight", STATIC_AND_DYNAMIC, "EyeSight target board, then road test",
                 ["SSM4", "EyeSight target"], ["windshield replacement", "camera removal"]),
            _cal("steering angle sensor", STATIC, "", ["SSM4"], ["alignment"]),
        ],
        "prerequisites": {
            "alignment": "Alignment and steering angle reset before EyeSight",
            "rideHeight": "Unladen",
            "battery": "Battery maintainer connected",
            "criticalNotes": ["Only Subaru-approved glass supports EyeSight calibration"],
        },
        "dtcBlockers": ["C0051"],
        "quirks": ["Aftermarket windshields commonly fail EyeSight calibration"],
        "programming": {"software": "SSM4", "j2534": True, "nastfRequired": False},
        "legal": {"nastfRequired": False, "freeAccess": False, "sgwSecurity": False},
    },
    "BMW": {
        "portal": "aos.bmwgroup.com",
        "calibrations": [
            _cal("front camera", DYNAMIC, "KAFAS road drive", ["ISTA"], ["windshield replacement"]),
            _cal("front radar", STATIC, "radar reflector and laser alignment", ["ISTA"],
                 ["front bumper R&I"]),
        ],
        "prerequisites": {
            "alignment": "Alignment before radar aiming",
            "rideHeight": "Vehicle in normal ride level",
            "battery": "Battery charger required during programming",
            "criticalNotes": ["ISTA session must stay online through the calibration"],
        },
        "dtcBlockers": ["U0100"],
        "quirks": ["KAFAS camera calibration is dynamic only"],
        "programming": {"software": "ISTA", "j2534": True, "nastfRequired": True},
        "legal": {"nastfRequired": True, "freeAccess": False, "sgwSecurity": False},
    },
    "Mercedes-Benz": {
        "portal": "startekinfo.com",
        "calibrations": [
            _cal("front camera", STATIC, "Mercedes camera target", ["XENTRY"],
                 ["windshield replacement"]),
            _cal("distronic", STATIC, "radar reflector", ["XENTRY"], ["front bumper R&I"]),
            _cal("360 camera", DYNAMIC, "road drive", ["XENTRY"], ["mirror replacement"]),
        ],
        "prerequisites": {
            "alignment": "Alignment before radar aiming",
            "rideHeight": "Air suspension in normal level",
            "battery": "Battery charger required",
            "criticalNotes": ["XENTRY online session required for SCN coding"],
        },
        "dtcBlockers": ["U0235"],
        "quirks": ["360 camera is calibrated by driving, not with mats"],
        "programming": {"software": "XENTRY", "j2534": False, "nastfRequired": True},
        "legal": {"nastfRequired": True, "freeAccess": False, "sgwSecurity": False},
    },
    "Ford": {
        "portal": "motorcraftservice.com",
        "calibrations": [
            _cal("front camera", STATIC, "Ford camera target", ["FDRS"], ["windshield replacement"]),
            _cal("front radar", STATIC, "radar alignment with level", ["FDRS"], ["front bumper R&I"]),
            _cal("360 camera", STATIC, "mats at each corner", ["FDRS"], ["mirror or tailgate replacement"]),
            _cal("blind spot", STATIC, "", ["FDRS"], ["rear bumper R&I"]),
        ],
        "prerequisites": {
            "alignment": "Alignment before radar aiming",
            "rideHeight": "Unladen",
            "battery": "Battery support above 12.5 V",
            "criticalNotes": ["Some blind spot systems are dynamic on later models"],
        },
        "dtcBlockers": ["U0235", "U0121"],
        "quirks": ["Radar bracket damage is common after minor front impacts"],
        "programming": {"software": "FDRS", "j2534": True, "nastfRequired": False},
        "legal": {"nastfRequired": False, "freeAccess": False, "sgwSecurity": False},
    },
    "Chevrolet": {
        "portal": "gmsi.com",
        "calibrations": [
            _cal("front camera", PROGRAMMING_ONLY, "", ["GDS2", "SPS"], ["windshield replacement"]),
            _cal("front radar", SELF_LEARNING, "", ["GDS2"], ["front bumper R&I"]),
            _cal("blind spot", SELF_LEARNING, "", ["GDS2"], ["rear bumper R&I"]),
        ],
        "prerequisites": {
            "alignment": "Alignment if suspension was touched",
            "rideHeight": "Unladen",
            "battery": "Battery support during SPS programming",
            "criticalNotes": ["Most systems self-calibrate after a drive cycle"],
        },
        "dtcBlockers": ["U0100"],
        "quirks": ["Camera needs SPS programming rather than target aiming"],
        "programming": {"software": "GDS2 / SPS", "j2534": True, "nastfRequired": False},
        "legal": {"nastfRequired": False, "freeAccess": False, "sgwSecurity": False},
    },
    "Hyundai": {
        "portal": "hyundaitechinfo.com",
        "calibrations": [
            _cal("front camera", STATIC, "Hyundai camera target", ["GDS"], ["windshield replacement"]),
            _cal("front radar", STATIC, "radar reflector", ["GDS"], ["front bumper R&I"]),
        ],
        "prerequisites": {
            "alignment": "Alignment before radar aiming",
            "rideHeight": "Unladen",
            "battery": "Battery support recommended",
            "criticalNotes": ["Clear DTCs before calibration"],
        },
        "dtcBlockers": ["U0126"],
        "quirks": [],
        "programming": {"software": "GDS", "j2534": True, "nastfRequired": False},
        "legal": {"nastfRequired": False, "freeAccess": False, "sgwSecurity": False},
    },
    "Kia": {
        "portal": "kiatechinfo.com",
        "calibrations": [
            _cal("front camera", STATIC, "Kia camera target", ["KDS"], ["windshield replacement"]),
            _cal("front radar", STATIC, "radar reflector", ["KDS"], ["front bumper R&I"]),
        ],
        "prerequisites": {
            "alignment": "Alignment before radar aiming",
            "rideHeight": "Unladen",
            "battery": "Battery support recommended",
            "criticalNotes": ["Clear DTCs before calibration"],
        },
        "dtcBlockers": ["U0126"],
        "quirks": [],
        "programming": {"software": "KDS", "j2534": True, "nastfRequired": False},
        "legal": {"nastfRequired": False, "freeAccess": False, "sgwSecurity": False},
    },
    "Tesla": {
        "portal": "service.tesla.com",
        "calibrations": [
            _cal("front camera", STATIC_AND_DYNAMIC, "static target, then owner drive",
                 ["Toolbox 3"], ["windshield replacement"]),
        ],
        "prerequisites": {
            "alignment": "Alignment before camera calibration",
            "rideHeight": "Standard ride height",
            "battery": "Vehicle awake and charging",
            "criticalNotes": ["Camera calibration completes only after driving"],
        },
        "dtcBlockers": [],
        "quirks": ["Autopilot features stay disabled until the drive calibration finishes"],
        "programming": {"software": "Toolbox 3", "j2534": False, "nastfRequired": False},
        "legal": {"nastfRequired": False, "freeAccess": False, "sgwSecurity": False},
    },
}

BRAND_ALIASES = {
    "chevy": "Chevrolet",
    "mercedes": "Mercedes-Benz",
    "benz": "Mercedes-Benz",
    "lexus": "Toyota",
    "acura": "Honda",
    "infiniti": "Nissan",
    "genesis": "Hyundai",
}

SYSTEM_ALIASES = {
    "camera": ["front camera", "eyesight", "360 camera", "lanewatch"],
    "radar": ["front radar", "distronic"],
    "acc": ["front radar", "distronic"],
    "bsm": ["blind spot"],
    "blind spot": ["blind spot"],
    "360": ["360 camera"],
}


def normalize_brand(brand: str | None) -> str | None:
    if not brand:
        return None
    lower = brand.strip().lower()
    if lower in BRAND_ALIASES:
        return BRAND_ALIASES[lower]
    for name in OEM_KNOWLEDGE:
        if name.lower() == lower or name.lower().startswith(lower):
            return name
    return None


def _matches_system(cal: dict, system: str) -> bool:
    s = system.strip().lower()
    targets = SYSTEM_ALIASES.get(s, [s])
    return any(t in cal["system"] for t in targets)


def oem_lookup(brand: str | None, system: str | None = None, query: str | None = None) -> dict:
    """Voice-sized answer for one brand, optionally narrowed to a system."""
    name = normalize_brand(brand)
    if name is None:
        logger.info("OEM lookup: no data for brand %r", brand)
        return {"success": False, "brand": brand, "message": f"No information found for {brand}"}

    entry = OEM_KNOWLEDGE[name]
    calibrations = entry["calibrations"]
    if system:
        calibrations = [c for c in calibrations if _matches_system(c, system)]

    quirks = entry["quirks"]
    if query:
        q = query.lower()
        quirks = [x for x in quirks if q in x.lower()] or quirks

    prereq = entry["prerequisites"]
    result = {
        "success": True,
        "brand": name,
        "system": system,
        "portal": entry["portal"],
        "availableSystems": [c["system"] for c in entry["calibrations"]],
        "calibrationMethods": sorted({c["method"] for c in entry["calibrations"]}),
        "triggers": [t for c in calibrations for t in c["triggers"]][:10],
        "prerequisites": {
            "alignment": prereq["alignment"],
            "rideHeight": prereq["rideHeight"],
            "battery": prereq["battery"],
            "criticalNotes": prereq["criticalNotes"][:3],
        },
        "dtcBlockers": entry["dtcBlockers"][:5],
        "quirks": quirks[:5],
        "programmingRequirements": dict(entry["programming"]),
        "legalAccess": dict(entry["legal"]),
    }
    if system and calibrations:
        result["calibrationDetails"] = calibrations
    logger.info("OEM lookup: returning data for %s", name)
    return result


def search_all(query: str, limit: int = 10) -> dict:
    """Free-text search across every brand's systems, prerequisites and quirks."""
    q = query.strip().lower()
    portals, calibrations, notes = [], [], []
    for name, entry in OEM_KNOWLEDGE.items():
        if q in name.lower() or q in entry["portal"]:
            portals.append({"brand": name, "portal": entry["portal"]})
        for cal in entry["calibrations"]:
            haystack = " ".join([cal["system"], cal["method"], cal["targetSpecs"], *cal["tools"], *cal["triggers"]])
            if q in haystack.lower():
                calibrations.append({"brand": name, **cal})
        for note in entry["quirks"] + entry["prerequisites"]["criticalNotes"]:
            if q in note.lower():
                notes.append({"brand": name, "note": note})

    total = len(portals) + len(calibrations) + len(notes)
    return {
        "success": True,
        "type": "search",
        "query": query,
        "totalResults": total,
        "summary": f"{total} results for '{query}'",
        "results": {
            "oemPortals": portals[:5],
            "calibrations": calibrations[:limit],
            "notes": notes[:5],
        },
    }


def oem_list() -> list[str]:
    return sorted(OEM_KNOWLEDGE)


def handle_oem_lookup(args: dict) -> dict:
    """Dispatch an oem_lookup tool call: query-only search, brand lookup, or brand list."""
    brand = args.get("brand")
    query = args.get("query")
    if query and not brand:
        return search_all(query)
    if brand:
        return oem_lookup(brand, args.get("system"), query)
    brands = oem_list()
    return {
        "success": True,
        "type": "list",
        "availableOEMs": brands,
        "summary": f"{len(brands)} brands in the knowledge base",
    }
