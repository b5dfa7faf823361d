"""
Type classifier: free-text component description / type field → ComponentType.

Resolution order:
    1. project custom mappings (exact, upper-cased type field)
    2. exact canonical name or alias of the type field ("FW", "Field Weld", …)
    3. ordered regex rules over "<type> <description>" lower-cased; first hit wins
    4. ComponentType.OTHER

Rule order matters: every specific multi-word pattern sits above the generic
pattern it would otherwise lose to ("flange gasket" must reach GASKET before
the generic flange rule sees it, "gate valve" before "valve", …).
"""

import logging
import re
from collections import Counter

from roctrack.models.component import ComponentType

logger = logging.getLogger(__name__)


TYPE_LABELS = {
    ComponentType.SPOOL: "Pipe Spool",
    ComponentType.VALVE: "Valve",
    ComponentType.GASKET: "Gasket",
    ComponentType.SUPPORT: "Pipe Support",
    ComponentType.INSTRUMENT: "Instrument",
    ComponentType.FIELD_WELD: "Field Weld",
    ComponentType.FITTING: "Fitting",
    ComponentType.FLANGE: "Flange",
    ComponentType.THREADED_PIPE: "Threaded Pipe",
    ComponentType.INSULATION: "Insulation",
    ComponentType.PAINT: "Paint",
    ComponentType.PIPING_FOOTAGE: "Piping Footage",
    ComponentType.OTHER: "Component",
}

# Exact type-field values recognised before any pattern matching
_ALIASES = {
    "PIPE SPOOL": ComponentType.SPOOL,
    "SPOOLS": ComponentType.SPOOL,
    "FAB SPOOL": ComponentType.SPOOL,
    "FABRICATED SPOOL": ComponentType.SPOOL,
    "VALVES": ComponentType.VALVE,
    "VLV": ComponentType.VALVE,
    "GATE": ComponentType.VALVE,
    "GLOBE": ComponentType.VALVE,
    "CHECK": ComponentType.VALVE,
    "BALL": ComponentType.VALVE,
    "GASKETS": ComponentType.GASKET,
    "GSKT": ComponentType.GASKET,
    "GMG": ComponentType.GASKET,
    "SEAL": ComponentType.GASKET,
    "RTJ": ComponentType.GASKET,
    "FACING": ComponentType.GASKET,
    "SUPPORTS": ComponentType.SUPPORT,
    "PIPE SUPPORT": ComponentType.SUPPORT,
    "SUPP": ComponentType.SUPPORT,
    "CLAMP": ComponentType.SUPPORT,
    "RESTRAINT": ComponentType.SUPPORT,
    "INST": ComponentType.INSTRUMENT,
    "INSTRUMENTS": ComponentType.INSTRUMENT,
    "FIELD WELD": ComponentType.FIELD_WELD,
    "FIELDWELD": ComponentType.FIELD_WELD,
    "FW": ComponentType.FIELD_WELD,
    "WELD": ComponentType.FIELD_WELD,
    "FITTINGS": ComponentType.FITTING,
    "FLANGES": ComponentType.FLANGE,
    "BLIND": ComponentType.FLANGE,
    "FLG": ComponentType.FLANGE,
    "THREADED PIPE": ComponentType.THREADED_PIPE,
    "THREADEDPIPE": ComponentType.THREADED_PIPE,
    "INSUL": ComponentType.INSULATION,
    "PIPING FOOTAGE": ComponentType.PIPING_FOOTAGE,
    "PIPINGFOOTAGE": ComponentType.PIPING_FOOTAGE,
    "PIPE": ComponentType.PIPING_FOOTAGE,
    "COMPONENT": ComponentType.OTHER,
}

# ── Ordered rules ────────────────────────────────────────────────────────────

_RULE_SOURCE = [
    # Coatings first: "insulated valve" / "paint touch-up on flange" are
    # coating scope, not the item they sit on
    (r"insulat|\binsul\b|jacketing|lagging", ComponentType.INSULATION),
    (r"\bpaint|\bprimer\b|\bcoating\b|finish\s*coat", ComponentType.PAINT),

    # Valves
    (r"gate\s*valve", ComponentType.VALVE),
    (r"ball\s*valve", ComponentType.VALVE),
    (r"check\s*valve", ComponentType.VALVE),
    (r"control\s*valve", ComponentType.VALVE),
    (r"butterfly\s*valve", ComponentType.VALVE),
    (r"globe\s*valve", ComponentType.VALVE),
    (r"relief\s*valve|safety\s*valve|\bpsv\b|\bprv\b", ComponentType.VALVE),
    (r"needle\s*valve|\b3\s*-?\s*way\s*valve", ComponentType.VALVE),
    (r"valve|\bvlv\b", ComponentType.VALVE),

    # Threaded pipe before spool / generic pipe
    (r"thread(?:ed)?\s*pipe|\bthd\s*pipe|\bscrewed\s*pipe", ComponentType.THREADED_PIPE),

    # Spools and footage
    (r"pipe\s*spool|\bspool", ComponentType.SPOOL),
    (r"footage|\blf\b|linear\s*f(?:ee|oo)t", ComponentType.PIPING_FOOTAGE),

    # Gaskets before every flange rule ("flange gasket", "spiral wound")
    (r"gasket|\bgskt\b|\bgmg\b|spiral\s*wound|\brtj\b", ComponentType.GASKET),

    # Flanges, specific to generic
    (r"spectacle\s*blind|spec\s*blind", ComponentType.FLANGE),
    (r"blind\s*flange", ComponentType.FLANGE),
    (r"weld\s*neck|\bwn\s*flange|\bwnf\b", ComponentType.FLANGE),
    (r"slip\s*on|\bso\s*flange|\bsof\b", ComponentType.FLANGE),
    (r"socket\s*weld\s*flange|\bsw\s*flange", ComponentType.FLANGE),
    (r"lap\s*joint|\blj\s*flange", ComponentType.FLANGE),
    (r"threaded\s*flange|\bthd\s*flange", ComponentType.FLANGE),
    (r"flange|\bflg\b", ComponentType.FLANGE),

    # Welds after weld-neck / socket-weld flanges
    (r"field\s*weld|\bfw\b|butt\s*weld|socket\s*weld|\bweld\b", ComponentType.FIELD_WELD),

    # Fittings
    (r"elbow|\bell\b|\btee\b|reducer|coupling|union|\bcap\b|\bplug\b|nipple"
     r"|bushing|\bcross\b|weldolet|sockolet|threadolet|\bolet\b|swage|fitting",
     ComponentType.FITTING),

    # Instruments
    (r"instrument|transmitter|\btx\b|gauge|\bpg\b|\btg\b|indicator|controller"
     r"|switch|thermowell|orifice|flow\s*meter|\bsensor\b",
     ComponentType.INSTRUMENT),

    # Supports
    (r"support|hanger|\banchor\b|\bguide\b|\bspring\b|\bshoe\b|trunnion|u-?bolt",
     ComponentType.SUPPORT),

    # Generic pipe last
    (r"\bpipe\b|\bpiping\b", ComponentType.PIPING_FOOTAGE),
]

CLASSIFICATION_RULES = [(re.compile(pattern), ctype) for pattern, ctype in _RULE_SOURCE]


def _normalise_key(value) -> str:
    return re.sub(r"[\s_\-]+", " ", str(value).strip().upper())


def _exact_type(type_field) -> ComponentType | None:
    key = _normalise_key(type_field)
    if not key:
        return None
    enum_key = key.replace(" ", "_")
    if enum_key in ComponentType.__members__:
        return ComponentType[enum_key]
    return _ALIASES.get(key)


def classify_type(text, type_field=None, custom_mappings=None) -> ComponentType:
    """
    Classify a component.  Never raises; unmatched input returns OTHER.

    Args:
        text: Free-text description (may be None).
        type_field: Explicit type column value, if the sheet has one.
        custom_mappings: Project overrides ``{"HANGER ROD": "SUPPORT", ...}``;
            keys are compared upper-cased, values are ComponentType names.
    """
    if type_field is not None and str(type_field).strip():
        if custom_mappings:
            key = str(type_field).strip().upper()
            overrides = {str(k).strip().upper(): v for k, v in custom_mappings.items()}
            if key in overrides:
                mapped = overrides[key]
                try:
                    return mapped if isinstance(mapped, ComponentType) else ComponentType(str(mapped).upper())
                except ValueError:
                    logger.warning("Ignoring custom type mapping %r → %r", key, mapped)
        exact = _exact_type(type_field)
        if exact is not None:
            return exact

    search = f"{type_field or ''} {text or ''}".strip().lower()
    if search:
        for pattern, ctype in CLASSIFICATION_RULES:
            if pattern.search(search):
                return ctype

    logger.debug("Unclassified component text %r → OTHER", search)
    return ComponentType.OTHER


def type_label(component_type) -> str:
    return TYPE_LABELS.get(ComponentType(component_type), "Component")


def type_mapping_stats(types, custom_mappings=None) -> dict:
    """
    Preview how a column of raw type values will be classified.

    Returns ``{"counts": {ComponentType: n}, "unmapped": [raw, ...]}`` where
    ``unmapped`` lists the distinct inputs that fell through to OTHER.
    """
    counts = Counter()
    unmapped = []
    for raw in types:
        ctype = classify_type(None, type_field=raw, custom_mappings=custom_mappings)
        counts[ctype] += 1
        if ctype is ComponentType.OTHER and raw not in unmapped:
            unmapped.append(raw)
    return {"counts": dict(counts), "unmapped": unmapped}
