"""
Vocabulary maps for listing normalization.

Every table is built once at import time and exposed read-only
(MappingProxyType / tuple), so concurrent normalize() calls share them
without locking. Keys are lowercased and stripped. Greek tokens appear both
with and without accents because portals are inconsistent about tonos.

Lookups are two-phase: exact match on the map, then an ordered scan over
the matching *_FALLBACKS tuple. Fallback order is table order.
"""
from types import MappingProxyType
from typing import Mapping

# ---------------------------------------------------------------------------
# Property types
# ---------------------------------------------------------------------------

OTHER = "OTHER"

CANONICAL_PROPERTY_TYPES: frozenset[str] = frozenset({
    "APARTMENT",
    "HOUSE",
    "MAISONETTE",
    "STUDIO",
    "LOFT",
    "PENTHOUSE",
    "VILLA",
    "LAND",
    "COMMERCIAL",
    "WAREHOUSE",
    "PARKING",
    OTHER,
})

_GREEK_PROPERTY_TYPES: tuple[tuple[str, str], ...] = (
    ("διαμέρισμα", "APARTMENT"),
    ("διαμερισμα", "APARTMENT"),
    ("μονοκατοικία", "HOUSE"),
    ("μονοκατοικια", "HOUSE"),
    ("μεζονέτα", "MAISONETTE"),
    ("μεζονετα", "MAISONETTE"),
    ("στούντιο", "STUDIO"),
    ("στουντιο", "STUDIO"),
    ("γκαρσονιέρα", "STUDIO"),
    ("γκαρσονιερα", "STUDIO"),
    ("loft", "LOFT"),
    ("ρετιρέ", "PENTHOUSE"),
    ("ρετιρε", "PENTHOUSE"),
    ("βίλα", "VILLA"),
    ("βιλα", "VILLA"),
    ("οικόπεδο", "LAND"),
    ("οικοπεδο", "LAND"),
    ("αγροτεμάχιο", "LAND"),
    ("αγροτεμαχιο", "LAND"),
    ("επαγγελματικό", "COMMERCIAL"),
    ("επαγγελματικο", "COMMERCIAL"),
    ("κατάστημα", "COMMERCIAL"),
    ("καταστημα", "COMMERCIAL"),
    ("γραφείο", "COMMERCIAL"),
    ("γραφειο", "COMMERCIAL"),
    ("αποθήκη", "WAREHOUSE"),
    ("αποθηκη", "WAREHOUSE"),
    ("parking", "PARKING"),
    ("πάρκινγκ", "PARKING"),
    ("παρκινγκ", "PARKING"),
    ("θέση στάθμευσης", "PARKING"),
    ("θεση σταθμευσης", "PARKING"),
)

_ENGLISH_PROPERTY_TYPES: tuple[tuple[str, str], ...] = (
    ("apartment", "APARTMENT"),
    ("flat", "APARTMENT"),
    ("house", "HOUSE"),
    ("detached house", "HOUSE"),
    ("maisonette", "MAISONETTE"),
    ("studio", "STUDIO"),
    ("penthouse", "PENTHOUSE"),
    ("villa", "VILLA"),
    ("land", "LAND"),
    ("plot", "LAND"),
    ("commercial", "COMMERCIAL"),
    ("store", "COMMERCIAL"),
    ("office", "COMMERCIAL"),
    ("warehouse", "WAREHOUSE"),
    ("garage", "PARKING"),
)

# Spitogatos labels a few categories with the bare Greek "γη" (land).
_SPITOGATOS_EXTRAS: tuple[tuple[str, str], ...] = (
    ("γη", "LAND"),
)


def _freeze(pairs: tuple[tuple[str, str], ...]) -> Mapping[str, str]:
    return MappingProxyType(dict(pairs))


_PROPERTY_TYPE_TABLES: dict[str, tuple[tuple[str, str], ...]] = {
    "spitogatos": _GREEK_PROPERTY_TYPES + _ENGLISH_PROPERTY_TYPES + _SPITOGATOS_EXTRAS,
    "xe_gr": _GREEK_PROPERTY_TYPES + _ENGLISH_PROPERTY_TYPES,
    "tospitimou": _GREEK_PROPERTY_TYPES + _ENGLISH_PROPERTY_TYPES,
}

# Platforms without their own table use this one.
DEFAULT_PROPERTY_PLATFORM = "spitogatos"

PROPERTY_TYPE_MAPS: Mapping[str, Mapping[str, str]] = MappingProxyType({
    platform: _freeze(pairs) for platform, pairs in _PROPERTY_TYPE_TABLES.items()
})

PROPERTY_TYPE_FALLBACKS: Mapping[str, tuple[tuple[str, str], ...]] = MappingProxyType(
    # dict() collapses duplicate keys; keep first-seen order for the scan
    {platform: tuple(_freeze(pairs).items()) for platform, pairs in _PROPERTY_TYPE_TABLES.items()}
)

# ---------------------------------------------------------------------------
# Transaction types
# ---------------------------------------------------------------------------

SALE = "sale"
RENT = "rent"

TRANSACTION_TYPE_MAP: Mapping[str, str] = _freeze((
    ("πώληση", SALE),
    ("πωληση", SALE),
    ("sale", SALE),
    ("for sale", SALE),
    ("αγορά", SALE),
    ("αγορα", SALE),
    ("buy", SALE),
    ("πωλείται", SALE),
    ("πωλειται", SALE),
    ("ενοικίαση", RENT),
    ("ενοικιαση", RENT),
    ("rent", RENT),
    ("rental", RENT),
    ("for rent", RENT),
    ("to rent", RENT),
    ("ενοικιάζεται", RENT),
    ("ενοικιαζεται", RENT),
))

# Substring scan, in order. Anything else defaults to sale.
RENTAL_KEYWORDS: tuple[str, ...] = ("ενοικ", "rent", "μισθ")

# ---------------------------------------------------------------------------
# Area names
# ---------------------------------------------------------------------------

AREA_NORMALIZATION: Mapping[str, str] = _freeze((
    ("αθήνα", "Αθήνα"),
    ("αθηνα", "Αθήνα"),
    ("athens", "Αθήνα"),
    ("athina", "Αθήνα"),
    ("θεσσαλονίκη", "Θεσσαλονίκη"),
    ("θεσσαλονικη", "Θεσσαλονίκη"),
    ("thessaloniki", "Θεσσαλονίκη"),
    ("πειραιάς", "Πειραιάς"),
    ("πειραιας", "Πειραιάς"),
    ("piraeus", "Πειραιάς"),
    ("peiraias", "Πειραιάς"),
    ("κολωνάκι", "Κολωνάκι"),
    ("κολωνακι", "Κολωνάκι"),
    ("kolonaki", "Κολωνάκι"),
    ("κηφισιά", "Κηφισιά"),
    ("κηφισια", "Κηφισιά"),
    ("kifisia", "Κηφισιά"),
    ("kifissia", "Κηφισιά"),
    ("γλυφάδα", "Γλυφάδα"),
    ("γλυφαδα", "Γλυφάδα"),
    ("glyfada", "Γλυφάδα"),
    ("glifada", "Γλυφάδα"),
    ("βούλα", "Βούλα"),
    ("βουλα", "Βούλα"),
    ("voula", "Βούλα"),
    ("μαρούσι", "Μαρούσι"),
    ("μαρουσι", "Μαρούσι"),
    ("marousi", "Μαρούσι"),
    ("maroussi", "Μαρούσι"),
    ("χαλάνδρι", "Χαλάνδρι"),
    ("χαλανδρι", "Χαλάνδρι"),
    ("chalandri", "Χαλάνδρι"),
    ("halandri", "Χαλάνδρι"),
    ("παλαιό φάληρο", "Παλαιό Φάληρο"),
    ("παλαιο φαληρο", "Παλαιό Φάληρο"),
    ("palaio faliro", "Παλαιό Φάληρο"),
    ("νέα σμύρνη", "Νέα Σμύρνη"),
    ("νεα σμυρνη", "Νέα Σμύρνη"),
    ("nea smyrni", "Νέα Σμύρνη"),
))

# ---------------------------------------------------------------------------
# Floors (signed numeric-string scale)
# ---------------------------------------------------------------------------

FLOOR_NAMES: Mapping[str, str] = _freeze((
    ("υπόγειο", "-1"),
    ("υπογειο", "-1"),
    ("basement", "-1"),
    ("ημιυπόγειο", "-0.5"),
    ("ημιυπογειο", "-0.5"),
    ("semi-basement", "-0.5"),
    ("ισόγειο", "0"),
    ("ισογειο", "0"),
    ("ground", "0"),
    ("ground floor", "0"),
    ("ημιώροφος", "0.5"),
    ("ημιωροφος", "0.5"),
    ("ημιισόγειο", "0.5"),
    ("ημιισογειο", "0.5"),
    ("semi-ground", "0.5"),
    ("mezzanine", "0.5"),
    ("1ος", "1"),
    ("2ος", "2"),
    ("3ος", "3"),
    ("4ος", "4"),
    ("5ος", "5"),
    ("6ος", "6"),
    ("7ος", "7"),
    ("8ος", "8"),
    ("9ος", "9"),
    ("10ος", "10"),
))
