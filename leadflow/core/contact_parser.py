"""
Contact Text Parser
===================
Pulls a name, phone number and location out of a pasted chat message.
Pattern based, Turkish only, first match wins per field.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Tuple

from leadflow.core.models import ParsedContact, ParseResult
from leadflow.core.phone import to_messaging_form

logger = logging.getLogger(__name__)


# ── Gazetteer ─────────────────────────────────────────────────────────────────

TURKISH_CITIES = (
    "Adana", "Adıyaman", "Afyonkarahisar", "Ağrı", "Aksaray", "Amasya", "Ankara",
    "Antalya", "Ardahan", "Artvin", "Aydın", "Balıkesir", "Bartın", "Batman",
    "Bayburt", "Bilecik", "Bingöl", "Bitlis", "Bolu", "Burdur", "Bursa",
    "Çanakkale", "Çankırı", "Çorum", "Denizli", "Diyarbakır", "Düzce", "Edirne",
    "Elazığ", "Erzincan", "Erzurum", "Eskişehir", "Gaziantep", "Giresun",
    "Gümüşhane", "Hakkari", "Hatay", "Iğdır", "Isparta", "İstanbul", "İzmir",
    "Kahramanmaraş", "Karabük", "Karaman", "Kars", "Kastamonu", "Kayseri",
    "Kilis", "Kırıkkale", "Kırklareli", "Kırşehir", "Kocaeli", "Konya",
    "Kütahya", "Malatya", "Manisa", "Mardin", "Mersin", "Muğla", "Muş",
    "Nevşehir", "Niğde", "Ordu", "Osmaniye", "Rize", "Sakarya", "Samsun",
    "Şanlıurfa", "Siirt", "Sinop", "Sivas", "Şırnak", "Tekirdağ", "Tokat",
    "Trabzon", "Tunceli", "Uşak", "Van", "Yalova", "Yozgat", "Zonguldak",
    # Short names people actually write
    "Afyon", "Urfa", "Antep", "Maraş", "Tarsus",
)

UPPER = "A-ZÇĞIİÖŞÜ"
LOWER = "a-zçğıiöşü"
TITLE_WORD = f"[{UPPER}][{LOWER}]+"
ANY_WORD = f"[{UPPER}{LOWER}]+"

HONORIFICS = re.compile(r"^(?:Bayan|Bay|Sayın|Sr|Sn)\s+", re.IGNORECASE)
LOCATION_SUFFIX = re.compile(r"['’](?:dan|den)$", re.IGNORECASE)
WORDS = re.compile(ANY_WORD)


# ── Turkish casing ────────────────────────────────────────────────────────────

def tr_lower(text: str) -> str:
    return text.replace("I", "ı").replace("İ", "i").lower()


def tr_upper(text: str) -> str:
    return text.replace("i", "İ").replace("ı", "I").upper()


def tr_capitalize(word: str) -> str:
    return tr_upper(word[:1]) + tr_lower(word[1:])


# ── Patterns ──────────────────────────────────────────────────────────────────

PHONE_PATTERNS = (
    # +90 532 123 45 67
    re.compile(r"\+90\s?\d{3}\s?\d{3}\s?\d{2}\s?\d{2}"),
    # 0532 123 45 67
    re.compile(r"0\d{3}\s?\d{3}\s?\d{2}\s?\d{2}"),
    # 05321234567
    re.compile(r"\d{11}"),
    # 532-123-45-67
    re.compile(r"\d{3}[-\s]?\d{3}[-\s]?\d{2}[-\s]?\d{2}"),
)

NAME_PATTERNS = (
    # Ahmet Yılmaz / Ayşe Nur Demir
    re.compile(rf"({TITLE_WORD}[ \t]+{TITLE_WORD}(?:[ \t]+{TITLE_WORD})?)"),
    # Sayın Demir
    re.compile(rf"(?i:Bayan|Bay|Sayın|Sr|Sn)[ \t]+({TITLE_WORD}(?:[ \t]+{TITLE_WORD})?)"),
    # isim: ahmet yılmaz
    re.compile(rf"\b(?i:isim|ad|name)[ \t]*:[ \t]*({ANY_WORD}(?:[ \t]+{ANY_WORD})?)"),
)

LOCATION_PATTERNS = (
    # Şehir: Ankara
    re.compile(rf"\b(?i:şehir|city|konum|location|yer)[ \t]*:[ \t]*({ANY_WORD})"),
    # Ankara'dan
    re.compile(rf"({TITLE_WORD}['’](?:dan|den))\b"),
)

CONFIDENCE_WEIGHTS = (
    ("phone", 40),
    ("name", 30),
    ("city", 20),
    ("region", 10),
)

EMPTY_TEXT_REASON = "Text is empty or contains only whitespace"


def _unique(values: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


class ContactTextParser:
    """Stateless; one instance can be shared by any number of callers."""

    def __init__(self, cities: Iterable[str] = TURKISH_CITIES):
        self._cities = {}
        for city in cities:
            self._cities.setdefault(tr_lower(city), city)

    # ── Normalisation ─────────────────────────────────────────────────────────

    @staticmethod
    def normalize_name(name: str) -> str:
        cleaned = re.sub(r"\s+", " ", name.strip())
        cleaned = HONORIFICS.sub("", cleaned)
        return " ".join(tr_capitalize(word) for word in cleaned.split(" ") if word)

    def normalize_city(self, city: str) -> str:
        cleaned = LOCATION_SUFFIX.sub("", city.strip()).strip()
        known = self._cities.get(tr_lower(cleaned))
        return known or tr_capitalize(cleaned)

    # ── Extraction ────────────────────────────────────────────────────────────

    def extract_phones(self, text: str) -> List[str]:
        found = []
        for pattern in PHONE_PATTERNS:
            found.extend(to_messaging_form(m.group(0)) for m in pattern.finditer(text))
        return _unique(found)

    def extract_names(self, text: str) -> List[str]:
        found = []
        for pattern in NAME_PATTERNS:
            for match in pattern.finditer(text):
                name = self.normalize_name(match.group(1))
                if len(name) > 2:
                    found.append(name)
        return _unique(found)

    def extract_locations(self, text: str) -> List[str]:
        found = []
        for pattern in LOCATION_PATTERNS:
            found.extend(self.normalize_city(m.group(1)) for m in pattern.finditer(text))

        # Gazetteer: province names are single words
        for word in WORDS.finditer(text):
            city = self._cities.get(tr_lower(word.group(0)))
            if city:
                found.append(city)
        return _unique(found)

    # ── Entry point ───────────────────────────────────────────────────────────

    def parse(self, text: Optional[str]) -> ParseResult:
        if not text or not text.strip():
            return ParseResult(success=False, error=EMPTY_TEXT_REASON)

        clean_text = text.strip()
        phones = self.extract_phones(clean_text)
        names = self.extract_names(clean_text)
        locations = self.extract_locations(clean_text)

        fields = {
            "phone": phones[0] if phones else None,
            "name": names[0] if names else None,
            "city": locations[0] if locations else None,
            "region": locations[1] if len(locations) > 1 else None,
        }
        contact = ParsedContact(raw=clean_text, confidence=calculate_confidence(**fields), **fields)
        logger.debug(
            "Parsed contact text: %d phone(s), %d name(s), %d location(s), confidence %d",
            len(phones), len(names), len(locations), contact.confidence,
        )
        return ParseResult(success=True, data=contact)


def calculate_confidence(**fields: Optional[str]) -> int:
    score = sum(weight for key, weight in CONFIDENCE_WEIGHTS if fields.get(key))
    return min(score, 100)


_default_parser = ContactTextParser()


def parse_contact_text(text: Optional[str]) -> ParseResult:
    return _default_parser.parse(text)


# ── Review helpers ────────────────────────────────────────────────────────────

MESSAGING_PHONE = re.compile(r"^\+90[0-9]{10}$")
NAME_CHARS = re.compile(rf"^[{UPPER}{LOWER}\s]+$")


def validate_parsed_contact(data: ParsedContact) -> Tuple[bool, List[str]]:
    """Sanity-check a parse before it is used to seed a lead."""
    errors = []

    if data.phone and not MESSAGING_PHONE.match(data.phone):
        errors.append("Phone number has an invalid format")

    if data.name:
        if len(data.name) < 2:
            errors.append("Name is too short")
        if not NAME_CHARS.match(data.name):
            errors.append("Name contains invalid characters")

    if data.city and len(data.city) < 2:
        errors.append("City name is too short")

    return not errors, errors


def format_parsed_contact(data: ParsedContact) -> str:
    parts = []
    if data.name:
        parts.append(f"İsim: {data.name}")
    if data.phone:
        parts.append(f"Telefon: {data.phone}")
    if data.city:
        parts.append(f"Şehir: {data.city}")
    if data.region:
        parts.append(f"Bölge: {data.region}")
    parts.append(f"Güven: %{data.confidence}")
    return "\n".join(parts)
