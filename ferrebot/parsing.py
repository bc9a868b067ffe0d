"""
Free-text helpers for the ordering dialogue: cart lines ("Cemento x 3"),
delivery data (name / mobile / address), catalogue search terms and price
formatting.
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import List, Optional, Tuple

_LINE_SPLIT = re.compile(r"[\n;,]+")
_NAME_TIMES_QTY = re.compile(r"^(?P<name>.+?)\s*[x×]\s*(?P<qty>\d{1,4})$", re.IGNORECASE)
_QTY_NAME = re.compile(r"^(?P<qty>\d{1,4})\s+(?:unidades?\s+de\s+|bolsas?\s+de\s+)?(?P<name>[^\d].*)$", re.IGNORECASE)
_BULLET = re.compile(r"^[\s\-•*·]+")

_PHONE = re.compile(r"(?<!\d)9(?:[\s-]?\d){8}(?!\d)")

STOPWORDS = frozenset({
    "a", "al", "algo", "alguna", "alguno", "busco", "buscando", "con", "cual", "cuales",
    "de", "del", "el", "en", "es", "esta", "este", "hay", "la", "las", "lo", "los",
    "me", "mi", "necesito", "para", "por", "producto", "productos", "que", "quiero",
    "se", "si", "stock", "su", "tiene", "tienen", "tienes", "un", "una", "unos", "unas",
    "venden", "vendes", "y", "disponible", "disponibles", "ustedes", "hola", "favor",
})


def format_price(amount: float, symbol: str = "S/") -> str:
    """format_price(28.5) -> 'S/ 28.50'"""
    return f"{symbol} {amount:.2f}"


def validate_phone(phone: str) -> bool:
    """Peruvian mobile numbers: 9 digits starting with 9."""
    return bool(re.fullmatch(r"9\d{8}", re.sub(r"[\s-]+", "", phone or "")))


def parse_cart_lines(text: str) -> List[Tuple[str, int]]:
    """
    Extract (product name, quantity) pairs.

    Accepts "Cemento x 3", "Fierro 1/2\" x 5" and "2 pintura blanca", one per
    line or separated by commas/semicolons. Lines that match neither form
    are ignored.
    """
    lines: List[Tuple[str, int]] = []

    for raw in _LINE_SPLIT.split(text or ""):
        chunk = _BULLET.sub("", raw).strip()
        if not chunk:
            continue

        match = _NAME_TIMES_QTY.match(chunk) or _QTY_NAME.match(chunk)
        if not match:
            continue

        name = match.group("name").strip(" .:-")
        quantity = int(match.group("qty"))
        if name and quantity > 0:
            lines.append((name, quantity))

    return lines


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def extract_search_terms(text: str) -> List[str]:
    """
    Candidate catalogue search terms, most specific first.

    "¿Tienen pintura látex?" -> ["pintura látex", "pintura", "látex"]
    """
    words = [w for w in re.findall(r"\w+", (text or "").lower()) if len(w) > 2]
    significant = [w for w in words if _fold(w) not in STOPWORDS and not w.isdigit()]

    terms: List[str] = []
    if len(significant) > 1:
        terms.append(" ".join(significant))
    significant.sort(key=len, reverse=True)
    for word in significant:
        if word not in terms:
            terms.append(word)
    return terms


@dataclass
class ContactData:
    phone: str
    address: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


def parse_contact_data(text: str) -> Optional[ContactData]:
    """
    Read name, mobile number and delivery address from one message.

    Expected shape (order of lines is flexible for the phone):
        Juan Pérez
        987654321
        Av. Principal 123, San Isidro

    Returns:
        ContactData, or None when no valid phone or address is present
    """
    match = _PHONE.search(text or "")
    if not match:
        return None

    phone = re.sub(r"[\s-]+", "", match.group(0))
    remainder = (text[:match.start()] + "\n" + text[match.end():])
    lines = [line.strip(" ,;:-") for line in remainder.splitlines()]
    lines = [line for line in lines if line]

    name: Optional[str] = None
    address = ""

    if len(lines) >= 2:
        name = lines[0]
        address = ", ".join(lines[1:])
    elif len(lines) == 1:
        head, sep, tail = lines[0].partition(",")
        if sep and not re.search(r"\d", head) and tail.strip():
            name, address = head.strip(), tail.strip()
        else:
            address = lines[0]

    if len(address) < 5:
        return None

    first_name = last_name = None
    if name:
        parts = name.split()
        first_name = parts[0]
        last_name = " ".join(parts[1:]) or None

    return ContactData(phone=phone, address=address, first_name=first_name, last_name=last_name)
