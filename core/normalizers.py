import re
import unicodedata
from datetime import date, datetime


_WS_RE = re.compile(r"\s+")
_NON_DIGIT_RE = re.compile(r"\D")
_SLASH_DATE_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4}|\d{2})$")


def clean_text(raw) -> str:
    """Collapse whitespace runs in OCR output."""
    if raw is None:
        return ""
    return _WS_RE.sub(" ", str(raw)).strip()


def normalize_name(raw) -> str:
    """Comparison key for a person's name.

    Lowercased, diacritics and punctuation removed, whitespace collapsed.
    Only used to compare names; never stored or displayed.
    """
    if raw is None:
        return ""
    text = unicodedata.normalize("NFKD", unicodedata.normalize("NFKD", str(raw)).lower())
    kept = []
    for ch in text:
        if unicodedata.combining(ch):
            continue
        cat = unicodedata.category(ch)
        if cat[0] in ("L", "N"):
            kept.append(ch)
        elif ch.isspace():
            kept.append(" ")
    return _WS_RE.sub(" ", "".join(kept)).strip()


def name_tokens(raw) -> list[str]:
    n = normalize_name(raw)
    return n.split(" ") if n else []


def digits_only(raw) -> str:
    if raw is None:
        return ""
    return _NON_DIGIT_RE.sub("", str(raw))


def clean_phone_digits(raw) -> str | None:
    digits = digits_only(raw)
    return digits or None


def parse_date(raw) -> date | None:
    """Parse M/D/YYYY, M-D-YYYY, M/D/YY (20YY) or ISO text into a date."""
    if raw is None or not isinstance(raw, str):
        return None
    s = raw.strip()
    if not s:
        return None

    m = _SLASH_DATE_RE.match(s)
    if m:
        month, day, year = int(m.group(1)), int(m.group(2)), m.group(3)
        full_year = 2000 + int(year) if len(year) == 2 else int(year)
        try:
            return date(full_year, month, day)
        except ValueError:
            return None

    iso = s[:-1] + "+00:00" if s.endswith(("Z", "z")) else s
    try:
        return datetime.fromisoformat(iso).date()
    except ValueError:
        return None


def format_date(d: date) -> str:
    return f"{d.month:02d}-{d.day:02d}-{d.year:04d}"


def canonicalize_date(raw):
    """Return ``raw`` as ``MM-DD-YYYY``, or unchanged when it can't be parsed."""
    parsed = parse_date(raw)
    return format_date(parsed) if parsed else raw
