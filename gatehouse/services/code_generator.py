# gatehouse/services/code_generator.py
"""
Human-readable identifiers printed on badges and tickets.

  session  → UMX<id><3 random letters>   e.g. UMX42QWE
  driver   → <session>-CND
  visitor  → <session>-V<nn>             e.g. UMX42QWE-V01
  special  → <session>-<suffix>          e.g. UMX42QWE-PROV

The random letters are cosmetic; uniqueness comes from the session id.
"""

import random
import re
import string
import unicodedata

from gatehouse.config import settings

DRIVER_SUFFIX = "CND"
SUPPLIER_SUFFIX = "PROV"

DRIVER_TAG_RE = re.compile(rf"-{DRIVER_SUFFIX}\d*$")
VISITOR_TAG_RE = re.compile(r"-V\d+$")


def session_code(session_id: int, prefix: str = None) -> str:
    letters = "".join(random.choice(string.ascii_uppercase) for _ in range(3))
    return f"{prefix or settings.SESSION_CODE_PREFIX}{session_id}{letters}"


def driver_tag(code: str) -> str:
    return f"{code}-{DRIVER_SUFFIX}"


def visitor_tag(code: str, n: int) -> str:
    return f"{code}-V{n:02d}"


def special_tag(code: str, suffix: str) -> str:
    return f"{code}-{suffix}"


def session_code_of(tag: str) -> str:
    """Strip the leg suffix from a tag; a bare session code comes back unchanged."""
    return tag.split("-", 1)[0]


def normalize_text(value: str) -> str:
    """Uppercase, accents and punctuation removed. Used for plate and code input."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", value)
    without_accents = "".join(c for c in decomposed if unicodedata.category(c) != "Mn")
    return re.sub(r"[^\w\s-]", "", without_accents).strip().upper()
