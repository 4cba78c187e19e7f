"""
Text utilities for handling Portuguese CSV cells.

Used for field name normalization and lenient number parsing.
"""

import math
import re
from typing import Optional

NON_IDENTIFIER = re.compile(r"[^a-z0-9]")
CURRENCY_NOISE = re.compile(r"[R$\s%]")


def normalize_field_name(name: str) -> str:
    """
    Target field name for a source column.

    Lowercases and replaces every character outside [a-z0-9] with "_":
    - "Nome Cliente" → "nome_cliente"
    - "Valor (R$)" → "valor__r__"

    Accents are replaced too, not transliterated ("ção" → "___").
    """
    return NON_IDENTIFIER.sub('_', name.lower())


def parse_number(value: Optional[str]) -> Optional[float]:
    """
    Parse numbers written the Brazilian or the plain way.

    - "1.234,56" → 1234.56
    - "R$ 10,50" → 10.5
    - "3.75" → 3.75
    - "abc" → None

    Args:
        value: Raw cell text

    Returns:
        float, or None when the text is not a finite number
    """
    if value is None:
        return None

    text = CURRENCY_NOISE.sub('', str(value))
    if not text:
        return None

    if ',' in text and '.' in text:
        # Thousands separator is whichever comes first
        if text.rfind(',') > text.rfind('.'):
            text = text.replace('.', '').replace(',', '.')
        else:
            text = text.replace(',', '')
    elif ',' in text:
        text = text.replace(',', '.')

    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None
