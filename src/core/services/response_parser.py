"""Response Parser.

Extrae campos escalares de las respuestas (JSON o casi-JSON) de gcloud.

Estrategias, en orden:
1) `structured`: `json.loads` + resolución de ruta (`.keyString`,
   `.[0].name`, `a.b[0].c`). Si la ruta es un nombre simple y no resuelve,
   se busca la primera aparición de esa clave en todo el documento.
2) `pattern`: expresiones regulares ajustadas a las formas conocidas
   (`keyString`, primer `name`) y el patrón genérico `"<campo>": <valor>`.

Nunca lanza: la ausencia se devuelve como `None`.
"""

from __future__ import annotations

import json
import re
from typing import Any

from core.domain.models import ParsedField

_PATH_TOKEN_RE = re.compile(r"\[(\d+)\]|([^.\[\]]+)")
_KEY_STRING_RE = re.compile(r'"keyString"\s*:\s*"([^"]*)"')
_FIRST_NAME_RE = re.compile(r'"name"\s*:\s*"([^"]*)"')

_MISSING = object()


def _split_path(field_path: str) -> list[str | int]:
    tokens: list[str | int] = []
    for index, name in _PATH_TOKEN_RE.findall(field_path.strip()):
        tokens.append(int(index) if index else name)
    return tokens


def _resolve(document: Any, tokens: list[str | int]) -> Any:
    current = document
    for token in tokens:
        if isinstance(token, int):
            if not isinstance(current, list) or token >= len(current):
                return _MISSING
            current = current[token]
        else:
            if not isinstance(current, dict) or token not in current:
                return _MISSING
            current = current[token]
    return current


def _find_key(document: Any, key: str) -> Any:
    """Primera aparición de `key` en profundidad (dicts y listas)."""

    if isinstance(document, dict):
        if key in document:
            return document[key]
        children = list(document.values())
    elif isinstance(document, list):
        children = document
    else:
        return _MISSING
    for child in children:
        found = _find_key(child, key)
        if found is not _MISSING:
            return found
    return _MISSING


def _scalar_to_str(value: Any) -> str | None:
    if value is None or value is _MISSING:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, str)):
        text = str(value).strip()
        return text or None
    return None


def load_json(raw_text: str) -> Any | None:
    """Parse tolerante: `None` si el texto no es JSON."""

    text = (raw_text or "").strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _structured(raw_text: str, field_path: str) -> str | None:
    document = load_json(raw_text)
    if document is None:
        return None
    tokens = _split_path(field_path)
    if not tokens:
        return None
    value = _resolve(document, tokens)
    if value is _MISSING and len(tokens) == 1 and isinstance(tokens[0], str):
        value = _find_key(document, tokens[0])
    return _scalar_to_str(value)


def _pattern(raw_text: str, field_path: str) -> str | None:
    text = raw_text or ""
    if not text.strip():
        return None

    normalized = field_path.strip()
    if normalized in (".keyString", "keyString"):
        match = _KEY_STRING_RE.search(text)
        if not match:
            return None
        return match.group(1).strip() or None
    if normalized in (".[0].name", "[0].name"):
        match = _FIRST_NAME_RE.search(text)
        if not match:
            return None
        return match.group(1).strip() or None

    tokens = [t for t in _split_path(normalized) if isinstance(t, str)]
    if not tokens:
        return None
    name = re.escape(tokens[-1])

    quoted = re.search(rf'"{name}"\s*:\s*"([^"]*)"', text)
    if quoted:
        return quoted.group(1).strip() or None

    bare = re.search(rf'"{name}"\s*:\s*([^,\s}}\]]+)', text)
    if bare:
        value = bare.group(1).strip().strip('"').strip("'").strip()
        return value or None
    return None


def extract_field(raw_text: str, field_path: str) -> ParsedField:
    value = _structured(raw_text, field_path)
    if value is not None:
        return ParsedField(field=field_path, value=value, strategy="structured")
    value = _pattern(raw_text, field_path)
    if value is not None:
        return ParsedField(field=field_path, value=value, strategy="pattern")
    return ParsedField(field=field_path)


def extract(raw_text: str, field_path: str) -> str | None:
    return extract_field(raw_text, field_path).value


def extract_list(raw_text: str, field: str) -> list[str]:
    """Valores de `field` en cada elemento de una respuesta JSON tipo lista."""

    document = load_json(raw_text)
    if not isinstance(document, list):
        return []
    values: list[str] = []
    for item in document:
        value = _scalar_to_str(_find_key(item, field)) if isinstance(item, dict) else None
        if value:
            values.append(value)
    return values


def split_lines(raw_text: str) -> list[str]:
    """Salida `--format=value(...)`: una entrada por línea, sin vacías."""

    return [line.strip() for line in (raw_text or "").splitlines() if line.strip()]
