"""Utility functions for the ANOMPLOT dashboard."""

import json
import math
from typing import Optional, Any

from config import MISSING_TEXT

_DELIM_ALIASES = {
    '\\t': '\t',
    'tab': '\t',
    'tsv': '\t',
    'comma': ',',
    'csv': ',',
    'semicolon': ';',
    'pipe': '|',
    'space': ' ',
    'whitespace': ' ',
}

# Classic, 64-bit offset and 64-bit data headers; NetCDF-4 files are HDF5
_NETCDF_MAGIC = (b'CDF\x01', b'CDF\x02', b'CDF\x05', b'\x89HDF\r\n\x1a\n')


def normalize_delim(d: Optional[str]) -> Optional[str]:
    """Turn a delimiter name ("tab", "comma", a literal "\\t" from the shell) into the character."""
    if d is None:
        return None
    return _DELIM_ALIASES.get(d.lower(), d)


def safe_slug(text: Optional[str], default: str = 'default') -> str:
    """Filename-safe version of ``text``: anything but letters, digits, '-' and '_' becomes '_'."""
    raw = str(text or default)
    slug = ''.join(ch if (ch.isalnum() or ch in {'-', '_'}) else '_' for ch in raw)
    return slug.strip('_') or default


def serialize_attrs(attrs) -> dict:
    """JSON/YAML-safe copy of DataFrame attrs; values that cannot be dumped are stored as repr."""
    if not isinstance(attrs, dict):
        return {}
    out = {}
    for key, value in attrs.items():
        value = list(value) if isinstance(value, tuple) else value
        try:
            json.dumps(value)
        except TypeError:
            value = repr(value)
        out[str(key)] = value
    return out


def is_netcdf_file(filepath: str) -> bool:
    """True when the file starts with a NetCDF (classic or HDF5-based) signature."""
    try:
        with open(filepath, 'rb') as f:
            head = f.read(8)
    except OSError:
        return False
    return any(head.startswith(magic) for magic in _NETCDF_MAGIC)


def is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return not math.isfinite(float(value))
    except (TypeError, ValueError):
        return True


def fmt_value(value: Any, digits: int = 2, unit: Optional[str] = None, missing: str = MISSING_TEXT) -> str:
    """Format a number for display; absent or non-finite values become ``missing``."""
    if is_missing(value):
        return missing
    text = f"{float(value):.{digits}f}"
    return f"{text} {unit}" if unit else text
