"""
Conversion of raw directory entries into DirectoryRecords.

Two raw shapes are accepted: the ldap3 response shape
``{'dn': ..., 'attributes': {'mail': [...], 'cn': [...]}}`` and the wire-level
attribute list ``{'attributes': [{'type': 'mail', 'values': [...]}, ...]}``.
"""

import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional

from ldap_provision.errors import InvalidDirectoryRecord
from ldap_provision.models import DirectoryRecord

logger = logging.getLogger(__name__)

# Attributes passed through unmodified instead of being trimmed as text
OPAQUE_ATTRIBUTES = frozenset({'userpassword'})


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        try:
            value = bytes(value).decode('utf-8')
        except UnicodeDecodeError:
            raise InvalidDirectoryRecord("Attribute value is not valid UTF-8")
    text = str(value).strip()
    return text or None


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _values(value: Any) -> List[str]:
    return [text for text in (_as_text(v) for v in _as_list(value)) if text]


def _opaque_values(value: Any) -> List[str]:
    # Credentials are kept byte for byte; undecodable bytes survive as surrogates
    return [
        bytes(v).decode('utf-8', 'surrogateescape') if isinstance(v, (bytes, bytearray)) else str(v)
        for v in _as_list(value) if v is not None
    ]


def _attribute_values(name: str, value: Any) -> List[str]:
    if name in OPAQUE_ATTRIBUTES:
        return _opaque_values(value)
    return _values(value)


def attribute_map(raw: Dict[str, Any]) -> Dict[str, List[str]]:
    """Flatten a raw entry into a lower-cased attribute name -> values mapping."""
    attributes = raw.get('attributes', raw) if isinstance(raw, dict) else None
    if attributes is None:
        raise InvalidDirectoryRecord(f"Unsupported directory entry: {type(raw).__name__}")

    result: Dict[str, List[str]] = {}
    if isinstance(attributes, dict):
        for name, value in attributes.items():
            key = str(name).lower()
            result[key] = _attribute_values(key, value)
    elif isinstance(attributes, (list, tuple)):
        for group in attributes:
            name = group.get('type')
            if name:
                key = str(name).lower()
                result.setdefault(key, []).extend(_attribute_values(key, group.get('values')))
    else:
        raise InvalidDirectoryRecord(f"Unsupported attribute container: {type(attributes).__name__}")
    return result


class RecordNormalizer:
    """Turns raw entries into DirectoryRecords and counts the ones it drops."""

    def __init__(self):
        self.invalid_count = 0

    def normalize(self, raw: Dict[str, Any]) -> DirectoryRecord:
        """
        Build a DirectoryRecord from one raw entry.

        Raises:
            InvalidDirectoryRecord: If mail or cn is missing or empty
        """
        attributes = attribute_map(raw)
        mail = attributes.get('mail') or []
        names = attributes.get('cn') or []

        if not mail or not names:
            raise InvalidDirectoryRecord(
                f"Directory entry {raw.get('dn', '<unknown dn>')} missing required attributes "
                f"(mail: {mail or None}, cn: {names or None})"
            )

        passwords = attributes.get('userpassword') or []
        return DirectoryRecord(
            email=mail[0],
            display_names=tuple(names),
            credential_material=passwords[0] if passwords else None,
        )

    def normalize_all(self, entries: Iterable[Dict[str, Any]]) -> Iterator[DirectoryRecord]:
        """
        Lazily normalize a stream of raw entries, skipping invalid ones.

        Errors raised by the underlying stream propagate unchanged.
        """
        for raw in entries:
            try:
                record = self.normalize(raw)
            except InvalidDirectoryRecord as e:
                self.invalid_count += 1
                logger.warning(f"Skipping invalid directory entry: {e}")
                continue
            yield record
