"""Write requests sent by clients: records to write to a card."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, List, Mapping

log = logging.getLogger(__name__)

RECORD_TYPE_TEXT = "text"
RECORD_TYPE_URI = "uri"
SUPPORTED_RECORD_TYPES = (RECORD_TYPE_TEXT, RECORD_TYPE_URI)
DEFAULT_LANGUAGE = "en"


@dataclass
class WriteRecord:
    """A single NDEF record: text or URI."""

    type: str = ""
    content: str = ""
    language: str = ""

    def to_dict(self) -> dict:
        data = {"type": self.type, "content": self.content}
        if self.language:
            data["language"] = self.language
        return data


def _string_field(raw: Mapping[str, Any], name: str, index: int) -> str:
    value = raw.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"record {index}: field '{name}' must be a string")
    return value


@dataclass
class WriteRequest:
    """The complete set of records that will overwrite a card's NDEF message."""

    records: List[WriteRecord] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> "WriteRequest":
        """Build a request from a decoded JSON payload; raises ValueError on a bad shape."""
        if payload is None:
            return cls()
        if not isinstance(payload, Mapping):
            raise ValueError("write request payload must be an object")
        raw_records = payload.get("records")
        if raw_records is None:
            return cls()
        if not isinstance(raw_records, list):
            raise ValueError("'records' must be an array")
        records = []
        for index, raw in enumerate(raw_records):
            if not isinstance(raw, Mapping):
                raise ValueError(f"record {index} must be an object")
            records.append(
                WriteRecord(
                    type=_string_field(raw, "type", index),
                    content=_string_field(raw, "content", index),
                    language=_string_field(raw, "language", index),
                )
            )
        return cls(records=records)

    def normalized_records(self) -> List[WriteRecord]:
        """Records with defaults applied; raises ValueError if empty or of an unsupported type."""
        if not self.records:
            raise ValueError("no records provided in write request")
        normalized = []
        for index, record in enumerate(self.records):
            record_type = record.type or RECORD_TYPE_TEXT
            if record_type not in SUPPORTED_RECORD_TYPES:
                raise ValueError(
                    f"unsupported record type '{record_type}' at index {index}"
                )
            language = record.language or DEFAULT_LANGUAGE
            if record_type == RECORD_TYPE_URI:
                normalized.append(replace(record, type=record_type, language=""))
            else:
                normalized.append(replace(record, type=record_type, language=language))
        log.info(
            "WriteRequest: Writing %d NDEF record(s) (complete overwrite)",
            len(normalized),
        )
        return normalized