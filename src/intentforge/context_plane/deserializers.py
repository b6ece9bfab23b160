"""Decode raw artifact bytes into their declared shapes."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from typing import Any, Final

import jsonschema

from intentforge.domain.errors import ArtifactDecodeError, RuleDefinitionError
from intentforge.domain.models import ArtifactShape, Capability
from intentforge.verification_plane.rule_sets import load_rule_set_text

Decoder = Callable[[str, bytes, bool], Any]


def _text(path: str, raw: bytes, shape: ArtifactShape) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ArtifactDecodeError(path, shape.value, f"not UTF-8 ({exc.reason})") from exc


def _json(path: str, raw: bytes, shape: ArtifactShape) -> Any:
    try:
        return json.loads(_text(path, raw, shape))
    except json.JSONDecodeError as exc:
        raise ArtifactDecodeError(
            path, shape.value, f"invalid JSON at line {exc.lineno} column {exc.colno}"
        ) from exc


def decode_json(path: str, raw: bytes, validate: bool) -> Any:
    return _json(path, raw, ArtifactShape.JSON)


def decode_json_schema(path: str, raw: bytes, validate: bool) -> dict[str, Any]:
    document = _json(path, raw, ArtifactShape.JSON_SCHEMA)
    if not isinstance(document, Mapping):
        raise ArtifactDecodeError(path, ArtifactShape.JSON_SCHEMA.value, "expected a JSON object")
    if validate:
        try:
            jsonschema.Draft202012Validator.check_schema(document)
        except jsonschema.SchemaError as exc:
            raise ArtifactDecodeError(path, ArtifactShape.JSON_SCHEMA.value, exc.message) from exc
    return dict(document)


def decode_capability(path: str, raw: bytes, validate: bool) -> Capability:
    document = _json(path, raw, ArtifactShape.CAPABILITY)
    try:
        return Capability.from_dict(document, path=path)
    except ValueError as exc:
        raise ArtifactDecodeError(path, ArtifactShape.CAPABILITY.value, str(exc)) from exc


def decode_rule_set(path: str, raw: bytes, validate: bool) -> Any:
    text = _text(path, raw, ArtifactShape.RULE_SET)
    try:
        return load_rule_set_text(text, source=path)
    except RuleDefinitionError as exc:
        raise ArtifactDecodeError(path, ArtifactShape.RULE_SET.value, str(exc)) from exc


def decode_text(path: str, raw: bytes, validate: bool) -> str:
    return _text(path, raw, ArtifactShape.TEXT)


DECODERS: Final[Mapping[ArtifactShape, Decoder]] = {
    ArtifactShape.JSON: decode_json,
    ArtifactShape.JSON_SCHEMA: decode_json_schema,
    ArtifactShape.CAPABILITY: decode_capability,
    ArtifactShape.RULE_SET: decode_rule_set,
    ArtifactShape.TEXT: decode_text,
}


def deserialize(shape: ArtifactShape, path: str, raw: bytes, *, validate: bool = True) -> Any:
    """Decode ``raw`` as ``shape``; malformed content raises ``ArtifactDecodeError``."""

    return DECODERS[ArtifactShape(shape)](path, raw, validate)


__all__ = ["DECODERS", "Decoder", "deserialize"]
