"""
codec.py
========

Boundary between asset bytes and :class:`~flver_fixup.model.Model`.

The binary FLVER reader/writer lives outside this package; anything that
implements :class:`ModelCodec` can be handed to the batch driver. The package
ships :class:`JsonModelCodec`, a JSON document form of the model used for
inspection, hand edits and tests.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import fields as dataclass_fields, is_dataclass
from typing import Any, Callable, Dict, Tuple

from .errors import DecodeError, EncodeError
from .model import (
    Bone,
    Dummy,
    FaceSet,
    FaceSetFlags,
    GXList,
    Material,
    Mesh,
    Model,
    Node,
    NodeFlags,
    Skeletons,
    Vertex,
)


class ModelCodec:
    """Interface of an asset codec."""

    suffixes: Tuple[str, ...] = ()

    def sniff(self, data: bytes) -> bool:
        raise NotImplementedError

    def decode(self, data: bytes) -> Model:
        raise NotImplementedError

    def encode(self, model: Model) -> bytes:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# JSON document codec
# ---------------------------------------------------------------------------

JSON_FORMAT = "flver-fixup/model"
JSON_VERSION = 1

Converter = Callable[["JsonModelCodec", Any, str], Any]


def _int(codec: "JsonModelCodec", value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"{path}: expected an integer, got {value!r}")
    return value


def _float(codec: "JsonModelCodec", value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"{path}: expected a number, got {value!r}")
    return float(value)


def _str(codec: "JsonModelCodec", value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise DecodeError(f"{path}: expected a string, got {value!r}")
    return value


def _bool(codec: "JsonModelCodec", value: Any, path: str) -> bool:
    if not isinstance(value, bool):
        raise DecodeError(f"{path}: expected true or false, got {value!r}")
    return value


def _list_of(convert: Converter) -> Converter:
    def convert_list(codec: "JsonModelCodec", value: Any, path: str):
        if not isinstance(value, list):
            raise DecodeError(f"{path}: expected a list")
        return [convert(codec, item, f"{path}[{index}]") for index, item in enumerate(value)]
    return convert_list


def _vec3(codec: "JsonModelCodec", value: Any, path: str) -> Tuple[float, float, float]:
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        raise DecodeError(f"{path}: expected 3 numbers, got {value!r}")
    return tuple(_float(codec, component, f"{path}[{index}]") for index, component in enumerate(value))


_vec3_list = _list_of(_vec3)
_int_list = _list_of(_int)
_float_list = _list_of(_float)


def _flags(flag_type: type) -> Converter:
    return lambda codec, value, path: flag_type(_int(codec, value, path))


def _entity(cls: type) -> Converter:
    return lambda codec, value, path: codec.decode_entity(cls, value, path)


def _entity_list(cls: type) -> Converter:
    def convert(codec: "JsonModelCodec", value: Any, path: str):
        if not isinstance(value, list):
            raise DecodeError(f"{path}: expected a list")
        return [codec.decode_entity(cls, item, f"{path}[{index}]") for index, item in enumerate(value)]
    return convert


def _base64(codec: "JsonModelCodec", value: Any, path: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, TypeError) as exc:
        raise DecodeError(f"{path}: invalid base64 payload ({exc})") from exc


FIELD_DECODERS: Dict[type, Dict[str, Converter]] = {
    Node: {
        "flags": _flags(NodeFlags),
        "translation": _vec3,
        "rotation": _vec3,
        "scale": _vec3,
    },
    Vertex: {
        "position": _vec3,
        "normal": _vec3,
        "bone_indices": _int_list,
        "bone_weights": _float_list,
        "uvs": _vec3_list,
    },
    FaceSet: {
        "flags": _flags(FaceSetFlags),
        "indices": _int_list,
    },
    Mesh: {
        "vertices": _entity_list(Vertex),
        "face_sets": _entity_list(FaceSet),
    },
    Dummy: {"position": _vec3},
    Skeletons: {
        "base_skeleton": _entity_list(Bone),
        "all_skeletons": _entity_list(Bone),
    },
    GXList: {"data": _base64},
    Model: {
        "nodes": _entity_list(Node),
        "meshes": _entity_list(Mesh),
        "dummies": _entity_list(Dummy),
        "materials": _entity_list(Material),
        "gx_lists": _entity_list(GXList),
        "skeletons": _entity(Skeletons),
    },
}

# Fields without an entry above are checked against their annotation.
SCALAR_DECODERS: Dict[str, Converter] = {"int": _int, "str": _str, "bool": _bool}


def to_payload(value: Any) -> Any:
    """Convert model objects into JSON compatible values."""
    if is_dataclass(value):
        return {f.name: to_payload(getattr(value, f.name)) for f in dataclass_fields(value)}
    if isinstance(value, (list, tuple)):
        return [to_payload(item) for item in value]
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return int(value)
    return value


class JsonModelCodec(ModelCodec):
    """Reads and writes models as JSON documents.

    In permissive mode unknown keys are ignored and missing keys fall back to
    the model defaults; otherwise both are decode errors.
    """

    suffixes = (".json",)

    def __init__(self, permissive: bool = False, indent: int = 1) -> None:
        self.permissive = permissive
        self.indent = indent

    def sniff(self, data: bytes) -> bool:
        head = data[:512].lstrip()
        return head.startswith(b"{") and JSON_FORMAT.encode("ascii") in head

    def decode(self, data: bytes) -> Model:
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DecodeError(f"invalid JSON model document: {exc}") from exc
        if not isinstance(payload, dict):
            raise DecodeError("model document must be a JSON object")

        if payload.get("format") != JSON_FORMAT:
            raise DecodeError(f"unexpected document format {payload.get('format')!r}")
        version = payload.get("version")
        if version != JSON_VERSION and not self.permissive:
            raise DecodeError(f"unsupported document version {version!r}")

        body = {key: value for key, value in payload.items() if key not in ("format", "version")}
        try:
            return self.decode_entity(Model, body, "model")
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"malformed model document: {exc}") from exc

    def decode_entity(self, cls: type, payload: Any, path: str) -> Any:
        if not isinstance(payload, dict):
            raise DecodeError(f"{path}: expected an object")

        field_types = {f.name: f.type if isinstance(f.type, str) else getattr(f.type, "__name__", "") for f in dataclass_fields(cls)}
        known = list(field_types)
        unknown = sorted(set(payload) - set(known))
        if unknown and not self.permissive:
            raise DecodeError(f"{path}: unknown keys {', '.join(unknown)}")

        converters = FIELD_DECODERS.get(cls, {})
        kwargs: Dict[str, Any] = {}
        for name in known:
            if name not in payload:
                if self.permissive:
                    continue
                raise DecodeError(f"{path}: missing key {name!r}")
            convert = converters.get(name) or SCALAR_DECODERS.get(field_types[name])
            value = payload[name]
            kwargs[name] = convert(self, value, f"{path}.{name}") if convert else value
        return cls(**kwargs)

    def encode(self, model: Model) -> bytes:
        document = {"format": JSON_FORMAT, "version": JSON_VERSION}
        try:
            document.update(to_payload(model))
            text = json.dumps(document, indent=self.indent)
        except (TypeError, ValueError) as exc:
            raise EncodeError(f"cannot serialize model: {exc}") from exc
        return (text + "\n").encode("utf-8")
