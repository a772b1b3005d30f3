"""
Value serialization for the object cache.

Memcached only stores byte strings. Scalars are written as-is and tagged with
a type flag; composite values (lists, dicts, objects) are encoded in the PHP
``serialize()`` text format so entries stay readable by every other client
sharing the server. Dicts that would read back as lists, tuples and
byte strings are wrapped in reserved object names so they keep their type. On
the way back a stored string is only decoded when
`is_serialized` recognizes it as such an encoding.

`is_serialized` is a heuristic and deliberately stays one: it looks at the
first tag, the separators and the terminator, and never parses the body. A
plain string that happens to look serialized is therefore wrapped in one more
layer of serialization when written, so that reading it back always returns
the original string.
"""

import copy
import enum
import io
import math
import re
import socket
import threading
import types
import zlib
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Type, Union

from objcache.interfaces import StoredValue
from objcache.utils.exceptions import DecodingError, EncodingRejectedError

# Type flags stored next to each payload (low nibble), plus the compression bit.
FLAG_STR = 0
FLAG_INT = 1
FLAG_FLOAT = 2
FLAG_BOOL = 3
FLAG_BYTES = 15
FLAG_TYPE_MASK = 0x0F
FLAG_COMPRESSED = 1 << 4

PHP_TRIM_CHARS = " \t\n\r\x00\x0b"

# Reserved class names recording Python shapes that PHP arrays cannot carry.
SHAPE_DICT = "__py_dict"
SHAPE_TUPLE = "__py_tuple"
SHAPE_BYTES = "__py_bytes"
_SHAPE_NAMES = (SHAPE_DICT, SHAPE_TUPLE, SHAPE_BYTES)

_LENGTH_PREFIXED = re.compile(r"^([aOs]):[0-9]+:", re.DOTALL)
_NUMERIC_LITERAL = re.compile(r"^([bid]):[0-9.E+-]+;$")

_REJECTED_TYPES = (
    io.IOBase,
    socket.socket,
    types.ModuleType,
    types.GeneratorType,
    types.CoroutineType,
    types.AsyncGeneratorType,
    type(threading.Lock()),
    type(threading.RLock()),
    set,
    frozenset,
    enum.Enum,
)


@dataclass
class PhpObject:
    """A serialized object whose class is not registered in this process."""

    class_name: str
    properties: Dict[Any, Any] = field(default_factory=dict)


class ObjectRegistry:
    """Maps serialized class names back to Python classes.

    Only classes that were registered explicitly, or that this process has
    serialized itself, are ever instantiated on decode; anything else comes
    back as a `PhpObject`. Class names are never imported dynamically.
    """

    def __init__(self):
        self._classes: Dict[str, Type] = {}
        self._lock = threading.Lock()

    def register(self, cls: Type) -> Type:
        """Registers a class; usable as a decorator."""
        with self._lock:
            self._classes[cls.__name__] = cls
        return cls

    def lookup(self, name: str) -> Optional[Type]:
        return self._classes.get(name)


def is_serialized(data: Union[str, bytes, Any]) -> bool:
    """Checks whether a stored string is a PHP ``serialize()`` encoding.

    The rules, in order: trim; ``N;`` is serialized; anything shorter than
    four characters is not; the second character must be ``:``; the last
    character must be ``;`` or ``}``. Then by tag: ``s`` needs a ``"`` before
    the terminator; ``a``, ``O`` and ``s`` need a numeric length followed by
    ``:``; ``b``, ``i`` and ``d`` must be a numeric literal ending in ``;``.
    Every other first character means a plain string.

    Args:
        data: The value read from the cache.

    Returns:
        True if the data looks like a serialized value.
    """
    if isinstance(data, bytes):
        data = data.decode("latin-1")
    if not isinstance(data, str):
        return False

    data = data.strip(PHP_TRIM_CHARS)
    if data == "N;":
        return True
    if len(data) < 4:
        return False
    if data[1] != ":":
        return False
    if data[-1] not in (";", "}"):
        return False

    token = data[0]
    if token == "s":
        if data[-2] != '"':
            return False
        return bool(_LENGTH_PREFIXED.match(data))
    if token in ("a", "O"):
        return bool(_LENGTH_PREFIXED.match(data))
    if token in ("b", "i", "d"):
        return bool(_NUMERIC_LITERAL.match(data))
    return False


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NAN"
    if math.isinf(value):
        return "INF" if value > 0 else "-INF"
    return repr(value).upper()


def _encode_text(value: str) -> bytes:
    try:
        return value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise EncodingRejectedError(
            f"Cannot cache a string that is not valid UTF-8: {e.reason}", value_type="str"
        ) from e


class _Serializer:
    """Writes values in the PHP ``serialize()`` format."""

    def __init__(self, registry: Optional[ObjectRegistry]):
        self.registry = registry
        self._active: set = set()

    def dump(self, value: Any) -> bytes:
        if value is None:
            return b"N;"
        if isinstance(value, bool):
            return b"b:1;" if value else b"b:0;"
        if isinstance(value, int):
            return b"i:%d;" % value
        if isinstance(value, float):
            return b"d:" + _format_float(value).encode("ascii") + b";"
        if isinstance(value, str):
            return self._dump_bytes(_encode_text(value))
        if isinstance(value, (bytes, bytearray)):
            return b'O:%d:"%s":1:{i:0;%s}' % (
                len(SHAPE_BYTES), SHAPE_BYTES.encode("ascii"), self._dump_bytes(bytes(value))
            )

        self._reject_unserializable(value)
        marker = id(value)
        if marker in self._active:
            raise EncodingRejectedError(
                "Cannot cache a value that contains a reference to itself",
                value_type=type(value).__name__,
            )
        self._active.add(marker)
        try:
            if isinstance(value, tuple):
                return self._dump_object(SHAPE_TUPLE, dict(enumerate(value)))
            if isinstance(value, list):
                return self._dump_array(enumerate(value), len(value))
            if isinstance(value, dict):
                # A map keyed 0..n-1 would read back as a list.
                if list(value) == list(range(len(value))):
                    return self._dump_object(SHAPE_DICT, value)
                return self._dump_array(value.items(), len(value))
            if isinstance(value, PhpObject):
                self._reject_reserved(value.class_name)
                return self._dump_object(value.class_name, value.properties)
            self._reject_reserved(type(value).__name__)
            if self.registry is not None:
                self.registry.register(type(value))
            return self._dump_object(type(value).__name__, vars(value))
        finally:
            self._active.discard(marker)

    @staticmethod
    def _reject_unserializable(value: Any) -> None:
        type_name = type(value).__name__
        if isinstance(value, _REJECTED_TYPES):
            raise EncodingRejectedError(f"Cannot cache a value of type {type_name}", value_type=type_name)
        if callable(value):
            raise EncodingRejectedError(f"Cannot cache callable {type_name}", value_type=type_name)
        if not isinstance(value, (list, tuple, dict, PhpObject)) and not hasattr(value, "__dict__"):
            raise EncodingRejectedError(
                f"Cannot cache a value of type {type_name}; only scalars, lists, dicts "
                "and plain objects are supported",
                value_type=type_name,
            )

    @staticmethod
    def _reject_reserved(class_name: str) -> None:
        if class_name in _SHAPE_NAMES:
            raise EncodingRejectedError(
                f"Class name {class_name} is reserved by the cache codec", value_type=class_name
            )

    @staticmethod
    def _dump_bytes(raw: bytes) -> bytes:
        return b's:%d:"%s";' % (len(raw), raw)

    def _dump_key(self, key: Any) -> bytes:
        if isinstance(key, bool) or not isinstance(key, (int, str)):
            raise EncodingRejectedError(
                f"Array keys must be int or str, got {type(key).__name__}",
                value_type=type(key).__name__,
            )
        return self.dump(key)

    def _dump_array(self, items, count: int) -> bytes:
        body = b"".join(self._dump_key(k) + self.dump(v) for k, v in items)
        return b"a:%d:{%s}" % (count, body)

    def _dump_object(self, class_name: str, properties: Dict[Any, Any]) -> bytes:
        name = class_name.encode("utf-8")
        body = b"".join(self._dump_key(k) + self.dump(v) for k, v in properties.items())
        return b'O:%d:"%s":%d:{%s}' % (len(name), name, len(properties), body)


class _Parser:
    """Reads values in the PHP ``serialize()`` format."""

    def __init__(self, data: bytes, registry: Optional[ObjectRegistry]):
        self.data = data
        self.pos = 0
        self.registry = registry

    def fail(self, reason: str) -> DecodingError:
        return DecodingError(
            f"Malformed serialized data at offset {self.pos}: {reason}",
            context={"preview": self.data[:64]},
        )

    def expect(self, literal: bytes) -> None:
        end = self.pos + len(literal)
        if self.data[self.pos:end] != literal:
            raise self.fail(f"expected {literal!r}")
        self.pos = end

    def read_until(self, delimiter: bytes) -> bytes:
        end = self.data.find(delimiter, self.pos)
        if end < 0:
            raise self.fail(f"missing {delimiter!r}")
        chunk = self.data[self.pos:end]
        self.pos = end + len(delimiter)
        return chunk

    def read_int(self, delimiter: bytes) -> int:
        chunk = self.read_until(delimiter)
        try:
            return int(chunk)
        except ValueError:
            raise self.fail(f"invalid integer {chunk!r}") from None

    def parse(self) -> Any:
        value = self.parse_value()
        if self.pos != len(self.data):
            raise self.fail("trailing data")
        return value

    def parse_value(self) -> Any:
        tag = self.data[self.pos:self.pos + 1]
        if tag == b"N":
            self.expect(b"N;")
            return None

        self.pos += 1
        self.expect(b":")
        if tag == b"b":
            flag = self.read_int(b";")
            if flag not in (0, 1):
                raise self.fail("boolean must be 0 or 1")
            return bool(flag)
        if tag == b"i":
            return self.read_int(b";")
        if tag == b"d":
            return self._parse_float(self.read_until(b";"))
        if tag == b"s":
            return self._decode_text(self._parse_string())
        if tag == b"a":
            return self._parse_array()
        if tag == b"O":
            return self._parse_object()
        self.pos -= 2
        raise self.fail(f"unknown tag {tag!r}")

    def _parse_float(self, chunk: bytes) -> float:
        special = {b"INF": math.inf, b"-INF": -math.inf, b"NAN": math.nan}
        if chunk in special:
            return special[chunk]
        try:
            return float(chunk)
        except ValueError:
            raise self.fail(f"invalid float {chunk!r}") from None

    def _parse_string(self) -> bytes:
        length = self.read_int(b":")
        self.expect(b'"')
        raw = self.data[self.pos:self.pos + length]
        if len(raw) != length:
            raise self.fail("string shorter than its declared length")
        self.pos += length
        self.expect(b'";')
        return raw

    @staticmethod
    def _decode_text(raw: bytes) -> Union[str, bytes]:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return raw

    def _parse_members(self, count: int) -> Dict[Any, Any]:
        self.expect(b"{")
        members: Dict[Any, Any] = {}
        for _ in range(count):
            key = self.parse_value()
            if isinstance(key, bool) or not isinstance(key, (int, str)):
                raise self.fail("array keys must be integers or strings")
            members[key] = self.parse_value()
        self.expect(b"}")
        return members

    def _parse_array(self) -> Union[list, dict]:
        count = self.read_int(b":")
        members = self._parse_members(count)
        if list(members) == list(range(len(members))):
            return list(members.values())
        return members

    def _parse_object(self) -> Any:
        name_length = self.read_int(b":")
        self.expect(b'"')
        class_name = self.data[self.pos:self.pos + name_length].decode("utf-8", "replace")
        self.pos += name_length
        self.expect(b'":')
        count = self.read_int(b":")
        if class_name == SHAPE_BYTES:
            if count != 1:
                raise self.fail("bytes wrapper must hold exactly one member")
            self.expect(b"{i:0;s:")
            raw = self._parse_string()
            self.expect(b"}")
            return raw

        properties = self._parse_members(count)
        if class_name == SHAPE_DICT:
            return properties
        if class_name == SHAPE_TUPLE:
            if list(properties) != list(range(len(properties))):
                raise self.fail("tuple members must be keyed 0..n-1")
            return tuple(properties.values())

        cls = self.registry.lookup(class_name) if self.registry is not None else None
        if cls is None:
            return PhpObject(class_name, properties)
        try:
            instance = cls.__new__(cls)
            instance.__dict__.update(properties)
        except (TypeError, AttributeError) as e:
            raise self.fail(f"cannot rebuild {class_name}: {e}") from e
        return instance


def serialize(value: Any, registry: Optional[ObjectRegistry] = None) -> bytes:
    """Serializes a value in the PHP ``serialize()`` format.

    Args:
        value: Scalar, list, tuple, dict, `PhpObject` or plain object.
        registry: Registry that remembers the classes of serialized objects.

    Returns:
        The serialized bytes.

    Raises:
        EncodingRejectedError: If the value (or anything inside it) is a
            resource, a callable, an open handle or otherwise unsupported.
    """
    return _Serializer(registry).dump(value)


def unserialize(data: Union[str, bytes], registry: Optional[ObjectRegistry] = None) -> Any:
    """Decodes a PHP ``serialize()`` payload.

    Arrays whose keys are exactly 0..n-1 decode to lists (an empty array
    decodes to ``[]``); other arrays decode to dicts. Dicts that would read
    back as lists, tuples and byte strings are written as objects of the
    reserved classes ``__py_dict``, ``__py_tuple`` and ``__py_bytes`` and
    decode to their original type.

    Args:
        data: The serialized payload.
        registry: Registry used to rebuild objects of known classes.

    Returns:
        The decoded value.

    Raises:
        DecodingError: If the payload is malformed.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        return _Parser(data.strip(PHP_TRIM_CHARS.encode("ascii")), registry).parse()
    except RecursionError:
        raise DecodingError("Serialized data is nested too deeply") from None


def maybe_serialize(value: Any, registry: Optional[ObjectRegistry] = None) -> Any:
    """Prepares a value for storage.

    Scalars pass through unchanged. Composite values, None, and strings that
    would be mistaken for serialized data on the way back are serialized.
    Objects are deep-copied first so no reference into caller-owned state is
    kept while encoding.

    Raises:
        EncodingRejectedError: If the value cannot be stored.
    """
    if isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, (str, bytes)):
        return serialize(value, registry) if is_serialized(value) else value

    if not isinstance(value, (list, tuple, dict)) and value is not None:
        _Serializer._reject_unserializable(value)
        try:
            value = copy.deepcopy(value)
        except (TypeError, copy.Error) as e:
            raise EncodingRejectedError(
                f"Cannot cache a value of type {type(value).__name__}: {e}",
                value_type=type(value).__name__,
            ) from e
    return serialize(value, registry)


def maybe_unserialize(data: Any, registry: Optional[ObjectRegistry] = None) -> Any:
    """Decodes a stored string if, and only if, it looks serialized.

    Raises:
        DecodingError: If the data looks serialized but cannot be parsed.
    """
    if is_serialized(data):
        return unserialize(data, registry)
    return data


class ValueCodec:
    """Packs application values into (payload, flags) pairs and back.

    Attributes:
        compress_threshold: Payloads longer than this many bytes are
            zlib-compressed; 0 disables compression.
        registry: Classes known to this codec for object round trips.
    """

    def __init__(self, compress_threshold: int = 0, registry: Optional[ObjectRegistry] = None):
        self.compress_threshold = compress_threshold
        self.registry = registry or ObjectRegistry()

    def encode(self, value: Any) -> StoredValue:
        """Encodes a value for the wire.

        Raises:
            EncodingRejectedError: If the value cannot be stored.
        """
        if isinstance(value, bool):
            payload, flags = (b"1" if value else b"0"), FLAG_BOOL
        elif isinstance(value, int):
            payload, flags = str(value).encode("ascii"), FLAG_INT
        elif isinstance(value, float):
            payload, flags = repr(value).encode("ascii"), FLAG_FLOAT
        elif isinstance(value, (bytes, bytearray)):
            payload, flags = bytes(value), FLAG_BYTES
        else:
            prepared = maybe_serialize(value, self.registry)
            if isinstance(prepared, str):
                prepared = _encode_text(prepared)
            payload, flags = prepared, FLAG_STR

        if self.compress_threshold and len(payload) > self.compress_threshold:
            payload, flags = zlib.compress(payload), flags | FLAG_COMPRESSED
        return StoredValue(payload, flags)

    def decode(self, stored: StoredValue) -> Any:
        """Decodes a value read from the wire.

        Raises:
            DecodingError: If the payload does not match its flags or is a
                malformed serialized value.
        """
        payload, flags = stored.payload, stored.flags
        if flags & FLAG_COMPRESSED:
            try:
                payload = zlib.decompress(payload)
            except zlib.error as e:
                raise DecodingError(f"Cannot decompress stored value: {e}") from e

        value_type = flags & FLAG_TYPE_MASK
        try:
            if value_type == FLAG_INT:
                return int(payload)
            if value_type == FLAG_FLOAT:
                return float(payload)
        except ValueError as e:
            raise DecodingError(f"Stored numeric value is malformed: {payload[:32]!r}") from e
        if value_type == FLAG_BOOL:
            return payload.strip() == b"1"
        if value_type == FLAG_BYTES:
            return payload

        if is_serialized(payload):
            return unserialize(payload, self.registry)
        try:
            return payload.decode("utf-8")
        except UnicodeDecodeError:
            return payload
