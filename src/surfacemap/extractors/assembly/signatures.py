"""
Decoding of ECMA-335 metadata blobs: method signatures and custom attribute
values. Only what a route catalog needs is supported; anything else stops
decoding early and the caller keeps what was read so far.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Any, Callable, Optional

# Element types (ECMA-335 II.23.1.16)
ELEMENT_VOID = 0x01
ELEMENT_BOOLEAN = 0x02
ELEMENT_CHAR = 0x03
ELEMENT_I1 = 0x04
ELEMENT_U1 = 0x05
ELEMENT_I2 = 0x06
ELEMENT_U2 = 0x07
ELEMENT_I4 = 0x08
ELEMENT_U4 = 0x09
ELEMENT_I8 = 0x0A
ELEMENT_U8 = 0x0B
ELEMENT_R4 = 0x0C
ELEMENT_R8 = 0x0D
ELEMENT_STRING = 0x0E
ELEMENT_PTR = 0x0F
ELEMENT_BYREF = 0x10
ELEMENT_VALUETYPE = 0x11
ELEMENT_CLASS = 0x12
ELEMENT_VAR = 0x13
ELEMENT_ARRAY = 0x14
ELEMENT_GENERICINST = 0x15
ELEMENT_TYPEDBYREF = 0x16
ELEMENT_I = 0x18
ELEMENT_U = 0x19
ELEMENT_FNPTR = 0x1B
ELEMENT_OBJECT = 0x1C
ELEMENT_SZARRAY = 0x1D
ELEMENT_MVAR = 0x1E
ELEMENT_CMOD_REQD = 0x1F
ELEMENT_CMOD_OPT = 0x20
ELEMENT_SENTINEL = 0x41
ELEMENT_PINNED = 0x45
ELEMENT_SYSTEM_TYPE = 0x50
ELEMENT_BOXED = 0x51
ELEMENT_ENUM = 0x55

NAMED_FIELD = 0x53
NAMED_PROPERTY = 0x54

SIG_GENERIC = 0x10

# C# keywords, so assembly output reads like source output
PRIMITIVE_NAMES = {
    ELEMENT_VOID: "void",
    ELEMENT_BOOLEAN: "bool",
    ELEMENT_CHAR: "char",
    ELEMENT_I1: "sbyte",
    ELEMENT_U1: "byte",
    ELEMENT_I2: "short",
    ELEMENT_U2: "ushort",
    ELEMENT_I4: "int",
    ELEMENT_U4: "uint",
    ELEMENT_I8: "long",
    ELEMENT_U8: "ulong",
    ELEMENT_R4: "float",
    ELEMENT_R8: "double",
    ELEMENT_STRING: "string",
    ELEMENT_I: "nint",
    ELEMENT_U: "nuint",
    ELEMENT_OBJECT: "object",
    ELEMENT_TYPEDBYREF: "TypedReference",
}

_FIXED_FORMATS = {
    ELEMENT_BOOLEAN: "<?",
    ELEMENT_CHAR: "<H",
    ELEMENT_I1: "<b",
    ELEMENT_U1: "<B",
    ELEMENT_I2: "<h",
    ELEMENT_U2: "<H",
    ELEMENT_I4: "<i",
    ELEMENT_U4: "<I",
    ELEMENT_I8: "<q",
    ELEMENT_U8: "<Q",
    ELEMENT_R4: "<f",
    ELEMENT_R8: "<d",
}

# System.Type arguments are serialized as assembly-qualified type name strings
_SYSTEM_TYPE_NAMES = {"Type", "System.Type"}

# tag -> table for TypeDefOrRefOrSpec coded indexes inside signatures
TYPE_DEF_OR_REF_TABLES = ("TypeDef", "TypeRef", "TypeSpec")

TypeResolver = Callable[[str, int], str]


class SignatureError(ValueError):
    pass


@dataclass(frozen=True)
class SigType:
    element: int
    name: str
    inner: Optional["SigType"] = None

    @property
    def is_string(self) -> bool:
        return self.element == ELEMENT_STRING


@dataclass(frozen=True)
class MethodSig:
    return_type: SigType
    params: tuple[SigType, ...]
    generic_params: int = 0
    has_this: bool = False


@dataclass(frozen=True)
class AttributeValue:
    positional: tuple[Any, ...]
    named: tuple[tuple[str, Any], ...]
    complete: bool = True


class BlobReader:
    def __init__(self, data: bytes) -> None:
        self.data = bytes(data)
        self.pos = 0

    def remaining(self) -> int:
        return len(self.data) - self.pos

    def byte(self) -> int:
        if self.pos >= len(self.data):
            raise SignatureError("unexpected end of blob")
        b = self.data[self.pos]
        self.pos += 1
        return b

    def peek(self) -> int:
        if self.pos >= len(self.data):
            raise SignatureError("unexpected end of blob")
        return self.data[self.pos]

    def take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise SignatureError("unexpected end of blob")
        chunk = self.data[self.pos : self.pos + n]
        self.pos += n
        return chunk

    def unpack(self, fmt: str) -> Any:
        size = struct.calcsize(fmt)
        return struct.unpack(fmt, self.take(size))[0]

    def compressed(self) -> int:
        """ECMA-335 II.23.2 compressed unsigned integer."""
        first = self.byte()
        if first & 0x80 == 0:
            return first
        if first & 0xC0 == 0x80:
            return ((first & 0x3F) << 8) | self.byte()
        if first & 0xE0 == 0xC0:
            b1, b2, b3 = self.take(3)
            return ((first & 0x1F) << 24) | (b1 << 16) | (b2 << 8) | b3
        raise SignatureError(f"bad compressed integer lead byte 0x{first:02x}")

    def ser_string(self) -> Optional[str]:
        if self.peek() == 0xFF:
            self.pos += 1
            return None
        length = self.compressed()
        return self.take(length).decode("utf-8", errors="replace")


def _unknown_type(table: str, index: int) -> str:
    return f"{table}#{index}"


def decode_type(reader: BlobReader, resolve: TypeResolver = _unknown_type) -> SigType:
    el = reader.byte()

    if el in PRIMITIVE_NAMES:
        return SigType(el, PRIMITIVE_NAMES[el])

    if el in (ELEMENT_CMOD_REQD, ELEMENT_CMOD_OPT):
        _type_def_or_ref(reader, resolve)
        return decode_type(reader, resolve)

    if el == ELEMENT_PINNED:
        return decode_type(reader, resolve)

    if el in (ELEMENT_CLASS, ELEMENT_VALUETYPE):
        return SigType(el, _type_def_or_ref(reader, resolve))

    if el in (ELEMENT_BYREF, ELEMENT_PTR):
        inner = decode_type(reader, resolve)
        suffix = "*" if el == ELEMENT_PTR else ""
        return SigType(el, inner.name + suffix, inner)

    if el == ELEMENT_SZARRAY:
        inner = decode_type(reader, resolve)
        return SigType(el, f"{inner.name}[]", inner)

    if el == ELEMENT_ARRAY:
        inner = decode_type(reader, resolve)
        rank = reader.compressed()
        for _ in range(reader.compressed()):  # sizes
            reader.compressed()
        for _ in range(reader.compressed()):  # lower bounds (signed, same encoding width)
            reader.compressed()
        return SigType(el, f"{inner.name}[{',' * max(rank - 1, 0)}]", inner)

    if el == ELEMENT_GENERICINST:
        reader.byte()  # CLASS or VALUETYPE
        generic = _type_def_or_ref(reader, resolve)
        args = [decode_type(reader, resolve) for _ in range(reader.compressed())]
        base = generic.split("`", 1)[0]
        if base in ("Nullable", "System.Nullable") and len(args) == 1:
            return SigType(el, f"{args[0].name}?", args[0])
        return SigType(el, f"{base}<{', '.join(a.name for a in args)}>")

    if el in (ELEMENT_VAR, ELEMENT_MVAR):
        n = reader.compressed()
        return SigType(el, f"{'!!' if el == ELEMENT_MVAR else '!'}{n}")

    if el == ELEMENT_FNPTR:
        decode_method_signature(reader, resolve)
        return SigType(el, "delegate*")

    raise SignatureError(f"unsupported element type 0x{el:02x}")


def _type_def_or_ref(reader: BlobReader, resolve: TypeResolver) -> str:
    coded = reader.compressed()
    tag, index = coded & 0x3, coded >> 2
    if tag >= len(TYPE_DEF_OR_REF_TABLES):
        raise SignatureError(f"bad TypeDefOrRef tag {tag}")
    return resolve(TYPE_DEF_OR_REF_TABLES[tag], index)


def decode_method_signature(reader: BlobReader | bytes, resolve: TypeResolver = _unknown_type) -> MethodSig:
    if not isinstance(reader, BlobReader):
        reader = BlobReader(reader)
    conv = reader.byte()
    generic = reader.compressed() if conv & SIG_GENERIC else 0
    count = reader.compressed()
    ret = decode_type(reader, resolve)
    params = []
    for _ in range(count):
        if reader.remaining() and reader.peek() == ELEMENT_SENTINEL:
            reader.byte()
        params.append(decode_type(reader, resolve))
    return MethodSig(return_type=ret, params=tuple(params), generic_params=generic, has_this=bool(conv & 0x20))


def _read_fixed(reader: BlobReader, t: SigType) -> Any:
    el = t.element
    if el == ELEMENT_STRING:
        return reader.ser_string()
    if el in _FIXED_FORMATS:
        return reader.unpack(_FIXED_FORMATS[el])
    if el == ELEMENT_CLASS and t.name in _SYSTEM_TYPE_NAMES:
        return reader.ser_string()
    if el == ELEMENT_VALUETYPE:
        # enum argument; underlying type is not resolvable here, int32 covers
        # every enum used by routing/authorization attributes
        return reader.unpack("<i")
    if el == ELEMENT_OBJECT:
        return _read_tagged(reader)
    if el == ELEMENT_SZARRAY and t.inner is not None:
        count = reader.unpack("<I")
        if count == 0xFFFFFFFF:
            return None
        return [_read_fixed(reader, t.inner) for _ in range(count)]
    raise SignatureError(f"unsupported attribute argument type {t.name}")


def _read_field_or_prop_type(reader: BlobReader) -> SigType:
    el = reader.byte()
    if el in PRIMITIVE_NAMES:
        return SigType(el, PRIMITIVE_NAMES[el])
    if el == ELEMENT_SZARRAY:
        inner = _read_field_or_prop_type(reader)
        return SigType(el, f"{inner.name}[]", inner)
    if el == ELEMENT_SYSTEM_TYPE:
        return SigType(ELEMENT_CLASS, "System.Type")
    if el == ELEMENT_BOXED:
        return SigType(ELEMENT_OBJECT, "object")
    if el == ELEMENT_ENUM:
        name = reader.ser_string() or "enum"
        return SigType(ELEMENT_VALUETYPE, name)
    raise SignatureError(f"unsupported named argument type 0x{el:02x}")


def _read_tagged(reader: BlobReader) -> Any:
    return _read_fixed(reader, _read_field_or_prop_type(reader))


def decode_custom_attribute(blob: bytes, ctor_params: tuple[SigType, ...] | list[SigType]) -> AttributeValue:
    """
    Decode a CustomAttribute value blob (ECMA-335 II.23.3) given the
    constructor's parameter types. Decoding stops at the first argument whose
    type is not understood; `complete` is False in that case.
    """
    reader = BlobReader(blob)
    positional: list[Any] = []
    named: list[tuple[str, Any]] = []

    if reader.remaining() < 2:
        return AttributeValue(positional=(), named=(), complete=not ctor_params)

    prolog = reader.unpack("<H")
    if prolog != 0x0001:
        return AttributeValue(positional=(), named=(), complete=False)

    try:
        for t in ctor_params:
            positional.append(_read_fixed(reader, t))

        if reader.remaining() >= 2:
            for _ in range(reader.unpack("<H")):
                kind = reader.byte()
                if kind not in (NAMED_FIELD, NAMED_PROPERTY):
                    raise SignatureError(f"bad named argument kind 0x{kind:02x}")
                t = _read_field_or_prop_type(reader)
                name = reader.ser_string() or ""
                named.append((name, _read_fixed(reader, t)))
    except SignatureError:
        return AttributeValue(positional=tuple(positional), named=tuple(named), complete=False)

    return AttributeValue(positional=tuple(positional), named=tuple(named))
