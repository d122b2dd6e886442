"""
Decoding of metadata signature blobs into IL type syntax.

Covers method, field, property, local variable and TypeSpec signatures
(ECMA-335 II.23.2). Type references inside a blob are turned into names by a
resolver callback that receives a metadata token.
"""

from collections.abc import Callable
from dataclasses import dataclass, field

# Element types
ELEMENT_TYPE_PTR = 0x0F
ELEMENT_TYPE_BYREF = 0x10
ELEMENT_TYPE_VALUETYPE = 0x11
ELEMENT_TYPE_CLASS = 0x12
ELEMENT_TYPE_VAR = 0x13
ELEMENT_TYPE_ARRAY = 0x14
ELEMENT_TYPE_GENERICINST = 0x15
ELEMENT_TYPE_FNPTR = 0x1B
ELEMENT_TYPE_SZARRAY = 0x1D
ELEMENT_TYPE_MVAR = 0x1E
ELEMENT_TYPE_CMOD_REQD = 0x1F
ELEMENT_TYPE_CMOD_OPT = 0x20
ELEMENT_TYPE_SENTINEL = 0x41
ELEMENT_TYPE_PINNED = 0x45

PRIMITIVE_TYPES = {
    0x01: "void",
    0x02: "bool",
    0x03: "char",
    0x04: "int8",
    0x05: "uint8",
    0x06: "int16",
    0x07: "uint16",
    0x08: "int32",
    0x09: "uint32",
    0x0A: "int64",
    0x0B: "uint64",
    0x0C: "float32",
    0x0D: "float64",
    0x0E: "string",
    0x16: "typedref",
    0x18: "native int",
    0x19: "native uint",
    0x1C: "object",
}

# Calling convention byte
SIG_FIELD = 0x06
SIG_LOCAL_SIG = 0x07
SIG_PROPERTY = 0x08
SIG_GENERICINST = 0x0A
SIG_KIND_MASK = 0x0F
SIG_VARARG = 0x05
SIG_GENERIC = 0x10
SIG_HASTHIS = 0x20
SIG_EXPLICITTHIS = 0x40

# TypeDefOrRef coded index tag -> table number
TYPE_DEF_OR_REF_TABLES = (0x02, 0x01, 0x1B)

TypeResolver = Callable[[int], str]


class SignatureError(ValueError):
    """A signature blob is truncated or malformed."""


def _default_resolver(token: int) -> str:
    return f"[token 0x{token:08X}]"


@dataclass
class MethodSignature:
    has_this: bool = False
    explicit_this: bool = False
    vararg: bool = False
    generic_parameter_count: int = 0
    return_type: str = "void"
    parameters: list[str] = field(default_factory=list)

    @property
    def calling_convention(self) -> list[str]:
        words = []
        if self.has_this:
            words.append("instance")
        if self.explicit_this:
            words.append("explicit")
        if self.vararg:
            words.append("vararg")
        return words


class SignatureReader:
    """Sequential reader over one signature blob."""

    def __init__(self, blob: bytes, resolve_type: TypeResolver | None = None):
        self.blob = bytes(blob)
        self.position = 0
        self.resolve_type = resolve_type or _default_resolver

    def at_end(self) -> bool:
        return self.position >= len(self.blob)

    def read_byte(self) -> int:
        if self.position >= len(self.blob):
            raise SignatureError(f"Signature truncated at offset {self.position}")
        value = self.blob[self.position]
        self.position += 1
        return value

    def peek_byte(self) -> int:
        if self.position >= len(self.blob):
            raise SignatureError(f"Signature truncated at offset {self.position}")
        return self.blob[self.position]

    def read_compressed(self) -> int:
        """Read an unsigned compressed integer (II.23.2)."""
        first = self.read_byte()
        if first & 0x80 == 0:
            return first
        if first & 0xC0 == 0x80:
            return ((first & 0x3F) << 8) | self.read_byte()
        if first & 0xE0 == 0xC0:
            value = first & 0x1F
            for _ in range(3):
                value = (value << 8) | self.read_byte()
            return value
        raise SignatureError(f"Invalid compressed integer lead byte 0x{first:02X}")

    def read_type_def_or_ref(self) -> int:
        """Read a TypeDefOrRefOrSpecEncoded value and return it as a token."""
        coded = self.read_compressed()
        tag = coded & 0x03
        if tag >= len(TYPE_DEF_OR_REF_TABLES):
            raise SignatureError(f"Invalid TypeDefOrRef tag {tag}")
        return (TYPE_DEF_OR_REF_TABLES[tag] << 24) | (coded >> 2)

    def read_custom_modifiers(self) -> list[str]:
        modifiers = []
        while not self.at_end() and self.peek_byte() in (ELEMENT_TYPE_CMOD_REQD, ELEMENT_TYPE_CMOD_OPT):
            kind = "modreq" if self.read_byte() == ELEMENT_TYPE_CMOD_REQD else "modopt"
            modifiers.append(f"{kind}({self.resolve_type(self.read_type_def_or_ref())})")
        return modifiers

    def read_type(self) -> str:
        """Read one Type production and return it in IL syntax."""
        element = self.read_byte()

        if element in PRIMITIVE_TYPES:
            return PRIMITIVE_TYPES[element]

        if element == ELEMENT_TYPE_CLASS:
            return f"class {self.resolve_type(self.read_type_def_or_ref())}"

        if element == ELEMENT_TYPE_VALUETYPE:
            return f"valuetype {self.resolve_type(self.read_type_def_or_ref())}"

        if element == ELEMENT_TYPE_PTR:
            modifiers = self.read_custom_modifiers()
            return _with_modifiers(f"{self.read_type()}*", modifiers)

        if element == ELEMENT_TYPE_BYREF:
            return f"{self.read_type()}&"

        if element == ELEMENT_TYPE_SZARRAY:
            modifiers = self.read_custom_modifiers()
            return _with_modifiers(f"{self.read_type()}[]", modifiers)

        if element == ELEMENT_TYPE_ARRAY:
            return self._read_array()

        if element == ELEMENT_TYPE_VAR:
            return f"!{self.read_compressed()}"

        if element == ELEMENT_TYPE_MVAR:
            return f"!!{self.read_compressed()}"

        if element == ELEMENT_TYPE_GENERICINST:
            kind = self.read_byte()
            prefix = "valuetype" if kind == ELEMENT_TYPE_VALUETYPE else "class"
            generic = self.resolve_type(self.read_type_def_or_ref())
            count = self.read_compressed()
            arguments = [self.read_type() for _ in range(count)]
            return f"{prefix} {generic}<{', '.join(arguments)}>"

        if element == ELEMENT_TYPE_FNPTR:
            signature = self.read_method_signature()
            head = " ".join(["method"] + signature.calling_convention + [signature.return_type])
            return f"{head} *({', '.join(signature.parameters)})"

        if element in (ELEMENT_TYPE_CMOD_REQD, ELEMENT_TYPE_CMOD_OPT):
            self.position -= 1
            modifiers = self.read_custom_modifiers()
            return _with_modifiers(self.read_type(), modifiers)

        if element == ELEMENT_TYPE_PINNED:
            return f"{self.read_type()} pinned"

        raise SignatureError(f"Unsupported element type 0x{element:02X} at offset {self.position - 1}")

    def _read_array(self) -> str:
        element_type = self.read_type()
        rank = self.read_compressed()
        sizes = [self.read_compressed() for _ in range(self.read_compressed())]
        lower_bounds = [self._read_compressed_signed() for _ in range(self.read_compressed())]

        dimensions = []
        for index in range(rank):
            lower = lower_bounds[index] if index < len(lower_bounds) else None
            size = sizes[index] if index < len(sizes) else None
            if lower is None and size is None:
                dimensions.append("")
            elif size is None:
                dimensions.append(f"{lower}...")
            else:
                start = lower or 0
                dimensions.append(f"{start}...{start + size - 1}")
        return f"{element_type}[{','.join(dimensions)}]"

    def _read_compressed_signed(self) -> int:
        start = self.position
        raw = self.read_compressed()
        bits = {1: 7, 2: 14, 4: 29}[self.position - start]
        value = raw >> 1
        if raw & 1:
            value -= 1 << (bits - 1)
        return value

    def read_parameter(self) -> str:
        modifiers = self.read_custom_modifiers()
        return _with_modifiers(self.read_type(), modifiers)

    def read_method_signature(self) -> MethodSignature:
        """Read MethodDefSig / MethodRefSig / StandAloneMethodSig."""
        convention = self.read_byte()
        signature = MethodSignature(
            has_this=bool(convention & SIG_HASTHIS),
            explicit_this=bool(convention & SIG_EXPLICITTHIS),
            vararg=(convention & SIG_KIND_MASK) == SIG_VARARG,
        )
        if convention & SIG_GENERIC:
            signature.generic_parameter_count = self.read_compressed()

        count = self.read_compressed()
        signature.return_type = self.read_parameter()

        for _ in range(count):
            if not self.at_end() and self.peek_byte() == ELEMENT_TYPE_SENTINEL:
                self.read_byte()
                signature.parameters.append("...")
            signature.parameters.append(self.read_parameter())
        return signature


def _with_modifiers(type_name: str, modifiers: list[str]) -> str:
    if not modifiers:
        return type_name
    return f"{type_name} {' '.join(modifiers)}"


def decode_method_signature(blob: bytes, resolve_type: TypeResolver | None = None) -> MethodSignature:
    return SignatureReader(blob, resolve_type).read_method_signature()


def decode_field_signature(blob: bytes, resolve_type: TypeResolver | None = None) -> str:
    reader = SignatureReader(blob, resolve_type)
    convention = reader.read_byte()
    if convention & SIG_KIND_MASK != SIG_FIELD:
        raise SignatureError(f"Not a field signature (0x{convention:02X})")
    return reader.read_parameter()


def decode_property_signature(blob: bytes, resolve_type: TypeResolver | None = None) -> MethodSignature:
    reader = SignatureReader(blob, resolve_type)
    convention = reader.read_byte()
    if convention & SIG_KIND_MASK != SIG_PROPERTY:
        raise SignatureError(f"Not a property signature (0x{convention:02X})")
    signature = MethodSignature(has_this=bool(convention & SIG_HASTHIS))
    count = reader.read_compressed()
    signature.return_type = reader.read_parameter()
    signature.parameters = [reader.read_parameter() for _ in range(count)]
    return signature


def decode_local_signature(blob: bytes, resolve_type: TypeResolver | None = None) -> list[str]:
    reader = SignatureReader(blob, resolve_type)
    convention = reader.read_byte()
    if convention != SIG_LOCAL_SIG:
        raise SignatureError(f"Not a local variable signature (0x{convention:02X})")
    count = reader.read_compressed()
    locals_ = []
    for _ in range(count):
        locals_.append(reader.read_parameter())
    return locals_


def decode_type_spec(blob: bytes, resolve_type: TypeResolver | None = None) -> str:
    return SignatureReader(blob, resolve_type).read_type()


def decode_method_spec(blob: bytes, resolve_type: TypeResolver | None = None) -> list[str]:
    """Decode a MethodSpec instantiation into its type arguments."""
    reader = SignatureReader(blob, resolve_type)
    convention = reader.read_byte()
    if convention != SIG_GENERICINST:
        raise SignatureError(f"Not a generic method instantiation (0x{convention:02X})")
    return [reader.read_type() for _ in range(reader.read_compressed())]
