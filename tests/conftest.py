"""
Shared fixtures: synthetic PE images with and without CLI metadata.

The images are laid out by hand (one .text section holding the COR20 header
and the metadata root) so the tests need neither real assemblies nor a .NET
toolchain.
"""

import struct
import uuid
from pathlib import Path

import pytest

from msil_comparator.utils import config

IMAGE_BASE = 0x00400000
SECTION_RVA = 0x2000
SECTION_OFFSET = 0x200
FILE_ALIGNMENT = 0x200
SECTION_ALIGNMENT = 0x2000
COR20_SIZE = 72

MVID = uuid.UUID("6f1c2a5e-1d3b-4c8a-9e51-2b7d0c4f8a90")
MSCORLIB_TOKEN = bytes.fromhex("b77a5c561934e089")

# Table numbers and row layouts with 2-byte heap and table indexes
MODULE = (0x00, "<HHHHH")
TYPEDEF = (0x02, "<IHHHHH")
FIELD = (0x04, "<HHH")
METHODDEF = (0x06, "<IHHHHH")
ASSEMBLY = (0x20, "<IHHHHIHHH")
TYPEREF = (0x01, "<HHH")
MEMBERREF = (0x0A, "<HHH")
CONSTANT = (0x0B, "<BBHH")
CUSTOMATTRIBUTE = (0x0C, "<HHH")
STANDALONESIG = (0x11, "<H")
EVENTMAP = (0x12, "<HH")
EVENT = (0x14, "<HHH")
PROPERTYMAP = (0x15, "<HH")
PROPERTY = (0x17, "<HHH")
METHODSEMANTICS = (0x18, "<HHH")
ASSEMBLYREF = (0x23, "<HHHHIHHHH")


def _align(value: int, alignment: int) -> int:
    return (value + alignment - 1) // alignment * alignment


def _pad4(data: bytes) -> bytes:
    return bytes(data) + b"\0" * (_align(len(data), 4) - len(data))


class StringHeap:
    def __init__(self):
        self.data = bytearray(b"\0")
        self.offsets = {"": 0}

    def add(self, text: str) -> int:
        if text not in self.offsets:
            self.offsets[text] = len(self.data)
            self.data += text.encode("utf-8") + b"\0"
        return self.offsets[text]


class BlobHeap:
    def __init__(self):
        self.data = bytearray(b"\0")

    def add(self, blob: bytes) -> int:
        if not blob:
            return 0
        offset = len(self.data)
        self.data += bytes([len(blob)]) + blob
        return offset


def build_tables_stream(tables: dict[tuple[int, str], list[tuple]]) -> bytes:
    present = sorted((number, fmt, rows) for (number, fmt), rows in tables.items() if rows)
    valid = sum(1 << number for number, _, _ in present)

    stream = struct.pack("<IBBBBQQ", 0, 2, 0, 0, 1, valid, 0x000016003301FA00)
    stream += b"".join(struct.pack("<I", len(rows)) for _, _, rows in present)
    stream += b"".join(struct.pack(fmt, *row) for _, fmt, rows in present for row in rows)
    return _pad4(stream)


def build_metadata_root(streams: list[tuple[str, bytes]]) -> bytes:
    version = b"v4.0.30319\0\0"
    names = [name.encode("ascii").ljust(_align(len(name) + 1, 4), b"\0") for name, _ in streams]
    offset = 16 + len(version) + 4 + sum(8 + len(name) for name in names)

    headers = b""
    bodies = b""
    for name, (_, data) in zip(names, streams):
        data = _pad4(data)
        headers += struct.pack("<II", offset, len(data)) + name
        bodies += data
        offset += len(data)

    root = struct.pack("<IHHII", 0x424A5342, 1, 1, 0, len(version)) + version
    root += struct.pack("<HH", 0, len(streams))
    return root + headers + bodies


def _fat_body(max_stack: int, locals_token: int, code: bytes, clauses: list[tuple]) -> bytes:
    """Fat method body followed by a small exception handling section."""
    flags = 0x3003 | 0x10
    if clauses:
        flags |= 0x08
    body = struct.pack("<HHII", flags, max_stack, len(code), locals_token) + code
    if clauses:
        body = _pad4(body)
        body += struct.pack("<BBH", 0x01, 4 + 12 * len(clauses), 0)
        body += b"".join(struct.pack("<HHBHBI", *clause) for clause in clauses)
    return body


def _tiny_body(code: bytes) -> bytes:
    return bytes([(len(code) << 2) | 0x02]) + code


# Widget method bodies, in MethodDef order:
#   Run:         try { string V_0 = "hi"; } catch [mscorlib]System.Exception { pop }
#   .ctor:       ldarg.0; call Object::.ctor; ret
#   Apply:       return arg != 0 ? 42 : 0 (one brtrue.s)
#   get_Count:   return 1
#   add_Changed: ret
METHOD_BODIES = (
    _fat_body(
        1, 0x11000001,
        bytes.fromhex("7201000070" "0a" "de03" "26" "de00" "2a"),
        [(0x0000, 0x0000, 8, 0x0008, 3, 0x01000002)],
    ),
    _tiny_body(bytes.fromhex("02" "280200000a" "2a")),
    _tiny_body(bytes.fromhex("02" "2d02" "16" "2a" "1f2a" "2a")),
    _tiny_body(bytes.fromhex("17" "2a")),
    _tiny_body(bytes.fromhex("2a")),
)


def build_method_bodies(base_rva: int) -> tuple[bytes, list[int]]:
    """Lay METHOD_BODIES out from base_rva, each 4-byte aligned."""
    data = b""
    rvas = []
    for body in METHOD_BODIES:
        rvas.append(base_rva + len(data))
        data += _pad4(body)
    return data, rvas


def build_metadata(
    assembly_name: str | None = "Sample",
    module_name: str = "Sample.dll",
    with_types: bool = True,
    body_rvas: list[int] | None = None,
) -> bytes:
    """
    Metadata root for a small module.

    With types, the module holds Sample.Widget whose fields and methods are
    declared out of name order:
        fields:  zeta, alpha
        methods: Run, .ctor, Apply

    With body_rvas, Widget also gets a literal field Limit, a Count property,
    a Changed event, an [Obsolete("old")] attribute, a System.Object base
    type and the methods get_Count and add_Changed; every method points at
    its entry in METHOD_BODIES.
    """
    strings = StringHeap()
    blobs = BlobHeap()
    user_strings = b"\0"

    tables: dict[tuple[int, str], list[tuple]] = {
        MODULE: [(0, strings.add(module_name), 1, 0, 0)],
    }

    if with_types:
        field_sig = blobs.add(b"\x06\x08")
        instance_void = blobs.add(b"\x20\x00\x01")
        static_int_int = blobs.add(b"\x00\x01\x08\x08")
        rvas = body_rvas or [0, 0, 0]

        tables[TYPEDEF] = [
            (0x00000000, strings.add("<Module>"), 0, 0, 1, 1),
            (0x00100001, strings.add("Widget"), strings.add("Sample"), 5 if body_rvas else 0, 1, 1),
        ]
        tables[FIELD] = [
            (0x0006, strings.add("zeta"), field_sig),
            (0x0006, strings.add("alpha"), field_sig),
        ]
        tables[METHODDEF] = [
            (rvas[0], 0x0000, 0x0086, strings.add("Run"), instance_void, 1),
            (rvas[1], 0x0000, 0x1886, strings.add(".ctor"), instance_void, 1),
            (rvas[2], 0x0000, 0x0096, strings.add("Apply"), static_int_int, 1),
        ]

    if with_types and body_rvas:
        system = strings.add("System")
        # ResolutionScope 6 is AssemblyRef 1 (mscorlib)
        tables[TYPEREF] = [
            (6, strings.add("Object"), system),
            (6, strings.add("Exception"), system),
            (6, strings.add("ObsoleteAttribute"), system),
            (6, strings.add("EventHandler"), system),
        ]
        tables[MEMBERREF] = [
            (25, strings.add(".ctor"), blobs.add(b"\x20\x01\x01\x0e")),
            (9, strings.add(".ctor"), instance_void),
        ]
        tables[FIELD].append((0x8056, strings.add("Limit"), field_sig))
        tables[CONSTANT] = [(0x08, 0, 12, blobs.add(struct.pack("<i", 5)))]
        # Parent 67 is TypeDef 2 (Widget), Type 11 is MemberRef 1
        tables[CUSTOMATTRIBUTE] = [(67, 11, blobs.add(bytes.fromhex("0100036f6c640000")))]
        tables[STANDALONESIG] = [(blobs.add(b"\x07\x01\x0e"),)]
        tables[METHODDEF] += [
            (rvas[3], 0x0000, 0x0886, strings.add("get_Count"), blobs.add(b"\x20\x00\x08"), 1),
            (rvas[4], 0x0000, 0x0886, strings.add("add_Changed"), blobs.add(b"\x20\x01\x01\x12\x11"), 1),
        ]
        tables[PROPERTYMAP] = [(2, 1)]
        tables[PROPERTY] = [(0x0000, strings.add("Count"), blobs.add(b"\x28\x00\x08"))]
        tables[EVENTMAP] = [(2, 1)]
        tables[EVENT] = [(0x0000, strings.add("Changed"), 17)]
        # Association 3 is Property 1, 2 is Event 1
        tables[METHODSEMANTICS] = [(0x0002, 4, 3), (0x0008, 5, 2)]
        user_strings += bytes([5]) + "hi".encode("utf-16-le") + b"\0"

    if assembly_name is not None:
        tables[ASSEMBLY] = [
            (0x8004, 1, 2, 3, 4, 0, 0, strings.add(assembly_name), 0),
        ]
    tables[ASSEMBLYREF] = [
        (4, 0, 0, 0, 0, blobs.add(MSCORLIB_TOKEN), strings.add("mscorlib"), 0, 0),
    ]

    return build_metadata_root([
        ("#~", build_tables_stream(tables)),
        ("#Strings", bytes(strings.data)),
        ("#US", user_strings),
        ("#GUID", MVID.bytes_le),
        ("#Blob", bytes(blobs.data)),
    ])


def build_pe(section_data: bytes, clr: bool) -> bytes:
    """A PE32 DLL with one .text section at SECTION_RVA."""
    raw_size = _align(len(section_data), FILE_ALIGNMENT)
    image_size = SECTION_RVA + _align(len(section_data), SECTION_ALIGNMENT)

    dos_header = bytearray(0x80)
    dos_header[0:2] = b"MZ"
    struct.pack_into("<I", dos_header, 0x3C, 0x80)

    file_header = struct.pack("<HHIIIHH", 0x014C, 1, 0, 0, 0, 0xE0, 0x2102)

    optional_header = struct.pack(
        "<HBB" + "I" * 9 + "H" * 6 + "I" * 4 + "HH" + "I" * 6,
        0x010B, 8, 0,
        raw_size, 0, 0, 0, SECTION_RVA, 0, IMAGE_BASE, SECTION_ALIGNMENT, FILE_ALIGNMENT,
        4, 0, 0, 0, 4, 0,
        0, image_size, SECTION_OFFSET, 0,
        3, 0x8540,
        0x100000, 0x1000, 0x100000, 0x1000, 0, 16,
    )
    directories = [(0, 0)] * 16
    if clr:
        directories[14] = (SECTION_RVA, COR20_SIZE)
    optional_header += b"".join(struct.pack("<II", rva, size) for rva, size in directories)

    section_header = struct.pack(
        "<8sIIIIIIHHI",
        b".text", len(section_data), SECTION_RVA, raw_size, SECTION_OFFSET,
        0, 0, 0, 0, 0x60000020,
    )

    headers = bytes(dos_header) + b"PE\0\0" + file_header + optional_header + section_header
    headers = headers.ljust(SECTION_OFFSET, b"\0")
    return headers + section_data.ljust(raw_size, b"\0")


def build_clr_image(
    assembly_name: str | None = "Sample",
    module_name: str = "Sample.dll",
    with_types: bool = True,
    with_code: bool = False,
) -> bytes:
    """
    A .NET image; assembly_name=None gives a bare module without manifest.

    with_code places METHOD_BODIES between the COR20 header and the metadata.
    """
    bodies, body_rvas = b"", None
    if with_code:
        bodies, body_rvas = build_method_bodies(SECTION_RVA + COR20_SIZE)
    metadata = build_metadata(assembly_name, module_name, with_types, body_rvas)
    cor20 = struct.pack(
        "<IHHIIII",
        COR20_SIZE, 2, 5, SECTION_RVA + COR20_SIZE + len(bodies), len(metadata), 0x00000001, 0,
    )
    cor20 += b"\0" * (COR20_SIZE - len(cor20))
    return build_pe(cor20 + bodies + metadata, clr=True)


def build_native_image() -> bytes:
    """A PE image without a CLI header."""
    return build_pe(b"\x55\x8B\xEC\x5D\xC3" + b"\xCC" * 11, clr=False)


@pytest.fixture
def make_assembly(tmp_path):
    """Factory writing a synthetic assembly below tmp_path."""
    def _make(relative: str = "Sample.dll", **kwargs) -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(build_clr_image(**kwargs))
        return path
    return _make


@pytest.fixture
def make_file(tmp_path):
    """Factory writing arbitrary bytes below tmp_path."""
    def _make(relative: str, data: bytes) -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path
    return _make


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep a developer's .env and MSIL_COMPARATOR_* variables out of tests."""
    for key in config.CONFIG_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    config.reset_config()
    yield
    config.reset_config()
