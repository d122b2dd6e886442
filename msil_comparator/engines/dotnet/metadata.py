"""
CLI metadata loader built on dnfile and dncil.

Reads the PE container and metadata tables with dnfile, decodes method
bodies with dncil and produces the ModuleImage model consumed by ILWriter.
Rows keep their physical table order; reordering is the writer's job.
"""

import logging
import struct
from pathlib import Path

import dnfile
from dncil.cil.body import CilMethodBody
from dncil.cil.body.reader import CilMethodBodyReaderBase
from dncil.clr.local import Local
from dncil.clr.token import StringToken, Token

from msil_comparator.engines.dotnet.model import (
    AssemblyIdentity,
    AssemblyReference,
    CustomAttribute,
    EventDefinition,
    ExceptionClause,
    FieldDefinition,
    Instruction,
    MethodBody,
    MethodDefinition,
    ModuleHeader,
    ModuleImage,
    PropertyDefinition,
    TypeDefinition,
)
from msil_comparator.engines.dotnet.signatures import (
    MethodSignature,
    decode_field_signature,
    decode_local_signature,
    decode_method_signature,
    decode_method_spec,
    decode_property_signature,
    decode_type_spec,
)

logger = logging.getLogger(__name__)

# Metadata table numbers (ECMA-335 II.22)
TABLE_MODULE = 0x00
TABLE_TYPEREF = 0x01
TABLE_TYPEDEF = 0x02
TABLE_FIELD = 0x04
TABLE_METHODDEF = 0x06
TABLE_MEMBERREF = 0x0A
TABLE_STANDALONESIG = 0x11
TABLE_EVENT = 0x14
TABLE_PROPERTY = 0x17
TABLE_MODULEREF = 0x1A
TABLE_TYPESPEC = 0x1B
TABLE_ASSEMBLY = 0x20
TABLE_ASSEMBLYREF = 0x23
TABLE_METHODSPEC = 0x2B
TOKEN_STRING = 0x70

SIG_FIELD = 0x06

TYPE_FLAG_WORDS = (
    ("tdInterface", "interface"),
    ("tdPublic", "public"),
    ("tdNotPublic", "private"),
    ("tdNestedPublic", "nested public"),
    ("tdNestedPrivate", "nested private"),
    ("tdNestedFamily", "nested family"),
    ("tdNestedAssembly", "nested assembly"),
    ("tdNestedFamANDAssem", "nested famandassem"),
    ("tdNestedFamORAssem", "nested famorassem"),
    ("tdAutoLayout", "auto"),
    ("tdSequentialLayout", "sequential"),
    ("tdExplicitLayout", "explicit"),
    ("tdAnsiClass", "ansi"),
    ("tdUnicodeClass", "unicode"),
    ("tdAutoClass", "autochar"),
    ("tdAbstract", "abstract"),
    ("tdSealed", "sealed"),
    ("tdSpecialName", "specialname"),
    ("tdRTSpecialName", "rtspecialname"),
    ("tdImport", "import"),
    ("tdSerializable", "serializable"),
    ("tdBeforeFieldInit", "beforefieldinit"),
)

METHOD_FLAG_WORDS = (
    ("mdPrivateScope", "privatescope"),
    ("mdPrivate", "private"),
    ("mdFamANDAssem", "famandassem"),
    ("mdAssem", "assembly"),
    ("mdFamily", "family"),
    ("mdFamORAssem", "famorassem"),
    ("mdPublic", "public"),
    ("mdFinal", "final"),
    ("mdHideBySig", "hidebysig"),
    ("mdSpecialName", "specialname"),
    ("mdRTSpecialName", "rtspecialname"),
    ("mdNewSlot", "newslot"),
    ("mdAbstract", "abstract"),
    ("mdVirtual", "virtual"),
    ("mdCheckAccessOnOverride", "strict"),
    ("mdStatic", "static"),
    ("mdPinvokeImpl", "pinvokeimpl"),
)

METHOD_IMPL_WORDS = (
    ("miIL", "cil"),
    ("miNative", "native"),
    ("miOPTIL", "optil"),
    ("miRuntime", "runtime"),
    ("miManaged", "managed"),
    ("miUnmanaged", "unmanaged"),
    ("miForwardRef", "forwardref"),
    ("miPreserveSig", "preservesig"),
    ("miInternalCall", "internalcall"),
    ("miSynchronized", "synchronized"),
    ("miNoInlining", "noinlining"),
    ("miAggressiveInlining", "aggressiveinlining"),
    ("miNoOptimization", "nooptimization"),
)

FIELD_FLAG_WORDS = (
    ("fdPrivateScope", "privatescope"),
    ("fdPrivate", "private"),
    ("fdFamANDAssem", "famandassem"),
    ("fdAssembly", "assembly"),
    ("fdFamily", "family"),
    ("fdFamORAssem", "famorassem"),
    ("fdPublic", "public"),
    ("fdStatic", "static"),
    ("fdInitOnly", "initonly"),
    ("fdLiteral", "literal"),
    ("fdNotSerialized", "notserialized"),
    ("fdSpecialName", "specialname"),
    ("fdRTSpecialName", "rtspecialname"),
    ("fdPinvokeImpl", "pinvokeimpl"),
)

PROPERTY_FLAG_WORDS = (
    ("prSpecialName", "specialname"),
    ("prRTSpecialName", "rtspecialname"),
)

EVENT_FLAG_WORDS = (
    ("evSpecialName", "specialname"),
    ("evRTSpecialName", "rtspecialname"),
)

BRANCH_OPERANDS = ("InlineBrTarget", "ShortInlineBrTarget")

# MethodSemantics flag, IL directive; also the order accessors are written in
ACCESSOR_DIRECTIVES = (
    ("msGetter", ".get"),
    ("msSetter", ".set"),
    ("msAddOn", ".addon"),
    ("msRemoveOn", ".removeon"),
    ("msFire", ".fire"),
    ("msOther", ".other"),
)

# Constant element type: (IL type, struct format)
CONSTANT_FORMATS = {
    0x04: ("int8", "<B"),
    0x05: ("uint8", "<B"),
    0x06: ("int16", "<H"),
    0x07: ("uint16", "<H"),
    0x08: ("int32", "<I"),
    0x09: ("uint32", "<I"),
    0x0A: ("int64", "<Q"),
    0x0B: ("uint64", "<Q"),
}
ELEMENT_TYPE_BOOLEAN = 0x02
ELEMENT_TYPE_CHAR = 0x03
ELEMENT_TYPE_R4 = 0x0C
ELEMENT_TYPE_R8 = 0x0D
ELEMENT_TYPE_STRING = 0x0E
ELEMENT_TYPE_CLASS = 0x12


class MetadataFormatError(ValueError):
    """The file has no usable CLI metadata."""


# =============================================================================
# dnfile value helpers
# =============================================================================


def text_value(value) -> str:
    """Plain string from a dnfile string heap item (or str)."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    raw = getattr(value, "value", value)
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw).decode("utf-8", errors="replace")
    return str(raw)


def blob_value(value) -> bytes:
    """Raw bytes from a dnfile blob heap item (or bytes)."""
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    raw = getattr(value, "value", None)
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw)
    return b""


def int_value(value) -> int:
    if isinstance(value, int):
        return int(value)
    raw = getattr(value, "value", None)
    return int(raw) if isinstance(raw, int) else 0


def flag_words(flags, table) -> list[str]:
    """Translate a dnfile flags object into IL keywords."""
    if flags is None:
        return []
    return [word for attribute, word in table if getattr(flags, attribute, False)]


def index_rid(index) -> int:
    """Row id of a dnfile table index or coded index (0 when null)."""
    return int(getattr(index, "row_index", 0) or 0)


def coded_token(coded) -> int | None:
    """Metadata token of a dnfile coded index, or None when null."""
    table = getattr(coded, "table", None)
    number = getattr(table, "number", None)
    rid = index_rid(coded)
    if number is None or not rid:
        return None
    return (int(number) << 24) | rid


def table_rows(tables, name: str) -> list:
    table = getattr(tables, name, None) if tables is not None else None
    if table is None:
        return []
    return list(table.rows)


def quote_string(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def format_constant(element_type: int, value: bytes) -> str:
    """ILAsm initializer text for a Constant row, as ildasm prints it."""
    if element_type in CONSTANT_FORMATS and len(value) >= struct.calcsize(CONSTANT_FORMATS[element_type][1]):
        il_type, fmt = CONSTANT_FORMATS[element_type]
        size = struct.calcsize(fmt)
        (number,) = struct.unpack_from(fmt, value)
        return f"{il_type}(0x{number:0{size * 2}X})"
    if element_type == ELEMENT_TYPE_BOOLEAN and value:
        return "bool(true)" if value[0] else "bool(false)"
    if element_type == ELEMENT_TYPE_CHAR and len(value) >= 2:
        return f"char(0x{struct.unpack_from('<H', value)[0]:04X})"
    if element_type == ELEMENT_TYPE_R4 and len(value) >= 4:
        return f"float32({struct.unpack_from('<f', value)[0]!r})"
    if element_type == ELEMENT_TYPE_R8 and len(value) >= 8:
        return f"float64({struct.unpack_from('<d', value)[0]!r})"
    if element_type == ELEMENT_TYPE_STRING:
        return quote_string(value.decode("utf-16-le", errors="replace"))
    if element_type == ELEMENT_TYPE_CLASS:
        return "nullref"
    return f"bytearray({' '.join(f'{byte:02X}' for byte in value)})"


def open_image(path: str | Path) -> dnfile.dnPE:
    """
    Read a file and parse it as a PE image with CLI metadata.

    Raises:
        FileNotFoundError: If the file does not exist
        pefile.PEFormatError: If the file is not a PE image
    """
    with open(path, "rb") as stream:
        data = stream.read()
    return dnfile.dnPE(data=data)


class _MethodBodyReader(CilMethodBodyReaderBase):
    """Feeds dncil from the image, addressed by RVA."""

    def __init__(self, pe: dnfile.dnPE, rva: int):
        self.pe = pe
        self.rva = rva

    def read(self, n: int) -> bytes:
        data = self.pe.get_data(self.rva, n)
        self.rva += n
        return data

    def tell(self) -> int:
        return self.rva

    def seek(self, rva: int) -> int:
        self.rva = rva
        return self.rva


class MetadataLoader:
    """Builds a ModuleImage from a parsed dnfile image."""

    def __init__(self, pe: dnfile.dnPE, path: str = ""):
        net = getattr(pe, "net", None)
        if net is None:
            raise MetadataFormatError(f"{path or 'image'} has no CLI header")
        tables = getattr(net, "mdtables", None)
        if tables is None:
            raise MetadataFormatError(f"{path or 'image'} has no metadata table stream")

        self.pe = pe
        self.net = net
        self.path = path
        self.tables = tables

        self.typerefs = table_rows(tables, "TypeRef")
        self.typedefs = table_rows(tables, "TypeDef")
        self.fields = table_rows(tables, "Field")
        self.methods = table_rows(tables, "MethodDef")
        self.params = table_rows(tables, "Param")
        self.memberrefs = table_rows(tables, "MemberRef")
        self.standalone_sigs = table_rows(tables, "StandAloneSig")
        self.modulerefs = table_rows(tables, "ModuleRef")
        self.typespecs = table_rows(tables, "TypeSpec")
        self.assemblyrefs = table_rows(tables, "AssemblyRef")
        self.methodspecs = table_rows(tables, "MethodSpec")

        self._field_owner: dict[int, int] = {}
        self._method_owner: dict[int, int] = {}
        for type_rid, row in enumerate(self.typedefs, 1):
            for index in row.FieldList:
                self._field_owner[index_rid(index)] = type_rid
            for index in row.MethodList:
                self._method_owner[index_rid(index)] = type_rid

        self._enclosing: dict[int, int] = {}
        for row in table_rows(tables, "NestedClass"):
            self._enclosing[index_rid(row.NestedClass)] = index_rid(row.EnclosingClass)

        self._generic_params: dict[int, list[tuple[int, str]]] = {}
        for row in table_rows(tables, "GenericParam"):
            owner = coded_token(row.Owner)
            if owner is not None:
                self._generic_params.setdefault(owner, []).append(
                    (int_value(row.Number), text_value(row.Name))
                )

        self._type_names: dict[int, str] = {}

        self._constants: dict[int, str] = {}
        for row in table_rows(tables, "Constant"):
            parent = coded_token(row.Parent)
            if parent is not None:
                self._constants[parent] = format_constant(int(row.Type), blob_value(row.Value))

        self._custom_attributes: dict[int, list[CustomAttribute]] = {}
        for row in table_rows(tables, "CustomAttribute"):
            parent = coded_token(row.Parent)
            constructor = coded_token(row.Type)
            if parent is None or constructor is None:
                continue
            self._custom_attributes.setdefault(parent, []).append(
                CustomAttribute(self.token_text(constructor), blob_value(row.Value))
            )

        self._accessors: dict[int, list[tuple[str, str]]] = {}
        for row in table_rows(tables, "MethodSemantics"):
            association = coded_token(row.Association)
            method_rid = index_rid(row.Method)
            if association is None or not method_rid:
                continue
            for flag, directive in ACCESSOR_DIRECTIVES:
                if getattr(row.Semantics, flag, False):
                    self._accessors.setdefault(association, []).append(
                        (directive, self.methoddef_text(method_rid))
                    )

    def custom_attributes(self, token: int) -> list[CustomAttribute]:
        return list(self._custom_attributes.get(token, []))

    def accessors(self, token: int) -> list[tuple[str, str]]:
        """Accessor directives of a property or event, getters first."""
        order = [directive for _, directive in ACCESSOR_DIRECTIVES]
        return sorted(self._accessors.get(token, []), key=lambda item: (order.index(item[0]), item[1]))

    # ------------------------------------------------------------------
    # Token naming
    # ------------------------------------------------------------------

    @staticmethod
    def _row(rows: list, rid: int):
        if 1 <= rid <= len(rows):
            return rows[rid - 1]
        return None

    def generic_parameter_names(self, token: int) -> list[str]:
        return [name for _, name in sorted(self._generic_params.get(token, []))]

    def typedef_name(self, rid: int) -> str:
        if rid in self._type_names:
            return self._type_names[rid]
        row = self._row(self.typedefs, rid)
        if row is None:
            return f"[TypeDef 0x{rid:06X}]"
        name = text_value(row.TypeName)
        enclosing = self._enclosing.get(rid)
        if enclosing and enclosing != rid:
            full_name = f"{self.typedef_name(enclosing)}/{name}"
        else:
            namespace = text_value(row.TypeNamespace)
            full_name = f"{namespace}.{name}" if namespace else name
        self._type_names[rid] = full_name
        return full_name

    def typeref_name(self, rid: int) -> str:
        row = self._row(self.typerefs, rid)
        if row is None:
            return f"[TypeRef 0x{rid:06X}]"
        name = text_value(row.TypeName)
        namespace = text_value(row.TypeNamespace)
        qualified = f"{namespace}.{name}" if namespace else name

        scope = coded_token(row.ResolutionScope)
        if scope is None:
            return qualified
        table, scope_rid = scope >> 24, scope & 0xFFFFFF
        if table == TABLE_ASSEMBLYREF:
            reference = self._row(self.assemblyrefs, scope_rid)
            if reference is not None:
                return f"[{text_value(reference.Name)}]{qualified}"
        if table == TABLE_TYPEREF and scope_rid != rid:
            return f"{self.typeref_name(scope_rid)}/{name}"
        if table == TABLE_MODULEREF:
            module = self._row(self.modulerefs, scope_rid)
            if module is not None:
                return f"[.module {text_value(module.Name)}]{qualified}"
        return qualified

    def type_name(self, token: int) -> str:
        """Name of a TypeDef, TypeRef or TypeSpec token."""
        table, rid = token >> 24, token & 0xFFFFFF
        if table == TABLE_TYPEDEF:
            return self.typedef_name(rid)
        if table == TABLE_TYPEREF:
            return self.typeref_name(rid)
        if table == TABLE_TYPESPEC:
            row = self._row(self.typespecs, rid)
            if row is not None:
                return decode_type_spec(blob_value(row.Signature), self.type_name)
        return f"[token 0x{token:08X}]"

    def _method_text(
        self,
        owner: str,
        name: str,
        signature: MethodSignature,
        generic_arguments: list[str] | None = None,
    ) -> str:
        if generic_arguments:
            name = f"{name}<{', '.join(generic_arguments)}>"
        words = signature.calling_convention + [signature.return_type]
        return f"{' '.join(words)} {owner}::{name}({', '.join(signature.parameters)})"

    def methoddef_text(self, rid: int, generic_arguments: list[str] | None = None) -> str:
        row = self._row(self.methods, rid)
        if row is None:
            return f"[MethodDef 0x{rid:06X}]"
        owner = self.typedef_name(self._method_owner.get(rid, 0))
        signature = decode_method_signature(blob_value(row.Signature), self.type_name)
        return self._method_text(owner, text_value(row.Name), signature, generic_arguments)

    def field_text(self, rid: int) -> str:
        row = self._row(self.fields, rid)
        if row is None:
            return f"[Field 0x{rid:06X}]"
        owner = self.typedef_name(self._field_owner.get(rid, 0))
        field_type = decode_field_signature(blob_value(row.Signature), self.type_name)
        return f"{field_type} {owner}::{text_value(row.Name)}"

    def memberref_text(self, rid: int, generic_arguments: list[str] | None = None) -> str:
        row = self._row(self.memberrefs, rid)
        if row is None:
            return f"[MemberRef 0x{rid:06X}]"
        parent = coded_token(row.Class)
        if parent is None:
            owner = ""
        elif parent >> 24 == TABLE_METHODDEF:
            owner = self.typedef_name(self._method_owner.get(parent & 0xFFFFFF, 0))
        elif parent >> 24 == TABLE_MODULEREF:
            module = self._row(self.modulerefs, parent & 0xFFFFFF)
            owner = f"[.module {text_value(module.Name)}]" if module is not None else ""
        else:
            owner = self.type_name(parent)

        name = text_value(row.Name)
        blob = blob_value(row.Signature)
        if blob and blob[0] & 0x0F == SIG_FIELD:
            return f"{decode_field_signature(blob, self.type_name)} {owner}::{name}"
        signature = decode_method_signature(blob, self.type_name)
        return self._method_text(owner, name, signature, generic_arguments)

    def methodspec_text(self, rid: int) -> str:
        row = self._row(self.methodspecs, rid)
        if row is None:
            return f"[MethodSpec 0x{rid:06X}]"
        arguments = decode_method_spec(blob_value(row.Instantiation), self.type_name)
        method = coded_token(row.Method)
        if method is not None and method >> 24 == TABLE_METHODDEF:
            return self.methoddef_text(method & 0xFFFFFF, arguments)
        if method is not None and method >> 24 == TABLE_MEMBERREF:
            return self.memberref_text(method & 0xFFFFFF, arguments)
        return f"[MethodSpec 0x{rid:06X}]"

    def user_string(self, rid: int) -> str | None:
        heap = getattr(self.net, "user_strings", None)
        if heap is None:
            return None
        try:
            item = heap.get(rid, encoding="utf-16-le", errors="replace")
        except (IndexError, ValueError):
            return None
        if item is None:
            return None
        return item.value

    def token_text(self, token: int) -> str:
        """IL operand text for a metadata token."""
        table, rid = token >> 24, token & 0xFFFFFF
        if table in (TABLE_TYPEDEF, TABLE_TYPEREF, TABLE_TYPESPEC):
            return self.type_name(token)
        if table == TABLE_METHODDEF:
            return self.methoddef_text(rid)
        if table == TABLE_FIELD:
            return self.field_text(rid)
        if table == TABLE_MEMBERREF:
            return self.memberref_text(rid)
        if table == TABLE_METHODSPEC:
            return self.methodspec_text(rid)
        if table == TOKEN_STRING:
            value = self.user_string(rid)
            return quote_string(value) if value is not None else f"[string 0x{token:08X}]"
        return f"[token 0x{token:08X}]"

    # ------------------------------------------------------------------
    # Model construction
    # ------------------------------------------------------------------

    def load_references(self) -> list[AssemblyReference]:
        references = []
        for rid, row in enumerate(self.assemblyrefs, 1):
            flags = row.Flags
            references.append(AssemblyReference(
                name=text_value(row.Name),
                version=(
                    int_value(row.MajorVersion),
                    int_value(row.MinorVersion),
                    int_value(row.BuildNumber),
                    int_value(row.RevisionNumber),
                ),
                culture=text_value(row.Culture),
                public_key_or_token=blob_value(row.PublicKey),
                has_full_public_key=bool(getattr(flags, "afPublicKey", False)),
                is_retargetable=bool(getattr(flags, "afRetargetable", False)),
                token=(TABLE_ASSEMBLYREF << 24) | rid,
            ))
        return references

    def load_assembly(self) -> AssemblyIdentity | None:
        rows = table_rows(self.tables, "Assembly")
        if not rows:
            return None
        row = rows[0]
        flags = row.Flags
        return AssemblyIdentity(
            name=text_value(row.Name),
            version=(
                int_value(row.MajorVersion),
                int_value(row.MinorVersion),
                int_value(row.BuildNumber),
                int_value(row.RevisionNumber),
            ),
            culture=text_value(row.Culture),
            public_key=blob_value(row.PublicKey),
            hash_algorithm=int(row.HashAlgId or 0),
            is_retargetable=bool(getattr(flags, "afRetargetable", False)),
            custom_attributes=self.custom_attributes(TABLE_ASSEMBLY << 24 | 1),
        )

    def load_module_header(self) -> ModuleHeader:
        rows = table_rows(self.tables, "Module")
        name = text_value(rows[0].Name) if rows else Path(self.path).name
        mvid = str(rows[0].Mvid) if rows and rows[0].Mvid is not None else ""

        optional = getattr(self.pe, "OPTIONAL_HEADER", None)
        cor_header = getattr(self.net, "struct", None)
        return ModuleHeader(
            name=name,
            mvid=mvid,
            image_base=int(getattr(optional, "ImageBase", 0)),
            file_alignment=int(getattr(optional, "FileAlignment", 0)),
            stack_reserve=int(getattr(optional, "SizeOfStackReserve", 0)),
            subsystem=int(getattr(optional, "Subsystem", 0)),
            corflags=int_value(getattr(cor_header, "Flags", 0)),
            custom_attributes=self.custom_attributes(TABLE_MODULE << 24 | 1),
        )

    def _entry_point_token(self) -> int:
        cor_header = getattr(self.net, "struct", None)
        return int_value(getattr(cor_header, "EntryPointTokenOrRva", 0))

    def load_types(self) -> list[TypeDefinition]:
        entry_point = self._entry_point_token()

        interfaces: dict[int, list[str]] = {}
        for row in table_rows(self.tables, "InterfaceImpl"):
            interface = coded_token(row.Interface)
            if interface is not None:
                interfaces.setdefault(index_rid(row.Class), []).append(self.type_name(interface))

        properties: dict[int, list[PropertyDefinition]] = {}
        property_rows = table_rows(self.tables, "Property")
        for row in table_rows(self.tables, "PropertyMap"):
            owned = properties.setdefault(index_rid(row.Parent), [])
            for index in row.PropertyList:
                prop_rid = index_rid(index)
                prop = self._row(property_rows, prop_rid)
                if prop is not None:
                    owned.append(self._load_property(prop, prop_rid))

        events: dict[int, list[EventDefinition]] = {}
        event_rows = table_rows(self.tables, "Event")
        for row in table_rows(self.tables, "EventMap"):
            owned = events.setdefault(index_rid(row.Parent), [])
            for index in row.EventList:
                event_rid = index_rid(index)
                event = self._row(event_rows, event_rid)
                if event is not None:
                    owned.append(self._load_event(event, event_rid))

        types: dict[int, TypeDefinition] = {}
        for rid, row in enumerate(self.typedefs, 1):
            token = (TABLE_TYPEDEF << 24) | rid
            extends = coded_token(row.Extends)
            enclosing = self._enclosing.get(rid)

            type_def = TypeDefinition(
                name=text_value(row.TypeName),
                namespace=text_value(row.TypeNamespace),
                attributes=flag_words(row.Flags, TYPE_FLAG_WORDS),
                extends=self.type_name(extends) if extends is not None else None,
                implements=interfaces.get(rid, []),
                generic_parameters=self.generic_parameter_names(token),
                enclosing_type=self.typedef_name(enclosing) if enclosing else None,
                properties=properties.get(rid, []),
                events=events.get(rid, []),
                token=token,
                custom_attributes=self.custom_attributes(token),
            )
            for index in row.FieldList:
                field_rid = index_rid(index)
                field_row = self._row(self.fields, field_rid)
                if field_row is not None:
                    type_def.fields.append(self._load_field(field_row, field_rid))
            for index in row.MethodList:
                method_rid = index_rid(index)
                method_row = self._row(self.methods, method_rid)
                if method_row is not None:
                    method = self._load_method(method_row, method_rid)
                    method.is_entry_point = method.token == entry_point
                    type_def.methods.append(method)
            types[rid] = type_def

        top_level = []
        for rid, type_def in types.items():
            enclosing = self._enclosing.get(rid)
            if enclosing and enclosing in types and enclosing != rid:
                types[enclosing].nested_types.append(type_def)
            else:
                top_level.append(type_def)
        return top_level

    def _load_field(self, row, rid: int) -> FieldDefinition:
        token = (TABLE_FIELD << 24) | rid
        return FieldDefinition(
            name=text_value(row.Name),
            field_type=decode_field_signature(blob_value(row.Signature), self.type_name),
            attributes=flag_words(row.Flags, FIELD_FLAG_WORDS),
            constant=self._constants.get(token),
            custom_attributes=self.custom_attributes(token),
            token=token,
        )

    def _load_property(self, row, rid: int) -> PropertyDefinition:
        token = (TABLE_PROPERTY << 24) | rid
        signature = decode_property_signature(blob_value(row.Type), self.type_name)
        return PropertyDefinition(
            name=text_value(row.Name),
            property_type=signature.return_type,
            parameters=signature.parameters,
            calling_convention=signature.calling_convention,
            attributes=flag_words(row.Flags, PROPERTY_FLAG_WORDS),
            accessors=self.accessors(token),
            custom_attributes=self.custom_attributes(token),
            token=token,
        )

    def _load_event(self, row, rid: int) -> EventDefinition:
        token = (TABLE_EVENT << 24) | rid
        event_type = coded_token(row.EventType)
        return EventDefinition(
            name=text_value(row.Name),
            event_type=self.type_name(event_type) if event_type is not None else "",
            attributes=flag_words(row.EventFlags, EVENT_FLAG_WORDS),
            accessors=self.accessors(token),
            custom_attributes=self.custom_attributes(token),
            token=token,
        )

    def _parameter_names(self, row) -> dict[int, str]:
        names = {}
        for index in row.ParamList:
            param = self._row(self.params, index_rid(index))
            if param is not None:
                names[int_value(param.Sequence)] = text_value(param.Name)
        return names

    def _load_method(self, row, rid: int) -> MethodDefinition:
        token = (TABLE_METHODDEF << 24) | rid
        signature = decode_method_signature(blob_value(row.Signature), self.type_name)
        names = self._parameter_names(row)
        parameters = []
        for sequence, parameter_type in enumerate(signature.parameters, 1):
            name = names.get(sequence)
            parameters.append(f"{parameter_type} {name}" if name else parameter_type)

        flags = row.Flags
        impl_flags = row.ImplFlags
        method = MethodDefinition(
            name=text_value(row.Name),
            return_type=signature.return_type,
            parameters=parameters,
            attributes=flag_words(flags, METHOD_FLAG_WORDS),
            calling_convention=signature.calling_convention,
            impl_attributes=flag_words(impl_flags, METHOD_IMPL_WORDS),
            generic_parameters=self.generic_parameter_names(token),
            custom_attributes=self.custom_attributes(token),
            token=token,
        )

        rva = int(row.Rva or 0)
        has_il = impl_flags is not None and impl_flags.miIL
        if rva and has_il and not (flags is not None and flags.mdAbstract):
            method.body = self._load_body(rva)
        return method

    def _load_body(self, rva: int) -> MethodBody:
        body = CilMethodBody(_MethodBodyReader(self.pe, rva))
        code_start = body.offset + body.header_size

        locals_signature = None
        locals_token = body.local_var_sig_tok.value if body.local_var_sig_tok is not None else 0
        if locals_token >> 24 == TABLE_STANDALONESIG:
            row = self._row(self.standalone_sigs, locals_token & 0xFFFFFF)
            if row is not None:
                local_types = decode_local_signature(blob_value(row.Signature), self.type_name)
                locals_signature = ", ".join(
                    f"{local_type} V_{index}" for index, local_type in enumerate(local_types)
                )

        return MethodBody(
            max_stack=body.max_stack,
            code_size=body.code_size,
            init_locals=body.flags.InitLocals,
            locals_signature=locals_signature,
            exception_clauses=[self._exception_clause(eh) for eh in body.exception_handlers],
            instructions=[
                Instruction(
                    offset=insn.offset - code_start,
                    mnemonic=insn.opcode.name,
                    operand=self._operand_text(insn, code_start),
                )
                for insn in body.instructions
            ],
        )

    def _exception_clause(self, eh) -> ExceptionClause:
        # dncil reports clause offsets relative to the first instruction
        clause = ExceptionClause(
            kind="catch",
            try_start=eh.try_start,
            try_end=eh.try_end,
            handler_start=eh.handler_start,
            handler_end=eh.handler_end,
        )
        if eh.is_catch():
            if eh.catch_type is not None:
                clause.catch_type = self.type_name(eh.catch_type.value)
        elif eh.is_filter():
            clause.kind = "filter"
            clause.filter_start = eh.filter_start
        elif eh.is_finally():
            clause.kind = "finally"
        else:
            clause.kind = "fault"
        return clause

    def _operand_text(self, insn, code_start: int) -> str | None:
        operand = insn.operand
        operand_type = insn.opcode.operand_type.name
        if operand is None or operand_type == "InlineNone":
            return None
        if operand_type in BRANCH_OPERANDS:
            return f"IL_{int(operand) - code_start:04x}"
        if operand_type == "InlineSwitch":
            return "(" + ", ".join(f"IL_{int(target) - code_start:04x}" for target in operand) + ")"
        if isinstance(operand, StringToken):
            value = self.user_string(operand.rid)
            return quote_string(value) if value is not None else f"[string 0x{operand.value:08X}]"
        if isinstance(operand, Token):
            return self.token_text(operand.value)
        if operand_type in ("InlineVar", "ShortInlineVar"):
            prefix = "V_" if isinstance(operand, Local) else "A_"
            return f"{prefix}{operand.index}"
        return str(operand)

    def load(self) -> ModuleImage:
        return ModuleImage(
            path=self.path,
            module=self.load_module_header(),
            assembly=self.load_assembly(),
            references=self.load_references(),
            types=self.load_types(),
        )


def load_module(path: str | Path) -> ModuleImage:
    """
    Load a .NET module into the IL writer model.

    Raises:
        FileNotFoundError: If the file does not exist
        pefile.PEFormatError: If the file is not a PE image
        MetadataFormatError: If the image has no CLI metadata
    """
    pe = open_image(path)
    try:
        image = MetadataLoader(pe, str(path)).load()
    finally:
        pe.close()
    logger.debug(f"Loaded {len(image.types)} top-level types from {Path(path).name}")
    return image
