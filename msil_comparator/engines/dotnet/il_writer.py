"""
Textual IL rendering of a ModuleImage.

The writer mirrors the sections of an ildasm dump: assembly references, the
assembly manifest, the module header and the module contents. Sibling
entities are emitted in the order chosen by the injected EntityProcessor.
"""

from msil_comparator.engines.dotnet.model import (
    AssemblyReference,
    CustomAttribute,
    EventDefinition,
    ExceptionClause,
    FieldDefinition,
    MethodDefinition,
    ModuleImage,
    PropertyDefinition,
    TypeDefinition,
)
from msil_comparator.engines.dotnet.ordering import EntityProcessor, SortByNameProcessor

HASH_ALGORITHMS = {
    0x0000: "None",
    0x8003: "MD5",
    0x8004: "SHA1",
    0x800C: "SHA256",
    0x800D: "SHA384",
    0x800E: "SHA512",
}

SUBSYSTEMS = {
    1: "Native",
    2: "WindowsGui",
    3: "WindowsCui",
    9: "WindowsCeGui",
}

COR_FLAGS = (
    (0x00000001, "ILOnly"),
    (0x00000002, "Required32Bit"),
    (0x00000004, "ILLibrary"),
    (0x00000008, "StrongNameSigned"),
    (0x00000010, "NativeEntryPoint"),
    (0x00010000, "TrackDebugData"),
    (0x00020000, "Preferred32Bit"),
)

_IDENTIFIER_PUNCTUATION = set("_$@?`.")
_SPECIAL_NAMES = {".ctor", ".cctor"}


def _is_plain_identifier(name: str) -> bool:
    if not name or name[0].isdigit():
        return False
    if name[0] == ".":
        return name in _SPECIAL_NAMES
    if ".." in name:
        return False
    return all(ch.isalnum() or ch in _IDENTIFIER_PUNCTUATION for ch in name)


def escape_identifier(name: str) -> str:
    """Quote an identifier that is not a plain ILAsm name."""
    if _is_plain_identifier(name):
        return name
    escaped = name.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def escape_dotted_name(name: str) -> str:
    return ".".join(escape_identifier(part) for part in name.split(".")) if name else name


def format_bytes(data: bytes, per_line: int = 16) -> list[str]:
    """Hex byte rows in ildasm style, each byte followed by a space."""
    if not data:
        return [""]
    return [
        "".join(f"{byte:02X} " for byte in data[start:start + per_line])
        for start in range(0, len(data), per_line)
    ]


def format_version(version: tuple[int, int, int, int]) -> str:
    return ":".join(str(part) for part in version)


class ILOutput:
    """Indented plain-text sink."""

    def __init__(self, indent_text: str = "\t"):
        self.indent_text = indent_text
        self.indentation = 0
        self._lines: list[str] = []

    def indent(self) -> None:
        self.indentation += 1

    def unindent(self) -> None:
        self.indentation = max(0, self.indentation - 1)

    def write_line(self, text: str = "") -> None:
        if text:
            self._lines.append(self.indent_text * self.indentation + text)
        else:
            self._lines.append("")

    def getvalue(self) -> str:
        return "\n".join(self._lines) + "\n" if self._lines else ""


class ILWriter:
    """Writes IL text for a ModuleImage into an ILOutput."""

    def __init__(self, output: ILOutput, entity_processor: EntityProcessor | None = None):
        self.output = output
        self.entity_processor = entity_processor or SortByNameProcessor()

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def _write_byte_directive(self, directive: str, data: bytes) -> None:
        rows = format_bytes(data)
        rows[-1] += ")"
        self.output.write_line(f"{directive} = ({rows[0]}")
        padding = " " * (len(directive) + 4)
        for row in rows[1:]:
            self.output.write_line(f"{padding}{row}")

    def write_custom_attributes(self, attributes: list[CustomAttribute]) -> None:
        for attribute in attributes:
            if attribute.value:
                self._write_byte_directive(f".custom {attribute.constructor}", attribute.value)
            else:
                self.output.write_line(f".custom {attribute.constructor}")

    def write_assembly_references(self, image: ModuleImage) -> None:
        out = self.output
        for reference in image.references:
            self._write_assembly_reference(reference)
        if image.references:
            out.write_line()

    def _write_assembly_reference(self, reference: AssemblyReference) -> None:
        out = self.output
        prefix = ".assembly extern retargetable" if reference.is_retargetable else ".assembly extern"
        out.write_line(f"{prefix} {escape_dotted_name(reference.name)}")
        out.write_line("{")
        out.indent()
        if reference.public_key_or_token:
            directive = ".publickey" if reference.has_full_public_key else ".publickeytoken"
            self._write_byte_directive(directive, reference.public_key_or_token)
        if reference.culture:
            out.write_line(f'.culture "{reference.culture}"')
        out.write_line(f".ver {format_version(reference.version)}")
        out.unindent()
        out.write_line("}")

    def write_assembly_header(self, image: ModuleImage) -> None:
        assembly = image.assembly
        if assembly is None:
            return
        out = self.output
        prefix = ".assembly retargetable" if assembly.is_retargetable else ".assembly"
        out.write_line(f"{prefix} {escape_dotted_name(assembly.name)}")
        out.write_line("{")
        out.indent()
        self.write_custom_attributes(assembly.custom_attributes)
        if assembly.public_key:
            self._write_byte_directive(".publickey", assembly.public_key)
        algorithm = HASH_ALGORITHMS.get(assembly.hash_algorithm)
        hash_line = f".hash algorithm 0x{assembly.hash_algorithm:08x}"
        out.write_line(f"{hash_line} // {algorithm}" if algorithm else hash_line)
        if assembly.culture:
            out.write_line(f'.culture "{assembly.culture}"')
        out.write_line(f".ver {format_version(assembly.version)}")
        out.unindent()
        out.write_line("}")

    def write_module_header(self, image: ModuleImage, skip_mvid: bool = False) -> None:
        """
        Write the .module block.

        Args:
            image: Module to describe
            skip_mvid: Leave out the MVID, which changes on every build
        """
        out = self.output
        module = image.module
        out.write_line(f".module {escape_identifier(module.name)}")
        self.write_custom_attributes(module.custom_attributes)
        if not skip_mvid and module.mvid:
            out.write_line(f"// MVID: {module.mvid}")
        out.write_line(f".imagebase 0x{module.image_base:08x}")
        out.write_line(f".file alignment 0x{module.file_alignment:08x}")
        out.write_line(f".stackreserve 0x{module.stack_reserve:08x}")

        subsystem = SUBSYSTEMS.get(module.subsystem)
        line = f".subsystem 0x{module.subsystem:04x}"
        out.write_line(f"{line} // {subsystem}" if subsystem else line)

        names = [name for bit, name in COR_FLAGS if module.corflags & bit]
        line = f".corflags 0x{module.corflags:08x}"
        out.write_line(f"{line} // {', '.join(names)}" if names else line)

    # ------------------------------------------------------------------
    # Contents
    # ------------------------------------------------------------------

    def write_module_contents(self, image: ModuleImage) -> None:
        for type_def in self.entity_processor.process_types(image.types):
            if type_def.name == "<Module>" and not (type_def.fields or type_def.methods):
                continue
            self.write_type(type_def)
            self.output.write_line()

    def write_type(self, type_def: TypeDefinition) -> None:
        out = self.output
        words = [".class"] + type_def.attributes
        name = escape_identifier(type_def.name) if type_def.enclosing_type else escape_dotted_name(
            type_def.full_name
        )
        if type_def.generic_parameters:
            name += f"<{', '.join(type_def.generic_parameters)}>"
        out.write_line(" ".join(words + [name]))

        out.indent()
        if type_def.extends:
            out.write_line(f"extends {type_def.extends}")
        if type_def.implements:
            out.write_line(f"implements {', '.join(type_def.implements)}")
        out.unindent()

        out.write_line("{")
        out.indent()
        self.write_custom_attributes(type_def.custom_attributes)

        nested = self.entity_processor.process_types(type_def.nested_types)
        if nested:
            out.write_line("// Nested Types")
            for nested_type in nested:
                self.write_type(nested_type)
            out.write_line()

        fields = self.entity_processor.process_fields(type_def.fields)
        if fields:
            out.write_line("// Fields")
            for field_def in fields:
                self.write_field(field_def)
            out.write_line()

        methods = self.entity_processor.process_methods(type_def.methods)
        if methods:
            out.write_line("// Methods")
            for method in methods:
                self.write_method(method, type_def)
            out.write_line()

        properties = self.entity_processor.process_properties(type_def.properties)
        if properties:
            out.write_line("// Properties")
            for prop in properties:
                self.write_property(prop)
            out.write_line()

        events = self.entity_processor.process_events(type_def.events)
        if events:
            out.write_line("// Events")
            for event in events:
                self.write_event(event)
            out.write_line()

        out.unindent()
        out.write_line(f"}} // end of class {type_def.full_name}")

    def write_field(self, field_def: FieldDefinition) -> None:
        words = [".field"] + field_def.attributes + [field_def.field_type, escape_identifier(field_def.name)]
        if field_def.constant is not None:
            words += ["=", field_def.constant]
        self.output.write_line(" ".join(words))
        self.write_custom_attributes(field_def.custom_attributes)

    def write_method(self, method: MethodDefinition, owner: TypeDefinition) -> None:
        out = self.output
        name = escape_identifier(method.name)
        if method.generic_parameters:
            name += f"<{', '.join(method.generic_parameters)}>"
        words = (
            [".method"]
            + method.attributes
            + method.calling_convention
            + [method.return_type, f"{name} ({', '.join(method.parameters)})"]
            + method.impl_attributes
        )
        out.write_line(" ".join(words))
        out.write_line("{")
        out.indent()
        self.write_custom_attributes(method.custom_attributes)

        if method.is_entry_point:
            out.write_line(".entrypoint")

        body = method.body
        if body is not None:
            out.write_line(f"// Code size {body.code_size} (0x{body.code_size:x})")
            out.write_line(f".maxstack {body.max_stack}")
            if body.locals_signature:
                keyword = ".locals init" if body.init_locals else ".locals"
                out.write_line(f"{keyword} ({body.locals_signature})")
            out.write_line()
            for instruction in body.instructions:
                text = f"IL_{instruction.offset:04x}: {instruction.mnemonic}"
                if instruction.operand is not None:
                    text += f" {instruction.operand}"
                out.write_line(text)
            for clause in body.exception_clauses:
                self.write_exception_clause(clause)

        out.unindent()
        out.write_line(f"}} // end of method {owner.name}::{method.name}")
        out.write_line()

    def write_property(self, prop: PropertyDefinition) -> None:
        out = self.output
        words = (
            [".property"]
            + prop.attributes
            + prop.calling_convention
            + [prop.property_type, f"{escape_identifier(prop.name)}({', '.join(prop.parameters)})"]
        )
        out.write_line(" ".join(word for word in words if word))
        out.write_line("{")
        self._write_member_block(prop.custom_attributes, prop.accessors)
        out.write_line(f"}} // end of property {prop.name}")

    def write_event(self, event: EventDefinition) -> None:
        out = self.output
        words = [".event"] + event.attributes + [event.event_type, escape_identifier(event.name)]
        out.write_line(" ".join(word for word in words if word))
        out.write_line("{")
        self._write_member_block(event.custom_attributes, event.accessors)
        out.write_line(f"}} // end of event {event.name}")

    def _write_member_block(self, attributes: list[CustomAttribute], accessors: list[tuple[str, str]]) -> None:
        out = self.output
        out.indent()
        self.write_custom_attributes(attributes)
        for directive, method in accessors:
            out.write_line(f"{directive} {method}")
        out.unindent()

    def write_exception_clause(self, clause: ExceptionClause) -> None:
        """Write one EH clause in the raw .try form."""
        text = f".try IL_{clause.try_start:04x} to IL_{clause.try_end:04x}"
        if clause.kind == "catch":
            text += f" catch {clause.catch_type or 'object'}"
        elif clause.kind == "filter":
            text += f" filter IL_{clause.filter_start or 0:04x}"
        else:
            text += f" {clause.kind}"
        text += f" handler IL_{clause.handler_start:04x} to IL_{clause.handler_end:04x}"
        self.output.write_line(text)
