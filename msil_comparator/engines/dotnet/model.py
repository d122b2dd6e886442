"""
Plain data model of a .NET module as seen by the IL writer.

The metadata loader fills these from the CLI tables; the writer only reads
them, so rendering can be tested without a binary.
"""

from dataclasses import dataclass, field


@dataclass
class CustomAttribute:
    """A .custom entry: the constructor called and its raw argument blob."""
    constructor: str
    value: bytes = b""


@dataclass
class AssemblyReference:
    """An AssemblyRef row (.assembly extern)."""
    name: str
    version: tuple[int, int, int, int] = (0, 0, 0, 0)
    culture: str = ""
    public_key_or_token: bytes = b""
    has_full_public_key: bool = False
    is_retargetable: bool = False
    token: int = 0


@dataclass
class AssemblyIdentity:
    """The Assembly row (manifest) of the module."""
    name: str
    version: tuple[int, int, int, int] = (0, 0, 0, 0)
    culture: str = ""
    public_key: bytes = b""
    hash_algorithm: int = 0
    is_retargetable: bool = False
    custom_attributes: list[CustomAttribute] = field(default_factory=list)


@dataclass
class ModuleHeader:
    """Module row plus the PE values ildasm prints after it."""
    name: str
    mvid: str = ""
    image_base: int = 0
    file_alignment: int = 0
    stack_reserve: int = 0
    subsystem: int = 0
    corflags: int = 0
    custom_attributes: list[CustomAttribute] = field(default_factory=list)


@dataclass
class Instruction:
    offset: int
    mnemonic: str
    operand: str | None = None


@dataclass
class ExceptionClause:
    """One row of a method's exception handling table, in IL offsets."""
    kind: str
    try_start: int
    try_end: int
    handler_start: int
    handler_end: int
    catch_type: str | None = None
    filter_start: int | None = None


@dataclass
class MethodBody:
    max_stack: int = 8
    code_size: int = 0
    init_locals: bool = False
    locals_signature: str | None = None
    instructions: list[Instruction] = field(default_factory=list)
    exception_clauses: list[ExceptionClause] = field(default_factory=list)


@dataclass
class FieldDefinition:
    """A Field row owned by a type."""
    name: str
    field_type: str
    attributes: list[str] = field(default_factory=list)
    constant: str | None = None
    custom_attributes: list[CustomAttribute] = field(default_factory=list)
    token: int = 0

    @property
    def sort_key(self) -> str:
        return self.name


@dataclass
class MethodDefinition:
    """A MethodDef row owned by a type, with its decoded body."""
    name: str
    return_type: str = "void"
    parameters: list[str] = field(default_factory=list)
    attributes: list[str] = field(default_factory=list)
    calling_convention: list[str] = field(default_factory=list)
    impl_attributes: list[str] = field(default_factory=lambda: ["cil", "managed"])
    generic_parameters: list[str] = field(default_factory=list)
    body: MethodBody | None = None
    is_entry_point: bool = False
    custom_attributes: list[CustomAttribute] = field(default_factory=list)
    token: int = 0

    @property
    def signature_text(self) -> str:
        return f"{self.return_type}({', '.join(self.parameters)})"

    @property
    def sort_key(self) -> tuple[str, str]:
        # Overloads share a name; the signature keeps their order stable
        return (self.name, self.signature_text)


@dataclass
class PropertyDefinition:
    name: str
    property_type: str = ""
    parameters: list[str] = field(default_factory=list)
    calling_convention: list[str] = field(default_factory=list)
    attributes: list[str] = field(default_factory=list)
    accessors: list[tuple[str, str]] = field(default_factory=list)
    custom_attributes: list[CustomAttribute] = field(default_factory=list)
    token: int = 0

    @property
    def sort_key(self) -> tuple[str, str]:
        # Indexers overload on their parameter list
        return (self.name, ", ".join(self.parameters))


@dataclass
class EventDefinition:
    name: str
    event_type: str = ""
    attributes: list[str] = field(default_factory=list)
    accessors: list[tuple[str, str]] = field(default_factory=list)
    custom_attributes: list[CustomAttribute] = field(default_factory=list)
    token: int = 0

    @property
    def sort_key(self) -> str:
        return self.name


@dataclass
class TypeDefinition:
    """A TypeDef row with its members in declaration order."""
    name: str
    namespace: str = ""
    attributes: list[str] = field(default_factory=list)
    extends: str | None = None
    implements: list[str] = field(default_factory=list)
    generic_parameters: list[str] = field(default_factory=list)
    enclosing_type: str | None = None
    fields: list[FieldDefinition] = field(default_factory=list)
    methods: list[MethodDefinition] = field(default_factory=list)
    properties: list[PropertyDefinition] = field(default_factory=list)
    events: list[EventDefinition] = field(default_factory=list)
    nested_types: list["TypeDefinition"] = field(default_factory=list)
    custom_attributes: list[CustomAttribute] = field(default_factory=list)
    token: int = 0

    @property
    def full_name(self) -> str:
        if self.enclosing_type:
            return f"{self.enclosing_type}/{self.name}"
        if self.namespace:
            return f"{self.namespace}.{self.name}"
        return self.name

    @property
    def sort_key(self) -> str:
        return self.full_name


@dataclass
class ModuleImage:
    """Everything the IL writer renders for one file."""
    path: str
    module: ModuleHeader
    assembly: AssemblyIdentity | None = None
    references: list[AssemblyReference] = field(default_factory=list)
    types: list[TypeDefinition] = field(default_factory=list)

    @property
    def is_assembly(self) -> bool:
        return self.assembly is not None
