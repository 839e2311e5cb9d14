"""Scene description types: spec kinds, paths, list ops and decoded values."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar

from usdcrate.layout import CrateError

T = TypeVar("T")


class SpecType(enum.IntEnum):
    """Kind of object a spec describes."""

    UNKNOWN = 0
    ATTRIBUTE = 1
    CONNECTION = 2
    EXPRESSION = 3
    MAPPER = 4
    MAPPER_ARG = 5
    PRIM = 6
    PSEUDO_ROOT = 7
    RELATIONSHIP = 8
    RELATIONSHIP_TARGET = 9
    VARIANT = 10
    VARIANT_SET = 11


class Specifier(enum.IntEnum):
    DEF = 0
    OVER = 1
    CLASS = 2


class Permission(enum.IntEnum):
    PUBLIC = 0
    PRIVATE = 1


class Variability(enum.IntEnum):
    VARYING = 0
    UNIFORM = 1


@dataclass(frozen=True, order=True)
class Path:
    """Scene path such as ``/World/Mesh.points``; the default path is empty."""

    text: str = ""

    def __str__(self) -> str:
        return self.text

    @classmethod
    def abs_root(cls) -> Path:
        """The absolute root path ``/``."""
        return cls("/")

    def is_empty(self) -> bool:
        return not self.text

    def _is_property(self) -> bool:
        last = self.text.rpartition("/")[2]
        return "." in last

    def _check_extendable(self) -> None:
        if self.is_empty():
            raise CrateError("Cannot append to an empty path")
        if self._is_property():
            raise CrateError(f"Cannot append to property path '{self.text}'")

    def append_path(self, name: str) -> Path:
        """Return the path of child prim ``name`` (or a variant selection ``{set=sel}``)."""
        self._check_extendable()
        if not name:
            raise CrateError(f"Empty prim name appended to '{self.text}'")
        if name.startswith("{"):
            if not name.endswith("}") or self.text == "/":
                raise CrateError(f"Invalid variant selection '{name}' for '{self.text}'")
            return Path(self.text + name)
        if "/" in name or "." in name:
            raise CrateError(f"Invalid prim name '{name}'")
        if self.text == "/":
            return Path("/" + name)
        return Path(f"{self.text}/{name}")

    def append_property(self, name: str) -> Path:
        """Return the path of property ``name`` of this prim path."""
        self._check_extendable()
        if self.text == "/":
            raise CrateError("The root path cannot hold properties")
        if not name or "/" in name or "." in name:
            raise CrateError(f"Invalid property name '{name}'")
        return Path(f"{self.text}.{name}")


def path(text: str) -> Path:
    """Parse and validate a path string."""
    if not text:
        raise CrateError("Empty path")
    if text == "/":
        return Path.abs_root()

    body = text[1:] if text.startswith("/") else text
    prim_part, dot, prop = body.partition(".")

    if any(not component for component in prim_part.split("/")):
        raise CrateError(f"Invalid path '{text}': empty path element")
    if dot and (not prop or "/" in prop):
        raise CrateError(f"Invalid path '{text}': bad property name")

    return Path(text)


@dataclass(frozen=True)
class LayerOffset:
    """Time offset and scale applied to a referenced layer."""

    FORMAT: ClassVar[str] = "<dd"

    offset: float = 0.0
    scale: float = 1.0


@dataclass
class Reference:
    asset_path: str = ""
    prim_path: Path = field(default_factory=Path)
    layer_offset: LayerOffset = field(default_factory=LayerOffset)
    custom_data: dict[str, Value] = field(default_factory=dict)


@dataclass
class Payload:
    asset_path: str = ""
    prim_path: Path = field(default_factory=Path)
    layer_offset: LayerOffset | None = None


@dataclass
class ListOp(Generic[T]):
    """List editing operation: explicit items or added/prepended/appended/deleted/ordered edits."""

    explicit: bool = False
    explicit_items: list[T] = field(default_factory=list)
    added_items: list[T] = field(default_factory=list)
    prepended_items: list[T] = field(default_factory=list)
    appended_items: list[T] = field(default_factory=list)
    deleted_items: list[T] = field(default_factory=list)
    ordered_items: list[T] = field(default_factory=list)


class ValueKind(enum.Enum):
    """Kind of a decoded value; vector kinds hold flat component lists."""

    BOOL = enum.auto()
    BOOL_VEC = enum.auto()
    UCHAR = enum.auto()
    UCHAR_VEC = enum.auto()
    INT = enum.auto()
    INT_VEC = enum.auto()
    UINT = enum.auto()
    UINT_VEC = enum.auto()
    INT64 = enum.auto()
    INT64_VEC = enum.auto()
    UINT64 = enum.auto()
    UINT64_VEC = enum.auto()
    HALF = enum.auto()
    HALF_VEC = enum.auto()
    FLOAT = enum.auto()
    FLOAT_VEC = enum.auto()
    DOUBLE = enum.auto()
    DOUBLE_VEC = enum.auto()
    STRING = enum.auto()
    STRING_VEC = enum.auto()
    TOKEN = enum.auto()
    TOKEN_VEC = enum.auto()
    ASSET_PATH = enum.auto()
    VEC2H = enum.auto()
    VEC2F = enum.auto()
    VEC2D = enum.auto()
    VEC2I = enum.auto()
    VEC3H = enum.auto()
    VEC3F = enum.auto()
    VEC3D = enum.auto()
    VEC3I = enum.auto()
    VEC4H = enum.auto()
    VEC4F = enum.auto()
    VEC4D = enum.auto()
    VEC4I = enum.auto()
    MATRIX2D = enum.auto()
    MATRIX3D = enum.auto()
    MATRIX4D = enum.auto()
    QUATH = enum.auto()
    QUATF = enum.auto()
    QUATD = enum.auto()
    TOKEN_LIST_OP = enum.auto()
    STRING_LIST_OP = enum.auto()
    PATH_LIST_OP = enum.auto()
    REFERENCE_LIST_OP = enum.auto()
    PAYLOAD_LIST_OP = enum.auto()
    SPECIFIER = enum.auto()
    PERMISSION = enum.auto()
    VARIABILITY = enum.auto()
    LAYER_OFFSET_VEC = enum.auto()
    PAYLOAD = enum.auto()
    VARIANT_SELECTION_MAP = enum.auto()
    TIME_SAMPLES = enum.auto()
    DICTIONARY = enum.auto()
    VALUE_BLOCK = enum.auto()


@dataclass
class Value:
    """A decoded field value: its kind and the Python data it carries."""

    kind: ValueKind
    data: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, ValueKind):
            raise TypeError(f"Value kind must be a ValueKind, got {self.kind!r}")