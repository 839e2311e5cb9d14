"""High level access to the specs and fields stored in a crate file."""

from __future__ import annotations

import io
from dataclasses import dataclass
from itertools import islice, takewhile
from os import PathLike
from typing import BinaryIO, Union

from usdcrate.crate import CrateFile
from usdcrate.decode import ValueDecoder
from usdcrate.layout import CrateError, ValueRep
from usdcrate.sdf import Path, SpecType, Value
from usdcrate.sdf import path as parse_path

PathKey = Union[Path, str]


@dataclass
class _Spec:
    ty: SpecType
    fields: dict[str, ValueRep]


def _key(key: PathKey) -> Path:
    return key if isinstance(key, Path) else parse_path(key)


class CrateData:
    """Specs of a crate file with their fields, decoded on demand.

    The stream given to :meth:`open` must stay readable while values are
    being fetched.
    """

    def __init__(self, crate: CrateFile, specs: dict[Path, _Spec]) -> None:
        self.crate = crate
        self._specs = specs
        self._decoder = ValueDecoder(crate)

    @classmethod
    def open(cls, stream: BinaryIO, safe: bool = True) -> CrateData:
        """Read a crate file from ``stream``; with ``safe`` its structure is validated first."""
        crate = CrateFile.open(stream)
        if safe:
            crate.validate()

        file_specs, crate.specs = crate.specs, []
        specs: dict[Path, _Spec] = {}
        try:
            for file_spec in file_specs:
                fields: dict[str, ValueRep] = {}
                indexes = takewhile(
                    lambda index: index is not None,
                    islice(crate.fieldsets, file_spec.fieldset_index, None),
                )
                for field_index in indexes:
                    fld = crate.fields[field_index]
                    fields[crate.tokens[fld.token_index]] = fld.value_rep
                specs[crate.paths[file_spec.path_index]] = _Spec(file_spec.spec_type, fields)
        except IndexError as exc:
            raise CrateError("Spec references an index out of range") from exc

        return cls(crate, specs)

    def has_spec(self, path: PathKey) -> bool:
        return _key(path) in self._specs

    def has_field(self, path: PathKey, field: str) -> bool:
        spec = self._specs.get(_key(path))
        return spec is not None and field in spec.fields

    def spec_type(self, path: PathKey) -> SpecType | None:
        spec = self._specs.get(_key(path))
        return None if spec is None else spec.ty

    def get(self, path: PathKey, field: str) -> Value:
        """Decode the value of ``field`` on the spec at ``path``."""
        key = _key(path)
        spec = self._specs.get(key)
        if spec is None:
            raise CrateError(f"No spec found for path: {key}")
        rep = spec.fields.get(field)
        if rep is None:
            raise CrateError(f"No field found for path '{key}' and field '{field}'")
        return self._decoder.value(rep)

    def list(self, path: PathKey) -> list[str] | None:
        """Names of the fields of the spec at ``path``, or None if there is no such spec."""
        spec = self._specs.get(_key(path))
        return None if spec is None else [name for name in spec.fields]

    def into_specs(self) -> dict[Path, tuple[SpecType, dict[str, Value]]]:
        """Every spec with all its field values decoded.

        Fields whose values cannot be decoded are left out.
        """
        result: dict[Path, tuple[SpecType, dict[str, Value]]] = {}
        for key, spec in self._specs.items():
            resolved: dict[str, Value] = {}
            for name, rep in spec.fields.items():
                try:
                    resolved[name] = self._decoder.value(rep)
                except CrateError:
                    continue
            result[key] = (spec.ty, resolved)
        return result


def read_file(path: str | PathLike[str]) -> CrateData:
    """Read a crate file from disk."""
    with open(path, "rb") as handle:
        content = handle.read()
    return CrateData.open(io.BytesIO(content), True)