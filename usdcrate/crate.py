"""Structural reader for binary crate files.

A crate file starts with a bootstrap header that points at a table of
contents. The table lists the structural sections (tokens, strings, fields,
fieldsets, paths and specs), which are read eagerly when a file is opened.
Values are left as packed representations and decoded on demand elsewhere.
"""

from __future__ import annotations

import struct
from typing import BinaryIO

from lz4 import block as lz4_block

from usdcrate.coding import decode_ints, encoded_buffer_size
from usdcrate.layout import (
    Bootstrap,
    CrateError,
    Field,
    Section,
    Spec,
    ValueRep,
    Version,
    version,
)
from usdcrate.sdf import Path, SpecType

# Newest file version this reader understands.
SW_VERSION = version(0, 10, 0)

_COMPRESSED_SECTIONS_VERSION = version(0, 4, 0)
_INVALID_INDEX = 0xFFFFFFFF
_MAX_SECTIONS = 64
_MAX_STRINGS = 128 * 1024 * 1024
_LZ4_MAX_INPUT_SIZE = 0x7E000000


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if data is None or len(data) < size:
        raise CrateError(f"Unexpected end of data: wanted {size} bytes")
    return data


def _read_count(stream: BinaryIO) -> int:
    (count,) = struct.unpack("<Q", _read_exact(stream, 8))
    return count


def _read_u32s(stream: BinaryIO, count: int) -> list[int]:
    if count == 0:
        return []
    return list(struct.unpack(f"<{count}I", _read_exact(stream, 4 * count)))


def _decompress_block(data: bytes, size: int) -> bytes:
    if size < 0:
        raise CrateError(f"Invalid decompressed size: {size}")
    try:
        return lz4_block.decompress(bytes(data), uncompressed_size=size)
    except (lz4_block.LZ4BlockError, ValueError) as exc:
        raise CrateError("Failed to decompress data, possibly corrupt?") from exc


def decompress_lz4(data: bytes, size: int) -> bytes:
    """Decompress an lz4 buffer of at most ``size`` bytes.

    The first byte holds the number of chunks; zero means a single block
    follows. Otherwise each chunk is a little-endian int32 length followed
    by that many compressed bytes.
    """
    if not data:
        raise CrateError("Unable to read lz4 chunk count")

    chunks = data[0]
    if chunks == 0:
        return _decompress_block(data[1:], size)

    output = bytearray()
    pos = 1
    for _ in range(chunks):
        try:
            (chunk_size,) = struct.unpack_from("<i", data, pos)
        except struct.error as exc:
            raise CrateError("Unable to read lz4 chunk size") from exc
        pos += 4
        chunk = data[pos : pos + chunk_size]
        if chunk_size < 0 or len(chunk) < chunk_size:
            raise CrateError(f"Truncated lz4 chunk of {chunk_size} bytes")
        pos += chunk_size
        remaining = size - len(output)
        output += _decompress_block(chunk, min(remaining, _LZ4_MAX_INPUT_SIZE))
    return bytes(output)


class CrateFile:
    """Structural data of a crate file read from a seekable binary stream.

    ``stream`` stays open and positioned wherever the last read left it; the
    value decoders read from it directly.
    """

    def __init__(self, stream: BinaryIO, bootstrap: Bootstrap) -> None:
        self.stream = stream
        self.bootstrap = bootstrap
        self.sections: list[Section] = []
        self.tokens: list[str] = []
        self.strings: list[int] = []
        self.fields: list[Field] = []
        self.fieldsets: list[int | None] = []
        self.paths: list[Path] = []
        self.specs: list[Spec] = []

    @classmethod
    def open(cls, stream: BinaryIO) -> CrateFile:
        """Read the header and every structural section from ``stream``."""
        crate = cls(stream, cls._read_header(stream))
        steps = (
            ("sections", crate._read_sections),
            ("TOKENS section", crate._read_tokens),
            ("STRINGS section", crate._read_strings),
            ("FIELDS section", crate._read_fields),
            ("FIELDSETS section", crate._read_fieldsets),
            ("PATHS section", crate._read_paths),
            ("SPECS section", crate._read_specs),
        )
        for what, step in steps:
            try:
                step()
            except CrateError as exc:
                raise CrateError(f"Unable to read {what}: {exc}") from exc
        return crate

    def version(self) -> Version:
        """File version taken from the bootstrap header."""
        return self.bootstrap.file_version()

    def validate(self) -> None:
        """Check that all cross-references between sections are in range."""
        for index, fld in enumerate(self.fields):
            if not 0 <= fld.token_index < len(self.tokens):
                raise CrateError(f"Invalid field token index {index}: {fld.token_index}")

        for index, fieldset in enumerate(self.fieldsets):
            if fieldset is not None and not 0 <= fieldset < len(self.fields):
                raise CrateError(f"Invalid fieldset index {index}: {fieldset}")

        for index, spec in enumerate(self.specs):
            if not 0 <= spec.path_index < len(self.paths):
                raise CrateError(f"Invalid spec {index} path index: {spec.path_index}")
            if not 0 <= spec.fieldset_index < len(self.fieldsets):
                raise CrateError(f"Invalid spec {index} fieldset index: {spec.fieldset_index}")
            # A fieldset must start at 0 or right after a terminator.
            if spec.fieldset_index > 0 and self.fieldsets[spec.fieldset_index - 1] is not None:
                raise CrateError(
                    f"Invalid spec {index}, the element at the prior index "
                    f"{spec.fieldset_index} must be a default-constructed field index"
                )
            if spec.spec_type == SpecType.UNKNOWN:
                raise CrateError(f"Invalid spec {index} type")

    def find_section(self, name: str) -> Section | None:
        """The section called ``name``, or None."""
        return next((section for section in self.sections if section.name == name), None)

    def read_compressed(self, estimated_size: int) -> bytes:
        """Read a u64 length and an lz4 block at the current position.

        ``estimated_size`` must be large enough for the decompressed bytes;
        the result holds only what was actually decompressed.
        """
        compressed_size = _read_count(self.stream)
        data = _read_exact(self.stream, compressed_size)
        return decompress_lz4(data, estimated_size)

    def read_encoded_ints(self, count: int, width: int = 4, signed: bool = False) -> list[int]:
        """Read ``count`` delta-coded integers stored in an lz4 block."""
        buffer = self.read_compressed(encoded_buffer_size(count, width))
        return decode_ints(buffer, count, width, signed)

    @staticmethod
    def _read_header(stream: BinaryIO) -> Bootstrap:
        header = Bootstrap.from_bytes(_read_exact(stream, Bootstrap.SIZE))
        if header.ident != b"PXR-USDC":
            raise CrateError("Usd crate bootstrap section corrupt")
        if header.toc_offset <= 0:
            raise CrateError("Invalid TOC offset")
        file_ver = header.file_version()
        if not SW_VERSION.can_read(file_ver):
            raise CrateError(
                f"Usd crate version mismatch, file is {file_ver}, library supports {SW_VERSION}"
            )
        return header

    def _seek(self, position: int) -> None:
        self.stream.seek(position)

    def _section_start(self, name: str) -> int | None:
        section = self.find_section(name)
        if section is None:
            return None
        self._seek(section.start)
        return section.start

    def _require_compressed_layout(self, what: str) -> None:
        if self.version() < _COMPRESSED_SECTIONS_VERSION:
            raise CrateError(f"{what} reader for {self.version()} files is not supported")

    def _read_sections(self) -> None:
        self._seek(self.bootstrap.toc_offset)
        count = _read_count(self.stream)
        if count == 0:
            raise CrateError("Crate file has no sections")
        if count >= _MAX_SECTIONS:
            raise CrateError(f"Suspiciously large number of sections: {count}")
        raw = _read_exact(self.stream, count * Section.SIZE)
        self.sections = [
            Section.from_bytes(raw[start : start + Section.SIZE])
            for start in range(0, len(raw), Section.SIZE)
        ]

    def _read_tokens(self) -> None:
        if self._section_start(Section.TOKENS) is None:
            return
        count = _read_count(self.stream)
        self._require_compressed_layout("TOKENS")

        uncompressed_size = _read_count(self.stream)
        buffer = self.read_compressed(uncompressed_size)
        if len(buffer) != uncompressed_size:
            raise CrateError(
                f"Decompressed size mismatch (expected {uncompressed_size}, got {len(buffer)})"
            )
        if not buffer.endswith(b"\0"):
            raise CrateError("Tokens section not null-terminated in crate file")

        try:
            tokens = [raw.decode("utf-8") for raw in buffer[:-1].split(b"\0")]
        except UnicodeDecodeError as exc:
            raise CrateError("Failed to parse TOKENS section") from exc

        if len(tokens) != count:
            raise CrateError(f"Crate file claims {count} tokens, but found {len(tokens)}")
        self.tokens = tokens

    def _read_strings(self) -> None:
        if self._section_start(Section.STRINGS) is None:
            return
        count = _read_count(self.stream)
        if count >= _MAX_STRINGS:
            raise CrateError(f"Suspiciously large number of strings: {count}")
        self.strings = _read_u32s(self.stream, count)

    def _read_fields(self) -> None:
        if self._section_start(Section.FIELDS) is None:
            return
        self._require_compressed_layout("FIELDS")

        count = _read_count(self.stream)
        indices = self.read_encoded_ints(count)
        raw = self.read_compressed(count * 8)
        reps = struct.unpack(f"<{len(raw) // 8}Q", raw[: len(raw) // 8 * 8])
        self.fields = [Field(index, ValueRep(rep)) for index, rep in zip(indices, reps)]

    def _read_fieldsets(self) -> None:
        if self._section_start(Section.FIELDSETS) is None:
            return
        self._require_compressed_layout("FIELDSETS")

        count = _read_count(self.stream)
        self.fieldsets = [
            None if index == _INVALID_INDEX else index for index in self.read_encoded_ints(count)
        ]

    def _read_paths(self) -> None:
        if self._section_start(Section.PATHS) is None:
            return
        self._require_compressed_layout("PATHS")

        path_count = _read_count(self.stream)
        self.paths = [Path()] * path_count

        count = _read_count(self.stream)
        path_indexes = self.read_encoded_ints(count)
        element_token_indexes = self.read_encoded_ints(count, 4, True)
        jumps = self.read_encoded_ints(count, 4, True)

        try:
            self._build_paths(path_indexes, element_token_indexes, jumps)
        except IndexError as exc:
            raise CrateError("Path tree references an index out of range") from exc

    def _build_paths(
        self,
        path_indexes: list[int],
        element_token_indexes: list[int],
        jumps: list[int],
    ) -> None:
        # Siblings are deferred to a stack instead of recursing on them.
        pending: list[tuple[int, Path]] = [(0, Path())]
        while pending:
            current, parent = pending.pop()
            while True:
                this = current
                current += 1

                if parent.is_empty():
                    parent = Path.abs_root()
                    self.paths[this] = parent
                else:
                    token_index = element_token_indexes[this]
                    element = self.tokens[abs(token_index)]
                    if token_index < 0:
                        child = parent.append_property(element)
                    else:
                        child = parent.append_path(element)
                    self.paths[path_indexes[this]] = child

                jump = jumps[this]
                has_child = jump > 0 or jump == -1
                has_sibling = jump >= 0

                if has_child:
                    if has_sibling:
                        pending.append((this + jump, parent))
                    parent = self.paths[path_indexes[this]]

                if not has_child and not has_sibling:
                    break

    def _read_specs(self) -> None:
        if self._section_start(Section.SPECS) is None:
            return
        self._require_compressed_layout("SPECS")

        count = _read_count(self.stream)
        path_indexes = self.read_encoded_ints(count)
        fieldset_indexes = self.read_encoded_ints(count)
        type_codes = self.read_encoded_ints(count)

        specs = []
        for path_index, fieldset_index, code in zip(path_indexes, fieldset_indexes, type_codes):
            try:
                spec_type = SpecType(code)
            except ValueError:
                raise CrateError(f"Unable to parse SDF spec type: {code}") from None
            specs.append(Spec(path_index, fieldset_index, spec_type))
        self.specs = specs