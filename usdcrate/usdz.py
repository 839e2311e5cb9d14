"""Reader for USDZ archives: uncompressed ZIP files holding USD layers."""

from __future__ import annotations

import io
import zipfile
from os import PathLike
from types import TracebackType

from usdcrate.data import CrateData
from usdcrate.layout import CrateError

_USD_EXTENSIONS = (".usdc", ".usda", ".usd")


class Archive:
    """Access to the layers stored in a USDZ archive."""

    def __init__(self, archive: zipfile.ZipFile) -> None:
        self._zip = archive

    @classmethod
    def open(cls, path: str | PathLike[str]) -> Archive:
        """Open the archive at ``path``."""
        try:
            archive = zipfile.ZipFile(path)
        except zipfile.BadZipFile as exc:
            raise CrateError(f"Failed to read ZIP archive: {path}") from exc
        return cls(archive)

    def __len__(self) -> int:
        return len(self._zip.infolist())

    def name_at(self, index: int) -> str | None:
        """Name of the entry at ``index``, or None if there is none."""
        entries = self._zip.infolist()
        if not 0 <= index < len(entries):
            return None
        return entries[index].filename

    def file_names(self) -> list[str]:
        return self._zip.namelist()

    def find_root_layer(self) -> str | None:
        """The first USD layer in the archive, which is taken as its root layer."""
        return next(
            (name for name in self._zip.namelist() if name.lower().endswith(_USD_EXTENSIONS)),
            None,
        )

    def read(self, file_path: str) -> CrateData:
        """Read a binary layer stored in the archive."""
        try:
            buffer = self._zip.read(file_path)
        except KeyError:
            raise CrateError(f"File '{file_path}' not found in archive") from None
        except zipfile.BadZipFile as exc:
            raise CrateError(f"Failed to read file '{file_path}' from archive") from exc

        if file_path.endswith(".usdc"):
            try:
                return CrateData.open(io.BytesIO(buffer), True)
            except CrateError as exc:
                raise CrateError(f"Failed to parse USDC data from '{file_path}': {exc}") from exc
        if file_path.endswith(".usdz"):
            raise CrateError(f"Nested USDZ files are not supported: '{file_path}'")
        raise CrateError(f"Unsupported file format for '{file_path}'. Expected .usdc extension")

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> Archive:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()