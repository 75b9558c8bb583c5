# blockflow/datafiles.py
# Varset readers for forJson/forXml and loadJsonVars/loadXmlVars.
#
# A data file holds an ordered list of varsets (name -> value records). The
# names of the first varset fix the shape; every later varset must carry the
# same names. Reading is cursor based: load(), then next_varset() until at_end().

from __future__ import annotations
import json
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import DataFileError

FILE_URL_PREFIX = "file://"


def resolve_path(filepath: str, base_dir: Optional[str | Path] = None) -> Path:
    """file:// URLs and absolute paths as-is; anything else relative to base_dir."""
    if filepath.lower().startswith(FILE_URL_PREFIX):
        return Path(filepath[len(FILE_URL_PREFIX):])
    p = Path(filepath)
    if p.is_absolute() or base_dir is None:
        return p
    return Path(base_dir) / p


class VarsetReader:
    """Shared cursor logic; subclasses supply _read_varsets() and the wording."""
    desc = "varset"
    unit = "attributes"

    def __init__(self, *, base_dir: Optional[str | Path] = None):
        self.base_dir = base_dir
        self.varsets: List[Dict[str, Any]] = []
        self.names: List[str] = []
        self.cursor: Optional[int] = None
        self.path: Optional[Path] = None

    def _read_varsets(self, text: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def load(self, filepath: str) -> List[str]:
        """Read the file; returns the variable names found in the first varset."""
        if not filepath:
            raise DataFileError(f"Requires a {self.desc} file path.")
        self.path = resolve_path(filepath, self.base_dir)
        if not self.path.is_file():
            raise DataFileError(f"Data file not found: {self.path}")
        text = self.path.read_text(encoding="utf-8")
        self.varsets = self._read_varsets(text)
        if not self.varsets:
            raise DataFileError(f"A {self.desc} could not be loaded, or the file was empty: {self.path}")
        self.cursor = 0
        self.names = list(self.varsets[0].keys())
        return list(self.names)

    def at_end(self) -> bool:
        return self.cursor is None or self.cursor >= len(self.varsets)

    def next_varset(self) -> Dict[str, Any]:
        if self.at_end():
            raise DataFileError(f"No more {self.desc}s to read after #{self.cursor or 0}")
        assert self.cursor is not None
        number = self.cursor + 1
        varset = self.varsets[self.cursor]
        if len(varset) != len(self.names):
            raise DataFileError(
                f"Inconsistent {self.desc} #{number}; expected {len(self.names)} {self.unit},"
                f" but found {len(varset)}. Each {self.desc} must have the same set of {self.unit}."
            )
        for name in varset:
            if name not in self.names:
                raise DataFileError(
                    f"Inconsistent {self.desc} #{number}; found {name}, which does not appear"
                    f" in the first {self.desc}. Each {self.desc} must have the same set of {self.unit}."
                )
        self.cursor += 1
        return dict(varset)


class JsonVarsetReader(VarsetReader):
    """A JSON array of flat objects."""
    desc = "JSON object"

    def _read_varsets(self, text: str) -> List[Dict[str, Any]]:
        try:
            data = json.loads(text or "null")
        except json.JSONDecodeError as exc:
            raise DataFileError(f"{self.path}: invalid JSON: {exc}") from exc
        if data is None:
            return []
        if not isinstance(data, list) or not all(isinstance(v, dict) for v in data):
            raise DataFileError(f"{self.path}: expected a JSON array of objects")
        return data


class XmlVarsetReader(VarsetReader):
    """<testdata><vars name="value" .../>...</testdata>; every value is a string."""
    desc = "XML <vars> element"

    def _read_varsets(self, text: str) -> List[Dict[str, Any]]:
        try:
            root = ET.fromstring(text or "")
        except ET.ParseError as exc:
            raise DataFileError(f"{self.path}: invalid XML: {exc}") from exc
        return [dict(el.attrib) for el in root.iter("vars")]


ReaderFactory = Callable[[str], VarsetReader]


def reader_factory(*, base_dir: Optional[str | Path] = None) -> ReaderFactory:
    """kind in {'json', 'xml'} -> fresh reader resolving paths against base_dir."""
    def make(kind: str) -> VarsetReader:
        if kind == "json":
            return JsonVarsetReader(base_dir=base_dir)
        if kind == "xml":
            return XmlVarsetReader(base_dir=base_dir)
        raise DataFileError(f"Unknown data file kind: {kind}")
    return make
