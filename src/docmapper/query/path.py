# src/docmapper/query/path.py

import logging
import re
from typing import TYPE_CHECKING, Any, List, Optional

from ..base.exceptions import InvalidPathError
from ..base.model_validator import is_struct_type, unwrap_optional
from ..mapping.mapped_class import MappedClass
from ..mapping.mapped_field import MappedField

if TYPE_CHECKING:
    from ..mapping.mapper import Mapper

log = logging.getLogger(__name__)

_POSITIONAL = re.compile(r"^(\$|\$\[[^\]]*\]|\d+)$")


def is_positional(segment: str) -> bool:
    """Array positions: ``3``, ``$``, ``$[]`` and ``$[identifier]``."""
    return bool(_POSITIONAL.match(segment))


def _is_untyped(hint: Any) -> bool:
    hint = unwrap_optional(hint)
    return hint is Any or hint is object or hint is dict or hint is None


class PathTarget:
    """
    Resolves a dotted field path against a mapped class graph.

    Each segment may be a Python attribute name or a stored name; the rendered
    path always uses stored names. ``target`` is the field the last named
    segment resolved to, or ``None`` when the path leaves the mapped graph.
    A path ending on a map key has no target; its value is encoded by the rules
    of the map field, exposed as ``value_field``.
    """

    def __init__(self, mapper: "Mapper", root: Optional[type], path: str, validate: bool = True):
        self._mapper = mapper
        self.root = root
        self.path = path
        self.validate = validate
        self._translated: Optional[str] = None
        self._target: Optional[MappedField] = None
        self._value_field: Optional[MappedField] = None

    @property
    def translated_path(self) -> str:
        if self._translated is None:
            self._resolve()
        return self._translated

    @property
    def target(self) -> Optional[MappedField]:
        if self._translated is None:
            self._resolve()
        return self._target

    @property
    def value_field(self) -> Optional[MappedField]:
        if self._translated is None:
            self._resolve()
        return self._value_field

    def _resolve(self) -> None:
        segments = self.path.split(".")
        if self.root is None or self.path.startswith("$"):
            self._translated = self.path
            return

        translated: List[str] = []
        mc: Optional[MappedClass] = self._mapper.get_mapped_class(self.root)
        target: Optional[MappedField] = None
        map_entry: Optional[MappedField] = None
        i = 0
        while i < len(segments):
            segment = segments[i]
            if is_positional(segment):
                translated.append(segment)
                i += 1
                continue
            mf = mc.find_field(segment) if mc is not None else None
            if mf is None:
                if self.validate:
                    self._fail_unknown()
                log.debug(f"Path '{self.path}' leaves the mapped graph at '{segment}'")
                translated.extend(segments[i:])
                target = None
                map_entry = None
                break

            translated.append(mf.name_to_store)
            target = mf
            map_entry = None
            i += 1
            if i == len(segments):
                break

            if mf.is_map:
                # The next segment is a key of the map; its value has no field of its own.
                translated.append(segments[i])
                i += 1
                target = None
                map_entry = mf
                if i == len(segments):
                    break

            if mf.is_reference or mf.is_key:
                if self.validate:
                    raise InvalidPathError(
                        f"Cannot use dot-notation past '{mf.python_name}' in "
                        f"'{mc.clazz.__name__}'; found while validating - {self.path}"
                    )
                translated.extend(segments[i:])
                target = None
                map_entry = None
                break

            next_type = mf.normalized_type
            if _is_untyped(next_type):
                translated.extend(segments[i:])
                if i < len(segments):
                    target = None
                break
            mc = self._mapper.get_mapped_class(next_type) if is_struct_type(next_type) else None

        self._translated = ".".join(translated)
        self._target = target
        self._value_field = target if target is not None else map_entry
        log.debug(f"Resolved path '{self.path}' on {self.root.__name__} -> '{self._translated}'")

    def _fail_unknown(self) -> None:
        raise InvalidPathError(
            f"The path '{self.path}' is not a valid path for {self.root.__name__}; "
            "if you wish to continue please disable validation."
        )

    def __repr__(self) -> str:
        return f"PathTarget({self.path!r} -> {self.translated_path!r})"
