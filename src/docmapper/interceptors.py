# src/docmapper/interceptors.py

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .mapping.mapper import Mapper


class EntityInterceptor:
    """
    Receives lifecycle callbacks for every entity handled by the mapper it is
    registered with (``Mapper.add_interceptor``).

    Each method may return a replacement document; later hooks in the same
    phase then see the replacement. Returning ``None`` keeps the current one.
    Interceptors run after the entity's own lifecycle methods.
    """

    def pre_persist(self, entity: Any, document: Dict[str, Any], mapper: "Mapper") -> Optional[Dict[str, Any]]:
        """Called before the entity is encoded; ``document`` is still being built."""
        return None

    def pre_save(self, entity: Any, document: Dict[str, Any], mapper: "Mapper") -> Optional[Dict[str, Any]]:
        """Called once the document is encoded, before it is written."""
        return None

    def post_persist(self, entity: Any, document: Dict[str, Any], mapper: "Mapper") -> Optional[Dict[str, Any]]:
        return None

    def pre_load(self, entity: Any, document: Dict[str, Any], mapper: "Mapper") -> Optional[Dict[str, Any]]:
        """Called before the document is decoded into ``entity``."""
        return None

    def post_load(self, entity: Any, document: Dict[str, Any], mapper: "Mapper") -> Optional[Dict[str, Any]]:
        return None
