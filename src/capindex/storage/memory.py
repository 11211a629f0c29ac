"""Dict-backed element store, for embedding and tests."""

import time

from ..errors import ElementReadError
from ..models import ElementRef, format_element_id
from .base import ElementStoreBase


class MemoryElementStore(ElementStoreBase):
    """Holds element content in memory; every put/remove notifies subscribers."""

    def __init__(self, elements: dict[str, str] | None = None):
        super().__init__()
        self._refs: dict[str, ElementRef] = {}
        self._content: dict[str, str] = {}
        for element_id, text in (elements or {}).items():
            self._set(element_id, text)

    def _set(self, element_id: str, text: str) -> ElementRef:
        element_type, _, name = element_id.partition(":")
        ref = ElementRef(type=element_type, name=name, modified=time.time())
        if ref.id != element_id or not name:
            raise ValueError(f"Invalid element id {element_id!r}, expected 'type:name'")
        self._refs[ref.id] = ref
        self._content[ref.id] = text
        return ref

    def put(self, element_type: str, name: str, text: str) -> ElementRef:
        ref = self._set(format_element_id(element_type, name), text)
        self.notify_changed()
        return ref

    def remove(self, element_id: str) -> None:
        self._refs.pop(element_id, None)
        self._content.pop(element_id, None)
        self.notify_changed()

    def list_elements(self) -> list[ElementRef]:
        return sorted(self._refs.values(), key=lambda r: r.id)

    def read_content(self, element_id: str) -> str:
        try:
            return self._content[element_id]
        except KeyError:
            raise ElementReadError(element_id, "no such element") from None
