"""
Entity builder.
Accumulates fields of one entity while its element is open and checks
required fields when the element closes.
"""

import logging
from enum import Enum
from typing import Any, Generic, List, Optional, Set, Type, TypeVar

from .cursor import Position
from .errors import ErrorCollector
from .mapper import ExtensionValue, MappedValue
from .models import ErrorKind

logger = logging.getLogger(__name__)

E = TypeVar('E')


class BuilderState(str, Enum):
    """Lifecycle of an entity under construction."""
    EMPTY = "empty"
    ACCUMULATING = "accumulating"
    FINALIZED = "finalized"


class EntityBuilder(Generic[E]):
    """
    Builds one entity of type ``entity_cls``.

    Scalars are assigned, repeated fields are appended in document order.
    ``finalize()`` records one MissingRequiredField error per absent or
    empty field listed in ``entity_cls.REQUIRED`` and always returns the
    entity, so incomplete records are never dropped.
    """

    def __init__(self, entity_cls: Type[E], tag: str, position: Position, errors: ErrorCollector):
        """
        Initialize builder.

        Args:
            entity_cls: Dataclass to build
            tag: Element name, used in messages
            position: Start of the entity's element
            errors: Collector for required-field errors
        """
        self.entity = entity_cls()
        self.tag = tag
        self.position = position
        self.errors = errors
        self.state = BuilderState.EMPTY
        self.assigned: Set[str] = set()
        self.missing: List[str] = []

    def _touch(self, name: str) -> None:
        if self.state == BuilderState.FINALIZED:
            raise RuntimeError(f"<{self.tag}> builder is already finalized")
        self.state = BuilderState.ACCUMULATING
        self.assigned.add(name)

    def set(self, name: str, value: Any) -> None:
        self._touch(name)
        setattr(self.entity, name, value)

    def append(self, name: str, value: Any) -> None:
        self._touch(name)
        getattr(self.entity, name).append(value)

    def apply(self, assignment: Optional[MappedValue]) -> None:
        """Apply a mapper result; None (rejected value) leaves the field unset."""
        if assignment is None:
            return
        if isinstance(assignment, ExtensionValue):
            self.add_extra(assignment.tag, assignment.value)
            return
        if assignment.spec.repeated:
            self.append(assignment.spec.name, assignment.value)
        else:
            self.set(assignment.spec.name, assignment.value)

    def add_extra(self, tag: str, value: str) -> None:
        """Append a raw value to the entity's extension map."""
        self._touch('extra_fields')
        self.entity.extra_fields.setdefault(tag, []).append(value)

    def is_present(self, name: str) -> bool:
        if name not in self.assigned:
            return False
        value = getattr(self.entity, name)
        return value is not None and value != ''

    def finalize(self) -> E:
        """
        Close the entity and check required fields.

        Returns:
            The built entity (possibly with empty required fields)
        """
        if self.state == BuilderState.FINALIZED:
            raise RuntimeError(f"<{self.tag}> builder is already finalized")

        for name in getattr(self.entity, 'REQUIRED', ()):
            if not self.is_present(name):
                self.missing.append(name)
                self.errors.add(
                    ErrorKind.MISSING_REQUIRED_FIELD,
                    self.position,
                    f"<{self.tag}> is missing required field '{name}'",
                )

        if self.missing:
            logger.debug(f"<{self.tag}> at {self.position} finalized without {self.missing}")
        self.state = BuilderState.FINALIZED
        return self.entity
