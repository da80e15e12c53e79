from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict

from lockaudit.models.severity import Action


class SubjectKind(str, Enum):
    DEPENDENCY = 'dependency'
    FINDING = 'finding'
    LICENSE = 'license'

    def __str__(self) -> str:
        return self.value


class Operator(str, Enum):
    EQ = 'eq'
    NE = 'ne'
    IN = 'in'
    NOT_IN = 'not_in'
    CONTAINS = 'contains'
    MATCHES = 'matches'
    LT = 'lt'
    LE = 'le'
    GT = 'gt'
    GE = 'ge'

    def __str__(self) -> str:
        return self.value


SUBJECT_ATTRIBUTES: dict[SubjectKind, frozenset[str]] = {
    SubjectKind.DEPENDENCY: frozenset({
        'name', 'version', 'source', 'host', 'owner', 'license',
        'dev', 'has_checksum', 'is_path',
    }),
    SubjectKind.FINDING: frozenset({
        'severity', 'advisory_id', 'package', 'ignored',
    }),
    SubjectKind.LICENSE: frozenset({
        'validity', 'expression', 'identifiers', 'category', 'copyleft', 'source',
    }),
}


class Condition(BaseModel):
    attribute: str
    operator: Operator
    value: Any = None

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f'{self.attribute} {self.operator} {self.value!r}'


class PolicyRule(BaseModel):
    """One stateless constraint; a violation is emitted when every condition holds."""
    name: str
    subject: SubjectKind
    conditions: tuple[Condition, ...]
    action: Action = Action.WARN
    message: str | None = None

    model_config = ConfigDict(frozen=True)


class PolicyViolation(BaseModel):
    rule: str
    subject_kind: SubjectKind
    subject: str
    action: Action
    message: str

    model_config = ConfigDict(frozen=True)

    @property
    def sort_key(self) -> tuple:
        # fail before warn, then subject name
        return (-self.action.rank, self.subject, self.rule)


class PolicyResult(BaseModel):
    """Evaluation outcome. ``defined`` is False when no policy file was supplied."""
    defined: bool
    source: str | None = None
    rules: int = 0
    violations: tuple[PolicyViolation, ...] = ()

    model_config = ConfigDict(frozen=True)

    def count(self, action: Action) -> int:
        return sum(1 for v in self.violations if v.action == action)

    def exit_code(self, strict: bool = False) -> int:
        if self.count(Action.FAIL) > 0:
            return 1
        if strict and self.count(Action.WARN) > 0:
            return 1
        return 0
