from enum import Enum


class RankedEnum(str, Enum):
    """String enum with an explicit total order given by declaration order."""

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return self.value

    @property
    def rank(self) -> int:
        return list(type(self)).index(self)

    def __lt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.rank >= other.rank

    def __hash__(self) -> int:
        return hash(self.value)


class Severity(RankedEnum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'

    @classmethod
    def parse(cls, value: str | None) -> 'Severity':
        """Parse advisory database severity labels; unknown labels rank as medium."""
        if not value:
            return cls.MEDIUM
        label = value.strip().lower()
        if label == 'moderate':
            return cls.MEDIUM
        try:
            return cls(label)
        except ValueError:
            return cls.MEDIUM


class Status(RankedEnum):
    PASS = 'PASS'
    ACTION_REQUIRED = 'ACTION_REQUIRED'
    FAIL = 'FAIL'


class Action(RankedEnum):
    """Policy rule outcome; 'block' is accepted as an alias for fail."""
    WARN = 'warn'
    FAIL = 'fail'

    @classmethod
    def parse(cls, value: str) -> 'Action':
        label = str(value).strip().lower()
        if label == 'block':
            return cls.FAIL
        return cls(label)
