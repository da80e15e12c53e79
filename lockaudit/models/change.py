from datetime import datetime
from enum import Enum

from pydantic import BaseModel
from pydantic import ConfigDict


class ChangeKind(str, Enum):
    ADDED = 'added'
    REMOVED = 'removed'
    UPGRADED = 'upgraded'
    DOWNGRADED = 'downgraded'

    def __str__(self) -> str:
        return self.value


class ChangeEntry(BaseModel):
    kind: ChangeKind
    name: str
    old_version: str | None = None
    new_version: str | None = None
    timestamp: datetime | None = None

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        if self.kind == ChangeKind.ADDED:
            return f'added {self.name} {self.new_version}'
        if self.kind == ChangeKind.REMOVED:
            return f'removed {self.name} {self.old_version}'
        return f'{self.kind} {self.name} {self.old_version}->{self.new_version}'
