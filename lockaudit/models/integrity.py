from enum import Enum

from pydantic import BaseModel
from pydantic import ConfigDict


class IntegrityStatus(str, Enum):
    VERIFIED = 'verified'
    MISMATCH = 'mismatch'
    UNVERIFIED = 'unverified'

    def __str__(self) -> str:
        return self.value


class IntegrityEntry(BaseModel):
    name: str
    version: str
    status: IntegrityStatus
    recorded: str | None = None
    computed: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def reason(self) -> str:
        return {
            IntegrityStatus.VERIFIED: 'checksum match',
            IntegrityStatus.MISMATCH: 'checksum mismatch',
            IntegrityStatus.UNVERIFIED: 'no checksum in lock',
        }[self.status]


class IntegrityViolation(BaseModel):
    name: str
    recorded: str
    computed: str

    model_config = ConfigDict(frozen=True)


class IntegrityResult(BaseModel):
    entries: tuple[IntegrityEntry, ...] = ()

    model_config = ConfigDict(frozen=True)

    @property
    def violations(self) -> list[IntegrityViolation]:
        return [
            IntegrityViolation(name=e.name, recorded=e.recorded or '', computed=e.computed or '')
            for e in self.entries if e.status == IntegrityStatus.MISMATCH
        ]

    @property
    def unverified(self) -> list[str]:
        return [e.name for e in self.entries if e.status == IntegrityStatus.UNVERIFIED]

    @property
    def all_verified(self) -> bool:
        return all(e.status == IntegrityStatus.VERIFIED for e in self.entries)
