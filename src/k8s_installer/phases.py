"""
단계 실행 결과 모델
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class PhaseStatus(str, Enum):
    SKIPPED = "skipped-already-satisfied"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class PhaseResult:
    """단계 결과 (상태, 메시지, 생성된 파일 경로)"""
    name: str
    status: PhaseStatus
    message: str = ""
    artifacts: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is not PhaseStatus.FAILED

    @classmethod
    def skipped(cls, name: str, message: str) -> "PhaseResult":
        return cls(name, PhaseStatus.SKIPPED, message)

    @classmethod
    def succeeded(cls, name: str, message: str = "", artifacts=()) -> "PhaseResult":
        return cls(name, PhaseStatus.SUCCEEDED, message, tuple(artifacts))

    @classmethod
    def failed(cls, name: str, message: str) -> "PhaseResult":
        return cls(name, PhaseStatus.FAILED, message)
