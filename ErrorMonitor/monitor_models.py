"""
Shared records passed between the parsers, the clients and the analyzer
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

SOURCE_SLACK = 'slack'
SOURCE_SENTRY = 'sentry'
SOURCE_CLOUDWATCH = 'cloudwatch'
SOURCES = (SOURCE_SLACK, SOURCE_SENTRY, SOURCE_CLOUDWATCH)

SEVERITIES = ('error', 'warning', 'critical')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ErrorEvent:
    """One detected error, whatever system reported it"""
    source: str
    message: str
    timestamp: datetime = field(default_factory=utcnow)
    stack_trace: Optional[str] = None
    environment: Optional[str] = None
    severity: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.source not in SOURCES:
            raise ValueError(f'Unknown error source: {self.source!r}')
        if self.severity is not None and self.severity not in SEVERITIES:
            raise ValueError(f'Unknown severity: {self.severity!r}')

    @property
    def summary(self) -> str:
        """First line of the message"""
        return self.message.split('\n')[0]


def _clamp(value: float) -> float:
    return max(0.0, min(float(value), 1.0))


@dataclass
class ErrorAnalysis:
    """Where an error probably lives in the repository and what to do about it"""
    error_type: str
    confidence: float
    affected_file: Optional[str] = None
    affected_line: Optional[int] = None
    suggested_fix: Optional[str] = None

    def __post_init__(self):
        self.confidence = _clamp(self.confidence)

    def boost_confidence(self, amount: float = 0.1) -> float:
        # never lowers confidence, never exceeds 1.0
        self.confidence = max(self.confidence, _clamp(self.confidence + max(amount, 0.0)))
        return self.confidence
