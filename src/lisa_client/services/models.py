from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

ScanMetadata = Dict[str, Any]


class Severity(str, Enum):
    """Issue severities, declared from most to least severe."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    WARN = "WARN"
    INFORMATIONAL = "INFORMATIONAL"

    @classmethod
    def ordered(cls) -> List["Severity"]:
        return list(cls)

    @property
    def rank(self) -> int:
        return self.ordered().index(self)


class ScanStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.completed, ScanStatus.failed, ScanStatus.cancelled)


@dataclass(slots=True)
class Position:
    line: int
    column: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Position":
        return cls(line=int(data.get("line", 0)), column=int(data.get("column", 0)))

    def to_dict(self) -> Dict[str, int]:
        return {"line": self.line, "column": self.column}


@dataclass(slots=True)
class Range:
    start: Optional[Position] = None
    end: Optional[Position] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Range":
        start = data.get("start")
        end = data.get("end")
        return cls(
            start=Position.from_dict(start) if start else None,
            end=Position.from_dict(end) if end else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.start is not None:
            payload["start"] = self.start.to_dict()
        if self.end is not None:
            payload["end"] = self.end.to_dict()
        return payload


@dataclass(slots=True)
class AffectedFile:
    file_path: str
    range: Optional[Range] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AffectedFile":
        rng = data.get("range")
        return cls(file_path=str(data["filePath"]), range=Range.from_dict(rng) if rng else None)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"filePath": self.file_path}
        if self.range is not None:
            payload["range"] = self.range.to_dict()
        return payload


@dataclass(frozen=True)
class Issue:
    """A finding attached to a completed scan.

    ``severity`` keeps the server's string verbatim so that an unknown value
    never makes a whole scan record unreadable.
    """

    id: str
    severity: str
    title: str
    description: Optional[str] = None
    recommendation: Optional[str] = None
    affected_files: tuple[AffectedFile, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Issue":
        return cls(
            id=str(data.get("id", "")),
            severity=str(data.get("severity", "")).upper(),
            title=str(data.get("title", "")),
            description=data.get("description"),
            recommendation=data.get("recommendation"),
            affected_files=tuple(AffectedFile.from_dict(item) for item in data.get("affectedFiles") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "severity": self.severity,
            "title": self.title,
            "affectedFiles": [item.to_dict() for item in self.affected_files],
        }
        if self.description is not None:
            payload["description"] = self.description
        if self.recommendation is not None:
            payload["recommendation"] = self.recommendation
        return payload


@dataclass
class ScanRecord:
    id: str
    created_at: str
    updated_at: str
    title: str
    status: ScanStatus
    completed_at: Optional[str] = None
    disclosure: str = "NONE"
    metadata: Optional[ScanMetadata] = None
    result: List[Issue] = field(default_factory=list)
    code_summary: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScanRecord":
        """Create from an API response (or persisted) dictionary.

        Raises:
            KeyError: ``id`` or ``status`` is missing.
            ValueError: ``status`` is not a known scan status.
        """
        return cls(
            id=str(data["id"]),
            created_at=str(data.get("createdAt") or ""),
            updated_at=str(data.get("updatedAt") or ""),
            title=str(data.get("title") or ""),
            status=ScanStatus(data["status"]),
            completed_at=data.get("completedAt"),
            disclosure=str(data.get("disclosure") or "NONE"),
            metadata=data.get("metadata"),
            result=[Issue.from_dict(item) for item in data.get("result") or []],
            code_summary=data.get("codeSummary"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "title": self.title,
            "completedAt": self.completed_at,
            "disclosure": self.disclosure,
            "status": self.status.value,
            "metadata": self.metadata,
            "result": [issue.to_dict() for issue in self.result],
            "codeSummary": self.code_summary,
        }

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def created_at_datetime(self) -> datetime:
        return parse_timestamp(self.created_at)


@dataclass(slots=True)
class ScanFile:
    path: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "content": self.content}


@dataclass
class ScanRequest:
    title: str
    files: List[ScanFile]
    metadata: Optional[ScanMetadata] = None
    type: str = "VSCode"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "title": self.title,
            "type": self.type,
            "files": [item.to_dict() for item in self.files],
        }
        if self.metadata is not None:
            payload["metadata"] = self.metadata
        return payload


@dataclass
class ScanStartResponse:
    """Successful response from ``POST /api/v1/scan``."""

    scan_id: str
    status: ScanStatus
    chat_id: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScanStartResponse":
        return cls(
            scan_id=str(data["scanId"]),
            status=ScanStatus(data.get("status") or ScanStatus.processing.value),
            chat_id=data.get("chatId"),
            message=data.get("message"),
        )


def parse_timestamp(value: Optional[str]) -> datetime:
    """Parse an ISO-8601 timestamp; unparseable values sort as the oldest."""
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def count_by_severity(issues: Iterable[Issue]) -> List[tuple[Severity, int]]:
    """Return ``(severity, count)`` pairs in display order, skipping zero counts."""
    counts = Counter(issue.severity for issue in issues)
    return [(severity, counts[severity.value]) for severity in Severity.ordered() if counts[severity.value]]


def summarize_issues(issues: List[Issue]) -> str:
    issue_count = len(issues)
    if issue_count == 0:
        return "Scan completed: No issues found"
    parts = [f"{count} {severity.value.lower()}" for severity, count in count_by_severity(issues)]
    noun = "issue" if issue_count == 1 else "issues"
    summary = f"Scan completed: {issue_count} {noun} found"
    if parts:
        summary += f" ({', '.join(parts)})"
    return summary
