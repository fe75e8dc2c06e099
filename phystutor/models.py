from __future__ import annotations

import dataclasses
import datetime as dt
import typing as t

JsonDict = dict[str, t.Any]

Role = t.Literal["user", "assistant"]


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _iso(value: t.Any) -> str | None:
    if isinstance(value, dt.datetime):
        return value.isoformat()
    return str(value) if value is not None else None


def _id(doc: JsonDict, key: str = "_id") -> str:
    return str(doc.get(key) or "")


@dataclasses.dataclass(frozen=True)
class Problem:
    id: str
    problem_text: str
    problem_image_url: str | None
    created_at: dt.datetime | None = None

    def to_dict(self) -> JsonDict:
        return {
            "id": self.id,
            "problem_text": self.problem_text,
            "problem_image_url": self.problem_image_url,
            "created_at": _iso(self.created_at),
        }

    @staticmethod
    def from_doc(doc: JsonDict) -> "Problem":
        return Problem(
            id=_id(doc),
            problem_text=str(doc.get("problem_text") or ""),
            problem_image_url=doc.get("problem_image_url"),
            created_at=doc.get("created_at"),
        )


@dataclasses.dataclass(frozen=True)
class SolutionStep:
    step_number: int
    title: str
    explanation: str
    formula: str | None = None

    def to_dict(self) -> JsonDict:
        return dataclasses.asdict(self)

    @staticmethod
    def from_doc(doc: JsonDict) -> "SolutionStep":
        return SolutionStep(
            step_number=int(doc.get("step_number") or 0),
            title=str(doc.get("title") or ""),
            explanation=str(doc.get("explanation") or ""),
            formula=doc.get("formula"),
        )


@dataclasses.dataclass(frozen=True)
class Solution:
    id: str
    problem_id: str
    final_answer: str
    steps: tuple[SolutionStep, ...] = ()
    created_at: dt.datetime | None = None

    def to_dict(self) -> JsonDict:
        return {
            "id": self.id,
            "problem_id": self.problem_id,
            "final_answer": self.final_answer,
            "steps": [s.to_dict() for s in self.steps],
            "created_at": _iso(self.created_at),
        }

    @staticmethod
    def from_doc(doc: JsonDict, steps: t.Iterable[JsonDict] = ()) -> "Solution":
        ordered = sorted((SolutionStep.from_doc(s) for s in steps), key=lambda s: s.step_number)
        return Solution(
            id=_id(doc),
            problem_id=_id(doc, "problem_id"),
            final_answer=str(doc.get("final_answer") or ""),
            steps=tuple(ordered),
            created_at=doc.get("created_at"),
        )


@dataclasses.dataclass(frozen=True)
class SolutionDraft:
    """A parsed structured completion, not yet persisted."""

    steps: tuple[SolutionStep, ...]
    final_answer: str


@dataclasses.dataclass(frozen=True)
class Visual:
    id: str
    problem_id: str
    visual_type: str
    visual_description: str
    svg_data: str | None = None
    created_at: dt.datetime | None = None

    @property
    def rendered(self) -> bool:
        return bool(self.svg_data)

    def to_dict(self) -> JsonDict:
        return {
            "id": self.id,
            "problem_id": self.problem_id,
            "visual_type": self.visual_type,
            "visual_description": self.visual_description,
            "svg_data": self.svg_data,
            "created_at": _iso(self.created_at),
        }

    @staticmethod
    def from_doc(doc: JsonDict) -> "Visual":
        return Visual(
            id=_id(doc),
            problem_id=_id(doc, "problem_id"),
            visual_type=str(doc.get("visual_type") or ""),
            visual_description=str(doc.get("visual_description") or ""),
            svg_data=doc.get("svg_data"),
            created_at=doc.get("created_at"),
        )


@dataclasses.dataclass(frozen=True)
class Message:
    role: Role
    content: str
    image_url: str | None = None
    created_at: dt.datetime | None = None

    def to_dict(self) -> JsonDict:
        return {"role": self.role, "content": self.content, "imageUrl": self.image_url}

    @staticmethod
    def from_doc(doc: JsonDict) -> "Message":
        role = "assistant" if doc.get("role") == "assistant" else "user"
        return Message(
            role=t.cast(Role, role),
            content=str(doc.get("content") or ""),
            image_url=doc.get("image_url"),
            created_at=doc.get("created_at"),
        )


@dataclasses.dataclass(frozen=True)
class Conversation:
    id: str
    problem_id: str
    messages: tuple[Message, ...] = ()
    created_at: dt.datetime | None = None

    def to_dict(self) -> JsonDict:
        return {
            "conversationId": self.id,
            "problemId": self.problem_id,
            "messages": [m.to_dict() for m in self.messages],
        }


@dataclasses.dataclass(frozen=True)
class ProblemSummary:
    problem: Problem
    has_solution: bool
    visual_count: int

    def to_dict(self) -> JsonDict:
        out = self.problem.to_dict()
        out["has_solution"] = self.has_solution
        out["visual_count"] = self.visual_count
        return out
