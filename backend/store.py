from __future__ import annotations

import logging
import typing as t

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from phystutor.errors import ValidationError
from phystutor.models import (
    Conversation,
    Message,
    Problem,
    ProblemSummary,
    Role,
    Solution,
    SolutionDraft,
    Visual,
    utcnow,
)

JsonDict = dict[str, t.Any]

logger = logging.getLogger(__name__)


def to_object_id(value: t.Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value:
        raise ValidationError(f"{label} is required")
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError) as exc:
        raise ValidationError(f"Invalid {label}") from exc


class TutorStore:
    """Keyed document store for problems and everything that hangs off them.

    Each method is one or two single-document statements; there are no
    cross-statement transactions. Dependent records point at their problem via
    `problem_id`.
    """

    def __init__(self, db: t.Any) -> None:
        self.db = db

    # Problems

    def insert_problem(self, problem_text: str, image_url: str | None) -> Problem:
        doc: JsonDict = {
            "problem_text": problem_text or "",
            "problem_image_url": image_url or None,
            "created_at": utcnow(),
        }
        result = self.db.problems.insert_one(doc)
        doc["_id"] = result.inserted_id
        return Problem.from_doc(doc)

    def get_problem(self, problem_id: t.Any) -> Problem | None:
        doc = self.db.problems.find_one({"_id": to_object_id(problem_id, "problemId")})
        return Problem.from_doc(doc) if doc else None

    def set_problem_text_if_empty(self, problem_id: t.Any, problem_text: str) -> bool:
        # Only an empty text is replaced, so the first extraction wins.
        result = self.db.problems.update_one(
            {"_id": to_object_id(problem_id, "problemId"), "problem_text": ""},
            {"$set": {"problem_text": problem_text}},
        )
        return bool(result.modified_count)

    def list_problems(self, *, limit: int = 20, offset: int = 0) -> tuple[list[ProblemSummary], int]:
        cursor = self.db.problems.find({}).sort("created_at", DESCENDING).skip(offset).limit(limit)
        summaries: list[ProblemSummary] = []
        for doc in cursor:
            pid = doc["_id"]
            summaries.append(
                ProblemSummary(
                    problem=Problem.from_doc(doc),
                    has_solution=self.db.solutions.count_documents({"problem_id": pid}, limit=1) > 0,
                    visual_count=int(self.db.visuals.count_documents({"problem_id": pid})),
                )
            )
        total = int(self.db.problems.count_documents({}))
        return summaries, total

    # Solutions

    def save_solution(self, problem_id: t.Any, draft: SolutionDraft) -> Solution:
        """Insert the solution and its steps; the solution is removed again if the steps fail."""
        pid = to_object_id(problem_id, "problemId")
        solution_doc: JsonDict = {
            "problem_id": pid,
            "final_answer": draft.final_answer,
            "created_at": utcnow(),
        }
        result = self.db.solutions.insert_one(solution_doc)
        solution_doc["_id"] = result.inserted_id

        step_docs = [
            {
                "solution_id": result.inserted_id,
                "problem_id": pid,
                "step_number": i + 1,
                "title": step.title,
                "explanation": step.explanation,
                "formula": step.formula,
            }
            for i, step in enumerate(draft.steps)
        ]
        if step_docs:
            try:
                self.db.solution_steps.insert_many(step_docs, ordered=True)
            except PyMongoError:
                logger.error("Step insert failed for solution %s; rolling back", result.inserted_id)
                self.db.solution_steps.delete_many({"solution_id": result.inserted_id})
                self.db.solutions.delete_one({"_id": result.inserted_id})
                raise
        return Solution.from_doc(solution_doc, step_docs)

    def get_solution(self, problem_id: t.Any) -> Solution | None:
        pid = to_object_id(problem_id, "problemId")
        doc = self.db.solutions.find_one({"problem_id": pid})
        if not doc:
            return None
        steps = self.db.solution_steps.find({"solution_id": doc["_id"]}).sort("step_number", ASCENDING)
        return Solution.from_doc(doc, steps)

    # Visuals

    def insert_visual(
        self,
        problem_id: t.Any,
        visual_type: str,
        description: str,
        svg_data: str | None = None,
    ) -> Visual:
        doc: JsonDict = {
            "problem_id": to_object_id(problem_id, "problemId"),
            "visual_type": visual_type,
            "visual_description": description,
            "svg_data": svg_data,
            "created_at": utcnow(),
        }
        result = self.db.visuals.insert_one(doc)
        doc["_id"] = result.inserted_id
        return Visual.from_doc(doc)

    def list_visuals(self, problem_id: t.Any) -> list[Visual]:
        pid = to_object_id(problem_id, "problemId")
        return [Visual.from_doc(d) for d in self.db.visuals.find({"problem_id": pid}).sort("_id", ASCENDING)]

    def find_visual(self, problem_id: t.Any, visual_type: str) -> Visual | None:
        pid = to_object_id(problem_id, "problemId")
        # Several rows may share a type; the oldest one is authoritative.
        docs = list(self.db.visuals.find({"problem_id": pid, "visual_type": visual_type}).sort("_id", ASCENDING).limit(1))
        return Visual.from_doc(docs[0]) if docs else None

    def update_visual(self, visual_id: t.Any, *, svg_data: str, description: str) -> Visual | None:
        vid = to_object_id(visual_id, "visualId")
        self.db.visuals.update_one(
            {"_id": vid},
            {"$set": {"svg_data": svg_data, "visual_description": description}},
        )
        doc = self.db.visuals.find_one({"_id": vid})
        return Visual.from_doc(doc) if doc else None

    # Conversations

    def create_conversation(self, problem_id: t.Any) -> str:
        result = self.db.conversations.insert_one(
            {"problem_id": to_object_id(problem_id, "problemId"), "created_at": utcnow()}
        )
        return str(result.inserted_id)

    def conversation_exists(self, conversation_id: t.Any) -> bool:
        return self.db.conversations.find_one({"_id": to_object_id(conversation_id, "conversationId")}) is not None

    def latest_conversation_id(self, problem_id: t.Any) -> str | None:
        pid = to_object_id(problem_id, "problemId")
        docs = list(
            self.db.conversations.find({"problem_id": pid}).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(1)
        )
        return str(docs[0]["_id"]) if docs else None

    def add_message(self, conversation_id: t.Any, role: Role, content: str, image_url: str | None = None) -> Message:
        doc: JsonDict = {
            "conversation_id": to_object_id(conversation_id, "conversationId"),
            "role": role,
            "content": content,
            "image_url": image_url,
            "created_at": utcnow(),
        }
        self.db.messages.insert_one(doc)
        return Message.from_doc(doc)

    def list_messages(self, conversation_id: t.Any) -> list[Message]:
        cid = to_object_id(conversation_id, "conversationId")
        cursor = self.db.messages.find({"conversation_id": cid}).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
        return [Message.from_doc(d) for d in cursor]

    def get_conversation(self, conversation_id: t.Any) -> Conversation | None:
        doc = self.db.conversations.find_one({"_id": to_object_id(conversation_id, "conversationId")})
        if not doc:
            return None
        return Conversation(
            id=str(doc["_id"]),
            problem_id=str(doc.get("problem_id") or ""),
            messages=tuple(self.list_messages(doc["_id"])),
            created_at=doc.get("created_at"),
        )
