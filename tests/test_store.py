import datetime as dt
import os
import sys
import unittest
from unittest.mock import MagicMock

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.errors import BulkWriteError

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from backend.store import TutorStore, to_object_id
from phystutor.errors import ValidationError
from phystutor.models import SolutionDraft, SolutionStep


class TestTutorStore(unittest.TestCase):
    def setUp(self):
        self.db = MagicMock()
        self.store = TutorStore(self.db)

    def test_to_object_id(self):
        oid = ObjectId()
        self.assertEqual(to_object_id(str(oid)), oid)
        self.assertIs(to_object_id(oid), oid)
        with self.assertRaises(ValidationError):
            to_object_id("not-an-id", "problemId")
        with self.assertRaises(ValidationError):
            to_object_id(None)

    def test_list_problems_flags_and_order(self):
        newer, older = ObjectId(), ObjectId()
        now = dt.datetime(2026, 1, 2, tzinfo=dt.timezone.utc)
        docs = [
            {"_id": newer, "problem_text": "newer", "created_at": now},
            {"_id": older, "problem_text": "older", "created_at": now - dt.timedelta(days=1)},
        ]
        self.db.problems.find.return_value.sort.return_value.skip.return_value.limit.return_value = docs
        self.db.problems.count_documents.return_value = 7
        self.db.solutions.count_documents.side_effect = lambda f, **kw: 1 if f["problem_id"] == older else 0
        self.db.visuals.count_documents.side_effect = lambda f, **kw: 3 if f["problem_id"] == newer else 0

        summaries, total = self.store.list_problems(limit=2, offset=4)

        self.db.problems.find.return_value.sort.assert_called_once_with("created_at", DESCENDING)
        self.db.problems.find.return_value.sort.return_value.skip.assert_called_once_with(4)
        self.db.problems.find.return_value.sort.return_value.skip.return_value.limit.assert_called_once_with(2)
        self.assertEqual(total, 7)
        self.assertEqual([s.problem.problem_text for s in summaries], ["newer", "older"])
        self.assertEqual([(s.has_solution, s.visual_count) for s in summaries], [(False, 3), (True, 0)])
        self.assertEqual(summaries[0].to_dict()["created_at"], now.isoformat())

    def test_save_solution_numbers_steps(self):
        solution_id = ObjectId()
        self.db.solutions.insert_one.return_value.inserted_id = solution_id
        draft = SolutionDraft(
            steps=(SolutionStep(1, "a", "first"), SolutionStep(2, "b", "second", "x = 1")),
            final_answer="1",
        )

        solution = self.store.save_solution(str(ObjectId()), draft)

        steps = self.db.solution_steps.insert_many.call_args[0][0]
        self.assertEqual([s["step_number"] for s in steps], [1, 2])
        self.assertTrue(all(s["solution_id"] == solution_id for s in steps))
        self.assertEqual(solution.id, str(solution_id))
        self.assertEqual(solution.steps[1].formula, "x = 1")

    def test_save_solution_removed_when_steps_fail(self):
        solution_id = ObjectId()
        self.db.solutions.insert_one.return_value.inserted_id = solution_id
        self.db.solution_steps.insert_many.side_effect = BulkWriteError({"writeErrors": []})
        draft = SolutionDraft(steps=(SolutionStep(1, "a", "b"),), final_answer="1")

        with self.assertRaises(BulkWriteError):
            self.store.save_solution(str(ObjectId()), draft)

        self.db.solutions.delete_one.assert_called_once_with({"_id": solution_id})
        self.db.solution_steps.delete_many.assert_called_once_with({"solution_id": solution_id})

    def test_get_solution_orders_steps(self):
        solution_id = ObjectId()
        self.db.solutions.find_one.return_value = {"_id": solution_id, "final_answer": "9.8 N"}
        self.db.solution_steps.find.return_value.sort.return_value = [
            {"step_number": 2, "title": "b", "explanation": "y"},
            {"step_number": 1, "title": "a", "explanation": "x"},
        ]

        solution = self.store.get_solution(str(ObjectId()))

        self.assertEqual([s.title for s in solution.steps], ["a", "b"])
        self.assertEqual(solution.to_dict()["final_answer"], "9.8 N")

    def test_get_solution_missing(self):
        self.db.solutions.find_one.return_value = None
        self.assertIsNone(self.store.get_solution(str(ObjectId())))

    def test_problem_text_only_set_when_empty(self):
        pid = ObjectId()
        self.db.problems.update_one.return_value.modified_count = 0

        self.assertFalse(self.store.set_problem_text_if_empty(str(pid), "extracted"))
        self.db.problems.update_one.assert_called_once_with(
            {"_id": pid, "problem_text": ""},
            {"$set": {"problem_text": "extracted"}},
        )

    def test_find_visual_takes_oldest(self):
        pid = ObjectId()
        first = {"_id": ObjectId(), "problem_id": pid, "visual_type": "energy_diagram", "visual_description": "d"}
        self.db.visuals.find.return_value.sort.return_value.limit.return_value = [first]

        visual = self.store.find_visual(str(pid), "energy_diagram")

        self.db.visuals.find.assert_called_once_with({"problem_id": pid, "visual_type": "energy_diagram"})
        self.assertEqual(visual.id, str(first["_id"]))
        self.assertFalse(visual.rendered)

    def test_add_message_keeps_image(self):
        cid = ObjectId()
        message = self.store.add_message(str(cid), "user", "see photo", "https://cdn.test/a.png")
        doc = self.db.messages.insert_one.call_args[0][0]
        self.assertEqual(doc["conversation_id"], cid)
        self.assertEqual(message.to_dict(), {"role": "user", "content": "see photo", "imageUrl": "https://cdn.test/a.png"})


if __name__ == "__main__":
    unittest.main()
