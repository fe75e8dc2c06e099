from __future__ import annotations

import logging
import time
import typing as t

from . import prompts
from .errors import NotFoundError, UpstreamMalformedError, ValidationError
from .models import SolutionDraft, SolutionStep, Visual
from .openai_client import RetryPolicy, call_with_retry, message_content

if t.TYPE_CHECKING:
    from backend.store import TutorStore

    from .background import BackgroundRunner
    from .images import ImageLoader
    from .openai_client import OpenAIClient

JsonDict = dict[str, t.Any]

logger = logging.getLogger(__name__)

MAX_SUGGESTED_VISUALS = 3


def _require_str(obj: JsonDict, key: str, where: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str):
        raise UpstreamMalformedError(f"{where}: '{key}' must be a string.", raw=repr(obj)[:1000])
    return value


def parse_solution(payload: JsonDict) -> SolutionDraft:
    """Shape-check a structured solution before anything is written."""
    steps = payload.get("steps")
    if not isinstance(steps, list):
        raise UpstreamMalformedError("Solution is missing its steps list.", raw=repr(payload)[:1000])
    final_answer = _require_str(payload, "final_answer", "Solution")

    parsed: list[SolutionStep] = []
    for i, step in enumerate(steps):
        if not isinstance(step, dict):
            raise UpstreamMalformedError(f"Step {i + 1} is not an object.", raw=repr(step)[:1000])
        formula = step.get("formula")
        if formula is not None and not isinstance(formula, str):
            raise UpstreamMalformedError(f"Step {i + 1}: 'formula' must be a string or null.")
        parsed.append(
            SolutionStep(
                step_number=i + 1,
                title=_require_str(step, "title", f"Step {i + 1}"),
                explanation=_require_str(step, "explanation", f"Step {i + 1}"),
                formula=formula or None,
            )
        )
    return SolutionDraft(steps=tuple(parsed), final_answer=final_answer)


def parse_visual_suggestions(payload: JsonDict) -> list[tuple[str, str]]:
    visuals = payload.get("visuals")
    if not isinstance(visuals, list):
        raise UpstreamMalformedError("Visual suggestions are missing the visuals list.", raw=repr(payload)[:1000])
    out: list[tuple[str, str]] = []
    for item in visuals:
        if not isinstance(item, dict):
            continue
        visual_type = item.get("type")
        description = item.get("description")
        if not isinstance(visual_type, str) or not visual_type.strip() or not isinstance(description, str):
            logger.warning("Skipping visual suggestion without type/description: %r", item)
            continue
        out.append((visual_type.strip(), description))
    return out[:MAX_SUGGESTED_VISUALS]


class ProblemSolver:
    """Turns a submission into a persisted problem with a step-by-step solution.

    received -> vision-extracted (only with an image) -> solved, then the
    visual suggestion pass runs detached on the background runner.
    """

    def __init__(
        self,
        store: "TutorStore",
        client: "OpenAIClient",
        images: "ImageLoader",
        background: "BackgroundRunner | None" = None,
        retry_policy: RetryPolicy | None = None,
        sleep: t.Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.client = client
        self.images = images
        self.background = background
        self.retry_policy = retry_policy or RetryPolicy.from_env()
        self.sleep = sleep

    def _retry(self, fn: t.Callable[[], t.Any], description: str) -> t.Any:
        return call_with_retry(fn, self.retry_policy, sleep=self.sleep, description=description)

    def extract_problem_text(self, image_url: str, problem_text: str | None = None) -> str:
        data_url = self.images.data_url(image_url)
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": problem_text or prompts.DEFAULT_EXTRACTION_PROMPT},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            }
        ]
        payload = self._retry(lambda: self.client.complete_vision(messages), "vision extraction")
        content = message_content(payload)
        if not isinstance(content, str) or not content.strip():
            raise UpstreamMalformedError("Vision extraction returned no text.")
        return content.strip()

    def generate_solution(self, problem_text: str) -> SolutionDraft:
        messages = [
            {"role": "system", "content": prompts.SOLUTION_SYSTEM_PROMPT},
            {"role": "user", "content": prompts.solution_user_prompt(problem_text)},
        ]
        payload = self._retry(
            lambda: self.client.complete_structured(messages, json_schema=prompts.SOLUTION_SCHEMA, temperature=0.3),
            "solution synthesis",
        )
        return parse_solution(payload)

    def analyze(self, problem_text: str | None, image_url: str | None) -> str:
        problem_text = (problem_text or "").strip()
        image_url = (image_url or "").strip() or None
        if not problem_text and not image_url:
            raise ValidationError("Problem text or image is required")
        if image_url and image_url.startswith("data:"):
            # inline images are decoded up front so a bad one never creates a problem
            self.images.load(image_url)

        problem = self.store.insert_problem(problem_text, image_url)
        logger.info("Problem %s received (image=%s)", problem.id, bool(image_url))

        working_text = problem_text
        if image_url:
            working_text = self.extract_problem_text(image_url, problem_text or None)
            if not problem_text:
                self.store.set_problem_text_if_empty(problem.id, working_text)

        draft = self.generate_solution(working_text)
        solution = self.store.save_solution(problem.id, draft)
        logger.info("Problem %s solved in %d steps", problem.id, len(solution.steps))

        if self.background is not None:
            self.background.submit(self.suggest_visuals, problem.id, job_name=f"suggest-visuals:{problem.id}")
        return problem.id

    def suggest_visuals(self, problem_id: str) -> list[Visual]:
        problem = self.store.get_problem(problem_id)
        if problem is None:
            raise NotFoundError("Problem not found")

        messages = [
            {"role": "system", "content": prompts.VISUALS_SYSTEM_PROMPT},
            {"role": "user", "content": prompts.visuals_user_prompt(problem.problem_text)},
        ]
        payload = self._retry(
            lambda: self.client.complete_structured(messages, json_schema=prompts.VISUALS_SCHEMA, temperature=0.4),
            "visual suggestions",
        )
        visuals = [
            self.store.insert_visual(problem.id, visual_type, description)
            for visual_type, description in parse_visual_suggestions(payload)
        ]
        logger.info("Suggested %d visuals for problem %s", len(visuals), problem.id)
        return visuals
