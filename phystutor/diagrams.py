from __future__ import annotations

import logging
import re
import time
import typing as t

from . import prompts
from .errors import NotFoundError, UpstreamMalformedError
from .models import Visual
from .openai_client import RetryPolicy, call_with_retry

if t.TYPE_CHECKING:
    from backend.store import TutorStore

    from .openai_client import OpenAIClient

JsonDict = dict[str, t.Any]

logger = logging.getLogger(__name__)

DEFAULT_VISUAL_TYPE = "diagram"

_SVG_ELEMENT = re.compile(r"<svg\b.*?</svg\s*>", re.IGNORECASE | re.DOTALL)


def extract_svg(markup: t.Any) -> str | None:
    """Return the first complete <svg> element, ignoring fences or prose around it."""
    if not isinstance(markup, str):
        return None
    match = _SVG_ELEMENT.search(markup)
    return match.group(0).strip() if match else None


class DiagramSynthesizer:
    """Second-stage rendering of a suggested visual into vector markup."""

    def __init__(
        self,
        store: "TutorStore",
        client: "OpenAIClient",
        retry_policy: RetryPolicy | None = None,
        sleep: t.Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy.from_env()
        self.sleep = sleep

    def render(self, problem_id: str, visual_type: str | None = None) -> Visual:
        problem = self.store.get_problem(problem_id)
        if problem is None:
            raise NotFoundError("Problem not found")

        existing = self.store.find_visual(problem.id, visual_type) if visual_type else None
        messages = [
            {"role": "system", "content": prompts.DIAGRAM_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": prompts.diagram_user_prompt(
                    problem.problem_text,
                    visual_type,
                    existing.visual_description if existing else None,
                ),
            },
        ]
        payload: JsonDict = call_with_retry(
            lambda: self.client.complete_structured(messages, json_schema=prompts.DIAGRAM_SCHEMA, temperature=0.4),
            self.retry_policy,
            sleep=self.sleep,
            description="diagram synthesis",
        )

        svg = extract_svg(payload.get("svg"))
        description = payload.get("description")
        if not svg or not isinstance(description, str) or not description.strip():
            raise UpstreamMalformedError("Invalid diagram data structure", raw=repr(payload)[:1000])

        if existing is not None:
            updated = self.store.update_visual(existing.id, svg_data=svg, description=description)
            if updated is None:
                raise NotFoundError("Visual not found")
            logger.info("Rendered %s for problem %s", visual_type, problem.id)
            return updated

        visual = self.store.insert_visual(problem.id, visual_type or DEFAULT_VISUAL_TYPE, description, svg_data=svg)
        logger.info("Rendered new %s for problem %s", visual.visual_type, problem.id)
        return visual
