from __future__ import annotations

import dataclasses
import logging
import time
import typing as t

from . import prompts
from .errors import NotFoundError, UpstreamError, ValidationError
from .models import Conversation
from .openai_client import DONE_FRAME, FramedStream, RetryPolicy, call_with_retry, message_content
from .stream_decoder import StreamDecoder

if t.TYPE_CHECKING:
    from backend.store import TutorStore

    from .images import ImageLoader
    from .openai_client import OpenAIClient

JsonDict = dict[str, t.Any]

logger = logging.getLogger(__name__)

CHAT_ROLES = ("user", "assistant")


@dataclasses.dataclass(frozen=True)
class ChatTurn:
    messages: tuple[JsonDict, ...]
    conversation_id: str | None = None
    problem_id: str | None = None
    image_url: str | None = None
    stream: bool = False

    @staticmethod
    def from_dict(body: JsonDict) -> "ChatTurn":
        messages = body.get("messages")
        if not isinstance(messages, list) or not messages:
            raise ValidationError("Messages are required")
        return ChatTurn(
            messages=tuple(messages),
            conversation_id=body.get("conversationId") or None,
            problem_id=body.get("problemId") or None,
            image_url=body.get("imageUrl") or None,
            stream=_flag(body.get("stream")),
        )


def _flag(value: t.Any) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return value is True


@dataclasses.dataclass(frozen=True)
class ChatReply:
    message: str
    conversation_id: str | None

    def to_dict(self) -> JsonDict:
        return {"message": self.message, "conversationId": self.conversation_id}


@dataclasses.dataclass(frozen=True)
class ChatStream:
    conversation_id: str | None
    frames: t.Iterator[str]


def _history(messages: t.Sequence[JsonDict]) -> list[JsonDict]:
    history: list[JsonDict] = []
    for msg in messages:
        if not isinstance(msg, dict) or msg.get("role") not in CHAT_ROLES:
            raise ValidationError("Each message needs a role of 'user' or 'assistant'")
        content = msg.get("content")
        if not isinstance(content, str):
            raise ValidationError("Message content must be text")
        history.append({"role": msg["role"], "content": content})
    return history


class TutorConversation:
    """One tutoring turn: resolve the conversation, persist, ask, persist the answer.

    The user message is written before the upstream call so a failed turn stays
    visible in the history. The assistant message is written only once the full
    answer is known.
    """

    def __init__(
        self,
        store: "TutorStore",
        client: "OpenAIClient",
        images: "ImageLoader",
        retry_policy: RetryPolicy | None = None,
        sleep: t.Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.client = client
        self.images = images
        self.retry_policy = retry_policy or RetryPolicy.from_env()
        self.sleep = sleep

    def get_or_create_conversation(self, problem_id: str | None) -> Conversation:
        if not problem_id:
            raise ValidationError("Problem ID is required")
        problem = self.store.get_problem(problem_id)
        if problem is None:
            raise NotFoundError("Problem not found")
        conversation_id = self.store.latest_conversation_id(problem.id)
        if conversation_id is None:
            conversation_id = self.store.create_conversation(problem.id)
            logger.info("Started conversation %s for problem %s", conversation_id, problem.id)
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation

    def _prepare(self, turn: ChatTurn) -> tuple[str | None, list[JsonDict]]:
        history = _history(turn.messages)

        problem = self.store.get_problem(turn.problem_id) if turn.problem_id else None
        conversation_id = turn.conversation_id
        if conversation_id:
            if not self.store.conversation_exists(conversation_id):
                raise NotFoundError("Conversation not found")
        elif problem is not None:
            conversation_id = self.store.create_conversation(problem.id)
            logger.info("Started conversation %s for problem %s", conversation_id, problem.id)

        last = history[-1]
        if conversation_id and last["role"] == "user":
            self.store.add_message(conversation_id, "user", last["content"], turn.image_url)

        if turn.image_url and last["role"] == "user":
            history[-1] = {
                "role": "user",
                "content": [
                    {"type": "text", "text": last["content"]},
                    {"type": "image_url", "image_url": {"url": self.images.data_url(turn.image_url)}},
                ],
            }

        system = {"role": "system", "content": prompts.tutor_system_prompt(problem.problem_text if problem else None)}
        return conversation_id, [system, *history]

    def _persist_reply(self, conversation_id: str | None, text: str) -> None:
        if conversation_id and text:
            self.store.add_message(conversation_id, "assistant", text)

    def reply(self, turn: ChatTurn) -> ChatReply:
        conversation_id, messages = self._prepare(turn)
        payload = call_with_retry(
            lambda: self.client.complete(messages, temperature=0.7),
            self.retry_policy,
            sleep=self.sleep,
            description="tutor reply",
        )
        content = message_content(payload)
        text = content if isinstance(content, str) else str(content or "")
        self._persist_reply(conversation_id, text)
        return ChatReply(message=text, conversation_id=conversation_id)

    def stream_reply(self, turn: ChatTurn) -> ChatStream:
        """Open the upstream stream (with retries) and relay its frames.

        Only opening the stream is retried; once frames are flowing an
        interruption ends the relay and nothing is persisted.
        """
        conversation_id, messages = self._prepare(turn)
        framed = call_with_retry(
            lambda: self.client.stream(messages, temperature=0.7),
            self.retry_policy,
            sleep=self.sleep,
            description="tutor stream",
        )
        return ChatStream(conversation_id=conversation_id, frames=self._relay(framed, conversation_id))

    def _relay(self, framed: FramedStream, conversation_id: str | None) -> t.Iterator[str]:
        decoder = StreamDecoder(on_complete=lambda text: self._persist_reply(conversation_id, text))
        try:
            for frame in framed:
                decoder.feed(frame)
                yield frame
        except UpstreamError as exc:
            logger.error("Tutor stream for conversation %s interrupted: %s", conversation_id, exc)
            yield DONE_FRAME
            return
        finally:
            framed.close()
        decoder.finish()
