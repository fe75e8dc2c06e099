from __future__ import annotations

import dataclasses
import http.client
import json
import logging
import os
import re
import socket
import time
import typing as t
import urllib.error
import urllib.request

from .errors import (
    UpstreamAuthError,
    UpstreamMalformedError,
    UpstreamTimeoutError,
    UpstreamTransientError,
    classify_upstream_status,
)

JsonDict = dict[str, t.Any]
T = t.TypeVar("T")

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    backoff_s: float = 1.0

    @staticmethod
    def from_env() -> "RetryPolicy":
        return RetryPolicy(
            max_retries=max(0, int(os.environ.get("TUTOR_MAX_RETRIES") or 2)),
            backoff_s=max(0.0, float(os.environ.get("TUTOR_RETRY_BACKOFF_S") or 1.0)),
        )

    def delay_for(self, attempt: int) -> float:
        # linear: 1x, 2x, 3x ...
        return self.backoff_s * attempt


def call_with_retry(
    fn: t.Callable[[], T],
    policy: RetryPolicy,
    *,
    sleep: t.Callable[[float], None] = time.sleep,
    description: str = "upstream call",
) -> T:
    """Run `fn`, retrying transient upstream failures sequentially.

    Auth, malformed and timeout failures are raised on the first occurrence.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except UpstreamTransientError as e:
            if attempt >= policy.max_retries:
                logger.error("%s failed after %d attempts: %s", description, attempt + 1, e)
                raise
            attempt += 1
            delay = policy.delay_for(attempt)
            logger.warning("%s failed (%s); retry %d/%d in %.1fs", description, e, attempt, policy.max_retries, delay)
            sleep(delay)


def strip_code_fences(text: str) -> str:
    s = text.strip()
    start_fence = s.find("```")
    if start_fence == -1:
        return s
    match = re.search(r"```[a-zA-Z0-9_-]*\s*", s[start_fence:])
    if not match:
        return s
    content_start = start_fence + match.end()
    end_fence = s.find("```", content_start)
    if end_fence != -1:
        return s[content_start:end_fence].strip()
    return s[content_start:].strip()


def _json_candidate(text: str) -> str:
    s = strip_code_fences(text)
    starts = [i for i in (s.find("{"), s.find("[")) if i != -1]
    if not starts:
        return s
    start = min(starts)
    end = s.rfind("}") if s[start] == "{" else s.rfind("]")
    if end <= start:
        return s[start:]
    return s[start : end + 1]


def _escape_raw_newlines(text: str) -> str:
    out: list[str] = []
    in_str = False
    escape = False
    for ch in text:
        if in_str and escape:
            escape = False
        elif in_str and ch == "\\":
            escape = True
        elif ch == '"':
            in_str = not in_str
        elif in_str and ch == "\n":
            out.append("\\n")
            continue
        elif in_str and ch == "\r":
            continue
        elif in_str and ch == "\t":
            out.append("\\t")
            continue
        out.append(ch)
    return "".join(out)


def _close_brackets(text: str) -> str:
    closers: list[str] = []
    in_str = False
    escape = False
    for ch in text:
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            closers.append("}")
        elif ch == "[":
            closers.append("]")
        elif ch in "}]" and closers and closers[-1] == ch:
            closers.pop()
    return text + ('"' if in_str else "") + "".join(reversed(closers))


def repair_json_text(text: str) -> str:
    s = _json_candidate(text)
    s = _escape_raw_newlines(s)
    s = _close_brackets(s)
    s = re.sub(r",\s*([}\]])", r"\1", s)
    return s.strip()


def parse_structured_content(content: t.Any) -> JsonDict:
    """Accept an already-structured object or structured text (fenced or not)."""
    if isinstance(content, dict):
        return t.cast(JsonDict, content)
    if not isinstance(content, str) or not content.strip():
        raise UpstreamMalformedError("Structured completion returned no content.", raw=repr(content)[:1000])
    try:
        parsed = json.loads(strip_code_fences(content))
    except json.JSONDecodeError:
        try:
            parsed = json.loads(repair_json_text(content))
        except json.JSONDecodeError as e:
            logger.error("Unparseable structured completion: %s", content[:1000])
            raise UpstreamMalformedError("Structured completion is not valid JSON.", raw=content[:4000]) from e
    if not isinstance(parsed, dict):
        raise UpstreamMalformedError("Structured completion is not a JSON object.", raw=content[:4000])
    return t.cast(JsonDict, parsed)


def message_content(payload: JsonDict) -> t.Any:
    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        raise UpstreamMalformedError("Reasoning service returned no choices.")
    message = choices[0].get("message") or {}
    if "content" not in message:
        raise UpstreamMalformedError("Reasoning service returned no message content.")
    return message.get("content")


def text_frame(content: str) -> str:
    """Frame one delta for the line-oriented `data: <text>` protocol.

    Text containing line breaks, or text that would itself parse as JSON, cannot
    travel as a literal frame, so it is sent in the JSON delta envelope that
    decoders already understand.
    """
    if "\n" in content or "\r" in content or _parses_as_json(content):
        envelope = {"choices": [{"delta": {"content": content}}]}
        return f"data: {json.dumps(envelope, ensure_ascii=False)}\n\n"
    return f"data: {content}\n\n"


def _parses_as_json(content: str) -> bool:
    try:
        json.loads(content)
    except ValueError:
        return False
    return True


def _delta_content(data: str) -> str | None:
    try:
        obj = json.loads(data)
    except json.JSONDecodeError:
        return None
    if not isinstance(obj, dict):
        return None
    choices = obj.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) else None


class FramedStream:
    """Upstream event stream re-framed as `data: <text>\\n\\n` frames.

    Pull-driven: each iteration step reads the next upstream line. Malformed
    upstream frames are skipped. The response is closed when iteration ends.
    """

    def __init__(self, response: t.Any) -> None:
        self._response = response
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._response.close()
        except OSError:
            logger.warning("Failed to close upstream stream")

    def __iter__(self) -> t.Iterator[str]:
        try:
            for raw in self._response:
                line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                content = _delta_content(data)
                if content:
                    yield text_frame(content)
            yield DONE_FRAME
        except (socket.timeout, TimeoutError) as e:
            raise UpstreamTimeoutError() from e
        except (OSError, http.client.HTTPException) as e:
            raise UpstreamTransientError(f"Upstream stream interrupted: {e}") from e
        finally:
            self.close()


class OpenAIClient:
    """Chat-completions client for the upstream reasoning/vision service.

    Non-streaming calls return the upstream payload untouched; `complete_structured`
    additionally parses the message content into an object.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o",
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float | None = None,
    ) -> None:
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self.model = os.environ.get("OPENAI_MODEL") or model
        self.base_url = (os.environ.get("OPENAI_BASE_URL") or base_url).rstrip("/")
        self.timeout_s = float(timeout_s or os.environ.get("OPENAI_TIMEOUT_S") or 60.0)

    def _request(self, payload: JsonDict) -> urllib.request.Request:
        if not self.api_key:
            raise UpstreamAuthError("Missing OPENAI_API_KEY.")
        return urllib.request.Request(
            f"{self.base_url}/chat/completions",
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            method="POST",
        )

    def _open(self, payload: JsonDict, timeout_s: float | None) -> t.Any:
        req = self._request(payload)
        try:
            return urllib.request.urlopen(req, timeout=timeout_s or self.timeout_s)
        except urllib.error.HTTPError as e:
            try:
                body = e.read().decode("utf-8", errors="replace")
            except OSError:
                body = None
            err = classify_upstream_status(e.code, body)
            logger.error("Reasoning service error %s: %s", e.code, (body or "")[:500])
            raise err from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, (socket.timeout, TimeoutError)):
                raise UpstreamTimeoutError() from e
            raise UpstreamTransientError(f"Reasoning service unreachable: {e.reason}") from e
        except (socket.timeout, TimeoutError) as e:
            raise UpstreamTimeoutError() from e
        except (OSError, http.client.HTTPException) as e:
            raise UpstreamTransientError(f"Reasoning service transport error: {e}") from e

    def _payload(
        self,
        messages: list[JsonDict],
        *,
        temperature: float,
        max_tokens: int | None = None,
        json_schema: JsonDict | None = None,
        stream: bool = False,
    ) -> JsonDict:
        payload: JsonDict = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "stream": stream,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if json_schema:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": json_schema.get("name") or "response",
                    "schema": json_schema.get("schema"),
                    "strict": bool(json_schema.get("strict")),
                },
            }
        return payload

    def complete(
        self,
        messages: list[JsonDict],
        *,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_schema: JsonDict | None = None,
        timeout_s: float | None = None,
    ) -> JsonDict:
        payload = self._payload(messages, temperature=temperature, max_tokens=max_tokens, json_schema=json_schema)
        try:
            with self._open(payload, timeout_s) as resp:
                raw = resp.read().decode("utf-8")
        except (socket.timeout, TimeoutError) as e:
            raise UpstreamTimeoutError() from e
        except (OSError, http.client.HTTPException) as e:
            raise UpstreamTransientError(f"Reasoning service read failed: {e}") from e
        try:
            return t.cast(JsonDict, json.loads(raw))
        except json.JSONDecodeError as e:
            raise UpstreamMalformedError("Reasoning service returned invalid JSON.", raw=raw[:1000]) from e

    def complete_vision(
        self,
        messages: list[JsonDict],
        *,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        timeout_s: float | None = None,
    ) -> JsonDict:
        return self.complete(
            [vision_message(m) for m in messages],
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_s=timeout_s,
        )

    def complete_structured(
        self,
        messages: list[JsonDict],
        *,
        json_schema: JsonDict,
        temperature: float = 0.2,
        max_tokens: int | None = None,
        timeout_s: float | None = None,
    ) -> JsonDict:
        payload = self.complete(
            messages,
            temperature=temperature,
            max_tokens=max_tokens,
            json_schema=json_schema,
            timeout_s=timeout_s,
        )
        return parse_structured_content(message_content(payload))

    def stream(
        self,
        messages: list[JsonDict],
        *,
        temperature: float = 0.7,
        json_schema: JsonDict | None = None,
        timeout_s: float | None = None,
    ) -> FramedStream:
        """Open the upstream stream now; frames are read as the caller iterates."""
        payload = self._payload(messages, temperature=temperature, json_schema=json_schema, stream=True)
        return FramedStream(self._open(payload, timeout_s))


def vision_message(msg: JsonDict) -> JsonDict:
    content = msg.get("content")
    if not isinstance(content, list):
        return {"role": msg.get("role"), "content": content}
    parts: list[JsonDict] = []
    for item in content:
        if isinstance(item, dict) and item.get("type") == "image_url":
            parts.append({"type": "image_url", "image_url": {"url": (item.get("image_url") or {}).get("url")}})
        elif isinstance(item, dict):
            parts.append({"type": "text", "text": item.get("text") or ""})
        else:
            parts.append({"type": "text", "text": str(item)})
    return {"role": msg.get("role"), "content": parts}

