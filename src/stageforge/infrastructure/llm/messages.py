"""Chat message construction shared by the chat-completion adapters."""

from stageforge.domain.context_window import estimate_tokens
from stageforge.domain.models import TokenUsage, Turn


def build_messages(
    system_prompt: str, history: tuple[Turn, ...], rendered_prompt: str
) -> list[dict[str, str]]:
    """Build an OpenAI-style message list from the session window."""
    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.extend({"role": t.role, "content": t.content} for t in history)
    messages.append({"role": "user", "content": rendered_prompt})
    return messages


def usage_from_response(
    usage: object | None, messages: list[dict[str, str]], content: str
) -> TokenUsage:
    """Token usage from a completion, estimated when the backend omits it."""
    if usage is not None:
        prompt_tokens = getattr(usage, "prompt_tokens", None)
        completion_tokens = getattr(usage, "completion_tokens", None)
        if prompt_tokens is not None and completion_tokens is not None:
            return TokenUsage(
                prompt_tokens=int(prompt_tokens),
                completion_tokens=int(completion_tokens),
            )
    return TokenUsage(
        prompt_tokens=sum(estimate_tokens(m["content"]) for m in messages),
        completion_tokens=estimate_tokens(content),
    )


def parse_retry_after(headers: object | None) -> float | None:
    """Read a Retry-After header value in seconds, if present and numeric."""
    if headers is None:
        return None
    get = getattr(headers, "get", None)
    if get is None:
        return None
    value = get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
