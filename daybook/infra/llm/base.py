from __future__ import annotations

from typing import Any, Protocol


class LLMAPIError(RuntimeError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def __str__(self) -> str:
        return self.message


class LLMClient(Protocol):
    api_key: str

    async def create_chat_completion(
        self,
        *,
        model: str | None = None,
        messages: list[dict[str, Any]],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> dict[str, Any]:
        ...
