from __future__ import annotations

from typing import Any


class ChatProxyError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_content(self) -> dict[str, Any]:
        content: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            content["details"] = self.details
        return content


class InvalidInputError(ChatProxyError):
    status_code = 400


class MisconfiguredError(ChatProxyError):
    status_code = 500
