from __future__ import annotations


class AppError(Exception):
    """Business error carried up to the HTTP layer.

    `code` is the application code placed in the response envelope; `http_status`
    of 0 means "answer 200 and let the code speak".
    """

    def __init__(self, code: int, message: str, http_status: int = 0) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status

    def __str__(self) -> str:
        return self.message

    @classmethod
    def format(cls, code: int, template: str, *args: object) -> AppError:
        return cls(code, template % args if args else template)
