"""
Application error base. Each error carries a stable machine code and the HTTP status
the API layer answers with (see main.py exception handler).
"""


class AppError(Exception):
    code = "INTERNAL_ERROR"
    message = "internal error"
    status_code = 500

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class NotFoundError(AppError):
    code = "NOT_FOUND"
    message = "not found"
    status_code = 404


class UserNotFound(NotFoundError):
    code = "USER_NOT_FOUND"
    message = "user not found"


class SettingNotFound(NotFoundError):
    code = "SETTING_NOT_FOUND"
    message = "setting not found"


class GroupNotFound(NotFoundError):
    code = "GROUP_NOT_FOUND"
    message = "subscription group not found"


class InvalidSubscriptionInput(AppError):
    code = "SUBSCRIPTION_INVALID_INPUT"
    message = "invalid subscription assignment"
    status_code = 400


class InvalidAmount(AppError):
    code = "INVALID_AMOUNT"
    message = "amount must be positive"
    status_code = 400
