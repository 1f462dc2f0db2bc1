"""
Submitted account forms.

Validation failures are raised as InvalidInput carrying one message per
failed rule.
"""

from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from .errors import InvalidInput


MAX_FIELD_LENGTH = 255

F = TypeVar("F", bound=BaseModel)


def _check_username(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Username is required.")
    if len(value) > MAX_FIELD_LENGTH:
        raise ValueError("Username must be less than 255 characters.")
    return value


def _check_email(value: str) -> str:
    value = value.strip()
    if len(value) > MAX_FIELD_LENGTH:
        raise ValueError("Email must be less than 255 characters.")
    if "@" not in value:
        raise ValueError("Email must be valid.")
    return value


class RegisterUserForm(BaseModel):
    username: str
    email: str
    password: str
    password_confirmation: str

    @field_validator("username")
    @classmethod
    def check_username(cls, value: str) -> str:
        return _check_username(value)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("password")
    @classmethod
    def password_required(cls, value: str) -> str:
        if not value:
            raise ValueError("Password is required.")
        return value

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterUserForm":
        if self.password != self.password_confirmation:
            raise ValueError("Passwords did not match.")
        return self


class UpdateUserForm(BaseModel):
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    description: Optional[str] = None

    @field_validator("username")
    @classmethod
    def check_username(cls, value: str) -> str:
        return _check_username(value)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _check_email(value)


class ChangePasswordForm(BaseModel):
    password: str
    new_password: str
    new_password_confirmation: str

    @field_validator("new_password")
    @classmethod
    def password_required(cls, value: str) -> str:
        if not value:
            raise ValueError("Password is required.")
        return value

    @model_validator(mode="after")
    def passwords_match(self) -> "ChangePasswordForm":
        if self.new_password != self.new_password_confirmation:
            raise ValueError("Passwords did not match.")
        return self


def parse_form(form_class: Type[F], data: dict) -> F:
    """
    Validate raw form data.

    Raises:
        InvalidInput: With the message of every failed rule
    """
    try:
        return form_class.model_validate(data)
    except ValidationError as e:
        raise InvalidInput([_message(error) for error in e.errors()]) from e


def _message(error: dict) -> str:
    message = error["msg"]
    # pydantic prefixes messages raised from validators
    prefix = "Value error, "
    if message.startswith(prefix):
        return message[len(prefix):]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {message}" if location else message
