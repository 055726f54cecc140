"""
Request schemas for the JSON API.

Every request body passes through one of these models before it reaches a
store or a service. parse() is the single place where pydantic errors become
the platform's ValidationError.
"""

from typing import Annotated, Any, Optional, Type, TypeVar

import pydantic
from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    StrictBool,
    StrictInt,
    StringConstraints,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .errors import ValidationError
from .models import Difficulty

Model = TypeVar("Model", bound=BaseModel)

# Keeps every score far below SQLite's 64-bit INTEGER range
MAX_CHALLENGE_POINTS = 1_000_000
MAX_PASSWORD_LENGTH = 128
USERNAME_PATTERN = r"^[A-Za-z0-9_.\-]+$"


def parse(model: Type[Model], data: Any) -> Model:
    """
    Validate a request body against a schema.

    @param model: Schema class to validate with
    @param data: Decoded JSON body or keyword mapping
    @return: The validated model
    """
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        message = f"{location}: {first['msg']}" if location else first["msg"]
        raise ValidationError(message) from e


def _not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


def _normalize_email(value: str) -> str:
    return value.lower().strip()


NonBlank = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
Username = Annotated[
    str,
    StringConstraints(
        strip_whitespace=True, min_length=3, max_length=20, pattern=USERNAME_PATTERN
    ),
]
Email = Annotated[EmailStr, AfterValidator(_normalize_email)]
Password = Annotated[
    str, Field(min_length=1, max_length=MAX_PASSWORD_LENGTH), AfterValidator(_not_blank)
]
Points = Annotated[StrictInt, Field(gt=0, le=MAX_CHALLENGE_POINTS)]


def _reject_nulls(model: BaseModel, names: tuple) -> None:
    for name in names:
        if name in model.model_fields_set and getattr(model, name) is None:
            raise ValueError(f"{to_camel(name)} cannot be null")


class RequestModel(BaseModel):
    """Base for request bodies: camelCase keys, unknown keys rejected."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class RegisterRequest(RequestModel):
    """Player self-registration."""

    model_config = ConfigDict(extra="ignore")

    username: Username
    email: Email
    password: Password


class LoginRequest(RequestModel):
    model_config = ConfigDict(extra="ignore")

    username: str
    password: str


class UsernameChangeRequest(RequestModel):
    username: Username


class AdminUserCreate(RequestModel):
    """Account created by an administrator."""

    username: Username
    email: Email
    password: Password
    is_admin: StrictBool = False


class AdminUserUpdate(RequestModel):
    """
    Administrator edits to an account.

    Score counters are not fields here; they belong to the scoring engine.
    """

    username: Optional[Username] = None
    email: Optional[Email] = None
    password: Optional[Password] = None
    is_admin: Optional[StrictBool] = None
    is_email_verified: Optional[StrictBool] = None

    @model_validator(mode="after")
    def check_nulls(self) -> "AdminUserUpdate":
        _reject_nulls(self, tuple(type(self).model_fields))
        return self


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class ChallengeFields(RequestModel):
    """Normalization shared by challenge create and update bodies."""

    @field_validator("difficulty", mode="before", check_fields=False)
    @classmethod
    def upper_case_difficulty(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator(
        "attachment", "download_url", "challenge_site_url", "author", check_fields=False
    )
    @classmethod
    def empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class ChallengeCreate(ChallengeFields):
    """
    A new challenge. Text fields and the flag are trimmed, so submissions
    are compared against the flag exactly as the admin meant it.
    """

    title: NonBlank
    description: NonBlank
    difficulty: Difficulty
    points: Points
    flag: NonBlank
    category: NonBlank
    is_active: StrictBool = True
    attachment: Optional[str] = None
    download_url: Optional[str] = None
    challenge_site_url: Optional[str] = None
    author: Optional[str] = None


class ChallengeUpdate(ChallengeFields):
    """Partial challenge edit; omitted fields keep their value."""

    title: Optional[NonBlank] = None
    description: Optional[NonBlank] = None
    difficulty: Optional[Difficulty] = None
    points: Optional[Points] = None
    flag: Optional[NonBlank] = None
    category: Optional[NonBlank] = None
    is_active: Optional[StrictBool] = None
    attachment: Optional[str] = None
    download_url: Optional[str] = None
    challenge_site_url: Optional[str] = None
    author: Optional[str] = None

    @model_validator(mode="after")
    def check_nulls(self) -> "ChallengeUpdate":
        _reject_nulls(
            self,
            ("title", "description", "difficulty", "points", "flag", "category", "is_active"),
        )
        return self


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


class SubmitFlagRequest(RequestModel):
    model_config = ConfigDict(extra="ignore")

    flag: str
