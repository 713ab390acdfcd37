import re
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, field_validator

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Contact(BaseModel):
    """A stored contact row."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence
    createdAt: datetime
    updatedAt: datetime
    deletedAt: Optional[datetime] = None

    @property
    def is_primary(self) -> bool:
        return self.linkPrecedence == LinkPrecedence.PRIMARY

    @property
    def primary_id(self) -> Optional[int]:
        """Id of this contact's chain primary, or None for a malformed secondary."""
        return self.id if self.is_primary else self.linkedId

    @property
    def seniority(self):
        return (self.createdAt, self.id)


class ContactUpdate(BaseModel):
    id: int
    linkedId: Optional[int] = None
    linkPrecedence: Optional[LinkPrecedence] = None


class IdentifyRequest(BaseModel):
    email: Optional[str] = None
    # Integers are accepted as a convenience; booleans and floats are not
    phoneNumber: Optional[Union[StrictStr, StrictInt]] = None

    @field_validator("email")
    @classmethod
    def _check_email(cls, value):
        if not value:
            return None
        if not EMAIL_PATTERN.match(value):
            raise ValueError("must be a valid email address")
        return value

    @field_validator("phoneNumber")
    @classmethod
    def _phone_as_text(cls, value):
        if value is None or value == "":
            return None
        return str(value)


class ContactResponse(BaseModel):
    primaryContactId: int
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]


class FinalResponse(BaseModel):
    contact: ContactResponse


class ErrorResponse(BaseModel):
    message: str
    statusCode: int
    code: str
    timestamp: str
    path: str
    errors: Optional[List[str]] = None
