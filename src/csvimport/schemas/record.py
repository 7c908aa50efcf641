"""Schemas for rows forwarded to the record-creation service."""

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError


class StudentRecord(BaseModel):
    """One normalized student row."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone_no: str = Field(..., min_length=1)

    def to_payload(self, organization_id: str, created_by: str) -> dict:
        """Request body for the downstream create call."""
        return {
            "email": str(self.email),
            "firstName": self.first_name,
            "lastName": self.last_name,
            "phoneNo": self.phone_no,
            "organizationId": organization_id,
            "createdBy": created_by,
        }


FIELD_MESSAGES = {
    "email": "Invalid email format",
    "first_name": "First name is required",
    "last_name": "Last name is required",
    "phone_no": "Phone number is required",
}


def validate_student_record(data: dict) -> tuple[StudentRecord | None, str | None]:
    """Validate a normalized row, returning the record or the first error message."""
    try:
        return StudentRecord.model_validate(data), None
    except ValidationError as e:
        first = e.errors()[0]
        field = first["loc"][0] if first["loc"] else None
        return None, FIELD_MESSAGES.get(field, first["msg"])
