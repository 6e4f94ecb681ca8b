from typing import Optional
from pydantic import BaseModel, Field, field_validator
import phonenumbers
import re
from app.core.config import settings

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class ContactData(BaseModel):
    """Datos de contacto del paso 1 del checkout; se copian tal cual al pedido."""
    full_name: str = Field(min_length=2, max_length=120)
    email: str = Field(max_length=254)
    phone: Optional[str] = Field(default=None, max_length=20)
    company: Optional[str] = Field(default=None, max_length=120)

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("Full name must have at least 2 characters.")
        return value

    @field_validator("company")
    @classmethod
    def strip_company(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return value.strip() or None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not EMAIL_REGEX.match(value):
            raise ValueError("Invalid email format")
        return value

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        try:
            parsed = phonenumbers.parse(value, settings.DEFAULT_PHONE_REGION)
        except phonenumbers.NumberParseException as e:
            raise ValueError("Invalid phone number format.") from e
        if not phonenumbers.is_valid_number(parsed):
            raise ValueError("Invalid phone number.")
        return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


class ProjectDetails(BaseModel):
    description: str = Field(default="", max_length=5000)
    timeline: Optional[str] = Field(default=None, max_length=120)
