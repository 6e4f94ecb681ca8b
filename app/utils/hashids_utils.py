from uuid import UUID
from hashids import Hashids
from app.core.config import settings

REFERRAL_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

hashids = Hashids(
    salt=settings.HASHIDS_SALT,
    min_length=settings.HASHIDS_MIN_LENGTH,
    alphabet=REFERRAL_CODE_ALPHABET
)


def encode_referral_code(user_id: UUID, attempt: int = 0) -> str:
    """
    Genera un código de referido legible a partir del UUID del usuario.
    `attempt` permite obtener otro código si el primero ya está en uso.
    """
    # Los 48 bits altos del UUID bastan para un código corto
    return hashids.encode(user_id.int >> 80, attempt)


def decode_referral_code(code: str) -> tuple:
    """Lanza ValueError si el código no fue generado por este servicio."""
    decoded = hashids.decode(code.strip().upper())
    if not decoded:
        raise ValueError("Invalid referral code")
    return decoded
