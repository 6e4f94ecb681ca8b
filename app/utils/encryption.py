import json
import logging
from typing import Any, Dict, Optional, Union
from cryptography.fernet import Fernet, InvalidToken
from app.core.config import settings

logger = logging.getLogger(__name__)

# Campos de los datos de pago que se muestran completos
VISIBLE_DETAIL_KEYS = {"bank_name", "account_name"}


class PaymentDetailsCipher:
    """Cifra los datos bancarios de las solicitudes de retiro."""

    def __init__(self, key: Union[str, bytes, None] = None):
        key = key or settings.ENCRYPTION_KEY
        if not key:
            # Solo para desarrollo: los datos cifrados no sobreviven a un reinicio
            key = Fernet.generate_key()
            logger.warning("ENCRYPTION_KEY not set, using an ephemeral key")
        if isinstance(key, str):
            key = key.encode()
        self._fernet = Fernet(key)

    def encrypt_details(self, details: Dict[str, Any]) -> str:
        payload = json.dumps(details, sort_keys=True, default=str).encode()
        return self._fernet.encrypt(payload).decode()

    def decrypt_details(self, token: str) -> Dict[str, Any]:
        return json.loads(self._fernet.decrypt(token.encode()))

    def masked_details(self, token: str) -> Dict[str, str]:
        try:
            details = self.decrypt_details(token)
        except InvalidToken:
            logger.error("Could not decrypt withdrawal payment details")
            return {"details": "**********"}
        return {
            key: str(value) if key in VISIBLE_DETAIL_KEYS else mask_value(value)
            for key, value in details.items()
        }


def mask_value(value: Optional[Any]) -> str:
    text = "" if value is None else str(value)
    if len(text) <= 4:
        return text
    return f"****{text[-4:]}"


payment_details_cipher = PaymentDetailsCipher()
