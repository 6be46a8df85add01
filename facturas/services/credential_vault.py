"""
FACTURAS-SV: Bóveda de credenciales
====================================
Guarda las credenciales del servicio DTE por empresa (usuario MH,
contraseña y clave del certificado), encriptadas con Fernet usando
una key derivada por empresa.

Uso:
    vault = CredentialVault(master_key)
    vault.store(company_id, ServiceCredentials(user=nit, password=pwd, certificate_key=key))
    creds = vault.get(company_id)
"""
import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from facturas.core.config import settings
from facturas.schemas.models import ServiceCredentials

logger = logging.getLogger(__name__)


class CredentialVault:
    """Credenciales encriptadas multi-empresa."""

    def __init__(self, master_key: str | None = None):
        key = master_key or settings.encryption_master_key
        if not key:
            logger.warning(
                "ENCRYPTION_MASTER_KEY not set; using an ephemeral key. "
                "Stored credentials will not survive a restart."
            )
            key = self.generate_master_key()
        self._master_key = key.encode()
        self._tokens: dict[str, bytes] = {}

    def _derive_key(self, company_id: str) -> bytes:
        """Deriva una Fernet key única por empresa."""
        raw = hashlib.sha256(self._master_key + company_id.encode()).digest()
        return base64.urlsafe_b64encode(raw)

    def _fernet(self, company_id: str) -> Fernet:
        return Fernet(self._derive_key(company_id))

    # ── Public API ──

    def store(self, company_id: str, credentials: ServiceCredentials) -> None:
        payload = credentials.model_dump_json().encode("utf-8")
        self._tokens[company_id] = self._fernet(company_id).encrypt(payload)
        logger.info(f"Credentials stored for company={company_id}")

    def get(self, company_id: str) -> Optional[ServiceCredentials]:
        """Credenciales desencriptadas, o None si la empresa no tiene."""
        token = self._tokens.get(company_id)
        if token is None:
            return None
        try:
            payload = self._fernet(company_id).decrypt(token)
        except InvalidToken:
            logger.error(f"Could not decrypt credentials for company={company_id}")
            raise
        return ServiceCredentials.model_validate_json(payload)

    def remove(self, company_id: str) -> None:
        self._tokens.pop(company_id, None)

    def has_certificate(self, company_id: str) -> bool:
        creds = self.get(company_id)
        return bool(creds and creds.certificate_key)

    @staticmethod
    def generate_master_key() -> str:
        """Genera una master key nueva para ENCRYPTION_MASTER_KEY."""
        return Fernet.generate_key().decode()
