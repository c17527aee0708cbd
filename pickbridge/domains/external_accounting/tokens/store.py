"""
Encrypted token persistence.

Tokens are kept in the provider's native JSON shape and written as a single
Fernet ciphertext. Decrypted values only exist for the duration of one call.
"""

import json
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel

from pickbridge.core.encryption import TokenCipher

from ..base.store import BaseIntegrationStore
from ..base.types import ProviderKind

logger = logging.getLogger(__name__)


class LoadedToken(BaseModel):
    """A decrypted token payload and the provider it belongs to."""

    company_id: str
    provider: ProviderKind
    data: Dict[str, Any]


class TokenStore:
    """Reads and writes per-company OAuth tokens through the integration store."""

    def __init__(self, store: BaseIntegrationStore, cipher: Optional[TokenCipher] = None):
        self.store = store
        self.cipher = cipher or TokenCipher()

    async def load(self, company_id: str) -> Optional[LoadedToken]:
        """
        Load and decrypt the company's token.

        Returns:
            The decrypted payload, or None when no token is stored

        Raises:
            TokenDecryptionError: If the stored ciphertext cannot be decrypted
        """
        stored = await self.store.get_token(company_id)
        if stored is None:
            return None

        plaintext = self.cipher.decrypt(stored.ciphertext)
        return LoadedToken(
            company_id=company_id,
            provider=stored.provider,
            data=json.loads(plaintext),
        )

    async def save(
        self,
        company_id: str,
        provider: ProviderKind,
        token: BaseModel,
        tenant_id: Optional[str] = None,
    ) -> None:
        """Encrypt and overwrite the company's token record in full."""
        ciphertext = self.cipher.encrypt(token.model_dump_json(exclude_none=True))
        await self.store.save_token(company_id, provider, ciphertext, tenant_id)
        logger.debug(f"Stored {provider.value} token for company {company_id}")

    async def delete(self, company_id: str) -> None:
        await self.store.delete_token(company_id)
