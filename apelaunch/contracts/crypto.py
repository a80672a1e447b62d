from typing import Optional, Protocol

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature
from eth_utils import ValidationError

from apelaunch.contracts.types import Address

SIGNATURE_LENGTH = 65
SIGNATURE_V_VALUES = (27, 28)


class SignatureVerifier(Protocol):
    """Recovers the identity that signed `message`.

    Returns None when the signature is malformed or cannot be recovered.
    """

    def recover(self, message: bytes, signature: bytes) -> Optional[Address]:
        ...


class EthSignatureVerifier:
    """Verifier for EIP-191 personal-sign signatures over a 32 byte digest."""

    def recover(self, message: bytes, signature: bytes) -> Optional[Address]:
        if len(signature) != SIGNATURE_LENGTH or signature[-1] not in SIGNATURE_V_VALUES:
            return None
        try:
            signer = Account.recover_message(encode_defunct(primitive=message), signature=signature)
        except (BadSignature, ValidationError, ValueError):
            return None
        return Address(signer)


def sign_digest(private_key: bytes | str, message: bytes) -> bytes:
    """Sign `message` the way `EthSignatureVerifier` expects it."""
    signed = Account.sign_message(encode_defunct(primitive=message), private_key=private_key)
    return bytes(signed.signature)
