"""Hybrid encryption of message bodies.

Each message body is sealed once with a fresh AES-256-GCM key. The body is
encrypted twice under two independent nonces, and the AES key is wrapped
with RSA-OAEP for each endpoint, so either party can open its own copy
without the hub's help.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from duet_chat.schemas import MessageRecord

logger = logging.getLogger(__name__)

RSA_KEY_BITS = 2048
RSA_PUBLIC_EXPONENT = 65537
AES_KEY_BYTES = 32
NONCE_BYTES = 12

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


class EnvelopeError(RuntimeError):
    """Raised when an envelope cannot be opened ("corrupt envelope")."""


class Role(str, Enum):
    """Which copy of a message an endpoint opens."""

    SENDER = "sender"
    RECEIVER = "receiver"


@dataclass(frozen=True)
class EnvelopeCopy:
    """One endpoint's copy: ciphertext, wrapped AES key and nonce."""

    ciphertext: bytes
    wrapped_key: bytes
    nonce: bytes


@dataclass(frozen=True)
class SealedMessage:
    """Both copies of one sealed message body."""

    sender: EnvelopeCopy
    receiver: EnvelopeCopy

    def fill(self, record: MessageRecord) -> MessageRecord:
        """Return ``record`` with its six body fields set from this envelope."""
        return record.model_copy(
            update={
                "sender_message": self.sender.ciphertext,
                "sender_key": self.sender.wrapped_key,
                "sender_nonce": self.sender.nonce,
                "receiver_message": self.receiver.ciphertext,
                "receiver_key": self.receiver.wrapped_key,
                "receiver_nonce": self.receiver.nonce,
            }
        )


@dataclass(frozen=True)
class OpenedMessage:
    """Plaintext of an opened envelope plus the AES key that opened it.

    ``plaintext`` is text for ``decrypt`` and raw bytes for ``decrypt_bytes``.
    """

    plaintext: str | bytes
    aes_key: bytes


class EnvelopeService:
    """Key management and envelope sealing for chat messages."""

    @staticmethod
    def generate_keypair() -> RSAPrivateKey:
        """Generate a new RSA-2048 private key for a user.

        This is slow; clients call it off their UI loop.
        """
        logger.info("Generating new RSA keys")
        return rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=RSA_KEY_BITS)

    @staticmethod
    def generate_aes_key() -> bytes:
        """Return 32 random bytes from the OS CSPRNG."""
        return os.urandom(AES_KEY_BYTES)

    @staticmethod
    def public_pem(key: RSAPrivateKey | RSAPublicKey) -> str:
        """Return the PKCS#1 PEM text of a public key."""
        public = key.public_key() if isinstance(key, RSAPrivateKey) else key
        return public.public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.PKCS1,
        ).decode()

    @staticmethod
    def private_pem(key: RSAPrivateKey) -> str:
        """Return the unencrypted PKCS#8 PEM text of a private key."""
        return key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()

    @staticmethod
    def load_public_pem(pem: str) -> RSAPublicKey:
        """Load a PKCS#1 or SubjectPublicKeyInfo PEM public key.

        Raises:
            ValueError: If the text is not an RSA public key.
        """
        key = serialization.load_pem_public_key(pem.strip().encode())
        if not isinstance(key, RSAPublicKey):
            raise ValueError("Public key is not an RSA key")
        return key

    @staticmethod
    def load_private_pem(pem: str) -> RSAPrivateKey:
        """Load an unencrypted PEM private key.

        Raises:
            ValueError: If the text is not an RSA private key.
        """
        key = serialization.load_pem_private_key(pem.strip().encode(), password=None)
        if not isinstance(key, RSAPrivateKey):
            raise ValueError("Private key is not an RSA key")
        return key

    @staticmethod
    def is_valid_public_pem(pem: str) -> bool:
        """Return True if ``pem`` parses as an RSA public key."""
        try:
            EnvelopeService.load_public_pem(pem)
        except (ValueError, TypeError):
            return False
        return True

    @staticmethod
    def _seal_copy(aes: AESGCM, aes_key: bytes, plaintext: bytes, public: RSAPublicKey) -> EnvelopeCopy:
        nonce = os.urandom(NONCE_BYTES)
        return EnvelopeCopy(
            ciphertext=aes.encrypt(nonce, plaintext, None),
            wrapped_key=public.encrypt(aes_key, _OAEP),
            nonce=nonce,
        )

    @staticmethod
    def encrypt(
        plaintext: str | bytes,
        self_public: RSAPublicKey,
        peer_public: RSAPublicKey,
    ) -> SealedMessage:
        """Seal a message body for both endpoints.

        Args:
            plaintext: Message body; text is encoded as UTF-8
            self_public: Sender's RSA public key
            peer_public: Receiver's RSA public key

        Returns:
            Sender and receiver copies sharing one AES key under independent nonces
        """
        data = plaintext.encode("utf-8") if isinstance(plaintext, str) else plaintext
        aes_key = EnvelopeService.generate_aes_key()
        aes = AESGCM(aes_key)
        return SealedMessage(
            sender=EnvelopeService._seal_copy(aes, aes_key, data, self_public),
            receiver=EnvelopeService._seal_copy(aes, aes_key, data, peer_public),
        )

    @staticmethod
    def role_for(owner_id: int, record: MessageRecord) -> Role:
        """Return the copy ``owner_id`` should open for ``record``."""
        return Role.SENDER if record.from_user == owner_id else Role.RECEIVER

    @staticmethod
    def copy_for(record: MessageRecord, role: Role) -> EnvelopeCopy:
        """Extract one endpoint's copy from a wire record.

        Raises:
            EnvelopeError: If any part of that copy is missing.
        """
        if role is Role.SENDER:
            parts = (record.sender_message, record.sender_key, record.sender_nonce)
        else:
            parts = (record.receiver_message, record.receiver_key, record.receiver_nonce)
        ciphertext, wrapped_key, nonce = parts
        if not ciphertext or not wrapped_key or not nonce:
            raise EnvelopeError(f"corrupt envelope: {role.value} copy is incomplete")
        return EnvelopeCopy(ciphertext=ciphertext, wrapped_key=wrapped_key, nonce=nonce)

    @staticmethod
    def _try_key(key: bytes, copy: EnvelopeCopy) -> bytes | None:
        try:
            return AESGCM(key).decrypt(copy.nonce, copy.ciphertext, None)
        except (InvalidTag, ValueError):
            return None

    @staticmethod
    def decrypt_bytes(
        record: MessageRecord,
        self_private: RSAPrivateKey,
        role: Role,
        cached_key: bytes | None = None,
    ) -> OpenedMessage:
        """Open one copy of ``record`` and return raw plaintext bytes.

        A cached AES key is tried first; when it is missing or does not fit,
        the role's wrapped key is unwrapped with RSA and used instead.

        Raises:
            EnvelopeError: If the RSA unwrap or the AEAD check fails.
        """
        copy = EnvelopeService.copy_for(record, role)

        if cached_key:
            plaintext = EnvelopeService._try_key(cached_key, copy)
            if plaintext is not None:
                return OpenedMessage(plaintext=plaintext, aes_key=cached_key)

        try:
            aes_key = self_private.decrypt(copy.wrapped_key, _OAEP)
        except ValueError as err:
            raise EnvelopeError("corrupt envelope: key unwrap failed") from err

        plaintext = EnvelopeService._try_key(aes_key, copy)
        if plaintext is None:
            raise EnvelopeError("corrupt envelope: integrity check failed")
        return OpenedMessage(plaintext=plaintext, aes_key=aes_key)

    @staticmethod
    def decrypt(
        record: MessageRecord,
        self_private: RSAPrivateKey,
        role: Role,
        cached_key: bytes | None = None,
    ) -> OpenedMessage:
        """Open one copy of ``record`` as UTF-8 text.

        The returned AES key lets callers refresh their per-peer cache.

        Raises:
            EnvelopeError: On unwrap, integrity or UTF-8 failure.
        """
        opened = EnvelopeService.decrypt_bytes(record, self_private, role, cached_key)
        try:
            text = bytes(opened.plaintext).decode("utf-8")
        except UnicodeDecodeError as err:
            raise EnvelopeError("corrupt envelope: plaintext is not UTF-8") from err
        return OpenedMessage(plaintext=text, aes_key=opened.aes_key)
