# SPDX-License-Identifier: Apache-2.0

"""
Audit entry signing with JWT.

This module signs the SHA-256 digest of an audit entry's canonical bytes
plus its timestamp as a compact JWT, RS256 with a dedicated key pair by
default or HS256 with a shared secret.
"""

import os
import hashlib
import jwt
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from opentelemetry import trace
import logging

from domain.errors import SignatureFailure

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("RS256", "HS256")


def content_digest(canonical: bytes) -> str:
    """SHA-256 hex digest of canonical bytes, also used as the unsigned fallback."""
    return hashlib.sha256(canonical).hexdigest()


def generate_dev_key_pair() -> Tuple[str, str]:
    """Generate RSA key pair for development use."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048
    )

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ).decode('utf-8')

    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode('utf-8')

    return private_pem, public_pem


@dataclass
class SigningConfig:
    """Audit signing configuration."""
    algorithm: str = "RS256"
    private_key: Optional[str] = None
    public_key: Optional[str] = None
    secret: Optional[str] = None
    key_id: str = "audit-1"


class AuditSigner:
    """
    Signs and verifies audit entry digests.

    The token payload carries the content digest and the entry timestamp,
    so verification fails if either the stored bytes or the timestamp change.
    """

    def __init__(self, config: SigningConfig):
        if config.algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported signing algorithm: {config.algorithm}")
        self.config = config
        self.algorithm = config.algorithm
        self.key_id = config.key_id

        if self.algorithm == "HS256":
            if not config.secret:
                raise ValueError("HS256 audit signing requires a shared secret")
            self._signing_key = config.secret
            self._verification_key = config.secret
        else:
            if not config.private_key or not config.public_key:
                raise ValueError("RS256 audit signing requires a private and public key")
            self._signing_key = config.private_key
            self._verification_key = config.public_key

        logger.info(f"Audit signer initialized with {self.algorithm}", extra={"key_id": self.key_id})

    def sign(self, canonical: bytes, timestamp: datetime) -> str:
        """
        Sign canonical bytes plus timestamp.

        Args:
            canonical: Canonical byte form of the entry
            timestamp: Entry timestamp

        Returns:
            Compact JWT

        Raises:
            SignatureFailure: if the token cannot be produced
        """
        with tracer.start_as_current_span("audit_signer.sign") as span:
            span.set_attributes({
                "signing.algorithm": self.algorithm,
                "signing.key_id": self.key_id
            })
            payload = {
                "digest": content_digest(canonical),
                "ts": timestamp.isoformat()
            }
            try:
                return jwt.encode(
                    payload,
                    self._signing_key,
                    algorithm=self.algorithm,
                    headers={"kid": self.key_id}
                )
            except Exception as e:
                span.record_exception(e)
                raise SignatureFailure(f"Failed to sign audit entry: {str(e)}") from e

    def verify(self, token: str, canonical: bytes, timestamp: datetime) -> bool:
        """Check a token against canonical bytes plus timestamp."""
        with tracer.start_as_current_span("audit_signer.verify") as span:
            try:
                claims = jwt.decode(
                    token,
                    self._verification_key,
                    algorithms=[self.algorithm],
                    options={"require": ["digest", "ts"]}
                )
            except jwt.InvalidTokenError as e:
                span.set_attribute("signing.verification_result", "invalid_token")
                logger.warning(f"Audit signature rejected: {str(e)}")
                return False

            matches = (
                claims.get("digest") == content_digest(canonical)
                and claims.get("ts") == timestamp.isoformat()
            )
            span.set_attribute("signing.verification_result", "valid" if matches else "mismatch")
            return matches


def create_audit_signer() -> AuditSigner:
    """Create audit signer from environment configuration."""
    algorithm = os.getenv("AUDIT_SIGNING_ALGORITHM", "RS256").upper()
    key_id = os.getenv("AUDIT_SIGNING_KEY_ID", "audit-1")

    if algorithm == "HS256":
        return AuditSigner(SigningConfig(
            algorithm="HS256",
            secret=os.getenv("AUDIT_SIGNING_SECRET"),
            key_id=key_id
        ))

    private_key = os.getenv("AUDIT_SIGNING_PRIVATE_KEY")
    public_key = os.getenv("AUDIT_SIGNING_PUBLIC_KEY")
    if not private_key or not public_key:
        logger.warning("No AUDIT_SIGNING_PRIVATE_KEY/PUBLIC_KEY found, generating development key pair")
        private_key, public_key = generate_dev_key_pair()
        key_id = f"{key_id}-dev"

    return AuditSigner(SigningConfig(
        algorithm=algorithm,
        private_key=private_key,
        public_key=public_key,
        key_id=key_id
    ))
