from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Literal

from jose import jws, jwt
from jose.exceptions import JOSEError

from app.core.config import Settings
from app.core.logging import get_logger
from app.services.errors import DecodeError

logger = get_logger(__name__)

# Symmetric algorithms are never accepted: the configured key is public.
ASYMMETRIC_ALGORITHMS = {"ES256", "ES384", "ES512", "RS256", "RS384", "RS512", "PS256", "PS384", "PS512"}

VerificationMode = Literal["strict", "structural"]


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    reason: str | None = None


def _unverified(token: str) -> tuple[dict, dict]:
    header = jwt.get_unverified_header(token)
    claims = jwt.get_unverified_claims(token)
    return header, claims


class SignatureVerifier:
    """Checks that a signed notification envelope comes from the billing provider.

    ``strict`` verifies the JWS signature against the configured public key and
    fails closed when no key is configured. ``structural`` only inspects the
    claims; it is refused at settings load time when ENV=prod.
    """

    def __init__(
        self,
        *,
        bundle_id: str | None,
        mode: VerificationMode = "strict",
        public_key: str | None = None,
        algorithms: list[str] | None = None,
    ):
        self.bundle_id = bundle_id
        self.mode = mode
        self.public_key = public_key.replace("\\n", "\n") if public_key else None
        allowed = [a.upper() for a in (algorithms or ["ES256", "RS256"])]
        self.algorithms = [a for a in allowed if a in ASYMMETRIC_ALGORITHMS]

    @classmethod
    def from_settings(cls, cfg: Settings) -> "SignatureVerifier":
        return cls(
            bundle_id=cfg.APPSTORE_BUNDLE_ID,
            mode=cfg.APPSTORE_VERIFICATION_MODE,
            public_key=cfg.APPSTORE_PUBLIC_KEY_PEM,
            algorithms=cfg.allowed_algorithms(),
        )

    def verify(self, token: str) -> VerificationResult:
        try:
            header, claims = _unverified(token)
        except JOSEError:
            return VerificationResult(False, "MALFORMED_TOKEN")

        data = claims.get("data") if isinstance(claims.get("data"), dict) else {}
        bundle_id = data.get("bundleId")
        if not self.bundle_id or bundle_id != self.bundle_id:
            logger.warning(
                "appstore bundle mismatch",
                extra={"extra_data": {"expected": self.bundle_id, "received": bundle_id}},
            )
            return VerificationResult(False, "BUNDLE_MISMATCH")

        if self.mode == "structural":
            return VerificationResult(True)

        if not self.public_key:
            return VerificationResult(False, "VERIFICATION_KEY_NOT_CONFIGURED")

        alg = str(header.get("alg") or "").upper()
        if alg not in self.algorithms:
            return VerificationResult(False, "ALGORITHM_NOT_ALLOWED")

        try:
            jws.verify(token, self.public_key, algorithms=[alg])
        except JOSEError:
            return VerificationResult(False, "SIGNATURE_INVALID")
        return VerificationResult(True)

    def load_claims(self, token: str) -> dict:
        """Claims of a nested signed token, verified the same way as the envelope."""
        try:
            if self.mode == "structural":
                return jwt.get_unverified_claims(token)
            if not self.public_key:
                raise DecodeError("clave de verificacion no configurada")
            header = jwt.get_unverified_header(token)
            alg = str(header.get("alg") or "").upper()
            if alg not in self.algorithms:
                raise DecodeError(f"algoritmo no permitido: {alg or 'none'}")
            raw = jws.verify(token, self.public_key, algorithms=[alg])
        except JOSEError as exc:
            raise DecodeError(f"token firmado invalido: {exc}") from exc
        try:
            claims = json.loads(raw)
        except ValueError as exc:
            raise DecodeError("claims no son JSON") from exc
        if not isinstance(claims, dict):
            raise DecodeError("claims no son un objeto")
        return claims
