import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt
from pydantic import ValidationError

from .errors import InvalidReportError, VerificationError
from .models import ProgressReport, VerifiedCredential

logger = logging.getLogger(__name__)

ADDRESS_CLAIM = "wallet_address"
DATA_CLAIM = "data"
REPORT_FIELDS = ("tokens", "punches", "referredBy", "characterName")


class CredentialVerifier:
    """Validates signed progress tokens.

    Two claim layouts are accepted: progress fields nested under ``data``
    next to ``wallet_address``, or the same fields at the top level.
    """

    def __init__(self, secret: str, algorithm: str = "HS256", leeway: int = 0):
        self.secret = secret
        self.algorithm = algorithm
        self.leeway = leeway

    def verify(self, token: str) -> VerifiedCredential:
        if not token or not isinstance(token, str):
            raise VerificationError("Missing token")
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm], leeway=self.leeway)
        except jwt.ExpiredSignatureError as e:
            logger.warning("Rejected expired token: %s", e)
            raise VerificationError("Token has expired") from e
        except jwt.InvalidTokenError as e:
            logger.warning("Rejected invalid token: %s", e)
            raise VerificationError("Invalid token") from e
        return self._credential_from_claims(claims)

    def _credential_from_claims(self, claims: dict[str, Any]) -> VerifiedCredential:
        address = claims.get(ADDRESS_CLAIM) or ""
        if not isinstance(address, str):
            raise InvalidReportError(f"{ADDRESS_CLAIM} must be a string")

        data = claims.get(DATA_CLAIM)
        if data is None:
            data = {k: claims[k] for k in REPORT_FIELDS if k in claims}
        if not isinstance(data, dict):
            raise InvalidReportError(f"{DATA_CLAIM} must be an object")

        try:
            report = ProgressReport.model_validate(data)
        except ValidationError as e:
            raise InvalidReportError(f"Malformed progress data: {e.errors()[0]['msg']}") from e
        return VerifiedCredential(address=address, report=report)

    def issue_token(
        self,
        address: str,
        report: Optional[ProgressReport] = None,
        expires_in: Optional[timedelta] = None,
    ) -> str:
        report = report or ProgressReport()
        claims: dict[str, Any] = {
            ADDRESS_CLAIM: address,
            DATA_CLAIM: report.model_dump(by_alias=True),
        }
        now = datetime.now(timezone.utc)
        claims["iat"] = now
        if expires_in is not None:
            claims["exp"] = now + expires_in
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)


if __name__ == "__main__":
    import sys
    from .config import get_settings

    settings = get_settings()
    verifier = CredentialVerifier(settings.jwt_secret, settings.jwt_algorithm)
    address = sys.argv[1] if len(sys.argv) > 1 else "dummy_wallet_address"
    sample = ProgressReport(tokens=100, punches=50, referred_by="dummy_referrer_address", character_name="dummy_character_name")
    print("Encoded JWT token:", verifier.issue_token(address, sample))
