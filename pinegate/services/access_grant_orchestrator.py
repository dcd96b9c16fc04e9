"""Access grant orchestrator: give and take away buyer access on TradingView.

One attempt runs these steps in order:
    1. Claim the grant and bump its attempt counter
    2. Load the seller connection and decrypt the session
    3. Confirm the buyer username exists on TradingView
    4. Resolve the script id through the seller's catalog
    5. Compute the expiry from the access type
    6. Call the access-add endpoint and interpret the answer
    7. Verify the buyer shows up in the access list (best effort)
    8. Persist the terminal status and append an assignment log entry

Every error raised by a step is caught here, written to the grant and its
log, and returned as a structured failure. Nothing is retried automatically;
the caller triggers a retry by calling assign() again.

Grant lifecycle:
    pending -> assigned | failed
    failed / expired -> (assign again) pending -> assigned | failed
    assigned -> expired (revoke only)
"""

import json
import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from pinegate.config import PineGateConfig
from pinegate.db.models import (
    AccessGrant,
    AccessType,
    CatalogEntry,
    GrantStatus,
    generate_uuid,
    parse_iso,
)
from pinegate.errors import (
    AmbiguousResponseError,
    ConflictError,
    DomainError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from pinegate.errors.registry import get_error
from pinegate.services.assignment_log_service import AssignmentLogService
from pinegate.services.credential_vault import CredentialVault
from pinegate.services.platform_client import PlatformResponse, TradingViewClient, format_expiration
from pinegate.services.platform_types import SessionCookies, is_valid_script_id
from pinegate.services.seller_connection_service import SellerConnectionService
from pinegate.utils.redaction import redact_for_logging, sanitize_error_message

logger = logging.getLogger(__name__)

_NEGATED_EXIST = re.compile(r"\b(?:not|no longer|never)\s+exists?\b|n't\s+exists?\b")


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _response_error_message(data: Any) -> str | None:
    """Pull an error message out of a pine_perm JSON body, if it carries one."""
    if not isinstance(data, dict):
        return None
    error = data.get("error") or data.get("detail")
    if isinstance(error, dict):
        error = error.get("message") or error.get("detail") or json.dumps(error)
    if error:
        return str(error)
    if data.get("status") == "error":
        return str(data.get("message") or "TradingView reported an error")
    return None


def _means_already_granted(message: str) -> bool:
    if "already" in message:
        return True
    return "exist" in message and not _NEGATED_EXIST.search(message)


def interpret_add_response(response: PlatformResponse) -> dict:
    """Decide what a 2xx access-add response means.

    Returns:
        {"already_had_access": bool} for a recognized success.

    Raises:
        ExternalServiceError: TradingView reported an error other than
            "already has access".
        AmbiguousResponseError: The body matches no known shape.
    """
    data = response.data
    if isinstance(data, dict) and data.get("status") == "ok":
        return {"already_had_access": False}

    message = _response_error_message(data)
    if message:
        lowered = message.lower()
        if _means_already_granted(lowered):
            return {"already_had_access": True}
        raise ExternalServiceError(
            f"TradingView returned an error: {message}",
            code="E-4001",
            details={"response": response.to_details()},
        )

    raise AmbiguousResponseError(
        "Unrecognized access-add response from TradingView",
        details={"response": response.to_details()},
    )


def _iter_usernames(data: Any, depth: int = 0):
    if depth > 5:
        return
    if isinstance(data, dict):
        username = data.get("username")
        if isinstance(username, str):
            yield username
        for value in data.values():
            if isinstance(value, (dict, list)):
                yield from _iter_usernames(value, depth + 1)
    elif isinstance(data, list):
        for item in data:
            yield from _iter_usernames(item, depth + 1)


class AccessGrantOrchestrator:
    """Runs assign, revoke and verify for one grant at a time.

    Args:
        db: SQLAlchemy session.
        vault: Credential vault for decrypting seller sessions.
        config: Full application config (platform + grants sections are used).
        http_client: Optional httpx.Client passed through to TradingViewClient.
        clock: Returns the current aware UTC datetime. Injected by tests.
    """

    def __init__(
        self,
        db: Session,
        vault: CredentialVault,
        config: PineGateConfig | None = None,
        http_client: httpx.Client | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db
        self._config = config or PineGateConfig()
        self._http_client = http_client
        self._clock = clock or _utc_now
        self._connections = SellerConnectionService(
            db, vault, self._config.platform, http_client
        )
        self._audit = AssignmentLogService(db)

    # --- Public operations ---

    def assign(
        self,
        pine_id: str,
        buyer_username: str,
        grant_id: str,
        access_type: str | None = None,
        trial_duration_days: int | None = None,
        subscription_expires_at: datetime | str | None = None,
    ) -> dict:
        """Grant the buyer access to the seller's script.

        Args:
            pine_id: Identifier the purchase was made against.
            buyer_username: Buyer's TradingView username.
            grant_id: AccessGrant primary key.
            access_type: Overrides the grant's stored access type.
            trial_duration_days: Trial length; defaults to the grant's value,
                then to grants.default_trial_days.
            subscription_expires_at: Expiry for subscription grants; defaults
                to the grant's stored value.

        Returns:
            On success: {"success": True, "grant_id", "status", "expires_at",
            "verification", "attempts", "message"}.
            On failure: {"success": False, "error", "code", "grant_id",
            "status", "attempts", "retryable", "details"}.
        """
        try:
            grant = self._load_grant(pine_id, buyer_username, grant_id)
        except DomainError as e:
            return self._failure_result(grant_id, e)

        if grant.status == GrantStatus.assigned.value:
            logger.info("Grant %s is already assigned; nothing to do", grant.id)
            return self._success_result(
                grant, f"Access already granted to {grant.buyer_username}",
                verification=self._details(grant).get("verification"),
            )

        try:
            token = self._claim(grant)
        except ConflictError as e:
            return self._failure_result(grant.id, e, grant)

        try:
            if buyer_username.strip() != grant.buyer_username:
                logger.info(
                    "Grant %s buyer username changed from %s to %s",
                    grant.id, grant.buyer_username, buyer_username.strip(),
                )
                grant.buyer_username = buyer_username.strip()

            now = self._clock()
            grant.attempts = (grant.attempts or 0) + 1
            grant.last_attempt_at = now.isoformat()
            grant.status = GrantStatus.pending.value
            grant.updated_at = now.isoformat()
            self._audit.log_attempt(grant, "assign")
            self._db.commit()

            try:
                return self._run_assign(
                    grant, access_type, trial_duration_days, subscription_expires_at,
                )
            except Exception as e:
                self._db.rollback()
                error = self._as_domain_error(e, "assign", grant)
                self._record_failure(grant, error, new_status=GrantStatus.failed)
                return self._failure_result(grant.id, error, grant)
        finally:
            self._release(grant.id, token)

    def revoke(self, pine_id: str, buyer_username: str, grant_id: str) -> dict:
        """Remove the buyer's access and mark the grant expired.

        Any 2xx from the access-remove endpoint expires the grant, whatever
        the body says; the body is stored for audit. HTTP failures leave the
        status unchanged.

        Returns:
            On success: {"success": True, "grant_id", "status", "message"}.
            On failure: same shape as assign() failures.
        """
        try:
            grant = self._load_grant(pine_id, buyer_username, grant_id)
        except DomainError as e:
            return self._failure_result(grant_id, e)

        if grant.status == GrantStatus.expired.value:
            return {
                "success": True,
                "grant_id": grant.id,
                "status": grant.status,
                "message": "Grant already expired",
            }

        try:
            token = self._claim(grant)
        except ConflictError as e:
            return self._failure_result(grant.id, e, grant)

        try:
            self._audit.log_attempt(grant, "revoke")
            self._db.commit()
            try:
                return self._run_revoke(grant)
            except Exception as e:
                self._db.rollback()
                error = self._as_domain_error(e, "revoke", grant)
                self._record_failure(grant, error, new_status=None)
                return self._failure_result(grant.id, error, grant)
        finally:
            self._release(grant.id, token)

    def mark_expired(self, grant_id: str, reason: str, code: str | None = None) -> dict:
        """Expire a grant without calling TradingView.

        For access that has run out when the remove call could not be made.
        The reason is kept under details_json["revocation"] and logged as a
        warning; the buyer may keep access on TradingView until removed by hand.
        """
        grant = self._db.get(AccessGrant, grant_id)
        if grant is None:
            return self._failure_result(
                grant_id, NotFoundError(f"Grant {grant_id} not found", code="E-3003")
            )
        if grant.status == GrantStatus.expired.value:
            return {
                "success": True,
                "grant_id": grant.id,
                "status": grant.status,
                "message": "Grant already expired",
            }

        now = self._clock()
        details = self._details(grant)
        details["revocation"] = {
            "removed": False,
            "error": sanitize_error_message(reason),
            "error_code": code,
            "expired_at": now.isoformat(),
        }
        grant.status = GrantStatus.expired.value
        grant.error_message = sanitize_error_message(reason)
        grant.details_json = json.dumps(redact_for_logging(details), default=str)
        grant.updated_at = now.isoformat()

        message = f"Grant expired; access removal failed: {reason}"
        self._audit.log_warning(grant, message, {"error_code": code})
        self._db.commit()

        logger.warning("Grant %s expired without removing access: %s", grant.id, reason)
        return {
            "success": True,
            "grant_id": grant.id,
            "status": grant.status,
            "message": message,
        }

    def verify(self, grant_id: str) -> dict:
        """Check whether the buyer currently appears in the script's access list.

        Read-only: never changes the grant status.

        Returns:
            {"grant_id", "status", "can_verify", "has_access"} plus "error"
            when the check could not run.
        """
        grant = self._db.get(AccessGrant, grant_id)
        if grant is None:
            return self._failure_result(
                grant_id, NotFoundError(f"Grant {grant_id} not found", code="E-3003")
            )
        try:
            cookies = self._session_for(grant)
            script_id = grant.script_id if is_valid_script_id(grant.script_id) else \
                self.resolve_script_id(grant.seller_id, grant.pine_id)
        except DomainError as e:
            return {
                "grant_id": grant.id,
                "status": grant.status,
                "can_verify": False,
                "has_access": None,
                "error": e.message,
                "code": e.code,
            }

        with self._client(cookies) as tv:
            result = self._verify_access(tv, script_id, grant.buyer_username)
        return {"grant_id": grant.id, "status": grant.status, **result}

    def resolve_script_id(self, seller_id: str, pine_id: str) -> str:
        """Map a grant's pine id to the script id the pine_perm endpoints accept.

        Looks the value up as a catalog pine id first, then as a catalog
        script id. The entry's script id is used when it has the PUB;... form,
        otherwise its pine id when that does.

        Raises:
            NotFoundError: No catalog entry for either lookup (E-3002).
            ValidationError: The entry has no id in the accepted form (E-1002).
        """
        query = self._db.query(CatalogEntry).filter(CatalogEntry.seller_id == seller_id)
        entry = query.filter(CatalogEntry.pine_id == pine_id).first()
        if entry is None:
            entry = query.filter(CatalogEntry.script_id == pine_id).first()
        if entry is None:
            raise NotFoundError(
                f'Script "{pine_id}" not found in the seller\'s synced catalog',
                code="E-3002",
                details={"pine_id": pine_id},
            )

        for candidate in (entry.script_id, entry.pine_id):
            if is_valid_script_id(candidate):
                return candidate

        template = get_error("E-1002").message_template
        raise ValidationError(
            template.format(script_id=entry.script_id),
            code="E-1002",
            details={"pine_id": pine_id, "script_id": entry.script_id},
        )

    # --- Attempt bodies ---

    def _run_assign(
        self,
        grant: AccessGrant,
        access_type: str | None,
        trial_duration_days: int | None,
        subscription_expires_at: datetime | str | None,
    ) -> dict:
        access = self._resolve_access_type(grant, access_type)
        cookies = self._session_for(grant)

        with self._client(cookies) as tv:
            self._check_username(tv, grant.buyer_username)

            script_id = self.resolve_script_id(grant.seller_id, grant.pine_id)
            grant.script_id = script_id

            expires_at = self._compute_expiry(
                grant, access, trial_duration_days, subscription_expires_at,
            )

            logger.info(
                "Granting %s access to %s (expires %s)",
                grant.buyer_username, script_id, expires_at.isoformat() if expires_at else "never",
            )
            response = tv.add_access(script_id, grant.buyer_username, expiration=expires_at)

            ambiguous = False
            try:
                outcome = interpret_add_response(response)
            except AmbiguousResponseError as e:
                if not self._config.grants.accept_ambiguous_response:
                    raise
                logger.warning(
                    "Grant %s: %s; treating as success", grant.id, e.message,
                )
                ambiguous = True
                outcome = {"already_had_access": False}

            verification = self._verify_access(tv, script_id, grant.buyer_username)

        now = self._clock()
        details = {
            "pine_id": grant.pine_id,
            "script_id": script_id,
            "buyer_username": grant.buyer_username,
            "access_type": access.value,
            "expiration": format_expiration(expires_at) if expires_at else None,
            "response": response.to_details(),
            "already_had_access": outcome["already_had_access"],
            "ambiguous_response": ambiguous,
            "verification": verification,
            "assigned_at": now.isoformat(),
        }

        grant.status = GrantStatus.assigned.value
        grant.assigned_at = now.isoformat()
        grant.expires_at = expires_at.isoformat() if expires_at else None
        grant.error_message = None
        grant.details_json = json.dumps(redact_for_logging(details), default=str)
        grant.updated_at = now.isoformat()

        if outcome["already_had_access"]:
            message = f"User {grant.buyer_username} already has access or access was granted"
        else:
            message = f"Successfully granted access to {grant.buyer_username}"
        if ambiguous:
            self._audit.log_warning(grant, f"{message} (unrecognized response)", details)
        else:
            self._audit.log_success(grant, message, details)
        self._db.commit()

        logger.info("Grant %s assigned after %d attempt(s)", grant.id, grant.attempts)
        return self._success_result(grant, message, verification=verification)

    def _run_revoke(self, grant: AccessGrant) -> dict:
        cookies = self._session_for(grant)
        script_id = grant.script_id if is_valid_script_id(grant.script_id) else \
            self.resolve_script_id(grant.seller_id, grant.pine_id)

        with self._client(cookies) as tv:
            response = tv.remove_access(script_id, grant.buyer_username)

        now = self._clock()
        details = self._details(grant)
        details.update({
            "script_id": script_id,
            "revocation": {
                "response": response.to_details(),
                "revoked_at": now.isoformat(),
            },
        })

        grant.script_id = script_id
        grant.status = GrantStatus.expired.value
        grant.error_message = None
        grant.details_json = json.dumps(redact_for_logging(details), default=str)
        grant.updated_at = now.isoformat()

        message = f"Access revoked for {grant.buyer_username}"
        self._audit.log_success(grant, message, {"response": response.to_details()})
        self._db.commit()

        logger.info("Grant %s revoked", grant.id)
        return {
            "success": True,
            "grant_id": grant.id,
            "status": grant.status,
            "message": message,
        }

    # --- Steps ---

    def _load_grant(self, pine_id: str, buyer_username: str, grant_id: str) -> AccessGrant:
        missing = [
            name for name, value in (
                ("pine_id", pine_id), ("buyer_username", buyer_username), ("grant_id", grant_id),
            )
            if not value or not str(value).strip()
        ]
        if missing:
            raise ValidationError(
                f"Missing required parameters: {', '.join(missing)}",
                code="E-1001",
                details={"fields": missing},
            )

        grant = self._db.get(AccessGrant, grant_id)
        if grant is None:
            raise NotFoundError(f"Grant {grant_id} not found", code="E-3003")
        if grant.pine_id != pine_id:
            error = ValidationError(
                f"Grant {grant_id} is for pine id {grant.pine_id}, not {pine_id}",
                code="E-1004",
                details={"requested_pine_id": pine_id},
            )
            logger.warning("Grant %s rejected: %s", grant.id, error.message)
            self._record_failure(grant, error, new_status=None)
            raise error
        return grant

    def _session_for(self, grant: AccessGrant) -> SessionCookies:
        connection = self._connections.get_active_connection(grant.seller_id)
        return self._connections.get_session(connection)

    def _client(self, cookies: SessionCookies) -> TradingViewClient:
        return TradingViewClient(cookies, self._config.platform, http_client=self._http_client)

    def _check_username(self, tv: TradingViewClient, username: str) -> None:
        hints = tv.username_hints(username)
        wanted = username.lower()
        if not any(str(h.get("username", "")).lower() == wanted for h in hints):
            raise NotFoundError(
                f'TradingView username "{username}" not found',
                code="E-3001",
                details={"candidates": [h.get("username") for h in hints[:10]]},
            )

    def _resolve_access_type(self, grant: AccessGrant, access_type: str | None) -> AccessType:
        value = access_type or grant.access_type or AccessType.full_purchase.value
        try:
            access = AccessType(value)
        except ValueError:
            raise ValidationError(
                f"Invalid access type '{value}'. Must be one of: "
                f"{', '.join(t.value for t in AccessType)}",
                code="E-1003",
            ) from None
        grant.access_type = access.value
        return access

    def _compute_expiry(
        self,
        grant: AccessGrant,
        access: AccessType,
        trial_duration_days: int | None,
        subscription_expires_at: datetime | str | None,
    ) -> datetime | None:
        """full_purchase: lifetime. trial: now + N days. subscription: caller's expiry."""
        if access == AccessType.full_purchase:
            return None

        if access == AccessType.trial:
            days = trial_duration_days
            if days is None:
                days = grant.trial_duration_days
            if days is None:
                days = self._config.grants.default_trial_days
            if days <= 0:
                raise ValidationError(
                    f"Trial duration must be positive (got {days})", code="E-1003",
                )
            grant.trial_duration_days = days
            return self._clock() + timedelta(days=days)

        expires = subscription_expires_at or grant.subscription_expires_at
        if isinstance(expires, str):
            try:
                expires = parse_iso(expires)
            except ValueError:
                raise ValidationError(
                    f"Invalid subscription expiry '{expires}'", code="E-1001",
                ) from None
        if expires is None:
            raise ValidationError(
                "Missing required parameters: subscription_expires_at",
                code="E-1001",
                details={"fields": ["subscription_expires_at"]},
            )
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=UTC)
        grant.subscription_expires_at = expires.isoformat()
        return expires

    def _verify_access(self, tv: TradingViewClient, script_id: str, username: str) -> dict:
        """Best-effort access-list check. Never raises."""
        try:
            response = tv.list_access(script_id, username)
        except DomainError as e:
            logger.info("Verification for %s skipped: %s", username, e.message)
            return {"can_verify": False, "has_access": None, "error": e.message}

        if not response.is_json:
            return {"can_verify": False, "has_access": None, "error": "Non-JSON access list"}

        wanted = username.lower()
        usernames = [u.lower() for u in _iter_usernames(response.data)]
        return {"can_verify": True, "has_access": wanted in usernames}

    # --- Claim ---

    def _claim(self, grant: AccessGrant) -> str:
        """Take the per-grant attempt claim, or raise ConflictError.

        A single conditional UPDATE: succeeds when nobody holds the claim or
        the holder's claim is older than grants.claim_timeout_seconds.
        """
        token = generate_uuid()
        now = self._clock()
        stale_before = (
            now - timedelta(seconds=self._config.grants.claim_timeout_seconds)
        ).isoformat()
        result = self._db.execute(
            update(AccessGrant)
            .where(AccessGrant.id == grant.id)
            .where(or_(AccessGrant.lock_token.is_(None), AccessGrant.locked_at < stale_before))
            .values(lock_token=token, locked_at=now.isoformat())
            .execution_options(synchronize_session=False)
        )
        self._db.commit()
        if result.rowcount == 0:
            template = get_error("E-1005").message_template
            raise ConflictError(template.format(grant_id=grant.id), code="E-1005")
        self._db.refresh(grant)
        return token

    def _release(self, grant_id: str, token: str) -> None:
        self._db.execute(
            update(AccessGrant)
            .where(AccessGrant.id == grant_id, AccessGrant.lock_token == token)
            .values(lock_token=None, locked_at=None)
            .execution_options(synchronize_session=False)
        )
        self._db.commit()

    # --- Outcome persistence ---

    def _as_domain_error(self, exc: Exception, action: str, grant: AccessGrant) -> DomainError:
        if isinstance(exc, DomainError):
            logger.warning(
                "Grant %s %s failed: %s %s", grant.id, action, exc.code, exc.message,
            )
            return exc
        logger.exception("Unexpected error during %s of grant %s", action, grant.id)
        return DomainError(
            f"Internal error during {action}: {type(exc).__name__}",
            code="E-5001",
        )

    def _record_failure(
        self, grant: AccessGrant, error: DomainError, new_status: GrantStatus | None,
    ) -> None:
        now = self._clock()
        details = self._details(grant)
        details.update({
            "pine_id": grant.pine_id,
            "buyer_username": grant.buyer_username,
            "error": error.to_dict(),
            "error_details": error.details,
            "failed_at": now.isoformat(),
        })
        if new_status is not None:
            grant.status = new_status.value
        grant.error_message = sanitize_error_message(error.message)
        grant.details_json = json.dumps(redact_for_logging(details), default=str)
        grant.updated_at = now.isoformat()
        self._audit.log_failure(grant, error.code, error.message, error.details)
        self._db.commit()

    def _details(self, grant: AccessGrant) -> dict:
        if not grant.details_json:
            return {}
        try:
            details = json.loads(grant.details_json)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Corrupt details_json for grant %s; starting fresh", grant.id)
            return {}
        return details if isinstance(details, dict) else {}

    def _success_result(self, grant: AccessGrant, message: str, verification: dict | None) -> dict:
        details = self._details(grant)
        result = {
            "success": True,
            "grant_id": grant.id,
            "status": grant.status,
            "expires_at": grant.expires_at,
            "verification": verification,
            "attempts": grant.attempts,
            "message": message,
        }
        if details.get("ambiguous_response"):
            result["ambiguous_response"] = True
        return result

    def _failure_result(
        self, grant_id: str, error: DomainError, grant: AccessGrant | None = None,
    ) -> dict:
        return {
            "success": False,
            "error": error.message,
            "code": error.code,
            "grant_id": grant_id,
            "status": grant.status if grant is not None else None,
            "attempts": grant.attempts if grant is not None else None,
            "retryable": error.is_retryable,
            "details": redact_for_logging(error.details),
        }
