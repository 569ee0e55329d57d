"""
Expiration Analyzer
Classifies Apple tokens, Android enrollment tokens, and app registration
secrets/certificates as expired, near expiry, or healthy.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..expiration import classify_expiration, describe_expiration, parse_graph_datetime
from ..reporting.models import Status
from .base import BaseAnalyzer

logger = logging.getLogger("m365_admin_toolkit.analyzers.expiration")

CATEGORY_APPLE = "Apple Tokens"
CATEGORY_ENROLLMENT = "Enrollment Tokens"
CATEGORY_APP_CREDENTIALS = "App Credentials"


class ExpirationAnalyzer(BaseAnalyzer):
    name = "expiration_analyzer"
    category = CATEGORY_APPLE
    description = "Certificate, token and secret expiration"

    def _analyze(self, data: dict[str, Any]):
        if "apple_tokens" in data:
            self._analyze_apple(data["apple_tokens"])
        if "enrollment" in data:
            self._analyze_enrollment(data["enrollment"])
        if "app_credentials" in data:
            self._analyze_app_credentials(data["app_credentials"])

    # --- helpers ---

    def _classify(
        self,
        test_name: str,
        expiration: Optional[str],
        category: str,
        data: Optional[dict] = None,
        extra: str = "",
    ):
        expires_at = parse_graph_datetime(expiration)
        if expires_at is None:
            self.add_result(
                test_name,
                Status.WARNING,
                "No expiration date reported",
                data=data,
                category=category,
            )
            return
        state = classify_expiration(expires_at, self.config.expiry_threshold_days, self.now)
        details = describe_expiration(expires_at, self.now)
        if extra:
            details = f"{details}; {extra}"
        self.add_result(test_name, state.result_status, details, data=data, category=category)

    # --- Apple ---

    def _analyze_apple(self, section: dict):
        apns = section.get("apns_certificate") or {}
        if apns:
            self._classify(
                f"APNs certificate: {apns.get('appleIdentifier') or apns.get('topicIdentifier')}",
                apns.get("expirationDateTime"),
                CATEGORY_APPLE,
                data=apns,
            )
        elif self.permission_gap(section, "applePushNotificationCertificate"):
            self.add_result(
                "APNs certificate",
                Status.WARNING,
                "Could not read the APNs certificate (permission denied)",
                category=CATEGORY_APPLE,
            )
        else:
            self.add_result(
                "APNs certificate",
                Status.WARNING,
                "No APNs certificate configured; Apple devices cannot be managed",
                category=CATEGORY_APPLE,
            )

        for token in section.get("dep_tokens", []) or []:
            extra = ""
            if token.get("lastSyncErrorCode"):
                extra = f"last sync error code {token['lastSyncErrorCode']}"
            self._classify(
                f"DEP token: {token.get('tokenName') or token.get('appleIdentifier')}",
                token.get("tokenExpirationDateTime"),
                CATEGORY_APPLE,
                data=token,
                extra=extra,
            )

        for token in section.get("vpp_tokens", []) or []:
            name = token.get("displayName") or token.get("organizationName") or token.get("appleId")
            state = (token.get("state") or "").lower()
            if state and state != "valid":
                self.add_result(
                    f"VPP token: {name}",
                    Status.FAIL,
                    f"Token state is '{token.get('state')}'",
                    data=token,
                    category=CATEGORY_APPLE,
                )
                continue
            self._classify(
                f"VPP token: {name}",
                token.get("expirationDateTime"),
                CATEGORY_APPLE,
                data=token,
            )

    # --- Android Enterprise ---

    def _analyze_enrollment(self, section: dict):
        for profile in section.get("android_enrollment_profiles", []) or []:
            name = f"Android enrollment profile: {profile.get('displayName')}"
            if not profile.get("tokenExpirationDateTime") and not profile.get("hasToken"):
                # A revoked or never-created token is not an expiry problem
                self.add_result(
                    name,
                    Status.WARNING,
                    "Profile has no active enrollment token",
                    data=profile,
                    category=CATEGORY_ENROLLMENT,
                )
                continue
            self._classify(
                name,
                profile.get("tokenExpirationDateTime"),
                CATEGORY_ENROLLMENT,
                data=profile,
            )

    # --- App registrations ---

    def _analyze_app_credentials(self, section: dict):
        for cred in section.get("credentials", []) or []:
            label = cred.get("displayName") or (cred.get("keyId") or "")[:8]
            self._classify(
                f"{cred.get('appDisplayName')}: {cred.get('type')} {label}".strip(),
                cred.get("endDateTime"),
                CATEGORY_APP_CREDENTIALS,
                data={k: cred.get(k) for k in ("appId", "keyId", "type", "endDateTime")},
            )
