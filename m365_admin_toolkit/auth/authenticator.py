"""
Authentication module — certificate, client-secret and delegated auth.
Uses MSAL for token acquisition against the Microsoft Identity Platform.
Tokens are acquired per resource scope (Graph, Power Platform admin APIs).
"""

from __future__ import annotations

import base64
import getpass
import logging
import os
from typing import Optional

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import msal

from ..config import AuthConfig, GRAPH_SCOPE

logger = logging.getLogger("m365_admin_toolkit.auth")

AUTHORITY_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}"


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


def load_pfx_credential(cert_path: str, password: str) -> dict:
    """
    Load a base64-encoded PFX and return an MSAL client credential
    ({"thumbprint", "private_key"}).
    """
    try:
        with open(cert_path, "r") as f:
            cert_base64 = f.read().strip()

        cert_bytes = base64.b64decode(cert_base64)
        password_bytes = password.encode("utf-8") if password else None

        private_key, certificate, _ = pkcs12.load_key_and_certificates(
            cert_bytes, password_bytes
        )
    except FileNotFoundError:
        raise AuthenticationError(f"Certificate file not found: {cert_path}")
    except Exception as e:
        raise AuthenticationError(f"Failed to load certificate: {e}")

    if private_key is None or certificate is None:
        raise AuthenticationError("PFX does not contain both a private key and a certificate")

    private_key_pem = private_key.private_bytes(
        Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
    ).decode("utf-8")
    thumbprint = certificate.fingerprint(SHA1()).hex()
    logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")

    return {"thumbprint": thumbprint, "private_key": private_key_pem}


class Authenticator:
    """
    Handles MSAL-based authentication.
    Supports:
      - Certificate-based app-only authentication
      - Client-secret app-only authentication
      - Delegated authentication (device code flow), with further
        resources acquired silently from the MSAL token cache
    """

    def __init__(self, config: AuthConfig):
        self.config = config
        self._app = None
        self._account: Optional[dict] = None
        self._tokens: dict[str, str] = {}

    async def acquire_token(self, scopes: Optional[list[str]] = None) -> str:
        """Acquire an access token for the given resource scopes."""
        scopes = scopes or [GRAPH_SCOPE]
        key = " ".join(scopes)
        if key in self._tokens:
            return self._tokens[key]

        if self.config.mode == "certificate":
            token = self._acquire_certificate_token(scopes)
        elif self.config.mode == "secret":
            token = self._acquire_secret_token(scopes)
        elif self.config.mode == "delegated":
            token = self._acquire_delegated_token(scopes)
        else:
            raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")

        self._tokens[key] = token
        return token

    def _confidential_token(self, scopes: list[str]) -> str:
        result = self._app.acquire_token_for_client(scopes=scopes)
        if "access_token" in result:
            logger.info(f"App-only token acquired for {scopes[0]}")
            return result["access_token"]
        error = result.get("error_description", result.get("error", "Unknown"))
        raise AuthenticationError(f"Token request failed: {error}")

    def _acquire_certificate_token(self, scopes: list[str]) -> str:
        """Acquire token using certificate-based client credentials."""
        if self._app is None:
            cert_config = self.config.certificate
            if not cert_config:
                raise AuthenticationError("Certificate auth config not provided.")

            logger.info("Authenticating with certificate-based app credentials...")
            password = cert_config.certificate_password
            if not password:
                password = os.environ.get("M365_CERT_PASSWORD", "")
            if not password:
                password = getpass.getpass("Enter the certificate password: ")

            credential = load_pfx_credential(cert_config.certificate_path, password)
            self._app = msal.ConfidentialClientApplication(
                client_id=cert_config.client_id,
                authority=AUTHORITY_TEMPLATE.format(tenant_id=cert_config.tenant_id),
                client_credential=credential,
            )
        return self._confidential_token(scopes)

    def _acquire_secret_token(self, scopes: list[str]) -> str:
        """Acquire token using a client secret."""
        if self._app is None:
            secret_config = self.config.secret
            if not secret_config:
                raise AuthenticationError("Secret auth config not provided.")

            logger.info("Authenticating with client secret...")
            secret = secret_config.client_secret or os.environ.get("M365_CLIENT_SECRET", "")
            if not secret:
                secret = getpass.getpass("Enter the client secret: ")

            self._app = msal.ConfidentialClientApplication(
                client_id=secret_config.client_id,
                authority=AUTHORITY_TEMPLATE.format(tenant_id=secret_config.tenant_id),
                client_credential=secret,
            )
        return self._confidential_token(scopes)

    def _acquire_delegated_token(self, scopes: list[str]) -> str:
        """Acquire token using the device code flow, then silently from cache."""
        deleg_config = self.config.delegated
        if not deleg_config:
            raise AuthenticationError("Delegated auth config not provided.")

        if self._app is None:
            self._app = msal.PublicClientApplication(
                client_id=deleg_config.client_id,
                authority=AUTHORITY_TEMPLATE.format(tenant_id=deleg_config.tenant_id),
            )

        if self._account:
            result = self._app.acquire_token_silent(scopes, account=self._account)
            if result and "access_token" in result:
                return result["access_token"]

        logger.info("Initiating device code authentication flow...")
        flow = self._app.initiate_device_flow(scopes=scopes)
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'='*60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'='*60}\n")

        result = self._app.acquire_token_by_device_flow(flow)

        if "access_token" in result:
            accounts = self._app.get_accounts()
            self._account = accounts[0] if accounts else None
            logger.info("Delegated authentication successful.")
            return result["access_token"]
        error = result.get("error_description", result.get("error", "Unknown"))
        raise AuthenticationError(f"Delegated auth failed: {error}")
