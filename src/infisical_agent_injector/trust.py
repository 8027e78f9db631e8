"""Webhook trust bootstrap.

At startup the webhook creates a fresh self-signed serving certificate,
writes it where the HTTPS listener reads it, and, in the background,
publishes it as the CA bundle of its MutatingWebhookConfiguration so the
API server trusts it. Publishing is best effort: after a bounded number
of attempts a warning is logged and the webhook keeps serving.
"""

import base64
import ipaddress
import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, NamedTuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import MaxRetryError

from infisical_agent_injector.constants import (
    CA_BUNDLE_PATCH_PATH,
    CERT_VALIDITY_DAYS,
    REGISTRATION_ATTEMPTS,
    REGISTRATION_DELAY_SECONDS,
    SERVICE_NAME,
    WEBHOOK_CONFIG_NAME,
)
from infisical_agent_injector.exceptions import CertificateError

log = logging.getLogger(__name__)

CERT_FILE_NAME = "tls.crt"
KEY_FILE_NAME = "tls.key"


class TlsMaterial(NamedTuple):
    """PEM encoded serving certificate and private key."""

    cert_pem: bytes
    key_pem: bytes


class TlsPaths(NamedTuple):
    """Where the serving certificate and key were written."""

    cert_file: Path
    key_file: Path


def tls_paths(cert_dir: Path) -> TlsPaths:
    """Return the certificate and key paths inside ``cert_dir``."""
    return TlsPaths(cert_file=cert_dir / CERT_FILE_NAME, key_file=cert_dir / KEY_FILE_NAME)


def service_dns_names(namespace: str) -> list[str]:
    """Return the in-cluster DNS names of the webhook service."""
    return [
        SERVICE_NAME,
        f"{SERVICE_NAME}.{namespace}",
        f"{SERVICE_NAME}.{namespace}.svc",
    ]


def generate_self_signed_cert(namespace: str, *, now: datetime | None = None) -> TlsMaterial:
    """Generate a self-signed serving certificate for the webhook service.

    Args:
        namespace: Namespace the webhook service runs in.
        now: Start of the validity period, the current time by default.

    Returns:
        The PEM encoded certificate and RSA private key.

    Raises:
        CertificateError: If key or certificate generation fails.

    """
    not_before = now or datetime.now(timezone.utc)

    try:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        name = x509.Name(
            [
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Infisical"),
                x509.NameAttribute(NameOID.COMMON_NAME, "infisical-agent-injector"),
            ]
        )
        alt_names: list[x509.GeneralName] = [x509.DNSName(dns_name) for dns_name in service_dns_names(namespace)]
        alt_names.append(x509.IPAddress(ipaddress.ip_address("127.0.0.1")))

        certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_before + timedelta(days=CERT_VALIDITY_DAYS))
            .add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
            .sign(private_key, hashes.SHA256())
        )
    except (ValueError, TypeError) as err:
        raise CertificateError(f"Failed to generate certificate: {err}") from err

    return TlsMaterial(
        cert_pem=certificate.public_bytes(serialization.Encoding.PEM),
        key_pem=private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        ),
    )


def write_tls_material(material: TlsMaterial, cert_dir: Path) -> TlsPaths:
    """Write the certificate and key for the HTTPS listener.

    Args:
        material: The PEM encoded certificate and key.
        cert_dir: Directory to write ``tls.crt`` and ``tls.key`` to.

    Returns:
        The written paths.

    Raises:
        CertificateError: If the files cannot be written.

    """
    paths = tls_paths(cert_dir)
    try:
        cert_dir.mkdir(parents=True, exist_ok=True)
        log.info("Writing cert to: %s", paths.cert_file)
        paths.cert_file.write_bytes(material.cert_pem)
        log.info("Writing key to: %s", paths.key_file)
        paths.key_file.write_bytes(material.key_pem)
        paths.key_file.chmod(0o600)
    except OSError as err:
        raise CertificateError(f"Failed to write TLS material to {cert_dir}: {err}") from err
    return paths


def ca_bundle_patch(cert_pem: bytes) -> list[dict[str, Any]]:
    """Return the JSON patch publishing ``cert_pem`` as the webhook CA bundle."""
    return [
        {
            "op": "replace",
            "path": CA_BUNDLE_PATCH_PATH,
            "value": base64.b64encode(cert_pem).decode("utf-8"),
        }
    ]


def register_ca_bundle(
    cluster: Any,
    cert_pem: bytes,
    *,
    attempts: int = REGISTRATION_ATTEMPTS,
    delay: float = REGISTRATION_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Publish the certificate as the CA bundle of the webhook configuration.

    Args:
        cluster: Object exposing ``patch_mutating_webhook_configuration``.
        cert_pem: The PEM encoded serving certificate.
        attempts: How many times to try.
        delay: Seconds to wait after a failed attempt.
        sleep: Sleep function, replaceable in tests.

    Returns:
        True if the configuration was patched.

    """
    patch = ca_bundle_patch(cert_pem)
    for attempt in range(1, attempts + 1):
        log.info("Attempting to update webhook config (attempt %d)...", attempt)
        try:
            cluster.patch_mutating_webhook_configuration(WEBHOOK_CONFIG_NAME, patch)
        except (ApiException, MaxRetryError) as err:
            log.warning("Failed to patch webhook config: %s", err)
            if attempt < attempts:
                sleep(delay)
            continue

        log.info("Successfully updated webhook configuration with CA bundle")
        return True

    log.warning("Failed to update webhook configuration after %d attempts", attempts)
    return False


def start_ca_bundle_registration(cluster: Any, cert_pem: bytes) -> threading.Thread:
    """Run `register_ca_bundle` in a background daemon thread.

    Args:
        cluster: Object exposing ``patch_mutating_webhook_configuration``.
        cert_pem: The PEM encoded serving certificate.

    Returns:
        The started thread.

    """
    thread = threading.Thread(
        target=register_ca_bundle,
        args=(cluster, cert_pem),
        name="ca-bundle-registration",
        daemon=True,
    )
    thread.start()
    return thread
