"""
Certificate Engine adapter — key, CSR, certificate and CRL production.

Adapter layer — implements the CertificateEngine port with PyCA `cryptography`:
  - RSA key generation, PEM serialization (passphrase-protected when a
    secret is given, BestAvailableEncryption)
  - CSR creation with the subject's alternative names embedded
  - signing under one of three extension profiles (CA, HOST, CLIENT)
  - CRL signing with a CRLNumber extension

Every call is wrapped with Result.from_computation at this boundary, so
cryptography exceptions (bad passphrase, invalid CSR signature, ...) surface
as ErrorCode.ENGINE_ERROR failures.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from railway import ErrorCode
from railway.result import Result

from ca_manager.domain.models import CrlRequest, ExtensionProfile, SigningRequest, SubjectConfig

log = structlog.get_logger()

_PUBLIC_EXPONENT = 65537
_DIGEST = hashes.SHA256()
# Back-date notBefore slightly so freshly issued certificates validate on
# hosts whose clocks lag the CA's.
_CLOCK_SKEW = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _passphrase(secret: str | None) -> bytes | None:
    return secret.encode("utf-8") if secret else None


def _subject_name(config: SubjectConfig) -> x509.Name:
    """Build an X.509 name from the configured attributes, most general first."""
    attributes = [
        (NameOID.COUNTRY_NAME, config.country),
        (NameOID.STATE_OR_PROVINCE_NAME, config.state),
        (NameOID.LOCALITY_NAME, config.locality),
        (NameOID.ORGANIZATION_NAME, config.organization),
        (NameOID.ORGANIZATIONAL_UNIT_NAME, config.organizational_unit),
        (NameOID.COMMON_NAME, config.common_name),
        (NameOID.EMAIL_ADDRESS, config.email),
    ]
    return x509.Name([x509.NameAttribute(oid, value) for oid, value in attributes if value])


def _general_name(value: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(value))
    except ValueError:
        return x509.DNSName(value)


def _key_usage(*, cert_sign: bool, key_encipherment: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=key_encipherment,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=cert_sign,
        crl_sign=cert_sign,
        encipher_only=False,
        decipher_only=False,
    )


class CryptographyCertificateEngine:
    """
    Produce PEM key/CSR/certificate/CRL material with PyCA cryptography.

    Implements the CertificateEngine port. An empty or None secret means
    the key is (or is to be) stored unencrypted.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    # ──────────────────────── Port operations ────────────────────────

    def generate_key(self, bits: int, secret: str | None = None) -> Result[bytes]:
        return self._engine_call(lambda: self._generate_key(bits, secret), f"Key generation failed ({bits} bits)")

    def self_sign(
        self,
        key: bytes,
        secret: str | None,
        config: SubjectConfig,
        validity_days: int,
    ) -> Result[bytes]:
        return self._engine_call(
            lambda: self._self_sign(key, secret, config, validity_days),
            f"Self-signing failed for {config.common_name!r}",
        )

    def create_csr(self, key: bytes, secret: str | None, config: SubjectConfig) -> Result[bytes]:
        return self._engine_call(
            lambda: self._create_csr(key, secret, config),
            f"CSR creation failed for {config.common_name!r}",
        )

    def sign(self, request: SigningRequest) -> Result[bytes]:
        return self._engine_call(
            lambda: self._sign(request),
            f"Signing serial {request.serial:X} with the {request.profile.value} profile failed",
        )

    def generate_crl(self, request: CrlRequest) -> Result[bytes]:
        return self._engine_call(
            lambda: self._generate_crl(request),
            f"CRL generation failed (crl number {request.crl_number})",
        )

    def subject_of(self, pem: bytes) -> Result[str]:
        return self._engine_call(lambda: self._subject_of(pem), "Could not read subject from PEM data")

    # ──────────────────────── Implementation ────────────────────────

    @staticmethod
    def _engine_call(computation: Callable[[], bytes | str], message: str) -> Result:
        return Result.from_computation(computation, ErrorCode.ENGINE_ERROR, message, reason="EngineError")

    def _generate_key(self, bits: int, secret: str | None) -> bytes:
        key = rsa.generate_private_key(public_exponent=_PUBLIC_EXPONENT, key_size=bits)
        encryption: serialization.KeySerializationEncryption = (
            serialization.BestAvailableEncryption(_passphrase(secret))  # type: ignore[arg-type]
            if secret
            else serialization.NoEncryption()
        )
        log.debug("engine.key_generated", bits=bits, encrypted=bool(secret))
        return key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        )

    @staticmethod
    def _load_key(key: bytes, secret: str | None) -> rsa.RSAPrivateKey:
        loaded = serialization.load_pem_private_key(key, password=_passphrase(secret))
        if not isinstance(loaded, rsa.RSAPrivateKey):
            raise TypeError(f"Unsupported signing key type: {type(loaded).__name__}")
        return loaded

    def _self_sign(self, key: bytes, secret: str | None, config: SubjectConfig, validity_days: int) -> bytes:
        private_key = self._load_key(key, secret)
        name = _subject_name(config)
        now = self._clock()
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - _CLOCK_SKEW)
            .not_valid_after(now + timedelta(days=validity_days))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(_key_usage(cert_sign=True, key_encipherment=False), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()), critical=False)
            .sign(private_key, _DIGEST)
        )
        return cert.public_bytes(serialization.Encoding.PEM)

    def _create_csr(self, key: bytes, secret: str | None, config: SubjectConfig) -> bytes:
        private_key = self._load_key(key, secret)
        builder = x509.CertificateSigningRequestBuilder().subject_name(_subject_name(config))
        if config.alt_names:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([_general_name(n) for n in config.alt_names]),
                critical=False,
            )
        return builder.sign(private_key, _DIGEST).public_bytes(serialization.Encoding.PEM)

    def _sign(self, request: SigningRequest) -> bytes:
        ca_key = self._load_key(request.ca_key, request.ca_secret)
        ca_cert = x509.load_pem_x509_certificate(request.ca_cert)
        csr = x509.load_pem_x509_csr(request.csr)
        if not csr.is_signature_valid:
            raise ValueError("CSR signature does not verify")

        now = self._clock()
        builder = (
            x509.CertificateBuilder()
            .subject_name(csr.subject)
            .issuer_name(ca_cert.subject)
            .public_key(csr.public_key())
            .serial_number(request.serial)
            .not_valid_before(now - _CLOCK_SKEW)
            .not_valid_after(now + timedelta(days=request.validity_days))
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(csr.public_key()), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()), critical=False
            )
        )
        for extension, critical in self._profile_extensions(request.profile, csr):
            builder = builder.add_extension(extension, critical=critical)

        cert = builder.sign(ca_key, _DIGEST)
        log.debug("engine.signed", serial=f"{request.serial:X}", profile=request.profile.value)
        return cert.public_bytes(serialization.Encoding.PEM)

    @staticmethod
    def _profile_extensions(
        profile: ExtensionProfile, csr: x509.CertificateSigningRequest
    ) -> list[tuple[x509.ExtensionType, bool]]:
        """Extensions for the requested profile; end-entity SANs come from the CSR."""
        if profile is ExtensionProfile.CA:
            return [
                (x509.BasicConstraints(ca=True, path_length=None), True),
                (_key_usage(cert_sign=True, key_encipherment=False), True),
            ]

        usage = ExtendedKeyUsageOID.SERVER_AUTH if profile is ExtensionProfile.HOST else ExtendedKeyUsageOID.CLIENT_AUTH
        extensions: list[tuple[x509.ExtensionType, bool]] = [
            (x509.BasicConstraints(ca=False, path_length=None), True),
            (_key_usage(cert_sign=False, key_encipherment=True), True),
            (x509.ExtendedKeyUsage([usage]), False),
        ]
        try:
            san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        except x509.ExtensionNotFound:
            san = None
        if san is None and profile is ExtensionProfile.HOST:
            common_names = csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
            if common_names:
                san = x509.SubjectAlternativeName([_general_name(str(common_names[0].value))])
        if san is not None:
            extensions.append((san, False))
        return extensions

    def _generate_crl(self, request: CrlRequest) -> bytes:
        ca_key = self._load_key(request.ca_key, request.ca_secret)
        ca_cert = x509.load_pem_x509_certificate(request.ca_cert)
        now = self._clock()
        builder = (
            x509.CertificateRevocationListBuilder()
            .issuer_name(ca_cert.subject)
            .last_update(now)
            .next_update(now + timedelta(days=request.next_update_days))
            .add_extension(x509.CRLNumber(request.crl_number), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()), critical=False
            )
        )
        for entry in request.revoked:
            revoked = (
                x509.RevokedCertificateBuilder()
                .serial_number(entry.serial)
                .revocation_date(entry.revoked_at or now)
                .build()
            )
            builder = builder.add_revoked_certificate(revoked)
        crl = builder.sign(ca_key, _DIGEST)
        return crl.public_bytes(serialization.Encoding.PEM)

    @staticmethod
    def _subject_of(pem: bytes) -> str:
        if b"CERTIFICATE REQUEST" in pem:
            return x509.load_pem_x509_csr(pem).subject.rfc4514_string()
        return x509.load_pem_x509_certificate(pem).subject.rfc4514_string()
