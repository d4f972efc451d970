import asyncio
import ssl
from datetime import datetime, timezone

from cryptography import x509
from cryptography.x509.oid import NameOID

from .events import EventSink
from .models import CertificateData
from .results import FailureKind, FetchCategory, ProbeFailure, failure_from_exception
from .settings import DiggerConfig


def _attr(name: x509.Name, oid) -> str | None:
    values = name.get_attributes_for_oid(oid)
    if not values:
        return None
    value = values[0].value
    return value.decode("utf-8", errors="replace") if isinstance(value, bytes) else str(value)


def _unverified_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def parse_certificate(der: bytes, protocol: str | None = None, now: datetime | None = None) -> CertificateData:
    """
    Turn a DER-encoded peer certificate into CertificateData.

    Raises ValueError when the bytes are not a certificate.
    """
    now = now or datetime.now(timezone.utc)
    cert = x509.load_der_x509_certificate(der)
    not_before = cert.not_valid_before_utc
    not_after = cert.not_valid_after_utc
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        sans = san.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        sans = []

    return CertificateData(
        issuer=_attr(cert.issuer, NameOID.ORGANIZATION_NAME) or _attr(cert.issuer, NameOID.COMMON_NAME),
        subject=_attr(cert.subject, NameOID.COMMON_NAME),
        valid_from=not_before.isoformat(),
        valid_to=not_after.isoformat(),
        days_remaining=int((not_after - now).total_seconds() // 86400),
        subject_alt_names=sans or None,
        protocol=protocol,
    )


class TlsProbe:
    """
    Open a TLS connection to host:443 and read the peer certificate.

    A certificate that fails verification (self-signed, expired, wrong host)
    is read again over an unverified handshake so its details are still
    reported, with `verified=False` and the verification error.
    Failure is recoverable: the site may not serve TLS or may drop the connection.
    """
    category = FetchCategory.CERTIFICATE

    def __init__(self, config: DiggerConfig, events: EventSink | None = None, ssl_context: ssl.SSLContext | None = None):
        self.config = config
        self.events = events or EventSink("certificate")
        self.ssl_context = ssl_context

    async def _handshake(self, host: str, ctx: ssl.SSLContext) -> tuple[bytes | None, str | None]:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, self.config.tls_port, ssl=ctx, server_hostname=host),
            timeout=self.config.tls_timeout_s,
        )
        try:
            ssl_object = writer.get_extra_info("ssl_object")
            if ssl_object is None:
                return None, None
            return ssl_object.getpeercert(binary_form=True), ssl_object.version()
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ssl.SSLError) as exc:
                self.events.emit("tls:close-error", host=host, error=repr(exc))

    async def run(self, host: str) -> CertificateData | ProbeFailure:
        self.events.emit("tls:start", host=host, port=self.config.tls_port)
        verification_error = None
        try:
            try:
                der, protocol = await self._handshake(host, self.ssl_context or ssl.create_default_context())
            except ssl.SSLCertVerificationError as exc:
                verification_error = exc.verify_message or str(exc)
                self.events.emit("tls:unverified", host=host, error=verification_error)
                der, protocol = await self._handshake(host, _unverified_context())
        except (asyncio.TimeoutError, OSError, ssl.SSLError, ValueError) as exc:
            self.events.emit("tls:error", host=host, error=repr(exc))
            return failure_from_exception(self.category, exc)

        if not der:
            self.events.emit("tls:error", host=host, error="no peer certificate")
            return ProbeFailure(self.category, FailureKind.INVALID, "server sent no certificate")
        try:
            data = parse_certificate(der, protocol)
        except ValueError as exc:
            self.events.emit("tls:error", host=host, error=repr(exc))
            return ProbeFailure(self.category, FailureKind.INVALID, f"{type(exc).__name__}: {exc}")

        if verification_error is not None:
            data = data.model_copy(update={"verified": False, "verification_error": verification_error})
        self.events.emit("tls:complete", host=host, issuer=data.issuer, valid_to=data.valid_to, verified=data.verified)
        return data
