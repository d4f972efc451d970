import asyncio
import ipaddress

import dns.asyncresolver
import dns.exception
import dns.resolver

from .events import EventSink
from .models import DNSData, MxRecord
from .results import FailureKind, FetchCategory, ProbeFailure
from .settings import DiggerConfig

RECORD_TYPES = ("A", "AAAA", "MX", "TXT", "NS", "CNAME")

# Answers that simply mean "no records of this type".
_EMPTY_ANSWERS = (dns.resolver.NoAnswer,)


def _format(rtype: str, answer) -> list:
    if rtype in ("A", "AAAA"):
        return [r.address for r in answer]
    if rtype == "MX":
        records = [MxRecord(priority=r.preference, exchange=str(r.exchange).rstrip(".")) for r in answer]
        return sorted(records, key=lambda m: (m.priority, m.exchange))
    if rtype == "TXT":
        return [b"".join(r.strings).decode("utf-8", errors="replace") for r in answer]
    return [str(r.target).rstrip(".") for r in answer]


class DnsProbe:
    """
    Resolve A/AAAA/MX/TXT/NS/CNAME records for a host with dnspython.

    Missing record types are normal. The probe fails only when the name
    does not exist or when no record type could be resolved at all.
    """
    category = FetchCategory.DNS

    def __init__(self, config: DiggerConfig, events: EventSink | None = None, resolver=None):
        self.config = config
        self.events = events or EventSink("dns")
        self.resolver = resolver or dns.asyncresolver.Resolver()

    async def _lookup(self, host: str, rtype: str):
        return await self.resolver.resolve(host, rtype, lifetime=self.config.dns_timeout_s)

    async def run(self, host: str) -> DNSData | ProbeFailure:
        self.events.emit("dns:start", host=host)
        literal = self._ip_literal(host)
        if literal is not None:
            return literal

        answers = await asyncio.gather(*(self._lookup(host, t) for t in RECORD_TYPES), return_exceptions=True)

        records: dict[str, list] = {}
        errors: list[BaseException] = []
        for rtype, answer in zip(RECORD_TYPES, answers):
            if isinstance(answer, dns.resolver.NXDOMAIN):
                self.events.emit("dns:failed", host=host, error="NXDOMAIN")
                return ProbeFailure(self.category, FailureKind.NOT_FOUND, f"NXDOMAIN: {host}", recoverable=False)
            if isinstance(answer, _EMPTY_ANSWERS):
                records[rtype] = []
            elif isinstance(answer, asyncio.CancelledError):
                raise answer
            elif isinstance(answer, BaseException):
                errors.append(answer)
                records[rtype] = []
            else:
                records[rtype] = _format(rtype, answer)

        if len(errors) == len(RECORD_TYPES):
            exc = errors[0]
            kind = FailureKind.TIMEOUT if isinstance(exc, dns.exception.Timeout) else FailureKind.NETWORK
            self.events.emit("dns:failed", host=host, error=repr(exc))
            return ProbeFailure(self.category, kind, f"{type(exc).__name__}: {exc}", recoverable=True)

        self.events.emit("dns:complete", host=host, types=[t for t, v in records.items() if v])
        return DNSData(
            a_records=records["A"] or None,
            aaaa_records=records["AAAA"] or None,
            mx_records=records["MX"] or None,
            txt_records=records["TXT"] or None,
            ns_records=records["NS"] or None,
            cname_record=(records["CNAME"] or [None])[0],
        )

    @staticmethod
    def _ip_literal(host: str) -> DNSData | None:
        try:
            ip = ipaddress.ip_address(host.strip("[]"))
        except ValueError:
            return None
        if ip.version == 4:
            return DNSData(a_records=[str(ip)])
        return DNSData(aaaa_records=[str(ip)])
