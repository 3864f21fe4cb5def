"""Signing ledger: the CA's issued-serial record and next-serial counter."""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509

from .cert_utils import format_serial, openssl_subject
from .config import INITIAL_SERIAL
from .logging_config import LOGGER


@dataclass(frozen=True)
class LedgerEntry:
    """One line of index.txt."""

    status: str
    expires: str
    serial: str
    subject: str

    def to_line(self) -> str:
        # status, expiry, revocation date (empty), serial, filename, subject
        return "\t".join([self.status, self.expires, "", self.serial, "unknown", self.subject])

    @classmethod
    def from_line(cls, line: str) -> "LedgerEntry":
        fields = line.rstrip("\n").split("\t")
        if len(fields) != 6:
            raise ValueError(f"malformed ledger line: {line!r}")
        return cls(status=fields[0], expires=fields[1], serial=fields[3], subject=fields[5])


class SigningLedger:
    """Append-only record of issued serials plus the next-serial counter.

    Files follow the OpenSSL ``ca`` layout: ``index.txt`` (entries),
    ``index.txt.attr`` (attributes) and ``serial.txt`` (next serial, hex).
    The ledger is never re-seeded once it exists.
    """

    def __init__(self, index_path: Path, attr_path: Path, serial_path: Path) -> None:
        self.index_path = index_path
        self.attr_path = attr_path
        self.serial_path = serial_path

    def ensure(self) -> bool:
        """Create an empty ledger and seed the counter where they are absent.

        Returns:
            True if any bookkeeping file was created
        """
        created = False
        for path in (self.index_path, self.attr_path):
            if not path.exists():
                LOGGER.debug("Creating bookkeeping file '%s'", path)
                path.touch()
                created = True
        if not self.serial_path.exists():
            LOGGER.debug("Seeding serial counter '%s' with %s", self.serial_path, INITIAL_SERIAL)
            self.serial_path.write_text(f"{INITIAL_SERIAL}\n")
            created = True
        return created

    def exists(self) -> bool:
        return self.index_path.is_file() and self.serial_path.is_file()

    def next_serial(self) -> int:
        """Read the counter.

        Raises:
            FileNotFoundError: If the counter has not been seeded
            ValueError: If the counter is not hex
        """
        text = self.serial_path.read_text().strip()
        try:
            return int(text, 16)
        except ValueError:
            raise ValueError(f"serial counter '{self.serial_path}' is not hex: {text!r}") from None

    def entries(self) -> list[LedgerEntry]:
        if not self.index_path.exists():
            return []
        lines = self.index_path.read_text().splitlines()
        return [LedgerEntry.from_line(line) for line in lines if line.strip()]

    @contextmanager
    def issue(self) -> Iterator["SerialReservation"]:
        """Reserve the next serial for one signing operation.

        The caller sets ``reservation.certificate`` inside the block; on a
        clean exit the entry is appended and the counter advanced. Nothing is
        recorded if the block raises.
        """
        reservation = SerialReservation(self.next_serial())
        yield reservation
        if reservation.certificate is None:
            return
        self._record(reservation.serial, reservation.certificate)

    def _record(self, serial: int, cert: x509.Certificate) -> None:
        expires = cert.not_valid_after_utc.astimezone(UTC)
        entry = LedgerEntry(
            status="V",
            expires=_ledger_time(expires),
            serial=format_serial(serial),
            subject=openssl_subject(cert.subject),
        )
        with self.index_path.open("a") as handle:
            handle.write(entry.to_line() + "\n")
        self.serial_path.write_text(f"{format_serial(serial + 1)}\n")
        LOGGER.debug("Recorded serial %s in '%s'", entry.serial, self.index_path)


@dataclass
class SerialReservation:
    serial: int
    certificate: x509.Certificate | None = None


def _ledger_time(moment: datetime) -> str:
    return moment.strftime("%y%m%d%H%M%SZ")
