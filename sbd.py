"""
sbd.py — Iridium SBD Mobile-Originated Messages

Every burst sent by a field station arrives as one Iridium Short Burst Data
mobile-originated (MO) message.  The DirectIP gateway delivers them in the
following big-endian layout, which is also how they are archived on disk:

  Offset  Size  Field
  ------  ----  -----
  0       1     Protocol revision   (always 1)
  1       2     Overall length      (bytes that follow this field)
  3       var   Information elements, each:
                  1  IEI      (0x01 = MO header, 0x02 = MO payload, ...)
                  2  length
                  n  content

MO Header IE (0x01) — 28 bytes:
  Offset  Size  Type    Field
  0       4     uint32  cdr_reference
  4       15    ascii   imei
  19      1     uint8   session_status
  20      2     uint16  momsn
  22      2     uint16  mtmsn
  24      4     uint32  time_of_session  (Unix epoch, UTC)

Other information elements (e.g. 0x03 MO location) are skipped.

FilesystemStorage keeps one file per message under

    <root>/<imei>/<YYYY>/<MM>/<YYMMDD_HHMMSS>.sbd
"""

import logging
import struct
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Union

logger = logging.getLogger(__name__)

PROTOCOL_REVISION = 1

IEI_MO_HEADER = 0x01
IEI_MO_PAYLOAD = 0x02

PREAMBLE = struct.Struct("!BH")
IE_HEADER = struct.Struct("!BH")
MO_HEADER = struct.Struct("!I15sBHHI")


class SbdError(Exception):
    """Raised when an SBD message is malformed or incomplete."""


class InvalidProtocolRevision(SbdError):
    def __init__(self, revision: int):
        self.revision = revision
        super().__init__(f"invalid protocol revision: {revision}")


class OverallLengthMismatch(SbdError):
    def __init__(self, declared: int, actual: int):
        self.declared = declared
        self.actual = actual
        super().__init__(
            f"overall message length says {declared} bytes but {actual} bytes follow"
        )


class TruncatedMessage(SbdError):
    def __init__(self, offset: int):
        self.offset = offset
        super().__init__(f"message truncated inside the information element at byte {offset}")


class MissingHeader(SbdError):
    def __init__(self):
        super().__init__("no MO header information element")


class MissingPayload(SbdError):
    def __init__(self):
        super().__init__("no MO payload information element")


@dataclass
class MobileOriginatedMessage:
    """One burst, as received from the Iridium gateway."""

    imei: str
    time_of_session: datetime
    payload: bytes
    cdr_reference: int = 0
    session_status: int = 0
    momsn: int = 0
    mtmsn: int = 0
    protocol_revision: int = PROTOCOL_REVISION

    @classmethod
    def from_bytes(cls, data: bytes) -> "MobileOriginatedMessage":
        if len(data) < PREAMBLE.size:
            raise TruncatedMessage(0)
        revision, overall_length = PREAMBLE.unpack_from(data, 0)
        if revision != PROTOCOL_REVISION:
            raise InvalidProtocolRevision(revision)
        if overall_length != len(data) - PREAMBLE.size:
            raise OverallLengthMismatch(overall_length, len(data) - PREAMBLE.size)

        header = None
        payload = None
        cursor = PREAMBLE.size
        while cursor < len(data):
            if cursor + IE_HEADER.size > len(data):
                raise TruncatedMessage(cursor)
            iei, length = IE_HEADER.unpack_from(data, cursor)
            start = cursor + IE_HEADER.size
            end = start + length
            if end > len(data):
                raise TruncatedMessage(cursor)
            if iei == IEI_MO_HEADER:
                if length < MO_HEADER.size:
                    raise TruncatedMessage(cursor)
                header = MO_HEADER.unpack_from(data, start)
            elif iei == IEI_MO_PAYLOAD:
                payload = data[start:end]
            else:
                logger.debug("Skipping information element 0x%02X (%d bytes)", iei, length)
            cursor = end

        if header is None:
            raise MissingHeader()
        if payload is None:
            raise MissingPayload()

        cdr_reference, imei, session_status, momsn, mtmsn, epoch = header
        return cls(
            imei=imei.decode("ascii", errors="replace"),
            time_of_session=datetime.fromtimestamp(epoch, tz=timezone.utc),
            payload=bytes(payload),
            cdr_reference=cdr_reference,
            session_status=session_status,
            momsn=momsn,
            mtmsn=mtmsn,
            protocol_revision=revision,
        )

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "MobileOriginatedMessage":
        """Read one archived ``.sbd`` file."""
        with open(path, "rb") as f:
            return cls.from_bytes(f.read())

    def to_bytes(self) -> bytes:
        header = MO_HEADER.pack(
            self.cdr_reference,
            self.imei.encode("ascii"),
            self.session_status,
            self.momsn,
            self.mtmsn,
            int(self.time_of_session.timestamp()),
        )
        body = (
            IE_HEADER.pack(IEI_MO_HEADER, len(header)) + header
            + IE_HEADER.pack(IEI_MO_PAYLOAD, len(self.payload)) + self.payload
        )
        return PREAMBLE.pack(self.protocol_revision, len(body)) + body


class FilesystemStorage:
    """
    A directory tree of archived SBD messages, one subdirectory per IMEI.

    Usage:
        storage = FilesystemStorage("/var/iridium")
        for burst in storage.messages_from_imei("300234063554810"):
            ...
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        if not self.root.is_dir():
            raise FileNotFoundError(f"SBD root is not a directory: {self.root}")

    def imeis(self) -> List[str]:
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())

    def paths_from_imei(self, imei: str) -> Iterator[Path]:
        directory = self.root / imei
        if not directory.is_dir():
            return iter(())
        return iter(sorted(directory.rglob("*.sbd")))

    def messages_from_imei(self, imei: str) -> List[MobileOriginatedMessage]:
        """Return every archived message for ``imei``, oldest session first."""
        messages = [MobileOriginatedMessage.from_path(p) for p in self.paths_from_imei(imei)]
        messages.sort(key=lambda m: m.time_of_session)
        return messages

    def store(self, message: MobileOriginatedMessage) -> Path:
        """Write ``message`` into the archive and return the file path."""
        t = message.time_of_session.astimezone(timezone.utc)
        directory = self.root / message.imei / f"{t:%Y}" / f"{t:%m}"
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{t:%y%m%d_%H%M%S}.sbd"
        # Two bursts in the same second get a numeric suffix.
        n = 0
        while path.exists():
            n += 1
            path = directory / f"{t:%y%m%d_%H%M%S}_{n}.sbd"
        path.write_bytes(message.to_bytes())
        return path
