"""
IPP Get-Printer-Attributes: request encoder, response decoder and the
HTTP client used to reach printers on port 631.
"""
import logging
import re
import struct
import threading
import warnings
from enum import IntEnum
from typing import Dict, Optional, Set
from urllib.parse import urlsplit

import requests
import urllib3

from print_agent import env

logger = logging.getLogger(__name__)

IPP_VERSION = (1, 1)
REQUEST_ID = 12345
SUCCESSFUL_OK = 0x0000
STATUS_OK_TEXT = "0x0000 (successful-ok)"
STATUS_KEY = "ipp-status-code"
RAW_HEX_KEY = "raw_ipp_response_hex"


class OperationEnum(IntEnum):
    get_printer_attributes = 0x000B


class SectionEnum(IntEnum):
    operation = 0x01
    END = 0x03
    printer = 0x04
    # every tag up to 0x0F is a delimiter
    DELIMITER_MAX = 0x0F


class TagEnum(IntEnum):
    integer = 0x21
    boolean = 0x22
    enum = 0x23
    keyword = 0x44
    uri = 0x45
    charset = 0x47
    natural_language = 0x48


# -----------------------------
# Encoder
# -----------------------------
def _write_attribute(out: bytearray, tag: int, name: str, value: str):
    name_bytes = name.encode("utf-8")
    value_bytes = value.encode("utf-8")
    out += struct.pack(">BH", tag, len(name_bytes))
    out += name_bytes
    out += struct.pack(">H", len(value_bytes))
    out += value_bytes


def build_get_attributes_request(printer_uri: str) -> bytes:
    out = bytearray()
    out += struct.pack(">BBHi", IPP_VERSION[0], IPP_VERSION[1],
                       OperationEnum.get_printer_attributes, REQUEST_ID)
    out += struct.pack(">B", SectionEnum.operation)
    _write_attribute(out, TagEnum.charset, "attributes-charset", "utf-8")
    _write_attribute(out, TagEnum.natural_language, "attributes-natural-language", "en")
    _write_attribute(out, TagEnum.uri, "printer-uri", printer_uri)
    _write_attribute(out, TagEnum.keyword, "requested-attributes", "all")
    out += struct.pack(">B", SectionEnum.END)
    return bytes(out)


# -----------------------------
# Decoder
# -----------------------------
_INT_FORMATS = {1: ">b", 2: ">h", 4: ">i"}


def _decode_value(tag: int, data: bytes) -> str:
    if tag in (TagEnum.integer, TagEnum.enum):
        fmt = _INT_FORMATS.get(len(data))
        if fmt is None:
            signed = (b - 256 if b > 127 else b for b in data)
            return "int_val(%s)" % ", ".join(str(b) for b in signed)
        return str(struct.unpack(fmt, data)[0])
    if tag == TagEnum.boolean:
        if not data:
            return "invalid_bool"
        return "true" if data[0] != 0 else "false"
    return data.decode("utf-8", errors="replace").strip()


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def remaining(self) -> int:
        return len(self.data) - self.pos

    def take(self, n: int) -> bytes:
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u16(self) -> int:
        return struct.unpack(">H", self.take(2))[0]


def parse_response(data: bytes) -> Dict[str, str]:
    """
    Decode an IPP response into an ordered name -> value map.

    Multi-valued attributes are joined with ", ". A non-zero status is kept
    under "ipp-status-code" and parsing continues. Truncated or corrupt
    input stops the parse and returns whatever was decoded so far.
    """
    attributes: Dict[str, str] = {}
    if len(data) < 9:
        logger.warning("Response too short to be a valid IPP response (%d bytes)", len(data))
        return attributes

    reader = _Reader(data)
    reader.take(2)  # version
    status = reader.u16()
    reader.take(4)  # request id

    if status != SUCCESSFUL_OK:
        attributes[STATUS_KEY] = "0x%04x" % status
        logger.warning("Printer returned IPP error status %s", attributes[STATUS_KEY])
    else:
        attributes[STATUS_KEY] = STATUS_OK_TEXT

    last_name = ""
    while reader.remaining() > 0:
        tag = reader.u8()
        if tag == SectionEnum.END:
            break
        if tag <= SectionEnum.DELIMITER_MAX:
            continue

        if reader.remaining() < 2:
            break
        name_len = reader.u16()
        if name_len > 0:
            if name_len > reader.remaining():
                logger.debug("IPP name length %d overruns buffer, stopping", name_len)
                break
            last_name = reader.take(name_len).decode("utf-8", errors="replace")
        name = last_name

        if reader.remaining() < 2:
            break
        value_len = reader.u16()
        if value_len > reader.remaining():
            logger.debug("IPP value length %d overruns buffer, stopping", value_len)
            break
        value = _decode_value(tag, reader.take(value_len))

        if not name.strip():
            continue
        if name in attributes:
            attributes[name] = f"{attributes[name]}, {value}"
        else:
            attributes[name] = value

    return attributes


def is_successful(attributes: Optional[Dict[str, str]]) -> bool:
    return bool(attributes) and "successful-ok" in attributes.get(STATUS_KEY, "")


# -----------------------------
# HTTP transport
# -----------------------------
_UNVERIFIED_HOST_MESSAGE = "Unverified HTTPS request is being made to host '%s'"
_silenced_hosts: Set[str] = set()
_silence_lock = threading.Lock()


def silence_unverified_warning(host: str):
    """Ignore urllib3's unverified-certificate warning for this host only."""
    with _silence_lock:
        if host in _silenced_hosts:
            return
        warnings.filterwarnings(
            "ignore",
            message=re.escape(_UNVERIFIED_HOST_MESSAGE % host),
            category=urllib3.exceptions.InsecureRequestWarning,
        )
        _silenced_hosts.add(host)


class IppClient:
    """
    Posts Get-Printer-Attributes over HTTP(S).

    The session is private to this client. With trust_any_certificate it
    accepts self-signed certificates and mismatched hostnames; nothing else
    in the agent shares that session, and the certificate warning is only
    silenced for hosts this client has talked to.
    """

    def __init__(self, timeout: float = env.IPP_TIMEOUT,
                 trust_any_certificate: bool = env.IPP_TRUST_ANY_CERTIFICATE):
        self.timeout = timeout
        self.trust_any_certificate = trust_any_certificate
        self._session = requests.Session()
        self._session.verify = not trust_any_certificate

    def close(self):
        self._session.close()

    def get_printer_attributes(self, printer_uri: str) -> Optional[Dict[str, str]]:
        body = build_get_attributes_request(printer_uri)
        if self.trust_any_certificate:
            parts = urlsplit(printer_uri)
            if parts.scheme == "https" and parts.hostname:
                silence_unverified_warning(parts.hostname)
        try:
            r = self._session.post(
                printer_uri,
                data=body,
                headers={"Content-Type": "application/ipp"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("IPP request to %s failed: %s", printer_uri, e)
            return None

        if not r.ok:
            logger.warning("IPP request failed with HTTP %s for %s", r.status_code, printer_uri)
            return None

        content = r.content or b""
        logger.debug("Received %d bytes from %s", len(content), printer_uri)
        attributes = parse_response(content)
        attributes[RAW_HEX_KEY] = " ".join("%02X" % b for b in content)
        return attributes
