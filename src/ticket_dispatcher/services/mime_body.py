"""Pick the text body of an email and turn it into Markdown.

Preference order: the first text/plain part wins outright, otherwise the
first text/html part is rendered through html_markdown. Attachments are
never considered.
"""

from __future__ import annotations

import base64
import binascii
import logging
import quopri
import re
from dataclasses import dataclass
from email import errors as email_errors
from email import policy
from email.message import Message
from email.parser import BytesParser
from email.utils import collapse_rfc2231_value
from io import BytesIO
from typing import Any, BinaryIO, Iterator, Mapping, Optional, Union

from ticket_dispatcher.services.errors import NoTextPartError, ParseError
from ticket_dispatcher.services.html_markdown import render_html

logger = logging.getLogger(__name__)

PLAIN = "plain"
HTML = "html"

_PASSTHROUGH_CHARSETS = {"", "utf-8", "us-ascii"}
_FOLD_RE = re.compile(r"\r?\n")

Headers = Union[Message, Mapping[str, Any]]


@dataclass
class InboundMessage:
    headers: Message
    body: BinaryIO


@dataclass
class DecodedText:
    kind: str
    text: str

    def to_markdown(self) -> str:
        if self.kind == HTML:
            return render_html(self.text)
        return self.text.strip()


@dataclass
class Part:
    media_type: str
    content_type: str
    transfer_encoding: str
    disposition: str
    body: bytes

    @property
    def is_attachment(self) -> bool:
        return self.disposition.strip().lower().startswith("attachment")

    def decode(self, kind: str) -> DecodedText:
        data = read_and_decode_part(BytesIO(self.body), self.content_type, self.transfer_encoding)
        return DecodedText(kind=kind, text=_to_text(data))


def read_message(raw: bytes) -> InboundMessage:
    """Split raw RFC 822 bytes into headers and an unparsed body stream."""
    parsed = BytesParser(policy=policy.compat32).parsebytes(raw, headersonly=True)
    return InboundMessage(headers=parsed, body=BytesIO(_payload_bytes(parsed)))


def header_value(headers: Headers, name: str) -> str:
    if isinstance(headers, Message):
        value = headers.get(name)
    else:
        wanted = name.lower()
        value = next((v for k, v in headers.items() if k.lower() == wanted), None)
    if value is None:
        return ""
    return str(value)


def parse_media_type(value: str) -> tuple[str, dict[str, str]]:
    """Return the lowercased media type and parameters of a Content-Type value.

    Raises ValueError when the value has no usable type/subtype.
    """
    value = _FOLD_RE.sub("", value or "").strip()
    media_type = value.split(";", 1)[0].strip().lower()
    maintype, sep, subtype = media_type.partition("/")
    if not sep or not maintype or not subtype or "/" in subtype:
        raise ValueError(f"invalid media type: {value!r}")

    carrier = Message()
    carrier["Content-Type"] = value
    params: dict[str, str] = {}
    for key, param in (carrier.get_params() or [])[1:]:
        params[key.lower()] = collapse_rfc2231_value(param)
    return media_type, params


def decode_transfer_encoding(data: bytes, transfer_encoding: str) -> bytes:
    encoding = (transfer_encoding or "").strip().lower()
    if encoding == "quoted-printable":
        return quopri.decodestring(data)
    if encoding == "base64":
        try:
            return base64.b64decode(data)
        except binascii.Error as exc:
            logger.info(
                "Undecodable base64 body, keeping encoded bytes",
                extra={"event": "mime_base64_fallback", "error": repr(exc)},
            )
            return data
    # 7bit, 8bit, binary or absent
    return data


def convert_charset(data: bytes, charset: str) -> bytes:
    label = (charset or "").strip().lower()
    if label in _PASSTHROUGH_CHARSETS:
        return data
    try:
        return data.decode(label).encode("utf-8")
    except (LookupError, ValueError) as exc:
        logger.info(
            "Charset conversion failed, keeping raw bytes",
            extra={"event": "mime_charset_fallback", "charset": label, "error": repr(exc)},
        )
        return data


def read_and_decode_part(body: BinaryIO, content_type: str, transfer_encoding: str) -> bytes:
    """Read a part body, undo its transfer encoding and convert it to UTF-8."""
    data = decode_transfer_encoding(_read_all(body), transfer_encoding)
    try:
        _, params = parse_media_type(content_type)
    except ValueError:
        params = {}
    return convert_charset(data, params.get("charset", ""))


def decode_body(headers: Headers, body: BinaryIO) -> str:
    content_type = header_value(headers, "Content-Type")
    try:
        media_type, params = parse_media_type(content_type)
    except ValueError:
        # Without a usable Content-Type the body is taken as-is.
        return _to_text(_read_all(body)).strip()

    if media_type.startswith("multipart/"):
        if not params.get("boundary"):
            raise ParseError("multipart message without boundary")
        return _select_from_multipart(content_type, body)

    kind = HTML if media_type == "text/html" else PLAIN
    data = read_and_decode_part(body, content_type, header_value(headers, "Content-Transfer-Encoding"))
    return DecodedText(kind=kind, text=_to_text(data)).to_markdown()


def _select_from_multipart(content_type: str, body: BinaryIO) -> str:
    html_candidate: Optional[DecodedText] = None

    for part in iter_parts(content_type, body):
        if part.is_attachment:
            continue
        if part.media_type == "text/plain":
            logger.debug("Selected text/plain part", extra={"event": "mime_part_selected", "media_type": "text/plain"})
            return part.decode(PLAIN).to_markdown()
        if part.media_type == "text/html":
            if html_candidate is None:
                html_candidate = part.decode(HTML)
            continue
        if part.media_type.startswith("text/"):
            continue
        if html_candidate is None:
            raise NoTextPartError(f"{part.media_type} part found before any text part")

    if html_candidate is not None:
        logger.debug("Selected text/html part", extra={"event": "mime_part_selected", "media_type": "text/html"})
        return html_candidate.to_markdown()
    return ""


def iter_parts(content_type: str, body: BinaryIO) -> Iterator[Part]:
    """Yield the top-level parts of a multipart body in declaration order."""
    header = b"Content-Type: " + _FOLD_RE.sub("", content_type).encode("utf-8", "surrogateescape")
    container = BytesParser(policy=policy.compat32).parsebytes(header + b"\r\n\r\n" + _read_all(body))

    missing_start = any(isinstance(defect, email_errors.StartBoundaryNotFoundDefect) for defect in container.defects)
    if missing_start or not container.is_multipart():
        raise ParseError("multipart boundary not found in message body")

    for sub in container.get_payload():
        yield Part(
            media_type=sub.get_content_type(),
            content_type=header_value(sub, "Content-Type"),
            transfer_encoding=header_value(sub, "Content-Transfer-Encoding"),
            disposition=header_value(sub, "Content-Disposition"),
            body=_payload_bytes(sub),
        )


def _payload_bytes(message: Message) -> bytes:
    payload = message.get_payload()
    if isinstance(payload, str):
        # The parser decodes bytes as ASCII with surrogateescape; undo that.
        return payload.encode("ascii", "surrogateescape")
    return b""


def _read_all(body: BinaryIO) -> bytes:
    try:
        return body.read()
    except OSError as exc:
        raise ParseError(f"unable to read message body: {exc}") from exc


def _to_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")
