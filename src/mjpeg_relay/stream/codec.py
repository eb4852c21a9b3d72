"""
Frame Codec
===========

Builds the multipart wire unit for a JPEG and parses part headers back.

Wire format of one part:

    \\r\\n--MJPEGBOUNDARY\\r\\n
    Content-Length: <N>\\r\\n
    X-Timestamp: 0.000000\\r\\n
    \\r\\n
    <N bytes of JPEG>

X-Timestamp is always the literal placeholder ``0.000000``.
"""

from typing import Dict, Union

from mjpeg_relay.stream.frame import Frame


BOUNDARY = "MJPEGBOUNDARY"

RESPONSE_PREAMBLE = (
    "HTTP/1.1 200 OK\r\n"
    f"Content-Type: multipart/x-mixed-replace;boundary={BOUNDARY}\r\n"
).encode("ascii")

TIMESTAMP_PLACEHOLDER = "0.000000"

_HEADER_TEMPLATE = (
    "\r\n--" + BOUNDARY + "\r\n"
    "Content-Length: {length}\r\n"
    "X-Timestamp: " + TIMESTAMP_PLACEHOLDER + "\r\n"
    "\r\n"
)

BytesLike = Union[bytes, bytearray, memoryview]


def encode(jpeg: BytesLike) -> Frame:
    """
    Wrap raw JPEG bytes into a Frame.

    No JPEG validation is done; any byte sequence is accepted.

    Args:
        jpeg: Encoded image bytes

    Returns:
        Frame with generated header and the payload as body

    Raises:
        TypeError: If jpeg is not bytes-like
    """
    if not isinstance(jpeg, (bytes, bytearray, memoryview)):
        raise TypeError(f"expected bytes-like JPEG payload, got {type(jpeg).__name__}")

    body = bytes(jpeg)
    header = _HEADER_TEMPLATE.format(length=len(body)).encode("ascii")
    return Frame(header=header, body=body)


def decode_header(header: bytes) -> Dict[str, str]:
    """
    Parse a part header produced by encode().

    Args:
        header: Header bytes, boundary line included

    Returns:
        Mapping of header field name to value

    Raises:
        ValueError: If the boundary line is missing or a line is malformed
    """
    text = header.decode("ascii")
    lines = text.split("\r\n")

    # Leading CRLF yields an empty first element
    if lines and lines[0] == "":
        lines = lines[1:]
    if not lines or lines[0] != f"--{BOUNDARY}":
        raise ValueError(f"missing boundary line in part header: {text!r}")

    fields: Dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            continue
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            raise ValueError(f"malformed header line: {line!r}")
        fields[name.strip()] = value.strip()

    return fields


def content_length(header: bytes) -> int:
    """Declared Content-Length of a part header."""
    fields = decode_header(header)
    try:
        return int(fields["Content-Length"])
    except (KeyError, ValueError) as e:
        raise ValueError(f"invalid Content-Length in part header: {e}")
