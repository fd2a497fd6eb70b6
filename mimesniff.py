import logging
from dataclasses import dataclass
from functools import singledispatch
from typing import NamedTuple, Optional, Tuple, Union

logger = logging.getLogger(__name__)

# The algorithm uses at most SNIFF_LEN bytes to make its decision.
SNIFF_LEN = 512

FALLBACK = "application/octet-stream"
HTML_CT = "text/html; charset=utf-8"
TEXT_CT = "text/plain; charset=utf-8"

# Whitespace bytes (0xWS) and tag-terminating bytes (0xTT) as defined in
# https://mimesniff.spec.whatwg.org/#terminology.
_WS = frozenset(b"\t\n\x0c\r ")
_TT = frozenset(b" >")

# Binary data bytes, c.f. section 5, step 4.
_BINARY = frozenset(
    list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20))
)

BytesLike = Union[bytes, bytearray, memoryview]


class Prefix(NamedTuple):
    data: bytes
    first_non_ws: int


@dataclass(frozen=True)
class ExactSig:
    sig: bytes
    ct: str


@dataclass(frozen=True)
class MaskedSig:
    pattern: bytes
    mask: bytes
    skip_ws: bool
    ct: str


@dataclass(frozen=True)
class HtmlSig:
    tag: bytes


@dataclass(frozen=True)
class Mp4Sig:
    pass


@dataclass(frozen=True)
class TextSig:
    pass


Signature = Union[ExactSig, MaskedSig, HtmlSig, Mp4Sig, TextSig]


def sniff_prefix(data: BytesLike) -> Prefix:
    # sniff_prefix returns the first SNIFF_LEN bytes of data and the index
    # of the first non-whitespace byte in them, which is the length of the
    # prefix when it is empty or all whitespace.
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError(
            "a bytes-like object is required, not %r" % type(data).__name__)
    if isinstance(data, memoryview) and (data.ndim != 1 or data.itemsize != 1):
        # Slicing would count items, not bytes.
        data = data.tobytes()
    data = bytes(data[:SNIFF_LEN])

    first_non_ws = 0
    while first_non_ws < len(data) and data[first_non_ws] in _WS:
        first_non_ws += 1
    return Prefix(data, first_non_ws)


def detect_content_type(data: BytesLike) -> str:
    # detect_content_type implements the algorithm described
    # at https://mimesniff.spec.whatwg.org/ to determine the
    # Content-Type of the given data. It considers at most the
    # first 512 bytes of data and always returns a valid MIME type:
    # if it cannot determine a more specific one, it returns
    # "application/octet-stream".
    prefix = sniff_prefix(data)
    for sig in SIGNATURES:
        ct = match_signature(sig, prefix.data, prefix.first_non_ws)
        if ct is not None:
            logger.debug("sniffed %s via %r", ct, sig)
            return ct

    logger.debug("no signature matched %d bytes, using %s",
                 len(prefix.data), FALLBACK)
    return FALLBACK


@singledispatch
def match_signature(sig, data: bytes, first_non_ws: int) -> Optional[str]:
    # match_signature returns the MIME type of the data, or None if unknown.
    raise TypeError("unsupported signature type %r" % type(sig).__name__)


@match_signature.register(ExactSig)
def _match_exact(sig: ExactSig, data: bytes, first_non_ws: int) -> Optional[str]:
    if data.startswith(sig.sig):
        return sig.ct
    return None


@match_signature.register(MaskedSig)
def _match_masked(sig: MaskedSig, data: bytes, first_non_ws: int) -> Optional[str]:
    # pattern matching algorithm section 6
    # https://mimesniff.spec.whatwg.org/#pattern-matching-algorithm
    if sig.skip_ws:
        data = data[first_non_ws:]
    if len(sig.pattern) != len(sig.mask):
        return None
    if len(data) < len(sig.pattern):
        return None
    for db, pb, mb in zip(data, sig.pattern, sig.mask):
        if db & mb != pb:
            return None
    return sig.ct


@match_signature.register(HtmlSig)
def _match_html(sig: HtmlSig, data: bytes, first_non_ws: int) -> Optional[str]:
    data = data[first_non_ws:]
    n = len(sig.tag)
    if len(data) < n + 1:
        return None
    # bytes.upper() only touches ASCII letters.
    if data[:n].upper() != sig.tag:
        return None
    # Next byte must be a tag-terminating byte (0xTT).
    if data[n] not in _TT:
        return None
    return HTML_CT


@match_signature.register(Mp4Sig)
def _match_mp4(sig: Mp4Sig, data: bytes, first_non_ws: int) -> Optional[str]:
    # https://mimesniff.spec.whatwg.org/#signature-for-mp4
    # c.f. section 6.2.1
    if len(data) < 12:
        return None
    box_size = int.from_bytes(data[:4], byteorder="big")
    if box_size > len(data) or box_size % 4 != 0:
        return None
    if data[4:8] != b"ftyp":
        return None

    for st in range(8, box_size, 4):
        if st == 12:
            # Version number of the "major brand", not a brand itself.
            continue
        if data[st:st + 3] == b"mp4":
            return "video/mp4"
    return None


@match_signature.register(TextSig)
def _match_text(sig: TextSig, data: bytes, first_non_ws: int) -> Optional[str]:
    if any(b in _BINARY for b in data[first_non_ws:]):
        return None
    return TEXT_CT


def _rifflike(tag: bytes, form: bytes, ct: str) -> MaskedSig:
    # Container header with a wildcard 4-byte size field between tag and form.
    return MaskedSig(
        pattern=tag + b"\x00\x00\x00\x00" + form,
        mask=b"\xFF" * len(tag) + b"\x00\x00\x00\x00" + b"\xFF" * len(form),
        skip_ws=False,
        ct=ct,
    )


def _prefixed(pattern: bytes, ct: str, skip_ws: bool = False) -> MaskedSig:
    return MaskedSig(pattern, b"\xFF" * len(pattern), skip_ws, ct)


# Data matching the table in section 6. Order is priority: first match wins.
SIGNATURES: Tuple[Signature, ...] = (
    HtmlSig(b"<!DOCTYPE HTML"),
    HtmlSig(b"<HTML"),
    HtmlSig(b"<HEAD"),
    HtmlSig(b"<SCRIPT"),
    HtmlSig(b"<IFRAME"),
    HtmlSig(b"<H1"),
    HtmlSig(b"<DIV"),
    HtmlSig(b"<FONT"),
    HtmlSig(b"<TABLE"),
    HtmlSig(b"<A"),
    HtmlSig(b"<STYLE"),
    HtmlSig(b"<TITLE"),
    HtmlSig(b"<B"),
    HtmlSig(b"<BODY"),
    HtmlSig(b"<BR"),
    HtmlSig(b"<P"),
    HtmlSig(b"<!--"),
    _prefixed(b"<?xml", "text/xml; charset=utf-8", skip_ws=True),
    ExactSig(b"%PDF-", "application/pdf"),
    ExactSig(b"%!PS-Adobe-", "application/postscript"),

    # UTF BOMs, padded to four bytes with a zero mask.
    MaskedSig(b"\xFE\xFF\x00\x00", b"\xFF\xFF\x00\x00", False,
              "text/plain; charset=utf-16be"),
    MaskedSig(b"\xFF\xFE\x00\x00", b"\xFF\xFF\x00\x00", False,
              "text/plain; charset=utf-16le"),
    MaskedSig(b"\xEF\xBB\xBF\x00", b"\xFF\xFF\xFF\x00", False,
              "text/plain; charset=utf-8"),

    # Image types.
    # "image/vnd.microsoft.icon" from draft-ietf-websec-mime-sniff-03 was
    # replaced with "image/x-icon" in section 6.2 of
    # https://mimesniff.spec.whatwg.org/#matching-an-image-type-pattern
    ExactSig(b"\x00\x00\x01\x00", "image/x-icon"),
    ExactSig(b"\x00\x00\x02\x00", "image/x-icon"),
    ExactSig(b"BM", "image/bmp"),
    ExactSig(b"GIF87a", "image/gif"),
    ExactSig(b"GIF89a", "image/gif"),
    _rifflike(b"RIFF", b"WEBPVP", "image/webp"),
    ExactSig(b"\x89PNG\x0D\x0A\x1A\x0A", "image/png"),
    ExactSig(b"\xFF\xD8\xFF", "image/jpeg"),

    # Audio and video types, in the order prescribed by
    # https://mimesniff.spec.whatwg.org/#matching-an-audio-or-video-type-pattern
    _prefixed(b".snd", "audio/basic"),
    _rifflike(b"FORM", b"AIFF", "audio/aiff"),
    _prefixed(b"ID3", "audio/mpeg"),
    _prefixed(b"OggS\x00", "application/ogg"),
    _prefixed(b"MThd\x00\x00\x00\x06", "audio/midi"),
    _rifflike(b"RIFF", b"AVI ", "video/avi"),
    _rifflike(b"RIFF", b"WAVE", "audio/wave"),
    Mp4Sig(),
    ExactSig(b"\x1A\x45\xDF\xA3", "video/webm"),

    # Font types.
    # 34 bytes of anything followed by "LP".
    MaskedSig(b"\x00" * 34 + b"LP", b"\x00" * 34 + b"\xFF\xFF", False,
              "application/vnd.ms-fontobject"),
    ExactSig(b"\x00\x01\x00\x00", "font/ttf"),
    ExactSig(b"OTTO", "font/otf"),
    ExactSig(b"ttcf", "font/collection"),
    ExactSig(b"wOFF", "font/woff"),
    ExactSig(b"wOF2", "font/woff2"),

    # Archive types.
    ExactSig(b"\x1F\x8B\x08", "application/x-gzip"),
    ExactSig(b"PK\x03\x04", "application/zip"),
    # The MIME sniffing standard gets RAR wrong
    # (https://github.com/whatwg/mimesniff/issues/63), so these follow
    # https://www.rarlab.com/technote.htm#rarsign instead.
    ExactSig(b"Rar!\x1A\x07\x00", "application/x-rar-compressed"),  # v1.5-v4.0
    ExactSig(b"Rar!\x1A\x07\x01\x00", "application/x-rar-compressed"),  # v5+
    ExactSig(b"\x00asm", "application/wasm"),

    TextSig(),  # must be last
)
