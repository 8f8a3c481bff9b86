"""
Ferry - Share links and QR codes for out-of-band code distribution.

A share link carries the rendezvous code and, optionally, the sender's
peer address so a receiver can skip the directory lookup. The QR helpers
encode that link as an image and decode it again; they have no protocol
semantics of their own.

Requires optional dependencies for images: qrcode, pillow and pyzbar.

Install with: pip install ferry-share[qr]

Author: orpheus497
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from .constants import SHARE_LINK_CODE_PARAM, SHARE_LINK_PEER_PARAM
from .errors import ErrorCode, FerryError

logger = logging.getLogger(__name__)

try:
    import qrcode

    QRCODE_AVAILABLE = True
except ImportError:
    QRCODE_AVAILABLE = False
    logger.debug("qrcode not available - QR code generation disabled")

try:
    from PIL import Image

    PIL_AVAILABLE = True
except ImportError:
    PIL_AVAILABLE = False
    logger.debug("pillow not available - PNG export disabled")

try:
    from pyzbar import pyzbar

    PYZBAR_AVAILABLE = True
except ImportError:
    PYZBAR_AVAILABLE = False
    logger.debug("pyzbar not available - QR code scanning disabled")


@dataclass(frozen=True)
class ShareLink:
    """What a receiver learns from a link: the code and maybe the peer."""

    code: str
    peer_address: Optional[str] = None


def build_share_link(base_url: str, code: str, peer_address: Optional[str] = None) -> str:
    """Build "<base>?code=XXXXXX[&peer=host:port]".

    Existing query parameters on base_url other than code/peer are kept.
    """
    if not code:
        raise FerryError(ErrorCode.E002_INVALID_ARGUMENT, "A share link needs a code")

    scheme, netloc, path, query, fragment = urlsplit(base_url)
    params = [
        (k, v)
        for k, values in parse_qs(query, keep_blank_values=True).items()
        if k not in (SHARE_LINK_CODE_PARAM, SHARE_LINK_PEER_PARAM)
        for v in values
    ]
    params.append((SHARE_LINK_CODE_PARAM, code))
    if peer_address:
        params.append((SHARE_LINK_PEER_PARAM, peer_address))

    return urlunsplit((scheme, netloc, path, urlencode(params, safe=":[]"), fragment))


def parse_share_link(text: str) -> ShareLink:
    """Parse a share link, or accept a bare code typed by hand.

    Raises:
        FerryError: If the text is a link without a code parameter
    """
    text = text.strip()
    if not text:
        raise FerryError(ErrorCode.E002_INVALID_ARGUMENT, "Empty code or link")

    if "://" not in text and "?" not in text:
        return ShareLink(code=text)

    query = urlsplit(text).query
    params = parse_qs(query)

    codes = params.get(SHARE_LINK_CODE_PARAM)
    if not codes or not codes[0].strip():
        raise FerryError(
            ErrorCode.E002_INVALID_ARGUMENT,
            "Link does not contain a code",
            {"link": text},
        )

    peers = params.get(SHARE_LINK_PEER_PARAM)
    peer = peers[0].strip() if peers and peers[0].strip() else None
    return ShareLink(code=codes[0].strip(), peer_address=peer)


def generate_qr_code(
    data: str, error_correction: str = "M", box_size: int = 10, border: int = 4
) -> "qrcode.QRCode":
    """Generate a QR code from data.

    Args:
        data: Data to encode in QR code
        error_correction: Error correction level (L, M, Q, H)
        box_size: Size of each box in pixels
        border: Border size in boxes

    Returns:
        QR code object

    Raises:
        FerryError: If QR code generation is not available or fails
    """
    if not QRCODE_AVAILABLE:
        raise FerryError(
            ErrorCode.E006_FEATURE_UNAVAILABLE,
            "QR code generation not available - install qrcode and pillow",
        )

    error_levels = {
        "L": qrcode.constants.ERROR_CORRECT_L,
        "M": qrcode.constants.ERROR_CORRECT_M,
        "Q": qrcode.constants.ERROR_CORRECT_Q,
        "H": qrcode.constants.ERROR_CORRECT_H,
    }

    error_level = error_levels.get(error_correction, qrcode.constants.ERROR_CORRECT_M)

    try:
        qr = qrcode.QRCode(
            version=None,
            error_correction=error_level,
            box_size=box_size,
            border=border,
        )
        qr.add_data(data)
        qr.make(fit=True)
    except Exception as e:
        raise FerryError(
            ErrorCode.E005_OPERATION_FAILED, f"QR code generation failed: {e}", {"error": str(e)}
        )

    logger.debug(f"Generated QR code: {len(data)} bytes")
    return qr


def display_qr_terminal(qr: "qrcode.QRCode") -> str:
    """Render a QR code as block characters for the terminal.

    Args:
        qr: QR code object

    Returns:
        Text art, one line per module row
    """
    matrix = qr.get_matrix()

    lines = ["█" * (len(matrix[0]) * 2 + 2)]
    for row in matrix:
        line = "█"
        for cell in row:
            line += "  " if cell else "██"
        line += "█"
        lines.append(line)
    lines.append("█" * (len(matrix[0]) * 2 + 2))

    return "\n".join(lines)


def export_qr_png(
    qr: "qrcode.QRCode", output_path: Path, fill_color: str = "black", back_color: str = "white"
) -> None:
    """Export QR code as PNG image.

    Raises:
        FerryError: If PNG export is not available or fails
    """
    if not PIL_AVAILABLE:
        raise FerryError(
            ErrorCode.E006_FEATURE_UNAVAILABLE, "PNG export not available - install pillow"
        )

    try:
        img = qr.make_image(fill_color=fill_color, back_color=back_color)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        img.save(str(output_path))
    except Exception as e:
        raise FerryError(
            ErrorCode.E005_OPERATION_FAILED, f"PNG export failed: {e}", {"error": str(e)}
        )

    logger.info(f"Exported QR code to: {output_path}")


def create_share_qr(link: str, output_path: Optional[Path] = None, show_terminal: bool = True) -> str:
    """Encode a share link as a QR code.

    Args:
        link: Share link to encode
        output_path: Optional path to save a PNG
        show_terminal: Whether to return terminal text art

    Returns:
        Text art if show_terminal is True, otherwise an empty string
    """
    qr = generate_qr_code(link, error_correction="M")

    if output_path:
        export_qr_png(qr, output_path)

    if show_terminal:
        return display_qr_terminal(qr)

    return ""


def is_qr_available() -> bool:
    return QRCODE_AVAILABLE


def is_scan_available() -> bool:
    return PYZBAR_AVAILABLE and PIL_AVAILABLE


def scan_qr_code(image_path: Path) -> str:
    """Scan and decode a QR code from an image file.

    If the image holds several codes, the first one is used.

    Raises:
        FerryError: If scanning is not available, the file is missing,
            or no QR code can be decoded
    """
    if not PYZBAR_AVAILABLE:
        raise FerryError(
            ErrorCode.E006_FEATURE_UNAVAILABLE,
            "QR code scanning not available - install pyzbar library",
        )

    if not PIL_AVAILABLE:
        raise FerryError(
            ErrorCode.E006_FEATURE_UNAVAILABLE,
            "QR code scanning requires pillow library for image loading",
        )

    image_path = Path(image_path)
    if not image_path.exists():
        raise FerryError(
            ErrorCode.E003_FILE_NOT_FOUND,
            f"Image file not found: {image_path}",
            {"path": str(image_path)},
        )

    try:
        with Image.open(image_path) as image:
            logger.debug(f"Loaded image: {image_path} ({image.size[0]}x{image.size[1]})")
            decoded_objects = pyzbar.decode(image)
    except Exception as e:
        raise FerryError(
            ErrorCode.E005_OPERATION_FAILED,
            f"Failed to scan QR code: {e}",
            {"error": str(e), "path": str(image_path)},
        )

    if not decoded_objects:
        raise FerryError(
            ErrorCode.E005_OPERATION_FAILED,
            "No QR code found in image",
            {"path": str(image_path)},
        )

    if len(decoded_objects) > 1:
        logger.info(f"Found {len(decoded_objects)} QR codes in image, using first one")

    try:
        qr_data = decoded_objects[0].data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FerryError(
            ErrorCode.E005_OPERATION_FAILED,
            f"QR code contains invalid text encoding: {e}",
            {"error": str(e), "path": str(image_path)},
        )

    logger.info(f"Decoded QR code from {image_path.name}: {len(qr_data)} bytes")
    return qr_data
