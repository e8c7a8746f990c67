"""QR rendering and the public base URL encoded into emergency codes."""
import base64
import io
import ipaddress
import logging
import socket
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import psutil
import qrcode
from qrcode.constants import ERROR_CORRECT_H

logger = logging.getLogger(__name__)

QR_DARK = "#1a56db"
QR_LIGHT = "#ffffff"


def render_qr_data_url(data: str) -> str:
    """PNG QR code for `data` as a data: URL."""
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, box_size=8, border=1)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color=QR_DARK, back_color=QR_LIGHT)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def emergency_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/emergency/{token}"


def _is_loopback(host: Optional[str]) -> bool:
    if not host:
        return False
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def first_lan_ipv4() -> Optional[str]:
    for addrs in psutil.net_if_addrs().values():
        for addr in addrs:
            if addr.family == socket.AF_INET and not ipaddress.ip_address(addr.address).is_loopback:
                return addr.address
    return None


def resolve_base_url(base_url: str) -> str:
    """
    Swap a loopback host for this machine's LAN address so that a phone on the
    same network can open the encoded link. Other hosts are returned unchanged.
    """
    base_url = base_url.rstrip("/")
    parts = urlsplit(base_url)
    if not _is_loopback(parts.hostname):
        return base_url
    try:
        lan_ip = first_lan_ipv4()
    except Exception as e:
        logger.warning(f"Error detecting LAN IP for QR generation: {e}")
        return base_url
    if not lan_ip:
        logger.warning(
            "No LAN IP detected; QR will point to localhost which may not be reachable from a phone. "
            "Set FRONTEND_URL to this machine's IP or a tunnel URL."
        )
        return base_url
    netloc = f"{lan_ip}:{parts.port}" if parts.port else lan_ip
    resolved = urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment)).rstrip("/")
    logger.info(f"Using LAN base URL for QR sharing: {resolved}")
    return resolved
