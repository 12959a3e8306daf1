import asyncio
import logging
import shutil
import socket
import subprocess
from typing import Optional

logger = logging.getLogger(__name__)


def get_local_ip() -> str:
    """Address this host would use to reach the LAN; nothing is sent."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(("10.255.255.255", 1))
        ip = s.getsockname()[0]
    except OSError:
        ip = "127.0.0.1"
    finally:
        s.close()
    return ip


def local_subnet_prefix(override: str = "") -> Optional[str]:
    """/24 prefix such as "192.168.1", or None when there is no usable interface."""
    if override:
        return override.strip().rstrip(".")
    ip = get_local_ip()
    if ip.startswith("127."):
        return None
    return ip.rsplit(".", 1)[0]


def current_network_id() -> Optional[str]:
    """SSID of the wireless network, or None when not on Wi-Fi or unknown."""
    iwgetid = shutil.which("iwgetid")
    if not iwgetid:
        return None
    try:
        proc = subprocess.run([iwgetid, "-r"], stdout=subprocess.PIPE,
                              stderr=subprocess.PIPE, timeout=2)
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("iwgetid failed: %s", e)
        return None
    ssid = proc.stdout.decode(errors="ignore").strip()
    return ssid or None


async def is_port_open(host: str, port: int, timeout: float) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True
