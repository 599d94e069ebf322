"""HTTP probe against the Icecast admin endpoints."""

import asyncio
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)


@dataclass
class MountInfo:
    """One mountpoint as reported by Icecast."""

    mount: str
    listeners: int = 0
    connected_seconds: int = 0
    content_type: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "mount": self.mount,
            "listeners": self.listeners,
            "connectedSeconds": self.connected_seconds,
            "contentType": self.content_type,
        }


@dataclass
class AdminStats:
    """Server statistics from /admin/stats.xml."""

    version: Optional[str] = None
    sources: int = 0
    listeners: int = 0
    clients: int = 0
    mounts: List[MountInfo] = field(default_factory=list)


def _child_int(node: ET.Element, tag: str) -> int:
    child = node.find(tag)
    if child is None or not (child.text or "").strip():
        return 0
    try:
        return int(child.text.strip())
    except ValueError:
        return 0


def _parse_mounts(root: ET.Element) -> List[MountInfo]:
    mounts = []
    for source in root.findall("source"):
        content_type = source.find("content-type")
        if content_type is None:
            content_type = source.find("server_type")
        mounts.append(
            MountInfo(
                mount=source.get("mount", ""),
                listeners=_child_int(source, "listeners"),
                connected_seconds=_child_int(source, "Connected") or _child_int(source, "connected"),
                content_type=content_type.text if content_type is not None else None,
            )
        )
    return mounts


def parse_stats_xml(body: str) -> AdminStats:
    """
    Parse the body of /admin/stats.xml.

    Raises:
        ET.ParseError: If the body is not XML
    """
    root = ET.fromstring(body)
    server_id = root.find("server_id")
    return AdminStats(
        version=server_id.text.strip() if server_id is not None and server_id.text else None,
        sources=_child_int(root, "sources"),
        listeners=_child_int(root, "listeners"),
        clients=_child_int(root, "clients"),
        mounts=_parse_mounts(root),
    )


def parse_listmounts_xml(body: str) -> List[MountInfo]:
    """Parse the body of /admin/listmounts.xml."""
    return _parse_mounts(ET.fromstring(body))


class AdminProbe:
    """Queries the Icecast admin interface with basic auth."""

    def __init__(self, timeout: float = 3.0):
        """
        Initialize probe.

        Args:
            timeout: Total request timeout in seconds
        """
        self.timeout = timeout

    async def _get(self, url: str, user: str, password: str) -> Optional[str]:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url,
                    auth=aiohttp.BasicAuth(user, password),
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        logger.debug(f"Admin probe {url} returned {response.status}")
                        return None
                    return await response.text()

        except asyncio.TimeoutError:
            logger.debug(f"Admin probe {url} timed out")
            return None
        except aiohttp.ClientError as e:
            logger.debug(f"Admin probe {url} failed: {e}")
            return None

    async def fetch_stats(
        self, host: str, port: int, user: str, password: str
    ) -> Optional[AdminStats]:
        """
        Fetch server statistics.

        Returns:
            AdminStats, or None if the endpoint is unreachable or rejects us
        """
        body = await self._get(f"http://{host}:{port}/admin/stats.xml", user, password)
        if body is None:
            return None
        try:
            return parse_stats_xml(body)
        except ET.ParseError as e:
            logger.warning(f"Unparseable stats.xml from {host}:{port}: {e}")
            return None

    async def fetch_mountpoints(
        self, host: str, port: int, user: str, password: str
    ) -> Optional[List[MountInfo]]:
        """
        Fetch the active mountpoints.

        Returns:
            List of MountInfo, or None if the endpoint is unreachable
        """
        body = await self._get(f"http://{host}:{port}/admin/listmounts.xml", user, password)
        if body is None:
            return None
        try:
            return parse_listmounts_xml(body)
        except ET.ParseError as e:
            logger.warning(f"Unparseable listmounts.xml from {host}:{port}: {e}")
            return None
