"""
Listing and fetching candidate files at an institution's source location.

One transport class per source kind, selected from an explicit
SourceDescriptor (kind + location). Absence (404, missing directory) means
"no files"; every other failure raises TransportError so the caller can skip
the institution for this cycle.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import quote, unquote

import requests
from django.conf import settings

from cardledger.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceDescriptor:
    kind: str
    location: str


def _extension() -> str:
    return getattr(settings, "CARDLEDGER_SOURCE_EXTENSION", ".csv")


def _matches(name: str, extension: str) -> bool:
    return name.lower().endswith(extension.lower())


class HttpTransport:
    """
    Remote listing endpoint.

    Understands a JSON array of names, a JSON object with a "files" array,
    or an HTML directory index (href values ending in the extension).
    """

    def __init__(self, session: Optional[requests.Session] = None,
                 list_timeout: Optional[int] = None, download_timeout: Optional[int] = None):
        self.session = session or requests.Session()
        self.list_timeout = list_timeout or getattr(settings, "CARDLEDGER_LIST_TIMEOUT", 15)
        self.download_timeout = download_timeout or getattr(settings, "CARDLEDGER_DOWNLOAD_TIMEOUT", 30)

    def list(self, location: str, extension: str) -> List[str]:
        try:
            response = self.session.get(
                location,
                timeout=self.list_timeout,
                headers={"Accept": "application/json, text/html"},
            )
        except requests.RequestException as exc:
            raise TransportError(f"Listing {location} failed: {exc}", location) from exc

        if response.status_code == 404:
            logger.info("Source directory not found: %s", location)
            return []
        if response.status_code >= 400:
            raise TransportError(f"Listing {location} returned HTTP {response.status_code}", location)

        content_type = response.headers.get("Content-Type", "")
        if "application/json" in content_type:
            try:
                payload = response.json()
            except ValueError as exc:
                raise TransportError(f"Listing {location} returned invalid JSON: {exc}", location) from exc
            if isinstance(payload, dict):
                payload = payload.get("files")
            if not isinstance(payload, list):
                return []
            return [name for name in payload if isinstance(name, str) and _matches(name, extension)]

        if "text/html" in content_type:
            return parse_html_listing(response.text, extension)

        return []

    def fetch(self, location: str, file_name: str) -> bytes:
        url = f"{location.rstrip('/')}/{quote(file_name)}"
        try:
            response = self.session.get(url, timeout=self.download_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise TransportError(f"Download of {url} failed: {exc}", location) from exc
        return response.content

    def path_for(self, location: str, file_name: str) -> str:
        return f"{location.rstrip('/')}/{file_name}"


def parse_html_listing(html: str, extension: str = ".csv") -> List[str]:
    """Extract unique file names from href attributes ending in `extension`, in page order."""
    pattern = re.compile(rf"""href=["']([^"']*{re.escape(extension)})["']""", re.IGNORECASE)
    files = []
    for match in pattern.finditer(html or ""):
        name = unquote(match.group(1).split("/")[-1])
        if name and name not in files:
            files.append(name)
    return files


class LocalDirectoryTransport:
    """A directory on the local filesystem; `file://` prefixes are accepted."""

    @staticmethod
    def _directory(location: str) -> Path:
        if location.startswith("file://"):
            location = location[len("file://"):]
        return Path(location)

    def list(self, location: str, extension: str) -> List[str]:
        directory = self._directory(location)
        if not directory.is_dir():
            logger.info("Source directory not found: %s", directory)
            return []
        try:
            names = os.listdir(directory)
        except OSError as exc:
            raise TransportError(f"Reading directory {directory} failed: {exc}", location) from exc
        return sorted(
            name for name in names
            if _matches(name, extension) and (directory / name).is_file()
        )

    def fetch(self, location: str, file_name: str) -> bytes:
        path = self._directory(location) / file_name
        try:
            return path.read_bytes()
        except OSError as exc:
            raise TransportError(f"Reading {path} failed: {exc}", location) from exc

    def path_for(self, location: str, file_name: str) -> str:
        return str(self._directory(location) / file_name)


class SftpTransport:
    """Remote transfer protocol. Not supported yet: lists nothing."""

    def list(self, location: str, extension: str) -> List[str]:
        logger.warning("SFTP sources are not supported; nothing listed at %s", location)
        return []

    def fetch(self, location: str, file_name: str) -> bytes:
        raise TransportError(f"SFTP download is not supported ({location})", location)

    def path_for(self, location: str, file_name: str) -> str:
        return f"{location.rstrip('/')}/{file_name}"


class SourceLister:
    """Dispatches listing and download to the transport registered for a descriptor's kind."""

    def __init__(self, transports: Optional[Dict[str, object]] = None, extension: Optional[str] = None):
        self.transports = transports if transports is not None else {
            "http": HttpTransport(),
            "local": LocalDirectoryTransport(),
            "sftp": SftpTransport(),
        }
        self.extension = extension or _extension()

    def _transport(self, descriptor: SourceDescriptor):
        try:
            return self.transports[descriptor.kind]
        except KeyError:
            raise TransportError(f"Unsupported source kind: {descriptor.kind}", descriptor.location) from None

    def list(self, descriptor: SourceDescriptor) -> List[str]:
        return self._transport(descriptor).list(descriptor.location, self.extension)

    def fetch(self, descriptor: SourceDescriptor, file_name: str) -> bytes:
        return self._transport(descriptor).fetch(descriptor.location, file_name)

    def path_for(self, descriptor: SourceDescriptor, file_name: str) -> str:
        return self._transport(descriptor).path_for(descriptor.location, file_name)
