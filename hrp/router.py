from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from .directory import DiscoveryError, ServiceDirectory


class RoutingError(Exception):
    status_code = 400


class MissingHeader(RoutingError):
    status_code = 400

    def __init__(self, header_name: str):
        super().__init__(f"missing required header {header_name}")
        self.header_name = header_name


class KeyNotFound(RoutingError):
    status_code = 404

    def __init__(self, key: str):
        super().__init__(f"Service not found for routing key '{key}'")
        self.key = key


@dataclass(frozen=True)
class Redirect:
    ip: str
    status_code: int = 307

    @property
    def location(self) -> str:
        return f"http://{self.ip}"


class RequestRouter:
    def __init__(self, directory: ServiceDirectory, header_name: str = "X-Org-ID"):
        self.directory = directory
        self.header_name = header_name

    def extract_key(self, headers: Mapping[str, str]) -> str:
        key = (headers.get(self.header_name) or "").strip()
        if not key:
            raise MissingHeader(self.header_name)
        return key

    def route(self, headers: Mapping[str, str]) -> Redirect:
        """Decide where a request goes.

        Strategy:
          1) Look the key up in the current snapshot
          2) On a miss, wait for one (shared) directory refresh and look again

        Raises MissingHeader or KeyNotFound.
        """
        key = self.extract_key(headers)

        ip, found = self.directory.lookup(key)
        if found:
            return Redirect(ip=ip)

        try:
            self.directory.ensure_fresh()
        except DiscoveryError as e:
            # The old snapshot is still published; retry against it.
            self.directory.events.log("WARN", f"Refresh for key '{key}' failed: {e}")

        ip, found = self.directory.lookup(key)
        if not found:
            raise KeyNotFound(key)
        return Redirect(ip=ip)
