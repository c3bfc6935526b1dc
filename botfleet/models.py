"""
Identity and Target records, and the connection parameters built from them.

Identities carry an authentication strategy: OfflineAuth for a plain
nickname, ManagedAuth for an account that logs in through a device-code
flow and keeps a per-identity credential cache.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from . import config


DeviceCodeCallback = Callable[[str, str], None]


class AuthKind(str, Enum):
    """Authentication strategy of an identity."""
    OFFLINE = "offline"
    MANAGED = "microsoft"


@dataclass(frozen=True)
class OfflineAuth:
    """Nickname-only login, no credentials."""
    username: str

    @property
    def kind(self) -> AuthKind:
        return AuthKind.OFFLINE

    def credentials(
        self,
        identity_id: str,
        on_device_code: Optional[DeviceCodeCallback] = None,
    ) -> Dict[str, Any]:
        return {"username": self.username, "auth": self.kind.value}


@dataclass(frozen=True)
class ManagedAuth:
    """
    Managed-account login.

    Attributes:
        username: Account name (shown as the in-game name after login)
        cache_dir: Credential cache directory; defaults to
            <data dir>/msa-cache/<identity id>
        auth_server: Authority used for the device-code flow
    """
    username: str
    cache_dir: Optional[str] = None
    auth_server: str = config.DEFAULT_AUTH_SERVER

    @property
    def kind(self) -> AuthKind:
        return AuthKind.MANAGED

    def credentials(
        self,
        identity_id: str,
        on_device_code: Optional[DeviceCodeCallback] = None,
    ) -> Dict[str, Any]:
        cache_dir = self.cache_dir or str(config.data_path("msa-cache", identity_id))
        return {
            "username": self.username,
            "auth": self.kind.value,
            "auth_server": self.auth_server,
            "cache_dir": cache_dir,
            "on_device_code": on_device_code,
        }


AuthStrategy = Union[OfflineAuth, ManagedAuth]


@dataclass(frozen=True)
class Identity:
    """
    A named authentication profile.

    Attributes:
        id: Stable identifier
        label: Display name
        auth: OfflineAuth or ManagedAuth
    """
    id: str
    label: str
    auth: AuthStrategy

    @property
    def auth_kind(self) -> AuthKind:
        return self.auth.kind

    @property
    def username(self) -> str:
        return self.auth.username

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Identity":
        """Build from a store record ({id, label, auth, username, cacheDir?})."""
        kind = AuthKind(data.get("auth", AuthKind.OFFLINE.value))
        if kind is AuthKind.OFFLINE:
            auth: AuthStrategy = OfflineAuth(username=data["username"])
        else:
            auth = ManagedAuth(
                username=data["username"],
                cache_dir=data.get("cacheDir") or None,
            )
        return cls(id=data["id"], label=data["label"], auth=auth)

    def to_dict(self) -> Dict[str, Any]:
        record = {
            "id": self.id,
            "label": self.label,
            "auth": self.auth_kind.value,
            "username": self.username,
        }
        if isinstance(self.auth, ManagedAuth) and self.auth.cache_dir:
            record["cacheDir"] = self.auth.cache_dir
        return record


@dataclass(frozen=True)
class Target:
    """
    A named remote server endpoint.

    Attributes:
        id: Stable identifier
        label: Display name
        host: Server hostname or IP
        port: Server port
        version: Protocol version, or None to negotiate
        keep_alive: Whether to keep the connection alive
    """
    id: str
    label: str
    host: str
    port: int = config.DEFAULT_PORT
    version: Optional[str] = None
    keep_alive: bool = True

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Target":
        return cls(
            id=data["id"],
            label=data["label"],
            host=data["host"],
            port=int(data.get("port") or config.DEFAULT_PORT),
            version=data.get("version") or None,
            keep_alive=data.get("keepAlive", True) is not False,
        )

    def to_dict(self) -> Dict[str, Any]:
        record = {
            "id": self.id,
            "label": self.label,
            "host": self.host,
            "port": self.port,
            "keepAlive": self.keep_alive,
        }
        if self.version:
            record["version"] = self.version
        return record


@dataclass(frozen=True)
class ConnectOptions:
    """Everything a protocol client needs to open one connection."""
    host: str
    port: int
    username: str
    auth: str = AuthKind.OFFLINE.value
    version: Optional[str] = None
    keep_alive: bool = True
    cache_dir: Optional[str] = None
    auth_server: Optional[str] = None
    on_device_code: Optional[DeviceCodeCallback] = field(default=None, compare=False, repr=False)


def build_connect_options(
    identity: Identity,
    target: Target,
    on_device_code: Optional[DeviceCodeCallback] = None,
) -> ConnectOptions:
    """
    Combine a target endpoint with an identity's credentials.

    Args:
        identity: Who to log in as
        target: Where to connect
        on_device_code: Called with (verification_uri, user_code) when a
            managed identity needs interactive login

    Returns:
        ConnectOptions for the connection factory
    """
    return ConnectOptions(
        host=target.host,
        port=target.port,
        version=target.version,
        keep_alive=target.keep_alive,
        **identity.auth.credentials(identity.id, on_device_code),
    )
