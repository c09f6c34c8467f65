"""Resolve SphinxQL connection parameters from a DSN or a .my.cnf file."""

from __future__ import annotations

import configparser
import re
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote, urlsplit

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3306

# user:password@tcp(host:port)/db  or  user:password@unix(/path/to.sock)/db
_GO_DSN_RE = re.compile(
    r"^(?:(?P<user>[^:@]*)(?::(?P<password>.*))?@)?"
    r"(?P<proto>tcp|unix)\((?P<addr>[^)]*)\)"
    r"/(?P<db>[^?]*)(?:\?.*)?$"
)


class ConfigError(Exception):
    """Raised when no usable connection settings can be resolved."""


@dataclass(frozen=True)
class ConnectionParams:
    user: str = ""
    password: str = field(default="", repr=False)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    unix_socket: str | None = None
    db: str = ""

    def connect_kwargs(self) -> dict:
        kwargs: dict = {"user": self.user, "password": self.password, "db": self.db}
        if self.unix_socket:
            kwargs["unix_socket"] = self.unix_socket
        else:
            kwargs["host"] = self.host
            kwargs["port"] = self.port
        return kwargs

    def __str__(self) -> str:
        where = f"unix({self.unix_socket})" if self.unix_socket else f"tcp({self.host}:{self.port})"
        return f"{self.user}@{where}/{self.db}"


def _port(value: str | None, source: str) -> int:
    if not value:
        return DEFAULT_PORT
    try:
        port = int(value)
    except ValueError:
        raise ConfigError(f"invalid port {value!r} in {source}") from None
    if not 0 < port < 65536:
        raise ConfigError(f"port {port} out of range in {source}")
    return port


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def parse_dsn(dsn: str) -> ConnectionParams:
    """Parse ``user:pass@tcp(host:port)/db``, ``user:pass@unix(path)/`` or ``mysql://`` DSNs."""
    dsn = dsn.strip()
    if dsn.startswith("mysql://"):
        parts = urlsplit(dsn)
        try:
            port = parts.port
        except ValueError:
            raise ConfigError("invalid port in DSN") from None
        return ConnectionParams(
            user=unquote(parts.username or ""),
            password=unquote(parts.password or ""),
            host=parts.hostname or DEFAULT_HOST,
            port=port or DEFAULT_PORT,
            db=parts.path.lstrip("/"),
        )

    m = _GO_DSN_RE.match(dsn)
    if not m:
        raise ConfigError("unrecognised DSN format")
    user = m.group("user") or ""
    password = m.group("password") or ""
    db = m.group("db")
    addr = m.group("addr")
    if m.group("proto") == "unix":
        if not addr:
            raise ConfigError("unix DSN needs a socket path")
        return ConnectionParams(user=user, password=password, unix_socket=addr, db=db)

    host, _, port = addr.rpartition(":")
    if not host:
        host, port = port, ""
    return ConnectionParams(
        user=user,
        password=password,
        host=host or DEFAULT_HOST,
        port=_port(port, "DSN"),
        db=db,
    )


def parse_mycnf(path: str | Path) -> ConnectionParams:
    """Read the ``[client]`` section of a MySQL-style credentials file."""
    path = Path(path).expanduser()
    # Option files carry bare flags (skip-name-resolve) and repeated keys.
    cfg = configparser.ConfigParser(interpolation=None, allow_no_value=True, strict=False)
    try:
        with open(path) as f:
            cfg.read_file(f)
    except (OSError, configparser.Error) as e:
        raise ConfigError(f"failed reading ini file: {e}") from e

    client = cfg["client"] if cfg.has_section("client") else {}

    def option(name: str) -> str:
        return _unquote(client.get(name) or "")

    user = option("user")
    password = option("password")
    if not user or not password:
        raise ConfigError(f"no user or password specified under [client] in {path}")

    socket = option("socket")
    if socket:
        return ConnectionParams(user=user, password=password, unix_socket=socket)
    return ConnectionParams(
        user=user,
        password=password,
        host=option("host") or DEFAULT_HOST,
        port=_port(option("port"), str(path)),
    )


def resolve_connection(dsn: str | None, mycnf: str | Path | None) -> ConnectionParams:
    """A DSN wins; otherwise fall back to the credentials file."""
    if dsn:
        return parse_dsn(dsn)
    if not mycnf:
        raise ConfigError("No DATA_SOURCE_NAME given and no .my.cnf configured.")
    return parse_mycnf(mycnf)
