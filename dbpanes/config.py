from dataclasses import asdict, dataclass, replace
from enum import StrEnum
import json
from pathlib import Path
from urllib.parse import parse_qs, unquote, urlparse


DEFAULT_POSTGRES_PORT = 5432


class ConnectionKind(StrEnum):
    POSTGRES = "postgres"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class ConnectionConfig:
    name: str
    kind: ConnectionKind = ConnectionKind.POSTGRES
    host: str = ""
    port: int = 0
    user: str = ""
    password: str = ""
    database: str = ""
    sslmode: str = ""
    path: str = ""

    def describe(self) -> str:
        if self.kind == ConnectionKind.SQLITE:
            return f"{self.name} (sqlite: {self.path})"
        return f"{self.name} ({self.host}:{self.port or DEFAULT_POSTGRES_PORT}/{self.database})"


@dataclass(frozen=True)
class AppConfig:
    connections: list[ConnectionConfig]


def _config_dir() -> Path:
    return Path.home() / ".config" / ".dbpanes"


def _config_path() -> Path:
    local_path = Path.cwd() / "connections.json"
    if local_path.exists():
        return local_path
    return _config_dir() / "connections.json"


def _query_path() -> Path:
    return _config_dir() / "query.sql"


def log_path() -> Path:
    return _config_dir() / "dbpanes.log"


def _connection_from_dict(item: dict) -> ConnectionConfig:
    return ConnectionConfig(
        name=item["name"],
        kind=ConnectionKind(item.get("type") or ConnectionKind.POSTGRES),
        host=item.get("host", ""),
        port=int(item.get("port") or 0),
        user=item.get("user", ""),
        password=item.get("password", ""),
        database=item.get("database", ""),
        sslmode=item.get("sslmode", ""),
        path=item.get("path", ""),
    )


def _connection_to_dict(connection: ConnectionConfig) -> dict:
    payload = asdict(connection)
    payload["type"] = str(payload.pop("kind"))
    return {
        key: value
        for key, value in payload.items()
        if value or key in {"name", "type", "database"}
    }


def load_config() -> AppConfig:
    config_path = _config_path()
    if not config_path.exists():
        return AppConfig(connections=[])
    data = json.loads(config_path.read_text(encoding="utf-8"))
    items = data if isinstance(data, list) else data.get("connections", [])
    connections = [_connection_from_dict(item) for item in items]
    connections.sort(key=lambda connection: connection.name.lower())
    return AppConfig(connections=connections)


def save_config(config: AppConfig) -> None:
    config_path = _config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "connections": [
            _connection_to_dict(connection) for connection in config.connections
        ],
    }
    config_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    config_path.chmod(0o600)


def add_connection(config: AppConfig, connection: ConnectionConfig) -> AppConfig:
    if any(existing.name == connection.name for existing in config.connections):
        raise ValueError(f"Connection name already exists: {connection.name}")
    updated_connections = sorted(
        [*config.connections, connection],
        key=lambda existing: existing.name.lower(),
    )
    return AppConfig(connections=updated_connections)


def remove_connection(config: AppConfig, name: str) -> AppConfig:
    remaining = [existing for existing in config.connections if existing.name != name]
    if len(remaining) == len(config.connections):
        raise ValueError(f"Unknown connection: {name}")
    return AppConfig(connections=remaining)


def find_connection(config: AppConfig, name: str) -> ConnectionConfig:
    for connection in config.connections:
        if connection.name == name:
            return connection
    raise ValueError(f"Unknown connection: {name}")


def sqlite_database_label(file_path: str) -> str:
    """File stem with dots replaced, since catalog paths are dot-separated."""
    return Path(file_path).stem.replace(".", "_")


def connection_from_url(name: str, url: str) -> ConnectionConfig:
    parsed_url = urlparse(url)
    scheme = parsed_url.scheme.lower()
    if scheme in {"sqlite", "sqlite3"}:
        file_path = unquote(parsed_url.netloc + parsed_url.path)
        if not file_path:
            raise ValueError("Missing required connection field: path")
        return ConnectionConfig(
            name=name,
            kind=ConnectionKind.SQLITE,
            database=sqlite_database_label(file_path),
            path=file_path,
        )
    if scheme not in {"postgres", "postgresql"}:
        raise ValueError(f"Unsupported connection URL scheme: {parsed_url.scheme}")
    if parsed_url.hostname is None:
        raise ValueError("Missing required connection field: host")
    if parsed_url.username is None:
        raise ValueError("Missing required connection field: username")
    query = parse_qs(parsed_url.query)
    return ConnectionConfig(
        name=name,
        kind=ConnectionKind.POSTGRES,
        host=parsed_url.hostname,
        port=parsed_url.port or DEFAULT_POSTGRES_PORT,
        user=unquote(parsed_url.username),
        password=unquote(parsed_url.password or ""),
        database=parsed_url.path.lstrip("/") or "postgres",
        sslmode=query.get("sslmode", [""])[0],
    )


def with_database(connection: ConnectionConfig, database_name: str) -> ConnectionConfig:
    return replace(connection, database=database_name)


def load_last_query() -> str:
    query_path = _query_path()
    if not query_path.exists():
        return "SELECT 1;"
    return query_path.read_text(encoding="utf-8").strip() or "SELECT 1;"


def save_last_query(query_text: str) -> None:
    config_dir = _config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    _query_path().write_text(query_text.strip() or "SELECT 1;", encoding="utf-8")
