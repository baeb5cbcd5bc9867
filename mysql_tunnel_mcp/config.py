from dataclasses import dataclass
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class TunnelConfig:
    ssh_host: str
    ssh_user: str
    ssh_key_path: str
    ssh_port: int = 22
    local_port: int = 33061
    remote_host: str = "localhost"
    remote_port: int = 3306
    known_hosts: str | None = None
    connect_timeout: float = 15.0
    keepalive_interval: float = 30.0


@dataclass(frozen=True)
class DatabaseConfig:
    host: str = "127.0.0.1"
    port: int = 33061
    user: str = "root"
    password: str = ""
    database: str = "database"
    pool_size: int = 5
    connect_timeout: int = 10


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # MySQL, addressed from the SSH server's side of the tunnel
    db_host:            str = "localhost"
    db_port:            int = 3306
    db_user:            str = "root"
    db_password:        str = ""
    db_name:            str = "database"
    db_pool_size:       int = 5
    db_connect_timeout: int = 10

    # SSH tunnel
    ssh_host:               str
    ssh_port:               int = 22
    ssh_user:               str
    ssh_key_path:           str
    ssh_local_port:         int = 33061
    ssh_known_hosts:        str | None = None
    ssh_connect_timeout:    float = 15.0
    ssh_keepalive_interval: float = 30.0

    idle_timeout_seconds: float = 300.0

    # MCP server
    mcp_transport: str = "stdio"
    mcp_host:      str = "127.0.0.1"
    mcp_port:      int = 8002

    log_level: str = "INFO"

    @property
    def tunnel_config(self) -> TunnelConfig:
        return TunnelConfig(
            ssh_host=self.ssh_host,
            ssh_port=self.ssh_port,
            ssh_user=self.ssh_user,
            ssh_key_path=self.ssh_key_path,
            local_port=self.ssh_local_port,
            remote_host=self.db_host,
            remote_port=self.db_port,
            known_hosts=self.ssh_known_hosts,
            connect_timeout=self.ssh_connect_timeout,
            keepalive_interval=self.ssh_keepalive_interval,
        )

    @property
    def database_config(self) -> DatabaseConfig:
        # The pool always talks to the local end of the tunnel.
        return DatabaseConfig(
            host="127.0.0.1",
            port=self.ssh_local_port,
            user=self.db_user,
            password=self.db_password,
            database=self.db_name,
            pool_size=self.db_pool_size,
            connect_timeout=self.db_connect_timeout,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
