"""Environment-driven settings for builders and store connections."""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class BuildSettings(BaseSettings, env_prefix="ID3KIT_", env_file=".env", env_file_encoding="utf-8", extra="ignore"):
    """Tuning knobs for the relational builder.

    Attributes:
        max_branch_workers (int | None): Upper bound on worker threads started
            for the branches of one node. None starts one thread per branch.
        log_statements (bool): Whether every statement sent to the store is
            logged at the SQL level.
    """

    max_branch_workers: int | None = Field(
        default=None,
        ge=1,
        description="Upper bound on worker threads per node; None starts one thread per branch.",
    )
    log_statements: bool = Field(default=True, description="Log every store statement at the SQL level.")


class MySQLSettings(
    BaseSettings,
    env_prefix="ID3KIT_MYSQL_",
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
):
    """Connection parameters for a MySQL store.

    Attributes:
        host (str): Server host name.
        port (int): Server port.
        user (str): Login user.
        password (SecretStr): Login password.
        database (str): Schema holding the training relations.
    """

    host: str = Field(default="localhost", description="Server host name.")
    port: int = Field(default=3306, ge=1, le=65535, description="Server port.")
    user: str = Field(default="root", description="Login user.")
    password: SecretStr = Field(default=SecretStr(""), description="Login password.")
    database: str = Field(default="id3kit", description="Schema holding the training relations.")
