"""Runtime configuration.

Values come from keyword arguments, then from ``DRIVERLESS_*`` environment
variables (a ``.env`` file is loaded first), then from the defaults below.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# CDP errors that close() treats as success. Closing an iframe or worker
# target through Target.closeTarget answers with this, the target still goes away.
BENIGN_CLOSE_ERRORS: list[tuple[int, str]] = [
    (-32000, "Command can only be executed on top-level targets"),
]

_ENV_FIELDS = {
    "host": "DRIVERLESS_HOST",
    "startup_timeout": "DRIVERLESS_STARTUP_TIMEOUT",
    "discovery_interval": "DRIVERLESS_DISCOVERY_INTERVAL",
    "command_timeout": "DRIVERLESS_COMMAND_TIMEOUT",
    "find_timeout": "DRIVERLESS_FIND_TIMEOUT",
    "load_timeout": "DRIVERLESS_LOAD_TIMEOUT",
    "max_ws_size": "DRIVERLESS_MAX_WS_SIZE",
    "flat_sessions": "DRIVERLESS_FLAT_SESSIONS",
}


class DriverlessConfig(BaseModel):
    host: str = "127.0.0.1:9222"
    startup_timeout: float = Field(default=10.0, gt=0)
    discovery_interval: float = Field(default=0.1, gt=0)
    command_timeout: float = Field(default=10.0, gt=0)
    find_timeout: float = Field(default=10.0, ge=0)
    load_timeout: float = Field(default=30.0, gt=0)
    max_ws_size: int = Field(default=50 * 1024 * 1024, gt=0)
    # Attach to page targets through the browser socket (sessionId routing)
    # instead of opening ws://host/devtools/page/{id} per target.
    flat_sessions: bool = False
    benign_close_errors: list[tuple[int, str]] = Field(default_factory=lambda: list(BENIGN_CLOSE_ERRORS))

    @classmethod
    def from_env(cls, dotenv_path: str | Path | None = None, **overrides) -> "DriverlessConfig":
        load_dotenv(dotenv_path)
        values: dict = {}
        for field, env_name in _ENV_FIELDS.items():
            raw = os.getenv(env_name)
            if raw is not None and raw != "":
                values[field] = raw
        values.update(overrides)
        return cls.model_validate(values)

    def is_benign_close_error(self, code: int, message: str) -> bool:
        return any(code == c and fragment in message for c, fragment in self.benign_close_errors)
