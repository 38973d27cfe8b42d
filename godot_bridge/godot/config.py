"""
Configuration and logging setup for the Godot bridge.

Provides environment-driven configuration (with `.env` support) and the
colored console formatter. The composed `Config` is built once at startup
and passed down through constructors; nothing here is a mutable global.
"""

import os
import sys
import shutil
import logging
from datetime import datetime
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, TextIO

from dotenv import load_dotenv

from .types import BackendKind, Profile

# Load environment variables
load_dotenv()

config_logger = logging.getLogger("godot_bridge.config")


# =============================================================================
# Logging Configuration
# =============================================================================

# ANSI color codes for terminal output
class LogColors:
    """ANSI escape codes for colored terminal output."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    BRIGHT_BLACK = "\033[90m"
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_BLUE = "\033[94m"
    BRIGHT_MAGENTA = "\033[95m"
    BRIGHT_CYAN = "\033[96m"
    BRIGHT_WHITE = "\033[97m"


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors and component-based formatting."""

    # Component colors and icons
    COMPONENT_STYLES = {
        "godot_bridge": (LogColors.BRIGHT_CYAN, "🚀"),
        "godot_bridge.supervisor": (LogColors.MAGENTA, "🔗"),
        "godot_bridge.router": (LogColors.CYAN, "📡"),
        "godot_bridge.heartbeat": (LogColors.YELLOW, "💓"),
        "godot_bridge.process": (LogColors.BRIGHT_GREEN, "⚙️"),
        "godot_bridge.runtime": (LogColors.GREEN, "🎮"),
        "godot_bridge.lsp": (LogColors.BLUE, "📝"),
        "godot_bridge.dap": (LogColors.BRIGHT_MAGENTA, "🐞"),
        "godot_bridge.link": (LogColors.BRIGHT_BLACK, "📦"),
        "godot_bridge.pending": (LogColors.BRIGHT_BLACK, "⏳"),
        "godot_bridge.mcp": (LogColors.BRIGHT_BLUE, "⚡"),
        "godot_bridge.http": (LogColors.BRIGHT_BLUE, "🌐"),
    }

    # Level colors and labels
    LEVEL_STYLES = {
        logging.DEBUG: (LogColors.BRIGHT_BLACK, "DBG"),
        logging.INFO: (LogColors.GREEN, "INF"),
        logging.WARNING: (LogColors.YELLOW, "WRN"),
        logging.ERROR: (LogColors.RED, "ERR"),
        logging.CRITICAL: (LogColors.BRIGHT_RED + LogColors.BOLD, "CRT"),
    }

    def __init__(self, use_colors: bool = True, stream: Optional[TextIO] = None):
        super().__init__()
        stream = stream or sys.stderr
        self.use_colors = use_colors and hasattr(stream, "isatty") and stream.isatty()

    def format(self, record: logging.LogRecord) -> str:
        component_color, icon = self.COMPONENT_STYLES.get(
            record.name,
            (LogColors.WHITE, "•")
        )

        # Check for parent logger match
        if record.name not in self.COMPONENT_STYLES:
            for comp_name, style in self.COMPONENT_STYLES.items():
                if record.name.startswith(comp_name + "."):
                    component_color, icon = style
                    break

        level_color, level_label = self.LEVEL_STYLES.get(
            record.levelno,
            (LogColors.WHITE, "???")
        )

        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        short_name = record.name.replace("godot_bridge.", "").upper()
        if short_name == "GODOT_BRIDGE":
            short_name = "SERVER"

        if self.use_colors:
            line = (
                f"{LogColors.DIM}{timestamp}{LogColors.RESET} "
                f"{level_color}{level_label}{LogColors.RESET} "
                f"{icon} {component_color}{short_name:10}{LogColors.RESET} "
                f"{LogColors.BRIGHT_WHITE}{record.getMessage()}{LogColors.RESET}"
            )
        else:
            # Plain output (non-TTY, or piped into an MCP host's log)
            line = f"{timestamp} {level_label} {short_name:10} {record.getMessage()}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


def setup_logging(
    level: int = logging.INFO,
    use_colors: bool = True,
    stream: Optional[TextIO] = None
) -> logging.Logger:
    """
    Configure and return the bridge logger.

    Args:
        level: Logging level
        use_colors: Whether to use colored output
        stream: Output stream. Defaults to stderr so that stdout stays
            free for the MCP stdio transport.

    Returns:
        Configured logger instance
    """
    stream = stream or sys.stderr

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console_handler = logging.StreamHandler(stream)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors, stream=stream))
    console_handler.setLevel(level)

    root.setLevel(level)
    root.addHandler(console_handler)

    bridge_logger = logging.getLogger("godot_bridge")
    bridge_logger.setLevel(level)
    bridge_logger.propagate = True

    # Silence noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("mcp").setLevel(logging.WARNING)

    uvicorn_error = logging.getLogger("uvicorn.error")
    uvicorn_error.handlers = []
    uvicorn_error.addHandler(console_handler)
    uvicorn_access = logging.getLogger("uvicorn.access")
    uvicorn_access.handlers = []
    uvicorn_access.addHandler(console_handler)
    logging.getLogger("uvicorn").setLevel(logging.WARNING)

    return bridge_logger


# =============================================================================
# Environment helpers
# =============================================================================

def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_port(keys: tuple[str, ...], default: int) -> int:
    """First valid port among `keys`; invalid values are skipped with a warning."""
    for key in keys:
        raw = os.getenv(key)
        if raw is None or not raw.strip():
            continue
        try:
            port = int(raw.strip())
        except ValueError:
            port = 0
        if 1 <= port <= 65535:
            return port
        config_logger.warning(
            f"Ignoring invalid {key}='{raw}'. Expected an integer between 1 and 65535."
        )
    return default


def find_godot_executable() -> Optional[str]:
    """
    Locate the engine binary.

    Order: GODOT_PATH, `godot` on PATH, then the usual install locations
    for the current platform.
    """
    explicit = os.getenv("GODOT_PATH")
    if explicit and explicit.strip():
        return explicit.strip()

    for name in ("godot", "godot4"):
        found = shutil.which(name)
        if found:
            return found

    home = Path.home()
    if sys.platform == "darwin":
        candidates = [
            Path("/Applications/Godot.app/Contents/MacOS/Godot"),
            Path("/Applications/Godot_mono.app/Contents/MacOS/Godot"),
            home / "Applications/Godot.app/Contents/MacOS/Godot",
        ]
    elif sys.platform == "win32":
        candidates = [
            Path("C:/Program Files/Godot/Godot.exe"),
            Path("C:/Program Files (x86)/Godot/Godot.exe"),
            home / "Godot/Godot.exe",
        ]
    else:
        candidates = [
            Path("/usr/bin/godot"),
            Path("/usr/local/bin/godot"),
            Path("/snap/bin/godot"),
            home / ".local/bin/godot",
        ]

    for candidate in candidates:
        if candidate.is_file():
            return str(candidate)
    return None


DEFAULT_OPERATIONS_SCRIPT = str(Path(__file__).resolve().parent.parent / "scripts" / "godot_operations.gd")


# =============================================================================
# Server Configuration
# =============================================================================

@dataclass(frozen=True)
class ServerConfig:
    """HTTP server configuration."""
    host: str = "127.0.0.1"
    port: int = 8765
    cors_origins: tuple = ("*",)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create config from environment variables."""
        return cls(
            host=os.getenv("SERVER_HOST", "127.0.0.1"),
            port=int(os.getenv("SERVER_PORT", "8765")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper()
        )


@dataclass(frozen=True)
class BridgeConfig:
    """Exposure profile, outer transport and per-kind default deadlines."""
    profile: Profile = Profile.FULL
    transport: str = "stdio"

    # Default dispatch deadlines (in seconds)
    process_timeout: float = 60.0
    runtime_timeout: float = 30.0
    lsp_timeout: float = 10.0
    dap_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Create config from environment variables. Raises ValueError on a bad profile."""
        transport = os.getenv("GODOT_BRIDGE_TRANSPORT", "stdio").strip().lower()
        if transport not in ("stdio", "http"):
            raise ValueError(f"Unknown transport '{transport}' (expected stdio or http)")
        return cls(
            profile=Profile.parse(os.getenv("GODOT_BRIDGE_PROFILE", "full")),
            transport=transport,
            process_timeout=float(os.getenv("PROCESS_TIMEOUT", "60")),
            runtime_timeout=float(os.getenv("RUNTIME_TIMEOUT", "30")),
            lsp_timeout=float(os.getenv("LSP_TIMEOUT", "10")),
            dap_timeout=float(os.getenv("DAP_TIMEOUT", "10")),
        )

    def default_timeout(self, kind: BackendKind) -> float:
        return {
            BackendKind.PROCESS: self.process_timeout,
            BackendKind.RUNTIME: self.runtime_timeout,
            BackendKind.LSP: self.lsp_timeout,
            BackendKind.DAP: self.dap_timeout,
        }[kind]


@dataclass(frozen=True)
class ProcessConfig:
    """Process-spawn channel configuration."""
    godot_path: Optional[str] = None
    project_path: Optional[str] = None
    operations_script: str = DEFAULT_OPERATIONS_SCRIPT
    debug: bool = False
    max_processes: int = 4

    @classmethod
    def from_env(cls) -> "ProcessConfig":
        """Create config from environment variables."""
        return cls(
            godot_path=find_godot_executable(),
            project_path=os.getenv("GODOT_PROJECT_PATH") or None,
            operations_script=os.getenv("GODOT_OPERATIONS_SCRIPT", DEFAULT_OPERATIONS_SCRIPT),
            debug=_env_bool("GODOT_DEBUG_OPERATIONS", False),
            max_processes=max(1, int(os.getenv("GODOT_MAX_PROCESSES", "4"))),
        )


@dataclass(frozen=True)
class EndpointConfig:
    """Loopback endpoints of the persistent backends."""
    host: str = "127.0.0.1"
    runtime_port: int = 6505
    lsp_port: int = 6005
    dap_port: int = 6006
    connect_timeout: float = 3.0

    @classmethod
    def from_env(cls) -> "EndpointConfig":
        """Create config from environment variables."""
        return cls(
            host=os.getenv("GODOT_BACKEND_HOST", "127.0.0.1"),
            runtime_port=_env_port(("GODOT_BRIDGE_PORT", "MCP_BRIDGE_PORT", "GOPEAK_BRIDGE_PORT"), 6505),
            lsp_port=_env_port(("GODOT_LSP_PORT",), 6005),
            dap_port=_env_port(("GODOT_DAP_PORT",), 6006),
            connect_timeout=float(os.getenv("CONNECT_TIMEOUT", "3.0")),
        )


@dataclass(frozen=True)
class ReconnectConfig:
    """Bounded exponential backoff for persistent channel reconnects."""
    initial_delay: float = 0.5
    max_delay: float = 8.0
    multiplier: float = 2.0
    max_attempts: int = 6

    @classmethod
    def from_env(cls) -> "ReconnectConfig":
        """Create config from environment variables."""
        return cls(
            initial_delay=float(os.getenv("RECONNECT_INITIAL_DELAY", "0.5")),
            max_delay=float(os.getenv("RECONNECT_MAX_DELAY", "8.0")),
            multiplier=float(os.getenv("RECONNECT_MULTIPLIER", "2.0")),
            max_attempts=max(1, int(os.getenv("RECONNECT_MAX_ATTEMPTS", "6"))),
        )

    def delay(self, attempt: int) -> float:
        """Backoff before the given attempt (1-based)."""
        return min(self.max_delay, self.initial_delay * (self.multiplier ** (attempt - 1)))


@dataclass(frozen=True)
class HeartbeatConfig:
    """Health sweep configuration."""
    # Timing (in milliseconds)
    sweep_interval_ms: int = 15_000
    pong_timeout_ms: int = 5_000
    max_missed_pongs: int = 2

    @classmethod
    def from_env(cls) -> "HeartbeatConfig":
        """Create config from environment variables."""
        return cls(
            sweep_interval_ms=int(os.getenv("HEARTBEAT_SWEEP_MS", "15000")),
            pong_timeout_ms=int(os.getenv("HEARTBEAT_PONG_TIMEOUT_MS", "5000")),
            max_missed_pongs=int(os.getenv("HEARTBEAT_MAX_MISSED_PONGS", "2")),
        )


# =============================================================================
# Composite Configuration
# =============================================================================

@dataclass(frozen=True)
class Config:
    """Complete application configuration."""
    server: ServerConfig = field(default_factory=ServerConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    process: ProcessConfig = field(default_factory=ProcessConfig)
    endpoints: EndpointConfig = field(default_factory=EndpointConfig)
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Create complete config from environment."""
        return cls(
            server=ServerConfig.from_env(),
            bridge=BridgeConfig.from_env(),
            process=ProcessConfig.from_env(),
            endpoints=EndpointConfig.from_env(),
            reconnect=ReconnectConfig.from_env(),
            heartbeat=HeartbeatConfig.from_env(),
        )
