"""
Godot bridge core.

Connects one dispatch path to four kinds of engine backends:
- a headless engine process per call (scene/resource editing)
- the runtime addon socket (live game inspection)
- the editor's GDScript language server
- the editor's debug adapter

Components:
- ConnectionSupervisor: lifecycle and state of every backend connection
- HeartbeatMonitor: periodic health sweep
- ProfileRouter: resolve -> validate -> acquire -> execute -> normalize
- PendingRequestTable: correlation of concurrent requests on one socket
"""

from .types import (
    Profile,
    BackendKind,
    ConnectionState,
    Deadline,
    Response,
    Event,
    BackendConnection,
    ConnectionSnapshot,
    ToolResult,
)

from .errors import (
    BridgeError,
    ToolValidationError,
    UnknownToolError,
    BackendUnavailableError,
    ToolTimeoutError,
    ProtocolError,
    ToolExecutionError,
    PartialFailure,
    RegistryError,
)

from .config import (
    Config,
    ServerConfig,
    BridgeConfig,
    ProcessConfig,
    EndpointConfig,
    ReconnectConfig,
    HeartbeatConfig,
    setup_logging,
    find_godot_executable,
)

from .pending import PendingRequest, PendingRequestTable
from .transport import (
    NewlineFramer,
    ContentLengthFramer,
    RuntimeCodec,
    LspCodec,
    DapCodec,
    FrameTooLarge,
)
from .link import BackendChannel, StreamLink
from .process_channel import ProcessChannel, parse_result
from .runtime_channel import RuntimeChannel
from .lsp_channel import LspChannel
from .dap_channel import DapChannel
from .supervisor import ConnectionSupervisor
from .heartbeat import HeartbeatMonitor
from .router import ProfileRouter, ResourceLocks, resource_key


__all__ = [
    # Types
    "Profile",
    "BackendKind",
    "ConnectionState",
    "Deadline",
    "Response",
    "Event",
    "BackendConnection",
    "ConnectionSnapshot",
    "ToolResult",
    # Errors
    "BridgeError",
    "ToolValidationError",
    "UnknownToolError",
    "BackendUnavailableError",
    "ToolTimeoutError",
    "ProtocolError",
    "ToolExecutionError",
    "PartialFailure",
    "RegistryError",
    # Config
    "Config",
    "ServerConfig",
    "BridgeConfig",
    "ProcessConfig",
    "EndpointConfig",
    "ReconnectConfig",
    "HeartbeatConfig",
    "setup_logging",
    "find_godot_executable",
    # Transport
    "PendingRequest",
    "PendingRequestTable",
    "NewlineFramer",
    "ContentLengthFramer",
    "RuntimeCodec",
    "LspCodec",
    "DapCodec",
    "FrameTooLarge",
    # Channels
    "BackendChannel",
    "StreamLink",
    "ProcessChannel",
    "parse_result",
    "RuntimeChannel",
    "LspChannel",
    "DapChannel",
    # Orchestration
    "ConnectionSupervisor",
    "HeartbeatMonitor",
    "ProfileRouter",
    "ResourceLocks",
    "resource_key",
]
