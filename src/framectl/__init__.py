"""framectl - control plane for multi-frame, multi-tab document hosts

Drives a document host that only offers tab/frame enumeration, navigation
lifecycle events, script injection and a message channel:

- `NavigationTracker` keeps per-tab frame trees consistent with the host
- `ExecutionContext` runs injected-script calls against one frame and world
- `HandleRegistry` gives remote nodes opaque, revalidatable handles
- transfer ports move large binary payloads in ordered chunks
"""

import logging

from framectl.config import ConfigError, ControlConfig
from framectl.core.events import Disposable, DisposableStore, Emitter, wait_for_event
from framectl.core.progress import (
    ProgressAbortedError,
    ProgressController,
    ProgressTimeoutError,
    execute_with_progress,
    is_abort_error,
)
from framectl.core.protocol_error import (
    ContextDestroyedError,
    ErrorKind,
    FrameDetachedError,
    ProtocolError,
    is_protocol_error,
    is_session_closed_error,
)
from framectl.core.scope import LongStandingScope
from framectl.execution.context import ExecutionContext, PayloadTooLargeError
from framectl.execution.element_handle import ElementHandle, ElementOperationError
from framectl.execution.types import ActionResult, BoundingBox, FilePayload, SetInputFilesResult
from framectl.handles import HandleRegistry
from framectl.host import (
    ChannelMessage,
    FrameInfo,
    HostSurface,
    NavigationDetails,
    TabActivation,
    TabInfo,
    World,
)
from framectl.injected import InjectedScript, InjectedScriptError
from framectl.navigation.frame import Frame, FrameStatus, LifecycleEvent, NavigationAbortedError
from framectl.navigation.frame_manager import FrameAttachError, FrameManager
from framectl.navigation.page import Page, PageClosedError
from framectl.navigation.tracker import CommitEvent, NavigationTracker, sort_frames_by_hierarchy
from framectl.transfer.port import (
    PortClosedError,
    TransferError,
    TransferFailedError,
    TransferPortConnection,
    TransferPortController,
)
from framectl.transfer.receiver import ReceivingTransfer
from framectl.transfer.remote import TransferPort, TransferPortManager

logging.getLogger("framectl").addHandler(logging.NullHandler())

__version__ = "0.1.0"
