"""
Post-operation events.

Events are dispatched after an operation completed successfully. Listeners
can react but cannot veto; a failing listener is logged and skipped.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, ClassVar, DefaultDict, List

from filemanager.file_access.item_data import ItemData
from filemanager.monitoring.errors import record_error


@dataclass(frozen=True)
class ApiEvent:
    NAME: ClassVar[str] = ""


@dataclass(frozen=True)
class AfterFolderReadEvent(ApiEvent):
    NAME: ClassVar[str] = "api.after.folder.read"
    folder_data: ItemData
    files_list: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AfterFolderSeekEvent(ApiEvent):
    NAME: ClassVar[str] = "api.after.folder.seek"
    folder_data: ItemData
    search_string: str
    search_result: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AfterFolderCreateEvent(ApiEvent):
    NAME: ClassVar[str] = "api.after.folder.create"
    folder_data: ItemData


@dataclass(frozen=True)
class AfterFileUploadEvent(ApiEvent):
    NAME: ClassVar[str] = "api.after.file.upload"
    uploaded_file_data: ItemData


@dataclass(frozen=True)
class AfterFileExtractEvent(ApiEvent):
    NAME: ClassVar[str] = "api.after.file.extract"
    archive_data: ItemData
    files_list: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AfterItemRenameEvent(ApiEvent):
    NAME: ClassVar[str] = "api.after.item.rename"
    item_data: ItemData
    original_item_data: ItemData


@dataclass(frozen=True)
class AfterItemCopyEvent(ApiEvent):
    NAME: ClassVar[str] = "api.after.item.copy"
    item_data: ItemData
    original_item_data: ItemData


@dataclass(frozen=True)
class AfterItemMoveEvent(ApiEvent):
    NAME: ClassVar[str] = "api.after.item.move"
    item_data: ItemData
    original_item_data: ItemData


@dataclass(frozen=True)
class AfterItemDeleteEvent(ApiEvent):
    NAME: ClassVar[str] = "api.after.item.delete"
    original_item_data: ItemData


@dataclass(frozen=True)
class AfterItemDownloadEvent(ApiEvent):
    NAME: ClassVar[str] = "api.after.item.download"
    downloaded_item_data: ItemData


Listener = Callable[[ApiEvent], None]


class EventDispatcher:
    """Name-keyed listener registry."""

    def __init__(self):
        self._listeners: DefaultDict[str, List[Listener]] = defaultdict(list)

    def add_listener(self, name: str, listener: Listener) -> None:
        self._listeners[name].append(listener)

    def remove_listener(self, name: str, listener: Listener) -> None:
        if listener in self._listeners.get(name, []):
            self._listeners[name].remove(listener)

    def dispatch(self, event: ApiEvent) -> ApiEvent:
        for listener in list(self._listeners.get(event.NAME, [])):
            try:
                listener(event)
            except Exception as exc:
                record_error(
                    component="events",
                    function="dispatch",
                    message=f"Listener failed for {event.NAME}: {exc}",
                    details={"event": event.NAME, "listener": getattr(listener, "__name__", repr(listener))},
                )
        return event
