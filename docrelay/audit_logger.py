import os
import threading

from docrelay.event_bus import EventBus, RelayEvent


class AuditLogger:
    """
    Subscribes to an EventBus and appends every event
    to a JSONL file.
    """
    def __init__(self, file_path: str, event_bus: EventBus):
        self.file_path = file_path
        self._lock = threading.Lock()

        os.makedirs(os.path.dirname(os.path.abspath(self.file_path)), exist_ok=True)

        event_bus.subscribe(self.log_event)

    def log_event(self, event: RelayEvent) -> None:
        line = event.model_dump_json() + "\n"
        with self._lock:
            with open(self.file_path, "a", encoding="utf-8") as f:
                f.write(line)
