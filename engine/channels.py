"""Notification channels used by the notify and escalate actions."""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from models.rules import utc_now

logger = logging.getLogger("opsrules.engine.channels")


@dataclass
class Notification:
    kind: str  # "notification" or "escalation"
    rule_id: str
    rule_name: str
    event_id: str
    severity: str
    message: str
    recipients: List[str] = field(default_factory=list)
    channels: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "event_id": self.event_id,
            "severity": self.severity,
            "message": self.message,
            "recipients": list(self.recipients),
            "channels": list(self.channels),
            "extra": dict(self.extra),
            "created_at": self.created_at.isoformat(),
        }


@runtime_checkable
class NotificationChannel(Protocol):
    def send(self, notification) -> bool: ...


class ConsoleChannel:
    """Print notifications to the terminal with rich formatting."""

    def __init__(self, console=None):
        self._console = console

    def send(self, notification) -> bool:
        from rich.console import Console
        console = self._console or Console()

        severity_styles = {
            "critical": "bold white on red",
            "warning": "bold yellow",
            "info": "bold blue",
            "low": "dim",
        }
        style = severity_styles.get(str(notification.severity).lower(), "")
        label = "ESCALATION" if notification.kind == "escalation" else "NOTIFY"
        recipients = f" → {', '.join(notification.recipients)}" if notification.recipients else ""
        console.print(f"[{style}] [{label}] {notification.rule_name}: {notification.message}{recipients}[/]")
        return True


class FileChannel:
    """Append notifications to a JSON lines log file."""

    def __init__(self, log_path="data/notifications.jsonl"):
        self.log_path = log_path

    def send(self, notification) -> bool:
        try:
            Path(self.log_path).parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a") as f:
                f.write(json.dumps(notification.to_dict(), default=str) + "\n")
            return True
        except OSError as e:
            logger.warning(f"Failed to write notification to file: {e}")
            return False


def build_channels(config: Optional[dict] = None, interactive=False):
    """Channels enabled by the ``notifications`` config section."""
    cfg = (config or {}).get("notifications", {})
    channels = []
    if cfg.get("file_enabled", True):
        channels.append(FileChannel(cfg.get("file_path", "data/notifications.jsonl")))
    if interactive and cfg.get("console_enabled", True):
        channels.append(ConsoleChannel())
    return channels
