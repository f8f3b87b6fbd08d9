"""Action executors: the external effects behind each rule action type.

The dispatcher only routes ``type + config + event``; everything that touches
the outside world (alert store, notification channels, HTTP) lives here.
"""
import logging
from typing import Any, Dict, Protocol, runtime_checkable

from engine.channels import Notification
from models.alerts import AlertRecord, AlertRuleLinkage
from models.enums import ActionType, LinkageType
from utils.http_client import HTTPClient
from utils.rate_limiter import RateLimiter

logger = logging.getLogger("opsrules.engine.executors")


class ActionExecutionError(Exception):
    """An action's effect could not be carried out."""


@runtime_checkable
class ActionExecutor(Protocol):
    def execute(self, action_type: str, config: Dict[str, Any], event, rule) -> Dict[str, Any]: ...


class DefaultActionExecutor:
    """Carries out rule actions against the store, channels and webhooks."""

    def __init__(self, db=None, channels=None, config=None, http_client=None):
        self.db = db
        self.channels = list(channels or [])
        self.config = config or {}
        actions_cfg = self.config.get("actions", {})
        self._http = http_client
        self._webhook_base = actions_cfg.get("webhook_base_url", "")
        self._webhook_timeout = actions_cfg.get("webhook_timeout_seconds", 5)
        self._webhook_rpm = actions_cfg.get("webhook_calls_per_minute", 120)
        self._handlers = {
            ActionType.CREATE_ALERT.value: self._create_alert,
            ActionType.SEND_NOTIFICATION.value: self._send_notification,
            ActionType.ESCALATE.value: self._escalate,
            ActionType.TAG_EVENT.value: self._tag_event,
            ActionType.WEBHOOK.value: self._webhook,
        }

    def execute(self, action_type, config, event, rule):
        handler = self._handlers.get(action_type)
        if handler is None:
            raise ActionExecutionError(f"Unsupported action type: {action_type}")
        return handler(config, event, rule)

    # --- create_alert ---

    def _create_alert(self, config, event, rule):
        alert = AlertRecord(
            rule_id=rule.id,
            rule_name=rule.name,
            title=config.get("title") or f"{rule.name}: {event.title}",
            description=config.get("description") or event.description,
            severity=config.get("severity") or event.severity,
            source=event.source,
            tags=list(dict.fromkeys(list(event.tags) + list(config.get("tags", [])))),
            assigned_team=config.get("assign_to_team") or config.get("assignToTeam"),
            related_events=[event.id],
            metadata={"event_type": event.type, "escalate_after": config.get("escalate_after")
                      or config.get("escalateAfter")},
        )
        if self.db is not None:
            self.db.save_alert(alert)
            self.db.save_alert_linkage(AlertRuleLinkage(
                alert_id=alert.id,
                rule_id=rule.id,
                linkage_type=LinkageType.TRIGGERED_BY,
                confidence=1.0,
                context={"event_id": event.id},
            ))
        logger.info(f"Alert {alert.id} created by rule {rule.id} for event {event.id}")
        return {"alert_id": alert.id, "severity": alert.severity}

    # --- send_notification / escalate ---

    def _notify(self, kind, config, event, rule, extra=None):
        if not self.channels:
            raise ActionExecutionError("No notification channels configured")
        notification = Notification(
            kind=kind,
            rule_id=rule.id,
            rule_name=rule.name,
            event_id=event.id,
            severity=config.get("severity") or event.severity,
            message=config.get("message") or event.summary or event.title,
            recipients=list(config.get("recipients", [])),
            channels=list(config.get("channels", [])),
            extra=extra or {},
        )
        delivered = 0
        for channel in self.channels:
            try:
                if channel.send(notification) is not False:
                    delivered += 1
            except Exception as e:
                logger.warning(f"Channel {type(channel).__name__} failed: {e}")
        if delivered == 0:
            raise ActionExecutionError(f"{kind} for rule {rule.id} was not delivered by any channel")
        return {"delivered": delivered, "recipients": notification.recipients}

    def _send_notification(self, config, event, rule):
        return self._notify("notification", config, event, rule)

    def _escalate(self, config, event, rule):
        escalate_after = config.get("escalate_after", config.get("escalateAfter"))
        target = config.get("target") or config.get("team")
        return self._notify("escalation", config, event, rule,
                            extra={"escalate_after": escalate_after, "target": target})

    # --- tag_event ---

    def _tag_event(self, config, event, rule):
        tags = config.get("tags")
        if not isinstance(tags, list) or not tags:
            raise ActionExecutionError("tag_event requires a non-empty 'tags' list")
        new_tags = [t for t in tags if t not in event.tags]
        return {"event_id": event.id, "tags": list(tags), "added": new_tags}

    # --- webhook ---

    def _client(self):
        if self._http is None:
            self._http = HTTPClient(
                self._webhook_base,
                rate_limiter=RateLimiter(self._webhook_rpm),
                timeout=self._webhook_timeout,
            )
        return self._http

    def _webhook(self, config, event, rule):
        url = config.get("url")
        if not url:
            raise ActionExecutionError("webhook requires a 'url'")
        method = str(config.get("method", "POST")).upper()
        body = {
            "rule": {"id": rule.id, "name": rule.name},
            "event": event.to_dict(),
        }
        if config.get("payload"):
            body["payload"] = config["payload"]
        response = self._client().request(method, url, json=body, headers=config.get("headers"))
        return {"url": url, "method": method, "response": response}
