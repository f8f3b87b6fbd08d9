"""Rule repository: CRUD, ordered condition/action editing, templates.

Readers work on published snapshots. Every edit copies the affected rule,
changes the copy, and swaps a new immutable snapshot in under the lock, so an
evaluation pass that already holds a snapshot never sees a half-applied edit.
"""
import copy
import logging
import threading
from pathlib import Path

import yaml

from engine.errors import RuleInUseError, RuleNotFoundError, ValidationError
from models.enums import AuditAction
from models.rules import Rule, RuleAction, RuleCondition, RuleTemplate, utc_now

logger = logging.getLogger("opsrules.engine.rules")

EDITABLE_FIELDS = ("name", "description", "is_active", "conditions", "actions", "priority", "tags")


def _serialize(field_name, value):
    if field_name in ("conditions", "actions"):
        return [item.to_dict() for item in value]
    if field_name == "tags":
        return list(value)
    return value


def _coerce_items(field_name, items):
    cls = RuleCondition if field_name == "conditions" else RuleAction
    return [item if isinstance(item, cls) else cls.from_dict(item) for item in items]


class RulesManager:
    def __init__(self, audit, statistics=None, db=None, templates_path=None):
        self.audit = audit
        self.statistics = statistics
        self.db = db
        self._rules = {}
        self._next_sequence = 1
        self._snapshot = ()
        self._lock = threading.RLock()
        self._in_use_checks = []
        self.templates = []
        if templates_path:
            self.load_templates(templates_path)

    # --- loading ---

    def load(self):
        """Load persisted rules and statistics from the store."""
        if self.db is None:
            return
        with self._lock:
            for rule in self.db.get_rules(include_deleted=True):
                self._rules[rule.id] = rule
                self._next_sequence = max(self._next_sequence, rule.sequence + 1)
            self._publish()
        if self.statistics is not None:
            self.statistics.load(self.db)
        logger.info(f"Loaded {len(self._rules)} rules from store")

    def load_templates(self, path):
        path = Path(path)
        if not path.exists():
            logger.warning(f"Rule templates file not found: {path}")
            return
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        self.templates = [
            RuleTemplate(
                id=t["id"],
                name=t.get("name", t["id"]),
                description=t.get("description", ""),
                category=t.get("category", "General"),
                conditions=t.get("conditions", []),
                actions=t.get("actions", []),
                tags=t.get("tags", []),
            )
            for t in data.get("templates", [])
        ]
        logger.info(f"Loaded {len(self.templates)} rule templates")

    def add_in_use_check(self, check):
        """Register ``check(rule_id) -> [test ids]`` consulted before deletion."""
        self._in_use_checks.append(check)

    # --- reads ---

    def _publish(self):
        active = [r for r in self._rules.values() if r.is_active and not r.is_deleted]
        active.sort(key=lambda r: (-r.priority, r.sequence))
        self._snapshot = tuple(active)

    def snapshot(self):
        """Active rules, priority descending, ties in creation order."""
        return self._snapshot

    def get_enabled_rules(self):
        return list(self._snapshot)

    def get_rule(self, rule_id, include_deleted=False):
        rule = self._rules.get(rule_id)
        if rule is None or (rule.is_deleted and not include_deleted):
            return None
        return rule

    def require_rule(self, rule_id, include_deleted=False):
        rule = self.get_rule(rule_id, include_deleted)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    def get_all_rules(self, include_deleted=False):
        rules = [r for r in self._rules.values() if include_deleted or not r.is_deleted]
        return sorted(rules, key=lambda r: r.sequence)

    def list_rules(self, active=None, tag=None, search=None, sort_by="priority", descending=True):
        rules = self.get_all_rules()
        if active is not None:
            rules = [r for r in rules if r.is_active == active]
        if tag:
            rules = [r for r in rules if tag in r.tags]
        if search:
            needle = search.lower()
            rules = [r for r in rules if needle in r.name.lower() or needle in r.description.lower()]

        if sort_by in ("priority", "name", "created_at", "updated_at"):
            # stable sort on sequence first keeps creation order for ties
            rules.sort(key=lambda r: getattr(r, sort_by), reverse=descending)
        elif self.statistics is not None and sort_by in ("times_triggered", "success_rate",
                                                          "average_execution_time", "evaluation_count"):
            stats = {r.id: self.statistics.get(r.id) for r in rules}
            rules.sort(key=lambda r: getattr(stats[r.id], sort_by), reverse=descending)
        else:
            raise ValidationError(f"Unknown sort field: {sort_by}")
        return rules

    # --- mutations ---

    def _validate(self, rule):
        if not rule.name or not rule.name.strip():
            raise ValidationError("Rule name is required")
        for field_name in ("conditions", "actions"):
            ids = [item.id for item in getattr(rule, field_name)]
            if len(ids) != len(set(ids)):
                raise ValidationError(f"Duplicate ids in {field_name}")

    def _persist(self, rule):
        if self.db is not None:
            self.db.save_rule(rule)

    def create_rule(self, rule, user_id="system"):
        """Register a new rule and write the ``created`` audit entry."""
        if isinstance(rule, dict):
            rule = Rule.from_dict(rule)
        rule = copy.deepcopy(rule)
        rule.created_by = user_id
        rule.last_modified_by = user_id
        rule.created_at = rule.updated_at = utc_now()
        rule.is_deleted = False
        self._validate(rule)

        with self._lock:
            if rule.id in self._rules:
                raise ValidationError(f"Rule id already exists: {rule.id}")
            rule.sequence = self._next_sequence
            self._next_sequence += 1
            self._rules[rule.id] = rule
            self._publish()
        if self.statistics is not None:
            self.statistics.register(rule.id)
        self._persist(rule)
        logger.info(f"Rule created: {rule.id} ({rule.name})")
        self.audit.record(rule.id, AuditAction.CREATED, user_id,
                          metadata={"name": rule.name, "priority": rule.priority})
        return rule

    def update_rule(self, rule_id, updates, user_id="system", reason=None):
        """Apply field updates; one ``modified`` entry carries the diff."""
        unknown = set(updates) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")

        with self._lock:
            current = self.require_rule(rule_id)
            updated = copy.deepcopy(current)
            changed = []
            for field_name, value in updates.items():
                if field_name in ("conditions", "actions"):
                    value = _coerce_items(field_name, value)
                elif field_name == "priority":
                    value = int(value)
                elif field_name == "is_active":
                    value = bool(value)
                old = _serialize(field_name, getattr(current, field_name))
                new = _serialize(field_name, value)
                if old != new:
                    setattr(updated, field_name, value)
                    changed.append((field_name, old, new))
            if not changed:
                return current
            self._validate(updated)
            updated.last_modified_by = user_id
            updated.updated_at = utc_now()
            self._rules[rule_id] = updated
            self._publish()
        self._persist(updated)

        if len(changed) == 1:
            field_name, old, new = changed[0]
            changes = {"field": field_name, "old_value": old, "new_value": new, "reason": reason}
        else:
            changes = {
                "field": ",".join(name for name, _, _ in changed),
                "old_value": {name: old for name, old, _ in changed},
                "new_value": {name: new for name, _, new in changed},
                "reason": reason,
            }
        logger.info(f"Rule modified: {rule_id} ({changes['field']})")
        self.audit.record(rule_id, AuditAction.MODIFIED, user_id, changes=changes)
        return updated

    def set_active(self, rule_id, is_active, user_id="system", reason=None):
        return self.update_rule(rule_id, {"is_active": is_active}, user_id, reason)

    def toggle_rule(self, rule_id, user_id="system", reason=None):
        rule = self.require_rule(rule_id)
        return self.set_active(rule_id, not rule.is_active, user_id, reason)

    def delete_rule(self, rule_id, user_id="system", reason=None):
        """Soft delete: drop from evaluation, keep history, audit ``deleted``.

        Rejected with RuleInUseError while a draft or running A/B test
        references the rule.
        """
        with self._lock:
            current = self.require_rule(rule_id)
            blocking = [tid for check in self._in_use_checks for tid in check(rule_id)]
            if blocking:
                raise RuleInUseError(rule_id, blocking)
            deleted = copy.deepcopy(current)
            deleted.is_deleted = True
            deleted.is_active = False
            deleted.last_modified_by = user_id
            deleted.updated_at = utc_now()
            self._rules[rule_id] = deleted
            self._publish()
        self._persist(deleted)
        logger.info(f"Rule deleted: {rule_id}")
        self.audit.record(rule_id, AuditAction.DELETED, user_id,
                          changes={"field": "is_deleted", "old_value": False, "new_value": True,
                                   "reason": reason})
        return deleted

    # --- ordered condition / action editing ---

    def _edit_list(self, rule_id, field_name, edit, user_id, reason):
        rule = self.require_rule(rule_id)
        items = list(getattr(rule, field_name))
        edit(items)
        return self.update_rule(rule_id, {field_name: items}, user_id, reason)

    @staticmethod
    def _index_of(items, item_id):
        for i, item in enumerate(items):
            if item.id == item_id:
                return i
        raise ValidationError(f"No item with id {item_id}")

    def add_condition(self, rule_id, condition, index=None, user_id="system", reason=None):
        if isinstance(condition, dict):
            condition = RuleCondition.from_dict(condition)
        return self._edit_list(rule_id, "conditions",
                               lambda items: items.insert(len(items) if index is None else index, condition),
                               user_id, reason)

    def remove_condition(self, rule_id, condition_id, user_id="system", reason=None):
        return self._edit_list(rule_id, "conditions",
                               lambda items: items.pop(self._index_of(items, condition_id)),
                               user_id, reason)

    def move_condition(self, rule_id, condition_id, new_index, user_id="system", reason=None):
        def move(items):
            item = items.pop(self._index_of(items, condition_id))
            items.insert(new_index, item)
        return self._edit_list(rule_id, "conditions", move, user_id, reason)

    def add_action(self, rule_id, action, index=None, user_id="system", reason=None):
        if isinstance(action, dict):
            action = RuleAction.from_dict(action)
        return self._edit_list(rule_id, "actions",
                               lambda items: items.insert(len(items) if index is None else index, action),
                               user_id, reason)

    def remove_action(self, rule_id, action_id, user_id="system", reason=None):
        return self._edit_list(rule_id, "actions",
                               lambda items: items.pop(self._index_of(items, action_id)),
                               user_id, reason)

    def move_action(self, rule_id, action_id, new_index, user_id="system", reason=None):
        def move(items):
            item = items.pop(self._index_of(items, action_id))
            items.insert(new_index, item)
        return self._edit_list(rule_id, "actions", move, user_id, reason)

    # --- templates ---

    def get_templates(self, search="", category=None):
        return [t for t in self.templates if t.matches(search, category)]

    def get_template(self, template_id):
        for t in self.templates:
            if t.id == template_id:
                return t
        return None

    def apply_template(self, template_id, user_id="system", name=None, priority=0, is_active=True):
        """Create a new rule from a template; ids are freshly generated."""
        template = self.get_template(template_id)
        if template is None:
            raise ValidationError(f"Unknown template: {template_id}")
        rule = Rule(
            name=name or template.name,
            description=template.description,
            conditions=[RuleCondition.from_dict(c) for c in template.conditions],
            actions=[RuleAction.from_dict(a) for a in template.actions],
            priority=priority,
            tags=list(template.tags),
            is_active=is_active,
        )
        return self.create_rule(rule, user_id)
