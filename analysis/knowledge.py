"""Operational knowledge base consulted by the narrative analyzer."""
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone

from models.analysis import KnowledgeEntry

logger = logging.getLogger("aimonitor.analysis.knowledge")


class KnowledgeNotFoundError(LookupError):
    def __init__(self, entry_id):
        self.entry_id = entry_id
        super().__init__(f"Knowledge entry not found: {entry_id}")


def _metric_list(metric_types):
    if isinstance(metric_types, str):
        return [m.strip() for m in metric_types.split(",") if m.strip()]
    return list(metric_types or [])


class KnowledgeBase:
    def __init__(self, db):
        self.db = db

    def add_entry(self, title, content, category="general", metric_types=None, severity=""):
        if not title or not content:
            raise ValueError("Knowledge entries need a title and content")
        entry = KnowledgeEntry(
            id=str(uuid.uuid4()),
            title=title,
            content=content,
            category=category or "general",
            metric_types=_metric_list(metric_types),
            severity=severity or "",
            created_at=datetime.now(timezone.utc),
        )
        self.db.insert_knowledge(entry)
        logger.info(f"Added knowledge entry: {title}")
        return entry

    def get_entry(self, entry_id):
        entry = self.db.get_knowledge(entry_id)
        if entry is None:
            raise KnowledgeNotFoundError(entry_id)
        return entry

    def update_entry(self, entry_id, title=None, content=None, category=None, metric_types=None, severity=None):
        """Partial update; fields left as None keep their stored value."""
        current = self.get_entry(entry_id)
        changes = {}
        if title is not None:
            changes["title"] = title
        if content is not None:
            changes["content"] = content
        if category is not None:
            changes["category"] = category or "general"
        if metric_types is not None:
            changes["metric_types"] = _metric_list(metric_types)
        if severity is not None:
            changes["severity"] = severity
        updated = replace(current, **changes)
        if not updated.title or not updated.content:
            raise ValueError("Knowledge entries need a title and content")
        if not self.db.update_knowledge(updated):
            raise KnowledgeNotFoundError(entry_id)
        logger.info(f"Updated knowledge entry: {updated.title}")
        return updated

    def delete_entry(self, entry_id):
        if not self.db.delete_knowledge(entry_id):
            raise KnowledgeNotFoundError(entry_id)
        logger.info(f"Deleted knowledge entry {entry_id}")

    def list_entries(self, category=None, search=None):
        return self.db.list_knowledge(category=category, search=search)

    def stats(self):
        return self.db.knowledge_stats()

    def relevant(self, metric_name, severity, limit=3):
        """Entries tagged with the metric or matching the severity."""
        return self.db.find_knowledge(metric_name, severity, limit=limit)
