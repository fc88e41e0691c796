"""
Remote-wins reconciliation of synced entities into the local store.

For each entity type the remote collection is fetched with the current token
(network on the caller's thread), diffed against the local rows of the same
user, and applied in one store transaction on the owner thread. A failure
aborts only that entity type; siblings still run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from pydantic import ValidationError

from ..api.gateway import GatewayClient
from ..core.events import EventBus, LocalStoreChanged, SyncCompleted, UserSignedIn
from ..core.owner import OwnerExecutor
from ..models.entities import SyncedEntity
from ..stores.local_store import LocalStore
from ..utils.exceptions import (
    ApiError,
    NetworkError,
    NotAuthenticated,
    PersistenceError,
    SessionSuperseded,
)
from ..utils.logger import get_logger
from .entities import SYNC_ORDER, EntityKind

logger = get_logger(__name__)


@dataclass
class SyncCounts:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.inserted or self.updated or self.deleted)


@dataclass
class SyncReport:
    user_id: str
    counts: Dict[str, SyncCounts] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    superseded: bool = False

    @property
    def inserted(self) -> int:
        return sum(c.inserted for c in self.counts.values())

    @property
    def updated(self) -> int:
        return sum(c.updated for c in self.counts.values())

    @property
    def deleted(self) -> int:
        return sum(c.deleted for c in self.counts.values())

    @property
    def ok(self) -> bool:
        return not self.errors and not self.superseded


class ReconciliationEngine:
    def __init__(self, session_manager, gateway: GatewayClient, store: LocalStore, owner: OwnerExecutor, events: EventBus):
        self.sessions = session_manager
        self.gateway = gateway
        self.store = store
        self.owner = owner
        self.events = events

    def prepare_for_user(self, user_id: str) -> None:
        """Drop every synced row and cart row before a new user's first sync."""
        self.owner.run(self.store.wipe_synced_and_cart)
        logger.info("Local data cleared for sign-in", user_id=user_id)
        self.events.publish(LocalStoreChanged(table="*", user_id=user_id))

    def on_user_signed_in(self, event: UserSignedIn) -> None:
        # A resumed session keeps its local rows and cart
        if not event.resumed:
            self.prepare_for_user(event.user_id)
        self.sync_all(event.user_id)

    def sync_all(self, user_id: str) -> SyncReport:
        self.sessions.require_session(user_id)
        report = SyncReport(user_id=user_id)

        for kind in SYNC_ORDER:
            try:
                report.counts[kind.name] = self.sync_entity(kind, user_id)
            except (SessionSuperseded, NotAuthenticated) as e:
                logger.warning("Sync pass discarded; session changed", user_id=user_id, entity=kind.name, error=str(e))
                report.superseded = True
                break
            except (ApiError, NetworkError, PersistenceError) as e:
                logger.error("Entity sync failed", user_id=user_id, entity=kind.name, error=str(e))
                report.errors[kind.name] = str(e)

        logger.info(
            "Sync finished",
            user_id=user_id,
            inserted=report.inserted,
            updated=report.updated,
            deleted=report.deleted,
            errors=len(report.errors),
            superseded=report.superseded,
        )
        if not report.superseded:
            self.events.publish(
                SyncCompleted(
                    user_id=user_id,
                    inserted=report.inserted,
                    updated=report.updated,
                    deleted=report.deleted,
                    failed_entities=sorted(report.errors),
                )
            )
        return report

    def sync_entity(self, kind: EntityKind, user_id: str) -> SyncCounts:
        generation = self.sessions.generation
        session = self.sessions.require_session(user_id)

        response = self.gateway.fetch_collection(kind.collection, session.access_token)
        remote = self._decode(kind, response.data, user_id)

        counts = self.owner.run(self._apply, kind, user_id, generation, remote)
        if counts.changed:
            self.events.publish(LocalStoreChanged(table=kind.table, user_id=user_id))
        return counts

    @staticmethod
    def _decode(kind: EntityKind, records: List[dict], user_id: str) -> Dict[str, SyncedEntity]:
        decoded: Dict[str, SyncedEntity] = {}
        for record in records:
            if not isinstance(record, dict):
                continue
            owner_id = record.get("user_id") or record.get("userId")
            if owner_id and owner_id != user_id:
                logger.warning("Skipping record owned by another user", entity=kind.name, record_id=record.get("id"))
                continue
            try:
                entity = kind.model.from_remote(record, user_id)
            except ValidationError as e:
                logger.warning("Skipping malformed record", entity=kind.name, record_id=record.get("id"), error=str(e))
                continue
            decoded[entity.id] = entity
        return decoded

    def _apply(self, kind: EntityKind, user_id: str, generation: int, remote: Dict[str, SyncedEntity]) -> SyncCounts:
        """Owner thread."""
        self.sessions.check_generation(generation)

        local = {e.id: e for e in self.store.list_entities(kind.table, kind.model, user_id)}
        delete_ids = [entity_id for entity_id in local if entity_id not in remote]
        upserts: List[SyncedEntity] = []
        counts = SyncCounts(deleted=len(delete_ids))

        for entity_id, entity in remote.items():
            existing = local.get(entity_id)
            if existing is None:
                upserts.append(entity)
                counts.inserted += 1
            elif entity.differs_from(existing):
                upserts.append(entity.model_copy(update={"local_revision": existing.local_revision + 1}))
                counts.updated += 1

        if upserts or delete_ids:
            self.store.apply_reconciliation(kind.table, user_id, upserts, delete_ids)
        return counts
