"""
Data Backend collaborator.

DataBackend is the contract the synchronization layer and the mutation
operations depend on: record CRUD over named collections, query with
equality filters and optional relationship expansion, and table change
subscriptions. SqlBackend implements it over the SQLAlchemy models and
publishes a change event after every committed write.

Records cross this boundary as plain dicts; dates and datetimes are ISO
strings, mirroring what a hosted REST backend returns.
"""
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import Date, DateTime
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from fieldservice.database import SessionLocal
from fieldservice.exceptions import BackendError, ConflictError, RecordNotFoundError
from fieldservice.models import (
    Client, SubClient, EquipmentType, EquipmentModel, EquipmentUnit,
    ServiceOrder, ReagentType, ReagentDelivery, PendingReagentDelivery, Reminder
)
from fieldservice.services.realtime import ChangeEvent, ChangeFeed, Subscription

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class DataBackend(ABC):
    """Storage, query and change-notification contract"""

    @abstractmethod
    def fetch(self, collection: str, filters: Optional[Dict[str, Any]] = None,
              expand: Sequence[str] = (), order_by: Sequence[str] = ()) -> List[Record]:
        """Return rows matching every equality filter (list value = IN)"""

    @abstractmethod
    def insert(self, collection: str, record: Record) -> Record:
        ...

    @abstractmethod
    def update(self, collection: str, record_id: str, changes: Record) -> Record:
        ...

    @abstractmethod
    def upsert(self, collection: str, record: Record, conflict_keys: Sequence[str]) -> Record:
        """Insert, or update the row sharing the conflict key values"""

    @abstractmethod
    def delete(self, collection: str, record_id: str) -> bool:
        ...

    @abstractmethod
    def delete_where(self, collection: str, filters: Dict[str, Any]) -> int:
        """Delete every matching row in one transaction; returns the count"""

    @abstractmethod
    def subscribe_changes(self, table: str, events, callback: Callable[[ChangeEvent], None]) -> Subscription:
        ...

    @abstractmethod
    def unsubscribe(self, handle: Subscription) -> bool:
        ...


TABLES = {
    "clients": Client,
    "sub_clients": SubClient,
    "equipment_types": EquipmentType,
    "equipment_models": EquipmentModel,
    "equipment_inventory": EquipmentUnit,
    "service_orders": ServiceOrder,
    "reagent_types": ReagentType,
    "reagent_deliveries": ReagentDelivery,
    "pending_reagent_deliveries": PendingReagentDelivery,
    "reminders": Reminder,
}


def _serialize_value(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _group_expand(expand: Iterable[str]) -> Dict[str, List[str]]:
    """("model.type", "client") -> {"model": ["type"], "client": []}"""
    grouped: Dict[str, List[str]] = {}
    for path in expand:
        head, _, rest = path.partition(".")
        grouped.setdefault(head, [])
        if rest:
            grouped[head].append(rest)
    return grouped


def to_record(obj, expand: Iterable[str] = ()) -> Record:
    record = {column.name: _serialize_value(getattr(obj, column.name)) for column in obj.__table__.columns}
    for name, nested in _group_expand(expand).items():
        related = getattr(obj, name)
        if related is None:
            record[name] = None
        elif isinstance(related, list):
            record[name] = [to_record(item, nested) for item in related]
        else:
            record[name] = to_record(related, nested)
    return record


class SqlBackend(DataBackend):
    """DataBackend over the SQLAlchemy models"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal, feed: Optional[ChangeFeed] = None):
        self._session_factory = session_factory
        self.feed = feed or ChangeFeed()

    # ============ Helpers ============

    def _model(self, collection: str):
        model = TABLES.get(collection)
        if model is None:
            raise BackendError(f"Unknown collection '{collection}'")
        return model

    def _coerce(self, model, record: Record) -> Record:
        """Validate column names and parse ISO strings for date columns"""
        columns = model.__table__.columns
        values = {}
        for key, value in record.items():
            if key not in columns:
                raise BackendError(f"Unknown column '{key}' for {model.__tablename__}")
            column_type = columns[key].type
            if isinstance(value, str) and value:
                try:
                    if isinstance(column_type, DateTime):
                        value = datetime.fromisoformat(value)
                    elif isinstance(column_type, Date):
                        value = date.fromisoformat(value[:10])
                except ValueError:
                    raise BackendError(f"Invalid date '{value}' for {model.__tablename__}.{key}")
            elif value == "" and isinstance(column_type, (Date, DateTime)):
                value = None
            values[key] = value
        return values

    def _apply_filters(self, query, model, filters: Optional[Dict[str, Any]]):
        for key, value in (filters or {}).items():
            column = getattr(model, key, None)
            if column is None:
                raise BackendError(f"Unknown filter column '{key}' for {model.__tablename__}")
            if isinstance(value, (list, tuple, set)):
                query = query.filter(column.in_(list(value)))
            elif value is None:
                query = query.filter(column.is_(None))
            else:
                query = query.filter(column == value)
        return query

    def _load_options(self, model, expand: Sequence[str]):
        options = []
        for path in expand:
            current_model = model
            loader = None
            for attr_name in path.split("."):
                attr = getattr(current_model, attr_name, None)
                if attr is None:
                    raise BackendError(f"Unknown relationship '{path}' for {model.__tablename__}")
                loader = joinedload(attr) if loader is None else loader.joinedload(attr)
                current_model = attr.property.mapper.class_
            options.append(loader)
        return options

    def _translate(self, exc: SQLAlchemyError, action: str, collection: str) -> BackendError:
        if isinstance(exc, IntegrityError):
            detail = str(exc.orig)
            if "unique" in detail.lower() or "duplicate" in detail.lower():
                return ConflictError(f"Duplicate value while trying to {action} {collection}: {detail}")
            return BackendError(f"Constraint violation while trying to {action} {collection}: {detail}")
        if isinstance(exc, OperationalError):
            return BackendError(f"Database unavailable while trying to {action} {collection}: {exc.orig}", transient=True)
        return BackendError(f"Failed to {action} {collection}: {exc}")

    def _publish(self, event: str, collection: str):
        self.feed.publish(event, collection)

    # ============ Reads ============

    def fetch(self, collection, filters=None, expand=(), order_by=()):
        model = self._model(collection)
        db = self._session_factory()
        try:
            query = db.query(model).options(*self._load_options(model, expand))
            query = self._apply_filters(query, model, filters)
            for key in order_by:
                column = getattr(model, key.lstrip("-"))
                query = query.order_by(column.desc() if key.startswith("-") else column.asc())
            return [to_record(obj, expand) for obj in query.all()]
        except SQLAlchemyError as e:
            raise self._translate(e, "fetch", collection)
        finally:
            db.close()

    # ============ Writes ============

    def insert(self, collection, record):
        model = self._model(collection)
        values = self._coerce(model, record)
        db = self._session_factory()
        try:
            obj = model(**values)
            db.add(obj)
            db.commit()
            db.refresh(obj)
            result = to_record(obj)
        except SQLAlchemyError as e:
            db.rollback()
            raise self._translate(e, "insert into", collection)
        finally:
            db.close()
        logger.info(f"Inserted {collection} {result['id']}")
        self._publish("INSERT", collection)
        return result

    def update(self, collection, record_id, changes):
        model = self._model(collection)
        values = self._coerce(model, changes)
        values.pop("id", None)
        db = self._session_factory()
        try:
            obj = db.query(model).filter(model.id == record_id).first()
            if not obj:
                raise RecordNotFoundError(f"{collection} {record_id} not found")
            for key, value in values.items():
                setattr(obj, key, value)
            db.commit()
            db.refresh(obj)
            result = to_record(obj)
        except SQLAlchemyError as e:
            db.rollback()
            raise self._translate(e, "update", collection)
        finally:
            db.close()
        logger.info(f"Updated {collection} {record_id}")
        self._publish("UPDATE", collection)
        return result

    def upsert(self, collection, record, conflict_keys):
        model = self._model(collection)
        values = self._coerce(model, record)
        missing = [key for key in conflict_keys if key not in values]
        if missing:
            raise BackendError(f"Upsert on {collection} requires {', '.join(missing)}")
        db = self._session_factory()
        try:
            obj = db.query(model).filter_by(**{key: values[key] for key in conflict_keys}).first()
            event = "UPDATE" if obj else "INSERT"
            if obj:
                for key, value in values.items():
                    if key not in conflict_keys and key != "id":
                        setattr(obj, key, value)
            else:
                obj = model(**values)
                db.add(obj)
            db.commit()
            db.refresh(obj)
            result = to_record(obj)
        except SQLAlchemyError as e:
            db.rollback()
            raise self._translate(e, "upsert", collection)
        finally:
            db.close()
        logger.info(f"Upserted {collection} {result['id']} ({event.lower()})")
        self._publish(event, collection)
        return result

    def delete(self, collection, record_id):
        model = self._model(collection)
        db = self._session_factory()
        try:
            obj = db.query(model).filter(model.id == record_id).first()
            if not obj:
                return False
            db.delete(obj)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise self._translate(e, "delete from", collection)
        finally:
            db.close()
        logger.info(f"Deleted {collection} {record_id}")
        self._publish("DELETE", collection)
        return True

    def delete_where(self, collection, filters):
        if not filters:
            raise BackendError(f"Refusing to delete every row of {collection} without a filter")
        model = self._model(collection)
        db = self._session_factory()
        try:
            rows = self._apply_filters(db.query(model), model, filters).all()
            for obj in rows:
                db.delete(obj)
            db.commit()
            count = len(rows)
        except SQLAlchemyError as e:
            db.rollback()
            raise self._translate(e, "delete from", collection)
        finally:
            db.close()
        if count:
            logger.info(f"Deleted {count} row(s) from {collection} where {filters}")
            self._publish("DELETE", collection)
        return count

    # ============ Change notifications ============

    def subscribe_changes(self, table, events, callback):
        if table not in TABLES:
            raise BackendError(f"Unknown table '{table}'")
        return self.feed.subscribe(table, events, callback)

    def unsubscribe(self, handle):
        return self.feed.unsubscribe(handle)
