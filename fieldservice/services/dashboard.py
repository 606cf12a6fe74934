"""
Application-wide wiring of the dashboard core.

One Dashboard per process: a data backend, the notifier, the
synchronization layer (the single writer of the collections), the
mutation operations, the memoized aggregation views and one order
workflow per user.
"""
import logging
import threading
from typing import Dict, List, Optional

from fieldservice.config import settings
from fieldservice.exceptions import BackendError, DataNotReadyError
from fieldservice.services.aggregations import AggregationViews
from fieldservice.services.backend import DataBackend, SqlBackend
from fieldservice.services.mutations import RecordMutations
from fieldservice.services.notifications import Notifier
from fieldservice.services.sync import DataSyncLayer, SessionInfo
from fieldservice.services.workflow import OrderWorkflow

logger = logging.getLogger(__name__)


class Dashboard:
    def __init__(self, backend: Optional[DataBackend] = None, notifier: Optional[Notifier] = None, sleep=None):
        self.backend = backend or SqlBackend()
        self.notifier = notifier or Notifier(settings.notification_history_size)
        sync_kwargs = {}
        if sleep is not None:
            sync_kwargs["sleep"] = sleep
        self.store = DataSyncLayer(
            self.backend,
            self.notifier,
            retry_attempts=settings.backend_retry_attempts,
            retry_backoff_seconds=settings.backend_retry_backoff_seconds,
            **sync_kwargs,
        )
        self.mutations = RecordMutations(self.backend, self.store, self.notifier, settings.default_technician)
        self.views = AggregationViews(self.store)
        self._workflows: Dict[str, OrderWorkflow] = {}
        self._lock = threading.Lock()

    # ============ Session ============

    def ensure_session(self, session: SessionInfo):
        """
        Start the synchronization layer unless it already runs. The
        collections are shared, so a session opened by another user is
        reused as is.
        """
        with self._lock:
            if self.store.session is None:
                self.store.set_session(session)

    def end_session(self, user_id: Optional[str] = None):
        """Logout: drop the user's workflow; the owner of the session also ends it"""
        with self._lock:
            if user_id:
                self._workflows.pop(user_id, None)
            else:
                self._workflows.clear()
            current = self.store.session
            if current is None or (user_id and current.user_id != user_id):
                return
            self.store.end_session()

    def require_ready(self):
        if self.store.session is None:
            raise DataNotReadyError("No active session")
        if self.store.loading:
            raise DataNotReadyError("Dashboard data is still loading")

    # ============ Workflow ============

    def workflow_for(self, user_id: str) -> OrderWorkflow:
        workflow = self._workflows.get(user_id)
        if workflow is None:
            workflow = self._workflows[user_id] = OrderWorkflow()
        return workflow

    # ============ Reads not held in the store ============

    def sub_clients(self, client_id: str) -> List[dict]:
        try:
            return self.backend.fetch("sub_clients", {"client_id": client_id}, order_by=("name",))
        except BackendError as e:
            self.notifier.error("Error loading laboratories", e.message)
            raise

    def equipment_types(self) -> List[dict]:
        try:
            return self.backend.fetch("equipment_types", order_by=("name",))
        except BackendError as e:
            self.notifier.error("Error loading equipment types", e.message)
            raise


_dashboard: Optional[Dashboard] = None
_dashboard_lock = threading.Lock()


def get_dashboard() -> Dashboard:
    global _dashboard
    with _dashboard_lock:
        if _dashboard is None:
            _dashboard = Dashboard()
            logger.info("Dashboard initialized")
        return _dashboard


def reset_dashboard(dashboard: Optional[Dashboard] = None) -> Optional[Dashboard]:
    """Replace the process-wide dashboard (tests, shutdown)"""
    global _dashboard
    with _dashboard_lock:
        if _dashboard is not None:
            _dashboard.store.end_session()
        _dashboard = dashboard
        return _dashboard
