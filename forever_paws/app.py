"""Composition root: builds and wires every service of the client core"""

from pathlib import Path
from typing import Optional

from .api.backend import DirectAuthClient, TableClient
from .api.gateway import GatewayClient
from .auth.credential_store import CredentialStore
from .auth.email_policy import EmailPolicy, PasswordPolicy
from .auth.session_manager import SessionManager
from .commerce.cart_service import CartService
from .core.events import EventBus, UserSignedIn
from .core.owner import OwnerExecutor
from .models.session import Session
from .net.http_client import ResilientHttpClient
from .net.retry_policy import RetryPolicy
from .stores.local_store import LocalStore
from .sync.reconciliation import ReconciliationEngine
from .utils.config import ConfigManager, Settings
from .utils.logger import get_logger, setup_logger

logger = get_logger(__name__)


class ForeverPawsApp:
    """Owns every service instance; nothing here is a module-level singleton."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config_dir: Optional[str] = None,
        configure_logging: bool = True,
    ):
        self.config_manager = ConfigManager(config_dir)
        self.settings = settings
        self.configure_logging = configure_logging
        self.initialized = False

        self.events: Optional[EventBus] = None
        self.owner: Optional[OwnerExecutor] = None
        self.http: Optional[ResilientHttpClient] = None
        self.gateway: Optional[GatewayClient] = None
        self.alternate_gateway: Optional[GatewayClient] = None
        self.direct_auth: Optional[DirectAuthClient] = None
        self.tables: Optional[TableClient] = None
        self.credentials: Optional[CredentialStore] = None
        self.store: Optional[LocalStore] = None
        self.sessions: Optional[SessionManager] = None
        self.sync: Optional[ReconciliationEngine] = None
        self.cart: Optional[CartService] = None
        self._unsubscribe_sync = None

    def initialize(self) -> None:
        if self.initialized:
            return
        if self.settings is None:
            self.settings = self.config_manager.load_settings()
        cfg = self.settings

        if self.configure_logging:
            setup_logger(
                log_level=cfg.logging.level,
                log_format=cfg.logging.format,
                file_path=cfg.logging.file_path,
                max_bytes=cfg.logging.max_bytes,
                backup_count=cfg.logging.backup_count,
            )
        logger.info(
            "Initializing Forever Paws",
            app_name=cfg.app.name,
            version=cfg.app.version,
            environment=cfg.app.environment,
        )

        data_dir = Path(cfg.storage.data_dir)
        self.events = EventBus()
        self.owner = OwnerExecutor()

        self.http = ResilientHttpClient(
            policy=RetryPolicy.from_settings(cfg.network),
            user_agent=cfg.api.user_agent,
            verify_ssl=cfg.network.verify_ssl,
            detect_tunnel=cfg.network.detect_tunnel,
        )
        self.gateway = GatewayClient(self.http, cfg.api.gateway_url, name="gateway")
        if cfg.api.alternate_gateway_url:
            self.alternate_gateway = GatewayClient(self.http, cfg.api.alternate_gateway_url, name="alternate-gateway")
        self.direct_auth = DirectAuthClient(self.http, cfg.api.backend_url, cfg.api.backend_anon_key)
        self.tables = TableClient(self.http, cfg.api.backend_url, cfg.api.backend_anon_key)

        self.credentials = CredentialStore(
            data_dir / cfg.storage.credentials_file,
            encryption_key=cfg.storage.encryption_key,
        )
        self.store = LocalStore(data_dir / cfg.storage.database_file)

        self.sessions = SessionManager(
            credential_store=self.credentials,
            gateway=self.gateway,
            direct_auth=self.direct_auth,
            local_store=self.store,
            owner=self.owner,
            events=self.events,
            alternate_gateway=self.alternate_gateway,
            table_client=self.tables,
            email_policy=EmailPolicy.from_settings(cfg.auth.email_policy),
            password_policy=PasswordPolicy.from_settings(cfg.auth),
            auto_login_throttle_seconds=cfg.auth.auto_login_throttle_seconds,
        )
        self.sync = ReconciliationEngine(self.sessions, self.gateway, self.store, self.owner, self.events)
        self._unsubscribe_sync = self.events.subscribe(UserSignedIn, self.sync.on_user_signed_in)

        self.cart = CartService(
            self.sessions,
            self.store,
            self.owner,
            self.events,
            empty_cart_recheck_delay=cfg.checkout.empty_cart_recheck_delay,
            currency=cfg.checkout.currency,
            simulate_order_progress=cfg.checkout.simulate_order_progress,
            simulation_step_seconds=cfg.checkout.simulation_step_seconds,
        )

        self.initialized = True
        logger.info("Forever Paws initialized", data_dir=str(data_dir))

    def launch(self) -> Optional[Session]:
        """Restore the previous session; a successful sign-in triggers the first sync."""
        self.initialize()
        session = self.sessions.auto_login()
        if session is None:
            logger.info("No session restored at launch")
        return session

    def shutdown(self) -> None:
        if not self.initialized:
            return
        logger.info("Shutting down Forever Paws")
        if self._unsubscribe_sync is not None:
            self._unsubscribe_sync()
        if self.cart.simulator is not None:
            self.cart.simulator.stop()
        self.owner.shutdown(wait=True)
        self.http.close()
        self.initialized = False
