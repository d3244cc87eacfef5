"""
Wallet system wiring and authentication dependencies
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..auth import TokenService, UserDirectory
from ..config import WalletConfig, get_config
from ..errors import InvalidCredentials
from ..queries import WalletQueries
from ..storage import LedgerStore, create_store
from ..transactions import TransactionCoordinator


class WalletSystem:
    """Wallet service with all components wired around one store handle"""

    def __init__(self, store: LedgerStore, config: Optional[WalletConfig] = None):
        config = config or get_config()
        self.config = config
        self.store = store
        self.coordinator = TransactionCoordinator(store, max_retries=config.serialization_retries)
        self.queries = WalletQueries(store)
        self.tokens = TokenService(
            secret=config.jwt_secret,
            algorithm=config.jwt_algorithm,
            expiry_hours=config.jwt_expiry_hours
        )
        self.users = UserDirectory(store, self.tokens, config.password_min_length)

    @classmethod
    def from_config(cls, config: Optional[WalletConfig] = None) -> 'WalletSystem':
        """Build the store described by the configuration and wire the system"""
        config = config or get_config()
        store = create_store(
            config.database_url,
            pool_size=config.database_pool_size,
            lock_timeout=config.lock_timeout_seconds,
            bootstrap_schema=config.auto_create_schema
        )
        return cls(store, config)

    def close(self) -> None:
        self.store.close()


# JWT Security
security = HTTPBearer(auto_error=False)


def get_wallet_system(request: Request) -> WalletSystem:
    """Dependency returning the system owned by the running application"""
    return request.app.state.system


def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: WalletSystem = Depends(get_wallet_system)
) -> int:
    """Dependency that validates the bearer token and returns the acting account id"""
    if not credentials:
        raise InvalidCredentials("Authorization header required")
    return system.tokens.verify(credentials.credentials)
