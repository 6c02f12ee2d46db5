"""
Token/Account Provisioner.

Before the run starts, a fixed set of synthetic accounts is registered
(an "already exists" response is fine) and logged in to obtain bearer
tokens. Accounts whose setup fails are excluded; the run continues with
whatever tokens were obtained, possibly none.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from load_chaos_sdk.common.errors import ErrorCode
from load_chaos_sdk.common.logger import get_logger
from load_chaos_sdk.common.telemetry import record_error_code

logger = get_logger(__name__)

REGISTER_ACCEPTED = (201, 400)


@dataclass(frozen=True)
class Account:
    """Synthetic identity used to obtain a token."""
    username: str
    email: str
    password: str


class TokenPool:
    """
    Immutable set of bearer tokens.

    Concurrent readers need no coordination: the pool never changes after
    construction.
    """

    def __init__(self, tokens: Iterable[str] = ()):
        self._tokens: Tuple[str, ...] = tuple(t for t in tokens if t)

    def pick(self, rng: Optional[random.Random] = None) -> Optional[str]:
        """Uniformly random token, or None when the pool is empty."""
        if not self._tokens:
            return None
        return (rng or random).choice(self._tokens)

    @property
    def tokens(self) -> Tuple[str, ...]:
        return self._tokens

    def __len__(self) -> int:
        return len(self._tokens)

    def __bool__(self) -> bool:
        return bool(self._tokens)

    def __repr__(self) -> str:
        return f"TokenPool(size={len(self._tokens)})"


def build_accounts(
    count: int,
    username_prefix: str = "loadtest",
    email_prefix: Optional[str] = None,
    email_domain: str = "example.com",
    password: str = "password123",
) -> List[Account]:
    """Generate ``count`` numbered accounts (``loadtest1``, ``loadtest2``...)."""
    email_prefix = email_prefix or username_prefix
    return [
        Account(
            username=f"{username_prefix}{i}",
            email=f"{email_prefix}{i}@{email_domain}",
            password=password,
        )
        for i in range(1, count + 1)
    ]


async def provision_account(client, account: Account) -> Optional[str]:
    """
    Register then log in one account.

    Returns:
        The bearer token, or None if any step failed.
    """
    registered = await client.register(account)
    if registered.status not in REGISTER_ACCEPTED:
        logger.warning(
            f"[{ErrorCode.SETUP_FAILED}] Registration of '{account.username}' failed "
            f"(status={registered.status}{', ' + registered.error if registered.error else ''})"
        )
        record_error_code(ErrorCode.SETUP_FAILED, component="provisioner")
        return None

    login = await client.login(account)
    token = login.field("token") if login.status == 200 else None
    if not token or not isinstance(token, str):
        logger.warning(
            f"[{ErrorCode.SETUP_FAILED}] Login of '{account.email}' failed "
            f"(status={login.status}, token={'present' if token else 'missing'})"
        )
        record_error_code(ErrorCode.SETUP_FAILED, component="provisioner")
        return None

    logger.debug(f"Account '{account.username}' authenticated")
    return token


async def provision_accounts(
    client,
    accounts: Sequence[Account],
    concurrency: int = 5,
) -> TokenPool:
    """
    Provision every account, at most ``concurrency`` at a time.

    Failures never raise; the resulting pool holds the tokens of the accounts
    that succeeded, in account order.
    """
    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def _one(account: Account) -> Optional[str]:
        async with semaphore:
            return await provision_account(client, account)

    tokens = await asyncio.gather(*(_one(a) for a in accounts))
    pool = TokenPool(tokens)
    if accounts and not pool:
        logger.warning(
            f"[{ErrorCode.TOKEN_UNAVAILABLE}] No account could be provisioned; "
            f"token-requiring scenarios will fail"
        )
    logger.info(f"Provisioned {len(pool)}/{len(accounts)} accounts")
    return pool
