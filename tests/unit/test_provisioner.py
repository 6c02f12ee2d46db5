"""
Unit tests for account provisioning and the token pool.
"""

import random

import pytest

from load_chaos_sdk.metrics.aggregator import HTTP_REQS, MetricsAggregator
from load_chaos_sdk.provisioner import Account, TokenPool, build_accounts, provision_account, provision_accounts
from load_chaos_sdk.target.client import TargetClient


def test_build_accounts_numbers_from_one():
    """Test account naming."""
    accounts = build_accounts(3, username_prefix="loadtest")
    assert [a.username for a in accounts] == ["loadtest1", "loadtest2", "loadtest3"]
    assert accounts[0].email == "loadtest1@example.com"
    assert accounts[0].password == "password123"


def test_build_accounts_email_prefix():
    """Test a distinct email prefix and domain."""
    accounts = build_accounts(1, username_prefix="wsuser", email_prefix="ws", email_domain="test.io")
    assert accounts[0] == Account(username="wsuser1", email="ws1@test.io", password="password123")


def test_token_pool_pick():
    """Test uniform picks from a non-empty pool and None from an empty one."""
    pool = TokenPool(["a", "b", None, ""])
    assert len(pool) == 2
    rng = random.Random(1)
    assert {pool.pick(rng) for _ in range(50)} == {"a", "b"}
    assert TokenPool().pick(rng) is None
    assert not TokenPool()


@pytest.mark.asyncio
async def test_provision_all_accounts(fake_target, target_config):
    """Test register + login yields one token per account, in order."""
    accounts = build_accounts(3)
    async with TargetClient(target_config, transport=fake_target.transport()) as client:
        pool = await provision_accounts(client, accounts)

    assert pool.tokens == tuple(f"token-{a.email}" for a in accounts)
    assert fake_target.paths("POST").count("/api/v1/users/register") == 3
    assert fake_target.paths("POST").count("/api/v1/users/login") == 3


@pytest.mark.asyncio
async def test_existing_account_still_logs_in(fake_target, target_config):
    """Test that a 400 'already exists' registration is accepted."""
    fake_target.status_overrides[("POST", "/api/v1/users/register")] = 400
    async with TargetClient(target_config, transport=fake_target.transport()) as client:
        token = await provision_account(client, build_accounts(1)[0])

    assert token == "token-loadtest1@example.com"


@pytest.mark.asyncio
async def test_registration_failure_skips_login(fake_target, target_config):
    """Test that an unexpected registration status excludes the account."""
    fake_target.status_overrides[("POST", "/api/v1/users/register")] = 500
    async with TargetClient(target_config, transport=fake_target.transport()) as client:
        token = await provision_account(client, build_accounts(1)[0])

    assert token is None
    assert "/api/v1/users/login" not in fake_target.paths()


@pytest.mark.asyncio
async def test_failed_logins_are_excluded(fake_target, target_config):
    """Test that the run continues with the accounts that succeeded."""
    accounts = build_accounts(3)
    fake_target.failing_logins.add(accounts[1].email)
    async with TargetClient(target_config, transport=fake_target.transport()) as client:
        pool = await provision_accounts(client, accounts)

    assert pool.tokens == (f"token-{accounts[0].email}", f"token-{accounts[2].email}")


@pytest.mark.asyncio
async def test_unreachable_target_yields_empty_pool(fake_target, target_config):
    """Test that transport errors never raise out of provisioning."""
    fake_target.raise_for.add("/api/v1/users/register")
    async with TargetClient(target_config, transport=fake_target.transport()) as client:
        pool = await provision_accounts(client, build_accounts(2))

    assert len(pool) == 0
    assert pool.pick() is None


@pytest.mark.asyncio
async def test_setup_traffic_not_recorded_when_disabled(fake_target, target_config):
    """Test that provisioning calls can be kept out of the run metrics."""
    aggregator = MetricsAggregator()
    async with TargetClient(target_config, aggregator=aggregator, transport=fake_target.transport()) as client:
        client.recording = False
        await provision_accounts(client, build_accounts(2))
        client.recording = True
        await client.list_posts()

    assert aggregator.get(HTTP_REQS).aggregate()["count"] == 1
