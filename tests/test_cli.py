"""Tests for the Click command-line interface."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from replicachat.cli import commands
from replicachat.cli.commands import _purge, cli
from replicachat.core.models import UserRecord
from replicachat.memory.user_cache import UserCache
from replicachat.upstream.api import ReplicaAPI
from replicachat.upstream.client import UpstreamClient


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def fake_session(monkeypatch, fake_upstream):
    """Route CLI upstream calls to the fake upstream."""

    def _session(config):
        client = UpstreamClient.from_config(config, transport=fake_upstream.transport)
        return client, ReplicaAPI(client)

    monkeypatch.setattr(commands, "_api_session", _session)
    return fake_upstream


def _invoke(runner, config, *args):
    return runner.invoke(cli, list(args), obj={"config": config})


class TestStatus:
    def test_shows_cache_and_secret_state(self, runner, test_config, user_cache):
        user_cache.put(UserRecord(id="u1", email="u1@example.com"))

        result = _invoke(runner, test_config, "status")

        assert result.exit_code == 0
        assert "Configured" in result.output
        assert "Cached Users" in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestCacheCommands:
    def test_show(self, runner, test_config, user_cache):
        user_cache.put(UserRecord(id="jane_abc", email="jane@example.com"))

        result = _invoke(runner, test_config, "cache", "show")

        assert result.exit_code == 0
        assert "jane_abc" in result.output

    def test_clear_with_yes(self, runner, test_config, user_cache, cache_path):
        user_cache.put(UserRecord(id="u1", email="u1@example.com"))

        result = _invoke(runner, test_config, "cache", "clear", "--yes")

        assert result.exit_code == 0
        assert len(UserCache(cache_path)) == 0

    def test_clear_aborts_without_confirmation(self, runner, test_config, user_cache, cache_path):
        user_cache.put(UserRecord(id="u1", email="u1@example.com"))

        result = runner.invoke(cli, ["cache", "clear"], obj={"config": test_config}, input="n\n")

        assert result.exit_code != 0
        assert len(UserCache(cache_path)) == 1

    def test_reconcile(self, runner, test_config, user_cache, fake_session):
        user_cache.put(UserRecord(id="derived", email="d@example.com"))
        fake_session.add_user("upstream-id", "d@example.com")

        result = _invoke(runner, test_config, "cache", "reconcile")

        assert result.exit_code == 0
        assert user_cache.get("d@example.com").id == "upstream-id"


class TestUpstreamCommands:
    def test_requires_secret(self, runner, test_config):
        test_config.upstream.org_secret = ""
        result = _invoke(runner, test_config, "users", "list")
        assert result.exit_code == 1
        assert "ORG_SECRET" in result.output

    def test_users_list(self, runner, test_config, fake_session):
        fake_session.add_user("u1", "u1@example.com")

        result = _invoke(runner, test_config, "users", "list")

        assert result.exit_code == 0
        assert "u1@example.com" in result.output

    def test_replicas_list(self, runner, test_config, fake_session):
        fake_session.replicas["r1"] = {"uuid": "r1", "name": "Ada", "ownerID": "o1"}

        result = _invoke(runner, test_config, "replicas", "list")

        assert result.exit_code == 0
        assert "Ada" in result.output

    def test_replicas_purge(self, runner, test_config, fake_session):
        fake_session.replicas["r1"] = {"uuid": "r1", "name": "Ada"}
        fake_session.replicas["r2"] = {"uuid": "r2", "name": "Bob"}

        result = _invoke(runner, test_config, "replicas", "purge", "--yes")

        assert result.exit_code == 0
        assert fake_session.replicas == {}


@pytest.mark.asyncio
async def test_purge_counts_missing_replicas(upstream_api, fake_upstream):
    fake_upstream.replicas["r1"] = {"uuid": "r1", "name": "Ada"}

    stats = await _purge(upstream_api, [{"uuid": "r1"}, {"uuid": "gone"}])

    assert stats == {"deleted": 1, "missing": 1, "failed": 0}
