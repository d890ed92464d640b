import asyncio

import pytest

from token_detection.controller import (
    DetectTokensController,
    NetworkChanged,
    PreferencesChanged,
)
from token_detection.errors import ConfigurationError, PersistenceError
from token_detection.scheduler import DEFAULT_INTERVAL, SchedulerState
from token_detection.stores import InMemoryTokensStore, ObservableStore, StaticTokenList

ACCOUNT = "0x" + "ab" * 20
OTHER_ACCOUNT = "0x" + "cd" * 20


class _BrokenStore(InMemoryTokensStore):
    async def add_detected_tokens(self, tokens):
        self.add_calls.append(list(tokens))
        raise PersistenceError("write rejected")


def test_missing_collaborator_fails_fast(telemetry):
    async def runner():
        with pytest.raises(ConfigurationError) as excinfo:
            DetectTokensController(
                preferences=ObservableStore(),
                network=ObservableStore(),
                session=ObservableStore(),
                token_list=StaticTokenList(),
                tokens_store=InMemoryTokensStore(),
                balance_oracle=None,
                telemetry=telemetry,
            )
        assert excinfo.value.missing == ("balance_oracle",)
        assert [t for t in asyncio.all_tasks() if t is not asyncio.current_task()] == []

    asyncio.run(runner())


def test_construction_arms_the_timer(build_controller):
    async def runner():
        env = build_controller(interval=DEFAULT_INTERVAL)
        assert env.controller.scheduler.state is SchedulerState.ARMED
        await env.controller.close()
        assert env.controller.scheduler.state is SchedulerState.IDLE

    asyncio.run(runner())


def test_set_exclusion_probes_only_unknown_tokens(build_controller, oracle_factory):
    async def runner():
        catalog = {
            "0x" + "0a" * 20: {"symbol": "A", "decimals": 18},
            "0x" + "0b" * 20: {"symbol": "B", "decimals": 18},
            "0x" + "0c" * 20: {"symbol": "C", "decimals": 18},
        }
        store = InMemoryTokensStore(
            tokens=[{"address": "0x" + "0A" * 20}],
            ignored_tokens=["0x" + "0b" * 20],
        )
        oracle = oracle_factory()
        env = build_controller(catalog=catalog, oracle=oracle, tokens_store=store)

        report = await env.controller.detect_new_tokens()

        assert report.candidates == 1
        assert oracle.calls == [(ACCOUNT, ["0x" + "0c" * 20])]
        await env.controller.close()

    asyncio.run(runner())


def test_second_run_is_idempotent(build_controller, oracle_factory, make_address, make_catalog):
    async def runner():
        tokens = [make_address(i) for i in range(5)]
        oracle = oracle_factory({tokens[1]: 10, tokens[4]: 2})
        env = build_controller(catalog=make_catalog(tokens), oracle=oracle)

        first = await env.controller.detect_new_tokens()
        second = await env.controller.detect_new_tokens()

        assert [token.address for token in first.detected] == [tokens[1], tokens[4]]
        assert second.candidates == 3
        assert second.detected == []
        detected = env.tokens_store.get_state()["detected_tokens"]
        assert [entry["address"] for entry in detected] == [tokens[1], tokens[4]]
        assert len(env.tokens_store.add_calls) == 1
        assert len(env.telemetry.events) == 1
        await env.controller.close()

    asyncio.run(runner())


def test_locked_session_makes_no_calls(build_controller, oracle_factory, make_address, make_catalog):
    async def runner():
        tokens = [make_address(i) for i in range(3)]
        oracle = oracle_factory({tokens[0]: 1})
        env = build_controller(catalog=make_catalog(tokens), oracle=oracle, unlocked=False)

        assert await env.controller.scheduler.tick() is False
        report = await env.controller.detect_new_tokens()
        assert env.controller.restart_detection() is None

        assert report.skipped == "inactive"
        assert oracle.calls == []
        assert env.tokens_store.add_calls == []
        assert env.telemetry.events == []
        await env.controller.close()

    asyncio.run(runner())


def test_partial_failure_keeps_later_batches_eligible(
    build_controller, oracle_factory, make_address, make_catalog
):
    async def runner():
        tokens = [make_address(i) for i in range(2500)]
        hits = {tokens[10]: 1, tokens[1500]: 1, tokens[2400]: 1}
        oracle = oracle_factory(hits, fail_on={1})
        env = build_controller(catalog=make_catalog(tokens), oracle=oracle)

        report = await env.controller.detect_new_tokens()

        assert [len(batch) for _, batch in oracle.calls] == [1000, 1000]
        assert report.failure is not None
        assert [token.address for token in report.detected] == [tokens[10]]
        assert len(env.telemetry.events) == 1
        assert len(env.tokens_store.add_calls) == 1

        oracle.fail_on.clear()
        oracle.calls.clear()
        retry = await env.controller.detect_new_tokens()

        assert retry.candidates == 2499
        assert [len(batch) for _, batch in oracle.calls] == [1000, 1000, 499]
        assert tokens[1000] in oracle.calls[0][1]
        assert {token.address for token in retry.detected} == {tokens[1500], tokens[2400]}
        await env.controller.close()

    asyncio.run(runner())


def test_identical_preference_updates_coalesce(build_controller, oracle_factory, make_address, make_catalog):
    async def runner():
        tokens = [make_address(i) for i in range(2)]
        oracle = oracle_factory()
        env = build_controller(
            catalog=make_catalog(tokens), oracle=oracle, selected_address=None
        )

        env.preferences.update_state(selected_address=ACCOUNT, use_token_detection=True)
        env.preferences.update_state(selected_address=ACCOUNT, use_token_detection=True)
        await env.controller.scheduler.join()

        assert len(oracle.calls) == 1
        assert env.controller.context.selected_address == ACCOUNT
        await env.controller.close()

    asyncio.run(runner())


def test_account_switch_restarts_detection(build_controller, oracle_factory, make_address, make_catalog):
    async def runner():
        tokens = [make_address(i) for i in range(2)]
        oracle = oracle_factory()
        env = build_controller(catalog=make_catalog(tokens), oracle=oracle)

        env.preferences.update_state(selected_address=OTHER_ACCOUNT)
        await env.controller.scheduler.join()

        assert [account for account, _ in oracle.calls] == [OTHER_ACCOUNT]
        assert env.controller.scheduler.interval == DEFAULT_INTERVAL
        await env.controller.close()

    asyncio.run(runner())


def test_session_unlock_triggers_run_and_lock_does_not(
    build_controller, oracle_factory, make_address, make_catalog
):
    async def runner():
        tokens = [make_address(i) for i in range(2)]
        oracle = oracle_factory()
        env = build_controller(catalog=make_catalog(tokens), oracle=oracle, unlocked=False)

        env.session.update_state(is_unlocked=True)
        await env.controller.scheduler.join()
        assert len(oracle.calls) == 1

        env.session.update_state(is_unlocked=False)
        await env.controller.scheduler.join()
        assert len(oracle.calls) == 1
        assert env.controller.context.session_unlocked is False
        await env.controller.close()

    asyncio.run(runner())


def test_known_token_updates_do_not_restart(build_controller, oracle_factory, make_address, make_catalog):
    async def runner():
        tokens = [make_address(i) for i in range(3)]
        oracle = oracle_factory()
        env = build_controller(catalog=make_catalog(tokens), oracle=oracle)

        env.tokens_store.update_state(tokens=[{"address": tokens[0]}], ignored_tokens=[tokens[1]])
        await env.controller.scheduler.join()
        assert oracle.calls == []

        report = await env.controller.detect_new_tokens()
        assert report.candidates == 1
        await env.controller.close()

    asyncio.run(runner())


def test_unsupported_network_or_disabled_preference_skips(build_controller, oracle_factory, make_address, make_catalog):
    async def runner():
        tokens = [make_address(i) for i in range(2)]
        oracle = oracle_factory()
        env = build_controller(catalog=make_catalog(tokens), oracle=oracle, chain_id="0x5")

        assert (await env.controller.detect_new_tokens()).skipped == "unsupported-network"

        env.network.update_state(chain_id=137)
        assert env.controller.context.chain_id == "0x89"
        env.controller.dispatch(PreferencesChanged(selected_address=ACCOUNT, use_token_detection=False))
        assert (await env.controller.detect_new_tokens()).skipped == "disabled"
        assert oracle.calls == []
        await env.controller.close()

    asyncio.run(runner())


def test_view_inactive_skips(build_controller, oracle_factory, make_address, make_catalog):
    async def runner():
        oracle = oracle_factory()
        env = build_controller(
            catalog=make_catalog([make_address(1)]), oracle=oracle, view_active=False
        )

        assert (await env.controller.detect_new_tokens()).skipped == "inactive"
        env.controller.set_view_active(True)
        assert (await env.controller.detect_new_tokens()).ran
        assert len(oracle.calls) == 1
        await env.controller.close()

    asyncio.run(runner())


def test_results_discarded_when_account_changes_mid_flight(
    build_controller, oracle_factory, make_address, make_catalog
):
    async def runner():
        tokens = [make_address(i) for i in range(3)]
        oracle = oracle_factory({tokens[0]: 5})
        env = build_controller(catalog=make_catalog(tokens), oracle=oracle)

        def _switch_account():
            oracle.before_return = None
            env.controller.dispatch(NetworkChanged(chain_id="0x1"))
            env.preferences.update_state(selected_address=OTHER_ACCOUNT)

        oracle.before_return = _switch_account
        report = await env.controller.detect_new_tokens()
        await env.controller.scheduler.join()

        assert report.account == ACCOUNT
        assert report.detected == []
        assert report.discarded == 1
        assert report.superseded is True
        assert env.tokens_store.add_calls[0][0].address == tokens[0]
        assert oracle.calls[0][0] == ACCOUNT
        assert oracle.calls[-1][0] == OTHER_ACCOUNT
        await env.controller.close()

    asyncio.run(runner())


def test_persistence_failure_propagates(build_controller, oracle_factory, make_address, make_catalog):
    async def runner():
        tokens = [make_address(i) for i in range(2)]
        oracle = oracle_factory({tokens[0]: 5})
        store = _BrokenStore()
        env = build_controller(catalog=make_catalog(tokens), oracle=oracle, tokens_store=store)

        with pytest.raises(PersistenceError):
            await env.controller.detect_new_tokens()

        assert await env.controller.scheduler.tick() is True
        assert isinstance(env.controller.scheduler.last_error, PersistenceError)
        await env.controller.close()

    asyncio.run(runner())


def test_catalog_is_read_live(build_controller, oracle_factory, make_address, make_catalog):
    async def runner():
        tokens = [make_address(i) for i in range(2)]
        oracle = oracle_factory()
        env = build_controller(catalog=make_catalog(tokens[:1]), oracle=oracle)

        assert (await env.controller.detect_new_tokens()).candidates == 1
        env.token_list.replace(make_catalog(tokens))
        assert (await env.controller.detect_new_tokens()).candidates == 2
        await env.controller.close()

    asyncio.run(runner())


def test_close_unsubscribes(build_controller):
    async def runner():
        env = build_controller()
        assert env.preferences.listener_count == 1
        await env.controller.close()
        assert env.preferences.listener_count == 0
        assert env.session.listener_count == 0
        assert env.network.listener_count == 0
        assert env.tokens_store.listener_count == 0

    asyncio.run(runner())


def test_configured_interval_survives_restart(build_controller, oracle_factory, make_address, make_catalog):
    async def runner():
        oracle = oracle_factory()
        env = build_controller(
            catalog=make_catalog([make_address(1)]), oracle=oracle, unlocked=False, interval=30
        )
        assert env.controller.scheduler.interval == 30

        env.session.update_state(is_unlocked=True)
        await env.controller.scheduler.join()

        assert len(oracle.calls) == 1
        assert env.controller.scheduler.interval == 30
        await env.controller.close()

    asyncio.run(runner())


def test_account_switch_during_run_stops_stale_batches_and_reruns(
    build_controller, oracle_factory, make_address, make_catalog
):
    async def runner():
        tokens = [make_address(i) for i in range(3000)]
        oracle = oracle_factory({tokens[0]: 1}, delay=0.001)
        env = build_controller(catalog=make_catalog(tokens), oracle=oracle)

        def _switch_account():
            oracle.before_return = None
            env.preferences.update_state(selected_address=OTHER_ACCOUNT)

        oracle.before_return = _switch_account
        assert env.controller.restart_detection() is not None
        await env.controller.scheduler.join()

        accounts = [account for account, _ in oracle.calls]
        assert accounts == [ACCOUNT, OTHER_ACCOUNT, OTHER_ACCOUNT, OTHER_ACCOUNT]
        assert env.controller.scheduler.dropped == 0
        report = env.controller.last_report
        assert report.account == OTHER_ACCOUNT
        assert report.batches == 3
        assert [token.address for token in report.detected] == [tokens[0]]
        assert env.tokens_store.add_calls == [report.detected]
        await env.controller.close()

    asyncio.run(runner())
