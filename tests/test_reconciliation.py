from conftest import make_tree
from reconciliation import DeleteStatus, ScopeState
from records import Scope
from store_client import RemoteError, RemoteErrorKind


def published(broadcaster):
    events = []
    broadcaster.subscribe(events.append)
    return events


def test_read_fresh_is_idempotent(engine, store, cache):
    store.trees.extend([make_tree('srv-1'), make_tree('srv-2', uploaded_by='bob', user_id='u2')])
    first = engine.read(Scope.ALL)
    second = engine.read(Scope.ALL)
    assert first == second
    assert [t.id for t in first] == ['srv-1', 'srv-2']
    assert engine.state(Scope.ALL) is ScopeState.FRESH
    assert cache.get(Scope.ALL) == first


def test_mine_scope_is_filtered_by_the_server(engine, store):
    store.trees.extend([make_tree('srv-1'), make_tree('srv-2', uploaded_by='bob', user_id='u2')])
    assert [t.id for t in engine.read(Scope.MINE)] == ['srv-1']


def test_failed_read_serves_cache_untouched(engine, store, storage):
    store.trees.append(make_tree('srv-1'))
    cached = engine.read(Scope.ALL)
    before = storage.get('trees:all')

    store.online = False
    store.trees.append(make_tree('srv-2'))
    assert engine.read(Scope.ALL) == cached
    assert engine.state(Scope.ALL) is ScopeState.CACHED
    assert storage.get('trees:all') == before


def test_failed_read_without_cache_is_empty(engine, store):
    store.online = False
    assert engine.read(Scope.ALL) == []
    assert engine.state(Scope.ALL) is ScopeState.EMPTY


def test_recovery_returns_to_fresh(engine, store):
    store.online = False
    engine.read(Scope.ALL)
    store.online = True
    engine.read(Scope.ALL)
    assert engine.state(Scope.ALL) is ScopeState.FRESH


def test_offline_submission_stays_tentative(engine, store, cache):
    store.online = False
    tentative = make_tree()
    outcome = engine.write(tentative)

    assert outcome.synced is False
    assert outcome.error.kind.value == 'NetworkError'
    mine = cache.get(Scope.MINE)
    assert len(mine) == 1
    assert mine[0].verified is True
    assert mine[0].is_tentative
    assert store.trees == []
    assert engine.pending(Scope.MINE) == tentative.id

    store.online = True
    assert engine.read(Scope.MINE) == []
    assert store.trees == []
    assert engine.pending(Scope.MINE) is None


def test_successful_write_is_replaced_by_canonical(engine, store, cache):
    outcome = engine.write(make_tree())
    assert outcome.synced is True
    assert outcome.record.id == 'srv-1'
    for scope in (Scope.ALL, Scope.MINE):
        assert [t.id for t in cache.get(scope)] == ['srv-1']
        assert engine.state(scope) is ScopeState.FRESH


def test_only_one_pending_write_per_scope(engine, store, cache):
    store.online = False
    engine.write(make_tree())
    second = make_tree()
    engine.write(second)
    assert [t.id for t in cache.get(Scope.MINE)] == [second.id]
    assert [t.id for t in cache.get(Scope.ALL)] == [second.id]
    assert engine.pending(Scope.ALL) == second.id


def test_pending_write_does_not_disturb_cached_records(engine, store, cache):
    store.trees.append(make_tree('srv-1'))
    engine.read(Scope.ALL)
    store.online = False
    tentative = make_tree()
    engine.write(tentative)
    assert [t.id for t in cache.get(Scope.ALL)] == ['srv-1', tentative.id]


def test_non_owner_delete_never_reaches_the_server(engine, store, storage):
    store.trees.append(make_tree('srv-1', uploaded_by='bob', user_id='u2'))
    engine.refresh()
    before = storage.get('trees:all')
    store.calls.clear()

    outcome = engine.delete('srv-1')
    assert outcome.status is DeleteStatus.UNAUTHORIZED
    assert outcome.notice == 'You can only delete trees you uploaded'
    assert store.calls == []
    assert storage.get('trees:all') == before
    assert [t.id for t in store.trees] == ['srv-1']


def test_owner_delete_resynchronizes_every_scope(engine, store, cache):
    store.trees.append(make_tree('srv-1'))
    engine.refresh()
    outcome = engine.delete('srv-1')
    assert outcome.status is DeleteStatus.DELETED
    assert store.trees == []
    assert cache.get(Scope.ALL) == []
    assert cache.get(Scope.MINE) == []


def test_offline_delete_is_local_and_can_reappear(engine, store, cache):
    store.trees.append(make_tree('srv-1'))
    engine.refresh()
    store.online = False

    outcome = engine.delete('srv-1')
    assert outcome.status is DeleteStatus.DELETED_LOCALLY
    assert cache.get(Scope.ALL) == []
    assert [t.id for t in store.trees] == ['srv-1']

    store.online = True
    assert [t.id for t in engine.read(Scope.ALL)] == ['srv-1']


def test_deleting_a_tentative_record_clears_pending(engine, store, cache):
    store.online = False
    tentative = make_tree()
    engine.write(tentative)
    store.online = True

    outcome = engine.delete(tentative.id)
    assert outcome.status is DeleteStatus.DELETED_LOCALLY
    assert outcome.error.kind.value == 'NotFound'
    assert cache.get(Scope.MINE) == []
    assert engine.pending(Scope.MINE) is None


def test_delete_uses_the_live_session(engine, store, session):
    store.trees.append(make_tree('srv-1'))
    engine.refresh()
    session.logout()
    assert engine.delete('srv-1').status is DeleteStatus.UNAUTHORIZED
    session.login({'id': 'u1', 'name': 'alice'}, 'tok-alice')
    assert engine.delete('srv-1').status is DeleteStatus.DELETED


def test_unknown_record_is_left_to_the_server(engine, store):
    outcome = engine.delete('nope')
    assert outcome.status is DeleteStatus.NOT_FOUND
    assert ('delete', 'nope') in store.calls


def test_mutations_publish_changes(engine, store, broadcaster):
    events = published(broadcaster)
    engine.read(Scope.ALL)
    assert events == [Scope.ALL]

    events.clear()
    engine.write(make_tree())
    assert set(events) == {Scope.ALL, Scope.MINE}

    events.clear()
    store.online = False
    engine.delete('srv-1')
    assert set(events) == {Scope.ALL, Scope.MINE}


def test_rejected_delete_does_not_publish(engine, store, broadcaster):
    store.trees.append(make_tree('srv-1', uploaded_by='bob', user_id='u2'))
    engine.refresh()
    events = published(broadcaster)
    engine.delete('srv-1')
    assert events == []


def test_failed_create_with_healthy_reads_keeps_tentative(engine, store, cache, broadcaster):
    store.trees.append(make_tree('srv-1'))
    engine.refresh()
    events = published(broadcaster)
    store.create_error = RemoteError(RemoteErrorKind.NETWORK, 'HTTP 500', status=500)

    tentative = make_tree()
    outcome = engine.write(tentative)

    assert outcome.synced is False
    assert events == []
    assert [t.id for t in cache.get(Scope.MINE)] == ['srv-1', tentative.id]
    assert engine.pending(Scope.MINE) == tentative.id


def test_superseded_tentative_is_reported(engine, store):
    store.online = False
    first = engine.write(make_tree())
    second = engine.write(make_tree())
    assert first.superseded is None
    assert second.superseded == first.record.id
