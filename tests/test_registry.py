from __future__ import annotations

import pytest

from hangar.context.core import StoppableService
from hangar.context.registry import Registry, create_default_registry
from hangar.modules import errors
from hangar.modules.locks import LockManager


def test_registry_contexts() -> None:
    registry = Registry()
    assert registry.current_context is registry.master_context

    registry.register_context('one')

    with pytest.raises(errors.ContextAlreadyExists):
        registry.register_context('one')

    with pytest.raises(errors.UnknownContext):
        registry.get_context('two')

    assert registry.get_context('two', autocreate=True).name == 'two'
    assert registry.is_existing_context('two')


def test_switch_context() -> None:
    registry = Registry()
    registry.register_context('one')

    with registry.context('one') as context:
        assert context.name == 'one'
        assert registry.current_context.name == 'one'

    assert registry.current_context.name == 'master'

    registry.switch_context('one')
    assert registry.get_current_context().name == 'one'

    with pytest.raises(errors.UnknownContext):
        registry.switch_context('two')


def test_settings_fall_back_to_master() -> None:
    registry = create_default_registry()
    context = registry.register_context('test')

    assert context.get_setting('tax_percent') == 18
    assert context.get_setting('invoice_due_days') == 30
    assert context.get_setting('payment_required') is True

    context.set_setting('tax_percent', 5)
    assert context.get_setting('tax_percent') == 5
    assert registry.master_context.get_setting('tax_percent') == 18


def test_master_context_is_locked() -> None:
    registry = create_default_registry()

    with pytest.raises(errors.ContextIsLocked):
        registry.master_context.set_setting('tax_percent', 5)

    with pytest.raises(errors.ContextIsLocked):
        registry.register_context('master', replace=True)

    context = registry.register_context('test')
    context.set_setting('tax_percent', 5)

    # unlocked contexts may be replaced
    context = registry.register_context('test', replace=True)
    assert context.get_setting('tax_percent') == 18


def test_services() -> None:
    registry = create_default_registry()
    context = registry.register_context('test')

    with pytest.raises(errors.UnknownService):
        context.get_service('payments')

    # cached services are cached per context
    locks = context.get_service('locks')
    assert isinstance(locks, LockManager)
    assert context.get_service('locks') is locks
    assert registry.master_context.get_service('locks') is not locks

    context.set_service('payments', lambda context: object())
    assert context.get_service('payments') is not (
        context.get_service('payments')
    )


def test_stoppable_services() -> None:
    stopped = []

    class Service(StoppableService):
        def stop_service(self) -> None:
            stopped.append(self)

    registry = Registry()
    context = registry.register_context('test')

    context.set_service('service', lambda context: Service(), cache=True)
    first = context.get_service('service')
    assert stopped == []

    # replacing a cached service stops the previous instance
    context.set_service('service', lambda context: Service(), cache=True)
    assert stopped == [first]

    assert context.get_service('service') is not first
