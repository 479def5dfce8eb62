import logging
from unittest import mock

import pytest
from extdb.profiler import LoggingProfiler, NullProfiler, Profiler
from extdb.profiler import ProfilerInterface, notify


def test_interface_is_abstract():
    with pytest.raises(TypeError):
        ProfilerInterface()


def test_null_profiler_accepts_all_hooks():
    profiler = NullProfiler()
    profiler.on_before('SELECT 1', {})
    profiler.on_success('SELECT 1', {}, 0.1)
    profiler.on_failure('SELECT 1', {}, 0.1, RuntimeError('x'))


class TestProfiler:

    def test_inactive_records_nothing(self):
        profiler = Profiler()
        profiler.on_before('SELECT 1', {})
        profiler.on_success('SELECT 1', {}, 0.1)
        assert profiler.get_profiles() == []
        assert profiler.is_active() is False

    def test_records_success(self):
        clock = mock.Mock(side_effect=[100.0])
        profiler = Profiler(active=True, clock=clock)

        profiler.on_before('SELECT :a', {'a': 1})
        profiler.on_success('SELECT :a', {'a': 1}, 0.25)

        [event] = profiler.get_profiles()
        assert event.statement == 'SELECT :a'
        assert event.values == {'a': 1}
        assert event.start == 100.0
        assert event.end == 100.25
        assert event.duration == 0.25
        assert event.outcome == 'success'
        assert event.error is None

    def test_records_failure(self):
        profiler = Profiler(active=True, clock=mock.Mock(return_value=10.0))
        error = RuntimeError('boom')

        profiler.on_before('SELECT x', {})
        profiler.on_failure('SELECT x', {}, 1.0, error)

        [event] = profiler.get_profiles()
        assert event.outcome == 'failure'
        assert event.error is error

    def test_values_are_copied(self):
        profiler = Profiler(active=True)
        values = {'a': 1}
        profiler.on_before('SELECT :a', values)
        values['a'] = 2
        profiler.on_success('SELECT :a', values, 0.0)
        assert profiler.get_profiles()[0].values == {'a': 1}

    def test_set_active_and_reset(self):
        profiler = Profiler()
        profiler.set_active(True)
        profiler.on_before('SELECT 1', {})
        profiler.on_success('SELECT 1', {}, 0.0)
        assert len(profiler.get_profiles()) == 1

        profiler.reset_profiles()
        assert profiler.get_profiles() == []


def test_logging_profiler(caplog):
    profiler = LoggingProfiler(level=logging.INFO)

    with caplog.at_level(logging.INFO, logger='extdb.profiler'):
        profiler.on_before('SELECT :a', {'a': 1})
        profiler.on_success('SELECT :a', {'a': 1}, 0.5)
        profiler.on_failure('SELECT :a', {'a': 1}, 0.5, RuntimeError('boom'))

    assert [r.levelno for r in caplog.records] == [logging.INFO, logging.INFO, logging.WARNING]
    assert 'SELECT :a' in caplog.records[0].getMessage()
    assert 'boom' in caplog.records[2].getMessage()


def test_notify_isolates_profiler_errors(caplog, exploding_profiler):
    with caplog.at_level(logging.WARNING, logger='extdb.profiler'):
        notify(exploding_profiler, 'on_before', 'SELECT 1', {})

    assert 'on_before' in caplog.text


def test_notify_calls_hook(recording_profiler):
    notify(recording_profiler, 'on_success', 'SELECT 1', {'a': 1}, 0.5)
    assert recording_profiler.calls == [('on_success', 'SELECT 1', {'a': 1}, 0.5)]
