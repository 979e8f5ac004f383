"""
Shared pytest fixtures for the refwatch test suite.

Provides fake collaborators wired into a RefWatcher whose checks run
only when a test asks for them (ManualWatchExecutor).

Usage in tests:
    def test_something(watcher, executor, listener):
        watcher.watch(obj, "view")
        executor.run_next()
        assert listener.heap_dumps == []
"""

import logging
import tracemalloc

import pytest

import refwatch
from refwatch.logging_config import LOGGER_NAME
from tests.factories import (
    FakeDebuggerControl,
    ManualWatchExecutor,
    RecordingGcTrigger,
    RecordingHeapDumper,
    RecordingListener,
    make_watcher,
)


@pytest.fixture
def executor():
    return ManualWatchExecutor()


@pytest.fixture
def debugger():
    return FakeDebuggerControl(attached=False)


@pytest.fixture
def gc_trigger():
    return RecordingGcTrigger()


@pytest.fixture
def dumper():
    return RecordingHeapDumper()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def watcher(executor, debugger, gc_trigger, dumper, listener):
    """RefWatcher wired to the recording fakes above."""
    return make_watcher(
        executor=executor,
        debugger=debugger,
        gc_trigger=gc_trigger,
        dumper=dumper,
        listener=listener,
        excluded_refs=refwatch.ExcludedRefs.builder().thread("MainThread", "always alive").build(),
    )


@pytest.fixture
def restore_tracemalloc():
    """Stop tracemalloc afterwards if the test started it."""
    was_tracing = tracemalloc.is_tracing()
    yield
    if not was_tracing and tracemalloc.is_tracing():
        tracemalloc.stop()


@pytest.fixture(autouse=True)
def reset_global_watcher():
    """Reset the process-wide watcher around each test."""
    refwatch.reset_ref_watcher()
    yield
    refwatch.reset_ref_watcher()

    # install() attaches a console handler bound to pytest's capture stream
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_refwatch_console", False):
            logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
