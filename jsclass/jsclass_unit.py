"""
A small xUnit layer built on the metaobject system.

`Test`, `Test.Unit` and the TestCase class are ordinary jsclass modules
and classes. Discovery walks the superclass chain and
`instance_methods`; the runner reports progress as status envelopes (see
jsclass_bridge) so a host process can count results.
"""
import asyncio
import inspect
import logging
import traceback
import collections.abc
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional

from jsclass.jsclass_datatypes import Module, Class
from jsclass.jsclass_runtime import create_module, create_class, extend, is_a, send, class_of
from jsclass.jsclass_config import RunnerConfig, load_config
from jsclass.jsclass_bridge import status_message, summary_message

logger = logging.getLogger(__name__)

TEST_SUFFIX = "Test"
TEST_PREFIX = "test"


class AssertionFailedError(AssertionError):
    """Raised by assertions; counted as a failure rather than an error."""
    def __init__(self, message: Any):
        super().__init__(str(message))
        self.message = str(message)


# ===================================================================
# 1. Assertions
# ===================================================================

def _assert(self, condition, message=None):
    if not condition:
        raise AssertionFailedError(message or f"{condition!r} is not true")

def _assert_equal(self, expected, actual, message=None):
    if expected != actual:
        raise AssertionFailedError(message or f"expected {expected!r}, got {actual!r}")

def _assert_not_equal(self, unexpected, actual, message=None):
    if unexpected == actual:
        raise AssertionFailedError(message or f"expected anything but {unexpected!r}")

def _assert_kind_of(self, module, obj, message=None):
    if not is_a(obj, module):
        raise AssertionFailedError(message or f"expected {obj!r} to be a kind of {module!r}")

def _assert_raises(self, error_type, func, *args, **kwargs):
    try:
        func(*args, **kwargs)
    except error_type as e:
        return e
    raise AssertionFailedError(f"expected {error_type.__name__} to be raised")

def _flunk(self, message="Flunked"):
    raise AssertionFailedError(message)


# ===================================================================
# 2. TestCase and discovery
# ===================================================================

def _test_case_initialize(self, test_name):
    self.test_name = test_name

def _test_case_name(self):
    return f"{class_of(self)._label()}: {self.test_name}"

def _noop(self):
    return None


def _auto_runner_filter(self, objects, suffix, filters=None):
    """Keeps named modules ending in `suffix`; with filters, also matching a filter prefix."""
    if filters is None:
        filters = load_config().filters
    if isinstance(objects, collections.abc.Mapping):
        candidates = [(obj.name or key, obj) for key, obj in objects.items() if isinstance(obj, Module)]
    else:
        candidates = [(obj.name, obj) for obj in objects if isinstance(obj, Module)]

    output = []
    for name, obj in candidates:
        if not name or not name.endswith(suffix):
            continue
        base = name[:-len(suffix)] if suffix else name
        if filters and not any(base.startswith(f) or name == f for f in filters):
            continue
        output.append(obj)
    return output


def _test_filter(self, objects, suffix):
    return self.Unit.AutoRunner.filter(objects, suffix)


Test = create_module("Test", {
    "extend": {
        "Unit": create_module(),
        "async_timeout": RunnerConfig.async_timeout,
        "show_stack": RunnerConfig.show_stack,
        "filter": _test_filter,
    }
})

# Unit is christened Test.Unit above, so its constants are named beneath it.
extend(Test.Unit, {
    "AssertionFailedError": AssertionFailedError,
    "Assertions": create_module({
        "assert_": _assert,
        "assert_equal": _assert_equal,
        "assert_not_equal": _assert_not_equal,
        "assert_kind_of": _assert_kind_of,
        "assert_raises": _assert_raises,
        "flunk": _flunk,
    }),
    "AutoRunner": create_class({"extend": {"filter": _auto_runner_filter}}),
})

TestCase = create_class({
    "include": Test.Unit.Assertions,
    "initialize": _test_case_initialize,
    "name": _test_case_name,
    "setup": _noop,
    "teardown": _noop,
})
extend(Test.Unit, {"TestCase": TestCase})


def default_config() -> RunnerConfig:
    """Runner config whose unset keys fall back to the `Test` module's settings."""
    return load_config(defaults={"async_timeout": Test.async_timeout, "show_stack": Test.show_stack})


def test_method_names(klass: Class) -> List[str]:
    """Names of `test*` methods available to instances of `klass`."""
    return [name for name in klass.instance_methods() if name.startswith(TEST_PREFIX)]


# ===================================================================
# 3. Running
# ===================================================================

@dataclass
class TestResult:
    __test__ = False
    name: str
    status: str  # 'pass', 'fail' or 'error'
    message: Optional[str] = None
    stack: Optional[str] = None


@dataclass
class Summary:
    results: List[TestResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def fail(self) -> int:
        return sum(1 for r in self.results if r.status == "fail")

    @property
    def error(self) -> int:
        return sum(1 for r in self.results if r.status == "error")

    @property
    def passed(self) -> bool:
        return self.fail + self.error == 0


class TestRunner:
    """Runs TestCase classes, one fresh instance per test method.

    Coroutine-returning tests and hooks are awaited under the configured
    async timeout. Each outcome and the final summary are passed to
    `reporter` as JSON status envelopes.
    """
    __test__ = False

    def __init__(self, config: Optional[RunnerConfig] = None, reporter: Optional[Callable[[str], Any]] = None):
        self.config = config or default_config()
        self.reporter = reporter

    def collect(self, objects: Iterable[Any]) -> List[Class]:
        selected = Test.Unit.AutoRunner.filter(objects, TEST_SUFFIX, self.config.filters)
        return [obj for obj in selected if isinstance(obj, Class) and TestCase in obj.superclasses()]

    async def run(self, objects: Iterable[Any]) -> Summary:
        summary = Summary()
        for klass in self.collect(objects):
            for name in test_method_names(klass):
                result = await self.run_test(klass, name)
                summary.results.append(result)
        logger.info("%d tests, %d failures, %d errors", summary.total, summary.fail, summary.error)
        self._emit(summary_message(summary.total, summary.fail, summary.error))
        return summary

    async def run_test(self, klass: Class, method_name: str) -> TestResult:
        test = klass.new(method_name)
        name = send(test, "name")
        try:
            await self._call(test, "setup")
            try:
                await self._call(test, method_name)
            finally:
                await self._call(test, "teardown")
        except AssertionFailedError as e:
            result = TestResult(name, "fail", e.message)
        except asyncio.TimeoutError:
            result = TestResult(name, "error", f"Timed out after {self.config.async_timeout} seconds")
        except Exception as e:
            stack = traceback.format_exc() if self.config.show_stack else None
            result = TestResult(name, "error", f"{type(e).__name__}: {e}", stack)
        else:
            result = TestResult(name, "pass")
        logger.debug("%s: %s", result.status, name)

        extra = {}
        if result.message is not None:
            extra["message"] = result.message
        if result.stack is not None:
            extra["stack"] = result.stack
        self._emit(status_message(result.status, name, **extra))
        return result

    async def _call(self, test: Any, method_name: str):
        outcome = send(test, method_name)
        if inspect.isawaitable(outcome):
            outcome = await asyncio.wait_for(outcome, timeout=self.config.async_timeout)
        return outcome

    def _emit(self, message: str):
        if self.reporter is not None:
            self.reporter(message)
