"""
Defines the core metaobjects of the jsclass runtime.

This module provides the method tables, modules, classes and instances
that the resolver walks when it dispatches a call. Nothing here caches a
resolved method: every structural mutation bumps a global generation
and the resolver discards anything computed under an older one.
"""

import logging
import types
import functools
import collections.abc
from typing import List, Dict, Any, Optional, Iterator, Tuple

logger = logging.getLogger(__name__)

# =================================================================
# Errors
# =================================================================

class JSClassError(Exception):
    """Base class for all errors raised by the metaobject system."""
    pass


class DefinitionError(JSClassError):
    """Raised when a class is given an invalid or cyclic superclass."""
    pass


class ResolutionError(JSClassError):
    """Raised when an inclusion would make a module include itself."""
    pass


class MethodMissing(JSClassError, AttributeError):
    """Dispatch found no implementation anywhere in the receiver's chain.

    Also an AttributeError so that `hasattr` and `getattr(obj, name, default)`
    behave as usual on instances and modules.
    """
    def __init__(self, receiver: Any, name: str):
        super().__init__(f"undefined method '{name}' for {_describe(receiver)}")
        self.receiver = receiver
        self.name = name


def _describe(receiver: Any) -> str:
    from jsclass.jsclass_printer import Printer  # local import to avoid cycle
    return Printer().reference(receiver)


# =================================================================
# Mutation generation
# =================================================================

# Bumped on every define/include/extend/superclass change.
_generation = 0

def bump_generation() -> int:
    global _generation
    _generation += 1
    return _generation

def current_generation() -> int:
    return _generation


class _NotFound:
    """Internal helper class for the lookup sentinel."""
    def __repr__(self):
        return "NOT_FOUND"

    def __bool__(self):
        return False

# Singleton returned by MethodTable.lookup for a missing name
NOT_FOUND = _NotFound()


def is_method_impl(value: Any) -> bool:
    """True for values that dispatch binds to a receiver.

    Plain functions and `functools.partial` objects over them are methods.
    Anything else stored in a method table (numbers, flags, nested
    modules, classes, other callables) is a constant and is returned as-is.
    """
    if isinstance(value, functools.partial):
        return is_method_impl(value.func)
    return isinstance(value, types.FunctionType)


def kernel_method(func):
    """Marks a built-in method; the resolver pushes no super frame for it."""
    func._jsclass_kernel = True
    return func


def _christen(owner_name: Optional[str], key: str, value: Any):
    """Gives an anonymous module stored under a named owner a dotted name."""
    if owner_name and isinstance(value, Module) and value.name is None:
        value.name = f"{owner_name}.{key}"


# =================================================================
# Method tables
# =================================================================

class MethodTable:
    """Maps method names to implementations for one module.

    Entries are shared by reference with every includer, so a definition
    is visible to existing instances as soon as it is made.
    """
    def __init__(self):
        self.entries: Dict[str, Any] = {}
        self.version = 0

    def define(self, name: str, impl: Any):
        if not isinstance(name, str):
            raise TypeError(f"Method name must be a str, not {type(name)}")
        self.entries[name] = impl
        self.version += 1
        bump_generation()

    def lookup(self, name: str) -> Any:
        return self.entries.get(name, NOT_FOUND)

    def remove(self, name: str) -> Any:
        """Deletes an entry, returning the removed value or NOT_FOUND."""
        if name not in self.entries:
            return NOT_FOUND
        impl = self.entries.pop(name)
        self.version += 1
        bump_generation()
        return impl

    def names(self) -> List[str]:
        """Names in the order they were first defined."""
        return list(self.entries.keys())

    def items(self) -> List[Tuple[str, Any]]:
        return list(self.entries.items())

    def __contains__(self, name: Any) -> bool:
        return name in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __repr__(self) -> str:
        return f"<MethodTable [{', '.join(self.entries)}] v{self.version}>"


# =================================================================
# Modules and classes
# =================================================================

def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class Module:
    """A named or anonymous bundle of methods.

    A module owns:
      - its method table,
      - an ordered list of included modules (duplicates are kept; the
        resolver keeps only the most recent position of each),
      - an ordered list of modules extending the module itself, which
        make up its singleton behaviour when it receives a call.

    Attribute access that misses a Python attribute dispatches through
    the module's singleton chain, so `Test.Unit` reads the constant
    `Unit` defined by `extend`.
    """
    def __init__(self, name: Optional[str] = None, methods: Optional[collections.abc.Mapping] = None):
        self.name = name
        self.method_table = MethodTable()
        self.includes: List['Module'] = []
        self.extensions: List['Module'] = []
        self._frames: List[Any] = []
        if methods:
            self.define_methods(methods)

    # --- Definition ---

    def define(self, name: str, impl: Any) -> 'Module':
        """Stores or overwrites one entry of this module's method table."""
        _christen(self.name, name, impl)
        self.method_table.define(name, impl)
        logger.debug("define %s#%s", self._label(), name)
        return self

    def define_methods(self, methods: collections.abc.Mapping) -> 'Module':
        """Applies a body mapping: `include`/`extend` compose, the rest define.

        Use `define` to store a method literally named `include` or `extend`.
        Values that are not functions (see `is_method_impl`) become constants.
        """
        if not isinstance(methods, collections.abc.Mapping):
            raise TypeError(f"Method body must be a mapping, not {type(methods)}")
        for key, value in methods.items():
            if key == "include":
                for mod in _as_list(value):
                    self.include(mod)
            elif key == "extend":
                for mod in _as_list(value):
                    self.extend(mod)
            else:
                self.define(key, value)
        return self

    def remove_method(self, name: str) -> 'Module':
        """Undefines `name` in this module's own table; ancestors may then answer it."""
        if self.method_table.remove(name) is not NOT_FOUND:
            logger.debug("remove %s#%s", self._label(), name)
        return self

    def include(self, module: Any, options: Optional[collections.abc.Mapping] = None) -> 'Module':
        """Appends `module` to this module's includes.

        Recognised options:
          - `included`: a callable run once with this module after inclusion.
        Other keys are ignored.
        """
        if isinstance(module, collections.abc.Mapping):
            module = Module(methods=module)
        if not isinstance(module, Module):
            raise TypeError(f"include expects a Module, not {type(module)}")
        if module is self or module.includes_module(self):
            raise ResolutionError(
                f"cannot include {module._label()} into {self._label()}: inclusion would create a cycle")
        self.includes.append(module)
        bump_generation()
        logger.debug("include %s into %s", module._label(), self._label())

        hook = (options or {}).get("included")
        if callable(hook):
            hook(self)
        _run_hook(module, "included", self)
        return self

    def extend(self, module: Any) -> 'Module':
        """Adds singleton behaviour to this module (and, for classes, their subclasses)."""
        module = _extension_module(self, module)
        self.extensions.append(module)
        bump_generation()
        logger.debug("extend %s with %s", self._label(), module._label())
        _run_hook(module, "extended", self)
        return self

    # --- Introspection ---

    def includes_module(self, other: 'Module') -> bool:
        """True if `other` is reachable through this module's includes."""
        seen = set()
        stack = list(self.includes)
        while stack:
            mod = stack.pop()
            if mod is other:
                return True
            if id(mod) in seen:
                continue
            seen.add(id(mod))
            stack.extend(mod.includes)
        return False

    def ancestors(self) -> List['Module']:
        from jsclass.jsclass_resolver import RESOLVER
        return list(RESOLVER.ancestors(self))

    def instance_method(self, name: str) -> Any:
        """Returns the implementation instances of this module would run for `name`."""
        from jsclass.jsclass_resolver import RESOLVER
        found = RESOLVER.find(RESOLVER.ancestors(self), name)
        if found is None:
            return NOT_FOUND
        return found[1]

    def instance_methods(self, inherited: bool = True) -> List[str]:
        """Method names available to instances, most specific module first."""
        modules = self.ancestors() if inherited else [self]
        names: List[str] = []
        for mod in modules:
            for name, impl in mod.method_table.items():
                if is_method_impl(impl) and name not in names:
                    names.append(name)
        return names

    def _label(self) -> str:
        return self.name or _describe(self)

    # --- Dispatch ---

    def __getattr__(self, key: str):
        """Dispatches attribute reads that miss Python attributes to the singleton chain."""
        if key.startswith("__"):
            raise AttributeError(key)
        from jsclass.jsclass_resolver import RESOLVER
        return RESOLVER.bind(self, key)

    def __repr__(self) -> str:
        from jsclass.jsclass_printer import Printer
        return Printer().pformat(self)


class Class(Module):
    """A module with at most one superclass and an instantiation protocol.

    Calling the class, or its `new`/`instantiate` methods, allocates an
    Instance and runs the `initialize` method if one is resolvable.
    """
    def __init__(self, name: Optional[str] = None, superclass: Optional['Class'] = None,
                 methods: Optional[collections.abc.Mapping] = None):
        super().__init__(name)
        self._superclass: Optional['Class'] = None
        if superclass is not None:
            self.superclass = superclass
        if methods:
            self.define_methods(methods)
        if superclass is not None:
            _run_hook(superclass, "inherited", self)

    @property
    def superclass(self) -> Optional['Class']:
        return self._superclass

    @superclass.setter
    def superclass(self, superclass: Optional['Class']):
        if superclass is not None:
            if not isinstance(superclass, Class):
                raise DefinitionError(
                    f"superclass must be a Class, not {_describe(superclass)}; modules can only be included")
            for ancestor in superclass.superclasses(include_self=True):
                if ancestor is self:
                    raise DefinitionError(f"{self._label()} cannot be its own superclass")
        self._superclass = superclass
        bump_generation()

    def superclasses(self, include_self: bool = False) -> Iterator['Class']:
        klass = self if include_self else self._superclass
        while klass is not None:
            yield klass
            klass = klass._superclass

    def instantiate(self, *args, **kwargs) -> 'Instance':
        from jsclass.jsclass_resolver import RESOLVER
        instance = Instance(self)
        if is_method_impl(RESOLVER.lookup(instance, "initialize")):
            RESOLVER.bind(instance, "initialize")(*args, **kwargs)
        return instance

    new = instantiate

    def __call__(self, *args, **kwargs) -> 'Instance':
        return self.instantiate(*args, **kwargs)


# =================================================================
# Instances
# =================================================================

class Instance:
    """An object bound to a Class.

    Fields live in the instance `__dict__`; methods never do. Attribute
    reads that miss a field dispatch through the resolver, so methods
    added to the class or its mixins later are seen immediately.
    """
    __slots__ = ("_klass", "_extensions", "_frames", "_chain_cache", "__dict__", "__weakref__")

    def __init__(self, klass: Class):
        self._klass = klass
        self._extensions: List[Module] = []
        self._frames: List[Any] = []
        self._chain_cache: Optional[Tuple[int, Tuple[Module, ...]]] = None

    def __getattr__(self, key: str):
        if key.startswith("__"):
            raise AttributeError(key)
        from jsclass.jsclass_resolver import RESOLVER
        return RESOLVER.bind(self, key)

    def __str__(self) -> str:
        from jsclass.jsclass_resolver import RESOLVER
        if RESOLVER.lookup(self, "to_s") is NOT_FOUND:
            return repr(self)
        return str(RESOLVER.bind(self, "to_s")())

    def __repr__(self) -> str:
        from jsclass.jsclass_resolver import RESOLVER
        if RESOLVER.lookup(self, "inspect") is NOT_FOUND:
            from jsclass.jsclass_printer import Printer
            return Printer().pformat(self)
        return str(RESOLVER.bind(self, "inspect")())


# =================================================================
# Helpers shared by include/extend
# =================================================================

def _extension_module(receiver: Any, module: Any) -> Module:
    """Normalizes an `extend` argument; a mapping becomes an anonymous module."""
    if isinstance(module, collections.abc.Mapping):
        owner_name = receiver.name if isinstance(receiver, Module) else None
        singleton = Module()
        for key, value in module.items():
            _christen(owner_name, key, value)
        singleton.define_methods(module)
        return singleton
    if not isinstance(module, Module):
        raise TypeError(f"extend expects a Module or mapping, not {type(module)}")
    return module


def extend_instance(instance: Instance, module: Any) -> Instance:
    """Adds singleton behaviour to one instance only."""
    module = _extension_module(instance, module)
    instance._extensions.append(module)
    bump_generation()
    logger.debug("extend instance of %s with %s", instance._klass._label(), module._label())
    _run_hook(module, "extended", instance)
    return instance


def _run_hook(module: Module, hook: str, base: Any):
    """Runs a lifecycle hook found on `module`'s singleton chain, if any."""
    from jsclass.jsclass_resolver import RESOLVER
    if is_method_impl(RESOLVER.lookup(module, hook)):
        RESOLVER.bind(module, hook)(base)
