"""
The method-resolution engine: linearizes ancestor chains and dispatches calls.
"""
import inspect
import weakref
from typing import Any, Dict, Iterator, List, Optional, Tuple

from jsclass.jsclass_datatypes import (
    Module, Class, Instance, MethodMissing, NOT_FOUND,
    current_generation, is_method_impl,
)

Chain = Tuple[Module, ...]


class Frame:
    """One executing method, recorded so `call_super` can continue the walk."""
    __slots__ = ("name", "chain", "index", "args", "kwargs")

    def __init__(self, name: str, chain: Chain, index: int, args: tuple, kwargs: dict):
        self.name = name
        self.chain = chain
        self.index = index
        self.args = args
        self.kwargs = kwargs


class BoundMethod:
    """An implementation found for a receiver, ready to be called."""
    __slots__ = ("receiver", "name", "impl", "chain", "index")

    def __init__(self, receiver: Any, name: str, impl: Any, chain: Chain, index: int):
        self.receiver = receiver
        self.name = name
        self.impl = impl
        self.chain = chain
        self.index = index

    @property
    def owner(self) -> Module:
        """The module whose method table supplied the implementation."""
        return self.chain[self.index]

    def __call__(self, *args, **kwargs):
        return RESOLVER.invoke(self, args, kwargs)

    def __repr__(self) -> str:
        return f"#<Method {self.owner._label()}#{self.name}>"


def _walk(module: Module) -> Iterator[Module]:
    """Depth-first: the module, then its includes, last included first."""
    yield module
    for included in reversed(module.includes):
        yield from _walk(included)


def _dedupe(modules) -> Chain:
    # The first occurrence in the walk is the most recent inclusion.
    seen = set()
    out: List[Module] = []
    for mod in modules:
        if id(mod) in seen:
            continue
        seen.add(id(mod))
        out.append(mod)
    return tuple(out)


class Resolver:
    """Computes lookup chains and finds the implementation for a call.

    For an Instance the chain is:
      1. its singleton extensions, most recently extended first,
      2. its class, then the class's includes (reverse inclusion order,
         recursively),
      3. the superclass, applying step 2 again, up the tree.
    For a Module or Class acting as receiver, the chain is its own
    extensions and, for classes, the extensions of each superclass.

    Chains are cached per module against the mutation generation; any
    define/include/extend anywhere invalidates every cached chain.
    """
    def __init__(self):
        self._ancestors: "weakref.WeakKeyDictionary[Module, Tuple[int, Chain]]" = weakref.WeakKeyDictionary()
        self._singletons: "weakref.WeakKeyDictionary[Module, Tuple[int, Chain]]" = weakref.WeakKeyDictionary()
        self._methods: "weakref.WeakKeyDictionary[Class, Tuple[int, Dict[str, Optional[Tuple[int, Any]]]]]" = weakref.WeakKeyDictionary()

    # --- Linearization ---

    def ancestors(self, module: Module) -> Chain:
        """The chain instances of `module` dispatch through, most specific first."""
        generation = current_generation()
        cached = self._ancestors.get(module)
        if cached is not None and cached[0] == generation:
            return cached[1]
        if isinstance(module, Class):
            walk = (mod for klass in module.superclasses(include_self=True) for mod in _walk(klass))
        else:
            walk = _walk(module)
        chain = _dedupe(walk)
        self._ancestors[module] = (generation, chain)
        return chain

    def singleton_chain(self, module: Module) -> Chain:
        """The chain consulted when `module` itself receives a call."""
        generation = current_generation()
        cached = self._singletons.get(module)
        if cached is not None and cached[0] == generation:
            return cached[1]
        owners = module.superclasses(include_self=True) if isinstance(module, Class) else [module]
        chain = _dedupe(
            mod
            for owner in owners
            for extension in reversed(owner.extensions)
            for mod in _walk(extension)
        )
        self._singletons[module] = (generation, chain)
        return chain

    def chain_for(self, receiver: Any) -> Chain:
        if isinstance(receiver, Instance):
            if not receiver._extensions:
                return self.ancestors(receiver._klass)
            generation = current_generation()
            cached = receiver._chain_cache
            if cached is not None and cached[0] == generation:
                return cached[1]
            chain = _dedupe(
                [mod for extension in reversed(receiver._extensions) for mod in _walk(extension)]
                + list(self.ancestors(receiver._klass))
            )
            receiver._chain_cache = (generation, chain)
            return chain
        if isinstance(receiver, Module):
            return self.singleton_chain(receiver)
        return ()

    # --- Lookup ---

    def find(self, chain: Chain, name: str, start: int = 0) -> Optional[Tuple[int, Any]]:
        """Returns (index, impl) of the first module in `chain[start:]` defining `name`."""
        for index in range(start, len(chain)):
            impl = chain[index].method_table.lookup(name)
            if impl is not NOT_FOUND:
                return index, impl
        return None

    def _find_for(self, receiver: Any, name: str) -> Tuple[Chain, Optional[Tuple[int, Any]]]:
        chain = self.chain_for(receiver)
        if not isinstance(receiver, Instance) or receiver._extensions:
            return chain, self.find(chain, name)
        # Plain instances share a per-class lookup cache.
        klass = receiver._klass
        generation = current_generation()
        cached = self._methods.get(klass)
        if cached is None or cached[0] != generation:
            cached = (generation, {})
            self._methods[klass] = cached
        table = cached[1]
        if name not in table:
            table[name] = self.find(chain, name)
        return chain, table[name]

    def lookup(self, receiver: Any, name: str) -> Any:
        """The implementation `receiver` would run for `name`, or NOT_FOUND."""
        _, found = self._find_for(receiver, name)
        return NOT_FOUND if found is None else found[1]

    def responds_to(self, receiver: Any, name: str) -> bool:
        return self.lookup(receiver, name) is not NOT_FOUND

    def is_a(self, receiver: Any, module: Module) -> bool:
        return any(mod is module for mod in self.chain_for(receiver))

    # --- Dispatch ---

    def bind(self, receiver: Any, name: str) -> Any:
        """Binds `name` for `receiver`; constants are returned as stored."""
        chain, found = self._find_for(receiver, name)
        if found is None:
            raise MethodMissing(receiver, name)
        index, impl = found
        if not is_method_impl(impl):
            return impl
        return BoundMethod(receiver, name, impl, chain, index)

    def send(self, receiver: Any, name: str, *args, **kwargs) -> Any:
        target = self.bind(receiver, name)
        if isinstance(target, BoundMethod):
            return target(*args, **kwargs)
        return target

    def invoke(self, method: BoundMethod, args: tuple, kwargs: dict) -> Any:
        receiver = method.receiver
        if getattr(method.impl, "_jsclass_kernel", False):
            return method.impl(receiver, *args, **kwargs)
        frame = Frame(method.name, method.chain, method.index, args, kwargs)
        if inspect.iscoroutinefunction(method.impl):
            return self._invoke_async(method, frame)
        frames = receiver._frames
        frames.append(frame)
        try:
            return method.impl(receiver, *args, **kwargs)
        finally:
            frames.pop()

    async def _invoke_async(self, method: BoundMethod, frame: Frame) -> Any:
        # Pushed when the coroutine starts running.
        frames = method.receiver._frames
        frames.append(frame)
        try:
            return await method.impl(method.receiver, *frame.args, **frame.kwargs)
        finally:
            frames.remove(frame)

    def call_super(self, receiver: Any, args: tuple, kwargs: dict) -> Any:
        """Runs the next implementation of the executing method along its chain.

        With no arguments, the current call's arguments are passed on.
        """
        frames = getattr(receiver, "_frames", None)
        if not frames:
            raise RuntimeError("call_super used outside of a dispatched method")
        frame = frames[-1]
        found = self.find(frame.chain, frame.name, frame.index + 1)
        if found is None:
            raise MethodMissing(receiver, frame.name)
        index, impl = found
        if not is_method_impl(impl):
            return impl
        if not args and not kwargs:
            args, kwargs = frame.args, frame.kwargs
        return self.invoke(BoundMethod(receiver, frame.name, impl, frame.chain, index), args, kwargs)


# Process-wide resolver; the core is single-threaded.
RESOLVER = Resolver()
