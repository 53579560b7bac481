"""
The construction and introspection API, and the root Kernel/Object bootstrap.
"""
import logging
import collections.abc
from typing import Any, List, Optional, Tuple

from jsclass.jsclass_datatypes import (
    Module, Class, Instance,
    extend_instance, kernel_method,
)
from jsclass.jsclass_resolver import RESOLVER

logger = logging.getLogger(__name__)

# ===================================================================
# 1. Argument parsing
# ===================================================================

def _parse_definition(args: tuple, allow_superclass: bool) -> Tuple[Optional[str], Any, Optional[collections.abc.Mapping]]:
    """Splits positional `(name?, superclass?, body?)` arguments, each optional."""
    rest = list(args)
    name = superclass = methods = None
    if rest and (rest[0] is None or isinstance(rest[0], str)):
        name = rest.pop(0)
    if allow_superclass and rest and not isinstance(rest[0], collections.abc.Mapping):
        superclass = rest.pop(0)
    if rest and isinstance(rest[0], collections.abc.Mapping):
        methods = rest.pop(0)
    if rest:
        raise TypeError(f"Unexpected definition arguments: {rest!r}")
    return name, superclass, methods


# ===================================================================
# 2. Construction API
# ===================================================================

def create_module(*args, name: Optional[str] = None, methods: Optional[collections.abc.Mapping] = None) -> Module:
    """Creates a module: `create_module('Name', {...})`, both optional."""
    pos_name, _, pos_methods = _parse_definition(args, allow_superclass=False)
    module = Module(name or pos_name, methods or pos_methods)
    logger.debug("created module %s", module._label())
    return module


def create_class(*args, name: Optional[str] = None, superclass: Optional[Class] = None,
                 methods: Optional[collections.abc.Mapping] = None) -> Class:
    """Creates a class: `create_class('Name', Parent, {...})`, each optional.

    Without a superclass the class descends from Object. A superclass
    that is not a Class raises DefinitionError.
    """
    pos_name, pos_superclass, pos_methods = _parse_definition(args, allow_superclass=True)
    parent = superclass if superclass is not None else pos_superclass
    klass = Class(name or pos_name, parent if parent is not None else Object, methods or pos_methods)
    logger.debug("created class %s < %s", klass._label(), klass.superclass._label())
    return klass


def include(target: Module, module: Any, options: Optional[collections.abc.Mapping] = None) -> Module:
    if not isinstance(target, Module):
        raise TypeError(f"include target must be a Module, not {type(target)}")
    return target.include(module, options)


def extend(target: Any, module: Any) -> Any:
    """Extends a module/class (its own singleton behaviour) or one instance."""
    if isinstance(target, Instance):
        return extend_instance(target, module)
    if isinstance(target, Module):
        return target.extend(module)
    raise TypeError(f"extend target must be a Module or Instance, not {type(target)}")


# ===================================================================
# 3. Dispatch and introspection
# ===================================================================

def responds_to(receiver: Any, name: str) -> bool:
    return RESOLVER.responds_to(receiver, name)


def is_a(receiver: Any, module: Module) -> bool:
    """True if `module` appears anywhere in `receiver`'s lookup chain."""
    return RESOLVER.is_a(receiver, module)


def ancestors(target: Any) -> List[Module]:
    """The linearized chain, most specific first.

    For a module or class this is the chain its instances use; for an
    instance it includes the instance's own extensions.
    """
    if isinstance(target, Instance):
        return list(RESOLVER.chain_for(target))
    if isinstance(target, Module):
        return list(RESOLVER.ancestors(target))
    raise TypeError(f"ancestors expects a Module or Instance, not {type(target)}")


def instance_methods(module: Module, inherited: bool = True) -> List[str]:
    return module.instance_methods(inherited)


def class_of(instance: Instance) -> Class:
    if not isinstance(instance, Instance):
        raise TypeError(f"class_of expects an Instance, not {type(instance)}")
    return instance._klass


def method(receiver: Any, name: str) -> Any:
    return RESOLVER.bind(receiver, name)


def send(receiver: Any, name: str, *args, **kwargs) -> Any:
    """Calls `name` on `receiver`, even where a Python attribute would shadow it."""
    return RESOLVER.send(receiver, name, *args, **kwargs)


def call_super(receiver: Any, *args, **kwargs) -> Any:
    return RESOLVER.call_super(receiver, args, kwargs)


# ===================================================================
# 4. Root of the class tree
# ===================================================================

@kernel_method
def _kernel_is_a(self, module):
    return is_a(self, module)

@kernel_method
def _kernel_responds_to(self, name):
    return responds_to(self, name)

@kernel_method
def _kernel_extend(self, module):
    return extend(self, module)

@kernel_method
def _kernel_method(self, name):
    return method(self, name)

@kernel_method
def _kernel_call_super(self, *args, **kwargs):
    return call_super(self, *args, **kwargs)

@kernel_method
def _kernel_klass(self):
    return class_of(self)

@kernel_method
def _kernel_to_s(self):
    from jsclass.jsclass_printer import Printer
    return Printer().reference(self)

@kernel_method
def _kernel_inspect(self):
    from jsclass.jsclass_printer import Printer
    return Printer().pformat(self)


# Methods every instance responds to; last in every chain, so user code overrides them.
Kernel = Module("Kernel", {
    "is_a": _kernel_is_a,
    "responds_to": _kernel_responds_to,
    "method": _kernel_method,
    "call_super": _kernel_call_super,
    "klass": _kernel_klass,
    "to_s": _kernel_to_s,
    "inspect": _kernel_inspect,
})
# `extend` is a reserved body key, so the instance method is defined directly.
Kernel.define("extend", _kernel_extend)

Object = Class("Object", None, {"include": Kernel})
