from jsclass.jsclass_datatypes import (
    JSClassError, DefinitionError, ResolutionError, MethodMissing,
    NOT_FOUND, MethodTable, Module, Class, Instance,
)
from jsclass.jsclass_resolver import RESOLVER, Resolver, BoundMethod
from jsclass.jsclass_runtime import (
    create_module, create_class, include, extend,
    responds_to, is_a, ancestors, instance_methods, class_of,
    method, send, call_super,
    Kernel, Object,
)
from jsclass.jsclass_printer import Printer
