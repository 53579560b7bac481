"""
A pretty-printer for jsclass metaobjects.
"""
import collections.abc

from jsclass.jsclass_datatypes import Module, Class, Instance, is_method_impl


class Printer:
    """Formats modules, classes and instances into readable strings."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()
        self._active = set()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def reference(self, obj):
        """Short identity form: the module's name, or `#<Class:0x...>` style markers."""
        if isinstance(obj, Module):
            if obj.name:
                return obj.name
            kind = "Class" if isinstance(obj, Class) else "Module"
            return f"#<{kind}:{hex(id(obj))}>"
        if isinstance(obj, Instance):
            return f"#<{self.reference(obj._klass)}:{hex(id(obj))}>"
        return repr(obj)

    def describe(self, module):
        """Multi-line diagnostic: each ancestor with its method table in definition order."""
        from jsclass.jsclass_resolver import RESOLVER
        lines = [self.reference(module)]
        if isinstance(module, Class) and module.superclass is not None:
            lines[0] += f" < {self.reference(module.superclass)}"
        for mod in RESOLVER.ancestors(module):
            lines.append(f"{self._indent_char}{self.reference(mod)}")
            for name, impl in mod.method_table.items():
                kind = "def" if is_method_impl(impl) else "const"
                lines.append(f"{self._indent_char * 2}{kind} {name}")
        singletons = RESOLVER.singleton_chain(module)
        if singletons:
            lines.append(f"{self._indent_char}(singleton)")
            for mod in singletons:
                lines.append(f"{self._indent_char * 2}{self.reference(mod)}: {', '.join(mod.method_table.names())}")
        return "\n".join(lines)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, Module): return self._pformat_module
        if isinstance(obj, collections.abc.Mapping): return self._pformat_dict
        if isinstance(obj, (list, tuple)): return self._pformat_list
        # Default to Python's repr for unknown types
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_primitive,
            float: self._pformat_primitive,
            bool: self._pformat_primitive,
            type(None): self._pformat_primitive,
            Module: self._pformat_module,
            Class: self._pformat_module,
            Instance: self._pformat_instance,
            list: self._pformat_list,
            tuple: self._pformat_list,
            dict: self._pformat_dict,
        }

    def _pformat_primitive(self, obj, level):
        return repr(obj)

    def _pformat_str(self, obj, level):
        return repr(obj)

    def _pformat_module(self, obj, level):
        return self.reference(obj)

    def _pformat_instance(self, obj, level):
        head = self.reference(obj._klass)
        fields = vars(obj)
        if not fields:
            return f"#<{head}>"
        if id(obj) in self._active:
            return f"#<{head} ...>"
        self._active.add(id(obj))
        try:
            parts = [f"{k}={self.pformat(v, level + 1)}" for k, v in fields.items()]
        finally:
            self._active.discard(id(obj))
        return f"#<{head} {' '.join(parts)}>"

    def _pformat_list(self, obj, level):
        return "[" + ", ".join(self.pformat(item, level + 1) for item in obj) + "]"

    def _pformat_dict(self, obj, level):
        items = ", ".join(f"{self.pformat(k, level + 1)}: {self.pformat(v, level + 1)}" for k, v in obj.items())
        return "{" + items + "}"
