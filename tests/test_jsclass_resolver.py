import asyncio
import pytest
from jsclass import (
    create_module, create_class, include, extend, responds_to, ancestors,
    call_super, send, MethodMissing, NOT_FOUND, Object, Kernel,
)
from jsclass.jsclass_resolver import RESOLVER, Resolver, BoundMethod


def _const(value):
    return lambda self: value


# --- Resolution Order ---

def test_own_method_beats_included_module():
    Mix = create_module({"f": _const("mix")})
    Klass = create_class({"include": Mix, "f": _const("own")})
    assert Klass.new().f() == "own"

def test_included_module_beats_superclass():
    Base = create_class({"f": _const("base")})
    Mix = create_module({"f": _const("mix")})
    Sub = create_class(Base, {"include": Mix})
    assert Sub.new().f() == "mix"

def test_most_recently_included_module_wins():
    A = create_module({"f": _const("A")})
    B = create_module({"f": _const("B")})
    Klass = create_class({"include": [A, B]})
    obj = Klass.new()
    assert obj.f() == "B"

def test_reinclusion_promotes_module():
    A = create_module({"f": _const("A")})
    B = create_module({"f": _const("B")})
    Klass = create_class({"include": [A, B]})
    obj = Klass.new()
    include(Klass, A)
    assert obj.f() == "A"
    assert Klass.includes == [A, B, A]
    assert ancestors(Klass)[:3] == [Klass, A, B]

def test_nested_includes_walk_depth_first_in_reverse():
    Inner = create_module("Inner")
    Left = create_module("Left", {"include": Inner})
    Right = create_module("Right")
    Klass = create_class("Klass", {"include": [Left, Right]})
    assert ancestors(Klass) == [Klass, Right, Left, Inner, Object, Kernel]

def test_shared_mixin_appears_once_at_latest_position():
    Base = create_module("Base")
    Left = create_module("Left", {"include": Base})
    Right = create_module("Right", {"include": Base})
    Klass = create_class("Klass", {"include": [Left, Right]})
    chain = ancestors(Klass)
    assert chain.count(Base) == 1
    assert chain == [Klass, Right, Base, Left, Object, Kernel]

def test_shared_mixin_can_outrank_an_override_in_an_earlier_mixin():
    Base = create_module("Base", {"f": _const("base")})
    Left = create_module("Left", {"include": Base, "f": _const("left")})
    Right = create_module("Right", {"include": Base})
    Klass = create_class("Klass", {"include": [Left, Right]})
    assert Klass.new().f() == "base"

def test_module_included_by_class_and_superclass_appears_once():
    Mix = create_module("Mix")
    Base = create_class("Base", {"include": Mix})
    Sub = create_class("Sub", Base, {"include": Mix})
    assert ancestors(Sub) == [Sub, Mix, Base, Object, Kernel]

def test_module_ancestors_include_its_mixins():
    Inner = create_module("Inner")
    Outer = create_module("Outer", {"include": Inner})
    assert Outer.ancestors() == [Outer, Inner]


# --- Late Binding ---

def test_method_added_to_class_after_instantiation():
    Klass = create_class()
    obj = Klass.new()
    assert not responds_to(obj, "g")
    Klass.define("g", _const("g"))
    assert responds_to(obj, "g")
    assert obj.g() == "g"

def test_reopened_module_reaches_existing_instances():
    Greeter = create_module("Greeter")
    Klass = create_class({"include": Greeter})
    existing = [Klass.new(), Klass.new()]
    for obj in existing:
        assert not responds_to(obj, "greet")
    Greeter.define("greet", _const("hello"))
    assert [obj.greet() for obj in existing] == ["hello", "hello"]

def test_redefinition_replaces_cached_lookup():
    Klass = create_class({"f": _const(1)})
    obj = Klass.new()
    assert obj.f() == 1
    Klass.define("f", _const(2))
    assert obj.f() == 2

def test_include_after_instantiation():
    Klass = create_class()
    obj = Klass.new()
    include(Klass, create_module({"late": _const("late")}))
    assert obj.late() == "late"

def test_superclass_change_after_instantiation():
    Old = create_class({"origin": _const("old")})
    New = create_class({"origin": _const("new")})
    Klass = create_class(Old)
    obj = Klass.new()
    assert obj.origin() == "old"
    Klass.superclass = New
    assert obj.origin() == "new"

def test_removed_method_stops_resolving_on_existing_instances():
    Base = create_class({"origin": _const("base")})
    Klass = create_class(Base, {"origin": _const("klass")})
    obj = Klass.new()
    assert obj.origin() == "klass"
    Klass.remove_method("origin")
    assert obj.origin() == "base"
    Base.remove_method("origin")
    assert not responds_to(obj, "origin")
    with pytest.raises(MethodMissing):
        obj.origin()


# --- Singleton Extension ---

def test_extension_beats_class_methods():
    Klass = create_class({"f": _const("class")})
    obj = Klass.new()
    extend(obj, {"f": _const("singleton")})
    assert obj.f() == "singleton"
    assert Klass.new().f() == "class"

def test_latest_extension_wins():
    obj = create_class().new()
    extend(obj, {"f": _const("first")})
    extend(obj, {"f": _const("second")})
    assert obj.f() == "second"

def test_extension_module_edits_are_live():
    Ext = create_module("Ext")
    obj = create_class().new()
    extend(obj, Ext)
    Ext.define("added", _const("yes"))
    assert obj.added() == "yes"

def test_class_methods_are_inherited_by_subclasses():
    Base = create_class({"extend": {"kind": lambda self: self.name}})
    Sub = create_class("Sub", Base)
    assert Sub.kind() == "Sub"
    assert not responds_to(Sub.new(), "kind")

def test_module_receiver_without_method_raises():
    Mod = create_module("Mod")
    with pytest.raises(MethodMissing):
        Mod.nothing_here()


# --- Constants ---

def test_constants_are_returned_unbound():
    Inner = create_module()
    Klass = create_class({"limit": 10, "Inner": Inner, "error": ValueError})
    obj = Klass.new()
    assert obj.limit == 10
    assert obj.Inner is Inner
    assert obj.error is ValueError
    assert send(obj, "limit") == 10


# --- Super Calls ---

def test_call_super_forwards_current_arguments():
    def base_initialize(self, name, age):
        self.name = name
        self.age = age

    def sub_initialize(self, name, age):
        self.call_super()
        self.tagged = True

    Base = create_class({"initialize": base_initialize})
    Sub = create_class(Base, {"initialize": sub_initialize})
    obj = Sub.new("jcoglan", 26)
    assert (obj.name, obj.age, obj.tagged) == ("jcoglan", 26, True)

def test_call_super_with_explicit_arguments():
    Base = create_class({"scale": lambda self, x: x * 10})
    Sub = create_class(Base, {"scale": lambda self, x: self.call_super(x + 1)})
    assert Sub.new().scale(1) == 20

def test_call_super_walks_through_mixins():
    Base = create_class({"describe": lambda self: ["base"]})
    Mix = create_module({"describe": lambda self: ["mix"] + self.call_super()})
    Sub = create_class(Base, {"include": Mix, "describe": lambda self: ["sub"] + self.call_super()})
    assert Sub.new().describe() == ["sub", "mix", "base"]

def test_call_super_from_singleton_extension():
    Klass = create_class({"greet": _const("hello")})
    obj = Klass.new()
    obj.extend({"greet": lambda self: self.call_super().upper()})
    assert obj.greet() == "HELLO"

def test_call_super_on_class_methods():
    Base = create_class({"extend": {"build": lambda self: ["base"]}})
    Sub = create_class(Base, {"extend": {"build": lambda self: ["sub"] + call_super(self)}})
    assert Sub.build() == ["sub", "base"]

def test_call_super_without_next_implementation():
    obj = create_class({"f": lambda self: self.call_super()}).new()
    with pytest.raises(MethodMissing) as info:
        obj.f()
    assert info.value.name == "f"

def test_call_super_outside_a_method():
    with pytest.raises(RuntimeError):
        call_super(create_class().new())

def test_frames_unwind_when_method_raises():
    def boom(self):
        raise ValueError("boom")
    obj = create_class({"boom": boom}).new()
    with pytest.raises(ValueError):
        obj.boom()
    assert obj._frames == []

@pytest.mark.asyncio
async def test_call_super_from_async_method():
    async def base_setup(self, label):
        await asyncio.sleep(0)
        return ["base", label]

    async def sub_setup(self, label):
        return ["sub"] + await call_super(self)

    Base = create_class({"setup": base_setup})
    Sub = create_class(Base, {"setup": sub_setup})
    obj = Sub.new()
    assert await obj.setup("x") == ["sub", "base", "x"]
    assert obj._frames == []

@pytest.mark.asyncio
async def test_async_frames_are_not_shared_between_calls():
    async def base_step(self, n):
        await asyncio.sleep(0)
        return n

    async def sub_step(self, n):
        await asyncio.sleep(0)
        return await self.call_super(n * 10)

    Base = create_class({"step": base_step})
    Sub = create_class(Base, {"step": sub_step})
    obj = Sub.new()
    pending = obj.step(1)
    assert obj._frames == []
    assert await pending == 10


# --- Resolver API ---

def test_lookup_and_find():
    impl = _const("f")
    Klass = create_class({"f": impl})
    obj = Klass.new()
    assert RESOLVER.lookup(obj, "f") is impl
    assert RESOLVER.lookup(obj, "missing") is NOT_FOUND
    assert RESOLVER.find(RESOLVER.ancestors(Klass), "f") == (0, impl)
    assert RESOLVER.find(RESOLVER.ancestors(Klass), "f", start=1) is None

def test_bound_method_reports_owner():
    Mix = create_module("Mix", {"f": _const("f")})
    Klass = create_class("Klass", {"include": Mix})
    bound = Klass.new().method("f")
    assert isinstance(bound, BoundMethod)
    assert bound.owner is Mix
    assert bound() == "f"
    assert repr(bound) == "#<Method Mix#f>"

def test_non_metaobjects_have_empty_chain():
    resolver = Resolver()
    assert resolver.chain_for(42) == ()
    assert not resolver.responds_to("text", "upper")

def test_ancestor_cache_follows_mutation():
    Klass = create_class()
    first = RESOLVER.ancestors(Klass)
    assert RESOLVER.ancestors(Klass) is first
    Mix = create_module()
    include(Klass, Mix)
    assert Mix in RESOLVER.ancestors(Klass)
