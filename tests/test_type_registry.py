import pytest

from mcsci.protocol.errors import AliasConflict, TypedValueParseError, UnknownAlias
from mcsci.protocol.types import GLOBAL_SCOPE, TypeRegistry, format_type_decl, parse_type_string
from mcsci.protocol.values import Alias, EnumOf, ListOf, Primitive, TupleOf


def test_builtin_aliases_are_global():
    reg = TypeRegistry()
    info = reg.resolve(GLOBAL_SCOPE, "extension_info")
    assert isinstance(info, TupleOf)
    assert len(info.items) == 5
    # visible from any extension scope
    assert reg.resolve(7, "extension_problem_list") == ListOf(Alias("problem_description"))


def test_register_is_idempotent_and_conflicts_are_rejected():
    reg = TypeRegistry()
    reg.register(0, "pair", "tuple(i32, i32)")
    reg.register(0, "pair", parse_type_string("tuple(i32, i32)"))
    assert reg.aliases(0) == [("pair", TupleOf((Primitive("i32"), Primitive("i32"))))]
    with pytest.raises(AliasConflict):
        reg.register(0, "pair", "tuple(i32, i64)")
    with pytest.raises(AliasConflict):
        reg.register(0, "extension_info", "string")
    with pytest.raises(AliasConflict):
        reg.register(0, "u8", "string")


def test_scopes_are_isolated():
    reg = TypeRegistry()
    reg.register(0, "thing", "u8")
    reg.register(1, "thing", "string")
    assert reg.resolve(0, "thing") == Primitive("u8")
    assert reg.resolve(1, "thing") == Primitive("string")
    with pytest.raises(UnknownAlias):
        reg.resolve(2, "thing")


def test_alias_chains_and_cycles():
    reg = TypeRegistry()
    reg.register(0, "a", "b")
    reg.register(0, "b", "enum(X, Y(a))")
    assert isinstance(reg.resolve(0, "a"), EnumOf)
    reg.register(0, "p", "q")
    reg.register(0, "q", "p")
    with pytest.raises(UnknownAlias):
        reg.resolve(0, "p")


def test_loader_fills_a_scope_once():
    calls = []

    def loader(ext_id):
        calls.append(ext_id)
        return [("score", "u32"), ("scores", "list(score)")] if ext_id == 4 else None

    reg = TypeRegistry(loader=loader)
    assert reg.resolve(4, "scores") == ListOf(Alias("score"))
    assert [a for a, _ in reg.aliases(4)] == ["score", "scores"]
    assert reg.lookup(5, "score") is None
    assert calls == [4, 5]


def test_failed_scope_load_is_rolled_back():
    calls = []

    def loader(ext_id):
        calls.append(ext_id)
        return [("a", "u8"), ("problem_arg", "string")] if ext_id == 0 else None

    reg = TypeRegistry(loader=loader)
    for _ in range(2):
        with pytest.raises(AliasConflict):
            reg.aliases(0)
    with pytest.raises(AliasConflict):
        reg.lookup(0, "a")
    assert calls == [0, 0, 0]


def test_unknown_scopes_are_not_remembered():
    calls = []

    def loader(ext_id):
        calls.append(ext_id)
        return None

    reg = TypeRegistry(loader=loader)
    assert reg.lookup(4000000000, "foo") is None
    assert reg.lookup(4000000000, "foo") is None
    assert reg.aliases(4000000000) == []
    assert calls == [4000000000] * 3


def test_identical_descriptors_share_a_handle():
    reg = TypeRegistry()
    h1 = reg.register(0, "x", "list(u8)")
    h2 = reg.register(1, "y", "list(u8)")
    assert h1 == h2
    assert reg.descriptor(h1) == ListOf(Primitive("u8"))


@pytest.mark.parametrize(
    "text",
    [
        "tuple(string, list(u8), array(f64, 3))",
        "enum(None, Some(i32), Pair(tuple(bool, bool)))",
        "problem_description",
    ],
)
def test_type_declarations_format_back(text):
    assert format_type_decl(parse_type_string(text)) == text


@pytest.mark.parametrize("text", ["array(i32, x)", "enum()", "enum(A, A)", "tuple(i32", "list(u8) extra", "(u8)"])
def test_bad_type_declarations(text):
    with pytest.raises(TypedValueParseError):
        parse_type_string(text)
