"""Tests for the module builder in chainplan/modules/builder.py."""

import pytest

from chainplan.core.exceptions import DuplicateActionName
from chainplan.modules.builder import Module, ModuleBuilder, build_module
from chainplan.modules.models import ActionKind, Future, ModuleParameter

ADDRESS = "0x" + "ab" * 20


class TestDeclarations:
    """Test each declaration method."""

    def test_contract_returns_future_for_address(self) -> None:
        module = build_module("TokenModule", lambda m: {"token": m.contract("Token")})

        action = module.actions["TokenModule#Token"]
        assert action.kind == ActionKind.DEPLOY
        assert action.contract == "Token"
        assert module["token"] == Future(action_id="TokenModule#Token")

    def test_contract_with_args_and_value(self) -> None:
        def define(m: ModuleBuilder) -> None:
            m.contract("Vault", ["0x1", 5], value=10)

        module = build_module("M", define)
        action = module.actions["M#Vault"]
        assert action.args == ("0x1", 5)
        assert action.value == 10

    def test_call_default_name_uses_contract(self, token_module: Module) -> None:
        mint = token_module.actions["TokenModule#Token.mint"]

        assert mint.kind == ActionKind.CALL
        assert mint.contract == "Token"
        assert mint.method == "mint"
        assert mint.target == Future(action_id="TokenModule#Token")
        assert mint.args == (1000,)

    def test_call_on_literal_address(self) -> None:
        module = build_module("M", lambda m: {"r": m.call(ADDRESS, "poke")})

        action = module.actions["M#contract.poke"]
        assert action.target == ADDRESS
        assert action.contract is None

    def test_static_call(self) -> None:
        def define(m: ModuleBuilder) -> dict:
            token = m.contract("Token")
            return {"supply": m.static_call(token, "totalSupply")}

        module = build_module("M", define)
        action = module.actions["M#Token.totalSupply"]
        assert action.kind == ActionKind.STATIC_CALL
        assert action.contract == "Token"

    def test_contract_at(self) -> None:
        module = build_module("M", lambda m: {"t": m.contract_at("Token", ADDRESS)})

        action = module.actions["M#Token"]
        assert action.kind == ActionKind.CONTRACT_AT
        assert action.address == ADDRESS

    def test_read_address_default_name(self) -> None:
        def define(m: ModuleBuilder) -> dict:
            factory = m.contract("Factory")
            created = m.call(factory, "create", id="create")
            return {"pair": m.read_address(created["pair"])}

        module = build_module("M", define)
        action = module.actions["M#create.address"]
        assert action.kind == ActionKind.READ_ADDRESS
        assert action.address == Future(action_id="M#create", selector=("pair",))

    def test_read_address_literal_needs_id(self) -> None:
        with pytest.raises(ValueError, match="explicit id"):
            build_module("M", lambda m: {"a": m.read_address(ADDRESS)})

        module = build_module("M", lambda m: {"a": m.read_address(ADDRESS, id="treasury")})
        assert module.actions["M#treasury"].address == ADDRESS

    def test_after_is_recorded(self) -> None:
        def define(m: ModuleBuilder) -> None:
            first = m.contract("A")
            m.contract("B", after=[first])

        module = build_module("M", define)
        assert module.actions["M#B"].after == (Future(action_id="M#A"),)

    def test_declaration_index(self) -> None:
        def define(m: ModuleBuilder) -> None:
            m.contract("A")
            m.contract("B")

        module = build_module("M", define)
        assert [a.index for a in module.actions.values()] == [0, 1]


class TestNames:
    """Test action naming rules."""

    def test_duplicate_name_raises(self) -> None:
        def define(m: ModuleBuilder) -> None:
            m.contract("Token")
            m.contract("Token")

        with pytest.raises(DuplicateActionName) as exc_info:
            build_module("M", define)
        assert exc_info.value.action_id == "M#Token"

    def test_explicit_id_disambiguates(self) -> None:
        def define(m: ModuleBuilder) -> None:
            m.contract("Token")
            m.contract("Token", id="Token2")

        module = build_module("M", define)
        assert list(module.actions) == ["M#Token", "M#Token2"]

    def test_repeated_call_needs_id(self) -> None:
        def define(m: ModuleBuilder) -> None:
            token = m.contract("Token")
            m.call(token, "mint", [1])
            m.call(token, "mint", [2])

        with pytest.raises(DuplicateActionName):
            build_module("M", define)

    def test_invalid_names(self) -> None:
        with pytest.raises(ValueError):
            Module("bad name")
        with pytest.raises(ValueError):
            build_module("M", lambda m: {"t": m.contract("Token", id="has#hash")})


class TestModules:
    """Test parameters, exports and module composition."""

    def test_parameter_declared(self) -> None:
        captured = {}

        def define(m: ModuleBuilder) -> None:
            captured["supply"] = m.parameter("supply", 1000)
            captured["owner"] = m.parameter("owner")

        module = build_module("M", define)
        assert module.parameters["supply"] == ModuleParameter(
            module="M", name="supply", default=1000, has_default=True
        )
        assert captured["owner"].has_default is False

    def test_none_is_a_valid_default(self) -> None:
        def define(m: ModuleBuilder) -> None:
            m.parameter("x", None)

        module = build_module("M", define)
        assert module.parameters["x"].has_default is True

    def test_use_module_returns_exports(self, token_module: Module) -> None:
        captured = {}

        def define(m: ModuleBuilder) -> None:
            captured["exports"] = m.use_module(token_module)
            m.use_module(token_module)

        module = build_module("Users", define)
        assert captured["exports"] == {"token": Future(action_id="TokenModule#Token")}
        assert module.submodules == [token_module]

    def test_call_on_used_module_infers_contract(self, token_module: Module) -> None:
        def define(m: ModuleBuilder) -> None:
            token = m.use_module(token_module)["token"]
            m.call(token, "approve", ["0x1", 5])

        module = build_module("Users", define)
        assert module.actions["Users#Token.approve"].contract == "Token"

    def test_future_for_undeclared_action(self) -> None:
        module = Module("M")
        assert module.future("Later") == Future(action_id="M#Later")

    def test_exports_must_be_futures(self) -> None:
        with pytest.raises(TypeError, match="not a future"):
            build_module("M", lambda m: {"x": "0x1"})

    def test_definition_may_return_none(self) -> None:
        module = build_module("M", lambda m: None)
        assert module.exports == {}
        assert repr(module) == "Module('M', actions=0)"
