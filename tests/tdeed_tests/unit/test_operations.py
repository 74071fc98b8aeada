"""
End-to-end tests for the deed operation handlers.
"""

from unittest.mock import MagicMock

import pytest
from eth_abi import encode
from eth_utils import keccak

from chain_fakes import (
    BOUND_VALIDATOR,
    OWNER,
    STRANGER,
    VALIDATOR_ACCOUNT,
    VALIDATOR_ROLE,
    mock_direct_signer,
    relay_for,
)
from tdeed.core.exceptions import InputValidationError
from tdeed.core.networks import METADATA_RENDERER, VALIDATOR
from tdeed.core.operations import (
    STATE_TRANSITIONS,
    DeedOperations,
    OperationResult,
    OperationState,
    parse_token_id,
)
from tdeed.core.permissions import DecisionStatus, PermissionSource
from tdeed.core.refresh import RefreshScheduler
from tdeed.core.traits import VALIDATOR_TRAIT_KEY

HAPPY_PATH = [
    OperationState.IDLE,
    OperationState.VALIDATING_INPUT,
    OperationState.RESOLVING_BINDING,
    OperationState.CHECKING_PERMISSION,
    OperationState.EXECUTING,
    OperationState.SUCCESS,
]


@pytest.fixture
def refresh():
    return MagicMock(spec=RefreshScheduler)


def _ops(chain, network, loader, executor, refresh, caller):
    return DeedOperations(network, relay_for(chain, caller), loader=loader, executor=executor, refresh=refresh)


class TestSetTrait:
    def test_owner_sets_string_trait(self, deployed_chain, network, loader, executor, refresh):
        ops = _ops(deployed_chain, network, loader, executor, refresh, OWNER)

        result = ops.set_trait(1, "color", "red")

        assert result.succeeded
        assert result.transitions == HAPPY_PATH
        assert result.decision.source is PermissionSource.OWNERSHIP
        assert deployed_chain.sent == [
            (network.registry_address.lower(), "setTrait", (1, b"color", b"red", 1))
        ]
        assert deployed_chain.traits[(1, keccak(text="color"))] == b"red"
        refresh.schedule.assert_called_once_with(1)
        assert result.refresh_scheduled
        assert not ops.is_loading

    def test_refresh_uses_default_delay(self, deployed_chain, network, loader, executor):
        ops = DeedOperations(network, relay_for(deployed_chain, OWNER), loader=loader, executor=executor)
        assert ops.refresh.delay == 2.0
        result = ops.set_trait(1, "color", "red")
        assert result.refresh_scheduled
        ops.refresh.cancel_all()

    def test_attempts_are_scoped_to_each_operation(self, deployed_chain, network, loader, executor, refresh):
        ops = _ops(deployed_chain, network, loader, executor, refresh, OWNER)

        first = ops.set_trait(1, "color", "red")
        second = ops.set_trait(1, "color", "blue")

        assert first.attempts
        assert len(second.attempts) == len(first.attempts)
        assert ops.executor.attempts == second.attempts
        assert second.to_dict()["attempts"] == len(second.attempts)

    def test_refresh_reads_do_not_touch_operation_attempts(self, deployed_chain, network, loader, executor):
        ops = DeedOperations(network, relay_for(deployed_chain, OWNER), loader=loader, executor=executor)
        result = ops.set_trait(1, "color", "red")
        ops.refresh.cancel_all()

        ops._refresh_token(1)

        assert ops.token_uris[1] == "ipfs://deed/1"
        assert ops.executor.attempts == result.attempts

    def test_number_trait_is_word_with_tag_two(self, deployed_chain, network, loader, executor, refresh):
        ops = _ops(deployed_chain, network, loader, executor, refresh, OWNER)
        result = ops.update_trait("1", "squareFeet", "1500", "number")

        assert result.succeeded
        assert result.operation == "update_trait"
        _, name, args = deployed_chain.sent[0]
        assert args[1] == b"squareFeet"
        assert int.from_bytes(args[2], "big") == 1500
        assert args[3] == 2

    def test_stranger_is_denied_and_nothing_is_written(self, deployed_chain, network, loader, executor, refresh):
        ops = _ops(deployed_chain, network, loader, executor, refresh, STRANGER)

        result = ops.set_trait(1, "color", "red")

        assert result.state is OperationState.FAILED
        assert result.message == "You are not authorized to modify this T-Deed."
        assert result.decision.status is DecisionStatus.DENIED
        assert deployed_chain.sent == []
        assert "eth_sendTransaction" not in deployed_chain.methods
        refresh.schedule.assert_not_called()
        assert not ops.is_loading

    def test_unverifiable_permission_has_distinct_message(self, chain, network, loader, executor, refresh):
        # registry answers the binding lookup but every permission probe reverts
        chain.deploy(network.registry_address, "DeedNFT", getTraitValue=lambda token_id, key: b"")
        ops = _ops(chain, network, loader, executor, refresh, STRANGER)

        result = ops.set_trait(1, "color", "red")

        assert result.state is OperationState.FAILED
        assert result.decision.status is DecisionStatus.UNVERIFIED
        assert result.message.startswith("Could not verify")
        assert chain.sent == []

    def test_binding_failure_fails_operation(self, chain, network, loader, executor, refresh):
        def unreachable(params):
            raise ConnectionError("node unreachable")

        chain.extra["eth_call"] = unreachable
        ops = _ops(chain, network, loader, executor, refresh, STRANGER)

        result = ops.set_trait(1, "color", "red")

        assert result.state is OperationState.FAILED
        assert OperationState.CHECKING_PERMISSION not in result.transitions
        assert "node unreachable" in result.message

    @pytest.mark.parametrize(
        "token_id, name, value",
        [("", "color", "red"), (1, "", "red"), (1, "color", "  "), (-1, "color", "red"), ("abc", "color", "red")],
    )
    def test_blank_or_invalid_input_fails_without_network(self, chain, network, loader, executor, refresh, token_id, name, value):
        ops = _ops(chain, network, loader, executor, refresh, OWNER)

        result = ops.set_trait(token_id, name, value)

        assert result.state is OperationState.FAILED
        assert result.transitions == [OperationState.IDLE, OperationState.VALIDATING_INPUT, OperationState.FAILED]
        assert chain.requests == []
        assert not ops.is_loading

    def test_invalid_typed_value_fails_validation(self, chain, network, loader, executor, refresh):
        ops = _ops(chain, network, loader, executor, refresh, OWNER)
        result = ops.set_trait(1, "squareFeet", "large", "number")
        assert result.state is OperationState.FAILED
        assert chain.requests == []

    def test_wallet_rejection_on_direct_signer(self, network, loader, executor, refresh):
        signer = mock_direct_signer(OWNER, {"getTraitValue": b"", "ownerOf": OWNER})
        transact = signer.mock_contract.functions.setTrait.return_value.transact
        transact.side_effect = ValueError({"code": 4001, "message": "User rejected the request."})
        ops = DeedOperations(network, signer, loader=loader, executor=executor, refresh=refresh)

        result = ops.set_trait(1, "color", "red")

        assert result.state is OperationState.FAILED
        assert result.transitions[-2:] == [OperationState.EXECUTING, OperationState.FAILED]
        assert result.message == "The request was rejected in your wallet."
        assert not ops.is_loading
        assert not result.refresh_scheduled
        refresh.schedule.assert_not_called()


class TestOtherOperations:
    def test_remove_trait(self, deployed_chain, network, loader, executor, refresh):
        deployed_chain.traits[(1, keccak(text="color"))] = b"red"
        ops = _ops(deployed_chain, network, loader, executor, refresh, OWNER)

        result = ops.remove_trait(1, "color")

        assert result.succeeded
        assert deployed_chain.sent[0][1:] == ("removeTrait", (1, "color"))
        assert (1, keccak(text="color")) not in deployed_chain.traits

    def test_set_trait_name_hashes_key(self, deployed_chain, network, loader, executor, refresh):
        ops = _ops(deployed_chain, network, loader, executor, refresh, OWNER)
        result = ops.set_trait_name(1, "color", "Exterior Color")
        assert result.succeeded
        assert deployed_chain.sent[0][1:] == ("setTraitName", (keccak(text="color"), "Exterior Color"))

    def test_validation_status_targets_bound_validator(self, deployed_chain, network, loader, executor, refresh):
        deployed_chain.traits[(1, VALIDATOR_TRAIT_KEY)] = encode(["address"], [BOUND_VALIDATOR])
        deployed_chain.deploy(
            BOUND_VALIDATOR,
            VALIDATOR,
            VALIDATOR_ROLE=lambda: VALIDATOR_ROLE,
            hasRole=lambda role, account: account == VALIDATOR_ACCOUNT,
            updateValidationStatus=lambda token_id, is_valid, validator: None,
        )
        ops = _ops(deployed_chain, network, loader, executor, refresh, VALIDATOR_ACCOUNT)

        result = ops.update_validation_status(1, "false")

        assert result.succeeded
        assert result.binding == BOUND_VALIDATOR
        assert result.decision.source is PermissionSource.VALIDATOR_ROLE
        assert deployed_chain.sent == [
            (BOUND_VALIDATOR.lower(), "updateValidationStatus", (1, False, VALIDATOR_ACCOUNT))
        ]

    def test_validate_deed_falls_back_to_network_validator(self, deployed_chain, network, loader, executor, refresh):
        ops = _ops(deployed_chain, network, loader, executor, refresh, OWNER)
        result = ops.validate_deed(1)
        assert result.succeeded
        assert deployed_chain.sent[0][0] == network.contract_address(VALIDATOR).lower()
        assert deployed_chain.sent[0][1] == "validateDeed"

    def test_invalid_validation_flag_fails(self, chain, network, loader, executor, refresh):
        ops = _ops(chain, network, loader, executor, refresh, OWNER)
        result = ops.update_validation_status(1, "perhaps")
        assert result.state is OperationState.FAILED
        assert chain.requests == []

    def test_metadata_setters_target_renderer(self, deployed_chain, network, loader, executor, refresh):
        deployed_chain.renderer_roles[VALIDATOR_ROLE].add(VALIDATOR_ACCOUNT)
        ops = _ops(deployed_chain, network, loader, executor, refresh, VALIDATOR_ACCOUNT)
        renderer = network.contract_address(METADATA_RENDERER).lower()

        assert ops.set_custom_metadata(1, '{"rooms": 3}').succeeded
        assert ops.set_animation_url(1, "ipfs://anim").succeeded
        assert ops.set_external_link(1, "https://deed.example/1").succeeded
        assert ops.manage_document(1, "deed", "ipfs://doc").succeeded
        assert ops.manage_document(1, "deed", is_remove=True).succeeded
        assert ops.set_asset_condition(1, "Good", "2024-01-01", "roof, windows", ["paint"], "none").succeeded
        assert ops.set_legal_info(1, "Delaware", "REG-1", "2023-05-01", ["title"], [], "").succeeded
        assert ops.set_features(1, ["pool", "garage"]).succeeded
        assert ops.set_gallery(1, "ipfs://a, ipfs://b").succeeded

        sent = {name: args for to, name, args in deployed_chain.sent if to == renderer}
        assert sent["setTokenCustomMetadata"] == (1, '{"rooms": 3}')
        assert sent["manageTokenDocument"] == (1, "deed", "", True)
        assert sent["setAssetCondition"] == (1, "Good", "2024-01-01", ["roof", "windows"], ["paint"], "none")
        assert sent["setTokenLegalInfo"] == (1, "Delaware", "REG-1", "2023-05-01", ["title"], [], "")
        assert sent["setTokenFeatures"] == (1, ["pool", "garage"])
        assert sent["setTokenGallery"] == (1, ["ipfs://a", "ipfs://b"])

    def test_empty_feature_list_fails_validation(self, chain, network, loader, executor, refresh):
        ops = _ops(chain, network, loader, executor, refresh, OWNER)
        assert ops.set_features(1, []).state is OperationState.FAILED
        assert chain.requests == []


class TestReads:
    def test_get_trait_value_decodes_by_type(self, deployed_chain, network, loader, executor, refresh):
        deployed_chain.traits[(1, keccak(text="color"))] = b"red"
        deployed_chain.traits[(1, keccak(text="floors"))] = (3).to_bytes(32, "big")
        ops = _ops(deployed_chain, network, loader, executor, refresh, STRANGER)

        assert ops.get_trait_value(1, "color") == "red"
        assert ops.get_trait_value(1, "floors", "number") == 3
        assert ops.get_trait_value(1, "missing") is None

    def test_get_trait_name(self, deployed_chain, network, loader, executor, refresh):
        ops = _ops(deployed_chain, network, loader, executor, refresh, STRANGER)
        assert ops.get_trait_name("color") == "Color"
        assert deployed_chain.called("getTraitName") == [(keccak(text="color"),)]


class TestStateMachine:
    def test_terminal_states_have_no_transitions(self):
        assert STATE_TRANSITIONS[OperationState.SUCCESS] == []
        assert STATE_TRANSITIONS[OperationState.FAILED] == []

    def test_invalid_transition_raises(self):
        result = OperationResult(operation="set_trait", token_id=1)
        with pytest.raises(ValueError):
            result.transition(OperationState.EXECUTING)

    def test_parse_token_id(self):
        assert parse_token_id(" 42 ") == 42
        assert parse_token_id(0) == 0

    @pytest.mark.parametrize("token_id", ["\u00b2", "\u0661", "1.5", True])
    def test_parse_token_id_rejects_non_decimal(self, token_id):
        with pytest.raises(InputValidationError):
            parse_token_id(token_id)
