import pytest

from dcaflow.config import ConfigurationError, Settings


VALID = dict(
    rpc_url="https://base.example/rpc",
    signer_private_key="0x" + "11" * 32,
    forwarding_contract_address="0x9999999999999999999999999999999999999999",
    oneinch_api_key="key",
    database_url="sqlite:///:memory:",
)


def make_settings(**overrides) -> Settings:
    values = {**VALID, **overrides}
    return Settings(_env_file=None, **values)


def test_valid_executor_config_passes():
    make_settings().require_executor_config()


def test_defaults_target_base_usdc():
    settings = make_settings()

    assert settings.chain_id == 8453
    assert settings.usdc_address == "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
    assert settings.swap_slippage_percent == 5
    assert settings.swap_fee_percent == 3
    assert settings.oneinch_swap_url() == "https://api.1inch.dev/swap/v6.0/8453/swap"


def test_missing_fields_are_all_reported():
    settings = make_settings(
        rpc_url="",
        signer_private_key="",
        forwarding_contract_address="",
        oneinch_api_key="",
    )

    with pytest.raises(ConfigurationError) as exc:
        settings.require_executor_config()

    problems = " ".join(exc.value.problems)
    for name in ("RPC_URL", "SIGNER_PRIVATE_KEY", "FORWARDING_CONTRACT_ADDRESS", "ONEINCH_API_KEY"):
        assert name in problems
    assert len(exc.value.problems) == 4


def test_malformed_values_rejected():
    settings = make_settings(signer_private_key="0x1234", usdc_address="usdc")

    with pytest.raises(ConfigurationError) as exc:
        settings.require_executor_config()

    assert any("SIGNER_PRIVATE_KEY" in p for p in exc.value.problems)
    assert any("USDC_ADDRESS" in p for p in exc.value.problems)


def test_private_key_never_in_error_or_repr():
    key = "0x" + "ab" * 31 + "zz"
    settings = make_settings(signer_private_key=key)

    with pytest.raises(ConfigurationError) as exc:
        settings.require_executor_config()

    assert key not in str(exc.value)
    assert key not in repr(settings)


def test_legacy_env_aliases(monkeypatch):
    """Executor key and contract load from the legacy variable names."""

    monkeypatch.delenv("SIGNER_PRIVATE_KEY", raising=False)
    monkeypatch.delenv("FORWARDING_CONTRACT_ADDRESS", raising=False)
    monkeypatch.setenv("PRIVATE_KEY", "0x" + "22" * 32)
    monkeypatch.setenv("DCA_EXECUTOR_ADDRESS", "0x8888888888888888888888888888888888888888")

    settings = Settings(_env_file=None)

    assert settings.signer_private_key.get_secret_value() == "0x" + "22" * 32
    assert settings.forwarding_contract_address == "0x8888888888888888888888888888888888888888"
