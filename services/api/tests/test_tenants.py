import pytest

from docqa_shared import Settings

from app.services.tenants import SettingsTenantConfigProvider


@pytest.mark.asyncio
async def test_defaults_apply_without_overrides():
    provider = SettingsTenantConfigProvider(Settings(default_top_k=12, default_confidence_threshold=0.3))
    config = await provider.get_rag_config("acme")
    assert config.top_k == 12
    assert config.confidence_threshold == 0.3


@pytest.mark.asyncio
async def test_tenant_overrides_merge_over_defaults():
    settings = Settings(default_top_k=12, tenant_rag_overrides={"acme": {"confidence_threshold": 0.5}})
    config = await SettingsTenantConfigProvider(settings).get_rag_config("acme")
    assert config.top_k == 12
    assert config.confidence_threshold == 0.5


@pytest.mark.asyncio
async def test_invalid_overrides_fall_back_to_defaults():
    settings = Settings(tenant_rag_overrides={"acme": {"confidence_threshold": 4.0}})
    config = await SettingsTenantConfigProvider(settings).get_rag_config("acme")
    assert config == settings.default_rag_config()
