# tests/test_secrets.py
import json

import pytest

from relayci.errors import DefinitionError, MissingSecret
from relayci.secrets import (
    EnvSecretSource,
    FileSecretSource,
    MappingSecretSource,
    SecretProvider,
    referenced_secrets,
)


def test_resolve_substitutes_secrets_and_env_in_nested_values(secrets):
    value = {
        "auth": "Bearer ${{ secrets.API_TOKEN }}",
        "args": ["--region", "${{ env.REGION }}"],
        "count": 3,
    }
    resolved = secrets.resolve(value, {"REGION": "eu-west-1"})

    assert resolved == {"auth": "Bearer s3cr3t-t0ken-value", "args": ["--region", "eu-west-1"], "count": 3}


def test_unknown_secret_raises_missing_secret(secrets):
    with pytest.raises(MissingSecret) as exc:
        secrets.resolve("${{ secrets.NOPE }}", {}, stage="deploy", step="apply")

    assert exc.value.name == "NOPE"
    assert exc.value.stage == "deploy"


def test_mask_hides_every_value(secrets):
    text = "token=s3cr3t-t0ken-value pw=hunter2hunter2 again s3cr3t-t0ken-value"
    assert secrets.mask(text) == "token=*** pw=*** again ***"


def test_mask_prefers_longest_secret():
    provider = SecretProvider({"SHORT": "abc", "LONG": "abcdef"})
    assert provider.mask("xx abcdef yy") == "xx *** yy"


def test_closed_provider_forgets_values():
    provider = SecretProvider({"A": "value-a"})
    with provider:
        assert provider.get("A") == "value-a"

    assert provider.names == []
    with pytest.raises(RuntimeError):
        provider.get("A")


def test_repr_never_shows_values(secrets):
    assert "s3cr3t" not in repr(secrets)
    assert "API_TOKEN" in repr(secrets)


def test_env_source_strips_prefix_and_picks_named_vars():
    environ = {"RELAYCI_SECRET_REGISTRY_TOKEN": "tok", "GITHUB_TOKEN": "gh", "HOME": "/root"}

    assert EnvSecretSource("RELAYCI_SECRET_", environ=environ).load() == {"REGISTRY_TOKEN": "tok"}
    assert EnvSecretSource("", names=["GITHUB_TOKEN", "MISSING"], environ=environ).load() == {"GITHUB_TOKEN": "gh"}


def test_file_sources_yaml_and_json(tmp_path):
    y = tmp_path / "secrets.yml"
    y.write_text("SONAR_TOKEN: abc\nPORT: 5432\n")
    j = tmp_path / "secrets.json"
    j.write_text(json.dumps({"SONAR_TOKEN": "override"}))

    provider = SecretProvider.from_sources([FileSecretSource(y), FileSecretSource(j), MappingSecretSource({"X": "1"})])

    assert provider.get("SONAR_TOKEN") == "override"
    assert provider.get("PORT") == "5432"
    assert provider.names == ["PORT", "SONAR_TOKEN", "X"]


def test_file_source_must_be_mapping(tmp_path):
    bad = tmp_path / "secrets.yml"
    bad.write_text("- a\n- b\n")
    with pytest.raises(DefinitionError):
        FileSecretSource(bad).load()


def test_referenced_secrets_walks_structures():
    value = {"a": "${{ secrets.ONE }}", "b": ["x ${{secrets.TWO}}", "${{ env.NOT_A_SECRET }}"]}
    assert referenced_secrets(value) == ["ONE", "TWO"]
