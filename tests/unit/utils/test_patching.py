"""Unit tests for deep patching and subset comparison."""

from keycloak_config_sync.constants import SECRET_MASK
from keycloak_config_sync.models.keycloak_api import (
    ClientRepresentation,
    IdentityProviderRepresentation,
)
from keycloak_config_sync.utils.patching import (
    deep_patch,
    is_subset,
    needs_update,
    patched_payload,
)


class TestIsSubset:
    """Tests for is_subset."""

    def test_nested_dict_subset(self):
        """Should ignore remote keys the document does not mention."""
        assert is_subset({"a": {"b": 1}}, {"a": {"b": 1, "c": 2}, "d": 3})

    def test_list_compared_element_wise(self):
        """Should require lists of equal length and matching elements."""
        assert is_subset([{"x": 1}], [{"x": 1, "y": 2}])
        assert not is_subset([1, 2], [2, 1])
        assert not is_subset([1], [1, 2])

    def test_masked_secret_matches_any_value(self):
        """Should treat the server's secret mask as equal to any string."""
        assert is_subset({"clientSecret": "real"}, {"clientSecret": SECRET_MASK})


class TestNeedsUpdate:
    """Tests for needs_update."""

    def test_unset_fields_do_not_count(self):
        """Should only compare fields present in the document."""
        desired = ClientRepresentation.model_validate({"clientId": "app", "enabled": True})
        remote = ClientRepresentation.model_validate(
            {"id": "uuid", "clientId": "app", "enabled": True, "publicClient": False}
        )

        assert not needs_update(desired, remote)

    def test_changed_field_needs_update(self):
        """Should detect a differing value."""
        desired = ClientRepresentation.model_validate({"clientId": "app", "enabled": False})
        remote = ClientRepresentation.model_validate({"clientId": "app", "enabled": True})

        assert needs_update(desired, remote)

    def test_server_managed_and_ignored_fields(self):
        """Should skip server ids and explicitly ignored fields."""
        desired = IdentityProviderRepresentation.model_validate(
            {"alias": "github", "internalId": "other", "displayName": "GitHub"}
        )
        remote = IdentityProviderRepresentation.model_validate(
            {"alias": "github", "internalId": "abc", "displayName": "Old"}
        )

        assert needs_update(desired, remote)
        assert not needs_update(desired, remote, ignored=frozenset({"displayName"}))


class TestPatchedPayload:
    """Tests for deep_patch and patched_payload."""

    def test_deep_patch_merges_dicts_and_replaces_lists(self):
        """Should merge nested maps key by key but replace lists."""
        patched = deep_patch(
            {"config": {"a": "1", "b": "2"}, "uris": ["x"]},
            {"config": {"b": "3"}, "uris": ["y", "z"]},
        )

        assert patched == {"config": {"a": "1", "b": "3"}, "uris": ["y", "z"]}

    def test_patched_payload_keeps_remote_fields(self):
        """Should send the remote entity with the document's fields applied."""
        desired = ClientRepresentation.model_validate({"clientId": "app", "enabled": False})
        remote = ClientRepresentation.model_validate(
            {"id": "uuid", "clientId": "app", "enabled": True, "publicClient": True}
        )

        payload = patched_payload(desired, remote)

        assert payload["id"] == "uuid"
        assert payload["enabled"] is False
        assert payload["publicClient"] is True
