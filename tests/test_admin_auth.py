"""
Tests for admin authentication.
"""

from unittest.mock import patch

import pytest


def _config_url(seeded):
    return f"/admin/tenants/{seeded['tenant'].id}/agent-config"


def test_admin_endpoint_without_api_key_works_in_dev_mode(client, seeded):
    """Test that admin endpoints work without API key when admin_api_key is not set (dev mode)."""
    response = client.get(_config_url(seeded))
    assert response.status_code == 200


def test_admin_endpoint_with_correct_api_key(client, seeded):
    """Test that admin endpoints work with correct API key."""
    with patch("app.api.auth.settings.admin_api_key", "test-secret-key-123"):
        response = client.get(_config_url(seeded), headers={"X-Admin-API-Key": "test-secret-key-123"})
        assert response.status_code == 200


def test_admin_endpoint_with_wrong_api_key(client, seeded):
    """Test that admin endpoints reject wrong API key."""
    with patch("app.api.auth.settings.admin_api_key", "test-secret-key-123"):
        response = client.get(_config_url(seeded), headers={"X-Admin-API-Key": "wrong-key"})
        assert response.status_code == 403
        assert "Invalid" in response.json()["detail"]


def test_admin_endpoint_missing_api_key_when_required(client, seeded):
    """Test that admin endpoints require API key when configured."""
    with patch("app.api.auth.settings.admin_api_key", "required-key"):
        response = client.get(_config_url(seeded))
        assert response.status_code == 401
        assert "Missing" in response.json()["detail"]


def test_all_admin_endpoints_protected(client, db, seeded):
    """Test that all admin endpoints require authentication."""
    from app.services.session_manager import load_or_create

    tenant_id = seeded["tenant"].id
    conversation_id = seeded["conversation"].id
    session_id = load_or_create(db, conversation_id, tenant_id, seeded["contact"].id).id
    with patch("app.api.auth.settings.admin_api_key", "test-key"):
        endpoints = [
            ("GET", f"/admin/sessions/{session_id}"),
            ("POST", f"/admin/sessions/{session_id}/reset"),
            ("POST", f"/admin/sessions/{session_id}/handoff"),
            ("POST", f"/admin/tenants/{tenant_id}/conversations/{conversation_id}/session/reset"),
            ("GET", f"/admin/tenants/{tenant_id}/agent-config"),
            ("PUT", f"/admin/tenants/{tenant_id}/agent-config"),
        ]
        for method, url in endpoints:
            kwargs = {"json": {}} if method == "PUT" else {}
            response = client.request(method, url, **kwargs)
            assert response.status_code == 401, f"{method} {url} should require auth"


def test_production_requires_admin_key(client, seeded):
    """A production deployment without ADMIN_API_KEY refuses admin requests."""
    with patch("app.api.auth.settings.app_env", "production"), patch(
        "app.api.auth.settings.admin_api_key", None
    ):
        with pytest.raises(RuntimeError, match="ADMIN_API_KEY"):
            client.get(_config_url(seeded))
