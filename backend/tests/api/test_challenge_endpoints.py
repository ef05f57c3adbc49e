"""API tests for the two-factor challenge endpoints."""

from uuid import uuid4

import pyotp
import pytest
import pytest_asyncio
from jose import jwt

from challenge_gate.config import settings
from challenge_gate.core.csp import ContentSecurityPolicy
from challenge_gate.core.security import create_login_token
from challenge_gate.core.session import get_session_store
from challenge_gate.main import app
from challenge_gate.services.twofactor import manager as manager_module
from challenge_gate.services.twofactor.base import ProviderCapabilities, TwoFactorProvider
from challenge_gate.services.twofactor.providers.backup_codes import BackupCodesProvider

BASE = settings.BASE_URL.rstrip("/")


class DuoLikeProvider(TwoFactorProvider):
    """Provider that talks to an external API from the challenge page."""

    provider_id = "duo"
    display_name = "Duo"
    capabilities = ProviderCapabilities(supports_custom_csp=True)

    async def is_enabled_for(self, db, user):
        return True

    async def get_template(self, db, user):
        return '<form method="POST"><input name="challenge"></form>'

    async def verify_challenge(self, db, user, challenge):
        return False

    def get_csp(self):
        return ContentSecurityPolicy().allow("connect-src", "https://api.duosecurity.com")


@pytest_asyncio.fixture
async def backup_codes(db_session, test_user):
    return await BackupCodesProvider(code_count=2).create_codes(db_session, test_user)


class TestLoginContext:
    """Test resolving the pending login."""

    @pytest.mark.asyncio
    async def test_requires_login_token(self, client):
        response = await client.get("/login/selectchallenge")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_rejects_invalid_token(self, client):
        response = await client.get(
            "/login/selectchallenge", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_rejects_other_token_types(self, client, test_user):
        token = jwt.encode(
            {"sub": str(test_user.id), "sid": "abc", "type": "access"},
            settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
        )
        response = await client.get(
            "/login/selectchallenge", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_rejects_unknown_user(self, client, test_user):
        token, _ = create_login_token(str(uuid4()))
        response = await client.get(
            "/login/selectchallenge", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_rejects_inactive_user(self, login_client, db_session, test_user):
        test_user.is_active = False
        await db_session.commit()

        response = await login_client.get("/login/selectchallenge")
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_accepts_bearer_token(self, client, login_token):
        token, _ = login_token
        response = await client.get(
            "/login/selectchallenge", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 200


class TestSelectAndShow:
    """Test the selection and challenge pages."""

    @pytest.mark.asyncio
    async def test_select_challenge(self, login_client, backup_codes):
        response = await login_client.get(
            "/login/selectchallenge", params={"redirect_url": "/apps/files"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["providers"] == []
        assert data["backup_provider"]["id"] == "backup_codes"
        assert data["provider_missing"] is False
        assert data["has_setup_providers"] is True
        assert data["redirect_url"] == "/apps/files"
        assert data["logout_url"] == f"{BASE}/login/logout"

    @pytest.mark.asyncio
    async def test_show_unknown_provider_redirects(self, login_client, backup_codes):
        response = await login_client.get("/login/challenge/totp")

        assert response.status_code == 303
        assert response.headers["location"] == "/login/selectchallenge"

    @pytest.mark.asyncio
    async def test_redirect_locations_match_app_routes(self, login_client, backup_codes):
        response = await login_client.post(
            "/login/challenge/backup_codes", data={"challenge": "0000-0000"}
        )

        assert response.status_code == 303
        assert response.headers["location"] == str(
            app.url_path_for("twofactor.show_challenge", challenge_provider_id="backup_codes")
        )

        missing = await login_client.get("/login/challenge/nope")
        assert missing.headers["location"] == str(app.url_path_for("twofactor.select_challenge"))

    @pytest.mark.asyncio
    async def test_show_challenge(self, login_client, backup_codes):
        response = await login_client.get(
            "/login/challenge/backup_codes", params={"redirect_url": "/apps/files"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["provider"]["id"] == "backup_codes"
        assert data["backup_provider"] is None
        assert data["error"] is False
        assert 'name="redirect_url" value="/apps/files"' in data["template"]
        assert "content_security_policy" not in data
        assert "default-src 'none'" in response.headers["content-security-policy"]
        assert response.headers["x-frame-options"] == "DENY"

    @pytest.mark.asyncio
    async def test_provider_csp_reaches_response(self, login_client):
        manager_module._providers = [DuoLikeProvider()]

        response = await login_client.get("/login/challenge/duo")

        assert response.status_code == 200
        assert "https://api.duosecurity.com" in response.headers["content-security-policy"]


class TestSolveChallenge:
    """Test submitting a challenge."""

    @pytest.mark.asyncio
    async def test_wrong_code_shows_error_once(self, login_client, backup_codes):
        response = await login_client.post(
            "/login/challenge/backup_codes",
            data={"challenge": "0000-0000", "redirect_url": "/apps/files"},
        )

        assert response.status_code == 303
        assert response.headers["location"] == "/login/challenge/backup_codes?redirect_url=%2Fapps%2Ffiles"

        first = (await login_client.get("/login/challenge/backup_codes")).json()
        second = (await login_client.get("/login/challenge/backup_codes")).json()
        assert first["error"] is True
        assert first["error_message"] is None
        assert second["error"] is False

    @pytest.mark.asyncio
    async def test_correct_code_redirects_to_target(self, login_client, login_token, backup_codes):
        response = await login_client.post(
            "/login/challenge/backup_codes",
            data={"challenge": backup_codes[0], "redirect_url": "%2Fapps%2Ffiles"},
        )

        assert response.status_code == 303
        assert response.headers["location"] == f"{BASE}/apps/files"

        _, session_id = login_token
        assert await get_session_store().get(session_id, "two_factor_auth_passed") is True

    @pytest.mark.asyncio
    async def test_redirect_url_from_query(self, login_client, backup_codes):
        response = await login_client.post(
            "/login/challenge/backup_codes?redirect_url=%2Fapps%2Fcalendar",
            data={"challenge": backup_codes[0]},
        )

        assert response.headers["location"] == f"{BASE}/apps/calendar"

    @pytest.mark.asyncio
    async def test_correct_code_without_target(self, login_client, backup_codes):
        response = await login_client.post(
            "/login/challenge/backup_codes", data={"challenge": backup_codes[0]}
        )

        assert response.headers["location"] == f"{BASE}{settings.DEFAULT_PAGE_PATH}"

    @pytest.mark.asyncio
    async def test_exhausted_codes_message(self, login_client, backup_codes):
        for code in backup_codes:
            await login_client.post("/login/challenge/backup_codes", data={"challenge": code})

        response = await login_client.post(
            "/login/challenge/backup_codes", data={"challenge": backup_codes[0]}
        )
        assert response.status_code == 303

        data = (await login_client.get("/login/challenge/backup_codes")).json()
        assert data["error"] is True
        assert "All backup codes have been used" in data["error_message"]

    @pytest.mark.asyncio
    async def test_unknown_provider_redirects_to_selection(self, login_client, backup_codes):
        response = await login_client.post("/login/challenge/sms", data={"challenge": "123456"})

        assert response.status_code == 303
        assert response.headers["location"] == "/login/selectchallenge"


class TestLoginSetup:
    """Test setting up TOTP during login."""

    @pytest.mark.asyncio
    async def test_setup_activate_and_challenge(self, login_client):
        listing = (await login_client.get("/login/setupchallenge")).json()
        assert [p["id"] for p in listing["providers"]] == ["totp"]

        setup = (await login_client.get("/login/setupchallenge/totp")).json()
        secret = setup["setup"]["secret"]
        code = pyotp.TOTP(secret).now()

        activated = await login_client.post(
            "/login/setupchallenge/totp/activate", json={"payload": code}
        )
        assert activated.status_code == 200
        assert activated.json() == {"provider_id": "totp", "activated": True}

        confirm = await login_client.post(
            "/login/setupchallenge/totp", params={"redirect_url": "/apps/files"}
        )
        assert confirm.status_code == 303
        assert confirm.headers["location"] == "/login/challenge/totp?redirect_url=%2Fapps%2Ffiles"

        # The activation code cannot be replayed as the challenge
        replay = await login_client.post("/login/challenge/totp", data={"challenge": code})
        assert replay.status_code == 303
        page = (await login_client.get("/login/challenge/totp")).json()
        assert page["error"] is True
        assert "already used" in page["error_message"]

    @pytest.mark.asyncio
    async def test_confirm_setup_reads_redirect_url_from_form(self, login_client):
        response = await login_client.post(
            "/login/setupchallenge/totp", data={"redirect_url": "/apps/files"}
        )

        assert response.status_code == 303
        assert response.headers["location"] == "/login/challenge/totp?redirect_url=%2Fapps%2Ffiles"

    @pytest.mark.asyncio
    async def test_setup_form_submits_to_activation(self, login_client):
        setup = (await login_client.get("/login/setupchallenge/totp")).json()
        assert setup["activate_url"] == "/login/setupchallenge/totp/activate"
        assert 'action="/login/setupchallenge/totp/activate"' in setup["template"]

        code = pyotp.TOTP(setup["setup"]["secret"]).now()
        response = await login_client.post(setup["activate_url"], data={"payload": code})

        assert response.status_code == 200
        assert response.json() == {"provider_id": "totp", "activated": True}

    @pytest.mark.asyncio
    async def test_activate_with_wrong_code(self, login_client):
        await login_client.get("/login/setupchallenge/totp")

        response = await login_client.post(
            "/login/setupchallenge/totp/activate", json={"payload": "abcdef"}
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_setup_unknown_provider_redirects(self, login_client):
        response = await login_client.get("/login/setupchallenge/backup_codes")

        assert response.status_code == 303
        assert response.headers["location"] == "/login/selectchallenge"


class TestLogout:
    """Test abandoning the login."""

    @pytest.mark.asyncio
    async def test_logout_clears_session(self, login_client, login_token):
        _, session_id = login_token
        await get_session_store().set(session_id, "two_factor_auth_uid", "alice")

        response = await login_client.get("/login/logout")

        assert response.status_code == 303
        assert response.headers["location"] == f"{BASE}{settings.LOGOUT_REDIRECT_PATH}"
        assert f"{settings.LOGIN_COOKIE_NAME}=" in response.headers["set-cookie"]
        assert not await get_session_store().exists(session_id, "two_factor_auth_uid")

    @pytest.mark.asyncio
    async def test_logout_without_login(self, client):
        response = await client.get("/login/logout")

        assert response.status_code == 303
