"""
Unit Tests for the Auth Gate
============================
Bearer extraction, identity provider exchange, profile roles and role checks.
"""

import httpx
import pytest


class TestVerifyAuth:
    """Tests for AuthGate.verify_auth."""

    @pytest.mark.asyncio
    async def test_missing_header(self, auth_gate, make_request, identity_calls):
        """No Authorization header fails without calling the provider."""
        result = await auth_gate.verify_auth(make_request())

        assert result.authenticated is False
        assert result.error == "Missing or invalid Authorization header"
        assert identity_calls == []

    @pytest.mark.asyncio
    async def test_non_bearer_header(self, auth_gate, make_request):
        """Basic credentials are not accepted."""
        result = await auth_gate.verify_auth(make_request(headers={"Authorization": "Basic dXNlcjpwYXNz"}))

        assert result.authenticated is False
        assert result.error == "Missing or invalid Authorization header"

    @pytest.mark.asyncio
    async def test_valid_token_with_profile(self, auth_gate, make_request, identity_calls):
        """A valid token resolves to the user with the profile role."""
        result = await auth_gate.verify_auth(
            make_request(headers={"Authorization": "Bearer token-organizer"})
        )

        assert result.authenticated is True
        assert result.user.id == "user-organizer"
        assert result.user.role == "show_organizer"
        assert result.user.email == "organizer@example.com"
        assert identity_calls[0].headers["apikey"] == "service-key"
        assert identity_calls[0].headers["authorization"] == "Bearer token-organizer"

    @pytest.mark.asyncio
    async def test_missing_profile_means_unknown_role(self, auth_gate, make_request):
        """Authenticated users without a profile row get role 'unknown'."""
        result = await auth_gate.verify_auth(
            make_request(headers={"Authorization": "Bearer token-noprofile"})
        )

        assert result.authenticated is True
        assert result.user.role == "unknown"
        assert result.user.email == "ghost@example.com"

    @pytest.mark.asyncio
    async def test_rejected_token_surfaces_provider_message(self, auth_gate, make_request):
        """The provider's rejection message is reported."""
        result = await auth_gate.verify_auth(make_request(headers={"Authorization": "Bearer forged"}))

        assert result.authenticated is False
        assert result.user is None
        assert result.error == "invalid JWT: unable to parse or verify signature"

    @pytest.mark.asyncio
    async def test_result_memoised_per_request(self, auth_gate, make_request, identity_calls):
        """One request costs at most one provider round trip."""
        request = make_request(headers={"Authorization": "Bearer token-admin"})

        first = await auth_gate.verify_auth(request)
        second = await auth_gate.verify_auth(request)
        await auth_gate.verify_auth(make_request(headers={"Authorization": "Bearer token-admin"}))

        assert first is second
        assert len(identity_calls) == 2

    @pytest.mark.asyncio
    async def test_get_authenticated_user(self, auth_gate, make_request):
        """Returns the user, or None when unauthenticated."""
        user = await auth_gate.get_authenticated_user(
            make_request(headers={"Authorization": "Bearer token-admin"})
        )

        assert user.id == "user-admin"
        assert user.is_admin is True
        assert await auth_gate.get_authenticated_user(make_request()) is None


def gate_with_transport(handler, profiles=None):
    from edgeguard.auth import AuthGate, IdentityProvider, StaticProfileStore

    provider = IdentityProvider(
        "https://identity.example.com/",
        "service-key",
        transport=httpx.MockTransport(handler),
    )
    return AuthGate(provider, StaticProfileStore(profiles or {}))


class TestProviderFailures:
    """Upstream failures are reported as unauthenticated, never raised."""

    @pytest.mark.asyncio
    async def test_network_error(self, make_request):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        gate = gate_with_transport(handler)
        result = await gate.verify_auth(make_request(headers={"Authorization": "Bearer t"}))

        assert result.authenticated is False
        assert result.error == "Authentication error"

    @pytest.mark.asyncio
    async def test_timeout(self, make_request):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        gate = gate_with_transport(handler)
        result = await gate.verify_auth(make_request(headers={"Authorization": "Bearer t"}))

        assert result.authenticated is False

    @pytest.mark.asyncio
    async def test_server_error(self, make_request):
        gate = gate_with_transport(lambda request: httpx.Response(503, text="upstream down"))

        result = await gate.verify_auth(make_request(headers={"Authorization": "Bearer t"}))

        assert result.authenticated is False
        assert result.error == "Authentication error"

    @pytest.mark.asyncio
    async def test_malformed_payload(self, make_request):
        """A 200 without a user id is not an identity."""
        gate = gate_with_transport(lambda request: httpx.Response(200, json={"email": "x@example.com"}))

        result = await gate.verify_auth(make_request(headers={"Authorization": "Bearer t"}))

        assert result.authenticated is False

    @pytest.mark.asyncio
    async def test_profile_store_failure_degrades_role(self, make_request):
        """A failing profile store still authenticates, with role 'unknown'."""
        from edgeguard.auth import AuthGate, IdentityProvider
        from edgeguard.errors import StorageError

        class FailingProfiles:
            async def get_profile(self, user_id):
                raise StorageError("db down")

        provider = IdentityProvider(
            "https://identity.example.com",
            "service-key",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"id": "u1"})),
        )
        gate = AuthGate(provider, FailingProfiles())

        result = await gate.verify_auth(make_request(headers={"Authorization": "Bearer t"}))

        assert result.authenticated is True
        assert result.user.role == "unknown"


class TestIdentityProvider:
    """Tests for the HTTP client."""

    @pytest.mark.asyncio
    async def test_rejection_message_fields(self):
        """Error text is taken from the first populated GoTrue field."""
        from edgeguard.auth import IdentityProvider
        from edgeguard.errors import InvalidCredentials

        provider = IdentityProvider(
            "https://identity.example.com",
            "k",
            transport=httpx.MockTransport(
                lambda r: httpx.Response(403, json={"error": "forbidden", "error_description": "Token expired"})
            ),
        )

        with pytest.raises(InvalidCredentials) as exc_info:
            await provider.get_user("expired")
        assert exc_info.value.message == "Token expired"
        await provider.aclose()


class TestRoles:
    """Tests for has_required_roles."""

    def test_no_roles_required(self):
        from edgeguard.auth import UserData, has_required_roles

        assert has_required_roles(UserData(id="u", role="unknown"), []) is True
        assert has_required_roles(UserData(id="u", role="unknown"), None) is True

    def test_admin_passes_everything(self):
        from edgeguard.auth import UserData, has_required_roles

        assert has_required_roles(UserData(id="u", role="admin"), ["show_organizer"]) is True

    def test_membership(self):
        from edgeguard.auth import UserData, has_required_roles

        user = UserData(id="u", role="show_organizer")
        assert has_required_roles(user, ["admin", "show_organizer"]) is True
        assert has_required_roles(user, ["dealer"]) is False


class TestSQLProfileStore:
    """Tests for the profiles table lookup."""

    @pytest.mark.asyncio
    async def test_lookup(self, database):
        from sqlalchemy import insert
        from edgeguard.auth import SQLProfileStore

        async with database.session() as session:
            await session.execute(
                insert(database.tables.profiles).values(id="u1", role="dealer", email="d@example.com")
            )

        store = SQLProfileStore(database)
        profile = await store.get_profile("u1")

        assert profile.role == "dealer"
        assert profile.email == "d@example.com"
        assert await store.get_profile("missing") is None

    @pytest.mark.asyncio
    async def test_unreachable_database_degrades_role(self, unreachable_database, identity_provider, make_request):
        """Refused profile lookups raise StorageError; the gate still authenticates."""
        from edgeguard.auth import AuthGate, SQLProfileStore
        from edgeguard.errors import StorageError

        store = SQLProfileStore(unreachable_database)
        with pytest.raises(StorageError):
            await store.get_profile("user-admin")

        result = await AuthGate(identity_provider, store).verify_auth(
            make_request(headers={"Authorization": "Bearer token-admin"})
        )

        assert result.authenticated is True
        assert result.user.role == "unknown"
