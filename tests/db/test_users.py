"""Tests for staff account database operations."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch
from uuid import UUID

from grooming.db.users import create_user, get_or_create_user, get_user_by_idp_id
from grooming.models.user import User

IDP_ID = UUID("12345678-1234-5678-1234-567812345678")
USER_ID = UUID("87654321-4321-8765-4321-876543218765")
NOW = datetime(2025, 1, 7, 16, 0, tzinfo=timezone.utc)


def _row(email="groomer@thepuppyday.com", username="groomer", role="staff"):
    return (USER_ID, IDP_ID, email, username, role, NOW, NOW)


class TestGetUserByIdpId:
    @patch("grooming.db.users.get_db_cursor")
    def test_found(self, mock_get_cursor):
        mock_cursor = MagicMock()
        mock_cursor.fetchone.return_value = _row(role="admin")
        mock_get_cursor.return_value.__enter__.return_value = mock_cursor

        user = get_user_by_idp_id(IDP_ID)

        assert user.is_admin
        assert mock_cursor.execute.call_args[0][1] == (str(IDP_ID),)

    @patch("grooming.db.users.get_db_cursor")
    def test_not_found(self, mock_get_cursor):
        mock_cursor = MagicMock()
        mock_cursor.fetchone.return_value = None
        mock_get_cursor.return_value.__enter__.return_value = mock_cursor

        assert get_user_by_idp_id(IDP_ID) is None


class TestCreateUser:
    @patch("grooming.db.users.get_db_cursor")
    def test_new_accounts_are_staff(self, mock_get_cursor):
        mock_cursor = MagicMock()
        mock_cursor.fetchone.return_value = _row()
        mock_get_cursor.return_value.__enter__.return_value = mock_cursor

        user = create_user(IDP_ID, "groomer@thepuppyday.com", "groomer")

        assert user.role == "staff"
        query, params = mock_cursor.execute.call_args[0]
        assert "INSERT INTO users" in query
        assert params == (str(IDP_ID), "groomer@thepuppyday.com", "groomer", "staff")


class TestGetOrCreateUser:
    """Test the login-time account lookup."""

    def _user(self, **kwargs):
        return User(
            id=USER_ID,
            idp_user_id=IDP_ID,
            email=kwargs.get("email", "groomer@thepuppyday.com"),
            username=kwargs.get("username", "groomer"),
            role="staff",
            created_at=NOW,
            updated_at=NOW,
        )

    @patch("grooming.db.users.create_user")
    @patch("grooming.db.users.get_user_by_idp_id")
    def test_existing_unchanged(self, mock_get, mock_create):
        mock_get.return_value = self._user()

        user = get_or_create_user(IDP_ID, "groomer@thepuppyday.com", "groomer")

        assert user.id == USER_ID
        mock_create.assert_not_called()

    @patch("grooming.db.users.update_user_profile")
    @patch("grooming.db.users.get_user_by_idp_id")
    def test_existing_profile_refreshed(self, mock_get, mock_update):
        mock_get.return_value = self._user()
        mock_update.return_value = self._user(email="new@thepuppyday.com")

        user = get_or_create_user(IDP_ID, "new@thepuppyday.com", "groomer")

        assert user.email == "new@thepuppyday.com"
        mock_update.assert_called_once_with(IDP_ID, "new@thepuppyday.com", "groomer")

    @patch("grooming.db.users.create_user")
    @patch("grooming.db.users.get_user_by_idp_id")
    def test_creates_when_missing(self, mock_get, mock_create):
        mock_get.return_value = None
        mock_create.return_value = self._user()

        get_or_create_user(IDP_ID, "groomer@thepuppyday.com", "groomer")

        mock_create.assert_called_once_with(IDP_ID, "groomer@thepuppyday.com", "groomer")
