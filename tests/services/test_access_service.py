"""Tests for AccessService."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from upload_service.app.services.access_service import AccessService, InvalidViewerError
from upload_service.app.services.base import AccessDeniedError, MissingUserError
from upload_service.infra.db.models import File


def _make_file(session, *, owner="owner", visibility="private", path="uploads/a.txt"):
    file = File(
        user_id=owner,
        name=path,
        original_name="a.txt",
        path=path,
        mime_type="text/plain",
        size=1,
        visibility=visibility,
        status="completed",
        upload_id="upload-1",
        metadata_={},
    )
    session.add(file)
    session.commit()
    return file


@pytest.fixture()
def access_service(session):
    return AccessService(session)


@pytest.fixture()
def private_file(session):
    return _make_file(session)


class TestCanRead:
    def test_public_file_readable_by_anyone(self, session, access_service):
        public = _make_file(session, visibility="public")

        assert access_service.can_read(public, None) is True
        assert access_service.can_read(public, "stranger") is True

    def test_private_file_needs_principal(self, access_service, private_file):
        assert access_service.can_read(private_file, None) is False
        assert access_service.can_read(private_file, "  ") is False

    def test_owner_can_read(self, access_service, private_file):
        assert access_service.can_read(private_file, "owner") is True

    def test_stranger_cannot_read(self, access_service, private_file):
        assert access_service.can_read(private_file, "stranger") is False

    def test_viewer_grant_allows_read(self, access_service, private_file):
        access_service.add_viewer(private_file, "friend", user_id="owner")

        assert access_service.can_read(private_file, "friend") is True
        assert access_service.can_read(private_file, "stranger") is False

    def test_removing_grant_revokes_access(self, access_service, private_file):
        access_service.add_viewer(private_file, "friend", user_id="owner")
        assert access_service.remove_viewer(private_file, "friend", user_id="owner")

        assert access_service.can_read(private_file, "friend") is False

    def test_deleted_file_unreadable(self, session, access_service):
        public = _make_file(session, visibility="public")
        public.deleted_at = datetime.now(timezone.utc)
        session.commit()

        assert access_service.can_read(public, "owner") is False

    def test_ensure_can_read_raises(self, access_service, private_file):
        with pytest.raises(AccessDeniedError):
            access_service.ensure_can_read(private_file, "stranger")


class TestViewerGrants:
    def test_double_grant_is_single_row(self, access_service, private_file):
        first = access_service.add_viewer(private_file, "friend", user_id="owner")
        second = access_service.add_viewer(private_file, "friend", user_id="owner")

        assert first.user_id == second.user_id == "friend"
        viewers = access_service.list_viewers(private_file, user_id="owner")
        assert [v.user_id for v in viewers] == ["friend"]

    def test_removing_missing_grant_is_noop(self, access_service, private_file):
        assert access_service.remove_viewer(private_file, "nobody", user_id="owner") is False

    def test_only_owner_manages_grants(self, access_service, private_file):
        with pytest.raises(AccessDeniedError):
            access_service.add_viewer(private_file, "friend", user_id="stranger")
        with pytest.raises(AccessDeniedError):
            access_service.remove_viewer(private_file, "friend", user_id="stranger")
        with pytest.raises(AccessDeniedError):
            access_service.list_viewers(private_file, user_id="stranger")

    def test_grant_requires_acting_user(self, access_service, private_file):
        with pytest.raises(MissingUserError):
            access_service.add_viewer(private_file, "friend", user_id=None)

    def test_blank_viewer_rejected(self, access_service, private_file):
        with pytest.raises(InvalidViewerError):
            access_service.add_viewer(private_file, "   ", user_id="owner")

    def test_grants_are_per_file(self, session, access_service, private_file):
        other = _make_file(session, path="uploads/b.txt")
        access_service.add_viewer(private_file, "friend", user_id="owner")

        assert access_service.can_read(other, "friend") is False

    def test_ensure_owner_returns_owner(self, access_service, private_file):
        assert access_service.ensure_owner(private_file, " owner ") == "owner"
