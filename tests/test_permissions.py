from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from blogify.models.comment import Comment
from blogify.models.post import Post
from blogify.models.user import User
from blogify.utils.permissions import Ownable, is_owner_or_admin, require_owner_or_admin

owner = User(id=1, role="user")
stranger = User(id=2, role="user")
admin = User(id=3, role="admin")


def test_models_are_ownable():
    assert isinstance(Post(author_id=1), Ownable)
    assert isinstance(Comment(author_id=1), Ownable)
    assert isinstance(owner, Ownable)


@pytest.mark.parametrize("resource", [Post(author_id=1), Comment(author_id=1), SimpleNamespace(owner_id=1)])
def test_owner_and_admin_pass(resource):
    assert is_owner_or_admin(owner, resource)
    assert is_owner_or_admin(admin, resource)
    assert not is_owner_or_admin(stranger, resource)


def test_missing_user_or_resource_fails():
    assert not is_owner_or_admin(None, Post(author_id=1))
    assert not is_owner_or_admin(owner, None)


def test_require_raises_forbidden():
    require_owner_or_admin(owner, Post(author_id=1))

    with pytest.raises(HTTPException) as excinfo:
        require_owner_or_admin(stranger, Post(author_id=1))

    assert excinfo.value.status_code == 403
    assert excinfo.value.detail == "Access denied: insufficient permissions"
