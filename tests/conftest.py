import asyncio
import io
import json
import os
import tempfile

# Settings are read at import time, so the environment has to be ready first
_scratch_dir = tempfile.mkdtemp(prefix="blogify-tests-")
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["POST_FLOOD_MAX"] = "1000"
os.environ["COMMENT_FLOOD_MAX"] = "1000"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_scratch_dir}/startup.db"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from PIL import Image  # noqa: E402
from sqlalchemy import update  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from blogify.models.user import User  # noqa: E402
from blogify.utils.image_storage import ImageStorage, get_image_storage  # noqa: E402
from database import create_tables, get_session_factory  # noqa: E402
from main import app  # noqa: E402

PASSWORD = "Secret123"


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client."""

    def __init__(self, fail_uploads=False):
        self.objects = {}
        self.deleted = []
        self.fail_uploads = fail_uploads

    def put_object(self, Bucket, Key, Body, ContentType):
        if self.fail_uploads:
            raise RuntimeError("storage unavailable")
        self.objects[Key] = Body

    def delete_object(self, Bucket, Key):
        self.deleted.append(Key)
        self.objects.pop(Key, None)


@pytest.fixture
def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'blogify.db'}", poolclass=NullPool)
    asyncio.run(create_tables(engine))
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    asyncio.run(engine.dispose())


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def storage(s3_client):
    return ImageStorage(s3_client=s3_client, bucket="blogify-test", public_url="https://cdn.test/blogify-test")


@pytest.fixture
def client(session_factory, storage):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_image_storage] = lambda: storage
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def png_bytes(size=(64, 48), color=(200, 30, 30)):
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, name="Alice Writer", email="alice@example.com", password=PASSWORD):
    response = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert response.status_code == 201, response.text
    data = response.json()["data"]
    data["headers"] = auth_headers(data["accessToken"])
    return data


def login(client, email, password=PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def make_admin(session_factory, user_id):
    async def _promote():
        async with session_factory() as session:
            await session.execute(update(User).where(User.id == user_id).values(role="admin"))
            await session.commit()

    asyncio.run(_promote())


def create_post(client, headers, title="Hello World", text="Hello world from my very first post",
                published=True, **fields):
    data = {
        "title": title,
        "contentHtml": f"<p>{text}</p>",
        "contentDelta": json.dumps({"ops": [{"insert": f"{text}\n"}]}),
        "published": "true" if published else "false",
    }
    data.update(fields)
    response = client.post("/api/posts", data=data, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]["post"]


def create_comment(client, headers, post_id, body="Nice post!", parent=None):
    payload = {"body": body}
    if parent is not None:
        payload["parent"] = parent
    response = client.post(f"/api/comments/post/{post_id}", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]["comment"]


@pytest.fixture
def author(client):
    return register(client)


@pytest.fixture
def reader(client):
    return register(client, name="Bob Reader", email="bob@example.com")


@pytest.fixture
def admin(client, session_factory):
    data = register(client, name="Ada Admin", email="admin@example.com")
    make_admin(session_factory, data["user"]["id"])
    return data
