from conftest import create_post

from blogify import flood_protection


def test_post_flood_limit(client, author, monkeypatch):
    monkeypatch.setattr(flood_protection.post_flood_protection, "max_items", 2)
    create_post(client, author["headers"], title="One Post")
    create_post(client, author["headers"], title="Two Post")

    response = client.post("/api/posts", headers=author["headers"], data={
        "title": "Three Post",
        "contentHtml": "<p>One post too many for the window</p>",
        "contentDelta": '{"ops": [{"insert": "One post too many for the window\\n"}]}',
    })

    assert response.status_code == 429
    message = response.json()["message"]
    assert message.startswith("Rate limit exceeded. You can create a new post in 19 minutes")


def test_comment_flood_limit_is_per_user(client, author, reader, monkeypatch):
    monkeypatch.setattr(flood_protection.comment_flood_protection, "max_items", 1)
    post = create_post(client, author["headers"])

    first = client.post(f"/api/comments/post/{post['id']}", headers=reader["headers"], json={"body": "One"})
    second = client.post(f"/api/comments/post/{post['id']}", headers=reader["headers"], json={"body": "Two"})
    other_user = client.post(f"/api/comments/post/{post['id']}", headers=author["headers"], json={"body": "Mine"})

    assert first.status_code == 201
    assert second.status_code == 429
    assert other_user.status_code == 201
