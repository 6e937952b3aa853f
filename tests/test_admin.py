from conftest import create_comment, create_post, login


def test_admin_routes_require_admin_role(client, author):
    for method, path in (
        ("GET", "/api/admin/stats"),
        ("GET", "/api/admin/users"),
        ("GET", "/api/admin/posts"),
        ("GET", "/api/admin/comments"),
    ):
        response = client.request(method, path, headers=author["headers"])
        assert response.status_code == 403
        assert response.json()["message"] == "Admin privileges required"

    assert client.get("/api/admin/stats").status_code == 401


def test_admin_stats(client, author, reader, admin):
    post = create_post(client, author["headers"])
    create_post(client, author["headers"], title="Unfinished", published=False)
    create_comment(client, reader["headers"], post["id"])

    response = client.get("/api/admin/stats", headers=admin["headers"])

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["overview"]["users"] == {"totalUsers": 3, "activeUsers": 3, "admins": 1}
    assert data["overview"]["posts"]["totalPosts"] == 2
    assert data["overview"]["comments"]["totalComments"] == 1
    assert data["recentActivity"] == {"newUsers": 3, "newPosts": 2, "newComments": 1}
    assert data["topAuthors"][0]["author"]["id"] == author["user"]["id"]
    assert data["topAuthors"][0]["postCount"] == 1


def test_admin_lists_users_with_filters(client, author, reader, admin):
    create_post(client, author["headers"])

    everyone = client.get("/api/admin/users", headers=admin["headers"]).json()["data"]
    assert everyone["pagination"]["totalUsers"] == 3
    by_id = {user["id"]: user for user in everyone["users"]}
    assert by_id[author["user"]["id"]]["stats"]["totalPosts"] == 1
    assert by_id[reader["user"]["id"]]["stats"]["totalPosts"] == 0

    admins = client.get("/api/admin/users", params={"role": "admin"}, headers=admin["headers"]).json()["data"]
    assert [user["id"] for user in admins["users"]] == [admin["user"]["id"]]

    found = client.get("/api/admin/users", params={"search": "bob"}, headers=admin["headers"]).json()["data"]
    assert [user["id"] for user in found["users"]] == [reader["user"]["id"]]


def test_admin_changes_role(client, author, admin):
    response = client.put(f"/api/admin/users/{author['user']['id']}/role",
                          json={"role": "admin"}, headers=admin["headers"])

    assert response.status_code == 200
    assert response.json()["message"] == "User role updated to admin"
    assert client.get("/api/admin/stats", headers=author["headers"]).status_code == 200


def test_admin_cannot_change_own_role_or_status(client, admin):
    own_id = admin["user"]["id"]

    role = client.put(f"/api/admin/users/{own_id}/role", json={"role": "user"}, headers=admin["headers"])
    assert role.status_code == 400
    assert role.json()["message"] == "Cannot change your own role"

    status = client.put(f"/api/admin/users/{own_id}/status", headers=admin["headers"])
    assert status.status_code == 400
    assert status.json()["message"] == "Cannot change your own account status"


def test_invalid_role_is_rejected(client, author, admin):
    response = client.put(f"/api/admin/users/{author['user']['id']}/role",
                          json={"role": "superuser"}, headers=admin["headers"])

    assert response.status_code == 400


def test_admin_deactivation_revokes_sessions(client, author, admin):
    response = client.put(f"/api/admin/users/{author['user']['id']}/status", headers=admin["headers"])

    assert response.status_code == 200
    assert response.json()["data"]["user"]["isActive"] is False

    client.cookies.clear()
    refresh = client.post("/api/auth/refresh-token", json={"refreshToken": author["refreshToken"]})
    assert refresh.status_code == 401
    assert login(client, "alice@example.com").status_code == 401

    reactivated = client.put(f"/api/admin/users/{author['user']['id']}/status", headers=admin["headers"])
    assert reactivated.json()["data"]["user"]["isActive"] is True
    assert login(client, "alice@example.com").status_code == 200


def test_admin_post_moderation(client, author, admin):
    live = create_post(client, author["headers"], title="Live Post")
    draft = create_post(client, author["headers"], title="Draft Post", published=False)

    listed = client.get("/api/admin/posts", headers=admin["headers"]).json()["data"]
    assert {post["id"] for post in listed["posts"]} == {live["id"], draft["id"]}

    drafts = client.get("/api/admin/posts", params={"published": "false"}, headers=admin["headers"]).json()["data"]
    assert [post["id"] for post in drafts["posts"]] == [draft["id"]]

    updated = client.put(f"/api/admin/posts/{live['id']}/status",
                         json={"published": False, "featured": True}, headers=admin["headers"])
    assert updated.status_code == 200
    post = updated.json()["data"]["post"]
    assert post["published"] is False
    assert post["featured"] is True
    assert client.get(f"/api/posts/{live['slug']}").status_code == 404

    deleted = client.delete(f"/api/admin/posts/{draft['id']}", headers=admin["headers"])
    assert deleted.status_code == 200
    assert client.delete(f"/api/admin/posts/{draft['id']}", headers=admin["headers"]).status_code == 404


def test_admin_comment_moderation(client, author, reader, admin):
    post = create_post(client, author["headers"])
    comment = create_comment(client, reader["headers"], post["id"], body="Spam spam spam")
    create_comment(client, author["headers"], post["id"], body="Legit")

    by_author = client.get("/api/admin/comments", params={"author": reader["user"]["id"]},
                           headers=admin["headers"]).json()["data"]
    assert [item["id"] for item in by_author["comments"]] == [comment["id"]]
    assert by_author["comments"][0]["postTitle"] == post["title"]
    assert by_author["comments"][0]["postSlug"] == post["slug"]

    response = client.delete(f"/api/admin/comments/{comment['id']}", headers=admin["headers"])
    assert response.status_code == 200

    live = client.get("/api/admin/comments", params={"isDeleted": "false"}, headers=admin["headers"]).json()["data"]
    assert [item["body"] for item in live["comments"]] == ["Legit"]
    post_after = client.get(f"/api/posts/{post['slug']}").json()["data"]["post"]
    assert post_after["commentsCount"] == 1


def test_admin_cannot_publish_draft_without_content(client, author, admin):
    stub = create_post(client, author["headers"], title="Stub Draft", text="Short", published=False)
    ready = create_post(client, author["headers"], title="Ready Draft", published=False)

    rejected = client.put(f"/api/admin/posts/{stub['id']}/status", json={"published": True}, headers=admin["headers"])
    assert rejected.status_code == 400
    assert rejected.json()["message"].startswith("Content must be between")
    assert client.get(f"/api/posts/{stub['slug']}").status_code == 404

    published = client.put(f"/api/admin/posts/{ready['id']}/status", json={"published": True}, headers=admin["headers"])
    assert published.status_code == 200
    assert client.get(f"/api/posts/{ready['slug']}").status_code == 200
