from conftest import PASSWORD, create_post, login, png_bytes, register


def test_bookmark_toggle_twice_leaves_post_unbookmarked(client, author, reader):
    post = create_post(client, author["headers"])

    first = client.post(f"/api/users/me/bookmarks/{post['id']}", headers=reader["headers"])
    assert first.json()["data"] == {"isBookmarked": True, "action": "bookmarked"}
    listed = client.get("/api/users/me/bookmarks", headers=reader["headers"]).json()["data"]
    assert [item["id"] for item in listed["posts"]] == [post["id"]]
    assert listed["posts"][0]["isBookmarked"] is True

    second = client.post(f"/api/users/me/bookmarks/{post['id']}", headers=reader["headers"])
    assert second.json()["data"] == {"isBookmarked": False, "action": "unbookmarked"}
    listed = client.get("/api/users/me/bookmarks", headers=reader["headers"]).json()["data"]
    assert listed["posts"] == []
    assert listed["pagination"]["totalPosts"] == 0


def test_bookmarks_are_most_recent_first(client, author, reader):
    older = create_post(client, author["headers"], title="Older Post")
    newer = create_post(client, author["headers"], title="Newer Post")
    client.post(f"/api/users/me/bookmarks/{newer['id']}", headers=reader["headers"])
    client.post(f"/api/users/me/bookmarks/{older['id']}", headers=reader["headers"])

    listed = client.get("/api/users/me/bookmarks", headers=reader["headers"]).json()["data"]["posts"]

    assert [item["id"] for item in listed] == [older["id"], newer["id"]]


def test_cannot_bookmark_draft(client, author, reader):
    draft = create_post(client, author["headers"], title="Draft", published=False)

    response = client.post(f"/api/users/me/bookmarks/{draft['id']}", headers=reader["headers"])

    assert response.status_code == 404


def test_follow_and_unfollow(client, author, reader):
    author_id = author["user"]["id"]

    followed = client.post(f"/api/users/{author_id}/follow", headers=reader["headers"])
    assert followed.status_code == 200
    assert followed.json()["data"] == {"isFollowing": True, "followersCount": 1}

    repeat = client.post(f"/api/users/{author_id}/follow", headers=reader["headers"])
    assert repeat.json()["data"]["followersCount"] == 1

    followers = client.get(f"/api/users/{author_id}/followers", headers=author["headers"]).json()["data"]
    assert [user["id"] for user in followers["followers"]] == [reader["user"]["id"]]
    assert followers["followers"][0]["isFollowing"] is False
    assert followers["pagination"]["totalFollowers"] == 1

    following = client.get(f"/api/users/{reader['user']['id']}/following").json()["data"]
    assert [user["id"] for user in following["following"]] == [author_id]
    assert following["following"][0]["followersCount"] == 1

    unfollowed = client.delete(f"/api/users/{author_id}/follow", headers=reader["headers"])
    assert unfollowed.json()["data"] == {"isFollowing": False, "followersCount": 0}

    profile = client.get(f"/api/users/{reader['user']['id']}").json()["data"]["user"]
    assert profile["followingCount"] == 0


def test_cannot_follow_yourself(client, author):
    response = client.post(f"/api/users/{author['user']['id']}/follow", headers=author["headers"])

    assert response.status_code == 400
    assert response.json()["message"] == "Cannot follow yourself"


def test_follow_unknown_user(client, author):
    response = client.post("/api/users/9999/follow", headers=author["headers"])

    assert response.status_code == 404


def test_public_profile_shows_published_posts_only(client, author):
    create_post(client, author["headers"], title="Public Post")
    create_post(client, author["headers"], title="Private Draft", published=False)

    response = client.get(f"/api/users/{author['user']['id']}")

    assert response.status_code == 200
    data = response.json()["data"]
    assert "email" not in data["user"]
    assert [post["title"] for post in data["posts"]] == ["Public Post"]
    assert data["stats"]["totalPosts"] == 1


def test_profile_of_deactivated_user_is_hidden(client, author):
    client.request("DELETE", "/api/users/me", json={"password": PASSWORD}, headers=author["headers"])

    response = client.get(f"/api/users/{author['user']['id']}")

    assert response.status_code == 404


def test_deactivate_requires_password(client, author):
    response = client.request("DELETE", "/api/users/me", json={"password": "Wrong1234"}, headers=author["headers"])

    assert response.status_code == 400
    assert login(client, "alice@example.com").status_code == 200


def test_deactivated_user_token_stops_working(client, author):
    client.request("DELETE", "/api/users/me", json={"password": PASSWORD}, headers=author["headers"])

    response = client.get("/api/users/me", headers=author["headers"])

    assert response.status_code == 401
    assert response.json()["message"] == "Account has been deactivated"

    refresh = client.post("/api/auth/refresh-token", json={"refreshToken": author["refreshToken"]})
    assert refresh.status_code == 401


def test_update_profile(client, author, s3_client):
    response = client.put(
        "/api/users/me",
        headers=author["headers"],
        data={"name": "Alice Cooper", "bio": "  Writes about gardens.  "},
        files={"avatar": ("me.png", png_bytes(size=(500, 400)), "image/png")},
    )

    assert response.status_code == 200, response.text
    user = response.json()["data"]["user"]
    assert user["name"] == "Alice Cooper"
    assert user["bio"] == "Writes about gardens."
    assert user["avatarUrl"].startswith("https://cdn.test/blogify-test/blogify/avatars/user_")
    assert len(s3_client.objects) == 1


def test_update_profile_rejects_bad_avatar(client, author):
    response = client.put(
        "/api/users/me",
        headers=author["headers"],
        files={"avatar": ("me.png", b"not an image", "image/png")},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Failed to upload avatar image"


def test_update_profile_validates_name(client, author):
    response = client.put("/api/users/me", headers=author["headers"], data={"name": "R2-D2"})

    assert response.status_code == 400


def test_search_users(client, author, reader):
    register(client, name="Alicia Keys", email="alicia@example.com")

    response = client.get("/api/users/search", params={"query": "ali"}, headers=reader["headers"])

    assert response.status_code == 200
    names = sorted(user["name"] for user in response.json()["data"]["users"])
    assert names == ["Alice Writer", "Alicia Keys"]

    short = client.get("/api/users/search", params={"query": "a"}, headers=reader["headers"])
    assert short.status_code == 400


def test_my_posts_and_dashboard(client, author):
    create_post(client, author["headers"], title="Live One")
    create_post(client, author["headers"], title="Work In Progress", published=False)

    mine = client.get("/api/users/me/posts", headers=author["headers"]).json()["data"]
    assert mine["pagination"]["totalPosts"] == 2

    drafts = client.get("/api/users/me/posts", params={"published": "false"},
                        headers=author["headers"]).json()["data"]
    assert [post["title"] for post in drafts["posts"]] == ["Work In Progress"]

    dashboard = client.get("/api/users/me/dashboard", headers=author["headers"]).json()["data"]
    assert dashboard["user"]["email"] == "alice@example.com"
    assert len(dashboard["posts"]) == 2
    assert dashboard["stats"]["totalPosts"] == 1


def test_my_stats(client, author):
    create_post(client, author["headers"], title="Live One")
    create_post(client, author["headers"], title="Work In Progress", published=False)

    response = client.get("/api/users/me/stats", headers=author["headers"])

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["stats"]["totalPosts"] == 2
    assert data["stats"]["publishedPosts"] == 1
    assert data["stats"]["draftPosts"] == 1
    assert len(data["recentPosts"]) == 2
    assert sum(month["count"] for month in data["postsByMonth"]) == 2
