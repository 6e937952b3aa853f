from locust import HttpUser, task, between, TaskSet
from random import choice, randint
import json
import logging


class ReaderBehavior(TaskSet):
    def on_start(self):
        # Register a throwaway account to get an access token
        suffix = randint(1, 10_000_000)
        response = self.client.post("/api/auth/register", json={
            "name": f"Load Tester {suffix}",
            "email": f"load{suffix}@example.com",
            "password": "LoadTest123",
        })
        self.headers = {}
        if response.status_code == 201:
            token = response.json()["data"]["accessToken"]
            self.headers = {'Authorization': f'Bearer {token}'}
        # Initialize post cache
        self.posts = []
        self.list_posts()

    def refresh(self):
        response = self.client.post("/api/auth/refresh-token")
        if response.status_code == 200:
            token = response.json()["data"]["accessToken"]
            self.headers = {'Authorization': f'Bearer {token}'}

    @task(4)
    def list_posts(self):
        sorts = ["-createdAt", "-likesCount", "-viewCount", "title"]
        categories = ["", "technology", "travel", "food", "science"]

        params = {"sort": choice(sorts), "page": 1, "limit": 20}
        category = choice(categories)
        if category:
            params["category"] = category
        response = self.client.get("/api/posts", params=params, headers=self.headers)
        if response.status_code == 200:
            posts = response.json()["data"]["posts"]
            known = {post["id"] for post in self.posts}
            self.posts.extend(post for post in posts if post["id"] not in known)

    @task(3)
    def read_post(self):
        if self.posts:
            post = choice(self.posts)
            self.client.get(f"/api/posts/{post['slug']}", headers=self.headers, name="/api/posts/[slug]")

    @task(2)
    def read_comments(self):
        if self.posts:
            post = choice(self.posts)
            self.client.get(f"/api/comments/post/{post['id']}", headers=self.headers,
                            name="/api/comments/post/[id]")

    @task(1)
    def like_post(self):
        if self.posts:
            post = choice(self.posts)
            response = self.client.post(f"/api/posts/{post['id']}/like", headers=self.headers,
                                        name="/api/posts/[id]/like")
            if response.status_code == 401:
                self.refresh()

    @task(1)
    def create_post(self):
        delta = {"ops": [{"insert": "A post written while load testing the API.\n"}]}
        response = self.client.post("/api/posts", headers=self.headers, data={
            "title": f"Load Test Post {randint(1, 1000)}",
            "contentHtml": "<p>A post written while load testing the API.</p>",
            "contentDelta": json.dumps(delta),
            "tags": "load,test",
            "category": choice(["technology", "science"]),
        })
        if response.status_code == 201:
            self.posts.append(response.json()["data"]["post"])
        elif response.status_code == 401:
            self.refresh()

    @task(1)
    def view_bookmarks(self):
        self.client.get("/api/users/me/bookmarks", headers=self.headers)


class WebsiteUser(HttpUser):
    tasks = [ReaderBehavior]
    wait_time = between(1, 5)  # Random wait time between tasks
    host = "http://localhost:8000"

    def on_start(self):
        logging.info("User started")
