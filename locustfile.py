from locust import HttpUser, task, between
import random


class StudioUser(HttpUser):
    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Create and log in an account for this simulated client
        email = f"user_{random.randint(1, 1_000_000)}@example.com"
        password = "loadtest123"
        self.client.post("/api/auth/signup", json={"email": email, "password": password})
        r = self.client.post("/api/auth/login", json={"email": email, "password": password})
        if r.status_code == 200:
            self.headers = {"Authorization": f"Bearer {r.json()['token']}"}
        else:
            self.headers = None

    @task(3)
    def browse_history(self):
        if not self.headers:
            return
        self.client.get("/api/generations", params={"page": 1, "limit": 5}, headers=self.headers)

    @task(2)
    def save_generation(self):
        if not self.headers:
            return
        self.client.post("/api/generations", json={"garment_type": random.choice(["shirt", "jeans"])},
                         headers=self.headers)

    @task(1)
    def profile(self):
        if not self.headers:
            return
        self.client.get("/api/profile", headers=self.headers)

    @task(1)
    def plans(self):
        self.client.get("/api/plans")
