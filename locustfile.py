from locust import HttpUser, task, constant

class IndicatorUser(HttpUser):
    # Each snapshot fans out over the whole universe; keep per-user rate low
    wait_time = constant(2.0)

    @task
    def get_indicators(self):
        self.client.get("/api/indicators", params={"interval": "30m"})
