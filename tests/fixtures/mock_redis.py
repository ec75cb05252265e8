class MockRedisClient:
    def __init__(self):
        self.store = {}
        self.expirations = {}

    def get(self, k):
        return self.store.get(k)

    def set(self, k, v, ex=None):
        self.store[k] = v
        if ex:
            self.expirations[k] = ex

    def expire(self, k, ttl):
        if k in self.store:
            self.expirations[k] = ttl
        return 1 if k in self.store else 0

    def ping(self):
        return True
