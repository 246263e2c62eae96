import random
from datetime import datetime
from typing import Optional

from aiohttp import web
from loguru import logger


class ResourceServer:
    """Simulated eventually-consistent backend for tables and the like.

    ``POST /resources/{id}`` starts creating a resource, which reports CREATING
    until ``ready_after`` seconds have passed and ACTIVE afterwards.
    ``DELETE /resources/{id}`` starts deleting it: DELETING until
    ``delete_after`` seconds have passed, then 404.
    """

    def __init__(
        self,
        ready_after: float = 10.0,
        delete_after: float = 5.0,
        error_rate: float = 0.1,
    ):
        self.ready_after = ready_after
        self.delete_after = delete_after
        self.error_rate = error_rate
        self.created: dict[str, datetime] = {}
        self.deleted: dict[str, datetime] = {}
        self.failed: dict[str, str] = {}
        self.denied: set[str] = set()
        self.app = web.Application()
        self.app.router.add_get("/resources/{resource_id}", self.handle_get)
        self.app.router.add_post("/resources/{resource_id}", self.handle_create)
        self.app.router.add_delete("/resources/{resource_id}", self.handle_delete)
        self.runner: Optional[web.AppRunner] = None
        self.logger = logger

    def create(self, resource_id: str) -> None:
        self.created[resource_id] = datetime.now()
        self.deleted.pop(resource_id, None)

    def delete(self, resource_id: str) -> None:
        self.deleted[resource_id] = datetime.now()

    def fail(self, resource_id: str, reason: str) -> None:
        self.failed[resource_id] = reason

    def status_of(self, resource_id: str) -> Optional[str]:
        """None once the resource does not exist"""
        if resource_id not in self.created:
            return None
        if resource_id in self.failed:
            return "FAILED"

        now = datetime.now()
        if resource_id in self.deleted:
            elapsed = (now - self.deleted[resource_id]).total_seconds()
            return None if elapsed >= self.delete_after else "DELETING"

        elapsed = (now - self.created[resource_id]).total_seconds()
        return "ACTIVE" if elapsed >= self.ready_after else "CREATING"

    async def handle_get(self, request):
        resource_id = request.match_info["resource_id"]

        if resource_id in self.denied:
            self.logger.info(f"Denying access to {resource_id}")
            return web.json_response({"message": "access denied"}, status=403)

        if random.random() < self.error_rate:
            self.logger.info("Returning throttling error")
            return web.json_response({"message": "throttled"}, status=503)

        status = self.status_of(resource_id)
        if status is None:
            self.logger.info(f"Resource {resource_id} not found")
            return web.json_response({"message": "not found"}, status=404)

        body = {"resource_id": resource_id, "status": status}
        if resource_id in self.failed:
            body["reason"] = self.failed[resource_id]
        self.logger.info(f"Returning {status} for {resource_id}")
        return web.json_response(body)

    async def handle_create(self, request):
        resource_id = request.match_info["resource_id"]
        self.create(resource_id)
        return web.json_response({"resource_id": resource_id, "status": "CREATING"}, status=201)

    async def handle_delete(self, request):
        resource_id = request.match_info["resource_id"]
        if resource_id not in self.created:
            return web.json_response({"message": "not found"}, status=404)
        self.delete(resource_id)
        return web.json_response({"resource_id": resource_id, "status": "DELETING"}, status=202)

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
