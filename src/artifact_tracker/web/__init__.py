"""HTTP interface built on aiohttp.web."""

from artifact_tracker.web.app import SERVICES_KEY, Services, build_services, create_app

__all__ = ["SERVICES_KEY", "Services", "build_services", "create_app"]
