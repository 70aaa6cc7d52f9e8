"""HTTP routers mounted by ``serenity.routing.compose_routes``."""
