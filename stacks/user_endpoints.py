from __future__ import annotations

from stacks.endpoints import LogicalEndpoint

USERS_PATH = "/v1/users"
USER_PATH = "/v1/users/{userId}"

# Mutating endpoints read before they write, so they hold both grants.
USER_ENDPOINTS: tuple[LogicalEndpoint, ...] = (
    LogicalEndpoint(
        logical_name="ListUsers",
        artifact_locator="cf-user_list-users",
        http_method="GET",
        route_path=USERS_PATH,
        requires_store_read=True,
    ),
    LogicalEndpoint(
        logical_name="CreateUser",
        artifact_locator="cf-user_create-user",
        http_method="POST",
        route_path=USERS_PATH,
        requires_store_read=True,
        requires_store_write=True,
    ),
    LogicalEndpoint(
        logical_name="GetUser",
        artifact_locator="cf-user_get-user",
        http_method="GET",
        route_path=USER_PATH,
        requires_store_read=True,
    ),
    LogicalEndpoint(
        logical_name="UpdateUser",
        artifact_locator="cf-user_update-user",
        http_method="PUT",
        route_path=USER_PATH,
        requires_store_read=True,
        requires_store_write=True,
    ),
    LogicalEndpoint(
        logical_name="DeleteUser",
        artifact_locator="cf-user_delete-user",
        http_method="DELETE",
        route_path=USER_PATH,
        requires_store_read=True,
        requires_store_write=True,
    ),
)
