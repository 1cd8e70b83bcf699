"""
Tool Catalog
------------
Representative Dashboard API operations.

Each entry is a plain descriptor; the generic executor interprets all of
them. Further operations can be loaded from YAML with
ToolRegistry.load_from_yaml.
"""

from typing import Any, Dict, List
from urllib.parse import quote

from .composite import aggregate_children
from .registry import HttpMethod, ParameterType, Tool, ToolParameter, ToolRegistry, ToolSchema


PRODUCT_TYPES = (
    "appliance", "camera", "cellularGateway", "sensor",
    "switch", "systemsManager", "wireless",
)

# Event types queried when the caller does not name any
DEFAULT_SECURITY_EVENT_TYPES = [
    "security_event",
    "ids_alerted",
    "content_filtering_blocked",
    "malware_blocked",
    "vpn_connectivity_change",
    "firewall_blocked",
    "amp_blocked",
]


def _organization_id() -> ToolParameter:
    return ToolParameter(
        name="organizationId",
        type=ParameterType.STRING,
        description="The ID of the organization",
        required=True,
    )


def _network_id() -> ToolParameter:
    return ToolParameter(
        name="networkId",
        type=ParameterType.STRING,
        description="The ID of the network",
        required=True,
    )


def _serial() -> ToolParameter:
    return ToolParameter(
        name="serial",
        type=ParameterType.STRING,
        description="The serial number of the device",
        required=True,
    )


def _pagination() -> List[ToolParameter]:
    return [
        ToolParameter(
            name="perPage",
            type=ParameterType.INTEGER,
            description="Number of entries per page (max 1000)",
            min_value=1,
            max_value=1000,
        ),
        ToolParameter(
            name="startingAfter",
            type=ParameterType.STRING,
            description="Pagination starting after ID",
        ),
        ToolParameter(
            name="endingBefore",
            type=ParameterType.STRING,
            description="Pagination ending before ID",
        ),
    ]


def _string_array(name: str, description: str, max_items: int = 100, enum=None) -> ToolParameter:
    return ToolParameter(
        name=name,
        type=ParameterType.ARRAY,
        description=description,
        item_type=ParameterType.STRING,
        max_length=max_items,
        enum=tuple(enum) if enum else None,
    )


def _time_window(max_timespan: int) -> List[ToolParameter]:
    return [
        ToolParameter(
            name="t0",
            type=ParameterType.STRING,
            description="The beginning of the timespan in ISO 8601 format",
        ),
        ToolParameter(
            name="t1",
            type=ParameterType.STRING,
            description="The end of the timespan in ISO 8601 format",
        ),
        ToolParameter(
            name="timespan",
            type=ParameterType.NUMBER,
            description="Timespan in seconds",
            max_value=max_timespan,
        ),
    ]


def default_client_window(params: Dict[str, Any]) -> Dict[str, Any]:
    """Look back one hour unless the caller chose a window."""
    if params.get("timespan") is None and params.get("t0") is None:
        return {**params, "timespan": 3600}
    return params


def default_status_window(params: Dict[str, Any]) -> Dict[str, Any]:
    """Look back 24 hours unless the caller chose a window."""
    if all(params.get(key) is None for key in ("timespan", "t0", "t1")):
        return {**params, "timespan": 86400}
    return params


async def organization_security_events(params: Dict[str, Any], client) -> Dict[str, Any]:
    """
    Security events for an organization.

    Queries appliance events on every network of the organization
    concurrently, tags each event with its network and returns the newest
    first. Networks without an appliance are skipped.
    """
    organization_id = params["organizationId"]
    networks = (await client.get(f"/organizations/{quote(organization_id, safe='')}/networks")).data or []

    filters: Dict[str, Any] = {
        "productType": "appliance",
        "perPage": params.get("perPage", 100),
        "includedEventTypes": params.get("securityEventTypes") or DEFAULT_SECURITY_EVENT_TYPES,
    }
    for key in ("t0", "t1", "timespan"):
        if params.get(key) is not None:
            filters[key] = params[key]

    async def fetch(network: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = await client.get(f"/networks/{quote(str(network['id']), safe='')}/events", filters)
        data = response.data
        if isinstance(data, dict):
            return data.get("events") or []
        return data or []

    aggregate = await aggregate_children(
        [n for n in networks if isinstance(n, dict) and n.get("id")],
        fetch,
        tag=lambda network: {"networkId": network.get("id"), "networkName": network.get("name")},
        timestamp_field="occurredAt",
        page_size=params.get("perPage"),
    )

    events = aggregate.pop("items")
    return {"events": events, "organizationId": organization_id, **aggregate}


def create_default_registry() -> ToolRegistry:
    """Create registry with the built-in Dashboard operations."""
    registry = ToolRegistry()

    # Organizations
    registry.register(Tool(
        name="organizations_list",
        description="List the organizations that the user has privileges on",
        method=HttpMethod.GET,
        endpoint="/organizations",
        schema=ToolSchema(parameters=tuple(_pagination())),
        category="organizations",
    ))

    registry.register(Tool(
        name="organization_get",
        description="Return an organization",
        method=HttpMethod.GET,
        endpoint="/organizations/{organizationId}",
        schema=ToolSchema(parameters=(_organization_id(),)),
        category="organizations",
    ))

    registry.register(Tool(
        name="organization_networks_list",
        description="List the networks that the user has privileges on in an organization",
        method=HttpMethod.GET,
        endpoint="/organizations/{organizationId}/networks",
        schema=ToolSchema(parameters=(
            _organization_id(),
            *_pagination(),
            _string_array("tags", "Filter by tags"),
            ToolParameter(
                name="tagsFilterType",
                type=ParameterType.STRING,
                description="Tag filter type",
                enum=("withAnyTags", "withAllTags"),
            ),
        )),
        category="organizations",
    ))

    registry.register(Tool(
        name="organization_devices_list",
        description="List all devices in an organization",
        method=HttpMethod.GET,
        endpoint="/organizations/{organizationId}/devices",
        schema=ToolSchema(parameters=(
            _organization_id(),
            *_pagination(),
            _string_array("networkIds", "Filter by network IDs"),
            _string_array("productTypes", "Filter by product types", enum=PRODUCT_TYPES),
            _string_array("serials", "Filter by device serials"),
            ToolParameter(name="model", type=ParameterType.STRING, description="Filter by model"),
            ToolParameter(name="name", type=ParameterType.STRING, description="Filter by device name"),
        )),
        category="organizations",
    ))

    registry.register(Tool(
        name="organization_top_networks_by_status",
        description="Get top networks by status for an organization",
        method=HttpMethod.GET,
        endpoint="/organizations/{organizationId}/summary/top/networks/byStatus",
        schema=ToolSchema(parameters=(_organization_id(), *_time_window(2592000))),
        transform_params=default_status_window,
        category="organizations",
    ))

    registry.register(Tool(
        name="organization_security_events",
        description="Get security event log for an organization by aggregating events from all networks",
        method=HttpMethod.COMPOSITE,
        schema=ToolSchema(parameters=(
            _organization_id(),
            *_time_window(31536000),
            ToolParameter(
                name="perPage",
                type=ParameterType.INTEGER,
                description="Number per page (3-1000)",
                min_value=3,
                max_value=1000,
            ),
            _string_array("securityEventTypes", "Specific security event types to include", max_items=50),
        )),
        custom_executor=organization_security_events,
        category="organizations",
    ))

    # Networks
    registry.register(Tool(
        name="network_get",
        description="Return a network",
        method=HttpMethod.GET,
        endpoint="/networks/{networkId}",
        schema=ToolSchema(parameters=(_network_id(),)),
        category="networks",
    ))

    registry.register(Tool(
        name="network_update",
        description="Update a network",
        method=HttpMethod.PUT,
        endpoint="/networks/{networkId}",
        schema=ToolSchema(parameters=(
            _network_id(),
            ToolParameter(name="name", type=ParameterType.STRING, description="The name of the network"),
            ToolParameter(name="timeZone", type=ParameterType.STRING, description="The timezone of the network"),
            _string_array("tags", "A list of tags to be applied to the network"),
            ToolParameter(name="notes", type=ParameterType.STRING, description="Notes for the network"),
        )),
        category="networks",
    ))

    registry.register(Tool(
        name="network_clients_list",
        description="List the clients that have used this network in the timespan",
        method=HttpMethod.GET,
        endpoint="/networks/{networkId}/clients",
        schema=ToolSchema(parameters=(
            _network_id(),
            ToolParameter(
                name="t0",
                type=ParameterType.STRING,
                description="The beginning of the timespan in ISO 8601 format",
            ),
            ToolParameter(
                name="timespan",
                type=ParameterType.NUMBER,
                description="Timespan in seconds (min 1 minute, max 31 days)",
                min_value=60,
                max_value=2678400,
            ),
            *_pagination(),
            _string_array("statuses", "Filter by client status", enum=("Online", "Offline")),
            ToolParameter(name="mac", type=ParameterType.STRING, description="Filter by MAC address"),
            ToolParameter(name="ip", type=ParameterType.STRING, description="Filter by IP address"),
            ToolParameter(name="vlan", type=ParameterType.STRING, description="Filter by VLAN"),
            ToolParameter(name="description", type=ParameterType.STRING, description="Filter by description"),
        )),
        transform_params=default_client_window,
        category="networks",
    ))

    registry.register(Tool(
        name="network_events_list",
        description="List the events for a network",
        method=HttpMethod.GET,
        endpoint="/networks/{networkId}/events",
        schema=ToolSchema(parameters=(
            _network_id(),
            ToolParameter(
                name="productType",
                type=ParameterType.STRING,
                description="Filter by product type",
                required=True,
                enum=PRODUCT_TYPES,
            ),
            _string_array("includedEventTypes", "Event types to include"),
            _string_array("excludedEventTypes", "Event types to exclude"),
            ToolParameter(name="deviceSerial", type=ParameterType.STRING, description="Filter by device serial"),
            *_pagination(),
        )),
        category="networks",
    ))

    # Devices
    registry.register(Tool(
        name="device_get",
        description="Return a single device",
        method=HttpMethod.GET,
        endpoint="/devices/{serial}",
        schema=ToolSchema(parameters=(_serial(),)),
        category="devices",
    ))

    registry.register(Tool(
        name="device_reboot",
        description="Reboot a device",
        method=HttpMethod.POST,
        endpoint="/devices/{serial}/reboot",
        schema=ToolSchema(parameters=(_serial(),)),
        category="devices",
    ))

    return registry
