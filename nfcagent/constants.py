"""Shared names for service discovery, WebSocket messages and CORS."""

DISPLAY_NAME = "NFC Agent"

# mDNS service discovery for the single-server mode
MDNS_SERVICE_TYPE = "_nfc-agent._tcp"
MDNS_SERVICE_NAME = DISPLAY_NAME
MDNS_DOMAIN = "local."

# mDNS service discovery for the device server
MDNS_DEVICE_SERVICE_TYPE = "_nfc-device._tcp"
MDNS_DEVICE_SERVICE_NAME = DISPLAY_NAME + " Device"

# WebSocket message types exchanged with clients
WS_MESSAGE_TYPE_TAG_DATA = "tagData"
WS_MESSAGE_TYPE_DEVICE_STATUS = "deviceStatus"
WS_MESSAGE_TYPE_WRITE_REQUEST = "writeRequest"
WS_MESSAGE_TYPE_WRITE_RESPONSE = "writeResponse"
WS_MESSAGE_TYPE_ERROR = "error"

# CORS headers
CORS_ALLOW_ORIGIN = "*"
CORS_ALLOW_METHODS = "GET, POST, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Authorization"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": CORS_ALLOW_ORIGIN,
    "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
    "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
}